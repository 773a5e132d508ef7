from samap.services.automation import AutomationService
from samap.services.documents import ContractGenerator, DocumentPackageService
from samap.services.notification import NotificationService
from samap.services.signature_links import SignatureLinkService
from samap.services.trace import ProcessTraceService
from samap.services.workflow import WorkflowService

__all__ = [
    "AutomationService",
    "ContractGenerator",
    "DocumentPackageService",
    "NotificationService",
    "ProcessTraceService",
    "SignatureLinkService",
    "WorkflowService",
]
