# noqa: F401 to ensure models are imported for metadata
from samap.models.document import Document, DocumentPackage, DocumentPackageItem
from samap.models.notification import NotificationLog
from samap.models.sale import Client, Plan, Sale, Template, TemplateResponse
from samap.models.signature import SignatureLink
from samap.models.trace import ProcessTrace

__all__ = [
    "Client",
    "Document",
    "DocumentPackage",
    "DocumentPackageItem",
    "NotificationLog",
    "Plan",
    "ProcessTrace",
    "Sale",
    "SignatureLink",
    "Template",
    "TemplateResponse",
]
