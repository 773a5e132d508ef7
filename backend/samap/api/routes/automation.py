from fastapi import APIRouter, Depends
from sqlmodel import Session

from samap.api.deps import get_db, require_roles
from samap.schemas.common import BatchResultRead
from samap.schemas.document import BulkDocumentsRequest
from samap.services.automation import AutomationService
from samap.services.workflow import Actor

router = APIRouter(prefix="/automation", tags=["automation"])

operator = require_roles("admin", "supervisor", "gestor")


def _service(session: Session) -> AutomationService:
    return AutomationService(session.get_bind())


@router.post("/reminders", response_model=BatchResultRead)
def run_reminders(
    session: Session = Depends(get_db),
    actor: Actor = Depends(operator),
) -> BatchResultRead:
    return BatchResultRead(**_service(session).send_reminders(company_id=actor.company_id))


@router.post("/resend-expired", response_model=BatchResultRead)
def run_resend_expired(
    session: Session = Depends(get_db),
    actor: Actor = Depends(operator),
) -> BatchResultRead:
    return BatchResultRead(**_service(session).resend_expired(company_id=actor.company_id))


@router.post("/bulk-documents", response_model=BatchResultRead)
def run_bulk_documents(
    payload: BulkDocumentsRequest,
    session: Session = Depends(get_db),
    actor: Actor = Depends(operator),
) -> BatchResultRead:
    result = _service(session).generate_bulk_documents(payload.sale_ids, company_id=actor.company_id)
    return BatchResultRead(**result)
