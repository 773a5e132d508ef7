from fastapi import APIRouter, Depends
from sqlmodel import Session, select

from samap.api.deps import get_db, to_http_exception
from samap.core.errors import WorkflowError
from samap.models.document import Document
from samap.models.sale import Client, Plan, Sale, Template
from samap.models.signature import RecipientType, SignatureLink, SignatureLinkPurpose
from samap.schemas.public import (
    PublicQuestionnaireRead,
    PublicSaleSummary,
    PublicSignatureRead,
    QuestionnaireSubmission,
    QuestionnaireSubmissionResult,
)
from samap.services.signature_links import SignatureLinkService

router = APIRouter(tags=["public"])


def _sale_summary(session: Session, sale: Sale) -> PublicSaleSummary:
    client = session.get(Client, sale.client_id) if sale.client_id else None
    plan = session.get(Plan, sale.plan_id) if sale.plan_id else None
    return PublicSaleSummary(
        sale_id=sale.id,
        contract_number=sale.contract_number,
        client_name=client.full_name if client else None,
        plan_name=plan.name if plan else None,
        plan_price=plan.price if plan else None,
        coverage_details=plan.coverage_details if plan else None,
    )


def _recipient_documents(session: Session, link: SignatureLink) -> list[dict]:
    query = select(Document).where(Document.sale_id == link.sale_id)
    if link.recipient_type == RecipientType.ADHERENTE.value:
        query = query.where(Document.beneficiary_id == link.recipient_id)
    else:
        query = query.where(Document.beneficiary_id.is_(None))
    return [
        {"id": str(document.id), "name": document.name, "status": document.status}
        for document in session.exec(query.order_by(Document.created_at)).all()
    ]


def _signature_view(session: Session, token: str) -> PublicSignatureRead:
    try:
        link = SignatureLinkService(session).resolve(token, purpose=SignatureLinkPurpose.FIRMA.value)
    except WorkflowError as exc:
        raise to_http_exception(exc) from exc
    sale = session.get(Sale, link.sale_id)
    return PublicSignatureRead(
        purpose=link.purpose,
        status=link.status,
        recipient_type=link.recipient_type,
        recipient_name=link.recipient_name,
        expires_at=link.expires_at,
        signing_url=link.signing_url,
        sale=_sale_summary(session, sale),
        documents=_recipient_documents(session, link),
    )


@router.get("/signature/{token}", response_model=PublicSignatureRead)
def get_signature(token: str, session: Session = Depends(get_db)) -> PublicSignatureRead:
    return _signature_view(session, token)


@router.get("/firmar/{token}", response_model=PublicSignatureRead)
def get_signature_alias(token: str, session: Session = Depends(get_db)) -> PublicSignatureRead:
    return _signature_view(session, token)


@router.get("/questionnaire/{token}", response_model=PublicQuestionnaireRead)
def get_questionnaire(token: str, session: Session = Depends(get_db)) -> PublicQuestionnaireRead:
    try:
        link = SignatureLinkService(session).resolve(token, purpose=SignatureLinkPurpose.CUESTIONARIO.value)
    except WorkflowError as exc:
        raise to_http_exception(exc) from exc
    sale = session.get(Sale, link.sale_id)
    template = session.get(Template, sale.template_id) if sale.template_id else None
    return PublicQuestionnaireRead(
        purpose=link.purpose,
        status=link.status,
        recipient_type=link.recipient_type,
        recipient_name=link.recipient_name,
        expires_at=link.expires_at,
        signing_url=None,
        sale=_sale_summary(session, sale),
        template_name=template.name if template else None,
        template_content=template.content if template else None,
    )


@router.post("/questionnaire/{token}", response_model=QuestionnaireSubmissionResult)
def submit_questionnaire(
    token: str,
    payload: QuestionnaireSubmission,
    session: Session = Depends(get_db),
) -> QuestionnaireSubmissionResult:
    try:
        link = SignatureLinkService(session).submit_questionnaire(token, payload.answers)
    except WorkflowError as exc:
        raise to_http_exception(exc) from exc
    return QuestionnaireSubmissionResult(
        status=link.status,
        answers=len(payload.answers),
        completed_at=link.completed_at,
    )
