from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlmodel import Session

from samap.api.deps import get_current_actor, get_db, to_http_exception
from samap.core.errors import NotFound, WorkflowError
from samap.models.document import Document
from samap.models.signature import SignatureLink
from samap.schemas.signature import (
    ProviderSendRequest,
    QuestionnaireLinkIssue,
    SignatureLinkIssue,
    SignatureLinkRead,
    SignatureLinkResend,
    SignatureLinkRevoke,
)
from samap.services.signature_links import SignatureLinkService, build_link_url
from samap.services.storage import get_storage
from samap.services.workflow import Actor

router = APIRouter(tags=["signature-links"])


def _read(link: SignatureLink) -> SignatureLinkRead:
    data = SignatureLinkRead.model_validate(link)
    data.url = build_link_url(link)
    return data


@router.post(
    "/sales/{sale_id}/signature-links",
    response_model=SignatureLinkRead,
    status_code=status.HTTP_201_CREATED,
)
def issue_signature_link(
    sale_id: UUID,
    payload: SignatureLinkIssue,
    session: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> SignatureLinkRead:
    service = SignatureLinkService(session)
    try:
        link = service.issue(
            sale_id,
            actor=actor,
            recipient_type=payload.recipient_type.value,
            recipient_id=payload.recipient_id,
            recipient_name=payload.recipient_name,
            recipient_email=payload.recipient_email,
            recipient_phone=payload.recipient_phone,
            package_id=payload.package_id,
            channel=payload.channel,
            expiration_days=payload.expiration_days,
        )
    except WorkflowError as exc:
        raise to_http_exception(exc) from exc
    return _read(link)


@router.get("/sales/{sale_id}/signature-links", response_model=List[SignatureLinkRead])
def list_signature_links(
    sale_id: UUID,
    session: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> List[SignatureLinkRead]:
    service = SignatureLinkService(session)
    try:
        sale = service.workflow.get_sale(sale_id, actor.company_id)
    except WorkflowError as exc:
        raise to_http_exception(exc) from exc
    return [_read(link) for link in service.list_for_sale(sale.id)]


@router.post(
    "/sales/{sale_id}/questionnaire-links",
    response_model=SignatureLinkRead,
    status_code=status.HTTP_201_CREATED,
)
def issue_questionnaire_link(
    sale_id: UUID,
    payload: QuestionnaireLinkIssue,
    session: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> SignatureLinkRead:
    service = SignatureLinkService(session)
    try:
        link = service.issue_questionnaire(
            sale_id,
            actor=actor,
            channel=payload.channel,
            expiration_days=payload.expiration_days,
        )
    except WorkflowError as exc:
        raise to_http_exception(exc) from exc
    return _read(link)


@router.post("/signature-links/{link_id}/revoke", response_model=SignatureLinkRead)
def revoke_signature_link(
    link_id: UUID,
    payload: SignatureLinkRevoke,
    session: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> SignatureLinkRead:
    try:
        link = SignatureLinkService(session).revoke(link_id, actor=actor, reason=payload.reason)
    except WorkflowError as exc:
        raise to_http_exception(exc) from exc
    return _read(link)


@router.post("/signature-links/{link_id}/resend", response_model=SignatureLinkRead)
def resend_signature_link(
    link_id: UUID,
    payload: SignatureLinkResend,
    session: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> SignatureLinkRead:
    try:
        link = SignatureLinkService(session).resend(
            link_id,
            actor=actor,
            expected_version=payload.expected_version,
            channel=payload.channel,
        )
    except WorkflowError as exc:
        raise to_http_exception(exc) from exc
    return _read(link)


@router.post("/signature-links/{link_id}/provider", response_model=SignatureLinkRead)
def send_link_to_provider(
    link_id: UUID,
    payload: ProviderSendRequest,
    session: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> SignatureLinkRead:
    service = SignatureLinkService(session)
    try:
        link = service.get_link(link_id)
        document = session.get(Document, payload.document_id)
        if not document or document.sale_id != link.sale_id or not document.storage_path:
            raise NotFound("Documento no encontrado en la venta")
        try:
            file_bytes = get_storage().load_bytes(document.storage_path)
        except FileNotFoundError as exc:
            raise NotFound("Archivo del documento no disponible") from exc
        link = service.send_to_provider(link_id, file_bytes, document.name, actor=actor)
    except WorkflowError as exc:
        raise to_http_exception(exc) from exc
    return _read(link)


@router.post("/signature-links/{link_id}/sync", response_model=SignatureLinkRead)
def sync_signature_link(
    link_id: UUID,
    session: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> SignatureLinkRead:
    try:
        link = SignatureLinkService(session).sync_provider_status(link_id, actor=actor)
    except WorkflowError as exc:
        raise to_http_exception(exc) from exc
    return _read(link)
