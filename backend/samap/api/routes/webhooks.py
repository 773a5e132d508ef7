from fastapi import APIRouter, Depends, Header, HTTPException, status
from sqlmodel import Session

from samap.api.deps import get_db, to_http_exception
from samap.core.config import settings
from samap.core.errors import WorkflowError
from samap.core.logging_setup import logger
from samap.schemas.signature import ProviderWebhookPayload
from samap.services.signature_links import SignatureLinkService

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

COMPLETION_EVENTS = frozenset({"document_completed", "document_signed"})


@router.post("/signature-provider")
def signature_provider_webhook(
    payload: ProviderWebhookPayload,
    session: Session = Depends(get_db),
    x_api_key: str | None = Header(default=None),
) -> dict[str, str]:
    if not settings.signwell_api_key:
        logger.warning("Webhook del proveedor rechazado: signwell_api_key no configurada")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Webhook key not configured")
    if x_api_key != settings.signwell_api_key:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook key")

    if payload.event not in COMPLETION_EVENTS:
        logger.info("Evento del proveedor ignorado: %s (%s)", payload.event, payload.document_id)
        return {"status": "ignored"}

    try:
        link = SignatureLinkService(session).complete_by_provider_document(
            payload.document_id,
            evidence={"source": "provider_webhook", "event": payload.event, **payload.data},
        )
    except WorkflowError as exc:
        raise to_http_exception(exc) from exc
    return {"status": link.status}
