from __future__ import annotations

from sqlalchemy import func
from sqlmodel import Session, select

from samap.models.sale import Sale, TemplateResponse

QUESTIONNAIRE_PENDING_MESSAGE = (
    "El cliente debe completar el cuestionario antes de generar el enlace de firma."
)


def has_template(sale: Sale) -> bool:
    return sale.template_id is not None


def count_questionnaire_responses(session: Session, sale: Sale) -> int:
    if sale.client_id is None or sale.template_id is None:
        return 0
    return session.exec(
        select(func.count())
        .select_from(TemplateResponse)
        .where(TemplateResponse.client_id == sale.client_id)
        .where(TemplateResponse.template_id == sale.template_id)
    ).one()


def ready_for_signature(session: Session, sale: Sale) -> bool:
    """Sin template no hay cuestionario que esperar; con template hace falta al menos una respuesta."""
    return not has_template(sale) or count_questionnaire_responses(session, sale) > 0


def next_link_action(session: Session, sale: Sale) -> str:
    """Acción de enlace que corresponde ofrecer: `questionnaire` o `signature`."""
    return "signature" if ready_for_signature(session, sale) else "questionnaire"
