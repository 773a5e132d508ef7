from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlmodel import Session

from samap.api.deps import get_current_actor, get_db, to_http_exception
from samap.core.errors import WorkflowError
from samap.schemas.sale import (
    ProcessTracePage,
    ProcessTraceRead,
    SaleCreate,
    SaleProgressRead,
    SaleRead,
    SaleReadiness,
    SaleTransitionRequest,
    TemplateSelection,
)
from samap.services import gate
from samap.services.trace import ACTION_LABELS
from samap.services.workflow import Actor, WorkflowService, available_transitions

router = APIRouter(prefix="/sales", tags=["sales"])


@router.post("", response_model=SaleRead, status_code=status.HTTP_201_CREATED)
def create_sale(
    payload: SaleCreate,
    session: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> SaleRead:
    service = WorkflowService(session)
    try:
        sale = service.create_sale(
            actor.company_id,
            actor=actor,
            client_id=payload.client_id,
            plan_id=payload.plan_id,
            template_id=payload.template_id,
            contract_number=payload.contract_number,
        )
    except WorkflowError as exc:
        raise to_http_exception(exc) from exc
    return SaleRead.model_validate(sale)


@router.get("/{sale_id}", response_model=SaleRead)
def get_sale(
    sale_id: UUID,
    session: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> SaleRead:
    try:
        sale = WorkflowService(session).get_sale(sale_id, actor.company_id)
    except WorkflowError as exc:
        raise to_http_exception(exc) from exc
    return SaleRead.model_validate(sale)


@router.get("/{sale_id}/progress", response_model=SaleProgressRead)
def get_progress(
    sale_id: UUID,
    session: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> SaleProgressRead:
    service = WorkflowService(session)
    try:
        sale = service.get_sale(sale_id, actor.company_id)
    except WorkflowError as exc:
        raise to_http_exception(exc) from exc
    progress = service.build_progress(sale)
    progress["available_transitions"] = available_transitions(sale.status, actor.role)
    return SaleProgressRead.model_validate(progress)


@router.get("/{sale_id}/traces", response_model=ProcessTracePage)
def list_traces(
    sale_id: UUID,
    action: str | None = None,
    start_at: datetime | None = None,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=200),
    session: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> ProcessTracePage:
    service = WorkflowService(session)
    try:
        sale = service.get_sale(sale_id, actor.company_id)
    except WorkflowError as exc:
        raise to_http_exception(exc) from exc
    items, total = service.traces.list_for_sale(
        sale.id, action=action, start_at=start_at, page=page, page_size=page_size
    )
    return ProcessTracePage(
        total=total,
        page=page,
        page_size=page_size,
        items=[
            ProcessTraceRead(
                id=trace.id,
                action=trace.action,
                label=ACTION_LABELS.get(trace.action, trace.action),
                details=trace.details or {},
                created_by=trace.created_by,
                client_action=trace.client_action,
                created_at=trace.created_at,
            )
            for trace in items
        ],
    )


@router.post("/{sale_id}/transitions", response_model=SaleRead)
def transition_sale(
    sale_id: UUID,
    payload: SaleTransitionRequest,
    session: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> SaleRead:
    service = WorkflowService(session)
    try:
        sale = service.get_sale(sale_id, actor.company_id)
        sale = service.transition(sale, payload.to_status.value, actor=actor, comment=payload.comment)
    except WorkflowError as exc:
        raise to_http_exception(exc) from exc
    return SaleRead.model_validate(sale)


@router.put("/{sale_id}/template", response_model=SaleRead)
def select_template(
    sale_id: UUID,
    payload: TemplateSelection,
    session: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> SaleRead:
    service = WorkflowService(session)
    try:
        sale = service.get_sale(sale_id, actor.company_id)
        sale = service.select_template(sale, payload.template_id, actor=actor)
    except WorkflowError as exc:
        raise to_http_exception(exc) from exc
    return SaleRead.model_validate(sale)


@router.get("/{sale_id}/readiness", response_model=SaleReadiness)
def get_readiness(
    sale_id: UUID,
    session: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> SaleReadiness:
    try:
        sale = WorkflowService(session).get_sale(sale_id, actor.company_id)
    except WorkflowError as exc:
        raise to_http_exception(exc) from exc
    ready = gate.ready_for_signature(session, sale)
    return SaleReadiness(
        sale_id=sale.id,
        has_template=gate.has_template(sale),
        questionnaire_responses=gate.count_questionnaire_responses(session, sale),
        ready_for_signature=ready,
        next_action=gate.next_link_action(session, sale),
    )
