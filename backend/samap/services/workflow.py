from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from uuid import UUID

from sqlmodel import Session

from samap.core.errors import InvalidTransition, NotFound, PermissionDenied, PreconditionFailed
from samap.core.logging_setup import logger
from samap.models.sale import Client, Plan, Sale, SaleStatus, Template
from samap.services.trace import ACTION_LABELS, ProcessTraceService, TraceAction
from samap.utils.clock import utcnow


@dataclass(frozen=True)
class WorkflowStepDefinition:
    key: str
    label: str
    description: str


WORKFLOW_STEPS: tuple[WorkflowStepDefinition, ...] = (
    WorkflowStepDefinition(SaleStatus.BORRADOR.value, "Borrador", "Venta creada"),
    WorkflowStepDefinition(SaleStatus.PREPARANDO_DOCUMENTOS.value, "Documentos", "Preparando documentación"),
    WorkflowStepDefinition(SaleStatus.ESPERANDO_DDJJ.value, "DDJJ", "Esperando declaración jurada"),
    WorkflowStepDefinition(SaleStatus.EN_REVISION.value, "Auditoría", "En revisión por auditor"),
    WorkflowStepDefinition(SaleStatus.APROBADO_PARA_TEMPLATES.value, "Templates", "Aprobado, seleccionando templates"),
    WorkflowStepDefinition(SaleStatus.LISTO_PARA_ENVIAR.value, "Listo", "Documentos listos para envío"),
    WorkflowStepDefinition(SaleStatus.ENVIADO.value, "Enviado", "Enviado para firma"),
    WorkflowStepDefinition(SaleStatus.FIRMADO.value, "Firmado", "Firma completada"),
    WorkflowStepDefinition(SaleStatus.COMPLETADO.value, "Completado", "Proceso finalizado"),
)

STATUS_ORDER: dict[str, int] = {step.key: index for index, step in enumerate(WORKFLOW_STEPS)}

TERMINAL_STATUSES = frozenset(
    {SaleStatus.COMPLETADO.value, SaleStatus.RECHAZADO.value, SaleStatus.CANCELADO.value}
)
NOTE_REQUIRED_STATUSES = frozenset({SaleStatus.RECHAZADO.value, SaleStatus.CANCELADO.value})

TRANSITION_ACTIONS: dict[str, str] = {
    SaleStatus.PREPARANDO_DOCUMENTOS.value: TraceAction.DOCUMENTOS_CARGADOS,
    SaleStatus.ESPERANDO_DDJJ.value: TraceAction.CAMBIO_ESTADO,
    SaleStatus.EN_REVISION.value: TraceAction.ENVIADO_A_AUDITORIA,
    SaleStatus.APROBADO_PARA_TEMPLATES.value: TraceAction.APROBADO,
    SaleStatus.RECHAZADO.value: TraceAction.RECHAZADO,
    SaleStatus.LISTO_PARA_ENVIAR.value: TraceAction.DOCUMENTOS_GENERADOS,
    SaleStatus.ENVIADO.value: TraceAction.ENLACE_FIRMA_CREADO,
    SaleStatus.FIRMADO.value: TraceAction.FIRMA_COMPLETADA,
    SaleStatus.COMPLETADO.value: TraceAction.VENTA_COMPLETADA,
    SaleStatus.CANCELADO.value: TraceAction.CAMBIO_ESTADO,
}

SALES_ROLES = frozenset({"vendedor", "gestor", "admin", "super_admin"})
AUDIT_ROLES = frozenset({"auditor", "admin", "super_admin"})
ADMIN_ROLES = frozenset({"admin", "super_admin"})


@dataclass(frozen=True)
class Actor:
    """Quién ejecuta una acción. Los actores de sistema y de cliente no pasan por la tabla de roles."""

    user_id: UUID | None = None
    role: str | None = None
    company_id: UUID | None = None
    system: bool = False
    client: bool = False

    @property
    def bypasses_roles(self) -> bool:
        return self.system or self.client


SYSTEM_ACTOR = Actor(system=True)
CLIENT_ACTOR = Actor(client=True)


def status_order(status: str) -> int | None:
    return STATUS_ORDER.get(status)


def get_step_state(step_key: str, current_status: str) -> str:
    """Estado visual de un paso: `completed`, `current`, `pending` o `rejected`."""
    if current_status == SaleStatus.RECHAZADO.value:
        if step_key == SaleStatus.EN_REVISION.value:
            return "rejected"
        if STATUS_ORDER.get(step_key, 99) < STATUS_ORDER[SaleStatus.EN_REVISION.value]:
            return "completed"
        return "pending"
    if current_status == SaleStatus.CANCELADO.value:
        return "pending"
    current_index = STATUS_ORDER.get(current_status, -1)
    step_index = STATUS_ORDER.get(step_key, 99)
    if step_index < current_index:
        return "completed"
    if step_index == current_index:
        return "current"
    return "pending"


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(from_status: str, to_status: str) -> bool:
    if from_status == to_status or is_terminal(from_status):
        return False
    if to_status == SaleStatus.CANCELADO.value:
        return True
    if to_status == SaleStatus.RECHAZADO.value:
        return from_status == SaleStatus.EN_REVISION.value
    current_index = STATUS_ORDER.get(from_status)
    target_index = STATUS_ORDER.get(to_status)
    if current_index is None or target_index is None:
        return False
    return target_index > current_index


def allowed_roles_for(from_status: str, to_status: str) -> frozenset[str]:
    if to_status in (SaleStatus.APROBADO_PARA_TEMPLATES.value, SaleStatus.RECHAZADO.value):
        return AUDIT_ROLES
    if to_status == SaleStatus.COMPLETADO.value:
        return ADMIN_ROLES
    if to_status == SaleStatus.CANCELADO.value:
        if STATUS_ORDER.get(from_status, -1) >= STATUS_ORDER[SaleStatus.ENVIADO.value]:
            return ADMIN_ROLES
    return SALES_ROLES


def available_transitions(current_status: str, role: str | None = None) -> list[str]:
    targets = [step.key for step in WORKFLOW_STEPS] + [
        SaleStatus.RECHAZADO.value,
        SaleStatus.CANCELADO.value,
    ]
    result: list[str] = []
    for target in targets:
        if not can_transition(current_status, target):
            continue
        if role is not None and role not in allowed_roles_for(current_status, target):
            continue
        result.append(target)
    return result


class WorkflowService:
    def __init__(self, session: Session, trace_service: ProcessTraceService | None = None) -> None:
        self.session = session
        self.traces = trace_service or ProcessTraceService(session)

    def create_sale(
        self,
        company_id: UUID,
        *,
        actor: Actor,
        client_id: UUID | None = None,
        plan_id: UUID | None = None,
        template_id: UUID | None = None,
        contract_number: str | None = None,
    ) -> Sale:
        if client_id is not None:
            self._require(Client, client_id, company_id, "Cliente no encontrado")
        if plan_id is not None:
            self._require(Plan, plan_id, company_id, "Plan no encontrado")
        if template_id is not None:
            self._require(Template, template_id, company_id, "Template no encontrado")
        sale = Sale(
            company_id=company_id,
            client_id=client_id,
            plan_id=plan_id,
            template_id=template_id,
            salesperson_id=actor.user_id,
            contract_number=contract_number,
            status=SaleStatus.BORRADOR.value,
        )
        self.session.add(sale)
        self.session.flush()
        self.traces.record(
            sale.id,
            TraceAction.VENTA_CREADA,
            created_by=actor.user_id,
            details={"status": sale.status},
        )
        self.session.commit()
        self.session.refresh(sale)
        logger.info("Venta %s creada para la compañía %s", sale.id, company_id)
        return sale

    def _require(self, model, record_id: UUID, company_id: UUID, message: str):  # type: ignore[no-untyped-def]
        record = self.session.get(model, record_id)
        if not record or record.company_id != company_id:
            raise NotFound(message)
        return record

    def get_sale(self, sale_id: UUID | str, company_id: UUID | None = None) -> Sale:
        try:
            sale_uuid = UUID(str(sale_id))
        except (TypeError, ValueError) as exc:
            raise NotFound("Venta no encontrada") from exc
        sale = self.session.get(Sale, sale_uuid)
        if not sale or (company_id is not None and sale.company_id != company_id):
            raise NotFound("Venta no encontrada")
        return sale

    def transition(
        self,
        sale: Sale,
        to_status: str,
        *,
        actor: Actor,
        comment: str | None = None,
        details: dict[str, Any] | None = None,
        action: str | None = None,
        commit: bool = True,
    ) -> Sale:
        from_status = sale.status
        if not can_transition(from_status, to_status):
            raise InvalidTransition(
                f"Transición no permitida: {from_status} → {to_status}",
                details={"from": from_status, "to": to_status},
            )
        if not actor.bypasses_roles:
            allowed = allowed_roles_for(from_status, to_status)
            if actor.role not in allowed:
                raise PermissionDenied(
                    f'El rol "{actor.role}" no puede realizar esta transición',
                    details={"from": from_status, "to": to_status, "allowed_roles": sorted(allowed)},
                )
        note = (comment or "").strip()
        if to_status in NOTE_REQUIRED_STATUSES and not note:
            raise PreconditionFailed("Se requiere un comentario para esta transición")

        sale.status = to_status
        sale.updated_at = utcnow()
        self.session.add(sale)

        trace_details: dict[str, Any] = {"from": from_status, "to": to_status}
        if note:
            trace_details["comment"] = note
        if details:
            trace_details.update(details)
        self.traces.record(
            sale.id,
            action or TRANSITION_ACTIONS.get(to_status, TraceAction.CAMBIO_ESTADO),
            created_by=actor.user_id,
            client_action=actor.client,
            details=trace_details,
        )
        if commit:
            self.session.commit()
            self.session.refresh(sale)
        logger.info("Venta %s: %s → %s", sale.id, from_status, to_status)
        return sale

    def advance_to(
        self,
        sale: Sale,
        to_status: str,
        *,
        actor: Actor,
        details: dict[str, Any] | None = None,
        commit: bool = True,
    ) -> bool:
        """Avanza solo si la venta está antes de `to_status` en la secuencia principal."""
        current_index = STATUS_ORDER.get(sale.status)
        target_index = STATUS_ORDER[to_status]
        if current_index is None or current_index >= target_index:
            return False
        self.transition(sale, to_status, actor=actor, details=details, commit=commit)
        return True

    def select_template(self, sale: Sale, template_id: UUID, *, actor: Actor) -> Sale:
        if is_terminal(sale.status):
            raise PreconditionFailed("La venta ya no admite cambios")
        template = self._require(Template, template_id, sale.company_id, "Template no encontrado")
        sale.template_id = template.id
        sale.updated_at = utcnow()
        self.session.add(sale)
        self.traces.record(
            sale.id,
            TraceAction.TEMPLATES_SELECCIONADOS,
            created_by=actor.user_id,
            details={"template_id": str(template.id), "template_name": template.name},
        )
        self.session.commit()
        self.session.refresh(sale)
        return sale

    def build_progress(self, sale: Sale) -> dict[str, Any]:
        current_status = sale.status or SaleStatus.BORRADOR.value
        traces, _ = self.traces.list_for_sale(sale.id)
        return {
            "sale_id": sale.id,
            "current_status": current_status,
            "is_rejected": current_status == SaleStatus.RECHAZADO.value,
            "is_cancelled": current_status == SaleStatus.CANCELADO.value,
            "steps": [
                {
                    "key": step.key,
                    "label": step.label,
                    "description": step.description,
                    "state": get_step_state(step.key, current_status),
                }
                for step in WORKFLOW_STEPS
            ],
            "traces": [
                {
                    "id": trace.id,
                    "action": trace.action,
                    "label": ACTION_LABELS.get(trace.action, trace.action),
                    "details": trace.details or {},
                    "created_by": trace.created_by,
                    "client_action": trace.client_action,
                    "created_at": trace.created_at,
                }
                for trace in traces
            ],
        }
