from __future__ import annotations

import uuid

import pytest
from sqlmodel import select

from samap.core.errors import InvalidTransition, NotFound, PermissionDenied, PreconditionFailed
from samap.models.sale import SaleStatus
from samap.models.trace import ProcessTrace
from samap.services.trace import ProcessTraceService, TraceAction
from samap.services.workflow import SYSTEM_ACTOR, WorkflowService

from conftest import make_actor, make_client, make_sale, make_template


def _actions(session, sale_id) -> list[str]:
    traces, _ = ProcessTraceService(session).list_for_sale(sale_id)
    return [trace.action for trace in traces]


def test_create_sale_starts_in_borrador_with_trace(db_session, company_id):
    sale = make_sale(db_session, company_id)

    assert sale.status == SaleStatus.BORRADOR.value
    assert _actions(db_session, sale.id) == [TraceAction.VENTA_CREADA]


def test_create_sale_rejects_foreign_client(db_session, company_id):
    other_client = make_client(db_session, uuid.uuid4())
    service = WorkflowService(db_session)

    with pytest.raises(NotFound):
        service.create_sale(company_id, actor=make_actor(company_id), client_id=other_client.id)


def test_get_sale_is_scoped_by_company(db_session, company_id):
    sale = make_sale(db_session, company_id)
    service = WorkflowService(db_session)

    assert service.get_sale(sale.id, company_id).id == sale.id
    with pytest.raises(NotFound):
        service.get_sale(sale.id, uuid.uuid4())
    with pytest.raises(NotFound):
        service.get_sale("no-es-un-uuid")


def test_transition_writes_status_and_trace_together(db_session, company_id):
    sale = make_sale(db_session, company_id)
    service = WorkflowService(db_session)

    service.transition(sale, SaleStatus.PREPARANDO_DOCUMENTOS.value, actor=make_actor(company_id))

    db_session.expire_all()
    assert service.get_sale(sale.id).status == SaleStatus.PREPARANDO_DOCUMENTOS.value
    trace = db_session.exec(
        select(ProcessTrace).where(ProcessTrace.action == TraceAction.DOCUMENTOS_CARGADOS)
    ).one()
    assert trace.details == {"from": "borrador", "to": "preparando_documentos"}


def test_uncommitted_transition_rolls_back_with_its_trace(db_session, company_id):
    sale = make_sale(db_session, company_id)
    service = WorkflowService(db_session)

    service.transition(sale, SaleStatus.ESPERANDO_DDJJ.value, actor=make_actor(company_id), commit=False)
    db_session.rollback()

    assert service.get_sale(sale.id).status == SaleStatus.BORRADOR.value
    assert _actions(db_session, sale.id) == [TraceAction.VENTA_CREADA]


def test_backward_transition_is_rejected(db_session, company_id):
    sale = make_sale(db_session, company_id, status=SaleStatus.ENVIADO.value)

    with pytest.raises(InvalidTransition):
        WorkflowService(db_session).transition(sale, SaleStatus.BORRADOR.value, actor=make_actor(company_id, "admin"))


def test_terminal_states_are_absorbing(db_session, company_id):
    service = WorkflowService(db_session)
    for terminal in (SaleStatus.COMPLETADO, SaleStatus.RECHAZADO, SaleStatus.CANCELADO):
        sale = make_sale(db_session, company_id, status=terminal.value)
        with pytest.raises(InvalidTransition):
            service.transition(sale, SaleStatus.CANCELADO.value, actor=SYSTEM_ACTOR, comment="cierre")


def test_vendedor_cannot_approve(db_session, company_id):
    sale = make_sale(db_session, company_id, status=SaleStatus.EN_REVISION.value)

    with pytest.raises(PermissionDenied) as excinfo:
        WorkflowService(db_session).transition(
            sale, SaleStatus.APROBADO_PARA_TEMPLATES.value, actor=make_actor(company_id, "vendedor")
        )
    assert excinfo.value.status_code == 403


def test_auditor_rejection_requires_comment(db_session, company_id):
    sale = make_sale(db_session, company_id, status=SaleStatus.EN_REVISION.value)
    service = WorkflowService(db_session)
    auditor = make_actor(company_id, "auditor")

    with pytest.raises(PreconditionFailed):
        service.transition(sale, SaleStatus.RECHAZADO.value, actor=auditor, comment="   ")

    service.transition(sale, SaleStatus.RECHAZADO.value, actor=auditor, comment="Falta DDJJ firmada")
    assert sale.status == SaleStatus.RECHAZADO.value
    trace = db_session.exec(select(ProcessTrace).where(ProcessTrace.action == TraceAction.RECHAZADO)).one()
    assert trace.details["comment"] == "Falta DDJJ firmada"


def test_cancel_after_sending_requires_admin(db_session, company_id):
    sale = make_sale(db_session, company_id, status=SaleStatus.ENVIADO.value)
    service = WorkflowService(db_session)

    with pytest.raises(PermissionDenied):
        service.transition(sale, SaleStatus.CANCELADO.value, actor=make_actor(company_id, "vendedor"), comment="baja")

    service.transition(sale, SaleStatus.CANCELADO.value, actor=make_actor(company_id, "admin"), comment="baja")
    assert sale.status == SaleStatus.CANCELADO.value


def test_system_actor_bypasses_roles_but_not_structure(db_session, company_id):
    sale = make_sale(db_session, company_id, status=SaleStatus.FIRMADO.value)
    service = WorkflowService(db_session)

    service.transition(sale, SaleStatus.COMPLETADO.value, actor=SYSTEM_ACTOR)
    assert sale.status == SaleStatus.COMPLETADO.value

    with pytest.raises(InvalidTransition):
        service.transition(sale, SaleStatus.FIRMADO.value, actor=SYSTEM_ACTOR)


def test_advance_to_only_moves_forward(db_session, company_id):
    service = WorkflowService(db_session)
    early = make_sale(db_session, company_id, status=SaleStatus.LISTO_PARA_ENVIAR.value)
    late = make_sale(db_session, company_id, status=SaleStatus.FIRMADO.value)

    assert service.advance_to(early, SaleStatus.ENVIADO.value, actor=SYSTEM_ACTOR) is True
    assert early.status == SaleStatus.ENVIADO.value
    assert service.advance_to(late, SaleStatus.ENVIADO.value, actor=SYSTEM_ACTOR) is False
    assert late.status == SaleStatus.FIRMADO.value


def test_select_template_records_trace(db_session, company_id):
    sale = make_sale(db_session, company_id)
    template = make_template(db_session, company_id)

    WorkflowService(db_session).select_template(sale, template.id, actor=make_actor(company_id))

    assert sale.template_id == template.id
    assert _actions(db_session, sale.id)[0] == TraceAction.TEMPLATES_SELECCIONADOS


def test_build_progress_for_rejected_sale(db_session, company_id):
    sale = make_sale(db_session, company_id, status=SaleStatus.EN_REVISION.value)
    service = WorkflowService(db_session)
    service.transition(sale, SaleStatus.RECHAZADO.value, actor=make_actor(company_id, "auditor"), comment="Incompleto")

    progress = service.build_progress(sale)

    assert progress["is_rejected"] is True
    assert progress["is_cancelled"] is False
    states = {step["key"]: step["state"] for step in progress["steps"]}
    assert states["en_revision"] == "rejected"
    assert progress["traces"][0]["action"] == TraceAction.RECHAZADO
    assert progress["traces"][0]["label"] == "Rechazado por auditor"
