import pytest

from samap.models.sale import SaleStatus
from samap.services.workflow import (
    ADMIN_ROLES,
    AUDIT_ROLES,
    SALES_ROLES,
    WORKFLOW_STEPS,
    allowed_roles_for,
    available_transitions,
    can_transition,
    get_step_state,
)

MAIN = [step.key for step in WORKFLOW_STEPS]


def test_main_sequence_order():
    assert MAIN == [
        "borrador",
        "preparando_documentos",
        "esperando_ddjj",
        "en_revision",
        "aprobado_para_templates",
        "listo_para_enviar",
        "enviado",
        "firmado",
        "completado",
    ]


def test_step_state_for_regular_status():
    current = SaleStatus.EN_REVISION.value
    states = {key: get_step_state(key, current) for key in MAIN}
    assert states["borrador"] == "completed"
    assert states["esperando_ddjj"] == "completed"
    assert states["en_revision"] == "current"
    assert states["aprobado_para_templates"] == "pending"
    assert states["completado"] == "pending"


def test_step_state_when_rejected():
    states = {key: get_step_state(key, SaleStatus.RECHAZADO.value) for key in MAIN}
    assert states["borrador"] == "completed"
    assert states["preparando_documentos"] == "completed"
    assert states["esperando_ddjj"] == "completed"
    assert states["en_revision"] == "rejected"
    assert all(states[key] == "pending" for key in MAIN[4:])


def test_step_state_when_cancelled():
    assert {get_step_state(key, SaleStatus.CANCELADO.value) for key in MAIN} == {"pending"}


def test_completed_sale_has_every_prior_step_completed():
    states = [get_step_state(key, SaleStatus.COMPLETADO.value) for key in MAIN]
    assert states[:-1] == ["completed"] * 8
    assert states[-1] == "current"


@pytest.mark.parametrize(
    ("from_status", "to_status", "expected"),
    [
        ("borrador", "preparando_documentos", True),
        ("borrador", "enviado", True),
        ("listo_para_enviar", "enviado", True),
        ("enviado", "listo_para_enviar", False),
        ("enviado", "enviado", False),
        ("en_revision", "rechazado", True),
        ("borrador", "rechazado", False),
        ("aprobado_para_templates", "rechazado", False),
        ("borrador", "cancelado", True),
        ("firmado", "cancelado", True),
        ("completado", "cancelado", False),
        ("rechazado", "en_revision", False),
        ("rechazado", "cancelado", False),
        ("cancelado", "borrador", False),
    ],
)
def test_structural_transition_table(from_status, to_status, expected):
    assert can_transition(from_status, to_status) is expected


def test_role_table():
    assert allowed_roles_for("en_revision", "aprobado_para_templates") == AUDIT_ROLES
    assert allowed_roles_for("en_revision", "rechazado") == AUDIT_ROLES
    assert allowed_roles_for("firmado", "completado") == ADMIN_ROLES
    assert allowed_roles_for("enviado", "cancelado") == ADMIN_ROLES
    assert allowed_roles_for("borrador", "cancelado") == SALES_ROLES
    assert allowed_roles_for("borrador", "preparando_documentos") == SALES_ROLES
    assert "vendedor" not in AUDIT_ROLES


def test_available_transitions_filters_by_role():
    auditor = available_transitions("en_revision", "auditor")
    assert auditor == ["aprobado_para_templates", "rechazado"]

    vendedor = available_transitions("en_revision", "vendedor")
    assert "aprobado_para_templates" not in vendedor
    assert "listo_para_enviar" in vendedor
    assert "cancelado" in vendedor
    assert "completado" not in vendedor

    assert available_transitions("completado") == []
