from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from samap.models.sale import SaleStatus
from samap.schemas.common import IDModel, PageInfo, Timestamped


class SaleCreate(BaseModel):
    client_id: UUID | None = None
    plan_id: UUID | None = None
    template_id: UUID | None = None
    contract_number: str | None = Field(default=None, max_length=64)


class SaleRead(IDModel, Timestamped):
    company_id: UUID
    client_id: UUID | None
    plan_id: UUID | None
    template_id: UUID | None
    salesperson_id: UUID | None
    contract_number: str | None
    status: SaleStatus
    signature_expires_at: datetime | None


class SaleTransitionRequest(BaseModel):
    to_status: SaleStatus
    comment: str | None = Field(default=None, max_length=2000)

    @field_validator("comment")
    @classmethod
    def strip_comment(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None


class TemplateSelection(BaseModel):
    template_id: UUID


class WorkflowStepRead(BaseModel):
    key: str
    label: str
    description: str
    state: str


class ProcessTraceRead(IDModel):
    action: str
    label: str
    details: dict[str, Any]
    created_by: UUID | None
    client_action: bool
    created_at: datetime


class SaleProgressRead(BaseModel):
    sale_id: UUID
    current_status: SaleStatus
    is_rejected: bool
    is_cancelled: bool
    steps: list[WorkflowStepRead]
    traces: list[ProcessTraceRead]
    available_transitions: list[SaleStatus] = []


class ProcessTracePage(PageInfo):
    items: list[ProcessTraceRead]


class SaleReadiness(BaseModel):
    sale_id: UUID
    has_template: bool
    questionnaire_responses: int
    ready_for_signature: bool
    next_action: str
