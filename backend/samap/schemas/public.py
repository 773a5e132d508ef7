from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from samap.models.signature import RecipientType, SignatureLinkPurpose, SignatureLinkStatus


class PublicSaleSummary(BaseModel):
    sale_id: UUID
    contract_number: str | None
    client_name: str | None
    plan_name: str | None
    plan_price: float | None
    coverage_details: str | None


class PublicLinkRead(BaseModel):
    purpose: SignatureLinkPurpose
    status: SignatureLinkStatus
    recipient_type: RecipientType
    recipient_name: str | None
    expires_at: datetime
    signing_url: str | None
    sale: PublicSaleSummary


class PublicSignatureRead(PublicLinkRead):
    documents: list[dict[str, Any]] = []


class PublicQuestionnaireRead(PublicLinkRead):
    template_name: str | None
    template_content: str | None


class QuestionnaireSubmission(BaseModel):
    answers: dict[str, str | None] = Field(min_length=1)


class QuestionnaireSubmissionResult(BaseModel):
    status: SignatureLinkStatus
    answers: int
    completed_at: datetime | None
