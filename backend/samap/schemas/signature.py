from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from samap.models.signature import RecipientType, SignatureLinkPurpose, SignatureLinkStatus
from samap.schemas.common import IDModel, Timestamped

Channel = Literal["email", "sms", "whatsapp"]


class SignatureLinkIssue(BaseModel):
    recipient_type: RecipientType = RecipientType.TITULAR
    recipient_id: UUID | None = None
    recipient_name: str | None = Field(default=None, max_length=256)
    recipient_email: EmailStr | None = None
    recipient_phone: str | None = Field(default=None, max_length=32)
    package_id: UUID | None = None
    channel: Channel = "email"
    expiration_days: int | None = Field(default=None, ge=1, le=90)


class QuestionnaireLinkIssue(BaseModel):
    channel: Channel = "email"
    expiration_days: int | None = Field(default=None, ge=1, le=90)


class SignatureLinkRevoke(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class SignatureLinkResend(BaseModel):
    expected_version: int | None = Field(default=None, ge=1)
    channel: Channel = "email"


class SignatureLinkRead(IDModel, Timestamped):
    sale_id: UUID
    package_id: UUID | None
    purpose: SignatureLinkPurpose
    token: str
    url: str | None = None
    recipient_type: RecipientType
    recipient_id: UUID | None
    recipient_name: str | None
    recipient_email: str | None
    recipient_phone: str | None
    status: SignatureLinkStatus
    issued_at: datetime
    expires_at: datetime
    access_count: int
    accessed_at: datetime | None
    completed_at: datetime | None
    reminder_sent_at: datetime | None
    revoked_reason: str | None
    provider_document_id: str | None
    signing_url: str | None
    error_message: str | None
    version: int


class ProviderSendRequest(BaseModel):
    document_id: UUID


class ProviderWebhookPayload(BaseModel):
    """Evento del proveedor de firma. Solo `document_completed` y `document_signed` disparan la finalización."""

    event: str
    document_id: str
    data: dict[str, Any] = Field(default_factory=dict)
