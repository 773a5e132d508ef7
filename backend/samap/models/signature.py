from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from sqlalchemy import JSON
from sqlmodel import Field

from samap.models.base import TimestampedModel, UUIDModel


class SignatureLinkStatus(str, Enum):
    PENDIENTE = "pendiente"
    VISUALIZADO = "visualizado"
    COMPLETADO = "completado"
    REVOCADO = "revocado"


class SignatureLinkPurpose(str, Enum):
    FIRMA = "firma"
    CUESTIONARIO = "cuestionario"


class RecipientType(str, Enum):
    TITULAR = "titular"
    ADHERENTE = "adherente"


class SignatureLink(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "signature_links"

    sale_id: UUID = Field(foreign_key="sales.id", index=True)
    package_id: UUID | None = Field(default=None, foreign_key="document_packages.id")
    purpose: str = Field(default=SignatureLinkPurpose.FIRMA.value, max_length=16, index=True)
    token: str = Field(unique=True, index=True, max_length=128)
    recipient_type: str = Field(default=RecipientType.TITULAR.value, max_length=16)
    recipient_id: UUID | None = Field(default=None)
    recipient_name: str | None = Field(default=None, max_length=256)
    recipient_email: str | None = Field(default=None)
    recipient_phone: str | None = Field(default=None, max_length=32)
    status: str = Field(default=SignatureLinkStatus.PENDIENTE.value, max_length=16, index=True)
    issued_at: datetime
    expires_at: datetime = Field(index=True)
    access_count: int = Field(default=0)
    accessed_at: Optional[datetime] = Field(default=None)
    completed_at: Optional[datetime] = Field(default=None)
    evidence: dict | None = Field(default=None, sa_type=JSON)
    revoked_reason: str | None = Field(default=None)
    reminder_sent_at: Optional[datetime] = Field(default=None)
    provider_document_id: str | None = Field(default=None, max_length=128, index=True)
    signing_url: str | None = Field(default=None)
    error_message: str | None = Field(default=None)
    version: int = Field(default=1, nullable=False)
    created_by: UUID | None = Field(default=None)
