from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from sqlmodel import Field

from samap.models.base import TimestampedModel, UUIDModel


class DocumentStatus(str, Enum):
    PENDIENTE = "pendiente"
    FIRMADO = "firmado"
    VENCIDO = "vencido"


class Document(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "documents"

    sale_id: UUID = Field(foreign_key="sales.id", index=True)
    beneficiary_id: UUID | None = Field(default=None, index=True)
    name: str
    document_type: str = Field(default="contrato", max_length=32)
    status: str = Field(default=DocumentStatus.PENDIENTE.value, max_length=16)
    content: str | None = Field(default=None)
    storage_path: str | None = Field(default=None)
    mime_type: str | None = Field(default=None, max_length=64)
    is_final: bool = Field(default=False)
    signed_at: Optional[datetime] = Field(default=None)


class DocumentPackage(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "document_packages"

    sale_id: UUID = Field(foreign_key="sales.id", index=True)
    name: str
    package_type: str = Field(default="firma_cliente", max_length=32)
    created_by: UUID | None = Field(default=None)


class DocumentPackageItem(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "document_package_items"

    package_id: UUID = Field(foreign_key="document_packages.id", index=True)
    document_id: UUID = Field(foreign_key="documents.id", index=True)
    sort_order: int = Field(default=0)
    is_required: bool = Field(default=True)
