from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from samap.models.document import DocumentStatus
from samap.schemas.common import IDModel, Timestamped


class DocumentRead(IDModel, Timestamped):
    sale_id: UUID
    beneficiary_id: UUID | None
    name: str
    document_type: str
    status: DocumentStatus
    storage_path: str | None
    mime_type: str | None
    is_final: bool
    signed_at: datetime | None


class DocumentPackageCreate(BaseModel):
    name: str = Field(min_length=1, max_length=256)
    document_ids: list[UUID] = Field(min_length=1)
    package_type: str = Field(default="firma_cliente", max_length=32)
    optional_document_ids: list[UUID] = Field(default_factory=list)


class DocumentPackageItemRead(BaseModel):
    document_id: UUID
    name: str
    sort_order: int
    is_required: bool
    status: DocumentStatus


class DocumentPackageRead(IDModel, Timestamped):
    sale_id: UUID
    name: str
    package_type: str
    status: str
    items: list[DocumentPackageItemRead]


class BulkDocumentsRequest(BaseModel):
    sale_ids: list[UUID] = Field(min_length=1)
