from uuid import UUID

from sqlalchemy import JSON
from sqlmodel import Field

from samap.models.base import TimestampedModel, UUIDModel


class ProcessTrace(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "process_traces"

    sale_id: UUID | None = Field(default=None, foreign_key="sales.id", index=True)
    action: str = Field(index=True, max_length=64)
    details: dict | None = Field(default_factory=dict, sa_type=JSON)
    created_by: UUID | None = Field(default=None)
    client_action: bool = Field(default=False)
