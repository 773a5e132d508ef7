from enum import Enum
from uuid import UUID

from sqlalchemy import JSON
from sqlmodel import Field

from samap.models.base import TimestampedModel, UUIDModel


class NotificationChannel(str, Enum):
    EMAIL = "email"
    SMS = "sms"
    WHATSAPP = "whatsapp"


class NotificationStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


class NotificationLog(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "notification_logs"

    sale_id: UUID | None = Field(default=None, foreign_key="sales.id", index=True)
    company_id: UUID | None = Field(default=None, index=True)
    channel: str = Field(max_length=16)
    recipient: str | None = Field(default=None)
    template_name: str = Field(max_length=64, index=True)
    template_data: dict | None = Field(default_factory=dict, sa_type=JSON)
    status: str = Field(max_length=16)
    error_message: str | None = Field(default=None)
