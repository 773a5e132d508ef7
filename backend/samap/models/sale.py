from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from sqlmodel import Field

from samap.models.base import TimestampedModel, UUIDModel


class SaleStatus(str, Enum):
    BORRADOR = "borrador"
    PREPARANDO_DOCUMENTOS = "preparando_documentos"
    ESPERANDO_DDJJ = "esperando_ddjj"
    EN_REVISION = "en_revision"
    APROBADO_PARA_TEMPLATES = "aprobado_para_templates"
    LISTO_PARA_ENVIAR = "listo_para_enviar"
    ENVIADO = "enviado"
    FIRMADO = "firmado"
    COMPLETADO = "completado"
    RECHAZADO = "rechazado"
    CANCELADO = "cancelado"


class Client(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "clients"

    company_id: UUID = Field(index=True)
    first_name: str
    last_name: str
    email: str | None = Field(default=None)
    phone: str | None = Field(default=None, max_length=32)
    dni: str | None = Field(default=None, max_length=32)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Plan(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "plans"

    company_id: UUID = Field(index=True)
    name: str
    price: float = Field(default=0.0)
    description: str | None = Field(default=None)
    coverage_details: str | None = Field(default=None)


class Template(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "templates"

    company_id: UUID = Field(index=True)
    name: str
    content: str = Field(default="")
    is_active: bool = Field(default=True)


class TemplateResponse(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "template_responses"

    client_id: UUID = Field(foreign_key="clients.id", index=True)
    template_id: UUID = Field(foreign_key="templates.id", index=True)
    sale_id: UUID | None = Field(default=None, foreign_key="sales.id", index=True)
    question_key: str = Field(max_length=128)
    response_value: str | None = Field(default=None)


class Sale(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "sales"

    company_id: UUID = Field(index=True)
    client_id: UUID | None = Field(default=None, foreign_key="clients.id", index=True)
    plan_id: UUID | None = Field(default=None, foreign_key="plans.id")
    template_id: UUID | None = Field(default=None, foreign_key="templates.id")
    salesperson_id: UUID | None = Field(default=None)
    contract_number: str | None = Field(default=None, max_length=64)
    status: str = Field(default=SaleStatus.BORRADOR.value, max_length=32, index=True)
    # Campos heredados del flujo de token único; reflejan el enlace del titular.
    signature_token: str | None = Field(default=None, index=True)
    signature_expires_at: Optional[datetime] = Field(default=None)
