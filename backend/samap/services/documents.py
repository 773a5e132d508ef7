from __future__ import annotations

import io
from datetime import datetime
from html import escape
from typing import Any, Iterable, Sequence
from uuid import UUID

from jinja2 import TemplateError
from jinja2.sandbox import SandboxedEnvironment
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer
from sqlmodel import Session, select

from samap.core.errors import NotFound, PreconditionFailed
from samap.core.logging_setup import logger
from samap.models.document import Document, DocumentPackage, DocumentPackageItem, DocumentStatus
from samap.models.sale import Client, Plan, Sale, Template
from samap.services.storage import StorageBackend, get_storage
from samap.services.trace import ProcessTraceService, TraceAction
from samap.services.workflow import Actor, SYSTEM_ACTOR
from samap.utils.clock import utcnow


def package_status(items: Sequence[tuple[DocumentPackageItem, Document]]) -> str:
    """Estado agregado de un paquete: `pending`, `complete` o `"{firmados}/{total} firmados"`."""
    total = len(items)
    signed = sum(1 for _, document in items if document.status == DocumentStatus.FIRMADO.value)
    if signed == 0:
        return "pending"
    if signed == total:
        return "complete"
    return f"{signed}/{total} firmados"


class DocumentPackageService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def create_package(
        self,
        sale: Sale,
        name: str,
        document_ids: Sequence[UUID],
        *,
        actor: Actor,
        package_type: str = "firma_cliente",
        required: Iterable[UUID] | None = None,
    ) -> DocumentPackage:
        if not document_ids:
            raise PreconditionFailed("El paquete debe incluir al menos un documento")
        documents = self.session.exec(
            select(Document).where(Document.id.in_(list(document_ids)))
        ).all()
        by_id = {document.id: document for document in documents}
        for document_id in document_ids:
            document = by_id.get(document_id)
            if document is None or document.sale_id != sale.id:
                raise NotFound(
                    "Documento no encontrado en la venta",
                    details={"document_id": str(document_id)},
                )

        required_ids = set(required) if required is not None else set(document_ids)
        package = DocumentPackage(
            sale_id=sale.id,
            name=name,
            package_type=package_type,
            created_by=actor.user_id,
        )
        self.session.add(package)
        self.session.flush()
        for index, document_id in enumerate(document_ids):
            self.session.add(
                DocumentPackageItem(
                    package_id=package.id,
                    document_id=document_id,
                    sort_order=index,
                    is_required=document_id in required_ids,
                )
            )
        self.session.commit()
        self.session.refresh(package)
        logger.info("Paquete %s creado para la venta %s (%s documentos)", package.id, sale.id, len(document_ids))
        return package

    def get_package(self, package_id: UUID) -> DocumentPackage:
        package = self.session.get(DocumentPackage, package_id)
        if not package:
            raise NotFound("Paquete no encontrado")
        return package

    def list_items(self, package_id: UUID) -> list[tuple[DocumentPackageItem, Document]]:
        rows = self.session.exec(
            select(DocumentPackageItem, Document)
            .join(Document, Document.id == DocumentPackageItem.document_id)
            .where(DocumentPackageItem.package_id == package_id)
            .order_by(DocumentPackageItem.sort_order)
        ).all()
        return [(item, document) for item, document in rows]

    def list_for_sale(self, sale_id: UUID) -> list[DocumentPackage]:
        return list(
            self.session.exec(
                select(DocumentPackage)
                .where(DocumentPackage.sale_id == sale_id)
                .order_by(DocumentPackage.created_at)
            ).all()
        )

    def delete_package(self, package_id: UUID) -> None:
        package = self.get_package(package_id)
        items = self.session.exec(
            select(DocumentPackageItem).where(DocumentPackageItem.package_id == package.id)
        ).all()
        for item in items:
            self.session.delete(item)
        self.session.flush()
        self.session.delete(package)
        self.session.commit()
        logger.info("Paquete %s eliminado", package_id)


# Generación de contratos ---------------------------------------------------

_template_env = SandboxedEnvironment(autoescape=False)


def render_template_content(content: str, context: dict[str, Any]) -> str:
    try:
        return _template_env.from_string(content or "").render(**context)
    except TemplateError as exc:
        raise PreconditionFailed(f"El template no pudo renderizarse: {exc}") from exc


def build_contract_pdf(title: str, body: str, generated_at: datetime) -> bytes:
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        leftMargin=0.8 * inch,
        rightMargin=0.8 * inch,
        topMargin=1 * inch,
        bottomMargin=0.75 * inch,
    )
    doc.title = title

    styles = getSampleStyleSheet()
    title_style = ParagraphStyle(
        "ContractTitle",
        parent=styles["Heading1"],
        alignment=1,
        fontSize=16,
        leading=19,
        textColor=colors.HexColor("#11284b"),
        spaceAfter=12,
    )
    body_style = ParagraphStyle(
        "ContractBody",
        parent=styles["BodyText"],
        fontSize=10,
        leading=14,
    )
    footer_style = ParagraphStyle(
        "ContractFooter",
        parent=styles["BodyText"],
        fontSize=8,
        textColor=colors.HexColor("#4f5d75"),
        spaceBefore=18,
    )

    story: list[Any] = [Paragraph(escape(title), title_style)]
    for block in body.split("\n\n"):
        text = block.strip()
        if not text:
            continue
        story.append(Paragraph(escape(text).replace("\n", "<br/>"), body_style))
        story.append(Spacer(1, 6))
    story.append(Paragraph(f"Generado el {generated_at:%d/%m/%Y %H:%M} UTC", footer_style))
    doc.build(story)
    return buffer.getvalue()


class ContractGenerator:
    """Genera el contrato PDF de una venta a partir de su template."""

    def __init__(self, session: Session, storage: StorageBackend | None = None) -> None:
        self.session = session
        self.storage = storage or get_storage()
        self.traces = ProcessTraceService(session)

    def generate_for_sale(
        self,
        sale_id: UUID,
        *,
        actor: Actor = SYSTEM_ACTOR,
        now: datetime | None = None,
        company_id: UUID | None = None,
    ) -> Document:
        now = now or utcnow()
        sale = self.session.get(Sale, sale_id)
        if not sale or (company_id is not None and sale.company_id != company_id):
            raise NotFound("Venta no encontrada", details={"sale_id": str(sale_id)})
        if sale.template_id is None:
            raise PreconditionFailed("La venta no tiene template asignado", details={"sale_id": str(sale_id)})
        template = self.session.get(Template, sale.template_id)
        if not template:
            raise PreconditionFailed("Template no encontrado", details={"sale_id": str(sale_id)})
        client = self.session.get(Client, sale.client_id) if sale.client_id else None
        plan = self.session.get(Plan, sale.plan_id) if sale.plan_id else None

        context = {
            "sale": sale,
            "client": client,
            "plan": plan,
            "client_name": client.full_name if client else "",
            "plan_name": plan.name if plan else "",
            "contract_number": sale.contract_number or "",
            "fecha": now.strftime("%d/%m/%Y"),
        }
        body = render_template_content(template.content, context)
        title = f"Contrato {sale.contract_number}" if sale.contract_number else f"Contrato {template.name}"
        pdf_bytes = build_contract_pdf(title, body, now)

        file_name = f"contrato-{now:%Y%m%d%H%M%S}.pdf"
        storage_path = self.storage.save_bytes(root=f"sales/{sale.id}", name=file_name, data=pdf_bytes)

        document = Document(
            sale_id=sale.id,
            name=title,
            document_type="contrato",
            status=DocumentStatus.PENDIENTE.value,
            content=body,
            storage_path=storage_path,
            mime_type="application/pdf",
            is_final=True,
        )
        self.session.add(document)
        self.session.flush()
        self.traces.record(
            sale.id,
            TraceAction.DOCUMENTOS_GENERADOS,
            created_by=actor.user_id,
            details={"document_id": str(document.id), "template_id": str(template.id), "storage_path": storage_path},
        )
        self.session.commit()
        self.session.refresh(document)
        logger.info("Contrato %s generado para la venta %s", document.id, sale.id)
        return document
