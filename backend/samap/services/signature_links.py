from __future__ import annotations

import math
import secrets
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Mapping
from uuid import UUID

from sqlalchemy import update
from sqlmodel import Session, select

from samap.core.config import settings
from samap.core.errors import Expired, NotFound, PreconditionFailed, UpstreamFailure, VersionConflict
from samap.core.logging_setup import logger
from samap.models.document import Document, DocumentPackageItem, DocumentStatus
from samap.models.sale import Client, Plan, Sale, SaleStatus, TemplateResponse
from samap.models.signature import RecipientType, SignatureLink, SignatureLinkPurpose, SignatureLinkStatus
from samap.services.gate import QUESTIONNAIRE_PENDING_MESSAGE, ready_for_signature
from samap.services.notification import NotificationService
from samap.services.signature_provider import SignatureProviderClient
from samap.services.trace import ProcessTraceService, TraceAction
from samap.services.workflow import STATUS_ORDER, SYSTEM_ACTOR, Actor, WorkflowService, is_terminal
from samap.utils.clock import utcnow

ACTIVE_LINK_STATUSES = (SignatureLinkStatus.PENDIENTE.value, SignatureLinkStatus.VISUALIZADO.value)


def generate_token() -> str:
    return secrets.token_urlsafe(32)


def accepts_signature_links(status: str) -> bool:
    """Las ventas cerradas o ya firmadas no reciben enlaces nuevos ni reenvíos."""
    if is_terminal(status):
        return False
    return STATUS_ORDER.get(status, -1) <= STATUS_ORDER[SaleStatus.ENVIADO.value]


def build_link_url(link: SignatureLink) -> str:
    base = settings.resolved_public_app_url()
    if link.purpose == SignatureLinkPurpose.CUESTIONARIO.value:
        return f"{base}/questionnaire/{link.token}"
    return f"{base}/signature/{link.token}"


class SignatureLinkService:
    """Ciclo de vida de los enlaces de firma y de cuestionario.

    El token es la única credencial del cliente. Regenerar un enlace reescribe
    el token en la misma fila, protegido por el contador `version`.
    """

    def __init__(
        self,
        session: Session,
        *,
        notifier: NotificationService | None = None,
        workflow: WorkflowService | None = None,
        provider: SignatureProviderClient | None = None,
        expiration_days: int | None = None,
    ) -> None:
        self.session = session
        self.traces = ProcessTraceService(session)
        self.workflow = workflow or WorkflowService(session, self.traces)
        self.notifier = notifier or NotificationService.from_settings(session, settings)
        self._provider = provider
        self.expiration_days = expiration_days or settings.signature_link_expiration_days

    @property
    def provider(self) -> SignatureProviderClient:
        if self._provider is None:
            self._provider = SignatureProviderClient()
        return self._provider

    # Consultas --------------------------------------------------------------
    def get_link(self, link_id: UUID) -> SignatureLink:
        link = self.session.get(SignatureLink, link_id)
        if not link:
            raise NotFound("Enlace no encontrado")
        return link

    def list_for_sale(self, sale_id: UUID) -> list[SignatureLink]:
        return list(
            self.session.exec(
                select(SignatureLink)
                .where(SignatureLink.sale_id == sale_id)
                .order_by(SignatureLink.created_at)
            ).all()
        )

    def _find_by_token(self, token: str) -> SignatureLink:
        link = self.session.exec(select(SignatureLink).where(SignatureLink.token == token)).first()
        if not link:
            raise NotFound("Enlace no encontrado")
        return link

    def _find_active(self, sale_id: UUID, purpose: str, recipient_type: str, recipient_id: UUID | None) -> SignatureLink | None:
        query = (
            select(SignatureLink)
            .where(SignatureLink.sale_id == sale_id)
            .where(SignatureLink.purpose == purpose)
            .where(SignatureLink.recipient_type == recipient_type)
            .where(SignatureLink.status.in_(ACTIVE_LINK_STATUSES))
        )
        if recipient_id is None:
            query = query.where(SignatureLink.recipient_id.is_(None))
        else:
            query = query.where(SignatureLink.recipient_id == recipient_id)
        return self.session.exec(query).first()

    def _get_sale(self, sale_id: UUID, company_id: UUID | None = None) -> Sale:
        return self.workflow.get_sale(sale_id, company_id)

    # Emisión ----------------------------------------------------------------
    def issue(
        self,
        sale_id: UUID,
        *,
        actor: Actor,
        recipient_type: str = RecipientType.TITULAR.value,
        recipient_id: UUID | None = None,
        recipient_name: str | None = None,
        recipient_email: str | None = None,
        recipient_phone: str | None = None,
        package_id: UUID | None = None,
        channel: str = "email",
        expiration_days: int | None = None,
        now: datetime | None = None,
    ) -> SignatureLink:
        now = now or utcnow()
        sale = self._get_sale(sale_id, actor.company_id)
        if not accepts_signature_links(sale.status):
            raise PreconditionFailed(
                "La venta está cerrada o firmada y no admite nuevos enlaces de firma",
                details={"status": sale.status},
            )
        if not ready_for_signature(self.session, sale):
            raise PreconditionFailed(QUESTIONNAIRE_PENDING_MESSAGE, details={"next_action": "questionnaire"})

        recipient = self._resolve_recipient(
            sale,
            recipient_type=recipient_type,
            recipient_id=recipient_id,
            name=recipient_name,
            email=recipient_email,
            phone=recipient_phone,
        )
        days = expiration_days or self.expiration_days
        link = self._issue_link(
            sale,
            purpose=SignatureLinkPurpose.FIRMA.value,
            recipient=recipient,
            actor=actor,
            package_id=package_id,
            days=days,
            now=now,
        )
        self._mirror_titular(sale, link)

        advanced = self.workflow.advance_to(
            sale,
            SaleStatus.ENVIADO.value,
            actor=replace(actor, system=True),
            details={"link_id": str(link.id), "recipient_type": link.recipient_type},
            commit=False,
        )
        if not advanced:
            self.traces.record(
                sale.id,
                TraceAction.ENLACE_FIRMA_CREADO,
                created_by=actor.user_id,
                details={"link_id": str(link.id), "recipient_type": link.recipient_type},
            )
        self.session.commit()
        self.session.refresh(link)
        logger.info("Enlace de firma %s emitido para la venta %s (%s)", link.id, sale.id, link.recipient_type)

        self._notify(link, sale, "signature_request", channel=channel)
        return link

    def issue_questionnaire(
        self,
        sale_id: UUID,
        *,
        actor: Actor,
        channel: str = "email",
        expiration_days: int | None = None,
        now: datetime | None = None,
    ) -> SignatureLink:
        now = now or utcnow()
        sale = self._get_sale(sale_id, actor.company_id)
        if is_terminal(sale.status):
            raise PreconditionFailed("La venta está cerrada", details={"status": sale.status})
        if sale.template_id is None:
            raise PreconditionFailed("La venta no tiene template; no hay cuestionario que completar")
        if sale.client_id is None:
            raise PreconditionFailed("La venta no tiene cliente asignado")

        recipient = self._resolve_recipient(sale, recipient_type=RecipientType.TITULAR.value)
        link = self._issue_link(
            sale,
            purpose=SignatureLinkPurpose.CUESTIONARIO.value,
            recipient=recipient,
            actor=actor,
            package_id=None,
            days=expiration_days or self.expiration_days,
            now=now,
        )
        self.traces.record(
            sale.id,
            TraceAction.ESTADO_ACTUALIZADO,
            created_by=actor.user_id,
            details={"link_id": str(link.id), "purpose": link.purpose, "event": "cuestionario_enviado"},
        )
        self.session.commit()
        self.session.refresh(link)
        logger.info("Enlace de cuestionario %s emitido para la venta %s", link.id, sale.id)

        self._notify(link, sale, "questionnaire_request", channel=channel)
        return link

    def _issue_link(
        self,
        sale: Sale,
        *,
        purpose: str,
        recipient: Mapping[str, Any],
        actor: Actor,
        package_id: UUID | None,
        days: int,
        now: datetime,
    ) -> SignatureLink:
        existing = self._find_active(sale.id, purpose, recipient["recipient_type"], recipient["recipient_id"])
        if existing is not None:
            self._rewrite_token(existing, expected_version=existing.version, days=days, now=now)
            for key, value in recipient.items():
                setattr(existing, key, value)
            if package_id is not None:
                existing.package_id = package_id
            self.session.add(existing)
            self.session.flush()
            return existing

        link = SignatureLink(
            sale_id=sale.id,
            package_id=package_id,
            purpose=purpose,
            token=generate_token(),
            status=SignatureLinkStatus.PENDIENTE.value,
            issued_at=now,
            expires_at=now + timedelta(days=days),
            access_count=0,
            created_by=actor.user_id,
            **recipient,
        )
        self.session.add(link)
        self.session.flush()
        return link

    def _resolve_recipient(
        self,
        sale: Sale,
        *,
        recipient_type: str,
        recipient_id: UUID | None = None,
        name: str | None = None,
        email: str | None = None,
        phone: str | None = None,
    ) -> dict[str, Any]:
        if recipient_type not in {item.value for item in RecipientType}:
            raise PreconditionFailed(f"Tipo de destinatario inválido: {recipient_type}")
        if recipient_type == RecipientType.ADHERENTE.value:
            if recipient_id is None or not name:
                raise PreconditionFailed("Los enlaces de adherente requieren beneficiario y nombre")
            return {
                "recipient_type": recipient_type,
                "recipient_id": recipient_id,
                "recipient_name": name,
                "recipient_email": email,
                "recipient_phone": phone,
            }

        client = self.session.get(Client, sale.client_id) if sale.client_id else None
        return {
            "recipient_type": recipient_type,
            "recipient_id": None,
            "recipient_name": name or (client.full_name if client else None),
            "recipient_email": email or (client.email if client else None),
            "recipient_phone": phone or (client.phone if client else None),
        }

    def _mirror_titular(self, sale: Sale, link: SignatureLink) -> None:
        if link.purpose != SignatureLinkPurpose.FIRMA.value or link.recipient_type != RecipientType.TITULAR.value:
            return
        sale.signature_token = link.token
        sale.signature_expires_at = link.expires_at
        self.session.add(sale)

    # Acceso público ---------------------------------------------------------
    def resolve(self, token: str, *, purpose: str | None = None, now: datetime | None = None) -> SignatureLink:
        now = now or utcnow()
        link = self._find_by_token(token)
        if purpose is not None and link.purpose != purpose:
            raise NotFound("Enlace no encontrado")
        if link.status == SignatureLinkStatus.REVOCADO.value:
            raise Expired("El enlace fue revocado", details={"reason": link.revoked_reason})
        if now > link.expires_at:
            raise Expired("El enlace expiró", details={"expires_at": link.expires_at.isoformat()})

        link.access_count = (link.access_count or 0) + 1
        link.accessed_at = now
        if link.status == SignatureLinkStatus.PENDIENTE.value:
            link.status = SignatureLinkStatus.VISUALIZADO.value
            self.traces.record(
                link.sale_id,
                TraceAction.ESTADO_ACTUALIZADO,
                client_action=True,
                details={"link_id": str(link.id), "status": link.status},
            )
        self.session.add(link)
        self.session.commit()
        self.session.refresh(link)
        return link

    def complete(
        self,
        token: str,
        *,
        evidence: Mapping[str, Any] | None = None,
        now: datetime | None = None,
    ) -> SignatureLink:
        return self._complete_link(self._find_by_token(token), evidence=evidence, now=now or utcnow())

    def complete_by_provider_document(
        self,
        document_id: str,
        *,
        evidence: Mapping[str, Any] | None = None,
        now: datetime | None = None,
    ) -> SignatureLink:
        link = self.session.exec(
            select(SignatureLink).where(SignatureLink.provider_document_id == document_id)
        ).first()
        if not link:
            raise NotFound("Documento del proveedor desconocido", details={"document_id": document_id})
        return self._complete_link(link, evidence=evidence, now=now or utcnow())

    def _complete_link(
        self,
        link: SignatureLink,
        *,
        evidence: Mapping[str, Any] | None,
        now: datetime,
    ) -> SignatureLink:
        if link.status == SignatureLinkStatus.REVOCADO.value:
            raise PreconditionFailed("No se puede completar un enlace revocado")
        if link.status == SignatureLinkStatus.COMPLETADO.value:
            return link

        link.status = SignatureLinkStatus.COMPLETADO.value
        link.completed_at = now
        link.evidence = dict(evidence or {})
        link.version = (link.version or 1) + 1
        link.updated_at = now
        self.session.add(link)

        signed_documents = self._mark_documents_signed(link, now)
        self.traces.record(
            link.sale_id,
            TraceAction.ESTADO_ACTUALIZADO,
            client_action=True,
            details={
                "link_id": str(link.id),
                "status": link.status,
                "recipient_type": link.recipient_type,
                "documents": signed_documents,
            },
        )
        self.session.flush()

        self._advance_if_fully_signed(self.session.get(Sale, link.sale_id), link)
        self.session.commit()
        self.session.refresh(link)
        logger.info("Enlace %s completado (venta %s)", link.id, link.sale_id)
        return link

    def _mark_documents_signed(self, link: SignatureLink, now: datetime) -> int:
        if link.purpose != SignatureLinkPurpose.FIRMA.value:
            return 0
        query = select(Document).where(Document.sale_id == link.sale_id)
        if link.recipient_type == RecipientType.ADHERENTE.value:
            query = query.where(Document.beneficiary_id == link.recipient_id)
        else:
            query = query.where(Document.beneficiary_id.is_(None))
        if link.package_id is not None:
            query = query.join(DocumentPackageItem, DocumentPackageItem.document_id == Document.id).where(
                DocumentPackageItem.package_id == link.package_id
            )
        count = 0
        for document in self.session.exec(query).all():
            if document.status == DocumentStatus.FIRMADO.value:
                continue
            document.status = DocumentStatus.FIRMADO.value
            document.signed_at = now
            document.updated_at = now
            self.session.add(document)
            count += 1
        return count

    def _all_signing_links_completed(self, sale_id: UUID) -> bool:
        links = self.session.exec(
            select(SignatureLink)
            .where(SignatureLink.sale_id == sale_id)
            .where(SignatureLink.purpose == SignatureLinkPurpose.FIRMA.value)
            .where(SignatureLink.status != SignatureLinkStatus.REVOCADO.value)
        ).all()
        return bool(links) and all(item.status == SignatureLinkStatus.COMPLETADO.value for item in links)

    def _advance_if_fully_signed(self, sale: Sale | None, link: SignatureLink) -> bool:
        if sale is None or not self._all_signing_links_completed(sale.id):
            return False
        advanced = self.workflow.advance_to(
            sale,
            SaleStatus.FIRMADO.value,
            actor=SYSTEM_ACTOR,
            details={"link_id": str(link.id)},
            commit=False,
        )
        sale.signature_token = None
        sale.signature_expires_at = None
        self.session.add(sale)
        return advanced

    # Gestión ----------------------------------------------------------------
    def revoke(
        self,
        link_id: UUID,
        *,
        actor: Actor,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> SignatureLink:
        now = now or utcnow()
        link = self.get_link(link_id)
        self._get_sale(link.sale_id, actor.company_id)
        if link.status == SignatureLinkStatus.COMPLETADO.value:
            raise PreconditionFailed("No se puede revocar un enlace completado")
        if link.status == SignatureLinkStatus.REVOCADO.value:
            return link

        link.status = SignatureLinkStatus.REVOCADO.value
        link.expires_at = now
        link.revoked_reason = reason
        link.version = (link.version or 1) + 1
        link.updated_at = now
        self.session.add(link)

        sale = self.session.get(Sale, link.sale_id)
        if sale is not None and sale.signature_token == link.token:
            sale.signature_token = None
            sale.signature_expires_at = None
            self.session.add(sale)

        self.traces.record(
            link.sale_id,
            TraceAction.ESTADO_ACTUALIZADO,
            created_by=actor.user_id,
            details={"link_id": str(link.id), "status": link.status, "reason": reason},
        )
        self.session.flush()
        # Revocar el último enlace pendiente deja firmados a todos los restantes
        self._advance_if_fully_signed(sale, link)
        self.session.commit()
        self.session.refresh(link)
        logger.info("Enlace %s revocado: %s", link.id, reason or "sin motivo")
        return link

    def resend(
        self,
        link_id: UUID,
        *,
        actor: Actor,
        expected_version: int | None = None,
        channel: str = "email",
        now: datetime | None = None,
    ) -> SignatureLink:
        now = now or utcnow()
        link = self.get_link(link_id)
        sale = self._get_sale(link.sale_id, actor.company_id)
        if link.status not in ACTIVE_LINK_STATUSES:
            raise PreconditionFailed(
                "Solo se pueden reenviar enlaces pendientes o visualizados",
                details={"status": link.status},
            )
        if not accepts_signature_links(sale.status):
            raise PreconditionFailed("La venta está cerrada o firmada", details={"status": sale.status})

        self._rewrite_token(
            link,
            expected_version=link.version if expected_version is None else expected_version,
            days=self.expiration_days,
            now=now,
        )
        self._mirror_titular(sale, link)
        self.traces.record(
            sale.id,
            TraceAction.ESTADO_ACTUALIZADO,
            created_by=actor.user_id,
            details={
                "link_id": str(link.id),
                "reenvio": True,
                "expires_at": link.expires_at.isoformat(),
            },
        )
        self.session.commit()
        self.session.refresh(link)
        logger.info("Enlace %s regenerado; vence %s", link.id, link.expires_at)

        template_name = (
            "questionnaire_request"
            if link.purpose == SignatureLinkPurpose.CUESTIONARIO.value
            else "signature_request"
        )
        self._notify(link, sale, template_name, channel=channel)
        return link

    def _rewrite_token(self, link: SignatureLink, *, expected_version: int, days: int, now: datetime) -> None:
        result = self.session.connection().execute(
            update(SignatureLink)
            .where(SignatureLink.id == link.id)
            .where(SignatureLink.version == expected_version)
            .values(
                token=generate_token(),
                issued_at=now,
                expires_at=now + timedelta(days=days),
                status=SignatureLinkStatus.PENDIENTE.value,
                reminder_sent_at=None,
                error_message=None,
                version=expected_version + 1,
                updated_at=now,
            )
        )
        if result.rowcount == 0:
            self.session.rollback()
            raise VersionConflict(
                "El enlace fue modificado por otra operación",
                details={"link_id": str(link.id), "expected_version": expected_version},
            )
        self.session.refresh(link)

    # Cuestionario -----------------------------------------------------------
    def submit_questionnaire(
        self,
        token: str,
        answers: Mapping[str, Any],
        *,
        now: datetime | None = None,
    ) -> SignatureLink:
        now = now or utcnow()
        link = self._find_by_token(token)
        if link.purpose != SignatureLinkPurpose.CUESTIONARIO.value:
            raise NotFound("Enlace no encontrado")
        if link.status == SignatureLinkStatus.COMPLETADO.value:
            raise PreconditionFailed("El cuestionario ya fue completado")
        if link.status == SignatureLinkStatus.REVOCADO.value:
            raise Expired("El enlace fue revocado")
        if now > link.expires_at:
            raise Expired("El enlace expiró", details={"expires_at": link.expires_at.isoformat()})
        if not answers:
            raise PreconditionFailed("Debe responder al menos una pregunta")

        sale = self.session.get(Sale, link.sale_id)
        if sale is None or sale.client_id is None or sale.template_id is None:
            raise PreconditionFailed("La venta no tiene cliente o template asignado")

        for question_key, value in answers.items():
            self.session.add(
                TemplateResponse(
                    client_id=sale.client_id,
                    template_id=sale.template_id,
                    sale_id=sale.id,
                    question_key=str(question_key),
                    response_value=None if value is None else str(value),
                )
            )

        link.status = SignatureLinkStatus.COMPLETADO.value
        link.completed_at = now
        link.accessed_at = now
        link.evidence = {"answers": len(answers)}
        link.version = (link.version or 1) + 1
        link.updated_at = now
        self.session.add(link)
        self.traces.record(
            sale.id,
            TraceAction.DDJJ_COMPLETADA,
            client_action=True,
            details={"link_id": str(link.id), "answers": len(answers)},
        )
        self.session.commit()
        self.session.refresh(link)
        logger.info("Cuestionario completado para la venta %s (%s respuestas)", sale.id, len(answers))
        return link

    # Notificaciones ---------------------------------------------------------
    def send_reminder(self, link: SignatureLink, *, now: datetime, channel: str = "email") -> SignatureLink:
        sale = self.session.get(Sale, link.sale_id)
        if sale is None:
            raise NotFound("Venta no encontrada")
        hours_left = max(0, math.ceil((link.expires_at - now).total_seconds() / 3600))
        if not self._notify(link, sale, "signature_reminder", channel=channel, extra={"hours_left": hours_left}):
            raise UpstreamFailure(link.error_message or "No se pudo enviar el recordatorio")
        link.reminder_sent_at = now
        self.session.add(link)
        self.session.commit()
        return link

    def _template_data(self, link: SignatureLink, sale: Sale) -> dict[str, Any]:
        plan = self.session.get(Plan, sale.plan_id) if sale.plan_id else None
        return {
            "client_name": link.recipient_name or "",
            "plan_name": plan.name if plan else "",
            "contract_number": sale.contract_number or "",
            "signature_url": build_link_url(link),
            "expires_at": link.expires_at.strftime("%d/%m/%Y %H:%M"),
        }

    def _notify(
        self,
        link: SignatureLink,
        sale: Sale,
        template_name: str,
        *,
        channel: str,
        extra: Mapping[str, Any] | None = None,
    ) -> bool:
        recipient = link.recipient_email if channel == "email" else link.recipient_phone
        data = self._template_data(link, sale)
        if extra:
            data.update(extra)
        try:
            self.notifier.dispatch(
                channel=channel,
                recipient=recipient,
                template_name=template_name,
                template_data=data,
                sale_id=sale.id,
                company_id=sale.company_id,
            )
        except UpstreamFailure as exc:
            link.error_message = exc.message
            self.session.add(link)
            self.session.commit()
            logger.warning("Enlace %s: notificación %s fallida: %s", link.id, template_name, exc.message)
            return False
        link.error_message = None
        self.session.add(link)
        self.session.commit()
        return True

    # Proveedor de firma -----------------------------------------------------
    def send_to_provider(self, link_id: UUID, file_bytes: bytes, name: str, *, actor: Actor) -> SignatureLink:
        link = self.get_link(link_id)
        self._get_sale(link.sale_id, actor.company_id)
        if link.purpose != SignatureLinkPurpose.FIRMA.value or link.status not in ACTIVE_LINK_STATUSES:
            raise PreconditionFailed("Solo se envían al proveedor enlaces de firma activos")
        try:
            result = self.provider.create_document(
                name,
                file_bytes,
                [{"name": link.recipient_name or "", "email": link.recipient_email or ""}],
            )
        except UpstreamFailure as exc:
            link.error_message = exc.message
            self.session.add(link)
            self.session.commit()
            raise
        link.provider_document_id = result.get("document_id")
        link.signing_url = result.get("signing_url")
        link.error_message = None
        self.session.add(link)
        self.session.commit()
        self.session.refresh(link)
        logger.info("Enlace %s enviado al proveedor (documento %s)", link.id, link.provider_document_id)
        return link

    def sync_provider_status(self, link_id: UUID, *, actor: Actor | None = None, now: datetime | None = None) -> SignatureLink:
        link = self.get_link(link_id)
        if actor is not None:
            self._get_sale(link.sale_id, actor.company_id)
        if not link.provider_document_id:
            raise PreconditionFailed("El enlace no tiene documento en el proveedor")
        if link.status == SignatureLinkStatus.COMPLETADO.value:
            return link

        try:
            status = self.provider.get_status(link.provider_document_id)
            if not status.get("completed"):
                return link
            pdf_url = self.provider.get_completed_pdf(link.provider_document_id)
        except UpstreamFailure as exc:
            link.error_message = exc.message
            self.session.add(link)
            self.session.commit()
            raise
        return self._complete_link(
            link,
            evidence={
                "source": "provider_sync",
                "provider_status": status.get("status"),
                "completed_pdf_url": pdf_url,
            },
            now=now or utcnow(),
        )
