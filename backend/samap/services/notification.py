from __future__ import annotations

import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import parseaddr
from pathlib import Path
from typing import Any, Optional
from uuid import UUID

import httpx
from jinja2 import Environment, FileSystemLoader, TemplateNotFound, select_autoescape
from sqlmodel import Session
from twilio.base.exceptions import TwilioException
from twilio.rest import Client

from samap.core.errors import UpstreamFailure
from samap.core.logging_setup import logger
from samap.models.notification import NotificationChannel, NotificationLog, NotificationStatus


@dataclass
class EmailConfig:
    host: str
    port: int
    username: str | None
    password: str | None
    sender: str
    starttls: bool


@dataclass
class SendGridConfig:
    api_key: str
    sender: str | None


@dataclass
class SMSConfig:
    account_sid: str
    auth_token: str
    from_number: str | None
    messaging_service_sid: str | None
    whatsapp_from: str | None = None


SUBJECTS: dict[str, str] = {
    "signature_request": "Firma pendiente: {plan_name}",
    "signature_reminder": "Recordatorio: su enlace de firma vence pronto",
    "questionnaire_request": "Complete su declaración jurada",
}


class NotificationService:
    """Despacho de notificaciones por e-mail, SMS o WhatsApp.

    Cada intento deja una fila en `notification_logs`. Si la entrega falla se
    lanza `UpstreamFailure` después de registrar el error; quien llama decide
    si eso afecta su propio resultado.
    """

    def __init__(
        self,
        session: Session,
        email_config: Optional[EmailConfig] = None,
        sms_config: Optional[SMSConfig] = None,
        sendgrid_config: Optional[SendGridConfig] = None,
        email_backend: str = "smtp",
        template_root: Path | None = None,
    ) -> None:
        self.session = session
        self.email_config = email_config
        self.sms_config = sms_config
        self.sendgrid_config = sendgrid_config
        normalized_backend = (email_backend or "smtp").strip().lower()
        self.email_backend = normalized_backend if normalized_backend in {"smtp", "sendgrid"} else "smtp"
        if self.sendgrid_config and self.email_backend != "sendgrid":
            self.email_backend = "sendgrid"
        self.template_root = template_root or Path(__file__).resolve().parent.parent / "templates"
        self.template_env = Environment(
            loader=FileSystemLoader(self.template_root),
            autoescape=select_autoescape(["html", "xml"]),
        )

    @classmethod
    def from_settings(cls, session: Session, settings) -> "NotificationService":  # type: ignore[no-untyped-def]
        service = cls(session)
        service.apply_email_settings(settings)
        if settings.twilio_account_sid and settings.twilio_auth_token:
            service.configure_sms(
                account_sid=settings.twilio_account_sid,
                auth_token=settings.twilio_auth_token,
                from_number=settings.twilio_from_number,
                messaging_service_sid=settings.twilio_messaging_service_sid,
                whatsapp_from=settings.twilio_whatsapp_from,
            )
        return service

    def apply_email_settings(self, settings) -> None:  # type: ignore[no-untyped-def]
        preferred = (getattr(settings, "email_backend", "smtp") or "smtp").strip().lower()
        sender = getattr(settings, "smtp_sender", None)
        sendgrid_key = getattr(settings, "sendgrid_api_key", None)
        smtp_host = getattr(settings, "smtp_host", None)
        smtp_port = getattr(settings, "smtp_port", None)

        def use_sendgrid() -> bool:
            if sendgrid_key and sender:
                self.configure_sendgrid(api_key=sendgrid_key, sender=sender)
                return True
            return False

        def use_smtp() -> bool:
            if smtp_host and sender and smtp_port:
                self.configure_email(
                    host=smtp_host,
                    port=int(smtp_port),
                    sender=sender,
                    username=getattr(settings, "smtp_username", None),
                    password=getattr(settings, "smtp_password", None),
                    starttls=bool(getattr(settings, "smtp_starttls", True)),
                )
                return True
            return False

        if preferred == "sendgrid":
            if not use_sendgrid():
                use_smtp()
            return
        if not use_smtp():
            use_sendgrid()

    def configure_email(
        self,
        host: str,
        port: int,
        sender: str,
        username: str | None = None,
        password: str | None = None,
        starttls: bool = True,
    ) -> None:
        self.email_config = EmailConfig(
            host=host,
            port=port,
            username=username,
            password=password,
            sender=sender,
            starttls=starttls,
        )
        self.email_backend = "smtp"

    def configure_sendgrid(self, *, api_key: str, sender: str | None = None) -> None:
        self.sendgrid_config = SendGridConfig(api_key=api_key, sender=sender)
        self.email_backend = "sendgrid"

    def configure_sms(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str | None = None,
        messaging_service_sid: str | None = None,
        whatsapp_from: str | None = None,
    ) -> None:
        self.sms_config = SMSConfig(
            account_sid=account_sid,
            auth_token=auth_token,
            from_number=from_number,
            messaging_service_sid=messaging_service_sid,
            whatsapp_from=whatsapp_from,
        )

    # Despacho ---------------------------------------------------------------
    def dispatch(
        self,
        *,
        channel: str,
        recipient: str | None,
        template_name: str,
        template_data: dict[str, Any],
        sale_id: UUID | None = None,
        company_id: UUID | None = None,
    ) -> NotificationLog:
        normalized_channel = (channel or NotificationChannel.EMAIL.value).strip().lower()
        error: str | None = None
        status = NotificationStatus.SENT.value

        if normalized_channel not in {item.value for item in NotificationChannel}:
            status, error = NotificationStatus.SKIPPED.value, "unsupported_channel"
        elif not recipient:
            status, error = NotificationStatus.SKIPPED.value, "missing_recipient"
        else:
            try:
                self._deliver(normalized_channel, recipient, template_name, template_data)
            except (RuntimeError, ValueError) as exc:
                status, error = NotificationStatus.SKIPPED.value, str(exc)
            except (TwilioException, httpx.HTTPError, smtplib.SMTPException, OSError) as exc:
                status, error = NotificationStatus.FAILED.value, str(exc)

        log = NotificationLog(
            sale_id=sale_id,
            company_id=company_id,
            channel=normalized_channel,
            recipient=recipient,
            template_name=template_name,
            template_data=_jsonable(template_data),
            status=status,
            error_message=error,
        )
        self.session.add(log)
        self.session.flush()

        if status != NotificationStatus.SENT.value:
            logger.warning(
                "Notificación %s por %s no entregada (venta %s): %s",
                template_name,
                normalized_channel,
                sale_id,
                error,
            )
            raise UpstreamFailure(
                f"No se pudo enviar la notificación: {error}",
                details={"notification_id": str(log.id), "channel": normalized_channel},
            )
        return log

    def _deliver(self, channel: str, recipient: str, template_name: str, data: dict[str, Any]) -> None:
        text_body = self._render(f"text/{template_name}.txt", data)
        if channel == NotificationChannel.EMAIL.value:
            subject = SUBJECTS.get(template_name, "SAMAP").format_map(_SafeDict(data))
            html_body = self._render(f"email/{template_name}.html", data)
            self._send_email(to=recipient, subject=subject, html_body=html_body, text_body=text_body)
            return
        self._send_twilio(channel=channel, to=recipient, body=text_body)

    def _render(self, template_name: str, context: dict[str, Any]) -> str:
        try:
            template = self.template_env.get_template(template_name)
        except TemplateNotFound as exc:
            raise ValueError(f"Template de notificación inexistente: {template_name}") from exc
        return template.render(**context)

    def _send_twilio(self, *, channel: str, to: str, body: str) -> None:
        if not self.sms_config:
            raise RuntimeError("SMS sender not configured")
        client = Client(self.sms_config.account_sid, self.sms_config.auth_token)
        message_kwargs: dict[str, str] = {"body": body}
        if channel == NotificationChannel.WHATSAPP.value:
            if not self.sms_config.whatsapp_from:
                raise RuntimeError("WhatsApp sender not configured")
            message_kwargs["to"] = f"whatsapp:{to}"
            message_kwargs["from_"] = f"whatsapp:{self.sms_config.whatsapp_from}"
        else:
            message_kwargs["to"] = to
            if self.sms_config.messaging_service_sid:
                message_kwargs["messaging_service_sid"] = self.sms_config.messaging_service_sid
            elif self.sms_config.from_number:
                message_kwargs["from_"] = self.sms_config.from_number
            else:
                raise RuntimeError("SMS sender not configured")
        client.messages.create(**message_kwargs)

    def _send_email(self, *, to: str, subject: str, html_body: str, text_body: str | None = None) -> None:
        if self.email_backend == "sendgrid":
            self._send_email_via_sendgrid(to=to, subject=subject, html_body=html_body, text_body=text_body)
            return

        if not self.email_config:
            raise RuntimeError("Email sender not configured")

        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = self.email_config.sender
        message["To"] = to
        message.set_content(text_body or "", subtype="plain", charset="utf-8")
        message.add_alternative(html_body, subtype="html", charset="utf-8")

        with smtplib.SMTP(self.email_config.host, self.email_config.port, timeout=30) as smtp:
            if self.email_config.starttls:
                smtp.starttls()
            if self.email_config.username and self.email_config.password:
                smtp.login(self.email_config.username, self.email_config.password)
            smtp.send_message(message)

    def _send_email_via_sendgrid(
        self,
        *,
        to: str,
        subject: str,
        html_body: str,
        text_body: str | None,
    ) -> None:
        if not self.sendgrid_config:
            raise RuntimeError("SendGrid sender not configured")
        sender = self.sendgrid_config.sender or (self.email_config.sender if self.email_config else None)
        if not sender:
            raise RuntimeError("SendGrid sender address missing")
        name, email = parseaddr(sender)
        if not email:
            raise RuntimeError("SendGrid sender address invalid")

        contents: list[dict[str, str]] = []
        if text_body:
            contents.append({"type": "text/plain", "value": text_body})
        contents.append({"type": "text/html", "value": html_body})
        sender_payload: dict[str, str] = {"email": email}
        if name:
            sender_payload["name"] = name

        response = httpx.post(
            "https://api.sendgrid.com/v3/mail/send",
            headers={
                "Authorization": f"Bearer {self.sendgrid_config.api_key}",
                "Content-Type": "application/json",
            },
            json={
                "personalizations": [{"to": [{"email": to}]}],
                "from": sender_payload,
                "subject": subject,
                "content": contents,
            },
            timeout=30,
        )
        response.raise_for_status()


class _SafeDict(dict):
    def __missing__(self, key: str) -> str:
        return ""


def _jsonable(data: dict[str, Any]) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for key, value in (data or {}).items():
        if isinstance(value, (str, int, float, bool)) or value is None:
            result[key] = value
        else:
            result[key] = str(value)
    return result
