from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Sequence, TypeVar
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from samap.core.config import settings
from samap.core.logging_setup import logger
from samap.models.sale import Sale, SaleStatus
from samap.models.signature import SignatureLink, SignatureLinkPurpose
from samap.services.documents import ContractGenerator
from samap.services.signature_links import ACTIVE_LINK_STATUSES, SignatureLinkService
from samap.services.storage import StorageBackend
from samap.services.workflow import SYSTEM_ACTOR
from samap.utils.clock import utcnow

T = TypeVar("T")


@dataclass
class BatchResult:
    successful: int = 0
    failed: int = 0
    total: int = 0

    def as_dict(self) -> dict[str, int]:
        return {"successful": self.successful, "failed": self.failed, "total": self.total}


def run_batch(
    engine: Engine,
    items: Sequence[T],
    worker: Callable[[Session, T], Any],
    *,
    max_workers: int,
    job_name: str,
) -> BatchResult:
    """Ejecuta `worker` por ítem en un pool de hilos, cada uno con su propia sesión.

    Los errores de un ítem se registran y se cuentan; nunca cortan el lote.
    """
    result = BatchResult(total=len(items))
    if not items:
        return result

    def _run(item: T) -> Any:
        with Session(engine) as session:
            return worker(session, item)

    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
        futures = {executor.submit(_run, item): item for item in items}
        for future in as_completed(futures):
            item = futures[future]
            try:
                future.result()
            except Exception as exc:  # noqa: BLE001
                result.failed += 1
                logger.error("[%s] ítem %s falló: %s", job_name, item, exc)
            else:
                result.successful += 1

    logger.info(
        "[%s] procesados=%s exitosos=%s fallidos=%s",
        job_name,
        result.total,
        result.successful,
        result.failed,
    )
    return result


def _signing_links_query(start: datetime, end: datetime, *, include_end: bool, company_id: UUID | None = None):
    query = (
        select(SignatureLink.id)
        .join(Sale, Sale.id == SignatureLink.sale_id)
        .where(SignatureLink.purpose == SignatureLinkPurpose.FIRMA.value)
        .where(SignatureLink.status.in_(ACTIVE_LINK_STATUSES))
        .where(Sale.status == SaleStatus.ENVIADO.value)
        .where(SignatureLink.expires_at >= start)
    )
    if company_id is not None:
        query = query.where(Sale.company_id == company_id)
    if include_end:
        return query.where(SignatureLink.expires_at <= end)
    return query.where(SignatureLink.expires_at < end)


class AutomationService:
    """Trabajos periódicos sobre enlaces y ventas: recordatorios, renovación y contratos en lote."""

    def __init__(
        self,
        engine: Engine,
        *,
        link_service_factory: Callable[[Session], SignatureLinkService] | None = None,
        storage: StorageBackend | None = None,
        max_workers: int | None = None,
        reminder_window_hours: int | None = None,
        resend_grace_hours: int | None = None,
    ) -> None:
        self.engine = engine
        self.link_service_factory = link_service_factory or (lambda session: SignatureLinkService(session))
        self.storage = storage
        self.max_workers = max_workers or settings.automation_max_workers
        self.reminder_window = timedelta(hours=reminder_window_hours or settings.reminder_window_hours)
        self.resend_grace = timedelta(hours=resend_grace_hours or settings.resend_grace_hours)

    def _select_ids(self, query) -> list[UUID]:  # type: ignore[no-untyped-def]
        with Session(self.engine) as session:
            return list(session.exec(query).all())

    def find_reminder_candidates(self, now: datetime, *, company_id: UUID | None = None) -> list[UUID]:
        query = _signing_links_query(now, now + self.reminder_window, include_end=True, company_id=company_id)
        query = query.where(
            or_(
                SignatureLink.reminder_sent_at.is_(None),
                SignatureLink.reminder_sent_at < now - self.reminder_window,
            )
        )
        return self._select_ids(query)

    def find_expired_candidates(self, now: datetime, *, company_id: UUID | None = None) -> list[UUID]:
        query = _signing_links_query(now - self.resend_grace, now, include_end=False, company_id=company_id)
        return self._select_ids(query)

    def send_reminders(self, now: datetime | None = None, *, company_id: UUID | None = None) -> dict[str, int]:
        """Sin `company_id` recorre todas las empresas; así lo invoca el scheduler."""
        now = now or utcnow()
        link_ids = self.find_reminder_candidates(now, company_id=company_id)

        def remind(session: Session, link_id: UUID) -> None:
            service = self.link_service_factory(session)
            service.send_reminder(service.get_link(link_id), now=now)

        return run_batch(self.engine, link_ids, remind, max_workers=self.max_workers, job_name="recordatorios").as_dict()

    def resend_expired(self, now: datetime | None = None, *, company_id: UUID | None = None) -> dict[str, int]:
        now = now or utcnow()
        link_ids = self.find_expired_candidates(now, company_id=company_id)

        def regenerate(session: Session, link_id: UUID) -> None:
            self.link_service_factory(session).resend(link_id, actor=SYSTEM_ACTOR, now=now)

        return run_batch(self.engine, link_ids, regenerate, max_workers=self.max_workers, job_name="reenvio_vencidos").as_dict()

    def generate_bulk_documents(
        self,
        sale_ids: Iterable[UUID],
        now: datetime | None = None,
        *,
        company_id: UUID | None = None,
    ) -> dict[str, int]:
        now = now or utcnow()
        items = list(dict.fromkeys(sale_ids))

        def generate(session: Session, sale_id: UUID) -> None:
            ContractGenerator(session, storage=self.storage).generate_for_sale(sale_id, now=now, company_id=company_id)

        return run_batch(self.engine, items, generate, max_workers=self.max_workers, job_name="documentos_en_lote").as_dict()

    def run_periodic(self, now: datetime | None = None) -> dict[str, dict[str, int]]:
        now = now or utcnow()
        return {
            "reminders": self.send_reminders(now),
            "resend_expired": self.resend_expired(now),
        }
