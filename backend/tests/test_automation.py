from __future__ import annotations

import uuid
from datetime import timedelta

from sqlmodel import select

from samap.models.document import Document
from samap.models.sale import Sale, SaleStatus
from samap.models.signature import SignatureLink
from samap.models.trace import ProcessTrace
from samap.services.automation import AutomationService, run_batch
from samap.services.signature_links import SignatureLinkService
from samap.services.storage import LocalStorage
from samap.services.trace import TraceAction

from conftest import NOW, FakeNotifier, make_actor, make_sale

SEVEN_DAYS = timedelta(days=7)


def _link_expiring_at(db_session, company_id, expires_at) -> SignatureLink:
    sale = make_sale(db_session, company_id)
    service = SignatureLinkService(db_session, notifier=FakeNotifier())
    return service.issue(sale.id, actor=make_actor(company_id), now=expires_at - SEVEN_DAYS)


def _automation(db_engine, notifier, **kwargs) -> AutomationService:
    return AutomationService(
        db_engine,
        link_service_factory=lambda session: SignatureLinkService(session, notifier=notifier),
        max_workers=2,
        **kwargs,
    )


def test_reminder_window_includes_23h_and_excludes_25h(db_session, db_engine, company_id, notifier):
    inside = _link_expiring_at(db_session, company_id, NOW + timedelta(hours=23))
    _link_expiring_at(db_session, company_id, NOW + timedelta(hours=25))
    _link_expiring_at(db_session, company_id, NOW - timedelta(hours=1))

    result = _automation(db_engine, notifier).send_reminders(now=NOW)

    assert result == {"successful": 1, "failed": 0, "total": 1}
    assert notifier.templates() == ["signature_reminder"]
    assert notifier.sent[0]["template_data"]["hours_left"] == 23
    db_session.expire_all()
    assert db_session.get(SignatureLink, inside.id).reminder_sent_at == NOW


def test_reminder_window_edges_are_inclusive(db_session, db_engine, company_id, notifier):
    _link_expiring_at(db_session, company_id, NOW + timedelta(hours=24))
    _link_expiring_at(db_session, company_id, NOW)

    result = _automation(db_engine, notifier).send_reminders(now=NOW)

    assert result["total"] == 2


def test_reminders_are_not_repeated_within_a_day(db_session, db_engine, company_id, notifier):
    _link_expiring_at(db_session, company_id, NOW + timedelta(hours=20))
    automation = _automation(db_engine, notifier)

    assert automation.send_reminders(now=NOW)["total"] == 1
    assert automation.send_reminders(now=NOW + timedelta(hours=2))["total"] == 0
    assert len(notifier.sent) == 1


def test_reminders_skip_sales_that_are_no_longer_sent(db_session, db_engine, company_id, notifier):
    link = _link_expiring_at(db_session, company_id, NOW + timedelta(hours=10))
    sale = db_session.get(Sale, link.sale_id)
    sale.status = SaleStatus.CANCELADO.value
    db_session.add(sale)
    db_session.commit()

    assert _automation(db_engine, notifier).send_reminders(now=NOW)["total"] == 0


def test_reminder_failures_are_counted_not_raised(db_session, db_engine, company_id):
    _link_expiring_at(db_session, company_id, NOW + timedelta(hours=5))
    _link_expiring_at(db_session, company_id, NOW + timedelta(hours=6))

    result = _automation(db_engine, FakeNotifier(fail=True)).send_reminders(now=NOW)

    assert result == {"successful": 0, "failed": 2, "total": 2}
    db_session.expire_all()
    links = db_session.exec(select(SignatureLink)).all()
    assert all(link.reminder_sent_at is None for link in links)
    assert all(link.error_message == "smtp caído" for link in links)


def test_resend_expired_window(db_session, db_engine, company_id, notifier):
    recent = _link_expiring_at(db_session, company_id, NOW - timedelta(hours=2))
    old = _link_expiring_at(db_session, company_id, NOW - timedelta(hours=30))
    _link_expiring_at(db_session, company_id, NOW + timedelta(hours=2))
    old_expiry = old.expires_at
    recent_token = recent.token

    result = _automation(db_engine, notifier).resend_expired(now=NOW)

    assert result == {"successful": 1, "failed": 0, "total": 1}
    db_session.expire_all()
    renewed = db_session.get(SignatureLink, recent.id)
    assert renewed.token != recent_token
    assert renewed.expires_at == NOW + SEVEN_DAYS
    assert db_session.get(SignatureLink, old.id).expires_at == old_expiry
    assert notifier.templates() == ["signature_request"]


def test_run_periodic_runs_both_jobs(db_session, db_engine, company_id, notifier):
    _link_expiring_at(db_session, company_id, NOW + timedelta(hours=3))
    _link_expiring_at(db_session, company_id, NOW - timedelta(hours=3))

    result = _automation(db_engine, notifier).run_periodic(now=NOW)

    assert result["reminders"]["total"] == 1
    assert result["resend_expired"]["total"] == 1


def test_jobs_scoped_to_a_company_skip_other_tenants(db_session, db_engine, company_id, notifier):
    other_company = uuid.uuid4()
    own_reminder = _link_expiring_at(db_session, company_id, NOW + timedelta(hours=3))
    foreign_reminder = _link_expiring_at(db_session, other_company, NOW + timedelta(hours=3))
    _link_expiring_at(db_session, company_id, NOW - timedelta(hours=3))
    foreign_expired = _link_expiring_at(db_session, other_company, NOW - timedelta(hours=3))
    foreign_token = foreign_expired.token
    automation = _automation(db_engine, notifier)

    assert automation.find_reminder_candidates(NOW, company_id=company_id) == [own_reminder.id]
    assert automation.send_reminders(now=NOW, company_id=company_id)["total"] == 1
    assert automation.resend_expired(now=NOW, company_id=company_id)["total"] == 1

    db_session.expire_all()
    assert db_session.get(SignatureLink, foreign_reminder.id).reminder_sent_at is None
    assert db_session.get(SignatureLink, foreign_expired.id).token == foreign_token
    assert automation.find_reminder_candidates(NOW) == [foreign_reminder.id]


def test_generate_bulk_documents(db_session, db_engine, company_id, tmp_path):
    with_template = make_sale(db_session, company_id, with_template=True)
    without_template = make_sale(db_session, company_id)
    storage = LocalStorage(base_dir=tmp_path / "docs")

    result = _automation(db_engine, FakeNotifier(), storage=storage).generate_bulk_documents(
        [with_template.id, without_template.id, uuid.uuid4()], now=NOW
    )

    assert result == {"successful": 1, "failed": 2, "total": 3}
    document = db_session.exec(select(Document).where(Document.sale_id == with_template.id)).one()
    assert document.document_type == "contrato"
    assert document.content == "Contrato de Ana Pérez para Plan Integral."
    assert storage.load_bytes(document.storage_path).startswith(b"%PDF")
    trace = db_session.exec(
        select(ProcessTrace)
        .where(ProcessTrace.sale_id == with_template.id)
        .where(ProcessTrace.action == TraceAction.DOCUMENTOS_GENERADOS)
    ).one()
    assert trace.details["document_id"] == str(document.id)


def test_bulk_documents_respect_company_scope(db_session, db_engine, company_id, tmp_path):
    sale = make_sale(db_session, company_id, with_template=True)
    automation = _automation(db_engine, FakeNotifier(), storage=LocalStorage(base_dir=tmp_path))

    result = automation.generate_bulk_documents([sale.id], now=NOW, company_id=uuid.uuid4())

    assert result == {"successful": 0, "failed": 1, "total": 1}


def test_run_batch_isolates_item_failures(db_engine):
    def worker(session, item):
        if item % 2:
            raise RuntimeError(f"falla {item}")
        return item

    result = run_batch(db_engine, [1, 2, 3, 4], worker, max_workers=3, job_name="prueba")

    assert result.as_dict() == {"successful": 2, "failed": 2, "total": 4}


def test_run_batch_with_no_items(db_engine):
    assert run_batch(db_engine, [], lambda session, item: None, max_workers=2, job_name="vacío").total == 0
