from __future__ import annotations

import os
import threading
import uuid
from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel, create_engine

import samap.db.base  # noqa: F401
from samap.api.deps import get_db
from samap.core.config import settings
from samap.core.errors import UpstreamFailure
from samap.db import session as db_session_module
from samap.main import app
from samap.models.document import Document
from samap.models.sale import Client, Plan, Sale, Template, TemplateResponse
from samap.services.notification import NotificationService
from samap.services.workflow import Actor, WorkflowService
from samap.utils.security import create_access_token

NOW = datetime(2025, 3, 10, 12, 0, 0)


@pytest.fixture()
def db_engine(tmp_path):
    test_database_url = os.getenv("TEST_DATABASE_URL") or f"sqlite:///{tmp_path / f'test_{uuid.uuid4().hex}.db'}"
    engine = create_engine(test_database_url, connect_args={"check_same_thread": False})
    SQLModel.metadata.create_all(bind=engine)

    original_engine = db_session_module.engine
    db_session_module.engine = engine

    def override_dependency():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_db] = override_dependency

    yield engine

    app.dependency_overrides.pop(get_db, None)
    db_session_module.engine = original_engine
    SQLModel.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def storage_env(monkeypatch, tmp_path):
    storage_dir = tmp_path / "storage"
    storage_dir.mkdir(exist_ok=True)
    monkeypatch.setenv("SAMAP_STORAGE", str(storage_dir))
    yield storage_dir


@pytest.fixture()
def client(db_engine, storage_env) -> TestClient:
    return TestClient(app)


@pytest.fixture()
def db_session(db_engine) -> Session:
    with Session(db_engine) as session:
        yield session


class FakeNotifier:
    """Reemplaza a NotificationService.dispatch y guarda lo que se hubiera enviado."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[dict] = []
        self._lock = threading.Lock()

    def dispatch(self, **kwargs):
        with self._lock:
            self.sent.append(kwargs)
        if self.fail:
            raise UpstreamFailure("smtp caído")
        return None

    def templates(self) -> list[str]:
        return [item["template_name"] for item in self.sent]


@pytest.fixture()
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture()
def sent_notifications(monkeypatch) -> FakeNotifier:
    """Intercepta el despacho real para los tests que pasan por la API."""
    fake = FakeNotifier()
    monkeypatch.setattr(NotificationService, "dispatch", lambda self, **kwargs: fake.dispatch(**kwargs))
    return fake


@pytest.fixture()
def company_id() -> uuid.UUID:
    return uuid.uuid4()


def make_actor(company_id: uuid.UUID, role: str = "vendedor") -> Actor:
    return Actor(user_id=uuid.uuid4(), role=role, company_id=company_id)


def auth_headers(company_id: uuid.UUID, role: str = "vendedor", user_id: uuid.UUID | None = None) -> dict[str, str]:
    token = create_access_token(str(user_id or uuid.uuid4()), role=role, company_id=str(company_id))
    return {"Authorization": f"Bearer {token}"}


def make_client(session: Session, company_id: uuid.UUID, **overrides) -> Client:
    data = {
        "company_id": company_id,
        "first_name": "Ana",
        "last_name": "Pérez",
        "email": "ana@example.com",
        "phone": "+5491155550000",
        "dni": "30111222",
    }
    data.update(overrides)
    record = Client(**data)
    session.add(record)
    session.commit()
    session.refresh(record)
    return record


def make_plan(session: Session, company_id: uuid.UUID, name: str = "Plan Integral") -> Plan:
    record = Plan(company_id=company_id, name=name, price=45000.0, coverage_details="Cobertura total")
    session.add(record)
    session.commit()
    session.refresh(record)
    return record


def make_template(
    session: Session,
    company_id: uuid.UUID,
    content: str = "Contrato de {{ client.first_name }} {{ client.last_name }} para {{ plan.name }}.",
) -> Template:
    record = Template(company_id=company_id, name="DDJJ Salud", content=content)
    session.add(record)
    session.commit()
    session.refresh(record)
    return record


def make_sale(
    session: Session,
    company_id: uuid.UUID,
    *,
    with_template: bool = False,
    status: str | None = None,
) -> Sale:
    client = make_client(session, company_id)
    plan = make_plan(session, company_id)
    template = make_template(session, company_id) if with_template else None
    sale = WorkflowService(session).create_sale(
        company_id,
        actor=make_actor(company_id),
        client_id=client.id,
        plan_id=plan.id,
        template_id=template.id if template else None,
        contract_number=f"C-{uuid.uuid4().hex[:6]}",
    )
    if status is not None:
        sale.status = status
        session.add(sale)
        session.commit()
        session.refresh(sale)
    return sale


def add_response(session: Session, sale: Sale, key: str = "fuma", value: str = "no") -> TemplateResponse:
    response = TemplateResponse(
        client_id=sale.client_id,
        template_id=sale.template_id,
        sale_id=sale.id,
        question_key=key,
        response_value=value,
    )
    session.add(response)
    session.commit()
    return response


def add_document(session: Session, sale: Sale, name: str = "Contrato", beneficiary_id: uuid.UUID | None = None) -> Document:
    document = Document(sale_id=sale.id, name=name, beneficiary_id=beneficiary_id)
    session.add(document)
    session.commit()
    session.refresh(document)
    return document


__all__ = [
    "NOW",
    "FakeNotifier",
    "add_document",
    "add_response",
    "auth_headers",
    "make_actor",
    "make_client",
    "make_plan",
    "make_sale",
    "make_template",
    "settings",
]
