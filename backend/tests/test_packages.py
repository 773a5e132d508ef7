from __future__ import annotations

import pytest

from samap.core.errors import NotFound, PreconditionFailed
from samap.models.document import DocumentStatus
from samap.services.documents import DocumentPackageService, package_status

from conftest import add_document, make_actor, make_sale


def _sign(session, document):
    document.status = DocumentStatus.FIRMADO.value
    session.add(document)
    session.commit()


def test_create_package_keeps_document_order(db_session, company_id):
    sale = make_sale(db_session, company_id)
    first = add_document(db_session, sale, "Contrato")
    second = add_document(db_session, sale, "Anexo")
    service = DocumentPackageService(db_session)

    package = service.create_package(
        sale, "Firma cliente", [second.id, first.id], actor=make_actor(company_id), required=[second.id]
    )

    items = service.list_items(package.id)
    assert [document.name for _, document in items] == ["Anexo", "Contrato"]
    assert [item.is_required for item, _ in items] == [True, False]
    assert service.list_for_sale(sale.id)[0].id == package.id


def test_package_status_follows_signed_documents(db_session, company_id):
    sale = make_sale(db_session, company_id)
    documents = [add_document(db_session, sale, f"Doc {index}") for index in range(3)]
    service = DocumentPackageService(db_session)
    package = service.create_package(sale, "Paquete", [doc.id for doc in documents], actor=make_actor(company_id))

    assert package_status(service.list_items(package.id)) == "pending"

    _sign(db_session, documents[0])
    assert package_status(service.list_items(package.id)) == "1/3 firmados"

    for document in documents[1:]:
        _sign(db_session, document)
    assert package_status(service.list_items(package.id)) == "complete"


def test_package_rejects_documents_from_another_sale(db_session, company_id):
    sale = make_sale(db_session, company_id)
    other = make_sale(db_session, company_id)
    foreign = add_document(db_session, other)

    with pytest.raises(NotFound) as excinfo:
        DocumentPackageService(db_session).create_package(sale, "Paquete", [foreign.id], actor=make_actor(company_id))
    assert excinfo.value.details == {"document_id": str(foreign.id)}


def test_empty_package_is_rejected(db_session, company_id):
    sale = make_sale(db_session, company_id)

    with pytest.raises(PreconditionFailed):
        DocumentPackageService(db_session).create_package(sale, "Vacío", [], actor=make_actor(company_id))


def test_delete_package_removes_items(db_session, company_id):
    sale = make_sale(db_session, company_id)
    document = add_document(db_session, sale)
    service = DocumentPackageService(db_session)
    package = service.create_package(sale, "Paquete", [document.id], actor=make_actor(company_id))
    package_id = package.id

    service.delete_package(package_id)

    assert service.list_for_sale(sale.id) == []
    assert service.list_items(package_id) == []
    with pytest.raises(NotFound):
        service.get_package(package_id)
