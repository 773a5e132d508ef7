from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from sqlmodel import Session

from samap.api.deps import get_current_actor, get_db, to_http_exception
from samap.core.errors import WorkflowError
from samap.models.document import DocumentPackage
from samap.schemas.document import DocumentPackageCreate, DocumentPackageItemRead, DocumentPackageRead
from samap.services.documents import DocumentPackageService, package_status
from samap.services.workflow import Actor, WorkflowService

router = APIRouter(tags=["packages"])


def _package_response(service: DocumentPackageService, package: DocumentPackage) -> DocumentPackageRead:
    items = service.list_items(package.id)
    return DocumentPackageRead(
        id=package.id,
        sale_id=package.sale_id,
        name=package.name,
        package_type=package.package_type,
        status=package_status(items),
        created_at=package.created_at,
        updated_at=package.updated_at,
        items=[
            DocumentPackageItemRead(
                document_id=document.id,
                name=document.name,
                sort_order=item.sort_order,
                is_required=item.is_required,
                status=document.status,
            )
            for item, document in items
        ],
    )


@router.post(
    "/sales/{sale_id}/packages",
    response_model=DocumentPackageRead,
    status_code=status.HTTP_201_CREATED,
)
def create_package(
    sale_id: UUID,
    payload: DocumentPackageCreate,
    session: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> DocumentPackageRead:
    service = DocumentPackageService(session)
    optional = set(payload.optional_document_ids)
    try:
        sale = WorkflowService(session).get_sale(sale_id, actor.company_id)
        package = service.create_package(
            sale,
            payload.name,
            payload.document_ids,
            actor=actor,
            package_type=payload.package_type,
            required=[doc_id for doc_id in payload.document_ids if doc_id not in optional],
        )
    except WorkflowError as exc:
        raise to_http_exception(exc) from exc
    return _package_response(service, package)


@router.get("/sales/{sale_id}/packages", response_model=List[DocumentPackageRead])
def list_packages(
    sale_id: UUID,
    session: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> List[DocumentPackageRead]:
    service = DocumentPackageService(session)
    try:
        sale = WorkflowService(session).get_sale(sale_id, actor.company_id)
    except WorkflowError as exc:
        raise to_http_exception(exc) from exc
    return [_package_response(service, package) for package in service.list_for_sale(sale.id)]


@router.delete("/packages/{package_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_package(
    package_id: UUID,
    session: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> Response:
    service = DocumentPackageService(session)
    try:
        package = service.get_package(package_id)
        WorkflowService(session).get_sale(package.sale_id, actor.company_id)
        service.delete_package(package.id)
    except WorkflowError as exc:
        raise to_http_exception(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)
