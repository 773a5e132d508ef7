from typing import Annotated, Callable, Iterator
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlmodel import Session

from samap.core.config import settings
from samap.core.errors import WorkflowError
from samap.db.session import get_session
from samap.services.workflow import Actor
from samap.utils.security import TokenType, decode_token

oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.api_v1_str}/auth/login")

STAFF_ROLES = frozenset({"super_admin", "admin", "supervisor", "auditor", "gestor", "vendedor", "financiero"})


def get_db() -> Iterator[Session]:
    yield from get_session()


def get_current_actor(token: Annotated[str, Depends(oauth2_scheme)]) -> Actor:
    try:
        payload = decode_token(token)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc

    if payload.get("token_type") != TokenType.ACCESS.value:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    try:
        user_id = UUID(str(payload["sub"]))
        company_id = UUID(str(payload["company_id"]))
    except (KeyError, ValueError, TypeError) as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token subject") from exc

    role = str(payload.get("role") or "").strip().lower()
    if role not in STAFF_ROLES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unknown role")
    return Actor(user_id=user_id, role=role, company_id=company_id)


def require_roles(*roles: str) -> Callable[[Actor], Actor]:
    allowed = set(roles)

    def dependency(actor: Annotated[Actor, Depends(get_current_actor)]) -> Actor:
        if actor.role == "super_admin":
            return actor
        if actor.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return actor

    return dependency


def to_http_exception(exc: WorkflowError) -> HTTPException:
    detail: dict | str = {"message": exc.message, **exc.details} if exc.details else exc.message
    return HTTPException(status_code=exc.status_code, detail=detail)
