from __future__ import annotations

from typing import Any, Dict, Optional


class WorkflowError(RuntimeError):
    """Error de dominio del flujo de ventas. Lleva el código HTTP con el que se expone."""

    status_code: int = 400

    def __init__(
        self,
        message: str,
        *,
        details: Optional[Dict[str, Any]] = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code


class PreconditionFailed(WorkflowError):
    """Acción no permitida en el estado actual. Se informa al usuario y no se reintenta."""

    status_code = 409


class InvalidTransition(PreconditionFailed):
    pass


class PermissionDenied(PreconditionFailed):
    status_code = 403


class NotFound(WorkflowError):
    status_code = 404


class Expired(WorkflowError):
    """El token existe pero ya venció; el cliente puede pedir un enlace nuevo."""

    status_code = 410


class UpstreamFailure(WorkflowError):
    """Falla de un colaborador externo (notificaciones, proveedor de firma)."""

    status_code = 502


class VersionConflict(WorkflowError):
    status_code = 409
