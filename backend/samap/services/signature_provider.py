from __future__ import annotations

import base64
from typing import Any, Dict, Iterable

import httpx

from samap.core.config import settings
from samap.core.errors import UpstreamFailure

COMPLETED_PROVIDER_STATUSES = frozenset({"completed", "signed"})


class SignatureProviderClient:
    """Cliente HTTP del proveedor de firma electrónica (API compatible con SignWell)."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        api_key: str | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._base_url = (base_url or settings.signwell_api_base or "").rstrip("/")
        if not self._base_url:
            raise UpstreamFailure("URL base del proveedor de firma no configurada.")
        self._api_key = api_key or settings.signwell_api_key
        if not self._api_key:
            raise UpstreamFailure("API key del proveedor de firma no configurada.")
        self._timeout = timeout_seconds or settings.signwell_timeout_seconds or 30.0
        self._transport = transport

    def _request(self, method: str, path: str, *, json: dict[str, Any] | None = None) -> dict[str, Any]:
        url = f"{self._base_url}{path}"
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                response = client.request(
                    method,
                    url,
                    json=json,
                    headers={"X-Api-Key": self._api_key, "Accept": "application/json"},
                )
        except httpx.RequestError as exc:
            raise UpstreamFailure(f"No se pudo conectar con el proveedor de firma: {exc}") from exc

        if response.status_code >= 400:
            try:
                payload = response.json()
            except ValueError:
                payload = {"error": response.text}
            message = str(payload.get("message") or payload.get("error") or "Error del proveedor de firma.")
            raise UpstreamFailure(message, details={"status": response.status_code, "payload": payload})

        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamFailure("Respuesta inválida del proveedor de firma.") from exc

    def create_document(
        self,
        name: str,
        file: bytes,
        recipients: Iterable[Dict[str, str]],
    ) -> dict[str, str | None]:
        payload = {
            "test_mode": settings.debug,
            "name": name,
            "files": [
                {
                    "name": f"{name}.pdf",
                    "file_base64": base64.b64encode(file).decode("utf-8"),
                }
            ],
            "recipients": [
                {"id": str(index + 1), "name": recipient.get("name"), "email": recipient.get("email")}
                for index, recipient in enumerate(recipients)
            ],
            "embedded_signing": True,
        }
        data = self._request("POST", "/documents/", json=payload)
        signing_url = None
        for recipient in data.get("recipients") or []:
            signing_url = recipient.get("embedded_signing_url") or recipient.get("signing_url")
            if signing_url:
                break
        return {"document_id": data.get("id"), "signing_url": signing_url}

    def get_status(self, document_id: str) -> dict[str, Any]:
        data = self._request("GET", f"/documents/{document_id}/")
        status = str(data.get("status") or "").lower()
        return {
            "document_id": document_id,
            "status": status,
            "completed": status in COMPLETED_PROVIDER_STATUSES,
            "raw": data,
        }

    def get_completed_pdf(self, document_id: str) -> str | None:
        data = self._request("GET", f"/documents/{document_id}/completed_pdf/?url_only=true")
        return data.get("file_url")
