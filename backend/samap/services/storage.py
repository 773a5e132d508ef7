from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

import boto3
from botocore.client import Config as BotoConfig

from samap.core.config import settings


def resolve_storage_root() -> Path:
    """Directorio raíz del almacenamiento local. `SAMAP_STORAGE` tiene prioridad sobre la configuración."""
    raw = os.getenv("SAMAP_STORAGE") or settings.samap_storage or "_storage"
    return Path(raw).expanduser().resolve()


class StorageBackend(Protocol):
    def save_bytes(self, *, root: str, name: str, data: bytes) -> str:  # devuelve ruta o URL
        ...

    def load_bytes(self, path: str) -> bytes:
        ...


@dataclass
class LocalStorage:
    base_dir: Path

    def __post_init__(self) -> None:
        self.base_dir = Path(self.base_dir).resolve()
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def save_bytes(self, *, root: str, name: str, data: bytes) -> str:
        target_dir = self.base_dir / root
        target_dir.mkdir(parents=True, exist_ok=True)
        file_path = target_dir / name
        file_path.write_bytes(data)
        return str(file_path.relative_to(self.base_dir))

    def load_bytes(self, path: str) -> bytes:
        file_path = Path(path)
        candidate = file_path if file_path.is_absolute() else self.base_dir / file_path
        if not candidate.exists():
            raise FileNotFoundError(f"Archivo {path!r} no encontrado en el almacenamiento configurado.")
        return candidate.read_bytes()


@dataclass
class S3Storage:
    bucket: str
    client: Any

    def save_bytes(self, *, root: str, name: str, data: bytes) -> str:
        key = f"{root.strip('/')}/{name}"
        self.client.put_object(Bucket=self.bucket, Key=key, Body=data)
        return f"s3://{self.bucket}/{key}"

    def load_bytes(self, path: str) -> bytes:
        if not path.startswith("s3://"):
            raise ValueError("Se esperaba una ruta s3:// para el almacenamiento S3")
        bucket, key = _split_s3_path(path)
        response = self.client.get_object(Bucket=bucket, Key=key)
        body = response.get("Body")
        return body.read() if body else b""


def _split_s3_path(path: str) -> tuple[str, str]:
    _, rest = path.split("s3://", 1)
    bucket, key = rest.split("/", 1)
    return bucket, key


def get_storage() -> StorageBackend:
    # En tests se usa disco salvo que se habilite S3 explícitamente
    if os.getenv("PYTEST_CURRENT_TEST") and os.getenv("SAMAP_ALLOW_S3_IN_TESTS") != "1":
        return LocalStorage(base_dir=resolve_storage_root())

    if os.getenv("SAMAP_STORAGE"):
        return LocalStorage(base_dir=resolve_storage_root())

    if settings.s3_endpoint_url and settings.s3_access_key and settings.s3_secret_key and settings.s3_bucket_documents:
        client = boto3.client(
            "s3",
            endpoint_url=settings.s3_endpoint_url,
            aws_access_key_id=settings.s3_access_key,
            aws_secret_access_key=settings.s3_secret_key,
            config=BotoConfig(signature_version="s3v4"),
            region_name=os.getenv("AWS_REGION", "us-east-1"),
        )
        return S3Storage(bucket=settings.s3_bucket_documents, client=client)

    return LocalStorage(base_dir=resolve_storage_root())
