import io

import pytest

from samap.services.storage import LocalStorage, S3Storage, get_storage, resolve_storage_root


class FakeS3Client:
    def __init__(self):
        self.objects = {}

    def put_object(self, *, Bucket, Key, Body):  # noqa: N803
        self.objects[(Bucket, Key)] = Body

    def get_object(self, *, Bucket, Key):  # noqa: N803
        return {"Body": io.BytesIO(self.objects[(Bucket, Key)])}


def test_local_storage_returns_relative_paths(tmp_path):
    storage = LocalStorage(base_dir=tmp_path)

    path = storage.save_bytes(root="sales/abc", name="contrato.pdf", data=b"%PDF")

    assert path == "sales/abc/contrato.pdf"
    assert storage.load_bytes(path) == b"%PDF"
    assert storage.load_bytes(str(tmp_path / path)) == b"%PDF"


def test_local_storage_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        LocalStorage(base_dir=tmp_path).load_bytes("no/existe.pdf")


def test_s3_storage_roundtrip():
    client = FakeS3Client()
    storage = S3Storage(bucket="samap-documents", client=client)

    path = storage.save_bytes(root="/sales/abc/", name="contrato.pdf", data=b"%PDF")

    assert path == "s3://samap-documents/sales/abc/contrato.pdf"
    assert storage.load_bytes(path) == b"%PDF"
    with pytest.raises(ValueError):
        storage.load_bytes("sales/abc/contrato.pdf")


def test_get_storage_uses_disk_under_tests(storage_env):
    storage = get_storage()

    assert isinstance(storage, LocalStorage)
    assert storage.base_dir == resolve_storage_root() == storage_env.resolve()
