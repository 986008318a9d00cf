from __future__ import annotations

import itertools
import os
from types import SimpleNamespace

import pytest

for _key, _value in {
    "SECRET_KEY": "test-secret-key-with-enough-length-123",
    "MONGO_URL": "mongodb://localhost:27017",
    "DB_NAME": "tax_portal_test",
    "STORAGE_BACKEND": "remote-file",
}.items():
    os.environ.setdefault(_key, _value)

from core.storage import DocumentStorageManager, StorageBackend  # noqa: E402
from core.storage.s3_provider import S3StorageProvider  # noqa: E402
from tests.fakes import FakeCollection, FakeS3Client, SSHFactory, remote_provider  # noqa: E402


@pytest.fixture
def fake_db(monkeypatch: pytest.MonkeyPatch):
    db = SimpleNamespace(documents=FakeCollection(), document_slots=FakeCollection())
    monkeypatch.setattr("repositories.document_repo.db", db)
    monkeypatch.setattr("repositories.document_repo._DOCUMENT_INDEXES_READY", False)
    return db


@pytest.fixture
def ssh_factory() -> SSHFactory:
    return SSHFactory()


@pytest.fixture
def storage(ssh_factory: SSHFactory, fake_db, monkeypatch: pytest.MonkeyPatch):
    """Both backends over in-memory fakes, remote-file active, deterministic pointer timestamps."""
    clock = itertools.count(1_700_000_000_000)
    monkeypatch.setattr("core.storage.naming._epoch_ms", lambda: next(clock))

    s3 = FakeS3Client()
    providers = {
        StorageBackend.REMOTE_FILE: remote_provider(ssh_factory),
        StorageBackend.OBJECT_STORE: S3StorageProvider(bucket_name="tax-docs", client=s3, operation_timeout=5),
    }
    DocumentStorageManager.configure(providers=providers, active_backend=StorageBackend.REMOTE_FILE)
    yield SimpleNamespace(providers=providers, ssh=ssh_factory, sftp=ssh_factory.sftp, s3=s3, db=fake_db)
    DocumentStorageManager.reset()
