from __future__ import annotations

import time
from datetime import datetime, timezone

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from core.storage.errors import (
    ConfigurationError,
    ObjectNotFoundError,
    OperationTimeoutError,
    RemoteConnectionError,
    StorageValidationError,
    TransferError,
)
from core.storage.s3_provider import S3StorageProvider
from core.storage.types import DocumentMetadata, StorageBackend
from tests.fakes import FakeS3Client


def _provider(fake: FakeS3Client, **overrides) -> S3StorageProvider:
    options = {"bucket_name": "tax-docs", "client": fake, "operation_timeout": 5}
    options.update(overrides)
    return S3StorageProvider(**options)


def _metadata(size: int = 5, owner_id: str = "c1") -> DocumentMetadata:
    return DocumentMetadata(owner_id=owner_id, file_name="W2 2023.pdf", mime_type="application/pdf", size=size)


def test_upload_intent_is_presigned_put_under_owner_prefix():
    fake = FakeS3Client()

    intent = _provider(fake, presign_expires_in=900).create_upload_intent(_metadata())

    assert intent.backend == StorageBackend.OBJECT_STORE
    assert intent.method == "PUT"
    assert intent.expires_in == 900
    assert intent.logical_path.startswith("uploads/clients/c1/")
    assert intent.logical_path.endswith("_W2_2023.pdf")
    assert intent.upload_url.startswith("https://bucket.example.com/uploads/clients/c1/")
    assert fake.calls[0][1]["Bucket"] == "tax-docs"
    assert fake.calls[0][1]["ContentType"] == "application/pdf"


def test_missing_bucket_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        _provider(FakeS3Client(), bucket_name=None).create_upload_intent(_metadata())


def test_unsafe_owner_is_rejected_before_presigning():
    fake = FakeS3Client()

    with pytest.raises(StorageValidationError):
        _provider(fake).create_upload_intent(_metadata(owner_id="../c2"))
    assert fake.calls == []


@pytest.mark.asyncio
async def test_confirm_verifies_the_object_size():
    fake = FakeS3Client()
    provider = _provider(fake)
    intent = provider.create_upload_intent(_metadata())
    fake.objects[intent.logical_path] = b"%PDF-"

    stored = await provider.confirm_upload(pointer=intent.logical_path, metadata=_metadata())

    assert stored.location.pointer == intent.logical_path
    assert stored.location.backend == StorageBackend.OBJECT_STORE
    assert stored.verified_size == 5


@pytest.mark.asyncio
async def test_confirm_rejects_size_mismatch():
    fake = FakeS3Client()
    provider = _provider(fake)
    intent = provider.create_upload_intent(_metadata())
    fake.objects[intent.logical_path] = b"%PDF-1.7 truncated"

    with pytest.raises(StorageValidationError):
        await provider.confirm_upload(pointer=intent.logical_path, metadata=_metadata(size=5))


@pytest.mark.asyncio
async def test_confirm_without_uploaded_object_is_not_found():
    provider = _provider(FakeS3Client())
    intent = provider.create_upload_intent(_metadata())

    with pytest.raises(ObjectNotFoundError):
        await provider.confirm_upload(pointer=intent.logical_path, metadata=_metadata())


@pytest.mark.asyncio
async def test_confirm_rejects_pointer_of_another_owner_without_network_calls():
    fake = FakeS3Client()
    provider = _provider(fake)

    with pytest.raises(StorageValidationError):
        await provider.confirm_upload(pointer="uploads/clients/c2/1_a.pdf", metadata=_metadata())
    with pytest.raises(StorageValidationError):
        await provider.confirm_upload(pointer="uploads/clients/c1/../c2/1_a.pdf", metadata=_metadata())
    assert fake.calls == []


@pytest.mark.asyncio
async def test_read_and_delete_round_trip():
    fake = FakeS3Client()
    fake.objects["uploads/clients/c1/1_a.pdf"] = b"bytes"
    provider = _provider(fake)

    assert await provider.read_bytes(pointer="uploads/clients/c1/1_a.pdf") == b"bytes"
    assert await provider.exists(pointer="uploads/clients/c1/1_a.pdf") is True
    assert await provider.delete_object(pointer="uploads/clients/c1/1_a.pdf") is True
    assert await provider.exists(pointer="uploads/clients/c1/1_a.pdf") is False


@pytest.mark.asyncio
async def test_read_missing_key_is_not_found():
    with pytest.raises(ObjectNotFoundError):
        await _provider(FakeS3Client()).read_bytes(pointer="uploads/clients/c1/1_a.pdf")


@pytest.mark.asyncio
async def test_unreachable_endpoint_is_a_connection_error():
    fake = FakeS3Client()
    fake.failure = EndpointConnectionError(endpoint_url="https://s3.example.com")

    with pytest.raises(RemoteConnectionError):
        await _provider(fake).check()
    assert await _provider(fake).delete_object(pointer="uploads/clients/c1/1_a.pdf") is False


@pytest.mark.asyncio
async def test_access_denied_is_a_transfer_error():
    fake = FakeS3Client()
    fake.failure = ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "GetObject")

    with pytest.raises(TransferError):
        await _provider(fake).read_bytes(pointer="uploads/clients/c1/1_a.pdf")


@pytest.mark.asyncio
async def test_list_owner_objects_strips_the_prefix():
    fake = FakeS3Client()
    fake.objects["uploads/clients/c1/1_a.pdf"] = b"abc"
    fake.objects["uploads/clients/c2/1_b.pdf"] = b"zz"

    entries = await _provider(fake).list_owner_objects(owner_id="c1")

    assert [(entry.name, entry.size) for entry in entries] == [("1_a.pdf", 3)]
    assert entries[0].modified_at == int(datetime(2024, 1, 1, tzinfo=timezone.utc).timestamp())


@pytest.mark.asyncio
async def test_direct_writes_are_rejected():
    with pytest.raises(StorageValidationError):
        await _provider(FakeS3Client()).write_bytes(metadata=_metadata(), payload=b"12345")


def test_object_store_has_no_public_url():
    assert _provider(FakeS3Client()).public_url("uploads/clients/c1/1_a.pdf") is None


@pytest.mark.asyncio
async def test_list_owner_objects_follows_every_page():
    fake = FakeS3Client()
    fake.page_size = 2
    for index in range(5):
        fake.objects[f"uploads/clients/c1/{index}_a.pdf"] = b"x"

    entries = await _provider(fake).list_owner_objects(owner_id="c1")

    assert sorted(entry.name for entry in entries) == [f"{index}_a.pdf" for index in range(5)]


@pytest.mark.asyncio
async def test_exists_is_false_when_head_outlives_the_ceiling():
    fake = FakeS3Client()
    fake.objects["uploads/clients/c1/1_a.pdf"] = b"bytes"
    original_head = fake.head_object

    def _slow_head(**params):
        time.sleep(0.3)
        return original_head(**params)

    fake.head_object = _slow_head

    assert await _provider(fake, operation_timeout=0.05).exists(pointer="uploads/clients/c1/1_a.pdf") is False


@pytest.mark.asyncio
async def test_stalled_body_read_is_bounded_by_the_ceiling():
    fake = FakeS3Client()
    body = _StalledBody()
    fake.get_object = lambda **params: {"Body": body}

    with pytest.raises(OperationTimeoutError):
        await _provider(fake, operation_timeout=0.05).read_bytes(pointer="uploads/clients/c1/1_a.pdf")
    assert body.closed


class _StalledBody:
    def __init__(self) -> None:
        self.closed = False

    def read(self) -> bytes:
        time.sleep(0.3)
        return b"late"

    def close(self) -> None:
        self.closed = True
