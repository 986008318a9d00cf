from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import Any, Callable

from botocore.exceptions import BotoCoreError, ClientError, EndpointConnectionError

from core.storage.errors import (
    ConfigurationError,
    ObjectNotFoundError,
    RemoteConnectionError,
    StorageError,
    StorageValidationError,
    TransferError,
)
from core.storage.naming import build_storage_pointer, owner_directory, pointer_owner, validate_storage_pointer
from core.storage.provider import DocumentStorageProvider
from core.storage.timeout_guard import WRITE_TIMEOUT_SECONDS, TimeoutGuard, timeout_guard
from core.storage.types import (
    DocumentMetadata,
    RemoteEntry,
    StorageBackend,
    StoragePointer,
    StoredObject,
    UploadIntent,
)

logger = logging.getLogger(__name__)

_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}


def _error_code(err: Exception) -> str:
    response = getattr(err, "response", None) or {}
    return str(response.get("Error", {}).get("Code", ""))


class S3StorageProvider(DocumentStorageProvider):
    backend = StorageBackend.OBJECT_STORE

    def __init__(
        self,
        *,
        bucket_name: str | None,
        region: str | None = None,
        endpoint_url: str | None = None,
        key_prefix: str = "uploads/clients",
        presign_expires_in: int = 3600,
        operation_timeout: float = WRITE_TIMEOUT_SECONDS,
        client: Any | None = None,
        guard: TimeoutGuard | None = None,
    ) -> None:
        self._bucket = bucket_name
        self._key_prefix = key_prefix.strip("/")
        self._presign_expires_in = presign_expires_in
        self._operation_timeout = operation_timeout
        self._guard = guard or timeout_guard
        self._region = region
        self._endpoint_url = endpoint_url
        self._client = client

    def _s3(self) -> Any:
        if not self._bucket:
            raise ConfigurationError("S3_BUCKET_NAME is required for object-store uploads", operation="presign")
        if self._client is None:
            try:
                import boto3
            except ModuleNotFoundError as err:
                raise ConfigurationError("boto3 is required for the object-store backend") from err
            self._client = boto3.client("s3", region_name=self._region, endpoint_url=self._endpoint_url)
        return self._client

    async def _call(self, operation: str, pointer: str | None, method: str, **params: Any) -> Any:
        client = self._s3()
        return await self._guarded(operation, pointer, partial(getattr(client, method), Bucket=self._bucket, **params))

    async def _guarded(self, operation: str, pointer: str | None, func: Callable[[], Any]) -> Any:
        """Run a blocking boto call in a thread under the timeout guard, mapping botocore errors."""
        try:
            return await self._guard.run(
                operation,
                asyncio.to_thread(func),
                seconds=self._operation_timeout,
                target=pointer,
            )
        except ClientError as err:
            if _error_code(err) in _MISSING_CODES:
                raise ObjectNotFoundError("Object not found", operation=operation, target=pointer) from err
            raise TransferError("Object store request failed", operation=operation, target=pointer) from err
        except EndpointConnectionError as err:
            raise RemoteConnectionError("Object store is unreachable", operation=operation, target=pointer) from err
        except BotoCoreError as err:
            raise TransferError("Object store request failed", operation=operation, target=pointer) from err

    def create_upload_intent(self, metadata: DocumentMetadata) -> UploadIntent:
        pointer = build_storage_pointer(self._key_prefix, metadata.owner_id, metadata.file_name)
        url = self._s3().generate_presigned_url(
            ClientMethod="put_object",
            Params={"Bucket": self._bucket, "Key": pointer, "ContentType": metadata.mime_type},
            ExpiresIn=self._presign_expires_in,
        )
        return UploadIntent(
            backend=self.backend,
            logical_path=pointer,
            upload_url=url,
            expires_in=self._presign_expires_in,
            method="PUT",
            headers={"Content-Type": metadata.mime_type},
        )

    async def write_bytes(self, *, metadata: DocumentMetadata, payload: bytes) -> StoredObject:
        raise StorageValidationError(
            "Object-store uploads go straight to the presigned target",
            operation="write",
        )

    async def confirm_upload(self, *, pointer: str, metadata: DocumentMetadata) -> StoredObject:
        validate_storage_pointer(pointer, uploads_dir=self._key_prefix)
        if pointer_owner(pointer) != metadata.owner_id:
            raise StorageValidationError("Logical path belongs to another owner", operation="confirm")

        head = await self._call("confirm", pointer, "head_object", Key=pointer)
        actual = int(head.get("ContentLength", 0))
        if actual != metadata.size:
            logger.warning(
                "Declared size %s does not match stored object %s (%s bytes)",
                metadata.size,
                pointer,
                actual,
            )
            raise StorageValidationError("Uploaded object size does not match the declared size", operation="confirm")

        return StoredObject(
            location=StoragePointer(backend=self.backend, pointer=pointer),
            size=actual,
            mime_type=metadata.mime_type,
            verified_size=actual,
        )

    async def read_bytes(self, *, pointer: str) -> bytes:
        response = await self._call("read", pointer, "get_object", Key=pointer)
        body = response["Body"]
        try:
            return await self._guarded("read", pointer, body.read)
        finally:
            body.close()

    async def delete_object(self, *, pointer: str) -> bool:
        try:
            await self._call("remove", pointer, "delete_object", Key=pointer)
        except ConfigurationError:
            raise
        except (ObjectNotFoundError, TransferError, RemoteConnectionError) as err:
            logger.warning("Object delete of %s failed: %s", pointer, err.__class__.__name__)
            return False
        return True

    async def exists(self, *, pointer: str) -> bool:
        try:
            await self._call("exists", pointer, "head_object", Key=pointer)
        except StorageError:
            return False
        return True

    async def list_owner_objects(self, *, owner_id: str) -> list[RemoteEntry]:
        prefix = f"{owner_directory(self._key_prefix, owner_id)}/"
        client = self._s3()

        def _all_keys() -> list[dict[str, Any]]:
            paginator = client.get_paginator("list_objects_v2")
            rows: list[dict[str, Any]] = []
            for page in paginator.paginate(Bucket=self._bucket, Prefix=prefix):
                rows.extend(page.get("Contents", []))
            return rows

        rows = await self._guarded("list", prefix, _all_keys)
        return [
            RemoteEntry(
                name=row["Key"][len(prefix):],
                size=int(row.get("Size", 0)),
                is_dir=False,
                modified_at=int(row["LastModified"].timestamp()) if row.get("LastModified") else None,
            )
            for row in rows
        ]

    async def check(self) -> bool:
        await self._call("check", None, "head_bucket")
        return True

    def pointer_for(self, *, owner_id: str, name: str) -> str:
        return f"{owner_directory(self._key_prefix, owner_id)}/{name}"

    def public_url(self, pointer: str) -> str | None:
        return None

