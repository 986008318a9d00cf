from __future__ import annotations

import asyncio

from core.storage.errors import StorageError, StorageValidationError
from core.storage.naming import build_storage_pointer, encode_path, owner_directory, validate_storage_pointer
from core.storage.provider import DocumentStorageProvider
from core.storage.remote_client import RemoteTransferClient
from core.storage.timeout_guard import WRITE_TIMEOUT_SECONDS, TimeoutGuard, timeout_guard
from core.storage.types import (
    DocumentMetadata,
    RemoteEntry,
    StorageBackend,
    StoragePointer,
    StoredObject,
    UploadIntent,
)

DIRECT_UPLOAD_PATH = "/v1/documents/direct-upload"


class RemoteFileStorageProvider(DocumentStorageProvider):
    backend = StorageBackend.REMOTE_FILE

    def __init__(
        self,
        *,
        client: RemoteTransferClient,
        uploads_dir: str = "uploads/clients",
        write_timeout: float = WRITE_TIMEOUT_SECONDS,
        operation_timeout: float = 60,
        public_base_url: str | None = None,
        guard: TimeoutGuard | None = None,
    ) -> None:
        self._client = client
        self._uploads_dir = uploads_dir.strip("/")
        self._write_timeout = write_timeout
        self._operation_timeout = operation_timeout
        self._public_base_url = public_base_url.rstrip("/") if public_base_url else None
        self._guard = guard or timeout_guard

    @property
    def client(self) -> RemoteTransferClient:
        return self._client

    def create_upload_intent(self, metadata: DocumentMetadata) -> UploadIntent:
        owner_directory(self._uploads_dir, metadata.owner_id)
        # The pointer is minted when bytes arrive; this is the directory they land in.
        return UploadIntent(
            backend=self.backend,
            logical_path=f"{self._uploads_dir}/{metadata.owner_id}",
            upload_url=DIRECT_UPLOAD_PATH,
            expires_in=None,
            method="POST",
            headers={
                "Content-Type": metadata.mime_type,
                "X-Owner-Id": metadata.owner_id,
                "X-File-Name": encode_path(metadata.file_name),
            },
        )

    async def write_bytes(self, *, metadata: DocumentMetadata, payload: bytes) -> StoredObject:
        pointer = build_storage_pointer(self._uploads_dir, metadata.owner_id, metadata.file_name)
        verified = await self._guard.run(
            "write",
            asyncio.to_thread(self._client.write, pointer, payload),
            seconds=self._write_timeout,
            target=pointer,
        )
        return StoredObject(
            location=StoragePointer(backend=self.backend, pointer=pointer),
            size=len(payload),
            mime_type=metadata.mime_type,
            verified_size=verified,
        )

    async def confirm_upload(self, *, pointer: str, metadata: DocumentMetadata) -> StoredObject:
        raise StorageValidationError(
            "Remote-file uploads are recorded when bytes arrive; there is nothing to confirm",
            operation="confirm",
        )

    async def read_bytes(self, *, pointer: str) -> bytes:
        validate_storage_pointer(pointer, uploads_dir=self._uploads_dir)
        return await self._guard.run(
            "read",
            asyncio.to_thread(self._client.read, pointer),
            seconds=self._write_timeout,
            target=pointer,
        )

    async def delete_object(self, *, pointer: str) -> bool:
        return await self._guard.run(
            "remove",
            asyncio.to_thread(self._client.remove, pointer),
            seconds=self._operation_timeout,
            target=pointer,
        )

    async def exists(self, *, pointer: str) -> bool:
        try:
            return await self._guard.run(
                "exists",
                asyncio.to_thread(self._client.exists, pointer),
                seconds=self._operation_timeout,
                target=pointer,
            )
        except StorageError:
            return False

    async def list_owner_objects(self, *, owner_id: str) -> list[RemoteEntry]:
        directory = owner_directory(self._uploads_dir, owner_id)
        entries = await self._guard.run(
            "list",
            asyncio.to_thread(self._client.list, directory),
            seconds=self._operation_timeout,
            target=directory,
        )
        return [entry for entry in entries if not entry.is_dir and not entry.name.startswith(".")]

    async def check(self) -> bool:
        return await self._guard.run(
            "check",
            asyncio.to_thread(self._client.check),
            seconds=self._operation_timeout,
        )

    def pointer_for(self, *, owner_id: str, name: str) -> str:
        return f"{owner_directory(self._uploads_dir, owner_id)}/{name}"

    def public_url(self, pointer: str) -> str | None:
        if not self._public_base_url:
            return None
        return f"{self._public_base_url}/{encode_path(pointer)}"
