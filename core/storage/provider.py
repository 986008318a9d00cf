from __future__ import annotations

from typing import Protocol

from core.storage.types import DocumentMetadata, RemoteEntry, StorageBackend, StoredObject, UploadIntent


class DocumentStorageProvider(Protocol):
    backend: StorageBackend

    def create_upload_intent(self, metadata: DocumentMetadata) -> UploadIntent:
        ...

    async def write_bytes(self, *, metadata: DocumentMetadata, payload: bytes) -> StoredObject:
        ...

    async def confirm_upload(self, *, pointer: str, metadata: DocumentMetadata) -> StoredObject:
        ...

    async def read_bytes(self, *, pointer: str) -> bytes:
        ...

    async def delete_object(self, *, pointer: str) -> bool:
        ...

    async def exists(self, *, pointer: str) -> bool:
        ...

    async def list_owner_objects(self, *, owner_id: str) -> list[RemoteEntry]:
        ...

    async def check(self) -> bool:
        ...

    def pointer_for(self, *, owner_id: str, name: str) -> str:
        ...

    def public_url(self, pointer: str) -> str | None:
        ...
