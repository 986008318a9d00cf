from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class StorageBackend(str, Enum):
    REMOTE_FILE = "remote-file"
    OBJECT_STORE = "object-store"


@dataclass(frozen=True)
class StoragePointer:
    """Where a document's bytes live: the backend tag plus its locator."""

    backend: StorageBackend
    pointer: str


@dataclass(frozen=True)
class UploadIntent:
    backend: StorageBackend
    logical_path: str
    upload_url: str
    expires_in: int | None
    method: str = "PUT"
    headers: dict[str, str] | None = None


@dataclass(frozen=True)
class DocumentMetadata:
    owner_id: str
    file_name: str
    mime_type: str
    size: int
    extra: dict[str, Any] | None = None


@dataclass(frozen=True)
class StoredObject:
    location: StoragePointer
    size: int
    mime_type: str
    verified_size: int | None = None


@dataclass(frozen=True)
class RemoteEntry:
    name: str
    size: int
    is_dir: bool
    modified_at: int | None = None
