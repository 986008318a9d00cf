from core.storage.errors import (
    ConfigurationError,
    ObjectNotFoundError,
    OperationTimeoutError,
    RemoteConnectionError,
    StorageError,
    StorageValidationError,
    TransferError,
)
from core.storage.manager import DocumentStorageManager
from core.storage.types import DocumentMetadata, RemoteEntry, StorageBackend, StoragePointer, StoredObject, UploadIntent

__all__ = [
    "ConfigurationError",
    "DocumentMetadata",
    "DocumentStorageManager",
    "ObjectNotFoundError",
    "OperationTimeoutError",
    "RemoteConnectionError",
    "RemoteEntry",
    "StorageBackend",
    "StorageError",
    "StoragePointer",
    "StorageValidationError",
    "StoredObject",
    "TransferError",
    "UploadIntent",
]
