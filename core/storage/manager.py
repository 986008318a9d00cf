from __future__ import annotations

from threading import Lock

from core.settings import get_settings
from core.storage.provider import DocumentStorageProvider
from core.storage.remote_client import RemoteTransferClient
from core.storage.remote_file_provider import RemoteFileStorageProvider
from core.storage.s3_provider import S3StorageProvider
from core.storage.types import StorageBackend


class DocumentStorageManager:
    """Holds one provider per backend plus the process-wide active backend.

    New uploads always go to the active backend. Reads and deletes dispatch on
    the backend stamped on the record, so flipping STORAGE_BACKEND never
    strands documents written under the previous setting.
    """

    _instance: "DocumentStorageManager | None" = None
    _lock = Lock()

    def __init__(
        self,
        providers: dict[StorageBackend, DocumentStorageProvider],
        active_backend: StorageBackend,
    ) -> None:
        if active_backend not in providers:
            raise RuntimeError(f"No provider registered for active backend '{active_backend.value}'")
        self._providers = providers
        self._active_backend = active_backend

    @classmethod
    def configure(
        cls,
        providers: dict[StorageBackend, DocumentStorageProvider],
        active_backend: StorageBackend,
    ) -> "DocumentStorageManager":
        with cls._lock:
            cls._instance = cls(providers=providers, active_backend=active_backend)
            return cls._instance

    @classmethod
    def configure_from_settings(cls) -> "DocumentStorageManager":
        settings = get_settings()
        # Missing SFTP credentials do not block construction; the client
        # raises ConfigurationError on first use instead.
        remote_provider = RemoteFileStorageProvider(
            client=RemoteTransferClient.from_settings(settings),
            uploads_dir=settings.uploads_dir,
            write_timeout=settings.sftp_write_timeout_seconds,
            operation_timeout=settings.sftp_operation_timeout_seconds,
            public_base_url=settings.public_files_base_url,
        )
        object_provider = S3StorageProvider(
            bucket_name=settings.s3_bucket_name,
            region=settings.s3_region,
            endpoint_url=settings.s3_endpoint_url,
            key_prefix=settings.uploads_dir,
            presign_expires_in=settings.s3_presign_expires_seconds,
        )

        return cls.configure(
            providers={
                StorageBackend.REMOTE_FILE: remote_provider,
                StorageBackend.OBJECT_STORE: object_provider,
            },
            active_backend=StorageBackend(settings.storage_backend),
        )

    @classmethod
    def get_instance(cls) -> "DocumentStorageManager":
        if cls._instance is None:
            return cls.configure_from_settings()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        with cls._lock:
            cls._instance = None

    @property
    def active_backend(self) -> StorageBackend:
        return self._active_backend

    @property
    def provider(self) -> DocumentStorageProvider:
        return self._providers[self._active_backend]

    def provider_for(self, backend: StorageBackend | str) -> DocumentStorageProvider:
        key = StorageBackend(backend)
        if key not in self._providers:
            raise RuntimeError(f"No provider registered for backend '{key.value}'")
        return self._providers[key]
