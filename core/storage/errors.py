from __future__ import annotations


class StorageError(Exception):
    """Base class for transfer-layer failures.

    ``operation`` and ``target`` are for server-side logs only; ``target`` may
    be a remote path and must not be echoed back to end users.
    """

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        target: str | None = None,
        elapsed: float | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.target = target
        self.elapsed = elapsed

    def log_context(self) -> str:
        parts = [f"operation={self.operation or 'unknown'}"]
        if self.target:
            parts.append(f"target={self.target}")
        if self.elapsed is not None:
            parts.append(f"elapsed={self.elapsed:.3f}s")
        return " ".join(parts)


class ConfigurationError(StorageError):
    """Required settings are absent. Never retried."""


class RemoteConnectionError(StorageError, ConnectionError):
    """Handshake or authentication with the remote host failed."""


class OperationTimeoutError(StorageError, TimeoutError):
    """An operation exceeded its ceiling; the underlying call may still be running."""


class TransferError(StorageError):
    """A read or write failed after a session was established."""


class StorageValidationError(StorageError, ValueError):
    """Unsafe or malformed caller input, rejected before any network call."""


class ObjectNotFoundError(StorageError, FileNotFoundError):
    """The read or download target does not exist."""
