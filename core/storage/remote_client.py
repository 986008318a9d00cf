from __future__ import annotations

import io
import logging
import posixpath
import stat as stat_module
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator

import paramiko

from core.settings import Settings
from core.storage.errors import (
    ConfigurationError,
    ObjectNotFoundError,
    RemoteConnectionError,
    StorageError,
    TransferError,
)
from core.storage.provisioner import ensure_remote_directory
from core.storage.types import RemoteEntry

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT_SECONDS = 30


@dataclass
class RemoteSession:
    ssh: Any
    sftp: Any

    def close(self) -> None:
        try:
            self.sftp.close()
        except Exception as err:
            logger.debug("SFTP channel close failed: %s", err)
        self.ssh.close()


class RemoteTransferClient:
    """One authenticated SFTP session per operation.

    Storage pointers are relative to ``base_path``; the base path itself never
    leaves this class except in server-side log lines at DEBUG.
    """

    def __init__(
        self,
        *,
        host: str | None,
        port: int = 22,
        username: str | None,
        password: str | None,
        base_path: str = "",
        connect_timeout: float = CONNECT_TIMEOUT_SECONDS,
        strict_size_check: bool = False,
        ssh_client_factory: Callable[[], Any] = paramiko.SSHClient,
    ) -> None:
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._base_path = base_path.strip("/")
        self._connect_timeout = connect_timeout
        self._strict_size_check = strict_size_check
        self._ssh_client_factory = ssh_client_factory

    @classmethod
    def from_settings(cls, settings: Settings) -> "RemoteTransferClient":
        return cls(
            host=settings.sftp_host,
            port=settings.sftp_port,
            username=settings.sftp_user,
            password=settings.sftp_password,
            base_path=settings.sftp_base_path,
            connect_timeout=settings.sftp_connect_timeout_seconds,
            strict_size_check=settings.sftp_strict_size_check,
        )

    @property
    def configured(self) -> bool:
        return bool(self._host and self._username and self._password)

    def full_path(self, pointer: str) -> str:
        relative = pointer.strip("/")
        if not self._base_path:
            return relative
        return f"{self._base_path}/{relative}"

    def connect(self, *, operation: str = "connect") -> RemoteSession:
        missing = [
            name
            for name, value in (
                ("SFTP_HOST", self._host),
                ("SFTP_USER", self._username),
                ("SFTP_PASSWORD", self._password),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(
                f"Remote file host is not configured; missing {', '.join(missing)}",
                operation=operation,
            )

        started = time.monotonic()
        ssh = self._ssh_client_factory()
        ssh.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            ssh.connect(
                hostname=self._host,
                port=self._port,
                username=self._username,
                password=self._password,
                timeout=self._connect_timeout,
                banner_timeout=self._connect_timeout,
                auth_timeout=self._connect_timeout,
                look_for_keys=False,
                allow_agent=False,
            )
            sftp = ssh.open_sftp()
        except (paramiko.SSHException, OSError) as err:
            ssh.close()
            elapsed = time.monotonic() - started
            logger.error(
                "SFTP handshake failed for %s after %.3fs: %s",
                operation,
                elapsed,
                err.__class__.__name__,
            )
            raise RemoteConnectionError(
                "Could not open a session with the remote file host",
                operation=operation,
                elapsed=elapsed,
            ) from err

        logger.debug("SFTP session opened for %s in %.3fs", operation, time.monotonic() - started)
        return RemoteSession(ssh=ssh, sftp=sftp)

    @contextmanager
    def session(self, operation: str) -> Iterator[Any]:
        remote = self.connect(operation=operation)
        try:
            yield remote.sftp
        finally:
            remote.close()

    def write(self, pointer: str, payload: bytes) -> int:
        """Write ``payload`` to ``pointer``, replacing any existing file.

        Bytes land in a temporary sibling first and are renamed into place, so
        a write abandoned by its caller either completes or leaves nothing
        under the final name. Returns the size observed by stat-after-write,
        or the payload length when verification could not run.
        """
        target = self.full_path(pointer)
        directory, name = posixpath.split(target)
        temp_target = posixpath.join(directory, f".{name}.part")
        started = time.monotonic()

        with self.session("write") as sftp:
            try:
                ensure_remote_directory(sftp, directory)
                sftp.putfo(io.BytesIO(payload), temp_target, file_size=len(payload), confirm=False)
                self._replace(sftp, temp_target, target)
            except StorageError:
                self._discard(sftp, temp_target)
                raise
            except (IOError, paramiko.SSHException) as err:
                self._discard(sftp, temp_target)
                raise TransferError(
                    "Remote write failed",
                    operation="write",
                    target=pointer,
                    elapsed=time.monotonic() - started,
                ) from err

            verified = self._verify_size(sftp, target, pointer, expected=len(payload))

        logger.info(
            "Wrote %s bytes to %s in %.3fs",
            len(payload),
            pointer,
            time.monotonic() - started,
        )
        return verified if verified is not None else len(payload)

    def _replace(self, sftp: Any, source: str, target: str) -> None:
        try:
            sftp.posix_rename(source, target)
        except IOError:
            # servers without the posix-rename extension
            try:
                sftp.remove(target)
            except IOError:
                pass
            sftp.rename(source, target)

    def _discard(self, sftp: Any, path: str) -> None:
        try:
            sftp.remove(path)
        except IOError:
            pass

    def _verify_size(self, sftp: Any, target: str, pointer: str, *, expected: int) -> int | None:
        try:
            actual = sftp.stat(target).st_size
        except IOError as err:
            logger.warning("Could not verify %s after write: %s", pointer, err)
            return None

        if actual != expected:
            logger.warning(
                "Size mismatch after write to %s: expected %s bytes, found %s",
                pointer,
                expected,
                actual,
            )
            if self._strict_size_check:
                raise TransferError(
                    "Remote file size does not match the payload",
                    operation="write",
                    target=pointer,
                )
        return actual

    def remove(self, pointer: str) -> bool:
        """Delete a file. Returns False instead of raising, except for missing configuration."""
        try:
            with self.session("remove") as sftp:
                sftp.remove(self.full_path(pointer))
        except ConfigurationError:
            raise
        except (StorageError, IOError, paramiko.SSHException) as err:
            logger.warning("Remote delete of %s failed: %s", pointer, err.__class__.__name__)
            return False
        logger.info("Deleted remote file %s", pointer)
        return True

    def exists(self, pointer: str) -> bool:
        try:
            with self.session("exists") as sftp:
                attrs = sftp.stat(self.full_path(pointer))
        except (StorageError, IOError, paramiko.SSHException) as err:
            logger.debug("Existence check for %s returned false: %s", pointer, err.__class__.__name__)
            return False
        return not stat_module.S_ISDIR(attrs.st_mode or 0)

    def read(self, pointer: str) -> bytes:
        target = self.full_path(pointer)
        with self.session("read") as sftp:
            try:
                sftp.stat(target)
            except FileNotFoundError as err:
                raise ObjectNotFoundError("Remote file not found", operation="read", target=pointer) from err
            except (IOError, paramiko.SSHException) as err:
                raise TransferError("Remote stat failed", operation="read", target=pointer) from err

            buffer = io.BytesIO()
            try:
                sftp.getfo(target, buffer)
            except (IOError, paramiko.SSHException) as err:
                raise TransferError("Remote read failed", operation="read", target=pointer) from err
        return buffer.getvalue()

    def list(self, directory: str) -> list[RemoteEntry]:
        target = self.full_path(directory)
        with self.session("list") as sftp:
            try:
                rows = sftp.listdir_attr(target)
            except FileNotFoundError:
                return []
            except (IOError, paramiko.SSHException) as err:
                raise TransferError("Remote listing failed", operation="list", target=directory) from err

        return [
            RemoteEntry(
                name=row.filename,
                size=row.st_size or 0,
                is_dir=stat_module.S_ISDIR(row.st_mode or 0),
                modified_at=row.st_mtime,
            )
            for row in rows
        ]

    def check(self) -> bool:
        with self.session("check") as sftp:
            home = sftp.normalize(".")
        logger.debug("SFTP check landed in %s", home)
        return True
