from __future__ import annotations

import re
import time
from urllib.parse import quote

from core.storage.errors import StorageValidationError

MAX_FILE_NAME_LENGTH = 200

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")
_REPEATED_UNDERSCORES = re.compile(r"_+")
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def _epoch_ms() -> int:
    return int(time.time() * 1000)


def sanitize_file_name(file_name: str) -> str:
    """Reduce an untrusted file name to ``[A-Za-z0-9._-]`` characters.

    Separators and control characters become ``_``, runs of ``_`` collapse,
    and the result is truncated to 200 characters. Dot runs are folded so a
    ``..`` sequence cannot survive either.
    """
    cleaned = _UNSAFE_CHARS.sub("_", file_name)
    while ".." in cleaned:
        cleaned = cleaned.replace("..", "_")
    cleaned = _REPEATED_UNDERSCORES.sub("_", cleaned)
    cleaned = cleaned[:MAX_FILE_NAME_LENGTH]
    if cleaned in {"", ".", "_"}:
        return "file"
    return cleaned


def unique_file_name(file_name: str, *, now_ms: int | None = None) -> str:
    """Timestamp-prefixed sanitized name.

    Two uploads of the same original name within the same millisecond collide;
    that residual risk is accepted.
    """
    stamp = _epoch_ms() if now_ms is None else now_ms
    return sanitize_file_name(f"{stamp}_{sanitize_file_name(file_name)}")


def validate_owner_segment(owner_id: str) -> str:
    value = (owner_id or "").strip()
    if not value:
        raise StorageValidationError("Owner id is required", operation="validate_owner")
    if (
        "/" in value
        or "\\" in value
        or ".." in value
        or value in {".", "~"}
        or _CONTROL_CHARS.search(value)
    ):
        raise StorageValidationError(
            "Owner id contains path separators or parent references",
            operation="validate_owner",
        )
    return value


def owner_directory(uploads_dir: str, owner_id: str) -> str:
    segment = validate_owner_segment(owner_id)
    return f"{uploads_dir.strip('/')}/{segment}"


def build_storage_pointer(
    uploads_dir: str,
    owner_id: str,
    file_name: str,
    *,
    now_ms: int | None = None,
) -> str:
    return f"{owner_directory(uploads_dir, owner_id)}/{unique_file_name(file_name, now_ms=now_ms)}"


def validate_storage_pointer(pointer: str, *, uploads_dir: str) -> str:
    """Reject pointers that escape the uploads tree.

    Pointers come back from callers on the confirm step, so they are treated
    as untrusted even though this service minted them.
    """
    value = (pointer or "").strip()
    prefix = f"{uploads_dir.strip('/')}/"
    if not value.startswith(prefix):
        raise StorageValidationError("Storage pointer is outside the uploads tree", operation="validate_pointer")
    segments = value[len(prefix):].split("/")
    if len(segments) != 2:
        raise StorageValidationError("Storage pointer has an unexpected shape", operation="validate_pointer")
    owner_segment, name = segments
    validate_owner_segment(owner_segment)
    if not name or sanitize_file_name(name) != name:
        raise StorageValidationError("Storage pointer file name is not sanitized", operation="validate_pointer")
    return value


def pointer_owner(pointer: str) -> str:
    return pointer.rstrip("/").split("/")[-2]


def encode_path(path: str) -> str:
    return "/".join(quote(segment, safe="") for segment in path.split("/"))
