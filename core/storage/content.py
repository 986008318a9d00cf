from __future__ import annotations

from urllib.parse import quote

_CONTENT_TYPES = {
    "pdf": "application/pdf",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "doc": "application/msword",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "xls": "application/vnd.ms-excel",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "txt": "text/plain",
}
_INLINE_EXTENSIONS = {"pdf", "jpg", "jpeg", "png", "gif"}


def _extension(file_name: str) -> str:
    if "." not in file_name:
        return ""
    return file_name.rsplit(".", 1)[-1].lower()


def content_type_for(file_name: str) -> str:
    # Derived from the logical name; the stored mime type is advisory only.
    return _CONTENT_TYPES.get(_extension(file_name), "application/octet-stream")


def content_disposition(file_name: str) -> str:
    kind = "inline" if _extension(file_name) in _INLINE_EXTENSIONS else "attachment"
    return f"{kind}; filename*=UTF-8''{quote(file_name, safe='')}"
