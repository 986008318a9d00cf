from __future__ import annotations

from typing import Any, Iterable

_REQUEST_LOCATIONS = {"body", "query", "path", "header", "cookie"}


def _field_path(loc: Any) -> tuple[str, str]:
    if loc is None:
        return "body", "(root)"
    parts: Iterable[Any] = loc if isinstance(loc, (list, tuple)) else [loc]
    names = [str(part) for part in parts]
    if names and names[0] in _REQUEST_LOCATIONS:
        location, names = names[0], names[1:]
    else:
        location = "body"
    return location, ".".join(names) or "(root)"


def format_validation_error_details(errors: list[dict[str, Any]]) -> dict[str, Any]:
    """Condense pydantic errors into something an upload form can show.

    The rejected ``input`` is dropped: for upload requests it can be the raw
    file body or a full metadata payload, and neither belongs in a response.
    """
    field_errors: list[dict[str, str]] = []
    missing: list[str] = []

    for error in errors:
        location, path = _field_path(error.get("loc"))
        error_type = str(error.get("type", "validation_error"))
        field_errors.append(
            {
                "path": path,
                "location": location,
                "message": str(error.get("msg", "Invalid value")),
                "errorType": error_type,
            }
        )
        if error_type == "missing" and path not in missing:
            missing.append(path)

    if missing:
        summary = f"Missing required {'field' if len(missing) == 1 else 'fields'}: {', '.join(missing)}."
    else:
        summary = f"{len(field_errors)} invalid {'field' if len(field_errors) == 1 else 'fields'}."

    return {"summary": summary, "missingFields": missing, "fieldErrors": field_errors}
