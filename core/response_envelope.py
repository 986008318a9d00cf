from __future__ import annotations

import inspect
from dataclasses import dataclass
from functools import wraps
from typing import Any, Callable

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute
from starlette.responses import Response

_ENVELOPE_ATTR = "__document_envelope__"


@dataclass(frozen=True)
class EnvelopeConfig:
    message: str
    status_code: int
    description: str
    success_example: Any | None = None
    include_meta: bool = False
    response_codes: dict[int, str] | None = None


def success_payload(
    data: Any,
    message: str = "Success",
    *,
    meta: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {"success": True, "message": message, "data": data}
    if meta is not None:
        payload["meta"] = meta
    if request_id:
        payload["requestId"] = request_id
    return payload


def error_payload(
    message: str,
    data: Any = None,
    *,
    request_id: str | None = None,
) -> dict[str, Any]:
    """Failure envelope.

    Storage failures carry ``details.retryable``; it is lifted to the top level
    so clients can decide on a retry without digging into ``data``.
    """
    payload: dict[str, Any] = {"success": False, "message": message, "data": data}
    details = data.get("details") if isinstance(data, dict) else None
    if isinstance(details, dict) and "retryable" in details:
        payload["retryable"] = bool(details["retryable"])
    if request_id:
        payload["requestId"] = request_id
    return payload


def error_response(
    *,
    status_code: int,
    message: str,
    data: Any = None,
    headers: dict[str, str] | None = None,
    request_id: str | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        headers=headers,
        content=jsonable_encoder(error_payload(message=message, data=data, request_id=request_id)),
    )


def _split_detail(detail: Any) -> tuple[str, dict[str, Any]]:
    # AppException always sends {"message", "code", "details"}; anything else
    # comes from FastAPI itself (bearer auth, 404 routing, 405).
    if isinstance(detail, dict) and isinstance(detail.get("message"), str):
        return detail["message"], {"code": detail.get("code", "HTTP_EXCEPTION"), "details": detail.get("details")}
    if isinstance(detail, str) and detail.strip():
        return detail, {"code": "HTTP_EXCEPTION", "details": None}
    return "Request failed", {"code": "HTTP_EXCEPTION", "details": detail}


def request_id_of(request: Request | None) -> str | None:
    if request is None:
        return None
    return getattr(request.state, "request_id", None)


def http_exception_response(exc: HTTPException, request: Request | None = None) -> JSONResponse:
    message, data = _split_detail(exc.detail)
    return error_response(
        status_code=exc.status_code,
        message=message,
        data=data,
        request_id=request_id_of(request),
        headers=exc.headers,
    )


def _find_request(args: tuple[Any, ...], kwargs: dict[str, Any]) -> Request | None:
    for value in (*kwargs.values(), *args):
        if isinstance(value, Request):
            return value
    return None


def document_response(
    *,
    message: str = "Success",
    status_code: int = status.HTTP_200_OK,
    description: str = "Successful response",
    success_example: Any | None = None,
    include_meta: bool = False,
    response_codes: dict[int, str] | None = None,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Wrap a route's return value in the success envelope.

    Raw ``Response`` objects (file downloads) pass through untouched. With
    ``include_meta`` a list result gets ``meta.count``.
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        config = EnvelopeConfig(
            message=message,
            status_code=status_code,
            description=description,
            success_example=success_example,
            include_meta=include_meta,
            response_codes=response_codes,
        )

        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Response:
            result = func(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await result
            if isinstance(result, Response):
                return result

            meta = {"count": len(result)} if config.include_meta and isinstance(result, list) else None
            return JSONResponse(
                status_code=config.status_code,
                content=jsonable_encoder(
                    success_payload(
                        data=result,
                        message=config.message,
                        meta=meta,
                        request_id=request_id_of(_find_request(args, kwargs)),
                    )
                ),
            )

        setattr(wrapper, _ENVELOPE_ATTR, config)
        return wrapper

    return decorator


def document_deleted(*, message: str = "Deleted") -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    return document_response(
        message=message,
        description="Document removed, or already absent",
        success_example={"deleted": True},
    )


def apply_response_documentation(app: FastAPI) -> None:
    """Copy envelope status codes and examples onto the OpenAPI routes."""
    for route in app.routes:
        if not isinstance(route, APIRoute):
            continue
        config = getattr(route.endpoint, _ENVELOPE_ATTR, None)
        if not isinstance(config, EnvelopeConfig):
            continue

        route.status_code = config.status_code
        responses = dict(route.responses or {})
        responses[config.status_code] = {
            "description": config.description,
            "content": {
                "application/json": {
                    "example": success_payload(
                        data=config.success_example,
                        message=config.message,
                        meta={"count": 0} if config.include_meta else None,
                    )
                }
            },
        }
        for code, code_description in (config.response_codes or {}).items():
            responses.setdefault(code, {"description": code_description})
        route.responses = responses

    app.openapi_schema = None
