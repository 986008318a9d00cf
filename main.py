from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from api.v1.documents_route import router as documents_router
from core.database import client as mongo_client
from core.logging_config import setup_logging
from core.response_envelope import (
    apply_response_documentation,
    document_response,
    error_response,
    http_exception_response,
    request_id_of,
)
from core.settings import get_settings
from core.storage import DocumentStorageManager, StorageBackend
from core.validation_errors import format_validation_error_details

settings = get_settings()
logger = logging.getLogger(__name__)
access_logger = logging.getLogger("tax_portal.access")


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Tags every request with an id and logs one access line per request.

    Upload bodies can take minutes on slow links, so elapsed time is logged
    alongside the status to tell slow clients from slow storage.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        started = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - started
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{elapsed:.4f}"
        access_logger.info(
            "%s %s -> %s in %.3fs request_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            elapsed,
            request_id,
        )
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    manager = DocumentStorageManager.configure_from_settings()
    logger.info("Document storage ready: active backend=%s", manager.active_backend.value)
    try:
        yield
    finally:
        await mongo_client.close()


app = FastAPI(lifespan=lifespan, title="Tax Portal Documents API")
app.add_middleware(RequestContextMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_origins) or ["http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition", "X-Request-ID"],
)


@app.exception_handler(HTTPException)
async def handle_http_exception(request: Request, exc: HTTPException):
    return http_exception_response(exc=exc, request=request)


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError):
    return error_response(
        status_code=422,
        message="Validation error",
        data={"code": "VALIDATION_FAILED", "details": format_validation_error_details(exc.errors())},
        request_id=request_id_of(request),
    )


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    details = str(exc) if settings.debug_include_error_details and not settings.is_production else None
    return error_response(
        status_code=500,
        message="Internal Server Error",
        data={"code": "INTERNAL_ERROR", "details": details},
        request_id=request_id_of(request),
    )


def _storage_configuration() -> dict[str, str]:
    # Configuration only; opening a session belongs to the admin storage check.
    backend = DocumentStorageManager.get_instance().active_backend
    if backend == StorageBackend.REMOTE_FILE:
        configured = bool(settings.sftp_host and settings.sftp_user and settings.sftp_password)
    else:
        configured = bool(settings.s3_bucket_name)
    return {"backend": backend.value, "status": "configured" if configured else "not_configured"}


@app.get("/health", tags=["Health"])
@document_response(
    message="Health check completed",
    success_example={
        "status": "healthy",
        "services": {"mongo": {"status": "healthy"}, "storage": {"backend": "remote-file", "status": "configured"}},
    },
)
async def health_check(request: Request):
    started = time.perf_counter()
    try:
        await mongo_client.admin.command("ping")
        mongo = {"status": "healthy"}
    except Exception as exc:
        logger.warning("Mongo ping failed: %s", exc.__class__.__name__)
        mongo = {"status": "unhealthy", "message": exc.__class__.__name__}
    mongo["latency_ms"] = round((time.perf_counter() - started) * 1000, 2)

    storage = _storage_configuration()
    healthy = mongo["status"] == "healthy" and storage["status"] == "configured"
    return {
        "status": "healthy" if healthy else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "services": {"mongo": mongo, "storage": storage},
    }


app.include_router(documents_router, prefix="/v1")
apply_response_documentation(app)
