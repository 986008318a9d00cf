from __future__ import annotations

from enum import Enum
from typing import Any

from fastapi import HTTPException, status

from core.storage.errors import (
    ConfigurationError,
    ObjectNotFoundError,
    OperationTimeoutError,
    RemoteConnectionError,
    StorageError,
    StorageValidationError,
    TransferError,
)


class ErrorCode(str, Enum):
    AUTH_INVALID_TOKEN = "AUTH_INVALID_TOKEN"
    AUTH_ROLE_MISMATCH = "AUTH_ROLE_MISMATCH"
    AUTH_PERMISSION_DENIED = "AUTH_PERMISSION_DENIED"
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    DOCUMENT_UPLOAD_INVALID = "DOCUMENT_UPLOAD_INVALID"
    DOCUMENT_UPLOAD_FAILED = "DOCUMENT_UPLOAD_FAILED"
    STORAGE_NOT_CONFIGURED = "STORAGE_NOT_CONFIGURED"
    STORAGE_UNAVAILABLE = "STORAGE_UNAVAILABLE"
    STORAGE_TIMEOUT = "STORAGE_TIMEOUT"


class AppException(HTTPException):
    def __init__(
        self,
        *,
        status_code: int,
        code: ErrorCode,
        message: str,
        details: Any | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        detail = {
            "message": message,
            "code": code.value,
            "details": details,
        }
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.code = code


def auth_invalid_token(details: Any | None = None) -> AppException:
    return AppException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        code=ErrorCode.AUTH_INVALID_TOKEN,
        message="Invalid token",
        details=details,
    )


def auth_role_mismatch(required_role: str, actual_role: str | None) -> AppException:
    return AppException(
        status_code=status.HTTP_403_FORBIDDEN,
        code=ErrorCode.AUTH_ROLE_MISMATCH,
        message="Token role mismatch",
        details={"required_role": required_role, "actual_role": actual_role},
    )


def auth_permission_denied(permission_key: str) -> AppException:
    return AppException(
        status_code=status.HTTP_403_FORBIDDEN,
        code=ErrorCode.AUTH_PERMISSION_DENIED,
        message="Insufficient permissions",
        details={"permission_key": permission_key},
    )


def resource_not_found(resource: str, resource_id: str | None = None) -> AppException:
    details = {"resource": resource}
    if resource_id:
        details["resource_id"] = resource_id
    return AppException(
        status_code=status.HTTP_404_NOT_FOUND,
        code=ErrorCode.RESOURCE_NOT_FOUND,
        message=f"{resource} not found",
        details=details,
    )


def document_upload_invalid(message: str, details: Any | None = None) -> AppException:
    return AppException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        code=ErrorCode.DOCUMENT_UPLOAD_INVALID,
        message=message,
        details=details,
    )


def storage_exception(err: StorageError, *, action: str = "Upload") -> AppException:
    """Map a transfer-layer failure to a client-safe response.

    Messages are generic on purpose; remote paths and hosts stay in the logs.
    """
    if isinstance(err, StorageValidationError):
        return document_upload_invalid(err.message)
    if isinstance(err, ObjectNotFoundError):
        return resource_not_found("Document content")
    if isinstance(err, ConfigurationError):
        return AppException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            code=ErrorCode.STORAGE_NOT_CONFIGURED,
            message="Document storage is not configured",
            details={"retryable": False},
        )
    if isinstance(err, OperationTimeoutError):
        return AppException(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            code=ErrorCode.STORAGE_TIMEOUT,
            message=f"{action} failed, try again",
            details={"retryable": True},
        )
    if isinstance(err, RemoteConnectionError):
        return AppException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            code=ErrorCode.STORAGE_UNAVAILABLE,
            message=f"{action} failed, try again",
            details={"retryable": True},
        )
    if isinstance(err, TransferError):
        return AppException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            code=ErrorCode.DOCUMENT_UPLOAD_FAILED,
            message=f"{action} failed, try again",
            details={"retryable": True},
        )
    return AppException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        code=ErrorCode.INTERNAL_ERROR,
        message="Internal Server Error",
    )
