from __future__ import annotations

import logging
import time

from pymongo.errors import DuplicateKeyError

from core.errors import AppException, ErrorCode, document_upload_invalid, resource_not_found, storage_exception
from core.settings import get_settings
from core.storage import (
    DocumentMetadata,
    DocumentStorageManager,
    StorageBackend,
    StorageError,
    StoredObject,
)
from core.storage.content import content_disposition, content_type_for
from core.storage.naming import validate_owner_segment
from core.storage.provider import DocumentStorageProvider
from repositories.document_repo import (
    create_document,
    delete_document,
    get_document_by_id,
    get_document_by_pointer,
    list_documents_by_owner,
    list_storage_pointers,
)
from schemas.document_schema import (
    ConfirmUploadRequest,
    DirectUploadResult,
    DocumentCreate,
    DocumentOut,
    DocumentSummary,
    OrphanAuditReport,
    OrphanedObject,
    UploadIntentRequest,
    UploadIntentResponse,
)

logger = logging.getLogger(__name__)


def _epoch() -> int:
    return int(time.time())


def _storage() -> DocumentStorageManager:
    return DocumentStorageManager.get_instance()


def _check_owner(owner_id: str) -> str:
    try:
        return validate_owner_segment(owner_id)
    except StorageError as err:
        raise storage_exception(err) from err


def check_declared_size(size: int) -> None:
    max_size = get_settings().document_max_size_bytes
    if size > max_size:
        raise AppException(
            status_code=413,
            code=ErrorCode.DOCUMENT_UPLOAD_INVALID,
            message="File too large",
            details={"max_size_bytes": max_size},
        )


def summarize(doc: DocumentOut) -> DocumentSummary:
    provider = _storage().provider_for(doc.backend_kind)
    return DocumentSummary.from_document(doc, public_url=provider.public_url(doc.storage_pointer))


async def _record_stored_object(
    *,
    stored: StoredObject,
    owner_id: str,
    uploaded_by: str,
    file_name: str,
    document_type: str,
    notes: str | None,
) -> DocumentOut:
    try:
        return await create_document(
            DocumentCreate(
                owner_id=owner_id,
                logical_name=file_name,
                storage_pointer=stored.location.pointer,
                backend_kind=stored.location.backend,
                size_bytes=stored.size,
                mime_type=stored.mime_type,
                document_type=document_type,
                uploaded_by=uploaded_by,
                notes=notes,
                uploaded_at=_epoch(),
            )
        )
    except DuplicateKeyError:
        raise
    except Exception:
        # Bytes are stored but unreferenced; the orphan audit is the only way back to them.
        logger.error(
            "Orphaned object: backend=%s pointer=%s owner=%s; metadata insert failed",
            stored.location.backend.value,
            stored.location.pointer,
            owner_id,
        )
        raise


def create_upload_intent(*, owner_id: str, payload: UploadIntentRequest) -> UploadIntentResponse:
    owner_id = _check_owner(owner_id)
    check_declared_size(payload.size)

    metadata = DocumentMetadata(
        owner_id=owner_id,
        file_name=payload.file_name,
        mime_type=payload.mime_type,
        size=payload.size,
        extra={"document_type": payload.document_type},
    )
    provider = _storage().provider
    try:
        intent = provider.create_upload_intent(metadata)
    except StorageError as err:
        logger.error("Upload parameters failed: %s", err.log_context())
        raise storage_exception(err) from err

    return UploadIntentResponse(
        backend=intent.backend,
        logical_path=intent.logical_path,
        upload_url=intent.upload_url,
        method=intent.method,
        expires_in=intent.expires_in,
        headers=intent.headers,
    )


async def direct_upload(
    *,
    owner_id: str,
    uploaded_by: str,
    file_name: str,
    mime_type: str,
    payload: bytes,
    document_type: str = "other",
    notes: str | None = None,
) -> DirectUploadResult:
    """Single-phase remote-file upload: write bytes, then record them."""
    owner_id = _check_owner(owner_id)
    if not file_name.strip():
        raise document_upload_invalid("File name is required")
    if not payload:
        raise document_upload_invalid("Upload body is empty")
    check_declared_size(len(payload))

    manager = _storage()
    if manager.active_backend != StorageBackend.REMOTE_FILE:
        raise document_upload_invalid(
            "Direct uploads are disabled; request upload parameters instead",
            details={"backend": manager.active_backend.value},
        )

    metadata = DocumentMetadata(owner_id=owner_id, file_name=file_name, mime_type=mime_type, size=len(payload))
    started = time.monotonic()
    logger.info("Direct upload started: owner=%s size=%s", owner_id, len(payload))
    try:
        stored = await manager.provider.write_bytes(metadata=metadata, payload=payload)
    except StorageError as err:
        logger.error("Direct upload failed: %s cause=%s", err.log_context(), err.__cause__ or err)
        raise storage_exception(err) from err

    doc = await _record_stored_object(
        stored=stored,
        owner_id=owner_id,
        uploaded_by=uploaded_by,
        file_name=file_name,
        document_type=document_type,
        notes=notes,
    )
    logger.info(
        "Direct upload finished: document=%s version=%s elapsed=%.3fs",
        doc.id,
        doc.version,
        time.monotonic() - started,
    )
    return DirectUploadResult(document=summarize(doc), logical_path=stored.location.pointer)


async def confirm_upload(*, owner_id: str, uploaded_by: str, payload: ConfirmUploadRequest) -> DocumentSummary:
    """Second phase of an object-store upload: verify the object, then record it."""
    owner_id = _check_owner(owner_id)
    check_declared_size(payload.size)

    manager = _storage()
    provider = manager.provider
    existing = await get_document_by_pointer(provider.backend.value, payload.logical_path)
    if existing is not None:
        if existing.owner_id != owner_id:
            raise document_upload_invalid("Logical path belongs to another owner")
        return summarize(existing)

    metadata = DocumentMetadata(
        owner_id=owner_id,
        file_name=payload.file_name,
        mime_type=payload.mime_type,
        size=payload.size,
    )
    try:
        stored = await provider.confirm_upload(pointer=payload.logical_path, metadata=metadata)
    except StorageError as err:
        logger.error("Upload confirmation failed: %s", err.log_context())
        raise storage_exception(err) from err

    try:
        doc = await _record_stored_object(
            stored=stored,
            owner_id=owner_id,
            uploaded_by=uploaded_by,
            file_name=payload.file_name,
            document_type=payload.document_type,
            notes=payload.notes,
        )
    except DuplicateKeyError:
        # a concurrent confirm of the same pointer got there first
        existing = await get_document_by_pointer(provider.backend.value, payload.logical_path)
        if existing is None:
            raise
        return summarize(existing)
    logger.info("Object-store upload confirmed: document=%s version=%s", doc.id, doc.version)
    return summarize(doc)


async def find_document(document_id: str) -> DocumentOut | None:
    return await get_document_by_id(document_id=document_id)


async def fetch_document(document_id: str) -> DocumentOut:
    doc = await get_document_by_id(document_id=document_id)
    if doc is None:
        raise resource_not_found("Document", document_id)
    return doc


async def list_documents(*, owner_id: str, document_type: str | None = None) -> list[DocumentSummary]:
    owner_id = _check_owner(owner_id)
    return [summarize(doc) for doc in await list_documents_by_owner(owner_id, document_type)]


async def read_document_content(doc: DocumentOut) -> tuple[bytes, dict[str, str]]:
    """Fetch bytes from the backend stamped on the record."""
    provider: DocumentStorageProvider = _storage().provider_for(doc.backend_kind)
    try:
        data = await provider.read_bytes(pointer=doc.storage_pointer)
    except StorageError as err:
        logger.error("Download failed for document %s: %s", doc.id, err.log_context())
        raise storage_exception(err, action="Download") from err

    headers = {
        "Content-Type": content_type_for(doc.logical_name),
        "Content-Disposition": content_disposition(doc.logical_name),
    }
    return data, headers


async def remove_document(document_id: str) -> bool:
    """Delete bytes then the record. Missing records are not an error.

    A failed byte delete is logged and never blocks removal of the record.
    """
    doc = await get_document_by_id(document_id=document_id)
    if doc is None:
        return False

    provider = _storage().provider_for(doc.backend_kind)
    try:
        removed = await provider.delete_object(pointer=doc.storage_pointer)
    except StorageError as err:
        logger.warning(
            "Byte delete failed for document %s (%s): %s; removing record anyway",
            doc.id,
            doc.backend_kind.value,
            err.log_context(),
        )
    else:
        if not removed:
            logger.warning(
                "Byte delete reported failure for document %s (%s) pointer=%s; removing record anyway",
                doc.id,
                doc.backend_kind.value,
                doc.storage_pointer,
            )

    return await delete_document(document_id=document_id)


async def audit_orphans(*, owner_id: str) -> OrphanAuditReport:
    """List stored objects under an owner that no record points at. Reports only."""
    owner_id = _check_owner(owner_id)
    manager = _storage()
    provider = manager.provider
    try:
        entries = await provider.list_owner_objects(owner_id=owner_id)
    except StorageError as err:
        logger.error("Orphan audit failed: %s", err.log_context())
        raise storage_exception(err, action="Audit") from err

    known = await list_storage_pointers(owner_id, provider.backend.value)
    orphans = [
        OrphanedObject(name=entry.name, size_bytes=entry.size, modified_at=entry.modified_at)
        for entry in entries
        if provider.pointer_for(owner_id=owner_id, name=entry.name) not in known
    ]
    for orphan in orphans:
        logger.warning("Orphaned object under owner %s: %s", owner_id, orphan.name)

    return OrphanAuditReport(
        owner_id=owner_id,
        backend_kind=provider.backend,
        scanned=len(entries),
        orphans=orphans,
    )


async def check_storage() -> dict[str, str | float]:
    manager = _storage()
    started = time.perf_counter()
    try:
        await manager.provider.check()
    except StorageError as err:
        logger.warning("Storage check failed: %s", err.log_context())
        return {
            "backend": manager.active_backend.value,
            "status": "unhealthy",
            "latency_ms": round((time.perf_counter() - started) * 1000, 2),
            "message": err.__class__.__name__,
        }
    return {
        "backend": manager.active_backend.value,
        "status": "healthy",
        "latency_ms": round((time.perf_counter() - started) * 1000, 2),
        "message": "Session opened and closed",
    }
