from __future__ import annotations

from urllib.parse import unquote

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import Response

from core.errors import auth_permission_denied, document_upload_invalid
from core.response_envelope import document_deleted, document_response
from schemas.document_schema import ConfirmUploadRequest, UploadIntentRequest
from security.auth import verify_admin_token, verify_any_token
from security.principal import AuthPrincipal
from services.document_service import (
    audit_orphans,
    check_declared_size,
    check_storage,
    confirm_upload,
    create_upload_intent,
    direct_upload,
    fetch_document,
    find_document,
    list_documents,
    read_document_content,
    remove_document,
    summarize,
)

router = APIRouter(prefix="/documents", tags=["Documents"])

_DELETE_ROLES = ("tax_office", "admin")


def _resolve_owner(principal: AuthPrincipal, owner_id: str | None, permission_key: str) -> str:
    target = (owner_id or "").strip() or principal.owner_id
    if not principal.can_access_owner(target):
        raise auth_permission_denied(permission_key)
    return target


async def _read_upload_body(request: Request) -> bytes:
    """Buffer the raw upload body, refusing it with 413 once it passes the size limit."""
    declared = request.headers.get("content-length", "")
    if declared.isdigit():
        check_declared_size(int(declared))

    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        check_declared_size(len(body))
    return bytes(body)


@router.post("/upload-intents")
@document_response(
    message="Upload parameters issued",
    status_code=201,
    response_codes={401: "Unauthorized", 413: "File too large", 422: "Invalid payload", 503: "Storage not configured"},
)
async def create_document_upload_intent(
    payload: UploadIntentRequest,
    principal: AuthPrincipal = Depends(verify_any_token),
):
    owner_id = _resolve_owner(principal, payload.owner_id, "POST:/v1/documents/upload-intents")
    return create_upload_intent(owner_id=owner_id, payload=payload)


@router.post("/direct-upload")
@document_response(
    message="Document uploaded",
    status_code=201,
    response_codes={
        413: "File too large",
        422: "Invalid upload",
        502: "Transfer failed, retryable",
        503: "Storage not configured",
        504: "Transfer timed out, retryable",
    },
)
async def upload_document_direct(
    request: Request,
    x_file_name: str = Header(..., alias="X-File-Name"),
    x_owner_id: str | None = Header(default=None, alias="X-Owner-Id"),
    x_document_type: str = Header(default="other", alias="X-Document-Type"),
    content_type: str = Header(default="application/octet-stream", alias="Content-Type"),
    principal: AuthPrincipal = Depends(verify_any_token),
):
    owner_id = _resolve_owner(principal, x_owner_id, "POST:/v1/documents/direct-upload")
    file_name = unquote(x_file_name)
    if len(file_name) > 1024:
        raise document_upload_invalid("File name is too long")

    body = await _read_upload_body(request)
    return await direct_upload(
        owner_id=owner_id,
        uploaded_by=principal.user_id,
        file_name=file_name,
        mime_type=content_type.split(";", 1)[0].strip() or "application/octet-stream",
        payload=body,
        document_type=x_document_type.strip() or "other",
    )


@router.post("/confirm")
@document_response(message="Upload confirmed", status_code=201)
async def confirm_document_upload(
    payload: ConfirmUploadRequest,
    principal: AuthPrincipal = Depends(verify_any_token),
):
    owner_id = _resolve_owner(principal, payload.owner_id, "POST:/v1/documents/confirm")
    return await confirm_upload(owner_id=owner_id, uploaded_by=principal.user_id, payload=payload)


@router.get("")
@document_response(message="Documents fetched", include_meta=True, success_example=[])
async def list_owner_documents(
    owner_id: str | None = Query(default=None),
    document_type: str | None = Query(default=None),
    principal: AuthPrincipal = Depends(verify_any_token),
):
    target = _resolve_owner(principal, owner_id, "GET:/v1/documents")
    return await list_documents(owner_id=target, document_type=document_type)


@router.get("/audit/orphans")
@document_response(message="Orphan audit completed")
async def audit_owner_orphans(
    owner_id: str = Query(..., min_length=1),
    _principal: AuthPrincipal = Depends(verify_admin_token),
):
    return await audit_orphans(owner_id=owner_id)


@router.get("/storage/health")
@document_response(message="Storage check completed")
async def storage_health(_principal: AuthPrincipal = Depends(verify_admin_token)):
    return await check_storage()


@router.get("/{document_id}")
@document_response(message="Document fetched")
async def get_document(document_id: str, principal: AuthPrincipal = Depends(verify_any_token)):
    doc = await fetch_document(document_id=document_id)
    if not principal.can_access_owner(doc.owner_id):
        raise auth_permission_denied("GET:/v1/documents/{document_id}")
    return summarize(doc)


@router.get("/{document_id}/content")
async def download_document(document_id: str, principal: AuthPrincipal = Depends(verify_any_token)):
    doc = await fetch_document(document_id=document_id)
    if not principal.can_access_owner(doc.owner_id):
        raise auth_permission_denied("GET:/v1/documents/{document_id}/content")

    data, headers = await read_document_content(doc)
    media_type = headers.pop("Content-Type")
    return Response(content=data, media_type=media_type, headers=headers)


@router.delete("/{document_id}")
@document_deleted(message="Document deleted")
async def delete_document(document_id: str, principal: AuthPrincipal = Depends(verify_any_token)):
    doc = await find_document(document_id=document_id)
    if doc is None:
        return {"deleted": True}

    is_owner = principal.is_client and principal.owner_id == doc.owner_id
    if not is_owner and principal.role not in _DELETE_ROLES:
        raise auth_permission_denied("DELETE:/v1/documents/{document_id}")

    await remove_document(document_id=document_id)
    return {"deleted": True}
