from __future__ import annotations

from typing import Any

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field, model_validator

from core.storage.types import StorageBackend


class UploadIntentRequest(BaseModel):
    owner_id: str | None = None
    file_name: str = Field(min_length=1, max_length=1024)
    mime_type: str = Field(default="application/octet-stream", min_length=1, max_length=100)
    size: int = Field(gt=0)
    document_type: str = Field(default="other", min_length=1, max_length=50)


class UploadIntentResponse(BaseModel):
    backend: StorageBackend
    logical_path: str
    upload_url: str
    method: str
    expires_in: int | None = None
    headers: dict[str, str] | None = None


class ConfirmUploadRequest(BaseModel):
    owner_id: str | None = None
    logical_path: str = Field(min_length=1)
    file_name: str = Field(min_length=1, max_length=1024)
    mime_type: str = Field(default="application/octet-stream", min_length=1, max_length=100)
    size: int = Field(gt=0)
    document_type: str = Field(default="other", min_length=1, max_length=50)
    notes: str | None = Field(default=None, max_length=2000)


class DocumentCreate(BaseModel):
    owner_id: str = Field(min_length=1)
    logical_name: str
    storage_pointer: str
    backend_kind: StorageBackend
    size_bytes: int
    mime_type: str
    document_type: str = "other"
    uploaded_by: str
    notes: str | None = None
    uploaded_at: int


class DocumentOut(BaseModel):
    id: str | None = Field(default=None, alias="_id")
    owner_id: str
    logical_name: str
    storage_pointer: str
    backend_kind: StorageBackend
    size_bytes: int
    mime_type: str
    document_type: str = "other"
    version: int = 1
    uploaded_by: str
    notes: str | None = None
    uploaded_at: int

    @model_validator(mode="before")
    @classmethod
    def convert_objectid(cls, values: Any):
        if isinstance(values, dict) and "_id" in values and isinstance(values["_id"], ObjectId):
            values["_id"] = str(values["_id"])
        return values

    model_config = ConfigDict(populate_by_name=True)


class DocumentSummary(BaseModel):
    """What callers see: the storage pointer stays inside the transfer layer."""

    id: str
    owner_id: str
    logical_name: str
    backend_kind: StorageBackend
    size_bytes: int
    mime_type: str
    document_type: str
    version: int
    uploaded_by: str
    notes: str | None = None
    uploaded_at: int
    public_url: str | None = None

    @classmethod
    def from_document(cls, doc: DocumentOut, *, public_url: str | None = None) -> "DocumentSummary":
        return cls(
            id=doc.id or "",
            owner_id=doc.owner_id,
            logical_name=doc.logical_name,
            backend_kind=doc.backend_kind,
            size_bytes=doc.size_bytes,
            mime_type=doc.mime_type,
            document_type=doc.document_type,
            version=doc.version,
            uploaded_by=doc.uploaded_by,
            notes=doc.notes,
            uploaded_at=doc.uploaded_at,
            public_url=public_url,
        )


class DirectUploadResult(BaseModel):
    document: DocumentSummary
    logical_path: str


class OrphanedObject(BaseModel):
    name: str
    size_bytes: int
    modified_at: int | None = None


class OrphanAuditReport(BaseModel):
    owner_id: str
    backend_kind: StorageBackend
    scanned: int
    orphans: list[OrphanedObject]
