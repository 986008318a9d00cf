from __future__ import annotations

from bson import ObjectId
from pymongo import DESCENDING, ReturnDocument

from core.database import db
from schemas.document_schema import DocumentCreate, DocumentOut

_DOCUMENT_INDEXES_READY = False


async def _ensure_document_indexes() -> None:
    global _DOCUMENT_INDEXES_READY
    if _DOCUMENT_INDEXES_READY:
        return
    await db.documents.create_index(
        [("backend_kind", 1), ("storage_pointer", 1)],
        name="idx_document_backend_pointer_unique",
        unique=True,
    )
    await db.documents.create_index(
        [("owner_id", 1), ("logical_name", 1), ("version", DESCENDING)],
        name="idx_document_owner_slot_version",
    )
    await db.documents.create_index(
        [("owner_id", 1), ("uploaded_at", DESCENDING)],
        name="idx_document_owner_uploaded_at",
    )
    await db.document_slots.create_index(
        [("owner_id", 1), ("logical_name", 1)],
        name="idx_document_slot_unique",
        unique=True,
    )
    _DOCUMENT_INDEXES_READY = True


async def _next_version(owner_id: str, logical_name: str) -> int:
    """Bump the per-slot counter, so a version number is never handed out twice.

    The counter outlives deleted rows. A slot written before it had a counter
    is seeded from its highest surviving row first.
    """
    slot = {"owner_id": owner_id, "logical_name": logical_name}
    latest = await db.documents.find_one(slot, sort=[("version", DESCENDING)], projection={"version": 1})
    if latest is not None:
        await db.document_slots.update_one(slot, {"$max": {"version": int(latest.get("version") or 0)}}, upsert=True)
    counter = await db.document_slots.find_one_and_update(
        slot,
        {"$inc": {"version": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return int(counter["version"])


async def create_document(document: DocumentCreate) -> DocumentOut:
    await _ensure_document_indexes()
    payload = document.model_dump(mode="json")
    payload["version"] = await _next_version(document.owner_id, document.logical_name)
    result = await db.documents.insert_one(payload)
    stored = await db.documents.find_one({"_id": result.inserted_id})
    return DocumentOut(**stored)  # type: ignore[arg-type]


async def get_document_by_id(document_id: str) -> DocumentOut | None:
    if not ObjectId.is_valid(document_id):
        return None
    row = await db.documents.find_one({"_id": ObjectId(document_id)})
    if row is None:
        return None
    return DocumentOut(**row)


async def get_document_by_pointer(backend_kind: str, storage_pointer: str) -> DocumentOut | None:
    row = await db.documents.find_one({"backend_kind": backend_kind, "storage_pointer": storage_pointer})
    if row is None:
        return None
    return DocumentOut(**row)


async def list_documents_by_owner(owner_id: str, document_type: str | None = None) -> list[DocumentOut]:
    await _ensure_document_indexes()
    query: dict[str, str] = {"owner_id": owner_id}
    if document_type:
        query["document_type"] = document_type
    cursor = db.documents.find(query).sort([("uploaded_at", DESCENDING), ("version", DESCENDING)])
    return [DocumentOut(**row) async for row in cursor]


async def list_storage_pointers(owner_id: str, backend_kind: str) -> set[str]:
    cursor = db.documents.find(
        {"owner_id": owner_id, "backend_kind": backend_kind},
        projection={"storage_pointer": 1},
    )
    return {row["storage_pointer"] async for row in cursor}


async def delete_document(document_id: str) -> bool:
    if not ObjectId.is_valid(document_id):
        return False
    result = await db.documents.delete_one({"_id": ObjectId(document_id)})
    return bool(result.deleted_count)
