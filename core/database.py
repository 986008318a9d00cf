from __future__ import annotations

from pymongo import AsyncMongoClient

from core.settings import get_settings

_settings = get_settings()

client: AsyncMongoClient = AsyncMongoClient(_settings.mongo_url, serverSelectionTimeoutMS=2000, tz_aware=True)
db = client[_settings.db_name or "tax_portal"]
