from __future__ import annotations
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo import MongoClient
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import PyMongoError

from config import settings
from errors import ExternalWriteFailure, NotFound

logger = logging.getLogger(__name__)

# Collections:
# - users
# - credentials
# - menu_items
# - orders
# - payments
TABLES = ("users", "credentials", "menu_items", "orders", "payments")

_client: Optional[MongoClient] = None
_db: Optional[Database] = None


def get_db() -> Database:
    global _client, _db
    if _db is None:
        _client = MongoClient(settings.database_url)
        _db = _client[settings.database_name]
    return _db


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class RecordStore:
    """
    Generic row storage over MongoDB.

    Records are plain dicts with snake_case keys and ISO-8601 dates. The
    record id doubles as the Mongo ``_id`` so lookups never touch ObjectId
    outside this module.
    """

    def __init__(self, db: Optional[Database] = None):
        self._db = db

    @property
    def db(self) -> Database:
        return self._db if self._db is not None else get_db()

    def collection(self, table: str) -> Collection:
        if table not in TABLES:
            raise ValueError(f"Unknown table {table!r}")
        return self.db[table]

    def insert(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        now = _now_iso()
        data = {
            "created_at": now,
            "updated_at": now,
            **record,
        }
        data["id"] = str(data.get("id") or ObjectId())
        data["_id"] = data["id"]
        try:
            self.collection(table).insert_one(data)
        except PyMongoError as e:
            logger.exception("Insert into %s failed", table)
            raise ExternalWriteFailure(f"Could not save {table} record: {e}") from e
        stored = dict(data)
        stored.pop("_id")
        return stored

    def update(self, table: str, record_id: str, patch: Dict[str, Any]) -> None:
        try:
            res = self.collection(table).update_one({"_id": record_id}, {"$set": patch})
        except PyMongoError as e:
            logger.exception("Update of %s/%s failed", table, record_id)
            raise ExternalWriteFailure(f"Could not update {table} record: {e}") from e
        if res.matched_count == 0:
            raise NotFound(f"{table} record {record_id} not found")

    def delete(self, table: str, record_id: str) -> None:
        try:
            res = self.collection(table).delete_one({"_id": record_id})
        except PyMongoError as e:
            logger.exception("Delete of %s/%s failed", table, record_id)
            raise ExternalWriteFailure(f"Could not delete {table} record: {e}") from e
        if res.deleted_count == 0:
            raise NotFound(f"{table} record {record_id} not found")

    def select(self, table: str, filter_dict: Optional[Dict[str, Any]] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        try:
            cursor = self.collection(table).find(filter_dict or {}).sort("created_at", 1)
            if limit:
                cursor = cursor.limit(limit)
            items: List[Dict[str, Any]] = []
            for doc in cursor:
                doc.pop("_id", None)
                items.append(doc)
            return items
        except PyMongoError as e:
            logger.exception("Select from %s failed", table)
            raise ExternalWriteFailure(f"Could not read {table} records: {e}") from e

    def ping(self) -> List[str]:
        return self.db.list_collection_names()
