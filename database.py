"""
Database helpers

Thin layer over pymongo. Every collection is a plain MongoDB collection
named after the lowercase schema class ("complaint", "invoice", ...).
create_document() stamps created_at/updated_at; updates done elsewhere set
updated_at themselves.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import MongoClient

from config import get_settings
from errors import ConflictError, DatabaseUnavailableError, ValidationError

logger = logging.getLogger(__name__)

_client = None
db = None

_settings = get_settings()
if _settings.DATABASE_URL and _settings.DATABASE_NAME:
    _client = MongoClient(_settings.DATABASE_URL)
    db = _client[_settings.DATABASE_NAME]


def get_db():
    if db is None:
        raise DatabaseUnavailableError("Database not available. Check DATABASE_URL and DATABASE_NAME")
    return db


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def now_iso() -> str:
    return now_utc().isoformat()


def oid(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise ValidationError("Invalid ID format")


def serialize(doc: Optional[dict]) -> Optional[dict]:
    """Replace Mongo's ``_id`` with a string ``id`` (in place)."""
    if doc is None:
        return None
    if "_id" in doc:
        doc["id"] = str(doc.pop("_id"))
    return doc


def _to_dict(data: Union[BaseModel, dict]) -> dict:
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json")
    return dict(data)


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document and return its id as a string."""
    data_dict = _to_dict(data)
    data_dict["created_at"] = now_utc()
    data_dict["updated_at"] = now_utc()
    result = get_db()[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None,
                  limit: Optional[int] = None, sort: Optional[List[Tuple[str, int]]] = None) -> List[dict]:
    cursor = get_db()[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return [serialize(doc) for doc in cursor]


def get_document(collection_name: str, doc_id: Union[str, ObjectId]) -> Optional[dict]:
    if isinstance(doc_id, str):
        doc_id = oid(doc_id)
    return serialize(get_db()[collection_name].find_one({"_id": doc_id}))


def update_document(collection_name: str, doc_id: Union[str, ObjectId], update: dict) -> int:
    """Apply an update and return the matched count.

    ``update`` is either a plain field mapping (wrapped in ``$set``) or a
    full update document with operators.
    """
    if isinstance(doc_id, str):
        doc_id = oid(doc_id)
    update_op = _as_update_op(update)
    result = get_db()[collection_name].update_one({"_id": doc_id}, update_op)
    return result.matched_count


def delete_document(collection_name: str, doc_id: Union[str, ObjectId]) -> int:
    if isinstance(doc_id, str):
        doc_id = oid(doc_id)
    return get_db()[collection_name].delete_one({"_id": doc_id}).deleted_count


def _as_update_op(update: dict) -> dict:
    if any(key.startswith("$") for key in update):
        op = {k: dict(v) for k, v in update.items()}
    else:
        op = {"$set": dict(update)}
    op.setdefault("$set", {})["updated_at"] = now_utc()
    return op


class WriteBatch:
    """Collects inserts and updates across collections and writes them together.

    With ``USE_TRANSACTIONS`` the writes run in one MongoDB transaction;
    otherwise they are applied in order with no rollback. An update given a
    ``where`` filter is a precondition: if it matches nothing the batch stops
    with ``ConflictError`` (and the transaction, if any, is aborted).
    """

    def __init__(self):
        self._ops: List[Tuple[str, str, dict, dict]] = []

    def __len__(self):
        return len(self._ops)

    def set(self, collection_name: str, data: Union[BaseModel, dict],
            doc_id: Optional[ObjectId] = None) -> str:
        doc_id = doc_id or ObjectId()
        data_dict = _to_dict(data)
        data_dict["_id"] = doc_id
        data_dict["created_at"] = now_utc()
        data_dict["updated_at"] = now_utc()
        self._ops.append(("insert", collection_name, {"_id": doc_id}, data_dict))
        return str(doc_id)

    def update(self, collection_name: str, doc_id: Union[str, ObjectId], update: dict,
               where: Optional[dict] = None) -> None:
        if isinstance(doc_id, str):
            doc_id = oid(doc_id)
        kind = "guarded" if where else "update"
        filt = {"_id": doc_id, **(where or {})}
        self._ops.append((kind, collection_name, filt, _as_update_op(update)))

    def _apply(self, session=None) -> None:
        database = get_db()
        for kind, collection_name, filt, payload in self._ops:
            if kind == "insert":
                database[collection_name].insert_one(payload, session=session)
                continue
            result = database[collection_name].update_one(filt, payload, session=session)
            if kind == "guarded" and result.matched_count == 0:
                raise ConflictError(f"{collection_name} {filt['_id']} changed before the write was applied")

    def commit(self) -> None:
        if not self._ops:
            return
        if get_settings().USE_TRANSACTIONS:
            with get_db().client.start_session() as session:
                session.with_transaction(lambda s: self._apply(s))
        else:
            self._apply()
        logger.debug("Committed batch of %d writes", len(self._ops))
        self._ops = []
