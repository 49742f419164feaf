"""
Database helpers

Thin single-document CRUD over MongoDB. Every write touches exactly one
document; state transitions pass the expected current state as part of the
filter so a concurrent writer that got there first makes ours a no-op.

Collection names follow the schema class names in lowercase
(Order -> "order", SettlementClaim -> "settlementclaim").
"""

import logging
from functools import wraps
from typing import Any, Dict, List, Optional, Tuple, Union

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Depends, HTTPException
from pydantic import BaseModel
from pymongo import MongoClient
from pymongo import errors as mongo_errors
from pymongo.database import Database

from config import settings
from errors import NotFoundError, StoreError, format_error_message

logger = logging.getLogger(__name__)

_client: Optional[MongoClient] = None
db: Optional[Database] = None

if settings.database_url and settings.database_name:
    _client = MongoClient(settings.database_url, serverSelectionTimeoutMS=5000)
    db = _client[settings.database_name]


def get_optional_db() -> Optional[Database]:
    return db


def get_db(database: Optional[Database] = Depends(get_optional_db)) -> Database:
    if database is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return database


def _error_code(exc: mongo_errors.PyMongoError) -> str:
    if isinstance(exc, mongo_errors.DuplicateKeyError):
        return "already-exists"
    if isinstance(exc, (mongo_errors.ExecutionTimeout, mongo_errors.NetworkTimeout, mongo_errors.WTimeoutError)):
        return "deadline-exceeded"
    if isinstance(exc, (mongo_errors.ServerSelectionTimeoutError, mongo_errors.AutoReconnect,
                        mongo_errors.ConnectionFailure)):
        return "unavailable"
    if isinstance(exc, mongo_errors.OperationFailure) and exc.code in (13, 18):
        return "permission-denied"
    return "internal"


def translate_store_errors(func):
    """Re-raise any driver failure as StoreError with a user-safe message."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except mongo_errors.PyMongoError as exc:
            code = _error_code(exc)
            logger.error("Store operation %s failed (%s): %s", func.__name__, code, exc)
            message = format_error_message(StoreError(str(exc), code=code))
            raise StoreError(message, code=code) from exc

    return wrapper


def to_object_id(document_id: Union[str, ObjectId]) -> ObjectId:
    if isinstance(document_id, ObjectId):
        return document_id
    try:
        return ObjectId(document_id)
    except (InvalidId, TypeError):
        raise NotFoundError(f"No document with id {document_id!r}")


def serialize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Expose the Mongo _id as a plain string id."""
    if doc is None:
        return None
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    return doc


def _as_dict(data: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json")
    return dict(data)


@translate_store_errors
def create_document(database: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]],
                    document_id: Optional[str] = None) -> str:
    doc = _as_dict(data)
    if document_id is not None:
        doc["_id"] = document_id
    result = database[collection_name].insert_one(doc)
    return str(result.inserted_id)


@translate_store_errors
def get_documents(database: Database, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                  limit: Optional[int] = None, sort: Optional[List[Tuple[str, int]]] = None) -> List[Dict[str, Any]]:
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return [serialize(d) for d in cursor]


@translate_store_errors
def get_document(database: Database, collection_name: str, document_id: Any) -> Optional[Dict[str, Any]]:
    return serialize(database[collection_name].find_one({"_id": document_id}))


@translate_store_errors
def update_document(database: Database, collection_name: str, document_id: Any, fields: Dict[str, Any],
                    expected: Optional[Dict[str, Any]] = None) -> bool:
    """$set ``fields`` on one document.

    ``expected`` is merged into the filter; the update only applies while the
    stored document still matches it. Returns whether a document matched.
    """
    filter_dict = {"_id": document_id}
    if expected:
        filter_dict.update(expected)
    result = database[collection_name].update_one(filter_dict, {"$set": fields})
    return result.matched_count == 1


@translate_store_errors
def delete_document(database: Database, collection_name: str, document_id: Any,
                    expected: Optional[Dict[str, Any]] = None) -> bool:
    filter_dict = {"_id": document_id}
    if expected:
        filter_dict.update(expected)
    result = database[collection_name].delete_one(filter_dict)
    return result.deleted_count == 1


@translate_store_errors
def aggregate(database: Database, collection_name: str, pipeline: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return list(database[collection_name].aggregate(pipeline))


@translate_store_errors
def ping(database: Database) -> List[str]:
    return database.list_collection_names()
