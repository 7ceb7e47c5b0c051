"""
MongoDB access helpers.

Every Pydantic model in ``schemas`` maps to a collection named after the
lowercased class name.
"""

import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

import config
from errors import ValidationFailure

logger = logging.getLogger(__name__)

client = MongoClient(config.DATABASE_URL, tz_aware=False)
db = client[config.DATABASE_NAME]


def get_db() -> Database:
    return db


def collection_name(model_cls) -> str:
    return model_cls.__name__.lower()


def to_object_id(value: str, what: str = "id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise ValidationFailure(f"Invalid {what}: {value}")


def create_document(database: Database, name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)
    now = datetime.utcnow()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = database[name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(database: Database, name: str, filter_dict: Optional[Dict[str, Any]] = None,
                  limit: Optional[int] = None, sort: Optional[List] = None) -> List[Dict[str, Any]]:
    cursor = database[name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def _serialize_value(v: Any) -> Any:
    if isinstance(v, ObjectId):
        return str(v)
    if isinstance(v, (datetime, date)):
        return v.isoformat()
    if isinstance(v, dict):
        return serialize_doc(v)
    if isinstance(v, list):
        return [_serialize_value(i) for i in v]
    return v


def serialize_doc(doc: Dict[str, Any]) -> Dict[str, Any]:
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    d.pop("password_hash", None)
    return {k: _serialize_value(v) for k, v in d.items()}


def serialize_list(docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [serialize_doc(d) for d in docs]


def ensure_indexes(database: Database) -> None:
    """Create the indexes the ledgers rely on. Safe to call repeatedly."""
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["user"].create_index([("admissionNumber", ASCENDING)])
    database["course"].create_index([("code", ASCENDING)], unique=True)

    database["feerecord"].create_index(
        [("student", ASCENDING), ("academicYear", ASCENDING), ("term", ASCENDING)], unique=True
    )
    database["feerecord"].create_index([("paymentStatus", ASCENDING)])
    database["feerecord"].create_index([("gatepassStatus.allowed", ASCENDING)])

    database["gatepassrecord"].create_index([("verificationCode", ASCENDING)], unique=True)
    database["gatepassrecord"].create_index([("receiptNumber", ASCENDING)], unique=True)
    database["gatepassrecord"].create_index([("student", ASCENDING), ("verificationTime", DESCENDING)])
    database["gatepassrecord"].create_index([("admissionNumber", ASCENDING)])
    database["gatepassrecord"].create_index([("verificationStatus", ASCENDING)])

    database["exam"].create_index([("teacher", ASCENDING), ("date", ASCENDING)])
    database["exam"].create_index([("results.student", ASCENDING)])

    database["announcement"].create_index([("status", ASCENDING), ("validFrom", ASCENDING)])

    database["report"].create_index([("reporter", ASCENDING), ("status", ASCENDING)])
    database["report"].create_index([("reportType", ASCENDING), ("targetDashboard", ASCENDING)])
    database["report"].create_index([("status", ASCENDING), ("priority", DESCENDING)])

    database["schedule"].create_index([("teacher", ASCENDING), ("date", ASCENDING)])
    database["schedule"].create_index([("course", ASCENDING), ("level", ASCENDING), ("date", ASCENDING)])
    database["schedule"].create_index([("status", ASCENDING), ("date", ASCENDING)])
    logger.info("Database indexes ensured on %s", database.name)
