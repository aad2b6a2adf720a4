"""
Database helpers

MongoDB access for the API. Collections are named after the lowercase schema
class (Teacher -> "teacher", LessonPlan -> "lessonplan"). Documents are stored
with snake_case keys and ObjectId references; `to_public` turns them into the
camelCase JSON the API returns.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple, Type, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import OperationFailure, PyMongoError

from app_logger import get_logger
from config import settings
from errors import ApiError

log = get_logger("database")

client: Optional[MongoClient] = None
db: Optional[Database] = None

if settings.DATABASE_URL and settings.DATABASE_NAME:
    client = MongoClient(settings.DATABASE_URL, serverSelectionTimeoutMS=5000)
    db = client[settings.DATABASE_NAME]

# Outcomes of find_active_or_reactivate
ACTIVE = "active"
REACTIVATED = "reactivated"
CREATED = "created"


def utcnow() -> datetime:
    # BSON dates come back naive; keep everything naive UTC so comparisons work
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc(value: datetime) -> datetime:
    """Naive UTC, the form dates are stored and compared in."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def get_db() -> Database:
    if db is None:
        raise ApiError(500, "Database is not configured")
    return db


def create_document(database: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> dict:
    """Insert a document, stamping created_at/updated_at. Returns the stored document."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    data_dict.pop("id", None)
    now = utcnow()
    data_dict.setdefault("created_at", now)
    data_dict["updated_at"] = now
    result = database[collection_name].insert_one(data_dict)
    data_dict["_id"] = result.inserted_id
    return data_dict


def get_documents(
    database: Database,
    collection_name: str,
    filter_dict: Optional[dict] = None,
    sort: Optional[List[Tuple[str, int]]] = None,
    skip: int = 0,
    limit: Optional[int] = None,
) -> List[dict]:
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def update_document(database: Database, collection_name: str, _id: ObjectId, values: dict) -> Optional[dict]:
    """$set `values` (plus updated_at) and return the updated document."""
    return database[collection_name].find_one_and_update(
        {"_id": _id},
        {"$set": {**values, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )


def parse_object_id(value: Any, label: str = "") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        name = f"{label} " if label else ""
        raise ApiError(400, f"Invalid {name}ID".replace("  ", " "))


def find_active_or_reactivate(
    collection: Collection,
    key: dict,
    values: dict,
) -> Tuple[dict, str]:
    """
    Resolve a create request against the uniqueness `key`.

    - an active document matching `key` is returned untouched (ACTIVE)
    - otherwise the most recent soft-deleted match is flipped back to active and
      refreshed with `values` in one conditional update (REACTIVATED)
    - otherwise a new document `key | values` is inserted (CREATED)

    The reactivation filter includes ``is_active: False`` so two concurrent
    callers cannot both revive the same document.
    """
    existing = collection.find_one({**key, "is_active": True})
    if existing is not None:
        return existing, ACTIVE

    now = utcnow()
    revived = collection.find_one_and_update(
        {**key, "is_active": False},
        {"$set": {**values, "is_active": True, "updated_at": now}},
        sort=[("updated_at", DESCENDING)],
        return_document=ReturnDocument.AFTER,
    )
    if revived is not None:
        return revived, REACTIVATED

    doc = {**key, **values, "is_active": True, "created_at": now, "updated_at": now}
    result = collection.insert_one(doc)
    doc["_id"] = result.inserted_id
    return doc, CREATED


def _plain(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


def to_public(doc: dict, model: Type[BaseModel], **extra: Any) -> dict:
    """Validate a stored document against its schema and dump it as camelCase JSON."""
    data = _plain(doc)
    data["id"] = data.pop("_id", None)
    out = model.model_validate(data).model_dump(by_alias=True, mode="json")
    out.update(extra)
    return out


def database_status(database: Optional[Database]) -> dict:
    status = {"connected": False, "name": None, "collections": [], "error": None}
    if database is None:
        return status
    status["name"] = database.name
    try:
        status["collections"] = database.list_collection_names()[:10]
        status["connected"] = True
    except PyMongoError as e:
        status["error"] = str(e)[:50]
    return status


# -------------------- Indexes --------------------

_ACTIVE = {"is_active": True}

INDEXES: Dict[str, List[Tuple[list, dict]]] = {
    "teacher": [
        ([("email", ASCENDING)], {"unique": True, "name": "email_unique"}),
    ],
    "standard": [
        (
            [("created_by", ASCENDING), ("name", ASCENDING)],
            {"unique": True, "partialFilterExpression": _ACTIVE, "name": "created_by_name_active_unique"},
        ),
    ],
    "division": [
        (
            [("standard_id", ASCENDING), ("name", ASCENDING)],
            {"unique": True, "partialFilterExpression": _ACTIVE, "name": "standard_name_active_unique"},
        ),
    ],
    "student": [
        # Per division, not per standard: the same roll number may repeat across divisions.
        (
            [("roll_number", ASCENDING), ("division_id", ASCENDING), ("created_by", ASCENDING)],
            {
                "unique": True,
                "partialFilterExpression": {"is_active": True, "roll_number": {"$type": "string"}},
                "name": "roll_number_division_created_by_unique",
            },
        ),
        (
            [("uid", ASCENDING), ("division_id", ASCENDING), ("created_by", ASCENDING)],
            {
                "unique": True,
                "partialFilterExpression": {"is_active": True, "uid": {"$type": "string"}},
                "name": "uid_division_created_by_unique",
            },
        ),
        ([("created_by", ASCENDING), ("standard_id", ASCENDING)], {"name": "created_by_standard"}),
    ],
    "upload": [
        ([("student_id", ASCENDING), ("type", ASCENDING), ("created_at", DESCENDING)], {"name": "student_type_created"}),
    ],
    "lessonplan": [
        ([("teacher_id", ASCENDING), ("date", ASCENDING)], {"name": "teacher_date"}),
        ([("teacher_id", ASCENDING), ("subject", ASCENDING)], {"name": "teacher_subject"}),
    ],
    "mcq": [
        (
            [("standard_id", ASCENDING), ("teacher_id", ASCENDING), ("is_active", ASCENDING)],
            {"name": "standard_teacher_active"},
        ),
    ],
    "mcqsubmission": [
        (
            [("student_id", ASCENDING), ("mcq_id", ASCENDING)],
            {"unique": True, "partialFilterExpression": _ACTIVE, "name": "student_mcq_active_unique"},
        ),
        ([("mcq_id", ASCENDING), ("completed_at", DESCENDING)], {"name": "mcq_completed"}),
    ],
}

# Earlier schema scoped roll numbers per standard, which rejected valid
# cross-division duplicates.
LEGACY_INDEXES: Dict[str, Iterable[str]] = {
    "student": (
        "roll_number_1_standard_id_1_created_by_1",
        "uid_1_standard_id_1_created_by_1",
    ),
}


def ensure_indexes(database: Database) -> None:
    for collection_name, names in LEGACY_INDEXES.items():
        existing = database[collection_name].index_information()
        for name in names:
            if name in existing:
                database[collection_name].drop_index(name)
                log.info("Dropped legacy index", extra={"collection": collection_name, "index": name})

    for collection_name, specs in INDEXES.items():
        for keys, options in specs:
            try:
                database[collection_name].create_index(keys, **options)
            except OperationFailure as e:
                log.error(
                    "Index creation failed",
                    extra={"collection": collection_name, "index": options.get("name"), "error": str(e)},
                )
