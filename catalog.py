"""
Standard -> Division -> Student hierarchy helpers: ownership lookups,
derived names and soft-delete cascades.

Cascades are plain sequential writes without a transaction; a failure part way
through leaves the earlier writes in place.
"""
from typing import Dict

from bson import ObjectId
from pymongo.database import Database

from app_logger import get_logger
from database import parse_object_id, utcnow
from errors import ApiError

log = get_logger("catalog")


def division_full_name(standard_name: str, division_name: str) -> str:
    return f"{standard_name}-{division_name}"


def normalize_division_name(name: str) -> str:
    return name.strip().upper()


def get_owned_standard(database: Database, teacher: dict, standard_id, status_code: int = 404) -> dict:
    """Active standard created by ``teacher``, or ``status_code`` "Standard not found"."""
    oid = parse_object_id(standard_id, "standard")
    standard = database["standard"].find_one({"_id": oid, "created_by": teacher["_id"], "is_active": True})
    if standard is None:
        raise ApiError(status_code, "Standard not found")
    return standard


def get_owned_division(database: Database, teacher: dict, division_id) -> dict:
    """
    Active division whose parent standard belongs to ``teacher``.
    404 when the division is missing, 403 when it belongs to someone else.
    """
    oid = parse_object_id(division_id, "division")
    division = database["division"].find_one({"_id": oid, "is_active": True})
    if division is None:
        raise ApiError(404, "Division not found")
    standard = database["standard"].find_one(
        {"_id": division["standard_id"], "created_by": teacher["_id"], "is_active": True}
    )
    if standard is None:
        raise ApiError(403, "Access denied")
    return division


def get_division_in_standard(database: Database, standard_id: ObjectId, division_id) -> dict:
    oid = parse_object_id(division_id, "division")
    division = database["division"].find_one({"_id": oid, "standard_id": standard_id, "is_active": True})
    if division is None:
        raise ApiError(404, "Division not found")
    return division


def get_owned_student(database: Database, teacher: dict, student_id) -> dict:
    oid = parse_object_id(student_id, "student")
    student = database["student"].find_one({"_id": oid, "created_by": teacher["_id"], "is_active": True})
    if student is None:
        raise ApiError(404, "Student not found")
    return student


def count_active_students(database: Database, division_id: ObjectId) -> int:
    return database["student"].count_documents({"division_id": division_id, "is_active": True})


def refresh_division_full_names(database: Database, standard_id: ObjectId, standard_name: str) -> int:
    """Recompute full_name for every division of a renamed standard."""
    updated = 0
    for division in database["division"].find({"standard_id": standard_id}, {"name": 1}):
        database["division"].update_one(
            {"_id": division["_id"]},
            {"$set": {"full_name": division_full_name(standard_name, division["name"]), "updated_at": utcnow()}},
        )
        updated += 1
    return updated


def deactivate_division(database: Database, division_id: ObjectId) -> Dict[str, int]:
    now = utcnow()
    database["division"].update_one({"_id": division_id}, {"$set": {"is_active": False, "updated_at": now}})
    students = database["student"].update_many(
        {"division_id": division_id, "is_active": True},
        {"$set": {"is_active": False, "updated_at": now}},
    )
    log.info("Division deactivated", extra={"division_id": str(division_id), "students": students.modified_count})
    return {"students": students.modified_count}


def deactivate_standard(database: Database, standard_id: ObjectId) -> Dict[str, int]:
    now = utcnow()
    database["standard"].update_one({"_id": standard_id}, {"$set": {"is_active": False, "updated_at": now}})
    divisions = database["division"].update_many(
        {"standard_id": standard_id, "is_active": True},
        {"$set": {"is_active": False, "updated_at": now}},
    )
    students = database["student"].update_many(
        {"standard_id": standard_id, "is_active": True},
        {"$set": {"is_active": False, "updated_at": now}},
    )
    log.info(
        "Standard deactivated",
        extra={
            "standard_id": str(standard_id),
            "divisions": divisions.modified_count,
            "students": students.modified_count,
        },
    )
    return {"divisions": divisions.modified_count, "students": students.modified_count}
