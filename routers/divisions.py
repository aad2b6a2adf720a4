from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, field_validator
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from app_logger import get_logger
from catalog import (
    count_active_students,
    deactivate_division,
    division_full_name,
    get_owned_division,
    get_owned_standard,
    normalize_division_name,
)
from database import (
    ACTIVE,
    REACTIVATED,
    find_active_or_reactivate,
    get_db,
    get_documents,
    parse_object_id,
    to_public,
    update_document,
)
from errors import DUPLICATE_DIVISION, ApiError
from schemas import Division
from security import get_current_teacher

log = get_logger("divisions")

router = APIRouter(prefix="/api/divisions", tags=["divisions"])


class DivisionCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=10)
    standardId: str
    description: Optional[str] = Field(None, max_length=200)

    @field_validator("name")
    @classmethod
    def _normalize(cls, v: str) -> str:
        v = normalize_division_name(v)
        if not v:
            raise ValueError("Division name is required")
        return v


class DivisionUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=10)
    description: Optional[str] = Field(None, max_length=200)

    @field_validator("name")
    @classmethod
    def _normalize(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = normalize_division_name(v)
        if not v:
            raise ValueError("Division name cannot be blank")
        return v


def duplicate_division(name: str, standard_name: str) -> ApiError:
    return ApiError(400, f'Division "{name}" already exists for {standard_name}', error=DUPLICATE_DIVISION)


def _public(database: Database, division: dict) -> dict:
    return to_public(division, Division, studentCount=count_active_students(database, division["_id"]))


@router.get("/by-standard/{standard_id}")
def list_by_standard(
    standard_id: str,
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
):
    standard = database["standard"].find_one(
        {"_id": parse_object_id(standard_id, "standard"), "created_by": teacher["_id"], "is_active": True}
    )
    if standard is None:
        return {"success": True, "divisions": []}

    divisions = get_documents(
        database,
        "division",
        {"standard_id": standard["_id"], "is_active": True},
        sort=[("name", 1)],
    )
    return {"success": True, "divisions": [_public(database, d) for d in divisions]}


@router.get("/{division_id}")
def get_division(
    division_id: str,
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
):
    division = get_owned_division(database, teacher, division_id)
    return {"success": True, "division": _public(database, division)}


@router.post("", status_code=201)
def create_division(
    payload: DivisionCreate,
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
):
    standard = get_owned_standard(database, teacher, payload.standardId, status_code=400)
    key = {"name": payload.name, "standard_id": standard["_id"]}
    values = {
        "full_name": division_full_name(standard["name"], payload.name),
        "description": payload.description,
        "created_by": teacher["_id"],
    }
    try:
        division, outcome = find_active_or_reactivate(database["division"], key, values)
    except DuplicateKeyError:
        raise duplicate_division(payload.name, standard["name"])
    if outcome == ACTIVE:
        raise duplicate_division(payload.name, standard["name"])

    if outcome == REACTIVATED:
        log.info("Division reactivated", extra={"division_id": str(division["_id"])})
        message = "Division reactivated successfully"
    else:
        message = "Division created successfully"
    return {"success": True, "message": message, "division": _public(database, division)}


@router.put("/{division_id}")
def update_division(
    division_id: str,
    payload: DivisionUpdate,
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
):
    division = get_owned_division(database, teacher, division_id)
    standard = database["standard"].find_one({"_id": division["standard_id"]})

    updates = {}
    if payload.description is not None:
        updates["description"] = payload.description
    if payload.name is not None:
        name = payload.name
        if name != division["name"]:
            if database["division"].find_one(
                {
                    "name": name,
                    "standard_id": division["standard_id"],
                    "is_active": True,
                    "_id": {"$ne": division["_id"]},
                }
            ):
                raise duplicate_division(name, standard["name"])
            updates["name"] = name
            updates["full_name"] = division_full_name(standard["name"], name)

    try:
        updated = update_document(database, "division", division["_id"], updates)
    except DuplicateKeyError:
        raise duplicate_division(updates.get("name", division["name"]), standard["name"])
    return {"success": True, "message": "Division updated successfully", "division": _public(database, updated)}


@router.delete("/{division_id}")
def delete_division(
    division_id: str,
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
):
    division = get_owned_division(database, teacher, division_id)
    counts = deactivate_division(database, division["_id"])
    suffix = f" ({counts['students']} students also moved to inactive)" if counts["students"] else ""
    return {"success": True, "message": f"Division deleted successfully{suffix}"}
