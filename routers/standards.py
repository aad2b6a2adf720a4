from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, field_validator
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from app_logger import get_logger
from catalog import deactivate_standard, get_owned_standard, refresh_division_full_names
from database import ACTIVE, REACTIVATED, find_active_or_reactivate, get_db, get_documents, to_public, update_document
from errors import DUPLICATE_STANDARD, ApiError
from schemas import Standard
from security import get_current_teacher

log = get_logger("standards")

router = APIRouter(prefix="/api/standards", tags=["standards"])


class StandardCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = Field(None, max_length=200)
    subjects: List[str] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def _strip(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Standard name is required")
        return v


class StandardUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    description: Optional[str] = Field(None, max_length=200)
    subjects: Optional[List[str]] = None

    @field_validator("name")
    @classmethod
    def _strip(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("Standard name cannot be blank")
        return v


def duplicate_standard(name: str) -> ApiError:
    return ApiError(
        400,
        f'Standard "{name}" already exists. Please choose a different standard.',
        error=DUPLICATE_STANDARD,
    )


@router.get("")
def list_standards(teacher: dict = Depends(get_current_teacher), database: Database = Depends(get_db)):
    standards = get_documents(
        database,
        "standard",
        {"created_by": teacher["_id"], "is_active": True},
        sort=[("name", 1)],
    )
    return {
        "message": "Standards retrieved successfully",
        "standards": [to_public(s, Standard) for s in standards],
    }


@router.get("/{standard_id}")
def get_standard(
    standard_id: str,
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
):
    standard = get_owned_standard(database, teacher, standard_id)
    return {"message": "Standard retrieved successfully", "standard": to_public(standard, Standard)}


@router.post("", status_code=201)
def create_standard(
    payload: StandardCreate,
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
):
    key = {"name": payload.name, "created_by": teacher["_id"]}
    values = {"description": payload.description, "subjects": payload.subjects}
    try:
        standard, outcome = find_active_or_reactivate(database["standard"], key, values)
    except DuplicateKeyError:
        raise duplicate_standard(payload.name)
    if outcome == ACTIVE:
        raise duplicate_standard(payload.name)

    if outcome == REACTIVATED:
        log.info("Standard reactivated", extra={"standard_id": str(standard["_id"])})
        message = "Standard reactivated successfully"
    else:
        message = "Standard created successfully"
    return {"message": message, "standard": to_public(standard, Standard)}


@router.put("/{standard_id}")
def update_standard(
    standard_id: str,
    payload: StandardUpdate,
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
):
    standard = get_owned_standard(database, teacher, standard_id)
    updates = payload.model_dump(exclude_none=True)
    renamed = "name" in updates and updates["name"] != standard["name"]

    if renamed and database["standard"].find_one(
        {
            "name": updates["name"],
            "created_by": teacher["_id"],
            "is_active": True,
            "_id": {"$ne": standard["_id"]},
        }
    ):
        raise duplicate_standard(updates["name"])

    try:
        updated = update_document(database, "standard", standard["_id"], updates)
    except DuplicateKeyError:
        raise duplicate_standard(updates.get("name", standard["name"]))
    if renamed:
        refresh_division_full_names(database, standard["_id"], updated["name"])
    return {"message": "Standard updated successfully", "standard": to_public(updated, Standard)}


@router.delete("/{standard_id}")
def delete_standard(
    standard_id: str,
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
):
    standard = get_owned_standard(database, teacher, standard_id)
    counts = deactivate_standard(database, standard["_id"])
    return {
        "message": "Standard deleted successfully",
        "deactivatedDivisions": counts["divisions"],
        "deactivatedStudents": counts["students"],
    }
