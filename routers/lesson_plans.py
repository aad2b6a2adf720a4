import re
from datetime import date as date_type, datetime, time, timedelta
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from pydantic import BaseModel, Field, model_validator
from pymongo.database import Database

from app_logger import get_logger
from catalog import get_owned_standard
from database import (
    as_utc,
    create_document,
    get_db,
    get_documents,
    parse_object_id,
    to_public,
    update_document,
    utcnow,
)
from schemas import LessonPlan
from security import get_current_teacher
from storage import delete_quietly, get_storage, lesson_material_path, read_upload, store

log = get_logger("lesson_plans")

router = APIRouter(prefix="/api/lesson-plans", tags=["lesson-plans"])

# Material types whose content is a stored file URL
FILE_MATERIAL_TYPES = ("photo", "video", "document")


class MaterialIn(BaseModel):
    type: Literal["photo", "video", "text", "link", "document"]
    content: str = Field(..., min_length=1)
    title: str = ""


class LessonPlanCreate(BaseModel):
    subject: str = Field(..., min_length=1)
    topic: str = Field(..., min_length=1)
    date: datetime
    startTime: str = Field(..., min_length=1)
    duration: int = Field(..., ge=15, le=300)
    description: str = ""
    materials: List[MaterialIn] = Field(default_factory=list)
    standardId: Optional[str] = None
    tags: List[str] = Field(default_factory=list)


class LessonPlanUpdate(BaseModel):
    subject: Optional[str] = Field(None, min_length=1)
    topic: Optional[str] = Field(None, min_length=1)
    date: Optional[datetime] = None
    startTime: Optional[str] = None
    duration: Optional[int] = Field(None, ge=15, le=300)
    description: Optional[str] = None
    materials: Optional[List[MaterialIn]] = None
    completed: Optional[bool] = None
    standardId: Optional[str] = None
    tags: Optional[List[str]] = None


class MaterialDeleteRequest(BaseModel):
    materialIndex: Optional[int] = None
    materialContent: Optional[str] = None

    @model_validator(mode="after")
    def _one_locator(self):
        if self.materialIndex is None and not self.materialContent:
            raise ValueError("Either materialIndex or materialContent is required")
        return self


def day_range(day: date_type) -> Dict[str, datetime]:
    start = datetime.combine(day, time.min)
    return {"$gte": start, "$lt": start + timedelta(days=1)}


def purge_material_files(storage, materials: List[dict]) -> None:
    for material in materials:
        if material.get("type") in FILE_MATERIAL_TYPES and material.get("content"):
            delete_quietly(storage, storage.path_from_url(material["content"]))


def _public(database: Database, plan: dict) -> dict:
    extra = {}
    if plan.get("standard_id"):
        standard = database["standard"].find_one({"_id": plan["standard_id"]}, {"name": 1})
        if standard is not None:
            extra["standard"] = {"id": str(standard["_id"]), "name": standard["name"]}
    return to_public(plan, LessonPlan, **extra)


def _owned_plan(database: Database, teacher: dict, plan_id: str, action: str) -> dict:
    oid = parse_object_id(plan_id, "lesson plan")
    plan = database["lessonplan"].find_one({"_id": oid, "is_active": True})
    if plan is None:
        raise HTTPException(status_code=404, detail="Lesson plan not found")
    if plan["teacher_id"] != teacher["_id"]:
        raise HTTPException(status_code=403, detail=f"Not authorized to {action} this lesson plan")
    return plan


def _standard_ref(database: Database, teacher: dict, standard_id: Optional[str]):
    if not standard_id:
        return None
    return get_owned_standard(database, teacher, standard_id, status_code=400)["_id"]


@router.get("")
def list_lesson_plans(
    date: Optional[date_type] = None,
    startDate: Optional[datetime] = None,
    endDate: Optional[datetime] = None,
    completed: Optional[bool] = None,
    subject: Optional[str] = None,
    search: Optional[str] = None,
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
):
    query: Dict[str, Any] = {"teacher_id": teacher["_id"], "is_active": True}
    if date:
        query["date"] = day_range(date)
    if startDate and endDate:
        query["date"] = {"$gte": as_utc(startDate), "$lte": as_utc(endDate)}
    if completed is not None:
        query["completed"] = completed
    if subject:
        query["subject"] = {"$regex": f"^{re.escape(subject.strip())}$", "$options": "i"}
    if search:
        pattern = {"$regex": re.escape(search.strip()), "$options": "i"}
        query["$or"] = [{"topic": pattern}, {"description": pattern}, {"subject": pattern}, {"tags": pattern}]

    plans = get_documents(database, "lessonplan", query, sort=[("date", 1), ("start_time", 1)])
    return {"success": True, "data": [_public(database, p) for p in plans], "count": len(plans)}


@router.get("/today")
def todays_lesson_plans(
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
):
    query = {"teacher_id": teacher["_id"], "is_active": True, "date": day_range(utcnow().date())}
    plans = get_documents(database, "lessonplan", query, sort=[("start_time", 1)])
    return {"success": True, "data": [_public(database, p) for p in plans], "count": len(plans)}


@router.post("/upload-material")
def upload_material(
    file: UploadFile = File(...),
    title: Optional[str] = Form(None),
    type: Optional[str] = Form(None),
    teacher: dict = Depends(get_current_teacher),
    storage=Depends(get_storage),
):
    data = read_upload(file)
    original_name = file.filename or "material"
    stored = store(storage, data, lesson_material_path(str(teacher["_id"]), original_name), file.content_type)
    return {
        "success": True,
        "data": {
            "url": stored["url"],
            "publicId": stored["path"],
            "originalName": original_name,
            "size": len(data),
            "mimeType": file.content_type,
            "title": title,
            "type": type,
        },
    }


@router.get("/{plan_id}")
def get_lesson_plan(
    plan_id: str,
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
):
    plan = _owned_plan(database, teacher, plan_id, "access")
    return {"success": True, "data": _public(database, plan)}


@router.post("", status_code=201)
def create_lesson_plan(
    payload: LessonPlanCreate,
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
):
    plan = create_document(
        database,
        "lessonplan",
        {
            "teacher_id": teacher["_id"],
            "subject": payload.subject.strip(),
            "topic": payload.topic.strip(),
            "date": as_utc(payload.date),
            "start_time": payload.startTime,
            "duration": payload.duration,
            "description": payload.description.strip(),
            "materials": [m.model_dump() for m in payload.materials],
            "completed": False,
            "completed_at": None,
            "standard_id": _standard_ref(database, teacher, payload.standardId),
            "tags": [t.strip() for t in payload.tags if t.strip()],
            "is_active": True,
        },
    )
    log.info("Lesson plan created", extra={"lesson_plan_id": str(plan["_id"])})
    return {"success": True, "data": _public(database, plan), "message": "Lesson plan created successfully"}


@router.put("/{plan_id}")
def update_lesson_plan(
    plan_id: str,
    payload: LessonPlanUpdate,
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
    storage=Depends(get_storage),
):
    plan = _owned_plan(database, teacher, plan_id, "update")
    fields = payload.model_fields_set
    updates: Dict[str, Any] = {}

    for name, key in (("subject", "subject"), ("topic", "topic"), ("startTime", "start_time"),
                      ("duration", "duration"), ("description", "description"), ("tags", "tags")):
        value = getattr(payload, name)
        if name in fields and value is not None:
            updates[key] = value
    if "date" in fields and payload.date is not None:
        updates["date"] = as_utc(payload.date)
    if "standardId" in fields:
        updates["standard_id"] = _standard_ref(database, teacher, payload.standardId)
    if "completed" in fields and payload.completed is not None:
        updates["completed"] = payload.completed
        updates["completed_at"] = utcnow() if payload.completed else None

    removed: List[dict] = []
    if "materials" in fields:
        new_materials = [m.model_dump() for m in payload.materials or []]
        kept = {(m["type"], m["content"]) for m in new_materials}
        removed = [m for m in plan.get("materials", []) if (m.get("type"), m.get("content")) not in kept]
        updates["materials"] = new_materials

    updated = update_document(database, "lessonplan", plan["_id"], updates)
    purge_material_files(storage, removed)
    return {"success": True, "data": _public(database, updated), "message": "Lesson plan updated successfully"}


@router.patch("/{plan_id}/toggle-completion")
def toggle_completion(
    plan_id: str,
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
):
    plan = _owned_plan(database, teacher, plan_id, "modify")
    completed = not plan.get("completed", False)
    updated = update_document(
        database,
        "lessonplan",
        plan["_id"],
        {"completed": completed, "completed_at": utcnow() if completed else None},
    )
    return {
        "success": True,
        "data": {
            "id": str(updated["_id"]),
            "completed": updated["completed"],
            "completedAt": updated["completed_at"].isoformat() if updated["completed_at"] else None,
        },
        "message": "Lesson plan completion toggled",
    }


@router.delete("/{plan_id}/material")
def delete_material(
    plan_id: str,
    payload: MaterialDeleteRequest,
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
    storage=Depends(get_storage),
):
    plan = _owned_plan(database, teacher, plan_id, "modify")
    materials = list(plan.get("materials", []))

    index = None
    if payload.materialIndex is not None and 0 <= payload.materialIndex < len(materials):
        index = payload.materialIndex
    elif payload.materialContent:
        index = next((i for i, m in enumerate(materials) if m.get("content") == payload.materialContent), None)
    if index is None:
        raise HTTPException(status_code=404, detail="Material not found in lesson plan")

    removed = materials.pop(index)
    updated = update_document(database, "lessonplan", plan["_id"], {"materials": materials})
    purge_material_files(storage, [removed])
    return {"success": True, "data": _public(database, updated), "message": "Material deleted successfully"}


@router.delete("/{plan_id}")
def delete_lesson_plan(
    plan_id: str,
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
    storage=Depends(get_storage),
):
    plan = _owned_plan(database, teacher, plan_id, "delete")
    update_document(database, "lessonplan", plan["_id"], {"is_active": False})
    purge_material_files(storage, plan.get("materials", []))
    return {"success": True, "message": "Lesson plan deleted successfully"}
