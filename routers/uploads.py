import json
import math
from typing import Any, Dict, List, Literal, Optional, Union

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from pydantic import BaseModel, Field
from pymongo.database import Database

from app_logger import get_logger
from config import settings
from database import create_document, get_db, get_documents, parse_object_id, to_public, update_document
from schemas import Upload
from security import get_current_teacher
from storage import classify_mime, delete_quietly, get_storage, read_upload, store, student_file_path

log = get_logger("uploads")

router = APIRouter(prefix="/api/uploads", tags=["uploads"])


class FileLocator(BaseModel):
    url: str
    publicId: Optional[str] = None
    originalName: Optional[str] = None
    size: Optional[int] = Field(None, ge=0)
    mimeType: Optional[str] = None


class UploadRecordRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    student: str
    type: Optional[Literal["video", "document", "image"]] = None
    description: Optional[str] = Field(None, max_length=500)
    subject: Optional[str] = Field(None, max_length=50)
    tags: Optional[Union[List[str], str]] = None
    file: FileLocator


class UploadUpdateRequest(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    subject: Optional[str] = Field(None, max_length=50)
    tags: Optional[Union[List[str], str]] = None


def parse_tags(tags: Union[List[str], str, None]) -> List[str]:
    """Tags arrive as a list, a JSON array string or a comma separated string."""
    if not tags:
        return []
    if isinstance(tags, list):
        return [str(t).strip() for t in tags if str(t).strip()]
    text = tags.strip()
    if not text or text == "null":
        return []
    if text.startswith("["):
        try:
            parsed = json.loads(text)
        except ValueError:
            log.warning("Could not parse tags", extra={"tags": text})
            return []
        return [str(t).strip() for t in parsed if str(t).strip()] if isinstance(parsed, list) else []
    return [t.strip() for t in text.split(",") if t.strip()]


def _owned_active_student(database: Database, teacher: dict, student_id: str, status_code: int) -> dict:
    oid = parse_object_id(student_id, "student")
    student = database["student"].find_one({"_id": oid, "created_by": teacher["_id"], "is_active": True})
    if student is None:
        raise HTTPException(status_code=status_code, detail="Invalid student" if status_code == 400 else "Student not found")
    return student


def _owned_upload(database: Database, teacher: dict, upload_id: str) -> dict:
    oid = parse_object_id(upload_id, "upload")
    upload = database["upload"].find_one({"_id": oid, "uploaded_by": teacher["_id"], "is_active": True})
    if upload is None:
        raise HTTPException(status_code=404, detail="Upload not found")
    return upload


def _save_file(
    database: Database,
    storage,
    teacher: dict,
    student: dict,
    file: UploadFile,
    title: str,
    description: Optional[str],
    subject: Optional[str],
    tags: List[str],
) -> dict:
    data = read_upload(file)
    kind = classify_mime(file.content_type)
    original_name = file.filename or "file"
    path = student_file_path(str(teacher["_id"]), str(student["_id"]), kind, original_name)
    stored = store(storage, data, path, file.content_type)
    return create_document(
        database,
        "upload",
        {
            "title": title,
            "description": description,
            "student_id": student["_id"],
            "type": kind,
            "file": {
                "url": stored["url"],
                "public_id": stored["path"],
                "original_name": original_name,
                "size": len(data),
                "mime_type": file.content_type,
            },
            "subject": subject,
            "tags": tags,
            "is_active": True,
            "uploaded_by": teacher["_id"],
        },
    )


@router.post("", status_code=201)
def upload_file(
    file: UploadFile = File(...),
    title: str = Form(..., min_length=1, max_length=100),
    student: str = Form(...),
    description: Optional[str] = Form(None),
    subject: Optional[str] = Form(None),
    tags: Optional[str] = Form(None),
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
    storage=Depends(get_storage),
):
    owner = _owned_active_student(database, teacher, student, 400)
    upload = _save_file(database, storage, teacher, owner, file, title, description, subject, parse_tags(tags))
    log.info("File uploaded", extra={"upload_id": str(upload["_id"]), "type": upload["type"]})
    return {"message": "File uploaded successfully", "upload": to_public(upload, Upload)}


@router.post("/bulk", status_code=201)
def upload_files(
    files: List[UploadFile] = File(...),
    student: str = Form(...),
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    subject: Optional[str] = Form(None),
    tags: Optional[str] = Form(None),
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
    storage=Depends(get_storage),
):
    if len(files) > settings.MAX_FILES_PER_REQUEST:
        raise HTTPException(
            status_code=400,
            detail=f"Too many files. Maximum is {settings.MAX_FILES_PER_REQUEST} per request.",
        )
    owner = _owned_active_student(database, teacher, student, 400)
    # Validate every file before storing any of them
    for f in files:
        read_upload(f)
        f.file.seek(0)

    parsed_tags = parse_tags(tags)
    uploads = []
    for f in files:
        file_title = title or f.filename or "Untitled"
        uploads.append(_save_file(database, storage, teacher, owner, f, file_title, description, subject, parsed_tags))
    return {
        "message": f"{len(uploads)} files uploaded successfully",
        "uploads": [to_public(u, Upload) for u in uploads],
    }


@router.post("/record", status_code=201)
def create_upload_record(
    payload: UploadRecordRequest,
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
):
    owner = _owned_active_student(database, teacher, payload.student, 400)
    kind = payload.type or classify_mime(payload.file.mimeType or "")
    upload = create_document(
        database,
        "upload",
        {
            "title": payload.title,
            "description": payload.description,
            "student_id": owner["_id"],
            "type": kind,
            "file": {
                "url": payload.file.url,
                "public_id": payload.file.publicId,
                "original_name": payload.file.originalName,
                "size": payload.file.size,
                "mime_type": payload.file.mimeType,
            },
            "subject": payload.subject,
            "tags": parse_tags(payload.tags),
            "is_active": True,
            "uploaded_by": teacher["_id"],
        },
    )
    return {"message": "Upload record created successfully", "upload": to_public(upload, Upload)}


@router.get("/student/{student_id}")
def list_student_uploads(
    student_id: str,
    type: Optional[Literal["video", "document", "image"]] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
):
    owner = _owned_active_student(database, teacher, student_id, 404)
    query: Dict[str, Any] = {"student_id": owner["_id"], "uploaded_by": teacher["_id"], "is_active": True}
    if type:
        query["type"] = type

    total = database["upload"].count_documents(query)
    uploads = get_documents(database, "upload", query, sort=[("created_at", -1)], skip=(page - 1) * limit, limit=limit)
    return {
        "message": "Uploads retrieved successfully",
        "uploads": [to_public(u, Upload) for u in uploads],
        "pagination": {"current": page, "pages": math.ceil(total / limit), "total": total},
    }


@router.get("/{upload_id}")
def get_upload(
    upload_id: str,
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
):
    upload = _owned_upload(database, teacher, upload_id)
    return {"message": "Upload retrieved successfully", "upload": to_public(upload, Upload)}


@router.put("/{upload_id}")
def update_upload(
    upload_id: str,
    payload: UploadUpdateRequest,
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
):
    upload = _owned_upload(database, teacher, upload_id)
    updates = payload.model_dump(exclude_none=True, exclude={"tags"})
    if payload.tags is not None:
        updates["tags"] = parse_tags(payload.tags)
    updated = update_document(database, "upload", upload["_id"], updates)
    return {"message": "Upload updated successfully", "upload": to_public(updated, Upload)}


@router.delete("/{upload_id}")
def delete_upload(
    upload_id: str,
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
    storage=Depends(get_storage),
):
    upload = _owned_upload(database, teacher, upload_id)
    update_document(database, "upload", upload["_id"], {"is_active": False})
    path = upload["file"].get("public_id") or storage.path_from_url(upload["file"].get("url", ""))
    delete_quietly(storage, path)
    return {"message": "Upload deleted successfully"}
