import math
from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from pydantic import BaseModel, EmailStr, Field
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from app_logger import get_logger
from catalog import get_division_in_standard, get_owned_division, get_owned_standard, get_owned_student
from config import settings
from database import REACTIVATED, get_db, get_documents, parse_object_id, to_public, update_document, utcnow
from schemas import Student
from security import get_current_teacher
from storage import IMAGE_MIME_TYPES, delete_quietly, get_storage, profile_picture_path, read_upload, store
from student_import import (
    RollNumberAllocator,
    StudentImporter,
    clean_gender,
    clean_phone_number,
    clean_roll_number,
    conflict_error,
    duplicate_key_error,
    find_conflicts,
    parse_date_of_birth,
    read_spreadsheet,
    save_student,
)

log = get_logger("students")

router = APIRouter(prefix="/api/students", tags=["students"])

SPREADSHEET_EXTENSIONS = (".csv", ".xlsx")


class ParentContactIn(BaseModel):
    phone: Optional[str] = None
    email: Optional[EmailStr] = None


class StudentCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    standardId: str
    divisionId: str
    rollNumber: Optional[str] = Field(None, max_length=20)
    uid: Optional[str] = Field(None, max_length=50)
    dateOfBirth: Optional[str] = None
    gender: Optional[str] = None
    address: Optional[str] = Field(None, max_length=500)
    parentContact: Optional[ParentContactIn] = None


class StudentUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    standardId: Optional[str] = None
    divisionId: Optional[str] = None
    rollNumber: Optional[str] = Field(None, max_length=20)
    uid: Optional[str] = Field(None, max_length=50)
    dateOfBirth: Optional[str] = None
    gender: Optional[str] = None
    address: Optional[str] = Field(None, max_length=500)
    parentContact: Optional[ParentContactIn] = None


class StudentImportRow(BaseModel):
    name: Optional[str] = None
    rollNumber: Optional[Union[str, int]] = None
    uid: Optional[Union[str, int]] = None
    dateOfBirth: Optional[str] = None
    phone: Optional[Union[str, int]] = None
    email: Optional[str] = None
    gender: Optional[str] = None
    address: Optional[str] = None

    def to_raw(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "roll_number": self.rollNumber,
            "uid": self.uid,
            "date_of_birth": self.dateOfBirth,
            "phone": self.phone,
            "email": self.email,
            "gender": self.gender,
            "address": self.address,
        }


class StudentImportRequest(BaseModel):
    standardId: str
    divisionId: str
    students: List[StudentImportRow] = Field(..., min_length=1)


# -------------------- Helpers --------------------
def _date_of_birth(value: Optional[str]):
    if not value:
        return None
    parsed = parse_date_of_birth(value)
    if parsed is None:
        raise HTTPException(status_code=400, detail="Date of birth must be a valid date")
    return parsed


def _gender(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    gender = clean_gender(value)
    if gender is None:
        raise HTTPException(status_code=400, detail="Gender must be Male, Female, or Other")
    return gender


def _parent_contact(contact: Optional[ParentContactIn]) -> Dict[str, Optional[str]]:
    if contact is None:
        return {"phone": None, "email": None}
    phone = None
    if contact.phone and contact.phone.strip():
        phone = clean_phone_number(contact.phone)
        if phone is None:
            raise HTTPException(status_code=400, detail="Please enter a valid 10-digit phone number")
    return {"phone": phone, "email": contact.email.lower() if contact.email else None}


def _clean_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value.strip() or None


def _import_response(database: Database, teacher: dict, standard_id, division_id, rows: List[Dict[str, Any]]):
    standard = get_owned_standard(database, teacher, standard_id)
    division = get_division_in_standard(database, standard["_id"], division_id)
    summary, saved = StudentImporter(database, teacher, standard, division).run(rows)
    summary.students = [to_public(doc, Student) for doc in saved]
    return {
        "message": (
            f"Import completed: {summary.success_count} imported, "
            f"{summary.duplicate_count} duplicates skipped, {summary.error_count} failed"
        ),
        **summary.model_dump(by_alias=True, mode="json"),
    }


# -------------------- Endpoints --------------------
@router.get("")
def list_students(
    standard: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=500),
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
):
    query: Dict[str, Any] = {"created_by": teacher["_id"], "is_active": True}
    if standard:
        query["standard_id"] = parse_object_id(standard, "standard")

    total = database["student"].count_documents(query)
    students = get_documents(database, "student", query, sort=[("name", 1)], skip=(page - 1) * limit, limit=limit)
    return {
        "message": "Students retrieved successfully",
        "students": [to_public(s, Student) for s in students],
        "pagination": {"current": page, "pages": math.ceil(total / limit), "total": total},
    }


@router.get("/by-standard/{standard_id}")
def list_by_standard(
    standard_id: str,
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
):
    standard = get_owned_standard(database, teacher, standard_id)
    students = get_documents(
        database,
        "student",
        {"standard_id": standard["_id"], "created_by": teacher["_id"], "is_active": True},
        sort=[("name", 1)],
    )
    return {"message": "Students retrieved successfully", "students": [to_public(s, Student) for s in students]}


@router.get("/by-division/{division_id}")
def list_by_division(
    division_id: str,
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
):
    division = get_owned_division(database, teacher, division_id)
    students = get_documents(
        database,
        "student",
        {"division_id": division["_id"], "created_by": teacher["_id"], "is_active": True},
        sort=[("name", 1)],
    )
    return {"message": "Students retrieved successfully", "students": [to_public(s, Student) for s in students]}


@router.post("/import")
def import_students(
    payload: StudentImportRequest,
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
):
    rows = [row.to_raw() for row in payload.students]
    return _import_response(database, teacher, payload.standardId, payload.divisionId, rows)


@router.post("/import/file")
def import_students_file(
    file: UploadFile = File(...),
    standardId: str = Form(...),
    divisionId: str = Form(...),
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
):
    filename = file.filename or ""
    if not filename.lower().endswith(SPREADSHEET_EXTENSIONS):
        raise HTTPException(status_code=400, detail="Only CSV and Excel files are supported")
    content = file.file.read(settings.MAX_UPLOAD_BYTES + 1)
    if len(content) > settings.MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=400, detail="File too large")
    rows = read_spreadsheet(content, filename)
    return _import_response(database, teacher, standardId, divisionId, rows)


@router.get("/{student_id}")
def get_student(
    student_id: str,
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
):
    student = get_owned_student(database, teacher, student_id)
    return {"message": "Student retrieved successfully", "student": to_public(student, Student)}


@router.post("", status_code=201)
def create_student(
    payload: StudentCreate,
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
):
    standard = get_owned_standard(database, teacher, payload.standardId)
    division = get_division_in_standard(database, standard["_id"], payload.divisionId)

    roll_number = clean_roll_number(payload.rollNumber)
    roll_supplied = roll_number is not None
    if not roll_supplied:
        roll_number = RollNumberAllocator(database, teacher["_id"]).next(division["_id"])
    uid = _clean_text(payload.uid)

    conflicts = find_conflicts(database, teacher["_id"], division["_id"], roll_number, uid)
    if conflicts:
        raise conflict_error(*conflicts[0])

    values = {
        "name": payload.name.strip(),
        "roll_number": roll_number,
        "uid": uid,
        "date_of_birth": _date_of_birth(payload.dateOfBirth),
        "gender": _gender(payload.gender),
        "address": _clean_text(payload.address),
        "parent_contact": _parent_contact(payload.parentContact),
    }
    try:
        student, outcome = save_student(
            database, teacher["_id"], standard["_id"], division["_id"], values, roll_supplied
        )
    except DuplicateKeyError as e:
        raise duplicate_key_error(e)

    message = "Student reactivated successfully" if outcome == REACTIVATED else "Student created successfully"
    return {"message": message, "student": to_public(student, Student)}


@router.put("/{student_id}")
def update_student(
    student_id: str,
    payload: StudentUpdate,
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
):
    student = get_owned_student(database, teacher, student_id)
    fields = payload.model_fields_set
    updates: Dict[str, Any] = {}

    standard_id = student["standard_id"]
    if payload.standardId:
        standard_id = get_owned_standard(database, teacher, payload.standardId)["_id"]
    division_id = student["division_id"]
    if payload.divisionId or standard_id != student["standard_id"]:
        division_id = get_division_in_standard(
            database, standard_id, payload.divisionId or student["division_id"]
        )["_id"]
    updates["standard_id"] = standard_id
    updates["division_id"] = division_id

    roll_number = clean_roll_number(payload.rollNumber) or student.get("roll_number")
    uid = _clean_text(payload.uid) if "uid" in fields else student.get("uid")
    updates["roll_number"] = roll_number
    updates["uid"] = uid

    conflicts = find_conflicts(
        database,
        teacher["_id"],
        division_id,
        roll_number if (roll_number != student.get("roll_number") or division_id != student["division_id"]) else None,
        uid if (uid != student.get("uid") or division_id != student["division_id"]) else None,
        exclude_id=student["_id"],
    )
    if conflicts:
        raise conflict_error(*conflicts[0])

    if payload.name:
        updates["name"] = payload.name.strip()
    if "dateOfBirth" in fields:
        updates["date_of_birth"] = _date_of_birth(payload.dateOfBirth)
    if payload.gender:
        updates["gender"] = _gender(payload.gender)
    if "address" in fields:
        updates["address"] = _clean_text(payload.address)
    if payload.parentContact is not None:
        updates["parent_contact"] = _parent_contact(payload.parentContact)

    try:
        updated = update_document(database, "student", student["_id"], updates)
    except DuplicateKeyError as e:
        raise duplicate_key_error(e)
    return {"message": "Student updated successfully", "student": to_public(updated, Student)}


@router.delete("/{student_id}")
def delete_student(
    student_id: str,
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
):
    student = get_owned_student(database, teacher, student_id)
    database["student"].update_one({"_id": student["_id"]}, {"$set": {"is_active": False, "updated_at": utcnow()}})
    return {"message": "Student deleted successfully"}


@router.post("/{student_id}/profile-picture")
def upload_student_picture(
    student_id: str,
    profilePicture: UploadFile = File(...),
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
    storage=Depends(get_storage),
):
    student = get_owned_student(database, teacher, student_id)
    data = read_upload(profilePicture, IMAGE_MIME_TYPES)
    path = profile_picture_path("student", str(student["_id"]), profilePicture.filename or "picture.jpg")
    stored = store(storage, data, path, profilePicture.content_type)

    previous = student.get("profile_picture") or {}
    updated = update_document(
        database,
        "student",
        student["_id"],
        {"profile_picture": {"url": stored["url"], "public_id": stored["path"]}},
    )
    delete_quietly(storage, previous.get("public_id"))
    return {"message": "Profile picture uploaded successfully", "student": to_public(updated, Student)}
