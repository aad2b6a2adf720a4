from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from pydantic import BaseModel, EmailStr, Field
from pymongo.database import Database

from app_logger import get_logger
from database import get_db, to_public, update_document, utcnow
from schemas import Teacher, default_teacher_settings
from security import get_current_teacher, hash_password, verify_password
from storage import IMAGE_MIME_TYPES, delete_quietly, get_storage, profile_picture_path, read_upload, store

log = get_logger("profile")

router = APIRouter(prefix="/api/profile", tags=["profile"])


class ProfileUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=50)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=15)
    school: Optional[str] = Field(None, max_length=100)
    subject: Optional[str] = Field(None, max_length=50)


class ChangePasswordRequest(BaseModel):
    currentPassword: str = ""
    newPassword: str = ""
    confirmPassword: str = ""


class SettingsRequest(BaseModel):
    settings: Dict[str, Any]


@router.get("/profile")
def get_profile(teacher: dict = Depends(get_current_teacher)):
    return {"success": True, "data": to_public(teacher, Teacher)}


@router.put("/profile")
def update_profile(
    payload: ProfileUpdateRequest,
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
):
    updates = payload.model_dump(exclude_none=True)
    if "name" in updates:
        updates["name"] = updates["name"].strip()
    if "phone" in updates:
        phone = updates["phone"].strip()
        if phone and not 10 <= len(phone) <= 15:
            raise HTTPException(status_code=400, detail="Phone number must be between 10 and 15 characters")
        updates["phone"] = phone or None
    if "email" in updates:
        updates["email"] = updates["email"].lower()
        if updates["email"] != teacher["email"] and database["teacher"].find_one(
            {"email": updates["email"], "_id": {"$ne": teacher["_id"]}}
        ):
            raise HTTPException(status_code=400, detail="Email is already registered with another account")

    updated = update_document(database, "teacher", teacher["_id"], updates) if updates else teacher
    return {"success": True, "message": "Profile updated successfully", "data": to_public(updated, Teacher)}


@router.put("/change-password")
def change_password(
    payload: ChangePasswordRequest,
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
):
    if not payload.currentPassword or not payload.newPassword or not payload.confirmPassword:
        raise HTTPException(status_code=400, detail="All password fields are required")
    if payload.newPassword != payload.confirmPassword:
        raise HTTPException(status_code=400, detail="New password and confirm password do not match")
    if len(payload.newPassword) < 8:
        raise HTTPException(status_code=400, detail="New password must be at least 8 characters long")
    if not verify_password(payload.currentPassword, teacher.get("password_hash", "")):
        raise HTTPException(status_code=400, detail="Current password is incorrect")

    update_document(database, "teacher", teacher["_id"], {"password_hash": hash_password(payload.newPassword)})
    log.info("Password changed", extra={"teacher_id": str(teacher["_id"])})
    return {"success": True, "message": "Password changed successfully"}


@router.get("/settings")
def get_settings(teacher: dict = Depends(get_current_teacher)):
    return {"success": True, "data": {"settings": teacher.get("settings") or default_teacher_settings()}}


@router.put("/settings")
def update_settings(
    payload: SettingsRequest,
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
):
    updated = update_document(database, "teacher", teacher["_id"], {"settings": payload.settings})
    return {"success": True, "message": "Settings updated successfully", "data": {"settings": updated["settings"]}}


@router.post("/upload-profile-picture")
def upload_profile_picture(
    profilePicture: UploadFile = File(...),
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
    storage=Depends(get_storage),
):
    data = read_upload(profilePicture, IMAGE_MIME_TYPES)
    path = profile_picture_path("teacher", str(teacher["_id"]), profilePicture.filename or "picture.jpg")
    stored = store(storage, data, path, profilePicture.content_type)

    previous = teacher.get("profile_picture") or {}
    updated = update_document(
        database,
        "teacher",
        teacher["_id"],
        {"profile_picture": {"url": stored["url"], "public_id": stored["path"]}},
    )
    delete_quietly(storage, previous.get("public_id"))
    return {
        "success": True,
        "message": "Profile picture uploaded successfully",
        "data": to_public(updated, Teacher),
    }


@router.delete("/profile-picture")
def delete_profile_picture(
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
    storage=Depends(get_storage),
):
    previous = teacher.get("profile_picture") or {}
    database["teacher"].update_one(
        {"_id": teacher["_id"]},
        {"$unset": {"profile_picture": ""}, "$set": {"updated_at": utcnow()}},
    )
    delete_quietly(storage, previous.get("public_id"))
    teacher = {k: v for k, v in teacher.items() if k != "profile_picture"}
    return {"success": True, "message": "Profile picture removed successfully", "data": to_public(teacher, Teacher)}
