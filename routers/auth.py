import re
import secrets
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, EmailStr, Field, field_validator
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from app_logger import get_logger
from config import settings
from database import create_document, get_db, to_public, utcnow
from errors import DUPLICATE_EMAIL, ApiError
from mailer import Mailer, get_mailer
from schemas import Teacher
from security import (
    PASSWORD_PATTERN,
    auth_rate_limiter,
    create_access_token,
    get_current_teacher,
    hash_password,
    verify_password,
)

log = get_logger("auth")

router = APIRouter(prefix="/api/auth", tags=["auth"], dependencies=[Depends(auth_rate_limiter)])

PASSWORD_RULES = (
    "Password must be at least 8 characters and contain an uppercase letter, "
    "a lowercase letter, a number and a special character (@$!%*?&)"
)
GENERIC_RESET_MESSAGE = "If an account exists for this email, a password reset OTP has been sent"


def check_password_strength(value: str) -> str:
    if not re.match(PASSWORD_PATTERN, value):
        raise ValueError(PASSWORD_RULES)
    return value


# -------------------- Auth Schemas --------------------
class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr
    password: str = Field(..., max_length=128)

    @field_validator("password")
    @classmethod
    def _password_strength(cls, v: str) -> str:
        return check_password_strength(v)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, v: str) -> str:
        return v.strip()


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class UpdateNameRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=50)


class EmailRequest(BaseModel):
    email: EmailStr


class VerifyOtpRequest(BaseModel):
    email: EmailStr
    otp: str = Field(..., min_length=6, max_length=6)


class ResetPasswordRequest(BaseModel):
    email: EmailStr
    otp: str = Field(..., min_length=6, max_length=6)
    newPassword: str = Field(..., max_length=128)

    @field_validator("newPassword")
    @classmethod
    def _password_strength(cls, v: str) -> str:
        return check_password_strength(v)


# -------------------- Auth Helpers --------------------
def generate_otp() -> str:
    return str(secrets.randbelow(900000) + 100000)


def _find_by_email(database: Database, email: str) -> Optional[dict]:
    return database["teacher"].find_one({"email": email.lower()})


def _auth_response(message: str, teacher: dict) -> dict:
    return {
        "message": message,
        "token": create_access_token(str(teacher["_id"])),
        "teacher": to_public(teacher, Teacher),
    }


def check_otp(teacher: Optional[dict], otp: str) -> None:
    """Raise 400 with the reason the OTP cannot be accepted."""
    if not teacher or not teacher.get("otp") or not teacher.get("otp_expires"):
        raise HTTPException(status_code=400, detail="No OTP requested")
    if utcnow() > teacher["otp_expires"]:
        raise HTTPException(status_code=400, detail="OTP has expired")
    if not secrets.compare_digest(str(teacher["otp"]), otp):
        raise HTTPException(status_code=400, detail="Invalid OTP")


def issue_otp(database: Database, mailer: Mailer, email: str) -> None:
    teacher = _find_by_email(database, email)
    if not teacher or not teacher.get("is_active", True):
        # Do not reveal whether the email exists
        log.info("Password reset requested for unknown email")
        return

    otp = generate_otp()
    expires = utcnow() + timedelta(minutes=settings.OTP_EXPIRES_MINUTES)
    database["teacher"].update_one(
        {"_id": teacher["_id"]},
        {"$set": {"otp": otp, "otp_expires": expires, "updated_at": utcnow()}},
    )
    try:
        mailer.send_otp(to_email=teacher["email"], teacher_name=teacher["name"], otp=otp)
    except OSError as e:
        log.error("Failed to send OTP email", extra={"teacher_id": str(teacher["_id"]), "error": str(e)})
        raise HTTPException(status_code=500, detail="Error sending password reset email")


# -------------------- Auth Endpoints --------------------
@router.post("/register", status_code=201)
def register(payload: RegisterRequest, database: Database = Depends(get_db)):
    email = payload.email.lower()
    if database["teacher"].find_one({"email": email}):
        raise ApiError(400, "Teacher with this email already exists", error=DUPLICATE_EMAIL)

    try:
        teacher = create_document(
            database,
            "teacher",
            {
                "name": payload.name,
                "email": email,
                "password_hash": hash_password(payload.password),
                "role": "teacher",
                "is_active": True,
            },
        )
    except DuplicateKeyError:
        raise ApiError(400, "Teacher with this email already exists", error=DUPLICATE_EMAIL)

    log.info("Teacher registered", extra={"teacher_id": str(teacher["_id"])})
    return _auth_response("Teacher registered successfully", teacher)


@router.post("/login")
def login(payload: LoginRequest, database: Database = Depends(get_db)):
    teacher = _find_by_email(database, payload.email)
    if not teacher or not teacher.get("is_active", True):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not verify_password(payload.password, teacher.get("password_hash", "")):
        raise HTTPException(status_code=401, detail="Invalid credentials")

    now = utcnow()
    database["teacher"].update_one({"_id": teacher["_id"]}, {"$set": {"last_login": now}})
    teacher["last_login"] = now
    return _auth_response("Login successful", teacher)


@router.get("/me")
def me(teacher: dict = Depends(get_current_teacher)):
    return {"message": "Profile retrieved successfully", "teacher": to_public(teacher, Teacher)}


@router.put("/profile")
def update_name(
    payload: UpdateNameRequest,
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
):
    updates = {}
    if payload.name:
        updates["name"] = payload.name.strip()
    if updates:
        updates["updated_at"] = utcnow()
        database["teacher"].update_one({"_id": teacher["_id"]}, {"$set": updates})
        teacher = {**teacher, **updates}
    return {"message": "Profile updated successfully", "teacher": to_public(teacher, Teacher)}


@router.post("/forgot-password")
def forgot_password(
    payload: EmailRequest,
    database: Database = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    issue_otp(database, mailer, payload.email)
    return {"message": GENERIC_RESET_MESSAGE}


@router.post("/resend-otp")
def resend_otp(
    payload: EmailRequest,
    database: Database = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    issue_otp(database, mailer, payload.email)
    return {"message": GENERIC_RESET_MESSAGE}


@router.post("/verify-otp")
def verify_otp(payload: VerifyOtpRequest, database: Database = Depends(get_db)):
    check_otp(_find_by_email(database, payload.email), payload.otp)
    return {"message": "OTP verified successfully"}


@router.post("/reset-password")
def reset_password(payload: ResetPasswordRequest, database: Database = Depends(get_db)):
    teacher = _find_by_email(database, payload.email)
    check_otp(teacher, payload.otp)

    database["teacher"].update_one(
        {"_id": teacher["_id"]},
        {
            "$set": {"password_hash": hash_password(payload.newPassword), "updated_at": utcnow()},
            "$unset": {"otp": "", "otp_expires": ""},
        },
    )
    log.info("Password reset", extra={"teacher_id": str(teacher["_id"])})
    return {"message": "Password reset successfully"}
