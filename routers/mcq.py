from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from pymongo.database import Database

from app_logger import get_logger
from catalog import get_owned_standard
from database import create_document, get_db, get_documents, parse_object_id, to_public, update_document, utcnow
from errors import AI_SERVICE_ERROR, AI_SERVICE_UNAVAILABLE, ApiError
from gemini import AIResponseError, AIServiceError, get_mcq_generator, is_overload_message
from schemas import MCQ, MCQSettings, Question
from security import get_current_teacher
from storage import IMAGE_MIME_TYPES, read_upload

log = get_logger("mcq")

router = APIRouter(prefix="/api/mcq", tags=["mcq"])

SUGGESTED_RETRY_DELAY_MS = 60000


class SaveMCQRequest(BaseModel):
    standardId: str
    questions: List[Question] = Field(..., min_length=1)
    title: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = Field(None, max_length=500)
    bookLanguage: Optional[str] = None
    questionLanguage: Optional[str] = None
    settings: Optional[MCQSettings] = None


class UpdateMCQRequest(BaseModel):
    questions: List[Question] = Field(..., min_length=1)
    title: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = Field(None, max_length=500)
    settings: Optional[MCQSettings] = None


def _owned_mcq(database: Database, teacher: dict, mcq_id: str) -> dict:
    oid = parse_object_id(mcq_id, "MCQ")
    mcq = database["mcq"].find_one({"_id": oid, "teacher_id": teacher["_id"], "is_active": True})
    if mcq is None:
        raise HTTPException(status_code=404, detail="MCQ test not found")
    return mcq


def mcq_summary(mcq: dict) -> dict:
    public = to_public(mcq, MCQ)
    public.pop("questions")
    return public


@router.get("/status")
def ai_status(
    teacher: dict = Depends(get_current_teacher),
    generator=Depends(get_mcq_generator),
):
    timestamp = utcnow().isoformat()
    try:
        generator.check_status()
    except AIServiceError as e:
        overloaded = e.retryable or is_overload_message(str(e))
        log.warning("AI status check failed", extra={"error": str(e), "overloaded": overloaded})
        return JSONResponse(
            {
                "success": False,
                "status": "overloaded" if overloaded else "error",
                "message": "Gemini AI service is temporarily overloaded" if overloaded else "Gemini AI service error",
                "error": str(e),
                "timestamp": timestamp,
            },
            status_code=503 if overloaded else 500,
        )
    return {
        "success": True,
        "status": "available",
        "message": "Gemini AI service is operational",
        "timestamp": timestamp,
    }


@router.post("/generate")
def generate_mcqs(
    image: UploadFile = File(...),
    questionCount: int = Form(...),
    bookLanguage: str = Form("English"),
    questionLanguage: str = Form("English"),
    standardId: Optional[str] = Form(None),
    teacher: dict = Depends(get_current_teacher),
    generator=Depends(get_mcq_generator),
):
    if not 1 <= questionCount <= 20:
        raise HTTPException(status_code=400, detail="Question count must be between 1 and 20")
    data = read_upload(image, IMAGE_MIME_TYPES)

    try:
        questions = generator.generate_mcqs(data, image.content_type, questionCount, bookLanguage, questionLanguage)
    except AIServiceError as e:
        if e.retryable:
            log.error("AI service overloaded after retries", extra={"error": str(e)})
            raise ApiError(
                503,
                "AI service is temporarily overloaded. Please try again in a few minutes.",
                error=AI_SERVICE_UNAVAILABLE,
                retryable=True,
                suggestedRetryDelay=SUGGESTED_RETRY_DELAY_MS,
                timestamp=utcnow().isoformat(),
            )
        log.error("MCQ generation failed", extra={"error": str(e)})
        raise ApiError(
            500,
            "Failed to generate MCQ questions. Please try again.",
            error=AI_SERVICE_ERROR,
            retryable=False,
            detail=str(e),
            timestamp=utcnow().isoformat(),
        )
    except AIResponseError as e:
        log.error("Unusable AI response", extra={"error": str(e)})
        raise ApiError(500, "Failed to parse AI response. Please try again.", error=AI_SERVICE_ERROR, retryable=False, detail=str(e))

    return {
        "success": True,
        "questions": [Question(**q).model_dump(by_alias=True) for q in questions],
        "metadata": {
            "questionCount": len(questions),
            "bookLanguage": bookLanguage,
            "questionLanguage": questionLanguage,
            "standardId": standardId,
            "generatedAt": utcnow().isoformat(),
        },
    }


@router.post("/save", status_code=201)
def save_mcq(
    payload: SaveMCQRequest,
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
):
    standard = get_owned_standard(database, teacher, payload.standardId, status_code=400)
    now = utcnow()
    mcq = create_document(
        database,
        "mcq",
        {
            "title": payload.title or f"MCQ Test - {now:%Y-%m-%d}",
            "description": payload.description or "AI Generated MCQ Test",
            "standard_id": standard["_id"],
            "teacher_id": teacher["_id"],
            "questions": [q.model_dump() for q in payload.questions],
            "metadata": {
                "book_language": payload.bookLanguage,
                "question_language": payload.questionLanguage,
                "generated_at": now,
                "image_analyzed": bool(payload.bookLanguage or payload.questionLanguage),
            },
            "settings": (payload.settings or MCQSettings()).model_dump(),
            "statistics": {"total_attempts": 0, "average_score": 0, "highest_score": 0, "lowest_score": 0},
            "is_active": True,
        },
    )
    log.info("MCQ test saved", extra={"mcq_id": str(mcq["_id"]), "questions": len(payload.questions)})
    return {
        "success": True,
        "message": "MCQ test saved successfully",
        "mcqId": str(mcq["_id"]),
        "questionsCount": len(payload.questions),
    }


@router.get("/standard/{standard_id}")
def list_standard_mcqs(
    standard_id: str,
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
):
    oid = parse_object_id(standard_id, "standard")
    mcqs = get_documents(
        database,
        "mcq",
        {"standard_id": oid, "teacher_id": teacher["_id"], "is_active": True},
        sort=[("created_at", -1)],
    )
    return {"success": True, "mcqTests": [mcq_summary(m) for m in mcqs]}


@router.get("/{mcq_id}")
def get_mcq(
    mcq_id: str,
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
):
    mcq = _owned_mcq(database, teacher, mcq_id)
    return {"success": True, "mcqTest": to_public(mcq, MCQ)}


@router.put("/{mcq_id}")
def update_mcq(
    mcq_id: str,
    payload: UpdateMCQRequest,
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
):
    mcq = _owned_mcq(database, teacher, mcq_id)
    updates = {"questions": [q.model_dump() for q in payload.questions]}
    if payload.title:
        updates["title"] = payload.title
    if payload.description:
        updates["description"] = payload.description
    if payload.settings is not None:
        updates["settings"] = payload.settings.model_dump()
    update_document(database, "mcq", mcq["_id"], updates)
    return {"success": True, "mcqId": str(mcq["_id"]), "message": "MCQ test updated successfully"}


@router.delete("/{mcq_id}")
def delete_mcq(
    mcq_id: str,
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
):
    mcq = _owned_mcq(database, teacher, mcq_id)
    update_document(database, "mcq", mcq["_id"], {"is_active": False})
    return {"success": True, "message": "MCQ test deleted successfully"}
