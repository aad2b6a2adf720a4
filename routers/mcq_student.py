"""
Student side of MCQ tests: taking a test, submitting answers and reviewing
results. Every lookup is scoped to the authenticated teacher.
"""
from datetime import datetime
from typing import Dict, List, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, model_validator
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from app_logger import get_logger
from catalog import get_owned_student
from database import as_utc, create_document, get_db, get_documents, parse_object_id, to_public, utcnow
from errors import ALREADY_SUBMITTED, ApiError
from schemas import MCQSubmission
from scoring import class_statistics, detailed_analysis, grade_answers, next_statistics, percentage_of
from security import get_current_teacher

log = get_logger("mcq_student")

router = APIRouter(prefix="/api/mcq-student", tags=["mcq-student"])

DEFAULT_TIME_LIMIT_MINUTES = 30
STATISTICS_UPDATE_ATTEMPTS = 5


class AnswerIn(BaseModel):
    questionIndex: Optional[int] = Field(None, ge=0)
    selectedAnswer: int = Field(..., ge=-1, le=3)
    timeTaken: int = Field(0, ge=0)


class SubmitTestRequest(BaseModel):
    studentId: str
    mcqId: str
    answers: List[AnswerIn]
    timeTaken: int = Field(0, ge=0, description="Seconds")
    startedAt: Optional[datetime] = None

    @model_validator(mode="after")
    def _one_answer_per_question(self):
        seen = set()
        for index in self.question_indexes():
            if index in seen:
                raise ValueError(f"Question {index} is answered more than once")
            seen.add(index)
        return self

    def question_indexes(self) -> List[int]:
        return [
            a.questionIndex if a.questionIndex is not None else position
            for position, a in enumerate(self.answers)
        ]


def already_taken(submission: dict) -> ApiError:
    return ApiError(
        400,
        "Student has already taken this test",
        error=ALREADY_SUBMITTED,
        submission=to_public(submission, MCQSubmission),
    )


def _active_mcq(database: Database, teacher: dict, mcq_id) -> dict:
    mcq = database["mcq"].find_one({"_id": mcq_id, "teacher_id": teacher["_id"], "is_active": True})
    if mcq is None:
        raise HTTPException(status_code=404, detail="MCQ test not found")
    return mcq


def _find_submission(database: Database, student_id: ObjectId, mcq_id: ObjectId) -> Optional[dict]:
    return database["mcqsubmission"].find_one({"student_id": student_id, "mcq_id": mcq_id, "is_active": True})


def _time_limit(mcq: dict) -> int:
    return (mcq.get("settings") or {}).get("time_limit") or DEFAULT_TIME_LIMIT_MINUTES


def record_score(database: Database, mcq_id: ObjectId, score: int) -> bool:
    """
    Fold ``score`` into the test's statistics with a compare-and-set on
    ``total_attempts``, retrying when another submission got there first.
    """
    for _ in range(STATISTICS_UPDATE_ATTEMPTS):
        mcq = database["mcq"].find_one({"_id": mcq_id}, {"statistics": 1})
        if mcq is None:
            return False
        current = mcq.get("statistics") or {}
        result = database["mcq"].update_one(
            {"_id": mcq_id, "statistics.total_attempts": current.get("total_attempts")},
            {"$set": {"statistics": next_statistics(current, score)}},
        )
        if result.modified_count:
            return True
    log.warning("Gave up updating MCQ statistics", extra={"mcq_id": str(mcq_id), "score": score})
    return False


def submission_summary(submission: dict) -> dict:
    public = to_public(submission, MCQSubmission)
    return {
        "id": public["id"],
        "score": public["score"],
        "percentage": public["percentage"],
        "grade": public["grade"],
        "correctAnswers": public["correctAnswers"],
        "incorrectAnswers": public["incorrectAnswers"],
        "totalQuestions": public["totalQuestions"],
        "timeTaken": public["formattedTimeTaken"],
        "completedAt": public["completedAt"],
    }


def review_answers(questions: List[dict], answers: List[dict]) -> List[dict]:
    by_index: Dict[int, dict] = {a["question_index"]: a for a in answers}
    review = []
    for index, question in enumerate(questions):
        answer = by_index.get(index, {})
        selected = answer.get("selected_answer", -1)
        review.append(
            {
                "questionNumber": index + 1,
                "question": question["question"],
                "options": question["options"],
                "correctAnswer": question["correct_answer"],
                "studentAnswer": selected,
                "isCorrect": selected == question["correct_answer"],
                "explanation": question.get("explanation"),
                "timeTaken": answer.get("time_taken", 0),
            }
        )
    return review


@router.get("/student/{student_id}/available-tests")
def available_tests(
    student_id: str,
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
):
    student = get_owned_student(database, teacher, student_id)
    mcqs = get_documents(
        database,
        "mcq",
        {"standard_id": student["standard_id"], "teacher_id": teacher["_id"], "is_active": True},
        sort=[("created_at", -1)],
    )
    submissions = {
        s["mcq_id"]: to_public(s, MCQSubmission)
        for s in database["mcqsubmission"].find(
            {"student_id": student["_id"], "mcq_id": {"$in": [m["_id"] for m in mcqs]}, "is_active": True}
        )
    }

    tests = []
    for mcq in mcqs:
        submission = submissions.get(mcq["_id"])
        tests.append(
            {
                "id": str(mcq["_id"]),
                "title": mcq["title"],
                "description": mcq.get("description"),
                "questionsCount": len(mcq["questions"]),
                "createdAt": mcq["created_at"].isoformat(),
                "timeLimit": _time_limit(mcq),
                "hasAttempted": submission is not None,
                "score": submission["score"] if submission else None,
                "percentage": submission["percentage"] if submission else None,
                "grade": submission["grade"] if submission else None,
                "completedAt": submission["completedAt"] if submission else None,
                "timeTaken": submission["formattedTimeTaken"] if submission else None,
            }
        )

    standard = database["standard"].find_one({"_id": student["standard_id"]}, {"name": 1})
    division = database["division"].find_one({"_id": student["division_id"]}, {"name": 1})
    return {
        "success": True,
        "tests": tests,
        "student": {
            "id": str(student["_id"]),
            "name": student["name"],
            "rollNumber": student.get("roll_number"),
            "standard": {"id": str(standard["_id"]), "name": standard["name"]} if standard else None,
            "division": {"id": str(division["_id"]), "name": division["name"]} if division else None,
        },
    }


@router.get("/student/test/{mcq_id}")
def test_for_student(
    mcq_id: str,
    studentId: Optional[str] = None,
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
):
    if not studentId:
        raise HTTPException(status_code=400, detail="Student ID is required")
    student = get_owned_student(database, teacher, studentId)
    mcq = _active_mcq(database, teacher, parse_object_id(mcq_id, "MCQ"))

    existing = _find_submission(database, student["_id"], mcq["_id"])
    if existing is not None:
        raise already_taken(existing)

    return {
        "success": True,
        "mcqTest": {
            "id": str(mcq["_id"]),
            "title": mcq["title"],
            "description": mcq.get("description"),
            "questionsCount": len(mcq["questions"]),
            "timeLimit": _time_limit(mcq),
            # answers and explanations stay server side
            "questions": [
                {"index": i, "question": q["question"], "options": q["options"]}
                for i, q in enumerate(mcq["questions"])
            ],
        },
    }


@router.post("/student/submit-test", status_code=201)
def submit_test(
    payload: SubmitTestRequest,
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
):
    student = get_owned_student(database, teacher, payload.studentId)
    mcq = _active_mcq(database, teacher, parse_object_id(payload.mcqId, "MCQ"))

    existing = _find_submission(database, student["_id"], mcq["_id"])
    if existing is not None:
        raise already_taken(existing)

    total = len(mcq["questions"])
    indexes = payload.question_indexes()
    out_of_range = [i for i in indexes if i >= total]
    if out_of_range:
        raise HTTPException(status_code=400, detail=f"Question {out_of_range[0]} does not exist in this test")

    answers = [
        {"question_index": index, "selected_answer": a.selectedAnswer, "time_taken": a.timeTaken}
        for index, a in zip(indexes, payload.answers)
    ]
    graded, correct = grade_answers(mcq["questions"], answers)
    if not 0 <= correct <= total:
        raise HTTPException(status_code=400, detail="Submitted answers do not match this test")
    score = percentage_of(correct, total)

    now = utcnow()
    try:
        submission = create_document(
            database,
            "mcqsubmission",
            {
                "student_id": student["_id"],
                "mcq_id": mcq["_id"],
                "teacher_id": teacher["_id"],
                "standard_id": student["standard_id"],
                "answers": graded,
                "score": score,
                "total_questions": total,
                "correct_answers": correct,
                "incorrect_answers": total - correct,
                "time_taken": payload.timeTaken,
                "started_at": as_utc(payload.startedAt) if payload.startedAt else now,
                "completed_at": now,
                "status": "completed",
                "is_active": True,
            },
        )
    except DuplicateKeyError:
        raise already_taken(_find_submission(database, student["_id"], mcq["_id"]))

    record_score(database, mcq["_id"], score)
    log.info(
        "Test submitted",
        extra={"mcq_id": str(mcq["_id"]), "student_id": str(student["_id"]), "score": score},
    )

    public = to_public(submission, MCQSubmission)
    return {
        "success": True,
        "message": "Test submitted successfully",
        "result": {
            "submissionId": public["id"],
            "score": score,
            "percentage": public["percentage"],
            "grade": public["grade"],
            "correctAnswers": correct,
            "incorrectAnswers": total - correct,
            "totalQuestions": total,
            "timeTaken": public["formattedTimeTaken"],
            "detailedResults": review_answers(mcq["questions"], graded),
            "analysis": detailed_analysis(score, correct, total - correct, total, payload.timeTaken),
        },
    }


@router.get("/student/{student_id}/test-history")
def test_history(
    student_id: str,
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
):
    student = get_owned_student(database, teacher, student_id)
    submissions = get_documents(
        database,
        "mcqsubmission",
        {"student_id": student["_id"], "is_active": True},
        sort=[("completed_at", -1)],
    )
    mcqs = {
        m["_id"]: m
        for m in database["mcq"].find({"_id": {"$in": [s["mcq_id"] for s in submissions]}}, {"title": 1, "description": 1})
    }

    history = []
    for submission in submissions:
        mcq = mcqs.get(submission["mcq_id"], {})
        entry = submission_summary(submission)
        entry["mcqTest"] = {
            "id": str(submission["mcq_id"]),
            "title": mcq.get("title"),
            "description": mcq.get("description"),
        }
        history.append(entry)
    return {"success": True, "testHistory": history}


@router.get("/student/test-result/{submission_id}")
def test_result(
    submission_id: str,
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
):
    oid = parse_object_id(submission_id, "submission")
    submission = database["mcqsubmission"].find_one({"_id": oid, "teacher_id": teacher["_id"], "is_active": True})
    if submission is None:
        raise HTTPException(status_code=404, detail="Test result not found")

    mcq = database["mcq"].find_one({"_id": submission["mcq_id"]}) or {"questions": []}
    student = database["student"].find_one({"_id": submission["student_id"]}, {"name": 1, "roll_number": 1}) or {}
    return {
        "success": True,
        "result": {
            "submission": submission_summary(submission),
            "mcqTest": {"title": mcq.get("title"), "description": mcq.get("description")},
            "student": {"name": student.get("name"), "rollNumber": student.get("roll_number")},
            "detailedAnswers": review_answers(mcq["questions"], submission.get("answers", [])),
            "analysis": detailed_analysis(
                submission["score"],
                submission["correct_answers"],
                submission["incorrect_answers"],
                submission["total_questions"],
                submission.get("time_taken", 0),
            ),
        },
    }


@router.get("/teacher/test-results/{mcq_id}")
def class_results(
    mcq_id: str,
    teacher: dict = Depends(get_current_teacher),
    database: Database = Depends(get_db),
):
    oid = parse_object_id(mcq_id, "MCQ")
    mcq = database["mcq"].find_one({"_id": oid, "teacher_id": teacher["_id"]})
    if mcq is None:
        raise HTTPException(status_code=404, detail="MCQ test not found")

    submissions = get_documents(
        database,
        "mcqsubmission",
        {"mcq_id": oid, "is_active": True},
        sort=[("score", -1), ("completed_at", 1)],
    )
    students = {
        s["_id"]: s
        for s in database["student"].find(
            {"_id": {"$in": [sub["student_id"] for sub in submissions]}}, {"name": 1, "roll_number": 1}
        )
    }

    results = []
    for rank, submission in enumerate(submissions, start=1):
        student = students.get(submission["student_id"], {})
        entry = submission_summary(submission)
        entry["rank"] = rank
        entry["student"] = {
            "id": str(submission["student_id"]),
            "name": student.get("name"),
            "rollNumber": student.get("roll_number"),
        }
        results.append(entry)

    return {
        "success": True,
        "mcqTest": {
            "id": str(mcq["_id"]),
            "title": mcq["title"],
            "description": mcq.get("description"),
            "questionsCount": len(mcq["questions"]),
        },
        "results": results,
        "statistics": class_statistics(submissions),
    }
