"""
Database Schemas

MongoDB collection schemas for the EduLearn API, defined with Pydantic.

Each model represents a collection in the database. The model name is
converted to lowercase for the collection name:
- Teacher -> "teacher" collection
- LessonPlan -> "lessonplan" collection
- MCQSubmission -> "mcqsubmission" collection

Documents are stored with snake_case keys. The models serialize with camelCase
aliases, which is the shape the API returns (see ``database.to_public``).
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel

from scoring import difficulty_for, format_duration, grade_for, percentage_of


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class FileRef(CamelModel):
    url: str
    public_id: Optional[str] = None


class StoredFile(CamelModel):
    url: str
    public_id: Optional[str] = None
    original_name: Optional[str] = None
    size: Optional[int] = None
    mime_type: Optional[str] = None


def default_teacher_settings() -> Dict[str, Any]:
    # Client-owned preferences, stored verbatim in the client's key style
    return {
        "notifications": {"email": True, "push": True, "studentUpdates": True, "systemAlerts": True},
        "privacy": {"profileVisibility": "private", "shareData": False},
        "appearance": {"theme": "light", "language": "en"},
        "backup": {"autoBackup": True, "backupFrequency": "weekly"},
    }


class Teacher(CamelModel):
    """
    Teachers collection schema
    Collection name: "teacher"
    """
    id: Optional[str] = None
    name: str = Field(..., description="Full name")
    email: str = Field(..., description="Email address, stored lowercased")
    password_hash: str = Field("", exclude=True, description="BCrypt password hash")
    phone: Optional[str] = None
    school: Optional[str] = None
    subject: Optional[str] = None
    role: Literal["teacher", "admin"] = "teacher"
    is_active: bool = True
    last_login: Optional[datetime] = None
    settings: Optional[Dict[str, Any]] = None
    profile_picture: Optional[FileRef] = None
    otp: Optional[str] = Field(None, exclude=True, description="One-time 6-digit code for password reset")
    otp_expires: Optional[datetime] = Field(None, exclude=True)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Standard(CamelModel):
    """
    Standards (grades) collection schema
    Collection name: "standard"
    """
    id: Optional[str] = None
    name: str
    description: Optional[str] = None
    subjects: List[str] = Field(default_factory=list)
    is_active: bool = True
    created_by: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Division(CamelModel):
    """
    Divisions (sections) collection schema
    Collection name: "division"
    """
    id: Optional[str] = None
    name: str
    full_name: str
    standard_id: str
    description: Optional[str] = None
    is_active: bool = True
    created_by: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ParentContact(CamelModel):
    phone: Optional[str] = None
    email: Optional[str] = None


class Student(CamelModel):
    """
    Students collection schema
    Collection name: "student"
    """
    id: Optional[str] = None
    name: str
    standard_id: str
    division_id: str
    roll_number: Optional[str] = None
    uid: Optional[str] = None
    date_of_birth: Optional[datetime] = None
    gender: Optional[Literal["Male", "Female", "Other"]] = None
    address: Optional[str] = None
    parent_contact: ParentContact = Field(default_factory=ParentContact)
    profile_picture: Optional[FileRef] = None
    is_active: bool = True
    created_by: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Upload(CamelModel):
    """
    Student uploads collection schema
    Collection name: "upload"
    """
    id: Optional[str] = None
    title: str
    description: Optional[str] = None
    student_id: str
    type: Literal["video", "document", "image"]
    file: StoredFile
    subject: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    is_active: bool = True
    uploaded_by: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Material(CamelModel):
    type: Literal["photo", "video", "text", "link", "document"]
    content: str
    title: str = ""


class LessonPlan(CamelModel):
    """
    Lesson plans collection schema
    Collection name: "lessonplan"
    """
    id: Optional[str] = None
    teacher_id: str
    subject: str
    topic: str
    date: datetime
    start_time: str
    duration: int = Field(..., ge=15, le=300, description="Minutes")
    description: Optional[str] = None
    materials: List[Material] = Field(default_factory=list)
    completed: bool = False
    completed_at: Optional[datetime] = None
    standard_id: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Question(CamelModel):
    question: str
    options: List[str] = Field(..., min_length=4, max_length=4)
    correct_answer: int = Field(..., ge=0, le=3)
    explanation: str = "No explanation provided"


class MCQMetadata(CamelModel):
    book_language: Optional[str] = None
    question_language: Optional[str] = None
    generated_at: Optional[datetime] = None
    image_analyzed: bool = False


class MCQSettings(CamelModel):
    time_limit: Optional[int] = Field(None, description="Minutes; None means untimed")
    shuffle_questions: bool = False
    shuffle_options: bool = False
    show_correct_answers: bool = True
    allow_retake: bool = False


class MCQStatistics(CamelModel):
    total_attempts: int = 0
    average_score: int = 0
    highest_score: int = 0
    lowest_score: int = 0


class MCQ(CamelModel):
    """
    Generated question sets
    Collection name: "mcq"
    """
    id: Optional[str] = None
    title: str
    description: Optional[str] = None
    standard_id: str
    teacher_id: str
    questions: List[Question]
    metadata: MCQMetadata = Field(default_factory=MCQMetadata)
    settings: MCQSettings = Field(default_factory=MCQSettings)
    statistics: MCQStatistics = Field(default_factory=MCQStatistics)
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @computed_field(alias="questionsCount")
    @property
    def questions_count(self) -> int:
        return len(self.questions)

    @computed_field(alias="difficulty")
    @property
    def difficulty(self) -> str:
        return difficulty_for(self.statistics.average_score)


class Answer(CamelModel):
    question_index: int = Field(..., ge=0)
    selected_answer: int = Field(..., ge=-1, le=3, description="-1 means unanswered")
    is_correct: bool = False
    time_taken: int = 0


class MCQSubmission(CamelModel):
    """
    One student's attempt at an MCQ test
    Collection name: "mcqsubmission"
    """
    id: Optional[str] = None
    student_id: str
    mcq_id: str
    teacher_id: str
    standard_id: str
    answers: List[Answer] = Field(default_factory=list)
    score: int = Field(..., ge=0, le=100)
    total_questions: int
    correct_answers: int
    incorrect_answers: int
    time_taken: int = Field(0, description="Seconds")
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    status: Literal["in-progress", "completed", "abandoned"] = "completed"
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @computed_field(alias="percentage")
    @property
    def percentage(self) -> int:
        return percentage_of(self.correct_answers, self.total_questions)

    @computed_field(alias="grade")
    @property
    def grade(self) -> str:
        return grade_for(self.percentage)

    @computed_field(alias="formattedTimeTaken")
    @property
    def formatted_time_taken(self) -> str:
        return format_duration(self.time_taken)


class AppVersionConfig(CamelModel):
    """
    Mobile app update gating, a single record keyed "app_version"
    Collection name: "appconfig"
    """
    latest_version: str
    download_url: str
    force_update: bool = False
    message: str = ""
    minimum_supported_version: str
    updated_at: Optional[datetime] = None
