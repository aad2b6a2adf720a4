import os

# Settings are read at import time
os.environ["ENVIRONMENT"] = "test"
os.environ["CREATE_INDEXES"] = "false"
os.environ["ENABLE_KEEP_ALIVE"] = "false"
os.environ["JWT_SECRET"] = "test-secret"
for name in ("SUPABASE_URL", "SUPABASE_SERVICE_KEY", "EMAIL_USER", "EMAIL_PASSWORD", "GEMINI_API_KEY"):
    os.environ.pop(name, None)

import mongomock
import pytest
from fastapi.testclient import TestClient

import database
from database import get_db
from gemini import get_mcq_generator
from mailer import get_mailer
from main import app
from security import auth_rate_limiter
from storage import LocalStorage, get_storage

PASSWORD = "Passw0rd!"

SAMPLE_QUESTIONS = [
    {
        "question": f"Question {i + 1}?",
        "options": ["A", "B", "C", "D"],
        "correct_answer": i % 4,
        "explanation": f"Because {i % 4}",
    }
    for i in range(5)
]


class FakeMailer:
    def __init__(self):
        self.sent = []

    def send_otp(self, *, to_email, teacher_name, otp):
        self.sent.append({"to": to_email, "name": teacher_name, "otp": otp})
        return True


class FakeGenerator:
    def __init__(self):
        self.questions = [dict(q) for q in SAMPLE_QUESTIONS]
        self.error = None
        self.status_error = None
        self.calls = []

    def generate_mcqs(self, image, mime_type, count, book_language, question_language):
        self.calls.append(
            {"size": len(image), "mime_type": mime_type, "count": count,
             "book_language": book_language, "question_language": question_language}
        )
        if self.error is not None:
            raise self.error
        return self.questions[:count]

    def check_status(self):
        if self.status_error is not None:
            raise self.status_error
        return "OK"


@pytest.fixture
def mongo():
    return mongomock.MongoClient()["edulearn_test"]


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(str(tmp_path / "uploads"), "http://testserver")


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def client(mongo, storage, mailer, generator, monkeypatch):
    monkeypatch.setattr(database, "db", mongo)
    app.dependency_overrides[get_db] = lambda: mongo
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_mailer] = lambda: mailer
    app.dependency_overrides[get_mcq_generator] = lambda: generator
    auth_rate_limiter.reset()
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    auth_rate_limiter.reset()


@pytest.fixture
def register(client):
    """Register a teacher and return its Authorization headers."""

    def _register(email="asha@school.edu", name="Asha Patel", password=PASSWORD):
        resp = client.post("/api/auth/register", json={"name": name, "email": email, "password": password})
        assert resp.status_code == 201, resp.text
        return {"Authorization": f"Bearer {resp.json()['token']}"}

    return _register


@pytest.fixture
def headers(register):
    return register()


@pytest.fixture
def make_standard(client):
    def _make(headers, name="6th Standard", **extra):
        resp = client.post("/api/standards", json={"name": name, **extra}, headers=headers)
        assert resp.status_code == 201, resp.text
        return resp.json()["standard"]

    return _make


@pytest.fixture
def make_division(client):
    def _make(headers, standard_id, name="A"):
        resp = client.post("/api/divisions", json={"name": name, "standardId": standard_id}, headers=headers)
        assert resp.status_code == 201, resp.text
        return resp.json()["division"]

    return _make


@pytest.fixture
def make_student(client):
    def _make(headers, standard_id, division_id, name="Ravi Kumar", **extra):
        body = {"name": name, "standardId": standard_id, "divisionId": division_id, **extra}
        resp = client.post("/api/students", json=body, headers=headers)
        assert resp.status_code == 201, resp.text
        return resp.json()["student"]

    return _make


@pytest.fixture
def classroom(headers, make_standard, make_division):
    """A standard with one division, owned by the default teacher."""
    standard = make_standard(headers)
    division = make_division(headers, standard["id"])
    return standard, division
