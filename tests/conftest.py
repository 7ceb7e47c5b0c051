"""
Test configuration and fixtures.

The API runs against an in-memory mongomock database and a fixed clock.
"""
import os
from datetime import datetime

import mongomock
import pytest
from fastapi.testclient import TestClient

os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["LOG_LEVEL"] = "WARNING"

from main import app  # noqa: E402
from auth import hash_password, token_for_user  # noqa: E402
from database import get_db  # noqa: E402
from services.school_calendar import get_now  # noqa: E402

# Tuesday, inside gate operating hours, Term 1
TUESDAY_10AM = datetime(2025, 3, 4, 10, 0)

PASSWORD_HASH = hash_password("secret123")


class Clock:
    def __init__(self, now: datetime):
        self.now = now


@pytest.fixture
def db():
    return mongomock.MongoClient()["school_admin_test"]


@pytest.fixture
def clock():
    return Clock(TUESDAY_10AM)


@pytest.fixture
def client(db, clock):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_now] = lambda: clock.now
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    """Insert a user directly and return (user document, auth headers)."""
    counter = {"n": 0}

    def _make(role: str, **extra):
        counter["n"] += 1
        n = counter["n"]
        doc = {
            "firstName": extra.pop("firstName", role.capitalize()),
            "middleName": None,
            "lastName": extra.pop("lastName", f"User{n}"),
            "email": f"{role}{n}@school.test",
            "password_hash": PASSWORD_HASH,
            "role": role,
            "admissionNumber": None,
            "course": None,
            "level": None,
            "assignedCourses": [],
            "status": "active",
        }
        doc.update(extra)
        doc["_id"] = db["user"].insert_one(doc).inserted_id
        return doc, {"Authorization": f"Bearer {token_for_user(doc)}"}

    return _make


@pytest.fixture
def admin(make_user):
    return make_user("admin")


@pytest.fixture
def finance(make_user):
    return make_user("finance")


@pytest.fixture
def guard(make_user):
    return make_user("gatepass")


@pytest.fixture
def course(db):
    course_id = db["course"].insert_one({
        "name": "Diploma in Nursing",
        "code": "DN",
        "fees": {"total": 150000, "perTerm": 50000, "perYear": 150000},
    }).inserted_id
    return str(course_id)


@pytest.fixture
def student(make_user, course):
    return make_user("student", firstName="Jane", lastName="Wanjiru",
                     admissionNumber="ADM001", course=course, level="L1")


FULL_STRUCTURE = {
    "tuition": 50000, "registration": 2000, "library": 1500, "laboratory": 3000,
    "examination": 2500, "medical": 1000, "activity": 500, "other": 0,
}


@pytest.fixture
def fee_record(client, finance, student, course):
    """A Term 1 2025 fee record totalling 60500, nothing paid."""
    _, headers = finance
    resp = client.post("/fees", json={
        "student": str(student[0]["_id"]),
        "course": course,
        "level": "L1",
        "feeStructure": FULL_STRUCTURE,
    }, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]
