"""
Shared fixtures: a throwaway SQLite database per test, an app wired to it,
and helpers to mint bearer tokens and seed users and classes.
"""
import pytest
from fastapi.testclient import TestClient
from jose import jwt

from campbooking import models
from campbooking.config import Settings
from campbooking.database import Database
from campbooking.main import create_app

SECRET = "test-secret-key-for-testing-only"

ADMIN = "admin@camp.test"
INSTRUCTOR = "coach@camp.test"
OTHER_INSTRUCTOR = "coach2@camp.test"
STUDENT = "kid@camp.test"
OTHER_STUDENT = "kid2@camp.test"


def token_for(email: str) -> str:
    return jwt.encode({"email": email}, SECRET, algorithm="HS256")


def auth(email: str) -> dict:
    return {"Authorization": f"Bearer {token_for(email)}"}


@pytest.fixture
def settings():
    return Settings(database_url="sqlite://", rabbitmq_url="", access_token_secret=SECRET)


@pytest.fixture
def database(tmp_path):
    db = Database(f"sqlite:///{tmp_path / 'campbooking.db'}")
    db.init()
    yield db
    db.shutdown()


@pytest.fixture
def session(database):
    with database.session() as s:
        yield s


@pytest.fixture
def fetch(database):
    """Read a row through a fresh session so counters are never stale."""

    def _fetch(model, ident):
        with database.session() as s:
            return s.get(model, ident)

    return _fetch


@pytest.fixture
def app(settings, database):
    return create_app(settings=settings, database=database)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def users(session):
    rows = {
        ADMIN: models.User(email=ADMIN, role="admin"),
        INSTRUCTOR: models.User(email=INSTRUCTOR, role="instructor", total_students=None),
        OTHER_INSTRUCTOR: models.User(email=OTHER_INSTRUCTOR, role="instructor", total_students=4),
        STUDENT: models.User(email=STUDENT, role="student"),
        OTHER_STUDENT: models.User(email=OTHER_STUDENT),
    }
    session.add_all(rows.values())
    session.commit()
    return rows


@pytest.fixture
def make_class(session):
    def _make(seats=3, enrolled=0, status="approved", instructor=INSTRUCTOR, name="Kayaking"):
        cls = models.ClassRecord(
            name=name,
            instructor_email=instructor,
            price=49.0,
            status=status,
            available_seats=seats,
            total_enrolled=enrolled,
        )
        session.add(cls)
        session.commit()
        return cls

    return _make


def settlement_body(class_id: int, student: str = STUDENT, instructor: str = INSTRUCTOR, amount: float = 49.0):
    return {
        "payment_record": {
            "student_email": student,
            "class_id": class_id,
            "amount": amount,
            "transaction_id": f"txn-{student}-{class_id}",
        },
        "enrollment_intent": {
            "student_email": student,
            "class_id": class_id,
            "instructor_email": instructor,
            "class_name": "Kayaking",
        },
    }
