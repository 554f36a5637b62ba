import os
import sys

# Override env vars for testing
os.environ["SECRET_KEY"] = "test-secret"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["FLASK_ENV"] = "testing"
os.environ["RATELIMIT_ENABLED"] = "false"
os.environ.setdefault("RATELIMIT_STORAGE_URI", "memory://")
os.environ.pop("WEBHOOK_URL", None)

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import pytest
from werkzeug.security import generate_password_hash

from clearance import app as flask_app, db
from clearance.models import Role, User
from clearance.utils.ledger import get_catalog, load_catalog, register_student, set_item_status

PASSWORD = "correct-horse-9"
# Cheap hash so the suite stays fast
PASSWORD_HASH = generate_password_hash(PASSWORD, method="pbkdf2:sha256:1000")

TEACHER_NAME = "Ismail Adeleke"
HALL = "West Wing"


@pytest.fixture
def app():
    """Provide the Flask app instance for tests."""
    flask_app.config.update(
        TESTING=True,
        WTF_CSRF_ENABLED=False,
        SQLALCHEMY_DATABASE_URI="sqlite:///:memory:",
        ENV="testing",
        SESSION_COOKIE_SECURE=False,
        WEBHOOK_URL=None,
        REQUIRE_YEAR_HEAD_APPROVAL=True,
    )
    yield flask_app


@pytest.fixture
def client(app):
    ctx = app.app_context()
    ctx.push()
    db.create_all()
    client = flask_app.test_client()
    yield client
    db.session.remove()
    db.drop_all()
    ctx.pop()


# -------------------- FACTORIES --------------------

def make_user(name, email, role, **scope):
    user = User(name=name, email=email, password_hash=PASSWORD_HASH, role=role, **scope)
    db.session.add(user)
    db.session.commit()
    return user


def make_student(student_number, email, grade="Year 2", hall=HALL, teacher=TEACHER_NAME, balance=0.0, name=None):
    student = register_student(
        student_number=student_number,
        name=name or f"Student {student_number}",
        email=email,
        grade=grade,
        password_hash=PASSWORD_HASH,
        hall=hall,
        room="204",
        advisor="Ms. Catherine Delight",
        teacher=teacher,
        year_head="Ms. Sebabatso",
        outstanding_balance=balance,
    )
    db.session.commit()
    return student


def complete_items(student, item_ids, by="Reception Staff"):
    for item_id in item_ids:
        set_item_status(student, item_id, "completed", completed_by=by)
    db.session.commit()


def submission_ids(catalog):
    return [item.id for item in catalog if item.requires_submission]


def all_ids(catalog):
    return [item.id for item in catalog]


def login(client, email, password=PASSWORD):
    return client.post("/auth/login", json={"email": email, "password": password})


# -------------------- FIXTURES --------------------

@pytest.fixture
def catalog(client):
    load_catalog()
    db.session.commit()
    return get_catalog()


@pytest.fixture
def staff(client):
    """One account per staff role."""
    return {
        Role.ADMIN: make_user("Admin User", "admin@school.org", Role.ADMIN),
        Role.TEACHER: make_user(TEACHER_NAME, "iadeleke@school.org", Role.TEACHER),
        Role.STATION_STAFF: make_user("Reception Staff", "reception@school.org", Role.STATION_STAFF),
        Role.HALL_HEAD: make_user("Dr. Brown", "brown@school.org", Role.HALL_HEAD, managed_halls=[HALL]),
        Role.ADVISOR: make_user("Ms. Catherine Delight", "cdelight@school.org", Role.ADVISOR, advisees=[]),
        Role.YEAR_HEAD: make_user("Ms. Sebabatso", "sthulo@school.org", Role.YEAR_HEAD),
    }


@pytest.fixture
def student(catalog, staff):
    """A student in every approver's scope."""
    stu = make_student("ALA2024-101", "aayanlade24@students.org", name="Ayanfe Ayanlade")
    staff[Role.ADVISOR].advisees = [stu.id]
    db.session.commit()
    return stu


@pytest.fixture
def login_as(client):
    def _login(user):
        resp = login(client, user.email)
        assert resp.status_code == 200, resp.get_json()
        return client
    return _login
