"""
Shared pytest fixtures.

Every test gets its own file-backed SQLite database with the full schema and
foreign keys enforced. API tests run through FastAPI's TestClient against an
app built with metrics and rate limiting switched off.
"""
import itertools
import os
from datetime import date

# Settings are read at import time; keep the module-level app quiet.
os.environ.setdefault("ENABLE_METRICS", "false")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("AUTO_CREATE_DB", "false")
os.environ.setdefault("ENVIRONMENT", "test")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from kehub.auth.security import create_access_token, get_password_hash
from kehub.config import Settings
from kehub.db import Database
from kehub.main import create_app
from kehub.models.models import (
    User,
    ROLE_ADMIN,
    ROLE_ELECTRICIAN,
    ROLE_MANAGER,
    USER_ACTIVE,
)
from kehub.schemas.tasks import TaskCreate
from kehub.services import task_service


DEFAULT_PASSWORD = "secret123"


@pytest.fixture
def database(tmp_path):
    db = Database(f"sqlite:///{tmp_path / 'kehub-test.db'}")
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def session(database):
    s = database.session()
    yield s
    s.close()


@pytest.fixture
def make_user(session):
    counter = itertools.count(1)

    def _make(role: str = ROLE_ELECTRICIAN, *, status: str = USER_ACTIVE, full_name: str = None,
              password: str = DEFAULT_PASSWORD) -> User:
        n = next(counter)
        slug = f"{role.lower()}{n}"
        user = User(
            username=slug,
            email=f"{slug}@example.com",
            password_hash=get_password_hash(password),
            full_name=full_name or f"{role} {n}",
            phone="0771234567",
            role=role,
            status=status,
        )
        session.add(user)
        session.commit()
        return user

    return _make


@pytest.fixture
def admin(make_user):
    return make_user(ROLE_ADMIN, full_name="Alice Admin")


@pytest.fixture
def manager(make_user):
    return make_user(ROLE_MANAGER, full_name="Mark Manager")


@pytest.fixture
def electrician(make_user):
    return make_user(ROLE_ELECTRICIAN, full_name="Eric Electrician")


@pytest.fixture
def task_payload():
    def _payload(**overrides) -> TaskCreate:
        data = {
            "title": "Install ceiling fan",
            "description": "Living room, existing wiring",
            "priority": "Medium",
            "scheduled_date": date.today(),
            "estimated_hours": 2,
            "customer_name": "Nimal Silva",
            "customer_phone": "0712345678",
            "customer_address": "12 Temple Road, Kandy",
        }
        data.update(overrides)
        return TaskCreate(**data)

    return _payload


@pytest.fixture
def new_task(session, task_payload):
    """Create a task as ``creator``, optionally assigned to ``assignee``."""
    def _new(creator: User, assignee: User = None, **overrides):
        task = task_service.create_task(session, creator, task_payload(**overrides))
        if assignee is not None:
            task_service.assign_task(session, task.id, assignee.id, creator)
        return task

    return _new


@pytest.fixture
def app(database):
    cfg = Settings(
        ENVIRONMENT="test",
        ENABLE_METRICS=False,
        RATE_LIMIT_ENABLED=False,
        AUTO_CREATE_DB=False,
    )
    return create_app(cfg, database)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def auth_headers():
    def _headers(user: User) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user)}"}

    return _headers


@pytest.fixture
def failing_write():
    """Stand-in for a service helper whose INSERT hits a database error."""
    def _fail(*args, **kwargs):
        raise OperationalError("INSERT", {}, Exception("database is locked"))

    return _fail
