"""
Pytest configuration for taskhub tests.

The environment has to be in place before taskhub.config is imported, so it
is set at module import time here rather than inside a fixture.
"""

import os

os.environ["SECRET_KEY"] = "test-secret"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["HOST"] = "127.0.0.1"
os.environ["PORT"] = "4000"

import pytest
from fastapi.testclient import TestClient

from taskhub import auth
from taskhub.database import Base, SessionLocal, engine
from taskhub.main import app


# -----------------------------------------------------------------------------
# Fakes
# -----------------------------------------------------------------------------
class RecordingHub:
    """Stands in for NotificationHub and remembers every emission."""

    def __init__(self):
        self.calls = []

    def emit_status_change(self, task_id, old_status, new_status, task):
        self.calls.append(("status", task_id, old_status, new_status, task))

    def emit_priority_change(self, task_id, old_priority, new_priority, task):
        self.calls.append(("priority", task_id, old_priority, new_priority, task))

    def emit_assignee_change(self, task_id, old_assignee_id, new_assignee_id, task):
        self.calls.append(("assignee", task_id, old_assignee_id, new_assignee_id, task))

    def emit_assignment(self, user_id, task):
        self.calls.append(("assigned", user_id, task))

    def kinds(self):
        return [call[0] for call in self.calls]


# -----------------------------------------------------------------------------
# Fixtures
# -----------------------------------------------------------------------------
@pytest.fixture(autouse=True)
def reset_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def hub():
    return RecordingHub()


@pytest.fixture
def alice(db):
    return auth.register(db, "Alice", "alice@example.com", "secret-pass")


@pytest.fixture
def bob(db):
    return auth.register(db, "Bob", "bob@example.com", "secret-pass")


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def login_client():
    """Factory: register (when name is given) and log in a fresh client."""

    def _login(email, password="secret-pass", name=None):
        client = TestClient(app)
        if name:
            response = client.post("/auth/register", json={
                "name": name, "email": email, "password": password
            })
            assert response.status_code == 201
        response = client.post("/auth/login", json={"email": email, "password": password})
        assert response.status_code == 200
        return client, response

    return _login
