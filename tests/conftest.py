"""
Shared fixtures: an in-memory database, a recording notifier, and a
TestClient wired to both through dependency overrides.
"""

import os

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("REFRESH_SECRET_KEY", "test-refresh-secret-key")
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "test"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from rentspace import models
from rentspace.database import Base, get_db
from rentspace.main import app
from rentspace.utils import NotificationError, get_notifier

PASSWORD = "StrongPass123!"


class RecordingNotifier:
    """Stands in for the email/SMS gateway and keeps every message."""

    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, target, template, data):
        if self.fail:
            raise NotificationError("gateway unavailable")
        self.sent.append((target, template, data))

    def messages(self, template):
        return [m for m in self.sent if m[1] == template]

    def last_code(self, template):
        return self.messages(template)[-1][2]["otp"]


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def client(session_factory, notifier):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    yield TestClient(app)
    app.dependency_overrides.clear()


def fetch_user(db, user_id):
    db.expire_all()
    return db.get(models.User, user_id)


def register(client, notifier, email="a@x.com", phone="+920000000001", role="borrower"):
    response = client.post("/auth/register", json={
        "fullName": "Ayesha Khan",
        "email": email,
        "phone": phone,
        "password": PASSWORD,
        "role": role,
    })
    assert response.status_code == 201, response.text
    user_id = response.json()["data"]["userId"]
    codes = {
        "email": notifier.last_code("email_verification"),
        "phone": notifier.last_code("phone_verification"),
    }
    return user_id, codes


def register_and_activate(client, notifier, **kwargs):
    user_id, codes = register(client, notifier, **kwargs)
    response = client.post("/auth/verify-otp", json={"userId": user_id, "otp": codes["email"], "type": "email"})
    assert response.status_code == 200, response.text
    return user_id


def login(client, email="a@x.com", password=PASSWORD):
    return client.post("/auth/login", json={"email": email, "password": password})
