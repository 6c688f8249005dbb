import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("ACCESS_TOKEN_SECRET", "test-access-secret")
os.environ.setdefault("REFRESH_TOKEN_SECRET", "test-refresh-secret")
os.environ["PASSWORD_HASH_ROUNDS"] = "4"
os.environ.pop("SMTP_HOST", None)
os.environ.pop("N8N_WEBHOOK_URL", None)

import pytest
from fastapi.testclient import TestClient

from studyplanner import config, models
from studyplanner.database import Base, SessionLocal, engine
from studyplanner.jobs import InMemoryJobStore, get_job_store
from studyplanner.mailer import get_mailer
from studyplanner.main import app


class Outbox:
    def __init__(self):
        self.sent = []

    def __call__(self, to_email, code):
        self.sent.append((to_email, code))

    def last_code(self, email):
        return [c for e, c in self.sent if e == email][-1]


@pytest.fixture(autouse=True)
def fresh_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def outbox():
    return Outbox()


@pytest.fixture
def job_store():
    return InMemoryJobStore(ttl_seconds=0)


@pytest.fixture(autouse=True)
def no_simulated_delay(monkeypatch):
    monkeypatch.setattr(config, "SIMULATED_PROCESSING_SECONDS", 0)
    monkeypatch.setattr(config, "N8N_WEBHOOK_URL", None)


@pytest.fixture
def client(outbox, job_store):
    app.dependency_overrides[get_mailer] = lambda: outbox
    app.dependency_overrides[get_job_store] = lambda: job_store
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


WEB = {"X-Client-Platform": "web"}


def signup(client, email="a@b.com", password="pw1"):
    return client.post("/auth/signup", json={"email": email, "password": password})


def login(client, email="a@b.com", password="pw1", headers=None):
    return client.post("/auth/login", json={"email": email, "password": password}, headers=headers or {})


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def user_tokens(client):
    """Signed-up user logged in through the body channel."""
    assert signup(client).status_code == 201
    resp = login(client)
    assert resp.status_code == 200
    return resp.json()


def add_plan(db, user_id, courses, saved_at=None, total_courses=None):
    plan = models.StudyPlan(user_id=str(user_id), courses=courses, total_courses=total_courses)
    if saved_at is not None:
        plan.saved_at = saved_at
    db.add(plan)
    db.commit()
    db.refresh(plan)
    return plan
