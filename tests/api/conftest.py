from typing import Iterator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from assignmentor.db import Base, get_db
from assignmentor.main import app
from assignmentor.routers.ai import get_llm_client


class FakeLLM:
    """Records prompts and answers with a canned markdown document."""

    def __init__(self, reply: str = "# Generated\n\nA generated paragraph.\n", fail: bool = False) -> None:
        self.reply = reply
        self.fail = fail
        self.prompts: list[str] = []

    async def complete(self, prompt: str, *, allow_fallback: bool = True) -> str:
        self.prompts.append(prompt)
        if self.fail:
            raise RuntimeError("upstream unavailable")
        return self.reply


@pytest.fixture
def session_factory() -> Iterator[sessionmaker]:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
    engine.dispose()


@pytest.fixture
def db_session(session_factory: sessionmaker) -> Iterator[Session]:
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def client(session_factory: sessionmaker, fake_llm: FakeLLM) -> Iterator[TestClient]:
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    async def override_get_llm_client():
        yield fake_llm

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_llm_client] = override_get_llm_client
    # Not used as a context manager so the startup hook stays out of the test database
    yield TestClient(app)
    app.dependency_overrides.clear()


def _register(client: TestClient, email: str, **profile) -> dict:
    payload = {"name": "Asha Rao", "email": email, "password": "secret123", **profile}
    response = client.post("/auth/register", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def _login(client: TestClient, email: str, password: str = "secret123") -> dict:
    response = client.post("/auth/token", data={"username": email, "password": password})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


@pytest.fixture
def sign_up(client: TestClient):
    """Registers a user and returns bearer headers for a fresh session."""

    def make(email: str = "asha@example.com", **profile) -> dict:
        _register(client, email, **profile)
        return _login(client, email)

    return make


@pytest.fixture
def auth_headers(sign_up) -> dict:
    return sign_up(roll_number="21MBA001", section="A")
