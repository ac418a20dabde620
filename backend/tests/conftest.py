import os

# settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from fastapi.testclient import TestClient

from chatrooms.core.security import create_access_token
from chatrooms.db.database import build_engine
from chatrooms.main import create_app


@pytest.fixture
def app(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'chat.db'}")
    return create_app(engine=engine)


@pytest.fixture
def client(app):
    # entering the context runs startup, which creates tables and the global conversation
    with TestClient(app) as test_client:
        yield test_client


def auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def signup(client: TestClient, username: str, password: str = "secret123") -> dict:
    """Register and log in; returns ``{"id", "username", "token", "headers"}``."""
    res = client.post("/auth/signup", json={"username": username, "password": password})
    assert res.status_code == 201, res.text
    res = client.post("/auth/login", json={"username": username, "password": password})
    assert res.status_code == 200, res.text
    body = res.json()
    return {
        "id": body["user"]["id"],
        "username": username,
        "token": body["token"],
        "headers": auth(body["token"]),
    }


def make_token(user_id: int) -> str:
    return create_access_token({"sub": str(user_id)})


def create_group(client: TestClient, owner: dict, *members: dict, name: str = "Team") -> int:
    res = client.post(
        "/conversations",
        json={"name": name, "userIds": [m["id"] for m in members]},
        headers=owner["headers"],
    )
    assert res.status_code == 201, res.text
    return res.json()["conversation"]["id"]


def send(client: TestClient, user: dict, conversation_id: int, text: str, **extra):
    return client.post(
        "/messages",
        json={"text": text, "conversationId": conversation_id, **extra},
        headers=user["headers"],
    )


def receive_until(ws, event_type: str, limit: int = 20):
    """Read frames until one of ``event_type``; returns ``(frame, skipped)``."""
    skipped = []
    for _ in range(limit):
        frame = ws.receive_json()
        if frame["type"] == event_type:
            return frame, skipped
        skipped.append(frame)
    raise AssertionError(f"no {event_type!r} frame within {limit} frames: {skipped}")


def join(ws, user_id: int, conversation_id=None) -> dict:
    """Join after the welcome frame; returns the presence_init frame."""
    ws.send_json({"type": "join", "userId": user_id, "conversationId": conversation_id})
    frame, _ = receive_until(ws, "presence_init")
    return frame
