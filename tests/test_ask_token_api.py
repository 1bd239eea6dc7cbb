"""Tests for invite-token access to an ASK session."""

import pytest
from fastapi.testclient import TestClient

from app.main import app

client = TestClient(app)


@pytest.fixture
def token_db(fake_db):
    fake_db.seed(
        "ask_sessions",
        {
            "id": "ask-1",
            "ask_key": "atelier-2025",
            "question": "Comment mieux collaborer ?",
            "status": "active",
            "conversation_mode": "individual_parallel",
        },
    )
    fake_db.seed(
        "profiles",
        {"id": "prof-1", "auth_id": "auth-1", "full_name": "Léa Martin", "email": "lea@x.io"},
        {"id": "prof-2", "auth_id": "auth-2", "full_name": "Marc Dubois"},
    )
    fake_db.seed(
        "ask_participants",
        {
            "id": "part-1",
            "ask_session_id": "ask-1",
            "user_id": "prof-1",
            "invite_token": "invite-1",
            "is_spokesperson": True,
            "joined_at": "1",
        },
        {"id": "part-2", "ask_session_id": "ask-1", "user_id": "prof-2", "joined_at": "2"},
    )
    thread = fake_db.seed(
        "conversation_threads",
        {"ask_session_id": "ask-1", "user_id": "prof-1", "is_shared": False},
    )[0]
    fake_db.seed(
        "messages",
        {"ask_session_id": "ask-1", "conversation_thread_id": thread["id"], "sender_type": "ai", "content": "Bonjour Léa"},
        {"ask_session_id": "ask-1", "conversation_thread_id": "thread-marc", "sender_type": "ai", "content": "Bonjour Marc"},
    )
    fake_db.auth.users_by_token = {"jwt-1": "auth-1", "jwt-2": "auth-2"}
    return fake_db


def test_token_loads_participant_thread(token_db):
    response = client.get("/api/ask/token/invite-1")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["ask"]["key"] == "atelier-2025"
    assert data["ask"]["isActive"] is True
    assert [p["name"] for p in data["ask"]["participants"]] == ["Léa Martin", "Marc Dubois"]
    assert data["ask"]["participants"][0]["isSpokesperson"] is True
    assert [m["content"] for m in data["messages"]] == ["Bonjour Léa"]
    assert data["challenges"] == []
    assert data["viewer"]["participantId"] == "part-1"
    assert data["viewer"]["profileId"] == "prof-1"


def test_unknown_token(token_db):
    response = client.get("/api/ask/token/nope")

    assert response.status_code == 404
    assert response.json()["error"] == "ASK session not found for this token"


def test_blank_token(token_db):
    response = client.get("/api/ask/token/%20")

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid token"


def test_token_of_another_participant(token_db):
    response = client.get("/api/ask/token/invite-1", headers={"Authorization": "Bearer jwt-2"})

    assert response.status_code == 403
    assert response.json()["error"] == "This link belongs to another participant"


def test_matching_session_is_accepted(token_db):
    response = client.get("/api/ask/token/invite-1", headers={"Authorization": "Bearer jwt-1"})

    assert response.status_code == 200
