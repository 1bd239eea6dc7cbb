"""Tests for streamed agent replies and guest participants."""

import json
from types import SimpleNamespace
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from app.core.errors import AiProviderError
from app.core.schemas_plans import PlanData, PlanDataStep
from app.db.conversation_plans import create_conversation_plan
from app.main import app

client = TestClient(app)

ASK_KEY = "atelier-2025"
MEMBER = {"Authorization": "Bearer jwt-1"}


def _events(response) -> list[dict]:
    return [
        json.loads(block[len("data: "):])
        for block in response.text.split("\n\n")
        if block.startswith("data: ")
    ]


@pytest.fixture
def stream_db(fake_db):
    fake_db.seed(
        "ask_sessions",
        {
            "id": "ask-1",
            "ask_key": ASK_KEY,
            "question": "Comment mieux collaborer ?",
            "conversation_mode": "collaborative",
            "status": "active",
        },
        {"id": "ask-open", "ask_key": "ouvert-2025", "conversation_mode": "collaborative", "is_anonymous": True},
    )
    fake_db.seed(
        "profiles",
        {"id": "prof-1", "auth_id": "auth-1", "full_name": "Léa Martin"},
        {"id": "prof-2", "auth_id": "auth-2", "full_name": "Hugo Petit"},
    )
    fake_db.seed(
        "ask_participants",
        {"id": "part-1", "ask_session_id": "ask-1", "user_id": "prof-1", "invite_token": "invite-1"},
        {"id": "part-guest", "ask_session_id": "ask-1", "user_id": None, "invite_token": "invite-guest"},
        {"id": "part-open", "ask_session_id": "ask-open", "user_id": "prof-2", "role": None, "invite_token": "invite-open"},
    )
    fake_db.seed(
        "conversation_threads",
        {"id": "thread-1", "ask_session_id": "ask-1", "user_id": None, "is_shared": True},
    )
    fake_db.seed(
        "ai_model_configs",
        {
            "id": "model-primary",
            "code": "claude",
            "provider": "anthropic",
            "model": "claude-sonnet-4-5",
            "api_key_env_var": "ANTHROPIC_API_KEY",
        },
    )
    fake_db.seed(
        "ai_agents",
        {
            "id": "agent-1",
            "slug": "ask-conversation-response",
            "model_config_id": "model-primary",
            "system_prompt": "Tu animes : {{ask_question}}",
            "user_prompt": "{{latest_user_message}}",
            "available_variables": ["ask_question", "latest_user_message"],
        },
    )
    fake_db.auth.users_by_token = {"jwt-1": "auth-1", "jwt-2": "auth-2"}
    return fake_db


@pytest.fixture
def mock_followups():
    with (
        patch("app.api.ask_stream.trigger_insight_detection", return_value=[]) as detect,
        patch("app.api.ask_stream.summarize_step_in_background") as summarize,
    ):
        yield SimpleNamespace(detect=detect, summarize=summarize)


def _provider_chunks(*chunks):
    return patch("app.chains.execute_agent.stream_model_provider", return_value=iter(chunks))


class TestStream:
    def test_chunks_then_stored_message(self, stream_db, mock_followups):
        stream_db.seed(
            "messages",
            {
                "id": "msg-user",
                "ask_session_id": "ask-1",
                "conversation_thread_id": "thread-1",
                "sender_type": "user",
                "user_id": "prof-1",
                "content": "Bonjour",
            },
        )

        with _provider_chunks("Bien ", "reçu."):
            response = client.post(
                f"/api/ask/{ASK_KEY}/stream",
                json={"content": "Nous manquons de temps"},
                headers=MEMBER,
            )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"

        events = _events(response)
        assert [event["type"] for event in events] == ["chunk", "chunk", "message", "insights", "done"]
        assert events[0] == {"type": "chunk", "content": "Bien ", "done": False}
        assert events[2]["message"]["content"] == "Bien reçu."
        assert events[2]["message"]["senderType"] == "ai"
        assert events[3]["insights"] == []

        rows = stream_db.rows("messages")
        assert len(rows) == 2
        ai_row = rows[1]
        assert ai_row["parent_message_id"] == "msg-user"
        assert ai_row["conversation_thread_id"] == "thread-1"
        assert ai_row["metadata"] == {"senderName": "Agent"}

        log = stream_db.rows("ai_agent_logs")[0]
        assert log["request_payload"]["userPrompt"] == "Nous manquons de temps"
        assert log["status"] == "completed"
        assert log["response_payload"] == {"content": "Bien reçu.", "streaming": True}

    def test_step_marker_completes_step(self, stream_db, mock_followups):
        create_conversation_plan(
            "thread-1",
            PlanData(
                steps=[
                    PlanDataStep(id="step_1", title="Contexte", status="active"),
                    PlanDataStep(id="step_2", title="Irritants"),
                ]
            ),
        )

        with _provider_chunks("Merci. ", "STEP_COMPLETE:step_1"):
            response = client.post(f"/api/ask/{ASK_KEY}/stream", json={"message": "ok"}, headers=MEMBER)

        events = _events(response)
        completed = next(event for event in events if event["type"] == "step_completed")
        assert completed["completedStepId"] == "step_1"
        assert completed["conversationPlan"]["current_step_id"] == "step_2"
        assert events[-1] == {"type": "done"}

        step_row = next(
            row
            for row in stream_db.rows("ask_conversation_plan_steps")
            if row["step_identifier"] == "step_1"
        )
        assert step_row["status"] == "completed"
        mock_followups.summarize.assert_called_once_with(step_row["id"], "ask-1")

    def test_provider_failure_ends_with_error_event(self, stream_db, mock_followups):
        def broken(config, request):
            yield "Bon"
            raise AiProviderError("connection reset")

        with patch("app.chains.execute_agent.stream_model_provider", side_effect=broken):
            response = client.post(f"/api/ask/{ASK_KEY}/stream", headers=MEMBER)

        events = _events(response)
        assert [event["type"] for event in events] == ["chunk", "error"]
        assert events[1]["error"] == "connection reset"
        assert stream_db.rows("messages") == []
        assert stream_db.rows("ai_agent_logs")[0]["status"] == "failed"
        mock_followups.detect.assert_not_called()

    def test_insight_detection_failure_still_finishes(self, stream_db, mock_followups):
        mock_followups.detect.side_effect = RuntimeError("detector down")

        with _provider_chunks("Réponse"):
            response = client.post(f"/api/ask/{ASK_KEY}/stream", headers=MEMBER)

        assert [event["type"] for event in _events(response)] == ["chunk", "message", "done"]


class TestStreamAccess:
    def test_requires_authentication(self, stream_db, mock_followups):
        response = client.post(f"/api/ask/{ASK_KEY}/stream", json={"message": "Bonjour"})

        assert response.status_code == 401
        assert response.json() == {"success": False, "error": "Authentication required"}

    def test_non_participant_is_denied(self, stream_db, mock_followups):
        response = client.post(
            f"/api/ask/{ASK_KEY}/stream", headers={"Authorization": "Bearer jwt-2"}
        )

        assert response.status_code == 403
        assert response.json()["error"] == "Access denied"

    def test_anonymous_session_adds_participant(self, stream_db, mock_followups):
        with _provider_chunks("Bienvenue"):
            response = client.post("/api/ask/ouvert-2025/stream", headers=MEMBER)

        assert response.status_code == 200
        added = [row for row in stream_db.rows("ask_participants") if row["ask_session_id"] == "ask-open"]
        assert [(row["user_id"], row["role"]) for row in added] == [
            ("prof-2", None),
            ("prof-1", "participant"),
        ]

    def test_invite_token_of_other_session_is_denied(self, stream_db, mock_followups):
        response = client.post(
            f"/api/ask/{ASK_KEY}/stream", headers={"X-Invite-Token": "invite-open"}
        )

        assert response.status_code == 403

    def test_invite_token_without_profile_is_denied(self, stream_db, mock_followups):
        response = client.post(
            f"/api/ask/{ASK_KEY}/stream", headers={"X-Invite-Token": "invite-guest"}
        )

        assert response.status_code == 403
        assert "not linked to a user profile" in response.json()["error"]

    def test_invite_token_streams(self, stream_db, mock_followups):
        with _provider_chunks("Salut"):
            response = client.post(
                f"/api/ask/{ASK_KEY}/stream", headers={"X-Invite-Token": "invite-1"}
            )

        assert response.status_code == 200
        assert _events(response)[-1] == {"type": "done"}

    def test_invalid_and_unknown_keys(self, stream_db, mock_followups):
        assert client.post("/api/ask/a!/stream").json()["error"] == "Invalid ASK key format"
        assert client.post("/api/ask/inconnue-2025/stream").status_code == 404


@pytest.fixture
def consultant_db(fake_db):
    fake_db.seed(
        "ask_sessions",
        {"id": "ask-c", "ask_key": "conseil-2025", "conversation_mode": "consultant"},
        {"id": "ask-1", "ask_key": ASK_KEY, "conversation_mode": "collaborative"},
    )
    fake_db.seed("profiles", {"id": "prof-1", "auth_id": "auth-1", "full_name": "Léa Martin"})
    fake_db.auth.users_by_token = {"jwt-1": "auth-1"}
    return fake_db


GUEST = {"firstName": " Claire ", "lastName": "Dubois", "speaker": "Speaker 2"}


class TestGuestParticipants:
    def test_creates_guest(self, consultant_db):
        response = client.post(
            "/api/ask/conseil-2025/participants/guest", json=GUEST, headers=MEMBER
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["name"] == "Claire Dubois"
        assert data["speaker"] == "Speaker 2"

        row = consultant_db.rows("ask_participants")[0]
        assert row["id"] == data["id"]
        assert row["role"] == "guest"
        assert row["user_id"] is None
        assert row["is_spokesperson"] is False
        assert row["joined_at"]

    def test_requires_consultant_mode(self, consultant_db):
        response = client.post(f"/api/ask/{ASK_KEY}/participants/guest", json=GUEST, headers=MEMBER)

        assert response.status_code == 400
        assert response.json()["error"] == "Guest participants can only be created in consultant mode"

    def test_requires_authentication(self, consultant_db):
        response = client.post("/api/ask/conseil-2025/participants/guest", json=GUEST)

        assert response.status_code == 401
        assert consultant_db.rows("ask_participants") == []

    def test_dev_bypass(self, consultant_db, monkeypatch):
        monkeypatch.setenv("IS_DEV", "true")

        response = client.post("/api/ask/conseil-2025/participants/guest", json=GUEST)

        assert response.status_code == 200

    def test_validation(self, consultant_db):
        response = client.post(
            "/api/ask/conseil-2025/participants/guest",
            json={**GUEST, "firstName": ""},
            headers=MEMBER,
        )

        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_unknown_session(self, consultant_db):
        response = client.post("/api/ask/inconnue-2025/participants/guest", json=GUEST, headers=MEMBER)

        assert response.status_code == 404
        assert response.json()["error"] == "ASK session not found"

    def test_insert_failure(self, consultant_db):
        consultant_db.errors["ask_participants"] = RuntimeError("insert failed")

        response = client.post(
            "/api/ask/conseil-2025/participants/guest", json=GUEST, headers=MEMBER
        )

        assert response.status_code == 500
        assert response.json()["error"] == "Failed to create guest participant"
