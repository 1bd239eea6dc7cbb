"""Tests for the ASK conversation endpoints with mocked agents."""

import asyncio
import time
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from fastapi.testclient import TestClient

from app.core.conversation_agent import DEFAULT_INSIGHT_TYPES
from app.core.errors import WebhookError
from app.core.schemas_plans import PlanData, PlanDataStep
from app.main import app

client = TestClient(app)

ASK_KEY = "atelier-2025"


def _agent_reply(content: str):
    return SimpleNamespace(content=content, raw={}, model_used=SimpleNamespace(id="model-1"))


def _plan_data() -> PlanData:
    return PlanData(
        steps=[
            PlanDataStep(id="step_1", title="Contexte", objective="Situer", status="active"),
            PlanDataStep(id="step_2", title="Irritants", objective="Lister"),
        ]
    )


@pytest.fixture
def ask_db(fake_db):
    fake_db.seed(
        "ask_sessions",
        {
            "id": "ask-1",
            "ask_key": ASK_KEY,
            "question": "Comment mieux collaborer ?",
            "conversation_mode": "collaborative",
            "status": "active",
        },
    )
    return fake_db


@pytest.fixture
def mock_agents():
    with (
        patch("app.api.ask.execute_agent") as execute,
        patch("app.api.ask.generate_conversation_plan", return_value=_plan_data()) as plan,
        patch("app.api.ask.trigger_insight_detection", return_value=[]) as detect,
        patch("app.api.ask.summarize_step_in_background") as summarize,
    ):
        yield SimpleNamespace(execute=execute, plan=plan, detect=detect, summarize=summarize)


class TestInit:
    def test_init_creates_plan_and_opening_message(self, ask_db, mock_agents):
        mock_agents.execute.return_value = _agent_reply("Bonjour, parlons de collaboration.")

        response = client.post(f"/api/ask/{ASK_KEY}/init")

        assert response.status_code == 200
        message = response.json()["data"]["message"]
        assert message["content"] == "Bonjour, parlons de collaboration."
        assert message["senderType"] == "ai"
        assert message["askKey"] == ASK_KEY

        step_rows = ask_db.rows("ask_conversation_plan_steps")
        active = next(row for row in step_rows if row["status"] == "active")
        assert message["planStepId"] == active["id"]
        assert mock_agents.execute.call_args.kwargs["agent_slug"] == "ask-conversation-response"

    def test_init_is_idempotent(self, ask_db, mock_agents):
        mock_agents.execute.return_value = _agent_reply("Bonjour")
        client.post(f"/api/ask/{ASK_KEY}/init")

        response = client.post(f"/api/ask/{ASK_KEY}/init")

        body = response.json()
        assert body["data"]["message"] is None
        assert body["message"] == "Conversation already initiated"
        assert mock_agents.execute.call_count == 1

    def test_init_continues_when_plan_generation_fails(self, ask_db, mock_agents):
        mock_agents.plan.side_effect = RuntimeError("plan agent down")
        mock_agents.execute.return_value = _agent_reply("Bonjour")

        response = client.post(f"/api/ask/{ASK_KEY}/init")

        assert response.status_code == 200
        assert response.json()["data"]["message"]["planStepId"] is None

    def test_init_empty_agent_output(self, ask_db, mock_agents):
        mock_agents.execute.return_value = _agent_reply("   ")

        response = client.post(f"/api/ask/{ASK_KEY}/init")

        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "Agent did not return a valid response"}

    def test_invalid_and_unknown_keys(self, ask_db, mock_agents):
        assert client.post("/api/ask/a!/init").json()["error"] == "Invalid ASK key format"

        response = client.post("/api/ask/unknown-key/init")
        assert response.status_code == 404
        assert response.json()["error"] == "ASK session not found"


class TestRespond:
    def test_respond_stores_messages_and_completes_step(self, ask_db, mock_agents):
        mock_agents.execute.return_value = _agent_reply("Bonjour")
        client.post(f"/api/ask/{ASK_KEY}/init")

        mock_agents.execute.return_value = _agent_reply("Merci, c'est clair. STEP_COMPLETE:step_1")
        response = client.post(
            f"/api/ask/{ASK_KEY}/respond", json={"message": "Nous manquons de temps."}
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["completedStepId"] == "step_1"
        assert data["conversationPlan"]["current_step_id"] == "step_2"
        assert data["message"]["content"].startswith("Merci")
        assert data["insights"] == []

        contents = [row["content"] for row in ask_db.rows("messages")]
        assert "Nous manquons de temps." in contents

        completed_row = next(
            row for row in ask_db.rows("ask_conversation_plan_steps") if row["step_identifier"] == "step_1"
        )
        mock_agents.summarize.assert_called_once_with(completed_row["id"], "ask-1")
        variables = mock_agents.execute.call_args.kwargs["variables"]
        assert variables["latest_user_message"] == "Nous manquons de temps."

    def test_marker_for_other_step_is_ignored(self, ask_db, mock_agents):
        mock_agents.execute.return_value = _agent_reply("Bonjour")
        client.post(f"/api/ask/{ASK_KEY}/init")

        mock_agents.execute.return_value = _agent_reply("STEP_COMPLETE:step_2")
        data = client.post(f"/api/ask/{ASK_KEY}/respond", json={"message": "ok"}).json()["data"]

        assert "completedStepId" not in data
        mock_agents.summarize.assert_not_called()

    def test_insight_detection_failure_keeps_existing_insights(self, ask_db, mock_agents):
        ask_db.seed(
            "insights",
            {"id": "i-1", "ask_session_id": "ask-1", "content": "Existant", "created_at": "2025-01-01"},
        )
        mock_agents.execute.return_value = _agent_reply("Réponse")
        mock_agents.detect.side_effect = RuntimeError("detector down")

        response = client.post(f"/api/ask/{ASK_KEY}/respond", json={"message": "Bonjour"})

        assert response.status_code == 200
        assert [insight["id"] for insight in response.json()["data"]["insights"]] == ["i-1"]

    def test_default_insight_types_when_none_configured(self, ask_db, mock_agents):
        mock_agents.execute.return_value = _agent_reply("Réponse")

        client.post(f"/api/ask/{ASK_KEY}/respond", json={"message": "Bonjour"})

        variables = mock_agents.execute.call_args.kwargs["variables"]
        assert variables["insight_types"] == DEFAULT_INSIGHT_TYPES

    def test_configured_insight_types(self, ask_db, mock_agents):
        ask_db.seed("insight_types", {"id": "t-1", "name": "risk"}, {"id": "t-2", "name": "idea"})
        mock_agents.execute.return_value = _agent_reply("Réponse")

        client.post(f"/api/ask/{ASK_KEY}/respond", json={"message": "Bonjour"})

        variables = mock_agents.execute.call_args.kwargs["variables"]
        assert variables["insight_types"] == "idea, risk"

    def test_detect_only_requires_session_id(self, ask_db, mock_agents):
        response = client.post(f"/api/ask/{ASK_KEY}/respond", json={"detectInsights": True})

        assert response.status_code == 400
        assert response.json()["error"] == "ASK session identifier is required for insight detection"

        mismatch = client.post(
            f"/api/ask/{ASK_KEY}/respond", json={"detectInsights": True, "askSessionId": "other"}
        )
        assert mismatch.json()["error"] == "ASK session mismatch"

    def test_detect_only_returns_insights(self, ask_db, mock_agents):
        response = client.post(
            f"/api/ask/{ASK_KEY}/respond", json={"detectInsights": True, "askSessionId": "ask-1"}
        )

        assert response.status_code == 200
        assert response.json()["data"] == {"insights": []}
        mock_agents.execute.assert_not_called()

    def test_detect_only_failure(self, ask_db, mock_agents):
        mock_agents.detect.side_effect = RuntimeError("boom")

        response = client.post(
            f"/api/ask/{ASK_KEY}/respond", json={"detectInsights": True, "askSessionId": "ask-1"}
        )

        assert response.status_code == 500
        assert response.json()["error"] == "Failed to detect insights"


class TestBlockingWork:
    @pytest.mark.asyncio
    async def test_slow_agent_does_not_hold_other_requests(self, ask_db, mock_agents):
        def slow_reply(**kwargs):
            time.sleep(0.5)
            return _agent_reply("Bonjour")

        mock_agents.execute.side_effect = slow_reply
        finished = {}

        async def timed(name, request):
            response = await request
            finished[name] = time.monotonic()
            return response

        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
            init, health = await asyncio.gather(
                timed("init", http.post(f"/api/ask/{ASK_KEY}/init")),
                timed("health", http.get("/health")),
            )

        assert init.status_code == 200
        assert health.status_code == 200
        assert finished["health"] < finished["init"]

class TestExternalBackend:
    def test_webhook_not_configured(self, monkeypatch):
        monkeypatch.delenv("EXTERNAL_RESPONSE_WEBHOOK", raising=False)

        response = client.get(f"/api/ask/{ASK_KEY}")

        assert response.status_code == 500
        assert response.json()["error"] == "External webhook not configured"

    def test_get_session_data(self, monkeypatch):
        monkeypatch.setenv("EXTERNAL_RESPONSE_WEBHOOK", "https://backend.example.com/hook")
        payload = {"ask": {"key": ASK_KEY}, "messages": [], "challenges": [], "insights": []}

        with patch("app.api.ask.fetch_ask_from_webhook", new=AsyncMock(return_value=payload)):
            response = client.get(f"/api/ask/{ASK_KEY}")

        assert response.json() == {"success": True, "data": payload}

    def test_forward_message_error(self, monkeypatch):
        monkeypatch.setenv("EXTERNAL_RESPONSE_WEBHOOK", "https://backend.example.com/hook")
        failing = AsyncMock(side_effect=WebhookError("External webhook responded with status 503"))

        with patch("app.api.ask.forward_user_message", new=failing):
            response = client.post(f"/api/ask/{ASK_KEY}", json={"content": "Bonjour"})

        assert response.status_code == 500
        assert response.json()["error"] == "External webhook responded with status 503"
        assert failing.call_args[0] == (ASK_KEY, {"content": "Bonjour"})
