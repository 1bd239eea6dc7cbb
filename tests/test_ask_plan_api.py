"""Tests for plan retrieval and step summary endpoints."""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from app.core.errors import StepSummaryError
from app.core.schemas_plans import PlanData, PlanDataStep
from app.db.conversation_plans import create_conversation_plan
from app.main import app

client = TestClient(app)

ASK_KEY = "atelier-2025"


@pytest.fixture
def plan_db(fake_db):
    fake_db.seed(
        "ask_sessions",
        {"id": "ask-1", "ask_key": ASK_KEY, "conversation_mode": "collaborative"},
    )
    return fake_db


def test_plan_is_null_without_plan(plan_db):
    response = client.get(f"/api/ask/{ASK_KEY}/plan")

    assert response.json() == {"success": True, "data": None}


def test_plan_with_steps(plan_db):
    thread = plan_db.seed(
        "conversation_threads", {"ask_session_id": "ask-1", "user_id": None, "is_shared": True}
    )[0]
    create_conversation_plan(
        thread["id"],
        PlanData(steps=[PlanDataStep(id="step_1", title="Intro", status="active")]),
    )

    data = client.get(f"/api/ask/{ASK_KEY}/plan").json()["data"]

    assert data["current_step_id"] == "step_1"
    assert [step["step_identifier"] for step in data["steps"]] == ["step_1"]
    assert data["plan_data"]["steps"][0]["title"] == "Intro"


def test_step_summary(plan_db):
    with patch("app.api.ask_plan.run_step_summary", return_value="Résumé") as mock_run:
        response = client.post(
            f"/api/ask/{ASK_KEY}/step-summary", json={"stepId": "row-1", "askSessionId": "ask-1"}
        )

    assert response.json() == {"success": True, "data": {"summary": "Résumé"}}
    mock_run.assert_called_once_with("row-1", "ask-1")


def test_step_summary_failure(plan_db):
    error = StepSummaryError("Step not found or summary unavailable", "row-1", "ask-1")

    with patch("app.api.ask_plan.run_step_summary", side_effect=error):
        response = client.post(
            f"/api/ask/{ASK_KEY}/step-summary", json={"stepId": "row-1", "askSessionId": "ask-1"}
        )

    assert response.status_code == 500
    assert response.json()["error"] == "Step not found or summary unavailable"


def test_step_summary_requires_ids(plan_db):
    response = client.post(f"/api/ask/{ASK_KEY}/step-summary", json={"stepId": "row-1"})

    assert response.status_code == 400
    assert "askSessionId" in response.json()["error"]
