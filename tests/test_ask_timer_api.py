"""Tests for participant and plan step timer endpoints."""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from app.core.schemas_plans import PlanData, PlanDataStep
from app.db.conversation_plans import create_conversation_plan
from app.main import app

client = TestClient(app)

ASK_KEY = "atelier-2025"


class RowLevelSecurityError(Exception):
    code = "42501"


@pytest.fixture
def timer_db(fake_db):
    fake_db.seed(
        "ask_sessions",
        {
            "id": "ask-1",
            "ask_key": ASK_KEY,
            "conversation_mode": "individual_parallel",
            "expected_duration_minutes": 10,
        },
        {"id": "ask-2", "ask_key": "other-ask"},
    )
    fake_db.seed("profiles", {"id": "prof-1", "auth_id": "auth-1", "full_name": "Léa"})
    fake_db.seed(
        "ask_participants",
        {
            "id": "part-1",
            "ask_session_id": "ask-1",
            "user_id": "prof-1",
            "invite_token": "invite-1",
            "elapsed_active_seconds": 42,
            "joined_at": "2025-01-01T00:00:00+00:00",
        },
        {
            "id": "part-other",
            "ask_session_id": "ask-2",
            "user_id": "prof-1",
            "invite_token": "invite-other",
        },
    )
    fake_db.auth.users_by_token = {"jwt-1": "auth-1"}
    return fake_db


def test_get_timer_with_invite_token(timer_db):
    response = client.get(f"/api/ask/{ASK_KEY}/timer", headers={"X-Invite-Token": "invite-1"})

    assert response.json() == {
        "success": True,
        "data": {"elapsedActiveSeconds": 42, "participantId": "part-1"},
    }


def test_get_timer_requires_auth(timer_db):
    response = client.get(f"/api/ask/{ASK_KEY}/timer")

    assert response.status_code == 401
    assert response.json()["error"] == "Authentication required"


def test_invite_token_of_other_ask_falls_back_to_session(timer_db):
    response = client.get(
        f"/api/ask/{ASK_KEY}/timer",
        headers={"X-Invite-Token": "invite-other", "Authorization": "Bearer jwt-1"},
    )

    assert response.json()["data"]["participantId"] == "part-1"


def test_get_timer_without_participant(timer_db):
    timer_db.seed("profiles", {"id": "prof-2", "auth_id": "auth-2"})
    timer_db.auth.users_by_token["jwt-2"] = "auth-2"

    response = client.get(f"/api/ask/{ASK_KEY}/timer", headers={"Authorization": "Bearer jwt-2"})

    assert response.json()["data"] == {"elapsedActiveSeconds": 0, "participantId": ""}


def test_patch_timer_stores_elapsed(timer_db):
    response = client.patch(
        f"/api/ask/{ASK_KEY}/timer",
        json={"elapsedActiveSeconds": 130.7},
        headers={"Authorization": "Bearer jwt-1"},
    )

    assert response.json()["data"] == {"elapsedActiveSeconds": 130, "participantId": "part-1"}
    assert timer_db.rows("ask_participants")[0]["elapsed_active_seconds"] == 130


def test_patch_timer_updates_step_and_checks_budget(timer_db):
    thread = timer_db.seed(
        "conversation_threads",
        {"ask_session_id": "ask-1", "user_id": "prof-1", "is_shared": False},
    )[0]
    create_conversation_plan(
        thread["id"],
        PlanData(
            steps=[
                PlanDataStep(id="step_1", title="A", status="active"),
                PlanDataStep(id="step_2", title="B"),
            ]
        ),
    )

    response = client.patch(
        f"/api/ask/{ASK_KEY}/timer",
        json={"elapsedActiveSeconds": 400, "currentStepId": "step_1", "stepElapsedSeconds": 301.9},
        headers={"X-Invite-Token": "invite-1"},
    )

    data = response.json()["data"]
    assert data["currentStepId"] == "step_1"
    assert data["stepElapsedSeconds"] == 301
    # 10 minutes over 2 steps: 5 minute budget
    assert data["stepBudgetExceeded"] is True


def test_patch_timer_rejects_negative(timer_db):
    response = client.patch(
        f"/api/ask/{ASK_KEY}/timer",
        json={"elapsedActiveSeconds": -1},
        headers={"X-Invite-Token": "invite-1"},
    )

    assert response.status_code == 400
    assert response.json()["success"] is False


def test_patch_timer_unknown_participant(timer_db):
    timer_db.seed("profiles", {"id": "prof-2", "auth_id": "auth-2"})
    timer_db.auth.users_by_token["jwt-2"] = "auth-2"

    response = client.patch(
        f"/api/ask/{ASK_KEY}/timer",
        json={"elapsedActiveSeconds": 5},
        headers={"Authorization": "Bearer jwt-2"},
    )

    assert response.status_code == 404
    assert response.json()["error"] == "Participant not found for this session"


def test_dev_bypass_uses_first_participant(timer_db, monkeypatch):
    monkeypatch.setenv("IS_DEV", "true")

    response = client.patch(f"/api/ask/{ASK_KEY}/timer", json={"elapsedActiveSeconds": 7})

    assert response.status_code == 200
    assert response.json()["data"]["participantId"] == "part-1"


def test_get_timer_denied_by_row_level_security(timer_db):
    timer_db.errors["ask_participants"] = RowLevelSecurityError("permission denied for table")

    response = client.get(f"/api/ask/{ASK_KEY}/timer", headers={"Authorization": "Bearer jwt-1"})

    assert response.status_code == 403
    assert response.json() == {"success": False, "error": "Access denied"}


def test_patch_timer_lookup_denied_by_row_level_security(timer_db):
    timer_db.errors["ask_participants"] = RowLevelSecurityError("permission denied for table")

    response = client.patch(
        f"/api/ask/{ASK_KEY}/timer",
        json={"elapsedActiveSeconds": 5},
        headers={"Authorization": "Bearer jwt-1"},
    )

    assert response.status_code == 403
    assert response.json()["error"] == "Access denied"


def test_patch_timer_update_denied_by_row_level_security(timer_db):
    with patch(
        "app.api.ask_timer.update_participant_elapsed",
        side_effect=RowLevelSecurityError("permission denied for table"),
    ):
        response = client.patch(
            f"/api/ask/{ASK_KEY}/timer",
            json={"elapsedActiveSeconds": 5},
            headers={"Authorization": "Bearer jwt-1"},
        )

    assert response.status_code == 403
    assert response.json()["error"] == "Access denied"
    assert timer_db.rows("ask_participants")[0]["elapsed_active_seconds"] == 42
