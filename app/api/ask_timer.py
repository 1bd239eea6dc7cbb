"""Participant and plan step timers of an ASK conversation."""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from app.api.ask_helpers import (
    ACCESS_DENIED,
    ensure_valid_ask_key,
    load_ask_session_or_404,
    require_session_profile,
)
from app.core.errors import is_permission_denied
from app.core.logging import get_logger
from app.core.pacing import calculate_pacing_config, step_budget_exceeded
from app.core.schemas_api import TimerUpdate
from app.core.session_auth import RequestCredentials, get_request_credentials
from app.db.asks import (
    find_participant_by_user,
    first_participant,
    get_ask_session_by_id,
    get_or_create_conversation_thread,
    get_participant_by_token,
    update_participant_elapsed,
)
from app.db.conversation_plans import get_conversation_plan, update_step_elapsed

logger = get_logger(__name__)

router = APIRouter()


def _invite_participant_for_key(invite_token: str | None, ask_key: str) -> dict[str, Any] | None:
    """Participant of the invite token when the token belongs to this ASK key."""
    if not invite_token:
        return None

    try:
        participant = get_participant_by_token(invite_token)
        if not participant:
            return None
        ask_session = get_ask_session_by_id(participant["ask_session_id"], "id, ask_key")
    except Exception as e:
        logger.error(f"Invite token lookup failed: {e}")
        return None

    if not ask_session or ask_session.get("ask_key") != ask_key:
        logger.info("Invite token does not belong to the requested ASK")
        return None
    return participant


def _find_participant(ask_session_id: str, profile_id: str | None) -> dict[str, Any] | None:
    try:
        if profile_id:
            return find_participant_by_user(ask_session_id, profile_id)
        return first_participant(ask_session_id)
    except Exception as e:
        if is_permission_denied(e):
            raise HTTPException(status_code=403, detail=ACCESS_DENIED) from e
        raise


def _store_step_elapsed(
    ask_session: dict[str, Any],
    profile_id: str | None,
    step_identifier: str,
    seconds: float,
) -> dict[str, Any]:
    """Store a step's elapsed seconds on the viewer thread's plan; failures are logged."""
    try:
        thread = get_or_create_conversation_thread(ask_session["id"], profile_id, ask_session)
        plan = get_conversation_plan(thread["id"]) if thread else None
        if not plan:
            return {}

        stored = update_step_elapsed(plan.id, step_identifier, seconds)
        if stored is None:
            return {}
    except Exception as e:
        logger.warning(f"Failed to update step elapsed time for {step_identifier}: {e}")
        return {}

    result: dict[str, Any] = {"stepElapsedSeconds": stored}
    expected = ask_session.get("expected_duration_minutes")
    if expected and plan.total_steps:
        config = calculate_pacing_config(float(expected), plan.total_steps)
        result["stepBudgetExceeded"] = step_budget_exceeded(stored, config.duration_per_step)
    return result


@router.get("/ask/{key}/timer")
def get_timer(
    key: str,
    credentials: RequestCredentials = Depends(get_request_credentials),
) -> dict[str, Any]:
    """Elapsed active time of the calling participant."""
    ask_key = ensure_valid_ask_key(key)

    participant = _invite_participant_for_key(credentials.invite_token, ask_key)
    if participant:
        return {
            "success": True,
            "data": {
                "elapsedActiveSeconds": participant.get("elapsed_active_seconds") or 0,
                "participantId": participant["id"],
            },
        }

    profile_id = None
    if not credentials.is_dev_bypass:
        profile_id = require_session_profile(credentials)["id"]

    ask_session = load_ask_session_or_404(ask_key, "id, ask_key")
    participant = _find_participant(ask_session["id"], profile_id)

    if not participant:
        return {"success": True, "data": {"elapsedActiveSeconds": 0, "participantId": ""}}

    return {
        "success": True,
        "data": {
            "elapsedActiveSeconds": participant.get("elapsed_active_seconds") or 0,
            "participantId": participant["id"],
        },
    }


@router.patch("/ask/{key}/timer")
def update_timer(
    key: str,
    body: TimerUpdate,
    credentials: RequestCredentials = Depends(get_request_credentials),
) -> dict[str, Any]:
    """
    Store the calling participant's elapsed active time.

    With currentStepId and stepElapsedSeconds the plan step timer of the
    viewer's thread is stored as well, and checked against the step budget.
    """
    ask_key = ensure_valid_ask_key(key)

    profile_id = None
    participant_id = None

    participant = _invite_participant_for_key(credentials.invite_token, ask_key)
    if participant:
        profile_id = participant.get("user_id")
        participant_id = participant["id"]
    elif not credentials.is_dev_bypass:
        profile_id = require_session_profile(credentials)["id"]

    ask_session = load_ask_session_or_404(ask_key)

    if not participant_id and profile_id:
        found = _find_participant(ask_session["id"], profile_id)
        participant_id = found["id"] if found else None

    if not participant_id and credentials.is_dev_bypass:
        found = _find_participant(ask_session["id"], None)
        participant_id = found["id"] if found else None

    if not participant_id:
        raise HTTPException(status_code=404, detail="Participant not found for this session")

    elapsed = int(body.elapsed_active_seconds)
    try:
        update_participant_elapsed(participant_id, elapsed)
    except Exception as e:
        if is_permission_denied(e):
            raise HTTPException(status_code=403, detail=ACCESS_DENIED) from e
        raise

    data: dict[str, Any] = {"elapsedActiveSeconds": elapsed, "participantId": participant_id}

    if body.current_step_id:
        data["currentStepId"] = body.current_step_id
        if body.step_elapsed_seconds is not None:
            data.update(
                _store_step_elapsed(
                    ask_session, profile_id, body.current_step_id, body.step_elapsed_seconds
                )
            )

    return {"success": True, "data": data}
