"""Shared helpers for the ASK route modules."""

from typing import Any

from fastapi import HTTPException

from app.core.ask_keys import is_valid_ask_key
from app.core.conversation_context import (
    ConversationContext,
    build_detailed_message,
    build_message_summary,
)
from app.core.errors import is_permission_denied
from app.core.logging import get_logger
from app.core.plan_format import detect_step_completion, resolve_step_to_complete
from app.core.session_auth import RequestCredentials, get_auth_user_id
from app.db.asks import get_ask_session_by_key, insert_message
from app.db.conversation_plans import complete_step, get_active_step, get_plan_step
from app.db.profiles import get_profile_by_auth_id

logger = get_logger(__name__)

ACCESS_DENIED = "Access denied"
AI_SENDER_METADATA = {"senderName": "Agent"}


# ============================================================================
# Keys and sessions
# ============================================================================


def ensure_valid_ask_key(key: str) -> str:
    """Trimmed key, or 400 when the format is invalid."""
    if not key or not is_valid_ask_key(key):
        raise HTTPException(status_code=400, detail="Invalid ASK key format")
    return key.strip()


def load_ask_session_or_404(key: str, columns: str = "*") -> dict[str, Any]:
    """Session row for a key; 403 on permission errors, 404 when unknown."""
    try:
        ask_session = get_ask_session_by_key(key, columns)
    except Exception as e:
        if is_permission_denied(e):
            raise HTTPException(status_code=403, detail=ACCESS_DENIED) from e
        raise

    if not ask_session:
        raise HTTPException(status_code=404, detail="ASK session not found")
    return ask_session


# ============================================================================
# Authentication
# ============================================================================


def require_session_profile(credentials: RequestCredentials) -> dict[str, Any]:
    """
    Profile of the Bearer session caller.

    Raises:
        HTTPException: 401 without a valid session or without a profile
    """
    if not credentials.access_token:
        raise HTTPException(status_code=401, detail="Authentication required")

    try:
        auth_user_id = get_auth_user_id(credentials.access_token)
    except Exception as e:
        logger.info(f"Session token rejected: {e}")
        raise HTTPException(status_code=401, detail="Authentication required") from e

    if not auth_user_id:
        raise HTTPException(status_code=401, detail="Authentication required")

    profile = get_profile_by_auth_id(auth_user_id)
    if not profile:
        raise HTTPException(status_code=401, detail="User profile not found")
    return profile


# ============================================================================
# Conversation
# ============================================================================


def conversation_thread_id(context: ConversationContext) -> str | None:
    thread = context.conversation_thread
    return thread["id"] if thread else None


def active_step_record_id(context: ConversationContext) -> str | None:
    plan = context.conversation_plan
    if not plan:
        return None
    step = get_active_step(plan.id)
    return step.id if step else None


def store_ai_message(
    context: ConversationContext, content: str, parent_message_id: str | None = None
) -> dict[str, Any]:
    """Insert an agent reply linked to the thread and the active plan step."""
    ask_session = context.ask_session
    row = insert_message(
        ask_session_id=ask_session["id"],
        content=content,
        sender_type="ai",
        metadata=dict(AI_SENDER_METADATA),
        conversation_thread_id=conversation_thread_id(context),
        plan_step_id=active_step_record_id(context),
        parent_message_id=parent_message_id,
    )
    context.messages.append(build_message_summary(row, None, len(context.messages)))
    return build_detailed_message(row, None, len(context.messages), ask_session.get("ask_key"))


def complete_marked_step(context: ConversationContext, content: str) -> tuple[str, str | None] | None:
    """
    Complete the current plan step when an agent reply carries its STEP_COMPLETE marker.

    The refreshed plan replaces context.conversation_plan.

    Returns:
        (step identifier, step record id) of the completed step, or None
    """
    plan = context.conversation_plan
    thread_id = conversation_thread_id(context)
    step_identifier = resolve_step_to_complete(plan, detect_step_completion(content))
    if not step_identifier or not plan or not thread_id:
        return None

    completed = get_plan_step(plan.id, step_identifier)
    refreshed = complete_step(thread_id, step_identifier)
    if not refreshed:
        return None

    context.conversation_plan = refreshed
    logger.info(f"Completed plan step {step_identifier} for {context.ask_session['id']}")
    return step_identifier, completed.id if completed else None


# ============================================================================
# Payloads
# ============================================================================


def build_participant_payload(
    participant: dict[str, Any], user: dict[str, Any] | None, name: str
) -> dict[str, Any]:
    return {
        "id": participant["id"],
        "userId": participant.get("user_id"),
        "name": name,
        "email": participant.get("participant_email") or (user or {}).get("email"),
        "role": participant.get("role"),
        "isSpokesperson": bool(participant.get("is_spokesperson")),
        "isActive": True,
        "elapsedActiveSeconds": participant.get("elapsed_active_seconds") or 0,
    }


def build_ask_payload(ask_session: dict[str, Any], participants: list[dict[str, Any]]) -> dict[str, Any]:
    return {
        "id": ask_session["id"],
        "key": ask_session.get("ask_key"),
        "name": ask_session.get("name"),
        "question": ask_session.get("question"),
        "description": ask_session.get("description"),
        "status": ask_session.get("status"),
        "isActive": ask_session.get("status") == "active",
        "startDate": ask_session.get("start_date"),
        "endDate": ask_session.get("end_date"),
        "createdAt": ask_session.get("created_at"),
        "updatedAt": ask_session.get("updated_at"),
        "deliveryMode": ask_session.get("delivery_mode"),
        "audienceScope": ask_session.get("audience_scope"),
        "responseMode": ask_session.get("response_mode"),
        "conversationMode": ask_session.get("conversation_mode"),
        "expectedDurationMinutes": ask_session.get("expected_duration_minutes"),
        "participants": participants,
        "askSessionId": ask_session["id"],
    }
