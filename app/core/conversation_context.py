"""Conversation context loading shared by every agent-driven endpoint.

Participants, the viewer's thread, its messages, project/challenge prompts and
the conversation plan are loaded here, and rows are mapped to summaries with
one set of naming rules.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone  # noqa: UP035
from typing import Any

from pydantic import BaseModel

from app.core.logging import get_logger
from app.core.schemas_plans import ConversationPlan
from app.db.asks import (
    get_messages_for_thread,
    get_or_create_conversation_thread,
    list_participants,
    list_session_messages,
    list_unthreaded_messages,
    normalise_message_metadata,
)
from app.db.conversation_plans import get_conversation_plan_with_steps
from app.db.profiles import fetch_profiles_by_ids
from app.db.projects import fetch_challenge, fetch_project

logger = get_logger(__name__)


class ParticipantSummary(BaseModel):
    name: str
    role: str | None = None
    description: str | None = None


class MessageSummary(BaseModel):
    id: str
    sender_type: str
    sender_name: str
    content: str
    timestamp: str
    plan_step_id: str | None = None


@dataclass
class ConversationContext:
    """Everything an agent needs to answer in an ASK conversation."""

    ask_session: dict[str, Any]
    participants: list[ParticipantSummary]
    messages: list[MessageSummary]
    project: dict[str, Any] | None
    challenge: dict[str, Any] | None
    conversation_plan: ConversationPlan | None
    conversation_thread: dict[str, Any] | None
    users_by_id: dict[str, dict[str, Any]] = field(default_factory=dict)


def _utc_now_iso() -> str:
    """Get current UTC time as ISO string."""
    return datetime.now(timezone.utc).isoformat()  # noqa: UP017


def _clean(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _user_display_name(user: dict[str, Any] | None) -> str | None:
    if not user:
        return None

    full_name = _clean(user.get("full_name"))
    if full_name:
        return full_name

    names = (_clean(user.get("first_name")), _clean(user.get("last_name")))
    parts = [part for part in names if part]
    if parts:
        return " ".join(parts)

    return _clean(user.get("email"))


def build_participant_display_name(
    participant: dict[str, Any], user: dict[str, Any] | None, index: int
) -> str:
    """participant_name, then the profile's name or email, then "Participant N"."""
    return (
        _clean(participant.get("participant_name"))
        or _user_display_name(user)
        or f"Participant {index + 1}"
    )


def build_message_sender_name(
    message: dict[str, Any], user: dict[str, Any] | None, index: int
) -> str:
    """metadata.senderName, then "Agent" for ai messages, then the author's name."""
    metadata = normalise_message_metadata(message.get("metadata")) or {}
    sender_name = _clean(metadata.get("senderName"))
    if sender_name:
        return sender_name

    if message.get("sender_type") == "ai":
        return "Agent"

    return _user_display_name(user) or f"Participant {index + 1}"


def build_message_summary(
    message: dict[str, Any], user: dict[str, Any] | None, index: int
) -> MessageSummary:
    return MessageSummary(
        id=message["id"],
        sender_type=message.get("sender_type") or "user",
        sender_name=build_message_sender_name(message, user, index),
        content=message.get("content") or "",
        timestamp=message.get("created_at") or _utc_now_iso(),
        plan_step_id=message.get("plan_step_id"),
    )


def build_detailed_message(
    message: dict[str, Any],
    user: dict[str, Any] | None,
    index: int,
    ask_key: str | None = None,
) -> dict[str, Any]:
    """Message as returned to API clients."""
    return {
        "id": message["id"],
        "askKey": ask_key,
        "askSessionId": message.get("ask_session_id"),
        "content": message.get("content") or "",
        "type": message.get("message_type") or "text",
        "senderType": message.get("sender_type") or "user",
        "senderId": message.get("user_id"),
        "senderName": build_message_sender_name(message, user, index),
        "timestamp": message.get("created_at") or _utc_now_iso(),
        "metadata": normalise_message_metadata(message.get("metadata")),
        "planStepId": message.get("plan_step_id"),
    }


def build_participant_summary(
    participant: dict[str, Any], user: dict[str, Any] | None, index: int
) -> ParticipantSummary:
    return ParticipantSummary(
        name=build_participant_display_name(participant, user, index),
        role=participant.get("role"),
        description=user.get("description") if user else None,
    )


def fetch_participants_with_users(
    ask_session_id: str,
) -> tuple[list[ParticipantSummary], dict[str, dict[str, Any]]]:
    """Participant summaries of a session and the profiles they were built from."""
    rows = list_participants(ask_session_id)
    users_by_id = fetch_profiles_by_ids([row.get("user_id") for row in rows])

    participants = [
        build_participant_summary(row, users_by_id.get(row.get("user_id") or ""), index)
        for index, row in enumerate(rows)
    ]
    return participants, users_by_id


def _message_sort_key(message: dict[str, Any]) -> str:
    return message.get("created_at") or _utc_now_iso()


def fetch_message_rows(ask_session_id: str, thread_id: str | None) -> list[dict[str, Any]]:
    """
    Message rows visible in a conversation.

    With a thread: the thread's messages merged with messages written before
    threads existed, in chronological order. Without one: every session message.
    """
    if not thread_id:
        return list_session_messages(ask_session_id)

    rows = get_messages_for_thread(thread_id) + list_unthreaded_messages(ask_session_id)
    return sorted(rows, key=_message_sort_key)


def fetch_messages_with_users(
    ask_session_id: str,
    thread_id: str | None,
    existing_users: dict[str, dict[str, Any]] | None = None,
) -> tuple[list[MessageSummary], dict[str, dict[str, Any]]]:
    rows = fetch_message_rows(ask_session_id, thread_id)

    users_by_id = dict(existing_users or {})
    missing_ids = [
        row["user_id"] for row in rows if row.get("user_id") and row["user_id"] not in users_by_id
    ]
    if missing_ids:
        users_by_id.update(fetch_profiles_by_ids(missing_ids))

    messages = [
        build_message_summary(row, users_by_id.get(row.get("user_id") or ""), index)
        for index, row in enumerate(rows)
    ]
    return messages, users_by_id


def fetch_conversation_context(
    ask_session: dict[str, Any], profile_id: str | None = None
) -> ConversationContext:
    """
    Load the full conversation context for an ASK session and viewer.

    Args:
        ask_session: Session row (id, ask_key, question, conversation_mode, ...)
        profile_id: Viewer profile UUID, used to pick the individual thread

    Returns:
        ConversationContext

    Raises:
        Exception: If database operation fails
    """
    ask_session_id = ask_session["id"]

    participants, participant_users = fetch_participants_with_users(ask_session_id)

    thread = get_or_create_conversation_thread(ask_session_id, profile_id, ask_session)

    messages, users_by_id = fetch_messages_with_users(
        ask_session_id, thread["id"] if thread else None, participant_users
    )

    project = fetch_project(ask_session.get("project_id"))
    challenge = fetch_challenge(ask_session.get("challenge_id"))

    plan = get_conversation_plan_with_steps(thread["id"]) if thread else None

    logger.debug(
        f"Loaded context for {ask_session_id}: {len(participants)} participants, "
        f"{len(messages)} messages, plan={'yes' if plan else 'no'}"
    )

    return ConversationContext(
        ask_session=ask_session,
        participants=participants,
        messages=messages,
        project=project,
        challenge=challenge,
        conversation_plan=plan,
        conversation_thread=thread,
        users_by_id=users_by_id,
    )
