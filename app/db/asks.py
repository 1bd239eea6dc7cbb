"""ASK sessions, participants, conversation threads and messages database operations."""

import json
from datetime import datetime, timezone  # noqa: UP035
from typing import Any

from app.core.logging import get_logger
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)

THREAD_COLUMNS = "id, ask_session_id, user_id, is_shared, created_at"


def _utc_now_iso() -> str:
    """Get current UTC time as ISO string."""
    return datetime.now(timezone.utc).isoformat()  # noqa: UP017


# =============================================================================
# Conversation threads
# =============================================================================


def should_use_shared_thread(ask_config: dict[str, Any]) -> bool:
    """
    Decide whether an ASK session uses one thread shared by all participants.

    conversation_mode wins when set: only individual_parallel gives each
    participant an isolated thread. Sessions without a mode fall back to the
    legacy audience_scope/response_mode pair.
    """
    mode = ask_config.get("conversation_mode")
    if mode:
        return mode != "individual_parallel"

    return (
        ask_config.get("audience_scope") == "group"
        and ask_config.get("response_mode") == "collective"
    )


def _find_shared_thread(ask_session_id: str) -> dict[str, Any] | None:
    supabase = get_supabase()
    response = (
        supabase.table("conversation_threads")
        .select(THREAD_COLUMNS)
        .eq("ask_session_id", ask_session_id)
        .is_("user_id", "null")
        .eq("is_shared", True)
        .limit(1)
        .execute()
    )
    return response.data[0] if response.data else None


def get_or_create_conversation_thread(
    ask_session_id: str,
    user_id: str | None,
    ask_config: dict[str, Any],
) -> dict[str, Any] | None:
    """
    Get the conversation thread a viewer should write to, creating it if needed.

    Args:
        ask_session_id: ASK session UUID
        user_id: Profile UUID of the viewer (None for anonymous/dev access)
        ask_config: Session row with conversation_mode / legacy scope fields

    Returns:
        Thread row, or None in individual mode without a user and without a
        shared thread to fall back to

    Raises:
        Exception: If database operation fails
    """
    supabase = get_supabase()
    use_shared = should_use_shared_thread(ask_config)
    thread_user_id = None if use_shared else user_id

    try:
        if use_shared:
            existing = _find_shared_thread(ask_session_id)
        elif not thread_user_id:
            # Individual mode needs a user; reuse a shared thread if one exists
            return _find_shared_thread(ask_session_id)
        else:
            response = (
                supabase.table("conversation_threads")
                .select(THREAD_COLUMNS)
                .eq("ask_session_id", ask_session_id)
                .eq("user_id", thread_user_id)
                .eq("is_shared", False)
                .limit(1)
                .execute()
            )
            existing = response.data[0] if response.data else None

        if existing:
            return existing

        response = (
            supabase.table("conversation_threads")
            .insert(
                {
                    "ask_session_id": ask_session_id,
                    "user_id": thread_user_id,
                    "is_shared": use_shared,
                }
            )
            .execute()
        )
        if not response.data:
            raise ValueError("No data returned from conversation thread insert")

        thread = response.data[0]
        logger.info(
            f"Created {'shared' if use_shared else 'individual'} thread {thread['id']} "
            f"for ask session {ask_session_id}"
        )
        return thread

    except Exception as e:
        logger.error(f"Failed to get or create conversation thread for {ask_session_id}: {e}")
        raise


def get_messages_for_thread(thread_id: str) -> list[dict[str, Any]]:
    """Messages of a thread in chronological order."""
    supabase = get_supabase()

    try:
        response = (
            supabase.table("messages")
            .select("*")
            .eq("conversation_thread_id", thread_id)
            .order("created_at", desc=False)
            .execute()
        )
        return response.data or []
    except Exception as e:
        logger.error(f"Failed to get messages for thread {thread_id}: {e}")
        raise


def get_insights_for_thread(thread_id: str) -> list[dict[str, Any]]:
    """Insights of a thread in chronological order (isolation for individual mode)."""
    supabase = get_supabase()

    try:
        response = (
            supabase.table("insights")
            .select("*")
            .eq("conversation_thread_id", thread_id)
            .order("created_at", desc=False)
            .execute()
        )
        return response.data or []
    except Exception as e:
        logger.error(f"Failed to get insights for thread {thread_id}: {e}")
        raise


# =============================================================================
# ASK sessions
# =============================================================================


def get_ask_session_by_key(raw_key: str, columns: str = "*") -> dict[str, Any] | None:
    """
    Load an ASK session by its public key.

    Args:
        raw_key: Key from the URL (whitespace is trimmed)
        columns: Columns to select

    Returns:
        Session row or None when the key is blank or unknown
    """
    key = (raw_key or "").strip()
    if not key:
        return None

    supabase = get_supabase()

    try:
        response = (
            supabase.table("ask_sessions").select(columns).eq("ask_key", key).limit(1).execute()
        )
        return response.data[0] if response.data else None
    except Exception as e:
        logger.error(f"Failed to get ask session by key {key}: {e}")
        raise


def get_ask_session_by_id(ask_session_id: str, columns: str = "*") -> dict[str, Any] | None:
    supabase = get_supabase()
    response = (
        supabase.table("ask_sessions").select(columns).eq("id", ask_session_id).limit(1).execute()
    )
    return response.data[0] if response.data else None


def get_ask_session_by_token(
    token: str, columns: str = "*"
) -> tuple[dict[str, Any] | None, str | None]:
    """
    Resolve an ASK session through a participant invite token.

    Args:
        token: Invite token from the participant's personal link
        columns: Session columns to select

    Returns:
        (session row, participant id); (None, None) when the token is unknown
    """
    trimmed = (token or "").strip()
    if not trimmed:
        return None, None

    participant = get_participant_by_token(trimmed)
    if not participant:
        return None, None

    session = get_ask_session_by_id(participant["ask_session_id"], columns)
    return session, participant["id"]


# =============================================================================
# Participants
# =============================================================================


def get_participant_by_token(token: str) -> dict[str, Any] | None:
    supabase = get_supabase()

    try:
        response = (
            supabase.table("ask_participants")
            .select("*")
            .eq("invite_token", token)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None
    except Exception as e:
        logger.error(f"Failed to get participant by invite token: {e}")
        raise


def list_participants(ask_session_id: str) -> list[dict[str, Any]]:
    """Participants of a session in join order."""
    supabase = get_supabase()

    try:
        response = (
            supabase.table("ask_participants")
            .select("*")
            .eq("ask_session_id", ask_session_id)
            .order("joined_at", desc=False)
            .execute()
        )
        return response.data or []
    except Exception as e:
        logger.error(f"Failed to list participants for {ask_session_id}: {e}")
        raise


def insert_participant(
    ask_session_id: str,
    user_id: str | None = None,
    participant_name: str | None = None,
    role: str = "participant",
    is_spokesperson: bool = False,
) -> dict[str, Any]:
    """
    Add a participant to a session, joined now.

    Guests have no user_id and carry only a participant_name.

    Returns:
        Inserted participant row

    Raises:
        Exception: If database operation fails
    """
    supabase = get_supabase()

    try:
        response = (
            supabase.table("ask_participants")
            .insert(
                {
                    "ask_session_id": ask_session_id,
                    "user_id": user_id,
                    "participant_name": participant_name,
                    "participant_email": None,
                    "role": role,
                    "is_spokesperson": is_spokesperson,
                    "joined_at": _utc_now_iso(),
                }
            )
            .execute()
        )
        if not response.data:
            raise ValueError("No data returned from participant insert")
        participant = response.data[0]
        logger.info(f"Added {role} participant {participant['id']} to ask session {ask_session_id}")
        return participant
    except Exception as e:
        logger.error(f"Failed to add participant to {ask_session_id}: {e}")
        raise


def find_participant_by_user(ask_session_id: str, user_id: str) -> dict[str, Any] | None:
    supabase = get_supabase()
    response = (
        supabase.table("ask_participants")
        .select("*")
        .eq("ask_session_id", ask_session_id)
        .eq("user_id", user_id)
        .limit(1)
        .execute()
    )
    return response.data[0] if response.data else None


def get_participant_by_id(participant_id: str) -> dict[str, Any] | None:
    supabase = get_supabase()
    response = (
        supabase.table("ask_participants").select("*").eq("id", participant_id).limit(1).execute()
    )
    return response.data[0] if response.data else None


def first_participant(ask_session_id: str) -> dict[str, Any] | None:
    """Earliest participant of a session (dev bypass fallback)."""
    supabase = get_supabase()
    response = (
        supabase.table("ask_participants")
        .select("*")
        .eq("ask_session_id", ask_session_id)
        .order("joined_at", desc=False)
        .limit(1)
        .execute()
    )
    return response.data[0] if response.data else None


def update_participant_elapsed(participant_id: str, elapsed_seconds: int) -> None:
    """
    Store a participant's active time.

    Raises:
        Exception: If database operation fails
    """
    supabase = get_supabase()

    try:
        supabase.table("ask_participants").update(
            {"elapsed_active_seconds": elapsed_seconds}
        ).eq("id", participant_id).execute()
        logger.debug(f"Participant {participant_id} elapsed set to {elapsed_seconds}s")
    except Exception as e:
        logger.error(f"Failed to update elapsed time for participant {participant_id}: {e}")
        raise


# =============================================================================
# Messages
# =============================================================================


def normalise_message_metadata(value: Any) -> dict[str, Any] | None:
    """Message metadata may be stored as JSON text or as an object."""
    if value is None:
        return None
    if isinstance(value, dict):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except ValueError:
            return None
        return parsed if isinstance(parsed, dict) else None
    return None


def insert_message(
    ask_session_id: str,
    content: str,
    sender_type: str,
    user_id: str | None = None,
    message_type: str = "text",
    metadata: dict[str, Any] | None = None,
    conversation_thread_id: str | None = None,
    plan_step_id: str | None = None,
    parent_message_id: str | None = None,
) -> dict[str, Any]:
    """
    Insert a conversation message.

    Args:
        ask_session_id: ASK session UUID
        content: Message text
        sender_type: user, ai or system
        user_id: Author profile UUID for user messages
        message_type: text, audio, image or document
        metadata: Free-form metadata (senderName, voice flags...)
        conversation_thread_id: Thread the message belongs to
        plan_step_id: Record id of the plan step active when it was sent
        parent_message_id: Message this one answers

    Returns:
        Inserted message row

    Raises:
        Exception: If database operation fails
    """
    supabase = get_supabase()

    try:
        response = (
            supabase.table("messages")
            .insert(
                {
                    "ask_session_id": ask_session_id,
                    "content": content,
                    "sender_type": sender_type,
                    "user_id": user_id,
                    "message_type": message_type,
                    "metadata": metadata,
                    "conversation_thread_id": conversation_thread_id,
                    "plan_step_id": plan_step_id,
                    "parent_message_id": parent_message_id,
                }
            )
            .execute()
        )
        if not response.data:
            raise ValueError("No data returned from message insert")

        message = response.data[0]
        logger.info(
            f"Inserted {sender_type} message {message['id']} in ask session {ask_session_id}"
        )
        return message

    except Exception as e:
        logger.error(f"Failed to insert message for {ask_session_id}: {e}")
        raise


def list_session_messages(ask_session_id: str) -> list[dict[str, Any]]:
    """All messages of a session in chronological order."""
    supabase = get_supabase()
    response = (
        supabase.table("messages")
        .select("*")
        .eq("ask_session_id", ask_session_id)
        .order("created_at", desc=False)
        .execute()
    )
    return response.data or []


def list_unthreaded_messages(ask_session_id: str) -> list[dict[str, Any]]:
    """Messages written before threads existed (conversation_thread_id is null)."""
    supabase = get_supabase()
    response = (
        supabase.table("messages")
        .select("*")
        .eq("ask_session_id", ask_session_id)
        .is_("conversation_thread_id", "null")
        .order("created_at", desc=False)
        .execute()
    )
    return response.data or []


def list_step_messages(plan_step_id: str) -> list[dict[str, Any]]:
    """Messages linked to a plan step in chronological order."""
    supabase = get_supabase()
    response = (
        supabase.table("messages")
        .select("*")
        .eq("plan_step_id", plan_step_id)
        .order("created_at", desc=False)
        .execute()
    )
    return response.data or []


def has_messages(ask_session_id: str, thread_id: str | None = None) -> bool:
    """Whether a conversation (thread, or whole session) already has messages."""
    supabase = get_supabase()
    query = supabase.table("messages").select("id").eq("ask_session_id", ask_session_id)
    if thread_id:
        query = query.eq("conversation_thread_id", thread_id)
    response = query.limit(1).execute()
    return bool(response.data)
