"""Invite-token access to an ASK session."""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from app.api.ask_helpers import build_ask_payload, build_participant_payload
from app.core.conversation_context import (
    build_detailed_message,
    build_participant_display_name,
    fetch_message_rows,
)
from app.core.insight_normalize import map_insight_row_to_insight
from app.core.logging import get_logger
from app.core.session_auth import (
    RequestCredentials,
    get_request_credentials,
    load_auth_from_session,
    load_full_auth_context,
)
from app.db.asks import (
    get_ask_session_by_token,
    get_or_create_conversation_thread,
    get_participant_by_id,
    list_participants,
)
from app.db.insights import fetch_insights_for_session
from app.db.profiles import fetch_profiles_by_ids

logger = get_logger(__name__)

router = APIRouter()


@router.get("/ask/token/{token}")
def get_ask_by_token(
    token: str,
    credentials: RequestCredentials = Depends(get_request_credentials),
) -> dict[str, Any]:
    """
    Load an ASK session through a participant's invite token.

    The token is proof of access. When the caller also has a session, it must
    belong to the participant the token was issued to.

    Returns:
        ask, participants, messages of the participant's thread, insights and viewer
    """
    token = token.strip()
    if not token:
        raise HTTPException(status_code=400, detail="Invalid token")

    ask_session, participant_id = get_ask_session_by_token(token)
    if not ask_session or not participant_id:
        raise HTTPException(status_code=404, detail="ASK session not found for this token")

    participant = get_participant_by_id(participant_id) or {}
    ask_session_id = ask_session["id"]

    if not credentials.is_dev_bypass:
        session_ctx = load_auth_from_session(credentials.access_token)
        owner_id = participant.get("user_id")
        if session_ctx and owner_id and session_ctx.profile_id != owner_id:
            raise HTTPException(status_code=403, detail="This link belongs to another participant")

    participant_rows = list_participants(ask_session_id)
    users_by_id = fetch_profiles_by_ids([row.get("user_id") for row in participant_rows])
    participants = [
        build_participant_payload(
            row,
            users_by_id.get(row.get("user_id") or ""),
            build_participant_display_name(row, users_by_id.get(row.get("user_id") or ""), index),
        )
        for index, row in enumerate(participant_rows)
    ]

    thread = get_or_create_conversation_thread(
        ask_session_id, participant.get("user_id"), ask_session
    )
    message_rows = fetch_message_rows(ask_session_id, thread["id"] if thread else None)
    missing_ids = [row.get("user_id") for row in message_rows if row.get("user_id") not in users_by_id]
    users_by_id.update(fetch_profiles_by_ids(missing_ids))
    messages = [
        build_detailed_message(
            row, users_by_id.get(row.get("user_id") or ""), index, ask_session.get("ask_key")
        )
        for index, row in enumerate(message_rows)
    ]

    insights = [
        map_insight_row_to_insight(row).to_api()
        for row in fetch_insights_for_session(ask_session_id)
    ]

    _, viewer = load_full_auth_context(
        ask_session_id,
        invite_token=token,
        access_token=credentials.access_token,
        is_dev_bypass=credentials.is_dev_bypass,
    )

    logger.info(f"Loaded ask session {ask_session_id} through invite token")

    return {
        "success": True,
        "data": {
            "ask": build_ask_payload(ask_session, participants),
            "messages": messages,
            "insights": insights,
            "challenges": [],
            "viewer": viewer.to_api() if viewer else None,
        },
    }
