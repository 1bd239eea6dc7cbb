"""Streamed agent replies and guest participants of an ASK conversation."""

import json
from collections.abc import Iterator
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from fastapi.responses import StreamingResponse

from app.api.ask import CHAT_AGENT_SLUG, CHAT_INTERACTION_TYPE
from app.api.ask_helpers import (
    ACCESS_DENIED,
    complete_marked_step,
    conversation_thread_id,
    ensure_valid_ask_key,
    load_ask_session_or_404,
    require_session_profile,
    store_ai_message,
)
from app.chains.detect_insights import trigger_insight_detection
from app.chains.execute_agent import AgentStream, start_agent_stream
from app.chains.summarize_plan_step import summarize_step_in_background
from app.core.conversation_agent import DEFAULT_INSIGHT_TYPES, build_conversation_agent_variables
from app.core.conversation_context import ConversationContext, fetch_conversation_context
from app.core.errors import is_permission_denied, parse_error_message
from app.core.insight_normalize import map_insight_row_to_insight
from app.core.logging import get_logger
from app.core.schemas_api import GuestParticipantCreate, StreamRequest
from app.core.session_auth import RequestCredentials, get_request_credentials, load_full_auth_context
from app.db.asks import find_participant_by_user, get_participant_by_token, insert_participant
from app.db.insights import fetch_insight_types_for_prompt, fetch_insights_for_session

logger = get_logger(__name__)

router = APIRouter()

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _sse_event(data: dict) -> str:
    """Format a dict as an SSE data line."""
    return f"data: {json.dumps(data)}\n\n"


def _authorize_stream(ask_session: dict[str, Any], credentials: RequestCredentials) -> str | None:
    """
    Profile the reply is streamed for; None under the dev bypass.

    Invite tokens must belong to this session and be linked to a profile.
    Session callers must participate, except in anonymous sessions where they
    are added as participants.
    """
    if credentials.is_dev_bypass:
        return None

    if credentials.invite_token:
        try:
            participant = get_participant_by_token(credentials.invite_token)
        except Exception as e:
            logger.error(f"Invite token lookup failed for streaming: {e}")
            raise HTTPException(status_code=403, detail="Invalid invite token") from e

        if not participant or not participant.get("user_id"):
            raise HTTPException(
                status_code=403, detail="This invite link is not linked to a user profile"
            )
        if participant.get("ask_session_id") != ask_session["id"]:
            logger.info("Invite token does not belong to the requested ASK")
            raise HTTPException(status_code=403, detail=ACCESS_DENIED)
        return participant["user_id"]

    profile_id = require_session_profile(credentials)["id"]

    try:
        membership = find_participant_by_user(ask_session["id"], profile_id)
    except Exception as e:
        if is_permission_denied(e):
            raise HTTPException(status_code=403, detail=ACCESS_DENIED) from e
        raise

    if membership:
        return profile_id

    if not ask_session.get("is_anonymous"):
        raise HTTPException(status_code=403, detail=ACCESS_DENIED)

    try:
        insert_participant(ask_session["id"], user_id=profile_id)
    except Exception as e:
        logger.warning(f"Failed to add {profile_id} to anonymous session {ask_session['id']}: {e}")
    return profile_id


def _last_user_message_id(context: ConversationContext) -> str | None:
    last_user = next((m for m in reversed(context.messages) if m.sender_type == "user"), None)
    return last_user.id if last_user else None


def _stream_events(
    context: ConversationContext,
    agent_stream: AgentStream,
    background_tasks: BackgroundTasks,
) -> Iterator[str]:
    """
    SSE events of a streamed reply.

    chunk events while the agent writes, then message, step_completed when the
    reply closes the current step, insights, and done. A provider failure ends
    the stream with a single error event.
    """
    ask_session_id = context.ask_session["id"]

    try:
        for chunk in agent_stream:
            yield _sse_event({"type": "chunk", "content": chunk, "done": False})
    except Exception as e:
        logger.error(f"Streaming failed for ask session {ask_session_id}: {e}")
        yield _sse_event({"type": "error", "error": parse_error_message(e)})
        return

    content = agent_stream.content.strip()
    message = None

    if content:
        try:
            message = store_ai_message(context, content, _last_user_message_id(context))
            yield _sse_event({"type": "message", "message": message})

            completion = complete_marked_step(context, content)
            if completion:
                completed_step_id, step_record_id = completion
                yield _sse_event(
                    {
                        "type": "step_completed",
                        "conversationPlan": context.conversation_plan.model_dump(),
                        "completedStepId": completed_step_id,
                    }
                )
                if step_record_id:
                    background_tasks.add_task(
                        summarize_step_in_background, step_record_id, ask_session_id
                    )
        except Exception as e:
            logger.error(f"Failed to store streamed reply for {ask_session_id}: {e}")

    try:
        insight_rows = fetch_insights_for_session(ask_session_id)
        variables = build_conversation_agent_variables(
            context,
            insights=[map_insight_row_to_insight(row) for row in insight_rows],
            insight_types=fetch_insight_types_for_prompt() or DEFAULT_INSIGHT_TYPES,
            latest_ai_response=content,
        )
        insights = trigger_insight_detection(
            ask_session_id,
            message["id"] if message else None,
            variables,
            insight_rows,
            conversation_thread_id=conversation_thread_id(context),
        )
        yield _sse_event({"type": "insights", "insights": [i.to_api() for i in insights]})
    except Exception as e:
        logger.error(f"Insight detection failed after streaming for {ask_session_id}: {e}")

    yield _sse_event({"type": "done"})


@router.post("/ask/{key}/stream")
def stream_response(
    key: str,
    background_tasks: BackgroundTasks,
    body: StreamRequest | None = None,
    credentials: RequestCredentials = Depends(get_request_credentials),
) -> StreamingResponse:
    """
    Stream the chat agent's reply as Server-Sent Events.

    The user message of the body (message or content) is passed to the agent
    as latest_user_message but not stored. The agent reply is stored once the
    stream ends.
    """
    body = body or StreamRequest()
    ask_key = ensure_valid_ask_key(key)
    ask_session = load_ask_session_or_404(ask_key)

    profile_id = _authorize_stream(ask_session, credentials)
    context = fetch_conversation_context(ask_session, profile_id)

    variables = build_conversation_agent_variables(context)
    if body.user_message:
        variables["latest_user_message"] = body.user_message

    agent_stream = start_agent_stream(
        agent_slug=CHAT_AGENT_SLUG,
        interaction_type=CHAT_INTERACTION_TYPE,
        variables=variables,
        ask_session_id=ask_session["id"],
    )

    return StreamingResponse(
        _stream_events(context, agent_stream, background_tasks),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.post("/ask/{key}/participants/guest")
def create_guest_participant(
    key: str,
    body: GuestParticipantCreate,
    credentials: RequestCredentials = Depends(get_request_credentials),
) -> dict[str, Any]:
    """
    Add a named guest to a consultant-mode session.

    Guests have no profile; the speaker label ties them to a voice transcript speaker.
    """
    ask_key = ensure_valid_ask_key(key)
    ask_session = load_ask_session_or_404(ask_key, "id, ask_key, conversation_mode")

    ctx, _ = load_full_auth_context(
        ask_session["id"],
        credentials.invite_token,
        credentials.access_token,
        credentials.is_dev_bypass,
    )
    if ctx.auth_method == "none" and not credentials.is_dev_bypass:
        raise HTTPException(status_code=401, detail="Authentication required")

    if ask_session.get("conversation_mode") != "consultant":
        raise HTTPException(
            status_code=400, detail="Guest participants can only be created in consultant mode"
        )

    name = f"{body.first_name.strip()} {body.last_name.strip()}".strip()
    try:
        participant = insert_participant(ask_session["id"], participant_name=name, role="guest")
    except Exception as e:
        raise HTTPException(status_code=500, detail="Failed to create guest participant") from e

    return {
        "success": True,
        "data": {
            "id": participant["id"],
            "name": participant["participant_name"],
            "speaker": body.speaker,
        },
    }
