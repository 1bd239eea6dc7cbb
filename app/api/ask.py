"""ASK conversation endpoints: external session data, conversation start and agent replies."""

from typing import Any

from fastapi import APIRouter, BackgroundTasks, Body, Depends, HTTPException

from app.api.ask_helpers import (
    active_step_record_id,
    complete_marked_step,
    conversation_thread_id,
    ensure_valid_ask_key,
    load_ask_session_or_404,
    store_ai_message,
)
from app.chains.detect_insights import trigger_insight_detection
from app.chains.execute_agent import execute_agent
from app.chains.generate_conversation_plan import generate_conversation_plan
from app.chains.summarize_plan_step import summarize_step_in_background
from app.core.config import get_settings
from app.core.conversation_agent import DEFAULT_INSIGHT_TYPES, build_conversation_agent_variables
from app.core.conversation_context import (
    ConversationContext,
    build_message_summary,
    fetch_conversation_context,
)
from app.core.errors import WebhookError
from app.core.insight_normalize import Insight, map_insight_row_to_insight
from app.core.logging import get_logger
from app.core.schemas_api import RespondRequest
from app.core.session_auth import RequestCredentials, get_request_credentials, load_full_auth_context
from app.core.webhook_client import fetch_ask_from_webhook, forward_user_message
from app.db.asks import has_messages, insert_message
from app.db.conversation_plans import create_conversation_plan, get_conversation_plan_with_steps
from app.db.insights import fetch_insight_types_for_prompt, fetch_insights_for_session

logger = get_logger(__name__)

router = APIRouter()

CHAT_AGENT_SLUG = "ask-conversation-response"
CHAT_INTERACTION_TYPE = "ask.chat.response"


def _ensure_webhook_configured() -> None:
    if not get_settings().EXTERNAL_RESPONSE_WEBHOOK:
        raise HTTPException(status_code=500, detail="External webhook not configured")


def _ensure_conversation_plan(context: ConversationContext) -> None:
    """Generate and store a plan for the thread when it has none; failures are only logged."""
    thread_id = conversation_thread_id(context)
    if not thread_id or context.conversation_plan:
        return

    ask_session_id = context.ask_session["id"]
    try:
        plan_data = generate_conversation_plan(
            ask_session_id, build_conversation_agent_variables(context)
        )
        create_conversation_plan(thread_id, plan_data)
        context.conversation_plan = get_conversation_plan_with_steps(thread_id)
        logger.info(f"Created conversation plan for thread {thread_id}")
    except Exception as e:
        logger.warning(f"Continuing without conversation plan for {ask_session_id}: {e}")


def _insights_payload(insights: list[Insight]) -> list[dict[str, Any]]:
    return [insight.to_api() for insight in insights]


# ============================================================================
# External backend
# ============================================================================


@router.get("/ask/{key}")
async def get_ask_from_backend(key: str) -> dict[str, Any]:
    """Retrieve ASK data and conversation state from the external backend."""
    ask_key = ensure_valid_ask_key(key)
    _ensure_webhook_configured()

    try:
        data = await fetch_ask_from_webhook(ask_key)
    except WebhookError as e:
        logger.error(f"Error retrieving ASK {ask_key} from backend: {e}")
        raise HTTPException(status_code=500, detail=str(e)) from e

    return {"success": True, "data": data}


@router.post("/ask/{key}")
async def send_message_to_backend(key: str, message: Any = Body(None)) -> dict[str, Any]:
    """Forward a user message to the external backend."""
    ask_key = ensure_valid_ask_key(key)
    _ensure_webhook_configured()

    try:
        result = await forward_user_message(ask_key, message)
    except WebhookError as e:
        logger.error(f"Error sending message for ASK {ask_key}: {e}")
        raise HTTPException(status_code=500, detail=str(e)) from e

    return {"success": True, "data": result, "message": "Message sent successfully"}


# ============================================================================
# Conversation
# ============================================================================


@router.post("/ask/{key}/init")
def init_conversation(
    key: str,
    credentials: RequestCredentials = Depends(get_request_credentials),
) -> dict[str, Any]:
    """
    Start a conversation: ensure a plan exists and store the agent's opening message.

    Returns a null message when the viewer's conversation already has messages.
    """
    ask_key = ensure_valid_ask_key(key)
    ask_session = load_ask_session_or_404(ask_key)

    ctx, _ = load_full_auth_context(
        ask_session["id"],
        credentials.invite_token,
        credentials.access_token,
        credentials.is_dev_bypass,
    )
    context = fetch_conversation_context(ask_session, ctx.profile_id)

    if has_messages(ask_session["id"], conversation_thread_id(context)):
        return {
            "success": True,
            "data": {"message": None},
            "message": "Conversation already initiated",
        }

    _ensure_conversation_plan(context)

    result = execute_agent(
        agent_slug=CHAT_AGENT_SLUG,
        interaction_type=CHAT_INTERACTION_TYPE,
        variables=build_conversation_agent_variables(context),
        ask_session_id=ask_session["id"],
    )

    content = (result.content or "").strip()
    if not content:
        logger.error(f"Chat agent returned no content for ask session {ask_session['id']}")
        raise HTTPException(status_code=500, detail="Agent did not return a valid response")

    message = store_ai_message(context, content)
    logger.info(f"Initial conversation message {message['id']} created for {ask_key}")

    return {"success": True, "data": {"message": message}}


@router.post("/ask/{key}/respond")
def respond(
    key: str,
    background_tasks: BackgroundTasks,
    body: RespondRequest | None = None,
    credentials: RequestCredentials = Depends(get_request_credentials),
) -> dict[str, Any]:
    """
    Run the chat agent on the conversation, then insight detection.

    1. Store the user message when one is given
    2. Store the agent reply linked to the active plan step
    3. Complete the current step on a STEP_COMPLETE marker (summary in background)
    4. Detect insights; on failure the stored insights are returned
    """
    body = body or RespondRequest()
    ask_key = ensure_valid_ask_key(key)
    ask_session = load_ask_session_or_404(ask_key)
    ask_session_id = ask_session["id"]

    if body.detect_insights:
        if not body.ask_session_id:
            raise HTTPException(
                status_code=400,
                detail="ASK session identifier is required for insight detection",
            )
        if body.ask_session_id != ask_session_id:
            raise HTTPException(status_code=400, detail="ASK session mismatch")

    ctx, _ = load_full_auth_context(
        ask_session_id,
        credentials.invite_token,
        credentials.access_token,
        credentials.is_dev_bypass,
    )
    context = fetch_conversation_context(ask_session, ctx.profile_id)
    thread_id = conversation_thread_id(context)

    insight_rows = fetch_insights_for_session(ask_session_id)
    existing_insights = [map_insight_row_to_insight(row) for row in insight_rows]
    insight_types = fetch_insight_types_for_prompt() or DEFAULT_INSIGHT_TYPES

    if body.detect_insights:
        last_ai = next((m for m in reversed(context.messages) if m.sender_type == "ai"), None)
        variables = build_conversation_agent_variables(
            context,
            insights=existing_insights,
            insight_types=insight_types,
            latest_ai_response=last_ai.content if last_ai else "",
        )
        try:
            insights = trigger_insight_detection(
                ask_session_id,
                last_ai.id if last_ai else None,
                variables,
                insight_rows,
                conversation_thread_id=thread_id,
            )
        except Exception as e:
            logger.error(f"Insight detection failed for {ask_session_id}: {e}")
            raise HTTPException(status_code=500, detail="Failed to detect insights") from e
        return {"success": True, "data": {"insights": _insights_payload(insights)}}

    user_content = (body.message or "").strip()
    if user_content:
        metadata = {"senderName": ctx.participant_name} if ctx.participant_name else None
        row = insert_message(
            ask_session_id=ask_session_id,
            content=user_content,
            sender_type="user",
            user_id=ctx.profile_id,
            metadata=metadata,
            conversation_thread_id=thread_id,
            plan_step_id=active_step_record_id(context),
        )
        user = context.users_by_id.get(ctx.profile_id or "")
        context.messages.append(build_message_summary(row, user, len(context.messages)))

    result = execute_agent(
        agent_slug=CHAT_AGENT_SLUG,
        interaction_type=CHAT_INTERACTION_TYPE,
        variables=build_conversation_agent_variables(
            context, insights=existing_insights, insight_types=insight_types
        ),
        ask_session_id=ask_session_id,
    )

    latest_ai_response = (result.content or "").strip()
    message = None
    completed_step_id = None

    if latest_ai_response:
        message = store_ai_message(context, latest_ai_response)

        completion = complete_marked_step(context, latest_ai_response)
        if completion:
            completed_step_id, step_record_id = completion
            if step_record_id:
                background_tasks.add_task(
                    summarize_step_in_background, step_record_id, ask_session_id
                )

    insights = existing_insights
    try:
        variables = build_conversation_agent_variables(
            context,
            insights=existing_insights,
            insight_types=insight_types,
            latest_ai_response=latest_ai_response,
        )
        insights = trigger_insight_detection(
            ask_session_id,
            message["id"] if message else None,
            variables,
            insight_rows,
            conversation_thread_id=thread_id,
        )
    except Exception as e:
        logger.error(f"Insight detection failed for {ask_session_id}: {e}")

    data: dict[str, Any] = {"message": message, "insights": _insights_payload(insights)}
    if context.conversation_plan:
        data["conversationPlan"] = context.conversation_plan.model_dump()
    if completed_step_id:
        data["completedStepId"] = completed_step_id

    return {"success": True, "data": data}
