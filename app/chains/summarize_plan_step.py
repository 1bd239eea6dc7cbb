"""Summaries of completed conversation plan steps."""

from datetime import datetime, timezone  # noqa: UP035
from typing import Any

from app.chains.execute_agent import execute_agent
from app.core.errors import StepSummaryError
from app.core.logging import get_logger
from app.core.schemas_plans import ConversationPlanStep
from app.db.asks import list_step_messages
from app.db.conversation_plans import get_plan_step_by_id, update_step_summary

logger = get_logger(__name__)

SUMMARY_AGENT_SLUG = "ask-conversation-step-summarizer"
SUMMARY_INTERACTION_TYPE = "ask.step.summary"

NO_MESSAGES_SUMMARY = "Aucun message échangé lors de cette étape."
SUMMARY_ERROR_PREFIX = "[ERREUR] La génération du résumé a échoué: "


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def format_step_duration(step: ConversationPlanStep) -> str:
    """Step duration as "N minutes" under an hour, "XhY" above."""
    start = _parse_timestamp(step.activated_at) or _parse_timestamp(step.created_at)
    end = _parse_timestamp(step.completed_at) or datetime.now(timezone.utc)  # noqa: UP017
    if start is None:
        minutes = 0
    else:
        if start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)  # noqa: UP017
        if end.tzinfo is None:
            end = end.replace(tzinfo=timezone.utc)  # noqa: UP017
        minutes = int((end - start).total_seconds() / 60 + 0.5)

    if minutes < 60:
        return f"{minutes} minutes"
    return f"{minutes // 60}h{minutes % 60}"


def format_summary_messages(messages: list[dict[str, Any]]) -> str:
    blocks = []
    for message in messages:
        sender = "Participant" if message.get("sender_type") == "user" else "Assistant IA"
        timestamp = _parse_timestamp(message.get("created_at"))
        stamp = timestamp.strftime("%d/%m/%Y %H:%M:%S") if timestamp else ""
        blocks.append(f"[{stamp}] {sender}:\n{message.get('content') or ''}")
    return "\n\n---\n\n".join(blocks)


def generate_step_summary(step_id: str, ask_session_id: str) -> str | None:
    """
    Summarise the messages exchanged during a plan step.

    Args:
        step_id: Record id of the plan step
        ask_session_id: ASK session UUID (for agent logs)

    Returns:
        Summary text; a message-count fallback when the agent fails or
        returns nothing; None when the step cannot be loaded
    """
    step = get_plan_step_by_id(step_id)
    if step is None:
        logger.error(f"Plan step {step_id} not found for summary")
        return None

    messages = list_step_messages(step_id)
    if not messages:
        return NO_MESSAGES_SUMMARY

    fallback = f"{len(messages)} messages échangés lors de cette étape."

    try:
        result = execute_agent(
            agent_slug=SUMMARY_AGENT_SLUG,
            interaction_type=SUMMARY_INTERACTION_TYPE,
            ask_session_id=ask_session_id,
            variables={
                "step_title": step.title,
                "step_objective": step.objective,
                "step_duration": format_step_duration(step),
                "message_count": str(len(messages)),
                "step_messages": format_summary_messages(messages),
            },
        )
    except Exception as e:
        logger.error(f"Failed to generate summary for step {step_id}: {e}")
        return fallback

    summary = (result.content or "").strip()
    if not summary:
        logger.error(f"Summarizer agent returned empty content for step {step_id}")
        return fallback

    return summary


def run_step_summary(step_id: str, ask_session_id: str) -> str:
    """
    Generate and store a step summary.

    On failure the error is stored in summary_error together with an
    "[ERREUR]" summary, then raised.

    Raises:
        StepSummaryError: If no summary could be produced or stored
    """
    try:
        summary = generate_step_summary(step_id, ask_session_id)
        if summary is None:
            raise ValueError("Step not found or summary unavailable")
        update_step_summary(step_id, summary, summary_error=None)
    except Exception as e:
        message = str(e) or "Unknown error"
        logger.error(f"Step summary failed for {step_id}: {message}")
        try:
            update_step_summary(step_id, f"{SUMMARY_ERROR_PREFIX}{message}", summary_error=message)
        except Exception as store_error:
            logger.error(f"Failed to store summary error for step {step_id}: {store_error}")
        raise StepSummaryError(message, step_id, ask_session_id) from e

    logger.info(f"Stored summary for step {step_id}")
    return summary


def summarize_step_in_background(step_id: str, ask_session_id: str) -> None:
    """Background task wrapper: failures are already stored on the step, only log them."""
    try:
        run_step_summary(step_id, ask_session_id)
    except StepSummaryError as e:
        logger.warning(f"Background summary of step {e.step_id} failed: {e}")
