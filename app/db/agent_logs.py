"""AI agent interaction log database operations."""

from typing import Any

from app.core.logging import get_logger
from app.core.schemas_agents import AgentLog
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)


def create_agent_log(
    interaction_type: str,
    request_payload: dict[str, Any],
    agent_id: str | None = None,
    model_config_id: str | None = None,
    ask_session_id: str | None = None,
    message_id: str | None = None,
) -> AgentLog:
    """
    Create a pending agent log entry.

    Args:
        interaction_type: Interaction name (e.g. "ask.chat.response")
        request_payload: Prompts and active variables sent to the model
        agent_id: Agent UUID
        model_config_id: Model configuration UUID, when already known
        ask_session_id: ASK session UUID
        message_id: Message UUID the interaction relates to

    Returns:
        Created AgentLog

    Raises:
        Exception: If database operation fails
    """
    supabase = get_supabase()

    try:
        response = (
            supabase.table("ai_agent_logs")
            .insert(
                {
                    "agent_id": agent_id,
                    "model_config_id": model_config_id,
                    "ask_session_id": ask_session_id,
                    "message_id": message_id,
                    "interaction_type": interaction_type,
                    "request_payload": request_payload,
                    "status": "pending",
                }
            )
            .execute()
        )
        if not response.data:
            raise ValueError("No data returned from create_agent_log")

        return AgentLog.model_validate(response.data[0])

    except Exception as e:
        logger.error(f"Failed to create agent log for {interaction_type}: {e}")
        raise


def mark_agent_log_processing(log_id: str, model_config_id: str | None) -> None:
    supabase = get_supabase()
    supabase.table("ai_agent_logs").update(
        {"status": "processing", "model_config_id": model_config_id}
    ).eq("id", log_id).execute()


def complete_agent_log(
    log_id: str, response_payload: dict[str, Any], latency_ms: int | None = None
) -> None:
    supabase = get_supabase()
    supabase.table("ai_agent_logs").update(
        {
            "status": "completed",
            "response_payload": response_payload,
            "latency_ms": latency_ms,
        }
    ).eq("id", log_id).execute()


def fail_agent_log(log_id: str, error_message: str) -> None:
    supabase = get_supabase()
    supabase.table("ai_agent_logs").update(
        {"status": "failed", "error_message": error_message}
    ).eq("id", log_id).execute()


def list_agent_logs(limit: int = 100) -> list[AgentLog]:
    """Most recent agent logs first."""
    supabase = get_supabase()
    response = (
        supabase.table("ai_agent_logs")
        .select("*")
        .order("created_at", desc=True)
        .limit(limit)
        .execute()
    )
    return [AgentLog.model_validate(row) for row in response.data or []]
