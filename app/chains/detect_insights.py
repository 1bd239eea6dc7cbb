"""Insight detection: run the detection agent and merge its output into stored insights."""

from typing import Any

from app.chains.execute_agent import execute_agent
from app.core.errors import AgentExecutionError
from app.core.insight_normalize import (
    Insight,
    map_insight_row_to_insight,
    normalise_incoming_insights,
)
from app.core.llm import try_parse_json
from app.core.logging import get_logger
from app.db.ai_agents import fetch_agent_by_slug
from app.db.insight_jobs import (
    complete_insight_job,
    create_insight_job,
    fail_insight_job,
    find_active_insight_job,
    set_insight_job_model,
)
from app.db.insights import fetch_insights_for_session, persist_insights

logger = get_logger(__name__)

INSIGHT_AGENT_SLUG = "ask-insight-detection"
INSIGHT_INTERACTION_TYPE = "ask.insight.detection"


def trigger_insight_detection(
    ask_session_id: str,
    message_id: str | None,
    variables: dict[str, Any],
    existing_rows: list[dict[str, Any]],
    conversation_thread_id: str | None = None,
) -> list[Insight]:
    """
    Detect insights in the latest exchange and persist them.

    At most one detection job runs per session: when one is already pending or
    processing, the stored insights are returned unchanged.

    Args:
        ask_session_id: ASK session UUID
        message_id: Message that triggered detection
        variables: Prompt variables for the detection agent
        existing_rows: Stored insight rows of the session
        conversation_thread_id: Thread new insights are attached to

    Returns:
        Refreshed insights of the session

    Raises:
        AgentExecutionError: If the detection agent is not configured
        Exception: Agent or database failures (the job is marked failed first)
    """
    active_job = find_active_insight_job(ask_session_id)
    if active_job:
        logger.info(f"Insight job {active_job['id']} already running for {ask_session_id}")
        return [map_insight_row_to_insight(row) for row in existing_rows]

    agent = fetch_agent_by_slug(INSIGHT_AGENT_SLUG, include_models=True)
    if agent is None:
        raise AgentExecutionError("Insight detection agent is not configured")

    job = create_insight_job(ask_session_id, message_id=message_id, agent_id=agent.id)

    try:
        result = execute_agent(
            agent_slug=INSIGHT_AGENT_SLUG,
            interaction_type=INSIGHT_INTERACTION_TYPE,
            variables=variables,
            ask_session_id=ask_session_id,
            message_id=message_id,
        )
        set_insight_job_model(job["id"], result.model_used.id)

        payload = try_parse_json(result.content)
        if payload is None:
            logger.warning("Unable to parse insight detection response as JSON")
            payload = result.raw or {}

        envelope = payload.get("insights", payload) if isinstance(payload, dict) else payload
        if isinstance(envelope, list):
            envelope = {"items": envelope}

        _, items = normalise_incoming_insights(envelope)
        persist_insights(ask_session_id, items, existing_rows, conversation_thread_id)

        complete_insight_job(job["id"], result.model_used.id)

        refreshed = fetch_insights_for_session(ask_session_id)
        logger.info(
            f"Insight detection stored {len(items)} items for {ask_session_id}",
            extra={"ask_session_id": ask_session_id, "interaction_type": INSIGHT_INTERACTION_TYPE},
        )
        return [map_insight_row_to_insight(row) for row in refreshed]

    except Exception as e:
        fail_insight_job(
            job["id"],
            str(e) or "Unknown error during insight detection",
            attempts=job.get("attempts") or 1,
        )
        logger.error(f"Insight detection failed for {ask_session_id}: {e}")
        raise
