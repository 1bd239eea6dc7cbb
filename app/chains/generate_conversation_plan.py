"""Generate a conversation plan for an ASK thread with the plan generator agent."""

import json
from datetime import datetime, timezone  # noqa: UP035
from typing import Any

from pydantic import ValidationError

from app.chains.execute_agent import execute_agent
from app.core.errors import PlanGenerationError
from app.core.llm import parse_json_payload
from app.core.logging import get_logger
from app.core.schemas_plans import PlanData

logger = get_logger(__name__)

PLAN_AGENT_SLUG = "ask-conversation-plan-generator"
PLAN_INTERACTION_TYPE = "ask.plan.generation"


def _utc_now_iso() -> str:
    """Get current UTC time as ISO string."""
    return datetime.now(timezone.utc).isoformat()  # noqa: UP017


def parse_plan_content(content: str | None) -> PlanData:
    """
    Parse generator output into PlanData with the first step active.

    Raises:
        PlanGenerationError: If the output is empty, not JSON, or has no steps
    """
    if not content or not content.strip():
        raise PlanGenerationError("Plan generator agent did not return valid content")

    try:
        raw = parse_json_payload(content)
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse plan JSON: {e}")
        raise PlanGenerationError("Failed to parse plan data from agent response") from e

    raw_steps = raw.get("steps") if isinstance(raw, dict) else None
    if not isinstance(raw_steps, list) or not raw_steps:
        raise PlanGenerationError("Invalid plan structure: missing or empty steps array")

    steps: list[dict[str, Any]] = []
    for index, step in enumerate(raw_steps):
        entry = dict(step) if isinstance(step, dict) else {}
        entry.setdefault("id", f"step_{index + 1}")
        entry["status"] = "active" if index == 0 else "pending"
        steps.append(entry)
    steps[0]["created_at"] = _utc_now_iso()

    try:
        return PlanData.model_validate({"steps": steps})
    except ValidationError as e:
        raise PlanGenerationError(f"Invalid plan structure: {e}") from e


def generate_conversation_plan(ask_session_id: str, variables: dict[str, Any]) -> PlanData:
    """
    Ask the plan generator agent for a step-by-step conversation plan.

    Args:
        ask_session_id: ASK session UUID
        variables: Conversation agent variables (question, participants, ...)

    Returns:
        PlanData whose first step is active and the others pending

    Raises:
        PlanGenerationError: If the agent output is not a usable plan
        Exception: Agent execution failures are propagated
    """
    logger.info(f"Generating conversation plan for ask session {ask_session_id}")

    result = execute_agent(
        agent_slug=PLAN_AGENT_SLUG,
        interaction_type=PLAN_INTERACTION_TYPE,
        variables=variables,
        ask_session_id=ask_session_id,
    )

    plan_data = parse_plan_content(result.content)
    logger.info(f"Generated plan with {len(plan_data.steps)} steps for {ask_session_id}")
    return plan_data
