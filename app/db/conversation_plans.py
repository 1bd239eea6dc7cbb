"""Conversation plan and plan step database operations."""

import math
from datetime import datetime, timezone  # noqa: UP035
from typing import Any

from app.core.errors import PlanGenerationError
from app.core.logging import get_logger
from app.core.schemas_plans import (
    ConversationPlan,
    ConversationPlanStep,
    PlanData,
    PlanDataStep,
)
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)

PLANS_TABLE = "ask_conversation_plans"
STEPS_TABLE = "ask_conversation_plan_steps"


def _utc_now_iso() -> str:
    """Get current UTC time as ISO string."""
    return datetime.now(timezone.utc).isoformat()  # noqa: UP017


def create_conversation_plan(thread_id: str, plan_data: PlanData) -> ConversationPlan:
    """
    Store a generated plan and its normalized step rows.

    Args:
        thread_id: Conversation thread UUID
        plan_data: Generated plan (first step active)

    Returns:
        ConversationPlan with steps

    Raises:
        PlanGenerationError: If the plan or its steps cannot be inserted
    """
    supabase = get_supabase()
    steps = plan_data.steps
    now = _utc_now_iso()

    try:
        response = (
            supabase.table(PLANS_TABLE)
            .insert(
                {
                    "conversation_thread_id": thread_id,
                    "plan_data": plan_data.model_dump(),
                    "current_step_id": steps[0].id if steps else None,
                    "total_steps": len(steps),
                    "completed_steps": 0,
                    "status": "active",
                }
            )
            .execute()
        )
    except Exception as e:
        logger.error(f"Failed to create conversation plan for thread {thread_id}: {e}")
        raise PlanGenerationError(f"Failed to create conversation plan: {e}") from e

    if not response.data:
        raise PlanGenerationError("Failed to create conversation plan: no row returned")

    plan_row = response.data[0]

    step_rows = [
        {
            "plan_id": plan_row["id"],
            "step_identifier": step.id,
            "step_order": index + 1,
            "title": step.title,
            "objective": step.objective,
            "status": step.status,
            "summary": step.summary,
            "elapsed_active_seconds": 0,
            "activated_at": now if step.status == "active" else None,
            "completed_at": step.completed_at,
        }
        for index, step in enumerate(steps)
    ]

    try:
        steps_response = supabase.table(STEPS_TABLE).insert(step_rows).execute()
    except Exception as e:
        logger.error(f"Failed to create plan steps for plan {plan_row['id']}: {e}")
        raise PlanGenerationError(f"Failed to create plan steps: {e}") from e

    logger.info(
        f"Created conversation plan {plan_row['id']} with {len(steps)} steps",
        extra={"thread_id": thread_id},
    )

    plan = ConversationPlan.model_validate(plan_row)
    plan.steps = [ConversationPlanStep.model_validate(row) for row in steps_response.data or []]
    return plan


def get_conversation_plan(thread_id: str) -> ConversationPlan | None:
    """Plan of a thread without its step rows."""
    supabase = get_supabase()

    try:
        response = (
            supabase.table(PLANS_TABLE)
            .select("*")
            .eq("conversation_thread_id", thread_id)
            .limit(1)
            .execute()
        )
    except Exception as e:
        logger.error(f"Failed to fetch conversation plan for thread {thread_id}: {e}")
        raise

    if not response.data:
        return None
    return ConversationPlan.model_validate(response.data[0])


def list_plan_steps(plan_id: str) -> list[ConversationPlanStep]:
    supabase = get_supabase()
    response = (
        supabase.table(STEPS_TABLE)
        .select("*")
        .eq("plan_id", plan_id)
        .order("step_order", desc=False)
        .execute()
    )
    return [ConversationPlanStep.model_validate(row) for row in response.data or []]


def get_conversation_plan_with_steps(thread_id: str) -> ConversationPlan | None:
    """
    Plan of a thread with its ordered step rows.

    plan_data.steps is rebuilt from the normalized rows so both shapes agree.
    """
    plan = get_conversation_plan(thread_id)
    if plan is None:
        return None

    steps = list_plan_steps(plan.id)
    plan.steps = steps
    plan.plan_data = PlanData(
        steps=[
            PlanDataStep(
                id=step.step_identifier,
                title=step.title,
                objective=step.objective,
                status=step.status,
                summary=step.summary,
                created_at=step.created_at,
                completed_at=step.completed_at,
            )
            for step in steps
        ]
    )
    return plan


def get_plan_step(plan_id: str, step_identifier: str) -> ConversationPlanStep | None:
    supabase = get_supabase()
    response = (
        supabase.table(STEPS_TABLE)
        .select("*")
        .eq("plan_id", plan_id)
        .eq("step_identifier", step_identifier)
        .limit(1)
        .execute()
    )
    return ConversationPlanStep.model_validate(response.data[0]) if response.data else None


def get_plan_step_by_id(step_id: str) -> ConversationPlanStep | None:
    supabase = get_supabase()
    response = supabase.table(STEPS_TABLE).select("*").eq("id", step_id).limit(1).execute()
    return ConversationPlanStep.model_validate(response.data[0]) if response.data else None


def get_active_step(plan_id: str) -> ConversationPlanStep | None:
    """Lowest-ordered active step of a plan."""
    supabase = get_supabase()
    response = (
        supabase.table(STEPS_TABLE)
        .select("*")
        .eq("plan_id", plan_id)
        .eq("status", "active")
        .order("step_order", desc=False)
        .limit(1)
        .execute()
    )
    return ConversationPlanStep.model_validate(response.data[0]) if response.data else None


def _get_step_by_order(plan_id: str, step_order: int) -> ConversationPlanStep | None:
    supabase = get_supabase()
    response = (
        supabase.table(STEPS_TABLE)
        .select("*")
        .eq("plan_id", plan_id)
        .eq("step_order", step_order)
        .limit(1)
        .execute()
    )
    return ConversationPlanStep.model_validate(response.data[0]) if response.data else None


def _count_completed_steps(plan_id: str) -> int:
    supabase = get_supabase()
    response = (
        supabase.table(STEPS_TABLE)
        .select("id")
        .eq("plan_id", plan_id)
        .eq("status", "completed")
        .execute()
    )
    return len(response.data or [])


def complete_step(
    thread_id: str,
    step_identifier: str,
    step_summary: str | None = None,
) -> ConversationPlan | None:
    """
    Complete a plan step and activate the one that follows it.

    Args:
        thread_id: Conversation thread UUID
        step_identifier: Identifier of the step to complete (e.g. "step_2")
        step_summary: Summary to store; the existing one is kept when absent

    Returns:
        Refreshed plan with steps, or None when the plan or step is unknown

    Raises:
        Exception: If database operation fails
    """
    supabase = get_supabase()

    plan = get_conversation_plan(thread_id)
    if plan is None:
        logger.warning(f"No conversation plan for thread {thread_id}")
        return None

    step = get_plan_step(plan.id, step_identifier)
    if step is None:
        logger.warning(f"Step {step_identifier} not found in plan {plan.id}")
        return None

    now = _utc_now_iso()

    try:
        supabase.table(STEPS_TABLE).update(
            {
                "status": "completed",
                "completed_at": now,
                "summary": step_summary or step.summary,
            }
        ).eq("id", step.id).execute()

        next_step = _get_step_by_order(plan.id, step.step_order + 1)
        if next_step is not None:
            supabase.table(STEPS_TABLE).update(
                {"status": "active", "activated_at": now}
            ).eq("id", next_step.id).execute()

        plan_update: dict[str, Any] = {
            "current_step_id": next_step.step_identifier if next_step else None,
            "completed_steps": _count_completed_steps(plan.id),
            "updated_at": now,
        }
        if next_step is None:
            plan_update["status"] = "completed"

        supabase.table(PLANS_TABLE).update(plan_update).eq("id", plan.id).execute()

    except Exception as e:
        logger.error(f"Failed to complete step {step_identifier} of plan {plan.id}: {e}")
        raise

    logger.info(
        f"Completed step {step_identifier}, next step: "
        f"{next_step.step_identifier if next_step else 'none (plan complete)'}",
        extra={"plan_id": plan.id},
    )
    return get_conversation_plan_with_steps(thread_id)


def update_step_summary(step_id: str, summary: str, summary_error: str | None = None) -> None:
    """
    Store a step summary, or the error that prevented it.

    Raises:
        Exception: If database operation fails
    """
    supabase = get_supabase()

    try:
        supabase.table(STEPS_TABLE).update(
            {"summary": summary, "summary_error": summary_error}
        ).eq("id", step_id).execute()
    except Exception as e:
        logger.error(f"Failed to update summary of step {step_id}: {e}")
        raise


def update_step_elapsed(plan_id: str, step_identifier: str, elapsed_seconds: float) -> int | None:
    """
    Store the active time measured for a plan step.

    Args:
        plan_id: Plan UUID
        step_identifier: Step identifier (e.g. "step_1")
        elapsed_seconds: Measured active seconds (floored)

    Returns:
        Stored value, or None when the step does not exist
    """
    step = get_plan_step(plan_id, step_identifier)
    if step is None:
        return None

    value = math.floor(elapsed_seconds)
    supabase = get_supabase()
    supabase.table(STEPS_TABLE).update({"elapsed_active_seconds": value}).eq(
        "id", step.id
    ).execute()
    return value
