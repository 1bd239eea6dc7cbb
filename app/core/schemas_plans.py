"""Pydantic schemas for conversation plans."""

from typing import Literal

from pydantic import BaseModel, Field

StepStatus = Literal["pending", "active", "completed", "skipped"]
PlanStatus = Literal["active", "completed", "abandoned"]


class PlanDataStep(BaseModel):
    """Step as stored in the plan_data JSON blob (id is the step identifier)."""

    id: str
    title: str = ""
    objective: str = ""
    status: StepStatus = "pending"
    summary: str | None = None
    created_at: str | None = None
    completed_at: str | None = None


class PlanData(BaseModel):
    """plan_data JSON blob kept in sync with the normalized step rows."""

    steps: list[PlanDataStep] = Field(default_factory=list)


class ConversationPlanStep(BaseModel):
    """Row of ask_conversation_plan_steps."""

    id: str
    plan_id: str
    step_identifier: str
    step_order: int
    title: str = ""
    objective: str = ""
    status: StepStatus = "pending"
    summary: str | None = None
    summary_error: str | None = None
    elapsed_active_seconds: int = 0
    created_at: str | None = None
    activated_at: str | None = None
    completed_at: str | None = None


class ConversationPlan(BaseModel):
    """Row of ask_conversation_plans, optionally with its normalized steps."""

    id: str
    conversation_thread_id: str
    title: str | None = None
    objective: str | None = None
    total_steps: int = 0
    completed_steps: int = 0
    status: PlanStatus = "active"
    plan_data: PlanData | None = None
    current_step_id: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    steps: list[ConversationPlanStep] | None = None


def step_identifier_of(step: ConversationPlanStep | PlanDataStep) -> str:
    """Identifier used in STEP_COMPLETE markers for either step shape."""
    if isinstance(step, ConversationPlanStep):
        return step.step_identifier
    return step.id
