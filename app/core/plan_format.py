"""Conversation plan formatting for agent prompts and step completion detection."""

import re

from app.core.schemas_plans import (
    ConversationPlan,
    ConversationPlanStep,
    PlanDataStep,
    step_identifier_of,
)

STEP_COMPLETE_PATTERN = re.compile(r"STEP_COMPLETE:(\w+)")
CURRENT_STEP_MARKER = "CURRENT"

STATUS_EMOJI = {
    "pending": "⏳",
    "active": "▶️",
    "completed": "✅",
    "skipped": "⏭️",
}


def _plan_steps(plan: ConversationPlan) -> list[ConversationPlanStep | PlanDataStep] | None:
    """Normalized steps when loaded, else the plan_data blob."""
    if plan.steps is not None:
        return list(plan.steps)
    if plan.plan_data is not None:
        return list(plan.plan_data.steps)
    return None


def get_current_step(plan: ConversationPlan) -> ConversationPlanStep | PlanDataStep | None:
    """Step matching the plan's current_step_id."""
    if not plan.current_step_id:
        return None

    for step in _plan_steps(plan) or []:
        if step_identifier_of(step) == plan.current_step_id:
            return step
    return None


def format_plan_for_prompt(plan: ConversationPlan) -> str:
    steps = _plan_steps(plan)
    if steps is None:
        return "Aucun plan disponible"

    formatted = "\n\n".join(
        f"{index + 1}. {STATUS_EMOJI.get(step.status, '❓')} {step.title} "
        f"({step_identifier_of(step)})\n"
        f"   Objectif: {step.objective}\n"
        f"   Statut: {step.status}"
        for index, step in enumerate(steps)
    )
    return f"Plan de conversation ({len(steps)} étapes) :\n\n{formatted}"


def format_current_step_for_prompt(step: ConversationPlanStep | PlanDataStep | None) -> str:
    if step is None:
        return "Aucune étape active"

    return (
        f"Étape courante: {step.title} ({step_identifier_of(step)})\n"
        f"Objectif: {step.objective}\n"
        f"Statut: {step.status}"
    )


def format_completed_steps_for_prompt(plan: ConversationPlan) -> str:
    """List completed steps with their summaries."""
    steps = _plan_steps(plan)
    if steps is None:
        return "Aucune étape complétée"

    completed = [step for step in steps if step.status == "completed"]
    if not completed:
        return "Aucune étape complétée pour le moment"

    formatted = "\n\n".join(
        f"{index + 1}. ✅ {step.title} ({step_identifier_of(step)})\n"
        f"   Résumé: {step.summary or 'Pas de résumé disponible'}"
        for index, step in enumerate(completed)
    )
    return f"Étapes complétées ({len(completed)}/{len(steps)}) :\n\n{formatted}"


def format_plan_progress(plan: ConversationPlan) -> str:
    completed = plan.completed_steps
    total = plan.total_steps
    percentage = int(completed / total * 100 + 0.5) if total > 0 else 0
    return f"Progression du plan: {completed}/{total} étapes ({percentage}%)"


def detect_step_completion(content: str | None) -> str | None:
    """
    Find a STEP_COMPLETE:<id> marker in agent output.

    Args:
        content: Agent message text

    Returns:
        The step identifier (or CURRENT), None when absent
    """
    if not content:
        return None
    match = STEP_COMPLETE_PATTERN.search(content)
    return match.group(1) if match else None


def resolve_step_to_complete(plan: ConversationPlan | None, detected_step_id: str | None) -> str | None:
    """
    Map a detected marker to the step identifier that should be completed.

    Only the current step may be completed: the marker must name it or be CURRENT.
    """
    if plan is None or not detected_step_id:
        return None

    current = get_current_step(plan)
    if current is None:
        return None

    current_identifier = step_identifier_of(current)
    if detected_step_id == CURRENT_STEP_MARKER or detected_step_id == current_identifier:
        return current_identifier
    return None
