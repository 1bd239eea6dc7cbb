"""Conversation pacing: duration budgets, question targets and time tracking.

Prompt-facing text is French, matching the stored conversation agent prompts.
"""

import math
from typing import Any, Literal

from pydantic import BaseModel

PacingLevel = Literal["intensive", "standard", "deep"]
PacingAlertLevel = Literal["none", "warning", "critical"]

PACING_THRESHOLDS = {
    "WARNING": 8,
    "CRITICAL": 16,
}

DURATION_LABELS: dict[int, str] = {
    1: "1 min - Ultra-rapide",
    2: "2 min - Très rapide",
    3: "3 min - Rapide",
    5: "5 min - Court",
    8: "8 min - Standard",
    10: "10 min - Modéré",
    12: "12 min - Approfondi",
    15: "15 min - Détaillé",
    20: "20 min - Exploration",
    25: "25 min - Long",
    30: "30 min - Très long",
}

# Seconds of active time credited per message
AI_MESSAGE_SECONDS = 45
USER_MESSAGE_SECONDS = 90

ALERT_MESSAGES: dict[str, str] = {
    "critical": (
        "Risque de baisse d'attention. Envisagez de diviser en plusieurs ASKs plus courts."
    ),
    "warning": (
        "Légère perte d'attention possible. "
        "Prévoyez des micro-synthèses pour maintenir l'engagement."
    ),
}

PACING_INSTRUCTIONS: dict[str, str] = {
    "intensive": """Mode INTENSIF (conversation courte):
- Une question = une réponse, on avance
- Maximum 1 relance par sujet
- Pas de bavardage, droit au but
- Si la réponse est "suffisante", on passe à la suite
- Ne pas demander d'exemples sauf si critique""",
    "standard": """Mode STANDARD (conversation équilibrée):
- 1-2 relances autorisées par point clé
- Brève reconnaissance avant la question suivante
- Demander UN exemple max par étape
- Avancer dès qu'on a une compréhension solide""",
    "deep": """Mode APPROFONDI (exploration):
- 2-3 relances si elles apportent de la valeur
- Insérer une micro-synthèse tous les 3-4 échanges
- Explorer les nuances quand elles émergent
- Mais surveiller les signes de fatigue""",
}


class OptimalQuestionCount(BaseModel):
    """Target number of questions for a session length."""

    min: int
    max: int
    format: str


class PacingConfig(BaseModel):
    """Pacing parameters derived from a session's expected duration."""

    expected_duration_minutes: float
    total_steps: int
    duration_per_step: float
    pacing_level: PacingLevel
    optimal_questions_min: int
    optimal_questions_max: int
    alert_level: PacingAlertLevel
    alert_message: str | None = None


class TimeTrackingStats(BaseModel):
    """Estimated elapsed time and overtime for a conversation and its current step."""

    conversation_elapsed_minutes: float
    step_elapsed_minutes: float
    questions_asked_total: int
    questions_asked_in_step: int
    time_remaining_minutes: float
    is_overtime: bool
    overtime_minutes: float
    step_is_overtime: bool
    step_overtime_minutes: float


def _round1(value: float) -> float:
    return math.floor(value * 10 + 0.5) / 10


def _format_number(value: float | int) -> str:
    """Render whole floats without a trailing .0."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def get_duration_label(minutes: int) -> str:
    """Human label for a duration preset; non-preset values read 'N min'."""
    return DURATION_LABELS.get(minutes, f"{minutes} min")


def get_pacing_level(duration_minutes: float) -> PacingLevel:
    if duration_minutes <= 7:
        return "intensive"
    if duration_minutes <= 15:
        return "standard"
    return "deep"


def get_alert_level(duration_minutes: float) -> PacingAlertLevel:
    if duration_minutes >= PACING_THRESHOLDS["CRITICAL"]:
        return "critical"
    if duration_minutes >= PACING_THRESHOLDS["WARNING"]:
        return "warning"
    return "none"


def get_duration_alert_message(duration_minutes: float) -> str | None:
    """Attention warning shown for long sessions, None below the warning threshold."""
    return ALERT_MESSAGES.get(get_alert_level(duration_minutes))


def get_optimal_question_count(duration_minutes: float) -> OptimalQuestionCount:
    """
    Recommended question range for a session length.

    Args:
        duration_minutes: Expected session duration

    Returns:
        OptimalQuestionCount with min/max and the conversation format
    """
    if duration_minutes <= 7:
        return OptimalQuestionCount(min=3, max=5, format="questions directes, peu de relances")
    if duration_minutes <= 12:
        return OptimalQuestionCount(min=5, max=7, format="mix équilibré ouvert/simple")
    if duration_minutes <= 20:
        return OptimalQuestionCount(min=8, max=12, format="2 blocs + 1 synthèse intermédiaire")
    if duration_minutes <= 35:
        return OptimalQuestionCount(
            min=12, max=18, format="3 blocs + 2 redémarrages d'attention"
        )
    return OptimalQuestionCount(min=0, max=0, format="déconseillé - diviser la session")


def calculate_pacing_config(expected_duration_minutes: float, total_steps: int) -> PacingConfig:
    """
    Derive the pacing configuration for a session.

    Args:
        expected_duration_minutes: Expected session duration
        total_steps: Number of conversation plan steps

    Returns:
        PacingConfig with per-step budget and question targets
    """
    if total_steps > 0:
        duration_per_step = _round1(expected_duration_minutes / total_steps)
    else:
        duration_per_step = expected_duration_minutes

    questions = get_optimal_question_count(expected_duration_minutes)

    return PacingConfig(
        expected_duration_minutes=expected_duration_minutes,
        total_steps=total_steps,
        duration_per_step=duration_per_step,
        pacing_level=get_pacing_level(expected_duration_minutes),
        optimal_questions_min=questions.min,
        optimal_questions_max=questions.max,
        alert_level=get_alert_level(expected_duration_minutes),
        alert_message=get_duration_alert_message(expected_duration_minutes),
    )


def get_pacing_instructions(pacing_level: PacingLevel) -> str:
    return PACING_INSTRUCTIONS[pacing_level]


def format_pacing_variables(config: PacingConfig) -> dict[str, str]:
    """Prompt variables describing the session pacing."""
    return {
        "expected_duration_minutes": _format_number(config.expected_duration_minutes),
        "duration_per_step": _format_number(config.duration_per_step),
        "optimal_questions_min": str(config.optimal_questions_min),
        "optimal_questions_max": str(config.optimal_questions_max),
        "pacing_level": config.pacing_level,
        "pacing_instructions": get_pacing_instructions(config.pacing_level),
    }


def _sender_type(message: dict[str, Any]) -> str | None:
    return message.get("sender_type") or message.get("senderType")


def _plan_step_id(message: dict[str, Any]) -> str | None:
    return message.get("plan_step_id") or message.get("planStepId")


def estimate_active_duration(messages: list[dict[str, Any]]) -> float:
    """
    Estimate active conversation minutes from message activity.

    Each AI message credits reading time and each user message credits the
    wait-and-read cycle. Other sender types are ignored.
    """
    total_seconds = 0
    for message in messages:
        sender = _sender_type(message)
        if sender == "ai":
            total_seconds += AI_MESSAGE_SECONDS
        elif sender == "user":
            total_seconds += USER_MESSAGE_SECONDS
    return _round1(total_seconds / 60)


def calculate_time_tracking_stats(
    messages: list[dict[str, Any]],
    expected_duration_minutes: float,
    duration_per_step: float,
    current_step_id: str | None = None,
) -> TimeTrackingStats:
    """
    Compute elapsed time, remaining budget and overtime.

    Args:
        messages: Conversation messages (sender_type, plan_step_id)
        expected_duration_minutes: Session time budget
        duration_per_step: Per-step time budget
        current_step_id: Record id of the active plan step

    Returns:
        TimeTrackingStats
    """
    elapsed = estimate_active_duration(messages)
    questions_total = sum(1 for m in messages if _sender_type(m) == "ai")

    step_elapsed = 0.0
    questions_in_step = 0
    if current_step_id:
        step_messages = [m for m in messages if _plan_step_id(m) == current_step_id]
        step_elapsed = estimate_active_duration(step_messages)
        questions_in_step = sum(1 for m in step_messages if _sender_type(m) == "ai")

    is_overtime = elapsed > expected_duration_minutes
    step_is_overtime = step_elapsed > duration_per_step

    return TimeTrackingStats(
        conversation_elapsed_minutes=elapsed,
        step_elapsed_minutes=step_elapsed,
        questions_asked_total=questions_total,
        questions_asked_in_step=questions_in_step,
        time_remaining_minutes=max(0, expected_duration_minutes - elapsed),
        is_overtime=is_overtime,
        overtime_minutes=_round1(elapsed - expected_duration_minutes) if is_overtime else 0,
        step_is_overtime=step_is_overtime,
        step_overtime_minutes=_round1(step_elapsed - duration_per_step) if step_is_overtime else 0,
    )


def format_time_tracking_variables(stats: TimeTrackingStats) -> dict[str, str]:
    """Prompt variables for time tracking; booleans render as 'true'/'false'."""
    return {
        "conversation_elapsed_minutes": _format_number(stats.conversation_elapsed_minutes),
        "step_elapsed_minutes": _format_number(stats.step_elapsed_minutes),
        "questions_asked_total": str(stats.questions_asked_total),
        "questions_asked_in_step": str(stats.questions_asked_in_step),
        "time_remaining_minutes": _format_number(stats.time_remaining_minutes),
        "is_overtime": "true" if stats.is_overtime else "false",
        "overtime_minutes": _format_number(stats.overtime_minutes),
        "step_is_overtime": "true" if stats.step_is_overtime else "false",
        "step_overtime_minutes": _format_number(stats.step_overtime_minutes),
    }


def step_budget_exceeded(elapsed_active_seconds: float, duration_per_step_minutes: float) -> bool:
    """Check a step's measured active time against its per-step budget."""
    if duration_per_step_minutes <= 0:
        return False
    return elapsed_active_seconds > duration_per_step_minutes * 60
