"""Prompt variables for conversation and insight detection agents."""

import json
from datetime import datetime
from typing import Any

from app.core.conversation_context import ConversationContext, MessageSummary, ParticipantSummary
from app.core.insight_normalize import Insight, serialise_insights_for_prompt
from app.core.pacing import (
    calculate_pacing_config,
    calculate_time_tracking_stats,
    format_pacing_variables,
    format_time_tracking_variables,
)
from app.core.plan_format import (
    format_completed_steps_for_prompt,
    format_current_step_for_prompt,
    format_plan_for_prompt,
    format_plan_progress,
    get_current_step,
)
from app.core.schemas_plans import ConversationPlan

NO_COMPLETED_STEPS = "Aucune étape complétée pour le moment"
NO_STEP_MESSAGES = "Aucun message pour cette étape."
DEFAULT_INSIGHT_TYPES = "pain, idea, solution, opportunity, risk, feedback, question"


def _sender_label(message: MessageSummary) -> str:
    if message.sender_type == "ai":
        return "Agent"
    return message.sender_name or "Participant"


def _message_payload(message: MessageSummary) -> dict[str, Any]:
    return {
        "id": message.id,
        "senderType": message.sender_type,
        "senderName": message.sender_name or _sender_label(message),
        "content": message.content,
        "timestamp": message.timestamp,
    }


def _format_timestamp(value: str) -> str:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return value
    return parsed.strftime("%d/%m/%Y %H:%M:%S")


def build_participants_summary(participants: list[ParticipantSummary]) -> str:
    """Comma-joined "Name (role)" list."""
    entries = []
    for participant in participants:
        name = (participant.name or "").strip()
        if not name:
            continue
        entries.append(f"{name} ({participant.role})" if participant.role else name)
    return ", ".join(entries)


def format_message_history(messages: list[MessageSummary]) -> str:
    return "\n".join(f"{_sender_label(m)}: {m.content}" for m in messages)


def _current_step_record_id(plan: ConversationPlan | None) -> str | None:
    """Record id of the plan's current step, used to filter messages by plan_step_id."""
    if not plan or not plan.current_step_id or not plan.steps:
        return None
    for step in plan.steps:
        if step.step_identifier == plan.current_step_id:
            return step.id
    return None


def format_step_messages(messages: list[MessageSummary], step_record_id: str | None) -> str:
    if step_record_id is None:
        return format_message_history(messages)

    step_messages = [m for m in messages if m.plan_step_id == step_record_id]
    if not step_messages:
        return NO_STEP_MESSAGES

    return "\n\n---\n\n".join(
        f"[{_format_timestamp(m.timestamp)}] {_sender_label(m)}:\n{m.content}"
        for m in step_messages
    )


def _pacing_variables(
    ask_session: dict[str, Any],
    plan: ConversationPlan | None,
    messages: list[MessageSummary],
) -> dict[str, str]:
    expected = ask_session.get("expected_duration_minutes")
    if not expected:
        return {}

    total_steps = plan.total_steps if plan else 0
    if plan and not total_steps:
        total_steps = len(plan.steps or (plan.plan_data.steps if plan.plan_data else []))

    config = calculate_pacing_config(float(expected), total_steps)
    stats = calculate_time_tracking_stats(
        [m.model_dump() for m in messages],
        float(expected),
        config.duration_per_step,
        _current_step_record_id(plan),
    )
    return {**format_pacing_variables(config), **format_time_tracking_variables(stats)}


def build_conversation_agent_variables(
    context: ConversationContext,
    insights: list[Insight] | None = None,
    insight_types: str | None = None,
    latest_ai_response: str | None = None,
) -> dict[str, Any]:
    """
    Build the template variables shared by conversation and insight agents.

    Plan variables are empty strings without a plan, except
    completed_steps_summary which always carries a sentence. step_messages
    covers the current step only when a plan with normalised steps exists.
    Insight variables and latest_ai_response are added only when provided.

    Args:
        context: Loaded conversation context
        insights: Existing insights (adds existing_insights_json)
        insight_types: Comma-joined type names (adds insight_types)
        latest_ai_response: Last agent reply (adds latest_ai_response)

    Returns:
        Variables dict for render_template
    """
    ask = context.ask_session
    plan = context.conversation_plan
    messages = context.messages

    payload = [_message_payload(m) for m in messages]
    last_user_message = next((m for m in reversed(messages) if m.sender_type == "user"), None)

    conversation_plan = ""
    current_step = ""
    current_step_id = ""
    completed_steps_summary = NO_COMPLETED_STEPS
    plan_progress = ""

    if plan:
        conversation_plan = format_plan_for_prompt(plan)
        current_step = format_current_step_for_prompt(get_current_step(plan))
        current_step_id = plan.current_step_id or ""
        completed_steps_summary = format_completed_steps_for_prompt(plan)
        plan_progress = format_plan_progress(plan)

        step_record_id = _current_step_record_id(plan)
        step_messages = format_step_messages(messages, step_record_id)
        if step_record_id:
            step_messages_json = json.dumps(
                [_message_payload(m) for m in messages if m.plan_step_id == step_record_id],
                ensure_ascii=False,
            )
        else:
            step_messages_json = "[]"
    else:
        step_messages = format_message_history(messages)
        step_messages_json = json.dumps(payload, ensure_ascii=False)

    variables: dict[str, Any] = {
        "ask_key": ask.get("ask_key") or "",
        "ask_question": ask.get("question") or "",
        "ask_description": ask.get("description") or "",
        "participants": build_participants_summary(context.participants),
        "participants_list": [p.model_dump() for p in context.participants],
        "participant_name": last_user_message.sender_name if last_user_message else "",
        "messages_json": json.dumps(payload, ensure_ascii=False),
        "messages_array": payload,
        "latest_user_message": last_user_message.content if last_user_message else "",
        "system_prompt_ask": ask.get("system_prompt") or "",
        "system_prompt_project": (context.project or {}).get("system_prompt") or "",
        "system_prompt_challenge": (context.challenge or {}).get("system_prompt") or "",
        "conversation_plan": conversation_plan,
        "current_step": current_step,
        "current_step_id": current_step_id,
        "completed_steps_summary": completed_steps_summary,
        "plan_progress": plan_progress,
        "step_messages": step_messages,
        "step_messages_json": step_messages_json,
        "message_history": format_message_history(messages),
    }

    if latest_ai_response is not None:
        variables["latest_ai_response"] = latest_ai_response
    if insights is not None:
        variables["existing_insights_json"] = serialise_insights_for_prompt(insights)
    if insight_types is not None:
        variables["insight_types"] = insight_types

    variables.update(_pacing_variables(ask, plan, messages))
    return variables
