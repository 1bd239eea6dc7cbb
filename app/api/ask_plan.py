"""Conversation plan endpoints."""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from app.api.ask_helpers import ensure_valid_ask_key, load_ask_session_or_404
from app.chains.summarize_plan_step import run_step_summary
from app.core.errors import StepSummaryError
from app.core.logging import get_logger
from app.core.schemas_api import StepSummaryRequest
from app.core.session_auth import RequestCredentials, get_request_credentials, load_full_auth_context
from app.db.asks import get_or_create_conversation_thread
from app.db.conversation_plans import get_conversation_plan_with_steps

logger = get_logger(__name__)

router = APIRouter()


@router.post("/ask/{key}/step-summary")
def generate_step_summary_endpoint(key: str, body: StepSummaryRequest) -> dict[str, Any]:
    """Generate and store the summary of a completed step."""
    ensure_valid_ask_key(key)
    logger.info(f"Generating summary for step {body.step_id} of {body.ask_session_id}")

    try:
        summary = run_step_summary(body.step_id, body.ask_session_id)
    except StepSummaryError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e

    return {"success": True, "data": {"summary": summary}}


@router.get("/ask/{key}/plan")
def get_plan(
    key: str,
    credentials: RequestCredentials = Depends(get_request_credentials),
) -> dict[str, Any]:
    """Plan of the viewer's conversation thread, with its steps."""
    ask_key = ensure_valid_ask_key(key)
    ask_session = load_ask_session_or_404(ask_key)

    ctx, _ = load_full_auth_context(
        ask_session["id"],
        credentials.invite_token,
        credentials.access_token,
        credentials.is_dev_bypass,
    )

    thread = get_or_create_conversation_thread(ask_session["id"], ctx.profile_id, ask_session)
    plan = get_conversation_plan_with_steps(thread["id"]) if thread else None

    return {"success": True, "data": plan.model_dump() if plan else None}
