"""Insight detection job tracking (ai_insight_jobs)."""

from datetime import datetime, timezone  # noqa: UP035
from typing import Any

from app.core.logging import get_logger
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)

JOB_COLUMNS = "id, ask_session_id, status, attempts, started_at"
ACTIVE_JOB_STATUSES = ["pending", "processing"]


def _utc_now_iso() -> str:
    """Get current UTC time as ISO string."""
    return datetime.now(timezone.utc).isoformat()  # noqa: UP017


def find_active_insight_job(ask_session_id: str) -> dict[str, Any] | None:
    """Pending or processing detection job of a session, if any."""
    supabase = get_supabase()
    response = (
        supabase.table("ai_insight_jobs")
        .select(JOB_COLUMNS)
        .eq("ask_session_id", ask_session_id)
        .in_("status", ACTIVE_JOB_STATUSES)
        .limit(1)
        .execute()
    )
    return response.data[0] if response.data else None


def create_insight_job(
    ask_session_id: str,
    message_id: str | None = None,
    agent_id: str | None = None,
) -> dict[str, Any]:
    """
    Create a detection job, already in processing state.

    Raises:
        Exception: If database operation fails
    """
    supabase = get_supabase()
    now = _utc_now_iso()

    try:
        response = (
            supabase.table("ai_insight_jobs")
            .insert(
                {
                    "ask_session_id": ask_session_id,
                    "message_id": message_id,
                    "agent_id": agent_id,
                    "status": "processing",
                    "attempts": 1,
                    "started_at": now,
                    "updated_at": now,
                }
            )
            .execute()
        )
        if not response.data:
            raise ValueError("No data returned from insight job insert")
        return response.data[0]
    except Exception as e:
        logger.error(f"Failed to create insight job for {ask_session_id}: {e}")
        raise


def set_insight_job_model(job_id: str, model_config_id: str) -> None:
    supabase = get_supabase()
    supabase.table("ai_insight_jobs").update({"model_config_id": model_config_id}).eq(
        "id", job_id
    ).execute()


def complete_insight_job(job_id: str, model_config_id: str | None = None) -> None:
    supabase = get_supabase()
    now = _utc_now_iso()
    supabase.table("ai_insight_jobs").update(
        {
            "status": "completed",
            "finished_at": now,
            "updated_at": now,
            "model_config_id": model_config_id,
        }
    ).eq("id", job_id).execute()


def fail_insight_job(
    job_id: str,
    error: str,
    attempts: int = 1,
    model_config_id: str | None = None,
) -> None:
    supabase = get_supabase()
    now = _utc_now_iso()
    supabase.table("ai_insight_jobs").update(
        {
            "status": "failed",
            "last_error": error,
            "finished_at": now,
            "updated_at": now,
            "attempts": attempts,
            "model_config_id": model_config_id,
        }
    ).eq("id", job_id).execute()
