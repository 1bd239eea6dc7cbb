"""Project and challenge lookups used to build conversation context."""

from typing import Any

from app.core.logging import get_logger
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)


def fetch_project(project_id: str | None) -> dict[str, Any] | None:
    """Project row (id, name, client_id, system_prompt) or None."""
    if not project_id:
        return None

    supabase = get_supabase()

    try:
        response = (
            supabase.table("projects")
            .select("id, name, client_id, system_prompt")
            .eq("id", project_id)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None
    except Exception as e:
        logger.error(f"Failed to fetch project {project_id}: {e}")
        raise


def fetch_challenge(challenge_id: str | None) -> dict[str, Any] | None:
    """Challenge row (id, name, system_prompt) or None."""
    if not challenge_id:
        return None

    supabase = get_supabase()

    try:
        response = (
            supabase.table("challenges")
            .select("id, name, system_prompt")
            .eq("id", challenge_id)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None
    except Exception as e:
        logger.error(f"Failed to fetch challenge {challenge_id}: {e}")
        raise
