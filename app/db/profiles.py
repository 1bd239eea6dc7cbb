"""Profile lookups."""

from typing import Any

from app.core.logging import get_logger
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)

PROFILE_COLUMNS = (
    "id, auth_id, email, first_name, last_name, full_name, role, is_active, job_title, description"
)


def get_profile_by_auth_id(auth_id: str) -> dict[str, Any] | None:
    """
    Get the profile linked to a Supabase auth user.

    Args:
        auth_id: auth.users id from the validated JWT

    Returns:
        Profile row or None
    """
    supabase = get_supabase()

    try:
        response = (
            supabase.table("profiles")
            .select(PROFILE_COLUMNS)
            .eq("auth_id", auth_id)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None
    except Exception as e:
        logger.error(f"Failed to get profile for auth user {auth_id}: {e}")
        raise


def fetch_profiles_by_ids(profile_ids: list[str]) -> dict[str, dict[str, Any]]:
    """Profiles keyed by id; an empty id list makes no query."""
    unique_ids = list(dict.fromkeys(pid for pid in profile_ids if pid))
    if not unique_ids:
        return {}

    supabase = get_supabase()

    try:
        response = (
            supabase.table("profiles").select(PROFILE_COLUMNS).in_("id", unique_ids).execute()
        )
        return {row["id"]: row for row in response.data or []}
    except Exception as e:
        logger.error(f"Failed to fetch {len(unique_ids)} profiles: {e}")
        raise


def get_profile_client_ids(profile_id: str) -> list[str]:
    """Client organisations a profile belongs to."""
    supabase = get_supabase()
    response = (
        supabase.table("client_members").select("client_id").eq("user_id", profile_id).execute()
    )
    return [row["client_id"] for row in response.data or [] if row.get("client_id")]
