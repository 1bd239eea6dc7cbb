"""Insight editing endpoint."""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException

from app.api.ask_helpers import ACCESS_DENIED, require_session_profile
from app.core.logging import get_logger
from app.core.member_permissions import AdminProfile, can_manage_ask_participants
from app.core.schemas_api import InsightUpdate
from app.core.session_auth import RequestCredentials, get_request_credentials
from app.db.asks import find_participant_by_user
from app.db.insights import fetch_insight_row_by_id, update_insight_content
from app.db.profiles import get_profile_client_ids

logger = get_logger(__name__)

router = APIRouter()


def _ensure_can_edit(profile: dict[str, Any], ask_session_id: str | None) -> None:
    """Participants of the insight's session and admins of its client may edit it."""
    if not ask_session_id:
        raise HTTPException(status_code=403, detail=ACCESS_DENIED)

    if find_participant_by_user(ask_session_id, profile["id"]):
        return

    admin_profile = AdminProfile(
        role=profile.get("role"),
        is_active=profile.get("is_active", True),
        client_ids=get_profile_client_ids(profile["id"]),
    )
    if can_manage_ask_participants(admin_profile, ask_session_id).allowed:
        return

    logger.info(f"Denied insight edit on ask session {ask_session_id} for profile {profile['id']}")
    raise HTTPException(status_code=403, detail=ACCESS_DENIED)


@router.patch("/insights/{insight_id}")
def update_insight(
    insight_id: UUID,
    body: InsightUpdate,
    credentials: RequestCredentials = Depends(get_request_credentials),
) -> dict[str, Any]:
    """
    Replace an insight's content.

    The caller must be a participant of the insight's ASK session, or an
    admin allowed to manage that session.

    Args:
        insight_id: Insight UUID
        body: New content (1-10000 characters after trimming)

    Returns:
        id, content and updatedAt of the insight
    """
    profile = None if credentials.is_dev_bypass else require_session_profile(credentials)

    insight = fetch_insight_row_by_id(str(insight_id))
    if not insight:
        raise HTTPException(status_code=404, detail="Insight not found")

    if profile is not None:
        _ensure_can_edit(profile, insight.get("ask_session_id"))

    row = update_insight_content(str(insight_id), body.content)
    if not row:
        raise HTTPException(status_code=404, detail="Insight not found")

    logger.info(f"Updated content of insight {insight_id}")
    return {
        "success": True,
        "data": {"id": row["id"], "content": row["content"], "updatedAt": row.get("updated_at")},
    }
