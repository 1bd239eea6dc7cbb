"""Permission checks for member and participant management.

Rules:
- full_admin may manage anything
- other roles only reach projects (and their ASKs) owned by one of their clients
- client members can only be managed by a client_admin of that client
"""

from pydantic import BaseModel, Field

from app.core.logging import get_logger
from app.db.asks import get_ask_session_by_id
from app.db.projects import fetch_project

logger = get_logger(__name__)

FULL_ADMIN_ROLE = "full_admin"
CLIENT_ADMIN_ROLE = "client_admin"


class AdminProfile(BaseModel):
    """Acting profile with its client memberships."""

    role: str | None = None
    is_active: bool = True
    client_ids: list[str] = Field(default_factory=list)


class PermissionResult(BaseModel):
    """Outcome of a permission check."""

    allowed: bool
    error: str | None = None
    project_client_id: str | None = None


def _normalized_role(profile: AdminProfile) -> str:
    return (profile.role or "").lower()


def can_manage_project_members(profile: AdminProfile, project_id: str) -> PermissionResult:
    """
    Check whether a profile may manage the members of a project.

    Args:
        profile: Acting profile
        project_id: Project UUID

    Returns:
        PermissionResult carrying the project's client id when allowed
    """
    if _normalized_role(profile) == FULL_ADMIN_ROLE:
        return PermissionResult(allowed=True)

    project = fetch_project(project_id)
    if not project:
        return PermissionResult(allowed=False, error="Project not found")

    client_id = project.get("client_id")
    if not profile.client_ids or client_id not in profile.client_ids:
        return PermissionResult(
            allowed=False,
            error="You can only manage members of projects belonging to your organization",
        )

    return PermissionResult(allowed=True, project_client_id=client_id)


def can_manage_client_members(profile: AdminProfile, client_id: str) -> PermissionResult:
    role = _normalized_role(profile)
    if role == FULL_ADMIN_ROLE:
        return PermissionResult(allowed=True)

    if role != CLIENT_ADMIN_ROLE:
        return PermissionResult(
            allowed=False, error="Only client admins can manage client members"
        )

    if not profile.client_ids or client_id not in profile.client_ids:
        return PermissionResult(
            allowed=False, error="You can only manage members of your own organization"
        )

    return PermissionResult(allowed=True)


def can_manage_ask_participants(profile: AdminProfile, ask_session_id: str) -> PermissionResult:
    """Check whether a profile may view or manage the participants of an ASK session."""
    if _normalized_role(profile) == FULL_ADMIN_ROLE:
        return PermissionResult(allowed=True)

    ask_session = get_ask_session_by_id(ask_session_id, "id, project_id")
    if not ask_session:
        return PermissionResult(allowed=False, error="ASK session not found")

    project = fetch_project(ask_session.get("project_id"))
    client_id = project.get("client_id") if project else None
    if not profile.client_ids or client_id not in profile.client_ids:
        logger.info(f"Denied participant access on ask session {ask_session_id}")
        return PermissionResult(
            allowed=False,
            error="You can only view participants of ASKs belonging to your organization",
        )

    return PermissionResult(allowed=True, project_client_id=client_id)


can_search_project_users = can_manage_project_members
