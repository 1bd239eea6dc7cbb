"""Request authentication for ASK endpoints: invite tokens, Supabase sessions, dev bypass."""

from dataclasses import dataclass, replace
from typing import Any, Literal

from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.config import get_settings
from app.core.logging import get_logger
from app.db.asks import find_participant_by_user, get_participant_by_token
from app.db.profiles import get_profile_by_auth_id
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)

# HTTP Bearer scheme for Authorization header
security = HTTPBearer(auto_error=False)

AuthMethod = Literal["invite_token", "session", "anonymous", "none"]


@dataclass
class AuthContext:
    """Who is calling, and as which participant of the ASK session if any."""

    profile_id: str | None = None
    participant_id: str | None = None
    is_spokesperson: bool = False
    participant_name: str | None = None
    participant_email: str | None = None
    participant_role: str | None = None
    auth_method: AuthMethod = "none"


@dataclass
class AskViewer:
    participant_id: str | None
    profile_id: str | None
    is_spokesperson: bool
    name: str | None
    email: str | None
    role: str | None

    def to_api(self) -> dict[str, Any]:
        return {
            "participantId": self.participant_id,
            "profileId": self.profile_id,
            "isSpokesperson": self.is_spokesperson,
            "name": self.name,
            "email": self.email,
            "role": self.role,
        }


@dataclass
class RequestCredentials:
    invite_token: str | None
    access_token: str | None
    is_dev_bypass: bool


def _is_spokesperson(participant: dict[str, Any]) -> bool:
    return bool(participant.get("is_spokesperson")) or participant.get("role") == "spokesperson"


def load_auth_from_invite_token(invite_token: str) -> AuthContext | None:
    """
    Authenticate a caller through a participant invite token.

    Returns:
        AuthContext, or None when the token is unknown or not linked to a profile
    """
    try:
        participant = get_participant_by_token(invite_token)
    except Exception as e:
        logger.error(f"Error loading participant from invite token: {e}")
        return None

    if not participant:
        logger.warning("Invite token not found")
        return None

    if not participant.get("user_id"):
        logger.error(f"Invite token of participant {participant['id']} is not linked to a profile")
        return None

    logger.info(f"Authenticated participant {participant['id']} via invite token")
    return AuthContext(
        profile_id=participant["user_id"],
        participant_id=participant["id"],
        is_spokesperson=_is_spokesperson(participant),
        participant_name=participant.get("participant_name"),
        participant_email=participant.get("participant_email"),
        participant_role=participant.get("role"),
        auth_method="invite_token",
    )


def get_auth_user_id(access_token: str) -> str | None:
    """Validate a Supabase JWT and return the auth user id."""
    client = get_supabase()
    auth_response = client.auth.get_user(access_token)
    if not auth_response or not auth_response.user:
        return None
    return auth_response.user.id


def load_auth_from_session(access_token: str | None, is_dev_bypass: bool = False) -> AuthContext | None:
    """
    Authenticate a caller through a Supabase session token.

    Returns:
        AuthContext with the caller's profile, or None when the token is
        missing or invalid or has no profile (dev bypass only changes logging)
    """
    if not access_token:
        return None

    try:
        auth_user_id = get_auth_user_id(access_token)
    except Exception as e:
        if is_dev_bypass:
            logger.info(f"Dev bypass: auth error ignored: {e}")
        else:
            logger.error(f"Session auth error: {e}")
        return None

    if not auth_user_id:
        logger.info("No authenticated user in session")
        return None

    profile = get_profile_by_auth_id(auth_user_id)
    if not profile:
        if is_dev_bypass:
            logger.info("Dev bypass: profile not found")
        else:
            logger.error(f"Profile not found for auth user {auth_user_id}")
        return None

    names = [profile.get("first_name"), profile.get("last_name")]
    participant_name = profile.get("full_name") or " ".join(n for n in names if n) or None

    logger.info(f"Authenticated profile {profile['id']} via session")
    return AuthContext(
        profile_id=profile["id"],
        participant_name=participant_name,
        participant_email=profile.get("email"),
        auth_method="session",
    )


def load_participant_membership(ctx: AuthContext, ask_session_id: str) -> AuthContext:
    """Fill in participant and spokesperson data when the profile participates in the session."""
    if not ctx.profile_id:
        return ctx

    if ctx.auth_method == "invite_token" and ctx.participant_id:
        return ctx

    try:
        membership = find_participant_by_user(ask_session_id, ctx.profile_id)
    except Exception as e:
        logger.error(f"Membership lookup failed for {ctx.profile_id}: {e}")
        return ctx

    if not membership:
        logger.info(f"Profile {ctx.profile_id} is not a participant of {ask_session_id}")
        return ctx

    return replace(
        ctx,
        participant_id=membership["id"],
        is_spokesperson=_is_spokesperson(membership),
        participant_role=membership.get("role") or ctx.participant_role,
        participant_name=membership.get("participant_name") or ctx.participant_name,
        participant_email=membership.get("participant_email") or ctx.participant_email,
    )


def build_viewer(ctx: AuthContext) -> AskViewer | None:
    if not ctx.profile_id:
        return None
    return AskViewer(
        participant_id=ctx.participant_id,
        profile_id=ctx.profile_id,
        is_spokesperson=ctx.is_spokesperson,
        name=ctx.participant_name,
        email=ctx.participant_email,
        role=ctx.participant_role,
    )


def load_full_auth_context(
    ask_session_id: str,
    invite_token: str | None = None,
    access_token: str | None = None,
    is_dev_bypass: bool = False,
) -> tuple[AuthContext, AskViewer | None]:
    """
    Resolve the caller: invite token first, then session, then membership.

    Returns:
        (auth context, viewer or None without a profile)
    """
    ctx = AuthContext()

    if invite_token:
        ctx = load_auth_from_invite_token(invite_token) or ctx

    if ctx.auth_method == "none":
        ctx = load_auth_from_session(access_token, is_dev_bypass) or ctx

    if ctx.profile_id:
        ctx = load_participant_membership(ctx, ask_session_id)

    viewer = build_viewer(ctx)
    logger.debug(
        f"Auth for {ask_session_id}: method={ctx.auth_method}, viewer={'yes' if viewer else 'no'}"
    )
    return ctx, viewer


async def get_request_credentials(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    x_invite_token: str | None = Header(None, alias="X-Invite-Token"),
) -> RequestCredentials:
    """FastAPI dependency collecting the invite token and Bearer token of a request."""
    return RequestCredentials(
        invite_token=(x_invite_token or "").strip() or None,
        access_token=credentials.credentials if credentials else None,
        is_dev_bypass=get_settings().IS_DEV,
    )
