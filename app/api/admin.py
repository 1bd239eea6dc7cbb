"""Admin endpoints: ASK participants and insight embeddings."""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from app.api.ask_helpers import require_session_profile
from app.core.conversation_context import build_participant_display_name
from app.core.embeddings import embed_text
from app.core.logging import get_logger
from app.core.member_permissions import AdminProfile, can_manage_ask_participants
from app.core.schemas_api import EmbeddingRequest
from app.core.session_auth import RequestCredentials, get_request_credentials
from app.db.asks import list_participants
from app.db.insights import (
    get_insight_texts,
    insight_embedding_stats,
    list_insights_missing_embeddings,
    store_insight_embeddings,
)
from app.db.profiles import fetch_profiles_by_ids, get_profile_client_ids

logger = get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])

EMBEDDING_BATCH_SIZE = 100


def _embed_or_none(text: str | None) -> list[float] | None:
    """Embedding of a text; failures leave the column untouched."""
    if not text:
        return None
    try:
        return embed_text(text)
    except Exception as e:
        logger.warning(f"Embedding generation failed: {e}")
        return None


# ============================================================================
# ASK participants
# ============================================================================


@router.get("/asks/{ask_id}/participants")
def list_ask_participants(
    ask_id: str,
    credentials: RequestCredentials = Depends(get_request_credentials),
) -> dict[str, Any]:
    """
    Participants of an ASK session with their display names.

    Only admins whose client owns the session's project (or full admins) may
    list them.
    """
    profile = require_session_profile(credentials)
    admin_profile = AdminProfile(
        role=profile.get("role"),
        is_active=profile.get("is_active", True),
        client_ids=get_profile_client_ids(profile["id"]),
    )

    permission = can_manage_ask_participants(admin_profile, ask_id)
    if not permission.allowed:
        raise HTTPException(status_code=403, detail=permission.error or "Access denied")

    rows = list_participants(ask_id)
    users_by_id = fetch_profiles_by_ids([row.get("user_id") for row in rows])

    participants = []
    for index, row in enumerate(rows):
        user = users_by_id.get(row.get("user_id") or "")
        participants.append(
            {
                "id": row["id"],
                "userId": row.get("user_id"),
                "participantName": build_participant_display_name(row, user, index),
                "participantEmail": row.get("participant_email") or (user or {}).get("email"),
                "role": row.get("role"),
                "isSpokesperson": bool(row.get("is_spokesperson")),
            }
        )

    return {"success": True, "data": participants}


# ============================================================================
# Insight embeddings
# ============================================================================


@router.get("/insights/embeddings")
def get_embedding_stats() -> dict[str, Any]:
    """Counts of insights with and without embeddings."""
    stats = insight_embedding_stats()
    return {
        "success": True,
        "data": {
            **stats,
            "message": (
                "Use POST to generate embeddings. Send an empty body to process insights "
                "without embeddings, or { 'insightId': 'uuid' } for a specific insight."
            ),
        },
    }


@router.post("/insights/embeddings")
def generate_embeddings(body: EmbeddingRequest | None = None) -> dict[str, Any]:
    """Embed one insight, or a batch of insights missing embeddings."""
    body = body or EmbeddingRequest()

    if body.insight_id:
        insight = get_insight_texts(body.insight_id)
        if not insight:
            raise HTTPException(status_code=404, detail="Insight not found")

        store_insight_embeddings(
            insight["id"],
            _embed_or_none(insight.get("content")),
            _embed_or_none(insight.get("summary")),
        )
        return {"success": True, "data": {"insightId": body.insight_id, "generated": True}}

    insights = list_insights_missing_embeddings(EMBEDDING_BATCH_SIZE)
    if not insights:
        return {"success": True, "data": {"processed": 0, "message": "No insights need embeddings"}}

    processed = 0
    errors = 0
    for insight in insights:
        try:
            content_embedding = (
                None if insight.get("content_embedding") else _embed_or_none(insight.get("content"))
            )
            summary_embedding = (
                None if insight.get("summary_embedding") else _embed_or_none(insight.get("summary"))
            )
            store_insight_embeddings(insight["id"], content_embedding, summary_embedding)
            processed += 1
        except Exception as e:
            logger.error(f"Error processing embeddings of insight {insight['id']}: {e}")
            errors += 1

    logger.info(f"Embedded {processed} insights ({errors} errors)")
    return {"success": True, "data": {"processed": processed, "errors": errors, "total": len(insights)}}
