"""Insight, insight author and KPI database operations."""

from datetime import datetime, timezone  # noqa: UP035
from typing import Any
from uuid import uuid4

from app.core.insight_normalize import (
    DEFAULT_INSIGHT_STATUS,
    DEFAULT_INSIGHT_TYPE,
    IncomingAuthor,
    IncomingInsight,
    normalise_incoming_kpis,
    normalise_insight_type_name,
    resolve_insight_type_id,
)
from app.core.logging import get_logger
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)

INSIGHT_COLUMNS = (
    "id, ask_session_id, conversation_thread_id, challenge_id, content, summary, "
    "insight_type_id, category, status, priority, created_at, updated_at, "
    "related_challenge_ids, source_message_id"
)


def _utc_now_iso() -> str:
    """Get current UTC time as ISO string."""
    return datetime.now(timezone.utc).isoformat()  # noqa: UP017


def fetch_insight_types() -> list[dict[str, Any]]:
    supabase = get_supabase()
    response = supabase.table("insight_types").select("id, name").execute()
    return response.data or []


def fetch_insight_type_map() -> dict[str, str]:
    """Insight type ids keyed by lowercased name."""
    type_map = {}
    for row in fetch_insight_types():
        name = normalise_insight_type_name(row.get("name"))
        if name and row.get("id"):
            type_map[name] = row["id"]
    return type_map


def fetch_insight_types_for_prompt() -> str:
    """Comma-joined insight type names for the insight_types prompt variable."""
    names = sorted(row["name"] for row in fetch_insight_types() if row.get("name"))
    return ", ".join(names)


def _hydrate_insight_rows(rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Attach type name, insight_authors and kpis to insight rows."""
    if not rows:
        return []

    supabase = get_supabase()
    insight_ids = [row["id"] for row in rows if row.get("id")]

    authors_by_insight: dict[str, list[dict[str, Any]]] = {iid: [] for iid in insight_ids}
    kpis_by_insight: dict[str, list[dict[str, Any]]] = {iid: [] for iid in insight_ids}

    if insight_ids:
        authors_response = (
            supabase.table("insight_authors")
            .select("id, insight_id, user_id, display_name")
            .in_("insight_id", insight_ids)
            .execute()
        )
        for author in authors_response.data or []:
            authors_by_insight.setdefault(author["insight_id"], []).append(author)

        kpis_response = (
            supabase.table("kpi_estimations")
            .select("id, insight_id, name, description, metric_data")
            .in_("insight_id", insight_ids)
            .execute()
        )
        for kpi in kpis_response.data or []:
            kpis_by_insight.setdefault(kpi["insight_id"], []).append(
                {
                    "id": kpi.get("id"),
                    "label": kpi.get("name"),
                    "value": kpi.get("metric_data"),
                    "description": kpi.get("description"),
                }
            )

    type_names = {type_id: name for name, type_id in fetch_insight_type_map().items()}

    return [
        {
            **row,
            "type": row.get("type") or type_names.get(row.get("insight_type_id")),
            "insight_authors": authors_by_insight.get(row["id"], []),
            "kpis": kpis_by_insight.get(row["id"], []),
        }
        for row in rows
    ]


def fetch_insights_for_session(ask_session_id: str) -> list[dict[str, Any]]:
    """
    Insights of an ASK session with authors and KPIs, oldest first.

    Raises:
        Exception: If database operation fails
    """
    supabase = get_supabase()

    try:
        response = (
            supabase.table("insights")
            .select(INSIGHT_COLUMNS)
            .eq("ask_session_id", ask_session_id)
            .order("created_at", desc=False)
            .execute()
        )
        return _hydrate_insight_rows(response.data or [])
    except Exception as e:
        logger.error(f"Failed to fetch insights for ask session {ask_session_id}: {e}")
        raise


def fetch_insight_row_by_id(insight_id: str) -> dict[str, Any] | None:
    supabase = get_supabase()
    response = (
        supabase.table("insights").select(INSIGHT_COLUMNS).eq("id", insight_id).limit(1).execute()
    )
    rows = _hydrate_insight_rows(response.data or [])
    return rows[0] if rows else None


def replace_insight_authors(insight_id: str, authors: list[IncomingAuthor]) -> None:
    """Replace the authors of an insight; authors without name and user id are skipped."""
    supabase = get_supabase()
    supabase.table("insight_authors").delete().eq("insight_id", insight_id).execute()

    rows = [
        {"insight_id": insight_id, "user_id": author.user_id, "display_name": author.name}
        for author in authors
        if author.user_id or author.name
    ]
    if rows:
        supabase.table("insight_authors").insert(rows).execute()


def replace_insight_kpis(insight_id: str, kpis: list[dict[str, Any]]) -> None:
    """Replace the KPI estimations of an insight."""
    supabase = get_supabase()
    supabase.table("kpi_estimations").delete().eq("insight_id", insight_id).execute()

    rows = [
        {
            "insight_id": insight_id,
            "name": kpi["label"] if isinstance(kpi.get("label"), str) else "KPI",
            "description": kpi.get("description") if isinstance(kpi.get("description"), str) else None,
            "metric_data": kpi.get("value"),
        }
        for kpi in kpis
    ]
    if rows:
        supabase.table("kpi_estimations").insert(rows).execute()


def _first_present(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


def persist_insights(
    ask_session_id: str,
    incoming_insights: list[IncomingInsight],
    existing_rows: list[dict[str, Any]],
    conversation_thread_id: str | None = None,
) -> None:
    """
    Merge detected insights into the session's stored insights.

    Items whose id matches an existing row update it field by field (incoming
    values win, absent fields keep the stored value). Every other item is
    inserted with defaults. KPIs are replaced on each write; authors only when
    the item carried authors.

    Args:
        ask_session_id: ASK session UUID
        incoming_insights: Normalised agent output
        existing_rows: Stored insight rows of the session
        conversation_thread_id: Thread new insights are attached to

    Raises:
        ValueError: If no insight types are configured
        Exception: If database operation fails
    """
    if not incoming_insights:
        return

    type_map = fetch_insight_type_map()
    if not type_map:
        raise ValueError("No insight types configured")

    supabase = get_supabase()
    existing_by_id = {row["id"]: row for row in existing_rows}

    for incoming in incoming_insights:
        now = _utc_now_iso()
        existing = existing_by_id.get(incoming.id) if incoming.id else None
        kpis = normalise_incoming_kpis(incoming.kpis, [])
        provided_type = normalise_insight_type_name(incoming.type)

        if existing:
            type_name = provided_type or existing.get("type") or DEFAULT_INSIGHT_TYPE
            insight_id = existing["id"]
            supabase.table("insights").update(
                {
                    "ask_session_id": existing.get("ask_session_id"),
                    "content": _first_present(incoming.content, existing.get("content"), ""),
                    "summary": _first_present(incoming.summary, existing.get("summary")),
                    "insight_type_id": resolve_insight_type_id(type_name, type_map),
                    "category": _first_present(incoming.category, existing.get("category")),
                    "status": _first_present(
                        incoming.status, existing.get("status"), DEFAULT_INSIGHT_STATUS
                    ),
                    "priority": _first_present(incoming.priority, existing.get("priority")),
                    "challenge_id": _first_present(
                        incoming.challenge_id, existing.get("challenge_id")
                    ),
                    "related_challenge_ids": _first_present(
                        incoming.related_challenge_ids, existing.get("related_challenge_ids"), []
                    ),
                    "source_message_id": _first_present(
                        incoming.source_message_id, existing.get("source_message_id")
                    ),
                    "updated_at": now,
                }
            ).eq("id", insight_id).execute()
        else:
            insight_id = incoming.id or str(uuid4())
            supabase.table("insights").insert(
                {
                    "id": insight_id,
                    "ask_session_id": ask_session_id,
                    "conversation_thread_id": conversation_thread_id,
                    "content": incoming.content or "",
                    "summary": incoming.summary,
                    "insight_type_id": resolve_insight_type_id(
                        provided_type or DEFAULT_INSIGHT_TYPE, type_map
                    ),
                    "category": incoming.category,
                    "status": incoming.status or DEFAULT_INSIGHT_STATUS,
                    "priority": incoming.priority,
                    "challenge_id": incoming.challenge_id,
                    "related_challenge_ids": incoming.related_challenge_ids or [],
                    "source_message_id": incoming.source_message_id,
                    "created_at": now,
                    "updated_at": now,
                }
            ).execute()

        replace_insight_kpis(insight_id, kpis)
        if incoming.authors_provided:
            replace_insight_authors(insight_id, incoming.authors)

        refreshed = fetch_insight_row_by_id(insight_id)
        if refreshed:
            existing_by_id[insight_id] = refreshed

    logger.info(
        f"Persisted {len(incoming_insights)} insights for ask session {ask_session_id}"
    )


def update_insight_content(insight_id: str, content: str) -> dict[str, Any] | None:
    """
    Replace the content of an insight.

    Returns:
        Updated row, or None when the insight does not exist

    Raises:
        Exception: If database operation fails
    """
    supabase = get_supabase()

    try:
        response = (
            supabase.table("insights")
            .update({"content": content, "updated_at": _utc_now_iso()})
            .eq("id", insight_id)
            .execute()
        )
        return response.data[0] if response.data else None
    except Exception as e:
        logger.error(f"Failed to update insight {insight_id}: {e}")
        raise


# =============================================================================
# Embeddings
# =============================================================================


def insight_embedding_stats() -> dict[str, int]:
    """Counts of insights with and without a content embedding."""
    supabase = get_supabase()
    total = supabase.table("insights").select("id", count="exact").execute()
    missing = (
        supabase.table("insights")
        .select("id", count="exact")
        .is_("content_embedding", "null")
        .execute()
    )
    total_count = total.count or 0
    missing_count = missing.count or 0
    return {
        "total": total_count,
        "withEmbeddings": total_count - missing_count,
        "withoutEmbeddings": missing_count,
    }


def list_insights_missing_embeddings(limit: int = 100) -> list[dict[str, Any]]:
    """Insights lacking a content or summary embedding."""
    supabase = get_supabase()
    response = (
        supabase.table("insights")
        .select("id, content, summary, content_embedding, summary_embedding")
        .or_("content_embedding.is.null,summary_embedding.is.null")
        .limit(limit)
        .execute()
    )
    return response.data or []


def get_insight_texts(insight_id: str) -> dict[str, Any] | None:
    supabase = get_supabase()
    response = (
        supabase.table("insights")
        .select("id, content, summary")
        .eq("id", insight_id)
        .limit(1)
        .execute()
    )
    return response.data[0] if response.data else None


def store_insight_embeddings(
    insight_id: str,
    content_embedding: list[float] | None,
    summary_embedding: list[float] | None,
) -> None:
    update: dict[str, Any] = {"embedding_updated_at": _utc_now_iso()}
    if content_embedding:
        update["content_embedding"] = content_embedding
    if summary_embedding:
        update["summary_embedding"] = summary_embedding

    supabase = get_supabase()
    supabase.table("insights").update(update).eq("id", insight_id).execute()
