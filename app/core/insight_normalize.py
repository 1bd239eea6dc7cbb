"""Insight models and normalisation of rows and agent-produced insight payloads."""

import json
from datetime import datetime, timezone  # noqa: UP035
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

INSIGHT_TYPES = ["pain", "gain", "opportunity", "risk", "signal", "idea"]
DEFAULT_INSIGHT_TYPE = "idea"
DEFAULT_INSIGHT_STATUS = "new"

_AUTHOR_ID_KEYS = ("userId", "user_id", "authorId", "author_id")
_AUTHOR_NAME_KEYS = ("name", "authorName", "author_name", "displayName", "display_name")


class InsightAuthor(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str | None = None
    user_id: str | None = Field(default=None, serialization_alias="userId")
    name: str | None = None


class InsightKpi(BaseModel):
    id: str
    label: str = "KPI"
    value: Any = None
    description: str | None = None


class Insight(BaseModel):
    """Insight as returned by the API (camelCase on the wire)."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    ask_session_id: str = Field(serialization_alias="askSessionId")
    challenge_id: str | None = Field(default=None, serialization_alias="challengeId")
    author_id: str | None = Field(default=None, serialization_alias="authorId")
    author_name: str | None = Field(default=None, serialization_alias="authorName")
    authors: list[InsightAuthor] = Field(default_factory=list)
    content: str = ""
    summary: str | None = None
    type: str = DEFAULT_INSIGHT_TYPE
    category: str | None = None
    status: str = DEFAULT_INSIGHT_STATUS
    priority: str | None = None
    created_at: str = Field(serialization_alias="createdAt")
    updated_at: str = Field(serialization_alias="updatedAt")
    related_challenge_ids: list[str] = Field(
        default_factory=list, serialization_alias="relatedChallengeIds"
    )
    kpis: list[InsightKpi] = Field(default_factory=list)
    source_message_id: str | None = Field(default=None, serialization_alias="sourceMessageId")

    def to_api(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class IncomingAuthor(BaseModel):
    user_id: str | None = None
    name: str | None = None


class IncomingInsight(BaseModel):
    """Insight item proposed by the detection agent, after normalisation."""

    id: str | None = None
    ask_session_id: str | None = None
    content: str | None = None
    summary: str | None = None
    type: str | None = None
    category: str | None = None
    status: str | None = None
    priority: str | None = None
    challenge_id: str | None = None
    author_id: str | None = None
    author_name: str | None = None
    related_challenge_ids: list[str] | None = None
    kpis: list[dict[str, Any]] | None = None
    source_message_id: str | None = None
    authors: list[IncomingAuthor] = Field(default_factory=list)
    authors_provided: bool = False


def _utc_now_iso() -> str:
    """Get current UTC time as ISO string."""
    return datetime.now(timezone.utc).isoformat()  # noqa: UP017


def _non_empty_string(record: dict[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = record.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return None


def map_insight_row_to_insight(row: dict[str, Any]) -> Insight:
    """
    Map an insights row (with hydrated insight_authors and kpis) to an Insight.

    Missing values get defaults: type idea, status new, empty content, and
    updated_at equal to created_at. The first author is the primary author.
    """
    created_at = row.get("created_at") or _utc_now_iso()
    authors = [
        InsightAuthor(
            id=author.get("id"),
            user_id=author.get("user_id"),
            name=author.get("display_name"),
        )
        for author in row.get("insight_authors") or []
    ]
    primary = authors[0] if authors else None
    raw_kpis = row.get("kpis") if isinstance(row.get("kpis"), list) else []
    session_id = row.get("ask_session_id") or row.get("ask_id") or ""

    return Insight(
        id=row["id"],
        ask_session_id=session_id,
        challenge_id=row.get("challenge_id"),
        author_id=primary.user_id if primary else None,
        author_name=primary.name if primary else None,
        authors=authors,
        content=row.get("content") or "",
        summary=row.get("summary"),
        type=row.get("type") or DEFAULT_INSIGHT_TYPE,
        category=row.get("category"),
        status=row.get("status") or DEFAULT_INSIGHT_STATUS,
        priority=row.get("priority"),
        created_at=created_at,
        updated_at=row.get("updated_at") or created_at,
        related_challenge_ids=row.get("related_challenge_ids") or [],
        kpis=[
            InsightKpi(
                id=str(kpi.get("id") or f"kpi-{index}"),
                label=str(kpi.get("label") or "KPI"),
                value=kpi.get("value"),
                description=kpi.get("description"),
            )
            for index, kpi in enumerate(k if isinstance(k, dict) else {} for k in raw_kpis)
        ],
        source_message_id=row.get("source_message_id"),
    )


def normalise_insight_type_name(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed.lower() if trimmed else None


def resolve_insight_type_id(type_name: str | None, type_map: dict[str, str]) -> str:
    """
    Resolve an insight type id: exact name, then idea, then any configured type.

    Raises:
        ValueError: If no insight types are configured
    """
    normalised = normalise_insight_type_name(type_name)
    if normalised and normalised in type_map:
        return type_map[normalised]
    if DEFAULT_INSIGHT_TYPE in type_map:
        return type_map[DEFAULT_INSIGHT_TYPE]
    if type_map:
        return next(iter(type_map.values()))
    raise ValueError("No insight types configured")


def normalise_incoming_kpis(
    kpis: Any, fallback: list[dict[str, Any]] | None = None
) -> list[dict[str, Any]]:
    if not isinstance(kpis, list):
        return fallback or []

    normalised = []
    for index, kpi in enumerate(kpis):
        raw = kpi if isinstance(kpi, dict) else {}
        normalised.append(
            {
                "id": _non_empty_string(raw, "id") or str(uuid4()),
                "label": _non_empty_string(raw, "label") or f"KPI {index + 1}",
                "value": raw.get("value"),
                "description": _non_empty_string(raw, "description"),
            }
        )
    return normalised


def parse_incoming_author(value: Any) -> IncomingAuthor | None:
    if not isinstance(value, dict):
        return None

    user_id = _non_empty_string(value, *_AUTHOR_ID_KEYS)
    name = _non_empty_string(value, *_AUTHOR_NAME_KEYS)
    if not user_id and not name:
        return None
    return IncomingAuthor(user_id=user_id, name=name)


def _normalise_incoming_item(item: Any) -> IncomingInsight:
    record = item if isinstance(item, dict) else {}

    related = record.get("relatedChallengeIds", record.get("related_challenge_ids"))
    related_ids = [str(value) for value in related] if isinstance(related, list) else None

    fallback_author_id = _non_empty_string(record, "authorId", "author_id")
    fallback_author_name = _non_empty_string(record, "authorName", "author_name")

    raw_authors = record.get("authors")
    authors: list[IncomingAuthor] = []
    authors_provided = False

    if isinstance(raw_authors, list):
        authors_provided = True
        authors = [a for a in (parse_incoming_author(entry) for entry in raw_authors) if a]
    elif raw_authors:
        parsed = parse_incoming_author(raw_authors)
        if parsed:
            authors_provided = True
            authors.append(parsed)

    if not authors_provided and (fallback_author_id or fallback_author_name):
        authors_provided = True
        authors.append(IncomingAuthor(user_id=fallback_author_id, name=fallback_author_name))

    primary = authors[0] if authors else None
    kpis = record.get("kpis")

    return IncomingInsight(
        id=_non_empty_string(record, "id"),
        ask_session_id=_non_empty_string(record, "askSessionId", "ask_session_id"),
        content=_non_empty_string(record, "content"),
        summary=_non_empty_string(record, "summary"),
        type=_non_empty_string(record, "type"),
        category=_non_empty_string(record, "category"),
        status=_non_empty_string(record, "status"),
        priority=_non_empty_string(record, "priority"),
        challenge_id=_non_empty_string(record, "challengeId", "challenge_id"),
        author_id=fallback_author_id or (primary.user_id if primary else None),
        author_name=fallback_author_name or (primary.name if primary else None),
        related_challenge_ids=related_ids,
        kpis=kpis if isinstance(kpis, list) else None,
        source_message_id=_non_empty_string(record, "sourceMessageId", "source_message_id"),
        authors=authors,
        authors_provided=authors_provided,
    )


def normalise_incoming_insights(value: Any) -> tuple[list[str], list[IncomingInsight]]:
    """
    Normalise a {types?, items?} envelope produced by the detection agent.

    Returns:
        (known types, defaulting to every type; normalised items)
    """
    envelope = value if isinstance(value, dict) else {}

    raw_types = envelope.get("types") if isinstance(envelope.get("types"), list) else []
    types = [
        t.strip() for t in raw_types if isinstance(t, str) and t.strip() in INSIGHT_TYPES
    ]

    raw_items = envelope.get("items") if isinstance(envelope.get("items"), list) else []
    items = [_normalise_incoming_item(item) for item in raw_items]

    return (types or list(INSIGHT_TYPES)), items


def summarise_insights(insights: list[Insight]) -> str:
    """One "- (type) summary" line per insight."""
    return "\n".join(
        f"- ({insight.type}) {insight.summary or insight.content}" for insight in insights
    )


def serialise_insights_for_prompt(insights: list[Insight] | None) -> str:
    """Insights as JSON for the existing_insights_json prompt variable."""
    payload = []
    for insight in insights or []:
        entry: dict[str, Any] = {
            "id": insight.id,
            "type": insight.type,
            "content": insight.content,
            "summary": insight.summary,
            "category": insight.category,
            "priority": insight.priority,
            "status": insight.status,
            "challengeId": insight.challenge_id,
            "relatedChallengeIds": insight.related_challenge_ids,
            "sourceMessageId": insight.source_message_id,
        }
        if insight.author_id:
            entry["authorId"] = insight.author_id
        if insight.author_name:
            entry["authorName"] = insight.author_name
        if insight.authors:
            entry["authors"] = [
                {"userId": author.user_id, "name": author.name} for author in insight.authors
            ]
        if insight.kpis:
            entry["kpi_estimations"] = [
                {"name": kpi.label, "description": kpi.description, "metric_data": kpi.value}
                for kpi in insight.kpis
            ]
        payload.append(entry)

    return json.dumps(payload, ensure_ascii=False)
