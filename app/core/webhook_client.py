"""Client for the external ASK backend webhook.

The webhook answers either directly ({ask, messages, ...}) or wrapped in a
"data" object; both shapes are normalised to the API payload here.
"""

from datetime import datetime, timezone  # noqa: UP035
from typing import Any

import httpx

from app.core.config import get_settings
from app.core.errors import WebhookError
from app.core.logging import get_logger

logger = get_logger(__name__)

WEBHOOK_SOURCE = "agentic-design-flow"
GET_SESSION_REQUEST = "get-session"
USER_MESSAGE_REQUEST = "user-message"


def _utc_now_iso() -> str:
    """Get current UTC time as ISO string."""
    return datetime.now(timezone.utc).isoformat()  # noqa: UP017


def _first(record: dict[str, Any], *keys: str, default: Any = None) -> Any:
    """First non-None value among keys."""
    for key in keys:
        value = record.get(key)
        if value is not None:
            return value
    return default


def _first_truthy(record: dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        value = record.get(key)
        if value:
            return value
    return default


def _is_in_future(value: str) -> bool:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return False
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)  # noqa: UP017
    return parsed > datetime.now(timezone.utc)  # noqa: UP017


async def post_to_webhook(
    payload: dict[str, Any],
    request_type: str,
    client: httpx.AsyncClient | None = None,
) -> Any:
    """
    POST a JSON payload to the external webhook.

    Args:
        payload: JSON body
        request_type: Value of the X-Request-Type header
        client: Optional client (tests inject a mock transport)

    Returns:
        Decoded JSON response

    Raises:
        WebhookError: If the webhook is not configured, unreachable, answers
            non-2xx or returns a body that is not JSON
    """
    settings = get_settings()
    if not settings.EXTERNAL_RESPONSE_WEBHOOK:
        raise WebhookError("External webhook not configured")

    headers = {
        "Content-Type": "application/json",
        "X-Webhook-Source": WEBHOOK_SOURCE,
        "X-Request-Type": request_type,
    }

    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(timeout=settings.WEBHOOK_TIMEOUT_SECONDS)

    try:
        response = await client.post(settings.EXTERNAL_RESPONSE_WEBHOOK, headers=headers, json=payload)
    except httpx.HTTPError as e:
        logger.error(f"Webhook {request_type} request failed: {e}")
        raise WebhookError(f"External webhook request failed: {e}") from e
    finally:
        if owns_client:
            await client.aclose()

    if not response.is_success:
        logger.error(f"Webhook {request_type} failed with status {response.status_code}")
        raise WebhookError(f"External webhook responded with status {response.status_code}")

    try:
        return response.json()
    except ValueError as e:
        logger.error(f"Webhook {request_type} returned a non-JSON body")
        raise WebhookError("External webhook returned an invalid JSON response") from e


def normalise_webhook_participants(participants: Any) -> list[dict[str, Any]]:
    if not isinstance(participants, list):
        return []

    result = []
    for index, participant in enumerate(participants):
        participant = participant if isinstance(participant, dict) else {}
        raw_id = participant.get("id")
        result.append(
            {
                "id": str(raw_id) if raw_id is not None else f"participant-{index}",
                "name": _first_truthy(
                    participant, "name", "fullName", "email", default=f"Participant {index + 1}"
                ),
                "email": participant.get("email"),
                "role": _first(participant, "role", "title"),
                "isSpokesperson": _first(participant, "isSpokesperson", "spokesperson", default=False),
                "isActive": _first(participant, "isActive", default=True),
            }
        )
    return result


def normalise_webhook_ask(key: str, ask_data: dict[str, Any], participants: list[dict[str, Any]]) -> dict[str, Any]:
    now = _utc_now_iso()
    is_group = len(participants) > 1
    ask = {
        "id": key,
        "key": key,
        "question": ask_data["question"],
        "isActive": _first(ask_data, "isActive", default=True),
        "endDate": ask_data.get("endDate"),
        "createdAt": _first_truthy(ask_data, "createdAt", default=now),
        "updatedAt": _first_truthy(ask_data, "updatedAt", default=now),
        "deliveryMode": _first_truthy(ask_data, "deliveryMode", "mode", default="digital"),
        "audienceScope": _first_truthy(
            ask_data, "audienceScope", default="group" if is_group else "individual"
        ),
        "responseMode": _first_truthy(
            ask_data, "responseMode", default="simultaneous" if is_group else "collective"
        ),
        "participants": participants,
        "askSessionId": _first_truthy(ask_data, "askSessionId", "sessionId"),
    }

    if ask["endDate"]:
        ask["isActive"] = _is_in_future(str(ask["endDate"]))

    return ask


def _normalise_webhook_kpis(kpis: Any) -> list[dict[str, Any]]:
    if not isinstance(kpis, list):
        return []
    return [
        {
            "id": _first(kpi, "id", default=f"kpi-{index}"),
            "label": _first(kpi, "label", "name", default="KPI"),
            "value": _first(kpi, "value", "metric"),
            "description": kpi.get("description"),
        }
        for index, kpi in enumerate(k if isinstance(k, dict) else {} for k in kpis)
    ]


def normalise_webhook_insights(key: str, ask_data: dict[str, Any], insights: Any) -> list[dict[str, Any]]:
    if not isinstance(insights, list):
        return []

    now = _utc_now_iso()
    result = []
    for index, insight in enumerate(insights):
        insight = insight if isinstance(insight, dict) else {}
        created_at = _first(insight, "createdAt", default=now)
        result.append(
            {
                "id": _first(insight, "id", default=f"insight-{index}"),
                "askId": _first(insight, "askId", default=ask_data.get("id") or key),
                "askSessionId": _first(
                    insight,
                    "askSessionId",
                    default=_first(ask_data, "askSessionId", "id", default=key),
                ),
                "challengeId": _first(insight, "challengeId", "linkedChallengeId"),
                "authorId": _first(insight, "authorId", "userId"),
                "authorName": _first(insight, "authorName", "author", "userName"),
                "content": _first(insight, "content", "message", default=""),
                "summary": _first(insight, "summary", "synopsis"),
                "type": _first(insight, "type", "insightType", default="idea"),
                "category": insight.get("category"),
                "status": _first(insight, "status", default="new"),
                "priority": insight.get("priority"),
                "createdAt": created_at,
                "updatedAt": _first(insight, "updatedAt", default=created_at),
                "relatedChallengeIds": _first(
                    insight, "relatedChallengeIds", "challengeIds", default=[]
                ),
                "kpis": _normalise_webhook_kpis(insight.get("kpis")),
                "sourceMessageId": _first(insight, "sourceMessageId", "messageId"),
            }
        )
    return result


def normalise_session_payload(key: str, backend_data: Any) -> dict[str, Any]:
    """
    Normalise a get-session webhook response.

    Raises:
        WebhookError: If the response carries no ask with a question
    """
    backend_data = backend_data if isinstance(backend_data, dict) else {}
    wrapped = backend_data.get("data") if isinstance(backend_data.get("data"), dict) else {}

    ask_data = wrapped.get("ask") or backend_data.get("ask")
    if not isinstance(ask_data, dict) or not ask_data.get("question"):
        raise WebhookError("Invalid response from backend: missing ASK data")

    messages = wrapped.get("messages") or backend_data.get("messages") or []
    challenges = wrapped.get("challenges") or backend_data.get("challenges") or []
    insights = wrapped.get("insights") or backend_data.get("insights") or []
    participant_data = (
        ask_data.get("participants")
        or wrapped.get("participants")
        or backend_data.get("participants")
        or []
    )

    participants = normalise_webhook_participants(participant_data)
    return {
        "ask": normalise_webhook_ask(key, ask_data, participants),
        "messages": messages,
        "challenges": challenges,
        "insights": normalise_webhook_insights(key, ask_data, insights),
    }


async def fetch_ask_from_webhook(key: str, client: httpx.AsyncClient | None = None) -> dict[str, Any]:
    """Fetch and normalise ASK data and conversation state from the external backend."""
    backend_data = await post_to_webhook(
        {"askKey": key, "action": "get_session_data"}, GET_SESSION_REQUEST, client
    )
    return normalise_session_payload(key, backend_data)


async def forward_user_message(
    key: str, message: Any, client: httpx.AsyncClient | None = None
) -> Any:
    """Forward a user message to the external backend and return its JSON answer."""
    logger.info(f"Forwarding user message for ask {key} to external webhook")
    return await post_to_webhook(
        {"askKey": key, "action": "user_message", "message": message}, USER_MESSAGE_REQUEST, client
    )
