"""Domain exceptions and error inspection helpers."""

from typing import Any

PERMISSION_DENIED_CODES = {"42501", "PGRST301", "PGRST302"}
PERMISSION_DENIED_MARKERS = ("permission denied", "unauthorized", "row-level security")


class AgentExecutionError(Exception):
    """Raised when an AI agent cannot be resolved or executed."""


class AiProviderError(Exception):
    """Raised when a model provider call fails or is misconfigured."""

    def __init__(self, message: str, raw: Any = None):
        super().__init__(message)
        self.raw = raw


class PlanGenerationError(Exception):
    """Raised when a conversation plan cannot be generated or stored."""


class StepSummaryError(Exception):
    """Raised when a plan step summary cannot be produced."""

    def __init__(self, message: str, step_id: str, ask_session_id: str):
        super().__init__(message)
        self.step_id = step_id
        self.ask_session_id = ask_session_id


def _error_message(error: Any) -> str | None:
    if isinstance(error, dict):
        message = error.get("message")
    else:
        message = getattr(error, "message", None)
    return message if isinstance(message, str) else None


def is_permission_denied(error: Any) -> bool:
    """
    Check whether a Postgrest/Supabase error is an authorization failure.

    Args:
        error: Exception or error payload returned by the client

    Returns:
        True for RLS or permission failures
    """
    if error is None:
        return False

    code = error.get("code") if isinstance(error, dict) else getattr(error, "code", None)
    if code is not None and str(code) in PERMISSION_DENIED_CODES:
        return True

    message = _error_message(error)
    if message is None and isinstance(error, Exception):
        message = str(error)
    if not message:
        return False

    lowered = message.lower()
    return any(marker in lowered for marker in PERMISSION_DENIED_MARKERS)


def parse_error_message(error: Any) -> str:
    """Turn any error value into a user-facing message."""
    if isinstance(error, str):
        return error

    message = _error_message(error)
    if message:
        return message

    if isinstance(error, Exception) and str(error):
        return str(error)

    return "An unexpected error occurred"


class WebhookError(Exception):
    """Raised when the external ASK webhook fails or answers with unusable data."""
