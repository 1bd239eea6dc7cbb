"""ASK key validation."""

import re

from pydantic import BaseModel

ASK_KEY_PATTERN = re.compile(r"^[a-zA-Z0-9._-]+$")
ALPHANUMERIC_PATTERN = re.compile(r"[a-zA-Z0-9]")

MIN_ASK_KEY_LENGTH = 3
MAX_ASK_KEY_LENGTH = 100


class AskKeyValidation(BaseModel):
    """Detailed ASK key validation outcome."""

    is_valid: bool
    error: str | None = None
    suggestion: str | None = None


def is_valid_ask_key(key: str | None) -> bool:
    """Accept trimmed keys of at least 3 chars made of letters, digits, dots, dashes, underscores."""
    if not key:
        return False

    trimmed = key.strip()
    if len(trimmed) < MIN_ASK_KEY_LENGTH:
        return False
    if not ASK_KEY_PATTERN.match(trimmed):
        return False
    return bool(ALPHANUMERIC_PATTERN.search(trimmed))


def validate_ask_key(key: str | None) -> AskKeyValidation:
    """
    Validate an ASK key and explain what is wrong with it.

    Args:
        key: Raw key from the URL

    Returns:
        AskKeyValidation with error and suggestion when invalid
    """
    trimmed = (key or "").strip()

    if not trimmed:
        return AskKeyValidation(
            is_valid=False,
            error="ASK key cannot be empty",
            suggestion="Please provide a valid ASK key in the URL parameter",
        )

    if len(trimmed) < MIN_ASK_KEY_LENGTH:
        return AskKeyValidation(
            is_valid=False,
            error="ASK key is too short",
            suggestion=f"ASK key must be at least {MIN_ASK_KEY_LENGTH} characters long",
        )

    if len(trimmed) > MAX_ASK_KEY_LENGTH:
        return AskKeyValidation(
            is_valid=False,
            error="ASK key is too long",
            suggestion=f"ASK key must be less than {MAX_ASK_KEY_LENGTH} characters",
        )

    if not ASK_KEY_PATTERN.match(trimmed):
        return AskKeyValidation(
            is_valid=False,
            error="ASK key contains invalid characters",
            suggestion="ASK key can only contain letters, numbers, dots, dashes, and underscores",
        )

    if not ALPHANUMERIC_PATTERN.search(trimmed):
        return AskKeyValidation(
            is_valid=False,
            error="ASK key must contain at least one letter or number",
            suggestion="Please check your ASK key format",
        )

    return AskKeyValidation(is_valid=True)
