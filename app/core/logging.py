"""Key=value logging for the ASK conversation engine."""

import logging
import sys

# Attributes passed through `extra=` that are appended to the log line
CONTEXT_FIELDS = ("ask_session_id", "agent", "model", "interaction_type", "attempt")


class AskLogFormatter(logging.Formatter):
    """Formats records as `key=value` pairs, with ASK context fields when present."""

    def format(self, record: logging.LogRecord) -> str:
        fields = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                fields[name] = value

        if record.exc_info:
            fields["exc"] = self.formatException(record.exc_info).replace("\n", " | ")

        return " ".join(f"{key}={value}" for key, value in fields.items())


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger writing ASK-formatted lines to stdout.

    The level is DEBUG when APP_ENV is dev, INFO otherwise (and whenever
    settings cannot be loaded yet).
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(AskLogFormatter())
    logger.addHandler(handler)

    level = logging.INFO
    try:
        from app.core.config import get_settings

        if get_settings().APP_ENV == "dev":
            level = logging.DEBUG
    except Exception:
        # Required env vars may be missing at import time
        pass
    logger.setLevel(level)

    return logger
