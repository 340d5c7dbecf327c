"""Logging setup for the admin console, including structured event details."""

from __future__ import annotations

import json
import logging
from logging import Logger
from pathlib import Path
from typing import Iterable, Optional


DEFAULT_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
EVENT_LOGGER_NAME = "admin_console.events"
LOG_FILE_NAME = "admin_console.log"

_EVENT_FIELDS = ("console_correlation", "console_payload", "console_context")


class ConsoleEventFormatter(logging.Formatter):
    """Append the ``console_*`` metadata of structured events as JSON.

    Records without structured metadata are formatted unchanged.
    """

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        event_type = getattr(record, "console_event_type", None)
        if not event_type:
            return text
        details = {
            name[len("console_"):]: getattr(record, name)
            for name in _EVENT_FIELDS
            if getattr(record, name, None)
        }
        duration = getattr(record, "console_duration_ms", None)
        if duration is not None:
            details["duration_ms"] = round(float(duration), 1)
        if not details:
            return text
        return f"{text} | {json.dumps(details, sort_keys=True, default=str)}"


def build_formatter(fmt: str = DEFAULT_LOG_FORMAT) -> logging.Formatter:
    return ConsoleEventFormatter(fmt)


def configure_logging(
    level: int = logging.INFO,
    *,
    handlers: Iterable[logging.Handler] | None = None,
    event_level: Optional[int] = None,
) -> Logger:
    """Attach console handlers to the root logger.

    Handlers without a formatter get :class:`ConsoleEventFormatter`.
    ``event_level`` sets the threshold of the structured events logger
    separately, e.g. ``logging.DEBUG`` to see every store edit.
    """

    logger = logging.getLogger()
    logger.setLevel(level)

    if handlers is None:
        handlers = [logging.StreamHandler()]
    for handler in handlers:
        if handler.formatter is None:
            handler.setFormatter(build_formatter())
        logger.addHandler(handler)

    if event_level is not None:
        logging.getLogger(EVENT_LOGGER_NAME).setLevel(event_level)

    return logger


def get_log_file_path(log_root: Path) -> Path:
    """Return the default path for the console log file."""

    return log_root / LOG_FILE_NAME


__all__ = [
    "ConsoleEventFormatter",
    "DEFAULT_LOG_FORMAT",
    "EVENT_LOGGER_NAME",
    "build_formatter",
    "configure_logging",
    "get_log_file_path",
]
