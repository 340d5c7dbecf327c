"""Utilities for reporting deterministic progress percentages."""

from __future__ import annotations

from typing import Optional


def clamp_percent(value: Optional[float]) -> Optional[int]:
    """Return *value* as an integer percentage clamped to ``[0, 100]``."""

    if value is None:
        return None
    return max(0, min(int(round(float(value))), 100))


def percent_complete(current: Optional[float], total: Optional[float]) -> Optional[int]:
    """Return ``round(current * 100 / total)`` or ``None`` without a total."""

    if current is None or total in {None, 0}:
        return None

    try:
        ratio = float(current) / float(total)
    except (TypeError, ValueError):
        return None

    return clamp_percent(ratio * 100)


def format_progress_message(
    message: str,
    completed_steps: Optional[float],
    total_steps: Optional[float],
) -> str:
    """Append a percentage indicator to ``message`` when possible.

    When the totals are unavailable (``None`` or zero) the message is returned
    unchanged.
    """

    percent = percent_complete(completed_steps, total_steps)
    if percent is None:
        return message
    return f"{message} ({percent}%)"


def format_outcome_summary(succeeded: int, total: int) -> str:
    """Return the ``"N of M succeeded"`` line shown after a bulk action."""

    return f"{succeeded} of {total} succeeded"


__all__ = [
    "clamp_percent",
    "format_outcome_summary",
    "format_progress_message",
    "percent_complete",
]
