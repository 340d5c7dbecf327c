"""Utility helpers for slugs and export file names."""

from __future__ import annotations

from datetime import date as date_type
import re
from typing import Optional

__all__ = [
    "slugify",
    "build_export_name",
]


_NON_SLUG_CHARACTERS = re.compile(r"[^\w\s-]", re.ASCII)
_WHITESPACE = re.compile(r"\s+")
_HYPHENS = re.compile(r"-+")


def slugify(value: str) -> str:
    """Return the URL slug derived from a title.

    The title is lowercased and trimmed, characters other than word
    characters, whitespace and hyphens are dropped, whitespace runs become a
    single hyphen and leading/trailing hyphens are removed.
    """

    value = (value or "").lower().strip()
    value = _NON_SLUG_CHARACTERS.sub("", value)
    value = _WHITESPACE.sub("-", value)
    value = _HYPHENS.sub("-", value)
    return value.strip("-")


def build_export_name(
    stem: str,
    *,
    date: Optional[date_type] = None,
    extension: str = "",
) -> str:
    """Return a dated download name such as ``users-export-2024-01-31.csv``."""

    stamp = (date or date_type.today()).isoformat()
    base = slugify(stem) or "export"
    suffix = ""
    if extension:
        suffix = extension if extension.startswith(".") else f".{extension}"
        suffix = suffix.lower()
    return f"{base}-{stamp}{suffix}"
