"""Serialisation of a working sequence to JSON, CSV and PDF downloads."""

from __future__ import annotations

import csv
import io
import json
import logging
from datetime import date
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from .naming import build_export_name

LOGGER = logging.getLogger(__name__)

EXPORT_FORMATS = ("json", "csv", "pdf")

_PDF_MARGIN = 54
_PDF_LINE_HEIGHT = 14
_PDF_FONT_SIZE = 9


class ExportError(RuntimeError):
    """Raised when records cannot be rendered in the requested format."""


class ExportDependencyError(ExportError):
    """Raised when the PDF renderer is not installed."""


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, ensure_ascii=False, sort_keys=True)
    return str(value)


def collect_columns(records: Iterable[Mapping[str, Any]]) -> List[str]:
    """Return every top-level field name in first-seen order."""

    columns: List[str] = []
    seen = set()
    for record in records:
        for key in record:
            if key not in seen:
                seen.add(key)
                columns.append(str(key))
    return columns


def render_json(records: Sequence[Mapping[str, Any]]) -> bytes:
    payload = [dict(record) for record in records]
    return json.dumps(payload, indent=2, ensure_ascii=False, default=str).encode("utf-8")


def render_csv(
    records: Sequence[Mapping[str, Any]],
    *,
    columns: Optional[Sequence[str]] = None,
) -> bytes:
    """Render records as CSV with every cell quoted; nested values become JSON."""

    selected = list(columns) if columns else collect_columns(records)
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(selected)
    for record in records:
        writer.writerow([_cell(record.get(column)) for column in selected])
    return buffer.getvalue().encode("utf-8")


def _describe_record(record: Mapping[str, Any], index: int) -> str:
    label = record.get("title") or record.get("name") or record.get("email") or f"Record {index + 1}"
    details = [
        f"{key}: {_cell(value)}"
        for key, value in record.items()
        if key not in {"title", "name"} and not isinstance(value, (dict, list))
    ]
    line = f"{index + 1}. {label}"
    if details:
        line += " - " + ", ".join(details)
    return line[:180] + ("..." if len(line) > 180 else "")


def render_pdf(records: Sequence[Mapping[str, Any]], *, title: str = "Export") -> bytes:
    """Render a plain one-line-per-record PDF listing."""

    try:
        import fitz  # type: ignore
    except ImportError as exc:  # pragma: no cover - runtime check
        raise ExportDependencyError("PyMuPDF (fitz) is not installed") from exc

    document = fitz.open()
    try:
        page = document.new_page()
        y = _PDF_MARGIN
        page.insert_text((_PDF_MARGIN, y), title, fontsize=14)
        y += _PDF_LINE_HEIGHT * 2
        for index, record in enumerate(records):
            if y > page.rect.height - _PDF_MARGIN:
                page = document.new_page()
                y = _PDF_MARGIN
            page.insert_text((_PDF_MARGIN, y), _describe_record(record, index), fontsize=_PDF_FONT_SIZE)
            y += _PDF_LINE_HEIGHT
        return document.tobytes()
    finally:
        document.close()


def render(records: Sequence[Mapping[str, Any]], fmt: str, *, title: str = "Export") -> bytes:
    normalized = fmt.lower().strip()
    if normalized == "json":
        return render_json(records)
    if normalized == "csv":
        return render_csv(records)
    if normalized == "pdf":
        return render_pdf(records, title=title)
    raise ExportError(f"Unsupported export format: {fmt!r}")


def media_type_for(fmt: str) -> str:
    return {
        "json": "application/json",
        "csv": "text/csv; charset=utf-8",
        "pdf": "application/pdf",
    }.get(fmt.lower(), "application/octet-stream")


def write_export(
    records: Sequence[Mapping[str, Any]],
    fmt: str,
    *,
    destination: Path,
    stem: str,
    on_date: Optional[date] = None,
) -> Path:
    """Render ``records`` and write them to ``destination`` under a dated name."""

    content = render(records, fmt, title=stem)
    destination.mkdir(parents=True, exist_ok=True)
    target = destination / build_export_name(stem, date=on_date, extension=fmt)
    target.write_bytes(content)
    LOGGER.info("Exported %s record(s) to %s", len(records), target)
    return target


__all__ = [
    "EXPORT_FORMATS",
    "ExportDependencyError",
    "ExportError",
    "collect_columns",
    "media_type_for",
    "render",
    "render_csv",
    "render_json",
    "render_pdf",
    "write_export",
]
