"""A Rich-powered console view of a working sequence and bulk outcomes."""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Sequence

from rich import box
from rich.console import Console, Group
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from ..editing.bulk import BulkActionResult
from ..editing.store import SlotState


LABEL_FIELDS = ("title", "name", "email")


def _record_label(record: Mapping[str, Any], position: int) -> str:
    for key in LABEL_FIELDS:
        value = record.get(key)
        if value:
            return str(value)
    return f"Record {position + 1}"


class ModernUI:
    """Render collection listings and bulk summaries using Rich widgets."""

    def __init__(self, *, console: Optional[Console] = None) -> None:
        self._console = console or Console()

    @property
    def console(self) -> Console:
        return self._console

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def show_collection(
        self,
        name: str,
        records: Sequence[Mapping[str, Any]],
        *,
        slots: Optional[Dict[int, SlotState]] = None,
        total: Optional[int] = None,
    ) -> None:
        console = self._console
        console.rule(f"[bold magenta]{name}")

        if not records:
            console.print(
                Panel(
                    "No records matched.",
                    border_style="yellow",
                    box=box.ROUNDED,
                )
            )
            return

        table = Table(box=box.SIMPLE_HEAVY, expand=True)
        table.add_column("#", justify="right", style="dim")
        table.add_column("Id", style="cyan")
        table.add_column("Record", style="bold")
        table.add_column("Status")
        table.add_column("Upload", justify="right")

        for position, record in enumerate(records):
            slot = (slots or {}).get(position)
            table.add_row(
                str(position),
                str(record.get("id") or record.get("_id") or "new"),
                _record_label(record, position),
                self._status_text(record),
                self._slot_text(slot),
            )

        console.print(table)
        shown = len(records)
        console.print(
            Text(f"Showing {shown} of {total if total is not None else shown}", style="dim"),
            justify="right",
        )

    def show_bulk_result(self, result: BulkActionResult) -> None:
        summary = Text(result.summary(), style="bold green" if result.all_succeeded else "bold yellow")
        if not result.failed:
            self._console.print(
                Panel(summary, title=result.action.label, border_style="green", box=box.ROUNDED)
            )
            return

        failures = Table(box=box.SIMPLE, expand=True)
        failures.add_column("Id", style="cyan")
        failures.add_column("Reason", style="red")
        for item in result.failed:
            failures.add_row(item.id, item.reason)

        body = Group(summary, Rule(style="yellow"), failures)
        self._console.print(
            Panel(body, title=result.action.label, border_style="yellow", box=box.ROUNDED)
        )

    # ------------------------------------------------------------------
    # Rendering helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _status_text(record: Mapping[str, Any]) -> Text:
        if "isActive" in record:
            active = bool(record.get("isActive"))
            return Text("Active" if active else "Inactive", style="green" if active else "dim")
        status = record.get("status")
        if status:
            return Text(str(status))
        return Text("-", style="dim")

    @staticmethod
    def _slot_text(slot: Optional[SlotState]) -> Text:
        if slot is None or slot.is_empty:
            return Text("")
        if slot.error:
            return Text(slot.error, style="red")
        if slot.progress is not None:
            return Text(f"{slot.progress}%", style="green" if slot.progress >= 100 else "yellow")
        return Text("pending", style="dim")


__all__ = ["ModernUI"]
