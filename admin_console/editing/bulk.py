"""Fan-out of one action over many selected records with settle-all reporting."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Optional, Protocol, Tuple

from ..services.events import emit_bulk_event
from ..services.progress import format_outcome_summary
from .errors import EmptySelection, InvalidBulkAction, describe_error

LOGGER = logging.getLogger(__name__)


class MutationTarget(Protocol):
    """The record CRUD endpoint the coordinator fans out to."""

    async def update(self, record_id: str, partial: Mapping[str, Any]) -> Any: ...

    async def delete(self, record_id: str) -> Any: ...


class BulkActionKind(str, Enum):
    DELETE = "delete"
    SET_STATUS = "set_status"
    ACTIVATE = "activate"
    DEACTIVATE = "deactivate"


@dataclass(frozen=True)
class BulkAction:
    kind: BulkActionKind
    value: Optional[str] = None

    @classmethod
    def delete(cls) -> "BulkAction":
        return cls(BulkActionKind.DELETE)

    @classmethod
    def set_status(cls, value: str) -> "BulkAction":
        return cls(BulkActionKind.SET_STATUS, value)

    @classmethod
    def activate(cls) -> "BulkAction":
        return cls(BulkActionKind.ACTIVATE)

    @classmethod
    def deactivate(cls) -> "BulkAction":
        return cls(BulkActionKind.DEACTIVATE)

    @classmethod
    def parse(cls, kind: str, value: Optional[str] = None) -> "BulkAction":
        """Build an action from its wire name, validating it."""

        try:
            action_kind = BulkActionKind(str(kind).strip().lower().replace("-", "_"))
        except ValueError as exc:
            raise InvalidBulkAction(f"Unknown bulk action: {kind!r}") from exc
        action = cls(action_kind, value)
        action.validate()
        return action

    def validate(self) -> None:
        if not isinstance(self.kind, BulkActionKind):
            raise InvalidBulkAction(f"Unknown bulk action: {self.kind!r}")
        if self.kind is BulkActionKind.SET_STATUS:
            if not isinstance(self.value, str) or not self.value.strip():
                raise InvalidBulkAction("set_status requires a non-empty status value")
        elif self.value is not None:
            raise InvalidBulkAction(f"{self.kind.value} does not take a value")

    @property
    def label(self) -> str:
        if self.kind is BulkActionKind.SET_STATUS:
            return f"set_status({self.value})"
        return self.kind.value


@dataclass(frozen=True)
class BulkItemFailed:
    """One constituent of a bulk action that failed."""

    id: str
    reason: str


@dataclass(frozen=True)
class BulkActionResult:
    """Aggregate outcome of one bulk invocation; never mutated afterwards."""

    action: BulkAction
    total: int
    succeeded_ids: Tuple[str, ...]
    failed: Tuple[BulkItemFailed, ...]

    @property
    def succeeded_count(self) -> int:
        return len(self.succeeded_ids)

    @property
    def failed_ids(self) -> Tuple[str, ...]:
        return tuple(item.id for item in self.failed)

    @property
    def all_succeeded(self) -> bool:
        return not self.failed

    def summary(self) -> str:
        return format_outcome_summary(self.succeeded_count, self.total)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action.kind.value,
            "value": self.action.value,
            "total": self.total,
            "succeeded": list(self.succeeded_ids),
            "failed": [{"id": item.id, "reason": item.reason} for item in self.failed],
            "summary": self.summary(),
        }


class BulkState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SETTLED = "settled"


class BulkMutationCoordinator:
    """Apply one action to many ids concurrently and wait for all of them.

    Individual failures are collected into the result rather than raised;
    only a malformed action or an empty id collection fails before any
    request is issued. A running invocation cannot be cancelled.
    """

    def __init__(
        self,
        target: MutationTarget,
        *,
        status_field: str = "status",
        active_field: str = "isActive",
    ) -> None:
        self._target = target
        self._status_field = status_field
        self._active_field = active_field
        self._state = BulkState.IDLE
        self._last_result: Optional[BulkActionResult] = None

    @property
    def state(self) -> BulkState:
        return self._state

    @property
    def last_result(self) -> Optional[BulkActionResult]:
        return self._last_result

    async def run_bulk(self, ids: Iterable[Any], action: BulkAction) -> BulkActionResult:
        if not isinstance(action, BulkAction):
            raise InvalidBulkAction(f"Expected a BulkAction, got {type(action).__name__}")
        action.validate()
        if isinstance(ids, (str, bytes)):
            raise InvalidBulkAction("Bulk ids must be a collection of ids, not a single string")
        unique_ids = tuple(dict.fromkeys(str(record_id) for record_id in ids))
        if not unique_ids:
            raise EmptySelection("Select at least one record")
        if self._state is BulkState.RUNNING:
            raise RuntimeError("A bulk action is already running")

        self._state = BulkState.RUNNING
        start = time.perf_counter()
        emit_bulk_event(action.label, "Bulk action started", payload={"total": len(unique_ids)})
        try:
            outcomes = await asyncio.gather(
                *(self._apply_one(record_id, action) for record_id in unique_ids)
            )
        finally:
            self._state = BulkState.SETTLED

        succeeded = tuple(record_id for record_id, reason in outcomes if reason is None)
        failed = tuple(
            BulkItemFailed(record_id, reason) for record_id, reason in outcomes if reason is not None
        )
        result = BulkActionResult(
            action=action,
            total=len(unique_ids),
            succeeded_ids=succeeded,
            failed=failed,
        )
        self._last_result = result
        emit_bulk_event(
            action.label,
            result.summary(),
            payload={
                "total": result.total,
                "succeeded": result.succeeded_count,
                "failed_ids": list(result.failed_ids),
            },
            duration_ms=(time.perf_counter() - start) * 1000.0,
            level=logging.WARNING if failed else logging.INFO,
        )
        return result

    async def retry_failed(self, result: BulkActionResult) -> BulkActionResult:
        """Run ``result``'s action again for its failed ids only."""

        return await self.run_bulk(result.failed_ids, result.action)

    def partial_for(self, action: BulkAction) -> Optional[Dict[str, Any]]:
        """Return the update body ``action`` sends, or ``None`` for deletes."""

        if action.kind is BulkActionKind.DELETE:
            return None
        if action.kind is BulkActionKind.SET_STATUS:
            return {self._status_field: action.value}
        return {self._active_field: action.kind is BulkActionKind.ACTIVATE}

    async def _apply_one(self, record_id: str, action: BulkAction) -> Tuple[str, Optional[str]]:
        partial = self.partial_for(action)
        try:
            if partial is None:
                await self._target.delete(record_id)
            else:
                await self._target.update(record_id, partial)
        except Exception as error:  # noqa: BLE001 - reported in the aggregate result
            LOGGER.debug("Bulk %s failed for %s: %s", action.label, record_id, error)
            return record_id, describe_error(error)
        return record_id, None


__all__ = [
    "BulkAction",
    "BulkActionKind",
    "BulkActionResult",
    "BulkItemFailed",
    "BulkMutationCoordinator",
    "BulkState",
    "MutationTarget",
]
