"""Ordered working copy of records with position-aligned transient slot state."""

from __future__ import annotations

import copy
import itertools
import logging
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from ..services.events import emit_store_event
from ..services.naming import slugify
from ..services.progress import clamp_percent
from .errors import IndexOutOfRange

LOGGER = logging.getLogger(__name__)

FieldPath = Union[str, Sequence[str]]

_ID_FALLBACK_FIELDS: Tuple[str, ...] = ("id", "_id")


class SlugPolicy(str, Enum):
    """How a title edit affects the companion slug field."""

    ALWAYS = "always"
    UNTIL_EDITED = "until_edited"


@dataclass(frozen=True)
class SlotState:
    """Transient, client-only state attached to one position."""

    file: Optional[Any] = None
    preview: Optional[str] = None
    progress: Optional[int] = None
    error: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return all(getattr(self, item.name) is None for item in fields(self))


EMPTY_SLOT = SlotState()

_SLOT_FIELDS = frozenset(item.name for item in fields(SlotState))


@dataclass
class _Entry:
    key: str
    record: Dict[str, Any]
    slot: SlotState = EMPTY_SLOT
    slug_locked: bool = False


@dataclass(frozen=True)
class StoreSnapshot:
    """Immutable view of the working sequence and its slot state."""

    records: Tuple[Mapping[str, Any], ...]
    slots: Mapping[int, SlotState] = field(default_factory=lambda: MappingProxyType({}))

    def __len__(self) -> int:
        return len(self.records)


def normalize_field_path(field_path: FieldPath) -> Tuple[str, ...]:
    """Return ``field_path`` as a tuple of keys; dotted strings are split."""

    if isinstance(field_path, str):
        parts = tuple(part for part in field_path.split(".") if part)
    else:
        parts = tuple(str(part) for part in field_path)
    if not parts:
        raise ValueError("Field path must name at least one field")
    return parts


def _detach(value: Any) -> Any:
    if isinstance(value, (list, dict, set, tuple)):
        return copy.deepcopy(value)
    return value


def _replace_path(record: Mapping[str, Any], path: Tuple[str, ...], value: Any) -> Dict[str, Any]:
    head, rest = path[0], path[1:]
    updated = dict(record)
    if rest:
        current = record.get(head)
        child = current if isinstance(current, Mapping) else {}
        updated[head] = _replace_path(child, rest, value)
    else:
        updated[head] = value
    return updated


def _read_path(record: Mapping[str, Any], path: Tuple[str, ...]) -> Any:
    current: Any = record
    for key in path:
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current


class IndexedCollectionStore:
    """Own an ordered list of records and keep slot state aligned with it.

    Records and slot state live in a single list of entries, so inserting,
    removing or moving a record re-indexes its slot in the same step. Every
    entry also carries an opaque slot key that survives re-indexing; callers
    tracking asynchronous work resolve it back to a position with
    :meth:`position_of`.

    Positions are not stable identifiers: re-read them after any structural
    edit.
    """

    def __init__(
        self,
        records: Iterable[Mapping[str, Any]] = (),
        *,
        id_field: str = "id",
        slug_source: Optional[str] = "title",
        slug_field: str = "slug",
        slug_policy: SlugPolicy | str = SlugPolicy.ALWAYS,
    ) -> None:
        self._id_field = id_field
        self._slug_source = slug_source
        self._slug_field = slug_field
        self._slug_policy = SlugPolicy(slug_policy)
        self._key_counter = itertools.count(1)
        self._entries: List[_Entry] = [self._new_entry(record) for record in records]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _new_entry(self, record: Mapping[str, Any]) -> _Entry:
        return _Entry(key=f"slot-{next(self._key_counter)}", record=copy.deepcopy(dict(record)))

    def _check_position(self, position: int, *, allow_end: bool = False) -> None:
        length = len(self._entries)
        upper = length if allow_end else length - 1
        if not isinstance(position, int) or isinstance(position, bool) or not 0 <= position <= upper:
            raise IndexOutOfRange(position, length, allow_end=allow_end)

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------
    def __len__(self) -> int:
        return len(self._entries)

    @property
    def slug_policy(self) -> SlugPolicy:
        return self._slug_policy

    def record(self, position: int) -> Dict[str, Any]:
        self._check_position(position)
        return copy.deepcopy(self._entries[position].record)

    def records(self) -> List[Dict[str, Any]]:
        return [copy.deepcopy(entry.record) for entry in self._entries]

    def slot(self, position: int) -> SlotState:
        self._check_position(position)
        return self._entries[position].slot

    def slots(self) -> Dict[int, SlotState]:
        """Return slot state keyed by current position."""

        return {index: entry.slot for index, entry in enumerate(self._entries)}

    def slot_key(self, position: int) -> str:
        self._check_position(position)
        return self._entries[position].key

    def position_of(self, slot_key: str) -> Optional[int]:
        """Return the current position of ``slot_key`` or ``None`` once removed."""

        for index, entry in enumerate(self._entries):
            if entry.key == slot_key:
                return index
        return None

    def id_of(self, record: Mapping[str, Any]) -> Optional[str]:
        """Return the server-assigned id stored in ``record``, if any."""

        for name in (self._id_field, *_ID_FALLBACK_FIELDS):
            value = record.get(name)
            if value not in (None, ""):
                return str(value)
        return None

    def record_id(self, position: int) -> Optional[str]:
        """Return the server-assigned id at ``position`` or ``None`` if unpersisted."""

        self._check_position(position)
        return self.id_of(self._entries[position].record)

    def ids(self) -> List[str]:
        identifiers = []
        for index in range(len(self._entries)):
            record_id = self.record_id(index)
            if record_id is not None:
                identifiers.append(record_id)
        return identifiers

    def position_of_id(self, record_id: str) -> Optional[int]:
        for index in range(len(self._entries)):
            if self.record_id(index) == str(record_id):
                return index
        return None

    def snapshot(self) -> StoreSnapshot:
        """Return the working sequence and slot state as an immutable pair."""

        records = tuple(
            MappingProxyType(copy.deepcopy(entry.record)) for entry in self._entries
        )
        slots = MappingProxyType(self.slots())
        return StoreSnapshot(records=records, slots=slots)

    # ------------------------------------------------------------------
    # Structural edits
    # ------------------------------------------------------------------
    def insert_at(self, position: int, record: Optional[Mapping[str, Any]] = None) -> str:
        """Insert ``record`` at ``position`` with an empty slot; return its slot key."""

        self._check_position(position, allow_end=True)
        entry = self._new_entry(record or {})
        self._entries.insert(position, entry)
        emit_store_event(
            "insert",
            payload={"position": position, "length": len(self._entries), "slot": entry.key},
        )
        return entry.key

    def append(self, record: Optional[Mapping[str, Any]] = None) -> str:
        return self.insert_at(len(self._entries), record)

    def remove_at(self, position: int) -> Dict[str, Any]:
        """Remove the record at ``position`` together with its slot state.

        Every later slot moves down by one with its record.
        """

        self._check_position(position)
        entry = self._entries.pop(position)
        emit_store_event(
            "remove",
            payload={"position": position, "length": len(self._entries), "slot": entry.key},
        )
        return entry.record

    def move(self, source: int, target: int) -> None:
        """Move the record at ``source`` to ``target``; its slot moves with it."""

        self._check_position(source)
        self._check_position(target)
        if source == target:
            return
        entry = self._entries.pop(source)
        self._entries.insert(target, entry)
        emit_store_event("move", payload={"source": source, "target": target, "slot": entry.key})

    def replace_all(self, records: Iterable[Mapping[str, Any]]) -> None:
        """Load a fresh server snapshot, dropping all slot state."""

        self._entries = [self._new_entry(record) for record in records]
        emit_store_event("replace_all", payload={"length": len(self._entries)})

    # ------------------------------------------------------------------
    # Field and slot edits
    # ------------------------------------------------------------------
    def update_field(self, position: int, field_path: FieldPath, value: Any) -> Dict[str, Any]:
        """Replace one field of the record at ``position`` and return the new record.

        Intermediate mappings along ``field_path`` are copied rather than
        mutated. Editing the slug source also rewrites the slug unless the
        policy is :attr:`SlugPolicy.UNTIL_EDITED` and the slug was edited by
        hand.
        """

        self._check_position(position)
        path = normalize_field_path(field_path)
        entry = self._entries[position]
        updated = _replace_path(entry.record, path, _detach(value))

        if self._slug_source and path == (self._slug_source,):
            if self._slug_policy is SlugPolicy.ALWAYS or not entry.slug_locked:
                updated[self._slug_field] = slugify(str(value or ""))
        elif self._slug_source and path == (self._slug_field,):
            if self._slug_policy is SlugPolicy.UNTIL_EDITED:
                derived = slugify(str(_read_path(entry.record, (self._slug_source,)) or ""))
                entry.slug_locked = bool(value) and value != derived

        entry.record = updated
        LOGGER.debug("Updated field %s at position %s", ".".join(path), position)
        return copy.deepcopy(updated)

    def set_record(self, position: int, record: Mapping[str, Any]) -> None:
        """Replace the whole record at ``position``, keeping its slot state."""

        self._check_position(position)
        self._entries[position].record = copy.deepcopy(dict(record))

    def update_slot(self, position: int, **changes: Any) -> SlotState:
        """Replace selected slot attributes (``file``, ``preview``, ``progress``, ``error``)."""

        self._check_position(position)
        unknown = set(changes) - _SLOT_FIELDS
        if unknown:
            raise TypeError(f"Unknown slot attribute(s): {', '.join(sorted(unknown))}")
        if "progress" in changes:
            changes["progress"] = clamp_percent(changes["progress"])
        entry = self._entries[position]
        entry.slot = replace(entry.slot, **changes)
        return entry.slot

    def clear_slot(self, position: int) -> None:
        self._check_position(position)
        self._entries[position].slot = EMPTY_SLOT

    def clear_transient(self) -> None:
        """Drop every slot's transient state."""

        for entry in self._entries:
            entry.slot = EMPTY_SLOT
            entry.slug_locked = False


__all__ = [
    "EMPTY_SLOT",
    "FieldPath",
    "IndexedCollectionStore",
    "SlotState",
    "SlugPolicy",
    "StoreSnapshot",
    "normalize_field_path",
]
