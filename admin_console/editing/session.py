"""One editing session: working copy, uploads, selection and bulk actions."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence

from ..services import export as export_service
from ..services.previews import build_preview
from .bulk import BulkAction, BulkActionResult, BulkMutationCoordinator
from .errors import SelectionError
from .store import IndexedCollectionStore, SlugPolicy
from .uploads import ConcurrentUploadManager, UploadKind, UploadTransport

LOGGER = logging.getLogger(__name__)


class RecordSource(Protocol):
    """Record CRUD endpoint backing a session."""

    async def list(self, **params: Any) -> Any: ...

    async def create(self, record: Mapping[str, Any]) -> Any: ...

    async def update(self, record_id: str, partial: Mapping[str, Any]) -> Any: ...

    async def delete(self, record_id: str) -> Any: ...


class EditingSession:
    """Tie the working copy of one collection to its remote endpoints.

    A session is created per editor; it owns its store exclusively. The
    working sequence comes from ``load`` and is either saved with ``submit``
    or thrown away with ``reset``.
    """

    def __init__(
        self,
        resource: RecordSource,
        transport: UploadTransport,
        *,
        name: str = "records",
        id_field: str = "id",
        slug_policy: SlugPolicy | str = SlugPolicy.ALWAYS,
        max_upload_bytes: Optional[int] = None,
        target_fields: Optional[Mapping[UploadKind | str, str]] = None,
        preview_builder: Optional[Callable[[bytes, str], Optional[str]]] = build_preview,
    ) -> None:
        self.name = name
        self._resource = resource
        self.store = IndexedCollectionStore(id_field=id_field, slug_policy=slug_policy)
        self.uploads = ConcurrentUploadManager(
            self.store,
            transport,
            target_fields=target_fields,
            max_upload_bytes=max_upload_bytes,
            preview_builder=preview_builder,
        )
        self.bulk = BulkMutationCoordinator(resource)
        self._selection: Dict[str, None] = {}
        self._params: Dict[str, Any] = {}
        self.total = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def load(self, **params: Any) -> int:
        """Replace the working sequence with a fresh server snapshot."""

        page = await self._resource.list(**params)
        items = list(getattr(page, "items", None) or [])
        self._discard_uploads()
        self.store.replace_all(items)
        self._selection.clear()
        self._params = dict(params)
        self.total = int(getattr(page, "total", len(items)) or 0)
        LOGGER.info("Loaded %s of %s %s", len(items), self.total, self.name)
        return len(items)

    async def reset(self) -> int:
        """Discard local edits by re-fetching the last snapshot."""

        return await self.load(**self._params)

    async def submit(self) -> List[Dict[str, Any]]:
        """Save every record: create unpersisted ones and update the rest.

        Pending uploads are awaited first so their URLs are part of the save.
        Server responses are written back to the records they belong to even
        if positions shift while the requests are outstanding.
        """

        await self.uploads.wait_all()
        snapshot = self.store.snapshot()
        keys = [self.store.slot_key(index) for index in range(len(snapshot))]
        saved: List[Dict[str, Any]] = []
        for index, record in enumerate(snapshot.records):
            payload = dict(record)
            record_id = self.store.id_of(record)
            if record_id is None:
                result = await self._resource.create(payload)
            else:
                result = await self._resource.update(record_id, payload)
            merged = dict(result) if isinstance(result, Mapping) else payload
            position = self.store.position_of(keys[index])
            if position is not None:
                self.store.set_record(position, merged)
            saved.append(merged)
        self.store.clear_transient()
        self._selection.clear()
        LOGGER.info("Saved %s %s", len(saved), self.name)
        return saved

    def _discard_uploads(self) -> None:
        for token in self.uploads.active_tokens():
            self.uploads.cancel_upload(token)

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------
    @property
    def selection(self) -> List[str]:
        """Selected ids in working-sequence order."""

        order = {record_id: index for index, record_id in enumerate(self.store.ids())}
        return sorted(self._selection, key=lambda record_id: order.get(record_id, len(order)))

    def is_selected(self, record_id: str) -> bool:
        return str(record_id) in self._selection

    def select(self, record_id: str) -> None:
        record_id = str(record_id)
        if record_id not in self.store.ids():
            raise SelectionError(f"Record {record_id!r} is not a saved record in this session")
        self._selection[record_id] = None

    def deselect(self, record_id: str) -> None:
        self._selection.pop(str(record_id), None)

    def toggle(self, record_id: str) -> bool:
        if self.is_selected(record_id):
            self.deselect(record_id)
            return False
        self.select(record_id)
        return True

    def select_all(self) -> None:
        self._selection = dict.fromkeys(self.store.ids())

    def clear_selection(self) -> None:
        self._selection.clear()

    # ------------------------------------------------------------------
    # Bulk actions and export
    # ------------------------------------------------------------------
    async def run_bulk(self, action: BulkAction, ids: Optional[Sequence[str]] = None) -> BulkActionResult:
        """Run ``action`` over ``ids`` (the selection by default).

        Succeeded ids are applied to the working copy and leave the
        selection; failed ids stay selected so the action can be retried.
        """

        targets = list(ids) if ids is not None else self.selection
        result = await self.bulk.run_bulk(targets, action)
        partial = self.bulk.partial_for(action)
        for record_id in result.succeeded_ids:
            position = self.store.position_of_id(record_id)
            if position is not None:
                if partial is None:
                    self.store.remove_at(position)
                else:
                    for field_name, value in partial.items():
                        self.store.update_field(position, field_name, value)
            self._selection.pop(record_id, None)
        if partial is None:
            self.total = max(0, self.total - result.succeeded_count)
        return result

    def export(self, fmt: str, *, selected_only: bool = False) -> bytes:
        records = self.store.records()
        if selected_only:
            chosen = set(self._selection)
            records = [
                record
                for index, record in enumerate(records)
                if self.store.record_id(index) in chosen
            ]
        return export_service.render(records, fmt, title=self.name)


__all__ = ["EditingSession", "RecordSource"]
