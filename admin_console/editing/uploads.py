"""Concurrent per-slot file uploads that write their result back into the store."""

from __future__ import annotations

import asyncio
import functools
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional, Protocol, Tuple

from ..services.events import emit_upload_event
from ..services.previews import build_preview
from ..services.progress import percent_complete
from .errors import FileTooLarge, InvalidFileType, UnknownUpload, describe_error
from .store import FieldPath, IndexedCollectionStore, normalize_field_path

LOGGER = logging.getLogger(__name__)


class UploadKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"

    @property
    def mime_prefix(self) -> str:
        return f"{self.value}/"


DEFAULT_TARGET_FIELDS: Mapping[UploadKind, str] = {
    UploadKind.IMAGE: "image",
    UploadKind.VIDEO: "videoUrl",
}


@dataclass(frozen=True)
class LocalFile:
    """A file picked by the user, held in memory until it is uploaded."""

    name: str
    content_type: str
    data: bytes = field(repr=False)

    @property
    def size(self) -> int:
        return len(self.data)


ProgressCallback = Callable[[int, int], None]


class UploadTransport(Protocol):
    """Remote upload endpoint returning the stored file's URL."""

    async def upload(
        self,
        file: LocalFile,
        *,
        kind: str,
        on_progress: ProgressCallback,
    ) -> str: ...


@dataclass(frozen=True)
class UploadOutcome:
    """The single terminal event of one upload."""

    token: str
    status: str
    url: Optional[str] = None
    reason: Optional[str] = None
    position: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


@dataclass
class _UploadJob:
    token: str
    slot_key: str
    kind: UploadKind
    field_path: Tuple[str, ...]
    file: LocalFile
    started_at: float = field(default_factory=time.perf_counter)
    progress: int = 0
    cancelled: bool = False
    task: Optional["asyncio.Task[None]"] = None
    outcome: Optional[UploadOutcome] = None


class ConcurrentUploadManager:
    """Run one upload per slot without uploads blocking each other.

    Each upload is tracked by a correlation token bound to the store's slot
    key rather than to a position. When a transfer finishes, the slot key is
    resolved to the position current at that moment; if the slot has been
    removed meanwhile the result is discarded.

    ``start_upload`` must be called from a running event loop.
    """

    def __init__(
        self,
        store: IndexedCollectionStore,
        transport: UploadTransport,
        *,
        target_fields: Optional[Mapping[UploadKind | str, str]] = None,
        max_upload_bytes: Optional[int] = None,
        preview_builder: Optional[Callable[[bytes, str], Optional[str]]] = build_preview,
        on_progress: Optional[Callable[[str, int, int], None]] = None,
        on_settled: Optional[Callable[[UploadOutcome], None]] = None,
        history_limit: int = 200,
    ) -> None:
        self._store = store
        self._transport = transport
        self._target_fields: Dict[UploadKind, str] = dict(DEFAULT_TARGET_FIELDS)
        for kind, target in (target_fields or {}).items():
            self._target_fields[UploadKind(kind)] = target
        self._max_upload_bytes = max_upload_bytes if max_upload_bytes and max_upload_bytes > 0 else None
        self._preview_builder = preview_builder
        self._on_progress = on_progress
        self._on_settled = on_settled
        self._history_limit = history_limit
        self._jobs: Dict[str, _UploadJob] = {}
        self._active_by_slot: Dict[str, str] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def validate_file(self, file: LocalFile, kind: UploadKind | str) -> UploadKind:
        """Return the parsed kind or raise before any network activity."""

        try:
            upload_kind = UploadKind(kind)
        except ValueError as exc:
            raise InvalidFileType(
                f"Unsupported upload kind: {kind!r}",
                content_type=file.content_type,
                kind=str(kind),
            ) from exc

        content_type = (file.content_type or "").lower()
        if not content_type.startswith(upload_kind.mime_prefix):
            raise InvalidFileType(
                f"Please select {'an image' if upload_kind is UploadKind.IMAGE else 'a video'} file",
                content_type=file.content_type,
                kind=upload_kind.value,
            )

        if self._max_upload_bytes is not None and file.size > self._max_upload_bytes:
            raise FileTooLarge(
                f"{file.name} is too large ({file.size} bytes; limit {self._max_upload_bytes})",
                content_type=file.content_type,
                kind=upload_kind.value,
            )
        return upload_kind

    def start_upload(
        self,
        position: int,
        file: LocalFile,
        kind: UploadKind | str,
        *,
        field: Optional[FieldPath] = None,
    ) -> str:
        """Begin uploading ``file`` for the slot at ``position``; return its token.

        A running upload for the same slot is cancelled first.
        """

        upload_kind = self.validate_file(file, kind)
        loop = asyncio.get_running_loop()
        slot_key = self._store.slot_key(position)
        field_path = normalize_field_path(field or self._target_fields[upload_kind])

        preview = None
        if self._preview_builder is not None:
            preview = self._preview_builder(file.data, file.content_type)

        previous = self._active_by_slot.get(slot_key)
        if previous is not None:
            self._cancel(previous, reason="Superseded by a newer upload", reset_slot=False)

        token = uuid.uuid4().hex
        job = _UploadJob(
            token=token,
            slot_key=slot_key,
            kind=upload_kind,
            field_path=field_path,
            file=file,
        )
        self._jobs[token] = job
        self._active_by_slot[slot_key] = token

        self._store.update_slot(position, file=file, preview=preview, progress=0, error=None)

        job.task = loop.create_task(self._run(job), name=f"upload-{token[:8]}")
        emit_upload_event(
            "start",
            "Upload started",
            token=token,
            payload={
                "position": position,
                "kind": upload_kind,
                "field": ".".join(field_path),
                "file": file.name,
                "size": file.size,
            },
        )
        self._prune_history()
        return token

    def cancel_upload(self, token: str) -> bool:
        """Stop ``token``'s upload and discard its result; no-op once settled."""

        return self._cancel(token, reason="Upload cancelled", reset_slot=True)

    def progress(self, token: str) -> Optional[int]:
        job = self._jobs.get(token)
        return job.progress if job is not None else None

    def outcome(self, token: str) -> Optional[UploadOutcome]:
        job = self._jobs.get(token)
        return job.outcome if job is not None else None

    def token_for_position(self, position: int) -> Optional[str]:
        return self._active_by_slot.get(self._store.slot_key(position))

    def active_tokens(self) -> List[str]:
        return list(self._active_by_slot.values())

    async def wait(self, token: str) -> UploadOutcome:
        """Wait until ``token`` has settled and return its outcome."""

        job = self._jobs.get(token)
        if job is None:
            raise UnknownUpload(token)
        if job.task is not None and not job.task.done():
            await asyncio.wait({job.task})
        if job.outcome is None:
            raise RuntimeError(f"Upload {token} finished without an outcome")
        return job.outcome

    async def wait_all(self) -> List[UploadOutcome]:
        tokens = list(self._active_by_slot.values())
        return [await self.wait(token) for token in tokens]

    # ------------------------------------------------------------------
    # Transfer lifecycle
    # ------------------------------------------------------------------
    async def _run(self, job: _UploadJob) -> None:
        try:
            url = await self._transport.upload(
                job.file,
                kind=job.kind.value,
                on_progress=functools.partial(self._handle_progress, job),
            )
        except asyncio.CancelledError:
            if job.outcome is None:
                job.cancelled = True
                self._settle(job, UploadOutcome(job.token, "cancelled", reason="Upload cancelled"))
            raise
        except Exception as error:  # noqa: BLE001 - recorded on the slot
            self._handle_failure(job, describe_error(error))
        else:
            self._handle_success(job, url)

    def _handle_progress(self, job: _UploadJob, sent: int, total: int) -> None:
        if job.cancelled or job.outcome is not None:
            return
        percent = percent_complete(sent, total)
        if percent is None:
            return
        job.progress = max(job.progress, percent)
        position = self._store.position_of(job.slot_key)
        if position is None:
            return
        self._store.update_slot(position, progress=job.progress)
        if self._on_progress is not None:
            self._on_progress(job.token, position, job.progress)

    def _handle_success(self, job: _UploadJob, url: str) -> None:
        if job.cancelled or job.outcome is not None:
            return
        position = self._store.position_of(job.slot_key)
        if position is None:
            LOGGER.info("Discarding upload %s; its slot was removed", job.token)
            self._settle(
                job,
                UploadOutcome(job.token, "discarded", url=url, reason="Slot was removed"),
            )
            return
        self._store.update_field(position, job.field_path, url)
        job.progress = 100
        self._store.update_slot(position, file=None, progress=100, error=None)
        self._settle(job, UploadOutcome(job.token, "succeeded", url=url, position=position))

    def _handle_failure(self, job: _UploadJob, reason: str) -> None:
        if job.cancelled or job.outcome is not None:
            return
        position = self._store.position_of(job.slot_key)
        job.progress = 0
        if position is None:
            self._settle(job, UploadOutcome(job.token, "discarded", reason=reason))
            return
        self._store.update_slot(position, progress=0, error=reason)
        self._settle(job, UploadOutcome(job.token, "failed", reason=reason, position=position))

    def _cancel(self, token: str, *, reason: str, reset_slot: bool) -> bool:
        job = self._jobs.get(token)
        if job is None or job.outcome is not None:
            return False
        job.cancelled = True
        job.progress = 0
        position = self._store.position_of(job.slot_key)
        self._settle(job, UploadOutcome(token, "cancelled", reason=reason, position=position))
        if job.task is not None and not job.task.done():
            job.task.cancel()
        if reset_slot and position is not None:
            self._store.update_slot(position, file=None, progress=0)
        return True

    def _settle(self, job: _UploadJob, outcome: UploadOutcome) -> None:
        job.outcome = outcome
        if self._active_by_slot.get(job.slot_key) == job.token:
            del self._active_by_slot[job.slot_key]
        level = logging.WARNING if outcome.status == "failed" else logging.INFO
        emit_upload_event(
            outcome.status,
            f"Upload {outcome.status}",
            token=job.token,
            payload={"position": outcome.position, "reason": outcome.reason, "url": outcome.url},
            duration_ms=(time.perf_counter() - job.started_at) * 1000.0,
            level=level,
        )
        if self._on_settled is not None:
            self._on_settled(outcome)

    def _prune_history(self) -> None:
        if len(self._jobs) <= self._history_limit:
            return
        for token in list(self._jobs):
            if len(self._jobs) <= self._history_limit:
                break
            if self._jobs[token].outcome is not None:
                del self._jobs[token]


__all__ = [
    "ConcurrentUploadManager",
    "DEFAULT_TARGET_FIELDS",
    "LocalFile",
    "ProgressCallback",
    "UploadKind",
    "UploadOutcome",
    "UploadTransport",
]
