from __future__ import annotations

import asyncio
import io

import pytest

from admin_console.editing.errors import FileTooLarge, InvalidFileType, UnknownUpload, UploadFailed
from admin_console.editing.store import IndexedCollectionStore
from admin_console.editing.uploads import ConcurrentUploadManager, LocalFile


class ScriptedTransport:
    """Upload transport whose transfers finish only when a test releases them."""

    def __init__(self, progress_steps=((50, 100),)) -> None:
        self.calls = []
        self._progress_steps = tuple(progress_steps)
        self._gates = {}
        self._results = {}

    def _gate(self, name: str) -> asyncio.Event:
        if name not in self._gates:
            self._gates[name] = asyncio.Event()
        return self._gates[name]

    def release(self, name: str, result) -> None:
        self._results[name] = result
        self._gate(name).set()

    async def upload(self, file, *, kind, on_progress):
        self.calls.append((file.name, kind))
        for sent, total in self._progress_steps:
            on_progress(sent, total)
        await self._gate(file.name).wait()
        result = self._results[file.name]
        if isinstance(result, Exception):
            raise result
        on_progress(100, 100)
        return result


def _video(name: str = "clip.mp4", size: int = 8) -> LocalFile:
    return LocalFile(name=name, content_type="video/mp4", data=b"v" * size)


def _image(name: str = "photo.png") -> LocalFile:
    return LocalFile(name=name, content_type="image/png", data=b"not-really-a-png")


def _manager(store, transport, **kwargs) -> ConcurrentUploadManager:
    kwargs.setdefault("preview_builder", None)
    return ConcurrentUploadManager(store, transport, **kwargs)


def test_successful_upload_writes_url_into_target_field() -> None:
    async def scenario():
        store = IndexedCollectionStore([{"id": "e1", "videoUrl": ""}])
        transport = ScriptedTransport()
        manager = _manager(store, transport)

        token = manager.start_upload(0, _video(), "video")
        await asyncio.sleep(0)
        midway = store.slot(0).progress

        transport.release("clip.mp4", "https://cdn.test/clip.mp4")
        outcome = await manager.wait(token)
        return store, transport, midway, outcome

    store, transport, midway, outcome = asyncio.run(scenario())

    assert transport.calls == [("clip.mp4", "video")]
    assert midway == 50
    assert outcome.status == "succeeded"
    assert outcome.position == 0
    assert store.record(0)["videoUrl"] == "https://cdn.test/clip.mp4"
    assert store.slot(0).progress == 100
    assert store.slot(0).file is None


def test_progress_never_decreases() -> None:
    reported = []

    async def scenario():
        store = IndexedCollectionStore([{"id": "e1"}])
        transport = ScriptedTransport(progress_steps=[(60, 100), (30, 100)])
        manager = _manager(
            store,
            transport,
            on_progress=lambda token, position, percent: reported.append(percent),
        )
        token = manager.start_upload(0, _image(), "image")
        await asyncio.sleep(0)
        progress = store.slot(0).progress
        transport.release("photo.png", "https://cdn.test/photo.png")
        await manager.wait(token)
        return progress

    assert asyncio.run(scenario()) == 60
    assert reported == sorted(reported)
    assert reported[-1] == 100


def test_upload_follows_its_record_when_earlier_record_is_removed() -> None:
    async def scenario():
        store = IndexedCollectionStore([{"id": "a"}, {"id": "b"}, {"id": "c"}])
        transport = ScriptedTransport()
        manager = _manager(store, transport)

        token = manager.start_upload(2, _image("c.png"), "image")
        await asyncio.sleep(0)
        store.remove_at(1)

        transport.release("c.png", "https://cdn.test/c.png")
        outcome = await manager.wait(token)
        return store, outcome

    store, outcome = asyncio.run(scenario())

    assert outcome.position == 1
    assert store.record(1) == {"id": "c", "image": "https://cdn.test/c.png"}
    assert "image" not in store.record(0)


def test_result_is_discarded_when_slot_was_removed(monkeypatch) -> None:
    async def scenario():
        store = IndexedCollectionStore([{"id": "a"}, {"id": "b"}])
        transport = ScriptedTransport()
        manager = _manager(store, transport)

        token = manager.start_upload(1, _image("b.png"), "image")
        await asyncio.sleep(0)
        store.remove_at(1)

        writes = []
        original = store.update_field

        def spy(*args, **kwargs):
            writes.append(args)
            return original(*args, **kwargs)

        monkeypatch.setattr(store, "update_field", spy)

        transport.release("b.png", "https://cdn.test/b.png")
        outcome = await manager.wait(token)
        return store, outcome, writes

    store, outcome, writes = asyncio.run(scenario())

    assert outcome.status == "discarded"
    assert writes == []
    assert store.records() == [{"id": "a"}]
    assert store.slot(0).is_empty


def test_invalid_file_type_fails_before_any_transfer() -> None:
    store = IndexedCollectionStore([{"id": "a"}])
    transport = ScriptedTransport()
    manager = _manager(store, transport)
    document = LocalFile(name="notes.pdf", content_type="application/pdf", data=b"%PDF")

    with pytest.raises(InvalidFileType) as excinfo:
        manager.start_upload(0, document, "image")

    assert "image" in str(excinfo.value)
    assert transport.calls == []
    assert store.slot(0).is_empty


def test_unknown_upload_kind_is_rejected() -> None:
    manager = _manager(IndexedCollectionStore([{}]), ScriptedTransport())

    with pytest.raises(InvalidFileType):
        manager.start_upload(0, _image(), "audio")


def test_oversized_file_is_rejected() -> None:
    manager = _manager(IndexedCollectionStore([{}]), ScriptedTransport(), max_upload_bytes=4)

    with pytest.raises(FileTooLarge):
        manager.start_upload(0, _video(size=10), "video")


def test_failed_upload_records_error_and_resets_progress() -> None:
    async def scenario():
        store = IndexedCollectionStore([{"id": "a", "image": "old.png"}])
        transport = ScriptedTransport()
        manager = _manager(store, transport)

        token = manager.start_upload(0, _image(), "image")
        await asyncio.sleep(0)
        transport.release("photo.png", UploadFailed("Server rejected file"))
        outcome = await manager.wait(token)
        return store, outcome

    store, outcome = asyncio.run(scenario())

    assert outcome.status == "failed"
    assert outcome.reason == "Server rejected file"
    assert store.slot(0).error == "Server rejected file"
    assert store.slot(0).progress == 0
    assert store.record(0)["image"] == "old.png"


def test_new_upload_for_same_slot_supersedes_the_previous_one() -> None:
    async def scenario():
        store = IndexedCollectionStore([{"id": "a"}])
        transport = ScriptedTransport()
        manager = _manager(store, transport)

        first = manager.start_upload(0, _image("first.png"), "image")
        await asyncio.sleep(0)
        second = manager.start_upload(0, _image("second.png"), "image")
        await asyncio.sleep(0)

        transport.release("second.png", "https://cdn.test/second.png")
        first_outcome = await manager.wait(first)
        second_outcome = await manager.wait(second)
        return store, first_outcome, second_outcome

    store, first_outcome, second_outcome = asyncio.run(scenario())

    assert first_outcome.status == "cancelled"
    assert second_outcome.status == "succeeded"
    assert store.record(0)["image"] == "https://cdn.test/second.png"


def test_cancel_upload_discards_result_and_resets_progress() -> None:
    async def scenario():
        store = IndexedCollectionStore([{"id": "a"}])
        transport = ScriptedTransport()
        manager = _manager(store, transport)

        token = manager.start_upload(0, _image(), "image")
        await asyncio.sleep(0)
        cancelled = manager.cancel_upload(token)
        outcome = await manager.wait(token)
        again = manager.cancel_upload(token)
        return store, manager, cancelled, again, outcome

    store, manager, cancelled, again, outcome = asyncio.run(scenario())

    assert cancelled is True
    assert again is False
    assert outcome.status == "cancelled"
    assert store.slot(0).progress == 0
    assert store.slot(0).file is None
    assert "image" not in store.record(0)
    assert manager.active_tokens() == []


def test_uploads_on_different_slots_settle_independently() -> None:
    async def scenario():
        store = IndexedCollectionStore([{"id": "a"}, {"id": "b"}])
        transport = ScriptedTransport()
        manager = _manager(store, transport)

        first = manager.start_upload(0, _image("a.png"), "image")
        second = manager.start_upload(1, _video("b.mp4"), "video")
        await asyncio.sleep(0)

        transport.release("b.mp4", "https://cdn.test/b.mp4")
        second_outcome = await manager.wait(second)
        first_pending = manager.outcome(first)

        transport.release("a.png", "https://cdn.test/a.png")
        await manager.wait_all()
        return store, second_outcome, first_pending

    store, second_outcome, first_pending = asyncio.run(scenario())

    assert second_outcome.succeeded
    assert first_pending is None
    assert store.record(0)["image"] == "https://cdn.test/a.png"
    assert store.record(1)["videoUrl"] == "https://cdn.test/b.mp4"


def test_image_upload_gets_thumbnail_preview() -> None:
    Image = pytest.importorskip("PIL.Image")
    buffer = io.BytesIO()
    Image.new("RGB", (640, 480), color=(200, 30, 30)).save(buffer, format="PNG")
    picture = LocalFile(name="big.png", content_type="image/png", data=buffer.getvalue())

    async def scenario():
        store = IndexedCollectionStore([{"id": "a"}])
        transport = ScriptedTransport()
        manager = ConcurrentUploadManager(store, transport)
        token = manager.start_upload(0, picture, "image")
        preview = store.slot(0).preview
        manager.cancel_upload(token)
        await manager.wait(token)
        return preview

    preview = asyncio.run(scenario())

    assert preview is not None
    assert preview.startswith("data:image/png;base64,")


def test_failing_preview_builder_leaves_no_active_upload() -> None:
    def broken_preview(data, content_type):
        raise ValueError("cannot decode")

    async def scenario():
        store = IndexedCollectionStore([{"id": "a"}])
        transport = ScriptedTransport()
        manager = _manager(store, transport, preview_builder=broken_preview)

        with pytest.raises(ValueError):
            manager.start_upload(0, _image(), "image")

        await asyncio.sleep(0)
        return store, transport, manager, await manager.wait_all()

    store, transport, manager, outcomes = asyncio.run(scenario())

    assert outcomes == []
    assert manager.active_tokens() == []
    assert transport.calls == []
    assert store.slot(0).is_empty


def test_failing_preview_builder_keeps_previous_upload_running() -> None:
    calls = []

    def flaky_preview(data, content_type):
        calls.append(content_type)
        if len(calls) > 1:
            raise ValueError("cannot decode")
        return None

    async def scenario():
        store = IndexedCollectionStore([{"id": "a"}])
        transport = ScriptedTransport()
        manager = _manager(store, transport, preview_builder=flaky_preview)

        first = manager.start_upload(0, _image("first.png"), "image")
        await asyncio.sleep(0)
        with pytest.raises(ValueError):
            manager.start_upload(0, _image("second.png"), "image")

        transport.release("first.png", "https://cdn.test/first.png")
        return store, await manager.wait(first)

    store, outcome = asyncio.run(scenario())

    assert outcome.status == "succeeded"
    assert store.record(0)["image"] == "https://cdn.test/first.png"


def test_wait_on_unknown_token_raises_descriptive_error() -> None:
    manager = _manager(IndexedCollectionStore([{}]), ScriptedTransport())

    with pytest.raises(UnknownUpload) as excinfo:
        asyncio.run(manager.wait("missing"))

    assert excinfo.value.token == "missing"
    assert "missing" in str(excinfo.value)


def test_undecodable_image_falls_back_to_raw_data_uri() -> None:
    from admin_console.services.previews import build_preview

    preview = build_preview(b"not-an-image", "image/png")

    assert preview is not None
    assert preview.startswith("data:image/png;base64,")
    assert build_preview(b"\x00", "video/mp4") is None
