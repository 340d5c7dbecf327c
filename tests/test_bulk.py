from __future__ import annotations

import asyncio

import pytest

from admin_console.editing.bulk import (
    BulkAction,
    BulkActionKind,
    BulkItemFailed,
    BulkMutationCoordinator,
    BulkState,
)
from admin_console.editing.errors import EmptySelection, InvalidBulkAction
from admin_console.services.api_client import ApiError


class RecordingTarget:
    def __init__(self, failing=None) -> None:
        self.failing = dict(failing or {})
        self.deleted = []
        self.updated = []

    async def delete(self, record_id):
        await asyncio.sleep(0)
        if record_id in self.failing:
            raise self.failing[record_id]
        self.deleted.append(record_id)

    async def update(self, record_id, partial):
        await asyncio.sleep(0)
        if record_id in self.failing:
            raise self.failing[record_id]
        self.updated.append((record_id, dict(partial)))
        return {"id": record_id, **partial}


def test_partial_failure_is_reported_not_raised() -> None:
    target = RecordingTarget(failing={"u2": ApiError(403, "forbidden")})
    coordinator = BulkMutationCoordinator(target)

    result = asyncio.run(coordinator.run_bulk(["u1", "u2", "u3"], BulkAction.delete()))

    assert result.total == 3
    assert result.succeeded_ids == ("u1", "u3")
    assert result.failed == (BulkItemFailed("u2", "forbidden (HTTP 403)"),)
    assert result.summary() == "2 of 3 succeeded"
    assert sorted(target.deleted) == ["u1", "u3"]
    assert coordinator.state is BulkState.SETTLED
    assert coordinator.last_result is result


def test_every_id_lands_in_exactly_one_bucket() -> None:
    ids = [f"r{index}" for index in range(8)]
    target = RecordingTarget(failing={"r1": RuntimeError(), "r4": ValueError("bad status")})
    coordinator = BulkMutationCoordinator(target)

    result = asyncio.run(coordinator.run_bulk(ids, BulkAction.set_status("archived")))

    assert result.succeeded_count + len(result.failed) == result.total == len(ids)
    assert set(result.succeeded_ids) | set(result.failed_ids) == set(ids)
    assert set(result.succeeded_ids).isdisjoint(result.failed_ids)
    assert dict((item.id, item.reason) for item in result.failed) == {
        "r1": "RuntimeError",
        "r4": "bad status",
    }


def test_set_status_and_activation_send_partial_updates() -> None:
    target = RecordingTarget()
    coordinator = BulkMutationCoordinator(target)

    asyncio.run(coordinator.run_bulk(["a"], BulkAction.set_status("published")))
    asyncio.run(coordinator.run_bulk(["b"], BulkAction.activate()))
    asyncio.run(coordinator.run_bulk(["c"], BulkAction.deactivate()))

    assert target.updated == [
        ("a", {"status": "published"}),
        ("b", {"isActive": True}),
        ("c", {"isActive": False}),
    ]


def test_duplicate_ids_are_applied_once() -> None:
    target = RecordingTarget()
    coordinator = BulkMutationCoordinator(target)

    result = asyncio.run(coordinator.run_bulk(["a", "b", "a"], BulkAction.delete()))

    assert result.total == 2
    assert sorted(target.deleted) == ["a", "b"]


def test_empty_selection_is_rejected() -> None:
    coordinator = BulkMutationCoordinator(RecordingTarget())

    with pytest.raises(EmptySelection):
        asyncio.run(coordinator.run_bulk([], BulkAction.delete()))

    assert coordinator.state is BulkState.IDLE


def test_malformed_actions_fail_before_any_request() -> None:
    target = RecordingTarget()
    coordinator = BulkMutationCoordinator(target)

    with pytest.raises(InvalidBulkAction):
        asyncio.run(coordinator.run_bulk(["a"], BulkAction(BulkActionKind.SET_STATUS, "  ")))
    with pytest.raises(InvalidBulkAction):
        BulkAction.parse("explode")
    with pytest.raises(InvalidBulkAction):
        BulkAction.parse("delete", "now")

    assert target.deleted == []
    assert target.updated == []


def test_parse_accepts_wire_names() -> None:
    assert BulkAction.parse("set-status", "draft") == BulkAction.set_status("draft")
    assert BulkAction.parse("ACTIVATE") == BulkAction.activate()


def test_retry_failed_only_reruns_failures() -> None:
    target = RecordingTarget(failing={"b": ApiError(500, "boom")})
    coordinator = BulkMutationCoordinator(target)
    first = asyncio.run(coordinator.run_bulk(["a", "b"], BulkAction.delete()))

    target.failing.clear()
    second = asyncio.run(coordinator.retry_failed(first))

    assert second.total == 1
    assert second.succeeded_ids == ("b",)
    assert sorted(target.deleted) == ["a", "b"]


def test_second_run_while_running_is_refused() -> None:
    async def scenario():
        gate = asyncio.Event()

        class SlowTarget(RecordingTarget):
            async def delete(self, record_id):
                await gate.wait()

        coordinator = BulkMutationCoordinator(SlowTarget())
        first = asyncio.ensure_future(coordinator.run_bulk(["a"], BulkAction.delete()))
        await asyncio.sleep(0)
        try:
            await coordinator.run_bulk(["b"], BulkAction.delete())
        except RuntimeError as error:
            refused = str(error)
        else:
            refused = None
        gate.set()
        result = await first
        return refused, result

    refused, result = asyncio.run(scenario())

    assert refused == "A bulk action is already running"
    assert result.all_succeeded


def test_every_request_starts_before_any_completes() -> None:
    ids = [f"r{index}" for index in range(5)]

    async def scenario():
        gate = asyncio.Event()
        entered = []
        completed = []
        completed_on_entry = []

        class GatedTarget(RecordingTarget):
            async def delete(self, record_id):
                entered.append(record_id)
                completed_on_entry.append(len(completed))
                if len(entered) == len(ids):
                    gate.set()
                await gate.wait()
                completed.append(record_id)

        coordinator = BulkMutationCoordinator(GatedTarget())
        running = asyncio.ensure_future(coordinator.run_bulk(ids, BulkAction.delete()))
        result = await asyncio.wait_for(running, timeout=5)
        return entered, completed, completed_on_entry, result

    entered, completed, completed_on_entry, result = asyncio.run(scenario())

    assert completed_on_entry == [0] * len(ids)
    assert sorted(entered) == ids
    assert sorted(completed) == ids
    assert result.succeeded_count == len(ids)


def test_single_string_is_not_split_into_characters() -> None:
    target = RecordingTarget()
    coordinator = BulkMutationCoordinator(target)

    with pytest.raises(InvalidBulkAction):
        asyncio.run(coordinator.run_bulk("u1", BulkAction.delete()))
    with pytest.raises(InvalidBulkAction):
        asyncio.run(coordinator.run_bulk(b"u1", BulkAction.delete()))

    assert target.deleted == []
