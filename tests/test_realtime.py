"""Tests for the local and polling change feeds."""

from __future__ import annotations

import asyncio

import pytest

from tasksync.api.exceptions import NetworkError
from tasksync.api.models import TaskDeleted, TaskInserted, TaskUpdated
from tasksync.realtime import LocalChangeFeed, PollingChangeFeed, diff_snapshots
from tests.factories import create_task
from tests.fakes import FakeTaskStore, wait_for_call
from tests.test_api_client_common import ALICE_ID, BOB_ID

POLL_INTERVAL = 0.01
RECEIVE_TIMEOUT = 1.0


class TestLocalChangeFeed:
    """In-process fan-out keyed by owner."""

    @pytest.mark.asyncio
    async def test_publish_reaches_only_owner(self) -> None:
        feed = LocalChangeFeed()
        alice_sub = feed.subscribe(ALICE_ID)
        bob_sub = feed.subscribe(BOB_ID)
        event = TaskInserted(record=create_task())

        delivered = feed.publish(ALICE_ID, event)
        alice_sub.unsubscribe()
        bob_sub.unsubscribe()

        assert delivered == 1
        assert [e async for e in alice_sub] == [event]
        assert [e async for e in bob_sub] == []

    def test_unsubscribe_is_idempotent(self) -> None:
        feed = LocalChangeFeed()
        subscription = feed.subscribe(ALICE_ID)

        subscription.unsubscribe()
        subscription.unsubscribe()

        assert subscription.closed
        assert feed.subscriber_count(ALICE_ID) == 0

    def test_push_after_close_is_refused(self) -> None:
        feed = LocalChangeFeed()
        subscription = feed.subscribe(ALICE_ID)
        subscription.unsubscribe()

        assert subscription.push(TaskDeleted(task_id="t1")) is False
        assert feed.publish(ALICE_ID, TaskDeleted(task_id="t1")) == 0


class TestDiffSnapshots:
    """Snapshot differences become change events."""

    def test_insert_update_delete(self) -> None:
        kept = create_task(task_id="kept")
        changed_before = create_task(task_id="changed", title="before")
        changed_after = create_task(task_id="changed", title="after")
        gone = create_task(task_id="gone")
        new = create_task(task_id="new")

        events = diff_snapshots(
            {"kept": kept, "changed": changed_before, "gone": gone},
            {"kept": kept, "changed": changed_after, "new": new},
        )

        assert events == [
            TaskUpdated(record=changed_after),
            TaskInserted(record=new),
            TaskDeleted(task_id="gone"),
        ]

    def test_identical_snapshots_produce_nothing(self) -> None:
        task = create_task()
        assert diff_snapshots({"task-1": task}, {"task-1": task}) == []


class TestPollingChangeFeed:
    """Polling a connector for changes."""

    def test_rejects_non_positive_interval(self) -> None:
        with pytest.raises(ValueError, match="positive"):
            PollingChangeFeed(FakeTaskStore(), interval_seconds=0)

    @pytest.mark.asyncio
    async def test_changes_after_baseline_are_emitted(self) -> None:
        store = FakeTaskStore()
        store.seed(create_task(task_id="existing"))
        feed = PollingChangeFeed(store, interval_seconds=POLL_INTERVAL)
        subscription = feed.subscribe(ALICE_ID)
        await wait_for_call(store, "list_tasks")

        added = create_task(task_id="added")
        store.seed(added)
        event = await asyncio.wait_for(anext(aiter(subscription)), RECEIVE_TIMEOUT)

        assert event == TaskInserted(record=added)
        await feed.aclose()
        assert feed.active_pollers == 0

    @pytest.mark.asyncio
    async def test_failed_snapshot_is_skipped(self) -> None:
        store = FakeTaskStore()
        store.fail_next("list_tasks", NetworkError())
        feed = PollingChangeFeed(store, interval_seconds=POLL_INTERVAL)
        subscription = feed.subscribe(ALICE_ID)
        await wait_for_call(store, "list_tasks", count=2)

        store.seed(create_task(task_id="added"))
        event = await asyncio.wait_for(anext(aiter(subscription)), RECEIVE_TIMEOUT)

        assert isinstance(event, TaskInserted)
        await feed.aclose()

    @pytest.mark.asyncio
    async def test_unsubscribe_stops_polling(self) -> None:
        store = FakeTaskStore()
        feed = PollingChangeFeed(store, interval_seconds=POLL_INTERVAL)
        subscription = feed.subscribe(ALICE_ID)
        assert feed.active_pollers == 1

        subscription.unsubscribe()

        assert feed.active_pollers == 0
        assert [e async for e in subscription] == []
