"""Tests for identity scoping: responses for a previous identity are discarded."""

from __future__ import annotations

import asyncio

import pytest

from tasksync.api.exceptions import ServerError, StaleSessionError
from tasksync.api.models import AuthEvent, UserIdentity
from tasksync.realtime import LocalChangeFeed
from tasksync.view_model import LoadState, TaskViewModel
from tests.factories import create_task
from tests.fakes import (
    FakeSessionProvider,
    FakeTaskStore,
    RecordingNotifier,
    settle,
    wait_for_call,
)
from tests.test_api_client_common import ALICE_ID, BOB_ID


class TestStaleResponses:
    """Late responses never touch the next identity's state."""

    @pytest.mark.asyncio
    async def test_sign_out_during_pending_load(
        self, view_model: TaskViewModel, store: FakeTaskStore, alice: UserIdentity
    ) -> None:
        """A load that resolves after sign-out is discarded."""
        store.seed(create_task(task_id="a1"))
        gate = store.hold("list_tasks")
        pending = asyncio.create_task(view_model.sign_in(alice))
        await wait_for_call(store, "list_tasks")

        await view_model.sign_out()
        gate.set()
        result = await pending

        assert isinstance(result.error, StaleSessionError)
        assert len(view_model.records) == 0
        assert view_model.load_state is LoadState.IDLE
        assert view_model.user is None

    @pytest.mark.asyncio
    async def test_user_switch_during_pending_load(
        self,
        view_model: TaskViewModel,
        store: FakeTaskStore,
        alice: UserIdentity,
        bob: UserIdentity,
    ) -> None:
        """Alice's late rows never appear in Bob's task set."""
        store.seed(create_task(task_id="a1"), create_task(task_id="b1", owner=BOB_ID))
        gate = store.hold("list_tasks")
        pending = asyncio.create_task(view_model.sign_in(alice))
        await wait_for_call(store, "list_tasks")

        await view_model.sign_in(bob)
        gate.set()
        stale = await pending

        assert isinstance(stale.error, StaleSessionError)
        assert set(view_model.records) == {"b1"}
        assert view_model.load_state is LoadState.READY
        await view_model.close()

    @pytest.mark.asyncio
    async def test_create_resolving_after_sign_out(
        self,
        view_model: TaskViewModel,
        store: FakeTaskStore,
        notifier: RecordingNotifier,
        alice: UserIdentity,
    ) -> None:
        """A confirmed create for a departed identity is dropped silently."""
        await view_model.sign_in(alice)
        gate = store.hold("create_task")
        pending = asyncio.create_task(view_model.create({"title": "Pay rent"}))
        await wait_for_call(store, "create_task")

        await view_model.sign_out()
        gate.set()
        result = await pending
        await settle()

        assert isinstance(result.error, StaleSessionError)
        assert len(view_model.records) == 0
        assert notifier.successes == []

    @pytest.mark.asyncio
    async def test_failure_resolving_after_sign_out_is_not_reported(
        self,
        view_model: TaskViewModel,
        store: FakeTaskStore,
        notifier: RecordingNotifier,
        alice: UserIdentity,
    ) -> None:
        """Errors for a departed identity are not shown to the next one."""
        store.seed(create_task(task_id="a1"))
        await view_model.sign_in(alice)
        gate = store.hold("delete_task")
        store.fail_next("delete_task", ServerError("boom"))
        pending = asyncio.create_task(view_model.remove("a1"))
        await wait_for_call(store, "delete_task")

        await view_model.sign_out()
        gate.set()
        result = await pending

        assert isinstance(result.error, StaleSessionError)
        assert notifier.errors == []

    @pytest.mark.asyncio
    async def test_update_resolving_after_user_switch(
        self,
        view_model: TaskViewModel,
        store: FakeTaskStore,
        alice: UserIdentity,
        bob: UserIdentity,
    ) -> None:
        """Alice's confirmed update is not applied to Bob's set."""
        store.seed(create_task(task_id="a1"))
        await view_model.sign_in(alice)
        gate = store.hold("update_task")
        pending = asyncio.create_task(view_model.toggle_completion("a1", True))  # noqa: FBT003
        await wait_for_call(store, "update_task")

        await view_model.sign_in(bob)
        gate.set()
        result = await pending

        assert isinstance(result.error, StaleSessionError)
        assert "a1" not in view_model.records
        await view_model.close()


class TestSessionProviderIntegration:
    """Following identity changes of a session provider."""

    @pytest.mark.asyncio
    async def test_attach_signs_in_current_user(
        self, view_model: TaskViewModel, store: FakeTaskStore, alice: UserIdentity
    ) -> None:
        """Attaching to a signed-in session loads that user's tasks."""
        store.seed(create_task(task_id="a1"))
        session = FakeSessionProvider(alice)

        await view_model.attach(session)

        assert view_model.user == alice
        assert set(view_model.records) == {"a1"}
        await view_model.close()

    @pytest.mark.asyncio
    async def test_identity_changes_are_followed(
        self,
        view_model: TaskViewModel,
        store: FakeTaskStore,
        feed: LocalChangeFeed,
        alice: UserIdentity,
        bob: UserIdentity,
    ) -> None:
        """Sign-in, user switch, and sign-out all rebind the view model."""
        store.seed(create_task(task_id="a1"), create_task(task_id="b1", owner=BOB_ID))
        session = FakeSessionProvider()
        await view_model.attach(session)
        assert view_model.user is None

        await session.emit(AuthEvent.SIGNED_IN, alice)
        assert set(view_model.records) == {"a1"}

        await session.emit(AuthEvent.SIGNED_IN, bob)
        assert set(view_model.records) == {"b1"}
        assert feed.subscriber_count(ALICE_ID) == 0

        await session.emit(AuthEvent.SIGNED_OUT, None)
        assert len(view_model.records) == 0
        assert feed.subscriber_count(BOB_ID) == 0

    @pytest.mark.asyncio
    async def test_token_refresh_keeps_state(
        self, view_model: TaskViewModel, store: FakeTaskStore, alice: UserIdentity
    ) -> None:
        """A refreshed token for the same user does not reload."""
        session = FakeSessionProvider(alice)
        await view_model.attach(session)

        await session.emit(AuthEvent.TOKEN_REFRESHED, alice)

        assert store.call_count("list_tasks") == 1
        await view_model.close()

    @pytest.mark.asyncio
    async def test_close_detaches_from_session(
        self, view_model: TaskViewModel, alice: UserIdentity
    ) -> None:
        """After close the view model ignores the session."""
        session = FakeSessionProvider(alice)
        await view_model.attach(session)

        await view_model.close()

        assert session.listeners == []
        assert view_model.user is None


class TestOverlappingIdentityChanges:
    """A switch that is still closing the old subscription yields to later changes."""

    @pytest.mark.asyncio
    async def test_sign_out_while_switch_closes_old_subscription(
        self,
        view_model: TaskViewModel,
        store: FakeTaskStore,
        feed: LocalChangeFeed,
        alice: UserIdentity,
        bob: UserIdentity,
    ) -> None:
        """Signing out mid-switch leaves nobody bound and Bob never loaded."""
        store.seed(create_task(task_id="b1", owner=BOB_ID))
        await view_model.sign_in(alice)
        switching = asyncio.create_task(view_model.sign_in(bob))
        await asyncio.sleep(0)

        await view_model.sign_out()
        result = await switching

        assert isinstance(result.error, StaleSessionError)
        assert view_model.user is None
        assert len(view_model.records) == 0
        assert view_model.load_state is LoadState.IDLE
        assert store.call_count("list_tasks") == 1
        assert feed.subscriber_count(BOB_ID) == 0

    @pytest.mark.asyncio
    async def test_later_sign_in_wins_over_pending_switch(
        self,
        view_model: TaskViewModel,
        store: FakeTaskStore,
        feed: LocalChangeFeed,
        alice: UserIdentity,
        bob: UserIdentity,
    ) -> None:
        """The identity requested last is the one left bound, with its records."""
        store.seed(create_task(task_id="a1"), create_task(task_id="b1", owner=BOB_ID))
        await view_model.sign_in(alice)
        switching = asyncio.create_task(view_model.sign_in(bob))
        await asyncio.sleep(0)

        await view_model.sign_in(alice)
        result = await switching

        assert isinstance(result.error, StaleSessionError)
        assert view_model.user == alice
        assert set(view_model.records) == {"a1"}
        assert feed.subscriber_count(ALICE_ID) == 1
        assert feed.subscriber_count(BOB_ID) == 0
        await view_model.close()
