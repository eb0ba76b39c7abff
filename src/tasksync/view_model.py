"""Task view model: the signed-in user's task set and its displayed projection.

The view model owns the in-memory task records for exactly one identity at a
time. It fills them from a ``TaskStoreConnector`` query, keeps them current
from a ``ChangeFeed`` subscription, and applies the results of the user's own
create/update/delete calls once the connector confirms them.

Every connector call is tagged with the session generation that was current
when it was issued. Signing out (or switching user) bumps the generation, so
responses that arrive afterwards are discarded instead of being applied to
the wrong user's records.

Operations never raise into the caller. They emit a notification and return
an ``OperationResult``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from tasksync.api.exceptions import RemoteError, StaleSessionError, TaskValidationError
from tasksync.api.models import (
    AuthEvent,
    ChangeEvent,
    Task,
    TaskCreate,
    TaskDeleted,
    TaskInserted,
    TaskUpdate,
    TaskUpdated,
    UserIdentity,
)
from tasksync.notifications import LoggingNotifier, Notifier
from tasksync.projection import FilterMode, SortMode, TaskCounts, count_tasks, project

if TYPE_CHECKING:
    from tasksync.api.protocols import (
        ChangeFeed,
        SessionProvider,
        Subscription,
        TaskStoreConnector,
    )

logger = logging.getLogger(__name__)

MSG_FETCH_FAILED = "Failed to fetch tasks"
MSG_CREATED = "Task created successfully!"
MSG_CREATE_FAILED = "Failed to create task"
MSG_UPDATED = "Task updated successfully!"
MSG_UPDATE_FAILED = "Failed to update task"
MSG_DELETED = "Task deleted successfully!"
MSG_DELETE_FAILED = "Failed to delete task"


class LoadState(StrEnum):
    """Progress of the initial (or repeated) fill of the task set."""

    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class OperationResult:
    """Definite outcome of a view-model operation."""

    ok: bool
    task: Task | None = None
    error: Exception | None = None

    @classmethod
    def succeeded(cls, task: Task | None = None) -> OperationResult:
        return cls(ok=True, task=task)

    @classmethod
    def failed(cls, error: Exception | None = None) -> OperationResult:
        return cls(ok=False, error=error)

    def __bool__(self) -> bool:
        return self.ok


def _validation_message(error: ValidationError) -> str:
    parts = [
        f"{'.'.join(str(loc) for loc in detail['loc'])}: {detail['msg']}"
        for detail in error.errors()
    ]
    return "Invalid task fields: " + "; ".join(parts)


def _coerce_create(fields: TaskCreate | Mapping[str, Any]) -> TaskCreate:
    if isinstance(fields, TaskCreate):
        payload = fields
    else:
        try:
            payload = TaskCreate.model_validate(dict(fields))
        except ValidationError as e:
            raise TaskValidationError(_validation_message(e)) from e

    title = payload.title.strip()
    if not title:
        raise TaskValidationError.empty_title()
    return payload.model_copy(update={"title": title})


def _coerce_update(fields: TaskUpdate | Mapping[str, Any]) -> TaskUpdate:
    if isinstance(fields, TaskUpdate):
        update = fields
    else:
        try:
            update = TaskUpdate.model_validate(dict(fields))
        except ValidationError as e:
            raise TaskValidationError(_validation_message(e)) from e

    if "title" in update.model_fields_set:
        title = (update.title or "").strip()
        if not title:
            raise TaskValidationError.empty_title()
        update = update.model_copy(update={"title": title})
    return update


class TaskViewModel:
    """In-memory task set for the signed-in user plus its derived projection.

    Args:
        connector: Query and mutation access to the task store
        feed: Source of per-user change subscriptions
        notifier: Sink for user-visible messages (logs them by default)
    """

    def __init__(
        self,
        connector: TaskStoreConnector,
        feed: ChangeFeed,
        notifier: Notifier | None = None,
    ) -> None:
        self._connector = connector
        self._feed = feed
        self._notifier: Notifier = notifier or LoggingNotifier()

        self._records: dict[str, Task] = {}
        self._load_state = LoadState.IDLE
        self._user: UserIdentity | None = None
        self._generation = 0

        self._subscription: Subscription | None = None
        self._pump: asyncio.Task[None] | None = None
        self._detach_session: Callable[[], None] | None = None
        self._change_listeners: list[Callable[[], None]] = []

    def __repr__(self) -> str:
        user_id = self._user.id if self._user else None
        return (
            f"TaskViewModel(user_id={user_id!r}, load_state={self._load_state.value!r}, "
            f"records={len(self._records)})"
        )

    # ---- read-only state ----

    @property
    def records(self) -> Mapping[str, Task]:
        """Read-only view of the task set keyed by id."""
        return MappingProxyType(self._records)

    @property
    def load_state(self) -> LoadState:
        return self._load_state

    @property
    def user(self) -> UserIdentity | None:
        return self._user

    def project(
        self,
        search_term: str = "",
        filter_mode: FilterMode | str = FilterMode.ALL,
        sort_mode: SortMode | str = SortMode.CREATED,
    ) -> list[Task]:
        """Filtered and sorted tasks for display; never modifies the task set."""
        return project(self._records.values(), search_term, filter_mode, sort_mode)

    def counts(self) -> TaskCounts:
        """Totals over the whole task set, ignoring search and filter."""
        return count_tasks(list(self._records.values()))

    def add_change_listener(self, listener: Callable[[], None]) -> Callable[[], None]:
        """Call ``listener`` whenever the task set changes; returns a remover."""
        self._change_listeners.append(listener)

        def remove() -> None:
            if listener in self._change_listeners:
                self._change_listeners.remove(listener)

        return remove

    def _notify_changed(self) -> None:
        for listener in list(self._change_listeners):
            try:
                listener()
            except Exception:
                logger.exception("Task change listener failed")

    # ---- session lifecycle ----

    async def attach(self, session: SessionProvider) -> None:
        """Follow ``session``'s identity: sign in now if someone is, then on every change."""
        if self._detach_session is not None:
            self._detach_session()
        self._detach_session = session.add_listener(self.handle_identity_change)
        if session.current_user is not None:
            await self.sign_in(session.current_user)

    async def handle_identity_change(self, event: AuthEvent, user: UserIdentity | None) -> None:
        """React to a session provider notification."""
        if event is AuthEvent.SIGNED_OUT or user is None:
            await self.sign_out()
            return
        await self.sign_in(user)

    async def sign_in(self, user: UserIdentity) -> OperationResult:
        """Bind the view model to ``user``: subscribe to changes, then load.

        Signing in again as the same identity (e.g. after a token refresh)
        keeps the current records and subscription.
        """
        if self._user is not None and self._user.id == user.id:
            self._user = user
            return OperationResult.succeeded()

        generation = await self._reset()
        if generation != self._generation:
            return self._discarded("sign_in")
        self._user = user
        logger.info("Task view bound to user %s", user.id)
        self._open_subscription(user)
        return await self.load(user)

    async def sign_out(self) -> None:
        """Drop the current identity, its subscription, and all of its records."""
        previous = self._user
        await self._reset()
        if previous is not None:
            logger.info("Task view released user %s", previous.id)
            self._notify_changed()

    async def close(self) -> None:
        """Stop following the session and release the current identity."""
        if self._detach_session is not None:
            self._detach_session()
            self._detach_session = None
        await self.sign_out()

    async def _reset(self) -> int:
        """Invalidate in-flight work and clear state, returning the new generation.

        State is cleared before the old event pump is awaited; a reset that
        finishes late leaves any identity bound in the meantime untouched.
        """
        self._generation += 1
        generation = self._generation
        self._user = None
        self._records = {}
        self._load_state = LoadState.IDLE
        await self._close_subscription()
        return generation

    def _open_subscription(self, user: UserIdentity) -> None:
        subscription = self._feed.subscribe(user.id)
        self._subscription = subscription
        self._pump = asyncio.get_running_loop().create_task(
            self._consume(subscription, self._generation),
            name=f"tasksync-events-{user.id}",
        )

    async def _close_subscription(self) -> None:
        subscription, pump = self._subscription, self._pump
        self._subscription = None
        self._pump = None
        if subscription is not None:
            subscription.unsubscribe()
        if pump is not None and pump is not asyncio.current_task():
            pump.cancel()
            await asyncio.gather(pump, return_exceptions=True)

    async def _consume(self, subscription: Subscription, generation: int) -> None:
        async for event in subscription:
            if generation != self._generation:
                break
            self.apply_remote_event(event)

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation and self._user is not None

    def _discarded(self, operation: str) -> OperationResult:
        logger.info("Discarding %s result: the signed-in identity changed", operation)
        return OperationResult.failed(StaleSessionError())

    def _not_signed_in(self, operation: str) -> OperationResult:
        logger.warning("Ignoring %s: no user is signed in", operation)
        return OperationResult.failed(StaleSessionError("No user is signed in"))

    def _failure(
        self, generation: int, operation: str, message: str, error: Exception
    ) -> OperationResult:
        if not self._is_current(generation):
            return self._discarded(operation)
        if isinstance(error, RemoteError):
            logger.error("%s: %s", message, error)
        else:
            logger.error("%s: unexpected error", message, exc_info=error)
        self._notifier.error(message)
        return OperationResult.failed(error)

    # ---- remote events ----

    def apply_remote_event(self, event: ChangeEvent) -> None:
        """Apply one pushed change to the task set.

        Inserts and updates replace the record under its id (the most recently
        arrived event wins); deletes remove the id if present. Replaying an
        event is harmless. Events for anyone other than the signed-in user are
        dropped.
        """
        user = self._user
        if user is None:
            logger.debug("Dropping %s event: no user is signed in", event.kind)
            return

        if isinstance(event, TaskInserted | TaskUpdated):
            record = event.record
            if record.owner != user.id:
                logger.warning("Dropping %s event for task %s of another user", event.kind, record.id)
                return
            if self._records.get(record.id) == record:
                return
            self._records[record.id] = record
        elif isinstance(event, TaskDeleted):
            if self._records.pop(event.task_id, None) is None:
                return
        else:
            logger.warning("Ignoring unknown change event: %r", event)
            return

        logger.debug("Applied %s event", event.kind)
        self._notify_changed()

    # ---- connector-backed operations ----

    async def load(self, user: UserIdentity | None = None) -> OperationResult:
        """Replace the task set with the store's current rows for ``user``.

        Does nothing when ``user`` is absent or is not the bound identity. On
        failure the previous records stay available and ``load_state``
        becomes ``failed`` until a later load succeeds.
        """
        if user is None:
            logger.debug("Skipping load: no user")
            return OperationResult.failed()
        if self._user is None or self._user.id != user.id:
            return self._not_signed_in("load")

        generation = self._generation
        self._load_state = LoadState.LOADING
        try:
            tasks = await self._connector.list_tasks(user.id)
        except Exception as e:
            result = self._failure(generation, "load", MSG_FETCH_FAILED, e)
            if self._is_current(generation):
                self._load_state = LoadState.FAILED
            return result

        if not self._is_current(generation):
            return self._discarded("load")

        self._records = {task.id: task for task in tasks}
        self._load_state = LoadState.READY
        logger.debug("Loaded %d tasks for user %s", len(tasks), user.id)
        self._notify_changed()
        return OperationResult.succeeded()

    async def refresh(self) -> OperationResult:
        """Reload the bound user's tasks."""
        return await self.load(self._user)

    async def create(self, fields: TaskCreate | Mapping[str, Any]) -> OperationResult:
        """Create a task for the signed-in user.

        A blank title is rejected locally with ``TaskValidationError`` and
        never reaches the store.
        """
        try:
            payload = _coerce_create(fields)
        except TaskValidationError as e:
            logger.info("Rejected task create: %s", e)
            self._notifier.error(str(e))
            return OperationResult.failed(e)

        user = self._user
        if user is None:
            return self._not_signed_in("create")

        generation = self._generation
        try:
            task = await self._connector.create_task(payload, user.id)
        except Exception as e:
            return self._failure(generation, "create", MSG_CREATE_FAILED, e)

        if not self._is_current(generation):
            return self._discarded("create")

        self._records[task.id] = task
        self._notify_changed()
        self._notifier.success(MSG_CREATED)
        return OperationResult.succeeded(task)

    async def update(
        self, task_id: str, fields: TaskUpdate | Mapping[str, Any]
    ) -> OperationResult:
        """Send a partial update; the store decides whether the task exists."""
        try:
            update = _coerce_update(fields)
        except TaskValidationError as e:
            logger.info("Rejected task update for %s: %s", task_id, e)
            self._notifier.error(str(e))
            return OperationResult.failed(e)

        if self._user is None:
            return self._not_signed_in("update")

        generation = self._generation
        try:
            task = await self._connector.update_task(task_id, update)
        except Exception as e:
            return self._failure(generation, "update", MSG_UPDATE_FAILED, e)

        if not self._is_current(generation):
            return self._discarded("update")

        self._records[task.id] = task
        self._notify_changed()
        self._notifier.success(MSG_UPDATED)
        return OperationResult.succeeded(task)

    async def remove(self, task_id: str) -> OperationResult:
        """Delete a task and drop it from the set once the store confirms."""
        if self._user is None:
            return self._not_signed_in("remove")

        generation = self._generation
        try:
            await self._connector.delete_task(task_id)
        except Exception as e:
            return self._failure(generation, "remove", MSG_DELETE_FAILED, e)

        if not self._is_current(generation):
            return self._discarded("remove")

        if self._records.pop(task_id, None) is not None:
            self._notify_changed()
        self._notifier.success(MSG_DELETED)
        return OperationResult.succeeded()

    async def toggle_completion(self, task_id: str, completed: bool) -> OperationResult:  # noqa: FBT001
        """Mark a task done or not done."""
        return await self.update(task_id, TaskUpdate(completed=completed))
