"""Protocol definitions for the collaborators of the task view model.

The view model depends on these protocols rather than on the HTTP client,
the auth session manager, or a specific realtime transport, so each can be
replaced by an in-process fake in tests.
"""

from collections.abc import AsyncIterator, Callable
from typing import Any, Protocol

from tasksync.api.models import AuthEvent, ChangeEvent, Task, TaskCreate, TaskUpdate, UserIdentity


class BaseClientProtocol(Protocol):
    """Interface that client mixins rely on from the base client."""

    async def make_request(
        self,
        method: str,
        endpoint: str,
        data: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """Make an authenticated request to the backend.

        Args:
            method: HTTP method (GET, POST, PATCH, DELETE)
            endpoint: API endpoint (without base URL)
            data: JSON data for request body
            params: Query parameters
            headers: Extra request headers

        Returns:
            Any: Parsed JSON response ({} for empty bodies)
        """
        ...

    def set_access_token(self, access_token: str | None) -> None:
        """Install or clear the user access token used for requests."""
        ...


class TaskStoreConnector(Protocol):
    """Point-in-time query and mutation of one user's tasks."""

    async def list_tasks(self, owner_id: str) -> list[Task]:
        """Return all tasks owned by ``owner_id``, newest first."""
        ...

    async def create_task(self, payload: TaskCreate, owner_id: str) -> Task:
        """Create a task owned by ``owner_id`` and return the stored row."""
        ...

    async def update_task(self, task_id: str, update: TaskUpdate) -> Task:
        """Apply a partial update and return the stored row."""
        ...

    async def delete_task(self, task_id: str) -> bool:
        """Delete a task; returns True on success."""
        ...


class Subscription(Protocol):
    """A live stream of change events for one user."""

    def __aiter__(self) -> AsyncIterator[ChangeEvent]: ...

    def unsubscribe(self) -> None:
        """Stop delivery; iteration ends once pending events are drained."""
        ...

    @property
    def closed(self) -> bool: ...


class ChangeFeed(Protocol):
    """Source of per-user change subscriptions."""

    def subscribe(self, owner_id: str) -> Subscription:
        """Open a subscription restricted to ``owner_id``'s tasks."""
        ...


# Listeners may be plain callables or coroutine functions.
IdentityListener = Callable[[AuthEvent, UserIdentity | None], Any]


class SessionProvider(Protocol):
    """Supplies the signed-in identity and notifies on identity changes."""

    @property
    def current_user(self) -> UserIdentity | None: ...

    def add_listener(self, listener: IdentityListener) -> Callable[[], None]:
        """Register ``listener``; returns a callable that removes it."""
        ...
