"""Composed backend client.

This module provides the TaskStoreClient class that combines the base HTTP
infrastructure with the task and auth mixins.
"""

from types import TracebackType

from tasksync.api.client_auth import AuthClientMixin
from tasksync.api.client_base import BaseClient
from tasksync.api.client_tasks import TasksClientMixin


class TaskStoreClient(BaseClient, TasksClientMixin, AuthClientMixin):
    """Complete backend client: task table access plus auth calls.

    Satisfies the ``TaskStoreConnector`` protocol used by the view model.
    """

    def __str__(self) -> str:
        """Return string representation without exposing credentials."""
        return f"TaskStoreClient(base_url={self._base_url}, key=***redacted***)"

    def __repr__(self) -> str:
        """Return repr without exposing credentials."""
        return f"TaskStoreClient(base_url='{self._base_url}', key='***redacted***')"

    async def __aenter__(self) -> "TaskStoreClient":
        """Async context manager entry."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Async context manager exit."""
        await super().__aexit__(exc_type, exc_val, exc_tb)


__all__ = ["TaskStoreClient"]
