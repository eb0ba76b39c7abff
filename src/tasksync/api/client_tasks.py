"""Tasks mixin for the backend client.

This module provides the TasksClientMixin class containing the task table
operations (query, create, update, delete) composed with BaseClient.

The backend exposes the table through a REST interface where rows are
selected with ``column=eq.value`` filters and writes return the affected
rows when asked to with ``Prefer: return=representation``.
"""

import json
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, cast

from tasksync.api.exceptions import NotFoundError, RemoteError
from tasksync.api.models import Task, TaskCreate, TaskUpdate

if TYPE_CHECKING:
    from tasksync.api.protocols import BaseClientProtocol

logger = logging.getLogger(__name__)

_TASKS_ENDPOINT = "rest/v1/tasks"
_RETURN_REPRESENTATION = {"Prefer": "return=representation"}


class TasksClientMixin:
    """Mixin providing task-table operations for the backend client."""

    def _get_base_client(self) -> "BaseClientProtocol":
        """Get type-safe access to base client methods."""
        return cast("BaseClientProtocol", self)

    @staticmethod
    def _parse_task_rows(response_data: Any, endpoint: str) -> list[Task]:
        """Parse a list of task rows with error handling."""
        if not isinstance(response_data, list):
            raise RemoteError.create_parse_error(endpoint, detail="expected a list of rows")
        rows = cast(list[dict[str, Any]], response_data)
        try:
            return [Task.model_validate(row) for row in rows]
        except Exception as e:
            logger.exception("Failed to parse task rows")
            raise RemoteError.create_parse_error(endpoint, row_count=len(rows)) from e

    def _single_task(self, response_data: Any, endpoint: str, task_id: str | None) -> Task:
        """Return the only row of a write representation."""
        tasks = self._parse_task_rows(response_data, endpoint)
        if not tasks:
            if task_id is None:
                raise RemoteError.create_parse_error(endpoint, detail="empty representation")
            raise NotFoundError.task(task_id)
        return tasks[0]

    async def list_tasks(self, owner_id: str) -> list[Task]:
        """Retrieve every task owned by ``owner_id``, newest first.

        Args:
            owner_id: The owning user's identifier

        Returns:
            list[Task]: Task rows ordered by created_at descending

        Raises:
            RemoteError: Any backend failure
        """
        params = {
            "select": "*",
            "user_id": f"eq.{owner_id}",
            "order": "created_at.desc",
        }
        response_data = await self._get_base_client().make_request(
            "GET", _TASKS_ENDPOINT, params=params
        )
        tasks = self._parse_task_rows(response_data, _TASKS_ENDPOINT)
        logger.debug("Successfully retrieved %d tasks", len(tasks))
        return tasks

    async def create_task(self, payload: TaskCreate, owner_id: str) -> Task:
        """Create a task owned by ``owner_id``.

        Args:
            payload: Fields of the new task
            owner_id: The owning user's identifier

        Returns:
            Task: The stored row with its assigned id and timestamps

        Raises:
            RemoteError: Any backend failure
        """
        # model_dump_json serializes dates; parse back to a dict for the request body
        json_data = json.loads(payload.model_dump_json())
        json_data["user_id"] = owner_id

        response_data = await self._get_base_client().make_request(
            "POST", _TASKS_ENDPOINT, data=json_data, headers=_RETURN_REPRESENTATION
        )
        task = self._single_task(response_data, _TASKS_ENDPOINT, None)
        logger.debug("Successfully created task: %s", task.id)
        return task

    async def update_task(self, task_id: str, update: TaskUpdate) -> Task:
        """Apply a partial update to a task.

        Only explicitly set fields are sent, together with a refreshed
        ``updated_at``.

        Args:
            task_id: The task to update
            update: Fields to change

        Returns:
            Task: The stored row after the update

        Raises:
            NotFoundError: No visible row has this id
            RemoteError: Any other backend failure
        """
        json_data = json.loads(update.model_dump_json(exclude_unset=True))
        json_data["updated_at"] = datetime.now(UTC).isoformat()

        response_data = await self._get_base_client().make_request(
            "PATCH",
            _TASKS_ENDPOINT,
            data=json_data,
            params={"id": f"eq.{task_id}"},
            headers=_RETURN_REPRESENTATION,
        )
        task = self._single_task(response_data, _TASKS_ENDPOINT, task_id)
        logger.debug("Successfully updated task: %s", task.id)
        return task

    async def delete_task(self, task_id: str) -> bool:
        """Delete a task.

        Args:
            task_id: The task to delete

        Returns:
            bool: True if deletion succeeded

        Raises:
            NotFoundError: No visible row has this id
            RemoteError: Any other backend failure
        """
        response_data = await self._get_base_client().make_request(
            "DELETE",
            _TASKS_ENDPOINT,
            params={"id": f"eq.{task_id}"},
            headers=_RETURN_REPRESENTATION,
        )
        # A 204 (no representation) still means the row is gone
        if isinstance(response_data, list) and not response_data:
            raise NotFoundError.task(task_id)

        logger.debug("Successfully deleted task: %s", task_id)
        return True
