"""Filtering and sorting of task records for display.

Everything here is pure: inputs are never modified and each call returns a
fresh list.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date
from enum import StrEnum

from tasksync.api.models import Task


class FilterMode(StrEnum):
    """Completion filter applied to the task list."""

    ALL = "all"
    ACTIVE = "active"
    COMPLETED = "completed"


class SortMode(StrEnum):
    """Ordering applied to the task list."""

    CREATED = "created"
    DUE = "due"
    PRIORITY = "priority"


@dataclass(frozen=True, slots=True)
class TaskCounts:
    """Totals over the unfiltered task set."""

    total: int
    active: int
    completed: int


def _matches_search(task: Task, needle: str) -> bool:
    if not needle:
        return True
    if needle in task.title.casefold():
        return True
    return task.description is not None and needle in task.description.casefold()


def _matches_mode(task: Task, mode: FilterMode) -> bool:
    if mode is FilterMode.ACTIVE:
        return not task.completed
    if mode is FilterMode.COMPLETED:
        return task.completed
    return True


def _due_key(task: Task) -> tuple[bool, date]:
    # Undated tasks sort after every dated task
    if task.due_date is None:
        return (True, date.max)
    return (False, task.due_date)


def sort_tasks(tasks: Iterable[Task], sort_mode: SortMode | str) -> list[Task]:
    """Return ``tasks`` ordered by ``sort_mode``.

    - ``created``: newest ``created_at`` first.
    - ``due``: earliest ``due_date`` first, undated tasks last.
    - ``priority``: high, then medium, then low.

    Sorting is stable, so ties keep their input order.
    """
    mode = SortMode(sort_mode)
    if mode is SortMode.DUE:
        return sorted(tasks, key=_due_key)
    if mode is SortMode.PRIORITY:
        return sorted(tasks, key=lambda t: t.priority.rank, reverse=True)
    return sorted(tasks, key=lambda t: t.created_at, reverse=True)


def project(
    tasks: Iterable[Task],
    search_term: str = "",
    filter_mode: FilterMode | str = FilterMode.ALL,
    sort_mode: SortMode | str = SortMode.CREATED,
) -> list[Task]:
    """Derive the displayed task list.

    Args:
        tasks: Source records (not modified)
        search_term: Case-insensitive substring matched against title or description
        filter_mode: ``all``, ``active`` or ``completed``
        sort_mode: ``created``, ``due`` or ``priority``

    Returns:
        list[Task]: Matching tasks in display order

    Raises:
        ValueError: If ``filter_mode`` or ``sort_mode`` is not a known value
    """
    mode = FilterMode(filter_mode)
    needle = search_term.casefold()
    kept = [t for t in tasks if _matches_search(t, needle) and _matches_mode(t, mode)]
    return sort_tasks(kept, sort_mode)


def count_tasks(tasks: Sequence[Task]) -> TaskCounts:
    """Count all, active, and completed tasks."""
    completed = sum(1 for t in tasks if t.completed)
    return TaskCounts(total=len(tasks), active=len(tasks) - completed, completed=completed)
