"""User-visible notifications.

Operations report their outcome through a ``Notifier`` instead of raising
into the presentation layer. ``LoggingNotifier`` is the default sink and
writes notices to the ``tasksync.notifications`` logger.
"""

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol

logger = logging.getLogger(__name__)


class NoticeLevel(StrEnum):
    """Severity of a user-visible notice."""

    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class Notice:
    """A single notification as shown to the user."""

    level: NoticeLevel
    message: str


class Notifier(Protocol):
    """Sink for user-visible success and error messages."""

    def success(self, message: str) -> None: ...

    def error(self, message: str) -> None: ...


class LoggingNotifier:
    """Notifier that writes notices to the log (INFO for success, ERROR for failures)."""

    def __init__(self, notice_logger: logging.Logger | None = None) -> None:
        self._logger = notice_logger or logger

    def success(self, message: str) -> None:
        self._logger.info(message)

    def error(self, message: str) -> None:
        self._logger.error(message)
