"""Data models for task records, payloads, identities, and change events.

Task records are immutable once parsed: the view model replaces records
wholesale instead of editing them in place, so a projection handed to a
caller can never be changed behind the view model's back.

Request payloads (`TaskCreate`, `TaskUpdate`) reject unknown fields and
serialize enums as their string values.
"""

from __future__ import annotations

from collections.abc import Mapping, MutableMapping
from datetime import date, datetime
from enum import StrEnum
from typing import Annotated, Any, Literal, cast

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic.config import ConfigDict

# Length of an ISO date string ("YYYY-MM-DD")
_ISO_DATE_LENGTH = 10


class TaskPriority(StrEnum):
    """Priority levels accepted by the tasks table."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        """Numeric rank used for ordering (high=3, medium=2, low=1)."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    TaskPriority.LOW: 1,
    TaskPriority.MEDIUM: 2,
    TaskPriority.HIGH: 3,
}


def _coerce_date(value: object) -> object:
    """Accept timestamp strings for date-only columns by keeping the date part."""
    if isinstance(value, str) and len(value) > _ISO_DATE_LENGTH:
        return datetime.fromisoformat(value).date()
    if isinstance(value, datetime):
        return value.date()
    return value


class Task(BaseModel):
    """A task row as returned by the backend.

    The wire name of the owning user column is ``user_id``; in Python it is
    exposed as ``owner``. Both names are accepted on input.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(description="Store-assigned task identifier")
    title: str = Field(description="Task title")
    description: str | None = Field(default=None, description="Optional free-form details")
    completed: bool = Field(default=False, description="Whether the task is done")
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM, description="Task priority")
    due_date: date | None = Field(default=None, description="Optional due date (date only)")
    created_at: datetime = Field(description="Creation timestamp")
    updated_at: datetime = Field(description="Last update timestamp")
    owner: str = Field(alias="user_id", description="ID of the user owning the task")

    @field_validator("due_date", mode="before")
    @classmethod
    def _normalize_due_date(cls, value: object) -> object:
        return _coerce_date(value)


class TaskCreate(BaseModel):
    """Request model for creating a task.

    The owner is not part of the payload; the connector adds it from the
    identity the create was issued for.
    """

    model_config = ConfigDict(use_enum_values=True, extra="forbid")

    title: str = Field(description="Task title (must not be blank)")
    description: str | None = Field(default=None, description="Optional details")
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM, description="Task priority")
    due_date: date | None = Field(default=None, description="Optional due date")
    completed: bool = Field(default=False, description="New tasks start open")

    @field_validator("due_date", mode="before")
    @classmethod
    def _normalize_due_date(cls, value: object) -> object:
        return _coerce_date(value)


class TaskUpdate(BaseModel):
    """Partial update payload for an existing task.

    Only fields that were explicitly provided are serialized
    (``model_dump(exclude_unset=True)``), so an explicit ``None`` clears an
    optional column while an omitted field leaves it untouched.
    """

    model_config = ConfigDict(use_enum_values=True, extra="forbid")

    title: str | None = Field(default=None, description="New title")
    description: str | None = Field(default=None, description="New description, None clears")
    completed: bool | None = Field(default=None, description="New completion state")
    priority: TaskPriority | None = Field(default=None, description="New priority")
    due_date: date | None = Field(default=None, description="New due date, None clears")

    @field_validator("due_date", mode="before")
    @classmethod
    def _normalize_due_date(cls, value: object) -> object:
        return _coerce_date(value)


class AuthEvent(StrEnum):
    """Identity-change notifications emitted by the session provider."""

    SIGNED_IN = "signed_in"
    SIGNED_OUT = "signed_out"
    TOKEN_REFRESHED = "token_refreshed"


class UserIdentity(BaseModel):
    """The authenticated user as reported by the auth endpoints."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="User identifier (UUID)")
    email: str | None = Field(default=None, description="Account email")
    full_name: str | None = Field(default=None, description="Display name from user metadata")

    @model_validator(mode="before")
    @classmethod
    def _lift_full_name(cls, data: object) -> object:
        """Read ``full_name`` from ``user_metadata`` when it is not given directly."""
        if not isinstance(data, MutableMapping):
            return data

        normalized = dict(cast(Mapping[str, Any], data))
        metadata = normalized.pop("user_metadata", None)
        if "full_name" not in normalized and isinstance(metadata, Mapping):
            normalized["full_name"] = cast(Mapping[str, Any], metadata).get("full_name")
        return {key: normalized[key] for key in ("id", "email", "full_name") if key in normalized}


class AuthSession(BaseModel):
    """Token set returned by a successful sign-in, sign-up, or refresh."""

    model_config = ConfigDict(frozen=True)

    access_token: str = Field(description="Bearer token for authenticated requests")
    refresh_token: str | None = Field(default=None, description="Token used to renew the session")
    expires_in: int | None = Field(default=None, description="Access token lifetime in seconds")
    token_type: str = Field(default="bearer", description="Token type")
    user: UserIdentity = Field(description="The signed-in user")

    def __repr__(self) -> str:
        return f"AuthSession(user_id='{self.user.id}', access_token='***redacted***')"

    __str__ = __repr__


class TaskInserted(BaseModel):
    """A task row appeared for the subscribed user."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["inserted"] = "inserted"
    record: Task


class TaskUpdated(BaseModel):
    """A task row changed; carries the full new row."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["updated"] = "updated"
    record: Task


class TaskDeleted(BaseModel):
    """A task row was removed."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["deleted"] = "deleted"
    task_id: str


ChangeEvent = Annotated[TaskInserted | TaskUpdated | TaskDeleted, Field(discriminator="kind")]
