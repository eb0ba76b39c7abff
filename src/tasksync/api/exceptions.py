"""Exceptions raised by the tasksync client.

Two families exist:

- ``TaskValidationError`` for input the client can reject on its own (it is
  never sent to the backend).
- ``RemoteError`` and its subclasses for failures reported by, or while
  talking to, the hosted backend.

Messages must never include access tokens or API keys.
"""


class TaskValidationError(ValueError):
    """Raised when task fields fail client-side validation."""

    @classmethod
    def empty_title(cls) -> "TaskValidationError":
        """Create an error for a missing or blank task title.

        Returns:
            TaskValidationError for an empty title
        """
        return cls("Task title is required")


class RemoteError(Exception):
    """Base exception for all backend errors.

    Carries the HTTP status code when one was received.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        """Initialize backend error.

        Args:
            message: Error message (must not contain credentials)
            status_code: HTTP status code if applicable
        """
        self.status_code = status_code
        super().__init__(message)

    @classmethod
    def create_unexpected_error(cls, method: str, endpoint: str) -> "RemoteError":
        """Create an error for unexpected failures with safe context.

        Args:
            method: HTTP method used
            endpoint: API endpoint called

        Returns:
            RemoteError with contextual message
        """
        safe_context = f"method={method}, endpoint={endpoint}, status_unknown"
        return cls(f"Unexpected backend error ({safe_context})")

    @classmethod
    def create_parse_error(cls, endpoint: str, **context: str | int) -> "RemoteError":
        """Create an error for response parsing failures with safe context.

        Args:
            endpoint: API endpoint that failed
            **context: Additional safe context information

        Returns:
            RemoteError with contextual message
        """
        context_parts = [f"endpoint={endpoint}"]
        context_parts.extend(f"{key}={value}" for key, value in context.items())
        safe_context = ", ".join(context_parts)
        return cls(f"Failed to parse response ({safe_context})")


class BadRequestError(RemoteError):
    """Raised when request parameters are invalid or malformed (400 Bad Request)."""

    def __init__(self, message: str = "Bad request - invalid parameters") -> None:
        super().__init__(message, status_code=400)


class AuthenticationError(RemoteError):
    """Raised when authentication fails (401 Unauthorized)."""

    def __init__(self, message: str = "Authentication failed") -> None:
        super().__init__(message, status_code=401)


class PermissionDeniedError(RemoteError):
    """Raised when the signed-in user may not touch a resource (403 Forbidden)."""

    def __init__(self, message: str = "Permission denied") -> None:
        super().__init__(message, status_code=403)


class NotFoundError(RemoteError):
    """Raised when a resource does not exist or is not visible to the user."""

    def __init__(self, message: str = "Resource not found") -> None:
        super().__init__(message, status_code=404)

    @classmethod
    def task(cls, task_id: str) -> "NotFoundError":
        """Create an error for a task id the backend did not match.

        Args:
            task_id: The task identifier that matched no row

        Returns:
            NotFoundError naming the task
        """
        return cls(f"Task not found: {task_id}")


class ConflictError(RemoteError):
    """Raised when a write violates a uniqueness or state constraint (409 Conflict)."""

    def __init__(self, message: str = "Conflicting resource state") -> None:
        super().__init__(message, status_code=409)


class RemoteValidationError(RemoteError):
    """Raised when the backend rejects an entity (422 Unprocessable Entity)."""

    def __init__(self, message: str = "Entity validation failed") -> None:
        super().__init__(message, status_code=422)


class RateLimitError(RemoteError):
    """Raised when rate limit is exceeded (429 Too Many Requests)."""

    def __init__(self, message: str = "Rate limit exceeded") -> None:
        super().__init__(message, status_code=429)


class ServerError(RemoteError):
    """Raised when the backend returns a 5xx error."""

    def __init__(self, message: str, status_code: int = 500) -> None:
        super().__init__(message, status_code=status_code)


class ServiceUnavailableError(RemoteError):
    """Raised when the backend is temporarily unavailable (503 Service Unavailable)."""

    def __init__(self, message: str = "Service temporarily unavailable") -> None:
        super().__init__(message, status_code=503)


class NetworkError(RemoteError):
    """Raised when network operations fail."""

    def __init__(self, message: str = "Network error occurred") -> None:
        super().__init__(message, status_code=None)


class RequestTimeoutError(RemoteError):
    """Raised when requests time out (client timeouts or 524 server timeout)."""

    def __init__(self, message: str = "Request timeout", status_code: int | None = None) -> None:
        super().__init__(message, status_code=status_code)


class StaleSessionError(Exception):
    """Raised when a response arrives for an identity that is no longer signed in."""

    def __init__(self, message: str = "Session changed before the response arrived") -> None:
        super().__init__(message)
