"""Base client for the hosted backend with HTTP plumbing and authentication.

This module provides the BaseClient class containing the HTTP infrastructure,
credential headers, error mapping, rate limiting, and retry logic shared by
the feature mixins (tasks, auth).

Only reads are retried. A write whose reply was lost may already have been
committed, so POST, PATCH and DELETE go out exactly once and every failure is
reported to the caller as-is.
"""

import asyncio
import logging
import types
from dataclasses import dataclass
from typing import Any, NoReturn

import httpx

from tasksync.api.exceptions import (
    AuthenticationError,
    BadRequestError,
    ConflictError,
    NetworkError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
    RemoteError,
    RemoteValidationError,
    RequestTimeoutError,
    ServerError,
    ServiceUnavailableError,
)
from tasksync.config import ClientConfig
from tasksync.rate_limiter import TokenBucketLimiter

# HTTP status code constants
_HTTP_NO_CONTENT = 204
_HTTP_BAD_REQUEST = 400
_HTTP_UNAUTHORIZED = 401
_HTTP_FORBIDDEN = 403
_HTTP_NOT_FOUND = 404
_HTTP_CONFLICT = 409
_HTTP_UNPROCESSABLE_ENTITY = 422
_HTTP_TOO_MANY_REQUESTS = 429
_HTTP_INTERNAL_SERVER_ERROR = 500
_HTTP_BAD_GATEWAY = 502
_HTTP_SERVICE_UNAVAILABLE = 503
_HTTP_TIMEOUT = 524
_HTTP_MAX_SERVER_ERROR = 600

_TRANSIENT_STATUS_CODES = {
    _HTTP_INTERNAL_SERVER_ERROR,
    _HTTP_BAD_GATEWAY,
    _HTTP_SERVICE_UNAVAILABLE,
    _HTTP_TIMEOUT,
}

_READ_METHODS = frozenset({"GET", "HEAD"})
_MUTATING_METHODS = frozenset({"POST", "PATCH", "DELETE"})

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _Attempt:
    """One send of a request and its place in the request's attempt budget."""

    index: int
    limit: int
    method: str
    url: str
    backoff: float

    @property
    def is_last(self) -> bool:
        return self.index >= self.limit - 1

    def log_retry(self, reason: str) -> None:
        logger.warning(
            "%s for %s %s; retrying in %.2fs (attempt %d of %d)",
            reason,
            self.method,
            self.url,
            self.backoff,
            self.index + 1,
            self.limit,
        )


class BaseClient:
    """Base client providing HTTP plumbing and authentication for the backend.

    Every request carries the project key in the ``apikey`` header. The
    ``Authorization`` header carries the signed-in user's access token when
    one is installed via ``set_access_token`` and the project key otherwise.
    """

    def __init__(self, config: ClientConfig) -> None:
        """Initialize the base backend client.

        Args:
            config: Client configuration containing the backend URL and project key
        """
        self._config = config
        self._base_url = str(config.backend_url).rstrip("/")
        self._anon_key = config.anon_key
        self._access_token: str | None = None
        self._http_client: httpx.AsyncClient | None = None

        self._rate_limiter = TokenBucketLimiter(
            rpm=config.rate_limit_rpm, burst=config.rate_limit_burst
        )

    def __str__(self) -> str:
        """Return string representation without exposing credentials."""
        return f"BaseClient(base_url={self._base_url}, key=***redacted***)"

    def __repr__(self) -> str:
        """Return repr without exposing credentials."""
        return f"BaseClient(base_url='{self._base_url}', key='***redacted***')"

    async def __aenter__(self) -> "BaseClient":
        """Async context manager entry."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: types.TracebackType | None,
    ) -> None:
        """Async context manager exit with cleanup."""
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP client if one was created."""
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    def set_access_token(self, access_token: str | None) -> None:
        """Install (or clear with None) the user access token sent with requests."""
        self._access_token = access_token

    @property
    def has_access_token(self) -> bool:
        """Whether requests are currently made on behalf of a signed-in user."""
        return self._access_token is not None

    def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create the shared AsyncClient.

        Connect and read timeouts come from the configuration; the user agent
        is sent on every request.
        """
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(
                    connect=self._config.timeout_connect,
                    read=self._config.timeout_read,
                    write=10.0,
                    pool=10.0,
                ),
                limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
                follow_redirects=True,
                headers={"User-Agent": self._config.http_user_agent},
            )

        return self._http_client

    def _attempt_limit(self, method: str) -> int:
        """Number of sends allowed for a request: reads get the retry budget, writes one."""
        if method in _READ_METHODS:
            return self._config.http_retries + 1
        return 1

    def _retry_or_raise_status(self, error: httpx.HTTPStatusError, attempt: _Attempt) -> None:
        """Log a retry for a transient 5xx reply, or raise the mapped error."""
        status_code = error.response.status_code
        if attempt.is_last or status_code not in _TRANSIENT_STATUS_CODES:
            self._handle_http_error(error)
        attempt.log_retry(f"Backend returned {status_code}")

    def _retry_or_raise_transport(
        self,
        error: httpx.TimeoutException | httpx.NetworkError,
        attempt: _Attempt,
    ) -> None:
        """Log a retry for a timeout or connection failure, or raise it as a RemoteError."""
        timed_out = isinstance(error, httpx.TimeoutException)
        if attempt.is_last:
            if timed_out:
                logger.exception("Request timeout for %s %s", attempt.method, attempt.url)
                raise RequestTimeoutError from error
            logger.exception("Network error for %s %s", attempt.method, attempt.url)
            raise NetworkError from error
        attempt.log_retry("Timeout" if timed_out else "Network error")

    def _get_auth_headers(self) -> dict[str, str]:
        """Get credential headers for the current identity.

        Returns:
            Dict[str, str]: Headers including apikey, Authorization and Content-Type
        """
        bearer = self._access_token or self._anon_key
        return {
            "apikey": self._anon_key,
            "Authorization": f"Bearer {bearer}",
            "Content-Type": "application/json",
        }

    def _get_redacted_headers(self) -> dict[str, str]:
        """Get headers with redacted credentials for logging.

        Returns:
            Dict[str, str]: Headers with redacted key and token
        """
        return {
            "apikey": "***redacted***",
            "Authorization": "Bearer ***redacted***",
            "Content-Type": "application/json",
        }

    @staticmethod
    def _error_detail(error: httpx.HTTPStatusError, default: str) -> str:
        """Extract the backend's human-readable message from an error body."""
        try:
            body = error.response.json()
        except ValueError:
            return default
        if isinstance(body, dict):
            for key in ("message", "msg", "error_description", "error"):
                value = body.get(key)
                if isinstance(value, str) and value:
                    return value
        return default

    def _handle_http_error(self, error: httpx.HTTPStatusError) -> NoReturn:  # noqa: C901
        """Handle HTTP status errors and raise the matching RemoteError subclass.

        Raises:
            BadRequestError: For 400 Bad Request
            AuthenticationError: For 401 Unauthorized
            PermissionDeniedError: For 403 Forbidden
            NotFoundError: For 404 Not Found
            ConflictError: For 409 Conflict
            RemoteValidationError: For 422 Unprocessable Entity
            RateLimitError: For 429 Too Many Requests
            ServiceUnavailableError: For 503 Service Unavailable
            RequestTimeoutError: For 524 Request Timed Out
            ServerError: For other 5xx server errors
            RemoteError: For other HTTP errors
        """
        status_code = error.response.status_code

        if status_code == _HTTP_BAD_REQUEST:
            logger.error("Bad request to backend - invalid parameters")
            raise BadRequestError(self._error_detail(error, "Bad request")) from error
        if status_code == _HTTP_UNAUTHORIZED:
            logger.error("Authentication failed with backend")
            raise AuthenticationError(
                self._error_detail(error, "Authentication failed")
            ) from error
        if status_code == _HTTP_FORBIDDEN:
            logger.error("Backend denied access: %s", error.request.url.path)
            raise PermissionDeniedError from error
        if status_code == _HTTP_NOT_FOUND:
            logger.error("Resource not found: %s", error.request.url.path)
            raise NotFoundError from error
        if status_code == _HTTP_CONFLICT:
            logger.error("Backend reported a conflicting write")
            raise ConflictError(self._error_detail(error, "Conflicting resource state")) from error
        if status_code == _HTTP_UNPROCESSABLE_ENTITY:
            logger.error("Backend validation error - entity not valid")
            raise RemoteValidationError(
                self._error_detail(error, "Entity validation failed")
            ) from error
        if status_code == _HTTP_TOO_MANY_REQUESTS:
            logger.error("Rate limit exceeded for backend")
            raise RateLimitError from error
        if status_code == _HTTP_SERVICE_UNAVAILABLE:
            logger.error("Backend temporarily unavailable")
            raise ServiceUnavailableError from error
        if status_code == _HTTP_TIMEOUT:
            logger.error("Backend request timed out")
            raise RequestTimeoutError(status_code=status_code) from error
        if _HTTP_INTERNAL_SERVER_ERROR <= status_code < _HTTP_MAX_SERVER_ERROR:
            logger.error("Backend server error: %s", status_code)
            raise ServerError("Backend server error", status_code) from error
        logger.error("Backend error: %s", status_code)
        raise RemoteError("Backend error", status_code) from error

    @staticmethod
    def _parse_body(response: httpx.Response, endpoint: str) -> Any:
        """Decode a successful reply; an empty body decodes to ``{}``."""
        if response.status_code == _HTTP_NO_CONTENT or not response.content:
            logger.debug("Successful backend response: %s (No Content)", response.status_code)
            return {}

        logger.debug("Successful backend response: %s", response.status_code)
        try:
            return response.json()
        except ValueError as error:
            raise RemoteError.create_parse_error(endpoint, status=response.status_code) from error

    async def make_request(  # noqa: PLR0913
        self,
        method: str,
        endpoint: str,
        data: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """Make an authenticated request to the backend.

        GET and HEAD are re-sent with exponential backoff after a 500, 502,
        503 or 524 reply, a timeout, or a connection failure, up to
        ``http_retries`` extra times. Writes are sent once.

        Args:
            method: HTTP method (GET, POST, PATCH, DELETE)
            endpoint: API endpoint (without base URL)
            data: JSON data for request body
            params: Query parameters
            headers: Extra request headers (e.g. ``Prefer``)

        Returns:
            Any: Parsed JSON response; ``{}`` for empty bodies

        Raises:
            RemoteError: Any subclass matching the failure (see _handle_http_error),
                NetworkError or RequestTimeoutError for transport failures
        """
        method_upper = method.upper()
        url = f"{self._base_url}/{endpoint.lstrip('/')}"
        limit = self._attempt_limit(method_upper)
        backoff = self._config.http_backoff_start_seconds

        for index in range(limit):
            await self._rate_limiter.acquire()

            if method_upper in _MUTATING_METHODS:
                min_delay = self._config.http_min_mutation_interval_seconds
                if min_delay > 0:
                    await asyncio.sleep(min_delay)

            request_headers = self._get_auth_headers()
            if headers:
                request_headers.update(headers)

            attempt = _Attempt(index, limit, method_upper, url, backoff)
            try:
                logger.debug(
                    "Making %s request to %s with headers: %s",
                    method_upper,
                    url,
                    self._get_redacted_headers(),
                )
                response = await self._get_http_client().request(
                    method=method_upper,
                    url=url,
                    headers=request_headers,
                    json=data,
                    params=params,
                )
                response.raise_for_status()
            except httpx.HTTPStatusError as error:
                self._retry_or_raise_status(error, attempt)
            except (httpx.TimeoutException, httpx.NetworkError) as error:
                self._retry_or_raise_transport(error, attempt)
            except Exception as error:
                logger.exception("Unexpected error during backend request")
                raise RemoteError.create_unexpected_error(method_upper, endpoint) from error
            else:
                return self._parse_body(response, endpoint)

            await asyncio.sleep(backoff)
            backoff *= 2.0

        msg = f"Exhausted retry attempts for {method_upper} {url}"
        logger.error(msg)
        raise RemoteError(msg)
