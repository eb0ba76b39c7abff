"""Configuration module for the tasksync client.

This module provides the ClientConfig Pydantic model for managing client
configuration from files, command-line arguments, and defaults.
"""

from importlib.metadata import version
from typing import Any, Literal

from pydantic import BaseModel, Field, HttpUrl, field_validator

_REDACTED = "***redacted***"


class ClientConfig(BaseModel):
    """Client configuration model with validation and default values.

    Holds the backend location and project key, optional account credentials
    for non-interactive sign-in, HTTP tuning, realtime polling cadence, and
    the logging level.
    """

    backend_url: HttpUrl = Field(
        ...,
        description="Base URL of the hosted backend project (REST and auth endpoints)",
    )

    anon_key: str = Field(
        ...,
        min_length=1,
        description="Public project API key sent with every request",
    )

    account_email: str | None = Field(
        default=None,
        description="Email used for non-interactive sign-in",
    )

    account_password: str | None = Field(
        default=None,
        description="Password used for non-interactive sign-in",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level for the application",
    )

    config_file: str | None = Field(
        default=None,
        description="Path to configuration file",
    )

    rate_limit_rpm: int = Field(
        default=120,
        ge=1,
        le=10000,
        description="Rate limit: requests per minute",
    )

    rate_limit_burst: int = Field(
        default=20,
        ge=1,
        le=100,
        description="Rate limit: burst capacity",
    )

    http_retries: int = Field(
        default=2,
        ge=0,
        le=5,
        description="HTTP client retry count for transient failures",
    )

    http_backoff_start_seconds: float = Field(
        default=0.25,
        ge=0.0,
        le=10.0,
        description="HTTP client backoff start time in seconds",
    )

    http_min_mutation_interval_seconds: float = Field(
        default=0.0,
        ge=0.0,
        le=5.0,
        description="Minimum delay before mutating HTTP requests (POST/PATCH/DELETE) in seconds",
    )

    http_user_agent: str = Field(
        default_factory=lambda: f"tasksync/{version('tasksync')}",
        description="HTTP client User-Agent header",
    )

    timeout_connect: float = Field(
        default=5.0,
        ge=1.0,
        le=30.0,
        description="HTTP connection timeout in seconds",
    )

    timeout_read: float = Field(
        default=30.0,
        ge=5.0,
        le=120.0,
        description="HTTP read timeout in seconds",
    )

    poll_interval_seconds: float = Field(
        default=5.0,
        ge=0.5,
        le=300.0,
        description="Interval between snapshots taken by the polling change feed",
    )

    @field_validator("backend_url")
    @classmethod
    def validate_https_url(cls, v: HttpUrl) -> HttpUrl:
        """Validate that the backend URL uses HTTPS protocol.

        Args:
            v: The URL value to validate.

        Returns:
            HttpUrl: The validated HTTPS URL.

        Raises:
            ValueError: If the URL does not use HTTPS protocol.
        """
        if v.scheme != "https":
            msg = "URL must use HTTPS"
            raise ValueError(msg)
        return v

    def to_redacted_dict(self) -> dict[str, Any]:
        """Return a dictionary representation with secrets redacted for logging."""
        config_dict = self.model_dump()
        config_dict["anon_key"] = _REDACTED
        if config_dict["account_password"] is not None:
            config_dict["account_password"] = _REDACTED
        config_dict["backend_url"] = str(config_dict["backend_url"])
        return config_dict
