"""Configuration management with validation.

Bounds are enforced at construction time so a misconfigured reconciler
fails before it issues any remote call.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_API_URL = "https://cloud.materialize.com"

DEFAULT_CREATE_TIMEOUT_SECONDS = 1200
DEFAULT_UPDATE_TIMEOUT_SECONDS = 1200
DEFAULT_DELETE_TIMEOUT_SECONDS = 1200
MIN_OPERATION_TIMEOUT_SECONDS = 1
MAX_OPERATION_TIMEOUT_SECONDS = 7200

DEFAULT_REQUEST_TIMEOUT_SECONDS = 30
MIN_REQUEST_TIMEOUT_SECONDS = 1
MAX_REQUEST_TIMEOUT_SECONDS = 300

DEFAULT_MAX_REQUEST_RETRIES = 3
MAX_REQUEST_RETRIES = 10

# Poll backoff: exponential from the initial delay, capped, with jitter
DEFAULT_POLL_INITIAL_DELAY_SECONDS = 0.5
DEFAULT_POLL_MAX_DELAY_SECONDS = 10.0
DEFAULT_POLL_MULTIPLIER = 2.0
DEFAULT_POLL_JITTER = 0.2

VALID_API_URL_PATTERN = r"^https?://[A-Za-z0-9.-]+(:[0-9]{1,5})?(/.*)?$"


@dataclass(frozen=True)
class BackoffConfig:
    """Poll backoff settings for the convergence loop."""

    initial_delay_seconds: float = DEFAULT_POLL_INITIAL_DELAY_SECONDS
    max_delay_seconds: float = DEFAULT_POLL_MAX_DELAY_SECONDS
    multiplier: float = DEFAULT_POLL_MULTIPLIER

    # Fraction of the computed delay added as random jitter (0.2 => up to +20%)
    jitter: float = DEFAULT_POLL_JITTER

    def validate(self) -> list[str]:
        """Return a list of validation errors (empty if valid)."""
        errors: list[str] = []
        if self.initial_delay_seconds <= 0:
            errors.append("POLL_INITIAL_DELAY must be greater than 0")
        if self.max_delay_seconds < self.initial_delay_seconds:
            errors.append("POLL_MAX_DELAY must be greater than or equal to POLL_INITIAL_DELAY")
        if self.multiplier < 1:
            errors.append("Poll multiplier must be at least 1")
        if not (0 <= self.jitter <= 1):
            errors.append("POLL_JITTER must be between 0 and 1")
        return errors


@dataclass(frozen=True)
class Config:
    """Reconciler configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing mid-operation.

    The access token is deliberately not part of the configuration; it is
    passed per call as a credential (see security.py).
    """

    api_url: str = DEFAULT_API_URL

    # Convergence budgets, one per mutating operation
    create_timeout_seconds: int = DEFAULT_CREATE_TIMEOUT_SECONDS
    update_timeout_seconds: int = DEFAULT_UPDATE_TIMEOUT_SECONDS
    delete_timeout_seconds: int = DEFAULT_DELETE_TIMEOUT_SECONDS

    # Single HTTP request bounds
    request_timeout_seconds: int = DEFAULT_REQUEST_TIMEOUT_SECONDS
    max_request_retries: int = DEFAULT_MAX_REQUEST_RETRIES

    backoff: BackoffConfig = field(default_factory=BackoffConfig)

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        import re

        errors: list[str] = []

        if not self.api_url:
            errors.append("MZCLOUD_API_URL is required")
        elif not re.match(VALID_API_URL_PATTERN, self.api_url):
            errors.append(f"MZCLOUD_API_URL must be an http(s) URL: {self.api_url}")

        for name, value in (
            ("CREATE_TIMEOUT", self.create_timeout_seconds),
            ("UPDATE_TIMEOUT", self.update_timeout_seconds),
            ("DELETE_TIMEOUT", self.delete_timeout_seconds),
        ):
            if not (MIN_OPERATION_TIMEOUT_SECONDS <= value <= MAX_OPERATION_TIMEOUT_SECONDS):
                errors.append(
                    f"{name} must be between {MIN_OPERATION_TIMEOUT_SECONDS} "
                    f"and {MAX_OPERATION_TIMEOUT_SECONDS} seconds"
                )

        if not (
            MIN_REQUEST_TIMEOUT_SECONDS
            <= self.request_timeout_seconds
            <= MAX_REQUEST_TIMEOUT_SECONDS
        ):
            errors.append(
                f"REQUEST_TIMEOUT must be between {MIN_REQUEST_TIMEOUT_SECONDS} "
                f"and {MAX_REQUEST_TIMEOUT_SECONDS} seconds"
            )

        if not (0 <= self.max_request_retries <= MAX_REQUEST_RETRIES):
            errors.append(f"MAX_REQUEST_RETRIES must be between 0 and {MAX_REQUEST_RETRIES}")

        errors.extend(self.backoff.validate())

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            MZCLOUD_API_URL: Base URL of the deployments API
            CREATE_TIMEOUT: Seconds to wait for a new deployment to converge (default: 1200)
            UPDATE_TIMEOUT: Seconds to wait for an update to converge (default: 1200)
            DELETE_TIMEOUT: Seconds to wait for a deletion to complete (default: 1200)
            REQUEST_TIMEOUT: Timeout for a single HTTP request (default: 30)
            MAX_REQUEST_RETRIES: Transport-level retries per request (default: 3)
            POLL_INITIAL_DELAY: First poll backoff delay in seconds (default: 0.5)
            POLL_MAX_DELAY: Poll backoff cap in seconds (default: 10)
            POLL_JITTER: Jitter fraction applied to each poll delay (default: 0.2)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_float(key: str, default: float) -> float:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return float(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be a number: {value}") from e

        return cls(
            api_url=os.environ.get("MZCLOUD_API_URL", DEFAULT_API_URL),
            create_timeout_seconds=get_int("CREATE_TIMEOUT", DEFAULT_CREATE_TIMEOUT_SECONDS),
            update_timeout_seconds=get_int("UPDATE_TIMEOUT", DEFAULT_UPDATE_TIMEOUT_SECONDS),
            delete_timeout_seconds=get_int("DELETE_TIMEOUT", DEFAULT_DELETE_TIMEOUT_SECONDS),
            request_timeout_seconds=get_int("REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT_SECONDS),
            max_request_retries=get_int("MAX_REQUEST_RETRIES", DEFAULT_MAX_REQUEST_RETRIES),
            backoff=BackoffConfig(
                initial_delay_seconds=get_float(
                    "POLL_INITIAL_DELAY", DEFAULT_POLL_INITIAL_DELAY_SECONDS
                ),
                max_delay_seconds=get_float("POLL_MAX_DELAY", DEFAULT_POLL_MAX_DELAY_SECONDS),
                jitter=get_float("POLL_JITTER", DEFAULT_POLL_JITTER),
            ),
        )
