"""Tests for configuration loading."""

import os
from unittest.mock import patch

import pytest

from mzoperator.config import (
    DEFAULT_API_URL,
    DEFAULT_CREATE_TIMEOUT_SECONDS,
    BackoffConfig,
    Config,
    ConfigurationError,
)


class TestConfig:
    """Tests for Config class."""

    def test_defaults(self) -> None:
        """Test that the default configuration is valid."""
        config = Config()

        assert config.api_url == DEFAULT_API_URL
        assert config.create_timeout_seconds == DEFAULT_CREATE_TIMEOUT_SECONDS
        assert config.backoff.initial_delay_seconds == 0.5
        assert config.backoff.max_delay_seconds == 10.0

    def test_invalid_api_url(self) -> None:
        """Test that a non-http URL raises error."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(api_url="ftp://cloud.materialize.com")

        assert "MZCLOUD_API_URL" in str(exc_info.value)

    def test_empty_api_url(self) -> None:
        """Test that an empty URL raises error."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(api_url="")

        assert "MZCLOUD_API_URL is required" in str(exc_info.value)

    def test_invalid_timeouts(self) -> None:
        """Test that out-of-range operation timeouts raise error."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(create_timeout_seconds=0, delete_timeout_seconds=10_000)

        message = str(exc_info.value)
        assert "CREATE_TIMEOUT" in message
        assert "DELETE_TIMEOUT" in message
        assert "UPDATE_TIMEOUT" not in message

    def test_invalid_request_timeout(self) -> None:
        """Test that out-of-range request timeout raises error."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(request_timeout_seconds=301)

        assert "REQUEST_TIMEOUT" in str(exc_info.value)

    def test_invalid_retries(self) -> None:
        """Test that negative retries raise error."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(max_request_retries=-1)

        assert "MAX_REQUEST_RETRIES" in str(exc_info.value)

    def test_invalid_backoff(self) -> None:
        """Test that backoff errors are reported together."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(backoff=BackoffConfig(initial_delay_seconds=5, max_delay_seconds=1, jitter=2))

        message = str(exc_info.value)
        assert "POLL_MAX_DELAY" in message
        assert "POLL_JITTER" in message

    def test_from_env(self) -> None:
        """Test loading configuration from environment."""
        env = {
            "MZCLOUD_API_URL": "http://localhost:8000",
            "CREATE_TIMEOUT": "60",
            "DELETE_TIMEOUT": "90",
            "POLL_INITIAL_DELAY": "0.1",
            "POLL_JITTER": "0",
        }

        with patch.dict(os.environ, env, clear=True):
            config = Config.from_env()

        assert config.api_url == "http://localhost:8000"
        assert config.create_timeout_seconds == 60
        assert config.update_timeout_seconds == DEFAULT_CREATE_TIMEOUT_SECONDS
        assert config.delete_timeout_seconds == 90
        assert config.backoff.initial_delay_seconds == 0.1
        assert config.backoff.jitter == 0.0

    def test_from_env_invalid_integer(self) -> None:
        """Test that a non-integer timeout raises error."""
        with patch.dict(os.environ, {"UPDATE_TIMEOUT": "soon"}, clear=True):
            with pytest.raises(ConfigurationError) as exc_info:
                Config.from_env()

        assert "UPDATE_TIMEOUT must be an integer" in str(exc_info.value)

    def test_from_env_invalid_float(self) -> None:
        """Test that a non-numeric poll delay raises error."""
        with patch.dict(os.environ, {"POLL_MAX_DELAY": "fast"}, clear=True):
            with pytest.raises(ConfigurationError) as exc_info:
                Config.from_env()

        assert "POLL_MAX_DELAY must be a number" in str(exc_info.value)
