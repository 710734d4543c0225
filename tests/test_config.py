"""
Tests for configuration module.
"""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from agentic_runtime.config import RetryPolicy, RuntimeSettings, get_settings


def test_settings_default_values():
    """Test that settings have sensible defaults."""
    with patch.dict(os.environ, {}, clear=True):
        settings = RuntimeSettings()

        assert settings.app_name == "agentic-runtime"
        assert settings.max_turns == 20
        assert settings.model_retry_attempts == 3
        assert settings.approval_timeout == 3600.0
        assert settings.parallel_tool_execution is False
        assert settings.fail_fast is False
        assert settings.event_buffer_size == 100
        assert settings.streaming is False
        assert settings.enable_trace is False


def test_settings_from_env():
    """Test loading settings from environment variables."""
    env = {
        "AGENT_MAX_TURNS": "5",
        "AGENT_PARALLEL_TOOL_EXECUTION": "true",
        "AGENT_LOG_LEVEL": "debug",
        "AGENT_LOG_FORMAT": "json",
    }

    with patch.dict(os.environ, env, clear=True):
        settings = RuntimeSettings()

        assert settings.max_turns == 5
        assert settings.parallel_tool_execution is True
        assert settings.log_level == "DEBUG"
        assert settings.log_format == "json"


def test_settings_reject_unknown_log_level():
    """Test that an unknown log level is rejected."""
    with pytest.raises(ValidationError):
        RuntimeSettings(log_level="chatty")


@pytest.mark.parametrize("field", ["max_turns", "model_retry_attempts", "event_buffer_size", "max_context_tokens"])
def test_settings_reject_non_positive(field):
    """Test that budgets and attempts must be positive."""
    with pytest.raises(ValidationError):
        RuntimeSettings(**{field: 0})


def test_settings_reject_negative_delays():
    """Test that negative delays are rejected."""
    with pytest.raises(ValidationError):
        RuntimeSettings(retry_base_delay=-1)


def test_get_retry_policy():
    """Test building the retry policy from settings."""
    settings = RuntimeSettings(
        model_retry_attempts=4,
        retry_base_delay=0.5,
        retry_max_delay=10.0,
        retry_jitter=0.2,
    )

    policy = settings.get_retry_policy()

    assert policy == RetryPolicy(attempts=4, base_delay=0.5, max_delay=10.0, jitter=0.2)


def test_retry_policy_backoff():
    """Test exponential backoff with a cap."""
    policy = RetryPolicy(attempts=5, base_delay=1.0, max_delay=5.0, jitter=0.0)

    assert policy.delay_for(0) == 1.0
    assert policy.delay_for(1) == 2.0
    assert policy.delay_for(2) == 4.0
    assert policy.delay_for(3) == 5.0


def test_retry_policy_jitter():
    """Test that jitter adds at most the configured fraction."""
    policy = RetryPolicy(base_delay=2.0, jitter=0.1)

    assert policy.delay_for(0, rand=0.0) == 2.0
    assert policy.delay_for(0, rand=1.0) == pytest.approx(2.2)


def test_get_settings_is_cached():
    """Test that get_settings returns a cached instance."""
    get_settings.cache_clear()
    try:
        assert get_settings() is get_settings()
    finally:
        get_settings.cache_clear()
