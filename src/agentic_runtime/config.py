"""
Configuration management for agentic-runtime

Uses pydantic-settings for environment variable parsing and validation.
"""

import tempfile
from dataclasses import dataclass
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff for transient model failures."""

    attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.1

    def delay_for(self, attempt: int, rand: float = 0.0) -> float:
        """Delay before retry number ``attempt + 1`` (attempt is zero-based)."""
        delay = min(self.base_delay * (2 ** attempt), self.max_delay)
        return delay + delay * self.jitter * rand


class RuntimeSettings(BaseSettings):
    """Main runtime settings."""

    model_config = SettingsConfigDict(
        env_prefix="AGENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
    )

    # Application
    app_name: str = "agentic-runtime"
    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"

    # Turn loop
    max_turns: int = Field(default=20, description="Maximum model calls per run")
    streaming: bool = Field(default=False, description="Use the streaming model variant")

    # Retries
    model_retry_attempts: int = Field(default=3, description="Total attempts per model call")
    retry_base_delay: float = Field(default=1.0, description="First backoff delay in seconds")
    retry_max_delay: float = Field(default=30.0, description="Backoff cap in seconds")
    retry_jitter: float = Field(default=0.1, description="Jitter as a fraction of the delay")

    # Tools
    approval_timeout: float = Field(default=3600.0, description="Seconds before a pending approval is denied")
    parallel_tool_execution: bool = False
    fail_fast: bool = Field(default=False, description="Tool failures end the run")

    # Events
    event_buffer_size: int = Field(default=100, description="Bounded event stream capacity")

    # Context
    max_context_tokens: int = Field(default=100_000, description="Prompt token budget")
    history_carry_turns: int = Field(default=20, description="Prior turns carried verbatim")

    # Observability
    enable_evaluation: bool = False
    enable_trace: bool = False
    trace_buffer_size: int = 1000
    base_dir: str = Field(default_factory=tempfile.gettempdir)

    @field_validator("log_level", mode="before")
    @classmethod
    def parse_log_level(cls, v: str) -> str:
        level = str(v).strip().upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"unknown log level: {v}")
        return level

    @field_validator(
        "max_turns",
        "model_retry_attempts",
        "event_buffer_size",
        "max_context_tokens",
        "history_carry_turns",
        "trace_buffer_size",
    )
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @field_validator("retry_base_delay", "retry_max_delay", "retry_jitter", "approval_timeout")
    @classmethod
    def must_not_be_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("must not be negative")
        return v

    def get_retry_policy(self) -> RetryPolicy:
        """Get the retry policy for model calls."""
        return RetryPolicy(
            attempts=self.model_retry_attempts,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
            jitter=self.retry_jitter,
        )


@lru_cache
def get_settings() -> RuntimeSettings:
    """Get cached settings instance."""
    return RuntimeSettings()
