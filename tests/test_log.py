"""
Tests for logging setup.
"""

import structlog

from agentic_runtime.config import RuntimeSettings
from agentic_runtime.log import configure_logging


def test_configure_logging_json():
    """Test configuring JSON log output."""
    configure_logging(RuntimeSettings(log_format="json", log_level="warning"))

    processors = structlog.get_config()["processors"]

    assert isinstance(processors[-1], structlog.processors.JSONRenderer)


def test_configure_logging_console():
    """Test configuring console log output."""
    configure_logging(RuntimeSettings(log_format="console"))

    processors = structlog.get_config()["processors"]

    assert isinstance(processors[-1], structlog.dev.ConsoleRenderer)
