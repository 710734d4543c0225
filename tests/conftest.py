"""
Shared fixtures.
"""

import pytest

from agentic_runtime.config import RuntimeSettings


@pytest.fixture
def settings(tmp_path):
    """Settings with instant retries and a short approval timeout."""
    return RuntimeSettings(
        retry_base_delay=0.0,
        retry_max_delay=0.0,
        retry_jitter=0.0,
        approval_timeout=5.0,
        base_dir=str(tmp_path),
    )
