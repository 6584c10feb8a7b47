"""Pytest configuration and shared fixtures.

Usage Guide:
- For pacer and pipeline tests: use fast_pacing so refills take milliseconds
- For pipeline and client tests: import ScriptedTransport from tests.fixtures
- For log assertions: use recording_logger and inspect its records
"""

from collections.abc import Generator

import pytest

from htb_client.config import PacingConfig, RetrySettings, get_settings
from htb_client.transport import DefaultRetryPolicy, RetryConfig
from tests.fixtures import RecordingLogger
from tests.fixtures.tokens import TEST_TOKEN


# -----------------------------------------------------------------------------
# Settings Isolation
# -----------------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Keep the developer's environment out of cached settings."""
    monkeypatch.delenv("HTB_TOKEN", raising=False)
    monkeypatch.delenv("HTB_SERVER", raising=False)
    monkeypatch.delenv("USER_AGENT", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# -----------------------------------------------------------------------------
# Transport Fixtures
# -----------------------------------------------------------------------------
@pytest.fixture
def jwt_token() -> str:
    """A token that passes client-side validation."""
    return TEST_TOKEN


@pytest.fixture
def fast_pacing() -> PacingConfig:
    """Pacing with a large burst and millisecond refills."""
    return PacingConfig(burst_size=50, refill_interval_ms=5, edge_pause_seconds=0.05)


@pytest.fixture
def instant_retry() -> RetryConfig:
    """Four attempts with zero backoff between them."""
    settings = RetrySettings(max_attempts=4, base_delay_seconds=0.0, jitter_fraction=0.0)
    return RetryConfig.from_settings(settings)


@pytest.fixture
def recording_logger() -> RecordingLogger:
    """Logger that keeps records for assertions."""
    return RecordingLogger()


@pytest.fixture
def default_policy() -> DefaultRetryPolicy:
    """Default retry policy without jitter."""
    return DefaultRetryPolicy(RetrySettings(jitter_fraction=0.0))
