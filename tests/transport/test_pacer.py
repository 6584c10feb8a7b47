"""Unit tests for RequestPacer class.

These tests verify the token budget, time-based refill, server header
overrides and the global pause after a Cloudflare 429.
"""

import asyncio
import time
from datetime import UTC, datetime

import httpx
import pytest

from htb_client.config import PacingConfig
from htb_client.exceptions import ContextCanceledError, DeadlineExceededError
from htb_client.logging import NoopLogger
from htb_client.transport.context import Context
from htb_client.transport.pacer import RequestPacer
from htb_client.transport.schemas import PacerState
from tests.fixtures import RecordingLogger
from tests.fixtures.rate_limit_responses import (
    HEADERS_BUDGET,
    HEADERS_CLOUDFLARE,
    HEADERS_NO_RESET,
    HEADERS_OVER_LIMIT,
    make_rate_limit_headers,
    make_response,
)


class FakeClock:
    """Controllable stand-in for time.monotonic."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock(monkeypatch: pytest.MonkeyPatch) -> FakeClock:
    """Freeze the pacer's monotonic clock (sync tests only)."""
    fake = FakeClock()
    monkeypatch.setattr("htb_client.transport.pacer.time.monotonic", fake)
    return fake


def make_pacer(
    burst_size: int = 10,
    refill_interval_ms: int = 250,
    edge_pause_seconds: float = 10.0,
    ctx: Context | None = None,
    logger: RecordingLogger | None = None,
) -> RequestPacer:
    """Helper to create a pacer with explicit configuration."""
    config = PacingConfig(
        burst_size=burst_size,
        refill_interval_ms=refill_interval_ms,
        edge_pause_seconds=edge_pause_seconds,
    )
    return RequestPacer(ctx, logger or NoopLogger(), config)


def drain(pacer: RequestPacer) -> int:
    """Take tokens until the pacer asks to wait; return how many were taken."""
    taken = 0
    while pacer._try_acquire() is None:
        taken += 1
    return taken


class TestRequestPacerInit:
    """Tests for pacer initialization."""

    def test_defaults_from_settings(self) -> None:
        """Without a config the settings defaults apply."""
        pacer = RequestPacer()

        assert pacer.config.burst_size == 10
        assert pacer.config.refill_interval_ms == 250
        assert pacer.context.cancelable is False

    def test_starts_full(self) -> None:
        """The budget starts at burst_size."""
        pacer = make_pacer(burst_size=7)

        budget = pacer.budget
        assert budget.limit == 7
        assert budget.remaining == 7
        assert pacer.state == PacerState.NORMAL

    def test_budget_is_a_copy(self) -> None:
        """Mutating the returned budget does not affect the pacer."""
        pacer = make_pacer()

        pacer.budget.remaining = 0

        assert pacer.budget.remaining == 10


class TestTokenBudget:
    """Tests for local token consumption and refill."""

    def test_burst_then_wait(self, clock: FakeClock) -> None:
        """A full budget allows burst_size immediate acquires."""
        pacer = make_pacer(burst_size=10, refill_interval_ms=250)

        assert drain(pacer) == 10
        assert pacer._try_acquire() == 0.25

    def test_refill_one_token_per_interval(self, clock: FakeClock) -> None:
        """One token is added per elapsed refill interval."""
        pacer = make_pacer(burst_size=5, refill_interval_ms=100)
        drain(pacer)

        clock.advance(0.25)

        assert drain(pacer) == 2

    def test_refill_carries_fraction(self, clock: FakeClock) -> None:
        """Partial intervals count towards the next token."""
        pacer = make_pacer(burst_size=5, refill_interval_ms=125)
        drain(pacer)

        clock.advance(0.1875)
        assert drain(pacer) == 1
        clock.advance(0.0625)
        assert drain(pacer) == 1

    def test_refill_capped_at_limit(self, clock: FakeClock) -> None:
        """Refill never exceeds the limit."""
        pacer = make_pacer(burst_size=3, refill_interval_ms=100)
        drain(pacer)

        clock.advance(60)

        assert drain(pacer) == 3

    def test_never_negative(self, clock: FakeClock) -> None:
        """Repeated waits never push remaining below zero."""
        pacer = make_pacer(burst_size=2)
        drain(pacer)

        for _ in range(5):
            assert pacer._try_acquire() is not None

        assert pacer.budget.remaining == 0


class TestObserveHeaders:
    """Tests for server-reported budget overrides."""

    def test_headers_override_budget(self, clock: FakeClock) -> None:
        """Server headers replace the local budget."""
        pacer = make_pacer(burst_size=10)

        pacer.observe(make_response(200, HEADERS_BUDGET))

        budget = pacer.budget
        assert budget.limit == 50
        assert budget.remaining == 3
        assert budget.reset_at is not None
        assert budget.last_refill == clock.now

    def test_server_budget_limits_acquires(self, clock: FakeClock) -> None:
        """After remaining=3 only three tokens are available at once."""
        pacer = make_pacer(burst_size=10, refill_interval_ms=250)
        pacer.observe(make_response(200, HEADERS_BUDGET))

        assert drain(pacer) == 3

        clock.advance(0.25)
        assert drain(pacer) == 1

    def test_remaining_clamped_to_limit(self, clock: FakeClock) -> None:
        """remaining above limit is clamped."""
        pacer = make_pacer()

        pacer.observe(make_response(200, HEADERS_OVER_LIMIT))

        assert pacer.budget.remaining == 50
        assert pacer.budget.limit == 50

    def test_reset_kept_when_absent(self, clock: FakeClock) -> None:
        """A later response without reset keeps the previous reset_at."""
        pacer = make_pacer()
        pacer.observe(make_response(200, HEADERS_BUDGET))
        first_reset = pacer.budget.reset_at

        pacer.observe(make_response(200, HEADERS_NO_RESET))

        assert pacer.budget.reset_at == first_reset
        assert pacer.budget.remaining == 20

    def test_missing_headers_leave_budget(self, clock: FakeClock) -> None:
        """Responses without headers change nothing and log at debug."""
        logger = RecordingLogger()
        pacer = make_pacer(burst_size=4, logger=logger)
        pacer._try_acquire()

        pacer.observe(make_response(200))

        assert pacer.budget.remaining == 3
        assert logger.find("Rate limit headers missing")[0].level == "debug"

    def test_non_ascii_digits_leave_budget(self, clock: FakeClock) -> None:
        """Latin-1 digits in budget headers are ignored rather than raising."""
        pacer = make_pacer(burst_size=4)
        response = httpx.Response(
            200, headers=[(b"x-ratelimit-remaining", b"\xb2"), (b"x-ratelimit-limit", b"5")]
        )

        pacer.observe(response)

        assert pacer.budget.remaining == 4
        assert pacer.budget.limit == 4

    def test_error_responses_observed(self, clock: FakeClock) -> None:
        """Budget headers on error responses are applied too."""
        pacer = make_pacer()

        pacer.observe(make_response(503, make_rate_limit_headers(remaining=1, limit=5)))

        assert pacer.budget.remaining == 1

    def test_zero_remaining(self, clock: FakeClock) -> None:
        """remaining=0 makes the next acquire wait for a refill."""
        pacer = make_pacer(refill_interval_ms=250)

        pacer.observe(make_response(200, make_rate_limit_headers(remaining=0, limit=5)))

        assert pacer._try_acquire() == 0.25


class TestEdgePause:
    """Tests for the global pause after a Cloudflare 429."""

    def test_edge_429_pauses(self, clock: FakeClock) -> None:
        """A Cloudflare 429 empties the budget and pauses everyone."""
        logger = RecordingLogger()
        pacer = make_pacer(edge_pause_seconds=10.0, logger=logger)

        pacer.observe(make_response(429, HEADERS_CLOUDFLARE))

        assert pacer.state == PacerState.PAUSED
        assert pacer.budget.remaining == 0
        assert pacer.pause_remaining == 10.0
        assert pacer._try_acquire() == 10.0
        assert logger.find("Cloudflare 429 detected, global backoff")[0].level == "info"

    def test_pause_expires(self, clock: FakeClock) -> None:
        """After the pause the budget is restored to the limit."""
        pacer = make_pacer(burst_size=5, edge_pause_seconds=10.0)
        pacer.observe(make_response(429, HEADERS_CLOUDFLARE))

        clock.advance(10.0)

        assert pacer._try_acquire() is None
        assert pacer.budget.remaining == 4
        assert pacer.state == PacerState.NORMAL

    def test_pause_reports_remaining_wait(self, clock: FakeClock) -> None:
        """Acquires during the pause wait only for what is left."""
        pacer = make_pacer(edge_pause_seconds=10.0)
        pacer.observe(make_response(429, HEADERS_CLOUDFLARE))

        clock.advance(4.0)

        assert pacer._try_acquire() == pytest.approx(6.0)

    def test_state_paused_until_next_acquire(self, clock: FakeClock) -> None:
        """The pause is lifted lazily by the next acquire."""
        pacer = make_pacer(edge_pause_seconds=1.0)
        pacer.observe(make_response(429, HEADERS_CLOUDFLARE))
        clock.advance(2.0)

        assert pacer.state == PacerState.PAUSED
        assert pacer.pause_remaining == 0.0

        pacer._try_acquire()

        assert pacer.state == PacerState.NORMAL

    def test_headers_during_pause_keep_zero(self, clock: FakeClock) -> None:
        """Budget headers seen while paused do not hand out tokens."""
        pacer = make_pacer(edge_pause_seconds=10.0)
        pacer.observe(make_response(429, HEADERS_CLOUDFLARE))

        pacer.observe(make_response(200, make_rate_limit_headers(remaining=40, limit=50)))

        assert pacer.budget.remaining == 0
        assert pacer.budget.limit == 50
        assert pacer._try_acquire() == 10.0

    def test_origin_429_is_not_a_pause(self, clock: FakeClock) -> None:
        """A 429 from the API itself only updates the budget."""
        pacer = make_pacer()

        pacer.observe(make_response(429, make_rate_limit_headers(remaining=0, limit=5)))

        assert pacer.state == PacerState.NORMAL


class TestGetStats:
    """Tests for get_stats."""

    def test_stats(self, clock: FakeClock) -> None:
        """Stats report the budget and pause state."""
        pacer = make_pacer(burst_size=4, refill_interval_ms=250)
        pacer._try_acquire()

        stats = pacer.get_stats()

        assert stats["state"] == "normal"
        assert stats["remaining"] == 3
        assert stats["limit"] == 4
        assert stats["remaining_percent"] == 75.0
        assert stats["reset_at"] is None
        assert stats["pause_remaining"] == 0.0
        assert stats["refill_interval_ms"] == 250

    def test_stats_reset_at_iso(self, clock: FakeClock) -> None:
        """reset_at is reported as an ISO timestamp."""
        pacer = make_pacer()
        headers = {"x-ratelimit-limit": "5", "x-ratelimit-remaining": "5"}
        headers["x-ratelimit-reset"] = "1700000000"

        pacer.observe(make_response(200, headers))

        expected = datetime.fromtimestamp(1700000000, tz=UTC).isoformat()
        assert pacer.get_stats()["reset_at"] == expected


class TestAcquire:
    """Tests for the async acquire loop."""

    async def test_acquire_within_budget_is_immediate(self) -> None:
        """Tokens in the budget are handed out without waiting."""
        pacer = make_pacer(burst_size=5)

        start = time.monotonic()
        for _ in range(5):
            await pacer.acquire()

        assert time.monotonic() - start < 0.1
        assert pacer.budget.remaining == 0

    async def test_acquire_waits_for_refill(self) -> None:
        """An empty budget waits about one refill interval."""
        pacer = make_pacer(burst_size=1, refill_interval_ms=50)
        await pacer.acquire()

        start = time.monotonic()
        await pacer.acquire()

        assert time.monotonic() - start >= 0.04

    async def test_acquire_waits_for_edge_pause(self) -> None:
        """Acquires during a global pause wait for it to end."""
        pacer = make_pacer(edge_pause_seconds=0.1)
        pacer.observe(make_response(429, HEADERS_CLOUDFLARE))

        start = time.monotonic()
        await pacer.acquire()

        assert time.monotonic() - start >= 0.09
        assert pacer.state == PacerState.NORMAL

    async def test_caller_deadline_aborts_wait(self) -> None:
        """A caller deadline ends the wait with DeadlineExceededError."""
        pacer = make_pacer(burst_size=1, refill_interval_ms=10_000)
        await pacer.acquire()

        start = time.monotonic()
        with pytest.raises(DeadlineExceededError):
            await pacer.acquire(Context.with_timeout(None, 0.05))

        assert time.monotonic() - start < 1

    async def test_caller_cancel_aborts_wait(self) -> None:
        """Canceling the caller context ends the wait."""
        pacer = make_pacer(burst_size=1, refill_interval_ms=10_000)
        await pacer.acquire()
        ctx = Context.with_cancel()
        asyncio.get_running_loop().call_later(0.02, ctx.cancel)

        with pytest.raises(ContextCanceledError):
            await pacer.acquire(ctx)

    async def test_pacer_context_aborts_wait(self) -> None:
        """Canceling the pacer's lifetime context ends every wait."""
        lifetime = Context.with_cancel()
        pacer = make_pacer(burst_size=1, refill_interval_ms=10_000, ctx=lifetime)
        await pacer.acquire()
        asyncio.get_running_loop().call_later(0.02, lifetime.cancel)

        with pytest.raises(ContextCanceledError):
            await pacer.acquire(Context.with_cancel())

    async def test_finished_context_fails_fast(self) -> None:
        """A canceled caller context fails even with tokens available."""
        pacer = make_pacer(burst_size=5)
        ctx = Context.with_cancel()
        ctx.cancel()

        with pytest.raises(ContextCanceledError):
            await pacer.acquire(ctx)

        assert pacer.budget.remaining == 5


class TestContextBridging:
    """Tests for wrap() and wrapped()."""

    def test_wrap_none_returns_pacer_context(self) -> None:
        """No caller context means the pacer context alone."""
        lifetime = Context.with_cancel()
        pacer = make_pacer(ctx=lifetime)

        assert pacer.wrap(None) is lifetime

    def test_wrap_with_background_pacer(self) -> None:
        """A background pacer context returns the caller's unchanged."""
        pacer = make_pacer()
        ctx = Context.with_cancel()

        assert pacer.wrap(ctx) is ctx

    def test_wrap_merges_both(self) -> None:
        """The merged context finishes when the pacer context does."""
        lifetime = Context.with_cancel()
        pacer = make_pacer(ctx=lifetime)
        caller = Context.with_cancel()

        merged = pacer.wrap(caller)
        lifetime.cancel()

        assert merged.done
        assert not caller.done

    def test_wrapped_releases_merged_context(self) -> None:
        """Leaving wrapped() detaches the merged context."""
        lifetime = Context.with_cancel()
        pacer = make_pacer(ctx=lifetime)
        caller = Context.with_cancel()

        with pacer.wrapped(caller) as merged:
            assert not merged.done

        assert merged.done
        assert not caller.done
        assert not lifetime.done
        assert lifetime._callbacks == []

    def test_wrapped_leaves_inputs_alone(self) -> None:
        """Unmerged contexts are not canceled on exit."""
        pacer = make_pacer()
        caller = Context.with_cancel()

        with pacer.wrapped(caller) as ctx:
            assert ctx is caller

        assert not caller.done

    async def test_acquire_does_not_leak_callbacks(self) -> None:
        """Many acquires leave nothing registered on the pacer context."""
        lifetime = Context.with_cancel()
        pacer = make_pacer(burst_size=50, ctx=lifetime)

        for _ in range(20):
            await pacer.acquire(Context.with_cancel())

        assert lifetime._callbacks == []
