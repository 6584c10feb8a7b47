"""Request pacing using a shared token budget.

This module gates outbound requests so the aggregate request rate stays
within a locally maintained token budget and honours server-imposed
backoff.

Algorithm:
    Without server headers, one token is refilled every refill_interval
    (default 250ms = 4 req/s) up to burst_size (default 10).
    Server x-ratelimit-* headers overwrite the budget authoritatively.
    A 429 from the Cloudflare edge installs a global pause (default 10s)
    during which every acquirer waits.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING

from htb_client.config import PacingConfig, get_settings
from htb_client.logging import LoguruLogger

from .context import Context, merge_contexts
from .schemas import PacerState, RateBudget, RateLimitHeaders

if TYPE_CHECKING:
    import httpx

    from htb_client.logging import Logger


class RequestPacer:
    """Token budget gate consulted before every outbound request.

    One pacer is shared by every concurrent request of a client. The
    budget is guarded by a lock that is only held for bookkeeping and
    never across a wait, so acquirers re-evaluate the full state each
    time they wake.

    Usage:
        pacer = RequestPacer()

        # Before each request
        await pacer.acquire(ctx)

        # Make request...

        # After each response (successful or not)
        pacer.observe(response)
    """

    def __init__(
        self,
        ctx: Context | None = None,
        logger: Logger | None = None,
        config: PacingConfig | None = None,
    ) -> None:
        """Initialize the request pacer.

        Args:
            ctx: Lifetime context; cancelling it aborts every pending wait
            logger: Optional logger (defaults to the package loguru logger)
            config: Optional pacing configuration (uses settings if not provided)
        """
        self._ctx = ctx or Context.background()
        self._logger: Logger = logger or LoguruLogger(__name__)
        self._config = config or get_settings().pacing

        self._budget = RateBudget.full(self._config.burst_size)
        self._lock = threading.Lock()

    @property
    def config(self) -> PacingConfig:
        """Get the pacing configuration."""
        return self._config

    @property
    def context(self) -> Context:
        """The pacer's lifetime context."""
        return self._ctx

    # -------------------------------------------------------------------------
    # Context Bridging
    # -------------------------------------------------------------------------
    def wrap(self, ctx: Context | None) -> Context:
        """Merge a caller context with the pacer's lifetime context.

        Returns the other context directly when either side can never
        be canceled.

        Args:
            ctx: Caller context (None means the pacer context alone)

        Returns:
            A context that finishes when either input finishes
        """
        if ctx is None:
            return self._ctx
        return merge_contexts(ctx, self._ctx)

    @contextmanager
    def wrapped(self, ctx: Context | None) -> Iterator[Context]:
        """Like wrap(), releasing any merged context on exit."""
        merged = self.wrap(ctx)
        try:
            yield merged
        finally:
            if merged is not ctx and merged is not self._ctx:
                merged.cancel()

    # -------------------------------------------------------------------------
    # Acquire
    # -------------------------------------------------------------------------
    async def acquire(self, ctx: Context | None = None) -> None:
        """Wait for and consume one token.

        Never fails because the budget is exhausted; it waits instead.

        Args:
            ctx: Optional caller context bounding the wait

        Raises:
            ContextCanceledError: If the caller or pacer context is canceled
            DeadlineExceededError: If a deadline passes while waiting
        """
        with self.wrapped(ctx) as wait_ctx:
            while True:
                error = wait_ctx.error()
                if error is not None:
                    raise error
                wait = self._try_acquire()
                if wait is None:
                    return
                await wait_ctx.sleep(wait)

    def _try_acquire(self) -> float | None:
        """Consume a token if possible, else return seconds to wait."""
        interval = self._config.refill_interval
        with self._lock:
            budget = self._budget
            now = time.monotonic()

            if budget.pause_until is not None:
                if now < budget.pause_until:
                    wait = budget.pause_until - now
                    self._logger.debug("Cloudflare backoff active", wait_seconds=round(wait, 3))
                    return wait
                budget.pause_until = None
                budget.remaining = budget.limit
                budget.last_refill = now
                self._logger.debug(
                    "Cloudflare backoff expired",
                    remaining=budget.remaining,
                    limit=budget.limit,
                )

            self._refill(now, interval)

            if budget.remaining > 0:
                budget.remaining -= 1
                return None

            self._logger.debug(
                "Rate limit budget exhausted",
                limit=budget.limit,
                wait_seconds=interval,
            )
            return interval

    def _refill(self, now: float, interval: float) -> None:
        """Add tokens for whole refill intervals elapsed since last_refill.

        last_refill advances by the consumed intervals only, so the
        fractional remainder counts towards the next token. Caller holds
        the lock.
        """
        budget = self._budget
        if budget.last_refill is None:
            budget.last_refill = now
            return

        new_tokens = int((now - budget.last_refill) / interval)
        if new_tokens > 0:
            budget.remaining = min(budget.limit, budget.remaining + new_tokens)
            budget.last_refill += new_tokens * interval

    # -------------------------------------------------------------------------
    # Observe
    # -------------------------------------------------------------------------
    def observe(self, response: httpx.Response) -> None:
        """Update the budget from a response's headers.

        Call this after every response, including errors, so that 429
        state propagates to every other caller. Never blocks on a wait
        and never raises.

        Args:
            response: Response returned by the underlying transport
        """
        hints = RateLimitHeaders.from_response(response)

        if hints.is_edge_throttle:
            backoff = self._config.edge_pause_seconds
            with self._lock:
                self._budget.pause_until = time.monotonic() + backoff
                self._budget.remaining = 0
            self._logger.info("Cloudflare 429 detected, global backoff", backoff_seconds=backoff)
            return

        if hints.limit is not None and hints.remaining is not None:
            with self._lock:
                budget = self._budget
                budget.limit = hints.limit
                budget.remaining = min(hints.remaining, hints.limit)
                if hints.reset_at is not None:
                    budget.reset_at = hints.reset_at
                # Authoritative value; restart refill accounting from here
                budget.last_refill = time.monotonic()
                if budget.pause_until is not None:
                    budget.remaining = 0
                remaining, limit, reset_at = budget.remaining, budget.limit, budget.reset_at
            self._logger.debug(
                "Rate limit updated from headers",
                remaining=remaining,
                limit=limit,
                reset_at=reset_at.isoformat() if reset_at else None,
            )
            return

        self._logger.debug("Rate limit headers missing", status_code=hints.status_code)

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------
    @property
    def budget(self) -> RateBudget:
        """A copy of the current budget."""
        with self._lock:
            return self._budget.model_copy()

    @property
    def state(self) -> PacerState:
        """PAUSED while a global backoff is pending, else NORMAL.

        The pause is only lifted by the next acquire after it expires.
        """
        with self._lock:
            if self._budget.pause_until is not None:
                return PacerState.PAUSED
            return PacerState.NORMAL

    @property
    def pause_remaining(self) -> float:
        """Seconds left in the global backoff (0 if not paused)."""
        with self._lock:
            if self._budget.pause_until is None:
                return 0.0
            return max(0.0, self._budget.pause_until - time.monotonic())

    def get_stats(self) -> dict[str, float | int | str | None]:
        """Get pacer statistics for monitoring.

        Returns:
            Dict with current budget and pause state
        """
        budget = self.budget
        return {
            "state": self.state.value,
            "remaining": budget.remaining,
            "limit": budget.limit,
            "remaining_percent": round(budget.remaining_percent, 2),
            "reset_at": budget.reset_at.isoformat() if budget.reset_at else None,
            "pause_remaining": round(self.pause_remaining, 2),
            "refill_interval_ms": self._config.refill_interval_ms,
        }
