"""Pydantic schemas for rate limit state.

These schemas represent:
- The pacer's local token budget
- Rate limit hints parsed from x-ratelimit-* and related response headers
"""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Self

import httpx
from pydantic import BaseModel, Field, computed_field

EDGE_SERVER_MARKER = "cloudflare"


class PacerState(StrEnum):
    """Pause state of the pacer.

    NORMAL: tokens are handed out from the budget
    PAUSED: a global backoff is active and every acquirer waits
    """

    NORMAL = "normal"
    PAUSED = "paused"


class RateBudget(BaseModel):
    """Token budget guarded by the pacer.

    Monotonic instants (last_refill, pause_until) are time.monotonic()
    seconds; reset_at is the wall-clock instant reported by the server.
    """

    limit: int = Field(ge=0, description="Maximum tokens the budget may hold")
    remaining: int = Field(ge=0, description="Tokens currently available")
    reset_at: datetime | None = Field(
        default=None, description="Server-declared UTC time of full refill"
    )
    last_refill: float | None = Field(
        default=None, description="Monotonic baseline for time-based refill"
    )
    pause_until: float | None = Field(
        default=None, description="Monotonic deadline of a global backoff"
    )

    @classmethod
    def full(cls, size: int) -> Self:
        """A full budget of size tokens."""
        return cls(limit=size, remaining=size)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def remaining_percent(self) -> float:
        """Percentage of the budget still available (0.0 to 100.0)."""
        if self.limit == 0:
            return 0.0
        return (self.remaining / self.limit) * 100


def parse_header_int(value: str | None) -> int | None:
    """Parse a non-negative integer header value.

    httpx decodes non-UTF-8 header bytes as latin-1, so Unicode digits
    such as superscript two can appear; int() rejects those.
    """
    if value is None:
        return None
    value = value.strip()
    if not (value.isascii() and value.isdigit()):
        return None
    return int(value)


class RateLimitHeaders(BaseModel):
    """Rate limit hints carried on a single response.

    The API reports its budget through:
    - x-ratelimit-limit
    - x-ratelimit-remaining
    - x-ratelimit-reset (Unix seconds)

    A 429 from the Cloudflare edge carries none of these and is
    recognised by its Server header instead.
    """

    status_code: int = Field(description="HTTP status of the response")
    limit: int | None = Field(default=None, ge=0)
    remaining: int | None = Field(default=None, ge=0)
    reset_at: datetime | None = None
    retry_after: int | None = Field(
        default=None, ge=0, description="Retry-After in whole seconds"
    )
    server: str = Field(default="", description="Server header value")

    @classmethod
    def from_response(cls, response: httpx.Response) -> Self:
        """Parse rate limit hints from a response's headers.

        Unparseable values are treated as absent.

        Args:
            response: Any response, successful or not

        Returns:
            RateLimitHeaders instance
        """
        headers = response.headers
        reset_ts = parse_header_int(headers.get("x-ratelimit-reset"))
        reset_at: datetime | None = None
        if reset_ts is not None:
            try:
                reset_at = datetime.fromtimestamp(reset_ts, tz=UTC)
            except (OverflowError, OSError, ValueError):
                reset_at = None

        return cls(
            status_code=response.status_code,
            limit=parse_header_int(headers.get("x-ratelimit-limit")),
            remaining=parse_header_int(headers.get("x-ratelimit-remaining")),
            reset_at=reset_at,
            retry_after=parse_header_int(headers.get("retry-after")),
            server=headers.get("server", ""),
        )

    @property
    def is_edge_throttle(self) -> bool:
        """Whether this is a 429 emitted by the Cloudflare edge."""
        return self.status_code == 429 and EDGE_SERVER_MARKER in self.server.lower()

    @property
    def has_budget(self) -> bool:
        """Whether both remaining and limit were reported."""
        return self.remaining is not None and self.limit is not None
