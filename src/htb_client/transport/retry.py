"""Retry decisions and exponential backoff for the transport pipeline.

This module provides the retry policy interface, the default policy,
and the classification of attempt outcomes into retriable and terminal.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Protocol, runtime_checkable

import httpx

from htb_client.config import RetrySettings
from htb_client.exceptions import ContextCanceledError, DeadlineExceededError

from .schemas import parse_header_int

# Default total attempts, and the fallback for non-positive configurations
DEFAULT_MAX_ATTEMPTS = 4
FALLBACK_MAX_ATTEMPTS = 3

# 5xx statuses a retry cannot fix
NON_RETRIABLE_SERVER_STATUSES = frozenset({501, 505})


class TransportErrorKind(StrEnum):
    """Category of a failed transport attempt."""

    TIMEOUT = "timeout"
    CONNECTION_REFUSED = "connection_refused"
    CANCELED = "canceled"
    DEADLINE_EXCEEDED = "deadline_exceeded"
    OTHER = "other"


def classify_error(error: BaseException) -> TransportErrorKind:
    """Map a transport exception to its TransportErrorKind."""
    # DeadlineExceededError is also a TimeoutError, so it goes first
    if isinstance(error, DeadlineExceededError):
        return TransportErrorKind.DEADLINE_EXCEEDED
    if isinstance(error, ContextCanceledError | asyncio.CancelledError):
        return TransportErrorKind.CANCELED
    if isinstance(error, httpx.TimeoutException | TimeoutError):
        return TransportErrorKind.TIMEOUT
    if isinstance(error, httpx.ConnectError | ConnectionRefusedError):
        return TransportErrorKind.CONNECTION_REFUSED
    return TransportErrorKind.OTHER


@dataclass(frozen=True)
class AttemptOutcome:
    """Result of one transport attempt: a response or an error."""

    response: httpx.Response | None = None
    error: BaseException | None = None

    @property
    def status_code(self) -> int:
        """Response status, 0 when the attempt failed at the transport."""
        return self.response.status_code if self.response is not None else 0

    @property
    def kind(self) -> TransportErrorKind | None:
        """Error category, None when a response was received."""
        if self.error is None:
            return None
        return classify_error(self.error)


@runtime_checkable
class RetryPolicy(Protocol):
    """Decides whether an attempt is retried and how long to wait."""

    def should_retry(
        self,
        response: httpx.Response | None,
        error: BaseException | None,
    ) -> bool: ...

    def wait(self, attempt: int) -> float: ...


class DefaultRetryPolicy:
    """Retry 429s, most 5xx responses and transient transport failures.

    Retriable:
        - 429 Too Many Requests
        - 5xx except 501 Not Implemented and 505 HTTP Version Not Supported
        - timeouts, deadline exceeded, connection refused

    Waits grow as base_delay * 2^(attempt-1), capped at max_delay, with
    +/- jitter_fraction of uniform jitter.
    """

    def __init__(self, settings: RetrySettings | None = None) -> None:
        """Initialize the policy.

        Args:
            settings: Optional backoff settings (defaults: 1s base, 30s cap, 10% jitter)
        """
        self._settings = settings or RetrySettings()

    @property
    def settings(self) -> RetrySettings:
        """Get the backoff settings."""
        return self._settings

    def should_retry(
        self,
        response: httpx.Response | None,
        error: BaseException | None,
    ) -> bool:
        """Return True if the outcome is worth another attempt."""
        if error is not None:
            return classify_error(error) in (
                TransportErrorKind.TIMEOUT,
                TransportErrorKind.DEADLINE_EXCEEDED,
                TransportErrorKind.CONNECTION_REFUSED,
            )

        if response is None:
            return False

        status = response.status_code
        if status == 429:
            return True
        return status >= 500 and status not in NON_RETRIABLE_SERVER_STATUSES

    def backoff(self, attempt: int) -> float:
        """Delay before retry number attempt, without jitter."""
        exponent = max(0, attempt - 1)
        # Cap the exponent so huge attempt numbers cannot overflow
        delay = self._settings.base_delay_seconds * (2 ** min(exponent, 62))
        return min(delay, self._settings.max_delay_seconds)

    def wait(self, attempt: int) -> float:
        """Seconds to wait before retry number attempt (1-based).

        Args:
            attempt: Retry number, starting at 1

        Returns:
            Jittered delay in seconds, never negative
        """
        delay = self.backoff(attempt)
        jitter_fraction = (random.random() - 0.5) * 2 * self._settings.jitter_fraction
        return max(0.0, delay + delay * jitter_fraction)


def retry_after_seconds(response: httpx.Response | None) -> int | None:
    """Parse a 429 response's Retry-After header as whole seconds.

    Returns None for other statuses or non-integer values (HTTP dates
    are not honoured).
    """
    if response is None or response.status_code != 429:
        return None
    return parse_header_int(response.headers.get("retry-after"))


@dataclass(frozen=True)
class RetryConfig:
    """Per-pipeline retry configuration.

    Attributes:
        max_attempts: Total attempts per request, including the first.
            1 sends once with no retries; values <= 0 fall back to 3.
        policy: Retry policy (DefaultRetryPolicy if omitted)
    """

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    policy: RetryPolicy = field(default_factory=DefaultRetryPolicy)

    def __post_init__(self) -> None:
        if self.max_attempts <= 0:
            object.__setattr__(self, "max_attempts", FALLBACK_MAX_ATTEMPTS)

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> RetryConfig:
        """Build a config with a DefaultRetryPolicy from settings."""
        return cls(
            max_attempts=settings.max_attempts,
            policy=DefaultRetryPolicy(settings),
        )
