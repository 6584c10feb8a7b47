"""HTB client exceptions."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime

import httpx

# Pseudo status code reported when a response body is not valid JSON
PARSE_ERROR_STATUS = 1001


class HTBClientError(Exception):
    """Base exception for HTB client errors."""

    pass


# -----------------------------------------------------------------------------
# Context Errors
# -----------------------------------------------------------------------------
class ContextError(HTBClientError):
    """Base class for errors reported by a finished Context."""

    pass


class ContextCanceledError(ContextError):
    """Raised when a context was canceled before the operation finished."""

    def __init__(self, message: str = "context canceled") -> None:
        super().__init__(message)


class DeadlineExceededError(ContextError, TimeoutError):
    """Raised when a context deadline passed before the operation finished."""

    def __init__(self, message: str = "context deadline exceeded") -> None:
        super().__init__(message)


# -----------------------------------------------------------------------------
# API Errors
# -----------------------------------------------------------------------------
class HTBAPIError(HTBClientError):
    """Raised for a final response the caller should treat as a failure.

    Attributes:
        status_code: HTTP status (or PARSE_ERROR_STATUS), None if no response
        raw: Raw response body
        headers: Response headers
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        raw: bytes = b"",
        headers: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.raw = raw
        self.headers = dict(headers) if headers is not None else {}

    def __str__(self) -> str:
        if self.status_code is None:
            return self.message
        return f"status {self.status_code}: {self.message}"


class HTBAuthenticationError(HTBAPIError):
    """Raised when authentication fails (401) or no token is configured."""

    pass


class InvalidTokenError(HTBAuthenticationError):
    """Raised when the configured token is not a well-formed JWT."""

    pass


class HTBForbiddenError(HTBAPIError):
    """Raised when access is forbidden (403)."""

    pass


class HTBNotFoundError(HTBAPIError):
    """Raised when a resource is not found (404)."""

    pass


class HTBRetryableError(HTBAPIError):
    """Base class for failures that may succeed if tried again later.

    The transport has already retried these; callers that want a longer
    horizon can catch this class and reschedule.
    """

    pass


class HTBRateLimitError(HTBRetryableError):
    """Raised when the rate limit is still exceeded after retries (429)."""

    def __init__(
        self,
        message: str,
        *,
        retry_after: float | None = None,
        reset_at: datetime | None = None,
        status_code: int | None = 429,
        raw: bytes = b"",
        headers: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code, raw=raw, headers=headers)
        self.retry_after = retry_after
        self.reset_at = reset_at


class HTBServerError(HTBRetryableError):
    """Raised for 5xx server errors."""

    pass


class ResponseParseError(HTBAPIError):
    """Raised when a response body cannot be decoded as JSON."""

    pass


def error_from_response(response: httpx.Response) -> HTBAPIError:
    """Convert a final non-success response into a typed exception.

    The response body must already be read.

    Args:
        response: Final response returned by the transport

    Returns:
        The matching HTBAPIError subclass instance
    """
    status = response.status_code
    raw = response.content
    headers = response.headers

    if status == 401:
        return HTBAuthenticationError("Unauthorized", status_code=status, raw=raw, headers=headers)
    if status == 403:
        return HTBForbiddenError("Forbidden", status_code=status, raw=raw, headers=headers)
    if status == 404:
        return HTBNotFoundError("Not found", status_code=status, raw=raw, headers=headers)
    if status == 429:
        from htb_client.transport.schemas import RateLimitHeaders

        hints = RateLimitHeaders.from_response(response)
        return HTBRateLimitError(
            "Rate limit exceeded",
            retry_after=float(hints.retry_after) if hints.retry_after is not None else None,
            reset_at=hints.reset_at,
            status_code=status,
            raw=raw,
            headers=headers,
        )
    if status in (500, 502, 503, 504):
        return HTBServerError("Server error", status_code=status, raw=raw, headers=headers)
    return HTBAPIError("Unknown error", status_code=status, raw=raw, headers=headers)
