"""Test fixtures for the HTB client."""

from .loggers import LogRecord, RecordingLogger
from .rate_limit_responses import (
    HEADERS_BUDGET,
    HEADERS_CLOUDFLARE,
    HEADERS_CLOUDFLARE_MIXED_CASE,
    HEADERS_GARBAGE,
    HEADERS_NO_RESET,
    HEADERS_OVER_LIMIT,
    HEADERS_PARTIAL,
    TEST_URL,
    make_rate_limit_headers,
    make_response,
)
from .transports import Reply, ScriptedTransport, TrackingStream

__all__ = [
    # Loggers
    "LogRecord",
    "RecordingLogger",
    # Rate limit headers
    "HEADERS_BUDGET",
    "HEADERS_CLOUDFLARE",
    "HEADERS_CLOUDFLARE_MIXED_CASE",
    "HEADERS_GARBAGE",
    "HEADERS_NO_RESET",
    "HEADERS_OVER_LIMIT",
    "HEADERS_PARTIAL",
    "TEST_URL",
    "make_rate_limit_headers",
    "make_response",
    # Transports
    "Reply",
    "ScriptedTransport",
    "TrackingStream",
]
