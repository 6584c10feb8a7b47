"""Async client for the Hack The Box Platform API.

This package provides:
- HTBClient: Authenticated client with shared pacing and retries
- Transport: RequestPipeline, RequestPacer, RetryConfig, Context
- Exceptions: typed errors for final API responses
"""

from .client import VERSION, HTBClient
from .exceptions import (
    ContextCanceledError,
    ContextError,
    DeadlineExceededError,
    HTBAPIError,
    HTBAuthenticationError,
    HTBClientError,
    HTBForbiddenError,
    HTBNotFoundError,
    HTBRateLimitError,
    HTBRetryableError,
    HTBServerError,
    InvalidTokenError,
    ResponseParseError,
    error_from_response,
)
from .logging import Logger, LoguruLogger, NoopLogger
from .schemas import APIResponse, ResponseMeta
from .transport import (
    Context,
    DefaultRetryPolicy,
    RequestPacer,
    RequestPipeline,
    RetryConfig,
    RetryPolicy,
    create_transport_stack,
    with_context,
)

__version__ = VERSION

__all__ = [
    # Client
    "HTBClient",
    "APIResponse",
    "ResponseMeta",
    # Transport
    "Context",
    "DefaultRetryPolicy",
    "RequestPacer",
    "RequestPipeline",
    "RetryConfig",
    "RetryPolicy",
    "create_transport_stack",
    "with_context",
    # Logging
    "Logger",
    "LoguruLogger",
    "NoopLogger",
    # Exceptions
    "ContextCanceledError",
    "ContextError",
    "DeadlineExceededError",
    "HTBAPIError",
    "HTBAuthenticationError",
    "HTBClientError",
    "HTBForbiddenError",
    "HTBNotFoundError",
    "HTBRateLimitError",
    "HTBRetryableError",
    "HTBServerError",
    "InvalidTokenError",
    "ResponseParseError",
    "error_from_response",
]
