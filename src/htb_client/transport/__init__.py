"""Request transport for the Platform API.

This module provides the paced, retrying transport that every client
request goes through.

Components:
- Context: Cooperative cancellation and deadlines
- RequestPacer: Shared token budget with server-reported hints
- DefaultRetryPolicy / RetryConfig: Retry decisions and backoff
- RequestPipeline: httpx transport tying pacing and retries together
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx

from htb_client.config import PacingConfig

from .context import CONTEXT_EXTENSION, Context, get_context, merge_contexts, with_context
from .pacer import RequestPacer
from .pipeline import RequestPipeline
from .retry import (
    AttemptOutcome,
    DefaultRetryPolicy,
    RetryConfig,
    RetryPolicy,
    TransportErrorKind,
    classify_error,
    retry_after_seconds,
)
from .schemas import PacerState, RateBudget, RateLimitHeaders

if TYPE_CHECKING:
    from htb_client.logging import Logger


def create_transport_stack(
    transport: httpx.AsyncBaseTransport | None = None,
    *,
    context: Context | None = None,
    retry: RetryConfig | None = None,
    pacing: PacingConfig | None = None,
    logger: Logger | None = None,
) -> tuple[RequestPipeline, RequestPacer]:
    """Build a pipeline and the single pacer it owns.

    Args:
        transport: Underlying transport (defaults to httpx.AsyncHTTPTransport)
        context: Pacer lifetime context
        retry: Retry configuration
        pacing: Pacing configuration
        logger: Logger shared by pacer and pipeline

    Returns:
        Tuple of (pipeline, pacer)
    """
    pacer = RequestPacer(context, logger, pacing)
    pipeline = RequestPipeline(transport, pacer, retry, logger)
    return pipeline, pacer


__all__ = [
    # Context
    "CONTEXT_EXTENSION",
    "Context",
    "get_context",
    "merge_contexts",
    "with_context",
    # Pacing
    "PacerState",
    "RateBudget",
    "RateLimitHeaders",
    "RequestPacer",
    # Retries
    "AttemptOutcome",
    "DefaultRetryPolicy",
    "RetryConfig",
    "RetryPolicy",
    "TransportErrorKind",
    "classify_error",
    "retry_after_seconds",
    # Pipeline
    "RequestPipeline",
    "create_transport_stack",
]
