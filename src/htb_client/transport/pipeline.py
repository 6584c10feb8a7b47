"""Paced, retrying httpx transport.

RequestPipeline decorates an underlying httpx transport and drives each
logical request through:

    pacer acquire -> send -> pacer observe -> retry decision -> sleep -> repeat

bounded by the retry configuration and by the caller's Context. The
request body is read once and replayed on every attempt.
"""

from __future__ import annotations

import itertools
from typing import TYPE_CHECKING

import httpx

from htb_client.exceptions import ContextError
from htb_client.logging import LoguruLogger

from .context import get_context
from .pacer import RequestPacer
from .retry import RetryConfig, retry_after_seconds

if TYPE_CHECKING:
    from htb_client.logging import Logger

    from .context import Context


class RequestPipeline(httpx.AsyncBaseTransport):
    """httpx transport adding pacing and retries to another transport.

    HTTP statuses are never turned into exceptions here: the response
    of the final attempt is returned as-is, and transport errors of the
    final attempt are raised unmodified.

    Usage:
        pacer = RequestPacer()
        pipeline = RequestPipeline(httpx.AsyncHTTPTransport(), pacer)
        async with httpx.AsyncClient(transport=pipeline) as client:
            response = await client.get("https://labs.hackthebox.com/api/v4/user/info")
    """

    def __init__(
        self,
        transport: httpx.AsyncBaseTransport | None = None,
        pacer: RequestPacer | None = None,
        retry: RetryConfig | None = None,
        logger: Logger | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            transport: Underlying transport (defaults to httpx.AsyncHTTPTransport)
            pacer: Shared pacer (a private one is created if omitted)
            retry: Retry configuration (4 attempts, DefaultRetryPolicy)
            logger: Optional logger (defaults to the package loguru logger)
        """
        self._logger: Logger = logger or LoguruLogger(__name__)
        self._transport = transport or httpx.AsyncHTTPTransport()
        self._pacer = pacer or RequestPacer(logger=self._logger)
        self._retry = retry or RetryConfig()

    @property
    def pacer(self) -> RequestPacer:
        """The pacer shared by every request through this pipeline."""
        return self._pacer

    @property
    def retry(self) -> RetryConfig:
        """The retry configuration."""
        return self._retry

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        """Send one logical request, pacing and retrying attempts.

        Args:
            request: Request to send; a Context attached with with_context()
                     bounds the total time spent

        Returns:
            The response of the final attempt, unread and open

        Raises:
            ContextError: If the context finishes before a response is final
            httpx.TransportError: If the final attempt failed at the transport
        """
        body = await self._capture_body(request)
        with self._pacer.wrapped(get_context(request)) as ctx:
            return await self._send_with_retries(request, body, ctx)

    async def _capture_body(self, request: httpx.Request) -> bytes:
        """Read the request body once so every attempt can replay it."""
        original = request.stream
        body = await request.aread()
        if isinstance(original, httpx.AsyncByteStream):
            await original.aclose()
        return body

    async def _send_with_retries(
        self,
        request: httpx.Request,
        body: bytes,
        ctx: Context,
    ) -> httpx.Response:
        policy = self._retry.policy
        max_attempts = self._retry.max_attempts
        url = str(request.url)

        for attempt in itertools.count():
            try:
                await self._pacer.acquire(ctx)
            except ContextError as exc:
                self._logger.warn("Context finished before request", url=url, error=exc)
                raise

            request.stream = httpx.ByteStream(body)

            response: httpx.Response | None = None
            error: Exception | None = None
            try:
                response = await ctx.run(self._transport.handle_async_request(request))
            except Exception as exc:
                error = exc

            if response is not None:
                self._pacer.observe(response)

            if isinstance(error, ContextError) and ctx.done:
                self._logger.warn("Request context finished during attempt", url=url, error=error)
                raise error

            should_retry = policy.should_retry(response, error)
            if not should_retry or attempt + 1 >= max_attempts:
                if error is not None:
                    raise error
                assert response is not None
                return response

            if response is not None:
                await response.aclose()

            wait = policy.wait(attempt + 1)
            retry_after = retry_after_seconds(response)
            if retry_after is not None:
                wait = float(retry_after)

            self._logger.debug(
                "Retrying request",
                attempt=attempt + 1,
                max_retries=max_attempts - 1,
                wait_duration=round(wait, 3),
                url=url,
                error=error,
                status_code=response.status_code if response is not None else 0,
            )

            try:
                await ctx.sleep(wait)
            except ContextError as exc:
                self._logger.warn("Request context finished during retry wait", url=url, error=exc)
                if error is not None:
                    raise error from exc
                raise

        raise AssertionError("unreachable")  # pragma: no cover

    async def aclose(self) -> None:
        """Close the underlying transport."""
        await self._transport.aclose()

