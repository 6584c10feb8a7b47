"""Async Platform API client.

This module wires credentials, the paced retrying transport and response
decoding into a single client object. Endpoint-specific wrappers build
on request(), get_json(), post_json() and download().
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Literal

import httpx

from .auth import PlatformAuth, validate_token
from .config import PacingConfig, get_settings
from .exceptions import (
    PARSE_ERROR_STATUS,
    HTBAuthenticationError,
    ResponseParseError,
    error_from_response,
)
from .logging import LoguruLogger
from .schemas import APIResponse, ResponseMeta
from .transport import Context, RequestPacer, RequestPipeline, RetryConfig, with_context

if TYPE_CHECKING:
    from .logging import Logger

VERSION = "0.1.0"
DEFAULT_USER_AGENT = f"htb-client/{VERSION}"

APIVersion = Literal["v4", "v5"]


class HTBClient:
    """Async client for the Platform API.

    Usage:
        async with HTBClient() as client:
            info = await client.get_json("user/info")
            print(info.data)

    Every request goes through one RequestPipeline sharing one
    RequestPacer, so concurrent calls on the same client share a
    single rate budget.
    """

    def __init__(
        self,
        token: str | None = None,
        *,
        server: str | None = None,
        user_agent: str | None = None,
        timeout: float | None = None,
        retry: RetryConfig | None = None,
        pacing: PacingConfig | None = None,
        logger: Logger | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        http_client: httpx.AsyncClient | None = None,
        context: Context | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            token: API token. If not provided, uses HTB_TOKEN from settings.
            server: Base API URL without /v4 or /v5 (default from settings)
            user_agent: User-Agent header (default htb-client/<version>)
            timeout: Per-attempt timeout in seconds (default 60)
            retry: Retry configuration (default from settings)
            pacing: Pacing configuration (default from settings)
            logger: Logger for client, pacer and pipeline
            transport: Underlying transport for the pipeline to decorate
            http_client: Fully configured httpx client used as-is. Its
                         transport is not wrapped, so pacing and retries
                         only apply if it already uses a RequestPipeline.
            context: Lifetime context; cancelling it aborts all waits

        Raises:
            HTBAuthenticationError: If no token is available.
            InvalidTokenError: If the token is not a well-formed JWT.
        """
        settings = get_settings()

        self._token = token or settings.htb_token
        if not self._token:
            raise HTBAuthenticationError(
                "HTB token required. Set HTB_TOKEN environment variable."
            )
        validate_token(self._token)

        self._server = (server or settings.htb_server).rstrip("/")
        self._user_agent = user_agent or settings.user_agent or DEFAULT_USER_AGENT
        self._timeout = timeout if timeout is not None else settings.request_timeout_seconds
        self._logger: Logger = logger or LoguruLogger(__name__)
        self._auth = PlatformAuth(self._token, self._user_agent)

        # Exactly one pacer per client, whichever HTTP client is used
        self._pacer = RequestPacer(context, self._logger, pacing or settings.pacing)

        self._pipeline: RequestPipeline | None
        if http_client is not None:
            self._logger.info(
                "Using custom HTTP client; pacing and retries are bypassed "
                "unless its transport is a RequestPipeline"
            )
            self._pipeline = None
            self._http = http_client
            self._owns_http = False
        else:
            self._logger.debug("Setting up internal HTTP client with pacing and retries")
            self._pipeline = RequestPipeline(
                transport or httpx.AsyncHTTPTransport(),
                self._pacer,
                retry or RetryConfig.from_settings(settings.retry),
                self._logger,
            )
            self._http = httpx.AsyncClient(transport=self._pipeline, timeout=self._timeout)
            self._owns_http = True

    @property
    def pacer(self) -> RequestPacer:
        """The pacer shared by every request of this client."""
        return self._pacer

    @property
    def pipeline(self) -> RequestPipeline | None:
        """The internal pipeline (None when a custom http_client is used)."""
        return self._pipeline

    @property
    def server(self) -> str:
        """Base API URL without trailing slash."""
        return self._server

    @property
    def user_agent(self) -> str:
        """User-Agent sent with every request."""
        return self._user_agent

    def url_for(self, path: str, api_version: APIVersion = "v4") -> str:
        """Build the absolute URL of an endpoint path."""
        return f"{self._server}/{api_version}/{path.lstrip('/')}"

    def wrap_context(self, ctx: Context | None) -> Context:
        """Merge a caller context with the client's lifetime context.

        Use this when calling endpoints through a different HTTP stack
        that should stop when the client's context is canceled.
        """
        return self._pacer.wrap(ctx)

    async def close(self) -> None:
        """Close the underlying HTTP client if the client created it."""
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> HTBClient:
        """Async context manager entry."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Async context manager exit."""
        await self.close()

    # -------------------------------------------------------------------------
    # Raw Requests
    # -------------------------------------------------------------------------
    async def request(
        self,
        method: str,
        path: str,
        *,
        api_version: APIVersion = "v4",
        params: dict[str, Any] | None = None,
        json: Any = None,
        content: bytes | None = None,
        ctx: Context | None = None,
    ) -> httpx.Response:
        """Send a request and return the final response.

        Non-2xx statuses are returned, not raised.

        Args:
            method: HTTP method
            path: Endpoint path relative to the API version root
            api_version: "v4" or "v5"
            params: Query parameters
            json: JSON body
            content: Raw body
            ctx: Optional context bounding the whole call, retries included

        Returns:
            The read response of the final attempt
        """
        request = self._http.build_request(
            method,
            self.url_for(path, api_version),
            params=params,
            json=json,
            content=content,
        )

        if self._pipeline is not None:
            if ctx is not None:
                with_context(request, ctx)
            return await self._http.send(request, auth=self._auth)

        with self._pacer.wrapped(ctx) as effective:
            return await effective.run(self._http.send(request, auth=self._auth))

    # -------------------------------------------------------------------------
    # Decoded Requests
    # -------------------------------------------------------------------------
    async def get_json(
        self,
        path: str,
        *,
        api_version: APIVersion = "v4",
        params: dict[str, Any] | None = None,
        ctx: Context | None = None,
    ) -> APIResponse:
        """GET an endpoint and decode its JSON body.

        Raises:
            HTBAPIError: Subclass matching the final non-2xx status
            ResponseParseError: If the body is not valid JSON
        """
        response = await self.request("GET", path, api_version=api_version, params=params, ctx=ctx)
        return self._decode(response)

    async def post_json(
        self,
        path: str,
        payload: Any = None,
        *,
        api_version: APIVersion = "v4",
        params: dict[str, Any] | None = None,
        ctx: Context | None = None,
    ) -> APIResponse:
        """POST a JSON payload and decode the JSON response.

        Raises:
            HTBAPIError: Subclass matching the final non-2xx status
            ResponseParseError: If the body is not valid JSON
        """
        response = await self.request(
            "POST",
            path,
            api_version=api_version,
            params=params,
            json=payload,
            ctx=ctx,
        )
        return self._decode(response)

    async def download(
        self,
        path: str,
        *,
        api_version: APIVersion = "v4",
        params: dict[str, Any] | None = None,
        ctx: Context | None = None,
    ) -> APIResponse:
        """GET a file (e.g. a VPN configuration) as raw bytes.

        Raises:
            HTBAPIError: Subclass matching the final non-2xx status
        """
        response = await self.request("GET", path, api_version=api_version, params=params, ctx=ctx)
        self._raise_for_status(response)
        return APIResponse(data=response.content, meta=ResponseMeta.from_response(response))

    # -------------------------------------------------------------------------
    # Error Handling
    # -------------------------------------------------------------------------
    def _raise_for_status(self, response: httpx.Response) -> None:
        """Raise the typed error for a non-2xx final response."""
        if response.is_success:
            return
        error = error_from_response(response)
        self._logger.debug(
            "Request failed",
            url=str(response.request.url),
            status_code=response.status_code,
            error=error.message,
        )
        raise error

    def _decode(self, response: httpx.Response) -> APIResponse:
        self._raise_for_status(response)
        try:
            data = response.json()
        except ValueError as e:
            raise ResponseParseError(
                "Failed to parse response JSON",
                status_code=PARSE_ERROR_STATUS,
                raw=response.content,
                headers=response.headers,
            ) from e
        return APIResponse(data=data, meta=ResponseMeta.from_response(response))
