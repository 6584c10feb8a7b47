"""Pydantic schemas for decoded Platform API responses."""

from typing import Any, Self

import httpx
from pydantic import BaseModel, Field


class ResponseMeta(BaseModel):
    """Transport details kept alongside every decoded response."""

    raw: bytes = Field(default=b"", description="Raw response body")
    status_code: int = Field(description="HTTP status code")
    headers: dict[str, str] = Field(default_factory=dict, description="Response headers")
    cf_ray: str | None = Field(default=None, description="Cloudflare ray id (CF-Ray)")

    @classmethod
    def from_response(cls, response: httpx.Response) -> Self:
        """Build metadata from a response whose body has been read."""
        return cls(
            raw=response.content,
            status_code=response.status_code,
            headers=dict(response.headers.items()),
            cf_ray=response.headers.get("cf-ray"),
        )


class APIResponse(BaseModel):
    """Decoded response data plus its metadata.

    data is the parsed JSON document, or raw bytes for file downloads.
    """

    data: Any = None
    meta: ResponseMeta

    @property
    def status_code(self) -> int:
        """HTTP status code of the response."""
        return self.meta.status_code
