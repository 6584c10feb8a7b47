"""Credentials for Platform API requests."""

from __future__ import annotations

import base64
import binascii
import json
from collections.abc import Generator

import httpx

from .exceptions import InvalidTokenError


class PlatformAuth(httpx.Auth):
    """Attach the bearer token and client headers to every request.

    Sets:
    - Authorization: Bearer <token>
    - User-Agent
    - Accept: application/json
    """

    def __init__(self, token: str, user_agent: str) -> None:
        self._token = token
        self._user_agent = user_agent

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        request.headers["Authorization"] = f"Bearer {self._token}"
        request.headers["User-Agent"] = self._user_agent
        request.headers["Accept"] = "application/json"
        yield request


def _decode_segment(segment: str) -> bytes:
    """Decode an unpadded base64url JWT segment."""
    padding = "=" * (-len(segment) % 4)
    try:
        return base64.urlsafe_b64decode(segment + padding)
    except (binascii.Error, ValueError) as e:
        raise InvalidTokenError("invalid token") from e


def validate_token(token: str) -> None:
    """Check that a token looks like a JWT.

    The header and payload must be base64url-encoded JSON; the signature,
    when present, must be valid base64url. The signature is not verified.

    Raises:
        InvalidTokenError: If the token is malformed
    """
    parts = token.split(".")
    if len(parts) != 3:
        raise InvalidTokenError("invalid token")

    header = _decode_segment(parts[0])
    payload = _decode_segment(parts[1])
    if parts[2]:
        _decode_segment(parts[2])

    for segment in (header, payload):
        try:
            json.loads(segment)
        except ValueError as e:
            raise InvalidTokenError("invalid token") from e
