"""
User authentication for AdvisorQ API.

Resolves a bearer token into an AuthenticatedUser.  The resolver is chosen
at app construction time: a static token map for development and tests, or a
remote verification endpoint with a short-lived token cache.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Protocol

import httpx
from cachetools import TTLCache
from fastapi import Request

from advisorq import errors
from advisorq.errors import ApiError
from advisorq.observability.logging import get_logger
from advisorq.utils.redaction import redact

logger = get_logger(__name__)

# Cache configuration
_CACHE_MAX_SIZE = 1000
_CACHE_TTL_SECONDS = 300
_VERIFY_TIMEOUT_SECONDS = 10.0


@dataclass
class AuthenticatedUser:
    """The caller behind a validated bearer token."""

    id: str
    email: str | None = None

    def __str__(self) -> str:
        return f"User({redact(self.id)})"


class UserResolver(Protocol):
    async def resolve(self, token: str) -> AuthenticatedUser: ...


class StaticTokenResolver:
    """
    Fixed token -> user id map.

    ADVISORQ_STATIC_TOKENS holds comma-separated ``token:user_id`` pairs.
    """

    def __init__(self, tokens: dict[str, str] | None = None) -> None:
        self.tokens = dict(tokens or {})

    @classmethod
    def from_env(cls) -> StaticTokenResolver:
        tokens: dict[str, str] = {}
        for pair in os.getenv("ADVISORQ_STATIC_TOKENS", "").split(","):
            token, _, user_id = pair.strip().partition(":")
            if token and user_id:
                tokens[token] = user_id
        return cls(tokens)

    async def resolve(self, token: str) -> AuthenticatedUser:
        user_id = self.tokens.get(token)
        if user_id is None:
            raise errors.unauthorized("Invalid or expired token")
        return AuthenticatedUser(id=user_id)


class RemoteTokenResolver:
    """
    Verify tokens against an identity endpoint returning ``{"id", "email"}``.

    Args:
        verify_url: endpoint called with ``Authorization: Bearer <token>``
        transport: optional httpx transport (tests pass httpx.MockTransport)
    """

    def __init__(self, verify_url: str, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.verify_url = verify_url
        self._transport = transport
        self._token_cache: TTLCache[str, AuthenticatedUser] = TTLCache(
            maxsize=_CACHE_MAX_SIZE, ttl=_CACHE_TTL_SECONDS
        )

    async def resolve(self, token: str) -> AuthenticatedUser:
        if token in self._token_cache:
            return self._token_cache[token]

        async with httpx.AsyncClient(transport=self._transport, timeout=_VERIFY_TIMEOUT_SECONDS) as client:
            try:
                response = await client.get(self.verify_url, headers={"Authorization": f"Bearer {token}"})
            except httpx.HTTPError as e:
                logger.error("Token verification request failed: %s", type(e).__name__)
                raise ApiError(
                    errors.INTERNAL_ERROR, "Authentication service unavailable", 503
                ) from e

        if response.status_code != 200:
            logger.warning("Token rejected by identity endpoint (status=%d)", response.status_code)
            raise errors.unauthorized("Invalid or expired token")

        try:
            info = response.json()
        except ValueError as e:
            raise errors.unauthorized("Invalid or expired token") from e

        user_id = info.get("id") if isinstance(info, dict) else None
        if not user_id:
            raise errors.unauthorized("Invalid or expired token")

        user = AuthenticatedUser(id=str(user_id), email=info.get("email"))
        self._token_cache[token] = user
        logger.info("Authenticated user: %s (cache size: %d)", user, len(self._token_cache))
        return user

    def clear_cache(self) -> None:
        self._token_cache.clear()


def resolver_from_env() -> UserResolver:
    verify_url = os.getenv("ADVISORQ_AUTH_VERIFY_URL")
    if verify_url:
        return RemoteTokenResolver(verify_url)
    return StaticTokenResolver.from_env()


def _extract_bearer_token(authorization: str | None) -> str:
    """Extract token from Authorization header."""
    if not authorization:
        raise errors.unauthorized("Missing authorization header")

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise errors.unauthorized("Invalid authorization header format. Expected: Bearer <token>")

    return parts[1]


async def require_user(request: Request) -> AuthenticatedUser:
    """
    FastAPI dependency to get the current authenticated user.

    Usage:
        @router.get("/endpoint")
        async def endpoint(user: AuthenticatedUser = Depends(require_user)):
            ...
    """
    token = _extract_bearer_token(request.headers.get("Authorization"))
    resolver: UserResolver = request.app.state.user_resolver
    return await resolver.resolve(token)
