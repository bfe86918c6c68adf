#!/usr/bin/env python3
"""JWT management for the ThingsBoard source platform.

The source platform authenticates with a JWT sent in the
``X-Authorization: Bearer <jwt>`` header. The token either comes
pre-issued (``TB_TOKEN``, e.g. copied from a browser session) or is obtained
by logging in with username and password (``POST /api/auth/login``).

Features:
    - Token caching in memory only (never persisted to disk)
    - Login serialized with an asyncio.Lock so concurrent fetchers share one login
    - invalidate() lets the HTTP client force a fresh login after a 401
    - Token ID in debug output uses SHA-256 hash (first 8 chars)

Example:
    >>> manager = TBTokenManager(base_url, username="sync@example.com", password="...")
    >>> token = await manager.get_token()
"""
import asyncio
import hashlib
import logging
from typing import Optional

import aiohttp

from .exceptions import (
    ConfigurationError,
    ConnectionError,
    TokenFetchError,
)

logger = logging.getLogger(__name__)

LOGIN_ENDPOINT = "/api/auth/login"


def token_id(token: str) -> str:
    """Safe identifier for logging a token (never log the token itself)."""
    return hashlib.sha256(token.encode()).hexdigest()[:8]


class TBTokenManager:
    """Provides the JWT for source-platform requests.

    Attributes:
        base_url: Source platform base URL
        can_refresh: True when credentials allow obtaining a new token
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: float = 30.0,
    ):
        if not token and not (username and password):
            raise ConfigurationError(
                "ThingsBoard credentials are required: set TB_TOKEN or TB_USERNAME/TB_PASSWORD",
                missing_keys=["TB_TOKEN", "TB_USERNAME", "TB_PASSWORD"],
            )

        self.base_url = base_url.rstrip("/")
        self.username = username
        self._password = password
        self._timeout = timeout
        self._token: Optional[str] = token
        self._lock = asyncio.Lock()

    @property
    def can_refresh(self) -> bool:
        return bool(self.username and self._password)

    async def get_token(self) -> str:
        """Return the cached token, logging in first if needed."""
        if self._token:
            return self._token

        async with self._lock:
            # Another task may have logged in while we waited
            if self._token:
                return self._token
            self._token = await self._login()
            logger.debug(f"Obtained ThingsBoard token (id={token_id(self._token)})")
            return self._token

    def invalidate(self) -> bool:
        """Drop the cached token.

        Returns:
            True if a new token can be obtained, False for a static token
            (which is kept, since nothing could replace it).
        """
        if not self.can_refresh:
            return False
        self._token = None
        return True

    async def _login(self) -> str:
        url = f"{self.base_url}{LOGIN_ENDPOINT}"
        try:
            async with aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout)
            ) as session:
                async with session.post(
                    url,
                    json={"username": self.username, "password": self._password},
                ) as response:
                    if response.status != 200:
                        body = await response.text()
                        raise TokenFetchError(
                            f"ThingsBoard login failed ({response.status}): {body[:200]}",
                            status_code=response.status,
                        )
                    payload = await response.json()
        except aiohttp.ClientConnectionError as e:
            raise ConnectionError(
                f"Failed to connect to {self.base_url}",
                host=self.base_url,
                cause=e,
            )

        token = payload.get("token") if isinstance(payload, dict) else None
        if not token:
            raise TokenFetchError("ThingsBoard login response did not contain a token")
        return token
