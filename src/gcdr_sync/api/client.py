#!/usr/bin/env python3
"""Generic HTTP Client for the GCDR registry API.

This module provides the transport layer used by the registry adapter:

    - Static API key + tenant header authentication
    - Typed exceptions per status code (401/403, 404, 409, 422, 5xx)
    - A single, fixed-delay retry on server errors for idempotent verbs only
    - Connection pooling via a shared aiohttp session
    - Per-call timeouts

Design Philosophy:
    This client knows HOW to talk to GCDR, but not WHAT to send. It has no
    knowledge of customers, assets or devices; conflict recovery and
    response-shape normalisation live in the registry adapter that composes
    this client.

Retry Policy:
    A 5xx response is retried exactly once, after ``retry_delay`` seconds,
    for GET, PATCH and PUT. POST is never retried here: an insert that
    partially committed and is blindly replayed can create a duplicate
    entity. Recovery for POST goes through conflict detection on the next run.

Usage:
    async with GCDRClient(base_url, api_key, tenant_id) as client:
        entity = await client.get("/api/v1/customers/abc")
        created = await client.post("/api/v1/assets", json_body=payload)
"""
import asyncio
import json
import logging
from typing import Any, Optional

import aiohttp

from .exceptions import (
    APIError,
    AuthenticationError,
    ConfigurationError,
    ConflictError,
    ConnectionError,
    NetworkError,
    NotFoundError,
    ServerError,
    TimeoutError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Verbs whose replay cannot create a duplicate side effect
IDEMPOTENT_METHODS = frozenset({"GET", "PATCH", "PUT"})

DEFAULT_RETRY_DELAY = 1.0
DEFAULT_TIMEOUT = 30.0


class GCDRClient:
    """Async HTTP client for the GCDR registry.

    Designed to be used as an async context manager so the session is
    always closed:

        async with GCDRClient(base_url, api_key, tenant_id) as client:
            data = await client.get("/api/v1/devices/123")

    Attributes:
        base_url: Base URL for API requests (e.g., "https://gcdr.example.com")
        tenant_id: Tenant sent in the ``x-tenant-id`` header
        retry_delay: Seconds to wait before the single 5xx retry
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        tenant_id: str,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """Initialize the GCDRClient.

        Args:
            base_url: Registry base URL
            api_key: Static API key sent as ``X-API-Key``
            tenant_id: Tenant ID sent as ``x-tenant-id``
            retry_delay: Fixed delay before retrying an idempotent 5xx
            timeout: Per-request timeout in seconds
            session: Optional externally managed session (not closed on exit)

        Raises:
            ConfigurationError: If base_url, api_key or tenant_id is empty.
        """
        missing = [
            key for key, value in (
                ("GCDR_BASE_URL", base_url),
                ("GCDR_API_KEY", api_key),
                ("GCDR_TENANT_ID", tenant_id),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(
                f"GCDR client is missing required settings: {', '.join(missing)}",
                missing_keys=missing,
            )

        self.base_url = base_url.rstrip("/")
        self.tenant_id = tenant_id
        self.retry_delay = retry_delay
        self.timeout = timeout
        self._api_key = api_key

        self._session = session
        self._owns_session = session is None

    # ----------------------------------------
    # Context Manager Protocol
    # ----------------------------------------

    async def __aenter__(self) -> "GCDRClient":
        """Enter async context: create the HTTP session."""
        if self._session is None:
            self._session = aiohttp.ClientSession(
                connector=aiohttp.TCPConnector(limit=10, limit_per_host=10),
                timeout=aiohttp.ClientTimeout(total=self.timeout, connect=10),
            )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context: close the HTTP session if we created it."""
        if self._session and self._owns_session:
            await self._session.close()
            self._session = None

    # ----------------------------------------
    # Low-Level Request Methods
    # ----------------------------------------

    def _headers(self) -> dict[str, str]:
        return {
            "X-API-Key": self._api_key,
            "x-tenant-id": self.tenant_id,
            "Content-Type": "application/json",
        }

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
    ) -> Any:
        """Make a single HTTP request (no retry logic).

        Args:
            method: HTTP method (GET, POST, PATCH, PUT)
            endpoint: API path (e.g., "/api/v1/customers")
            params: Query parameters
            json_body: JSON request body

        Returns:
            Parsed JSON response, or None for 204 / empty bodies

        Raises:
            APIError: If response status is not 2xx
            RuntimeError: If called outside of async context manager
            ConnectionError: If connection to server fails
            TimeoutError: If request times out
        """
        if not self._session:
            raise RuntimeError(
                "GCDRClient must be used as async context manager: "
                "async with GCDRClient(...) as client:"
            )

        url = f"{self.base_url}{endpoint}"

        try:
            async with self._session.request(
                method=method,
                url=url,
                headers=self._headers(),
                params=params,
                json=json_body,
            ) as response:
                if response.status >= 400:
                    error_text = await response.text()
                    raise self._create_api_error(
                        status=response.status,
                        method=method,
                        endpoint=endpoint,
                        response_body=error_text,
                    )

                if response.status == 204:
                    return None

                text = await response.text()
                if not text:
                    return None
                return json.loads(text)

        except aiohttp.ClientConnectionError as e:
            raise ConnectionError(
                f"Failed to connect to {self.base_url}",
                host=self.base_url,
                cause=e,
            )

        except asyncio.TimeoutError as e:
            raise TimeoutError(
                f"{method} {endpoint} timed out",
                timeout_seconds=self.timeout,
                cause=e,
            )

        except aiohttp.ClientError as e:
            raise NetworkError(
                f"Network error during {method} {endpoint}: {e}",
                cause=e,
            )

    def _create_api_error(
        self,
        status: int,
        method: str,
        endpoint: str,
        response_body: str,
    ) -> Exception:
        """Create the typed exception matching a non-2xx status code."""
        if status in (401, 403):
            return AuthenticationError(
                f"GCDR auth error ({status}) for {method} {endpoint}",
                status_code=status,
                endpoint=endpoint,
                details={"response_body": response_body[:500]},
            )

        if status == 404:
            return NotFoundError(
                f"{method} {endpoint} returned 404",
                endpoint=endpoint,
                method=method,
                response_body=response_body,
            )

        if status == 409:
            return ConflictError(
                f"{method} {endpoint} conflicts with an existing entity",
                endpoint=endpoint,
                method=method,
                response_body=response_body,
            )

        if status in (400, 422):
            return ValidationError(
                f"GCDR validation error for {method} {endpoint}: {response_body}",
                status_code=status,
                endpoint=endpoint,
                method=method,
                response_body=response_body,
            )

        if status >= 500:
            return ServerError(
                f"Server error ({status}) for {method} {endpoint}",
                status_code=status,
                endpoint=endpoint,
                method=method,
                response_body=response_body,
            )

        return APIError(
            f"GCDR API error ({status}) for {method} {endpoint}: {response_body}",
            status_code=status,
            endpoint=endpoint,
            method=method,
            response_body=response_body,
        )

    async def _request_with_retry(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
    ) -> Any:
        """Make an HTTP request, retrying a 5xx once for idempotent verbs.

        Raises:
            AuthenticationError: On 401/403 (never retried)
            ServerError: If the retry also fails, or immediately for POST
            APIError: For any other non-2xx status
        """
        try:
            return await self._request(method, endpoint, params, json_body)
        except ServerError as e:
            if method.upper() not in IDEMPOTENT_METHODS:
                raise
            logger.warning(
                f"Server error {e.status_code} for {method} {endpoint}, "
                f"retrying once in {self.retry_delay}s"
            )

        await asyncio.sleep(self.retry_delay)
        return await self._request(method, endpoint, params, json_body)

    # ----------------------------------------
    # High-Level Request Methods
    # ----------------------------------------

    async def request(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
    ) -> Any:
        """Make a request with the verb-dependent retry policy applied."""
        return await self._request_with_retry(method.upper(), endpoint, params=params, json_body=json_body)

    async def get(self, endpoint: str, params: Optional[dict] = None) -> Any:
        """Make a GET request."""
        return await self._request_with_retry("GET", endpoint, params=params)

    async def post(
        self,
        endpoint: str,
        json_body: dict,
        params: Optional[dict] = None,
    ) -> Any:
        """Make a POST request (never retried)."""
        return await self._request_with_retry("POST", endpoint, params=params, json_body=json_body)

    async def patch(
        self,
        endpoint: str,
        json_body: dict,
        params: Optional[dict] = None,
    ) -> Any:
        """Make a PATCH request."""
        return await self._request_with_retry("PATCH", endpoint, params=params, json_body=json_body)

    async def put(
        self,
        endpoint: str,
        json_body: dict,
        params: Optional[dict] = None,
    ) -> Any:
        """Make a PUT request."""
        return await self._request_with_retry("PUT", endpoint, params=params, json_body=json_body)
