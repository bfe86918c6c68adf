#!/usr/bin/env python3
"""Generic HTTP Client for the ThingsBoard source platform.

This client handles the transport concerns of reading the source tree and
writing attributes back:

    - JWT authentication via TBTokenManager
    - One transparent re-login and retry on 401 when credentials allow it
    - Page/hasNext pagination used by the customer asset and device listings
    - Typed exceptions shared with the registry client

Usage:
    async with TBClient(token_manager) as client:
        customer = await client.get("/api/customer/<id>")
        async for page in client.paginate("/api/customer/<id>/devices"):
            ...
"""
import asyncio
import json
import logging
from typing import Any, AsyncIterator, Optional

import aiohttp

from .auth import TBTokenManager
from .exceptions import (
    APIError,
    AuthenticationError,
    ConnectionError,
    NetworkError,
    NotFoundError,
    ServerError,
    TimeoutError,
)

logger = logging.getLogger(__name__)


class TBClient:
    """Async HTTP client for ThingsBoard REST APIs.

    Attributes:
        token_manager: Supplies the JWT for each request
        base_url: ThingsBoard base URL
        page_size: Default page size for paginated listings
    """

    def __init__(
        self,
        token_manager: TBTokenManager,
        base_url: Optional[str] = None,
        page_size: int = 1000,
        timeout: float = 30.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.token_manager = token_manager
        self.base_url = (base_url or token_manager.base_url).rstrip("/")
        self.page_size = page_size
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "TBClient":
        if self._session is None:
            self._session = aiohttp.ClientSession(
                connector=aiohttp.TCPConnector(limit=10, limit_per_host=10),
                timeout=aiohttp.ClientTimeout(total=self.timeout, connect=10),
            )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._session and self._owns_session:
            await self._session.close()
            self._session = None

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
        json_body: Optional[Any] = None,
    ) -> Any:
        """Make a single authenticated request (no retry logic)."""
        if not self._session:
            raise RuntimeError(
                "TBClient must be used as async context manager: "
                "async with TBClient(...) as client:"
            )

        token = await self.token_manager.get_token()
        headers = {
            "X-Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

        try:
            async with self._session.request(
                method=method,
                url=f"{self.base_url}{endpoint}",
                headers=headers,
                params=params,
                json=json_body,
            ) as response:
                if response.status >= 400:
                    body = await response.text()
                    raise self._create_api_error(response.status, method, endpoint, body)

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
            raise NetworkError(f"Network error during {method} {endpoint}: {e}", cause=e)

    @staticmethod
    def _create_api_error(status: int, method: str, endpoint: str, body: str) -> Exception:
        if status in (401, 403):
            return AuthenticationError(
                f"ThingsBoard auth error ({status}) for {method} {endpoint}",
                status_code=status,
                endpoint=endpoint,
            )
        if status == 404:
            return NotFoundError(
                f"{method} {endpoint} returned 404",
                endpoint=endpoint,
                method=method,
                response_body=body,
            )
        if status >= 500:
            return ServerError(
                f"Server error ({status}) for {method} {endpoint}",
                status_code=status,
                endpoint=endpoint,
                method=method,
                response_body=body,
            )
        return APIError(
            f"TB API error ({status}) at {endpoint}: {body}",
            status_code=status,
            endpoint=endpoint,
            method=method,
            response_body=body,
        )

    async def _request_with_reauth(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
        json_body: Optional[Any] = None,
    ) -> Any:
        """Make a request, logging in again once if the JWT was rejected."""
        try:
            return await self._request(method, endpoint, params, json_body)
        except AuthenticationError as e:
            if e.status_code != 401 or not self.token_manager.invalidate():
                raise
            logger.warning(f"ThingsBoard token rejected for {endpoint}, logging in again")

        return await self._request(method, endpoint, params, json_body)

    async def get(self, endpoint: str, params: Optional[dict] = None) -> Any:
        return await self._request_with_reauth("GET", endpoint, params=params)

    async def post(self, endpoint: str, json_body: Any, params: Optional[dict] = None) -> Any:
        return await self._request_with_reauth("POST", endpoint, params=params, json_body=json_body)

    async def paginate(
        self,
        endpoint: str,
        params: Optional[dict] = None,
        page_size: Optional[int] = None,
    ) -> AsyncIterator[list[dict]]:
        """Iterate through a ThingsBoard ``PageData`` listing.

        Follows ``hasNext`` until the server reports the last page.

        Yields:
            The ``data`` list of each page
        """
        page = 0
        fetched = 0

        while True:
            page_params = {
                **(params or {}),
                "pageSize": page_size or self.page_size,
                "page": page,
            }

            data = await self.get(endpoint, params=page_params) or {}
            items = data.get("data") or []
            fetched += len(items)

            if items:
                yield items

            if not data.get("hasNext"):
                break
            page += 1

        logger.debug(f"Pagination complete for {endpoint}: {fetched} items in {page + 1} pages")

    async def fetch_all(
        self,
        endpoint: str,
        params: Optional[dict] = None,
        page_size: Optional[int] = None,
    ) -> list[dict]:
        """Fetch every item of a paginated listing into one list."""
        all_items = []
        async for page in self.paginate(endpoint, params, page_size):
            all_items.extend(page)
        return all_items
