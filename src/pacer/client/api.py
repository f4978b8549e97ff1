"""Throttled JSON API client on top of ``httpx`` and a ``RequestScheduler``.

Every request is routed through the scheduler:

* GET requests are deduplicated on ``"{prefix}:GET:{path?query}"``;
  writes never are.
* 429 responses surface as ``httpx.HTTPStatusError`` inside the wrapped
  operation, which the scheduler recognises and retries after backoff.
* 401/403 raise ``AuthRequired``.  When a *token_provider* is configured
  a 401 first triggers one token refresh and a retry that bypasses the
  queue (the original request already holds a dispatch slot).
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Optional

import httpx

from pacer.configs.system import ClientConfig
from pacer.infra.telemetry import (
    ATTR_CLIENT_METHOD,
    ATTR_CLIENT_PATH,
    ATTR_CLIENT_STATUS,
    SPAN_CLIENT_REQUEST,
    tracer,
)
from pacer.scheduler.base import PacerError
from pacer.scheduler.scheduler import RequestScheduler

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Awaitable[str]]

_UNAUTHORIZED = 401
_FORBIDDEN = 403
_TOO_MANY_REQUESTS = 429
_ERROR_BODY_LIMIT = 500


class AuthRequired(PacerError):
    """The upstream rejected the credentials (401/403)."""

    code = "AUTH_REQUIRED"

    def __init__(
        self,
        message: str = "Authentication required. Please sign in.",
        *,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code


class ThrottledClient:
    """JSON API client whose calls are admitted by a ``RequestScheduler``."""

    def __init__(
        self,
        scheduler: RequestScheduler,
        config: ClientConfig | None = None,
        *,
        token_provider: TokenProvider | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if config is None:
            config = ClientConfig()
        self._scheduler = scheduler
        self._key_prefix = config.key_prefix
        self._token_provider = token_provider
        self._token: str | None = None
        self._auth_lock = asyncio.Lock()
        self._http = httpx.AsyncClient(
            base_url=config.base_url,
            timeout=config.timeout.total_seconds(),
            headers=config.headers,
            transport=transport,
        )

    @property
    def scheduler(self) -> RequestScheduler:
        return self._scheduler

    @property
    def token(self) -> str | None:
        return self._token

    # -----------------------------------------------------------------
    # Authentication
    # -----------------------------------------------------------------

    async def authenticate(self) -> str:
        """Fetch a fresh token, skipping the admission queue."""
        if self._token_provider is None:
            raise AuthRequired("No token provider configured.")
        token = await self._scheduler.submit(self._token_provider, bypass_queue=True)
        if not token:
            raise AuthRequired("No API token received from authentication.")
        self._token = token
        return token

    def _headers(self, extra: dict[str, str] | None) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        if extra:
            headers.update(extra)
        return headers

    # -----------------------------------------------------------------
    # Requests
    # -----------------------------------------------------------------

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        priority: int = 0,
        bypass_queue: bool = False,
    ) -> Any:
        """Send a request through the scheduler and return the decoded JSON.

        Raises:
            AuthRequired: on 401/403 (after one refresh attempt when a
                token provider is configured).
            httpx.HTTPStatusError: on any other non-2xx response.
        """
        method = method.upper()
        if self._token is None and self._token_provider is not None:
            async with self._auth_lock:
                # Concurrent first requests share one token fetch.
                if self._token is None:
                    await self.authenticate()

        key = None
        if method == "GET":
            key = f"{self._key_prefix}:{method}:{httpx.URL(path, params=params)}"

        send = functools.partial(
            self._send,
            method,
            path,
            json=json,
            params=params,
            headers=headers,
            allow_refresh=True,
        )
        return await self._scheduler.submit(
            send, key=key, priority=priority, bypass_queue=bypass_queue
        )

    async def _send(
        self,
        method: str,
        path: str,
        *,
        json: Any,
        params: dict[str, Any] | None,
        headers: dict[str, str] | None,
        allow_refresh: bool,
    ) -> Any:
        with tracer.start_as_current_span(SPAN_CLIENT_REQUEST) as span:
            span.set_attribute(ATTR_CLIENT_METHOD, method)
            span.set_attribute(ATTR_CLIENT_PATH, path)
            response = await self._http.request(
                method,
                path,
                json=json,
                params=params,
                headers=self._headers(headers),
            )
            span.set_attribute(ATTR_CLIENT_STATUS, response.status_code)

        status = response.status_code
        if (
            status == _UNAUTHORIZED
            and allow_refresh
            and self._token_provider is not None
        ):
            logger.info("Token rejected for %s %s; re-authenticating", method, path)
            await self.authenticate()
            retry = functools.partial(
                self._send,
                method,
                path,
                json=json,
                params=params,
                headers=headers,
                allow_refresh=False,
            )
            return await self._scheduler.submit(retry, bypass_queue=True)

        if status in (_UNAUTHORIZED, _FORBIDDEN):
            raise AuthRequired(status_code=status)

        if response.is_error:
            if status == _TOO_MANY_REQUESTS:
                logger.debug("Rate limited: %s %s", method, path)
            else:
                logger.error(
                    "API error: %s %s -> %d %s",
                    method,
                    path,
                    status,
                    response.text[:_ERROR_BODY_LIMIT],
                )
            response.raise_for_status()

        if not response.content:
            return None
        return response.json()

    async def get(self, path: str, **kwargs: Any) -> Any:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, data: Any = None, **kwargs: Any) -> Any:
        return await self.request("POST", path, json=data, **kwargs)

    async def put(self, path: str, data: Any = None, **kwargs: Any) -> Any:
        return await self.request("PUT", path, json=data, **kwargs)

    async def patch(self, path: str, data: Any = None, **kwargs: Any) -> Any:
        return await self.request("PATCH", path, json=data, **kwargs)

    async def delete(self, path: str, **kwargs: Any) -> Any:
        return await self.request("DELETE", path, **kwargs)

    # -----------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------

    async def aclose(self) -> None:
        """Close the underlying HTTP client (the scheduler is not closed)."""
        await self._http.aclose()

    async def __aenter__(self) -> ThrottledClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()
