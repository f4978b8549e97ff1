"""Tests for ThrottledClient against an httpx mock transport."""

from __future__ import annotations

import asyncio
import time
from datetime import timedelta

import httpx
import pytest

from pacer.client import AuthRequired, ThrottledClient
from pacer.configs.system import ClientConfig, SchedulerConfig
from pacer.scheduler import RequestScheduler

BASE_URL = "https://api.example.com"


class _Recorder:
    """MockTransport handler that replays canned responses."""

    def __init__(self, *responses: httpx.Response) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]


def _make_client(handler, token_provider=None) -> tuple[RequestScheduler, ThrottledClient]:
    scheduler = RequestScheduler(
        SchedulerConfig(
            min_delay=timedelta(0),
            initial_backoff=timedelta(milliseconds=10),
            max_backoff=timedelta(milliseconds=50),
        ),
        name="client-test",
    )
    client = ThrottledClient(
        scheduler,
        ClientConfig(base_url=BASE_URL),
        token_provider=token_provider,
        transport=httpx.MockTransport(handler),
    )
    return scheduler, client


class _Tokens:
    def __init__(self, *tokens: str, delay: float = 0.0) -> None:
        self.tokens = list(tokens)
        self.delay = delay
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        await asyncio.sleep(self.delay)
        return self.tokens[min(self.calls, len(self.tokens)) - 1]


# =========================================================================
# Reads, writes and deduplication
# =========================================================================


class TestRequests:
    @pytest.mark.asyncio
    async def test_get_decodes_json(self):
        handler = _Recorder(httpx.Response(200, json={"items": [1, 2]}))
        scheduler, client = _make_client(handler)
        async with scheduler, client:
            assert await client.get("/items") == {"items": [1, 2]}
        assert handler.requests[0].url == httpx.URL(f"{BASE_URL}/items")

    @pytest.mark.asyncio
    async def test_concurrent_identical_gets_share_one_call(self):
        handler = _Recorder(httpx.Response(200, json={"id": 7}))
        scheduler, client = _make_client(handler)
        async with scheduler, client:
            first, second = await asyncio.gather(
                client.get("/items/7"), client.get("/items/7")
            )
        assert first == second == {"id": 7}
        assert len(handler.requests) == 1

    @pytest.mark.asyncio
    async def test_query_params_are_part_of_the_key(self):
        handler = _Recorder(httpx.Response(200, json=[]))
        scheduler, client = _make_client(handler)
        async with scheduler, client:
            await asyncio.gather(
                client.get("/items", params={"page": 1}),
                client.get("/items", params={"page": 2}),
            )
        assert len(handler.requests) == 2
        assert {r.url.params["page"] for r in handler.requests} == {"1", "2"}

    @pytest.mark.asyncio
    async def test_writes_are_never_deduplicated(self):
        handler = _Recorder(httpx.Response(201, json={"ok": True}))
        scheduler, client = _make_client(handler)
        async with scheduler, client:
            await asyncio.gather(
                client.post("/items", {"name": "a"}),
                client.post("/items", {"name": "a"}),
            )
        assert len(handler.requests) == 2
        assert handler.requests[0].method == "POST"

    @pytest.mark.asyncio
    async def test_empty_body_returns_none(self):
        handler = _Recorder(httpx.Response(204))
        scheduler, client = _make_client(handler)
        async with scheduler, client:
            assert await client.delete("/items/1") is None


# =========================================================================
# Error statuses
# =========================================================================


class TestErrorStatuses:
    @pytest.mark.asyncio
    async def test_429_is_retried_after_backoff(self):
        handler = _Recorder(
            httpx.Response(429, text="slow down"),
            httpx.Response(200, json={"done": True}),
        )
        scheduler, client = _make_client(handler)
        async with scheduler, client:
            assert await client.get("/busy") == {"done": True}
        assert len(handler.requests) == 2

    @pytest.mark.asyncio
    async def test_not_found_with_429_in_path_fails_once(self):
        handler = _Recorder(httpx.Response(404, text="no such order"))
        scheduler, client = _make_client(handler)
        async with scheduler, client:
            with pytest.raises(httpx.HTTPStatusError) as exc_info:
                await asyncio.wait_for(client.get("/orders/14290"), 1.0)
            assert not scheduler.get_stats().is_backing_off
        assert exc_info.value.response.status_code == 404
        assert len(handler.requests) == 1

    @pytest.mark.asyncio
    async def test_retry_after_header_is_honoured(self):
        handler = _Recorder(
            httpx.Response(429, headers={"Retry-After": "0.15"}),
            httpx.Response(200, json={"done": True}),
        )
        scheduler, client = _make_client(handler)
        async with scheduler, client:
            start = time.monotonic()
            assert await client.get("/busy") == {"done": True}
            elapsed = time.monotonic() - start
        assert len(handler.requests) == 2
        assert elapsed >= 0.14

    @pytest.mark.asyncio
    async def test_server_error_is_not_retried(self):
        handler = _Recorder(httpx.Response(500, text="kaboom"))
        scheduler, client = _make_client(handler)
        async with scheduler, client:
            with pytest.raises(httpx.HTTPStatusError) as exc_info:
                await client.get("/broken")
            assert not scheduler.get_stats().is_backing_off
        assert exc_info.value.response.status_code == 500
        assert len(handler.requests) == 1

    @pytest.mark.asyncio
    async def test_forbidden_raises_auth_required(self):
        handler = _Recorder(httpx.Response(403))
        scheduler, client = _make_client(handler)
        async with scheduler, client:
            with pytest.raises(AuthRequired) as exc_info:
                await client.get("/admin")
        assert exc_info.value.code == "AUTH_REQUIRED"
        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_unauthorized_without_provider(self):
        handler = _Recorder(httpx.Response(401))
        scheduler, client = _make_client(handler)
        async with scheduler, client:
            with pytest.raises(AuthRequired):
                await client.get("/me")
        assert len(handler.requests) == 1


# =========================================================================
# Authentication
# =========================================================================


class TestAuthentication:
    @pytest.mark.asyncio
    async def test_token_fetched_before_first_request(self):
        handler = _Recorder(httpx.Response(200, json={}))
        tokens = _Tokens("t1")
        scheduler, client = _make_client(handler, token_provider=tokens)
        async with scheduler, client:
            await client.get("/me")
            await client.get("/me/settings")
        assert tokens.calls == 1
        assert handler.requests[0].headers["Authorization"] == "Bearer t1"

    @pytest.mark.asyncio
    async def test_concurrent_first_requests_fetch_token_once(self):
        handler = _Recorder(httpx.Response(200, json={}))
        tokens = _Tokens("t1", delay=0.02)
        scheduler, client = _make_client(handler, token_provider=tokens)
        async with scheduler, client:
            await asyncio.gather(
                *(client.get("/me", params={"n": i}) for i in range(5))
            )
        assert tokens.calls == 1
        assert len(handler.requests) == 5

    @pytest.mark.asyncio
    async def test_401_refreshes_token_and_retries(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.headers.get("Authorization") != "Bearer t2":
                return httpx.Response(401)
            return httpx.Response(200, json={"user": "ada"})

        tokens = _Tokens("t1", "t2")
        scheduler, client = _make_client(handler, token_provider=tokens)
        async with scheduler, client:
            assert await client.get("/me") == {"user": "ada"}
            assert client.token == "t2"
        assert tokens.calls == 2

    @pytest.mark.asyncio
    async def test_refresh_is_attempted_once(self):
        handler = _Recorder(httpx.Response(401))
        tokens = _Tokens("t1", "t2")
        scheduler, client = _make_client(handler, token_provider=tokens)
        async with scheduler, client:
            with pytest.raises(AuthRequired) as exc_info:
                await client.get("/me")
        assert exc_info.value.status_code == 401
        assert len(handler.requests) == 2

    @pytest.mark.asyncio
    async def test_empty_token_is_rejected(self):
        handler = _Recorder(httpx.Response(200, json={}))
        scheduler, client = _make_client(handler, token_provider=_Tokens(""))
        async with scheduler, client:
            with pytest.raises(AuthRequired, match="No API token"):
                await client.get("/me")
        assert handler.requests == []

    @pytest.mark.asyncio
    async def test_authenticate_without_provider(self):
        scheduler, client = _make_client(_Recorder(httpx.Response(200)))
        async with scheduler, client:
            with pytest.raises(AuthRequired, match="No token provider"):
                await client.authenticate()
