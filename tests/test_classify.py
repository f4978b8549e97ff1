"""Tests for rate-limit detection on operation errors."""

from __future__ import annotations

import httpx
import pytest

from pacer.scheduler.base import RateLimitError
from pacer.scheduler.classify import is_rate_limit_error, retry_after_of


class _StatusError(Exception):
    def __init__(self, message: str = "boom", **attrs) -> None:
        super().__init__(message)
        for name, value in attrs.items():
            setattr(self, name, value)


class _Response:
    def __init__(self, **attrs) -> None:
        for name, value in attrs.items():
            setattr(self, name, value)


def _http_status_error(
    status: int,
    url: str = "https://api.example.com/items",
    headers: dict[str, str] | None = None,
) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", url)
    response = httpx.Response(status, request=request, headers=headers)
    try:
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        return exc
    raise AssertionError(f"{status} did not raise")


class TestRateLimitDetection:
    def test_status_attribute(self):
        assert is_rate_limit_error(_StatusError(status=429))

    def test_status_code_attribute(self):
        assert is_rate_limit_error(_StatusError(status_code=429))

    def test_nested_response_status(self):
        assert is_rate_limit_error(_StatusError(response=_Response(status=429)))

    def test_httpx_status_error(self):
        assert is_rate_limit_error(_http_status_error(429))

    def test_httpx_other_status_is_terminal(self):
        assert not is_rate_limit_error(_http_status_error(500))

    def test_429_in_url_does_not_count(self):
        error = _http_status_error(404, url="http://api/orders/14290")
        assert "429" in str(error)
        assert not is_rate_limit_error(error)

    def test_status_wins_over_message(self):
        assert not is_rate_limit_error(
            _StatusError("rate limit of the billing plan", status=402)
        )

    def test_explicit_rate_limit_error(self):
        assert is_rate_limit_error(RateLimitError())

    @pytest.mark.parametrize(
        "message",
        [
            "Rate limit exceeded: 429",
            "upstream said RATE LIMIT reached",
            "Too Many Requests",
            "HTTP 429",
        ],
    )
    def test_message_markers(self, message):
        assert is_rate_limit_error(RuntimeError(message))

    @pytest.mark.parametrize(
        "error",
        [
            RuntimeError("Authentication required"),
            ValueError("bad payload"),
            _StatusError(status=503),
            _StatusError(response=_Response(status_code=404)),
            _StatusError(status="not-a-number"),
        ],
    )
    def test_other_errors_are_terminal(self, error):
        assert not is_rate_limit_error(error)


class TestRetryAfter:
    def test_from_rate_limit_error(self):
        assert retry_after_of(RateLimitError(retry_after=2.5)) == 2.5

    def test_from_response_header(self):
        error = _http_status_error(429, headers={"Retry-After": "3"})
        assert retry_after_of(error) == 3.0

    @pytest.mark.parametrize(
        "error",
        [
            RateLimitError(),
            RateLimitError(retry_after=0),
            _http_status_error(429),
            _http_status_error(
                429, headers={"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"}
            ),
            RuntimeError("Too Many Requests"),
        ],
    )
    def test_missing_or_unusable_hint(self, error):
        assert retry_after_of(error) is None
