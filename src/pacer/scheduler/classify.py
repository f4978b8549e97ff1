"""Rate-limit detection for exceptions raised by wrapped operations.

An exception that exposes an HTTP status, either directly (``status`` /
``status_code``) or on a nested ``response`` object
(``httpx.HTTPStatusError`` and most SDK errors), is classified by that
status alone: 429 is a rate limit, anything else is terminal.  Only
exceptions without a status fall back to their message, which counts
when it mentions ``429``, ``rate limit`` or ``too many requests``.

``retry_after_of`` extracts an upstream ``Retry-After`` hint, in seconds,
from the same shapes.
"""

from __future__ import annotations

from typing import Any, Optional

TOO_MANY_REQUESTS = 429

_STATUS_ATTRS = ("status", "status_code")
_MESSAGE_MARKERS = ("rate limit", "too many requests")


def _status_of(obj: Any) -> Optional[int]:
    for attr in _STATUS_ATTRS:
        value = getattr(obj, attr, None)
        if value is None:
            continue
        try:
            return int(value)
        except (TypeError, ValueError):
            continue
    return None


def _response_of(error: BaseException) -> Any:
    # ``httpx.HTTPStatusError.response`` raises if the request was never
    # attached; treat that as "no response".
    try:
        return getattr(error, "response", None)
    except RuntimeError:
        return None


def _seconds(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        # HTTP-date form is not supported.
        return None
    return seconds if seconds > 0 else None


def is_rate_limit_error(error: BaseException) -> bool:
    """Return ``True`` if *error* carries the upstream rate-limit signal."""
    status = _status_of(error)
    if status is None:
        response = _response_of(error)
        if response is not None:
            status = _status_of(response)
    if status is not None:
        return status == TOO_MANY_REQUESTS

    message = str(error)
    if str(TOO_MANY_REQUESTS) in message:
        return True
    lowered = message.lower()
    return any(marker in lowered for marker in _MESSAGE_MARKERS)


def retry_after_of(error: BaseException) -> Optional[float]:
    """Return the upstream's ``Retry-After`` hint in seconds, if any.

    Looks at a ``retry_after`` attribute first (``RateLimitError``), then
    at the ``Retry-After`` header of a nested ``response``.
    """
    hint = _seconds(getattr(error, "retry_after", None))
    if hint is not None:
        return hint

    response = _response_of(error)
    headers = getattr(response, "headers", None)
    if headers is None:
        return None
    return _seconds(headers.get("Retry-After"))
