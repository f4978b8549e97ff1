"""HTTP client that routes every call through a ``RequestScheduler``."""

from .api import AuthRequired, ThrottledClient, TokenProvider

__all__ = ["AuthRequired", "ThrottledClient", "TokenProvider"]
