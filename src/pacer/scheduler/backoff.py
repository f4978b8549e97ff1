"""Backoff controller: one exponentially growing cool-down window.

Two states: *idle* (``now >= until``) and *backing off*.  Every
rate-limit signal arms a window of the current length and then grows the
length for the next signal, capped at ``maximum``.  A successful dispatch
shrinks the *next* window back to ``initial`` but leaves a running window
alone; ``reset()`` ends the window as well.

All methods take ``now`` explicitly (the event loop's monotonic clock),
so the controller is a plain state machine with no timers of its own.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass
class BackoffState:
    initial: float
    maximum: float
    multiplier: float
    current: float
    until: float = 0.0


class BackoffController:
    """Tracks the cool-down window that suspends dispatching."""

    def __init__(self, initial: float, maximum: float, multiplier: float) -> None:
        if initial <= 0:
            raise ValueError("initial backoff must be positive")
        if maximum < initial:
            raise ValueError("maximum backoff must be >= initial backoff")
        if multiplier < 1:
            raise ValueError("backoff multiplier must be >= 1")
        self.state = BackoffState(
            initial=initial,
            maximum=maximum,
            multiplier=multiplier,
            current=initial,
        )

    @property
    def current(self) -> float:
        """Length of the window the next rate-limit signal will arm."""
        return self.state.current

    @property
    def until(self) -> float:
        return self.state.until

    def is_backing_off(self, now: float) -> bool:
        return now < self.state.until

    def remaining(self, now: float) -> float:
        return max(0.0, self.state.until - now)

    def trip(self, now: float, retry_after: Optional[float] = None) -> float:
        """Arm a window starting at *now* and grow the next one.

        An upstream *retry_after* hint (seconds) lengthens the armed window
        when it exceeds the current step, even past ``maximum``; growth of
        the next step is unaffected.  Returns the length of the window just
        armed.  A window is never shortened by a later signal.
        """
        state = self.state
        window = state.current
        if retry_after is not None and retry_after > window:
            window = retry_after
        state.until = max(state.until, now + window)
        state.current = min(state.current * state.multiplier, state.maximum)
        return window

    def record_success(self) -> None:
        """Reset growth after a successful dispatch."""
        self.state.current = self.state.initial

    def reset(self) -> None:
        """End any running window and reset growth."""
        self.state.until = 0.0
        self.state.current = self.state.initial
