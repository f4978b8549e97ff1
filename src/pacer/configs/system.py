from datetime import timedelta
from typing import Literal, Optional

from pydantic import BaseModel, Field, model_validator


class SchedulerConfig(BaseModel):
    """Admission settings for a ``RequestScheduler``.

    Durations are ``timedelta`` so YAML / env values can be given as
    ISO-8601 strings (``PT0.05S``) or plain seconds (``0.05``).
    """

    max_concurrent: int = Field(
        default=4, ge=1, description="Maximum operations executing at once"
    )
    min_delay: timedelta = Field(
        default_factory=lambda: timedelta(milliseconds=50),
        description="Minimum spacing between two consecutive dispatches",
    )
    initial_backoff: timedelta = Field(
        default_factory=lambda: timedelta(seconds=1),
        description="First cool-down window after a rate-limit signal",
    )
    max_backoff: timedelta = Field(
        default_factory=lambda: timedelta(seconds=30),
        description="Upper bound for the cool-down window",
    )
    backoff_multiplier: float = Field(
        default=2.0, ge=1.0, description="Growth factor between windows"
    )
    dedupe_window: timedelta = Field(
        default_factory=lambda: timedelta(milliseconds=100),
        description="Identical keys submitted within this window share one call",
    )
    retry_priority_boost: int = Field(
        default=100,
        description="Added to an operation's base priority when it is "
        "requeued after a rate-limit signal",
    )
    max_rate_limit_retries: Optional[int] = Field(
        default=None,
        ge=0,
        description="Give up after this many rate-limited attempts "
        "(None retries forever)",
    )

    @model_validator(mode="after")
    def _check_backoff_bounds(self) -> "SchedulerConfig":
        if self.max_backoff < self.initial_backoff:
            raise ValueError(
                f"max_backoff ({self.max_backoff}) must not be shorter than "
                f"initial_backoff ({self.initial_backoff})"
            )
        return self


class ClientConfig(BaseModel):
    """Settings for the throttled HTTP client."""

    base_url: str = Field(
        default="http://localhost:8080",
        description="Base URL every request path is joined to",
    )
    timeout: timedelta = Field(
        default_factory=lambda: timedelta(seconds=30),
        description="Per-request HTTP timeout",
    )
    key_prefix: str = Field(
        default="api",
        description="Namespace for GET deduplication keys",
    )
    headers: dict[str, str] = Field(
        default_factory=dict,
        description="Headers sent with every request",
    )


class NotifierConfig(BaseModel):
    """Backoff indicator settings."""

    throttle: timedelta = Field(
        default_factory=lambda: timedelta(seconds=5),
        description="Minimum interval between two forwarded backoff notices",
    )


class LoggingConfig(BaseModel):
    """Root logger settings."""

    level: str = Field(default="INFO", description="Root log level")
    json_output: bool = Field(
        default=False, description="Emit JSON lines instead of plain text"
    )
    stream: Literal["stdout", "stderr"] = Field(
        default="stderr", description="Stream the log handler writes to"
    )
    library_levels: dict[str, str] = Field(
        default_factory=lambda: {
            "httpx": "WARNING",
            "httpcore": "WARNING",
            "opentelemetry": "WARNING",
        },
        description="Per-logger levels for noisy third-party libraries",
    )


class TracingConfig(BaseModel):
    """OpenTelemetry export settings."""

    enabled: bool = Field(default=False, description="Enable OTLP export")
    endpoint: str = Field(default="", description="OTLP HTTP traces endpoint")
    service_name: str = Field(default="pacer", description="service.name")
    sample_rate: float = Field(
        default=1.0, ge=0.0, le=1.0, description="Root sampling ratio"
    )
    headers: dict[str, str] = Field(
        default_factory=dict, description="Extra exporter headers"
    )
