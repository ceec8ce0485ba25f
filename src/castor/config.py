"""Configuration: frozen runtime Config plus the validated JSON init schema."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
import json
import os
from typing import Any, Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, model_validator

from castor.errors import ConfigurationError

load_dotenv()

NonTextPolicy = Literal["reject", "drop"]

DEFAULT_MODEL = "gpt-4o"
DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_API_KEY_ENV = "OPENAI_API_KEY"
DEFAULT_USER_AGENT = "castor-proxy/0.1.0"


class ContentFormat(str, Enum):
    """Wire shape a provider expects for message content."""

    #: Structured array of typed parts (modern OpenAI).
    ARRAY = "Array"
    #: A single flattened string (legacy providers such as Moonshot).
    STRING = "String"


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry policy with exponential backoff and an overall deadline."""

    max_retries: int = 3
    initial_delay_s: float = 1.0
    max_delay_s: float = 30.0
    backoff_multiplier: float = 2.0
    max_total_timeout_s: float = 60.0

    def __post_init__(self) -> None:
        """Validate invariants to keep the delay sequence monotonic and capped."""
        if self.max_retries < 0:
            raise ValueError("RetryPolicy.max_retries must be >= 0")
        if self.initial_delay_s < 0:
            raise ValueError("RetryPolicy.initial_delay_s must be >= 0")
        if self.max_delay_s < self.initial_delay_s:
            raise ValueError("RetryPolicy.max_delay_s must be >= initial_delay_s")
        if self.backoff_multiplier <= 1.0:
            raise ValueError("RetryPolicy.backoff_multiplier must be > 1.0")
        if self.max_total_timeout_s <= 0:
            raise ValueError("RetryPolicy.max_total_timeout_s must be > 0")


@dataclass(frozen=True)
class Config:
    """Immutable configuration for one proxy instance.

    The secret is resolved exactly once, here, from the environment variable
    named by ``api_key_env``. Nothing downstream reads process state again.

    Example:
        config = Config(base_url="https://api.moonshot.cn/v1",
                        api_key_env="MOONSHOT_API_KEY",
                        content_format=ContentFormat.STRING)
    """

    default_model: str = DEFAULT_MODEL
    base_url: str = DEFAULT_BASE_URL
    api_key_env: str = DEFAULT_API_KEY_ENV
    content_format: ContentFormat = ContentFormat.ARRAY
    max_cache_size: int = 100
    timeout_s: float = 30.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    #: What String mode does with image parts: fail the request or drop them.
    non_text_policy: NonTextPolicy = "reject"
    user_agent: str = DEFAULT_USER_AGENT
    #: Auto-resolved from ``os.environ[api_key_env]`` when *None*.
    api_key: str | None = None

    def __post_init__(self) -> None:
        """Validate fields and resolve the API key."""
        if not self.base_url or not self.base_url.strip():
            raise ConfigurationError("base_url must be a non-empty string")
        if not self.api_key_env or not self.api_key_env.strip():
            raise ConfigurationError("api_key_env must be a non-empty string")
        if not self.default_model or not self.default_model.strip():
            raise ConfigurationError("default_model must be a non-empty string")

        try:
            content_format = ContentFormat(self.content_format)
        except ValueError:
            raise ConfigurationError(
                f"Unknown content_format: {self.content_format!r}",
                hint="Supported formats: 'Array', 'String'",
            ) from None
        object.__setattr__(self, "content_format", content_format)

        if self.non_text_policy not in ("reject", "drop"):
            raise ConfigurationError(
                f"Unknown non_text_policy: {self.non_text_policy!r}",
                hint="Supported policies: 'reject', 'drop'",
            )
        if self.max_cache_size < 0:
            raise ConfigurationError(
                f"max_cache_size must be >= 0, got {self.max_cache_size}"
            )
        if self.timeout_s <= 0:
            raise ConfigurationError(
                f"timeout must be > 0, got {self.timeout_s}",
                hint="This bounds a single HTTP attempt.",
            )

        if self.api_key is None:
            object.__setattr__(self, "api_key", os.environ.get(self.api_key_env))
        if not self.api_key:
            raise ConfigurationError(
                f"API key not found in environment variable: {self.api_key_env}",
                hint=f"Set {self.api_key_env} or pass api_key=...",
            )

    @property
    def chat_completions_url(self) -> str:
        """Absolute URL of the upstream chat completions endpoint."""
        return f"{self.base_url.rstrip('/')}/chat/completions"

    def __str__(self) -> str:
        """Return a redacted, developer-friendly representation."""
        return (
            f"Config(default_model={self.default_model!r}, base_url={self.base_url!r}, "
            f"api_key_env={self.api_key_env!r}, "
            f"content_format={self.content_format.value!r}, "
            f"api_key={'[REDACTED]' if self.api_key else None})"
        )

    __repr__ = __str__


# --- Init schema (Pydantic wall) ---


class RetrySettings(BaseModel):
    """``retry_config`` block of the init schema; durations in milliseconds."""

    max_retries: int = Field(default=3, ge=0)
    initial_delay_ms: int = Field(default=1000, ge=0)
    max_delay_ms: int = Field(default=30000, ge=0)
    backoff_multiplier: float = Field(default=2.0, gt=1.0)
    max_total_timeout_ms: int = Field(default=60000, gt=0)

    model_config = {"extra": "forbid"}

    @model_validator(mode="after")
    def check_delay_bounds(self) -> RetrySettings:
        """Keep the cap at or above the first delay."""
        if self.max_delay_ms < self.initial_delay_ms:
            raise ValueError("max_delay_ms must be >= initial_delay_ms")
        return self

    def to_policy(self) -> RetryPolicy:
        """Convert to the runtime policy (seconds)."""
        return RetryPolicy(
            max_retries=self.max_retries,
            initial_delay_s=self.initial_delay_ms / 1000,
            max_delay_s=self.max_delay_ms / 1000,
            backoff_multiplier=self.backoff_multiplier,
            max_total_timeout_s=self.max_total_timeout_ms / 1000,
        )


class ProxySettings(BaseModel):
    """``config`` block of the init schema."""

    default_model: str = Field(default=DEFAULT_MODEL, min_length=1)
    base_url: str = Field(default=DEFAULT_BASE_URL, min_length=1)
    api_key_env: str = Field(default=DEFAULT_API_KEY_ENV, min_length=1)
    content_format: Literal["Array", "String"] = "Array"
    max_cache_size: int = Field(default=100, ge=0)
    timeout_ms: int = Field(default=30000, gt=0)
    retry_config: RetrySettings = Field(default_factory=RetrySettings)
    non_text_policy: NonTextPolicy = "reject"

    model_config = {"extra": "forbid"}

    def to_config(self, *, api_key: str | None = None) -> Config:
        """Build the frozen runtime Config, resolving the secret."""
        return Config(
            default_model=self.default_model.strip(),
            base_url=self.base_url.strip(),
            api_key_env=self.api_key_env.strip(),
            content_format=ContentFormat(self.content_format),
            max_cache_size=self.max_cache_size,
            timeout_s=self.timeout_ms / 1000,
            retry=self.retry_config.to_policy(),
            non_text_policy=self.non_text_policy,
            api_key=api_key,
        )


class InitData(BaseModel):
    """Top-level init payload handed over by the host."""

    store_id: str | None = None
    config: ProxySettings = Field(default_factory=ProxySettings)


def parse_init_data(raw: bytes | str | Mapping[str, Any]) -> InitData:
    """Validate raw init JSON into an ``InitData``.

    Raises:
        ConfigurationError: If the payload is not JSON or fails validation.
    """
    try:
        if isinstance(raw, (bytes, str)):
            data = json.loads(raw)
        else:
            data = dict(raw)
        return InitData.model_validate(data)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Failed to parse init data: {e}") from e
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid init data: {e.error_count()} validation error(s)",
            hint=str(e),
        ) from e
