"""Castor: a resilient, provider-agnostic completion-request proxy.

Public API:
    - CompletionProxy: translate, execute with retries, normalize
    - Config / RetryPolicy: immutable configuration
    - NormalizedRequest / NormalizedResponse and content parts
    - ProxyError and its subclasses
"""

from __future__ import annotations

import logging

from castor.config import Config, ContentFormat, RetryPolicy, parse_init_data
from castor.errors import (
    AuthError,
    CastorError,
    ConfigurationError,
    InvalidRequestError,
    ModelUnsupportedError,
    NetworkError,
    ProviderError,
    ProxyError,
    RateLimitError,
    RequestTimeoutError,
    UnsupportedContentError,
)
from castor.proxy import CompletionProxy
from castor.registry import ModelInfo, ModelRegistry, default_registry
from castor.retry import ExecutionTrace, RetryEngine, RetryState
from castor.types import (
    Image,
    Message,
    NormalizedRequest,
    NormalizedResponse,
    Role,
    StopReason,
    Text,
    ToolChoice,
    ToolDefinition,
    ToolResult,
    ToolUse,
    Usage,
)

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("castor-proxy")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("castor").addHandler(logging.NullHandler())

__all__ = [
    "AuthError",
    "CastorError",
    "CompletionProxy",
    "Config",
    "ConfigurationError",
    "ContentFormat",
    "ExecutionTrace",
    "Image",
    "InvalidRequestError",
    "Message",
    "ModelInfo",
    "ModelRegistry",
    "ModelUnsupportedError",
    "NetworkError",
    "NormalizedRequest",
    "NormalizedResponse",
    "ProviderError",
    "ProxyError",
    "RateLimitError",
    "RequestTimeoutError",
    "RetryEngine",
    "RetryPolicy",
    "RetryState",
    "Role",
    "StopReason",
    "Text",
    "ToolChoice",
    "ToolDefinition",
    "ToolResult",
    "ToolUse",
    "UnsupportedContentError",
    "Usage",
    "__version__",
    "default_registry",
    "parse_init_data",
]
