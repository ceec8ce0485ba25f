"""Pytest configuration and fixtures.

Provides environment isolation and logging configuration. Fixtures marked
autouse apply everywhere; the rest build the small config/registry pair most suites share.
"""

from __future__ import annotations

from contextlib import suppress
import logging
import os

import pytest

from castor.config import Config, ContentFormat
from castor.registry import ModelCapabilities, ModelInfo, ModelRegistry

TEST_API_KEY = "sk-test-key"

# =============================================================================
# Environment Isolation (Autouse)
# =============================================================================


@pytest.fixture(autouse=True)
def block_dotenv(request, monkeypatch):
    """Prevent python-dotenv from loading project .env files during tests.

    Opt-out: @pytest.mark.allow_dotenv
    """
    if request.node.get_closest_marker("allow_dotenv"):
        return
    with suppress(Exception):
        monkeypatch.setattr(
            "dotenv.load_dotenv", lambda *_args, **_kwargs: False, raising=False
        )


@pytest.fixture(autouse=True)
def isolate_provider_env(request, monkeypatch):
    """Ensure a clean upstream-credential environment for each test.

    Clears OPENAI_*, MOONSHOT_* and CASTOR_* env vars to prevent pollution.
    Opt-out: @pytest.mark.allow_env_pollution
    """
    if request.node.get_closest_marker("allow_env_pollution"):
        return

    for key in list(os.environ.keys()):
        if key.startswith(("OPENAI_", "MOONSHOT_", "CASTOR_")):
            monkeypatch.delenv(key, raising=False)


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Suppress noisy third-party loggers."""
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


# =============================================================================
# Shared Fixtures
# =============================================================================

X_8K = ModelInfo(
    id="x-8k",
    display_name="X 8K",
    context_window=8192,
    provider="Test",
    capabilities=ModelCapabilities(tool_use=True),
)
X_VISION = ModelInfo(
    id="x-vision",
    display_name="X Vision",
    context_window=128_000,
    provider="Test",
    capabilities=ModelCapabilities(vision=True, tool_use=True),
)
X_PLAIN = ModelInfo(
    id="x-plain",
    display_name="X Plain",
    context_window=4096,
    provider="Test",
)


@pytest.fixture
def registry() -> ModelRegistry:
    """Registry with a tool model, a vision model and a text-only model."""
    return ModelRegistry([X_8K, X_VISION, X_PLAIN])


def make_config(**overrides) -> Config:
    """Config with an explicit key so no environment lookup is needed."""
    overrides.setdefault("api_key", TEST_API_KEY)
    overrides.setdefault("default_model", "x-8k")
    overrides.setdefault("base_url", "https://upstream.test/v1")
    return Config(**overrides)


@pytest.fixture
def config() -> Config:
    return make_config()


@pytest.fixture
def string_config() -> Config:
    return make_config(content_format=ContentFormat.STRING)
