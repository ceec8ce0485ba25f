"""Static catalog of supported models."""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from castor.errors import ModelUnsupportedError

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator


@dataclass(frozen=True)
class ModelCapabilities:
    """Feature flags exposed by a model."""

    vision: bool = False
    tool_use: bool = False
    structured_output: bool = False


@dataclass(frozen=True)
class ModelPricing:
    """Cost per million tokens, in USD."""

    input_cost_per_million_tokens: float
    output_cost_per_million_tokens: float


@dataclass(frozen=True)
class ModelInfo:
    """Metadata for one model id."""

    id: str
    display_name: str
    context_window: int
    provider: str
    capabilities: ModelCapabilities = ModelCapabilities()
    pricing: ModelPricing | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the outbound ``Models`` envelope."""
        return {
            "id": self.id,
            "display_name": self.display_name,
            "max_tokens": self.context_window,
            "provider": self.provider,
            "capabilities": {
                "vision": self.capabilities.vision,
                "tool_use": self.capabilities.tool_use,
                "structured_output": self.capabilities.structured_output,
            },
            "pricing": (
                None
                if self.pricing is None
                else {
                    "input_cost_per_million_tokens": self.pricing.input_cost_per_million_tokens,
                    "output_cost_per_million_tokens": self.pricing.output_cost_per_million_tokens,
                }
            ),
        }


class ModelRegistry:
    """Read-only mapping of model id to ModelInfo.

    Built once at startup and never mutated, so it can be shared by
    concurrent requests without locking.
    """

    def __init__(self, models: Iterable[ModelInfo]) -> None:
        catalog: dict[str, ModelInfo] = {}
        for info in models:
            if info.id in catalog:
                raise ValueError(f"Duplicate model id in registry: {info.id!r}")
            catalog[info.id] = info
        self._models = MappingProxyType(catalog)

    def lookup(self, model_id: str) -> ModelInfo:
        """Return the model's metadata.

        Raises:
            ModelUnsupportedError: If the id is not registered.
        """
        info = self._models.get(model_id)
        if info is None:
            raise ModelUnsupportedError(
                f"Model not supported: {model_id!r}",
                hint="Send ListModels to see the supported model ids.",
            )
        return info

    def get(self, model_id: str) -> ModelInfo | None:
        return self._models.get(model_id)

    def list_models(self) -> list[ModelInfo]:
        """Return all models in catalog order."""
        return list(self._models.values())

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._models

    def __iter__(self) -> Iterator[ModelInfo]:
        return iter(self._models.values())

    def __len__(self) -> int:
        return len(self._models)


_FULL = ModelCapabilities(vision=True, tool_use=True, structured_output=True)
_TOOLS = ModelCapabilities(tool_use=True)
_TOOLS_STRUCTURED = ModelCapabilities(tool_use=True, structured_output=True)
_TEXT_ONLY = ModelCapabilities()


def _openai(
    model_id: str,
    display_name: str,
    context_window: int,
    capabilities: ModelCapabilities,
    input_cost: float,
    output_cost: float,
) -> ModelInfo:
    return ModelInfo(
        id=model_id,
        display_name=display_name,
        context_window=context_window,
        provider="OpenAI",
        capabilities=capabilities,
        pricing=ModelPricing(input_cost, output_cost),
    )


def _moonshot(model_id: str, display_name: str, context_window: int) -> ModelInfo:
    return ModelInfo(
        id=model_id,
        display_name=display_name,
        context_window=context_window,
        provider="Moonshot",
        capabilities=_TOOLS,
    )


_DEFAULT_MODELS: tuple[ModelInfo, ...] = (
    _openai("gpt-4o", "GPT-4o", 128_000, _FULL, 2.50, 10.00),
    _openai("gpt-4o-mini", "GPT-4o Mini", 128_000, _FULL, 0.15, 0.60),
    _openai("gpt-4-turbo", "GPT-4 Turbo", 128_000, _FULL, 10.00, 30.00),
    _openai("gpt-4", "GPT-4", 8192, _TOOLS, 30.00, 60.00),
    _openai("o3", "o3", 200_000, _FULL, 60.00, 240.00),
    _openai("o3-mini", "o3 Mini", 200_000, _TOOLS_STRUCTURED, 15.00, 60.00),
    _openai("o1", "o1", 200_000, _FULL, 15.00, 60.00),
    _openai("o1-mini", "o1 Mini", 128_000, _TEXT_ONLY, 3.00, 12.00),
    _openai("gpt-3.5-turbo", "GPT-3.5 Turbo", 16_385, _TOOLS, 0.50, 1.50),
    _moonshot("moonshot-v1-8k", "Moonshot v1 8K", 8192),
    _moonshot("moonshot-v1-32k", "Moonshot v1 32K", 32_768),
    _moonshot("moonshot-v1-128k", "Moonshot v1 128K", 131_072),
)


def default_registry() -> ModelRegistry:
    """Return the built-in catalog."""
    return ModelRegistry(_DEFAULT_MODELS)
