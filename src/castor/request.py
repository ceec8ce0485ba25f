"""Request translation: normalized request to provider payload."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Any

from castor.errors import InvalidRequestError, UnsupportedContentError
from castor.formatter import messages_to_wire, to_wire
from castor.types import Image, Message, Role, ToolChoice, ToolDefinition

if TYPE_CHECKING:
    from castor.config import Config
    from castor.registry import ModelInfo, ModelRegistry
    from castor.types import NormalizedRequest

logger = logging.getLogger(__name__)

_MAX_TEMPERATURE = 2.0


@dataclass(frozen=True)
class ProviderPayload:
    """A provider-ready request body plus the model it was resolved for."""

    model: ModelInfo
    body: dict[str, Any]


def translate_request(
    request: NormalizedRequest,
    config: Config,
    registry: ModelRegistry,
) -> ProviderPayload:
    """Build the chat-completions payload for *request*.

    The model is resolved before any formatting so an unknown id fails fast.

    Raises:
        ModelUnsupportedError: If the model is not registered.
        InvalidRequestError: If the request violates a field or model limit.
        UnsupportedContentError: If content cannot be sent in the configured
            content format, or the model lacks vision for image parts.
    """
    model_id = request.model or config.default_model
    model = registry.lookup(model_id)
    _validate(request, model)

    messages: list[dict[str, Any]] = []
    if request.system:
        system = Message.text(Role.SYSTEM, request.system)
        messages.append(to_wire(system, config.content_format))
    messages.extend(
        messages_to_wire(
            request.messages,
            config.content_format,
            non_text_policy=config.non_text_policy,
        )
    )

    body: dict[str, Any] = {
        "model": model.id,
        "messages": messages,
        "max_tokens": request.max_tokens,
        "stream": False,
    }
    if request.temperature is not None:
        body["temperature"] = request.temperature
    if request.tools is not None:
        body["tools"] = [_tool_to_wire(t) for t in request.tools]
    if request.tool_choice is not None:
        body["tool_choice"] = _tool_choice_to_wire(request.tool_choice)
    if request.parallel_tool_use is not None:
        body["parallel_tool_calls"] = request.parallel_tool_use

    logger.debug(
        "Translated request for %s: %d message(s), content_format=%s",
        model.id,
        len(messages),
        config.content_format.value,
    )
    return ProviderPayload(model=model, body=body)


def _validate(request: NormalizedRequest, model: ModelInfo) -> None:
    if not request.messages:
        raise InvalidRequestError("messages must not be empty")
    if request.max_tokens <= 0:
        raise InvalidRequestError(f"max_tokens must be > 0, got {request.max_tokens}")
    if request.max_tokens > model.context_window:
        raise InvalidRequestError(
            f"max_tokens {request.max_tokens} exceeds the {model.context_window}-token "
            f"context window of {model.id}"
        )
    if request.temperature is not None and not (
        0.0 <= request.temperature <= _MAX_TEMPERATURE
    ):
        raise InvalidRequestError(
            f"temperature must be between 0.0 and 2.0, got {request.temperature}"
        )
    wants_tools = bool(request.tools) or request.tool_choice is not None
    if wants_tools and not model.capabilities.tool_use:
        raise InvalidRequestError(
            f"Model {model.id} does not support tool use",
            hint="Remove tools/tool_choice or choose a model with tool support.",
        )
    if request.tool_choice is not None and request.tool_choice.mode == "tool":
        names = {t.name for t in request.tools or ()}
        if request.tool_choice.name not in names:
            raise InvalidRequestError(
                f"tool_choice names unknown tool {request.tool_choice.name!r}"
            )
    if not model.capabilities.vision and any(
        isinstance(part, Image) for m in request.messages for part in m.content
    ):
        raise UnsupportedContentError(
            f"Model {model.id} does not accept image content",
            hint="Remove image parts or choose a vision-capable model.",
        )


def _tool_to_wire(tool: ToolDefinition) -> dict[str, Any]:
    function: dict[str, Any] = {"name": tool.name}
    if tool.description is not None:
        function["description"] = tool.description
    function["parameters"] = (
        tool.parameters
        if tool.parameters is not None
        else {"type": "object", "properties": {}}
    )
    return {"type": "function", "function": function}


def _tool_choice_to_wire(choice: ToolChoice) -> str | dict[str, Any]:
    if choice.mode == "auto":
        return "auto"
    if choice.mode == "any":
        return "required"
    if choice.mode == "none":
        return "none"
    return {"type": "function", "function": {"name": choice.name}}
