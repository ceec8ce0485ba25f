"""Host message protocol: inbound request envelopes and outbound results.

Envelopes are externally tagged JSON objects::

    {"GenerateCompletion": {"request": {...}}}
    "ListModels"  or  {"ListModels": {}}

    {"Completion": {"response": {...}}}
    {"Models": {"models": [...]}}
    {"Error": {"error": {"kind": ..., "message": ..., "retryable": ...}}}
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
import json
from typing import TYPE_CHECKING, Any, Union

from castor.errors import InvalidRequestError
from castor.types import (
    Image,
    Message,
    MessageContent,
    NormalizedRequest,
    Role,
    Text,
    ToolChoice,
    ToolDefinition,
    ToolResult,
    ToolUse,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from castor.errors import ProxyError
    from castor.registry import ModelInfo
    from castor.types import NormalizedResponse


@dataclass(frozen=True)
class GenerateCompletion:
    """Inbound: run one completion."""

    request: NormalizedRequest


@dataclass(frozen=True)
class ListModels:
    """Inbound: list the models this proxy serves."""


InboundMessage = Union[GenerateCompletion, ListModels]


# --- Inbound ---


def decode_message(raw: bytes | str | Mapping[str, Any]) -> InboundMessage:
    """Decode an inbound envelope.

    Raises:
        InvalidRequestError: If the envelope is not valid JSON, has an
            unknown tag, or carries a malformed request.
    """
    data = _load(raw)
    if data == "ListModels":
        return ListModels()
    if not isinstance(data, Mapping) or len(data) != 1:
        raise InvalidRequestError(
            "Envelope must be an object with exactly one tag",
            hint="Expected 'GenerateCompletion' or 'ListModels'.",
        )
    tag, inner = next(iter(data.items()))
    if tag == "ListModels":
        return ListModels()
    if tag == "GenerateCompletion":
        if not isinstance(inner, Mapping) or "request" not in inner:
            raise InvalidRequestError("GenerateCompletion requires a 'request' object")
        return GenerateCompletion(request=decode_request(inner["request"]))
    raise InvalidRequestError(
        f"Unknown envelope tag: {tag!r}",
        hint="Expected 'GenerateCompletion' or 'ListModels'.",
    )


def _load(raw: bytes | str | Mapping[str, Any]) -> Any:
    if isinstance(raw, Mapping):
        return raw
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise InvalidRequestError(f"Envelope is not valid JSON: {e}") from e


def decode_request(data: Any) -> NormalizedRequest:
    """Decode a normalized request object.

    ``messages`` and ``max_tokens`` are required; ``model`` falls back to the
    proxy's default model when omitted.
    """
    obj = _require_object(data, "request")
    messages = obj.get("messages")
    if not isinstance(messages, list):
        raise InvalidRequestError("request.messages must be a list")
    max_tokens = obj.get("max_tokens")
    if not _is_int(max_tokens):
        raise InvalidRequestError("request.max_tokens must be an integer")

    temperature = obj.get("temperature")
    if temperature is not None and (
        isinstance(temperature, bool) or not isinstance(temperature, (int, float))
    ):
        raise InvalidRequestError("request.temperature must be a number")

    tools = obj.get("tools")
    if tools is not None and not isinstance(tools, list):
        raise InvalidRequestError("request.tools must be a list")

    parallel = obj.get("parallel_tool_use")
    if parallel is not None and not isinstance(parallel, bool):
        raise InvalidRequestError("request.parallel_tool_use must be a boolean")

    return NormalizedRequest(
        messages=tuple(decode_wire_message(m) for m in messages),
        max_tokens=max_tokens,
        model=_optional_str(obj, "model"),
        temperature=float(temperature) if temperature is not None else None,
        system=_optional_str(obj, "system"),
        tools=tuple(_decode_tool(t) for t in tools) if tools is not None else None,
        tool_choice=_decode_tool_choice(obj.get("tool_choice")),
        parallel_tool_use=parallel,
    )


def decode_wire_message(data: Any) -> Message:
    """Decode one ``{role, content}`` message; string content is one Text."""
    obj = _require_object(data, "message")
    try:
        role = Role(obj.get("role"))
    except ValueError:
        raise InvalidRequestError(f"Unknown message role: {obj.get('role')!r}") from None

    content = obj.get("content")
    if isinstance(content, str):
        return Message(role=role, content=(Text(content),))
    if not isinstance(content, list):
        raise InvalidRequestError("message.content must be a string or a list")
    return Message(role=role, content=tuple(decode_content(p) for p in content))


def decode_content(data: Any) -> MessageContent:
    """Decode one tagged content part."""
    obj = _require_object(data, "content part")
    kind = obj.get("type")
    try:
        if kind == "text":
            return Text(_required_str(obj, "text"))
        if kind == "image":
            return Image(
                url=_optional_str(obj, "url"),
                data=_optional_str(obj, "data"),
                media_type=_optional_str(obj, "media_type"),
                detail=_optional_str(obj, "detail"),
            )
        if kind == "tool_use":
            tool_input = obj.get("input", {})
            if not isinstance(tool_input, dict):
                raise InvalidRequestError("tool_use.input must be an object")
            return ToolUse(
                id=_required_str(obj, "id"),
                name=_required_str(obj, "name"),
                input=tool_input,
            )
        if kind == "tool_result":
            output = obj.get("output", obj.get("content"))
            if not isinstance(output, str):
                raise InvalidRequestError("tool_result.output must be a string")
            return ToolResult(
                tool_use_id=_required_str(obj, "tool_use_id"),
                output=output,
                is_error=bool(obj.get("is_error", False)),
            )
    except ValueError as e:
        raise InvalidRequestError(f"Invalid {kind} content: {e}") from e
    raise InvalidRequestError(f"Unknown content type: {kind!r}")


def _decode_tool(data: Any) -> ToolDefinition:
    obj = _require_object(data, "tool")
    parameters = obj.get("parameters", obj.get("input_schema"))
    if parameters is not None and not isinstance(parameters, dict):
        raise InvalidRequestError("tool.parameters must be an object")
    return ToolDefinition(
        name=_required_str(obj, "name"),
        description=_optional_str(obj, "description"),
        parameters=parameters,
    )


def _decode_tool_choice(data: Any) -> ToolChoice | None:
    if data is None:
        return None
    if isinstance(data, str):
        mode, name = data, None
    elif isinstance(data, Mapping):
        mode, name = data.get("type"), _optional_str(data, "name")
    else:
        raise InvalidRequestError("tool_choice must be a string or an object")
    if mode not in ("auto", "any", "none", "tool"):
        raise InvalidRequestError(f"Unknown tool_choice: {mode!r}")
    try:
        return ToolChoice(mode=mode, name=name)
    except ValueError as e:
        raise InvalidRequestError(str(e)) from e


def _require_object(data: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise InvalidRequestError(f"{what} must be an object")
    return data


def _required_str(obj: Mapping[str, Any], key: str) -> str:
    value = obj.get(key)
    if not isinstance(value, str):
        raise InvalidRequestError(f"'{key}' must be a string")
    return value


def _optional_str(obj: Mapping[str, Any], key: str) -> str | None:
    value = obj.get(key)
    if value is not None and not isinstance(value, str):
        raise InvalidRequestError(f"'{key}' must be a string")
    return value


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


# --- Outbound ---


def completion_envelope(response: NormalizedResponse) -> dict[str, Any]:
    return {"Completion": {"response": response_to_dict(response)}}


def models_envelope(models: Sequence[ModelInfo]) -> dict[str, Any]:
    return {"Models": {"models": [m.to_dict() for m in models]}}


def error_envelope(error: ProxyError) -> dict[str, Any]:
    return {"Error": {"error": error.to_dict()}}


def response_to_dict(response: NormalizedResponse) -> dict[str, Any]:
    """Serialize a normalized response for the ``Completion`` envelope."""
    data: dict[str, Any] = {
        "id": response.id,
        "model": response.model,
        "role": response.role.value,
        "content": [content_to_dict(p) for p in response.content],
        "stop_reason": response.stop_reason.value,
        "stop_sequence": response.stop_sequence,
        "usage": {
            "input_tokens": response.usage.input_tokens,
            "output_tokens": response.usage.output_tokens,
        },
    }
    if response.raw_stop_reason is not None:
        data["raw_stop_reason"] = response.raw_stop_reason
    return data


def content_to_dict(part: MessageContent) -> dict[str, Any]:
    """Serialize one content part with its ``type`` tag."""
    if isinstance(part, Text):
        return {"type": "text", "text": part.text}
    if isinstance(part, ToolUse):
        return {"type": "tool_use", "id": part.id, "name": part.name, "input": part.input}
    if isinstance(part, ToolResult):
        return {
            "type": "tool_result",
            "tool_use_id": part.tool_use_id,
            "output": part.output,
            "is_error": part.is_error,
        }
    data: dict[str, Any] = {"type": "image"}
    for key in ("url", "data", "media_type", "detail"):
        value = getattr(part, key)
        if value is not None:
            data[key] = value
    return data


def encode(envelope: Mapping[str, Any]) -> bytes:
    """Serialize an outbound envelope to UTF-8 JSON bytes."""
    return json.dumps(envelope).encode("utf-8")
