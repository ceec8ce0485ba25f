"""Content formatting between normalized messages and chat-completions wire shape.

Two content modes exist:

- ``Array``: ``content`` is a list of typed elements, one per part, in order.
- ``String``: ``content`` is a single string; text parts are concatenated in
  order with no separator.

Tool calls travel in the ``tool_calls`` side channel in both modes, and tool
results in ``tool``-role messages tagged with ``tool_call_id``.
"""

from __future__ import annotations

from collections.abc import Mapping
import json
import logging
import re
from typing import TYPE_CHECKING, Any

from castor.config import ContentFormat
from castor.errors import UnsupportedContentError
from castor.types import (
    Image,
    Message,
    MessageContent,
    Role,
    Text,
    ToolResult,
    ToolUse,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from castor.config import NonTextPolicy

logger = logging.getLogger(__name__)

_DATA_URL_RE = re.compile(r"^data:(?P<media_type>[^;,]+);base64,(?P<data>.*)$", re.S)
_ERROR_PREFIX = "Error: "


# --- Normalized -> wire ---


def to_wire(
    message: Message,
    mode: ContentFormat,
    *,
    non_text_policy: NonTextPolicy = "reject",
) -> dict[str, Any]:
    """Convert one normalized message into a chat-completions wire message.

    Raises:
        UnsupportedContentError: If a part cannot be represented in *mode*, or
            representing it would require reordering parts.
    """
    body_parts, tool_uses = _split_trailing_tool_uses(message.content)
    wire: dict[str, Any] = {"role": message.role.value}

    tool_results = [p for p in body_parts if isinstance(p, ToolResult)]
    if tool_results:
        if message.role is not Role.TOOL:
            raise UnsupportedContentError(
                f"Tool results must be sent in a 'tool' message, not {message.role.value!r}"
            )
        call_ids = {r.tool_use_id for r in tool_results}
        if len(call_ids) > 1:
            raise UnsupportedContentError(
                "A tool message can answer only one tool call",
                hint="Send one 'tool' message per tool_use_id.",
            )
        wire["tool_call_id"] = tool_results[0].tool_use_id

    if body_parts:
        if mode is ContentFormat.ARRAY:
            wire["content"] = [_part_to_element(p) for p in body_parts]
        else:
            wire["content"] = _flatten(message.role, body_parts, non_text_policy)
    if tool_uses:
        wire["tool_calls"] = [_tool_use_to_call(p) for p in tool_uses]
    return wire


def messages_to_wire(
    messages: Iterable[Message],
    mode: ContentFormat,
    *,
    non_text_policy: NonTextPolicy = "reject",
) -> list[dict[str, Any]]:
    return [to_wire(m, mode, non_text_policy=non_text_policy) for m in messages]


def _split_trailing_tool_uses(
    parts: Sequence[MessageContent],
) -> tuple[list[MessageContent], list[ToolUse]]:
    """Separate tool uses, which must come after every other part."""
    body: list[MessageContent] = []
    tool_uses: list[ToolUse] = []
    for part in parts:
        if isinstance(part, ToolUse):
            tool_uses.append(part)
        elif tool_uses:
            raise UnsupportedContentError(
                f"{part.type} part follows a tool_use part",
                hint="Tool calls are sent after content; put tool_use parts last.",
            )
        else:
            body.append(part)
    return body, tool_uses


def _part_to_element(part: MessageContent) -> dict[str, Any]:
    if isinstance(part, Text):
        return {"type": "text", "text": part.text}
    if isinstance(part, Image):
        image_url: dict[str, Any] = {"url": _image_url(part)}
        if part.detail is not None:
            image_url["detail"] = part.detail
        return {"type": "image_url", "image_url": image_url}
    if isinstance(part, ToolResult):
        return {
            "type": "tool_result",
            "tool_use_id": part.tool_use_id,
            "content": part.output,
            "is_error": part.is_error,
        }
    raise UnsupportedContentError(f"Unsupported content part: {part!r}")


def _flatten(
    role: Role,
    parts: Sequence[MessageContent],
    non_text_policy: NonTextPolicy,
) -> str:
    if role is Role.TOOL and any(isinstance(p, ToolResult) for p in parts):
        if len(parts) != 1:
            raise UnsupportedContentError(
                "String content mode needs exactly one tool_result per tool message"
            )
        result = next(p for p in parts if isinstance(p, ToolResult))
        return f"{_ERROR_PREFIX}{result.output}" if result.is_error else result.output

    texts: list[str] = []
    for part in parts:
        if isinstance(part, Text):
            texts.append(part.text)
        elif non_text_policy == "drop":
            logger.warning("Dropping %s part: String content mode is text-only", part.type)
        else:
            raise UnsupportedContentError(
                f"{part.type} parts cannot be sent in String content mode",
                hint="Use content_format='Array' or non_text_policy='drop'.",
            )
    return "".join(texts)


def _image_url(image: Image) -> str:
    if image.url is not None:
        return image.url
    return f"data:{image.media_type};base64,{image.data}"


def _tool_use_to_call(part: ToolUse) -> dict[str, Any]:
    return {
        "id": part.id,
        "type": "function",
        "function": {"name": part.name, "arguments": json.dumps(part.input)},
    }


# --- Wire -> normalized ---


def from_wire(wire: Mapping[str, Any], mode: ContentFormat) -> Message:
    """Convert a chat-completions wire message back into a normalized message.

    The content shape is detected from the value itself (string, list or
    null), so providers that answer with a plain string in Array mode still
    decode. *mode* only decides how a string tool message is read: in String
    mode a leading ``"Error: "`` marks an error result.

    Raises:
        UnsupportedContentError: If an element has an unknown type.
    """
    role = _role_from_wire(wire.get("role"))
    parts = parts_from_wire(
        wire.get("content"),
        mode,
        role=role,
        tool_call_id=wire.get("tool_call_id"),
        tool_calls=wire.get("tool_calls"),
    )
    return Message(role=role, content=parts)


def parts_from_wire(
    content: Any,
    mode: ContentFormat,
    *,
    role: Role = Role.ASSISTANT,
    tool_call_id: str | None = None,
    tool_calls: Any = None,
) -> tuple[MessageContent, ...]:
    parts: list[MessageContent] = []
    if isinstance(content, str):
        if role is Role.TOOL and tool_call_id:
            parts.append(_tool_result_from_string(content, tool_call_id, mode))
        else:
            parts.append(Text(content))
    elif isinstance(content, list):
        for element in content:
            parts.append(_element_to_part(element, tool_call_id))
    elif content is not None:
        raise UnsupportedContentError(
            f"Unexpected content type on the wire: {type(content).__name__}"
        )

    if tool_calls is not None and not isinstance(tool_calls, list):
        raise UnsupportedContentError(
            f"tool_calls must be a list, got {type(tool_calls).__name__}"
        )
    if tool_calls:
        for call in tool_calls:
            tool_use = _tool_call_to_part(call)
            if tool_use is not None:
                parts.append(tool_use)
    return tuple(parts)


def _role_from_wire(raw: Any) -> Role:
    try:
        return Role(raw)
    except ValueError:
        logger.debug("Unknown wire role %r, treating as assistant", raw)
        return Role.ASSISTANT


def _tool_result_from_string(
    content: str, tool_call_id: str, mode: ContentFormat
) -> ToolResult:
    if mode is ContentFormat.STRING and content.startswith(_ERROR_PREFIX):
        return ToolResult(
            tool_use_id=tool_call_id,
            output=content[len(_ERROR_PREFIX) :],
            is_error=True,
        )
    return ToolResult(tool_use_id=tool_call_id, output=content)


def _element_to_part(element: Any, tool_call_id: str | None) -> MessageContent:
    if not isinstance(element, Mapping):
        raise UnsupportedContentError(
            f"Content element must be an object, got {type(element).__name__}"
        )
    kind = element.get("type")
    if kind == "text":
        return Text(str(element.get("text", "")))
    if kind == "image_url":
        return _image_from_element(element)
    if kind == "tool_result":
        call_id = element.get("tool_use_id") or tool_call_id
        if not call_id:
            raise UnsupportedContentError("tool_result element is missing tool_use_id")
        return ToolResult(
            tool_use_id=str(call_id),
            output=_stringify(element.get("content", "")),
            is_error=bool(element.get("is_error", False)),
        )
    if kind == "tool_use":
        raw_input = element.get("input")
        if raw_input is not None and not isinstance(raw_input, dict):
            logger.warning(
                "Tool use %s has non-object input, using empty object",
                element.get("id"),
            )
        return ToolUse(
            id=str(element.get("id", "")),
            name=str(element.get("name", "")),
            input=raw_input if isinstance(raw_input, dict) else {},
        )
    raise UnsupportedContentError(f"Unsupported content element type: {kind!r}")


def _image_from_element(element: Mapping[str, Any]) -> Image:
    image_url = element.get("image_url")
    if isinstance(image_url, str):
        url, detail = image_url, None
    elif isinstance(image_url, Mapping) and isinstance(image_url.get("url"), str):
        url, detail = image_url["url"], image_url.get("detail")
    else:
        raise UnsupportedContentError("image_url element is missing a url")

    match = _DATA_URL_RE.match(url)
    if match:
        return Image(
            data=match.group("data"),
            media_type=match.group("media_type"),
            detail=detail,
        )
    return Image(url=url, detail=detail)


def _tool_call_to_part(call: Any) -> ToolUse | None:
    if not isinstance(call, Mapping) or call.get("type", "function") != "function":
        logger.debug("Skipping non-function tool call: %r", call)
        return None
    function = call.get("function") or {}
    if not isinstance(function, Mapping):
        raise UnsupportedContentError(
            f"Tool call {call.get('id')!r} has a non-object function: "
            f"{type(function).__name__}"
        )
    arguments = function.get("arguments") or "{}"
    try:
        parsed = json.loads(arguments) if isinstance(arguments, str) else arguments
    except json.JSONDecodeError:
        logger.warning(
            "Failed to parse arguments of tool call %s, using empty object",
            call.get("id"),
        )
        parsed = {}
    return ToolUse(
        id=str(call.get("id", "")),
        name=str(function.get("name", "")),
        input=parsed if isinstance(parsed, dict) else {"value": parsed},
    )


def _stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    # MCP-style content lists: keep the text items.
    if isinstance(value, list):
        texts = [
            str(item.get("text", ""))
            for item in value
            if isinstance(item, Mapping) and item.get("type") == "text"
        ]
        return "\n".join(texts)
    return json.dumps(value)
