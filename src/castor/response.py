"""Response translation: provider success body to normalized response."""

from __future__ import annotations

from collections.abc import Mapping
import logging
from typing import TYPE_CHECKING, Any

from castor.errors import ProviderError, UnsupportedContentError
from castor.formatter import parts_from_wire
from castor.types import NormalizedResponse, Role, StopReason, Usage

if TYPE_CHECKING:
    from castor.config import Config

logger = logging.getLogger(__name__)

_STOP_REASONS: dict[str, StopReason] = {
    "stop": StopReason.END_TURN,
    "end_turn": StopReason.END_TURN,
    "length": StopReason.MAX_TOKENS,
    "max_tokens": StopReason.MAX_TOKENS,
    "tool_calls": StopReason.TOOL_USE,
    "function_call": StopReason.TOOL_USE,
    "tool_use": StopReason.TOOL_USE,
    "content_filter": StopReason.STOP_SEQUENCE,
    "stop_sequence": StopReason.STOP_SEQUENCE,
    "error": StopReason.ERROR,
}


def translate_response(body: Mapping[str, Any], config: Config) -> NormalizedResponse:
    """Convert a chat-completions success body into a NormalizedResponse.

    Only the first choice is used. Messages-style bodies, which carry
    ``content`` and ``stop_reason`` at the top level instead of ``choices``,
    are read as a single choice. Unknown finish reasons become ``EndTurn``
    with the raw value kept in ``raw_stop_reason``; missing usage counts
    default to 0.

    Raises:
        ProviderError: If the body has neither shape or carries content that
            cannot be decoded (non-retryable, detail ``"parse"``).
    """
    response_id = str(body.get("id") or "")
    model = str(body.get("model") or "")
    usage = _usage(body.get("usage"))

    choices = body.get("choices")
    if choices is None and "content" in body:
        choices = [
            {
                "message": body,
                "finish_reason": body.get("stop_reason"),
                "stop_sequence": body.get("stop_sequence"),
            }
        ]
    if not isinstance(choices, list):
        raise _parse_error("response has no 'choices' list")

    if not choices:
        logger.warning("Upstream returned no choices for response %s", response_id)
        return NormalizedResponse(
            id=response_id,
            model=model,
            role=Role.ASSISTANT,
            content=(),
            stop_reason=StopReason.ERROR,
            usage=usage,
        )

    choice = choices[0]
    if not isinstance(choice, Mapping):
        raise _parse_error("choice is not an object")
    message = choice.get("message")
    if not isinstance(message, Mapping):
        raise _parse_error("choice has no 'message' object")

    role = _role(message.get("role"))
    try:
        content = parts_from_wire(
            message.get("content"),
            config.content_format,
            role=role,
            tool_call_id=message.get("tool_call_id"),
            tool_calls=message.get("tool_calls"),
        )
    except UnsupportedContentError as e:
        raise _parse_error(str(e)) from e

    stop_reason, raw_stop_reason = _stop_reason(choice.get("finish_reason"))
    stop_sequence = choice.get("stop_sequence")

    return NormalizedResponse(
        id=response_id,
        model=model,
        role=role,
        content=content,
        stop_reason=stop_reason,
        usage=usage,
        stop_sequence=stop_sequence if isinstance(stop_sequence, str) else None,
        raw_stop_reason=raw_stop_reason,
    )


def _stop_reason(raw: Any) -> tuple[StopReason, str | None]:
    if not isinstance(raw, str) or not raw:
        return StopReason.END_TURN, None
    mapped = _STOP_REASONS.get(raw.lower())
    if mapped is not None:
        return mapped, None
    logger.debug("Unrecognized finish_reason %r mapped to EndTurn", raw)
    return StopReason.END_TURN, raw


def _role(raw: Any) -> Role:
    try:
        return Role(raw)
    except ValueError:
        return Role.ASSISTANT


def _usage(raw: Any) -> Usage:
    if not isinstance(raw, Mapping):
        return Usage()
    return Usage(
        input_tokens=_count(raw, "prompt_tokens", "input_tokens"),
        output_tokens=_count(raw, "completion_tokens", "output_tokens"),
    )


def _count(raw: Mapping[str, Any], *keys: str) -> int:
    for key in keys:
        value = raw.get(key)
        if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
            return value
    return 0


def _parse_error(reason: str) -> ProviderError:
    return ProviderError(
        f"Malformed response body: {reason}",
        retryable=False,
        detail="parse",
    )
