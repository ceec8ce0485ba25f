"""Host envelope decoding and encoding."""

from __future__ import annotations

import json

import pytest

from castor.errors import InvalidRequestError, RateLimitError
from castor.protocol import (
    GenerateCompletion,
    ListModels,
    completion_envelope,
    decode_message,
    encode,
    error_envelope,
    models_envelope,
)
from castor.registry import ModelRegistry
from castor.types import (
    Image,
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

pytestmark = pytest.mark.contract


# =============================================================================
# Inbound
# =============================================================================


@pytest.mark.parametrize("raw", ['"ListModels"', b'{"ListModels": {}}', {"ListModels": None}])
def test_list_models_forms(raw) -> None:
    assert decode_message(raw) == ListModels()


def test_generate_completion_full_request() -> None:
    raw = {
        "GenerateCompletion": {
            "request": {
                "model": "x-8k",
                "max_tokens": 64,
                "temperature": 1,
                "system": "be brief",
                "messages": [
                    {"role": "user", "content": "plain"},
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": "see"},
                            {"type": "image", "url": "https://x/y.png", "detail": "high"},
                        ],
                    },
                    {
                        "role": "assistant",
                        "content": [
                            {"type": "tool_use", "id": "c1", "name": "f", "input": {"a": 1}}
                        ],
                    },
                    {
                        "role": "tool",
                        "content": [
                            {
                                "type": "tool_result",
                                "tool_use_id": "c1",
                                "output": "ok",
                                "is_error": False,
                            }
                        ],
                    },
                ],
                "tools": [{"name": "f", "description": "does f", "input_schema": {"type": "object"}}],
                "tool_choice": {"type": "tool", "name": "f"},
                "parallel_tool_use": True,
            }
        }
    }

    message = decode_message(json.dumps(raw))

    assert isinstance(message, GenerateCompletion)
    req = message.request
    assert req.model == "x-8k"
    assert req.max_tokens == 64
    assert req.temperature == 1.0
    assert req.system == "be brief"
    assert [m.role for m in req.messages] == [Role.USER, Role.USER, Role.ASSISTANT, Role.TOOL]
    assert req.messages[0].content == (Text("plain"),)
    assert req.messages[1].content == (
        Text("see"),
        Image(url="https://x/y.png", detail="high"),
    )
    assert req.messages[2].content == (ToolUse(id="c1", name="f", input={"a": 1}),)
    assert req.messages[3].content == (ToolResult(tool_use_id="c1", output="ok"),)
    assert req.tools == (
        ToolDefinition(name="f", description="does f", parameters={"type": "object"}),
    )
    assert req.tool_choice == ToolChoice(mode="tool", name="f")
    assert req.parallel_tool_use is True


def test_string_tool_choice() -> None:
    raw = {
        "GenerateCompletion": {
            "request": {
                "messages": [{"role": "user", "content": "hi"}],
                "max_tokens": 5,
                "tool_choice": "any",
            }
        }
    }
    message = decode_message(raw)
    assert isinstance(message, GenerateCompletion)
    assert message.request.model is None
    assert message.request.tool_choice == ToolChoice(mode="any")


@pytest.mark.parametrize(
    "raw",
    [
        b"{oops",
        b"[]",
        b'"Ping"',
        {"Ping": {}},
        {"GenerateCompletion": {}, "ListModels": {}},
        {"GenerateCompletion": {}},
        {"GenerateCompletion": {"request": {"messages": "hi", "max_tokens": 5}}},
        {"GenerateCompletion": {"request": {"messages": [], "max_tokens": "5"}}},
        {"GenerateCompletion": {"request": {"messages": [], "max_tokens": True}}},
        {
            "GenerateCompletion": {
                "request": {"messages": [{"role": "robot", "content": "x"}], "max_tokens": 5}
            }
        },
        {
            "GenerateCompletion": {
                "request": {
                    "messages": [{"role": "user", "content": [{"type": "audio"}]}],
                    "max_tokens": 5,
                }
            }
        },
        {
            "GenerateCompletion": {
                "request": {
                    "messages": [{"role": "user", "content": [{"type": "image"}]}],
                    "max_tokens": 5,
                }
            }
        },
        {
            "GenerateCompletion": {
                "request": {
                    "messages": [{"role": "user", "content": "x"}],
                    "max_tokens": 5,
                    "tool_choice": {"type": "tool"},
                }
            }
        },
    ],
)
def test_malformed_envelopes_raise_invalid_request(raw) -> None:
    with pytest.raises(InvalidRequestError):
        decode_message(raw)


# =============================================================================
# Outbound
# =============================================================================


def test_completion_envelope_shape() -> None:
    response = NormalizedResponse(
        id="r1",
        model="x-8k",
        role=Role.ASSISTANT,
        content=(Text("hi"), ToolUse(id="c", name="f", input={})),
        stop_reason=StopReason.TOOL_USE,
        usage=Usage(input_tokens=3, output_tokens=2),
    )

    envelope = completion_envelope(response)

    assert envelope == {
        "Completion": {
            "response": {
                "id": "r1",
                "model": "x-8k",
                "role": "assistant",
                "content": [
                    {"type": "text", "text": "hi"},
                    {"type": "tool_use", "id": "c", "name": "f", "input": {}},
                ],
                "stop_reason": "ToolUse",
                "stop_sequence": None,
                "usage": {"input_tokens": 3, "output_tokens": 2},
            }
        }
    }


def test_models_envelope_lists_every_model(registry: ModelRegistry) -> None:
    envelope = models_envelope(registry.list_models())
    assert [m["id"] for m in envelope["Models"]["models"]] == ["x-8k", "x-vision", "x-plain"]


def test_error_envelope_and_encoding() -> None:
    err = RateLimitError("slow down", retry_after_s=2.0)

    raw = encode(error_envelope(err))

    assert json.loads(raw) == {
        "Error": {
            "error": {
                "kind": "RateLimitError",
                "message": "slow down",
                "retryable": True,
                "status": 429,
                "retry_after_ms": 2000,
            }
        }
    }
