"""Normalized, provider-agnostic request and response types."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, Union


class Role(str, Enum):
    """Author of a message."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"


class StopReason(str, Enum):
    """Why the model stopped generating."""

    END_TURN = "EndTurn"
    MAX_TOKENS = "MaxTokens"
    TOOL_USE = "ToolUse"
    STOP_SEQUENCE = "StopSequence"
    ERROR = "Error"


@dataclass(frozen=True)
class Text:
    """Plain text content."""

    text: str
    type: Literal["text"] = field(default="text", init=False, repr=False)


@dataclass(frozen=True)
class Image:
    """An image, either by URL or as base64 data with a media type."""

    url: str | None = None
    data: str | None = None
    media_type: str | None = None
    detail: str | None = None
    type: Literal["image"] = field(default="image", init=False, repr=False)

    def __post_init__(self) -> None:
        """Exactly one of url/data must be set."""
        if (self.url is None) == (self.data is None):
            raise ValueError("Image requires exactly one of url or data")
        if self.data is not None and not self.media_type:
            raise ValueError("Image data requires a media_type")


@dataclass(frozen=True)
class ToolUse:
    """A tool invocation requested by the model."""

    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)
    type: Literal["tool_use"] = field(default="tool_use", init=False, repr=False)


@dataclass(frozen=True)
class ToolResult:
    """The output of a tool invocation, sent back to the model."""

    tool_use_id: str
    output: str
    is_error: bool = False
    type: Literal["tool_result"] = field(
        default="tool_result", init=False, repr=False
    )


MessageContent = Union[Text, Image, ToolUse, ToolResult]


@dataclass(frozen=True)
class Message:
    """One conversational turn: a role and its ordered content parts."""

    role: Role
    content: tuple[MessageContent, ...] = ()

    @classmethod
    def text(cls, role: Role | str, text: str) -> Message:
        """Build a single-part text message."""
        return cls(role=Role(role), content=(Text(text),))


@dataclass(frozen=True)
class ToolDefinition:
    """A function the model may call."""

    name: str
    description: str | None = None
    #: JSON schema of the arguments object.
    parameters: dict[str, Any] | None = None


@dataclass(frozen=True)
class ToolChoice:
    """Directive controlling whether and which tool the model must call.

    ``mode`` is ``"auto"``, ``"any"`` (must call some tool), ``"none"``, or
    ``"tool"`` together with ``name``.
    """

    mode: Literal["auto", "any", "none", "tool"] = "auto"
    name: str | None = None

    def __post_init__(self) -> None:
        """A named choice needs a name; the others must not carry one."""
        if (self.mode == "tool") != (self.name is not None):
            raise ValueError("ToolChoice name is required exactly when mode='tool'")


@dataclass(frozen=True)
class NormalizedRequest:
    """A provider-agnostic completion request.

    ``model`` may be left as *None* to use the proxy's default model.
    """

    messages: tuple[Message, ...]
    max_tokens: int
    model: str | None = None
    temperature: float | None = None
    system: str | None = None
    tools: tuple[ToolDefinition, ...] | None = None
    tool_choice: ToolChoice | None = None
    parallel_tool_use: bool | None = None


@dataclass(frozen=True)
class Usage:
    """Token accounting for one completion."""

    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class NormalizedResponse:
    """A provider-agnostic completion response."""

    id: str
    model: str
    role: Role
    content: tuple[MessageContent, ...]
    stop_reason: StopReason
    usage: Usage = field(default_factory=Usage)
    stop_sequence: str | None = None
    #: Provider's own finish reason when it had no exact StopReason match.
    raw_stop_reason: str | None = None
