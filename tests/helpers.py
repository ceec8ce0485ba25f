"""Test helpers (small, reusable doubles).

Keep this file tiny and purpose-built: it exists to prevent test suites from
growing lots of one-off executor subclasses as coverage expands.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import json
from typing import Any

from castor.executor import HttpFailure, RawOutcome, Success, TransportFailure
from castor.types import Message, NormalizedRequest, Role


@dataclass
class FakeClock:
    """Monotonic clock that only moves when something sleeps or advances it."""

    now: float = 0.0
    sleeps: list[float] = field(default_factory=list)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@dataclass
class ScriptedExecutor:
    """Executor double returning a scripted sequence of outcomes.

    Each scripted item is a ``RawOutcome`` or an exception to raise. When
    ``clock`` is set, every attempt advances it by ``attempt_cost_s``.
    """

    script: list[RawOutcome | BaseException] = field(default_factory=list)
    clock: FakeClock | None = None
    attempt_cost_s: float = 0.0
    calls: int = 0
    payloads: list[Any] = field(default_factory=list)
    closed: bool = False

    async def attempt(self, payload: Any, config: Any) -> RawOutcome:
        del config
        self.calls += 1
        self.payloads.append(payload)
        if self.clock is not None:
            self.clock.advance(self.attempt_cost_s)
        if not self.script:
            return ok()
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def aclose(self) -> None:
        self.closed = True


@dataclass
class HangingExecutor:
    """Executor whose attempts never finish until cancelled."""

    started: asyncio.Event = field(default_factory=asyncio.Event)
    calls: int = 0

    async def attempt(self, payload: Any, config: Any) -> RawOutcome:
        del payload, config
        self.calls += 1
        self.started.set()
        await asyncio.Event().wait()
        raise AssertionError("unreachable")

    async def aclose(self) -> None:
        return None


def ok(text: str = "ok", **extra: Any) -> Success:
    """A chat-completions success outcome with one assistant text choice."""
    body: dict[str, Any] = {
        "id": "chatcmpl-1",
        "model": "x-8k",
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": text},
                "finish_reason": "stop",
            }
        ],
        "usage": {"prompt_tokens": 3, "completion_tokens": 1},
    }
    body.update(extra)
    return Success(status=200, body=body)


def http_error(
    status: int, message: str = "boom", headers: dict[str, str] | None = None
) -> HttpFailure:
    return HttpFailure(
        status=status,
        body=json.dumps({"error": {"message": message}}),
        headers=headers or {},
    )


def network_down() -> TransportFailure:
    return TransportFailure(error=ConnectionResetError("connection reset by peer"))


def user_request(text: str = "hi", **kwargs: Any) -> NormalizedRequest:
    kwargs.setdefault("max_tokens", 10)
    kwargs.setdefault("model", "x-8k")
    return NormalizedRequest(messages=(Message.text(Role.USER, text),), **kwargs)
