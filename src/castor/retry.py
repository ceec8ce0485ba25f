"""Bounded retry with exponential backoff and an overall deadline.

The engine is an explicit state machine::

    Attempting(n, elapsed) -> Success
                           -> FatalFailure       (non-retryable error)
                           -> RetriesExhausted   (n >= max_retries)
                           -> DeadlineExceeded   (next delay would cross it)
                           -> Cancelled          (host cancelled the task)
                           -> Attempting(n + 1)  (after the backoff delay)

Attempts for one request are strictly sequential. The only suspension points
are the network call and the backoff sleep; both are cancellable.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
import logging
import time
from typing import TYPE_CHECKING

from castor.classify import classify_outcome
from castor.errors import ProxyError, RateLimitError, RequestTimeoutError
from castor.executor import Success
from castor.response import translate_response

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from castor.config import Config, RetryPolicy
    from castor.executor import HttpExecutor
    from castor.request import ProviderPayload
    from castor.types import NormalizedResponse

logger = logging.getLogger(__name__)


class RetryState(str, Enum):
    """States of one retry sequence."""

    ATTEMPTING = "Attempting"
    SUCCESS = "Success"
    FATAL_FAILURE = "FatalFailure"
    RETRIES_EXHAUSTED = "RetriesExhausted"
    DEADLINE_EXCEEDED = "DeadlineExceeded"
    CANCELLED = "Cancelled"


@dataclass
class ExecutionTrace:
    """Record of one retry sequence, filled in by ``RetryEngine.execute``."""

    state: RetryState = RetryState.ATTEMPTING
    attempts: int = 0
    delays_s: list[float] = field(default_factory=list)
    errors: list[ProxyError] = field(default_factory=list)
    elapsed_s: float = 0.0


def compute_backoff_delay(policy: RetryPolicy, *, retry_index: int) -> float:
    """Delay before retry number ``retry_index + 1``.

    ``retry_index`` is the attempt counter before it is incremented, so the
    first retry waits exactly ``initial_delay_s``.
    """
    base = policy.initial_delay_s * (policy.backoff_multiplier ** max(0, retry_index))
    return min(policy.max_delay_s, base)


class RetryEngine:
    """Run HTTP attempts under a retry policy until a terminal state.

    ``clock`` and ``sleep`` default to ``time.monotonic`` and
    ``asyncio.sleep``; tests inject fakes to drive time deterministically.
    """

    def __init__(
        self,
        executor: HttpExecutor,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self._executor = executor
        self._clock = clock
        self._sleep = sleep

    async def execute(
        self,
        payload: ProviderPayload,
        config: Config,
        *,
        trace: ExecutionTrace | None = None,
    ) -> NormalizedResponse:
        """Execute *payload* and return the normalized response.

        Raises:
            ProxyError: The fatal error, the last error once retries are
                exhausted, or a deadline ``RequestTimeoutError`` wrapping it.
            asyncio.CancelledError: If the task is cancelled mid-sequence.
        """
        trace = trace if trace is not None else ExecutionTrace()
        policy = config.retry
        start = self._clock()
        n = 0
        last_error: ProxyError | None = None

        try:
            while True:
                trace.state = RetryState.ATTEMPTING
                remaining = policy.max_total_timeout_s - (self._clock() - start)
                if remaining <= 0:
                    raise self._deadline_exceeded(trace, policy, last_error)

                trace.attempts += 1
                logger.debug(
                    "Attempt %d/%d for %s",
                    trace.attempts,
                    policy.max_retries + 1,
                    payload.model.id,
                )
                try:
                    outcome = await asyncio.wait_for(
                        self._executor.attempt(payload, config), timeout=remaining
                    )
                except TimeoutError:
                    cut_off = RequestTimeoutError(
                        "Attempt cut off by the overall deadline"
                    )
                    trace.errors.append(cut_off)
                    raise self._deadline_exceeded(
                        trace, policy, last_error or cut_off
                    ) from None

                if isinstance(outcome, Success):
                    try:
                        response = translate_response(outcome.body, config)
                    except ProxyError:
                        trace.state = RetryState.FATAL_FAILURE
                        raise
                    trace.state = RetryState.SUCCESS
                    logger.debug("Request succeeded on attempt %d", trace.attempts)
                    return response

                error = classify_outcome(outcome, api_key_env=config.api_key_env)
                trace.errors.append(error)
                last_error = error

                if not error.retryable:
                    trace.state = RetryState.FATAL_FAILURE
                    logger.info("Non-retryable %s: %s", error.kind, error)
                    raise error

                if n >= policy.max_retries:
                    trace.state = RetryState.RETRIES_EXHAUSTED
                    logger.warning(
                        "Max retries (%d) exhausted; last error %s",
                        policy.max_retries,
                        error.kind,
                    )
                    raise error

                delay = compute_backoff_delay(policy, retry_index=n)
                if isinstance(error, RateLimitError) and error.retry_after_s is not None:
                    delay = max(delay, error.retry_after_s)

                elapsed = self._clock() - start
                if elapsed + delay > policy.max_total_timeout_s:
                    raise self._deadline_exceeded(trace, policy, error) from error

                logger.info(
                    "Retryable %s on attempt %d; retrying after %.3fs",
                    error.kind,
                    trace.attempts,
                    delay,
                )
                trace.delays_s.append(delay)
                await self._sleep(delay)
                n += 1
        except asyncio.CancelledError:
            trace.state = RetryState.CANCELLED
            logger.info("Request cancelled after %d attempt(s)", trace.attempts)
            raise
        finally:
            trace.elapsed_s = self._clock() - start

    @staticmethod
    def _deadline_exceeded(
        trace: ExecutionTrace,
        policy: RetryPolicy,
        last_error: ProxyError | None,
    ) -> RequestTimeoutError:
        trace.state = RetryState.DEADLINE_EXCEEDED
        logger.warning(
            "Total retry timeout of %.3fs exceeded after %d attempt(s)",
            policy.max_total_timeout_s,
            trace.attempts,
        )
        last_note = f": {last_error}" if last_error is not None else ""
        return RequestTimeoutError(
            f"Deadline of {policy.max_total_timeout_s:g}s exceeded after "
            f"{trace.attempts} attempt(s){last_note}",
            deadline_exceeded=True,
            last_error=last_error,
        )
