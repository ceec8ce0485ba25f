"""CompletionProxy: the facade the host talks to."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any

from castor.config import parse_init_data
from castor.errors import InvalidRequestError, ProxyError
from castor.executor import HttpExecutor
from castor.protocol import (
    GenerateCompletion,
    completion_envelope,
    decode_message,
    encode,
    error_envelope,
    models_envelope,
)
from castor.registry import default_registry
from castor.request import translate_request
from castor.retry import ExecutionTrace, RetryEngine

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping
    from types import TracebackType

    from castor.config import Config
    from castor.protocol import InboundMessage
    from castor.registry import ModelInfo, ModelRegistry
    from castor.types import NormalizedRequest, NormalizedResponse

logger = logging.getLogger(__name__)


class CompletionProxy:
    """Serve completion requests for one upstream under one Config.

    Distinct requests may run concurrently on one instance; they share only
    the frozen Config, the read-only registry and the HTTP connection pool.

    Example:
        async with CompletionProxy(Config()) as proxy:
            reply = await proxy.handle({"GenerateCompletion": {"request": req}})
    """

    def __init__(
        self,
        config: Config,
        *,
        registry: ModelRegistry | None = None,
        executor: HttpExecutor | None = None,
        store_id: str | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self.registry = registry if registry is not None else default_registry()
        self.store_id = store_id
        self._executor = executor if executor is not None else HttpExecutor()
        self._engine = RetryEngine(self._executor, clock=clock, sleep=sleep)

    @classmethod
    def from_init_data(
        cls,
        raw: bytes | str | Mapping[str, Any],
        *,
        api_key: str | None = None,
        **kwargs: Any,
    ) -> CompletionProxy:
        """Build a proxy from the host's JSON init payload.

        Raises:
            ConfigurationError: If the payload is invalid or the secret
                environment variable is not set.
        """
        init = parse_init_data(raw)
        config = init.config.to_config(api_key=api_key)
        kwargs.setdefault("store_id", init.store_id)
        logger.info(
            "Initialized proxy (store_id=%s, base_url=%s, content_format=%s)",
            kwargs["store_id"],
            config.base_url,
            config.content_format.value,
        )
        return cls(config, **kwargs)

    async def generate(
        self,
        request: NormalizedRequest,
        *,
        trace: ExecutionTrace | None = None,
    ) -> NormalizedResponse:
        """Translate, execute under the retry policy, and normalize the reply.

        Raises:
            ProxyError: On validation failure, a fatal upstream error,
                exhausted retries, or the overall deadline.
        """
        payload = translate_request(request, self.config, self.registry)
        return await self._engine.execute(payload, self.config, trace=trace)

    def list_models(self) -> list[ModelInfo]:
        return self.registry.list_models()

    async def dispatch(self, message: InboundMessage) -> dict[str, Any]:
        """Serve one decoded inbound message and return its outbound envelope.

        Every ``ProxyError`` becomes an ``Error`` envelope; cancellation still
        propagates to the caller.
        """
        try:
            if isinstance(message, GenerateCompletion):
                response = await self.generate(message.request)
                return completion_envelope(response)
            return models_envelope(self.list_models())
        except ProxyError as e:
            logger.info("Request failed with %s: %s", e.kind, e)
            return error_envelope(e)

    async def handle(self, raw: bytes | str | Mapping[str, Any]) -> dict[str, Any]:
        """Decode a raw inbound envelope and serve it."""
        try:
            message = decode_message(raw)
        except InvalidRequestError as e:
            logger.info("Rejected malformed envelope: %s", e)
            return error_envelope(e)
        return await self.dispatch(message)

    async def handle_bytes(self, raw: bytes) -> bytes:
        """Bytes-in, bytes-out variant of ``handle`` for host transports."""
        return encode(await self.handle(raw))

    async def aclose(self) -> None:
        await self._executor.aclose()

    async def __aenter__(self) -> CompletionProxy:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()
