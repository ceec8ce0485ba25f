"""Single-attempt HTTP execution against the upstream chat API."""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
from typing import TYPE_CHECKING, Any, Union

import httpx

if TYPE_CHECKING:
    from types import TracebackType

    from castor.config import Config
    from castor.request import ProviderPayload

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Success:
    """A 2xx response whose body parsed as a JSON object."""

    status: int
    body: dict[str, Any]


@dataclass(frozen=True)
class HttpFailure:
    """A non-2xx response."""

    status: int
    body: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    #: True when the endpoint is scoped to the requested model, so a 404
    #: means the upstream does not serve that model.
    model_scoped: bool = True


@dataclass(frozen=True)
class UnparsableBody:
    """A 2xx response whose body is not a JSON object."""

    status: int
    body: str
    reason: str


@dataclass(frozen=True)
class TransportFailure:
    """No response arrived: connection, DNS, reset, or per-attempt timeout."""

    error: BaseException
    timed_out: bool = False


RawOutcome = Union[Success, HttpFailure, UnparsableBody, TransportFailure]


class HttpExecutor:
    """Perform exactly one HTTP attempt per call; never retries internally.

    The underlying ``httpx.AsyncClient`` is created lazily and reused across
    attempts and requests. Pass ``client`` to inject one, for example with an
    ``httpx.MockTransport``.
    """

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    async def attempt(self, payload: ProviderPayload, config: Config) -> RawOutcome:
        """Send *payload* once and describe what happened."""
        client = self._get_client()
        headers = {
            "authorization": f"Bearer {config.api_key}",
            "content-type": "application/json",
            "user-agent": config.user_agent,
        }
        url = config.chat_completions_url
        logger.debug("POST %s (model=%s)", url, payload.model.id)
        try:
            response = await client.post(
                url,
                json=payload.body,
                headers=headers,
                timeout=httpx.Timeout(config.timeout_s),
            )
        except httpx.TimeoutException as e:
            logger.debug("Attempt timed out after %.3fs: %s", config.timeout_s, e)
            return TransportFailure(error=e, timed_out=True)
        except httpx.RequestError as e:
            logger.debug("Transport failure: %r", e)
            return TransportFailure(error=e)

        status = response.status_code
        if not response.is_success:
            return HttpFailure(
                status=status,
                body=response.text,
                headers={k.lower(): v for k, v in response.headers.items()},
            )

        try:
            body = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            return UnparsableBody(status=status, body=response.text, reason=str(e))
        if not isinstance(body, dict):
            return UnparsableBody(
                status=status,
                body=response.text,
                reason=f"expected a JSON object, got {type(body).__name__}",
            )
        return Success(status=status, body=body)

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        client = self._client
        if client is None:
            return
        self._client = None
        await client.aclose()

    async def __aenter__(self) -> HttpExecutor:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()
