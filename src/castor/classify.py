"""Failure classification: raw attempt outcomes to typed ProxyErrors.

The mapping is a fixed policy table so the retry engine can decide purely on
``ProxyError.retryable``:

==========================================  =====================  =========
Condition                                   Kind                   Retryable
==========================================  =====================  =========
connection failure / DNS / reset            NetworkError           yes
attempt exceeds per-attempt timeout         TimeoutError           yes
HTTP 401/403                                AuthError              no
HTTP 404 on model-scoped endpoint           ModelUnsupportedError  no
HTTP 400                                    InvalidRequestError    no
HTTP 429                                    RateLimitError         yes
HTTP 5xx                                    ProviderError(status)  yes
HTTP 2xx with unparsable body               ProviderError(parse)   no
any other status                            ProviderError(status)  no
==========================================  =====================  =========
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from castor.errors import (
    AuthError,
    InvalidRequestError,
    ModelUnsupportedError,
    NetworkError,
    ProviderError,
    ProxyError,
    RateLimitError,
    RequestTimeoutError,
)
from castor.executor import HttpFailure, Success, TransportFailure, UnparsableBody

if TYPE_CHECKING:
    from collections.abc import Mapping

    from castor.executor import RawOutcome

_DETAIL_LIMIT = 500


def classify_outcome(
    outcome: RawOutcome, *, api_key_env: str | None = None
) -> ProxyError:
    """Map a failed attempt onto a typed error with a retry verdict.

    ``api_key_env`` only enriches the hint attached to auth failures.

    Raises:
        ValueError: If *outcome* is a success.
    """
    if isinstance(outcome, Success):
        raise ValueError("Cannot classify a successful outcome")

    if isinstance(outcome, TransportFailure):
        if outcome.timed_out:
            return RequestTimeoutError(f"Attempt timed out: {outcome.error}")
        cause = str(outcome.error) or type(outcome.error).__name__
        return NetworkError(f"Network error: {cause}")

    if isinstance(outcome, UnparsableBody):
        return ProviderError(
            f"Unparsable response body (status={outcome.status}): {outcome.reason}",
            retryable=False,
            status_code=outcome.status,
            detail="parse",
        )

    return _classify_http(outcome, api_key_env=api_key_env)


def _classify_http(failure: HttpFailure, *, api_key_env: str | None) -> ProxyError:
    status = failure.status
    message = extract_error_message(failure.body)
    status_note = f" (status={status})"

    if status in {401, 403}:
        env_var = api_key_env or "the API key environment variable"
        return AuthError(
            f"Authentication failed{status_note}: {message}",
            status_code=status,
            detail=message,
            hint=f"Check credentials/permissions (verify {env_var}).",
        )
    if status == 404 and failure.model_scoped:
        return ModelUnsupportedError(
            f"Upstream does not serve the requested model{status_note}: {message}",
            status_code=status,
            detail=message,
        )
    if status == 400:
        return InvalidRequestError(
            f"Upstream rejected the request{status_note}: {message}",
            status_code=status,
            detail=message,
        )
    if status == 429:
        return RateLimitError(
            f"Rate limit exceeded{status_note}: {message}",
            detail=message,
            retry_after_s=extract_retry_after_s(failure.headers),
            hint="Wait and retry, or raise the upstream rate limit tier.",
        )
    if 500 <= status <= 599:
        return ProviderError(
            f"Upstream error{status_note}: {message}",
            retryable=True,
            status_code=status,
            detail=message,
        )
    return ProviderError(
        f"Unexpected upstream status{status_note}: {message}",
        retryable=False,
        status_code=status,
        detail=message,
    )


def extract_retry_after_s(headers: Mapping[str, str]) -> float | None:
    """Read a retry-after hint in seconds from response headers.

    ``retry-after-ms`` (OpenAI-style, milliseconds) wins over the standard
    ``Retry-After`` header (seconds). HTTP-date values are ignored.
    """
    lowered = {k.lower(): v for k, v in headers.items()}
    for name, scale in (("retry-after-ms", 1000.0), ("retry-after", 1.0)):
        raw = lowered.get(name)
        if not isinstance(raw, str) or not raw.strip():
            continue
        try:
            value = float(raw)
        except ValueError:
            continue
        if value >= 0:
            return value / scale
    return None


def extract_error_message(body: str) -> str:
    """Pull the human-readable message out of an upstream error body."""
    text = body.strip()
    if not text:
        return "<empty body>"
    try:
        data: Any = json.loads(text)
    except ValueError:
        return text[:_DETAIL_LIMIT]
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"]
        if isinstance(error, str):
            return error
        if isinstance(data.get("message"), str):
            return data["message"]
    return text[:_DETAIL_LIMIT]
