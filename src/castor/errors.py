"""Exception hierarchy for Castor.

Every failure a completion can end in is a ``ProxyError`` subclass carrying a
stable ``kind`` and a ``retryable`` verdict, so the retry engine never has to
inspect messages to decide what to do next.
"""

from __future__ import annotations

from typing import Any, ClassVar


class CastorError(Exception):
    """Base exception for all Castor errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(CastorError):
    """Configuration validation or secret resolution failed."""


class ProxyError(CastorError):
    """A completion request failed.

    ``kind`` names the failure category on the wire; ``retryable`` tells the
    retry engine whether another attempt may succeed.
    """

    kind: ClassVar[str] = "ProxyError"
    default_retryable: ClassVar[bool] = False

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        retryable: bool | None = None,
        status_code: int | None = None,
        detail: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.retryable = self.default_retryable if retryable is None else retryable
        self.status_code = status_code
        self.detail = detail

    def to_dict(self) -> dict[str, Any]:
        """Return the payload carried by an outbound ``Error`` envelope."""
        data: dict[str, Any] = {
            "kind": self.kind,
            "message": str(self),
            "retryable": self.retryable,
        }
        if self.status_code is not None:
            data["status"] = self.status_code
        if self.detail is not None:
            data["detail"] = self.detail
        if self.hint is not None:
            data["hint"] = self.hint
        return data


class AuthError(ProxyError):
    """Upstream rejected the credentials (HTTP 401/403)."""

    kind = "AuthError"


class RateLimitError(ProxyError):
    """Rate limit exceeded (HTTP 429)."""

    kind = "RateLimitError"
    default_retryable = True

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        retryable: bool | None = None,
        status_code: int | None = 429,
        detail: str | None = None,
        retry_after_s: float | None = None,
    ) -> None:
        super().__init__(
            message,
            hint=hint,
            retryable=retryable,
            status_code=status_code,
            detail=detail,
        )
        self.retry_after_s = retry_after_s

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.retry_after_s is not None:
            data["retry_after_ms"] = round(self.retry_after_s * 1000)
        return data


class InvalidRequestError(ProxyError):
    """The request is malformed or violates a model constraint."""

    kind = "InvalidRequestError"


class ModelUnsupportedError(ProxyError):
    """The requested model is not in the registry or upstream does not know it."""

    kind = "ModelUnsupportedError"


class UnsupportedContentError(ProxyError):
    """A content part cannot be represented in the configured wire shape."""

    kind = "UnsupportedContentError"


class NetworkError(ProxyError):
    """Connection failure, DNS failure, or reset before a response arrived."""

    kind = "NetworkError"
    default_retryable = True


class RequestTimeoutError(ProxyError):
    """A single attempt timed out, or the overall deadline ran out.

    When ``deadline_exceeded`` is set, ``last_error`` holds the last concrete
    failure observed before the retry sequence gave up.
    """

    kind = "TimeoutError"
    default_retryable = True

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        retryable: bool | None = None,
        deadline_exceeded: bool = False,
        last_error: ProxyError | None = None,
    ) -> None:
        super().__init__(
            message,
            hint=hint,
            retryable=False if deadline_exceeded else retryable,
        )
        self.deadline_exceeded = deadline_exceeded
        self.last_error = last_error

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["deadline_exceeded"] = self.deadline_exceeded
        if self.last_error is not None:
            data["last_error"] = self.last_error.to_dict()
        return data


class ProviderError(ProxyError):
    """Upstream failed on its side (5xx) or answered with an unusable body."""

    kind = "ProviderError"
