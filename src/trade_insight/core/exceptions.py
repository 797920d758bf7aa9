"""Custom exception hierarchy for trade-insight."""

from enum import StrEnum
from typing import Any


class ErrorCode(StrEnum):
    """Machine-readable error categories carried on every exception."""

    NETWORK = "network"
    RATE_LIMITED = "rate_limited"
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    INVALID_RESPONSE = "invalid_response"
    CONFIGURATION = "configuration"
    SERVER_ERROR = "server_error"


class TradeInsightError(Exception):
    """Base exception for all trade-insight errors.

    All exceptions carry an optional `context` dict for structured error
    metadata that can be logged or serialized without parsing the message.
    The `retryable` flag is read by the transport retry loop and by the
    aggregation service's fallback decision; callers should not re-derive it.
    """

    code: ErrorCode = ErrorCode.SERVER_ERROR
    retryable: bool = False

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        retryable: bool | None = None,
    ):
        super().__init__(message)
        self.context = context or {}
        if retryable is not None:
            self.retryable = retryable


class ConfigError(TradeInsightError):
    """Invalid configuration, or a feature disabled by configuration.

    Raised by load_config() during startup (fatal) and by the service when a
    query needs something the configuration turns off (live data mode, a
    provider without credentials).

    Context keys:
        field: str — the config field involved
        value: Any — the offending value (redacted for secrets)
    """

    code = ErrorCode.CONFIGURATION


class ProviderError(TradeInsightError):
    """A provider call failed.

    Context keys:
        url: str — the URL that was being fetched
        status_code: int | None — HTTP status, when a response arrived
        attempts: int — how many attempts were made
    """


class NetworkError(ProviderError):
    """Timeout, connection refused/reset, or another transport failure.

    Policy: retry with exponential backoff.
    """

    code = ErrorCode.NETWORK
    retryable = True


class RateLimitError(ProviderError):
    """Provider rate limit exceeded (HTTP 429).

    Policy: retry, honouring the provider's Retry-After hint when present.

    Context keys:
        retry_after: float | None — seconds to wait
    """

    code = ErrorCode.RATE_LIMITED
    retryable = True

    @property
    def retry_after(self) -> float | None:
        return self.context.get("retry_after")


class UnauthorizedError(ProviderError):
    """HTTP 401/403. Policy: fail immediately."""

    code = ErrorCode.UNAUTHORIZED


class NotFoundError(ProviderError):
    """HTTP 404 or a provider-level "no such resource" body.

    Policy: fail immediately.
    """

    code = ErrorCode.NOT_FOUND


class InvalidResponseError(ProviderError):
    """Malformed or unexpected payload shape.

    Policy: fail immediately. The same request will return the same body.
    """

    code = ErrorCode.INVALID_RESPONSE


class ServerError(ProviderError):
    """HTTP 5xx, or an unclassified failure.

    Retryable by default; unclassified 4xx responses are raised with
    retryable=False.
    """

    code = ErrorCode.SERVER_ERROR
    retryable = True
