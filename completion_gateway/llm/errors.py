"""LLM error hierarchy and normalization.

Custom exceptions for gateway operations with provider context, plus the
mapping from heterogeneous upstream failures to a canonical ErrorRecord
with a message that is safe to show to end users.
"""

from enum import Enum

from .models import ErrorRecord


class ErrorCode(str, Enum):
    """Canonical error codes exposed in response envelopes."""

    RATE_LIMIT = "RATE_LIMIT"
    AUTH_FAILED = "AUTH_FAILED"
    QUOTA = "QUOTA"
    ACCESS_FORBIDDEN = "ACCESS_FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    EMPTY = "EMPTY"
    FORMAT = "FORMAT"
    NO_CONTENT = "NO_CONTENT"
    MAX_TOKENS = "MAX_TOKENS"
    CHAT_ERROR = "CHAT_ERROR"
    COMPLETION_ERROR = "COMPLETION_ERROR"
    STRUCTURED_ERROR = "STRUCTURED_ERROR"


class LLMError(Exception):
    """Base exception for LLM operations."""

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        request_id: str | None = None,
        correlation_id: str | None = None,
        status: int | None = None,
        provider_message: str | None = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.request_id = request_id
        self.correlation_id = correlation_id
        self.status = status
        self.provider_message = provider_message

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.provider:
            parts.append(f"provider={self.provider}")
        if self.status is not None:
            parts.append(f"status={self.status}")
        if self.request_id:
            parts.append(f"request_id={self.request_id}")
        return " ".join(parts)


class AuthenticationError(LLMError):
    """401 - Invalid or missing API key.

    Fatal. No retry and no model substitution.
    """

    pass


class AccessForbiddenError(AuthenticationError):
    """403 - Key is valid but not allowed to use this resource."""

    pass


class RateLimitError(LLMError):
    """429 - Rate limit exceeded.

    Retryable after a flat delay.
    """

    def __init__(
        self,
        message: str,
        retry_after: float | None = None,
        provider: str | None = None,
        request_id: str | None = None,
        correlation_id: str | None = None,
        status: int | None = 429,
        provider_message: str | None = None,
    ):
        super().__init__(message, provider, request_id, correlation_id, status, provider_message)
        self.retry_after = retry_after


class QuotaExceededError(LLMError):
    """Billing quota or credits exhausted (429 with quota wording, or 402).

    Not retryable: a retry inside the same billing window cannot succeed.
    """

    pass


class TimeoutError(LLMError):
    """Request exceeded timeout threshold.

    Retryable.
    """

    pass


class InvalidRequestError(LLMError):
    """400 - Request rejected for this model.

    Terminal for this model; eligible for format degradation or substitution.
    """

    pass


class ModelNotFoundError(LLMError):
    """404 - Model identifier not recognized upstream."""

    pass


class ProviderError(LLMError):
    """500/502/503 or connection failure - provider-side problem.

    Retryable. May be transient server issues.
    """

    pass


class EmptyResponseError(LLMError):
    """The call succeeded but returned no response or no choices."""

    pass


class NoContentError(LLMError):
    """A choice was returned but its content was empty."""

    pass


class MaxTokensError(LLMError):
    """Generation stopped at the token limit before producing any content."""

    pass


class CapabilityProbeError(LLMError):
    """Model metadata could not be fetched while probing capabilities."""

    pass


class StructuredOutputError(LLMError):
    """Every structured-output strategy was exhausted."""

    def __init__(
        self,
        message: str,
        record: ErrorRecord | None = None,
        provider: str | None = None,
        correlation_id: str | None = None,
    ):
        super().__init__(message, provider=provider, correlation_id=correlation_id)
        self.record = record


# Error classification for retry and fallback logic
RETRYABLE_ERRORS = (RateLimitError, TimeoutError, ProviderError)
TERMINAL_ERRORS = (InvalidRequestError, ModelNotFoundError, QuotaExceededError)
FATAL_ERRORS = (AuthenticationError,)
DATA_SHAPE_ERRORS = (EmptyResponseError, NoContentError, MaxTokensError)

# Statuses that make a model ineligible for this request but leave others usable
SUBSTITUTABLE_STATUSES = frozenset({400, 402, 404})

_QUOTA_MARKERS = ("quota", "insufficient_quota", "credits", "billing")


def is_quota_message(message: str | None) -> bool:
    """Whether a provider message describes exhausted quota rather than throttling."""
    lowered = (message or "").lower()
    return any(marker in lowered for marker in _QUOTA_MARKERS)


def error_for_status(
    status: int,
    message: str,
    provider: str,
    request_id: str | None = None,
    retry_after: float | None = None,
) -> LLMError:
    """Build the typed exception for an upstream HTTP status."""
    context = {
        "provider": provider,
        "request_id": request_id,
        "status": status,
        "provider_message": message,
    }

    if status == 401:
        return AuthenticationError(f"Invalid {provider} API key", **context)
    if status == 403:
        return AccessForbiddenError(f"{provider} access denied", **context)
    if status == 402:
        return QuotaExceededError(f"{provider} requires payment for this model", **context)
    if status == 404:
        return ModelNotFoundError(f"Model not found on {provider}", **context)
    if status == 429:
        if is_quota_message(message):
            return QuotaExceededError(f"{provider} quota exhausted", **context)
        return RateLimitError(f"{provider} rate limit exceeded", retry_after=retry_after, **context)
    if status == 400:
        return InvalidRequestError(f"Invalid request to {provider}", **context)
    if status >= 500:
        return ProviderError(f"{provider} server error ({status})", **context)
    return LLMError(f"{provider} error ({status})", **context)


USER_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.RATE_LIMIT: "The AI service is busy right now. Please try again in a moment.",
    ErrorCode.AUTH_FAILED: "The AI service is not configured correctly.",
    ErrorCode.QUOTA: "The AI service has reached its usage limit. Please try again later.",
    ErrorCode.ACCESS_FORBIDDEN: "The AI service refused access to this model.",
    ErrorCode.NOT_FOUND: "The requested AI model is not available.",
    ErrorCode.EMPTY: "The AI service returned an empty response.",
    ErrorCode.FORMAT: "The AI service could not handle the request format.",
    ErrorCode.NO_CONTENT: "The AI model did not produce any content.",
    ErrorCode.MAX_TOKENS: "The AI response was cut off before any content was produced.",
    ErrorCode.CHAT_ERROR: "Something went wrong while talking to the AI service.",
    ErrorCode.COMPLETION_ERROR: "Something went wrong while generating text.",
    ErrorCode.STRUCTURED_ERROR: "The AI service could not produce a valid structured answer.",
}

_OPERATION_CODES = {
    "chat": ErrorCode.CHAT_ERROR,
    "vision": ErrorCode.CHAT_ERROR,
    "structured": ErrorCode.CHAT_ERROR,
    "completion": ErrorCode.COMPLETION_ERROR,
}


def _default_code(operation: str) -> ErrorCode:
    return _OPERATION_CODES.get(operation, ErrorCode.CHAT_ERROR)


def code_for_status(
    status: int | None, provider_body: str | None = None, operation: str = "chat"
) -> ErrorCode:
    """Map an HTTP status (and body wording) to a canonical code."""
    if status == 401:
        return ErrorCode.AUTH_FAILED
    if status == 403:
        return ErrorCode.ACCESS_FORBIDDEN
    if status == 402:
        return ErrorCode.QUOTA
    if status == 404:
        return ErrorCode.NOT_FOUND
    if status == 429:
        return ErrorCode.QUOTA if is_quota_message(provider_body) else ErrorCode.RATE_LIMIT
    if status == 400:
        return ErrorCode.FORMAT
    return _default_code(operation)


def normalize_error(
    status: int | None, provider_body: str | None = None, operation: str = "chat"
) -> ErrorRecord:
    """Map ``{status, provider_body}`` to an ErrorRecord."""
    code = code_for_status(status, provider_body, operation)
    return ErrorRecord(
        code=code.value,
        status=status,
        provider_message=provider_body,
        user_message=USER_MESSAGES[code],
    )


class ErrorNormalizer:
    """Converts exceptions raised anywhere in the gateway into ErrorRecords."""

    _EXCEPTION_CODES: tuple[tuple[type[Exception], ErrorCode], ...] = (
        (AccessForbiddenError, ErrorCode.ACCESS_FORBIDDEN),
        (AuthenticationError, ErrorCode.AUTH_FAILED),
        (QuotaExceededError, ErrorCode.QUOTA),
        (RateLimitError, ErrorCode.RATE_LIMIT),
        (ModelNotFoundError, ErrorCode.NOT_FOUND),
        (InvalidRequestError, ErrorCode.FORMAT),
        (EmptyResponseError, ErrorCode.EMPTY),
        (NoContentError, ErrorCode.NO_CONTENT),
        (MaxTokensError, ErrorCode.MAX_TOKENS),
    )

    def normalize(
        self, status: int | None, provider_body: str | None = None, operation: str = "chat"
    ) -> ErrorRecord:
        return normalize_error(status, provider_body, operation)

    def from_exception(self, error: BaseException, operation: str = "chat") -> ErrorRecord:
        """Build an ErrorRecord from any exception.

        Structured-output failures keep the record of the last upstream failure
        they carry.
        """
        if isinstance(error, StructuredOutputError):
            if error.record is not None:
                return error.record
            return ErrorRecord(
                code=ErrorCode.STRUCTURED_ERROR.value,
                status=None,
                provider_message=str(error),
                user_message=USER_MESSAGES[ErrorCode.STRUCTURED_ERROR],
            )

        status = getattr(error, "status", None)
        provider_message = getattr(error, "provider_message", None) or str(error)

        code = _default_code(operation)
        for error_type, mapped in self._EXCEPTION_CODES:
            if isinstance(error, error_type):
                code = mapped
                break

        return ErrorRecord(
            code=code.value,
            status=status,
            provider_message=provider_message,
            user_message=USER_MESSAGES[code],
        )
