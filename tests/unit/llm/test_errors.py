"""Unit tests for error mapping and normalization."""

import pytest

from completion_gateway.llm.errors import (
    DATA_SHAPE_ERRORS,
    FATAL_ERRORS,
    RETRYABLE_ERRORS,
    TERMINAL_ERRORS,
    USER_MESSAGES,
    AccessForbiddenError,
    AuthenticationError,
    EmptyResponseError,
    ErrorCode,
    ErrorNormalizer,
    InvalidRequestError,
    LLMError,
    MaxTokensError,
    ModelNotFoundError,
    NoContentError,
    ProviderError,
    QuotaExceededError,
    RateLimitError,
    StructuredOutputError,
    TimeoutError,
    error_for_status,
    is_quota_message,
    normalize_error,
)
from completion_gateway.llm.models import ErrorRecord


class TestErrorForStatus:
    """Tests for mapping HTTP statuses to exceptions."""

    @pytest.mark.parametrize(
        "status,expected",
        [
            (401, AuthenticationError),
            (403, AccessForbiddenError),
            (402, QuotaExceededError),
            (404, ModelNotFoundError),
            (429, RateLimitError),
            (400, InvalidRequestError),
            (500, ProviderError),
            (503, ProviderError),
        ],
    )
    def test_status_mapping(self, status, expected):
        """Test each status maps to its exception type."""
        error = error_for_status(status, "upstream said no", provider="openrouter")
        assert type(error) is expected
        assert error.status == status
        assert error.provider == "openrouter"
        assert error.provider_message == "upstream said no"

    def test_429_with_quota_wording(self):
        """Test 429 mentioning credits is a quota error."""
        error = error_for_status(429, "You have run out of credits", provider="openrouter")
        assert isinstance(error, QuotaExceededError)

    def test_retry_after_kept(self):
        """Test retry-after is kept on rate limit errors."""
        error = error_for_status(429, "slow down", provider="openrouter", retry_after=12.0)
        assert error.retry_after == 12.0

    def test_unknown_status(self):
        """Test an unmapped status gives a base LLMError."""
        error = error_for_status(418, "teapot", provider="openrouter")
        assert type(error) is LLMError

    def test_str_includes_context(self):
        """Test string form includes provider and status."""
        error = error_for_status(404, "gone", provider="openrouter", request_id="req_1")
        text = str(error)
        assert "provider=openrouter" in text
        assert "status=404" in text
        assert "request_id=req_1" in text


class TestErrorGroups:
    """Tests for error classification tuples."""

    def test_forbidden_is_fatal(self):
        """Test 403 errors are fatal like 401."""
        assert isinstance(AccessForbiddenError("x"), FATAL_ERRORS)

    def test_quota_is_terminal_not_retryable(self):
        """Test quota errors are never retried."""
        error = QuotaExceededError("x")
        assert isinstance(error, TERMINAL_ERRORS)
        assert not isinstance(error, RETRYABLE_ERRORS)

    def test_data_shape_errors(self):
        """Test data-shape errors are neither retryable nor terminal."""
        for error_type in (EmptyResponseError, NoContentError, MaxTokensError):
            error = error_type("x")
            assert isinstance(error, DATA_SHAPE_ERRORS)
            assert not isinstance(error, RETRYABLE_ERRORS)

    def test_timeout_is_retryable(self):
        """Test timeouts are retryable."""
        assert isinstance(TimeoutError("x"), RETRYABLE_ERRORS)

    def test_quota_message_detection(self):
        """Test quota wording detection."""
        assert is_quota_message("insufficient_quota")
        assert is_quota_message("Billing hard limit reached")
        assert not is_quota_message("Too many requests")
        assert not is_quota_message(None)


class TestNormalizeError:
    """Tests for normalize_error."""

    def test_404_not_found_without_payload(self):
        """Test 404 maps to NOT_FOUND and the user message hides the payload."""
        body = '{"error": {"message": "No endpoints found for secret/model-xyz"}}'
        record = normalize_error(404, body)

        assert record.code == "NOT_FOUND"
        assert record.status == 404
        assert record.provider_message == body
        assert "secret/model-xyz" not in record.user_message
        assert "endpoints" not in record.user_message
        assert record.user_message == USER_MESSAGES[ErrorCode.NOT_FOUND]

    @pytest.mark.parametrize(
        "status,body,code",
        [
            (429, "Rate limit exceeded", "RATE_LIMIT"),
            (429, "insufficient_quota", "QUOTA"),
            (402, "Payment required", "QUOTA"),
            (401, "bad key", "AUTH_FAILED"),
            (403, "forbidden", "ACCESS_FORBIDDEN"),
            (400, "bad request", "FORMAT"),
        ],
    )
    def test_status_codes(self, status, body, code):
        """Test status to code mapping."""
        assert normalize_error(status, body).code == code

    def test_server_error_uses_operation_default(self):
        """Test unmapped failures fall back to the operation code."""
        assert normalize_error(500, "boom", operation="chat").code == "CHAT_ERROR"
        assert normalize_error(500, "boom", operation="completion").code == "COMPLETION_ERROR"
        assert normalize_error(None, None).code == "CHAT_ERROR"

    def test_user_messages_are_provider_agnostic(self):
        """Test no user message names a provider."""
        for message in USER_MESSAGES.values():
            lowered = message.lower()
            assert "openrouter" not in lowered
            assert "anthropic" not in lowered
            assert "ollama" not in lowered


class TestErrorNormalizer:
    """Tests for ErrorNormalizer.from_exception."""

    def test_forbidden_before_auth(self):
        """Test AccessForbiddenError is not reported as AUTH_FAILED."""
        record = ErrorNormalizer().from_exception(AccessForbiddenError("no", status=403))
        assert record.code == "ACCESS_FORBIDDEN"
        assert record.status == 403

    def test_data_shape_codes(self):
        """Test data-shape errors map to their codes."""
        normalizer = ErrorNormalizer()
        assert normalizer.from_exception(EmptyResponseError("x")).code == "EMPTY"
        assert normalizer.from_exception(NoContentError("x")).code == "NO_CONTENT"
        assert normalizer.from_exception(MaxTokensError("x")).code == "MAX_TOKENS"

    def test_provider_error_uses_operation(self):
        """Test provider errors use the operation default code."""
        record = ErrorNormalizer().from_exception(
            ProviderError("down", status=502), operation="completion"
        )
        assert record.code == "COMPLETION_ERROR"
        assert record.status == 502

    def test_structured_error_keeps_record(self):
        """Test structured failures surface their last upstream record."""
        last = ErrorRecord(code="FORMAT", status=400, user_message="fmt")
        record = ErrorNormalizer().from_exception(StructuredOutputError("failed", record=last))
        assert record is last

    def test_structured_error_without_record(self):
        """Test structured failures without a record use STRUCTURED_ERROR."""
        record = ErrorNormalizer().from_exception(StructuredOutputError("failed"))
        assert record.code == "STRUCTURED_ERROR"

    def test_normalize_delegates(self):
        """Test the instance method matches the module function."""
        assert ErrorNormalizer().normalize(404, "x") == normalize_error(404, "x")
