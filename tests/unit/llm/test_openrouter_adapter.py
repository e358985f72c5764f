"""Unit tests for the OpenRouter adapter.

Tests cover:
- Request building and response parsing
- Error handling and mapping
- Capability metadata probing
"""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from completion_gateway.llm.errors import (
    AccessForbiddenError,
    AuthenticationError,
    CapabilityProbeError,
    EmptyResponseError,
    InvalidRequestError,
    ModelNotFoundError,
    ProviderError,
    QuotaExceededError,
    RateLimitError,
    TimeoutError,
)
from completion_gateway.llm.models import ChatMessage, LLMRequest, ResponseFormat
from completion_gateway.llm.providers.openrouter import OpenRouterAdapter


class FakeAPIStatusError(Exception):
    """Fake API error for testing exception chaining."""

    def __init__(self, status_code: int, message: str, response=None, request_id=None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.response = response
        self.request_id = request_id


def mock_chat_response(content="Hello!", finish_reason="stop", reasoning=None, raw=None):
    response = MagicMock()
    response.id = "gen-123"
    response.model = "openai/gpt-4o-mini"
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    response.choices[0].message.reasoning = reasoning
    response.choices[0].finish_reason = finish_reason
    response.model_dump = MagicMock(return_value=raw or {})
    return response


class TestOpenRouterAdapterInit:
    """Tests for adapter initialization."""

    def test_adapter_name(self):
        """Test adapter name is correct."""
        adapter = OpenRouterAdapter(api_key="test-key")
        assert adapter.name == "openrouter"

    def test_default_base_url(self):
        """Test the public endpoint is the default."""
        with patch.dict("os.environ", {}, clear=True):
            adapter = OpenRouterAdapter(api_key="test-key")
        assert adapter._base_url == "https://openrouter.ai/api/v1"

    def test_custom_base_url(self):
        """Test trailing slashes are trimmed."""
        adapter = OpenRouterAdapter(api_key="test-key", base_url="http://proxy.local/v1/")
        assert adapter._base_url == "http://proxy.local/v1"

    def test_identifying_headers(self):
        """Test referer and title headers."""
        adapter = OpenRouterAdapter(api_key="test-key", referer="https://app.example", title="My App")
        assert adapter.identifying_headers == {"HTTP-Referer": "https://app.example", "X-Title": "My App"}

    def test_missing_key(self):
        """Test the client cannot be built without a key."""
        with patch.dict("os.environ", {}, clear=True):
            adapter = OpenRouterAdapter()
            with pytest.raises(AuthenticationError):
                adapter.client

    def test_capabilities(self):
        """Test advertised features."""
        adapter = OpenRouterAdapter(api_key="test-key")
        assert adapter.supports("json_schema") is True
        assert adapter.supports("vision") is True
        assert adapter.supports("tools") is False


class TestOpenRouterRequestBuilding:
    """Tests for request building."""

    def test_build_basic_request(self):
        """Test building a basic chat request."""
        adapter = OpenRouterAdapter(api_key="test-key")
        request = LLMRequest(
            messages=[ChatMessage(role="user", content="Hello")],
            model="openai/gpt-4o-mini",
            temperature=0.5,
        )

        payload = adapter._build_chat_request(request)

        assert payload["model"] == "openai/gpt-4o-mini"
        assert payload["temperature"] == 0.5
        assert payload["messages"] == [{"role": "user", "content": "Hello"}]
        assert "max_tokens" not in payload
        assert "response_format" not in payload

    def test_build_request_with_json_schema(self):
        """Test json_schema response format is strict and named."""
        adapter = OpenRouterAdapter(api_key="test-key")
        schema = {"type": "object", "properties": {"items": {"type": "array"}}}
        request = LLMRequest(
            messages=[ChatMessage(role="user", content="List items")],
            model="openai/gpt-4o",
            response_format=ResponseFormat(type="json_schema", json_schema=schema, name="Items"),
        )

        payload = adapter._build_chat_request(request)

        assert payload["response_format"] == {
            "type": "json_schema",
            "json_schema": {"name": "Items", "schema": schema, "strict": True},
        }

    def test_build_request_with_json_object(self):
        """Test json_object response format."""
        adapter = OpenRouterAdapter(api_key="test-key")
        request = LLMRequest(
            messages=[ChatMessage(role="user", content="JSON please")],
            model="openai/gpt-4o",
            response_format=ResponseFormat(type="json_object"),
        )

        assert adapter._build_chat_request(request)["response_format"] == {"type": "json_object"}

    def test_build_request_with_image_parts(self):
        """Test multimodal content parts pass through unchanged."""
        adapter = OpenRouterAdapter(api_key="test-key")
        parts = [
            {"type": "text", "text": "Describe"},
            {"type": "image_url", "image_url": {"url": "https://example.com/cat.png"}},
        ]
        request = LLMRequest(messages=[ChatMessage(role="user", content=parts)], model="openai/gpt-4o")

        assert adapter._build_chat_request(request)["messages"][0]["content"] == parts

    def test_build_completion_request(self):
        """Test legacy completion payload."""
        adapter = OpenRouterAdapter(api_key="test-key")
        request = LLMRequest(model="openai/gpt-4o", prompt="Once upon", max_tokens=20, stop=["\n"])

        payload = adapter._build_completion_request(request)

        assert payload == {"model": "openai/gpt-4o", "prompt": "Once upon", "max_tokens": 20, "stop": ["\n"]}


class TestOpenRouterResponseParsing:
    """Tests for response parsing."""

    def test_parse_text_response(self):
        """Test parsing a text response."""
        adapter = OpenRouterAdapter(api_key="test-key")

        response = adapter._parse_chat_response(mock_chat_response("Hello, world!"), 100, "x/y")

        assert response.text == "Hello, world!"
        assert response.finish_reason == "stop"
        assert response.provider == "openrouter"
        assert response.model == "openai/gpt-4o-mini"
        assert response.request_id == "gen-123"
        assert response.latency_ms == 100
        assert response.reasoning is None

    def test_parse_reasoning(self):
        """Test the reasoning field is kept."""
        adapter = OpenRouterAdapter(api_key="test-key")

        response = adapter._parse_chat_response(
            mock_chat_response(content="", reasoning="Let me think"), 10, "x/y"
        )

        assert response.text == ""
        assert response.reasoning == "Let me think"

    def test_parse_list_content(self):
        """Test list content parts are joined."""
        adapter = OpenRouterAdapter(api_key="test-key")
        content = [{"type": "text", "text": "Part one"}, {"type": "text", "text": "Part two"}]

        response = adapter._parse_chat_response(mock_chat_response(content), 10, "x/y")

        assert response.text == "Part one\nPart two"

    def test_parse_tool_calls_only(self):
        """Test a reply carrying only tool calls is serialized into the text."""
        adapter = OpenRouterAdapter(api_key="test-key")
        tool_calls = [
            {
                "id": "call_1",
                "type": "function",
                "function": {"name": "get_weather", "arguments": '{"city": "Oslo"}'},
            }
        ]
        raw = {"choices": [{"message": {"content": None, "tool_calls": tool_calls}}]}

        response = adapter._parse_chat_response(mock_chat_response(content=None, raw=raw), 10, "x/y")

        assert json.loads(response.text) == {"tool_calls": tool_calls}

    def test_parse_content_wins_over_tool_calls(self):
        """Test visible content is kept when tool calls are also present."""
        adapter = OpenRouterAdapter(api_key="test-key")
        raw = {"choices": [{"message": {"content": "Checking.", "tool_calls": [{"id": "call_1"}]}}]}

        response = adapter._parse_chat_response(mock_chat_response("Checking.", raw=raw), 10, "x/y")

        assert response.text == "Checking."

    def test_parse_no_choices(self):
        """Test an empty choices list raises."""
        adapter = OpenRouterAdapter(api_key="test-key")
        mock_response = mock_chat_response()
        mock_response.choices = []

        with pytest.raises(EmptyResponseError):
            adapter._parse_chat_response(mock_response, 10, "x/y")

    def test_parse_null_response(self):
        """Test a null response raises."""
        adapter = OpenRouterAdapter(api_key="test-key")
        with pytest.raises(EmptyResponseError):
            adapter._parse_chat_response(None, 10, "x/y")

    def test_parse_embedded_error(self):
        """Test a 200 body carrying an error object is mapped by its code."""
        adapter = OpenRouterAdapter(api_key="test-key")
        mock_response = mock_chat_response(
            raw={"id": "gen-9", "error": {"code": 429, "message": "Rate limited upstream"}}
        )

        with pytest.raises(RateLimitError) as exc_info:
            adapter._parse_chat_response(mock_response, 10, "x/y")

        assert exc_info.value.request_id == "gen-9"

    def test_parse_completion_response(self):
        """Test legacy completion text is stripped."""
        adapter = OpenRouterAdapter(api_key="test-key")
        mock_response = MagicMock()
        mock_response.id = "cmpl-1"
        mock_response.model = "openai/gpt-4o"
        mock_response.choices = [MagicMock()]
        mock_response.choices[0].text = "  there was a cat.  "
        mock_response.choices[0].finish_reason = "stop"
        mock_response.model_dump = MagicMock(return_value={})

        response = adapter._parse_completion_response(mock_response, 5, "openai/gpt-4o")

        assert response.text == "there was a cat."


class TestOpenRouterErrorHandling:
    """Tests for error handling."""

    def test_handle_401_error(self):
        """Test handling 401 authentication error."""
        adapter = OpenRouterAdapter(api_key="test-key")
        error = FakeAPIStatusError(status_code=401, message="No auth credentials found")

        with pytest.raises(AuthenticationError) as exc_info:
            adapter._handle_api_error(error)

        assert "Invalid openrouter API key" in str(exc_info.value)
        assert exc_info.value.provider == "openrouter"
        assert exc_info.value.provider_message == "No auth credentials found"
        assert exc_info.value.__cause__ is error

    def test_handle_403_error(self):
        """Test handling 403 forbidden error."""
        adapter = OpenRouterAdapter(api_key="test-key")
        error = FakeAPIStatusError(status_code=403, message="Forbidden")

        with pytest.raises(AccessForbiddenError):
            adapter._handle_api_error(error)

    def test_handle_402_error(self):
        """Test handling 402 payment required."""
        adapter = OpenRouterAdapter(api_key="test-key")
        error = FakeAPIStatusError(status_code=402, message="Insufficient credits")

        with pytest.raises(QuotaExceededError) as exc_info:
            adapter._handle_api_error(error)

        assert exc_info.value.status == 402

    def test_handle_404_error(self):
        """Test handling 404 model not found error."""
        adapter = OpenRouterAdapter(api_key="test-key")
        error = FakeAPIStatusError(status_code=404, message="No endpoints found")

        with pytest.raises(ModelNotFoundError):
            adapter._handle_api_error(error)

    def test_handle_429_error(self):
        """Test handling 429 rate limit error."""
        adapter = OpenRouterAdapter(api_key="test-key")
        mock_response = MagicMock()
        mock_response.headers = {"retry-after": "30"}
        error = FakeAPIStatusError(status_code=429, message="Rate limit exceeded", response=mock_response)

        with pytest.raises(RateLimitError) as exc_info:
            adapter._handle_api_error(error)

        assert exc_info.value.retry_after == 30.0
        assert exc_info.value.__cause__ is error

    def test_handle_429_quota_error(self):
        """Test 429 with quota wording is not a rate limit."""
        adapter = OpenRouterAdapter(api_key="test-key")
        error = FakeAPIStatusError(status_code=429, message="You exceeded your current quota")

        with pytest.raises(QuotaExceededError):
            adapter._handle_api_error(error)

    def test_handle_400_error(self):
        """Test handling 400 invalid request error."""
        adapter = OpenRouterAdapter(api_key="test-key")
        error = FakeAPIStatusError(status_code=400, message="response_format not supported")

        with pytest.raises(InvalidRequestError) as exc_info:
            adapter._handle_api_error(error)

        assert exc_info.value.status == 400

    def test_handle_502_error(self):
        """Test handling 502 upstream error."""
        adapter = OpenRouterAdapter(api_key="test-key")
        error = FakeAPIStatusError(status_code=502, message="Bad gateway")

        with pytest.raises(ProviderError) as exc_info:
            adapter._handle_api_error(error)

        assert "server error" in str(exc_info.value).lower()


class TestOpenRouterChat:
    """Tests for the chat and completion calls."""

    @pytest.mark.asyncio
    async def test_chat_success(self):
        """Test successful chat."""
        adapter = OpenRouterAdapter(api_key="test-key")
        mock_client = AsyncMock()
        mock_client.chat.completions.create = AsyncMock(return_value=mock_chat_response("Hi!"))

        with patch.object(adapter, "_client", mock_client):
            response = await adapter.chat(
                LLMRequest(messages=[ChatMessage(role="user", content="Hi")], model="openai/gpt-4o-mini")
            )

        assert response.text == "Hi!"
        kwargs = mock_client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "openai/gpt-4o-mini"

    @pytest.mark.asyncio
    async def test_chat_timeout(self):
        """Test timeout error handling."""
        from openai import APITimeoutError

        adapter = OpenRouterAdapter(api_key="test-key")
        mock_client = AsyncMock()
        mock_client.chat.completions.create = AsyncMock(side_effect=APITimeoutError(request=MagicMock()))

        with patch.object(adapter, "_client", mock_client):
            with pytest.raises(TimeoutError) as exc_info:
                await adapter.chat(
                    LLMRequest(messages=[ChatMessage(role="user", content="Hi")], model="openai/gpt-4o")
                )

        assert exc_info.value.provider == "openrouter"

    @pytest.mark.asyncio
    async def test_complete_success(self):
        """Test legacy completion goes to the completions endpoint."""
        adapter = OpenRouterAdapter(api_key="test-key")
        mock_response = MagicMock()
        mock_response.id = "cmpl-1"
        mock_response.model = "openai/gpt-4o"
        mock_response.choices = [MagicMock()]
        mock_response.choices[0].text = "ever after"
        mock_response.choices[0].finish_reason = "stop"
        mock_response.model_dump = MagicMock(return_value={})
        mock_client = AsyncMock()
        mock_client.completions.create = AsyncMock(return_value=mock_response)

        with patch.object(adapter, "_client", mock_client):
            response = await adapter.complete(LLMRequest(model="openai/gpt-4o", prompt="Happily"))

        assert response.text == "ever after"
        assert mock_client.completions.create.call_args.kwargs["prompt"] == "Happily"


class TestOpenRouterCapabilityProbe:
    """Tests for fetch_supported_parameters."""

    @pytest.mark.asyncio
    async def test_collects_parameters(self):
        """Test parameters from the model and every endpoint are merged."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["headers"] = request.headers
            body = {
                "data": {
                    "supported_parameters": ["temperature"],
                    "endpoints": [
                        {"supported_parameters": ["response_format", "top_p"]},
                        {"supported_parameters": ["tools"]},
                    ],
                }
            }
            return httpx.Response(200, content=json.dumps(body))

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        adapter = OpenRouterAdapter(api_key="test-key", base_url="https://openrouter.ai/api/v1", http_client=client)

        parameters = await adapter.fetch_supported_parameters("openai/gpt-4o")

        assert parameters == {"temperature", "response_format", "top_p", "tools"}
        assert seen["path"] == "/api/v1/models/openai/gpt-4o/endpoints"
        assert seen["headers"]["authorization"] == "Bearer test-key"
        assert "http-referer" in seen["headers"]
        assert "x-title" in seen["headers"]

    @pytest.mark.asyncio
    async def test_not_found(self):
        """Test a 404 from the metadata endpoint maps to ModelNotFoundError."""
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(404, text="nope")))
        adapter = OpenRouterAdapter(api_key="test-key", http_client=client)

        with pytest.raises(ModelNotFoundError):
            await adapter.fetch_supported_parameters("acme/unknown")

    @pytest.mark.asyncio
    async def test_malformed_body(self):
        """Test a non-JSON body raises a probe error."""
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>")))
        adapter = OpenRouterAdapter(api_key="test-key", http_client=client)

        with pytest.raises(CapabilityProbeError):
            await adapter.fetch_supported_parameters("openai/gpt-4o")

    @pytest.mark.asyncio
    async def test_id_without_author(self):
        """Test ids without an author segment cannot be probed."""
        adapter = OpenRouterAdapter(api_key="test-key")
        with pytest.raises(CapabilityProbeError):
            await adapter.fetch_supported_parameters("gpt-4o")

    @pytest.mark.asyncio
    async def test_close_releases_clients(self):
        """Test close shuts the metadata client."""
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200, text="{}")))
        adapter = OpenRouterAdapter(api_key="test-key", http_client=client)

        await adapter.close()

        assert client.is_closed
        assert adapter._http is None
