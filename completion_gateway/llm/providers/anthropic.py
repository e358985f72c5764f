"""Anthropic provider implementation.

Implements the ProviderAdapter interface for Anthropic's Messages API.
Schema-constrained output uses a forced tool call (Anthropic has no native
json_schema mode); plain JSON mode is requested through the system prompt.
"""

import json
import os
import re
import time
from typing import Any

from anthropic import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncAnthropic,
)

from ..errors import (
    AuthenticationError,
    EmptyResponseError,
    ProviderError,
    TimeoutError,
    error_for_status,
)
from ..models import ChatMessage, LLMRequest, LLMResponse
from .base import ProviderAdapter

STRUCTURED_TOOL_NAME = "respond_with_json"

JSON_OBJECT_INSTRUCTION = "Respond only with a single valid JSON value. No commentary."

_DATA_URL_RE = re.compile(r"^data:(?P<media_type>[\w/+.\-]+);base64,(?P<data>.+)$", re.DOTALL)

# Advertised parameters; structured output is emulated with tool_use
ANTHROPIC_PARAMETERS = frozenset(
    {"max_tokens", "temperature", "top_p", "stop", "tools", "tool_choice", "response_format"}
)


class AnthropicAdapter(ProviderAdapter):
    """Anthropic Messages API adapter.

    Supports:
    - Structured outputs via tool_use pattern
    - JSON mode via system instruction
    - Vision (base64 and URL image sources)
    - Completions, sent as a single user message
    """

    SUPPORTED_FEATURES = frozenset(
        {"json_schema", "json_object", "vision", "completions", "system_message"}
    )

    DEFAULT_MAX_TOKENS = 4096

    def __init__(
        self,
        api_key: str | None = None,
        timeout: float = 60.0,
    ):
        """Initialize Anthropic adapter.

        Args:
            api_key: Anthropic API key. Defaults to ANTHROPIC_API_KEY env var.
            timeout: Request timeout in seconds.
        """
        self._api_key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        self._timeout = timeout
        self._client: AsyncAnthropic | None = None

    @property
    def name(self) -> str:
        """Provider identifier."""
        return "anthropic"

    @property
    def client(self) -> AsyncAnthropic:
        """Lazy-initialized Anthropic client."""
        if self._client is None:
            if not self._api_key:
                raise AuthenticationError(
                    "Anthropic API key not configured. Set ANTHROPIC_API_KEY environment variable.",
                    provider=self.name,
                )
            self._client = AsyncAnthropic(api_key=self._api_key, timeout=self._timeout)
        return self._client

    async def chat(self, request: LLMRequest) -> LLMResponse:
        """Send a messages request to Anthropic."""
        return await self._send(request)

    async def complete(self, request: LLMRequest) -> LLMResponse:
        """Send a plain prompt as a single user message."""
        as_chat = request.model_copy(
            update={"messages": [ChatMessage(role="user", content=request.prompt or "")], "prompt": None}
        )
        response = await self._send(as_chat)
        if response.text is not None:
            response.text = response.text.strip()
        return response

    async def fetch_supported_parameters(self, model_id: str) -> set[str]:
        """Anthropic exposes no per-model parameter metadata; every model shares one set."""
        return set(ANTHROPIC_PARAMETERS)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None

    async def _send(self, request: LLMRequest) -> LLMResponse:
        start_time = time.perf_counter()
        anthropic_request = self._build_request(request)

        try:
            response = await self.client.messages.create(**anthropic_request)
        except APITimeoutError as e:
            raise TimeoutError(
                f"Anthropic request timed out after {self._timeout}s",
                provider=self.name,
            ) from e
        except APIConnectionError as e:
            raise ProviderError(
                f"Failed to connect to Anthropic: {e}",
                provider=self.name,
            ) from e
        except APIStatusError as e:
            self._handle_api_error(e)

        latency_ms = int((time.perf_counter() - start_time) * 1000)
        return self._parse_response(response, latency_ms, request)

    def _convert_content(self, content: str | list[dict[str, Any]]) -> str | list[dict[str, Any]]:
        """Translate OpenAI-style content parts into Anthropic blocks."""
        if isinstance(content, str):
            return content

        blocks: list[dict[str, Any]] = []
        for part in content:
            if part.get("type") == "text":
                blocks.append({"type": "text", "text": part.get("text", "")})
            elif part.get("type") == "image_url":
                url = (part.get("image_url") or {}).get("url", "")
                match = _DATA_URL_RE.match(url)
                if match:
                    source = {
                        "type": "base64",
                        "media_type": match.group("media_type"),
                        "data": match.group("data"),
                    }
                else:
                    source = {"type": "url", "url": url}
                blocks.append({"type": "image", "source": source})
        return blocks

    def _build_request(self, request: LLMRequest) -> dict[str, Any]:
        """Convert LLMRequest to Anthropic API format."""
        # Anthropic takes system as a top-level parameter
        system_parts: list[str] = []
        messages = []

        for msg in request.messages:
            if msg.role == "system":
                system_parts.append(msg.content if isinstance(msg.content, str) else str(msg.content))
            elif msg.role in ("user", "assistant"):
                messages.append({"role": msg.role, "content": self._convert_content(msg.content)})

        anthropic_request: dict[str, Any] = {
            "model": request.model,
            "messages": messages,
            "max_tokens": request.max_tokens or self.DEFAULT_MAX_TOKENS,
        }

        # Anthropic uses a 0-1 temperature range
        if request.temperature is not None:
            anthropic_request["temperature"] = min(request.temperature, 1.0)
        if request.top_p is not None:
            anthropic_request["top_p"] = request.top_p

        fmt = request.response_format
        if fmt is not None and fmt.type == "json_schema":
            anthropic_request["tools"] = [{
                "name": STRUCTURED_TOOL_NAME,
                "description": "Respond with structured JSON data matching the required schema.",
                "input_schema": fmt.json_schema or {"type": "object"},
            }]
            anthropic_request["tool_choice"] = {"type": "tool", "name": STRUCTURED_TOOL_NAME}
        elif fmt is not None and fmt.type == "json_object":
            system_parts.append(JSON_OBJECT_INSTRUCTION)

        if system_parts:
            anthropic_request["system"] = "\n\n".join(system_parts)

        if request.stop:
            anthropic_request["stop_sequences"] = request.stop

        return anthropic_request

    def _parse_response(self, response: Any, latency_ms: int, request: LLMRequest) -> LLMResponse:
        """Convert Anthropic response to LLMResponse."""
        if response is None or not response.content:
            raise EmptyResponseError(
                "Anthropic returned no content blocks",
                provider=self.name,
                request_id=getattr(response, "id", None),
            )

        text_parts = []
        reasoning_parts = []

        for block in response.content:
            if block.type == "text":
                text_parts.append(block.text)
            elif block.type == "thinking":
                reasoning_parts.append(block.thinking)
            elif block.type == "tool_use" and block.name == STRUCTURED_TOOL_NAME:
                # The forced tool's input is the structured answer
                text_parts.append(json.dumps(block.input))

        # Map Anthropic stop reasons to our format
        finish_reason_map = {
            "end_turn": "stop",
            "max_tokens": "length",
            "stop_sequence": "stop",
            "tool_use": "stop",
        }

        return LLMResponse(
            text="\n".join(text_parts) if text_parts else None,
            finish_reason=finish_reason_map.get(response.stop_reason, response.stop_reason),
            reasoning="\n".join(reasoning_parts) if reasoning_parts else None,
            model=response.model,
            provider=self.name,
            latency_ms=latency_ms,
            request_id=response.id,
            raw=response.model_dump() if hasattr(response, "model_dump") else None,
        )

    def _handle_api_error(self, error: APIStatusError) -> None:
        """Convert Anthropic API errors to LLMError types."""
        status_code = error.status_code
        message = str(error.message) if hasattr(error, "message") else str(error)
        request_id = getattr(error, "request_id", None)

        retry_after = None
        response = getattr(error, "response", None)
        if response is not None:
            retry_after_str = response.headers.get("retry-after")
            if isinstance(retry_after_str, str) and retry_after_str:
                try:
                    retry_after = float(retry_after_str)
                except ValueError:
                    pass

        raise error_for_status(
            status_code,
            message,
            provider=self.name,
            request_id=request_id,
            retry_after=retry_after,
        ) from error
