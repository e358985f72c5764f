"""OpenRouter provider implementation.

Implements the ProviderAdapter interface for OpenRouter's OpenAI-compatible
REST API. Chat and completions go through the ``openai`` SDK pointed at the
OpenRouter base URL; model metadata (used for capability probing) is fetched
with ``httpx`` since the SDK has no endpoint for it.
"""

import json
import os
import time
from typing import Any

import httpx
from openai import APIConnectionError, APIStatusError, APITimeoutError, AsyncOpenAI

from ..errors import (
    AuthenticationError,
    CapabilityProbeError,
    EmptyResponseError,
    ProviderError,
    TimeoutError,
    error_for_status,
)
from ..models import LLMRequest, LLMResponse
from .base import ProviderAdapter

_SAMPLING_FIELDS = ("temperature", "max_tokens", "top_p", "frequency_penalty", "presence_penalty")


def _retry_after(response: Any) -> float | None:
    """Read a numeric retry-after header, if any."""
    if response is None:
        return None
    value = response.headers.get("retry-after")
    if not isinstance(value, str) or not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class OpenRouterAdapter(ProviderAdapter):
    """OpenRouter chat/completions adapter.

    Supports:
    - Structured outputs via response_format (json_schema and json_object)
    - Vision (image_url content parts)
    - Legacy text completions
    - Per-model parameter metadata for capability probing
    """

    DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
    DEFAULT_REFERER = "https://github.com/completion-gateway/completion-gateway"
    DEFAULT_TITLE = "completion-gateway"

    SUPPORTED_FEATURES = frozenset(
        {"json_schema", "json_object", "vision", "completions", "system_message"}
    )

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = 60.0,
        referer: str | None = None,
        title: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        """Initialize OpenRouter adapter.

        Args:
            api_key: OpenRouter API key. Defaults to OPENROUTER_API_KEY env var.
            base_url: API base URL. Defaults to OPENROUTER_BASE_URL or the public endpoint.
            timeout: Request timeout in seconds.
            referer: Value of the HTTP-Referer identifying header.
            title: Value of the X-Title identifying header.
            http_client: Optional httpx client for metadata requests.
        """
        self._api_key = api_key or os.environ.get("OPENROUTER_API_KEY")
        self._base_url = (
            base_url or os.environ.get("OPENROUTER_BASE_URL") or self.DEFAULT_BASE_URL
        ).rstrip("/")
        self._timeout = timeout
        self._referer = referer or self.DEFAULT_REFERER
        self._title = title or self.DEFAULT_TITLE
        self._client: AsyncOpenAI | None = None
        self._http = http_client

    @property
    def name(self) -> str:
        """Provider identifier."""
        return "openrouter"

    @property
    def identifying_headers(self) -> dict[str, str]:
        return {"HTTP-Referer": self._referer, "X-Title": self._title}

    def _require_api_key(self) -> str:
        if not self._api_key:
            raise AuthenticationError(
                "OpenRouter API key not configured. Set OPENROUTER_API_KEY environment variable.",
                provider=self.name,
            )
        return self._api_key

    @property
    def client(self) -> AsyncOpenAI:
        """Lazy-initialized OpenAI SDK client bound to OpenRouter."""
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self._require_api_key(),
                base_url=self._base_url,
                timeout=self._timeout,
                default_headers=self.identifying_headers,
            )
        return self._client

    @property
    def http(self) -> httpx.AsyncClient:
        """Lazy-initialized httpx client for metadata endpoints."""
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout))
        return self._http

    async def chat(self, request: LLMRequest) -> LLMResponse:
        """Send a chat completion request to OpenRouter."""
        start_time = time.perf_counter()
        payload = self._build_chat_request(request)

        try:
            response = await self.client.chat.completions.create(**payload)
        except APITimeoutError as e:
            raise TimeoutError(
                f"OpenRouter request timed out after {self._timeout}s",
                provider=self.name,
            ) from e
        except APIConnectionError as e:
            raise ProviderError(
                f"Failed to connect to OpenRouter: {e}",
                provider=self.name,
            ) from e
        except APIStatusError as e:
            self._handle_api_error(e)

        latency_ms = int((time.perf_counter() - start_time) * 1000)
        return self._parse_chat_response(response, latency_ms, request.model)

    async def complete(self, request: LLMRequest) -> LLMResponse:
        """Send a legacy text completion request to OpenRouter."""
        start_time = time.perf_counter()
        payload = self._build_completion_request(request)

        try:
            response = await self.client.completions.create(**payload)
        except APITimeoutError as e:
            raise TimeoutError(
                f"OpenRouter request timed out after {self._timeout}s",
                provider=self.name,
            ) from e
        except APIConnectionError as e:
            raise ProviderError(
                f"Failed to connect to OpenRouter: {e}",
                provider=self.name,
            ) from e
        except APIStatusError as e:
            self._handle_api_error(e)

        latency_ms = int((time.perf_counter() - start_time) * 1000)
        return self._parse_completion_response(response, latency_ms, request.model)

    async def fetch_supported_parameters(self, model_id: str) -> set[str]:
        """GET ``/models/{author}/{slug}/endpoints`` and collect supported parameters."""
        if "/" not in model_id:
            raise CapabilityProbeError(
                f"Cannot probe {model_id!r}: expected an 'author/slug' model id",
                provider=self.name,
            )
        author, slug = model_id.split("/", 1)
        url = f"{self._base_url}/models/{author}/{slug}/endpoints"
        headers = {
            "Authorization": f"Bearer {self._require_api_key()}",
            **self.identifying_headers,
        }

        try:
            response = await self.http.get(url, headers=headers)
        except httpx.TimeoutException as e:
            raise TimeoutError(
                f"OpenRouter metadata request timed out after {self._timeout}s",
                provider=self.name,
            ) from e
        except httpx.RequestError as e:
            raise ProviderError(
                f"Failed to connect to OpenRouter: {e}",
                provider=self.name,
            ) from e

        if response.status_code >= 400:
            raise error_for_status(
                response.status_code,
                response.text,
                provider=self.name,
                retry_after=_retry_after(response),
            )

        try:
            data = response.json().get("data") or {}
        except ValueError as e:
            raise CapabilityProbeError(
                f"Malformed metadata for {model_id}",
                provider=self.name,
                status=response.status_code,
            ) from e

        parameters: set[str] = set(data.get("supported_parameters") or [])
        for endpoint in data.get("endpoints") or []:
            parameters.update(endpoint.get("supported_parameters") or [])
        return parameters

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    def _sampling(self, request: LLMRequest) -> dict[str, Any]:
        return {
            field: getattr(request, field)
            for field in _SAMPLING_FIELDS
            if getattr(request, field) is not None
        }

    def _build_chat_request(self, request: LLMRequest) -> dict[str, Any]:
        """Convert LLMRequest to OpenAI-compatible chat format."""
        messages = []
        for msg in request.messages:
            message: dict[str, Any] = {"role": msg.role, "content": msg.content}
            if msg.name:
                message["name"] = msg.name
            messages.append(message)

        payload: dict[str, Any] = {
            "model": request.model,
            "messages": messages,
            **self._sampling(request),
        }

        fmt = request.response_format
        if fmt is not None:
            if fmt.type == "json_schema":
                payload["response_format"] = {
                    "type": "json_schema",
                    "json_schema": {
                        "name": fmt.name,
                        "schema": fmt.json_schema or {"type": "object"},
                        "strict": True,
                    },
                }
            elif fmt.type == "json_object":
                payload["response_format"] = {"type": "json_object"}
            # "text" is the default, no need to set

        if request.stop:
            payload["stop"] = request.stop

        return payload

    def _build_completion_request(self, request: LLMRequest) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": request.model,
            "prompt": request.prompt or "",
            **self._sampling(request),
        }
        if request.stop:
            payload["stop"] = request.stop
        return payload

    @staticmethod
    def _raw(response: Any) -> dict[str, Any] | None:
        raw = response.model_dump() if hasattr(response, "model_dump") else None
        return raw if isinstance(raw, dict) else None

    @staticmethod
    def _tool_calls(raw: dict[str, Any] | None) -> list[Any] | None:
        """Tool calls of the first choice, read from the serialized body."""
        choices = (raw or {}).get("choices") or []
        if not choices or not isinstance(choices[0], dict):
            return None
        return (choices[0].get("message") or {}).get("tool_calls") or None

    def _raise_embedded_error(self, raw: dict[str, Any] | None) -> None:
        """OpenRouter can return HTTP 200 with an ``error`` object in the body."""
        error = (raw or {}).get("error")
        if not error:
            return
        status = error.get("code") if isinstance(error, dict) else None
        message = error.get("message") if isinstance(error, dict) else str(error)
        raise error_for_status(
            status if isinstance(status, int) else 502,
            message or "",
            provider=self.name,
            request_id=(raw or {}).get("id"),
        )

    def _parse_chat_response(self, response: Any, latency_ms: int, requested_model: str) -> LLMResponse:
        """Convert an OpenAI-style chat response to LLMResponse."""
        if response is None:
            raise EmptyResponseError("Null response from OpenRouter", provider=self.name)

        raw = self._raw(response)
        self._raise_embedded_error(raw)

        if not response.choices:
            raise EmptyResponseError(
                "OpenRouter returned no choices",
                provider=self.name,
                request_id=getattr(response, "id", None),
            )

        choice = response.choices[0]
        message = choice.message
        content = message.content
        if isinstance(content, list):
            content = "\n".join(
                part if isinstance(part, str) else (part.get("text") or part.get("content") or "")
                for part in content
                if part
            ).strip()

        if not content:
            tool_calls = self._tool_calls(raw)
            if tool_calls:
                content = json.dumps({"tool_calls": tool_calls}, indent=2)

        reasoning = getattr(message, "reasoning", None)

        return LLMResponse(
            text=content if isinstance(content, str) else None,
            finish_reason=choice.finish_reason if isinstance(choice.finish_reason, str) else None,
            reasoning=reasoning if isinstance(reasoning, str) else None,
            model=response.model if isinstance(response.model, str) else requested_model,
            provider=self.name,
            latency_ms=latency_ms,
            request_id=response.id if isinstance(response.id, str) else None,
            raw=raw,
        )

    def _parse_completion_response(
        self, response: Any, latency_ms: int, requested_model: str
    ) -> LLMResponse:
        if response is None:
            raise EmptyResponseError("Null response from OpenRouter", provider=self.name)

        raw = self._raw(response)
        self._raise_embedded_error(raw)

        if not response.choices:
            raise EmptyResponseError(
                "OpenRouter returned no choices",
                provider=self.name,
                request_id=getattr(response, "id", None),
            )

        choice = response.choices[0]
        text = choice.text
        return LLMResponse(
            text=text.strip() if isinstance(text, str) else None,
            finish_reason=choice.finish_reason if isinstance(choice.finish_reason, str) else None,
            model=response.model if isinstance(response.model, str) else requested_model,
            provider=self.name,
            latency_ms=latency_ms,
            request_id=response.id if isinstance(response.id, str) else None,
            raw=raw,
        )

    def _handle_api_error(self, error: APIStatusError) -> None:
        """Convert OpenAI SDK status errors to LLMError types."""
        status_code = error.status_code
        message = str(error.message) if hasattr(error, "message") else str(error)
        request_id = getattr(error, "request_id", None)

        raise error_for_status(
            status_code,
            message,
            provider=self.name,
            request_id=request_id,
            retry_after=_retry_after(getattr(error, "response", None)),
        ) from error
