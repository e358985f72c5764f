"""Ollama provider implementation.

Talks to a local Ollama server over its REST API with httpx. No API key is
required. Structured output uses Ollama's ``format`` field, which accepts
either ``"json"`` or a full JSON Schema.
"""

import os
import re
import time
from typing import Any

import httpx

from ..errors import EmptyResponseError, ProviderError, TimeoutError, error_for_status
from ..models import LLMRequest, LLMResponse
from .base import ProviderAdapter

_DATA_URL_RE = re.compile(r"^data:[\w/+.\-]+;base64,(?P<data>.+)$", re.DOTALL)

# Every model served by Ollama accepts these; ``format`` backs response_format
OLLAMA_PARAMETERS = frozenset(
    {"temperature", "top_p", "max_tokens", "stop", "format", "response_format"}
)


class OllamaAdapter(ProviderAdapter):
    """Local Ollama adapter.

    Images are passed through the message ``images`` field as raw base64,
    which multimodal models such as llava read.
    """

    DEFAULT_HOST = "http://localhost:11434"

    SUPPORTED_FEATURES = frozenset(
        {"json_schema", "json_object", "vision", "completions", "system_message"}
    )

    def __init__(
        self,
        host: str | None = None,
        timeout: float = 120.0,
        keep_alive: str | None = "5m",
        http_client: httpx.AsyncClient | None = None,
    ):
        """Initialize Ollama adapter.

        Args:
            host: Ollama server URL. Defaults to OLLAMA_HOST or localhost.
            timeout: Request timeout in seconds (longer for local inference).
            keep_alive: How long the server keeps the model loaded.
            http_client: Optional pre-built httpx client.
        """
        self._host = (host or os.environ.get("OLLAMA_HOST") or self.DEFAULT_HOST).rstrip("/")
        self._timeout = timeout
        self._keep_alive = keep_alive
        self._http = http_client

    @property
    def name(self) -> str:
        """Provider identifier."""
        return "ollama"

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                headers={"Content-Type": "application/json"},
            )
        return self._http

    async def chat(self, request: LLMRequest) -> LLMResponse:
        """POST /api/chat."""
        start_time = time.perf_counter()
        payload: dict[str, Any] = {
            "model": request.model,
            "messages": [self._convert_message(msg.role, msg.content) for msg in request.messages],
            "stream": False,
            "options": self._build_options(request),
        }
        self._apply_format(payload, request)
        if self._keep_alive:
            payload["keep_alive"] = self._keep_alive

        data = await self._post("/api/chat", payload)
        message = data.get("message") or {}
        if not message:
            raise EmptyResponseError("Ollama returned no message", provider=self.name)

        return LLMResponse(
            text=message.get("content"),
            finish_reason=self._finish_reason(data),
            reasoning=message.get("thinking"),
            model=data.get("model") or request.model,
            provider=self.name,
            latency_ms=int((time.perf_counter() - start_time) * 1000),
            raw=data,
        )

    async def complete(self, request: LLMRequest) -> LLMResponse:
        """POST /api/generate with a raw prompt."""
        start_time = time.perf_counter()
        payload: dict[str, Any] = {
            "model": request.model,
            "prompt": request.prompt or "",
            "stream": False,
            "options": self._build_options(request),
        }
        self._apply_format(payload, request)
        if self._keep_alive:
            payload["keep_alive"] = self._keep_alive

        data = await self._post("/api/generate", payload)
        if "response" not in data:
            raise EmptyResponseError("Ollama returned no response", provider=self.name)

        text = data.get("response")
        return LLMResponse(
            text=text.strip() if isinstance(text, str) else None,
            finish_reason=self._finish_reason(data),
            reasoning=data.get("thinking"),
            model=data.get("model") or request.model,
            provider=self.name,
            latency_ms=int((time.perf_counter() - start_time) * 1000),
            raw=data,
        )

    async def fetch_supported_parameters(self, model_id: str) -> set[str]:
        """POST /api/show; a model the server knows accepts the common parameter set."""
        await self._post("/api/show", {"model": model_id})
        return set(OLLAMA_PARAMETERS)

    async def close(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self.http.post(f"{self._host}{path}", json=payload)
        except httpx.TimeoutException as e:
            raise TimeoutError(
                "Ollama request timed out - model may be loading",
                provider=self.name,
            ) from e
        except httpx.RequestError as e:
            raise ProviderError(f"Cannot connect to Ollama: {e}", provider=self.name) from e

        if response.status_code >= 400:
            raise error_for_status(response.status_code, response.text, provider=self.name)

        try:
            data = response.json()
        except ValueError as e:
            raise EmptyResponseError("Ollama returned a non-JSON body", provider=self.name) from e
        if not isinstance(data, dict):
            raise EmptyResponseError("Ollama returned an unexpected body", provider=self.name)
        if data.get("error"):
            raise error_for_status(500, str(data["error"]), provider=self.name)
        return data

    def _build_options(self, request: LLMRequest) -> dict[str, Any]:
        options: dict[str, Any] = {}
        if request.temperature is not None:
            options["temperature"] = request.temperature
        if request.top_p is not None:
            options["top_p"] = request.top_p
        if request.max_tokens is not None:
            options["num_predict"] = request.max_tokens
        if request.frequency_penalty is not None:
            options["frequency_penalty"] = request.frequency_penalty
        if request.presence_penalty is not None:
            options["presence_penalty"] = request.presence_penalty
        if request.stop:
            options["stop"] = request.stop
        return options

    def _apply_format(self, payload: dict[str, Any], request: LLMRequest) -> None:
        fmt = request.response_format
        if fmt is None:
            return
        if fmt.type == "json_schema":
            payload["format"] = fmt.json_schema or "json"
        elif fmt.type == "json_object":
            payload["format"] = "json"

    @staticmethod
    def _convert_message(role: str, content: str | list[dict[str, Any]]) -> dict[str, Any]:
        """Flatten OpenAI-style content parts into text plus base64 ``images``."""
        if isinstance(content, str):
            return {"role": role, "content": content}

        texts: list[str] = []
        images: list[str] = []
        for part in content:
            if part.get("type") == "text":
                texts.append(part.get("text", ""))
            elif part.get("type") == "image_url":
                url = (part.get("image_url") or {}).get("url", "")
                match = _DATA_URL_RE.match(url)
                images.append(match.group("data") if match else url)

        message: dict[str, Any] = {"role": role, "content": "\n".join(texts)}
        if images:
            message["images"] = images
        return message

    @staticmethod
    def _finish_reason(data: dict[str, Any]) -> str | None:
        reason = data.get("done_reason")
        if reason is None and data.get("done"):
            return "stop"
        return reason
