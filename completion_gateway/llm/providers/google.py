"""Google Gemini provider implementation.

Talks to the Generative Language REST API (``generateContent``) with httpx.
Structured output sets ``responseMimeType`` and, for json_schema requests, a
``responseSchema`` rewritten into the OpenAPI subset Gemini accepts.
"""

import mimetypes
import os
import re
import time
from typing import Any

import httpx

from ..errors import (
    AuthenticationError,
    EmptyResponseError,
    LLMError,
    ProviderError,
    RateLimitError,
    TimeoutError,
    error_for_status,
)
from ..models import ChatMessage, LLMRequest, LLMResponse
from .base import ProviderAdapter

_DATA_URL_RE = re.compile(r"^data:(?P<mime_type>[\w/+.\-]+);base64,(?P<data>.+)$", re.DOTALL)
_DURATION_RE = re.compile(r"^(?P<value>\d+(?:\.\d+)?)(?P<unit>s|m)$")

RETRY_INFO_TYPE = "type.googleapis.com/google.rpc.RetryInfo"

# JSON Schema keywords responseSchema rejects
_UNSUPPORTED_SCHEMA_KEYS = frozenset({"additionalProperties", "const", "$schema", "$id"})
_SCHEMA_MAPS = frozenset({"properties", "$defs", "definitions"})

# Penalties are left out: several Gemini models reject them with a 400
GOOGLE_PARAMETERS = frozenset({"temperature", "top_p", "max_tokens", "stop"})
GOOGLE_STRUCTURED_PARAMETERS = frozenset({"response_format", "structured_outputs"})

_GENERATION_FIELDS = (
    ("temperature", "temperature"),
    ("top_p", "topP"),
    ("max_tokens", "maxOutputTokens"),
)

_FINISH_REASONS = {
    "STOP": "stop",
    "MAX_TOKENS": "length",
    "SAFETY": "content_filter",
    "RECITATION": "content_filter",
    "BLOCKLIST": "content_filter",
    "PROHIBITED_CONTENT": "content_filter",
}

PLACEHOLDER_USER_TURN = "Hi."


def sanitize_schema(schema: Any) -> Any:
    """Rewrite a JSON Schema for Gemini's ``responseSchema``.

    Unsupported keywords are dropped and ``["x", "null"]`` type lists become
    ``type: x`` with ``nullable: true``. Objects get a ``propertyOrdering`` so
    fields come back in declaration order.
    """
    if isinstance(schema, list):
        return [sanitize_schema(item) for item in schema]
    if not isinstance(schema, dict):
        return schema

    clean: dict[str, Any] = {}
    for key, value in schema.items():
        if key in _UNSUPPORTED_SCHEMA_KEYS:
            continue
        if key in _SCHEMA_MAPS and isinstance(value, dict):
            clean[key] = {name: sanitize_schema(sub) for name, sub in value.items()}
        else:
            clean[key] = sanitize_schema(value)

    schema_type = schema.get("type")
    if isinstance(schema_type, list):
        non_null = [t for t in schema_type if t != "null"]
        clean["type"] = non_null[0] if non_null else "string"
        if "null" in schema_type:
            clean["nullable"] = True
    elif schema_type is None:
        if "properties" in schema:
            clean["type"] = "object"
        elif "items" in schema:
            clean["type"] = "array"
        elif "enum" in schema:
            clean["type"] = "string"

    properties = clean.get("properties")
    if clean.get("type") == "object" and isinstance(properties, dict) and "propertyOrdering" not in clean:
        clean["propertyOrdering"] = list(properties)
    return clean


def parse_retry_delay(details: Any) -> float | None:
    """Seconds from a ``google.rpc.RetryInfo`` error detail, if present."""
    if not isinstance(details, list):
        return None
    for detail in details:
        if not isinstance(detail, dict) or detail.get("@type") != RETRY_INFO_TYPE:
            continue
        match = _DURATION_RE.match(str(detail.get("retryDelay", "")).strip())
        if match:
            value = float(match.group("value"))
            return value * 60 if match.group("unit") == "m" else value
    return None


class GoogleAdapter(ProviderAdapter):
    """Google Gemini adapter.

    System messages become ``systemInstruction`` and assistant turns use the
    ``model`` role. Gemini requires the conversation to open with a user
    turn, so a short placeholder is inserted when it does not.
    """

    DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

    SUPPORTED_FEATURES = frozenset(
        {"json_schema", "json_object", "vision", "completions", "system_message"}
    )

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = 60.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        """Initialize Google adapter.

        Args:
            api_key: Gemini API key. Defaults to GOOGLE_API_KEY env var.
            base_url: API base URL. Defaults to the public v1beta endpoint.
            timeout: Request timeout in seconds.
            http_client: Optional pre-built httpx client.
        """
        self._api_key = api_key or os.environ.get("GOOGLE_API_KEY")
        self._base_url = (base_url or self.DEFAULT_BASE_URL).rstrip("/")
        self._timeout = timeout
        self._http = http_client

    @property
    def name(self) -> str:
        """Provider identifier."""
        return "google"

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                headers={"Content-Type": "application/json"},
            )
        return self._http

    def _require_api_key(self) -> str:
        if not self._api_key:
            raise AuthenticationError(
                "Google API key not configured. Set GOOGLE_API_KEY environment variable.",
                provider=self.name,
            )
        return self._api_key

    async def chat(self, request: LLMRequest) -> LLMResponse:
        """POST models/{model}:generateContent with the conversation."""
        start_time = time.perf_counter()
        contents, system = self._build_contents(request.messages)
        data = await self._generate(request.model, self._build_payload(request, contents, system))
        return self._parse_response(data, request.model, int((time.perf_counter() - start_time) * 1000))

    async def complete(self, request: LLMRequest) -> LLMResponse:
        """Single user turn carrying the raw prompt."""
        start_time = time.perf_counter()
        contents = [{"role": "user", "parts": [{"text": request.prompt or ""}]}]
        data = await self._generate(request.model, self._build_payload(request, contents, None))
        response = self._parse_response(data, request.model, int((time.perf_counter() - start_time) * 1000))
        if response.text is not None:
            response = response.model_copy(update={"text": response.text.strip()})
        return response

    async def fetch_supported_parameters(self, model_id: str) -> set[str]:
        """GET models/{model}; generateContent models accept a responseSchema."""
        data = await self._request("GET", f"/models/{model_id}")
        parameters = set(GOOGLE_PARAMETERS)
        if "generateContent" in (data.get("supportedGenerationMethods") or []):
            parameters |= GOOGLE_STRUCTURED_PARAMETERS
        return parameters

    async def close(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def _generate(self, model: str, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", f"/models/{model}:generateContent", payload)

    async def _request(
        self, method: str, path: str, payload: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        headers = {"x-goog-api-key": self._require_api_key()}
        try:
            response = await self.http.request(
                method, f"{self._base_url}{path}", json=payload, headers=headers
            )
        except httpx.TimeoutException as e:
            raise TimeoutError(
                f"Google request timed out after {self._timeout}s",
                provider=self.name,
            ) from e
        except httpx.RequestError as e:
            raise ProviderError(f"Cannot connect to Google: {e}", provider=self.name) from e

        if response.status_code >= 400:
            raise self._error_from_response(response)

        try:
            data = response.json()
        except ValueError as e:
            raise EmptyResponseError("Google returned a non-JSON body", provider=self.name) from e
        if not isinstance(data, dict):
            raise EmptyResponseError("Google returned an unexpected body", provider=self.name)
        return data

    def _error_from_response(self, response: httpx.Response) -> LLMError:
        """Map an error body to a typed exception.

        A 429 that carries a RetryInfo delay is throttling and stays
        retryable. Without one, quota wording marks exhausted quota.
        """
        message = response.text
        details: Any = None
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            message = body["error"].get("message") or message
            details = body["error"].get("details")

        status = response.status_code
        if status == 429:
            delay = parse_retry_delay(details)
            if delay is not None:
                return RateLimitError(
                    f"{self.name} rate limit exceeded",
                    retry_after=delay,
                    provider=self.name,
                    provider_message=message,
                )
        if status == 400 and "API_KEY_INVALID" in response.text:
            status = 401
        return error_for_status(status, message, provider=self.name)

    def _build_payload(
        self, request: LLMRequest, contents: list[dict[str, Any]], system: str | None
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"contents": contents}
        if system:
            payload["systemInstruction"] = {"parts": [{"text": system}]}
        config = self._generation_config(request)
        if config:
            payload["generationConfig"] = config
        return payload

    def _generation_config(self, request: LLMRequest) -> dict[str, Any]:
        config: dict[str, Any] = {}
        for field, key in _GENERATION_FIELDS:
            value = getattr(request, field)
            if value is not None:
                config[key] = value
        if request.stop:
            config["stopSequences"] = request.stop

        fmt = request.response_format
        if fmt is not None and fmt.type != "text":
            config["responseMimeType"] = "application/json"
            if fmt.type == "json_schema" and fmt.json_schema:
                config["responseSchema"] = sanitize_schema(fmt.json_schema)
        return config

    def _build_contents(self, messages: list[ChatMessage]) -> tuple[list[dict[str, Any]], str | None]:
        """Split system text out and normalize roles so the first turn is the user's."""
        system_parts: list[str] = []
        contents: list[dict[str, Any]] = []
        for message in messages:
            if message.role == "system":
                system_parts.extend(
                    part["text"] for part in self._convert_parts(message.content) if "text" in part
                )
                continue
            role = "model" if message.role == "assistant" else "user"
            contents.append({"role": role, "parts": self._convert_parts(message.content)})

        if not contents or contents[0]["role"] != "user":
            contents.insert(0, {"role": "user", "parts": [{"text": PLACEHOLDER_USER_TURN}]})
        return contents, "\n".join(system_parts) or None

    @staticmethod
    def _convert_parts(content: str | list[dict[str, Any]]) -> list[dict[str, Any]]:
        """OpenAI-style content parts to Gemini parts."""
        if isinstance(content, str):
            return [{"text": content}]

        parts: list[dict[str, Any]] = []
        for part in content:
            if part.get("type") == "text":
                parts.append({"text": part.get("text", "")})
            elif part.get("type") == "image_url":
                url = (part.get("image_url") or {}).get("url", "")
                match = _DATA_URL_RE.match(url)
                if match:
                    parts.append(
                        {"inlineData": {"mimeType": match.group("mime_type"), "data": match.group("data")}}
                    )
                else:
                    mime_type = mimetypes.guess_type(url)[0] or "image/jpeg"
                    parts.append({"fileData": {"mimeType": mime_type, "fileUri": url}})
        return parts

    def _parse_response(self, data: dict[str, Any], requested_model: str, latency_ms: int) -> LLMResponse:
        candidates = data.get("candidates") or []
        if not candidates:
            block_reason = (data.get("promptFeedback") or {}).get("blockReason")
            raise EmptyResponseError(
                f"Google blocked the prompt ({block_reason})" if block_reason else "Google returned no candidates",
                provider=self.name,
                request_id=data.get("responseId"),
            )

        candidate = candidates[0]
        texts: list[str] = []
        thoughts: list[str] = []
        for part in (candidate.get("content") or {}).get("parts") or []:
            text = part.get("text")
            if isinstance(text, str):
                (thoughts if part.get("thought") else texts).append(text)

        finish = candidate.get("finishReason")
        return LLMResponse(
            text="".join(texts) if texts else None,
            finish_reason=_FINISH_REASONS.get(finish, finish.lower()) if isinstance(finish, str) else None,
            reasoning="".join(thoughts) or None,
            model=data.get("modelVersion") or requested_model,
            provider=self.name,
            latency_ms=latency_ms,
            request_id=data.get("responseId"),
            raw=data,
        )
