"""High-level completion gateway.

Single entry point for chat, completion, structured output, vision and image
generation. Resolves requested models against the catalog, retries transient
failures, substitutes another model when the requested one is rejected, and
returns either plain text (legacy mode) or a ResponseEnvelope.
"""

import base64
import json
import logging
import random
import re
import uuid
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, Protocol

from pydantic import ValidationError

from ..config import GatewaySettings
from .capabilities import CapabilityCache, CapabilityProbe
from .catalog import ModelCatalog, load_catalog, strip_model_suffix
from .errors import (
    FATAL_ERRORS,
    SUBSTITUTABLE_STATUSES,
    ErrorNormalizer,
    InvalidRequestError,
    LLMError,
    MaxTokensError,
    ModelNotFoundError,
    NoContentError,
    StructuredOutputError,
)
from .models import (
    ChatMessage,
    CompletionOptions,
    LLMRequest,
    LLMResponse,
    Rarity,
    RequestEnvelope,
    ResponseEnvelope,
    ResponseFormat,
)
from .providers import (
    AnthropicAdapter,
    GoogleAdapter,
    OllamaAdapter,
    OpenRouterAdapter,
    ProviderAdapter,
)
from .resolver import ModelResolver
from .retry import RetryController
from .structured import StructuredOutputCoercer, schema_name

logger = logging.getLogger(__name__)

THINK_RE = re.compile(r"<think>(.*?)</think>", re.DOTALL | re.IGNORECASE)

DEFAULT_ANALYZE_PROMPT = "Describe this image in detail."

# Tried in order after the requested model is rejected, filtered to the catalog
FALLBACK_MODELS: tuple[str, ...] = (
    "openai/gpt-4o",
    "openai/gpt-4.1",
    "openai/gpt-4o-mini",
    "anthropic/claude-3.7-sonnet",
    "meta-llama/llama-3.3-70b-instruct",
    "mistralai/mixtral-8x7b-instruct",
    "google/gemini-2.5-pro",
)

COMPLETION_DEFAULTS: dict[str, Any] = {
    "max_tokens": 2000,
    "temperature": 0.9,
    "top_p": 0.95,
    "frequency_penalty": 0.2,
    "presence_penalty": 0.3,
}
CHAT_DEFAULTS: dict[str, Any] = dict(COMPLETION_DEFAULTS)
VISION_DEFAULTS: dict[str, Any] = {"temperature": 0.5, "max_tokens": 400}

Call = Callable[[LLMRequest], Awaitable[LLMResponse]]
Result = str | ResponseEnvelope | None


class ImageGenerator(Protocol):
    """Collaborator that renders images and stores them.

    Returns a URL (or other reference) to the stored image, or None.
    """

    async def generate_image(
        self, prompt: str, images: list[str], model: str, options: dict[str, Any]
    ) -> str | None: ...


def split_reasoning(text: str | None) -> tuple[str, str | None]:
    """Move ``<think>`` blocks out of visible text.

    Returns:
        Tuple of (visible text, joined reasoning or None).
    """
    if not text:
        return "", None
    thoughts = [m.strip() for m in THINK_RE.findall(text) if m.strip()]
    visible = THINK_RE.sub("", text).strip()
    return visible, "\n".join(thoughts) if thoughts else None


def unwrap(result: Any) -> str | None:
    """Text out of an envelope or a legacy string result."""
    if isinstance(result, ResponseEnvelope):
        return result.text
    if isinstance(result, str):
        return result
    return None


class CompletionGateway:
    """Provider-agnostic completion gateway.

    Features:
    - Model resolution (suffix stripping, canonicalization, fuzzy, random)
    - Flat-delay retry of transient failures
    - Model substitution on 400/402/404
    - Structured output via a strategy chain with capability probing
    - Vision degradation to the default text model
    - Envelope and legacy return modes
    """

    def __init__(
        self,
        adapter: ProviderAdapter,
        catalog: ModelCatalog,
        resolver: ModelResolver | None = None,
        retry: RetryController | None = None,
        probe: CapabilityProbe | None = None,
        normalizer: ErrorNormalizer | None = None,
        image_generator: ImageGenerator | None = None,
        default_model: str | None = None,
        chat_model: str | None = None,
        structured_model: str | None = None,
        vision_model: str | None = None,
        disable_fallbacks: bool = False,
        rng: random.Random | None = None,
        structured_retries: int = StructuredOutputCoercer.DEFAULT_MAX_RETRIES,
        structured_backoff: float = StructuredOutputCoercer.DEFAULT_BACKOFF,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ):
        """Initialize the gateway.

        Args:
            adapter: Backend adapter used for every upstream call.
            catalog: Models the backend can serve.
            resolver: Model resolver. Defaults to one over ``catalog``.
            retry: Retry controller for single upstream calls.
            probe: Capability probe. Defaults to one with a fresh cache.
            normalizer: Converts failures into ErrorRecords.
            image_generator: Collaborator for image-output models.
            default_model: Model for completions and image generation.
            chat_model: Model for chat.
            structured_model: Model for structured output.
            vision_model: Model for image analysis.
            disable_fallbacks: Never substitute another model.
            rng: Random source for ``select_random_model``.
            structured_retries: Retries per structured-output strategy.
            structured_backoff: Seconds between structured-output retries.
            sleep: Awaitable sleep shared by retry and structured backoff.
        """
        self._adapter = adapter
        self._catalog = catalog
        self._rng = rng or random.Random()
        self._resolver = resolver or ModelResolver(catalog, rng=self._rng)
        self._retry = retry or RetryController(sleep=sleep)
        self._probe = probe or CapabilityProbe(adapter, CapabilityCache())
        self._normalizer = normalizer or ErrorNormalizer()
        self._image_generator = image_generator
        self._default_model = default_model
        self._chat_model = chat_model or default_model
        self._structured_model = structured_model or default_model
        self._vision_model = vision_model
        self._disable_fallbacks = disable_fallbacks
        self._structured_retries = structured_retries
        self._structured_backoff = structured_backoff
        self._sleep = sleep

    @property
    def adapter(self) -> ProviderAdapter:
        return self._adapter

    @property
    def catalog(self) -> ModelCatalog:
        return self._catalog

    @property
    def capability_cache(self) -> CapabilityCache:
        return self._probe.cache

    @property
    def provider(self) -> str:
        return self._adapter.name

    # ------------------------------------------------------------------
    # Model selection
    # ------------------------------------------------------------------

    def resolve_model(self, model_id: str | None, capability: str | None = "text") -> str | None:
        """Resolve a requested id to a concrete model id.

        With fallbacks disabled, only suffix stripping and canonicalization
        are applied.
        """
        if self._disable_fallbacks:
            if not model_id or not model_id.strip():
                return None
            return self._resolver.normalize(model_id)
        return self._resolver.resolve(model_id, capability)

    def select_random_model(self, rarity: Rarity | str | None = None) -> str | None:
        """Pick a catalog model, optionally within one rarity tier."""
        return self._catalog.random_model(self._rng, rarity)

    def model_is_available(self, model_id: str | None) -> bool:
        return self._catalog.is_available(model_id)

    def fallback_candidates(self, model_id: str) -> list[str]:
        """Ordered, de-duplicated substitution candidates present in the catalog."""
        raw: list[str | None] = [
            self._resolver.normalize(strip_model_suffix(model_id)),
            *FALLBACK_MODELS,
            self._chat_model,
            self._default_model,
        ]
        candidates: list[str] = []
        for candidate in raw:
            if not candidate:
                continue
            entry = self._catalog.get(candidate)
            if entry is not None and entry.id not in candidates:
                candidates.append(entry.id)
        return candidates

    # ------------------------------------------------------------------
    # Upstream calls
    # ------------------------------------------------------------------

    def _finalize(self, response: LLMResponse) -> LLMResponse:
        """Split reasoning out of the text and validate the data shape.

        A reply that is empty but carries reasoning is accepted, unless it was
        cut off at the token limit.

        Raises:
            MaxTokensError: Truncated at the token limit with nothing visible,
                even if reasoning was produced.
            NoContentError: Empty content and no reasoning.
        """
        text, think = split_reasoning(response.text)
        reasoning = "\n".join(r for r in (response.reasoning, think) if r) or None

        if not text and response.finish_reason == "length":
            raise MaxTokensError(
                f"{response.model} hit the token limit before producing content",
                provider=response.provider,
                request_id=response.request_id,
            )
        if not text and not reasoning:
            raise NoContentError(
                f"{response.model} returned empty content",
                provider=response.provider,
                request_id=response.request_id,
            )

        return response.model_copy(update={"text": text, "reasoning": reasoning})

    async def _send(self, call: Call, request: LLMRequest, operation: str, correlation_id: str) -> LLMResponse:
        response = await self._retry.run(
            lambda: call(request), operation=operation, correlation_id=correlation_id
        )
        response = self._finalize(response)
        logger.info(
            "LLM request succeeded",
            extra={
                "correlation_id": correlation_id,
                "provider": response.provider,
                "model": response.model,
                "latency_ms": response.latency_ms,
                "finish_reason": response.finish_reason,
            },
        )
        return response

    def _can_substitute(self, error: LLMError) -> bool:
        return not self._disable_fallbacks and error.status in SUBSTITUTABLE_STATUSES

    async def _execute(
        self, call: Call, request: LLMRequest, operation: str, correlation_id: str
    ) -> ResponseEnvelope:
        """Send ``request``, substituting other models on 400/402/404.

        Raises:
            LLMError: The requested model's failure when no substitute succeeded.
        """
        try:
            response = await self._send(call, request, operation, correlation_id)
            return self._envelope(response)
        except LLMError as e:
            if not self._can_substitute(e):
                raise
            original_error = e

        attempted = {request.model.lower()}
        for candidate in self.fallback_candidates(request.model):
            if candidate.lower() in attempted:
                continue
            attempted.add(candidate.lower())
            logger.warning(
                "Model %s rejected (%s), retrying with %s",
                request.model,
                original_error.status,
                candidate,
                extra={"correlation_id": correlation_id, "model": candidate},
            )
            try:
                response = await self._send(
                    call, request.model_copy(update={"model": candidate}), operation, correlation_id
                )
            except FATAL_ERRORS:
                raise
            except LLMError as e:
                logger.warning(
                    "Fallback model %s failed: %s",
                    candidate,
                    str(e),
                    extra={"correlation_id": correlation_id, "model": candidate},
                )
                continue
            return self._envelope(response, substituted_from=request.model)

        raise original_error

    def _envelope(self, response: LLMResponse, substituted_from: str | None = None) -> ResponseEnvelope:
        return ResponseEnvelope(
            text=response.text,
            raw=response.raw,
            model=response.model,
            provider=response.provider,
            reasoning=response.reasoning,
            substituted_from=substituted_from,
        )

    def _respond_with_error(
        self, error: LLMError, model: str, operation: str, opts: CompletionOptions, correlation_id: str
    ) -> Result:
        """Envelope mode wraps every failure; legacy mode returns None except for fatal errors."""
        record = self._normalizer.from_exception(error, operation)
        logger.error(
            "%s failed with %s: %s",
            operation,
            record.code,
            str(error),
            extra={"correlation_id": correlation_id, "provider": self.provider, "model": model},
        )
        if opts.return_envelope:
            return ResponseEnvelope(text="", model=model, provider=self.provider, error=record)
        if isinstance(error, FATAL_ERRORS):
            raise error
        return None

    async def _run(
        self, call: Call, request: LLMRequest, operation: str, opts: CompletionOptions
    ) -> Result:
        correlation_id = str(uuid.uuid4())
        try:
            envelope = await self._execute(call, request, operation, correlation_id)
        except LLMError as e:
            return self._respond_with_error(e, request.model, operation, opts, correlation_id)
        return envelope if opts.return_envelope else envelope.text

    def _options(self, options: CompletionOptions | dict[str, Any] | None) -> CompletionOptions:
        """Validate caller options.

        Raises:
            InvalidRequestError: A value is malformed or out of range.
        """
        if options is None:
            return CompletionOptions()
        if isinstance(options, CompletionOptions):
            return options
        try:
            return CompletionOptions.model_validate(options)
        except ValidationError as e:
            raise InvalidRequestError(f"Invalid options: {e}", provider=self.provider, status=400) from e

    @staticmethod
    def _wants_envelope(options: Any) -> bool:
        """Return mode asked for by options that failed validation."""
        if isinstance(options, CompletionOptions):
            return options.return_envelope
        if isinstance(options, dict):
            return bool(options.get("return_envelope") or options.get("returnEnvelope"))
        return False

    def _rejected(self, options: Any, error: InvalidRequestError, operation: str) -> Result:
        """Report invalid caller input in the mode the caller asked for."""
        model = options.get("model") if isinstance(options, dict) else None
        opts = CompletionOptions(return_envelope=self._wants_envelope(options))
        return self._respond_with_error(error, str(model or ""), operation, opts, str(uuid.uuid4()))

    def _unresolved(self, requested: str | None, operation: str, opts: CompletionOptions) -> Result:
        error = ModelNotFoundError(f"No model available for {requested!r}", provider=self.provider, status=404)
        return self._respond_with_error(error, requested or "", operation, opts, str(uuid.uuid4()))

    # ------------------------------------------------------------------
    # Inbound operations
    # ------------------------------------------------------------------

    async def chat(
        self,
        messages: Iterable[ChatMessage | dict[str, Any]],
        options: CompletionOptions | dict[str, Any] | None = None,
    ) -> Result:
        """Chat completion.

        Args:
            messages: Conversation as ChatMessages or ``{"role", "content"}`` dicts.
            options: Generation options (snake_case or camelCase keys).

        Returns:
            Text (legacy mode), a ResponseEnvelope (``return_envelope``), or
            None when the call failed in legacy mode.

        Raises:
            AuthenticationError: Fatal upstream failure in legacy mode.
        """
        try:
            opts = self._options(options)
        except InvalidRequestError as e:
            return self._rejected(options, e, "chat")
        requested = opts.model or self._chat_model
        model = self.resolve_model(requested, "text")
        if model is None:
            return self._unresolved(requested, "chat", opts)

        try:
            chat_messages = [
                m if isinstance(m, ChatMessage) else ChatMessage.model_validate(m)
                for m in messages
                if m is not None and (isinstance(m, ChatMessage) or m.get("content") is not None)
            ]
        except ValidationError as e:
            error = InvalidRequestError(f"Invalid messages: {e}", provider=self.provider, status=400)
            return self._respond_with_error(error, model, "chat", opts, str(uuid.uuid4()))
        response_format = None
        if opts.json_schema:
            response_format = ResponseFormat(
                type="json_schema", json_schema=opts.json_schema, name=schema_name(opts.json_schema)
            )

        request = LLMRequest(
            model=model,
            messages=chat_messages,
            response_format=response_format,
            **{**CHAT_DEFAULTS, **opts.sampling()},
        )
        return await self._run(self._adapter.chat, request, "chat", opts)

    async def generate_completion(
        self, prompt: str, options: CompletionOptions | dict[str, Any] | None = None
    ) -> Result:
        """Plain-prompt text completion."""
        try:
            opts = self._options(options)
        except InvalidRequestError as e:
            return self._rejected(options, e, "completion")
        requested = opts.model or self._default_model
        model = self.resolve_model(requested, "text")
        if model is None:
            return self._unresolved(requested, "completion", opts)

        request = LLMRequest(
            model=model,
            prompt=prompt,
            **{**COMPLETION_DEFAULTS, **opts.sampling()},
        )
        return await self._run(self._adapter.complete, request, "completion", opts)

    async def generate_structured_output(
        self,
        prompt: str,
        schema: dict[str, Any],
        options: CompletionOptions | dict[str, Any] | None = None,
    ) -> Any:
        """Generate a JSON value shaped by ``schema``.

        Returns:
            The parsed value. In envelope mode, a ResponseEnvelope whose ``raw``
            holds the parsed value and ``text`` its JSON encoding.

        Raises:
            StructuredOutputError: All strategies exhausted (legacy mode).
            AuthenticationError: Fatal upstream failure (legacy mode).
            InvalidRequestError: Options failed validation (legacy mode).
            CapabilityProbeError: Model metadata could not be fetched (legacy mode).
        """
        try:
            opts = self._options(options)
        except InvalidRequestError as e:
            if self._wants_envelope(options):
                return self._rejected(options, e, "structured")
            raise
        requested = opts.model or self._structured_model
        model = self.resolve_model(requested, "text")
        correlation_id = str(uuid.uuid4())
        if model is None:
            error = StructuredOutputError(f"No model available for {requested!r}", provider=self.provider)
            if opts.return_envelope:
                return self._respond_with_error(error, requested or "", "structured", opts, correlation_id)
            raise error

        async def send(request: LLMRequest) -> LLMResponse:
            return await self._send(self._adapter.chat, request, "structured", correlation_id)

        coercer = StructuredOutputCoercer(
            send,
            self._probe,
            normalizer=self._normalizer,
            max_retries=self._structured_retries,
            backoff=self._structured_backoff,
            sleep=self._sleep,
        )
        try:
            value = await coercer.coerce(
                model, prompt, schema, sampling=opts.sampling(), correlation_id=correlation_id
            )
        except LLMError as e:
            if opts.return_envelope:
                return self._respond_with_error(e, model, "structured", opts, correlation_id)
            raise

        if opts.return_envelope:
            return ResponseEnvelope(text=json.dumps(value), raw=value, model=model, provider=self.provider)
        return value

    @staticmethod
    def _image_url(image: str | bytes, mime_type: str | None) -> str | None:
        """URL or data URL for an image given as a URL, base64 text, or raw bytes."""
        if isinstance(image, bytes):
            encoded = base64.b64encode(image).decode("ascii")
            return f"data:{mime_type or 'image/png'};base64,{encoded}"
        if not isinstance(image, str) or not image:
            return None
        if image.startswith(("http://", "https://", "data:")) or not mime_type:
            return image
        return f"data:{mime_type};base64,{image}"

    async def analyze_image(
        self,
        image: str | bytes,
        mime_type: str | None = None,
        prompt: str = DEFAULT_ANALYZE_PROMPT,
        options: CompletionOptions | dict[str, Any] | None = None,
    ) -> Result:
        """Describe an image.

        If the vision model cannot be resolved, or the upstream rejects it
        with 400/404, the prompt alone is sent to the default chat model.

        Args:
            image: Image URL, base64 string (with ``mime_type``), or raw bytes.
            mime_type: MIME type for base64 or bytes input.
            prompt: Instruction sent with the image.
            options: Generation options.
        """
        try:
            opts = self._options(options)
        except InvalidRequestError as e:
            return self._rejected(options, e, "vision")
        correlation_id = str(uuid.uuid4())
        url = self._image_url(image, mime_type)
        if url is None:
            logger.error("Invalid image input for analysis")
            error = InvalidRequestError("Invalid image input", provider=self.provider, status=400)
            return self._respond_with_error(error, opts.model or "", "vision", opts, correlation_id)

        sampling = {**VISION_DEFAULTS, **opts.sampling()}
        requested = opts.model or self._vision_model
        model = self.resolve_model(requested, "vision")

        if model is not None:
            request = LLMRequest(
                model=model,
                messages=[
                    ChatMessage(
                        role="user",
                        content=[
                            {"type": "text", "text": prompt},
                            {"type": "image_url", "image_url": {"url": url}},
                        ],
                    )
                ],
                **sampling,
            )
            try:
                response = await self._send(self._adapter.analyze_image, request, "vision", correlation_id)
                envelope = self._envelope(response)
                return envelope if opts.return_envelope else envelope.text
            except LLMError as e:
                if self._disable_fallbacks or e.status not in (400, 404):
                    return self._respond_with_error(e, model, "vision", opts, correlation_id)
                logger.warning(
                    "Vision model %s rejected (%s), degrading to text-only",
                    model,
                    e.status,
                    extra={"correlation_id": correlation_id, "model": model},
                )
        elif self._disable_fallbacks:
            return self._unresolved(requested, "vision", opts)

        text_model = self.resolve_model(self._chat_model, "text")
        if text_model is None:
            return self._unresolved(self._chat_model, "vision", opts)

        text_request = LLMRequest(
            model=text_model,
            messages=[ChatMessage(role="user", content=prompt)],
            **sampling,
        )
        try:
            response = await self._send(self._adapter.chat, text_request, "vision", correlation_id)
        except LLMError as e:
            return self._respond_with_error(e, text_model, "vision", opts, correlation_id)

        envelope = self._envelope(response, substituted_from=model or requested)
        return envelope if opts.return_envelope else envelope.text

    async def generate_image(
        self,
        prompt: str,
        images: list[str] | str | None = None,
        options: CompletionOptions | dict[str, Any] | None = None,
    ) -> str | None:
        """Generate an image through the image collaborator.

        Only models advertising ``image_output`` are delegated; anything else
        logs a warning and returns None.
        """
        try:
            opts = self._options(options)
        except InvalidRequestError as e:
            logger.error("Image generation options rejected: %s", str(e))
            return None
        model = self.resolve_model(opts.model or self._default_model, "image_output")
        entry = self._catalog.get(model)

        if entry is None or not entry.has_capability("image_output"):
            logger.warning("No image generation available for model %s", model)
            return None
        if self._image_generator is None:
            logger.error("Model %s generates images but no image generator is configured", model)
            return None

        image_list = [images] if isinstance(images, str) else list(images or [])
        return await self._image_generator.generate_image(
            prompt, image_list, entry.id, opts.model_dump(exclude_none=True)
        )

    async def handle(self, envelope: RequestEnvelope) -> Any:
        """Dispatch a RequestEnvelope to the matching operation.

        Vision payloads are either the image itself or a dict with ``image``
        and optional ``mime_type`` and ``prompt`` keys.
        """
        opts = envelope.options or CompletionOptions()

        if envelope.kind == "chat":
            return await self.chat(envelope.payload, opts)
        if envelope.kind == "completion":
            return await self.generate_completion(str(envelope.payload), opts)
        if envelope.kind == "structured":
            schema = envelope.json_schema or opts.json_schema or {}
            return await self.generate_structured_output(str(envelope.payload), schema, opts)

        payload = envelope.payload
        if isinstance(payload, dict):
            return await self.analyze_image(
                payload.get("image"),
                mime_type=payload.get("mime_type"),
                prompt=payload.get("prompt") or DEFAULT_ANALYZE_PROMPT,
                options=opts,
            )
        return await self.analyze_image(payload, options=opts)

    async def close(self) -> None:
        """Release the adapter's network resources."""
        await self._adapter.close()


def build_adapter(settings: GatewaySettings) -> ProviderAdapter:
    """Construct the backend adapter named by ``settings.provider``."""
    if settings.provider == "openrouter":
        return OpenRouterAdapter(
            api_key=settings.openrouter_api_key,
            base_url=settings.openrouter_base_url,
            timeout=settings.timeout_seconds,
            referer=settings.app_referer,
            title=settings.app_title,
        )
    if settings.provider == "anthropic":
        return AnthropicAdapter(api_key=settings.anthropic_api_key, timeout=settings.timeout_seconds)
    if settings.provider == "ollama":
        return OllamaAdapter(host=settings.ollama_host, timeout=settings.timeout_seconds)
    if settings.provider == "google":
        return GoogleAdapter(api_key=settings.google_api_key, timeout=settings.timeout_seconds)
    raise ValueError(f"Unknown provider: {settings.provider}")


def create_gateway(
    settings: GatewaySettings | None = None,
    image_generator: ImageGenerator | None = None,
    **overrides: Any,
) -> CompletionGateway:
    """Compose a gateway for the configured backend.

    Args:
        settings: Gateway settings. Defaults to ``GatewaySettings.from_env()``.
        image_generator: Optional collaborator for image-output models.
        **overrides: Settings fields to override.
    """
    if settings is None:
        settings = GatewaySettings.from_env(**overrides)
    elif overrides:
        settings = settings.model_copy(update=overrides)

    adapter = build_adapter(settings)
    catalog = load_catalog(settings.provider)
    rng = random.Random(settings.model_seed)
    resolver = ModelResolver(
        catalog,
        lock=settings.model_lock,
        trace=settings.model_trace,
        rng=rng,
    )
    retry = RetryController(
        max_attempts=settings.max_attempts,
        rate_limit_delay=settings.rate_limit_delay,
    )

    logger.info(
        "Created %s gateway with %d catalog models",
        settings.provider,
        len(catalog),
        extra={"provider": settings.provider},
    )
    return CompletionGateway(
        adapter,
        catalog,
        resolver=resolver,
        retry=retry,
        image_generator=image_generator,
        default_model=settings.default_for("model"),
        chat_model=settings.default_for("chat_model"),
        structured_model=settings.default_for("structured_model"),
        vision_model=settings.default_for("vision_model"),
        disable_fallbacks=settings.disable_fallbacks,
        rng=rng,
    )


# Convenience functions for module-level access
_default_gateway: CompletionGateway | None = None


def get_gateway() -> CompletionGateway:
    """Get the default gateway singleton, built from the environment."""
    global _default_gateway
    if _default_gateway is None:
        _default_gateway = create_gateway()
    return _default_gateway


def set_gateway(gateway: CompletionGateway | None) -> None:
    """Replace (or clear) the default gateway."""
    global _default_gateway
    _default_gateway = gateway
