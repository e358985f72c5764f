"""Abstract base class for provider adapters.

Defines the interface that every backend adapter must implement. Adapters
only translate requests and responses; retry, resolution and fallback live in
the gateway.
"""

from abc import ABC, abstractmethod

from ..models import LLMRequest, LLMResponse


class ProviderAdapter(ABC):
    """Base interface for provider adapters.

    All adapters (OpenRouter, Anthropic, Ollama) implement this interface so
    the gateway can be composed with any of them.
    """

    SUPPORTED_FEATURES: frozenset[str] = frozenset()

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider identifier: 'openrouter', 'anthropic', etc."""
        ...

    @abstractmethod
    async def chat(self, request: LLMRequest) -> LLMResponse:
        """Send a chat request and return the response.

        Args:
            request: Vendor-neutral request with ``messages`` set.

        Returns:
            Vendor-neutral response.

        Raises:
            AuthenticationError: Invalid or missing API key (fatal).
            RateLimitError: Rate limit exceeded (retryable).
            QuotaExceededError: Quota or credits exhausted.
            TimeoutError: Request timed out (retryable).
            InvalidRequestError: Request rejected for this model.
            ModelNotFoundError: Unknown model.
            ProviderError: Provider-side failure (retryable).
        """
        ...

    @abstractmethod
    async def complete(self, request: LLMRequest) -> LLMResponse:
        """Send a plain-prompt completion request (``request.prompt``)."""
        ...

    async def analyze_image(self, request: LLMRequest) -> LLMResponse:
        """Send a request whose user message carries image content parts.

        Content parts follow the OpenAI shape:
        ``[{"type": "text", ...}, {"type": "image_url", "image_url": {"url": ...}}]``.
        """
        return await self.chat(request)

    @abstractmethod
    async def fetch_supported_parameters(self, model_id: str) -> set[str]:
        """Return the request parameters the upstream advertises for a model.

        Raises:
            LLMError: If the metadata could not be fetched.
        """
        ...

    def supports(self, feature: str) -> bool:
        """Check if provider supports a capability.

        Args:
            feature: Feature name, e.g. 'json_schema', 'json_object',
                'vision', 'completions', 'system_message'.
        """
        return feature in self.SUPPORTED_FEATURES

    async def close(self) -> None:
        """Release network resources held by the adapter."""
        return None

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r})"
