"""Provider-agnostic completion layer.

This package provides a vendor-neutral interface for chat, completion,
structured output and vision requests against OpenRouter, Anthropic,
Ollama or Google Gemini, with model resolution, retry and model substitution.
"""

from .capabilities import CapabilityCache, CapabilityProbe
from .catalog import ModelCatalog, load_catalog
from .errors import (
    AccessForbiddenError,
    AuthenticationError,
    CapabilityProbeError,
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
    normalize_error,
)
from .gateway import CompletionGateway, create_gateway, get_gateway, unwrap
from .json_extract import JSONExtractionError, extract_first_json
from .models import (
    ChatMessage,
    CompletionOptions,
    ErrorRecord,
    LLMRequest,
    LLMResponse,
    ModelEntry,
    Rarity,
    RequestEnvelope,
    ResponseEnvelope,
    ResponseFormat,
)
from .resolver import ModelResolver, canonicalize
from .retry import RetryController
from .structured import StructuredOutputCoercer

__all__ = [
    "CompletionGateway",
    "create_gateway",
    "get_gateway",
    "unwrap",
    "ModelCatalog",
    "load_catalog",
    "ModelResolver",
    "canonicalize",
    "CapabilityCache",
    "CapabilityProbe",
    "RetryController",
    "StructuredOutputCoercer",
    "extract_first_json",
    "JSONExtractionError",
    "ErrorCode",
    "ErrorNormalizer",
    "normalize_error",
    "ChatMessage",
    "CompletionOptions",
    "ErrorRecord",
    "LLMRequest",
    "LLMResponse",
    "ModelEntry",
    "Rarity",
    "RequestEnvelope",
    "ResponseEnvelope",
    "ResponseFormat",
    "LLMError",
    "AuthenticationError",
    "AccessForbiddenError",
    "RateLimitError",
    "QuotaExceededError",
    "TimeoutError",
    "InvalidRequestError",
    "ModelNotFoundError",
    "ProviderError",
    "EmptyResponseError",
    "NoContentError",
    "MaxTokensError",
    "CapabilityProbeError",
    "StructuredOutputError",
]
