"""LLM data models.

Vendor-neutral request, response and catalog models for the gateway.
These models abstract away provider-specific details.
"""

from enum import Enum
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class Rarity(str, Enum):
    """Coarse budget label a calling layer uses when picking a model."""

    COMMON = "common"
    UNCOMMON = "uncommon"
    RARE = "rare"
    LEGENDARY = "legendary"


class ModelEntry(BaseModel):
    """A single catalog model. Immutable after load."""

    model_config = ConfigDict(frozen=True)

    id: str
    rarity: Rarity = Rarity.COMMON
    capabilities: frozenset[str] = frozenset({"text"})

    def has_capability(self, capability: str) -> bool:
        return capability in self.capabilities


class ChatMessage(BaseModel):
    """A single message in the conversation."""

    role: Literal["system", "user", "assistant", "tool"]
    content: str | list[dict[str, Any]]  # text or content parts (multimodal)
    name: str | None = None


class ResponseFormat(BaseModel):
    """Structured output format configuration."""

    type: Literal["text", "json_object", "json_schema"]
    json_schema: dict[str, Any] | None = None
    name: str = "Schema"


class LLMRequest(BaseModel):
    """Vendor-neutral LLM request.

    Chat and vision requests use ``messages``; legacy completions use ``prompt``.
    """

    model: str
    messages: list[ChatMessage] = Field(default_factory=list)
    prompt: str | None = None
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, ge=1)
    top_p: float | None = Field(default=None, ge=0.0, le=1.0)
    frequency_penalty: float | None = Field(default=None, ge=-2.0, le=2.0)
    presence_penalty: float | None = Field(default=None, ge=-2.0, le=2.0)
    response_format: ResponseFormat | None = None
    stop: list[str] | None = None


class LLMResponse(BaseModel):
    """Vendor-neutral LLM response."""

    text: str | None
    finish_reason: str | None = None
    reasoning: str | None = None
    model: str
    provider: str
    latency_ms: int = 0
    request_id: str | None = None
    raw: Any = None


class ErrorRecord(BaseModel):
    """Normalized failure description. ``user_message`` is safe to display."""

    code: str
    status: int | None = None
    provider_message: str | None = None
    user_message: str


class ResponseEnvelope(BaseModel):
    """Uniform result of a gateway call in envelope mode."""

    text: str | None
    raw: Any = None
    model: str
    provider: str
    error: ErrorRecord | None = None
    reasoning: str | None = None
    substituted_from: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class CompletionOptions(BaseModel):
    """Caller-supplied generation options.

    Accepts both snake_case and camelCase keys. Sampling values share the
    bounds of LLMRequest so that bad options fail before any request is built.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    model: str | None = None
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(
        default=None, ge=1, validation_alias=AliasChoices("max_tokens", "maxTokens")
    )
    top_p: float | None = Field(
        default=None, ge=0.0, le=1.0, validation_alias=AliasChoices("top_p", "topP")
    )
    frequency_penalty: float | None = Field(
        default=None,
        ge=-2.0,
        le=2.0,
        validation_alias=AliasChoices("frequency_penalty", "frequencyPenalty"),
    )
    presence_penalty: float | None = Field(
        default=None,
        ge=-2.0,
        le=2.0,
        validation_alias=AliasChoices("presence_penalty", "presencePenalty"),
    )
    json_schema: dict[str, Any] | None = Field(
        default=None, validation_alias=AliasChoices("schema", "json_schema")
    )
    return_envelope: bool = Field(
        default=False, validation_alias=AliasChoices("return_envelope", "returnEnvelope")
    )

    def sampling(self) -> dict[str, Any]:
        """Sampling parameters the caller explicitly set."""
        return self.model_dump(
            include={"temperature", "max_tokens", "top_p", "frequency_penalty", "presence_penalty"},
            exclude_none=True,
        )


class RequestEnvelope(BaseModel):
    """Provider-agnostic description of a gateway request."""

    model_config = ConfigDict(populate_by_name=True)

    kind: Literal["chat", "completion", "vision", "structured"]
    payload: Any
    json_schema: dict[str, Any] | None = Field(
        default=None, validation_alias=AliasChoices("schema", "json_schema")
    )
    options: CompletionOptions | None = None


class CapabilityCacheEntry(BaseModel):
    """Result of probing one model for schema-constrained decoding support."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    model_id: str
    supports_structured_output: bool

