"""Pytest fixtures for testing."""

from typing import Any
from unittest.mock import AsyncMock

import pytest

from completion_gateway.llm.catalog import ModelCatalog
from completion_gateway.llm.models import LLMRequest, LLMResponse
from completion_gateway.llm.providers.base import ProviderAdapter


def make_response(
    text: str | None = "Test response",
    model: str = "openai/gpt-4o-mini",
    finish_reason: str | None = "stop",
    reasoning: str | None = None,
    provider: str = "fake",
) -> LLMResponse:
    """Create an LLMResponse for testing."""
    return LLMResponse(
        text=text,
        finish_reason=finish_reason,
        reasoning=reasoning,
        model=model,
        provider=provider,
        latency_ms=5,
    )


class FakeAdapter(ProviderAdapter):
    """Adapter whose upstream calls are AsyncMocks."""

    SUPPORTED_FEATURES = frozenset({"json_schema", "json_object", "vision", "completions"})

    def __init__(self, parameters: set[str] | None = None):
        self.chat_mock = AsyncMock(return_value=make_response())
        self.complete_mock = AsyncMock(return_value=make_response())
        self.vision_mock = AsyncMock(return_value=make_response("A cat on a sofa."))
        self.parameters_mock = AsyncMock(
            return_value=parameters if parameters is not None else {"response_format", "temperature"}
        )
        self.closed = False

    @property
    def name(self) -> str:
        return "fake"

    async def chat(self, request: LLMRequest) -> LLMResponse:
        return await self.chat_mock(request)

    async def complete(self, request: LLMRequest) -> LLMResponse:
        return await self.complete_mock(request)

    async def analyze_image(self, request: LLMRequest) -> LLMResponse:
        return await self.vision_mock(request)

    async def fetch_supported_parameters(self, model_id: str) -> set[str]:
        return await self.parameters_mock(model_id)

    async def close(self) -> None:
        self.closed = True


SMALL_CATALOG: list[dict[str, Any]] = [
    {"id": "openai/gpt-4o-mini", "rarity": "common", "capabilities": ["text", "vision"]},
    {"id": "openai/gpt-4o", "rarity": "uncommon", "capabilities": ["text", "vision"]},
    {"id": "google/gemini-2.5-flash", "rarity": "common", "capabilities": ["text", "vision"]},
    {"id": "google/gemini-2.5-flash-image-preview", "rarity": "rare", "capabilities": ["text", "image_output"]},
    {"id": "meta-llama/llama-3.2-1b-instruct", "rarity": "common", "capabilities": ["text"]},
    {"id": "anthropic/claude-3.7-sonnet", "rarity": "rare", "capabilities": ["text", "vision"]},
    {"id": "mistralai/mixtral-8x7b-instruct", "rarity": "uncommon", "capabilities": ["text"]},
    {"id": "openai/o1-pro", "rarity": "legendary", "capabilities": ["text"]},
]


@pytest.fixture
def small_catalog() -> ModelCatalog:
    """A small OpenRouter-style catalog."""
    return ModelCatalog("openrouter", SMALL_CATALOG)


@pytest.fixture
def fake_adapter() -> FakeAdapter:
    """Adapter with mocked upstream calls."""
    return FakeAdapter()


@pytest.fixture
def no_sleep() -> AsyncMock:
    """Awaitable sleep that records delays without waiting."""
    return AsyncMock(return_value=None)
