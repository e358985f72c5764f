"""Provider adapters.

Each adapter translates vendor-neutral requests into one upstream API.
"""

from .anthropic import AnthropicAdapter
from .base import ProviderAdapter
from .google import GoogleAdapter
from .ollama import OllamaAdapter
from .openrouter import OpenRouterAdapter

__all__ = [
    "ProviderAdapter",
    "OpenRouterAdapter",
    "AnthropicAdapter",
    "OllamaAdapter",
    "GoogleAdapter",
]
