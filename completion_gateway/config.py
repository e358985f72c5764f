"""Gateway configuration.

Settings are read from environment variables (after loading a ``.env`` file
with python-dotenv). Explicit keyword arguments take precedence over the
environment.
"""

import os
from typing import Any, Literal

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

Provider = Literal["openrouter", "anthropic", "ollama", "google"]

# Per-backend default models used when no explicit model is configured
PROVIDER_DEFAULT_MODELS: dict[str, dict[str, str]] = {
    "openrouter": {
        "model": "openai/gpt-4o-mini",
        "chat_model": "meta-llama/llama-3.2-1b-instruct",
        "structured_model": "openai/gpt-4o",
        "vision_model": "openai/gpt-4o-mini",
    },
    "anthropic": {
        "model": "claude-haiku-4-5",
        "chat_model": "claude-haiku-4-5",
        "structured_model": "claude-sonnet-4-5",
        "vision_model": "claude-haiku-4-5",
    },
    "ollama": {
        "model": "llama3.2",
        "chat_model": "llama3.2",
        "structured_model": "llama3.2",
        "vision_model": "llava",
    },
    "google": {
        "model": "gemini-2.0-flash",
        "chat_model": "gemini-2.0-flash",
        "structured_model": "gemini-2.5-flash",
        "vision_model": "gemini-2.5-flash",
    },
}

_TRUTHY = {"1", "true", "yes", "on"}


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in _TRUTHY


def _env_int(name: str) -> int | None:
    value = os.environ.get(name, "").strip()
    return int(value) if value else None


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name, "").strip()
    return float(value) if value else default


class GatewaySettings(BaseModel):
    """Everything needed to compose a CompletionGateway."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    provider: Provider = "openrouter"

    openrouter_api_key: str | None = None
    openrouter_base_url: str | None = None
    anthropic_api_key: str | None = None
    ollama_host: str | None = None
    google_api_key: str | None = None

    model: str | None = None
    chat_model: str | None = None
    structured_model: str | None = None
    vision_model: str | None = None

    timeout_seconds: float = Field(default=60.0, gt=0)
    max_attempts: int = Field(default=3, ge=1)
    rate_limit_delay: float = Field(default=5.0, ge=0)

    model_lock: bool = False
    model_trace: bool = False
    disable_fallbacks: bool = False
    model_seed: int | None = None

    app_referer: str | None = None
    app_title: str | None = None

    @classmethod
    def from_env(cls, load_env_file: bool = True, **overrides: Any) -> "GatewaySettings":
        """Build settings from environment variables.

        Args:
            load_env_file: Load ``.env`` into the environment first.
            **overrides: Field values that win over the environment.
        """
        if load_env_file:
            load_dotenv()

        provider = overrides.get("provider") or os.environ.get("AI_PROVIDER", "").strip().lower() or "openrouter"
        max_attempts = _env_int("LLM_MAX_ATTEMPTS")

        values: dict[str, Any] = {
            "provider": provider,
            "openrouter_api_key": os.environ.get("OPENROUTER_API_KEY"),
            "openrouter_base_url": os.environ.get("OPENROUTER_BASE_URL"),
            "anthropic_api_key": os.environ.get("ANTHROPIC_API_KEY"),
            "ollama_host": os.environ.get("OLLAMA_HOST"),
            "google_api_key": os.environ.get("GOOGLE_API_KEY"),
            "timeout_seconds": _env_float("LLM_TIMEOUT_SECONDS", 60.0),
            "max_attempts": 3 if max_attempts is None else max_attempts,
            "rate_limit_delay": _env_float("LLM_RATE_LIMIT_DELAY", 5.0),
            "model_lock": _env_flag("AI_MODEL_LOCK"),
            "model_trace": _env_flag("AI_MODEL_TRACE"),
            "disable_fallbacks": _env_flag("AI_DISABLE_FALLBACKS"),
            "model_seed": _env_int("AI_MODEL_SEED"),
            "app_referer": os.environ.get("APP_REFERER"),
            "app_title": os.environ.get("APP_TITLE"),
        }
        # Model ids are provider specific; the OPENROUTER_* names only apply there
        if provider == "openrouter":
            values.update(
                model=os.environ.get("OPENROUTER_MODEL"),
                chat_model=os.environ.get("OPENROUTER_CHAT_MODEL"),
                structured_model=os.environ.get("OPENROUTER_STRUCTURED_MODEL"),
                vision_model=os.environ.get("OPENROUTER_VISION_MODEL"),
            )
        values.update(overrides)
        return cls(**values)

    def default_for(self, role: Literal["model", "chat_model", "structured_model", "vision_model"]) -> str:
        """Configured model for a role, or the backend's default."""
        configured = getattr(self, role)
        if configured:
            return configured
        return PROVIDER_DEFAULT_MODELS[self.provider][role]
