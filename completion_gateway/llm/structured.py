"""Structured output coercion.

Drives a model towards a parseable JSON answer through progressively looser
strategies:

1. ``json_schema`` response format (skipped when the model is known not to
   support it)
2. ``json_object`` response format
3. plain text with schema instructions prepended to the prompt

Each strategy gets a fixed number of retries with a flat backoff. The first
parsed value wins.
"""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from .capabilities import CapabilityProbe
from .errors import (
    FATAL_ERRORS,
    TERMINAL_ERRORS,
    USER_MESSAGES,
    CapabilityProbeError,
    ErrorCode,
    ErrorNormalizer,
    LLMError,
    QuotaExceededError,
    StructuredOutputError,
)
from .json_extract import JSONExtractionError, extract_first_json
from .models import ChatMessage, ErrorRecord, LLMRequest, LLMResponse, ResponseFormat

logger = logging.getLogger(__name__)

Send = Callable[[LLMRequest], Awaitable[LLMResponse]]
Sleep = Callable[[float], Awaitable[None]]


def schema_name(schema: dict[str, Any]) -> str:
    """Name sent alongside a json_schema response format."""
    title = schema.get("title") if isinstance(schema, dict) else None
    return title if isinstance(title, str) and title else "Schema"


def schema_to_prompt_instructions(schema: dict[str, Any]) -> str:
    """Render a JSON Schema as plain-text instructions for models without JSON modes.

    Lists the top-level keys with placeholder values, then one line per field
    giving its type, whether it is required, and any enum values.
    """
    properties = schema.get("properties") or {}
    required = set(schema.get("required") or [])

    fields = []
    for key, definition in properties.items():
        field_type = definition.get("type", "string") if isinstance(definition, dict) else "string"
        if isinstance(field_type, list):
            field_type = " | ".join(str(t) for t in field_type)
        requirement = "(required)" if key in required else "(optional)"
        line = f"- {key}: {field_type} {requirement}."
        enum_values = definition.get("enum") if isinstance(definition, dict) else None
        if enum_values:
            line += f" Possible values: {', '.join(str(v) for v in enum_values)}."
        fields.append(line)

    example = json.dumps({key: "..." for key in properties}, indent=2)

    return (
        "Respond only with a valid JSON object (no commentary).\n"
        "The object must match this structure:\n\n"
        f"{example}\n\n"
        "Field definitions:\n"
        + "\n".join(fields)
    ).strip()


class StructuredOutputCoercer:
    """Runs the structured-output strategy chain against one model."""

    DEFAULT_MAX_RETRIES = 2
    DEFAULT_BACKOFF = 0.5

    def __init__(
        self,
        send: Send,
        probe: CapabilityProbe,
        normalizer: ErrorNormalizer | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff: float = DEFAULT_BACKOFF,
        sleep: Sleep | None = None,
    ):
        """Initialize the coercer.

        Args:
            send: Issues one chat request and returns the response.
            probe: Capability probe consulted before schema-constrained calls.
            normalizer: Converts failures into ErrorRecords.
            max_retries: Retries per strategy (attempts = retries + 1).
            backoff: Seconds to wait between attempts of the same strategy.
            sleep: Awaitable sleep; defaults to ``asyncio.sleep``.
        """
        self._send = send
        self._probe = probe
        self._normalizer = normalizer or ErrorNormalizer()
        self._max_retries = max_retries
        self._backoff = backoff
        self._sleep = sleep

    async def coerce(
        self,
        model_id: str,
        prompt: str,
        schema: dict[str, Any],
        sampling: dict[str, Any] | None = None,
        correlation_id: str | None = None,
    ) -> Any:
        """Return the first parsed JSON value any strategy produces.

        Raises:
            StructuredOutputError: Every strategy was exhausted, or quota ran out.
            AuthenticationError: Fatal upstream failure.
            CapabilityProbeError: Model metadata could not be fetched.
        """
        schema = schema if isinstance(schema, dict) and schema else {"type": "object"}
        strategies = await self._strategies(model_id, prompt, schema, sampling or {})
        sleep = self._sleep or asyncio.sleep
        last_record: ErrorRecord | None = None

        for strategy, request in strategies:
            for attempt in range(1, self._max_retries + 2):
                try:
                    response = await self._send(request)
                    value = extract_first_json(response.text or "")
                    logger.info(
                        "Structured output parsed via %s",
                        strategy,
                        extra={"correlation_id": correlation_id, "model": model_id, "attempt": attempt},
                    )
                    return value

                except FATAL_ERRORS:
                    raise
                except CapabilityProbeError:
                    raise
                except QuotaExceededError as e:
                    raise StructuredOutputError(
                        "Quota exhausted during structured generation",
                        record=self._normalizer.from_exception(e, "structured"),
                        provider=e.provider,
                        correlation_id=correlation_id,
                    ) from e
                except TERMINAL_ERRORS as e:
                    last_record = self._normalizer.from_exception(e, "structured")
                    logger.warning(
                        "%s rejected by %s: %s",
                        strategy,
                        model_id,
                        str(e),
                        extra={"correlation_id": correlation_id, "model": model_id},
                    )
                    break
                except LLMError as e:
                    last_record = self._normalizer.from_exception(e, "structured")
                    logger.warning(
                        "%s attempt %d failed: %s",
                        strategy,
                        attempt,
                        str(e),
                        extra={"correlation_id": correlation_id, "model": model_id, "attempt": attempt},
                    )
                except JSONExtractionError as e:
                    last_record = ErrorRecord(
                        code=ErrorCode.FORMAT.value,
                        provider_message=str(e),
                        user_message=USER_MESSAGES[ErrorCode.FORMAT],
                    )
                    logger.warning(
                        "%s attempt %d returned unparseable output: %s",
                        strategy,
                        attempt,
                        str(e),
                        extra={"correlation_id": correlation_id, "model": model_id, "attempt": attempt},
                    )

                if attempt <= self._max_retries:
                    await sleep(self._backoff)

        logger.error(
            "Structured output exhausted all strategies for %s",
            model_id,
            extra={"correlation_id": correlation_id, "model": model_id},
        )
        raise StructuredOutputError(
            "Structured output was not valid JSON",
            record=last_record,
            correlation_id=correlation_id,
        )

    async def _strategies(
        self,
        model_id: str,
        prompt: str,
        schema: dict[str, Any],
        sampling: dict[str, Any],
    ) -> list[tuple[str, LLMRequest]]:
        messages = [ChatMessage(role="user", content=prompt)]
        strategies: list[tuple[str, LLMRequest]] = []

        if await self._probe.supports_structured_output(model_id):
            strategies.append((
                "json_schema",
                LLMRequest(
                    model=model_id,
                    messages=messages,
                    response_format=ResponseFormat(
                        type="json_schema", json_schema=schema, name=schema_name(schema)
                    ),
                    **sampling,
                ),
            ))
        else:
            logger.info("%s does not support json_schema, starting with json_object", model_id)

        strategies.append((
            "json_object",
            LLMRequest(
                model=model_id,
                messages=messages,
                response_format=ResponseFormat(type="json_object"),
                **sampling,
            ),
        ))

        instructed = f"{schema_to_prompt_instructions(schema)}\n\n{prompt.strip()}"
        strategies.append((
            "instructions",
            LLMRequest(
                model=model_id,
                messages=[ChatMessage(role="user", content=instructed)],
                **sampling,
            ),
        ))
        return strategies
