"""On-demand capability probing with a process-lifetime cache.

Entries never expire. Concurrent first probes for the same model may both hit
the metadata endpoint; the probe has no side effects so the duplicate call is
tolerated instead of coordinated.
"""

import logging
from collections.abc import Iterator

from .errors import CapabilityProbeError, LLMError
from .models import CapabilityCacheEntry
from .providers.base import ProviderAdapter

logger = logging.getLogger(__name__)

# Parameters that indicate schema-constrained decoding support
STRUCTURED_OUTPUT_PARAMETERS = frozenset({"response_format", "structured_outputs"})


class CapabilityCache:
    """Probe results keyed by lower-cased model id."""

    def __init__(self) -> None:
        self._entries: dict[str, CapabilityCacheEntry] = {}

    @staticmethod
    def key(model_id: str) -> str:
        return model_id.strip().lower()

    def get(self, model_id: str) -> CapabilityCacheEntry | None:
        return self._entries.get(self.key(model_id))

    def put(self, entry: CapabilityCacheEntry) -> CapabilityCacheEntry:
        self._entries[self.key(entry.model_id)] = entry
        return entry

    def __contains__(self, model_id: object) -> bool:
        return isinstance(model_id, str) and self.key(model_id) in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[CapabilityCacheEntry]:
        return iter(list(self._entries.values()))


class CapabilityProbe:
    """Answers whether a model supports schema-constrained decoding."""

    def __init__(self, adapter: ProviderAdapter, cache: CapabilityCache | None = None):
        self._adapter = adapter
        self._cache = cache if cache is not None else CapabilityCache()

    @property
    def cache(self) -> CapabilityCache:
        return self._cache

    async def supports_structured_output(self, model_id: str) -> bool:
        """Probe (or recall) structured-output support for ``model_id``.

        Raises:
            CapabilityProbeError: If the model metadata could not be fetched.
                Failures are not cached.
        """
        cached = self._cache.get(model_id)
        if cached is not None:
            return cached.supports_structured_output

        try:
            parameters = await self._adapter.fetch_supported_parameters(model_id)
        except CapabilityProbeError:
            raise
        except LLMError as e:
            raise CapabilityProbeError(
                f"Could not probe capabilities of {model_id}",
                provider=e.provider or self._adapter.name,
                status=e.status,
                provider_message=e.provider_message,
                request_id=e.request_id,
            ) from e

        supported = bool(STRUCTURED_OUTPUT_PARAMETERS & {p.lower() for p in parameters})
        self._cache.put(
            CapabilityCacheEntry(model_id=CapabilityCache.key(model_id), supports_structured_output=supported)
        )
        logger.info(
            "Probed %s: structured output %s",
            model_id,
            "supported" if supported else "unsupported",
            extra={"provider": self._adapter.name, "model": model_id},
        )
        return supported
