"""Boot-time model catalogs.

Each provider ships a JSON list of ``{id, rarity, capabilities}`` entries in
the ``catalogs`` directory next to this module. Catalogs are immutable once
loaded.
"""

import json
import logging
import random
import re
from collections.abc import Iterable, Iterator
from functools import lru_cache
from pathlib import Path
from typing import Any

from .models import ModelEntry, Rarity

logger = logging.getLogger(__name__)

CATALOGS_DIR = Path(__file__).parent / "catalogs"

_SUFFIX_RE = re.compile(r":(online|free)$", re.IGNORECASE)


def strip_model_suffix(model_id: str) -> str:
    """Remove non-semantic routing suffixes such as ``:online`` or ``:free``."""
    return _SUFFIX_RE.sub("", model_id.strip()).strip()


class ModelCatalog:
    """Immutable, ordered set of models offered by one provider."""

    def __init__(self, provider: str, entries: Iterable[ModelEntry | dict[str, Any]]):
        self._provider = provider
        parsed: list[ModelEntry] = []
        index: dict[str, ModelEntry] = {}

        for raw in entries:
            entry = raw if isinstance(raw, ModelEntry) else ModelEntry.model_validate(raw)
            key = entry.id.lower()
            if key in index:
                raise ValueError(f"Duplicate model id in {provider} catalog: {entry.id}")
            index[key] = entry
            parsed.append(entry)

        self._entries: tuple[ModelEntry, ...] = tuple(parsed)
        self._index = index

    @property
    def provider(self) -> str:
        return self._provider

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ModelEntry]:
        return iter(self._entries)

    def __contains__(self, model_id: object) -> bool:
        return isinstance(model_id, str) and model_id.lower() in self._index

    def __repr__(self) -> str:
        return f"ModelCatalog(provider={self._provider!r}, models={len(self)})"

    @property
    def entries(self) -> tuple[ModelEntry, ...]:
        return self._entries

    def ids(self) -> list[str]:
        return [entry.id for entry in self._entries]

    def get(self, model_id: str | None) -> ModelEntry | None:
        """Look up an entry by id, case-insensitively."""
        if not model_id:
            return None
        return self._index.get(model_id.lower())

    def with_capability(self, capability: str) -> list[ModelEntry]:
        return [entry for entry in self._entries if capability in entry.capabilities]

    def with_rarity(self, rarity: Rarity | str) -> list[ModelEntry]:
        rarity = Rarity(rarity)
        return [entry for entry in self._entries if entry.rarity == rarity]

    def is_available(self, model_id: str | None) -> bool:
        """Whether the model is in the catalog, ignoring routing suffixes."""
        if not model_id:
            return False
        return strip_model_suffix(model_id) in self

    def random_model(
        self, rng: random.Random | None = None, rarity: Rarity | str | None = None
    ) -> str | None:
        """Pick a model uniformly, optionally restricted to one rarity tier.

        Falls back to the whole catalog when no entry has the requested rarity.
        """
        if not self._entries:
            return None
        pool: list[ModelEntry] | tuple[ModelEntry, ...] = self._entries
        if rarity is not None:
            pool = self.with_rarity(rarity) or self._entries
        return (rng or random).choice(pool).id


@lru_cache(maxsize=16)
def _read_catalog_file(filepath: Path) -> tuple[dict[str, Any], ...]:
    """Load a catalog JSON file (cached).

    Raises:
        FileNotFoundError: If the catalog file doesn't exist.
        json.JSONDecodeError: If the file is invalid JSON.
    """
    with open(filepath) as f:
        return tuple(json.load(f))


def load_catalog(provider: str, path: Path | None = None) -> ModelCatalog:
    """Load the packaged catalog for a provider.

    Args:
        provider: Provider name, e.g. "openrouter", "anthropic", "ollama".
        path: Optional explicit JSON file overriding the packaged one.

    Returns:
        The provider's ModelCatalog.
    """
    catalog_path = path or CATALOGS_DIR / f"{provider}.json"
    catalog = ModelCatalog(provider, _read_catalog_file(catalog_path))
    logger.debug("Loaded %d models for %s from %s", len(catalog), provider, catalog_path)
    return catalog
