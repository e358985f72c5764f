"""Model id resolution.

Turns whatever model name a caller asks for into a concrete catalog id:

1. strip routing suffixes (``:online``, ``:free``)
2. canonicalize through a declarative rule table
3. exact catalog match
4. fuzzy match above a similarity threshold, then once more without the
   provider segment
5. random pick among models with the required capability

Steps 1-4 are deterministic. Step 5 draws from a seedable ``random.Random``.
Lock mode stops after step 2 and hands the id to the upstream verbatim.
"""

import logging
import random
import re
from dataclasses import dataclass
from difflib import SequenceMatcher

from .catalog import ModelCatalog, strip_model_suffix

logger = logging.getLogger(__name__)

SIMILARITY_THRESHOLD = 0.5


@dataclass(frozen=True)
class CanonicalRule:
    """Rewrite ids matching ``pattern`` to ``replacement`` (``re.sub`` syntax)."""

    pattern: re.Pattern[str]
    replacement: str

    @classmethod
    def of(cls, pattern: str, replacement: str) -> "CanonicalRule":
        return cls(re.compile(pattern), replacement)

    def apply(self, model_id: str) -> str:
        return self.pattern.sub(self.replacement, model_id, count=1)


# Ordered. Bare ids are qualified first so that dated rules see the full id.
OPENROUTER_RULES: tuple[CanonicalRule, ...] = (
    # Bare ids from other ecosystems -> provider-qualified
    CanonicalRule.of(r"^(gemini-[\w.\-]+)$", r"google/\1"),
    CanonicalRule.of(r"^((?:gpt|chatgpt)-[\w.\-]+)$", r"openai/\1"),
    CanonicalRule.of(r"^(o[134](?:-[\w.\-]+)?)$", r"openai/\1"),
    CanonicalRule.of(r"^(claude-[\w.\-]+)$", r"anthropic/\1"),
    CanonicalRule.of(r"^(grok-[\w.\-]+)$", r"x-ai/\1"),
    CanonicalRule.of(r"^(llama-[\w.\-]+)$", r"meta-llama/\1"),
    CanonicalRule.of(r"^((?:mistral|mixtral|ministral)-[\w.\-]+)$", r"mistralai/\1"),
    # Date-stamped variants -> base id
    CanonicalRule.of(r"^openai/gpt-4o-\d{4}-\d{2}-\d{2}$", "openai/gpt-4o"),
    CanonicalRule.of(r"^anthropic/(claude-[\w.\-]+?)-\d{8}$", r"anthropic/\1"),
    # Known problematic ids -> safer equivalents
    CanonicalRule.of(r"^01-ai/yi-large$", "openai/gpt-oss-20b"),
)

ANTHROPIC_RULES: tuple[CanonicalRule, ...] = (
    CanonicalRule.of(r"^anthropic/", ""),
    CanonicalRule.of(r"^(claude-[\w\-]+?)-\d{8}$", r"\1"),
)

OLLAMA_RULES: tuple[CanonicalRule, ...] = (
    CanonicalRule.of(r"^ollama/", ""),
    CanonicalRule.of(r":latest$", ""),
)

GOOGLE_RULES: tuple[CanonicalRule, ...] = (
    CanonicalRule.of(r"^models/", ""),
    CanonicalRule.of(r"^google/", ""),
)

CANONICAL_RULES: dict[str, tuple[CanonicalRule, ...]] = {
    "openrouter": OPENROUTER_RULES,
    "anthropic": ANTHROPIC_RULES,
    "ollama": OLLAMA_RULES,
    "google": GOOGLE_RULES,
}


def canonicalize(model_id: str, rules: tuple[CanonicalRule, ...] = OPENROUTER_RULES) -> str:
    """Apply each rule at most once, in order."""
    canonical = model_id
    for rule in rules:
        canonical = rule.apply(canonical)
    return canonical


def similarity(a: str, b: str) -> float:
    """String similarity on a 0-1 scale."""
    return SequenceMatcher(None, a, b).ratio()


def strip_provider_segment(model_id: str) -> str:
    """``google/gemini-2.5-pro`` -> ``gemini-2.5-pro``."""
    return model_id.split("/", 1)[1] if "/" in model_id else model_id


class ModelResolver:
    """Resolves requested model names against one provider's catalog."""

    def __init__(
        self,
        catalog: ModelCatalog,
        rules: tuple[CanonicalRule, ...] | None = None,
        lock: bool = False,
        trace: bool = False,
        rng: random.Random | None = None,
        seed: int | None = None,
        threshold: float = SIMILARITY_THRESHOLD,
    ):
        """Initialize the resolver.

        Args:
            catalog: Catalog to resolve against.
            rules: Canonicalization table. Defaults to the catalog provider's rules.
            lock: Disable fuzzy and random resolution.
            trace: Log every resolution step at INFO instead of DEBUG.
            rng: Random source for the final fallback pick.
            seed: Seed for a private ``random.Random`` when ``rng`` is not given.
            threshold: Minimum (exclusive) similarity for a fuzzy match.
        """
        self._catalog = catalog
        self._rules = rules if rules is not None else CANONICAL_RULES.get(catalog.provider, ())
        self._lock = lock
        self._trace = trace
        self._rng = rng or random.Random(seed)
        self._threshold = threshold

    @property
    def catalog(self) -> ModelCatalog:
        return self._catalog

    @property
    def locked(self) -> bool:
        return self._lock

    def _log(self, message: str, *args: object) -> None:
        logger.log(logging.INFO if self._trace else logging.DEBUG, message, *args)

    def normalize(self, requested_id: str) -> str:
        """Steps 1-2: suffix stripping and canonicalization."""
        return canonicalize(strip_model_suffix(requested_id).lower(), self._rules)

    def resolve(self, requested_id: str | None, required_capability: str | None = None) -> str | None:
        """Resolve a requested model id to a concrete catalog id.

        Args:
            requested_id: Model name as given by the caller.
            required_capability: Capability the random fallback must advertise.

        Returns:
            The concrete id, or None when nothing can be chosen.
        """
        if not requested_id or not requested_id.strip():
            if self._lock:
                return None
            self._log("No model requested, picking at random")
            return self.random_pick(required_capability)

        canonical = self.normalize(requested_id)
        self._log("Canonicalized %r -> %r", requested_id, canonical)

        if self._lock:
            return canonical

        entry = self._catalog.get(canonical)
        if entry is not None:
            self._log("Exact match for %r", canonical)
            return entry.id

        matched = self.fuzzy_match(canonical)
        if matched is not None:
            return matched

        picked = self.random_pick(required_capability)
        logger.warning(
            "Model %r not found in %s catalog, using %r",
            requested_id,
            self._catalog.provider,
            picked,
        )
        return picked

    def fuzzy_match(self, name: str) -> str | None:
        """Step 4: closest catalog id strictly above the threshold.

        The first pass compares against full ids. If it fails, the provider
        segment is stripped from ``name`` and compared against catalog slugs.
        """
        best_id, best_score = self._best_match(name, ((e.id, e.id) for e in self._catalog))
        if best_score > self._threshold:
            self._log("Fuzzy match %r -> %r (%.3f)", name, best_id, best_score)
            return best_id

        bare = strip_provider_segment(name)
        if bare == name:
            self._log("No fuzzy match for %r (best %.3f)", name, best_score)
            return None

        best_id, best_score = self._best_match(
            bare, ((strip_provider_segment(e.id), e.id) for e in self._catalog)
        )
        if best_score > self._threshold:
            self._log("Fuzzy match %r -> %r (%.3f, provider stripped)", name, best_id, best_score)
            return best_id

        self._log("No fuzzy match for %r (best %.3f)", name, best_score)
        return None

    @staticmethod
    def _best_match(name: str, candidates) -> tuple[str | None, float]:
        best_id: str | None = None
        best_score = 0.0
        for compare_to, model_id in candidates:
            score = similarity(name, compare_to.lower())
            if score > best_score:
                best_id, best_score = model_id, score
        return best_id, best_score

    def random_pick(self, required_capability: str | None = None) -> str | None:
        """Step 5: uniform pick, restricted to capable models when any exist."""
        pool = list(self._catalog.entries)
        if not pool:
            return None
        if required_capability:
            capable = self._catalog.with_capability(required_capability)
            if capable:
                pool = capable
        choice = self._rng.choice(pool).id
        self._log("Random pick %r (capability=%s, pool=%d)", choice, required_capability, len(pool))
        return choice
