"""Model selection: provider status snapshots and per-agent fallback chains."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from . import PROVIDER_DEFAULTS, create_provider
from .base import ChatProvider

logger = logging.getLogger(__name__)

ProviderStatus = Dict[str, bool]
ProviderFactory = Callable[[str, str], ChatProvider]

DEFAULT_MODELS: Dict[str, str] = {
    "cerebras": "gpt-oss-120b",
    "groq": "llama-3.3-70b-versatile",
    "mistral": "mistral-large-latest",
    "gemini": "gemini-2.5-flash",
    "openrouter": "nvidia/nemotron-nano-12b-v2-vl:free",
}

DEFAULT_PROVIDER_ORDER: Dict[str, List[str]] = {
    "NLQ Agent": ["cerebras", "groq", "mistral"],
    "Analyst Agent": ["cerebras", "groq", "mistral"],
    "Reporter Agent": ["groq", "cerebras", "mistral"],
    "Advisor Agent": ["mistral", "cerebras", "groq"],
    "Vision Agent": ["gemini", "openrouter"],
    "Orchestrator": ["cerebras", "mistral", "groq"],
}


@dataclass
class ResolvedModel:
    """A constructed provider plus the names it was resolved from."""

    model: ChatProvider
    provider: str
    model_id: str


def check_provider_status(env: Optional[Mapping[str, str]] = None) -> ProviderStatus:
    """Snapshot which providers have credentials configured."""
    source = os.environ if env is None else env
    return {name: bool(source.get(defaults["env_key"], "")) for name, defaults in PROVIDER_DEFAULTS.items()}


def _default_factory(provider: str, model_id: str) -> ChatProvider:
    return create_provider(provider, model_id)


class ModelSelector:
    """Resolves models for agents from an injected provider status snapshot.

    Instances are cached per (provider, model) so repeated ``get_model()``
    calls during one run reuse the same client.
    """

    def __init__(
        self,
        status: ProviderStatus,
        factory: Optional[ProviderFactory] = None,
        models: Optional[Mapping[str, str]] = None,
        excluded: Iterable[str] = (),
    ):
        self.status = dict(status)
        self.factory = factory or _default_factory
        self.models = {**DEFAULT_MODELS, **dict(models or {})}
        self.excluded = set(excluded)
        self._cache: Dict[Tuple[str, str], ChatProvider] = {}

    def select(self, label: str, order: Sequence[str]) -> Optional[ResolvedModel]:
        """Return the first usable provider in ``order`` for ``label``, or None."""
        candidates = [p for p in order if self.status.get(p) and p not in self.excluded]
        for index, provider in enumerate(candidates):
            model_id = self.models.get(provider, "")
            key = (provider, model_id)
            if key not in self._cache:
                try:
                    self._cache[key] = self.factory(provider, model_id)
                except (ValueError, RuntimeError) as e:
                    following = candidates[index + 1] if index + 1 < len(candidates) else None
                    hint = f", trying {following}" if following else ""
                    logger.warning(f"[{label}] {provider} unavailable ({e}){hint}")
                    continue
            return ResolvedModel(model=self._cache[key], provider=provider, model_id=model_id)

        logger.warning(f"[{label}] No model available (providers down: {', '.join(order)})")
        return None

    def selector_for(self, label: str, order: Sequence[str]) -> Callable[[], Optional[ResolvedModel]]:
        """Bind a ``get_model`` callable for an agent config."""
        chain = list(order)
        return lambda: self.select(label, chain)
