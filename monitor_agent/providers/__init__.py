"""Provider factory and defaults."""

from __future__ import annotations

import os
from typing import Dict, Mapping, Optional

from .base import ChatProvider
from .gemini import GeminiProvider
from .openai_compat import OpenAICompatibleProvider

PROVIDER_DEFAULTS: Dict[str, Dict[str, str]] = {
    "cerebras": {"api_base": "https://api.cerebras.ai/v1", "env_key": "CEREBRAS_API_KEY"},
    "groq": {"api_base": "https://api.groq.com/openai/v1", "env_key": "GROQ_API_KEY"},
    "mistral": {"api_base": "https://api.mistral.ai/v1", "env_key": "MISTRAL_API_KEY"},
    "openrouter": {"api_base": "https://openrouter.ai/api/v1", "env_key": "OPENROUTER_API_KEY"},
    "gemini": {"api_base": "", "env_key": "GEMINI_API_KEY"},
}


def create_provider(
    provider: str,
    model: str,
    api_key: str = "",
    api_base: str = "",
    env: Optional[Mapping[str, str]] = None,
) -> ChatProvider:
    """Construct a chat provider by name.

    Raises:
        ValueError: If the provider is unknown or no API key can be resolved.
    """
    provider_name = (provider or "").lower()
    if provider_name not in PROVIDER_DEFAULTS:
        raise ValueError(f"Unknown provider: {provider!r}")

    api_key = _resolve_api_key(provider_name, api_key, os.environ if env is None else env)

    if provider_name == "gemini":
        return GeminiProvider(api_key=api_key, model=model)

    return OpenAICompatibleProvider(
        api_key=api_key,
        model=model,
        api_base=api_base or PROVIDER_DEFAULTS[provider_name]["api_base"],
        provider_name=provider_name,
    )


def _resolve_api_key(provider: str, api_key: str, env: Mapping[str, str]) -> str:
    env_key = PROVIDER_DEFAULTS[provider]["env_key"]

    if api_key.startswith("${") and api_key.endswith("}"):
        api_key = env.get(api_key[2:-1], "")
    if api_key:
        return api_key

    env_value = env.get(env_key, "")
    if env_value:
        return env_value

    raise ValueError(f"{env_key} not set. Export it or add api_key to config/config.local.yaml")


__all__ = [
    "ChatProvider",
    "GeminiProvider",
    "OpenAICompatibleProvider",
    "PROVIDER_DEFAULTS",
    "create_provider",
]
