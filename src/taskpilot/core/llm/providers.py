"""LLM provider configurations.

Loads the provider table from providers.yaml and resolves which provider
(and therefore which credential) a model id belongs to.
"""

from __future__ import annotations

import importlib.resources
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any

import yaml


@dataclass
class ProviderConfig:
    """Configuration for an LLM provider."""

    name: str
    env_var: str | None
    prefixes: list[str] = field(default_factory=list)
    default_model: str | None = None

    @property
    def requires_key(self) -> bool:
        return self.env_var is not None


@lru_cache(maxsize=1)
def _load_providers_yaml() -> dict[str, Any]:
    """Load providers.yaml from package resources."""
    files = importlib.resources.files("taskpilot.core.llm")
    with files.joinpath("providers.yaml").open(encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _build_provider_configs() -> dict[str, ProviderConfig]:
    data = _load_providers_yaml()
    return {
        name: ProviderConfig(
            name=name,
            env_var=entry.get("env_var"),
            prefixes=list(entry.get("prefixes", [])),
            default_model=entry.get("default_model"),
        )
        for name, entry in data.get("providers", {}).items()
    }


PROVIDER_CONFIGS: dict[str, ProviderConfig] = _build_provider_configs()


def provider_for_model(model: str, provider: str | None = None) -> ProviderConfig | None:
    """Find the provider for a model id.

    An explicit provider name wins; otherwise the longest matching prefix does.
    Returns None for models no configured provider claims.
    """
    if provider:
        return PROVIDER_CONFIGS.get(provider)

    best: ProviderConfig | None = None
    best_len = 0
    for config in PROVIDER_CONFIGS.values():
        for prefix in config.prefixes:
            if model.startswith(prefix) and len(prefix) > best_len:
                best, best_len = config, len(prefix)
    return best
