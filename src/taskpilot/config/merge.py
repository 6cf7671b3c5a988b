"""Deep merge for configuration cascading.

Later sources override earlier ones; nested dicts merge key by key.
"""

from __future__ import annotations

from typing import Any


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries.

    Rules:
    - Nested dicts are recursively merged
    - Lists are replaced entirely (not concatenated)
    - None values in override do NOT override base (enables partial configs)
    - Other values are replaced

    Returns:
        A new dictionary; neither input is mutated.
    """
    result = dict(base)

    for key, value in override.items():
        if value is None:
            continue
        current = result.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            result[key] = deep_merge(current, value)
        else:
            result[key] = value

    return result


def merge_configs(*configs: dict[str, Any]) -> dict[str, Any]:
    """Merge configs in order, lowest priority first."""
    result: dict[str, Any] = {}
    for config in configs:
        if config:
            result = deep_merge(result, config)
    return result
