"""Secret management for taskpilot.

Secrets are read from the process environment first, then from a cached
.env.secrets file in the working directory. Provider API keys and the
server's TASKPILOT_AUTH_TOKEN are fetched here and never stored in config.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from dotenv import dotenv_values

SECRETS_FILE = ".env.secrets"

AUTH_TOKEN_VAR = "TASKPILOT_AUTH_TOKEN"


@lru_cache(maxsize=4)
def _load_secrets(secrets_path: Path | None = None) -> dict[str, str | None]:
    path = secrets_path or Path(SECRETS_FILE)
    if path.exists():
        return dotenv_values(path)
    return {}


def fetch_secret(
    key: str,
    default: str | None = None,
    secrets_path: Path | None = None,
) -> str | None:
    """Fetch a secret from environment or .env.secrets.

    Environment variables win so tests can monkeypatch them.

    Example:
        >>> fetch_secret("OPENAI_API_KEY")
        'sk-...'
    """
    value = os.environ.get(key)
    if value is not None:
        return value

    secrets = _load_secrets(secrets_path)
    found = secrets.get(key)
    if found is not None:
        return found

    return default


def clear_secret_cache() -> None:
    """Forget the cached .env.secrets contents."""
    _load_secrets.cache_clear()
