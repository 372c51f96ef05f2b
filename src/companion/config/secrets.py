"""Secret lookup for model API keys.

Secrets come from the process environment first, then from a ``.env.secrets``
file in the working directory (parsed once with python-dotenv).
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from dotenv import dotenv_values

SECRETS_FILE = ".env.secrets"


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
    """Fetch a secret from the environment or ``.env.secrets``.

    Environment variables win so tests can monkeypatch them.

    Args:
        key: Variable name (e.g., "MISTRAL_API_KEY")
        default: Value returned when the key is found nowhere
        secrets_path: Explicit secrets file instead of ``./.env.secrets``
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
    """Forget parsed secrets files (after edits, or between tests)."""
    _load_secrets.cache_clear()
