"""
Configuration helpers for the local store and embedding provider.
"""

from __future__ import annotations

import os
from pathlib import Path


DEFAULT_DB_PATH = "~/.commentscope/store.duckdb"
ENV_DB_PATH = "COMMENTSCOPE_DB_PATH"
ENV_PROVIDER = "COMMENTSCOPE_EMBEDDING_PROVIDER"
ENV_STORE_MAX_BYTES = "COMMENTSCOPE_STORE_MAX_BYTES"
ENV_LOG_LEVEL = "COMMENTSCOPE_LOG_LEVEL"
MEMORY_DB = ":memory:"

SUPPORTED_PROVIDERS = ("gemini", "local")


def resolve_db_path(override_path: str | None = None) -> str:
    """
    Resolve the DuckDB path from CLI override, env var, or default.

    Precedence:
    1) explicit override_path
    2) COMMENTSCOPE_DB_PATH
    3) default path

    ``:memory:`` is returned unchanged.
    """
    raw_path = override_path or os.getenv(ENV_DB_PATH) or DEFAULT_DB_PATH
    if raw_path == MEMORY_DB:
        return raw_path
    resolved = Path(raw_path).expanduser().resolve()
    resolved.parent.mkdir(parents=True, exist_ok=True)
    return str(resolved)


def resolve_provider_name(override: str | None = None) -> str:
    """Pick the embedding provider: explicit name, env var, then key presence."""
    name = override or os.getenv(ENV_PROVIDER)
    if not name:
        return "gemini" if os.getenv("GOOGLE_API_KEY") else "local"
    name = name.strip().lower()
    if name not in SUPPORTED_PROVIDERS:
        raise ValueError(
            f"Unsupported embedding provider {name!r}. "
            f"Expected one of: {', '.join(SUPPORTED_PROVIDERS)}."
        )
    return name


def resolve_store_max_bytes(override: int | None = None) -> int | None:
    if override is not None:
        return override
    raw = os.getenv(ENV_STORE_MAX_BYTES)
    if not raw:
        return None
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{ENV_STORE_MAX_BYTES} must be an integer, got {raw!r}.") from exc
    return value if value > 0 else None


def resolve_log_level(override: str | None = None) -> str:
    return (override or os.getenv(ENV_LOG_LEVEL) or "WARNING").upper()
