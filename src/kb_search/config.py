"""
Configuration helpers for the retrieval core.

Settings come from explicit arguments first, then environment variables,
then defaults.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

from .errors import ConfigurationError


DEFAULT_CACHE_PATH = "~/.kb_search/query_embeddings.json"
DEFAULT_VECTOR_DB_PATH = "~/.kb_search/vectors.duckdb"
ENV_CACHE_PATH = "KB_SEARCH_CACHE_PATH"
ENV_VECTOR_DB_PATH = "KB_SEARCH_VECTOR_DB_PATH"


def _resolve_path(override_path: str | None, env_var: str, default: str) -> str:
    raw_path = override_path or os.getenv(env_var) or default
    resolved = Path(raw_path).expanduser().resolve()
    resolved.parent.mkdir(parents=True, exist_ok=True)
    return str(resolved)


def resolve_cache_path(override_path: str | None = None) -> str:
    """
    Resolve the query-embedding cache file path.

    Precedence:
    1) explicit override_path
    2) KB_SEARCH_CACHE_PATH
    3) default path
    """
    return _resolve_path(override_path, ENV_CACHE_PATH, DEFAULT_CACHE_PATH)


def resolve_vector_db_path(override_path: str | None = None) -> str:
    """Resolve the DuckDB vector store path (same precedence as the cache path)."""
    return _resolve_path(override_path, ENV_VECTOR_DB_PATH, DEFAULT_VECTOR_DB_PATH)


def _env_str(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_int(name: str, default: int) -> int:
    raw = _env_str(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = _env_str(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from exc


def _env_bool(name: str, default: bool) -> bool:
    raw = _env_str(name)
    if raw is None:
        return default
    lowered = raw.lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {raw!r}")


@dataclass(frozen=True)
class Settings:
    """Runtime settings for providers, the vector index and query fusion."""

    # Embedding providers
    azure_openai_api_key: str | None = None
    azure_openai_endpoint: str | None = None
    azure_openai_deployment: str = "text-embedding-ada-002"
    azure_openai_api_version: str = "2024-02-01"
    openai_api_key: str | None = None
    openai_embedding_model: str = "text-embedding-3-small"
    max_input_chars: int = 8000
    provider_max_retries: int = 2

    # Vector index
    vector_backend: str = "pinecone"
    pinecone_api_key: str | None = None
    pinecone_cloud: str = "aws"
    pinecone_region: str = "us-east-1"
    vector_db_path: str | None = None
    index_name: str = "kb-search"
    namespace: str = "default"
    owns_index: bool = True
    upsert_batch_size: int = 100
    embed_concurrency: int = 2
    max_attempts: int = 3
    retry_base_delay: float = 0.5
    ready_timeout: float = 60.0
    ready_poll_interval: float = 2.0
    request_timeout: float = 30.0

    # Query embedding cache
    cache_path: str | None = None
    cache_size: int = 500
    cache_save_every: int = 10

    # Query fusion
    lexical_weight: float = 0.4
    vector_weight: float = 0.6
    rrf_k: int = 60
    min_score: float = 0.3
    branch_timeout: float = 10.0

    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.vector_backend not in {"pinecone", "duckdb"}:
            raise ConfigurationError(
                f"Unsupported vector backend {self.vector_backend!r}; use 'pinecone' or 'duckdb'."
            )
        for name in (
            "cache_size",
            "cache_save_every",
            "upsert_batch_size",
            "embed_concurrency",
            "max_attempts",
            "max_input_chars",
        ):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be > 0")
        if self.rrf_k < 0:
            raise ConfigurationError("rrf_k must be >= 0")

    @classmethod
    def from_env(cls, **overrides: Any) -> "Settings":
        """Build settings from the environment; keyword overrides win."""
        values: dict[str, Any] = {
            "azure_openai_api_key": _env_str("AZURE_OPENAI_API_KEY"),
            "azure_openai_endpoint": _env_str("AZURE_OPENAI_ENDPOINT"),
            "azure_openai_deployment": _env_str(
                "AZURE_OPENAI_EMBEDDING_DEPLOYMENT", cls.azure_openai_deployment
            ),
            "azure_openai_api_version": _env_str(
                "AZURE_OPENAI_API_VERSION", cls.azure_openai_api_version
            ),
            "openai_api_key": _env_str("OPENAI_API_KEY"),
            "openai_embedding_model": _env_str(
                "OPENAI_EMBEDDING_MODEL", cls.openai_embedding_model
            ),
            "pinecone_api_key": _env_str("PINECONE_API_KEY"),
            "vector_backend": _env_str("KB_SEARCH_VECTOR_BACKEND", cls.vector_backend),
            "vector_db_path": _env_str(ENV_VECTOR_DB_PATH),
            "index_name": _env_str("KB_SEARCH_INDEX_NAME", cls.index_name),
            "namespace": _env_str("KB_SEARCH_NAMESPACE", cls.namespace),
            "owns_index": _env_bool("KB_SEARCH_OWNS_INDEX", cls.owns_index),
            "cache_path": _env_str(ENV_CACHE_PATH),
            "cache_size": _env_int("KB_SEARCH_CACHE_SIZE", cls.cache_size),
            "cache_save_every": _env_int("KB_SEARCH_CACHE_SAVE_EVERY", cls.cache_save_every),
            "lexical_weight": _env_float("KB_SEARCH_LEXICAL_WEIGHT", cls.lexical_weight),
            "vector_weight": _env_float("KB_SEARCH_VECTOR_WEIGHT", cls.vector_weight),
            "rrf_k": _env_int("KB_SEARCH_RRF_K", cls.rrf_k),
            "min_score": _env_float("KB_SEARCH_MIN_SCORE", cls.min_score),
            "request_timeout": _env_float("KB_SEARCH_REQUEST_TIMEOUT", cls.request_timeout),
            "branch_timeout": _env_float("KB_SEARCH_BRANCH_TIMEOUT", cls.branch_timeout),
            "log_level": _env_str("KB_SEARCH_LOG_LEVEL", cls.log_level),
        }
        known = {f.name for f in fields(cls)}
        unknown = set(overrides) - known
        if unknown:
            raise ConfigurationError(f"Unknown settings: {', '.join(sorted(unknown))}")
        values.update(overrides)
        return cls(**values)
