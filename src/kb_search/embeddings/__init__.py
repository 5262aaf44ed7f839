"""Embedding providers, the provider chain and the query embedding cache."""

from .base import Embedder, Embedding
from .cache import CacheStats, QueryEmbeddingCache, make_key
from .chain import EmbeddingProviderChain
from .providers import (
    LOCAL_DIMENSION,
    REMOTE_DIMENSION,
    AzureOpenAIEmbedder,
    LocalEmbedder,
    OpenAIEmbedder,
    truncate_input,
)

__all__ = [
    "Embedder",
    "Embedding",
    "CacheStats",
    "QueryEmbeddingCache",
    "make_key",
    "EmbeddingProviderChain",
    "LOCAL_DIMENSION",
    "REMOTE_DIMENSION",
    "AzureOpenAIEmbedder",
    "LocalEmbedder",
    "OpenAIEmbedder",
    "truncate_input",
]
