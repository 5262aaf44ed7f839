"""Vector index client and the ANN service backends it talks to."""

from .base import CollectionInfo, VectorMatch, VectorRecord, VectorServiceBackend
from .client import (
    UpsertResult,
    VectorIndexClient,
    VectorIndexStats,
    build_metadata,
    is_embeddable,
    validate_document,
)
from .duckdb import DuckDBVectorBackend
from .pinecone import PineconeBackend

__all__ = [
    "CollectionInfo",
    "VectorMatch",
    "VectorRecord",
    "VectorServiceBackend",
    "UpsertResult",
    "VectorIndexClient",
    "VectorIndexStats",
    "build_metadata",
    "is_embeddable",
    "validate_document",
    "DuckDBVectorBackend",
    "PineconeBackend",
]
