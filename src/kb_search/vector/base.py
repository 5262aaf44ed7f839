"""
Vector service interfaces and records.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, Sequence


@dataclass(frozen=True)
class CollectionInfo:
    """Description of a remote collection (a Pinecone index)."""

    name: str
    dimension: int
    metric: str
    ready: bool


@dataclass(frozen=True)
class VectorRecord:
    """A document vector with the metadata needed to render a hit."""

    id: str
    values: list[float]
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class VectorMatch:
    id: str
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)


class VectorServiceBackend(Protocol):
    """Protocol for the ANN operations used by :class:`VectorIndexClient`."""

    def describe_collection(
        self, name: str, *, timeout: float | None = None
    ) -> CollectionInfo | None:
        """Return the collection description, or None when it does not exist."""

    def create_collection(
        self,
        name: str,
        *,
        dimension: int,
        metric: str = "cosine",
        timeout: float | None = None,
    ) -> None:
        """Create a collection with a fixed dimension and similarity metric."""

    def upsert(
        self,
        name: str,
        namespace: str,
        records: Sequence[VectorRecord],
        *,
        timeout: float | None = None,
    ) -> int:
        """Insert or replace records by id. Return count written."""

    def query(
        self,
        name: str,
        namespace: str,
        vector: Sequence[float],
        *,
        top_k: int,
        filter: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> list[VectorMatch]:
        """Return the ``top_k`` most similar records, best first."""

    def delete_all(self, name: str, namespace: str, *, timeout: float | None = None) -> None:
        """Remove every record in the namespace."""

    def count(self, name: str, namespace: str, *, timeout: float | None = None) -> int:
        """Return the number of records stored in the namespace."""

    def close(self) -> None:
        """Release connections held by the backend."""
