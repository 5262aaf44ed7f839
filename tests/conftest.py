from __future__ import annotations

import threading
from dataclasses import dataclass, field
from types import SimpleNamespace
from typing import Any, Sequence

import pytest

from kb_search.embeddings import Embedding
from kb_search.vector import CollectionInfo, VectorMatch, VectorRecord


# ---------------------------------------------------------------------------
# openai client fakes
# ---------------------------------------------------------------------------


class FakeEmbeddingsAPI:
    """Mimics ``client.embeddings.create`` and records each request."""

    def __init__(self, dimension: int = 1536, *, reverse: bool = False) -> None:
        self.dimension = dimension
        self.reverse = reverse
        self.calls: list[dict[str, Any]] = []
        self.errors: list[Exception] = []

    def create(self, **kwargs: Any) -> SimpleNamespace:
        self.calls.append(kwargs)
        if self.errors:
            raise self.errors.pop(0)
        items = [
            SimpleNamespace(index=i, embedding=[float(i + 1)] * self.dimension)
            for i in range(len(kwargs["input"]))
        ]
        if self.reverse:
            items.reverse()
        return SimpleNamespace(data=items)


class FakeOpenAIClient:
    def __init__(self, dimension: int = 1536, *, reverse: bool = False) -> None:
        self.embeddings = FakeEmbeddingsAPI(dimension, reverse=reverse)


# ---------------------------------------------------------------------------
# Embedder fake
# ---------------------------------------------------------------------------

KEYWORDS = ("loop", "cloud", "deploy", "widget")


class KeywordEmbedder:
    """Remote-style embedder whose vector counts fixed keywords in the text."""

    def __init__(
        self,
        mode: str = "fake-remote",
        *,
        batch_size: int = 2,
        is_remote: bool = True,
        available: bool = True,
    ) -> None:
        self.mode = mode
        self.dimension = len(KEYWORDS)
        self.batch_size = batch_size
        self.is_remote = is_remote
        self.available = available
        self.calls: list[list[str]] = []
        self.errors: list[Exception] = []
        self.prepared: list[str] = []
        self._lock = threading.Lock()

    def is_available(self) -> bool:
        return self.available

    def prepare(self, documents) -> bool:  # noqa: ANN001
        self.prepared = [document.id for document in documents]
        return False

    def embed_batch(
        self, texts: Sequence[str], *, timeout: float | None = None
    ) -> list[Embedding]:
        with self._lock:
            self.calls.append(list(texts))
            if self.errors:
                raise self.errors.pop(0)
        return [
            Embedding(
                values=tuple(float(text.lower().count(word)) for word in KEYWORDS),
                mode=self.mode,
            )
            for text in texts
        ]

    def embed(self, text: str, *, timeout: float | None = None) -> Embedding:
        return self.embed_batch([text], timeout=timeout)[0]


# ---------------------------------------------------------------------------
# Vector service fake
# ---------------------------------------------------------------------------


@dataclass
class FakeVectorBackend:
    """In-memory vector service with scripted readiness and failures."""

    existing_dimension: int | None = None
    ready_after: int = 0
    describe_calls: int = 0
    created: list[dict[str, Any]] = field(default_factory=list)
    upserts: list[list[VectorRecord]] = field(default_factory=list)
    queries: list[dict[str, Any]] = field(default_factory=list)
    upsert_errors: list[Exception] = field(default_factory=list)
    query_errors: list[Exception] = field(default_factory=list)
    matches: list[VectorMatch] = field(default_factory=list)
    records: dict[str, VectorRecord] = field(default_factory=dict)
    closed: bool = False

    def describe_collection(self, name: str, *, timeout: float | None = None):
        self.describe_calls += 1
        if self.existing_dimension is None:
            return None
        ready = self.describe_calls > self.ready_after
        return CollectionInfo(
            name=name, dimension=self.existing_dimension, metric="cosine", ready=ready
        )

    def create_collection(
        self,
        name: str,
        *,
        dimension: int,
        metric: str = "cosine",
        timeout: float | None = None,
    ) -> None:
        self.created.append({"name": name, "dimension": dimension, "metric": metric})
        self.existing_dimension = dimension
        self.ready_after = self.describe_calls + self.ready_after

    def upsert(self, name, namespace, records, *, timeout=None) -> int:  # noqa: ANN001
        if self.upsert_errors:
            raise self.upsert_errors.pop(0)
        self.upserts.append(list(records))
        for record in records:
            self.records[record.id] = record
        return len(records)

    def query(self, name, namespace, vector, *, top_k, filter=None, timeout=None):  # noqa: ANN001
        self.queries.append({"vector": list(vector), "top_k": top_k, "filter": filter})
        if self.query_errors:
            raise self.query_errors.pop(0)
        return list(self.matches[:top_k])

    def delete_all(self, name, namespace, *, timeout=None) -> None:  # noqa: ANN001
        self.records.clear()

    def count(self, name, namespace, *, timeout=None) -> int:  # noqa: ANN001
        return len(self.records)

    def close(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def _no_provider_credentials(monkeypatch) -> None:
    """Keep real credentials in the environment from reaching remote providers."""
    for name in (
        "AZURE_OPENAI_API_KEY",
        "AZURE_OPENAI_ENDPOINT",
        "OPENAI_API_KEY",
        "PINECONE_API_KEY",
    ):
        monkeypatch.delenv(name, raising=False)
