"""
Vector index client: collection lifecycle, batched upserts and cached queries.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Sequence, TypeVar

from ..config import Settings, resolve_cache_path, resolve_vector_db_path
from ..embeddings import CacheStats, Embedding, EmbeddingProviderChain, QueryEmbeddingCache
from ..errors import (
    ConfigurationError,
    IndexNotReadyError,
    ProviderUnavailableError,
    ValidationError,
)
from ..models import Document
from ..retry import Deadline, call_with_retry
from .base import CollectionInfo, VectorMatch, VectorRecord, VectorServiceBackend
from .duckdb import DuckDBVectorBackend
from .pinecone import PineconeBackend

logger = logging.getLogger(__name__)

T = TypeVar("T")

MIN_EMBEDDABLE_CHARS = 10
TITLE_METADATA_CHARS = 500
PREVIEW_CHARS = 200
METRIC = "cosine"


@dataclass(frozen=True)
class UpsertResult:
    indexed: int
    skipped: int
    mode: str


@dataclass(frozen=True)
class VectorIndexStats:
    vector_count: int
    dimension: int
    mode: str
    cache: CacheStats | None


def build_metadata(document: Document) -> dict[str, Any]:
    """Fields stored next to each vector so a hit renders without the source."""
    return {
        "title": document.title[:TITLE_METADATA_CHARS],
        "category": document.category,
        "source": document.source,
        "version": document.version,
        "preview": document.content[:PREVIEW_CHARS],
    }


def is_embeddable(document: Document) -> bool:
    return len(document.embedding_text().strip()) > MIN_EMBEDDABLE_CHARS


def validate_document(document: Document) -> None:
    if not is_embeddable(document):
        text = document.embedding_text().strip()
        raise ValidationError(
            f"Document {document.id!r} has too little content to embed ({len(text)} chars)"
        )


class VectorIndexClient:
    """Embeds documents and queries into one namespace of a vector collection."""

    def __init__(
        self,
        backend: VectorServiceBackend,
        chain: EmbeddingProviderChain,
        *,
        cache: QueryEmbeddingCache | None = None,
        settings: Settings | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self.backend = backend
        self.chain = chain
        self.cache = cache
        self.settings = settings or Settings()
        self._sleep = sleep
        self._ready = False
        self._ready_lock = threading.Lock()
        self._corpus: dict[str, Document] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        chain: EmbeddingProviderChain | None = None,
        cache: QueryEmbeddingCache | None = None,
    ) -> "VectorIndexClient":
        backend: VectorServiceBackend
        if settings.vector_backend == "duckdb":
            backend = DuckDBVectorBackend(resolve_vector_db_path(settings.vector_db_path))
        else:
            backend = PineconeBackend.from_settings(settings)

        if cache is None:
            cache = QueryEmbeddingCache(
                settings.cache_size,
                path=resolve_cache_path(settings.cache_path),
                save_every=settings.cache_save_every,
            )
        return cls(
            backend,
            chain or EmbeddingProviderChain.from_settings(settings),
            cache=cache,
            settings=settings,
        )

    @property
    def mode(self) -> str:
        return self.chain.mode

    @property
    def is_ready(self) -> bool:
        return self._ready

    def ensure_ready(self, deadline: Deadline | None = None) -> CollectionInfo:
        """
        Make sure the collection exists, is ready and matches the chain dimension.

        An owned collection is created on first use and polled until ready.
        A collection the client does not own must already exist.
        """
        with self._ready_lock:
            name = self.settings.index_name
            info = self._retry(
                lambda: self.backend.describe_collection(name, timeout=self._timeout(deadline)),
                description=f"describe collection {name}",
                deadline=deadline,
            )
            if info is None:
                if not self.settings.owns_index:
                    raise ConfigurationError(
                        f"Vector collection {name!r} does not exist and this client "
                        "is not allowed to create it"
                    )
                logger.info(
                    "Creating vector collection %s (dimension %d, %s)",
                    name,
                    self.chain.dimension,
                    METRIC,
                )
                self._retry(
                    lambda: self.backend.create_collection(
                        name,
                        dimension=self.chain.dimension,
                        metric=METRIC,
                        timeout=self._timeout(deadline),
                    ),
                    description=f"create collection {name}",
                    deadline=deadline,
                )
                info = self._wait_until_ready(deadline)
            elif not info.ready:
                info = self._wait_until_ready(deadline)

            self.chain.expected_dimension = info.dimension
            self.chain.check_dimension()
            self._ready = True
            return info

    def _wait_until_ready(self, deadline: Deadline | None) -> CollectionInfo:
        name = self.settings.index_name
        interval = self.settings.ready_poll_interval
        waited = 0.0
        while True:
            info = self._retry(
                lambda: self.backend.describe_collection(name, timeout=self._timeout(deadline)),
                description=f"describe collection {name}",
                deadline=deadline,
            )
            if info is not None and info.ready:
                logger.info("Vector collection %s is ready", name)
                return info
            if waited >= self.settings.ready_timeout:
                raise IndexNotReadyError(
                    f"Vector collection {name!r} not ready after {self.settings.ready_timeout:g}s"
                )
            self._sleeper(deadline)(interval)
            waited += interval

    def prepare(self, documents: Iterable[Document]) -> None:
        """
        Build corpus-derived embedding state without writing vectors.

        Only embeddable documents count, deduplicated by id, so calling this
        for an already indexed collection reproduces the indexing vocabulary.
        """
        unique = {document.id: document for document in documents if is_embeddable(document)}
        if not self.chain.is_remote:
            self._corpus = dict(unique)
        self._rebuild_vocabulary(unique.values())

    def _rebuild_vocabulary(self, documents: Iterable[Document]) -> bool:
        changed = self.chain.prepare(documents)
        if changed and self.cache is not None:
            # Local query vectors from the previous vocabulary no longer match.
            dropped = self.cache.discard_mode(self.chain.mode)
            if dropped:
                logger.debug("Dropped %d stale %s query embeddings", dropped, self.chain.mode)
        return changed

    def upsert_documents(
        self, documents: Iterable[Document], *, deadline: Deadline | None = None
    ) -> UpsertResult:
        """
        Embed and upsert documents. Returns counts of indexed and skipped documents.

        Unusable documents, failed embedding batches, zero vectors and upsert
        batches that exhaust their retries are skipped and logged.

        Local embeddings depend on the whole corpus: the documents are merged
        into the corpus this client has seen, and when that changes the local
        vocabulary the namespace is cleared and every corpus document is
        embedded again.
        """
        unique: dict[str, Document] = {}
        skipped = 0
        for document in documents:
            try:
                validate_document(document)
            except ValidationError as exc:
                logger.warning("Skipping document: %s", exc)
                skipped += 1
                continue
            unique[document.id] = document

        self.ensure_ready(deadline)
        if not unique:
            return UpsertResult(indexed=0, skipped=skipped, mode=self.mode)

        targets = list(unique.values())
        if self.chain.is_remote:
            self.chain.prepare(targets)
        else:
            self._corpus.update(unique)
            if self._rebuild_vocabulary(self._corpus.values()):
                logger.info(
                    "Local vocabulary changed; re-embedding all %d documents", len(self._corpus)
                )
                self._delete_all(deadline)
                targets = list(self._corpus.values())

        records, embed_skipped = self._embed_documents(targets, deadline)
        skipped += embed_skipped

        indexed = 0
        batch_size = self.settings.upsert_batch_size
        name = self.settings.index_name
        namespace = self.settings.namespace
        for start in range(0, len(records), batch_size):
            batch = records[start : start + batch_size]
            try:
                indexed += self._retry(
                    lambda: self.backend.upsert(
                        name, namespace, batch, timeout=self._timeout(deadline)
                    ),
                    description=f"upsert batch of {len(batch)}",
                    deadline=deadline,
                )
            except ProviderUnavailableError as exc:
                logger.error("Upsert batch of %d vectors failed: %s", len(batch), exc)
                skipped += len(batch)

        logger.info(
            "Indexed %d documents into %s/%s with %s embeddings (%d skipped)",
            indexed,
            name,
            namespace,
            self.mode,
            skipped,
        )
        return UpsertResult(indexed=indexed, skipped=skipped, mode=self.mode)

    def _embed_documents(
        self, documents: Sequence[Document], deadline: Deadline | None
    ) -> tuple[list[VectorRecord], int]:
        batch_size = self.chain.batch_size
        groups = [documents[i : i + batch_size] for i in range(0, len(documents), batch_size)]

        def _embed_group(
            group: Sequence[Document],
        ) -> tuple[Sequence[Document], list[Embedding] | None]:
            try:
                embeddings = self.chain.embed_batch(
                    [document.embedding_text() for document in group], deadline=deadline
                )
            except ProviderUnavailableError as exc:
                logger.error("Skipping embedding batch of %d documents: %s", len(group), exc)
                return group, None
            return group, embeddings

        records: list[VectorRecord] = []
        skipped = 0
        with ThreadPoolExecutor(max_workers=self.settings.embed_concurrency) as executor:
            for group, embeddings in executor.map(_embed_group, groups):
                if embeddings is None:
                    skipped += len(group)
                    continue
                for document, embedding in zip(group, embeddings):
                    if embedding.is_zero:
                        logger.debug("Skipping zero vector for document %s", document.id)
                        skipped += 1
                        continue
                    records.append(
                        VectorRecord(
                            id=document.id,
                            values=embedding.as_list(),
                            metadata=build_metadata(document),
                        )
                    )
        return records, skipped

    def query(
        self,
        text: str,
        *,
        top_k: int = 10,
        min_score: float = 0.3,
        filter: dict[str, Any] | None = None,
        deadline: Deadline | None = None,
    ) -> list[VectorMatch]:
        if not text.strip():
            return []
        self._ensure_ready_once(deadline)

        vector = self._query_vector(text, deadline)
        if vector is None:
            return []

        name = self.settings.index_name
        namespace = self.settings.namespace
        matches = self._retry(
            lambda: self.backend.query(
                name,
                namespace,
                vector,
                top_k=top_k,
                filter=filter or None,
                timeout=self._timeout(deadline),
            ),
            description="vector query",
            deadline=deadline,
        )
        return [match for match in matches if match.score >= min_score]

    def _query_vector(self, text: str, deadline: Deadline | None) -> list[float] | None:
        if self.cache is not None:
            cached = self.cache.get(text, self.chain.mode)
            if cached is not None:
                return cached

        embedding = self.chain.embed(text, deadline=deadline)
        if embedding.is_zero:
            return None
        if self.cache is not None:
            self.cache.put(text, embedding.mode, embedding.values)
        return embedding.as_list()

    def stats(self, *, deadline: Deadline | None = None) -> VectorIndexStats:
        self._ensure_ready_once(deadline)
        name = self.settings.index_name
        namespace = self.settings.namespace
        count = self._retry(
            lambda: self.backend.count(name, namespace, timeout=self._timeout(deadline)),
            description="vector count",
            deadline=deadline,
        )
        return VectorIndexStats(
            vector_count=count,
            dimension=self.chain.dimension,
            mode=self.mode,
            cache=self.cache.stats() if self.cache is not None else None,
        )

    def clear(self, *, deadline: Deadline | None = None) -> None:
        """Delete every vector in the namespace. The query cache is kept."""
        self._ensure_ready_once(deadline)
        self._delete_all(deadline)
        self._corpus.clear()

    def _delete_all(self, deadline: Deadline | None) -> None:
        name = self.settings.index_name
        namespace = self.settings.namespace
        self._retry(
            lambda: self.backend.delete_all(name, namespace, timeout=self._timeout(deadline)),
            description="delete all vectors",
            deadline=deadline,
        )
        logger.info("Cleared namespace %s of collection %s", namespace, name)

    def close(self) -> None:
        """Persist the query cache and release the backend."""
        if self.cache is not None:
            self.cache.close()
        self.backend.close()

    def _ensure_ready_once(self, deadline: Deadline | None) -> None:
        if not self._ready:
            self.ensure_ready(deadline)

    def _timeout(self, deadline: Deadline | None) -> float:
        if deadline is None:
            return self.settings.request_timeout
        return deadline.clamp(self.settings.request_timeout)

    def _sleeper(self, deadline: Deadline | None) -> Callable[[float], None]:
        if self._sleep is not None:
            return self._sleep
        if deadline is not None:
            return deadline.sleep
        return time.sleep

    def _retry(
        self,
        fn: Callable[[], T],
        *,
        description: str,
        deadline: Deadline | None,
    ) -> T:
        return call_with_retry(
            fn,
            max_attempts=self.settings.max_attempts,
            base_delay=self.settings.retry_base_delay,
            deadline=deadline,
            sleep=self._sleeper(deadline),
            description=description,
        )
