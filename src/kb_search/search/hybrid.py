"""
Hybrid query engine: parallel lexical + vector retrieval merged with RRF.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Sequence

from ..config import Settings
from ..errors import IndexNotReadyError, OperationCancelledError, ProviderUnavailableError
from ..models import Document
from ..retry import Deadline
from ..vector import UpsertResult, VectorIndexClient, VectorIndexStats, build_metadata
from .analytics import AnalyticsSummary, QueryAnalytics
from .filters import MetadataFilter, build_vector_filter, coerce_filters, matches_all
from .fusion import FusionResult, FusionWeights, MatchedVia, RankedItem, deduplicate, fuse
from .lexical import LexicalIndex, LexicalIndexStats

logger = logging.getLogger(__name__)

# Upper bound on how long result collection waits between cancellation checks.
_COLLECT_POLL_INTERVAL = 0.05

# Failures that cost one branch its results instead of failing the whole query.
_DEGRADABLE_ERRORS = (ProviderUnavailableError, IndexNotReadyError, OperationCancelledError)


@dataclass(frozen=True)
class SearchResult:
    """Fused hit returned to callers."""

    document_id: str | None
    title: str
    category: str | None
    fused_score: float
    matched_via: MatchedVia
    lexical_score: float | None = None
    vector_score: float | None = None

    @property
    def match_type(self) -> str:
        if self.matched_via.lexical and self.matched_via.vector:
            return "both"
        return "lexical" if self.matched_via.lexical else "vector"

    @classmethod
    def from_fusion(cls, result: FusionResult) -> "SearchResult":
        return cls(
            document_id=result.document_id,
            title=result.title,
            category=result.category,
            fused_score=result.fused_score,
            matched_via=result.matched_via,
            lexical_score=result.lexical_score,
            vector_score=result.vector_score,
        )


@dataclass(frozen=True)
class IndexReport:
    documents: int
    lexical: LexicalIndexStats
    vector: UpsertResult | None = None
    vector_error: str | None = None


@dataclass(frozen=True)
class EngineStats:
    lexical: LexicalIndexStats
    vector: VectorIndexStats | None
    weights: FusionWeights
    rrf_k: int


def expand_query(query: str, expansions: Mapping[str, Sequence[str]]) -> str:
    """Append configured expansions for each query word, without duplicates."""
    words = query.lower().split()
    expanded = list(words)
    for word in words:
        expanded.extend(term.lower() for term in expansions.get(word, ()))
    return " ".join(dict.fromkeys(expanded))


class HybridSearchEngine:
    """Runs both retrieval branches concurrently and fuses their rankings."""

    def __init__(
        self,
        lexical: LexicalIndex | None = None,
        vector_client: VectorIndexClient | None = None,
        *,
        weights: FusionWeights | None = None,
        settings: Settings | None = None,
        expansions: Mapping[str, Sequence[str]] | None = None,
        analytics: QueryAnalytics | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.lexical = lexical or LexicalIndex()
        self.vector_client = vector_client
        self.weights = weights or FusionWeights(
            lexical=self.settings.lexical_weight, vector=self.settings.vector_weight
        )
        self.expansions = {key.lower(): list(value) for key, value in (expansions or {}).items()}
        self.analytics_tracker = analytics or QueryAnalytics()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        with_vectors: bool = True,
        expansions: Mapping[str, Sequence[str]] | None = None,
    ) -> "HybridSearchEngine":
        vector_client = VectorIndexClient.from_settings(settings) if with_vectors else None
        return cls(
            LexicalIndex(),
            vector_client,
            settings=settings,
            expansions=expansions,
        )

    def index(
        self, documents: Iterable[Document], *, deadline: Deadline | None = None
    ) -> IndexReport:
        """
        Rebuild the lexical index, then upsert vectors.

        A vector failure is reported in ``IndexReport.vector_error`` and the
        lexical index stays usable. Configuration errors propagate.
        """
        docs = list(documents)
        lexical_stats = self.lexical.index(docs)
        if self.vector_client is None:
            return IndexReport(documents=len(docs), lexical=lexical_stats)

        try:
            vector_result = self.vector_client.upsert_documents(docs, deadline=deadline)
        except _DEGRADABLE_ERRORS as exc:
            logger.error("Vector indexing failed, continuing lexical-only: %s", exc)
            return IndexReport(documents=len(docs), lexical=lexical_stats, vector_error=str(exc))
        return IndexReport(documents=len(docs), lexical=lexical_stats, vector=vector_result)

    def load(self, documents: Iterable[Document]) -> LexicalIndexStats:
        """Rebuild in-memory state for documents whose vectors are already stored."""
        docs = list(documents)
        stats = self.lexical.index(docs)
        if self.vector_client is not None:
            self.vector_client.prepare(docs)
        return stats

    def clear(self) -> None:
        self.lexical.clear()
        if self.vector_client is not None:
            self.vector_client.clear()

    def search(
        self,
        text: str,
        limit: int = 10,
        filters: str | Mapping[str, Any] | Sequence[MetadataFilter] | None = None,
        *,
        deadline: Deadline | None = None,
        expand: bool = True,
    ) -> list[SearchResult]:
        """
        Run both branches concurrently and fuse them.

        A branch that fails or outlives ``settings.branch_timeout`` (or the
        caller's deadline, if sooner) is dropped from fusion. Cancelling the
        caller's deadline aborts both branches and raises
        :class:`OperationCancelledError`.
        """
        conditions = coerce_filters(filters)
        if limit <= 0:
            return []
        if deadline is not None:
            deadline.check("search")

        candidate_limit = limit * 2
        lexical_query = expand_query(text, self.expansions) if expand and self.expansions else text
        expanded = lexical_query != text and lexical_query != " ".join(text.lower().split())

        branch_deadline = Deadline(self.settings.branch_timeout, parent=deadline)

        executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="kb-search")
        try:
            lexical_future = executor.submit(
                self._lexical_branch,
                query=lexical_query,
                conditions=conditions,
                limit=candidate_limit,
            )
            vector_future = executor.submit(
                self._vector_branch,
                query=text,
                conditions=conditions,
                limit=candidate_limit,
                deadline=branch_deadline,
            )
            lexical_items = self._collect("lexical", lexical_future, branch_deadline)
            vector_items = self._collect("vector", vector_future, branch_deadline)
        finally:
            # Abort whatever is still in flight; the branch results are final.
            branch_deadline.cancel()
            executor.shutdown(wait=False, cancel_futures=True)

        if deadline is not None and deadline.cancelled:
            raise OperationCancelledError("search cancelled")

        fused = deduplicate(
            fuse(lexical_items, vector_items, self.weights, k=self.settings.rrf_k)
        )[:limit]
        results = [SearchResult.from_fusion(item) for item in fused]
        self.analytics_tracker.record(text, fused, expanded=expanded)
        logger.debug(
            "search %r: %d lexical, %d vector, %d fused",
            text,
            len(lexical_items),
            len(vector_items),
            len(results),
        )
        return results

    def _lexical_branch(
        self, *, query: str, conditions: Sequence[MetadataFilter], limit: int
    ) -> list[RankedItem]:
        if conditions:
            # Post-filtering needs the full ranking before the cut.
            hits = self.lexical.search(query, limit=max(self.lexical.stats().documents, 1))
            hits = [hit for hit in hits if matches_all(conditions, build_metadata(hit.document))]
        else:
            hits = self.lexical.search(query, limit=limit)
        return [
            RankedItem(
                document_id=hit.document.id,
                title=hit.document.title,
                category=hit.document.category,
                score=hit.score,
            )
            for hit in hits[:limit]
        ]

    def _vector_branch(
        self,
        *,
        query: str,
        conditions: Sequence[MetadataFilter],
        limit: int,
        deadline: Deadline,
    ) -> list[RankedItem]:
        if self.vector_client is None:
            return []
        service_filter = build_vector_filter(
            [condition for condition in conditions if condition.operator != "contains"]
        )
        matches = self.vector_client.query(
            query,
            top_k=limit,
            min_score=self.settings.min_score,
            filter=service_filter,
            deadline=deadline,
        )
        return [
            RankedItem(
                document_id=match.id,
                title=str(match.metadata.get("title", "")),
                category=match.metadata.get("category"),
                score=match.score,
            )
            for match in matches
            if matches_all(conditions, match.metadata)
        ]

    @staticmethod
    def _collect(
        name: str, future: Future[list[RankedItem]], deadline: Deadline
    ) -> list[RankedItem]:
        try:
            while not future.done():
                if deadline.expired:
                    reason = "was cancelled" if deadline.cancelled else "timed out"
                    logger.warning("%s branch %s; fusing without it", name, reason)
                    return []
                remaining = deadline.remaining()
                poll = (
                    _COLLECT_POLL_INTERVAL
                    if remaining is None
                    else min(remaining, _COLLECT_POLL_INTERVAL)
                )
                wait([future], timeout=poll)
            return future.result()
        except _DEGRADABLE_ERRORS as exc:
            logger.warning("%s branch failed; fusing without it: %s", name, exc)
        return []

    def stats(self) -> EngineStats:
        vector_stats: VectorIndexStats | None = None
        if self.vector_client is not None:
            try:
                vector_stats = self.vector_client.stats()
            except _DEGRADABLE_ERRORS as exc:
                logger.warning("Vector stats unavailable: %s", exc)
        return EngineStats(
            lexical=self.lexical.stats(),
            vector=vector_stats,
            weights=self.weights,
            rrf_k=self.settings.rrf_k,
        )

    def analytics(self) -> AnalyticsSummary:
        return self.analytics_tracker.summary()

    def close(self) -> None:
        if self.vector_client is not None:
            self.vector_client.close()
