"""
In-memory query analytics: popular terms, hit rate and knowledge gaps.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Sequence

from ..text import normalize_query
from .fusion import FusionResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueryRecord:
    query: str
    timestamp: str
    result_count: int
    top_score: float
    match_types: tuple[str, ...]
    expanded: bool = False


@dataclass(frozen=True)
class AnalyticsSummary:
    total_queries: int
    avg_results: float
    hit_rate: float
    top_terms: list[tuple[str, int]]
    match_types: dict[str, int]
    knowledge_gaps: list[str]
    recent_queries: list[QueryRecord] = field(default_factory=list)


class QueryAnalytics:
    """Bounded history of searches and the queries that found nothing."""

    def __init__(self, max_history: int = 1000, max_gaps: int = 100) -> None:
        self._queries: deque[QueryRecord] = deque(maxlen=max_history)
        self._gaps: deque[str] = deque(maxlen=max_gaps)
        self._terms: Counter[str] = Counter()
        self._lock = threading.Lock()

    def record(
        self, query: str, results: Sequence[FusionResult], *, expanded: bool = False
    ) -> QueryRecord:
        normalized = normalize_query(query)
        record = QueryRecord(
            query=normalized,
            timestamp=datetime.now(timezone.utc).isoformat(),
            result_count=len(results),
            top_score=results[0].fused_score if results else 0.0,
            match_types=tuple(result.match_type for result in results),
            expanded=expanded,
        )
        with self._lock:
            self._queries.append(record)
            self._terms.update(normalized.split())
            if not results and normalized not in self._gaps:
                self._gaps.append(normalized)
                logger.info("Knowledge gap: no results for %r", normalized)
        return record

    def summary(self, *, top: int = 20, recent: int = 10) -> AnalyticsSummary:
        with self._lock:
            queries = list(self._queries)
            top_terms = self._terms.most_common(top)
            gaps = list(self._gaps)[-recent:]

        total = len(queries)
        hits = sum(1 for record in queries if record.result_count > 0)
        match_types = {"both": 0, "lexical": 0, "vector": 0}
        for record in queries:
            for match_type in record.match_types:
                match_types[match_type] = match_types.get(match_type, 0) + 1
        return AnalyticsSummary(
            total_queries=total,
            avg_results=round(sum(r.result_count for r in queries) / total, 1) if total else 0.0,
            hit_rate=round(hits / total, 4) if total else 0.0,
            top_terms=top_terms,
            match_types=match_types,
            knowledge_gaps=gaps,
            recent_queries=queries[-recent:],
        )

    def cooccurring_terms(self, limit: int = 10) -> list[tuple[tuple[str, str], int]]:
        """Term pairs searched together most often; candidates for expansion entries."""
        pairs: Counter[tuple[str, str]] = Counter()
        with self._lock:
            queries = list(self._queries)
        for record in queries:
            terms = sorted(set(record.query.split()))
            for i, first in enumerate(terms):
                for second in terms[i + 1 :]:
                    pairs[(first, second)] += 1
        return pairs.most_common(limit)
