"""
TF-IDF lexical index over tokenized documents.

``index()`` builds a complete snapshot off to the side and swaps it in under
a lock, so concurrent searches always see either the previous index or the
new one, never a partially built one.
"""

from __future__ import annotations

import logging
import math
import threading
from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable

from ..models import Document
from ..text import tokenize

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Posting:
    """Occurrences of one term in one document."""

    document_id: str
    term_frequency: int


@dataclass(frozen=True)
class PostingList:
    postings: tuple[Posting, ...]

    @property
    def document_frequency(self) -> int:
        return len(self.postings)


@dataclass(frozen=True)
class LexicalHit:
    document: Document
    score: float


@dataclass(frozen=True)
class LexicalIndexStats:
    documents: int
    unique_terms: int


@dataclass(frozen=True)
class _Snapshot:
    documents: dict[str, Document] = field(default_factory=dict)
    postings: dict[str, PostingList] = field(default_factory=dict)

    @property
    def total_documents(self) -> int:
        return len(self.documents)


def inverse_document_frequency(total_documents: int, document_frequency: int) -> float:
    """``ln(N / (df + 1)) + 1``; add-one smoothing keeps it finite for any df."""
    if total_documents <= 0:
        return 0.0
    return math.log(total_documents / (document_frequency + 1)) + 1.0


def _build_snapshot(documents: Iterable[Document]) -> _Snapshot:
    by_id: dict[str, Document] = {}
    for document in documents:
        # Later duplicates of an id replace earlier ones (idempotent upsert).
        by_id[document.id] = document

    accumulator: dict[str, list[Posting]] = {}
    for document_id, document in by_id.items():
        counts = Counter(tokenize(document.search_text()))
        for term, frequency in counts.items():
            accumulator.setdefault(term, []).append(
                Posting(document_id=document_id, term_frequency=frequency)
            )

    postings = {
        term: PostingList(postings=tuple(items)) for term, items in accumulator.items()
    }
    return _Snapshot(documents=by_id, postings=postings)


class LexicalIndex:
    """Inverted index with classic TF-IDF scoring."""

    def __init__(self) -> None:
        self._snapshot = _Snapshot()
        self._lock = threading.Lock()

    @property
    def is_built(self) -> bool:
        return self._snapshot.total_documents > 0

    def index(self, documents: Iterable[Document]) -> LexicalIndexStats:
        """Replace the current index with one built from ``documents``."""
        snapshot = _build_snapshot(documents)
        with self._lock:
            self._snapshot = snapshot
        stats = LexicalIndexStats(
            documents=snapshot.total_documents,
            unique_terms=len(snapshot.postings),
        )
        logger.info(
            "Lexical index built: %d documents, %d unique terms",
            stats.documents,
            stats.unique_terms,
        )
        return stats

    def clear(self) -> None:
        with self._lock:
            self._snapshot = _Snapshot()

    def idf(self, term: str) -> float:
        snapshot = self._snapshot
        posting_list = snapshot.postings.get(term)
        if posting_list is None:
            return 0.0
        return inverse_document_frequency(
            snapshot.total_documents, posting_list.document_frequency
        )

    def document_frequency(self, term: str) -> int:
        posting_list = self._snapshot.postings.get(term)
        return posting_list.document_frequency if posting_list is not None else 0

    def get(self, document_id: str) -> Document | None:
        return self._snapshot.documents.get(document_id)

    def search(
        self,
        query: str,
        limit: int = 10,
        *,
        category: str | None = None,
    ) -> list[LexicalHit]:
        """Rank documents by summed ``tf * idf`` over the query terms."""
        snapshot = self._snapshot
        if limit <= 0 or snapshot.total_documents == 0:
            return []

        # Repeated query terms are counted once.
        terms = list(dict.fromkeys(tokenize(query)))
        if not terms:
            return []

        scores: dict[str, float] = {}
        for term in terms:
            posting_list = snapshot.postings.get(term)
            if posting_list is None:
                continue
            weight = inverse_document_frequency(
                snapshot.total_documents, posting_list.document_frequency
            )
            for posting in posting_list.postings:
                scores[posting.document_id] = (
                    scores.get(posting.document_id, 0.0) + posting.term_frequency * weight
                )

        ranked = sorted(scores.items(), key=lambda item: (-item[1], item[0]))
        hits: list[LexicalHit] = []
        for document_id, score in ranked:
            document = snapshot.documents[document_id]
            if category is not None and document.category != category:
                continue
            hits.append(LexicalHit(document=document, score=score))
            if len(hits) >= limit:
                break
        return hits

    def stats(self) -> LexicalIndexStats:
        snapshot = self._snapshot
        return LexicalIndexStats(
            documents=snapshot.total_documents,
            unique_terms=len(snapshot.postings),
        )
