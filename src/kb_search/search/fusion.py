"""
Reciprocal rank fusion of lexical and vector result lists.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Sequence

DEFAULT_RRF_K = 60

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")


@dataclass(frozen=True)
class RankedItem:
    """One entry of a single-source ranked list, best first."""

    document_id: str | None
    title: str
    category: str | None = None
    score: float = 0.0


@dataclass(frozen=True)
class MatchedVia:
    lexical: bool = False
    vector: bool = False


@dataclass(frozen=True)
class FusionResult:
    """Merged retrieval candidate for a document."""

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
        if self.matched_via.lexical:
            return "lexical"
        return "vector"


@dataclass(frozen=True)
class FusionWeights:
    """Relative per-source weights; only their ratio affects the ordering."""

    lexical: float = 0.4
    vector: float = 0.6

    def __post_init__(self) -> None:
        for name, value in (("lexical", self.lexical), ("vector", self.vector)):
            if not math.isfinite(value) or value < 0:
                raise ValueError(f"{name} weight must be a finite number >= 0, got {value!r}")
        if self.lexical + self.vector <= 0:
            raise ValueError("At least one fusion weight must be positive")


def identity_key(item: RankedItem) -> str:
    """Match by document id when known, otherwise by normalized title."""
    if item.document_id:
        return f"id:{item.document_id}"
    return "title:" + _NON_ALNUM_RE.sub("", item.title.lower())


def rrf_contribution(weight: float, rank: int, k: int = DEFAULT_RRF_K) -> float:
    """Contribution of an item at 0-indexed ``rank``."""
    return weight / (k + rank + 1)


def fuse(
    lexical_ranked: Sequence[RankedItem],
    vector_ranked: Sequence[RankedItem],
    weights: FusionWeights | None = None,
    k: int = DEFAULT_RRF_K,
) -> list[FusionResult]:
    """Merge two ranked lists with weighted reciprocal rank fusion."""
    if k < 0:
        raise ValueError("k must be >= 0")
    weights = weights or FusionWeights()

    merged: dict[str, dict] = {}

    def _accumulate(items: Sequence[RankedItem], weight: float, source: str) -> None:
        for rank, item in enumerate(items):
            key = identity_key(item)
            entry = merged.setdefault(
                key,
                {
                    "item": item,
                    "score": 0.0,
                    "best_rank": rank,
                    "lexical_score": None,
                    "vector_score": None,
                },
            )
            score_field = f"{source}_score"
            if entry[score_field] is not None:
                # Duplicate within one list: only the best-ranked occurrence counts.
                continue
            entry["score"] += rrf_contribution(weight, rank, k)
            entry[score_field] = item.score
            entry["best_rank"] = min(entry["best_rank"], rank)
            if entry["item"].document_id is None and item.document_id is not None:
                entry["item"] = item

    _accumulate(lexical_ranked, weights.lexical, "lexical")
    _accumulate(vector_ranked, weights.vector, "vector")

    ordered = sorted(
        merged.items(),
        key=lambda pair: (-pair[1]["score"], pair[1]["best_rank"], pair[0]),
    )
    results: list[FusionResult] = []
    for _, entry in ordered:
        item: RankedItem = entry["item"]
        results.append(
            FusionResult(
                document_id=item.document_id,
                title=item.title,
                category=item.category,
                fused_score=entry["score"],
                matched_via=MatchedVia(
                    lexical=entry["lexical_score"] is not None,
                    vector=entry["vector_score"] is not None,
                ),
                lexical_score=entry["lexical_score"],
                vector_score=entry["vector_score"],
            )
        )
    return results


def _source_count(result: FusionResult) -> int:
    return int(result.matched_via.lexical) + int(result.matched_via.vector)


def deduplicate(results: Sequence[FusionResult]) -> list[FusionResult]:
    """
    Collapse results whose titles normalize to the same text.

    Different documents can share a title (a page mirrored under two ids, say).
    The survivor is the one with the higher fused score, then the one matched
    by more sources; it takes the position of the first occurrence. Results
    with an empty normalized title are never merged.
    """
    kept: list[FusionResult] = []
    positions: dict[str, int] = {}
    for result in results:
        key = _NON_ALNUM_RE.sub("", result.title.lower())
        if not key:
            kept.append(result)
            continue
        position = positions.get(key)
        if position is None:
            positions[key] = len(kept)
            kept.append(result)
            continue
        current = kept[position]
        if (result.fused_score, _source_count(result)) > (
            current.fused_score,
            _source_count(current),
        ):
            kept[position] = result
    return kept
