"""Tests for weighted reciprocal rank fusion."""

from __future__ import annotations

import pytest

from kb_search.search.fusion import (
    FusionResult,
    FusionWeights,
    MatchedVia,
    RankedItem,
    deduplicate,
    fuse,
    identity_key,
    rrf_contribution,
)


def _items(*ids: str) -> list[RankedItem]:
    return [RankedItem(document_id=doc_id, title=f"Title {doc_id}") for doc_id in ids]


def test_fusion_order_is_computed_from_the_formula() -> None:
    weights = FusionWeights(lexical=0.5, vector=0.5)
    k = 60
    lexical = _items("X", "Y", "Z")
    vector = _items("Y", "X", "W")

    expected_scores = {
        "X": 0.5 / (k + 1) + 0.5 / (k + 2),
        "Y": 0.5 / (k + 2) + 0.5 / (k + 1),
        "Z": 0.5 / (k + 3),
        "W": 0.5 / (k + 3),
    }
    lists = (["X", "Y", "Z"], ["Y", "X", "W"])

    def best_rank(doc_id: str) -> int:
        return min(ranking.index(doc_id) for ranking in lists if doc_id in ranking)

    # X and Y tie exactly, as do Z and W; ties fall back to best rank, then id.
    expected_order = sorted(
        expected_scores,
        key=lambda doc_id: (-expected_scores[doc_id], best_rank(doc_id), doc_id),
    )

    results = fuse(lexical, vector, weights, k=k)

    assert [r.document_id for r in results] == expected_order == ["X", "Y", "W", "Z"]
    for result in results:
        assert result.fused_score == pytest.approx(expected_scores[result.document_id])
    assert results[0].fused_score == results[1].fused_score
    assert {r.document_id: r.match_type for r in results} == {
        "X": "both",
        "Y": "both",
        "W": "vector",
        "Z": "lexical",
    }


def test_document_ranked_well_in_both_lists_beats_single_list_leader() -> None:
    weights = FusionWeights(lexical=0.5, vector=0.5)

    results = fuse(_items("A", "B"), _items("C", "B"), weights)

    assert results[0].document_id == "B"
    assert results[0].fused_score == pytest.approx(2 * 0.5 / 62)


def test_weights_shift_the_winner() -> None:
    lexical, vector = _items("L"), _items("V")

    assert fuse(lexical, vector, FusionWeights(lexical=0.4, vector=0.6))[0].document_id == "V"
    assert fuse(lexical, vector, FusionWeights(lexical=0.7, vector=0.3))[0].document_id == "L"


def test_empty_vector_list_preserves_lexical_order() -> None:
    lexical = _items("c", "a", "b")

    results = fuse(lexical, [])

    assert [r.document_id for r in results] == ["c", "a", "b"]
    assert all(r.match_type == "lexical" for r in results)


def test_empty_lexical_list_preserves_vector_order() -> None:
    assert [r.document_id for r in fuse([], _items("z", "y"))] == ["z", "y"]
    assert fuse([], []) == []


def test_items_without_ids_merge_by_normalized_title() -> None:
    lexical = [RankedItem(document_id=None, title="Microflow Loops!", score=3.0)]
    vector = [RankedItem(document_id="doc-1", title="microflow loops", score=0.9)]

    assert identity_key(lexical[0]) == "title:microflowloops"
    results = fuse(lexical, vector)

    assert len(results) == 2
    titled_only = fuse(lexical, [RankedItem(document_id=None, title="MICROFLOW loops")])
    assert len(titled_only) == 1
    assert titled_only[0].match_type == "both"
    assert titled_only[0].lexical_score == 3.0


def test_duplicate_within_one_list_counts_once() -> None:
    results = fuse(_items("a", "a", "b"), [])

    assert [r.document_id for r in results] == ["a", "b"]
    assert results[0].fused_score == pytest.approx(rrf_contribution(0.4, 0))


def _fused(document_id: str, title: str, score: float, *, both: bool = False) -> FusionResult:
    return FusionResult(
        document_id=document_id,
        title=title,
        category=None,
        fused_score=score,
        matched_via=MatchedVia(lexical=both, vector=True),
    )


def test_deduplicate_keeps_the_best_result_per_title() -> None:
    results = [
        _fused("a", "Create a Loop", 0.03),
        _fused("b", "Deploy", 0.02),
        _fused("a-copy", "create-a-loop", 0.01),
    ]

    assert [r.document_id for r in deduplicate(results)] == ["a", "b"]


def test_deduplicate_prefers_more_sources_on_equal_scores() -> None:
    results = [
        _fused("a", "Loops", 0.02),
        _fused("b", "Deploy", 0.02),
        _fused("a-copy", "LOOPS", 0.02, both=True),
    ]

    kept = deduplicate(results)

    assert [r.document_id for r in kept] == ["a-copy", "b"]
    assert kept[0].match_type == "both"


def test_deduplicate_leaves_untitled_results_alone() -> None:
    results = [_fused("a", "", 0.02), _fused("b", "!!", 0.01)]

    assert [r.document_id for r in deduplicate(results)] == ["a", "b"]


def test_source_scores_are_carried_through() -> None:
    lexical = [RankedItem(document_id="a", title="A", score=2.5)]
    vector = [RankedItem(document_id="a", title="A", score=0.8)]

    (result,) = fuse(lexical, vector)

    assert result.lexical_score == 2.5
    assert result.vector_score == 0.8
    assert result.matched_via.lexical and result.matched_via.vector


@pytest.mark.parametrize(
    ("lexical", "vector"),
    [(-0.1, 0.5), (0.0, 0.0), (float("nan"), 0.5), (0.5, float("inf"))],
)
def test_invalid_weights_are_rejected(lexical: float, vector: float) -> None:
    with pytest.raises(ValueError):
        FusionWeights(lexical=lexical, vector=vector)


def test_weights_need_not_sum_to_one() -> None:
    weights = FusionWeights(lexical=2.0, vector=3.0)

    results = fuse(_items("L"), _items("V"), weights)

    assert results[0].fused_score == pytest.approx(3.0 / 61)
