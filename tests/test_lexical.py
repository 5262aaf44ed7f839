"""Tests for the TF-IDF lexical index."""

from __future__ import annotations

import math

from kb_search.models import Document
from kb_search.search.lexical import LexicalIndex, inverse_document_frequency
from kb_search.text import tokenize


def _scenario_index() -> LexicalIndex:
    index = LexicalIndex()
    index.index(
        [
            Document(id="a", content="create microflow loop"),
            Document(id="b", content="deploy to cloud"),
        ]
    )
    return index


def test_query_matches_only_documents_sharing_a_term() -> None:
    index = _scenario_index()

    hits = index.search("loop")

    assert [hit.document.id for hit in hits] == ["a"]
    assert hits[0].score > 0
    assert index.search("widget") == []


def test_search_never_returns_documents_without_a_shared_token() -> None:
    documents = [
        Document(id="1", title="Loops", content="Iterate over a list in a microflow loop"),
        Document(id="2", title="Deploy", content="Deploy the app to the cloud portal"),
        Document(id="3", title="Widgets", content="Configure a data grid widget"),
        Document(id="4", title="Entities", content="Create entities in the domain model"),
    ]
    index = LexicalIndex()
    index.index(documents)

    for query in ["loop", "cloud deploy", "widget grid", "domain entity", "unrelated words"]:
        query_terms = set(tokenize(query))
        for hit in index.search(query, limit=10):
            assert query_terms & set(tokenize(hit.document.search_text()))


def test_idf_positive_and_non_increasing_in_document_frequency() -> None:
    total = 10
    values = [inverse_document_frequency(total, df) for df in range(0, total)]

    assert all(value > 0 for value in values)
    assert all(later <= earlier for earlier, later in zip(values, values[1:]))
    assert math.isclose(values[1], math.log(10 / 2) + 1)


def test_idf_for_indexed_terms() -> None:
    index = LexicalIndex()
    index.index(
        [
            Document(id="1", content="loop loop cloud"),
            Document(id="2", content="loop deploy"),
            Document(id="3", content="widget"),
        ]
    )

    assert index.document_frequency("loop") == 2
    assert index.document_frequency("cloud") == 1
    assert index.idf("cloud") > index.idf("loop") > 0
    assert index.idf("absent") == 0.0


def test_term_frequency_raises_score() -> None:
    index = LexicalIndex()
    index.index(
        [
            Document(id="once", content="loop here"),
            Document(id="twice", content="loop and another loop"),
            Document(id="other", content="nothing relevant"),
        ]
    )

    assert [hit.document.id for hit in index.search("loop")] == ["twice", "once"]


def test_ties_are_broken_by_document_id() -> None:
    index = LexicalIndex()
    index.index(
        [
            Document(id="b", content="same words loop"),
            Document(id="a", content="same words loop"),
            Document(id="c", content="unrelated"),
        ]
    )

    assert [hit.document.id for hit in index.search("loop")] == ["a", "b"]


def test_repeated_query_terms_count_once() -> None:
    index = _scenario_index()

    assert index.search("loop loop loop")[0].score == index.search("loop")[0].score


def test_title_is_searchable_and_category_filter_applies() -> None:
    index = LexicalIndex()
    index.index(
        [
            Document(id="a", title="Widget basics", content="first steps", category="ui"),
            Document(id="b", title="Other", content="a widget in logic", category="logic"),
        ]
    )

    assert {hit.document.id for hit in index.search("widget")} == {"a", "b"}
    assert [hit.document.id for hit in index.search("widget", category="ui")] == ["a"]


def test_reindex_replaces_previous_snapshot_and_limit_applies() -> None:
    index = _scenario_index()
    index.index([Document(id="c", content="loop again"), Document(id="d", content="loop")])

    assert index.get("a") is None
    assert {hit.document.id for hit in index.search("loop")} == {"c", "d"}
    assert len(index.search("loop", limit=1)) == 1
    assert index.stats().documents == 2


def test_duplicate_ids_keep_the_last_document() -> None:
    index = LexicalIndex()
    stats = index.index(
        [Document(id="a", content="loop"), Document(id="a", content="cloud")]
    )

    assert stats.documents == 1
    assert index.search("loop") == []
    assert [hit.document.id for hit in index.search("cloud")] == ["a"]


def test_clear_empties_the_index() -> None:
    index = _scenario_index()
    assert index.is_built

    index.clear()

    assert not index.is_built
    assert index.search("loop") == []
