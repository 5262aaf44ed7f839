"""Tests for documents and content-addressed ids."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from kb_search.errors import ValidationError
from kb_search.models import Document, load_documents, make_document_id


def test_make_document_id_is_deterministic_and_16_hex_chars() -> None:
    first = make_document_id("Loops", "create microflow loop", "microflows")
    second = make_document_id("Loops", "create microflow loop", "microflows")

    assert first == second
    assert len(first) == 16
    int(first, 16)


def test_make_document_id_ignores_surrounding_whitespace() -> None:
    assert make_document_id(" Loops ", "body\n", "cat") == make_document_id("Loops", "body", "cat")


def test_make_document_id_changes_with_category() -> None:
    assert make_document_id("t", "c", "a") != make_document_id("t", "c", "b")


def test_document_derives_id_when_missing() -> None:
    document = Document(title="Loops", content="create microflow loop", category="microflows")

    assert document.id == make_document_id("Loops", "create microflow loop", "microflows")


def test_document_respects_explicit_id_and_defaults() -> None:
    document = Document(id="a", content="create microflow loop")

    assert document.id == "a"
    assert document.category == "general"
    assert document.source == "knowledge-base"
    assert document.version == "unknown"


def test_document_is_immutable() -> None:
    document = Document(id="a", content="text")

    with pytest.raises(Exception):
        document.content = "changed"  # type: ignore[misc]


def test_embedding_text_falls_back_to_title() -> None:
    assert Document(id="a", title="Only a title", content="  ").embedding_text() == "Only a title"
    assert Document(id="b", title="T", content="Body").embedding_text() == "Body"


def test_load_documents_accepts_list_and_wrapped_forms(tmp_path: Path) -> None:
    records = [{"id": "a", "content": "create microflow loop"}, {"content": "deploy to cloud"}]
    plain = tmp_path / "plain.json"
    wrapped = tmp_path / "wrapped.json"
    plain.write_text(json.dumps(records))
    wrapped.write_text(json.dumps({"documents": records}))

    for path in (plain, wrapped):
        documents = load_documents(path)
        assert [doc.content for doc in documents] == ["create microflow loop", "deploy to cloud"]
        assert documents[0].id == "a"
        assert documents[1].id == make_document_id("", "deploy to cloud", "general")


def test_load_documents_names_the_invalid_record(tmp_path: Path) -> None:
    path = tmp_path / "bad.json"
    path.write_text(json.dumps([{"id": "a", "content": "fine"}, {"id": "b", "content": 42}]))

    with pytest.raises(ValidationError, match="#1"):
        load_documents(path)


def test_load_documents_rejects_unreadable_file(tmp_path: Path) -> None:
    path = tmp_path / "broken.json"
    path.write_text("{not json")

    with pytest.raises(ValidationError):
        load_documents(path)
    with pytest.raises(ValidationError):
        load_documents(tmp_path / "missing.json")
