"""Tests for the persistent query embedding cache."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from kb_search.embeddings.cache import QueryEmbeddingCache, make_key


def test_keys_combine_normalized_text_and_mode() -> None:
    assert make_key("  Create LOOP ", "openai") == "create loop:openai"


def test_lookup_normalizes_text_and_separates_modes() -> None:
    cache = QueryEmbeddingCache(capacity=10)
    cache.put("Create Loop", "openai", [0.1, 0.2])

    assert cache.get("  create loop", "openai") == [0.1, 0.2]
    assert cache.get("create loop", "local") is None


def test_least_recently_used_entry_is_evicted() -> None:
    cache = QueryEmbeddingCache(capacity=2)
    cache.put("a", "m", [1.0])
    cache.put("b", "m", [2.0])
    cache.get("a", "m")
    cache.put("c", "m", [3.0])

    assert cache.keys() == ["a:m", "c:m"]
    assert cache.get("b", "m") is None
    assert cache.stats().evictions == 1


def test_stats_track_hits_and_misses() -> None:
    cache = QueryEmbeddingCache(capacity=5)
    cache.put("a", "m", [1.0])
    cache.get("a", "m")
    cache.get("missing", "m")

    stats = cache.stats()

    assert (stats.size, stats.hits, stats.misses) == (1, 1, 1)
    assert stats.hit_rate == 0.5
    assert stats.to_dict()["hit_rate"] == 0.5


def test_payload_round_trip_preserves_mapping_and_recency() -> None:
    cache = QueryEmbeddingCache(capacity=3)
    cache.put("a", "m", [1.0, 0.0])
    cache.put("b", "m", [0.0, 1.0])
    cache.put("c", "m", [0.5, 0.5])
    cache.get("a", "m")

    payload = cache.to_payload()
    restored = QueryEmbeddingCache.from_payload(json.loads(json.dumps(payload)), capacity=3)

    assert payload["version"] == 1
    assert "savedAt" in payload and "stats" in payload
    assert restored.keys() == ["b:m", "c:m", "a:m"]
    assert restored.get("c", "m") == [0.5, 0.5]

    # The least recently used entry before saving is still the first evicted.
    fresh = QueryEmbeddingCache.from_payload(payload, capacity=3)
    fresh.put("d", "m", [1.0, 1.0])
    assert "b:m" not in fresh
    assert fresh.keys() == ["c:m", "a:m", "d:m"]


def test_save_and_load_file(tmp_path: Path) -> None:
    path = tmp_path / "cache" / "queries.json"
    cache = QueryEmbeddingCache(capacity=5, path=path)
    cache.put("loop", "local", [0.25, 0.75])
    assert cache.save()

    reloaded = QueryEmbeddingCache(capacity=5, path=path)

    assert reloaded.get("loop", "local") == [0.25, 0.75]
    assert not list(path.parent.glob(".query-cache-*"))


@pytest.mark.parametrize(
    "content",
    ["{not json", json.dumps({"version": 99, "entries": []}), json.dumps({"version": 1})],
)
def test_corrupt_or_foreign_files_start_empty(tmp_path: Path, content: str) -> None:
    path = tmp_path / "queries.json"
    path.write_text(content)

    cache = QueryEmbeddingCache(capacity=5, path=path)

    assert len(cache) == 0
    cache.put("loop", "local", [1.0])
    assert cache.get("loop", "local") == [1.0]


def test_missing_file_is_a_cold_cache(tmp_path: Path) -> None:
    cache = QueryEmbeddingCache(capacity=5, path=tmp_path / "absent.json")

    assert len(cache) == 0


def test_periodic_background_save_and_close(tmp_path: Path) -> None:
    path = tmp_path / "queries.json"
    cache = QueryEmbeddingCache(capacity=10, path=path, save_every=2)
    cache.put("a", "m", [1.0])
    cache.put("b", "m", [2.0])
    cache.put("c", "m", [3.0])

    cache.close()

    saved = json.loads(path.read_text())
    assert [entry[0] for entry in saved["entries"]] == ["a:m", "b:m", "c:m"]


def test_older_snapshot_never_overwrites_a_newer_save(tmp_path: Path) -> None:
    path = tmp_path / "queries.json"
    cache = QueryEmbeddingCache(capacity=10, path=path, save_every=100)
    cache.put("loop", "local", [1.0])
    with cache._lock:
        older, older_seq = cache._snapshot_locked()
    cache.put("cloud", "local", [0.5])
    assert cache.save()

    # A background writer that lost the race finishes last.
    cache._write(older, older_seq)

    reloaded = QueryEmbeddingCache(capacity=10, path=path)
    assert reloaded.get("cloud", "local") == [0.5]


def test_many_background_saves_end_with_the_final_state(tmp_path: Path) -> None:
    path = tmp_path / "queries.json"
    cache = QueryEmbeddingCache(capacity=50, path=path, save_every=1)
    for index in range(20):
        cache.put(f"query {index}", "m", [float(index)])

    cache.close()

    saved = json.loads(path.read_text())
    assert len(saved["entries"]) == 20
    assert saved["entries"][-1][0] == "query 19:m"


def test_discard_mode_drops_only_that_mode() -> None:
    cache = QueryEmbeddingCache(capacity=5)
    cache.put("a", "local", [1.0])
    cache.put("a", "openai", [2.0])

    assert cache.discard_mode("local") == 1
    assert cache.keys() == ["a:openai"]


def test_capacity_must_be_positive() -> None:
    with pytest.raises(ValueError):
        QueryEmbeddingCache(capacity=0)
