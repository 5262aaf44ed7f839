"""
Bounded, recency-ordered cache of query embeddings with file persistence.

Entries are keyed by ``normalized query + ":" + provider mode`` and kept in
an ``OrderedDict`` whose order is least- to most-recently used. The cache is
a latency optimization only: a cold or unreadable cache never changes
search results.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from collections import OrderedDict
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Sequence

from ..text import normalize_query

logger = logging.getLogger(__name__)

CACHE_FORMAT_VERSION = 1


@dataclass(frozen=True)
class CacheStats:
    size: int
    capacity: int
    hits: int
    misses: int
    evictions: int

    @property
    def hit_rate(self) -> float:
        lookups = self.hits + self.misses
        return round(self.hits / lookups, 4) if lookups else 0.0

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["hit_rate"] = self.hit_rate
        return payload


def make_key(text: str, mode: str) -> str:
    return f"{normalize_query(text)}:{mode}"


class QueryEmbeddingCache:
    """LRU cache of query vectors, saved every ``save_every`` insertions."""

    def __init__(
        self,
        capacity: int = 500,
        *,
        path: str | Path | None = None,
        save_every: int = 10,
        autoload: bool = True,
    ) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        if save_every <= 0:
            raise ValueError("save_every must be > 0")
        self.capacity = capacity
        self.path = Path(path) if path is not None else None
        self.save_every = save_every

        self._entries: OrderedDict[str, list[float]] = OrderedDict()
        self._lock = threading.Lock()
        self._save_lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._inserts_since_save = 0
        self._pending_saves: list[threading.Thread] = []
        # Snapshots are numbered so an older one never overwrites a newer file.
        self._snapshot_seq = 0
        self._written_seq = 0

        if autoload and self.path is not None:
            self.load()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def keys(self) -> list[str]:
        """Keys from least to most recently used."""
        with self._lock:
            return list(self._entries)

    def get(self, text: str, mode: str) -> list[float] | None:
        key = make_key(text, mode)
        with self._lock:
            vector = self._entries.get(key)
            if vector is None:
                self._misses += 1
                return None
            self._entries.move_to_end(key)
            self._hits += 1
            return list(vector)

    def put(self, text: str, mode: str, vector: Sequence[float]) -> None:
        key = make_key(text, mode)
        with self._lock:
            self._entries[key] = list(vector)
            self._entries.move_to_end(key)
            while len(self._entries) > self.capacity:
                self._entries.popitem(last=False)
                self._evictions += 1
            self._inserts_since_save += 1
            due = self.path is not None and self._inserts_since_save >= self.save_every
            if due:
                self._inserts_since_save = 0
                payload, seq = self._snapshot_locked()
        if due:
            self._save_in_background(payload, seq)

    def discard_mode(self, mode: str) -> int:
        """Drop every entry produced by ``mode``; returns how many were removed."""
        suffix = f":{mode}"
        with self._lock:
            stale = [key for key in self._entries if key.endswith(suffix)]
            for key in stale:
                del self._entries[key]
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._inserts_since_save = 0

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                size=len(self._entries),
                capacity=self.capacity,
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
            )

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_payload(self) -> dict[str, Any]:
        with self._lock:
            return self._payload_locked()

    def _snapshot_locked(self) -> tuple[dict[str, Any], int]:
        self._snapshot_seq += 1
        return self._payload_locked(), self._snapshot_seq

    def _payload_locked(self) -> dict[str, Any]:
        return {
            "version": CACHE_FORMAT_VERSION,
            "savedAt": datetime.now(timezone.utc).isoformat(),
            "entries": [[key, list(vector)] for key, vector in self._entries.items()],
            "stats": {
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
            },
        }

    def load_payload(self, payload: Any) -> int:
        """Replace the contents with a serialized payload; returns entries loaded."""
        if not isinstance(payload, dict) or payload.get("version") != CACHE_FORMAT_VERSION:
            raise ValueError("Unsupported query cache payload")
        entries = payload.get("entries")
        if not isinstance(entries, list):
            raise ValueError("Query cache payload has no entry list")

        restored: OrderedDict[str, list[float]] = OrderedDict()
        for entry in entries:
            if (
                not isinstance(entry, list)
                or len(entry) != 2
                or not isinstance(entry[0], str)
                or not isinstance(entry[1], list)
            ):
                raise ValueError("Malformed query cache entry")
            restored[entry[0]] = [float(v) for v in entry[1]]
            restored.move_to_end(entry[0])
        # Oldest entries are first in the file; keep the newest when over capacity.
        while len(restored) > self.capacity:
            restored.popitem(last=False)

        with self._lock:
            self._entries = restored
        return len(restored)

    @classmethod
    def from_payload(
        cls, payload: dict[str, Any], *, capacity: int = 500, **kwargs: Any
    ) -> "QueryEmbeddingCache":
        cache = cls(capacity, autoload=False, **kwargs)
        cache.load_payload(payload)
        return cache

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> int:
        """Load from ``path``. Missing or corrupt files leave the cache empty."""
        if self.path is None or not self.path.exists():
            return 0
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
            loaded = self.load_payload(payload)
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable query cache %s: %s", self.path, exc)
            self.clear()
            return 0
        logger.info("Loaded %d cached query embeddings from %s", loaded, self.path)
        return loaded

    def save(self) -> bool:
        """Write the cache to ``path`` synchronously. Returns False on failure."""
        if self.path is None:
            return False
        with self._lock:
            payload, seq = self._snapshot_locked()
        return self._write(payload, seq)

    def close(self) -> None:
        """Wait for background saves, then persist the final state."""
        with self._lock:
            pending, self._pending_saves = self._pending_saves, []
        for thread in pending:
            thread.join()
        self.save()

    def _save_in_background(self, payload: dict[str, Any], seq: int) -> None:
        thread = threading.Thread(
            target=self._write, args=(payload, seq), name="query-cache-save", daemon=True
        )
        with self._lock:
            self._pending_saves = [t for t in self._pending_saves if t.is_alive()]
            self._pending_saves.append(thread)
            thread.start()

    def _write(self, payload: dict[str, Any], seq: int) -> bool:
        assert self.path is not None
        with self._save_lock:
            if seq < self._written_seq:
                logger.debug("Skipping stale query cache snapshot %d", seq)
                return True
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(
                    prefix=".query-cache-", suffix=".json", dir=str(self.path.parent)
                )
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as handle:
                        json.dump(payload, handle)
                    os.replace(tmp_name, self.path)
                except BaseException:
                    Path(tmp_name).unlink(missing_ok=True)
                    raise
            except OSError as exc:
                logger.warning("Failed to save query cache to %s: %s", self.path, exc)
                return False
            self._written_seq = seq
        logger.debug("Saved %d query embeddings to %s", len(payload["entries"]), self.path)
        return True
