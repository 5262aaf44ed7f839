"""
DuckDB-backed vector service for offline deployments.

Implements the same collection/namespace operations as the remote ANN
service with exact cosine similarity, so the client logic is identical
whichever backend is configured.
"""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any, Sequence

import duckdb

from .base import CollectionInfo, VectorMatch, VectorRecord

_COMPARATORS = {"$eq": "=", "$ne": "<>", "$gt": ">", "$gte": ">=", "$lt": "<", "$lte": "<="}


class DuckDBVectorBackend:
    """DuckDB persistence for collections and namespaced vectors."""

    def __init__(self, db_path: str, *, read_only: bool = False) -> None:
        self.db_path = db_path if db_path == ":memory:" else str(
            Path(db_path).expanduser().resolve()
        )
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.read_only = read_only
        self._conn = duckdb.connect(self.db_path, read_only=read_only)
        # One connection shared across threads; DuckDB connections are not thread-safe.
        self._lock = threading.Lock()
        if not read_only:
            self.initialize()

    def close(self) -> None:
        """Close the underlying DuckDB connection."""
        with self._lock:
            self._conn.close()

    def initialize(self) -> None:
        with self._lock:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS collections (
                    name VARCHAR PRIMARY KEY,
                    dimension INTEGER NOT NULL,
                    metric VARCHAR NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                );
                """
            )
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS vectors (
                    collection VARCHAR NOT NULL,
                    namespace VARCHAR NOT NULL,
                    id VARCHAR NOT NULL,
                    embedding DOUBLE[] NOT NULL,
                    metadata_json VARCHAR NOT NULL DEFAULT '{}',
                    PRIMARY KEY (collection, namespace, id)
                );
                """
            )

    def describe_collection(
        self, name: str, *, timeout: float | None = None
    ) -> CollectionInfo | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT name, dimension, metric FROM collections WHERE name = ?",
                [name],
            ).fetchone()
        if row is None:
            return None
        return CollectionInfo(
            name=str(row[0]), dimension=int(row[1]), metric=str(row[2]), ready=True
        )

    def create_collection(
        self,
        name: str,
        *,
        dimension: int,
        metric: str = "cosine",
        timeout: float | None = None,
    ) -> None:
        if metric != "cosine":
            raise ValueError(f"Unsupported metric for DuckDB backend: {metric!r}")
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO collections (name, dimension, metric)
                VALUES (?, ?, ?)
                ON CONFLICT(name) DO NOTHING
                """,
                [name, dimension, metric],
            )

    def upsert(
        self,
        name: str,
        namespace: str,
        records: Sequence[VectorRecord],
        *,
        timeout: float | None = None,
    ) -> int:
        if not records:
            return 0
        latest = {record.id: record for record in records}
        ids = list(latest)
        placeholders = ", ".join(["?"] * len(ids))

        with self._lock:
            self._conn.begin()
            try:
                # Delete + insert instead of ON CONFLICT updates on list columns.
                self._conn.execute(
                    f"""
                    DELETE FROM vectors
                    WHERE collection = ? AND namespace = ? AND id IN ({placeholders})
                    """,
                    [name, namespace, *ids],
                )
                self._conn.executemany(
                    """
                    INSERT INTO vectors (collection, namespace, id, embedding, metadata_json)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            name,
                            namespace,
                            record.id,
                            [float(v) for v in record.values],
                            json.dumps(record.metadata, sort_keys=True),
                        )
                        for record in latest.values()
                    ],
                )
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise
        return len(latest)

    def query(
        self,
        name: str,
        namespace: str,
        vector: Sequence[float],
        *,
        top_k: int,
        filter: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> list[VectorMatch]:
        where_sql = ""
        filter_params: list[Any] = []
        if filter:
            clause, filter_params = self._filter_clause(filter)
            where_sql = f" AND {clause}"

        sql = f"""
            SELECT id, score, metadata_json FROM (
                SELECT
                    id,
                    metadata_json,
                    list_cosine_similarity(embedding, ?::DOUBLE[]) AS score
                FROM vectors
                WHERE collection = ? AND namespace = ?{where_sql}
            ) scored
            WHERE score IS NOT NULL AND NOT isnan(score)
            ORDER BY score DESC, id ASC
            LIMIT ?
        """
        params: list[Any] = [[float(v) for v in vector], name, namespace]
        params.extend(filter_params)
        params.append(top_k)

        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        return [
            VectorMatch(id=str(row[0]), score=float(row[1]), metadata=json.loads(str(row[2])))
            for row in rows
        ]

    def delete_all(self, name: str, namespace: str, *, timeout: float | None = None) -> None:
        with self._lock:
            self._conn.execute(
                "DELETE FROM vectors WHERE collection = ? AND namespace = ?",
                [name, namespace],
            )

    def count(self, name: str, namespace: str, *, timeout: float | None = None) -> int:
        with self._lock:
            row = self._conn.execute(
                "SELECT COUNT(*) FROM vectors WHERE collection = ? AND namespace = ?",
                [name, namespace],
            ).fetchone()
        return int(row[0]) if row else 0

    @classmethod
    def _filter_clause(cls, filter: dict[str, Any]) -> tuple[str, list[Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        for field, spec in filter.items():
            if field == "$and":
                for sub_filter in spec:
                    sql, sub_params = cls._filter_clause(sub_filter)
                    clauses.append(sql)
                    params.extend(sub_params)
                continue
            if not isinstance(spec, dict):
                spec = {"$eq": spec}
            for operator, value in spec.items():
                sql, op_params = cls._metadata_clause(field=field, operator=operator, value=value)
                clauses.append(sql)
                params.extend(op_params)
        if not clauses:
            return "TRUE", []
        return "(" + " AND ".join(clauses) + ")", params

    @staticmethod
    def _metadata_clause(*, field: str, operator: str, value: Any) -> tuple[str, list[Any]]:
        json_expr = "json_extract_string(metadata_json, ?)"
        json_path = f"$.{field}"

        if operator in {"$eq", "$ne"}:
            comparator = _COMPARATORS[operator]
            if isinstance(value, bool):
                return (
                    f"lower(coalesce({json_expr}, '')) {comparator} ?",
                    [json_path, "true" if value else "false"],
                )
            return (
                f"lower(coalesce({json_expr}, '')) {comparator} lower(?)",
                [json_path, str(value)],
            )

        if operator in {"$gt", "$gte", "$lt", "$lte"}:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"Operator {operator!r} requires a numeric value for {field!r}")
            return (
                f"try_cast({json_expr} AS DOUBLE) {_COMPARATORS[operator]} ?",
                [json_path, float(value)],
            )

        if operator == "$in":
            if not isinstance(value, list) or not value:
                raise ValueError(f"`$in` filter for field {field!r} has no values.")
            placeholders = ", ".join(["?"] * len(value))
            return (
                f"lower(coalesce({json_expr}, '')) IN ({placeholders})",
                [json_path, *[str(item).lower() for item in value]],
            )

        raise ValueError(f"Unsupported metadata operator: {operator!r}")
