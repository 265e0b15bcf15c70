"""
Relational lineage store.

Persists vertices and edges into two append-only tables whose annotation
columns grow on demand, and answers lineage queries by a bounded
breadth-first walk over the stored edges.
"""

from __future__ import annotations

import importlib
import logging
import re
import threading
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from typing import Any

from provgraph.core.models import Edge, Graph, Vertex
from provgraph.core.storage import AbstractStorage
from provgraph.errors import ConfigurationError
from provgraph.settings import settings

from .config import ConnectionArgs
from .schema import (
    EDGE_TABLE,
    VERTEX_TABLE,
    Dialect,
    DynamicSchema,
    bind,
    create_table_statements,
    dialect_for,
    placeholders,
    sanitize_column,
    statement_scope,
)

logger = logging.getLogger(__name__)

_PREDICATE_RE = re.compile(r"^\s*([^:=]+?)\s*[:=]\s*(.*?)\s*$")

ANCESTORS = "a"
DESCENDANTS = "d"


def parse_predicate(expression: str) -> tuple[str, str]:
    """Split a single `key:value` (or `key=value`) predicate."""
    m = _PREDICATE_RE.match(expression or "")
    if not m:
        raise ValueError(f"expected 'key:value', got {expression!r}")
    key, value = m.group(1), m.group(2)
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
        value = value[1:-1]
    return key, value


class SQLLineageStore(AbstractStorage):
    """Lineage store over any DB-API 2.0 driver (SQLite by default).

    One connection per instance, autocommit off, committed before every
    read. A lock serializes connection use so the instance can be shared
    by several producer threads.
    """

    def __init__(
        self,
        *,
        direction_ancestors: str | None = None,
        direction_descendants: str | None = None,
        strict_writes: bool | None = None,
    ):
        self.direction_ancestors = (direction_ancestors or settings.direction_ancestors).lower()
        self.direction_descendants = (direction_descendants or settings.direction_descendants).lower()
        self.strict_writes = settings.strict_writes if strict_writes is None else strict_writes

        self.args: ConnectionArgs | None = None
        self.dialect: Dialect | None = None
        self.schema: DynamicSchema | None = None
        self._driver: Any = None
        self._con: Any = None
        self._lock = threading.RLock()

    # ---- lifecycle ----

    def initialize(self, arguments: str = "") -> bool:
        try:
            self.args = ConnectionArgs.parse(arguments)
            try:
                self._driver = importlib.import_module(self.args.driver)
            except ImportError as e:
                raise ConfigurationError(f"database driver {self.args.driver!r} not available") from e
            self.dialect = dialect_for(self.args.driver)
            self.schema = DynamicSchema(self.dialect)
            self._con = self._driver.connect(self.args.url, **self.args.connect_kwargs())
            if hasattr(self._con, "autocommit") and self._con.autocommit is True:
                self._con.autocommit = False

            with self._cursor() as cur:
                for stmt in create_table_statements(self.dialect):
                    cur.execute(stmt)
            self._con.commit()

            for table in (VERTEX_TABLE, EDGE_TABLE):
                self.schema.registry(table).seed(self._table_columns(table))

            logger.info("Lineage store opened %s via %s", self.args.url, self.args.driver)
            return True
        except ConfigurationError as e:
            logger.error("Invalid lineage store configuration: %s", e)
            return False
        except Exception:
            logger.exception("Failed to initialize lineage store")
            return False

    def shutdown(self) -> bool:
        if self._con is None:
            return True
        with self._lock:
            try:
                self._con.commit()
                self._con.close()
                return True
            except Exception:
                logger.exception("Failed to shut down lineage store")
                return False
            finally:
                self._con = None

    # ---- helpers ----

    @contextmanager
    def _cursor(self) -> Iterator[Any]:
        if self._con is None:
            raise RuntimeError("lineage store is not initialized")
        with self._lock:
            cur = self._con.cursor()
            try:
                yield cur
            finally:
                cur.close()

    def _require_schema(self) -> DynamicSchema:
        if self.dialect is None or self.schema is None:
            raise RuntimeError("lineage store is not initialized")
        return self.schema

    def _q(self, name: str) -> str:
        self._require_schema()
        return self.dialect.ident(name)

    def _ph(self, n: int) -> list[str]:
        return placeholders(self._driver.paramstyle, n)

    def _execute(self, cur: Any, stmt: str, values: Sequence[Any] = ()) -> None:
        cur.execute(stmt, bind(self._driver.paramstyle, values))

    def _table_columns(self, table: str) -> list[str]:
        with self._cursor() as cur:
            cur.execute(f"SELECT * FROM {self._q(table)} WHERE 1 = 0")
            return [d[0] for d in cur.description]

    def _select(self, table: str, where: Mapping[str, Any], *, order_by: str | None = None) -> list[dict[str, Any]]:
        clauses = []
        for col, ph in zip(where, self._ph(len(where))):
            clauses.append(f"{self._q(col)} = {ph}")
        stmt = f"SELECT * FROM {self._q(table)}"
        if clauses:
            stmt += " WHERE " + " AND ".join(clauses)
        if order_by:
            stmt += f" ORDER BY {self._q(order_by)}"
        with self._cursor() as cur:
            self._execute(cur, stmt, list(where.values()))
            names = [d[0] for d in cur.description]
            return [dict(zip(names, row)) for row in cur.fetchall()]

    def commit(self) -> None:
        with self._lock:
            if self._con is not None:
                self._con.commit()

    # ---- schema ----

    def add_column(self, table: str, key: str) -> bool:
        """Ensure an annotation column exists; duplicate-column races count as success."""
        if self.schema is None:
            return False
        with self._lock:
            return self.schema.add_column(self._con, table, key) is not None

    def _annotation_columns(self, table: str, annotations: Mapping[str, str]) -> tuple[list[str], list[str]]:
        schema = self._require_schema()
        columns: list[str] = []
        values: list[str] = []
        seen: set[str] = set()
        for key, value in annotations.items():
            if key.lower() == "type":
                continue
            column = schema.add_column(self._con, table, key)
            if column is None or column.lower() in seen:
                continue
            seen.add(column.lower())
            columns.append(column)
            values.append(value)
        return columns, values

    # ---- writes ----

    def _insert(self, table: str, columns: list[str], values: list[Any]) -> bool:
        stmt = (
            f"INSERT INTO {self._q(table)} ({', '.join(self._q(c) for c in columns)}) "
            f"VALUES ({', '.join(self._ph(len(values)))})"
        )
        try:
            with self._cursor() as cur, statement_scope(cur, self.dialect):
                self._execute(cur, stmt, values)
            return True
        except Exception:
            logger.exception("Failed to insert into %s", table)
            # Default policy never blocks the audit stream on a bad row.
            return not self.strict_writes

    def put_vertex(self, vertex: Vertex) -> bool:
        if self._con is None:
            logger.error("put_vertex called before initialize")
            return False
        with self._lock:
            columns, values = self._annotation_columns(VERTEX_TABLE, vertex.annotations)
            return self._insert(
                VERTEX_TABLE,
                ["type", "hash", *columns],
                [vertex.type, vertex.content_hash, *values],
            )

    def put_edge(self, edge: Edge) -> bool:
        if self._con is None:
            logger.error("put_edge called before initialize")
            return False
        with self._lock:
            columns, values = self._annotation_columns(EDGE_TABLE, edge.annotations)
            return self._insert(
                EDGE_TABLE,
                ["type", "hash", "srcVertexHash", "dstVertexHash", *columns],
                [
                    edge.type,
                    edge.content_hash,
                    edge.source.content_hash,
                    edge.destination.content_hash,
                    *values,
                ],
            )

    # ---- reads ----

    @staticmethod
    def _row_to_vertex(row: Mapping[str, Any]) -> tuple[str, Vertex]:
        annotations = {}
        for k, v in row.items():
            if k == "type" or v is None or str(v) == "":
                continue
            annotations[k] = str(v)
        return str(row["hash"]), Vertex(type=str(row["type"]), annotations=annotations)

    @staticmethod
    def _row_to_edge(row: Mapping[str, Any], source: Vertex, destination: Vertex) -> tuple[str, Edge]:
        annotations = {}
        for k, v in row.items():
            if k in ("type", "srcVertexHash", "dstVertexHash") or v is None or str(v) == "":
                continue
            annotations[k] = str(v)
        edge = Edge(type=str(row["type"]), source=source, destination=destination, annotations=annotations)
        return str(row["hash"]), edge

    def _resolve_vertex_predicate(self, expression: str) -> tuple[str, str] | None:
        """Map a predicate onto an existing VERTEX column, or None if no column matches."""
        schema = self._require_schema()
        key, value = parse_predicate(expression)
        column = schema.registry(VERTEX_TABLE).resolve(sanitize_column(key))
        if column is None:
            return None
        return column, value

    def get_vertices(self, expression: str) -> Graph | None:
        """Return every stored vertex matching a single `key:value` predicate."""
        if self._con is None:
            logger.error("get_vertices called before initialize")
            return None
        try:
            self.commit()
            graph = Graph()
            resolved = self._resolve_vertex_predicate(expression)
            if resolved is None:
                logger.info("No vertex column matches predicate %r", expression)
                return graph
            column, value = resolved
            for row in self._select(VERTEX_TABLE, {column: value}, order_by="vertexId"):
                key, vertex = self._row_to_vertex(row)
                graph.add_vertex(vertex, key=key)
            return graph
        except ValueError as e:
            logger.warning("Invalid vertex predicate: %s", e)
            return None
        except Exception:
            logger.exception("Failed to query vertices for %r", expression)
            return None

    def _vertex_by_hash(self, digest: str) -> Vertex | None:
        rows = self._select(VERTEX_TABLE, {"hash": digest}, order_by="vertexId")
        if not rows:
            return None
        return self._row_to_vertex(rows[0])[1]

    def _terminating_set(self, expression: str | None) -> set[str]:
        if expression is None or expression.strip().lower() == "null" or not expression.strip():
            return set()
        resolved = self._resolve_vertex_predicate(expression)
        if resolved is None:
            return set()
        column, value = resolved
        return {str(r["hash"]) for r in self._select(VERTEX_TABLE, {column: value})}

    def _direction(self, direction: str) -> str | None:
        d = (direction or "").strip().lower()
        if not d:
            return None
        if self.direction_ancestors.startswith(d):
            return ANCESTORS
        if self.direction_descendants.startswith(d):
            return DESCENDANTS
        return None

    def get_lineage(
        self,
        vertex_id: int,
        depth: int,
        direction: str,
        terminating_expression: str | None = None,
    ) -> Graph | None:
        """Breadth-first lineage walk from the vertex with row id `vertex_id`.

        `ancestors` follows edges whose source is on the frontier, towards
        causes; `descendants` follows edges whose destination is on the
        frontier, towards effects. Vertices matching `terminating_expression`
        are included but never expanded. A negative depth walks until the
        frontier is exhausted. Each hash is expanded at most once, so cycles
        terminate. Nothing is written to the store.
        """
        if self._con is None:
            logger.error("get_lineage called before initialize")
            return None

        dir_ = self._direction(direction)
        if dir_ is None:
            logger.warning("Unknown lineage direction %r", direction)
            return None

        try:
            depth = int(depth)
            self.commit()
            rows = self._select(VERTEX_TABLE, {"vertexId": int(vertex_id)})
            if not rows:
                logger.warning("No vertex with id %s", vertex_id)
                return None
            start_hash, start = self._row_to_vertex(rows[0])
            terminating = self._terminating_set(terminating_expression)
        except ValueError as e:
            logger.warning("Invalid lineage query: %s", e)
            return None
        except Exception:
            logger.exception("Failed to start lineage query from vertex %s", vertex_id)
            return None

        graph = Graph()
        graph.add_vertex(start, key=start_hash)
        lookup: dict[str, Vertex] = {start_hash: start}
        frontier: set[str] = {start_hash}
        done: set[str] = set()

        match_col, far_col = (
            ("srcVertexHash", "dstVertexHash") if dir_ == ANCESTORS else ("dstVertexHash", "srcVertexHash")
        )

        try:
            while frontier and depth != 0:
                done |= frontier
                next_frontier: set[str] = set()
                for current in sorted(frontier):
                    for row in self._select(EDGE_TABLE, {match_col: current}, order_by="edgeId"):
                        far = str(row[far_col])
                        other = lookup.get(far)
                        if other is None:
                            other = self._vertex_by_hash(far)
                            if other is None:
                                logger.warning("Edge %s points at unknown vertex %s", row.get("edgeId"), far)
                                continue
                            lookup[far] = other
                        graph.add_vertex(other, key=far)

                        src, dst = (lookup[current], other) if dir_ == ANCESTORS else (other, lookup[current])
                        key, edge = self._row_to_edge(row, src, dst)
                        graph.add_edge(edge, key=key)

                        if far not in done and far not in terminating:
                            next_frontier.add(far)
                frontier = next_frontier
                depth -= 1
        except Exception:
            logger.exception("Lineage traversal from vertex %s failed", vertex_id)
            return None

        return graph
