"""Relational layout of the lineage store and its lazily grown columns.

Annotation keys are unknown in advance, so each table starts with a fixed
set of key columns and gains one `VARCHAR(256)` column per annotation key
the first time it is seen. Identifiers are restricted to `[A-Za-z0-9]` and
always quoted; values are always bound parameters.
"""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

VERTEX_TABLE = "VERTEX"
EDGE_TABLE = "EDGE"

VERTEX_KEY_COLUMNS = ("vertexId", "type", "hash")
EDGE_KEY_COLUMNS = ("edgeId", "type", "hash", "srcVertexHash", "dstVertexHash")

ANNOTATION_COLUMN_TYPE = "VARCHAR(256)"

# "column already exists": MySQL 1060, H2 42121, PostgreSQL 42701, ODBC 42S21
DUPLICATE_COLUMN_CODES = {1060, 42121, "42121", "42701", "42S21"}

_IDENT_RE = re.compile(r"^[A-Za-z0-9]+$")
_STRIP_RE = re.compile(r"[^A-Za-z0-9]+")


def sanitize_column(key: str) -> str:
    return _STRIP_RE.sub("", key)


@dataclass(frozen=True)
class Dialect:
    name: str
    id_column: str
    quote: str = '"'
    # a failed statement poisons the whole transaction until it is rolled back
    aborts_on_error: bool = False

    def ident(self, name: str) -> str:
        if not _IDENT_RE.match(name):
            raise ValueError(f"invalid column identifier: {name!r}")
        return f"{self.quote}{name}{self.quote}"


SQLITE = Dialect("sqlite", "INTEGER PRIMARY KEY AUTOINCREMENT")
POSTGRES = Dialect("postgresql", "SERIAL PRIMARY KEY", aborts_on_error=True)
MYSQL = Dialect("mysql", "INT PRIMARY KEY AUTO_INCREMENT", quote="`")
ANSI = Dialect("ansi", "INTEGER GENERATED BY DEFAULT AS IDENTITY PRIMARY KEY", aborts_on_error=True)

DIALECTS = {
    "sqlite3": SQLITE,
    "psycopg2": POSTGRES,
    "psycopg": POSTGRES,
    "pymysql": MYSQL,
    "MySQLdb": MYSQL,
}


def dialect_for(driver: str) -> Dialect:
    return DIALECTS.get(driver, ANSI)


def create_table_statements(d: Dialect) -> list[str]:
    q = d.ident
    return [
        f"CREATE TABLE IF NOT EXISTS {q(VERTEX_TABLE)} ("
        f"{q('vertexId')} {d.id_column}, "
        f"{q('type')} VARCHAR(32) NOT NULL, "
        f"{q('hash')} VARCHAR(64) NOT NULL)",
        f"CREATE TABLE IF NOT EXISTS {q(EDGE_TABLE)} ("
        f"{q('edgeId')} {d.id_column}, "
        f"{q('type')} VARCHAR(32) NOT NULL, "
        f"{q('hash')} VARCHAR(64) NOT NULL, "
        f"{q('srcVertexHash')} VARCHAR(64) NOT NULL, "
        f"{q('dstVertexHash')} VARCHAR(64) NOT NULL)",
    ]


def placeholders(paramstyle: str, n: int) -> list[str]:
    if paramstyle == "qmark":
        return ["?"] * n
    if paramstyle in ("format", "pyformat"):
        return ["%s"] * n
    if paramstyle == "numeric":
        return [f":{i + 1}" for i in range(n)]
    if paramstyle == "named":
        return [f":p{i}" for i in range(n)]
    raise ValueError(f"unsupported DB-API paramstyle: {paramstyle}")


def bind(paramstyle: str, values: Sequence[Any]) -> Sequence[Any] | dict[str, Any]:
    if paramstyle == "named":
        return {f"p{i}": v for i, v in enumerate(values)}
    return tuple(values)


SAVEPOINT = "provgraphstmt"


@contextmanager
def statement_scope(cur: Any, dialect: Dialect) -> Iterator[None]:
    """Run one statement so that its failure leaves the open transaction usable.

    Backends that abort the transaction on error get a savepoint around the
    statement, rolled back on failure. Others run the statement as is.
    """
    if not dialect.aborts_on_error:
        yield
        return
    cur.execute(f"SAVEPOINT {SAVEPOINT}")
    try:
        yield
    except Exception:
        cur.execute(f"ROLLBACK TO SAVEPOINT {SAVEPOINT}")
        cur.execute(f"RELEASE SAVEPOINT {SAVEPOINT}")
        raise
    cur.execute(f"RELEASE SAVEPOINT {SAVEPOINT}")


def is_duplicate_column(exc: BaseException) -> bool:
    code = getattr(exc, "pgcode", None) or getattr(exc, "sqlstate", None)
    if code in DUPLICATE_COLUMN_CODES:
        return True
    if exc.args and exc.args[0] in DUPLICATE_COLUMN_CODES:
        return True
    msg = str(exc).lower()
    return "duplicate column" in msg or "already exists" in msg


class ColumnRegistry:
    """Known annotation columns of one table.

    Lookups are case-insensitive because most SQL engines treat column names
    that way. Check and ALTER happen under one lock; reads take it too.
    """

    def __init__(self, table: str, key_columns: Iterable[str]):
        self.table = table
        self.key_columns = tuple(key_columns)
        self._reserved = {c.lower() for c in self.key_columns}
        self._known: dict[str, str] = {}
        # reentrant: add_column resolves while already holding it
        self.lock = threading.RLock()

    def seed(self, columns: Iterable[str]) -> None:
        with self.lock:
            for c in columns:
                if c.lower() not in self._reserved:
                    self._known.setdefault(c.lower(), c)

    def is_reserved(self, column: str) -> bool:
        return column.lower() in self._reserved

    def resolve(self, column: str) -> str | None:
        """Return the stored spelling of `column` if it exists on the table."""
        for c in self.key_columns:
            if c.lower() == column.lower():
                return c
        with self.lock:
            return self._known.get(column.lower())

    def known(self, column: str) -> bool:
        with self.lock:
            return column.lower() in self._known

    def remember(self, column: str) -> None:
        with self.lock:
            self._known.setdefault(column.lower(), column)

    def columns(self) -> list[str]:
        with self.lock:
            return list(self._known.values())


class DynamicSchema:
    """Adds annotation columns on first sight, idempotently."""

    def __init__(self, dialect: Dialect):
        self.dialect = dialect
        self.tables = {
            VERTEX_TABLE: ColumnRegistry(VERTEX_TABLE, VERTEX_KEY_COLUMNS),
            EDGE_TABLE: ColumnRegistry(EDGE_TABLE, EDGE_KEY_COLUMNS),
        }

    def registry(self, table: str) -> ColumnRegistry:
        return self.tables[table.upper()]

    def add_column(self, con: Any, table: str, key: str) -> str | None:
        """Ensure `key` has a column on `table`; return its name or None.

        A duplicate-column error from the backend counts as success.
        """
        reg = self.registry(table)
        column = sanitize_column(key)
        if not column:
            logger.warning("Annotation key %r has no usable characters; skipped", key)
            return None
        if reg.is_reserved(column):
            logger.warning("Annotation key %r collides with key column of %s; skipped", key, reg.table)
            return None

        with reg.lock:
            existing = reg.resolve(column)
            if existing:
                return existing
            stmt = (
                f"ALTER TABLE {self.dialect.ident(reg.table)} "
                f"ADD COLUMN {self.dialect.ident(column)} {ANNOTATION_COLUMN_TYPE}"
            )
            cur = con.cursor()
            try:
                with statement_scope(cur, self.dialect):
                    cur.execute(stmt)
            except Exception as e:
                if not is_duplicate_column(e):
                    logger.error("Failed to add column %s to %s: %s", column, reg.table, e)
                    return None
                logger.debug("Column %s already present on %s", column, reg.table)
            finally:
                cur.close()
            reg.remember(column)
            return column
