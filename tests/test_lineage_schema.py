import sqlite3

import pytest

from provgraph.lineage.schema import (
    EDGE_TABLE,
    SQLITE,
    VERTEX_TABLE,
    DynamicSchema,
    bind,
    create_table_statements,
    is_duplicate_column,
    placeholders,
    sanitize_column,
)


@pytest.fixture
def con(tmp_path):
    c = sqlite3.connect(str(tmp_path / "schema.sqlite"))
    for stmt in create_table_statements(SQLITE):
        c.execute(stmt)
    yield c
    c.close()


def _columns(con, table):
    return [row[1] for row in con.execute(f'PRAGMA table_info("{table}")')]


def test_sanitize_column_keeps_alphanumerics():
    assert sanitize_column("start time") == "starttime"
    assert sanitize_column("memory-address!") == "memoryaddress"
    assert sanitize_column("__") == ""


def test_ident_rejects_unsanitized_names():
    with pytest.raises(ValueError):
        SQLITE.ident('name"; DROP TABLE VERTEX; --')


def test_add_column_is_idempotent(con):
    schema = DynamicSchema(SQLITE)
    assert schema.add_column(con, VERTEX_TABLE, "command line") == "commandline"
    assert schema.add_column(con, VERTEX_TABLE, "command line") == "commandline"
    assert schema.add_column(con, "vertex", "CommandLine") == "commandline"
    assert _columns(con, VERTEX_TABLE).count("commandline") == 1


def test_duplicate_column_from_backend_counts_as_success(con):
    con.execute('ALTER TABLE "EDGE" ADD COLUMN "operation" VARCHAR(256)')
    schema = DynamicSchema(SQLITE)
    assert not schema.registry(EDGE_TABLE).known("operation")

    assert schema.add_column(con, EDGE_TABLE, "operation") == "operation"
    assert schema.registry(EDGE_TABLE).known("operation")


def test_reserved_and_empty_keys_are_skipped(con):
    schema = DynamicSchema(SQLITE)
    assert schema.add_column(con, VERTEX_TABLE, "hash") is None
    assert schema.add_column(con, EDGE_TABLE, "src Vertex Hash") is None
    assert schema.add_column(con, VERTEX_TABLE, "!!") is None
    assert _columns(con, VERTEX_TABLE) == ["vertexId", "type", "hash"]


def test_other_backend_errors_fail_the_call():
    class BrokenCursor:
        def execute(self, stmt):
            raise RuntimeError("disk I/O error")

        def close(self):
            pass

    class BrokenConnection:
        def cursor(self):
            return BrokenCursor()

    schema = DynamicSchema(SQLITE)
    assert schema.add_column(BrokenConnection(), VERTEX_TABLE, "path") is None
    assert not schema.registry(VERTEX_TABLE).known("path")


def test_duplicate_column_detection_across_drivers():
    class MySQLError(Exception):
        pass

    class PgError(Exception):
        pgcode = "42701"

    assert is_duplicate_column(MySQLError(1060, "Duplicate column name 'pid'"))
    assert is_duplicate_column(PgError("column exists"))
    assert is_duplicate_column(sqlite3.OperationalError("duplicate column name: pid"))
    assert not is_duplicate_column(sqlite3.OperationalError("no such table: VERTEX"))


def test_placeholders_follow_paramstyle():
    assert placeholders("qmark", 2) == ["?", "?"]
    assert placeholders("pyformat", 2) == ["%s", "%s"]
    assert placeholders("numeric", 2) == [":1", ":2"]
    assert bind("named", ["a", "b"]) == {"p0": "a", "p1": "b"}
    with pytest.raises(ValueError):
        placeholders("bogus", 1)
