"""Tests for the forward-only migration runner and schema entry point."""

from __future__ import annotations

import sqlite3

import pytest

from contextpack.db.connection import Database
from contextpack.db.migrations import MIGRATIONS, run_migrations
from contextpack.db.schema import CURRENT_VERSION, initialize


@pytest.fixture
def conn(tmp_path):
    c = Database(tmp_path / ".contextpack.db").connect()
    yield c
    c.close()


def _tables(conn) -> set[str]:
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
    return {r[0] for r in rows}


def test_creates_all_tables(conn):
    run_migrations(conn)
    assert {"schema_version", "chunks", "summaries", "context_sessions", "cache_entries"} <= _tables(conn)


def test_records_current_version(conn):
    initialize(conn)
    version = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()[0]
    assert version == CURRENT_VERSION == MIGRATIONS[-1][0]


def test_idempotent(conn):
    run_migrations(conn)
    run_migrations(conn)
    count = conn.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0]
    assert count == len(MIGRATIONS)


def test_content_hash_is_unique(conn):
    initialize(conn)
    sql = (
        "INSERT INTO chunks (chunk_id, project_id, path, token_offset, token_count, "
        "content_hash, kind, blob_key) VALUES (?, 'P1', 'a.py', 0, 1, 'h1', 'code', 'k')"
    )
    conn.execute(sql, ("c1",))
    with pytest.raises(sqlite3.IntegrityError):
        conn.execute(sql, ("c2",))


def test_kind_is_constrained(conn):
    initialize(conn)
    with pytest.raises(sqlite3.IntegrityError):
        conn.execute(
            "INSERT INTO chunks (chunk_id, project_id, path, token_offset, token_count, "
            "content_hash, kind, blob_key) VALUES ('c1', 'P1', 'a.py', 0, 1, 'h1', 'image', 'k')"
        )


def test_summary_level_is_constrained(conn):
    initialize(conn)
    with pytest.raises(sqlite3.IntegrityError):
        conn.execute(
            "INSERT INTO summaries (summary_id, project_id, path, level, token_count, blob_key) "
            "VALUES ('s1', 'P1', 'a.py', 'module', 1, 'k')"
        )


def test_created_at_has_millisecond_precision(conn):
    initialize(conn)
    conn.execute(
        "INSERT INTO chunks (chunk_id, project_id, path, token_offset, token_count, "
        "content_hash, kind, blob_key) VALUES ('c1', 'P1', 'a.py', 0, 1, 'h1', 'code', 'k')"
    )
    created = conn.execute("SELECT created_at FROM chunks").fetchone()[0]
    assert "." in created
