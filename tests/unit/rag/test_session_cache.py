"""Tests for the assembled-context session cache and audit recording."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from contextpack.db.cache import SqliteCacheStore
from contextpack.db.models import ContextSession, SessionPiece
from contextpack.db.repository import Repository
from contextpack.rag.session_cache import SessionCache, record_session


@pytest.fixture
def store(tmp_db):
    return SqliteCacheStore(tmp_db)


@pytest.fixture
def cache(store):
    return SessionCache(store, ttl=60)


# ------------------------------------------------------------------
# Keys
# ------------------------------------------------------------------


def test_key_is_project_scoped(cache):
    key = cache.key_for("P1", "explain sort", 9000, ["a.py"])
    assert key.startswith("context:P1:")
    assert key != cache.key_for("P2", "explain sort", 9000, ["a.py"])


def test_key_ignores_hot_path_order(cache):
    assert cache.key_for("P1", "q", 100, ["a.py", "b.py"]) == cache.key_for(
        "P1", "q", 100, ["b.py", "a.py"]
    )


def test_key_depends_on_budget_and_hot_paths(cache):
    base = cache.key_for("P1", "q", 100, ["a.py"])
    assert base != cache.key_for("P1", "q", 200, ["a.py"])
    assert base != cache.key_for("P1", "q", 100, [])


def test_key_uses_prompt_prefix_only(store):
    cache = SessionCache(store, prompt_prefix_chars=10)
    assert cache.key_for("P1", "0123456789 tail one", 100) == cache.key_for(
        "P1", "0123456789 tail two", 100
    )
    assert cache.key_for("P1", "X123456789", 100) != cache.key_for("P1", "0123456789", 100)


# ------------------------------------------------------------------
# Get / put / invalidate
# ------------------------------------------------------------------


def test_put_and_get(cache):
    cache.put("context:P1:k", {"assembled_text": "block", "token_usage": 5})
    assert cache.get("context:P1:k") == {"assembled_text": "block", "token_usage": 5}


def test_get_miss(cache):
    assert cache.get("context:P1:missing") is None


def test_unreadable_entry_is_a_miss(cache, store):
    store.set_with_ttl("context:P1:k", "{not json", 60)
    assert cache.get("context:P1:k") is None


def test_store_failures_are_misses():
    broken = MagicMock()
    broken.get.side_effect = RuntimeError("down")
    broken.set_with_ttl.side_effect = RuntimeError("down")
    broken.keys.side_effect = RuntimeError("down")
    cache = SessionCache(broken)
    assert cache.get("context:P1:k") is None
    cache.put("context:P1:k", {"a": 1})
    assert cache.invalidate_project("P1") == 0


def test_invalidate_project(cache, store):
    cache.put("context:P1:a", {})
    store.set_with_ttl("blob:P1:c1", "text", 60)
    cache.put("context:P2:a", {})
    assert cache.invalidate_project("P1") == 2
    assert cache.get("context:P1:a") is None
    assert store.get("blob:P1:c1") is None
    assert cache.get("context:P2:a") == {}


def test_invalidate_sweeps_expired_entries(cache, store, tmp_db):
    store.set_with_ttl("context:P2:stale", "{}", 0)
    cache.put("context:P2:fresh", {})
    cache.invalidate_project("P1")
    keys = [row[0] for row in tmp_db.execute("SELECT key FROM cache_entries")]
    assert keys == ["context:P2:fresh"]


def test_invalidate_escapes_glob_in_project_id(cache):
    cache.put("context:P*:a", {})
    cache.put("context:P1:a", {})
    cache.invalidate_project("P*")
    assert cache.get("context:P1:a") == {}


# ------------------------------------------------------------------
# Audit
# ------------------------------------------------------------------


def _session():
    return ContextSession(
        session_id="sess-1",
        project_id="P1",
        pieces=[SessionPiece(id="c1", path="a.py", token_count=10, priority="retrieved")],
        total_tokens=10,
        model="gpt-4",
    )


def test_record_session(tmp_db):
    repo = Repository(tmp_db)
    assert record_session(repo, _session()) is True
    assert repo.get_session("sess-1").total_tokens == 10


def test_record_session_failure_is_logged(caplog):
    repo = MagicMock()
    repo.add_session.side_effect = RuntimeError("disk full")
    assert record_session(repo, _session()) is False
    assert "sess-1" in caplog.text
