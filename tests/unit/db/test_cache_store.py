"""Tests for the SQLite-backed TTL cache store."""

from __future__ import annotations

import pytest

from contextpack.db.cache import SqliteCacheStore, glob_escape


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(tmp_db, clock):
    return SqliteCacheStore(tmp_db, clock=clock)


def test_get_missing_returns_none(cache):
    assert cache.get("context:P1:x") is None


def test_set_and_get(cache):
    cache.set_with_ttl("context:P1:x", "payload", 60)
    assert cache.get("context:P1:x") == "payload"


def test_set_overwrites_value_and_expiry(cache, clock):
    cache.set_with_ttl("k", "v1", 10)
    cache.set_with_ttl("k", "v2", 100)
    clock.now += 50
    assert cache.get("k") == "v2"


def test_expired_entry_reads_as_missing(cache, clock):
    cache.set_with_ttl("k", "v", 60)
    clock.now += 60
    assert cache.get("k") is None


def test_expired_entry_is_purged_on_read(cache, clock, tmp_db):
    cache.set_with_ttl("k", "v", 1)
    clock.now += 5
    cache.get("k")
    assert tmp_db.execute("SELECT COUNT(*) FROM cache_entries").fetchone()[0] == 0


def test_keys_glob(cache):
    cache.set_with_ttl("context:P1:a", "1", 60)
    cache.set_with_ttl("context:P1:b", "2", 60)
    cache.set_with_ttl("context:P2:a", "3", 60)
    assert cache.keys("context:P1:*") == ["context:P1:a", "context:P1:b"]


def test_keys_skips_expired(cache, clock):
    cache.set_with_ttl("context:P1:a", "1", 10)
    cache.set_with_ttl("context:P1:b", "2", 100)
    clock.now += 20
    assert cache.keys("context:P1:*") == ["context:P1:b"]


def test_delete(cache):
    cache.set_with_ttl("a", "1", 60)
    cache.set_with_ttl("b", "2", 60)
    assert cache.delete("a", "b", "missing") == 2
    assert cache.get("a") is None


def test_delete_nothing(cache):
    assert cache.delete() == 0


def test_purge_expired(cache, clock):
    cache.set_with_ttl("a", "1", 10)
    cache.set_with_ttl("b", "2", 100)
    clock.now += 20
    assert cache.purge_expired() == 1
    assert cache.get("b") == "2"


def test_glob_escape_matches_literally(cache):
    cache.set_with_ttl("context:P*:a", "1", 60)
    cache.set_with_ttl("context:P1:a", "2", 60)
    assert cache.keys(f"context:{glob_escape('P*')}:*") == ["context:P*:a"]


def test_glob_escape():
    assert glob_escape("a*b?c[d") == "a[*]b[?]c[[]d"
    assert glob_escape("plain") == "plain"
