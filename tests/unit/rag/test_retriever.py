"""Tests for similarity, hot-window and conversation retrieval."""

from __future__ import annotations

import pytest

from contextpack.db.models import Chunk, ChunkKind
from contextpack.db.repository import Repository
from contextpack.db.vectors import ensure_vec_table
from contextpack.rag.retriever import (
    PRIORITY_CONVERSATION,
    PRIORITY_HOT,
    PRIORITY_RETRIEVED,
    matches_hot_path,
    retrieve,
    retrieve_conversation,
    retrieve_hot_window,
)


@pytest.fixture
def repo(tmp_db):
    return Repository(tmp_db)


@pytest.fixture
def vec_table(tmp_db):
    return ensure_vec_table(tmp_db, "test_fake_embed", 3)


def _add(repo, chunk_id, path="a.py", offset=0, kind=ChunkKind.CODE, project_id="P1"):
    chunk, _ = repo.insert_chunk_or_get(
        Chunk(
            chunk_id=chunk_id,
            project_id=project_id,
            path=path,
            offset=offset,
            token_count=10,
            content_hash=f"hash-{chunk_id}",
            kind=kind,
            language="python",
            blob_key=f"chunks/{chunk_id}.txt",
        )
    )
    return chunk


def _embed(repo, vec_table, chunk, vector):
    repo.add_embedding(vec_table, chunk.rowid, chunk.project_id, vector)


# ------------------------------------------------------------------
# matches_hot_path
# ------------------------------------------------------------------


@pytest.mark.parametrize(
    "path,hot,expected",
    [
        ("src/a.py", ["src/a.py"], True),
        ("src/a.py", ["src"], True),
        ("src/a.py", ["src/"], True),
        ("srcx/a.py", ["src"], False),
        ("src/a.py", ["src/b.py"], False),
        ("src/a.py", [], False),
        ("src/a.py", [""], False),
    ],
)
def test_matches_hot_path(path, hot, expected):
    assert matches_hot_path(path, hot) is expected


# ------------------------------------------------------------------
# retrieve
# ------------------------------------------------------------------


def test_retrieve_orders_by_similarity(repo, vec_table):
    close = _add(repo, "close", path="a.py")
    far = _add(repo, "far", path="b.py")
    _embed(repo, vec_table, close, [1.0, 0.0, 0.0])
    _embed(repo, vec_table, far, [0.6, 0.8, 0.0])

    candidates = retrieve(repo, vec_table, "P1", [1.0, 0.0, 0.0])

    assert [c.chunk.chunk_id for c in candidates] == ["close", "far"]
    assert candidates[0].score == pytest.approx(1.0, abs=1e-5)
    assert candidates[1].score == pytest.approx(0.6, abs=1e-5)
    assert all(c.priority == PRIORITY_RETRIEVED for c in candidates)


def test_retrieve_drops_below_min_relevance(repo, vec_table):
    orthogonal = _add(repo, "orthogonal")
    _embed(repo, vec_table, orthogonal, [0.0, 1.0, 0.0])
    assert retrieve(repo, vec_table, "P1", [1.0, 0.0, 0.0], min_relevance=0.3) == []


def test_retrieve_hot_paths_first(repo, vec_table):
    best = _add(repo, "best", path="b.py")
    hot = _add(repo, "hot", path="src/a.py")
    _embed(repo, vec_table, best, [1.0, 0.0, 0.0])
    _embed(repo, vec_table, hot, [0.6, 0.8, 0.0])

    candidates = retrieve(repo, vec_table, "P1", [1.0, 0.0, 0.0], hot_paths=["src"])

    assert [c.chunk.chunk_id for c in candidates] == ["hot", "best"]
    assert candidates[0].is_hot_path
    assert not candidates[1].is_hot_path


def test_retrieve_ties_broken_by_recency(repo, vec_table, tmp_db):
    older = _add(repo, "older", path="a.py")
    newer = _add(repo, "newer", path="b.py")
    tmp_db.execute("UPDATE chunks SET created_at = '2020-01-01 00:00:00.000' WHERE chunk_id = 'older'")
    tmp_db.commit()
    _embed(repo, vec_table, older, [1.0, 0.0, 0.0])
    _embed(repo, vec_table, newer, [1.0, 0.0, 0.0])

    candidates = retrieve(repo, vec_table, "P1", [1.0, 0.0, 0.0])

    assert [c.chunk.chunk_id for c in candidates] == ["newer", "older"]


def test_retrieve_respects_top_k(repo, vec_table):
    for i in range(5):
        _embed(repo, vec_table, _add(repo, f"c{i}", offset=i), [1.0, 0.1 * i, 0.0])
    assert len(retrieve(repo, vec_table, "P1", [1.0, 0.0, 0.0], top_k=2)) == 2


def test_retrieve_is_project_scoped(repo, vec_table):
    mine = _add(repo, "mine", project_id="P1")
    theirs = _add(repo, "theirs", project_id="P2")
    _embed(repo, vec_table, mine, [1.0, 0.0, 0.0])
    _embed(repo, vec_table, theirs, [1.0, 0.0, 0.0])
    ids = [c.chunk.chunk_id for c in retrieve(repo, vec_table, "P1", [1.0, 0.0, 0.0])]
    assert ids == ["mine"]


def test_retrieve_zero_query_returns_nothing(repo, vec_table):
    chunk = _add(repo, "c1")
    _embed(repo, vec_table, chunk, [1.0, 0.0, 0.0])
    assert retrieve(repo, vec_table, "P1", [0.0, 0.0, 0.0]) == []


# ------------------------------------------------------------------
# Hot window + conversation
# ------------------------------------------------------------------


def test_hot_window_sorted_by_path_then_offset(repo):
    _add(repo, "b0", path="src/b.py", offset=0)
    _add(repo, "a1", path="src/a.py", offset=7744)
    _add(repo, "a0", path="src/a.py", offset=0)
    _add(repo, "other", path="docs/x.md")

    candidates = retrieve_hot_window(repo, "P1", ["src"], window=10)

    assert [c.chunk.chunk_id for c in candidates] == ["a0", "a1", "b0"]
    assert all(c.priority == PRIORITY_HOT and c.is_hot_path for c in candidates)
    assert all(c.score == 1.0 for c in candidates)


def test_hot_window_limited_to_most_recent(repo):
    for i in range(4):
        _add(repo, f"c{i}", path="a.py", offset=i * 100)
    candidates = retrieve_hot_window(repo, "P1", ["a.py"], window=2)
    assert [c.chunk.chunk_id for c in candidates] == ["c2", "c3"]


def test_hot_window_without_paths(repo):
    _add(repo, "c1")
    assert retrieve_hot_window(repo, "P1", []) == []


def test_conversation_oldest_first(repo):
    for i in range(4):
        _add(repo, f"m{i}", path="conversation", offset=i, kind=ChunkKind.CONVERSATION)
    _add(repo, "code")

    candidates = retrieve_conversation(repo, "P1", max_messages=3)

    assert [c.chunk.chunk_id for c in candidates] == ["m1", "m2", "m3"]
    assert all(c.priority == PRIORITY_CONVERSATION for c in candidates)


def test_retrieve_leaves_conversation_to_its_stream(repo, vec_table):
    msg = _add(repo, "msg", path="conversation", kind=ChunkKind.CONVERSATION)
    code = _add(repo, "code")
    _embed(repo, vec_table, msg, [1.0, 0.0, 0.0])
    _embed(repo, vec_table, code, [1.0, 0.0, 0.0])
    ids = [c.chunk.chunk_id for c in retrieve(repo, vec_table, "P1", [1.0, 0.0, 0.0])]
    assert ids == ["code"]
