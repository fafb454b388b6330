"""Candidate retrieval for context assembly.

Three candidate streams feed the assembler:

  - hot window: the most recent chunks of the paths the user has open,
    regardless of similarity;
  - retrieved: dense nearest neighbours of the prompt embedding
    (sqlite-vec, cosine), scoped to one project;
  - conversation: the most recent conversation chunks.

Similarity is ``1 - cosine distance``; candidates below ``min_relevance``
are dropped. Binary placeholders are never candidates, and conversation
chunks only arrive through their own stream.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from contextpack.db.models import Chunk, ChunkKind
from contextpack.db.repository import Repository
from contextpack.rag.llm_client import is_zero_vector

logger = logging.getLogger(__name__)

PRIORITY_HOT = "hot_window"
PRIORITY_RETRIEVED = "retrieved"
PRIORITY_CONVERSATION = "conversation"


@dataclass
class Candidate:
    """A chunk offered to the assembler.

    Attributes:
        chunk: The stored chunk (text not yet loaded).
        score: Cosine similarity to the prompt; 1.0 for hot-window chunks.
        is_hot_path: True if the chunk's path is (under) an open path.
        priority: Stream the candidate came from.
    """

    chunk: Chunk
    score: float = 0.0
    is_hot_path: bool = False
    priority: str = PRIORITY_RETRIEVED


def matches_hot_path(path: str, hot_paths: Iterable[str]) -> bool:
    """True if *path* equals a hot path or lies under a hot directory."""
    for hot in hot_paths:
        if not hot:
            continue
        if path == hot or path.startswith(hot.rstrip("/") + "/"):
            return True
    return False


def retrieve(
    repo: Repository,
    vec_table: str,
    project_id: str,
    query_embedding: list[float],
    hot_paths: Iterable[str] = (),
    top_k: int = 500,
    min_relevance: float = 0.3,
) -> list[Candidate]:
    """Return similar chunks of *project_id*: hot paths first, then by score.

    Ties on score are broken by recency (newest first). An all-zero query
    embedding (embedding provider down) yields no candidates.
    """
    if is_zero_vector(query_embedding):
        logger.warning("Query embedding unavailable; skipping similarity search")
        return []

    hot = list(hot_paths)
    candidates = [
        Candidate(
            chunk=chunk,
            score=1.0 - distance,
            is_hot_path=matches_hot_path(chunk.path, hot),
        )
        for chunk, distance in repo.search_vec(vec_table, query_embedding, project_id, top_k)
        if 1.0 - distance >= min_relevance and chunk.kind is not ChunkKind.CONVERSATION
    ]
    candidates.sort(key=lambda c: c.chunk.created_at or "", reverse=True)
    candidates.sort(key=lambda c: (not c.is_hot_path, -c.score))
    logger.debug("Retrieved %d candidates for project %s", len(candidates), project_id)
    return candidates


def retrieve_hot_window(
    repo: Repository,
    project_id: str,
    hot_paths: Iterable[str],
    window: int = 10,
) -> list[Candidate]:
    """The *window* most recent chunks of the hot paths, in (path, offset) order."""
    chunks = repo.hot_window_chunks(project_id, list(hot_paths), window)
    chunks.sort(key=lambda c: (c.path, c.offset))
    return [
        Candidate(chunk=c, score=1.0, is_hot_path=True, priority=PRIORITY_HOT)
        for c in chunks
    ]


def retrieve_conversation(
    repo: Repository,
    project_id: str,
    max_messages: int = 10,
) -> list[Candidate]:
    """The most recent conversation chunks, oldest first."""
    chunks = repo.recent_chunks_by_kind(project_id, ChunkKind.CONVERSATION, max_messages)
    chunks.reverse()
    return [Candidate(chunk=c, priority=PRIORITY_CONVERSATION) for c in chunks]
