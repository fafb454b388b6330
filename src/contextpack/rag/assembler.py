"""Context assembler: strict-priority greedy fill under a hard token budget.

Pipeline:
  1. Hot window — recent chunks of the open paths.
  2. Retrieved — similar chunks, minus hot-path chunks and anything
     already selected.
  3. Conversation — recent conversation chunks not already selected.
  4. Backfill — the project summary, then file summaries of the retrieved
     paths. Each pass runs only while more than ``backfill_free_ratio`` of
     the budget is still free.

Each stream is consumed in order and stops at the first candidate that
does not fit; nothing is ever split. Candidates a stream stopped before are
recorded as omitted, and the rendered block then carries a truncation
marker. The sum of the selected pieces' token counts never exceeds the
budget.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from contextpack.db.blobs import BlobStore
from contextpack.db.cache import CacheStore
from contextpack.db.models import SessionPiece, Summary
from contextpack.errors import BlobNotFoundError
from contextpack.rag.retriever import (
    PRIORITY_CONVERSATION,
    PRIORITY_HOT,
    PRIORITY_RETRIEVED,
    Candidate,
)

logger = logging.getLogger(__name__)

PRIORITY_PROJECT_SUMMARY = "project_summary"
PRIORITY_FILE_SUMMARY = "file_summary"

SYSTEM_PREAMBLE = (
    "You are a full-stack AI developer. Always include provenance and cite chunk ids "
    "for all factual claims. If you are unsure, state uncertainty and list the top-3 "
    "chunks that informed your answer."
)
RESPONSE_FORMAT = (
    "Return JSON with files[] or diff[], and include sources: [chunk_id,...] "
    "for each factual claim."
)

_PROVENANCE_RE = re.compile(r"^\[source: ([^,\]]+), (.*)\]$", re.MULTILINE)

TRUNCATION_MARKER = "[context truncated: {omitted} candidates omitted to fit the token budget]"


def provenance_footer(piece_id: str, path: str) -> str:
    return f"[source: {piece_id}, {path}]"


def parse_provenance(text: str) -> list[tuple[str, str]]:
    """Return the ``(id, path)`` pairs of every provenance footer in *text*."""
    return [(m.group(1), m.group(2)) for m in _PROVENANCE_RE.finditer(text)]


@dataclass
class ContextPiece:
    id: str
    path: str
    token_count: int
    priority: str
    text: str

    def to_session_piece(self) -> SessionPiece:
        return SessionPiece(
            id=self.id,
            path=self.path,
            token_count=self.token_count,
            priority=self.priority,
        )

    def to_dict(self) -> dict:
        return {**self.to_session_piece().to_dict(), "text": self.text}

    @classmethod
    def from_dict(cls, data: dict) -> ContextPiece:
        return cls(
            id=data["id"],
            path=data["path"],
            token_count=data["token_count"],
            priority=data["priority"],
            text=data.get("text", ""),
        )


@dataclass
class AssemblyStreams:
    """Candidate streams in priority order, as produced by the retriever."""

    hot_window: list[Candidate] = field(default_factory=list)
    retrieved: list[Candidate] = field(default_factory=list)
    conversation: list[Candidate] = field(default_factory=list)
    project_summary: Summary | None = None
    file_summaries: list[Summary] = field(default_factory=list)


@dataclass
class AssembledContext:
    pieces: list[ContextPiece] = field(default_factory=list)
    budget: int = 0
    skipped: list[str] = field(default_factory=list)  # ids whose blob was missing
    omitted: list[str] = field(default_factory=list)  # ids left out for lack of budget

    @property
    def total_tokens(self) -> int:
        return sum(p.token_count for p in self.pieces)

    @property
    def remaining(self) -> int:
        return self.budget - self.total_tokens

    @property
    def truncated(self) -> bool:
        return bool(self.omitted)

    def by_priority(self, *priorities: str) -> list[ContextPiece]:
        return [p for p in self.pieces if p.priority in priorities]


class ContentLoader:
    """Load chunk and summary text from the blob store.

    With a cache store, decoded text is kept under ``blob:{project_id}:{id}``
    for *ttl* seconds. Cache failures are logged and bypassed.

    Returns None for missing blobs so callers can skip the candidate.
    """

    def __init__(
        self,
        blobs: BlobStore,
        cache: CacheStore | None = None,
        ttl: int = 3_600,
    ) -> None:
        self._blobs = blobs
        self._cache = cache
        self._ttl = ttl

    def load(self, project_id: str, piece_id: str, blob_key: str) -> str | None:
        cache_key = f"blob:{project_id}:{piece_id}"
        cached = self._cache_get(cache_key)
        if cached is not None:
            return cached
        try:
            text = self._blobs.get(blob_key).decode("utf-8", errors="replace")
        except BlobNotFoundError:
            logger.warning("Blob '%s' missing for %s; skipping", blob_key, piece_id)
            return None
        self._cache_set(cache_key, text)
        return text

    def _cache_get(self, key: str) -> str | None:
        if self._cache is None:
            return None
        try:
            return self._cache.get(key)
        except Exception as exc:
            logger.warning("Cache read failed for %s: %s", key, exc)
            return None

    def _cache_set(self, key: str, value: str) -> None:
        if self._cache is None:
            return
        try:
            self._cache.set_with_ttl(key, value, self._ttl)
        except Exception as exc:
            logger.warning("Cache write failed for %s: %s", key, exc)


def assemble(
    streams: AssemblyStreams,
    budget: int,
    loader: ContentLoader,
    *,
    backfill_free_ratio: float = 0.2,
    max_file_summaries: int = 5,
) -> AssembledContext:
    """Fill *budget* from *streams* in strict priority order.

    Args:
        streams: Candidate streams (see AssemblyStreams).
        budget: Hard token ceiling for the selected pieces.
        loader: Loads piece text from the blob store.
        backfill_free_ratio: Free-budget fraction above which summaries are added.
        max_file_summaries: Cap on file summaries in the backfill.

    Returns:
        AssembledContext whose total_tokens is <= budget.
    """
    if budget <= 0:
        raise ValueError(f"budget must be > 0, got {budget}")

    context = AssembledContext(budget=budget)
    selected: set[str] = set()

    _fill_chunks(context, streams.hot_window, loader, selected, PRIORITY_HOT)
    _fill_chunks(
        context,
        [c for c in streams.retrieved if not c.is_hot_path],
        loader,
        selected,
        PRIORITY_RETRIEVED,
    )
    _fill_chunks(context, streams.conversation, loader, selected, PRIORITY_CONVERSATION)

    if streams.project_summary is not None and _has_room(context, backfill_free_ratio):
        _fill_summaries(context, [streams.project_summary], loader, PRIORITY_PROJECT_SUMMARY)
    if _has_room(context, backfill_free_ratio):
        _fill_summaries(
            context,
            streams.file_summaries[:max_file_summaries],
            loader,
            PRIORITY_FILE_SUMMARY,
        )

    logger.info(
        "Assembled %d pieces, %d/%d tokens, %d omitted",
        len(context.pieces),
        context.total_tokens,
        budget,
        len(context.omitted),
    )
    return context


def _has_room(context: AssembledContext, free_ratio: float) -> bool:
    return context.remaining / context.budget > free_ratio


def _fill_chunks(
    context: AssembledContext,
    candidates: list[Candidate],
    loader: ContentLoader,
    selected: set[str],
    priority: str,
) -> None:
    for i, cand in enumerate(candidates):
        chunk = cand.chunk
        if chunk.chunk_id in selected:
            continue
        if chunk.token_count > context.remaining:
            context.omitted.extend(
                c.chunk.chunk_id for c in candidates[i:] if c.chunk.chunk_id not in selected
            )
            break
        text = loader.load(chunk.project_id, chunk.chunk_id, chunk.blob_key)
        if text is None:
            context.skipped.append(chunk.chunk_id)
            continue
        selected.add(chunk.chunk_id)
        context.pieces.append(
            ContextPiece(
                id=chunk.chunk_id,
                path=chunk.path,
                token_count=chunk.token_count,
                priority=priority,
                text=text,
            )
        )


def _fill_summaries(
    context: AssembledContext,
    summaries: list[Summary],
    loader: ContentLoader,
    priority: str,
) -> None:
    for i, summary in enumerate(summaries):
        if summary.token_count > context.remaining:
            context.omitted.extend(s.summary_id for s in summaries[i:])
            break
        text = summary.content or loader.load(
            summary.project_id, summary.summary_id, summary.blob_key
        )
        if text is None:
            context.skipped.append(summary.summary_id)
            continue
        context.pieces.append(
            ContextPiece(
                id=summary.summary_id,
                path=summary.path,
                token_count=summary.token_count,
                priority=priority,
                text=text,
            )
        )


# ------------------------------------------------------------------
# Rendering
# ------------------------------------------------------------------


def render_context(pieces: list[ContextPiece], prompt: str, omitted: int = 0) -> str:
    """Render *pieces* into the sectioned text block handed to the model.

    Snippets and file summaries carry a ``[source: <id>, <path>]`` footer.
    Empty sections are omitted; the system preamble, instruction and
    response format are always present. When *omitted* candidates did not
    fit the budget, a TRUNCATION_MARKER line precedes the instruction.
    """
    parts = [f"---SYSTEM---\n{SYSTEM_PREAMBLE}\n\n"]

    project = [p for p in pieces if p.priority == PRIORITY_PROJECT_SUMMARY]
    if project:
        parts.append(f"---PROJECT_SUMMARY---\n{project[0].text}\n\n")

    snippets = [p for p in pieces if p.priority in (PRIORITY_HOT, PRIORITY_RETRIEVED)]
    if snippets:
        parts.append("---RELEVANT_SNIPPETS---\n")
        for p in snippets:
            parts.append(f"{p.text}\n{provenance_footer(p.id, p.path)}\n\n")

    file_summaries = [p for p in pieces if p.priority == PRIORITY_FILE_SUMMARY]
    if file_summaries:
        parts.append("---FILE_SUMMARIES---\n")
        for p in file_summaries:
            parts.append(f"{p.text}\n{provenance_footer(p.id, p.path)}\n\n")

    conversation = [p for p in pieces if p.priority == PRIORITY_CONVERSATION]
    if conversation:
        parts.append("---USER_CONVERSATION---\n")
        parts.extend(f"{p.text}\n" for p in conversation)
        parts.append("\n")

    if omitted:
        parts.append(TRUNCATION_MARKER.format(omitted=omitted) + "\n\n")

    parts.append(f'---USER_INSTRUCTION---\n"{prompt}"\n\n')
    parts.append(f"---RESPONSE_FORMAT---\n{RESPONSE_FORMAT}")
    return "".join(parts)
