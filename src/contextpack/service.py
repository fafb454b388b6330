"""ContextService — the ingest / assemble / purge entry points.

Wires the pipeline together:

    artifact -> normalize -> tokenize -> build_chunks -> persist (dedup)
             -> summarize (best effort)

    prompt -> session cache -> embed -> retrieve (+ hot window,
           conversation, summaries) -> assemble -> render -> audit record

Store failures (sqlite3 / OS errors) surface as StoreError from the public
methods. Degraded dependencies (tokenizer, embedding, summarizer) fall back
inside their components and never surface here.
"""

from __future__ import annotations

import functools
import json
import logging
import sqlite3
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, TypeVar

from contextpack.config import ContextPackConfig
from contextpack.db.blobs import BlobStore, FileBlobStore
from contextpack.db.cache import CacheStore, SqliteCacheStore
from contextpack.db.connection import Database
from contextpack.db.models import (
    CONVERSATION_PATH,
    LOGS_PATH,
    PROJECT_PATH,
    Chunk,
    ChunkKind,
    ContextSession,
    Summary,
    SummaryDraft,
    SummaryLevel,
)
from contextpack.db.repository import PurgeReport, Repository
from contextpack.db.schema import initialize
from contextpack.db.vectors import ensure_vec_table, model_to_slug
from contextpack.errors import InputError, StoreError
from contextpack.ingest.base import ChunkBuilder
from contextpack.ingest.chunk_writer import ChunkWriter
from contextpack.ingest.normalizer import Language, detect_language, is_binary, normalize
from contextpack.ingest.summarizer import Summarizer, SummaryWriter
from contextpack.ingest.tokenizer import Tokenizer
from contextpack.rag.assembler import (
    AssemblyStreams,
    ContentLoader,
    ContextPiece,
    assemble,
    render_context,
)
from contextpack.rag.llm_client import EmbeddingFunction
from contextpack.rag.retriever import (
    Candidate,
    retrieve,
    retrieve_conversation,
    retrieve_hot_window,
)
from contextpack.rag.session_cache import SessionCache, record_session

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


def _wrap_store_errors(func: F) -> F:
    """Re-raise sqlite3 / OS failures from the stores as StoreError."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except StoreError:
            raise
        except (sqlite3.Error, OSError) as exc:
            raise StoreError(f"{func.__name__} failed: {exc}") from exc

    return wrapper  # type: ignore[return-value]


def _require(value: Any, name: str) -> None:
    if value is None or (isinstance(value, (str, bytes)) and not value):
        raise InputError(f"{name} is required")


@dataclass
class IngestResult:
    path: str
    chunks: list[Chunk] = field(default_factory=list)
    summaries: list[Summary] = field(default_factory=list)
    total_tokens: int = 0
    language: str = Language.TEXT.value
    created: int = 0  # chunks that did not exist before this ingest

    @property
    def deduplicated(self) -> int:
        return len(self.chunks) - self.created


@dataclass
class ContextResult:
    session_id: str
    assembled_text: str
    token_usage: int
    cached: bool
    token_budget: int
    pieces: list[ContextPiece] = field(default_factory=list)
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "assembled_text": self.assembled_text,
            "token_usage": self.token_usage,
            "cached": self.cached,
            "token_budget": self.token_budget,
            "pieces": [p.to_session_piece().to_dict() for p in self.pieces],
            "metadata": self.metadata,
        }


def resolve_storage(project_dir: Path, config: ContextPackConfig) -> tuple[Path, Path]:
    """Return (db_path, blob_dir); relative config paths are relative to *project_dir*."""
    db_path = Path(config.storage.db)
    blob_dir = Path(config.storage.blob_dir)
    if not db_path.is_absolute():
        db_path = project_dir / db_path
    if not blob_dir.is_absolute():
        blob_dir = project_dir / blob_dir
    return db_path, blob_dir


class ContextService:
    """Ingest artifacts and assemble budgeted context for one store.

    Args:
        conn: Open connection with sqlite-vec loaded and schema initialised.
        blobs: Blob store for chunk and summary text.
        config: Effective configuration.
        cache_store: Cache backend; defaults to the ``cache_entries`` table.
        embedder: Embedding function; built from ``config.embedding`` if omitted.
        tokenizer: Tokenizer; built from ``config.tokenizer`` if omitted.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        blobs: BlobStore,
        config: ContextPackConfig | None = None,
        *,
        cache_store: CacheStore | None = None,
        embedder: EmbeddingFunction | None = None,
        tokenizer: Tokenizer | None = None,
    ) -> None:
        self.config = config or ContextPackConfig()
        cfg = self.config
        self.conn = conn
        self.repo = Repository(conn)
        self.blobs = blobs
        self.tokenizer = tokenizer or Tokenizer(cfg.tokenizer.model)
        self.embedder = embedder or EmbeddingFunction(
            model=cfg.embedding.model,
            dimensions=cfg.embedding.dimensions,
            timeout=cfg.embedding.timeout_seconds,
            num_retries=cfg.embedding.num_retries,
        )
        self.vec_table = ensure_vec_table(
            conn, model_to_slug(self.embedder.model), self.embedder.dimensions
        )
        store = cache_store if cache_store is not None else SqliteCacheStore(conn)

        self.builder = ChunkBuilder(
            max_tokens=cfg.chunking.max_tokens,
            overlap_tokens=cfg.chunking.overlap_tokens,
            min_chunk_tokens=cfg.chunking.min_chunk_tokens,
        )
        self.writer = ChunkWriter(self.repo, blobs, self.embedder, self.vec_table)
        self.summarizer = Summarizer(
            self.tokenizer,
            method=cfg.summary.method,
            model=cfg.summary.model,
            max_tokens=cfg.summary.max_tokens,
        )
        self.summary_writer = SummaryWriter(self.repo, blobs, self.embedder)
        self.session_cache = SessionCache(
            store,
            ttl=cfg.cache.ttl_seconds,
            prompt_prefix_chars=cfg.assembly.prompt_prefix_chars,
        )
        self.loader = ContentLoader(blobs, store, ttl=cfg.cache.ttl_seconds)
        self._owned_conn = False

    @classmethod
    def open(cls, project_dir: Path, config: ContextPackConfig, **kwargs: Any) -> ContextService:
        """Open (creating if needed) the store under *project_dir*.

        The returned service owns its connection; use it as a context
        manager or call close().
        """
        db_path, blob_dir = resolve_storage(project_dir, config)
        try:
            conn = Database(db_path, timeout=config.storage.busy_timeout_seconds).connect()
            initialize(conn)
        except (sqlite3.Error, OSError) as exc:
            raise StoreError(f"Cannot open database '{db_path}': {exc}") from exc
        service = cls(conn, FileBlobStore(blob_dir), config, **kwargs)
        service._owned_conn = True
        return service

    def close(self) -> None:
        if self._owned_conn:
            self.conn.close()
            self._owned_conn = False

    def __enter__(self) -> ContextService:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Ingest
    # ------------------------------------------------------------------

    @_wrap_store_errors
    def ingest(
        self,
        project_id: str,
        path: str,
        raw: bytes | str,
        *,
        summarize: bool = True,
    ) -> IngestResult:
        """Chunk, deduplicate, embed and store one artifact.

        Binary content, or content larger than ``chunking.binary_size_limit``
        bytes, becomes a single metadata-only placeholder chunk.

        Raises:
            InputError: project_id, path or content missing.
            StoreError: A store operation failed.
        """
        _require(project_id, "project_id")
        _require(path, "path")
        _require(raw, "content")

        size = len(raw) if isinstance(raw, bytes) else len(raw.encode("utf-8"))
        if is_binary(raw) or size > self.config.chunking.binary_size_limit:
            data = raw if isinstance(raw, bytes) else raw.encode("utf-8")
            chunk, created = self.writer.write(
                project_id, self.builder.binary_placeholder(path, data)
            )
            self.session_cache.invalidate_project(project_id)
            logger.info("Stored %s as binary placeholder (%d bytes)", path, size)
            return IngestResult(
                path=path,
                chunks=[chunk],
                language=Language.BINARY.value,
                created=int(created),
            )

        text = normalize(raw)
        if not text:
            raise InputError(f"content of '{path}' is empty after normalization")

        language = detect_language(path)
        tokens = self.tokenizer.tokenize(text)
        drafts = self.builder.build_chunks(tokens, path, language)

        written = [self.writer.write(project_id, d) for d in drafts]
        chunks = [chunk for chunk, _ in written]
        created = sum(1 for _, is_new in written if is_new)

        summaries = self._summarize_file(project_id, path, text, chunks) if summarize else []
        self.session_cache.invalidate_project(project_id)

        logger.info(
            "Ingested %s: %d tokens, %d chunks (%d new), %d summaries",
            path,
            len(tokens),
            len(chunks),
            created,
            len(summaries),
        )
        return IngestResult(
            path=path,
            chunks=chunks,
            summaries=summaries,
            total_tokens=len(tokens),
            language=language.value,
            created=created,
        )

    @_wrap_store_errors
    def ingest_conversation(
        self, project_id: str, messages: Iterable[str | dict]
    ) -> list[Chunk]:
        """Store conversation messages as chunks on the ``conversation`` path.

        Messages are strings or dicts with a ``content`` key. Short messages
        are kept; long ones are windowed like files.
        """
        _require(project_id, "project_id")
        texts = [m if isinstance(m, str) else str(m.get("content", "")) for m in messages]
        return self._ingest_stream(project_id, CONVERSATION_PATH, ChunkKind.CONVERSATION, texts)

    @_wrap_store_errors
    def ingest_logs(self, project_id: str, entries: Iterable[str | dict]) -> list[Chunk]:
        """Store log entries as chunks on the ``logs`` path.

        Entries are strings or dicts with ``message`` and optional ``severity``.
        """
        _require(project_id, "project_id")
        texts = []
        for entry in entries:
            if isinstance(entry, str):
                texts.append(entry)
                continue
            message = str(entry.get("message", ""))
            severity = entry.get("severity")
            texts.append(f"[{str(severity).upper()}] {message}" if severity else message)
        return self._ingest_stream(project_id, LOGS_PATH, ChunkKind.LOG, texts)

    def _ingest_stream(
        self, project_id: str, path: str, kind: ChunkKind, texts: list[str]
    ) -> list[Chunk]:
        chunks: list[Chunk] = []
        for raw in texts:
            text = normalize(raw)
            if not text:
                continue
            drafts = self.builder.build_chunks(
                self.tokenizer.tokenize(text),
                path,
                Language.TEXT,
                kind,
                min_tokens=1,
                base_offset=self.repo.next_offset(project_id, path),
            )
            chunks.extend(self.writer.persist_many(project_id, drafts))
        if chunks:
            self.session_cache.invalidate_project(project_id)
        logger.info("Ingested %d %s chunks for %s", len(chunks), kind.value, project_id)
        return chunks

    # ------------------------------------------------------------------
    # Summaries
    # ------------------------------------------------------------------

    def _summarize_file(
        self, project_id: str, path: str, text: str, chunks: list[Chunk]
    ) -> list[Summary]:
        drafts: list[SummaryDraft] = [
            self.summarizer.summarize(c.text, SummaryLevel.CHUNK) for c in chunks
        ]
        # A file below the chunk floor has no chunks; summarize its full text.
        drafts.append(self.summarizer.summarize_file(path, [c.text for c in chunks] or [text]))
        try:
            return self.summary_writer.replace(project_id, path, drafts)
        except (sqlite3.Error, OSError) as exc:
            logger.warning("Summaries for %s not stored: %s", path, exc)
            return []

    @_wrap_store_errors
    def summarize_project(self, project_id: str) -> Summary:
        """(Re)build the project-level summary from the project's code chunks."""
        _require(project_id, "project_id")
        texts = []
        for chunk in self.repo.list_chunks(project_id):
            if chunk.kind is not ChunkKind.CODE:
                continue
            text = self.loader.load(project_id, chunk.chunk_id, chunk.blob_key)
            if text:
                texts.append(text)
        if not texts:
            raise InputError(f"project '{project_id}' has no code chunks to summarize")
        draft = self.summarizer.summarize_project(texts)
        summary = self.summary_writer.replace(project_id, PROJECT_PATH, [draft])[0]
        self.session_cache.invalidate_project(project_id)
        return summary

    # ------------------------------------------------------------------
    # Assembly
    # ------------------------------------------------------------------

    @_wrap_store_errors
    def assemble_context(
        self,
        project_id: str,
        prompt: str,
        budget: int | None = None,
        hot_paths: Iterable[str] = (),
        model: str | None = None,
        *,
        include_conversation: bool = True,
        max_conversation_messages: int | None = None,
    ) -> ContextResult:
        """Assemble the context block for *prompt* within *budget* tokens.

        Raises:
            InputError: project_id or prompt missing, or budget <= 0.
            StoreError: A store operation failed.
        """
        _require(project_id, "project_id")
        _require(prompt, "prompt")
        cfg = self.config
        budget = cfg.assembly.budget if budget is None else budget
        if budget <= 0:
            raise InputError(f"budget must be > 0, got {budget}")
        hot = list(dict.fromkeys(p for p in hot_paths if p))
        model = model or cfg.assembly.model

        key = self.session_cache.key_for(project_id, prompt, budget, hot)
        cached = self.session_cache.get(key)
        if cached is not None:
            # The key only covers a prompt prefix; re-render for this prompt.
            pieces = [ContextPiece.from_dict(p) for p in cached["pieces"]]
            meta = cached.get("metadata", {})
            result = ContextResult(
                session_id=str(uuid.uuid4()),
                assembled_text=render_context(pieces, prompt, meta.get("omitted", 0)),
                token_usage=cached["token_usage"],
                cached=True,
                token_budget=cached["token_budget"],
                pieces=pieces,
                metadata={**meta, "prompt_length": len(prompt), "cached": True},
            )
            self._record(project_id, result, model)
            return result

        query_embedding = self.embedder.embed(prompt)
        retrieved = retrieve(
            self.repo,
            self.vec_table,
            project_id,
            query_embedding,
            hot,
            top_k=cfg.retrieval.top_k,
            min_relevance=cfg.retrieval.min_relevance,
        )
        streams = AssemblyStreams(
            hot_window=retrieve_hot_window(
                self.repo, project_id, hot, window=cfg.retrieval.hot_window_size
            ),
            retrieved=retrieved,
            conversation=(
                retrieve_conversation(
                    self.repo,
                    project_id,
                    max_messages=max_conversation_messages
                    or cfg.retrieval.max_conversation_messages,
                )
                if include_conversation
                else []
            ),
            project_summary=self.repo.latest_summary(project_id, SummaryLevel.PROJECT),
            file_summaries=self._file_summaries_for(project_id, retrieved),
        )
        context = assemble(
            streams,
            budget,
            self.loader,
            backfill_free_ratio=cfg.assembly.backfill_free_ratio,
            max_file_summaries=cfg.assembly.max_file_summaries,
        )
        text = render_context(context.pieces, prompt, len(context.omitted))
        result = ContextResult(
            session_id=str(uuid.uuid4()),
            assembled_text=text,
            token_usage=context.total_tokens,
            cached=False,
            token_budget=budget,
            pieces=context.pieces,
            metadata={
                "prompt_length": len(prompt),
                "piece_count": len(context.pieces),
                "cached": False,
                "model": model,
                "hot_paths": hot,
                "candidates": {
                    "hot_window": len(streams.hot_window),
                    "retrieved": len(streams.retrieved),
                    "conversation": len(streams.conversation),
                },
                "skipped": context.skipped,
                "truncated": context.truncated,
                "omitted": len(context.omitted),
            },
        )
        self.session_cache.put(
            key,
            {
                "token_usage": result.token_usage,
                "token_budget": result.token_budget,
                "pieces": [p.to_dict() for p in result.pieces],
                "metadata": result.metadata,
            },
        )
        self._record(project_id, result, model)
        return result

    def _file_summaries_for(self, project_id: str, retrieved: list[Candidate]) -> list[Summary]:
        """Latest file summary per retrieved path, in retrieval order."""
        paths = list(dict.fromkeys(c.chunk.path for c in retrieved))
        latest: dict[str, Summary] = {}
        for summary in self.repo.file_summaries(project_id, paths):
            latest.setdefault(summary.path, summary)
        return [latest[p] for p in paths if p in latest]

    def _record(self, project_id: str, result: ContextResult, model: str) -> None:
        record_session(
            self.repo,
            ContextSession(
                session_id=result.session_id,
                project_id=project_id,
                pieces=[p.to_session_piece() for p in result.pieces],
                total_tokens=result.token_usage,
                model=model,
                result_meta=json.dumps(result.metadata),
            ),
        )

    # ------------------------------------------------------------------
    # Purge + stats
    # ------------------------------------------------------------------

    @_wrap_store_errors
    def purge_project(self, project_id: str) -> PurgeReport:
        """Delete every chunk, embedding, blob, summary, session and cache entry of a project."""
        _require(project_id, "project_id")
        report = self.repo.purge_project(project_id)
        for key in report.blob_keys:
            self.blobs.delete(key)
        self.session_cache.invalidate_project(project_id)
        logger.info(
            "Purged project %s: %d chunks, %d summaries, %d sessions",
            project_id,
            report.chunks,
            report.summaries,
            report.sessions,
        )
        return report

    @_wrap_store_errors
    def chunk_stats(self, project_id: str) -> dict:
        return self.repo.chunk_stats(project_id)

    @_wrap_store_errors
    def context_stats(self, project_id: str) -> dict:
        return self.repo.context_stats(project_id)
