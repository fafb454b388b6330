"""Repository pattern for all contextpack metadata operations.

Single interface for: chunks, vec embeddings, summaries, context sessions
and project purges. Vec tables are model-managed (ensure_vec_table);
repository handles read + write. Blob content is never stored here.
"""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass, field

import sqlite_vec

from contextpack.db.models import (
    Chunk,
    ChunkKind,
    ContextSession,
    SessionPiece,
    Summary,
    SummaryLevel,
)
from contextpack.db.vectors import list_vec_tables

_CHUNK_COLUMNS = (
    "id, chunk_id, project_id, path, token_offset, token_count, content_hash, "
    "kind, language, blob_key, mime_type, size_bytes, created_at"
)
_SUMMARY_COLUMNS = (
    "id, summary_id, project_id, path, level, token_count, blob_key, embedding, created_at"
)


@dataclass
class PurgeReport:
    """What purge_project removed; blob keys are returned for the blob store."""

    chunks: int = 0
    summaries: int = 0
    sessions: int = 0
    embeddings: int = 0
    blob_keys: list[str] = field(default_factory=list)


class Repository:
    """Data access layer for all contextpack metadata entities.

    Wraps an open sqlite3.Connection and provides typed methods for chunks,
    vec embeddings, summaries and context sessions. The connection is owned
    by the caller and must be closed after use.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with sqlite-vec loaded and schema
                initialised (see contextpack.db.schema.initialize).
        """
        self._conn = conn

    @property
    def conn(self) -> sqlite3.Connection:
        return self._conn

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def insert_chunk_or_get(self, chunk: Chunk) -> tuple[Chunk, bool]:
        """Insert *chunk* unless its content_hash is already stored.

        The UNIQUE constraint on content_hash decides races between
        processes: the losing insert is a no-op and the winner's row is
        returned, exactly as if it had been found up front.

        Returns:
            (stored chunk, created) — created is False when the hash existed.
        """
        cur = self._conn.execute(
            """
            INSERT INTO chunks (
                chunk_id, project_id, path, token_offset, token_count,
                content_hash, kind, language, blob_key, mime_type, size_bytes
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(content_hash) DO NOTHING
            """,
            (
                chunk.chunk_id,
                chunk.project_id,
                chunk.path,
                chunk.offset,
                chunk.token_count,
                chunk.content_hash,
                chunk.kind.value,
                chunk.language,
                chunk.blob_key,
                chunk.mime_type,
                chunk.size_bytes,
            ),
        )
        self._conn.commit()
        created = cur.rowcount == 1
        stored = self.get_chunk_by_hash(chunk.content_hash)
        if stored is None:
            # Only possible if a purge removed the row between the two statements.
            raise sqlite3.IntegrityError(
                f"chunk with content_hash {chunk.content_hash} vanished after insert"
            )
        return stored, created

    def get_chunk(self, chunk_id: str) -> Chunk | None:
        row = self._conn.execute(
            f"SELECT {_CHUNK_COLUMNS} FROM chunks WHERE chunk_id = ?", (chunk_id,)
        ).fetchone()
        return _row_to_chunk(row) if row else None

    def get_chunk_by_hash(self, content_hash: str) -> Chunk | None:
        row = self._conn.execute(
            f"SELECT {_CHUNK_COLUMNS} FROM chunks WHERE content_hash = ?", (content_hash,)
        ).fetchone()
        return _row_to_chunk(row) if row else None

    def get_chunks_by_rowids(self, rowids: list[int]) -> dict[int, Chunk]:
        """Return {rowid: Chunk} for the rowids that still exist."""
        if not rowids:
            return {}
        placeholders = ",".join("?" * len(rowids))
        rows = self._conn.execute(
            f"SELECT {_CHUNK_COLUMNS} FROM chunks WHERE id IN ({placeholders})", rowids
        ).fetchall()
        return {r["id"]: _row_to_chunk(r) for r in rows}

    def list_chunks(self, project_id: str, path: str | None = None) -> list[Chunk]:
        """Return a project's chunks ordered by path then offset."""
        sql = f"SELECT {_CHUNK_COLUMNS} FROM chunks WHERE project_id = ?"
        params: list = [project_id]
        if path is not None:
            sql += " AND path = ?"
            params.append(path)
        sql += " ORDER BY path, token_offset, id"
        return [_row_to_chunk(r) for r in self._conn.execute(sql, params).fetchall()]

    def count_chunks(self, project_id: str | None = None) -> int:
        if project_id is None:
            return self._conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0]
        return self._conn.execute(
            "SELECT COUNT(*) FROM chunks WHERE project_id = ?", (project_id,)
        ).fetchone()[0]

    def list_projects(self) -> list[tuple[str, int]]:
        """Return (project_id, chunk count) for every project with chunks."""
        rows = self._conn.execute(
            "SELECT project_id, COUNT(*) AS n FROM chunks GROUP BY project_id ORDER BY project_id"
        ).fetchall()
        return [(r["project_id"], r["n"]) for r in rows]

    def next_offset(self, project_id: str, path: str) -> int:
        """Token index just past the last chunk stored for (project_id, path)."""
        row = self._conn.execute(
            "SELECT MAX(token_offset + token_count) FROM chunks WHERE project_id = ? AND path = ?",
            (project_id, path),
        ).fetchone()
        return row[0] or 0

    def hot_window_chunks(
        self, project_id: str, hot_paths: list[str], limit: int
    ) -> list[Chunk]:
        """Most recent non-binary chunks of the open paths, newest first."""
        if not hot_paths:
            return []
        conditions: list[str] = []
        params: list = [project_id]
        for hot in hot_paths:
            conditions.append("(path = ? OR path LIKE ? ESCAPE '\\')")
            params.extend([hot, _like_prefix(hot)])
        params.append(limit)
        rows = self._conn.execute(
            f"""
            SELECT {_CHUNK_COLUMNS} FROM chunks
            WHERE project_id = ? AND kind != 'binary' AND ({" OR ".join(conditions)})
            ORDER BY created_at DESC, id DESC
            LIMIT ?
            """,
            params,
        ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def recent_chunks_by_kind(
        self, project_id: str, kind: ChunkKind, limit: int
    ) -> list[Chunk]:
        """Most recent chunks of *kind* for *project_id*, newest first."""
        rows = self._conn.execute(
            f"""
            SELECT {_CHUNK_COLUMNS} FROM chunks
            WHERE project_id = ? AND kind = ?
            ORDER BY created_at DESC, id DESC
            LIMIT ?
            """,
            (project_id, kind.value, limit),
        ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def chunk_stats(self, project_id: str) -> dict:
        row = self._conn.execute(
            """
            SELECT
                COUNT(*) AS total_chunks,
                COALESCE(SUM(token_count), 0) AS total_tokens,
                COUNT(DISTINCT path) AS unique_paths,
                COALESCE(AVG(token_count), 0) AS avg_chunk_size
            FROM chunks WHERE project_id = ?
            """,
            (project_id,),
        ).fetchone()
        return dict(row)

    # ------------------------------------------------------------------
    # Vec embeddings
    # ------------------------------------------------------------------

    def add_embedding(
        self, table: str, rowid: int, project_id: str, embedding: list[float]
    ) -> bool:
        """Insert an embedding keyed by the chunk rowid.

        Returns False when the rowid already has an embedding (a concurrent
        writer got there first), True otherwise.
        """
        if self.has_embedding(table, rowid):
            return False
        try:
            self._conn.execute(
                f"INSERT INTO {table}(rowid, project_id, embedding) VALUES (?, ?, ?)",
                (rowid, project_id, json.dumps(embedding)),
            )
        except sqlite3.IntegrityError:
            self._conn.rollback()
            return False
        self._conn.commit()
        return True

    def has_embedding(self, table: str, rowid: int) -> bool:
        row = self._conn.execute(
            f"SELECT rowid FROM {table} WHERE rowid = ?", (rowid,)
        ).fetchone()
        return row is not None

    def search_vec(
        self,
        table: str,
        embedding: list[float],
        project_id: str,
        limit: int = 10,
    ) -> list[tuple[Chunk, float]]:
        """Nearest-neighbour search within one project.

        Returns (chunk, cosine distance) sorted by distance; binary chunks
        are excluded.
        """
        vec_rows = self._conn.execute(
            f"""
            SELECT rowid, distance FROM {table}
            WHERE embedding MATCH ? AND k = ? AND project_id = ?
            ORDER BY distance
            """,
            (json.dumps(embedding), limit, project_id),
        ).fetchall()

        chunks = self.get_chunks_by_rowids([r["rowid"] for r in vec_rows])
        results: list[tuple[Chunk, float]] = []
        for vec_row in vec_rows:
            chunk = chunks.get(vec_row["rowid"])
            if chunk is not None and not chunk.is_binary:
                results.append((chunk, vec_row["distance"]))
        return results

    def _delete_embeddings(self, rowids: list[int]) -> int:
        if not rowids:
            return 0
        total = 0
        placeholders = ",".join("?" * len(rowids))
        for table in list_vec_tables(self._conn):
            cur = self._conn.execute(
                f"DELETE FROM [{table}] WHERE rowid IN ({placeholders})",  # noqa: S608
                rowids,
            )
            total += max(cur.rowcount, 0)
        return total

    # ------------------------------------------------------------------
    # Summaries
    # ------------------------------------------------------------------

    def add_summary(self, summary: Summary) -> int:
        """Insert a summary row (no dedup). Returns the new rowid."""
        blob = (
            sqlite_vec.serialize_float32(summary.embedding)
            if summary.embedding is not None
            else None
        )
        cur = self._conn.execute(
            """
            INSERT INTO summaries (
                summary_id, project_id, path, level, token_count, blob_key, embedding
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                summary.summary_id,
                summary.project_id,
                summary.path,
                summary.level.value,
                summary.token_count,
                summary.blob_key,
                blob,
            ),
        )
        self._conn.commit()
        return cur.lastrowid

    def get_summary(self, summary_id: str) -> Summary | None:
        row = self._conn.execute(
            f"SELECT {_SUMMARY_COLUMNS} FROM summaries WHERE summary_id = ?", (summary_id,)
        ).fetchone()
        return _row_to_summary(row) if row else None

    def latest_summary(
        self, project_id: str, level: SummaryLevel, path: str | None = None
    ) -> Summary | None:
        sql = f"SELECT {_SUMMARY_COLUMNS} FROM summaries WHERE project_id = ? AND level = ?"
        params: list = [project_id, level.value]
        if path is not None:
            sql += " AND path = ?"
            params.append(path)
        sql += " ORDER BY created_at DESC, id DESC LIMIT 1"
        row = self._conn.execute(sql, params).fetchone()
        return _row_to_summary(row) if row else None

    def file_summaries(self, project_id: str, paths: list[str]) -> list[Summary]:
        """File-level summaries for *paths*, newest first."""
        if not paths:
            return []
        placeholders = ",".join("?" * len(paths))
        rows = self._conn.execute(
            f"""
            SELECT {_SUMMARY_COLUMNS} FROM summaries
            WHERE project_id = ? AND level = 'file' AND path IN ({placeholders})
            ORDER BY created_at DESC, id DESC
            """,
            [project_id, *paths],
        ).fetchall()
        return [_row_to_summary(r) for r in rows]

    def list_summaries(
        self,
        project_id: str,
        path: str | None = None,
        level: SummaryLevel | None = None,
    ) -> list[Summary]:
        sql = f"SELECT {_SUMMARY_COLUMNS} FROM summaries WHERE project_id = ?"
        params: list = [project_id]
        if path is not None:
            sql += " AND path = ?"
            params.append(path)
        if level is not None:
            sql += " AND level = ?"
            params.append(level.value)
        sql += " ORDER BY created_at, id"
        return [_row_to_summary(r) for r in self._conn.execute(sql, params).fetchall()]

    def delete_summaries(
        self, project_id: str, path: str, levels: list[SummaryLevel]
    ) -> list[str]:
        """Delete the summaries of (project_id, path) at *levels*.

        Returns:
            Blob keys of the deleted rows, for removal from the blob store.
        """
        if not levels:
            return []
        placeholders = ",".join("?" * len(levels))
        params = [project_id, path, *(lvl.value for lvl in levels)]
        where = f"project_id = ? AND path = ? AND level IN ({placeholders})"
        keys = [
            r["blob_key"]
            for r in self._conn.execute(
                f"SELECT blob_key FROM summaries WHERE {where}", params
            ).fetchall()
        ]
        self._conn.execute(f"DELETE FROM summaries WHERE {where}", params)
        self._conn.commit()
        return keys

    # ------------------------------------------------------------------
    # Context sessions (audit)
    # ------------------------------------------------------------------

    def add_session(self, session: ContextSession) -> None:
        self._conn.execute(
            """
            INSERT INTO context_sessions (
                session_id, project_id, chunks_used, tokens_at_call, model, result_meta
            ) VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                session.session_id,
                session.project_id,
                json.dumps([p.to_dict() for p in session.pieces]),
                session.total_tokens,
                session.model,
                session.result_meta,
            ),
        )
        self._conn.commit()

    def get_session(self, session_id: str) -> ContextSession | None:
        row = self._conn.execute(
            """
            SELECT session_id, project_id, created_at, chunks_used, tokens_at_call,
                   model, result_meta
            FROM context_sessions WHERE session_id = ?
            """,
            (session_id,),
        ).fetchone()
        return _row_to_session(row) if row else None

    def context_stats(self, project_id: str) -> dict:
        row = self._conn.execute(
            """
            SELECT
                COUNT(*) AS total_sessions,
                COALESCE(AVG(tokens_at_call), 0) AS avg_tokens_per_session,
                COALESCE(MAX(tokens_at_call), 0) AS max_tokens_per_session,
                MIN(created_at) AS first_session,
                MAX(created_at) AS last_session
            FROM context_sessions WHERE project_id = ?
            """,
            (project_id,),
        ).fetchone()
        return dict(row)

    # ------------------------------------------------------------------
    # Project purge
    # ------------------------------------------------------------------

    def purge_project(self, project_id: str) -> PurgeReport:
        """Delete every chunk, embedding, summary and session of *project_id*.

        Runs as one transaction. Blobs live outside the database, so their
        keys are returned for the caller to delete afterwards.
        """
        report = PurgeReport()
        chunk_rows = self._conn.execute(
            "SELECT id, blob_key FROM chunks WHERE project_id = ?", (project_id,)
        ).fetchall()
        summary_rows = self._conn.execute(
            "SELECT blob_key FROM summaries WHERE project_id = ?", (project_id,)
        ).fetchall()
        try:
            report.embeddings = self._delete_embeddings([r["id"] for r in chunk_rows])
            report.chunks = self._conn.execute(
                "DELETE FROM chunks WHERE project_id = ?", (project_id,)
            ).rowcount
            report.summaries = self._conn.execute(
                "DELETE FROM summaries WHERE project_id = ?", (project_id,)
            ).rowcount
            report.sessions = self._conn.execute(
                "DELETE FROM context_sessions WHERE project_id = ?", (project_id,)
            ).rowcount
            self._conn.commit()
        except sqlite3.Error:
            self._conn.rollback()
            raise
        report.blob_keys = [r["blob_key"] for r in chunk_rows] + [
            r["blob_key"] for r in summary_rows
        ]
        return report


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _like_prefix(path: str) -> str:
    """LIKE pattern matching anything below *path* treated as a directory."""
    escaped = path.rstrip("/").replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"{escaped}/%"


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    return Chunk(
        rowid=row["id"],
        chunk_id=row["chunk_id"],
        project_id=row["project_id"],
        path=row["path"],
        offset=row["token_offset"],
        token_count=row["token_count"],
        content_hash=row["content_hash"],
        kind=ChunkKind(row["kind"]),
        language=row["language"],
        blob_key=row["blob_key"],
        mime_type=row["mime_type"],
        size_bytes=row["size_bytes"],
        created_at=row["created_at"],
    )


def _row_to_summary(row: sqlite3.Row) -> Summary:
    embedding = None
    if row["embedding"] is not None:
        raw = row["embedding"]
        embedding = list(memoryview(raw).cast("f"))
    return Summary(
        rowid=row["id"],
        summary_id=row["summary_id"],
        project_id=row["project_id"],
        path=row["path"],
        level=SummaryLevel(row["level"]),
        token_count=row["token_count"],
        blob_key=row["blob_key"],
        embedding=embedding,
        created_at=row["created_at"],
    )


def _row_to_session(row: sqlite3.Row) -> ContextSession:
    pieces = [
        SessionPiece(
            id=p["id"],
            path=p["path"],
            token_count=p["token_count"],
            priority=p["priority"],
        )
        for p in json.loads(row["chunks_used"])
    ]
    return ContextSession(
        session_id=row["session_id"],
        project_id=row["project_id"],
        pieces=pieces,
        total_tokens=row["tokens_at_call"],
        model=row["model"],
        result_meta=row["result_meta"],
        created_at=row["created_at"],
    )
