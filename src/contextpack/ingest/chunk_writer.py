"""Chunk writer — content-hash dedup, blob storage and embeddings.

For each ChunkDraft:
1. Hash the normalized text (raw bytes for binary placeholders).
2. Insert the metadata row unless the hash already exists anywhere in the
   store (``Repository.insert_chunk_or_get``).
3. Write whatever is missing for the stored row: the blob under
   ``chunks/{chunk_id}.txt`` and the embedding in the vec table.

Step 3 also runs for dedup hits, so a chunk whose earlier persist failed
half-way (blob or embedding missing) is repaired by simply ingesting it
again.
"""

from __future__ import annotations

import hashlib
import logging
import uuid

from contextpack.db.blobs import BlobStore, chunk_blob_key
from contextpack.db.models import Chunk, ChunkDraft, ChunkKind
from contextpack.db.repository import Repository
from contextpack.ingest.normalizer import normalize
from contextpack.rag.llm_client import EmbeddingFunction, is_zero_vector

logger = logging.getLogger(__name__)


def content_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class ChunkWriter:
    """Persist ChunkDrafts idempotently.

    Args:
        repo: Open Repository instance.
        blobs: Blob store for chunk text.
        embedder: Embedding function (zero-vector fallback on failure).
        vec_table: Name of the vec table for the embedder's model.
    """

    def __init__(
        self,
        repo: Repository,
        blobs: BlobStore,
        embedder: EmbeddingFunction,
        vec_table: str,
    ) -> None:
        self._repo = repo
        self._blobs = blobs
        self._embedder = embedder
        self._vec_table = vec_table

    def persist(self, project_id: str, draft: ChunkDraft) -> Chunk:
        """Store *draft* for *project_id* and return the stored Chunk.

        If an identical chunk exists (same content hash, any project) the
        existing record is returned and no new row, blob or embedding is
        created.
        """
        return self.write(project_id, draft)[0]

    def write(self, project_id: str, draft: ChunkDraft) -> tuple[Chunk, bool]:
        """Like persist(), also reporting whether a new row was created."""
        if draft.kind is ChunkKind.BINARY:
            text = ""
            data = draft.raw or b""
        else:
            text = normalize(draft.text)
            data = text.encode("utf-8")

        chunk_id = str(uuid.uuid4())
        candidate = Chunk(
            chunk_id=chunk_id,
            project_id=project_id,
            path=draft.path,
            offset=draft.offset,
            token_count=draft.token_count,
            content_hash=content_hash(data),
            kind=draft.kind,
            language=draft.language,
            blob_key=chunk_blob_key(chunk_id),
            mime_type=draft.mime_type,
            size_bytes=draft.size_bytes,
        )
        stored, created = self._repo.insert_chunk_or_get(candidate)
        if not created:
            logger.debug(
                "Dedup hit for %s@%d: existing chunk %s",
                draft.path,
                draft.offset,
                stored.chunk_id,
            )

        self._ensure_blob(stored, data)
        if not stored.is_binary:
            self._ensure_embedding(stored, text)

        stored.text = text
        return stored, created

    def persist_many(self, project_id: str, drafts: list[ChunkDraft]) -> list[Chunk]:
        return [self.persist(project_id, d) for d in drafts]

    # ------------------------------------------------------------------
    # Repair helpers
    # ------------------------------------------------------------------

    def _ensure_blob(self, chunk: Chunk, data: bytes) -> None:
        if not self._blobs.exists(chunk.blob_key):
            self._blobs.put(chunk.blob_key, data)

    def _ensure_embedding(self, chunk: Chunk, text: str) -> None:
        if chunk.rowid is None or self._repo.has_embedding(self._vec_table, chunk.rowid):
            return
        vector = self._embedder.embed(text)
        if is_zero_vector(vector):
            # Left unindexed; the next ingest of the same content retries.
            logger.warning("Chunk %s stored without embedding", chunk.chunk_id)
            return
        self._repo.add_embedding(self._vec_table, chunk.rowid, chunk.project_id, vector)
