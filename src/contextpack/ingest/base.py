"""Chunk builder: fixed token windows with overlap and a size floor."""

from __future__ import annotations

from contextpack.db.models import ChunkDraft, ChunkKind
from contextpack.ingest.normalizer import Language, detect_mime_type
from contextpack.ingest.tokenizer import TokenSequence


class ChunkBuilder:
    """Split a token sequence into overlapping fixed-size windows.

    Windows start at offset 0 and advance by ``max_tokens - overlap_tokens``
    so consecutive chunks share ``overlap_tokens`` tokens. A window shorter
    than ``min_chunk_tokens`` is dropped and ends the loop, so a sequence
    shorter than the floor yields no chunks at all; only the file summary
    covers it.

    Args:
        max_tokens: Tokens per window.
        overlap_tokens: Tokens shared by consecutive windows.
        min_chunk_tokens: Floor below which a window is discarded.
    """

    def __init__(
        self,
        max_tokens: int = 8_000,
        overlap_tokens: int = 256,
        min_chunk_tokens: int = 1_000,
    ) -> None:
        if max_tokens < 1:
            raise ValueError("max_tokens must be >= 1")
        if not 0 <= overlap_tokens < max_tokens:
            raise ValueError("overlap_tokens must be in [0, max_tokens)")
        if min_chunk_tokens < 1:
            raise ValueError("min_chunk_tokens must be >= 1")
        self.max_tokens = max_tokens
        self.overlap_tokens = overlap_tokens
        self.min_chunk_tokens = min_chunk_tokens

    @property
    def step(self) -> int:
        return self.max_tokens - self.overlap_tokens

    def windows(self, total: int, min_tokens: int | None = None) -> list[tuple[int, int]]:
        """Return the ``[start, end)`` token windows for a sequence of *total* tokens."""
        floor = self.min_chunk_tokens if min_tokens is None else min_tokens
        bounds: list[tuple[int, int]] = []
        offset = 0
        while offset < total:
            end = min(offset + self.max_tokens, total)
            if end - offset < floor:
                break
            bounds.append((offset, end))
            if end >= total:
                break
            offset += self.step
        return bounds

    def build_chunks(
        self,
        tokens: TokenSequence,
        path: str,
        language: Language | str = Language.TEXT,
        kind: ChunkKind = ChunkKind.CODE,
        *,
        min_tokens: int | None = None,
        base_offset: int = 0,
    ) -> list[ChunkDraft]:
        """Turn *tokens* into ordered ChunkDrafts for *path*.

        Args:
            tokens: Tokenized, normalized text.
            path: Artifact path recorded on every draft.
            language: Detected language of the artifact.
            kind: Chunk kind (code, conversation, log).
            min_tokens: Override of the window floor (1 for messages).
            base_offset: Added to every offset, for paths that grow by append.

        Returns:
            Drafts in offset order; empty for an empty sequence.
        """
        lang = language.value if isinstance(language, Language) else language
        return [
            ChunkDraft(
                path=path,
                offset=base_offset + start,
                token_count=end - start,
                text=tokens.text_between(start, end),
                kind=kind,
                language=lang,
            )
            for start, end in self.windows(len(tokens), min_tokens)
        ]

    @staticmethod
    def binary_placeholder(path: str, raw: bytes | str) -> ChunkDraft:
        """Single metadata-only draft for binary or oversized content."""
        data = raw.encode("utf-8", errors="surrogateescape") if isinstance(raw, str) else raw
        return ChunkDraft(
            path=path,
            offset=0,
            token_count=0,
            text="",
            kind=ChunkKind.BINARY,
            language=Language.BINARY.value,
            raw=data,
            mime_type=detect_mime_type(path),
            size_bytes=len(data),
        )
