"""Chunk, file and project summaries.

Summaries are best-effort context: any failure produces a placeholder
rather than an error. The default method is extractive (leading sentences);
``method="llm"`` asks a LiteLLM completion model instead.

Summaries are regenerated, never patched: re-ingesting a file replaces its
chunk and file summaries.
"""

from __future__ import annotations

import logging
import re
import uuid

from contextpack.db.blobs import BlobStore, summary_blob_key
from contextpack.db.models import Summary, SummaryDraft, SummaryLevel
from contextpack.db.repository import Repository
from contextpack.ingest.tokenizer import Tokenizer
from contextpack.rag.llm_client import EmbeddingFunction, complete, is_zero_vector

logger = logging.getLogger(__name__)

_SUMMARY_PROMPT = """\
You are a code assistant. Write a concise summary (max {max_tokens} tokens) \
of the following {level} that will be used as context for a retrieval-augmented \
coding assistant. Focus on what the code does and the names it defines.

Content (first 8000 characters):
{text}

Summary:"""

_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")

# Leading sentences kept by the extractive method.
_SENTENCES_PER_LEVEL: dict[SummaryLevel, int] = {
    SummaryLevel.CHUNK: 2,
    SummaryLevel.FILE: 3,
    SummaryLevel.PROJECT: 5,
}

METHODS = ("extractive", "llm")


def placeholder(level: SummaryLevel) -> str:
    return f"[summary unavailable: {level.value} content]"


class Summarizer:
    """Produce SummaryDrafts for a level of the artifact hierarchy.

    Args:
        tokenizer: Tokenizer used to count (and clip) summary tokens.
        method: ``"extractive"`` or ``"llm"``.
        model: LiteLLM model for the ``llm`` method.
        max_tokens: Upper bound on summary length in tokens.
    """

    def __init__(
        self,
        tokenizer: Tokenizer,
        method: str = "extractive",
        model: str = "openai/gpt-4o-mini",
        max_tokens: int = 300,
    ) -> None:
        if method not in METHODS:
            raise ValueError(f"Unknown summary method '{method}'; expected one of {METHODS}")
        self._tokenizer = tokenizer
        self.method = method
        self.model = model
        self.max_tokens = max_tokens

    def summarize(self, text: str, level: SummaryLevel) -> SummaryDraft:
        """Summarize *text*. Never raises; degraded drafts carry a placeholder."""
        text = text.strip()
        if not text:
            return self._degraded(level)
        try:
            if self.method == "llm":
                content = self._generate(text, level)
            else:
                content = self._extract(text, level)
            content = self._clip(content.strip(), text)
        except Exception as exc:
            logger.warning("Summarizing %s content failed: %s", level.value, exc)
            return self._degraded(level)
        if not content:
            return self._degraded(level)
        return SummaryDraft(
            level=level,
            content=content,
            token_count=self._tokenizer.count(content),
        )

    def summarize_file(self, path: str, chunk_texts: list[str]) -> SummaryDraft:
        logger.debug("Summarizing file %s (%d chunks)", path, len(chunk_texts))
        return self.summarize("\n\n".join(chunk_texts), SummaryLevel.FILE)

    def summarize_project(self, chunk_texts: list[str]) -> SummaryDraft:
        return self.summarize("\n\n".join(chunk_texts), SummaryLevel.PROJECT)

    # ------------------------------------------------------------------
    # Methods
    # ------------------------------------------------------------------

    def _extract(self, text: str, level: SummaryLevel) -> str:
        sentences = [s.strip() for s in _SENTENCE_SPLIT_RE.split(text) if s.strip()]
        return " ".join(sentences[: _SENTENCES_PER_LEVEL[level]])

    def _generate(self, text: str, level: SummaryLevel) -> str:
        prompt = _SUMMARY_PROMPT.format(
            max_tokens=self.max_tokens,
            level=level.value,
            text=text[:8000],
        )
        return complete(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=self.max_tokens,
            temperature=0.0,
        )

    def _clip(self, content: str, source: str) -> str:
        """Bound *content* by max_tokens and keep it strictly shorter than *source*."""
        if len(source) <= 1:
            return source
        tokens = self._tokenizer.tokenize(content)
        if len(tokens) > self.max_tokens:
            content = tokens.text_between(0, self.max_tokens)
        if len(content) < len(source):
            return content
        source_tokens = self._tokenizer.tokenize(source)
        if len(source_tokens) > 1:
            head = source_tokens.text_between(0, len(source_tokens) // 2).strip()
            if head and len(head) < len(source):
                return head
        return source[: len(source) // 2]

    def _degraded(self, level: SummaryLevel) -> SummaryDraft:
        content = placeholder(level)
        return SummaryDraft(
            level=level,
            content=content,
            token_count=self._tokenizer.count(content),
            degraded=True,
        )


class SummaryWriter:
    """Persist summaries: metadata row, blob content and embedding.

    Summaries are not deduplicated; every write creates a new record.
    """

    def __init__(
        self,
        repo: Repository,
        blobs: BlobStore,
        embedder: EmbeddingFunction,
    ) -> None:
        self._repo = repo
        self._blobs = blobs
        self._embedder = embedder

    def write(self, project_id: str, path: str, draft: SummaryDraft) -> Summary:
        summary_id = str(uuid.uuid4())
        embedding = self._embedder.embed(draft.content)
        summary = Summary(
            summary_id=summary_id,
            project_id=project_id,
            path=path,
            level=draft.level,
            token_count=draft.token_count,
            blob_key=summary_blob_key(summary_id),
            content=draft.content,
            embedding=None if is_zero_vector(embedding) else embedding,
        )
        self._blobs.put(summary.blob_key, draft.content.encode("utf-8"))
        summary.rowid = self._repo.add_summary(summary)
        return summary

    def replace(
        self,
        project_id: str,
        path: str,
        drafts: list[SummaryDraft],
    ) -> list[Summary]:
        """Drop the existing summaries of *path* at the drafts' levels, then write *drafts*."""
        levels = sorted({d.level for d in drafts}, key=lambda lvl: lvl.value)
        for key in self._repo.delete_summaries(project_id, path, levels):
            self._blobs.delete(key)
        return [self.write(project_id, path, d) for d in drafts]
