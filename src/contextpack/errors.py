"""Exception taxonomy shared by the ingest and assembly pipelines.

Input errors are raised before anything is written. Store errors wrap the
underlying sqlite3 / OS failure and are what ``ingest`` and
``assemble_context`` surface to callers. Degraded dependencies (tokenizer,
embedding, summarizer) never show up here: they fall back at the component
boundary.
"""

from __future__ import annotations


class ContextPackError(Exception):
    """Base class for all contextpack errors."""


class InputError(ContextPackError, ValueError):
    """A required identifier or content is missing or invalid."""


class StoreError(ContextPackError):
    """A blob, metadata, vector or cache store operation failed."""


class BlobNotFoundError(StoreError, KeyError):
    """No blob is stored under the requested key."""

    def __init__(self, key: str) -> None:
        super().__init__(key)
        self.key = key

    def __str__(self) -> str:
        return f"No blob stored under key '{self.key}'"


class TokenizerUnavailable(ContextPackError):
    """The model tokenizer could not encode or decode; callers fall back."""


class EmbeddingUnavailable(ContextPackError):
    """The embedding provider failed or returned an unusable vector."""
