"""Domain models for the contextpack stores."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum


class ChunkKind(str, Enum):
    CODE = "code"
    BINARY = "binary"
    CONVERSATION = "conversation"
    LOG = "log"


class SummaryLevel(str, Enum):
    CHUNK = "chunk"
    FILE = "file"
    PROJECT = "project"


# Synthetic paths for artifacts that are not files.
CONVERSATION_PATH = "conversation"
LOGS_PATH = "logs"
PROJECT_PATH = "project"


@dataclass
class ChunkDraft:
    """A window of text ready for persistence, not yet fingerprinted."""

    path: str
    offset: int
    token_count: int
    text: str
    kind: ChunkKind = ChunkKind.CODE
    language: str = "text"
    raw: bytes | None = None  # binary placeholders only
    mime_type: str | None = None
    size_bytes: int | None = None


@dataclass
class Chunk:
    chunk_id: str
    project_id: str
    path: str
    offset: int
    token_count: int
    content_hash: str
    kind: ChunkKind
    language: str
    blob_key: str
    mime_type: str | None = None  # binary placeholders only
    size_bytes: int | None = None
    created_at: str | None = None
    text: str = ""  # rehydrated from the blob store
    rowid: int | None = None  # vec table key; None for unsaved chunks

    @property
    def is_binary(self) -> bool:
        return self.kind is ChunkKind.BINARY


@dataclass
class SummaryDraft:
    level: SummaryLevel
    content: str
    token_count: int
    degraded: bool = False


@dataclass
class Summary:
    summary_id: str
    project_id: str
    path: str
    level: SummaryLevel
    token_count: int
    blob_key: str
    content: str = ""
    embedding: list[float] | None = None
    created_at: str | None = None
    rowid: int | None = None


@dataclass
class SessionPiece:
    """One selected entry of an audit record: (id, path, token_count, priority)."""

    id: str
    path: str
    token_count: int
    priority: str

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "path": self.path,
            "token_count": self.token_count,
            "priority": self.priority,
        }


@dataclass
class ContextSession:
    session_id: str
    project_id: str
    pieces: list[SessionPiece]
    total_tokens: int
    model: str
    result_meta: str = field(default_factory=lambda: "{}")
    created_at: str | None = None

    @property
    def result_meta_dict(self) -> dict:
        return json.loads(self.result_meta)
