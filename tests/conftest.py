"""Shared pytest fixtures."""

from __future__ import annotations

import hashlib
import re
from unittest.mock import MagicMock, patch

import pytest

from contextpack.config import ContextPackConfig
from contextpack.db.blobs import FileBlobStore
from contextpack.db.connection import Database
from contextpack.db.schema import initialize
from contextpack.ingest.tokenizer import Tokenizer
from contextpack.rag.llm_client import EmbeddingFunction
from contextpack.service import ContextService

DIMS = 8
EMBED_MODEL = "test/fake-embed"


def fake_vector(text: str) -> list[float]:
    """Deterministic bag-of-words vector: texts sharing words point the same way."""
    vec = [0.0] * DIMS
    for word in re.findall(r"\w+", text.lower()):
        bucket = int(hashlib.md5(word.encode()).hexdigest(), 16) % DIMS
        vec[bucket] += 1.0
    return vec


def _fake_embedding(model, input, **kwargs):
    response = MagicMock()
    response.data = [{"embedding": fake_vector(input[0])}]
    return response


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".contextpack.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def blobs(tmp_path):
    return FileBlobStore(tmp_path / "blobs")


@pytest.fixture
def fake_embeddings():
    """Patch litellm.embedding with the deterministic fake; yields the mock."""
    with patch(
        "contextpack.rag.llm_client.litellm.embedding", side_effect=_fake_embedding
    ) as mock:
        yield mock


@pytest.fixture
def embedder():
    return EmbeddingFunction(model=EMBED_MODEL, dimensions=DIMS, timeout=1.0, num_retries=0)


@pytest.fixture
def test_config():
    cfg = ContextPackConfig()
    cfg.embedding.model = EMBED_MODEL
    cfg.embedding.dimensions = DIMS
    cfg.tokenizer.model = "simple"
    # Fixture files are a few dozen tokens; keep them chunkable.
    cfg.chunking.min_chunk_tokens = 1
    return cfg


@pytest.fixture
def service(tmp_db, blobs, test_config, fake_embeddings):
    return ContextService(tmp_db, blobs, test_config, tokenizer=Tokenizer("simple"))
