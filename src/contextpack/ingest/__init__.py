"""contextpack ingest pipeline — normalizer, tokenizer, chunk builder, writers."""

from contextpack.ingest.base import ChunkBuilder
from contextpack.ingest.chunk_writer import ChunkWriter
from contextpack.ingest.normalizer import Language, detect_language, is_binary, normalize
from contextpack.ingest.summarizer import Summarizer, SummaryWriter
from contextpack.ingest.tokenizer import Tokenizer, TokenSequence, simple_tokenize

__all__ = [
    "ChunkBuilder",
    "ChunkWriter",
    "Language",
    "Summarizer",
    "SummaryWriter",
    "TokenSequence",
    "Tokenizer",
    "detect_language",
    "is_binary",
    "normalize",
    "simple_tokenize",
]
