"""contextpack storage layer: metadata, vectors, blobs and cache."""

from contextpack.db.blobs import BlobStore, FileBlobStore
from contextpack.db.cache import CacheStore, SqliteCacheStore
from contextpack.db.connection import Database
from contextpack.db.migrations import MIGRATIONS, run_migrations
from contextpack.db.repository import PurgeReport, Repository
from contextpack.db.schema import initialize
from contextpack.db.vectors import ensure_vec_table, model_to_slug, vec_table_name

__all__ = [
    "BlobStore",
    "CacheStore",
    "Database",
    "FileBlobStore",
    "PurgeReport",
    "Repository",
    "SqliteCacheStore",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "ensure_vec_table",
    "model_to_slug",
    "vec_table_name",
]
