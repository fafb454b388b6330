"""Blob store — full chunk and summary text kept out of the metadata rows.

Keys are slash-separated (``chunks/<chunk_id>.txt``) and map onto files
under a root directory. Writes go to a temporary file first and are renamed
into place, so a reader never sees a half-written blob.
"""

from __future__ import annotations

import os
import re
import tempfile
from pathlib import Path
from typing import Protocol

from contextpack.errors import BlobNotFoundError

_KEY_RE = re.compile(r"[A-Za-z0-9_\-]+(?:/[A-Za-z0-9_\-.]+)*")


def chunk_blob_key(chunk_id: str) -> str:
    return f"chunks/{chunk_id}.txt"


def summary_blob_key(summary_id: str) -> str:
    return f"summaries/{summary_id}.txt"


class BlobStore(Protocol):
    def put(self, key: str, data: bytes) -> None: ...

    def get(self, key: str) -> bytes: ...

    def delete(self, key: str) -> None: ...

    def exists(self, key: str) -> bool: ...


class FileBlobStore:
    """Content store backed by a directory tree.

    Args:
        root: Directory holding the blobs (created on first write).
    """

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    def put(self, key: str, data: bytes) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def get(self, key: str) -> bytes:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise BlobNotFoundError(key) from None

    def delete(self, key: str) -> None:
        """Delete *key*. Deleting a missing key is a no-op."""
        self._path(key).unlink(missing_ok=True)

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def _path(self, key: str) -> Path:
        if not _KEY_RE.fullmatch(key) or ".." in key.split("/"):
            raise ValueError(f"Invalid blob key: '{key}'")
        return self.root.joinpath(*key.split("/"))
