"""Session cache for assembled contexts plus the assembly audit trail.

Identical requests (same project, prompt prefix, budget and hot paths)
within the TTL are answered from the cache. The cache is never
authoritative: read and write failures are logged and treated as misses.
"""

from __future__ import annotations

import hashlib
import json
import logging
from typing import Iterable

from contextpack.db.cache import CacheStore, glob_escape
from contextpack.db.models import ContextSession
from contextpack.db.repository import Repository

logger = logging.getLogger(__name__)


class SessionCache:
    """Cache assembled context payloads keyed by request fingerprint.

    Args:
        store: Backing CacheStore.
        ttl: Seconds an entry stays valid.
        prompt_prefix_chars: Leading prompt characters that enter the key.
    """

    def __init__(self, store: CacheStore, ttl: int = 3_600, prompt_prefix_chars: int = 100) -> None:
        self._store = store
        self.ttl = ttl
        self.prompt_prefix_chars = prompt_prefix_chars

    def key_for(
        self,
        project_id: str,
        prompt: str,
        budget: int,
        hot_paths: Iterable[str] = (),
    ) -> str:
        fingerprint = json.dumps(
            [project_id, prompt[: self.prompt_prefix_chars], budget, sorted(hot_paths)],
            ensure_ascii=False,
        )
        digest = hashlib.sha256(fingerprint.encode("utf-8")).hexdigest()
        return f"context:{project_id}:{digest}"

    def get(self, key: str) -> dict | None:
        try:
            raw = self._store.get(key)
        except Exception as exc:
            logger.warning("Session cache read failed for %s: %s", key, exc)
            return None
        if raw is None:
            return None
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Discarding unreadable session cache entry %s", key)
            return None
        logger.debug("Session cache hit: %s", key)
        return payload

    def put(self, key: str, payload: dict) -> None:
        try:
            self._store.set_with_ttl(key, json.dumps(payload, ensure_ascii=False), self.ttl)
        except Exception as exc:
            logger.warning("Session cache write failed for %s: %s", key, exc)

    def invalidate_project(self, project_id: str) -> int:
        """Drop cached contexts and cached blob text of *project_id*.

        Expired entries of every project are swept at the same time.
        Returns the number of *project_id* entries removed.
        """
        escaped = glob_escape(project_id)
        removed = 0
        try:
            for prefix in ("context", "blob"):
                keys = self._store.keys(f"{prefix}:{escaped}:*")
                removed += self._store.delete(*keys)
            swept = self._store.purge_expired()
            if swept:
                logger.debug("Swept %d expired cache entries", swept)
        except Exception as exc:
            logger.warning("Session cache invalidation failed for %s: %s", project_id, exc)
        return removed


def record_session(repo: Repository, session: ContextSession) -> bool:
    """Write the audit row for *session*; failures are logged, never raised."""
    try:
        repo.add_session(session)
    except Exception as exc:
        logger.warning("Could not record context session %s: %s", session.session_id, exc)
        return False
    return True
