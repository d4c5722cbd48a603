"""
In-memory credential store for Gateway sessions.
"""

import asyncio
import dataclasses
import threading
import zlib
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from shared.logging import get_logger
from .models import Session

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


_UPDATABLE_FIELDS = frozenset(f.name for f in dataclasses.fields(Session))


class CredentialStore:
    """Session table keyed by user id.

    Sessions are immutable snapshots: readers always get a consistent view and
    writers swap in a whole new snapshot. Writes are serialized per shard, so
    unrelated users never contend on one global lock. Lifetime is the process
    lifetime; nothing is ever evicted implicitly.
    """

    def __init__(self, shard_count: int = 16, metrics: Optional["MetricsCollector"] = None):
        self.logger = get_logger("gateway.session_store")
        self.metrics = metrics
        self._shard_count = max(1, shard_count)
        self._shards: List[Dict[str, Session]] = [{} for _ in range(self._shard_count)]
        self._shard_locks = [threading.Lock() for _ in range(self._shard_count)]
        self._refresh_locks: Dict[str, asyncio.Lock] = {}
        self._refresh_locks_guard = threading.Lock()

    def _shard(self, user_id: str) -> int:
        return zlib.crc32(user_id.encode("utf-8")) % self._shard_count

    def create(self, user_id: str, session: Session) -> None:
        """Store a session, replacing any previous one for the user."""
        index = self._shard(user_id)
        with self._shard_locks[index]:
            replaced = user_id in self._shards[index]
            self._shards[index][user_id] = session

        self.logger.info("Session created", user_id=user_id, replaced=replaced)
        self._publish_count()

    def get(self, user_id: str) -> Optional[Session]:
        """Return the current session snapshot, or None."""
        index = self._shard(user_id)
        with self._shard_locks[index]:
            return self._shards[index].get(user_id)

    def update(self, user_id: str, **fields: Any) -> Optional[Session]:
        """Replace only the given fields of an existing session.

        A missing session is left missing. Returns the new snapshot.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown session fields: {sorted(unknown)}")

        index = self._shard(user_id)
        with self._shard_locks[index]:
            current = self._shards[index].get(user_id)
            if current is None:
                self.logger.debug("Session update skipped, no session", user_id=user_id)
                return None
            updated = dataclasses.replace(current, **fields)
            self._shards[index][user_id] = updated

        self.logger.debug("Session updated", user_id=user_id, fields=sorted(fields))
        return updated

    def delete(self, user_id: str) -> None:
        """Remove a user's session if present."""
        index = self._shard(user_id)
        with self._shard_locks[index]:
            removed = self._shards[index].pop(user_id, None) is not None

        with self._refresh_locks_guard:
            lock = self._refresh_locks.get(user_id)
            if lock is not None and not lock.locked():
                del self._refresh_locks[user_id]

        if removed:
            self.logger.info("Session deleted", user_id=user_id)
        self._publish_count()

    def count(self) -> int:
        total = 0
        for index in range(self._shard_count):
            with self._shard_locks[index]:
                total += len(self._shards[index])
        return total

    def lock_for(self, user_id: str) -> asyncio.Lock:
        """Per-user lock used to serialize credential refreshes."""
        with self._refresh_locks_guard:
            lock = self._refresh_locks.get(user_id)
            if lock is None:
                lock = asyncio.Lock()
                self._refresh_locks[user_id] = lock
            return lock

    def _publish_count(self) -> None:
        if self.metrics:
            self.metrics.set_gauge("active_sessions", self.count())
