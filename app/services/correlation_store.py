"""
Correlation Store
Maps provider originator/conversation ids to the tenant and intent that issued the command,
so a later result callback can be routed back.
"""

import json
import threading
import time
from dataclasses import dataclass, asdict
from typing import Callable, Optional

from flask import current_app

from app.extensions import redis_client
from app.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_TTL_SECONDS = 600


@dataclass
class CorrelationEntry:
    platform_id: str
    type: str
    created_at: float


class CorrelationStore:
    """
    In-process store with lazy expiry on read.

    Only safe for a single instance; use RedisCorrelationStore when several
    workers handle callbacks.
    """

    def __init__(self, ttl_seconds: int = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries = {}
        self._lock = threading.Lock()

    def register(self, originator_id: str, platform_id: str, intent_type: str) -> None:
        if not originator_id:
            return
        with self._lock:
            now = self._clock()
            self._purge_expired(now)
            self._entries[originator_id] = CorrelationEntry(
                platform_id=platform_id,
                type=intent_type,
                created_at=now
            )

    def _purge_expired(self, now: float) -> None:
        # caller holds the lock
        expired = [key for key, entry in self._entries.items() if now - entry.created_at > self.ttl_seconds]
        for key in expired:
            del self._entries[key]

    def resolve(self, originator_id: str) -> Optional[CorrelationEntry]:
        """Read and remove an entry; expired or unknown ids resolve to None"""
        if not originator_id:
            return None
        with self._lock:
            entry = self._entries.pop(originator_id, None)
        if entry is None:
            return None
        if self._clock() - entry.created_at > self.ttl_seconds:
            return None
        return entry

    def __len__(self):
        return len(self._entries)


class RedisCorrelationStore:
    """Shared store for multi-instance deployments; Redis handles expiry"""

    KEY_PREFIX = 'correlation'

    def __init__(self, client=None, ttl_seconds: int = DEFAULT_TTL_SECONDS):
        self.client = client or redis_client
        self.ttl_seconds = ttl_seconds

    def _key(self, originator_id: str) -> str:
        return f'{self.KEY_PREFIX}:{originator_id}'

    def register(self, originator_id: str, platform_id: str, intent_type: str) -> None:
        if not originator_id:
            return
        entry = CorrelationEntry(platform_id=platform_id, type=intent_type, created_at=time.time())
        self.client.set(self._key(originator_id), json.dumps(asdict(entry)), ex=self.ttl_seconds)

    def resolve(self, originator_id: str) -> Optional[CorrelationEntry]:
        if not originator_id:
            return None
        raw = self.client.getdel(self._key(originator_id))
        if not raw:
            return None
        try:
            return CorrelationEntry(**json.loads(raw))
        except (TypeError, ValueError) as e:
            logger.warning(f'Discarding malformed correlation entry {originator_id}: {str(e)}')
            return None


_memory_store = None
_memory_lock = threading.Lock()


def get_correlation_store():
    """Return the configured store ('memory' by default, 'redis' for shared deployments)"""
    global _memory_store

    ttl = current_app.config.get('CORRELATION_TTL_SECONDS', DEFAULT_TTL_SECONDS)
    if current_app.config.get('CORRELATION_BACKEND', 'memory') == 'redis':
        return RedisCorrelationStore(ttl_seconds=ttl)

    with _memory_lock:
        if _memory_store is None or _memory_store.ttl_seconds != ttl:
            _memory_store = CorrelationStore(ttl_seconds=ttl)
        return _memory_store


def reset_correlation_store():
    """Drop the in-process store (used between tests)"""
    global _memory_store
    with _memory_lock:
        _memory_store = None
