# backend/callflow/services/audio_cache.py
"""
Short-lived in-memory store for synthesized call audio.

Each webhook turn synthesizes its reply once and stores the bytes here under a
fresh id; Twilio then fetches /api/calls/audio?id=... while the entry is alive.
Entries expire AUDIO_CACHE_TTL_SECONDS after creation:
- lazily, on read
- in bulk, by the housekeeping sweep
Eviction is idempotent.
"""
from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from callflow.utils.logger import logger


@dataclass(frozen=True)
class AudioCacheEntry:
    id: str
    payload: bytes
    created_at: float
    expires_at: float


class AudioCache:
    def __init__(self, ttl_seconds: float = 60.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, AudioCacheEntry] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def put(self, payload: bytes) -> str:
        """Store audio bytes under a new id and return the id."""
        now = self._clock()
        entry = AudioCacheEntry(
            id=uuid.uuid4().hex,
            payload=bytes(payload),
            created_at=now,
            expires_at=now + self.ttl_seconds,
        )
        with self._lock:
            self._entries[entry.id] = entry
        logger.info(f"[audio-cache] Set: {entry.id} ({len(entry.payload)} bytes, ttl={self.ttl_seconds:.0f}s)")
        return entry.id

    def get(self, audio_id: str) -> Optional[bytes]:
        with self._lock:
            entry = self._entries.get(audio_id)
            if entry is None:
                self.misses += 1
                return None
            if self._clock() >= entry.expires_at:
                del self._entries[audio_id]
                self.misses += 1
                return None
            self.hits += 1
            return entry.payload

    def evict(self, audio_id: str) -> bool:
        """Remove an entry. Safe to call for ids that are already gone."""
        with self._lock:
            return self._entries.pop(audio_id, None) is not None

    def sweep(self) -> int:
        """Remove every expired entry; returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if now >= e.expires_at]
            for k in expired:
                del self._entries[k]
        if expired:
            logger.debug(f"[audio-cache] swept {len(expired)} expired entries")
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> Dict:
        total = self.hits + self.misses
        hit_rate = (self.hits / total * 100) if total > 0 else 0
        return {
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate_percent": round(hit_rate, 2),
            "cache_size": len(self._entries),
        }

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        self.hits = 0
        self.misses = 0
