import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Optional

from app.core.clock import Clock, SystemClock
from app.core.config import settings
from app.llm.types import StyleSignal


@dataclass(frozen=True)
class CacheEntry:
    fingerprint: str
    signal: StyleSignal
    expires_at: float


class ResultCache:
    """Bounded TTL cache of successful analyses keyed by fingerprint.

    Eviction is FIFO by insertion; reads never reorder entries. Expired entries are
    dropped when they are looked up, or by purge_expired().
    """

    def __init__(
        self,
        clock: Optional[Clock] = None,
        *,
        ttl_s: float = settings.SCAN_CACHE_TTL_S,
        max_entries: int = settings.SCAN_CACHE_MAX_ENTRIES,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.clock = clock or SystemClock()
        self.ttl_s = ttl_s
        self.max_entries = max_entries
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, fingerprint: str) -> Optional[StyleSignal]:
        with self._lock:
            entry = self._entries.get(fingerprint)
            if entry is None:
                return None
            if self.clock.now() > entry.expires_at:
                del self._entries[fingerprint]
                return None
            return entry.signal

    def put(self, fingerprint: str, signal: StyleSignal) -> None:
        now = self.clock.now()
        with self._lock:
            existing = self._entries.get(fingerprint)
            if existing is not None:
                if now <= existing.expires_at:
                    return
                del self._entries[fingerprint]
            while len(self._entries) >= self.max_entries:
                self._entries.popitem(last=False)
            self._entries[fingerprint] = CacheEntry(fingerprint, signal, now + self.ttl_s)

    def purge_expired(self) -> int:
        now = self.clock.now()
        with self._lock:
            stale = [fp for fp, entry in self._entries.items() if now > entry.expires_at]
            for fp in stale:
                del self._entries[fp]
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, fingerprint: str) -> bool:
        return self.get(fingerprint) is not None
