# copilot/completion_cache.py
import hashlib
import threading
import time
from collections import OrderedDict
from typing import Callable, Optional

from copilot.entities import CacheEntry, CompletionContext

PREFIX_TAIL_CHARS = 512
SUFFIX_HEAD_CHARS = 256


def make_cache_key(context: CompletionContext) -> str:
    """
    Fingerprint of a completion site: prefix tail, suffix head, language, filename.
    Related files and the rest of the document are deliberately left out.
    """
    h = hashlib.sha256()
    for part in (
        context.prefix[-PREFIX_TAIL_CHARS:],
        context.suffix[:SUFFIX_HEAD_CHARS],
        context.language or "",
        context.filename or "",
    ):
        h.update(part.encode("utf-8", errors="surrogatepass"))
        h.update(b"\x00")
    return h.hexdigest()


class CompletionCache:
    """
    In-memory completion cache with:
    - fixed TTL (checked lazily on get)
    - bounded size, evicting in insertion order (FIFO; reads do not refresh)
    - thread-safe operations (shared across document surfaces)
    """

    def __init__(self, ttl_seconds: float = 30.0, max_entries: int = 50, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._lock = threading.Lock()
        self._items: "OrderedDict[str, CacheEntry]" = OrderedDict()

    def now(self) -> float:
        return self._clock()

    def configure(self, ttl_seconds: float, max_entries: int) -> None:
        """Change bounds in place; shrinking evicts the earliest entries right away."""
        with self._lock:
            self.ttl_seconds = ttl_seconds
            self.max_entries = max_entries
            while self._items and len(self._items) > max(0, max_entries):
                self._items.popitem(last=False)

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.created_at >= self.ttl_seconds

    def get(self, key: str) -> Optional[CacheEntry]:
        now = self._clock()
        with self._lock:
            entry = self._items.get(key)
            if entry is None:
                return None
            if self._is_expired(entry, now):
                # expired -> drop
                del self._items[key]
                return None
            return entry

    def put(self, key: str, entry: CacheEntry) -> None:
        if self.max_entries <= 0:
            return
        with self._lock:
            # re-put counts as a fresh insertion
            self._items.pop(key, None)
            self._items[key] = entry
            while len(self._items) > self.max_entries:
                self._items.popitem(last=False)

    def sweep_expired(self) -> int:
        """
        Delete expired entries. Lookup already ignores them; this only frees memory.
        Returns how many entries were removed.
        """
        now = self._clock()
        with self._lock:
            expired = [k for k, v in self._items.items() if self._is_expired(v, now)]
            for k in expired:
                del self._items[k]
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None
