import threading
import time
from collections import OrderedDict

DEFAULT_TTL = 60 * 60 * 24


class Cache:
    """
    Thread-safe memo with per-entry expiry and an optional size cap.

    Entries are kept in least recently used order: a hit moves the entry to
    the end and the cap evicts from the front. Expired entries are purged by a
    daemon thread.

    Attributes:
        ttl (int): Lifetime of an entry in seconds.
        max_items (int | None): Upper bound on stored entries, unbounded when None.
        hits (int): Lookups answered from the cache.
        misses (int): Lookups that found nothing or an expired entry.
    """

    def __init__(self, ttl: int = DEFAULT_TTL, max_items: int = None):
        self.ttl = ttl
        self.max_items = max_items
        self.hits = 0
        self.misses = 0
        self._entries = OrderedDict()
        self._lock = threading.Lock()
        threading.Thread(target=self._purge_expired, name="cache-cleanup", daemon=True).start()

    def get(self, key):
        """
        Args:
            key: Lookup key.

        Returns:
            The stored value, or None when it is missing or expired.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry[1] < time.time():
                self.misses += 1
                return None
            self._entries.move_to_end(key)
            self.hits += 1
            return entry[0]

    def set(self, key, value):
        with self._lock:
            self._entries[key] = (value, time.time() + self.ttl)
            self._entries.move_to_end(key)
            if self.max_items is not None:
                while len(self._entries) > self.max_items:
                    self._entries.popitem(last=False)

    def clear(self) -> int:
        """Drop every entry and reset the counters. Returns how many entries were removed."""
        with self._lock:
            removed = len(self._entries)
            self._entries.clear()
            self.hits = self.misses = 0
            return removed

    def dump(self):
        """
        Live entries for the admin UI, least recently used first.

        Returns:
            list[dict]: key, value, expires_at (epoch seconds) and expires_in (seconds left).
        """
        now = time.time()
        with self._lock:
            items = list(self._entries.items())
        return [
            {"key": key, "value": value, "expires_at": expiry, "expires_in": int(expiry - now)}
            for key, (value, expiry) in items
            if expiry >= now
        ]

    def _purge_expired(self):
        while True:
            time.sleep(max(0.5, self.ttl / 30))
            now = time.time()
            with self._lock:
                for key in [key for key, (_, expiry) in self._entries.items() if expiry < now]:
                    del self._entries[key]

    def __len__(self):
        with self._lock:
            return len(self._entries)
