import threading
from collections import OrderedDict


class LRUCache:
    """Thread-safe LRU Cache with statistics"""

    def __init__(self, maxsize=128, stats_window=100):
        self.cache = OrderedDict()
        self.maxsize = maxsize
        self.stats = {
            "hits": 0,
            "misses": 0,
            "evictions": 0,
            "hit_rate": 0.0
        }
        self.access_history = []  # Track last N accesses
        self.stats_window = stats_window
        self._lock = threading.Lock()

    def get(self, key, default=None):
        """Get an item from cache with stats tracking"""
        with self._lock:
            if key in self.cache:
                self.cache.move_to_end(key)
                self.stats["hits"] += 1
                self._record_access(True)
                return self.cache[key]

            self.stats["misses"] += 1
            self._record_access(False)
            return default

    def __setitem__(self, key, value):
        """Add/update an item in the cache"""
        with self._lock:
            self.cache[key] = value
            self.cache.move_to_end(key)

            while len(self.cache) > self.maxsize:
                self.cache.popitem(last=False)
                self.stats["evictions"] += 1

    def __contains__(self, key):
        with self._lock:
            return key in self.cache

    def __len__(self):
        with self._lock:
            return len(self.cache)

    def clear(self):
        """Drop every entry, keeping statistics"""
        with self._lock:
            self.cache.clear()

    def _record_access(self, hit):
        """Record access for hit rate calculation"""
        self.access_history.append(hit)
        if len(self.access_history) > self.stats_window:
            self.access_history.pop(0)

        if self.access_history:
            self.stats["hit_rate"] = sum(self.access_history) / len(self.access_history)
