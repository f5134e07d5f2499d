"""
In-process TTL cache of resolved system capabilities, keyed by (userId, role).

Entries are only an optimization: an expired entry is never returned even if
the sweeper has not removed it yet, and nothing is shared across Lambda
instances.
"""
import threading
import time

from common import config
from authz.capabilities import resolve_system_capabilities

logger = config.get_logger(__name__)


class CapabilityCache:
    def __init__(self, resolver=None, ttl=None, clock=None):
        self.resolver = resolver or resolve_system_capabilities
        self.ttl = ttl if ttl is not None else config.CAPABILITY_CACHE_TTL_SECONDS
        self.clock = clock or time.monotonic
        self._entries = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._stop = threading.Event()
        self._thread = None

    def get(self, principal):
        """Capabilities for the principal's system role, resolving on miss or expiry."""
        key = (principal.user_id, principal.role)
        now = self.clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry[1] > now:
                self._hits += 1
                logger.debug("capability cache hit userId=%s role=%s", *key)
                return entry[0]
            self._misses += 1
        logger.debug("capability cache miss userId=%s role=%s", *key)
        capabilities = frozenset(self.resolver(principal.role))
        with self._lock:
            self._entries[key] = (capabilities, now + self.ttl)
        logger.debug("capability cache set userId=%s role=%s count=%s", key[0], key[1], len(capabilities))
        return capabilities

    def invalidate(self, user_id):
        """Drop every entry for the user, whatever role it was cached under."""
        with self._lock:
            keys = [k for k in self._entries if k[0] == user_id]
            for k in keys:
                del self._entries[k]
        if keys:
            logger.info("capability cache invalidated userId=%s entries=%s", user_id, len(keys))
        return len(keys)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def sweep(self):
        """Remove expired entries. Returns how many were evicted."""
        now = self.clock()
        with self._lock:
            expired = [k for k, (_, expires_at) in self._entries.items() if expires_at <= now]
            for k in expired:
                del self._entries[k]
            self._evictions += len(expired)
        if expired:
            logger.info("capability cache evicted entries=%s", len(expired))
        return len(expired)

    def stats(self):
        with self._lock:
            return {
                "size": len(self._entries),
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "ttlSeconds": self.ttl,
            }

    def start(self, interval=None):
        """Run sweep() every interval seconds (default: the TTL) on a daemon thread."""
        if self._thread is not None and self._thread.is_alive():
            return
        interval = interval or self.ttl
        self._stop.clear()

        def _run():
            while not self._stop.wait(interval):
                try:
                    self.sweep()
                except Exception:
                    logger.exception("capability cache sweep failed")

        self._thread = threading.Thread(target=_run, name="capability-cache-sweeper", daemon=True)
        self._thread.start()

    def stop(self, timeout=5):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    @property
    def running(self):
        return self._thread is not None and self._thread.is_alive()
