# oracle_gateway/core/cache.py
"""
In-memory TTL cache shared by the proof and response caches.

Each record carries its own TTL. A record is live while
``now < stored_at + ttl``; from that instant on it is stale, behaves as
absent and is overwritten lazily by the next write. Expired records are
also purged by an optional background sweeper thread owned by the cache.

All operations take the cache's own lock for the duration of a single
read or update only.
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

V = TypeVar("V")


@dataclass
class CacheRecord(Generic[V]):
    """A cached value with the time it was stored and its time-to-live."""
    key: str
    value: V
    stored_at: float
    ttl: float

    @property
    def expires_at(self) -> float:
        return self.stored_at + self.ttl

    def is_stale(self, now: float) -> bool:
        return now >= self.expires_at


class TTLCache(Generic[V]):
    """
    Thread-safe map of CacheRecords with lazy and periodic expiry.

    Args:
        default_ttl: TTL in seconds used when ``set`` is not given one.
        clock: Time source returning epoch seconds (injectable for tests).
        name: Label used in log lines and sweeper thread names.
    """

    def __init__(
        self,
        default_ttl: float,
        clock: Callable[[], float] = time.time,
        name: str = "cache",
    ):
        self._default_ttl = default_ttl
        self._clock = clock
        self._name = name
        self._records: Dict[str, CacheRecord[V]] = {}
        self._lock = threading.Lock()
        self._sweeper: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    @property
    def default_ttl(self) -> float:
        return self._default_ttl

    def now(self) -> float:
        return self._clock()

    def get_record(self, key: str) -> Optional[CacheRecord[V]]:
        """Return the live record for ``key``, evicting it if stale."""
        now = self._clock()
        with self._lock:
            record = self._records.get(key)
            if record is None:
                return None
            if record.is_stale(now):
                del self._records[key]
                return None
            return record

    def get(self, key: str) -> Optional[V]:
        record = self.get_record(key)
        return record.value if record is not None else None

    def set(self, key: str, value: V, ttl: Optional[float] = None) -> CacheRecord[V]:
        """Store ``value`` under ``key``, replacing any previous record."""
        record = CacheRecord(
            key=key,
            value=value,
            stored_at=self._clock(),
            ttl=self._default_ttl if ttl is None else ttl,
        )
        with self._lock:
            self._records[key] = record
        return record

    def update(self, key: str, mutate: Callable[[V], Any]) -> Optional[CacheRecord[V]]:
        """
        Apply ``mutate`` to the live value for ``key`` under the cache lock.

        Returns:
            The record after mutation, or None if the key is absent or stale
            (in which case ``mutate`` is not called).
        """
        now = self._clock()
        with self._lock:
            record = self._records.get(key)
            if record is None:
                return None
            if record.is_stale(now):
                del self._records[key]
                return None
            mutate(record.value)
            return record

    def delete(self, key: str) -> None:
        with self._lock:
            self._records.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
        logger.info(f"{self._name}: cleared")

    def purge_expired(self) -> int:
        """Remove every stale record. Returns the number removed."""
        now = self._clock()
        with self._lock:
            stale_keys = [k for k, r in self._records.items() if r.is_stale(now)]
            for key in stale_keys:
                del self._records[key]

        if stale_keys:
            logger.debug(f"{self._name}: purged {len(stale_keys)} expired entries")
        return len(stale_keys)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, key: str) -> bool:
        return self.get_record(key) is not None

    def stats(self) -> Dict[str, Any]:
        return {"size": len(self), "ttl": self._default_ttl}

    # --- Background sweep ---

    def start_sweeper(self, interval_seconds: float) -> None:
        """Start a daemon thread that calls ``purge_expired`` every interval."""
        if self._sweeper is not None and self._sweeper.is_alive():
            return

        self._stop_event.clear()
        self._sweeper = threading.Thread(
            target=self._sweep_loop,
            args=(interval_seconds,),
            name=f"{self._name}-sweeper",
            daemon=True,
        )
        self._sweeper.start()
        logger.info(f"{self._name}: sweeper started (every {interval_seconds}s)")

    def stop_sweeper(self, timeout: Optional[float] = 5.0) -> None:
        if self._sweeper is None:
            return
        self._stop_event.set()
        self._sweeper.join(timeout)
        self._sweeper = None
        logger.info(f"{self._name}: sweeper stopped")

    @property
    def sweeper_running(self) -> bool:
        return self._sweeper is not None and self._sweeper.is_alive()

    def _sweep_loop(self, interval_seconds: float) -> None:
        while not self._stop_event.wait(interval_seconds):
            try:
                self.purge_expired()
            except Exception as e:
                logger.error(f"{self._name}: sweep failed: {e}")
