# oracle_gateway/services/sources.py
"""
Upstream data sources and their circuit-breaker state.

SourceRegistry holds the configured providers with their health fields. Each
method is a single synchronized update; callers get snapshots, never the
live DataSource objects.

Breaker policy:
- CIRCUIT_BREAKER_THRESHOLD consecutive failures open the breaker
  (healthy=False, state change time recorded)
- Once CIRCUIT_BREAKER_TIMEOUT_SECONDS have passed since then, the source is
  optimistically marked healthy again (half-open) and retried. Its failure
  count is kept, so a single further failure reopens the breaker.
"""
import logging
import threading
import time
from dataclasses import dataclass, replace
from typing import Callable, Dict, Iterable, List, Optional

from oracle_gateway.core.config import DataSourceConfig, settings

logger = logging.getLogger(__name__)


@dataclass
class DataSource:
    name: str
    endpoint: str
    priority: int
    healthy: bool = True
    consecutive_failures: int = 0
    last_state_change_at: float = 0.0


class SourceRegistry:
    """Ordered, thread-safe set of upstream data sources."""

    def __init__(
        self,
        sources: Iterable[DataSource],
        breaker_threshold: Optional[int] = None,
        breaker_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._sources: Dict[str, DataSource] = {}
        for source in sources:
            if source.name in self._sources:
                raise ValueError(f"Duplicate data source name: {source.name}")
            self._sources[source.name] = replace(source)

        if not self._sources:
            raise ValueError("At least one data source must be configured")

        self.breaker_threshold = breaker_threshold if breaker_threshold is not None else settings.CIRCUIT_BREAKER_THRESHOLD
        self.breaker_timeout = breaker_timeout if breaker_timeout is not None else settings.CIRCUIT_BREAKER_TIMEOUT_SECONDS
        self._clock = clock
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, configs: List[DataSourceConfig], clock: Callable[[], float] = time.time) -> "SourceRegistry":
        now = clock()
        return cls(
            [
                DataSource(
                    name=c.name,
                    endpoint=str(c.url).rstrip("/"),
                    priority=c.priority,
                    last_state_change_at=now,
                )
                for c in configs
            ],
            clock=clock,
        )

    def attempt_order(self) -> List[DataSource]:
        """
        Sources to try for one fetch, best first.

        Open breakers whose timeout has elapsed are reinstated (half-open).
        Sources whose breaker is still open are left out, so every returned
        source is healthy; they are ordered by ascending priority.
        """
        now = self._clock()
        with self._lock:
            for source in self._sources.values():
                if not source.healthy and now - source.last_state_change_at >= self.breaker_timeout:
                    source.healthy = True
                    source.last_state_change_at = now
                    logger.info(f"Attempting to recover source: {source.name}")

            candidates = [replace(s) for s in self._sources.values() if s.healthy]

        return sorted(candidates, key=lambda s: s.priority)

    def skipped(self) -> List[DataSource]:
        """Snapshot of sources whose breaker is currently open."""
        with self._lock:
            return [replace(s) for s in self._sources.values() if not s.healthy]

    def record_success(self, name: str) -> None:
        now = self._clock()
        with self._lock:
            source = self._sources[name]
            if not source.healthy:
                source.last_state_change_at = now
            source.healthy = True
            source.consecutive_failures = 0

    def record_failure(self, name: str) -> bool:
        """
        Count a failed attempt against ``name``.

        Returns:
            True if this failure opened (or reopened) the breaker.
        """
        now = self._clock()
        with self._lock:
            source = self._sources[name]
            source.consecutive_failures += 1
            failures = source.consecutive_failures

            if failures >= self.breaker_threshold:
                source.healthy = False
                source.last_state_change_at = now
                opened = True
            else:
                opened = False

        if opened:
            logger.warning(
                f"Circuit breaker opened for: {name} "
                f"(failures={failures}, retry in {self.breaker_timeout}s)"
            )
        return opened

    def get(self, name: str) -> DataSource:
        with self._lock:
            return replace(self._sources[name])

    def snapshot(self) -> List[DataSource]:
        with self._lock:
            sources = [replace(s) for s in self._sources.values()]
        return sorted(sources, key=lambda s: s.priority)

    def health(self) -> List[Dict[str, object]]:
        return [
            {
                "name": s.name,
                "healthy": s.healthy,
                "failures": s.consecutive_failures,
                "priority": s.priority,
            }
            for s in self.snapshot()
        ]
