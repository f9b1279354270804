# oracle_gateway/x402/proof_cache.py
"""
Replay window for verified payment proofs.

A proof that passed ledger verification once is remembered until its access
window elapses, so later requests carrying the same transaction signature are
admitted without another ledger round-trip. Only verified proofs are ever
recorded; rejections are never cached.
"""
import logging
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Optional

from oracle_gateway.core.cache import TTLCache

logger = logging.getLogger(__name__)


@dataclass
class ProofCacheEntry:
    proof_id: str
    verified_amount: int
    first_seen_at: float
    expires_at: float
    reuse_count: int = 0


class ProofCache:
    """Thread-safe store of ProofCacheEntry keyed by proof_id."""

    def __init__(self, access_window_seconds: float, clock: Callable[[], float] = time.time):
        self._access_window = access_window_seconds
        self._cache: TTLCache[ProofCacheEntry] = TTLCache(
            default_ttl=access_window_seconds,
            clock=clock,
            name="proof-cache",
        )

    @property
    def access_window_seconds(self) -> float:
        return self._access_window

    def touch(self, proof_id: str) -> Optional[ProofCacheEntry]:
        """
        Record one more use of a live proof.

        Returns:
            A snapshot of the entry after incrementing ``reuse_count``, or None
            if the proof is unknown or its window has elapsed.
        """
        def _increment(entry: ProofCacheEntry) -> None:
            entry.reuse_count += 1

        record = self._cache.update(proof_id, _increment)
        if record is None:
            return None
        return replace(record.value)

    def peek(self, proof_id: str) -> Optional[ProofCacheEntry]:
        """Return a snapshot of the live entry without counting a use."""
        record = self._cache.get_record(proof_id)
        return replace(record.value) if record is not None else None

    def record_verified(self, proof_id: str, verified_amount: int) -> ProofCacheEntry:
        """Insert (or overwrite) the entry for a freshly verified proof."""
        now = self._cache.now()
        entry = ProofCacheEntry(
            proof_id=proof_id,
            verified_amount=verified_amount,
            first_seen_at=now,
            expires_at=now + self._access_window,
        )
        self._cache.set(proof_id, entry, ttl=self._access_window)
        logger.debug(f"x402: cached proof {proof_id[:16]}... until {entry.expires_at}")
        return replace(entry)

    def purge_expired(self) -> int:
        return self._cache.purge_expired()

    def start_sweeper(self, interval_seconds: float) -> None:
        self._cache.start_sweeper(interval_seconds)

    def stop_sweeper(self) -> None:
        self._cache.stop_sweeper()

    @property
    def sweeper_running(self) -> bool:
        return self._cache.sweeper_running

    def clear(self) -> None:
        self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)

    def stats(self) -> Dict[str, Any]:
        return self._cache.stats()
