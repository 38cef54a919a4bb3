"""Failed-decryption attempt tracking.

Bounds brute-force attempts against a key by counting decryption failures
per hashed key inside a fixed time window. Stale entries are swept
opportunistically from ``is_rate_limited`` and ``acquire`` so no background
thread is needed. ``acquire`` counts attempts still in progress against the
limit, so concurrent callers with one key cannot overshoot it.

Scope notes:
- State is in memory and per process. Separate processes (or restarts) do
  not share counters.
- Raw keys are never stored, only their SHA-256 digest.
"""

from __future__ import annotations

import hashlib
import threading
import time
from dataclasses import dataclass
from typing import Callable

from pydantic import BaseModel, ConfigDict, Field


def hash_key(key: str) -> str:
    """Return the tracker identifier for a hex key.

    The key is lower-cased first so that the same 32 bytes written in
    different case share one counter.

    Args:
        key: Hex-encoded key

    Returns:
        SHA-256 hex digest of the normalized key
    """
    return hashlib.sha256(key.lower().encode("utf-8")).hexdigest()


class RateLimitPolicy(BaseModel):
    """Tuning for :class:`AttemptTracker`."""

    model_config = ConfigDict(frozen=True)

    max_failures: int = Field(default=10, gt=0)
    """Failures allowed inside one window before attempts are refused."""

    window_seconds: float = Field(default=60.0, gt=0)
    """Length of the counting window, measured from the first failure."""

    sweep_interval_seconds: float = Field(default=300.0, gt=0)
    """Minimum time between two sweeps of expired records."""


@dataclass
class AttemptRecord:
    """Failure counter for one hashed key."""

    count: int
    window_start: float


class AttemptTracker:
    """Thread-safe table of failed attempts keyed by hashed key."""

    def __init__(
        self,
        policy: RateLimitPolicy | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize tracker.

        Args:
            policy: Limits to enforce (defaults to 10 failures per 60 seconds)
            clock: Source of the current time in seconds
        """
        self.policy = policy or RateLimitPolicy()
        self._clock = clock
        self._records: dict[str, AttemptRecord] = {}
        self._in_flight: dict[str, int] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def _expired(self, record: AttemptRecord, now: float) -> bool:
        return now - record.window_start > self.policy.window_seconds

    def _sweep_locked(self, now: float) -> int:
        cutoff = now - self.policy.window_seconds
        stale = [h for h, r in self._records.items() if r.window_start < cutoff]
        for key_hash in stale:
            del self._records[key_hash]
        self._last_sweep = now
        return len(stale)

    def sweep(self) -> int:
        """Remove every record whose window has expired.

        Returns:
            Number of records removed
        """
        with self._lock:
            return self._sweep_locked(self._clock())

    def is_rate_limited(self, key: str) -> bool:
        """Check whether further attempts with this key must be refused.

        Args:
            key: Hex-encoded key of the current attempt

        Returns:
            True if the key reached the failure threshold in its window
        """
        key_hash = hash_key(key)
        with self._lock:
            now = self._clock()
            if now - self._last_sweep > self.policy.sweep_interval_seconds:
                self._sweep_locked(now)

            record = self._records.get(key_hash)
            if record is None:
                return False
            if self._expired(record, now):
                del self._records[key_hash]
                return False
            return record.count >= self.policy.max_failures

    def _record_failure_locked(self, key_hash: str, now: float) -> None:
        record = self._records.get(key_hash)
        if record is None or self._expired(record, now):
            self._records[key_hash] = AttemptRecord(count=1, window_start=now)
        else:
            record.count += 1

    def record_failure(self, key: str) -> None:
        """Count one failed decryption attempt for this key."""
        key_hash = hash_key(key)
        with self._lock:
            self._record_failure_locked(key_hash, self._clock())

    def acquire(self, key: str) -> bool:
        """Reserve one decryption attempt for this key.

        Attempts still in progress count against the limit, so concurrent
        callers with the same key cannot get past it together. Every
        successful acquire must be paired with :meth:`release`.

        Args:
            key: Hex-encoded key of the current attempt

        Returns:
            False if the attempt must be refused
        """
        key_hash = hash_key(key)
        with self._lock:
            now = self._clock()
            if now - self._last_sweep > self.policy.sweep_interval_seconds:
                self._sweep_locked(now)

            count = 0
            record = self._records.get(key_hash)
            if record is not None:
                if self._expired(record, now):
                    del self._records[key_hash]
                else:
                    count = record.count

            in_flight = self._in_flight.get(key_hash, 0)
            if count + in_flight >= self.policy.max_failures:
                return False

            self._in_flight[key_hash] = in_flight + 1
            return True

    def release(self, key: str, failed: bool) -> None:
        """Finish an attempt reserved with :meth:`acquire`.

        Args:
            key: Hex-encoded key of the attempt
            failed: Whether the attempt is counted as a failure
        """
        key_hash = hash_key(key)
        with self._lock:
            remaining = self._in_flight.get(key_hash, 0) - 1
            if remaining > 0:
                self._in_flight[key_hash] = remaining
            else:
                self._in_flight.pop(key_hash, None)

            if failed:
                self._record_failure_locked(key_hash, self._clock())

    def failure_count(self, key: str) -> int:
        """Failures recorded for this key in its current window."""
        key_hash = hash_key(key)
        with self._lock:
            record = self._records.get(key_hash)
            if record is None or self._expired(record, self._clock()):
                return 0
            return record.count

    def clear(self, key_hash: str) -> bool:
        """Forget the record for a hashed key.

        Args:
            key_hash: Identifier as returned by :func:`hash_key`

        Returns:
            True if a record was removed
        """
        with self._lock:
            return self._records.pop(key_hash, None) is not None

    def reset(self) -> None:
        """Forget all records."""
        with self._lock:
            self._records.clear()
            self._last_sweep = self._clock()
