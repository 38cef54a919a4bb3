"""Tests for failed-attempt tracking."""

import threading
import time

import pytest
from pydantic import ValidationError

from envlock import crypt
from envlock.exceptions import DecryptionError, RateLimitedError
from envlock.ratelimit import AttemptTracker, RateLimitPolicy, hash_key

KEY = "ab" * 32
OTHER_KEY = "cd" * 32


class TestHashKey:
    """Test key hashing."""

    def test_hash_is_not_the_key(self):
        """Test that the raw key is never used as identifier."""
        assert hash_key(KEY) != KEY
        assert len(hash_key(KEY)) == 64

    def test_hash_ignores_case(self):
        """Test that hex case does not split counters."""
        assert hash_key(KEY.upper()) == hash_key(KEY)


class TestRateLimitPolicy:
    """Test policy validation."""

    def test_defaults(self):
        """Test default limits."""
        policy = RateLimitPolicy()
        assert policy.max_failures == 10
        assert policy.window_seconds == 60.0
        assert policy.sweep_interval_seconds == 300.0

    def test_rejects_non_positive(self):
        """Test that zero or negative limits are rejected."""
        with pytest.raises(ValidationError):
            RateLimitPolicy(max_failures=0)
        with pytest.raises(ValidationError):
            RateLimitPolicy(window_seconds=-1)


class TestAttemptTracker:
    """Test the attempt tracker state machine."""

    def test_unknown_key_is_not_limited(self, tracker):
        """Test absent records."""
        assert tracker.is_rate_limited(KEY) is False
        assert tracker.failure_count(KEY) == 0
        assert len(tracker) == 0

    def test_limited_at_threshold(self, tracker):
        """Test that the limit engages at max_failures."""
        for _ in range(9):
            tracker.record_failure(KEY)
        assert tracker.is_rate_limited(KEY) is False

        tracker.record_failure(KEY)
        assert tracker.is_rate_limited(KEY) is True
        assert tracker.is_rate_limited(OTHER_KEY) is False

    def test_window_expiry_resets(self, tracker, clock):
        """Test that an expired window is dropped lazily."""
        for _ in range(10):
            tracker.record_failure(KEY)

        clock.advance(60.5)
        assert tracker.is_rate_limited(KEY) is False
        assert len(tracker) == 0

        tracker.record_failure(KEY)
        assert tracker.failure_count(KEY) == 1

    def test_failure_after_expiry_starts_new_window(self, tracker, clock):
        """Test that record_failure restarts an expired window at one."""
        for _ in range(5):
            tracker.record_failure(KEY)

        clock.advance(61)
        tracker.record_failure(KEY)
        assert tracker.failure_count(KEY) == 1

    def test_window_is_measured_from_first_failure(self, tracker, clock):
        """Test that later failures do not extend the window."""
        tracker.record_failure(KEY)
        clock.advance(50)
        for _ in range(9):
            tracker.record_failure(KEY)
        assert tracker.is_rate_limited(KEY) is True

        clock.advance(11)
        assert tracker.is_rate_limited(KEY) is False

    def test_clear(self, tracker):
        """Test removing one record by hash."""
        tracker.record_failure(KEY)
        tracker.record_failure(OTHER_KEY)

        assert tracker.clear(hash_key(KEY)) is True
        assert tracker.clear(hash_key(KEY)) is False
        assert tracker.failure_count(OTHER_KEY) == 1

    def test_sweep_removes_stale_records(self, tracker, clock):
        """Test explicit sweeping."""
        tracker.record_failure(KEY)
        clock.advance(45)
        tracker.record_failure(OTHER_KEY)
        clock.advance(20)

        assert tracker.sweep() == 1
        assert len(tracker) == 1
        assert tracker.failure_count(OTHER_KEY) == 1

    def test_periodic_sweep_on_check(self, clock):
        """Test that checks sweep at most once per interval."""
        tracker = AttemptTracker(
            RateLimitPolicy(window_seconds=10, sweep_interval_seconds=100),
            clock=clock,
        )
        tracker.record_failure(KEY)

        clock.advance(50)
        tracker.is_rate_limited(OTHER_KEY)
        assert len(tracker) == 1  # interval not reached yet

        clock.advance(51)
        tracker.is_rate_limited(OTHER_KEY)
        assert len(tracker) == 0

    def test_custom_policy(self, clock):
        """Test a tighter limit."""
        tracker = AttemptTracker(RateLimitPolicy(max_failures=2), clock=clock)
        tracker.record_failure(KEY)
        assert tracker.is_rate_limited(KEY) is False
        tracker.record_failure(KEY)
        assert tracker.is_rate_limited(KEY) is True

    def test_reset(self, tracker):
        """Test forgetting everything."""
        tracker.record_failure(KEY)
        tracker.record_failure(OTHER_KEY)
        tracker.reset()
        assert len(tracker) == 0

    def test_concurrent_failures_are_all_counted(self):
        """Test that the table lock serializes updates to one key."""
        tracker = AttemptTracker(RateLimitPolicy(max_failures=1000))

        def worker():
            for _ in range(100):
                tracker.record_failure(KEY)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert tracker.failure_count(KEY) == 800


class TestAttemptReservation:
    """Test reserving attempts before decryption runs."""

    def test_acquire_counts_in_flight_attempts(self, clock):
        """Test that attempts in progress count against the limit."""
        tracker = AttemptTracker(RateLimitPolicy(max_failures=3), clock=clock)
        assert all(tracker.acquire(KEY) for _ in range(3))
        assert tracker.acquire(KEY) is False
        assert tracker.acquire(OTHER_KEY) is True

    def test_release_failure_is_recorded(self, tracker):
        """Test that a failed attempt becomes a failure on release."""
        assert tracker.acquire(KEY) is True
        tracker.release(KEY, failed=True)
        assert tracker.failure_count(KEY) == 1

    def test_release_success_frees_the_slot(self, clock):
        """Test that a successful attempt leaves no trace."""
        tracker = AttemptTracker(RateLimitPolicy(max_failures=1), clock=clock)
        assert tracker.acquire(KEY) is True
        assert tracker.acquire(KEY) is False

        tracker.release(KEY, failed=False)
        assert tracker.failure_count(KEY) == 0
        assert len(tracker) == 0
        assert tracker.acquire(KEY) is True

    def test_acquire_refused_after_recorded_failures(self, tracker):
        """Test that recorded failures block new reservations."""
        for _ in range(10):
            tracker.record_failure(KEY)
        assert tracker.acquire(KEY) is False

    def test_acquire_after_window_expiry(self, tracker, clock):
        """Test that an expired window no longer blocks reservations."""
        for _ in range(10):
            tracker.record_failure(KEY)
        clock.advance(61)
        assert tracker.acquire(KEY) is True
        assert tracker.failure_count(KEY) == 0


class TestConcurrentDecrypt:
    """Test the limit under concurrent decryption with one key."""

    def test_parallel_wrong_key_attempts_stop_at_limit(self, monkeypatch):
        """Test that at most max_failures attempts reach the cipher."""
        real_cipher = crypt.AESGCM
        calls = []
        calls_lock = threading.Lock()

        class CountingCipher:
            def __init__(self, key):
                self._cipher = real_cipher(bytes(key))

            def decrypt(self, nonce, data, associated_data):
                with calls_lock:
                    calls.append(nonce)
                # Keep attempts overlapping
                time.sleep(0.01)
                return self._cipher.decrypt(nonce, data, associated_data)

        envelope = crypt.encrypt("SECRET=value", crypt.generate_key())
        monkeypatch.setattr(crypt, "AESGCM", CountingCipher)

        tracker = AttemptTracker()
        wrong_key = crypt.generate_key()
        thread_count = 40
        barrier = threading.Barrier(thread_count)
        outcomes = []
        outcomes_lock = threading.Lock()

        def worker():
            barrier.wait()
            try:
                crypt.decrypt(envelope, wrong_key, tracker=tracker)
                outcome = "decrypted"
            except RateLimitedError:
                outcome = "limited"
            except DecryptionError:
                outcome = "failed"
            with outcomes_lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=worker) for _ in range(thread_count)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        max_failures = tracker.policy.max_failures
        assert len(calls) == max_failures
        assert outcomes.count("failed") == max_failures
        assert outcomes.count("limited") == thread_count - max_failures
        assert tracker.failure_count(wrong_key) == max_failures
