"""Unit tests for the promo-attempt throttle."""

from ridesync.infrastructure.rate_limit import AttemptLimiter


class TestAttemptLimiter:
    def test_five_attempts_pass_sixth_is_refused(self):
        limiter = AttemptLimiter(limit=5, window_seconds=60)
        for _ in range(5):
            assert limiter.try_acquire("alice") == (True, 0)
        allowed, retry_after = limiter.try_acquire("alice")
        assert allowed is False
        assert 1 <= retry_after <= 60

    def test_refused_attempts_are_not_counted(self):
        limiter = AttemptLimiter(limit=2, window_seconds=60)
        limiter.try_acquire("alice")
        limiter.try_acquire("alice")
        for _ in range(3):
            allowed, retry_after = limiter.try_acquire("alice")
            assert allowed is False
            assert retry_after <= 60

    def test_keys_are_independent(self):
        limiter = AttemptLimiter(limit=1, window_seconds=60)
        assert limiter.try_acquire("alice")[0]
        assert limiter.try_acquire("bob")[0]
        assert not limiter.try_acquire("alice")[0]

    def test_clear_resets_the_window(self):
        limiter = AttemptLimiter(limit=1, window_seconds=60)
        limiter.try_acquire("alice")
        limiter.clear("alice")
        assert limiter.try_acquire("alice")[0]
