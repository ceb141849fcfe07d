"""Tests for FixedWindowRateLimiter."""

import time

import pytest
from limits.storage import MemoryStorage

from specflow.infrastructure.resilience import FixedWindowRateLimiter


class TestFixedWindowRateLimiter:
    def test_allows_up_to_limit(self):
        limiter = FixedWindowRateLimiter(max_requests=3, window_seconds=60)
        before = time.time()
        decisions = [limiter.check("1.2.3.4") for _ in range(3)]
        assert all(d.allowed for d in decisions)
        assert [d.remaining for d in decisions] == [2, 1, 0]
        assert decisions[0].limit == 3
        assert before < decisions[0].reset_at <= time.time() + 61

    def test_rejects_past_limit(self):
        limiter = FixedWindowRateLimiter(max_requests=2, window_seconds=60)
        limiter.check("ip")
        limiter.check("ip")
        decision = limiter.check("ip")
        assert decision.allowed is False
        assert decision.remaining == 0
        assert 0 < decision.retry_after <= 60
        assert limiter.get_stats()["rejected"] == 1

    def test_window_expires(self):
        limiter = FixedWindowRateLimiter(max_requests=1, window_seconds=1)
        assert limiter.check("ip").allowed
        assert not limiter.check("ip").allowed
        time.sleep(1.1)
        decision = limiter.check("ip")
        assert decision.allowed
        assert decision.remaining == 0

    def test_keys_are_independent(self):
        limiter = FixedWindowRateLimiter(max_requests=1)
        assert limiter.check("a").allowed
        assert limiter.check("b").allowed
        assert not limiter.check("a").allowed

    def test_instances_do_not_share_windows(self):
        first = FixedWindowRateLimiter(max_requests=1)
        second = FixedWindowRateLimiter(max_requests=1)
        assert first.check("ip").allowed
        assert second.check("ip").allowed

    def test_namespaces_separate_shared_storage(self):
        storage = MemoryStorage()
        generate = FixedWindowRateLimiter(max_requests=1, storage=storage, namespace="generate")
        models = FixedWindowRateLimiter(max_requests=1, storage=storage, namespace="models")
        assert generate.check("ip").allowed
        assert models.check("ip").allowed
        assert not generate.check("ip").allowed

    def test_reset(self):
        limiter = FixedWindowRateLimiter(max_requests=1)
        limiter.check("a")
        limiter.check("a")
        limiter.reset()
        assert limiter.get_stats() == {
            "limit": 1,
            "window_seconds": 60,
            "rejected": 0,
        }
        assert limiter.check("a").allowed

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_requests": 0},
            {"max_requests": 1, "window_seconds": 0},
        ],
    )
    def test_invalid_arguments(self, kwargs):
        with pytest.raises(ValueError):
            FixedWindowRateLimiter(**kwargs)
