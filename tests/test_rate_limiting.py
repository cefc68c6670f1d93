"""Token bucket limiter and the dual-tier middleware."""

import threading

import pytest
from fastapi.testclient import TestClient

from conftest import FakeClock, NATIVE
from main import create_app
from middleware.rate_limiting import RateLimiter, TokenBucket


@pytest.fixture
def clock():
    return FakeClock(0.0)


class TestTokenBucket:
    def test_refill_is_capped_at_capacity(self):
        bucket = TokenBucket(capacity=3, refill_rate=1.0, now=0.0)
        for _ in range(3):
            assert bucket.consume(0.0)
        assert not bucket.consume(0.0)

        assert bucket.consume(100.0)
        assert bucket.tokens == pytest.approx(2.0)

    def test_seconds_until_available(self):
        bucket = TokenBucket(capacity=1, refill_rate=2.0, now=0.0)
        bucket.consume(0.0)
        assert bucket.seconds_until_available() == pytest.approx(0.5)


class TestRateLimiter:
    def test_burst_then_refill(self, clock):
        limiter = RateLimiter(rate_per_second=1, burst=5, clock=clock)

        results = [limiter.hit("10.0.0.1")[0] for _ in range(6)]
        assert results == [True] * 5 + [False]

        clock.advance(1)
        assert limiter.hit("10.0.0.1")[0] is True
        assert limiter.hit("10.0.0.1")[0] is False

    def test_clients_are_independent(self, clock):
        limiter = RateLimiter(rate_per_second=1, burst=1, clock=clock)
        assert limiter.hit("a")[0]
        assert not limiter.hit("a")[0]
        assert limiter.hit("b")[0]

    def test_remaining_and_wait(self, clock):
        limiter = RateLimiter(rate_per_second=2, burst=2, clock=clock)
        assert limiter.hit("a") == (True, 1, 0.0)
        allowed, remaining, wait = limiter.hit("a")
        assert allowed and remaining == 0
        assert wait == pytest.approx(0.5)

    def test_idle_window_covers_full_refill(self, clock):
        limiter = RateLimiter(rate_per_second=0.01, burst=10, idle_seconds=60, clock=clock)
        assert limiter.idle_seconds == pytest.approx(1000)

    def test_sweep_evicts_idle_buckets(self, clock):
        limiter = RateLimiter(rate_per_second=1, burst=5, idle_seconds=60, clock=clock)
        limiter.hit("stale")
        clock.advance(30)
        limiter.hit("fresh")
        clock.advance(31)

        assert limiter.sweep() == 1
        assert len(limiter) == 1

    def test_evicted_bucket_behaves_like_new(self, clock):
        limiter = RateLimiter(rate_per_second=1, burst=2, idle_seconds=1, clock=clock)
        limiter.hit("a")
        limiter.hit("a")
        clock.advance(limiter.idle_seconds + 1)
        limiter.sweep()

        assert [limiter.hit("a")[0] for _ in range(3)] == [True, True, False]

    def test_concurrent_hits_never_exceed_burst(self, clock):
        limiter = RateLimiter(rate_per_second=1, burst=50, shards=4, clock=clock)
        allowed = []

        def worker():
            for _ in range(20):
                allowed.append(limiter.hit("shared")[0])

        threads = [threading.Thread(target=worker) for _ in range(5)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert allowed.count(True) == 50

    def test_invalid_configuration(self):
        with pytest.raises(ValueError):
            RateLimiter(rate_per_second=0, burst=5)


class TestRateLimitMiddleware:
    @pytest.fixture
    def client(self, settings, store, token_clock, clock):
        settings = settings.model_copy(
            update={
                "auth_rate_limit_per_second": 1,
                "auth_rate_limit_burst": 5,
                "general_rate_limit_per_second": 50,
                "general_rate_limit_burst": 10,
            }
        )
        app = create_app(settings, store=store, token_clock=token_clock, rate_limit_clock=clock)
        with TestClient(app) as client:
            yield client

    def _login(self, client):
        return client.post(
            "/auth/login",
            json={"email": "nobody@example.com", "password": "wrong-password1"},
            headers=NATIVE,
        )

    def test_auth_tier_rejects_sixth_attempt(self, client, clock):
        statuses = [self._login(client).status_code for _ in range(6)]
        assert statuses == [401] * 5 + [429]

        rejected = self._login(client)
        assert rejected.headers["Retry-After"] == "1"
        assert rejected.headers["X-RateLimit-Limit"] == "5"
        assert rejected.headers["X-RateLimit-Remaining"] == "0"
        assert rejected.json()["code"] == "rate_limited"

        clock.advance(1)
        assert self._login(client).status_code == 401
        assert self._login(client).status_code == 429

    def test_general_tier_is_separate(self, client):
        for _ in range(6):
            self._login(client)

        response = client.get("/csrf")
        assert response.status_code == 200
        assert response.headers["X-RateLimit-Limit"] == "10"

    def test_health_checks_are_not_limited(self, client):
        for _ in range(20):
            response = client.get("/health/live")
            assert response.status_code == 200
            assert "X-RateLimit-Limit" not in response.headers


class TestMiddlewareSweep:
    def test_idle_buckets_are_evicted_by_a_later_request(self, app, rate_clock):
        with TestClient(app) as client:
            client.post("/auth/login", json={"email": "a@example.com", "password": "password1"}, headers=NATIVE)
            client.get("/csrf")
            assert len(app.state.auth_limiter) == 1
            assert len(app.state.general_limiter) == 1

            rate_clock.advance(app.state.auth_limiter.idle_seconds + 1)
            client.get("/csrf")

            # Sweep runs before the request takes its token
            assert len(app.state.auth_limiter) == 0
            assert len(app.state.general_limiter) == 1

    def test_sweep_waits_for_interval(self, settings, store, token_clock, rate_clock):
        settings = settings.model_copy(update={"rate_limit_idle_seconds": 1.0, "rate_limit_sweep_interval": 60.0})
        app = create_app(settings, store=store, token_clock=token_clock, rate_limit_clock=rate_clock)

        with TestClient(app) as client:
            client.post("/auth/login", json={"email": "a@example.com", "password": "password1"}, headers=NATIVE)

            rate_clock.advance(30)
            client.get("/csrf")
            assert len(app.state.auth_limiter) == 1

            rate_clock.advance(31)
            client.get("/csrf")
            assert len(app.state.auth_limiter) == 0
