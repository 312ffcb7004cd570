"""Tests for the fixed-window rate limiter and its middleware."""

import os
from unittest.mock import patch

import pytest
from conftest import T0
from fastapi.testclient import TestClient

from stagewise import event_log
from stagewise.api import create_app
from stagewise.api.rate_limit import (
    InMemoryRateLimitStore,
    RateLimiter,
    RateLimitRule,
    SharedRateLimitStore,
    route_class_for,
    route_key,
    rules_from_env,
)
from stagewise.errors import RateLimitExceeded


class FakeClock:
    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now


def _limiter(max_requests=3, window_seconds=60, store=None, clock=None):
    rules = {"standard": RateLimitRule(max_requests, window_seconds),
             "analytics": RateLimitRule(1, 60)}
    return RateLimiter(store, rules, clock=clock or FakeClock())


class TestFixedWindow:
    def test_limit_then_reset(self):
        clock = FakeClock()
        limiter = _limiter(clock=clock)
        results = [limiter.check("/api/roles", "1.2.3.4") for _ in range(4)]
        assert [r.limited for r in results] == [False, False, False, True]
        assert [r.remaining for r in results] == [2, 1, 0, 0]
        assert results[3].retry_after == 60
        assert results[3].reset_at == T0 + 60_000

        clock.now = T0 + 60_001
        fresh = limiter.check("/api/roles", "1.2.3.4")
        assert not fresh.limited
        assert fresh.remaining == 2

    def test_window_boundary_still_counts(self):
        clock = FakeClock()
        limiter = _limiter(max_requests=1, clock=clock)
        limiter.check("/r", "a")
        clock.now = T0 + 60_000
        assert limiter.check("/r", "a").limited

    def test_keys_are_route_and_identity(self):
        limiter = _limiter(max_requests=1)
        assert not limiter.check("/a", "x").limited
        assert not limiter.check("/b", "x").limited
        assert not limiter.check("/a", "y").limited
        assert limiter.check("/a", "x").limited

    def test_mount_prefixes_share_a_quota(self):
        limiter = _limiter(max_requests=2)
        assert not limiter.check("/api/roles", "x").limited
        assert not limiter.check("/v1/roles", "x").limited
        assert limiter.check("/api/roles", "x").limited

    def test_retry_after_is_at_least_one_second(self):
        clock = FakeClock()
        limiter = _limiter(max_requests=1, clock=clock)
        limiter.check("/r", "a")
        clock.now = T0 + 59_999
        assert limiter.check("/r", "a").retry_after == 1

    def test_enforce_raises(self):
        limiter = _limiter(max_requests=1)
        limiter.enforce("/r", "a")
        with pytest.raises(RateLimitExceeded) as exc_info:
            limiter.enforce("/r", "a")
        assert exc_info.value.limit == 1
        assert exc_info.value.retry_after == 60

    def test_route_class_rules(self):
        limiter = _limiter()
        assert not limiter.check("/s", "a", "analytics").limited
        assert limiter.check("/s", "a", "analytics").limited
        # Unknown classes fall back to the standard rule.
        assert limiter.rule_for("email") == RateLimitRule(3, 60)

    def test_throttle_counters(self):
        limiter = _limiter(max_requests=1)
        for _ in range(3):
            limiter.check("/s", "a", "analytics")
        assert limiter.total_throttled == 2
        assert limiter.throttled_by_class["analytics"] == 2
        limiter.reset()
        assert limiter.total_throttled == 0
        assert not limiter.check("/s", "a", "analytics").limited


class TestStores:
    def test_purge_drops_stale_windows(self):
        store = InMemoryRateLimitStore()
        limiter = _limiter(store=store)
        limiter.check("/r", "a")
        assert len(store) == 1
        assert store.purge(T0 + 1) == 1
        assert len(store) == 0

    def test_shared_store_is_seen_by_two_limiters(self, db_path):
        store = SharedRateLimitStore(event_log.get_store())
        first = _limiter(max_requests=2, store=store)
        second = _limiter(max_requests=2, store=store)
        assert not first.check("/r", "a").limited
        assert not second.check("/r", "a").limited
        assert first.check("/r", "a").limited

    def test_shared_store_restarts_expired_window(self, db_path):
        clock = FakeClock()
        limiter = _limiter(max_requests=1, store=SharedRateLimitStore(event_log.get_store()), clock=clock)
        assert not limiter.check("/r", "a").limited
        assert limiter.check("/r", "a").limited
        clock.now = T0 + 60_001
        fresh = limiter.check("/r", "a")
        assert not fresh.limited
        assert fresh.reset_at == T0 + 60_001 + 60_000


class TestRules:
    def test_defaults(self):
        rules = rules_from_env({})
        assert rules["standard"] == RateLimitRule(100, 60)
        assert rules["analytics"] == RateLimitRule(60, 60)
        assert rules["auth"] == RateLimitRule(10, 900)

    def test_env_override(self):
        rules = rules_from_env({"STAGEWISE_RATE_LIMIT_STANDARD": "5/10"})
        assert rules["standard"] == RateLimitRule(5, 10)

    def test_malformed_override_ignored(self, caplog):
        rules = rules_from_env({"STAGEWISE_RATE_LIMIT_READONLY": "lots"})
        assert rules["readonly"] == RateLimitRule(300, 60)
        assert "malformed" in caplog.text

    def test_route_key_strips_mount_prefix(self):
        assert route_key("/api/analytics/summary") == "/analytics/summary"
        assert route_key("/v1/analytics/summary") == "/analytics/summary"
        assert route_key("/apiary/x") == "/apiary/x"
        assert route_key("/health") == "/health"

    def test_route_classes(self):
        assert route_class_for("/api/analytics/stage-duration") == "analytics"
        assert route_class_for("/v1/analytics/summary") == "readonly"
        assert route_class_for("/api/analytics/leaderboard") == "readonly"
        assert route_class_for("/api/roles") == "standard"


class TestMiddleware:
    @pytest.fixture
    def client(self, db_path):
        limiter = _limiter(max_requests=2)
        app = create_app(str(db_path), rate_limiter=limiter, clock=lambda: T0)
        return TestClient(app)

    def test_headers_on_allowed_response(self, client):
        resp = client.get("/api/roles", params={"workspaceId": "ws-1"})
        assert resp.status_code == 200
        assert resp.headers["X-RateLimit-Limit"] == "2"
        assert resp.headers["X-RateLimit-Remaining"] == "1"
        assert resp.headers["X-RateLimit-Reset"] == str(T0 + 60_000)

    def test_throttled_response(self, client):
        for _ in range(2):
            assert client.get("/api/roles", params={"workspaceId": "ws-1"}).status_code == 200
        resp = client.get("/api/roles", params={"workspaceId": "ws-1"})
        assert resp.status_code == 429
        body = resp.json()
        assert body["error"] == "Too many requests"
        assert body["retryAfter"] == 60
        assert resp.headers["Retry-After"] == "60"
        assert resp.headers["X-RateLimit-Remaining"] == "0"

    def test_alternating_prefixes_do_not_double_quota(self, client):
        codes = [
            client.get(f"{prefix}/roles", params={"workspaceId": "ws-1"}).status_code
            for prefix in ("/api", "/v1", "/api", "/v1")
        ]
        assert codes == [200, 200, 429, 429]

    def test_forwarded_for_identifies_caller(self, client):
        for _ in range(2):
            client.get("/api/roles", params={"workspaceId": "ws-1"}, headers={"X-Forwarded-For": "10.0.0.1"})
        other = client.get("/api/roles", params={"workspaceId": "ws-1"},
                           headers={"X-Forwarded-For": "10.0.0.2, 10.0.0.1"})
        assert other.status_code == 200

    def test_health_exempt(self, client):
        for _ in range(5):
            assert client.get("/health").status_code == 200

    def test_throttles_in_metrics(self, client):
        client.get("/api/analytics/stage-duration", params={"workspaceId": "ws-1"})
        client.get("/api/analytics/stage-duration", params={"workspaceId": "ws-1"})
        text = client.get("/metrics").text
        assert 'stagewise_rate_limit_throttled_total{class="analytics"} 1' in text
        assert "stagewise_rate_limit_throttled_global 1" in text

    def test_disabled_by_env(self, db_path):
        with patch.dict(os.environ, {"STAGEWISE_RATE_LIMIT_ENABLED": "0"}):
            app = create_app(str(db_path))
        assert app.state.rate_limiter is None
        client = TestClient(app)
        resp = client.get("/api/roles", params={"workspaceId": "ws-1"})
        assert "X-RateLimit-Limit" not in resp.headers
