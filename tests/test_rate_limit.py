"""Tests for the rate limiting middleware on a minimal app."""

import sys
from pathlib import Path

# Add project root to path (tests/ -> project root)
sys.path.insert(0, str(Path(__file__).parent.parent))

from fastapi import FastAPI
from fastapi.testclient import TestClient

from middleware.rate_limit import RateLimitConfig, RateLimitMiddleware


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _app(config: RateLimitConfig, clock: FakeClock, middleware=RateLimitMiddleware) -> TestClient:
    app = FastAPI()
    app.add_middleware(middleware, config=config, clock=clock)

    @app.post("/merges/teacher")
    def merge():
        return {"ok": True}

    @app.get("/merges/ping")
    def ping():
        return {"ok": True}

    return TestClient(app)


class TestRateLimit:

    def test_merge_limit_per_minute(self):
        clock = FakeClock()
        client = _app(RateLimitConfig(merge_requests_per_minute=2, burst_limit=100), clock)

        for _ in range(2):
            clock.now += 2
            assert client.post("/merges/teacher").status_code == 200
        clock.now += 2
        response = client.post("/merges/teacher")

        assert response.status_code == 429
        assert response.json()["kind"] == "rate_limited"
        assert int(response.headers["Retry-After"]) >= 1

        # General budget is separate
        assert client.get("/merges/ping").status_code == 200

    def test_window_slides(self):
        clock = FakeClock()
        client = _app(RateLimitConfig(merge_requests_per_minute=1, burst_limit=100), clock)

        assert client.post("/merges/teacher").status_code == 200
        clock.now += 30
        assert client.post("/merges/teacher").status_code == 429
        clock.now += 31
        assert client.post("/merges/teacher").status_code == 200

    def test_burst_limit(self):
        clock = FakeClock()
        client = _app(RateLimitConfig(burst_limit=2), clock)

        assert client.get("/merges/ping").status_code == 200
        assert client.get("/merges/ping").status_code == 200
        response = client.get("/merges/ping")
        assert response.status_code == 429
        assert response.headers["Retry-After"] == "1"

    def test_clients_tracked_separately(self):
        clock = FakeClock()
        client = _app(RateLimitConfig(merge_requests_per_minute=1, burst_limit=100), clock)

        assert client.post("/merges/teacher", headers={"X-Forwarded-For": "10.0.0.1"}).status_code == 200
        assert client.post("/merges/teacher", headers={"X-Forwarded-For": "10.0.0.2"}).status_code == 200
        assert client.post("/merges/teacher", headers={"X-Forwarded-For": "10.0.0.1"}).status_code == 429

    def test_headers_on_success(self):
        clock = FakeClock()
        client = _app(RateLimitConfig(merge_requests_per_minute=5), clock)

        response = client.post("/merges/teacher")
        assert response.headers["X-RateLimit-Limit"] == "5"
        assert response.headers["X-RateLimit-Remaining"] == "4"

    def test_idle_clients_forgotten(self):
        clock = FakeClock()
        created = []

        class TrackedRateLimit(RateLimitMiddleware):
            def __init__(self, app, **kwargs):
                super().__init__(app, **kwargs)
                created.append(self)

        client = _app(RateLimitConfig(burst_limit=100), clock, middleware=TrackedRateLimit)

        client.post("/merges/teacher", headers={"X-Forwarded-For": "10.0.0.1"})
        middleware = created[-1]
        assert set(middleware.windows) == {"10.0.0.1:merge"}

        clock.now += 120
        client.post("/merges/teacher", headers={"X-Forwarded-For": "10.0.0.2"})
        assert set(middleware.windows) == {"10.0.0.1:merge", "10.0.0.2:merge"}

        # An hour later both are idle
        clock.now += 3600
        client.get("/merges/ping", headers={"X-Forwarded-For": "10.0.0.3"})
        assert set(middleware.windows) == {"10.0.0.3:general"}

    def test_rejected_request_does_not_add_client(self):
        clock = FakeClock()
        created = []

        class TrackedRateLimit(RateLimitMiddleware):
            def __init__(self, app, **kwargs):
                super().__init__(app, **kwargs)
                created.append(self)

        client = _app(
            RateLimitConfig(merge_requests_per_minute=1, burst_limit=100),
            clock,
            middleware=TrackedRateLimit,
        )
        assert client.post("/merges/teacher").status_code == 200
        assert client.post("/merges/teacher").status_code == 429
        assert len(created[-1].windows) == 1
        assert len(created[-1].windows["testclient:merge"].timestamps) == 1
