"""Tests for rate limiting behaviour."""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest
from starlette.requests import Request

from app.rate_limit import (
    API_GENERAL,
    LOGIN,
    OTP_REQUEST,
    OTP_VERIFY,
    RATE_LIMIT_CONFIGS,
    RateLimitConfig,
    RateLimiter,
    email_key,
    format_reset_time,
    get_client_ip,
    ip_key,
    route_key,
)
from app.services.store import InMemoryStore
from tests.mocks.models import CLIENT_IP, GUEST_EMAIL, OTHER_EMAIL, OTHER_IP

TWO_PER_SECOND = RateLimitConfig(window=timedelta(milliseconds=1000), max_requests=2)


def _request(headers: dict[str, str]) -> Request:
    raw = [(k.lower().encode(), v.encode()) for k, v in headers.items()]
    return Request({"type": "http", "method": "POST", "path": "/", "headers": raw})


# ── Fixed-window counter ───────────────────────────────────────────────────


class TestCheck:
    def test_allows_up_to_limit_then_refuses(self, rate_limiter: RateLimiter):
        first = rate_limiter.check("k", TWO_PER_SECOND)
        second = rate_limiter.check("k", TWO_PER_SECOND)
        third = rate_limiter.check("k", TWO_PER_SECOND)

        assert (first.allowed, first.remaining) == (True, 1)
        assert (second.allowed, second.remaining) == (True, 0)
        assert (third.allowed, third.remaining) == (False, 0)
        assert third.message.startswith("Rate limit exceeded. Try again after ")
        assert third.message.endswith(format_reset_time(third.reset_time))

    def test_window_resets_after_elapsed(self, rate_limiter: RateLimiter, clock):
        for _ in range(3):
            rate_limiter.check("k", TWO_PER_SECOND)

        clock.advance(milliseconds=1000)
        fourth = rate_limiter.check("k", TWO_PER_SECOND)

        assert fourth.allowed is True
        assert fourth.remaining == TWO_PER_SECOND.max_requests - 1
        assert fourth.reset_time == clock.now + timedelta(seconds=1)

    def test_still_refused_just_before_reset(self, rate_limiter: RateLimiter, clock):
        for _ in range(2):
            rate_limiter.check("k", TWO_PER_SECOND)

        clock.advance(milliseconds=999)
        assert rate_limiter.check("k", TWO_PER_SECOND).allowed is False

    def test_reset_time_fixed_within_window(self, rate_limiter: RateLimiter, clock):
        first = rate_limiter.check("k", TWO_PER_SECOND)
        clock.advance(milliseconds=400)
        second = rate_limiter.check("k", TWO_PER_SECOND)
        clock.advance(milliseconds=400)
        refused = rate_limiter.check("k", TWO_PER_SECOND)

        assert first.reset_time == second.reset_time == refused.reset_time

    def test_refusal_does_not_extend_or_count(self, rate_limiter: RateLimiter, clock):
        for _ in range(2):
            rate_limiter.check("k", TWO_PER_SECOND)
        for _ in range(5):
            rate_limiter.check("k", TWO_PER_SECOND)

        clock.advance(seconds=1)
        assert rate_limiter.check("k", TWO_PER_SECOND).remaining == 1

    def test_burst_across_window_boundary(self, rate_limiter: RateLimiter, clock):
        """Fixed windows allow up to 2 × max_requests around a reset."""
        allowed = 0
        for _ in range(2):
            allowed += rate_limiter.check("k", TWO_PER_SECOND).allowed
        clock.advance(seconds=1)
        for _ in range(2):
            allowed += rate_limiter.check("k", TWO_PER_SECOND).allowed
        assert allowed == 4

    def test_keys_are_independent(self, rate_limiter: RateLimiter):
        for _ in range(3):
            rate_limiter.check_ip(CLIENT_IP, TWO_PER_SECOND)
        assert rate_limiter.check_ip(CLIENT_IP, TWO_PER_SECOND).allowed is False

        other = rate_limiter.check_ip(OTHER_IP, TWO_PER_SECOND)
        assert (other.allowed, other.remaining) == (True, 1)

        by_email = rate_limiter.check_email(GUEST_EMAIL, TWO_PER_SECOND)
        assert by_email.allowed is True

    def test_email_policy_normalizes(self, rate_limiter: RateLimiter):
        rate_limiter.check_email(GUEST_EMAIL, TWO_PER_SECOND)
        rate_limiter.check_email(GUEST_EMAIL.upper(), TWO_PER_SECOND)
        assert rate_limiter.check_email(f"  {GUEST_EMAIL} ", TWO_PER_SECOND).allowed is False
        assert rate_limiter.check_email(OTHER_EMAIL, TWO_PER_SECOND).allowed is True

    def test_route_policy_is_per_route_and_ip(self, rate_limiter: RateLimiter):
        for _ in range(2):
            rate_limiter.check_route("/api/auth/verify-otp", CLIENT_IP, TWO_PER_SECOND)

        assert rate_limiter.check_route("/api/auth/verify-otp", CLIENT_IP, TWO_PER_SECOND).allowed is False
        assert rate_limiter.check_route("/api/auth/request-otp", CLIENT_IP, TWO_PER_SECOND).allowed is True
        assert rate_limiter.check_route("/api/auth/verify-otp", OTHER_IP, TWO_PER_SECOND).allowed is True

    def test_disabled_limiter_always_allows(self, clock):
        limiter = RateLimiter(InMemoryStore(), enabled=False, clock=clock)
        results = [limiter.check("k", TWO_PER_SECOND) for _ in range(10)]

        assert all(r.allowed for r in results)
        assert all(r.remaining == 2 for r in results)
        assert limiter.stats().total == 0

    def test_concurrent_checks_allow_exactly_the_limit(self, rate_limiter: RateLimiter):
        config = RateLimitConfig(window=timedelta(minutes=5), max_requests=50)
        threads = 8
        start = threading.Barrier(threads)

        def hammer() -> int:
            start.wait()
            return sum(rate_limiter.check("ip:shared", config).allowed for _ in range(100))

        with ThreadPoolExecutor(max_workers=threads) as pool:
            allowed = sum(pool.map(lambda _: hammer(), range(threads)))

        assert allowed == 50
        assert rate_limiter.check("ip:shared", config).remaining == 0


# ── Keys and client IP ─────────────────────────────────────────────────────


class TestKeys:
    def test_key_formats(self):
        assert ip_key("10.0.0.1") == "ip:10.0.0.1"
        assert email_key(" Guest@Example.com ") == "email:guest@example.com"
        assert route_key("/api/auth/login", "10.0.0.1") == "route:/api/auth/login:10.0.0.1"

    def test_forwarded_for_first_entry(self):
        req = _request({"X-Forwarded-For": " 10.0.0.1 , 172.16.0.2", "X-Real-IP": "10.9.9.9"})
        assert get_client_ip(req) == "10.0.0.1"

    def test_real_ip_fallback(self):
        assert get_client_ip(_request({"X-Real-IP": "10.9.9.9"})) == "10.9.9.9"

    def test_unknown_without_headers(self):
        assert get_client_ip(_request({})) == "unknown"

    def test_reset_time_format(self):
        moment = datetime(2026, 3, 1, 14, 5, 7, 123456, tzinfo=timezone(timedelta(hours=2)))
        assert format_reset_time(moment) == "2026-03-01T12:05:07.123Z"


class TestPolicies:
    @pytest.mark.parametrize(
        ("config", "window", "max_requests"),
        [
            (OTP_REQUEST, timedelta(minutes=5), 3),
            (OTP_VERIFY, timedelta(minutes=10), 5),
            (LOGIN, timedelta(minutes=15), 10),
            (API_GENERAL, timedelta(minutes=1), 100),
        ],
    )
    def test_named_policies(self, config, window, max_requests):
        assert config.window == window
        assert config.max_requests == max_requests

    def test_registry_lists_all_policies(self):
        assert set(RATE_LIMIT_CONFIGS) == {"OTP_REQUEST", "OTP_VERIFY", "LOGIN", "API_GENERAL"}


# ── Maintenance ────────────────────────────────────────────────────────────


class TestMaintenance:
    def test_clear_resets_key(self, rate_limiter: RateLimiter):
        for _ in range(3):
            rate_limiter.check("k", TWO_PER_SECOND)
        rate_limiter.clear("k")
        assert rate_limiter.check("k", TWO_PER_SECOND).remaining == 1

    def test_clear_unknown_key_is_noop(self, rate_limiter: RateLimiter):
        rate_limiter.clear("ip:never-seen")
        assert rate_limiter.stats().total == 0

    def test_stats_and_sweep(self, rate_limiter: RateLimiter, clock):
        rate_limiter.check("short", TWO_PER_SECOND)
        rate_limiter.check("long", OTP_REQUEST)
        clock.advance(seconds=2)

        stats = rate_limiter.stats()
        assert (stats.active, stats.expired, stats.total) == (1, 1, 2)

        assert rate_limiter.sweep() == 1
        assert rate_limiter.stats().total == 1
        assert rate_limiter.sweep() == 0

    def test_reset_drops_all_counters(self, rate_limiter: RateLimiter):
        rate_limiter.check("a", TWO_PER_SECOND)
        rate_limiter.check("b", TWO_PER_SECOND)
        rate_limiter.reset()
        assert rate_limiter.stats().total == 0


# ── HTTP ───────────────────────────────────────────────────────────────────


class TestRateLimitingEndpoints:
    """Verify that rate limiting kicks in for the passcode endpoints."""

    def test_request_otp_limited_per_ip(self, client):
        """POST /api/auth/request-otp allows 3 requests per 5 minutes per IP."""
        for i in range(3):
            resp = client.post("/api/auth/request-otp", json={"email": f"guest{i}@example.com"})
            assert resp.status_code == 200, f"Request {i + 1} should succeed"
            assert resp.headers["X-RateLimit-Remaining"] == str(2 - i)

        resp = client.post("/api/auth/request-otp", json={"email": "guest9@example.com"})
        assert resp.status_code == 429
        data = resp.json()
        assert data["error"] == "Rate limit exceeded"
        assert "Try again after" in data["message"]
        assert data["resetTime"] == "2026-03-01T12:05:00.000Z"
        assert data["message"].endswith(data["resetTime"])
        assert resp.headers["X-RateLimit-Remaining"] == "0"
        assert resp.headers["X-RateLimit-Reset"] == data["resetTime"]

    def test_request_otp_limited_per_email(self, client):
        """The same email is limited even when the IP changes."""
        resp = client.post("/api/auth/request-otp", json={"email": GUEST_EMAIL})
        assert resp.status_code == 200

        # Two more attempts from other IPs are counted, then refused as pending.
        for ip in ("10.0.0.2", "10.0.0.3"):
            resp = client.post(
                "/api/auth/request-otp",
                json={"email": GUEST_EMAIL},
                headers={"X-Forwarded-For": ip},
            )
            assert resp.status_code == 409

        resp = client.post(
            "/api/auth/request-otp",
            json={"email": GUEST_EMAIL},
            headers={"X-Forwarded-For": "10.0.0.4"},
        )
        assert resp.status_code == 429
        assert resp.json()["error"] == "Rate limit exceeded for this email"

    def test_window_reset_allows_again(self, client, clock):
        for i in range(3):
            client.post("/api/auth/request-otp", json={"email": f"guest{i}@example.com"})
        assert client.post("/api/auth/request-otp", json={"email": "late@example.com"}).status_code == 429

        clock.advance(minutes=5)
        assert client.post("/api/auth/request-otp", json={"email": "late@example.com"}).status_code == 200

    def test_verify_otp_limited_per_route(self, client):
        """POST /api/auth/verify-otp allows 5 requests per 10 minutes per IP."""
        for i in range(5):
            resp = client.post(
                "/api/auth/verify-otp",
                json={"email": GUEST_EMAIL, "code": "000000"},
            )
            assert resp.status_code == 401, f"Request {i + 1} should not be rate-limited"

        resp = client.post(
            "/api/auth/verify-otp",
            json={"email": GUEST_EMAIL, "code": "000000"},
        )
        assert resp.status_code == 429

    def test_disabled_limiter_never_refuses(self, client, rate_limiter):
        rate_limiter.enabled = False
        for i in range(6):
            resp = client.post("/api/auth/request-otp", json={"email": f"guest{i}@example.com"})
            assert resp.status_code == 200
