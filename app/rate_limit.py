"""
Fixed-window rate limiting.

Each key owns a counter and the instant its window resets.  The first
touch after the reset starts a new window with ``count = 1``; within a
window the counter only grows until it reaches ``max_requests``, after
which requests are refused until the reset.  Because windows are fixed,
up to ``2 × max_requests`` can pass across a window boundary.

Keys are namespaced by policy:

  • ``ip:<address>``            – per client IP
  • ``email:<email>``           – per normalized email
  • ``route:<route>:<address>`` – per route and client IP

Named policies:

  • OTP_REQUEST  – 3 per 5 min   (passcode emails)
  • OTP_VERIFY   – 5 per 10 min  (passcode verification)
  • LOGIN        – 10 per 15 min
  • API_GENERAL  – 100 per min
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone

from fastapi import Request

from app.config import FEATURE_RATE_LIMITING_ENABLED
from app.services.store import (
    Clock,
    InMemoryStore,
    KeyValueStore,
    StoreStats,
    normalize_email,
    utc_now,
)

logger = logging.getLogger(__name__)

UNKNOWN_IP = "unknown"


def format_reset_time(moment: datetime) -> str:
    """UTC timestamp with millisecond precision and a ``Z`` suffix."""
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class RateLimitConfig:
    window: timedelta
    max_requests: int


@dataclass(frozen=True)
class RateLimitEntry:
    count: int
    window_reset_at: datetime


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_time: datetime
    message: str | None = None


RATE_LIMIT_CONFIGS: dict[str, RateLimitConfig] = {
    "OTP_REQUEST": RateLimitConfig(window=timedelta(minutes=5), max_requests=3),
    "OTP_VERIFY": RateLimitConfig(window=timedelta(minutes=10), max_requests=5),
    "LOGIN": RateLimitConfig(window=timedelta(minutes=15), max_requests=10),
    "API_GENERAL": RateLimitConfig(window=timedelta(minutes=1), max_requests=100),
}

OTP_REQUEST = RATE_LIMIT_CONFIGS["OTP_REQUEST"]
OTP_VERIFY = RATE_LIMIT_CONFIGS["OTP_VERIFY"]
LOGIN = RATE_LIMIT_CONFIGS["LOGIN"]
API_GENERAL = RATE_LIMIT_CONFIGS["API_GENERAL"]


# ── Key derivation ────────────────────────────────────────────────────────


def get_client_ip(request: Request) -> str:
    """Client address from proxy headers; ``"unknown"`` when neither is set."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return UNKNOWN_IP


def ip_key(ip: str) -> str:
    return f"ip:{ip}"


def email_key(email: str) -> str:
    return f"email:{normalize_email(email)}"


def route_key(route: str, ip: str) -> str:
    return f"route:{route}:{ip}"


# ── Limiter ───────────────────────────────────────────────────────────────


class RateLimiter:
    """Per-key fixed-window counters over a ``KeyValueStore``."""

    def __init__(
        self,
        store: KeyValueStore[RateLimitEntry] | None = None,
        *,
        enabled: bool = True,
        clock: Clock = utc_now,
    ) -> None:
        self._store: KeyValueStore[RateLimitEntry] = store if store is not None else InMemoryStore()
        self._clock = clock
        self._lock = threading.Lock()
        self.enabled = enabled

    def check(self, key: str, config: RateLimitConfig) -> RateLimitResult:
        """Count one request against *key* and report whether it may proceed."""
        now = self._clock()
        if not self.enabled:
            return RateLimitResult(
                allowed=True,
                remaining=config.max_requests,
                reset_time=now + config.window,
            )

        with self._lock:
            entry = self._store.get(key)

            if entry is None or now >= entry.window_reset_at:
                entry = RateLimitEntry(count=1, window_reset_at=now + config.window)
                self._store.set(key, entry)
                return RateLimitResult(
                    allowed=True,
                    remaining=config.max_requests - 1,
                    reset_time=entry.window_reset_at,
                )

            if entry.count >= config.max_requests:
                logger.info("Rate limit hit for %s (%d/%d)", key, entry.count, config.max_requests)
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    reset_time=entry.window_reset_at,
                    message=f"Rate limit exceeded. Try again after {format_reset_time(entry.window_reset_at)}",
                )

            entry = replace(entry, count=entry.count + 1)
            self._store.set(key, entry)
            return RateLimitResult(
                allowed=True,
                remaining=config.max_requests - entry.count,
                reset_time=entry.window_reset_at,
            )

    # ── Policies ───────────────────────────────────────────────────────

    def check_ip(self, ip: str, config: RateLimitConfig) -> RateLimitResult:
        return self.check(ip_key(ip), config)

    def check_email(self, email: str, config: RateLimitConfig) -> RateLimitResult:
        return self.check(email_key(email), config)

    def check_route(self, route: str, ip: str, config: RateLimitConfig) -> RateLimitResult:
        return self.check(route_key(route, ip), config)

    # ── Maintenance ────────────────────────────────────────────────────

    def clear(self, key: str) -> None:
        with self._lock:
            self._store.delete(key)

    def reset(self) -> None:
        """Drop every counter."""
        with self._lock:
            for key, _ in self._store.scan():
                self._store.delete(key)

    def stats(self) -> StoreStats:
        now = self._clock()
        entries = [entry for _, entry in self._store.scan()]
        stale = sum(1 for e in entries if now >= e.window_reset_at)
        return StoreStats(active=len(entries) - stale, expired=stale, total=len(entries))

    def sweep(self) -> int:
        """Delete every entry whose window has passed; returns how many."""
        now = self._clock()
        stale = [key for key, entry in self._store.scan() if now >= entry.window_reset_at]
        removed = 0
        for key in stale:
            with self._lock:
                current = self._store.get(key)
                if current is not None and now >= current.window_reset_at:
                    self._store.delete(key)
                    removed += 1
        return removed


# ── Singleton instance ────────────────────────────────────────────────────
limiter = RateLimiter(enabled=FEATURE_RATE_LIMITING_ENABLED)
