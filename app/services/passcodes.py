"""
One-time passcodes bound to an email address.

A passcode is a fixed-width numeric string drawn from ``secrets``.  At most
one live passcode exists per normalized email; it is destroyed when it is
used, when it is seen past its expiry, when its attempt budget is spent,
or when it is cleared explicitly.

Policy outcomes (missing, expired, exhausted, mismatch) are returned as a
``ValidationResult``; nothing here raises for them.

Usage::

    passcodes = PasscodeManager(InMemoryStore())
    code = passcodes.issue("Guest@Example.com ")
    passcodes.validate("guest@example.com", code)   # ValidationResult(valid=True)
"""

from __future__ import annotations

import hmac
import logging
import secrets
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from app.config import OTP_EXPIRY_MINUTES, OTP_LENGTH, OTP_MAX_ATTEMPTS
from app.services.store import (
    Clock,
    InMemoryStore,
    KeyValueStore,
    StoreStats,
    normalize_email,
    utc_now,
)

logger = logging.getLogger(__name__)

REASON_NOT_FOUND = "not found or expired"
REASON_EXPIRED = "expired"
REASON_MAX_ATTEMPTS = "max attempts exceeded"
REASON_INVALID_CODE = "invalid code"


def generate_code(length: int = OTP_LENGTH) -> str:
    """Uniform random ``length``-digit code with no leading zero."""
    low = 10 ** (length - 1)
    return str(low + secrets.randbelow(9 * low))


@dataclass(frozen=True)
class PasscodeRecord:
    email: str
    code: str
    expires_at: datetime
    attempts: int
    issued_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    reason: str | None = None


class PasscodeManager:
    """Issues, validates and expires passcodes keyed by normalized email."""

    def __init__(
        self,
        store: KeyValueStore[PasscodeRecord] | None = None,
        *,
        length: int = OTP_LENGTH,
        expiry: timedelta = timedelta(minutes=OTP_EXPIRY_MINUTES),
        max_attempts: int = OTP_MAX_ATTEMPTS,
        clock: Clock = utc_now,
    ) -> None:
        self._store: KeyValueStore[PasscodeRecord] = store if store is not None else InMemoryStore()
        self._length = length
        self._expiry = expiry
        self._max_attempts = max_attempts
        self._clock = clock
        self._lock = threading.Lock()

    @property
    def expiry(self) -> timedelta:
        return self._expiry

    @property
    def expiry_minutes(self) -> int:
        return int(self._expiry.total_seconds() // 60)

    # ── Issue ──────────────────────────────────────────────────────────

    def issue(self, email: str) -> str:
        """
        Create a fresh passcode for *email*, replacing any previous one.

        Callers are expected to check ``has_pending`` first.
        """
        key = normalize_email(email)
        code = generate_code(self._length)
        now = self._clock()
        record = PasscodeRecord(
            email=key,
            code=code,
            expires_at=now + self._expiry,
            attempts=0,
            issued_at=now,
        )
        with self._lock:
            self._store.set(key, record)
        logger.info("Passcode issued for %s (expires %s)", key, record.expires_at.isoformat())
        return code

    # ── Validate ───────────────────────────────────────────────────────

    def validate(self, email: str, submitted_code: str) -> ValidationResult:
        """
        Check *submitted_code* against the live passcode for *email*.

        The attempt counter is compared before it is incremented, and
        incremented before the code is compared: with a budget of 3, the
        fourth call is refused even if it carries the right code.
        """
        key = normalize_email(email)
        with self._lock:
            record = self._store.get(key)
            if record is None:
                return ValidationResult(valid=False, reason=REASON_NOT_FOUND)

            if record.is_expired(self._clock()):
                self._store.delete(key)
                return ValidationResult(valid=False, reason=REASON_EXPIRED)

            if record.attempts >= self._max_attempts:
                self._store.delete(key)
                logger.warning("Passcode for %s discarded after %d attempts", key, record.attempts)
                return ValidationResult(valid=False, reason=REASON_MAX_ATTEMPTS)

            record = replace(record, attempts=record.attempts + 1)
            if not hmac.compare_digest(record.code.encode(), submitted_code.encode()):
                self._store.set(key, record)
                return ValidationResult(valid=False, reason=REASON_INVALID_CODE)

            self._store.delete(key)
        logger.info("Passcode verified for %s", key)
        return ValidationResult(valid=True)

    # ── Queries ────────────────────────────────────────────────────────

    def has_pending(self, email: str) -> bool:
        key = normalize_email(email)
        with self._lock:
            record = self._store.get(key)
            if record is None:
                return False
            if record.is_expired(self._clock()):
                self._store.delete(key)
                return False
            return True

    def get_record(self, email: str) -> PasscodeRecord | None:
        """Snapshot of the stored record, expired or not (diagnostics only)."""
        return self._store.get(normalize_email(email))

    def clear(self, email: str) -> None:
        with self._lock:
            self._store.delete(normalize_email(email))

    def reset(self) -> None:
        with self._lock:
            for key, _ in self._store.scan():
                self._store.delete(key)

    def stats(self) -> StoreStats:
        now = self._clock()
        records = [record for _, record in self._store.scan()]
        expired = sum(1 for r in records if r.is_expired(now))
        return StoreStats(active=len(records) - expired, expired=expired, total=len(records))

    # ── Sweep ──────────────────────────────────────────────────────────

    def sweep(self) -> int:
        """Delete every expired record; returns how many were removed."""
        now = self._clock()
        stale = [key for key, record in self._store.scan() if record.is_expired(now)]
        removed = 0
        for key in stale:
            with self._lock:
                # Re-read: the key may have been re-issued since the scan.
                current = self._store.get(key)
                if current is not None and current.is_expired(now):
                    self._store.delete(key)
                    removed += 1
        return removed


# ── Singleton instance ────────────────────────────────────────────────────
passcodes = PasscodeManager()
