"""
Keyed storage for the ephemeral auth stores.

The passcode manager and the rate limiter only ever talk to a
``KeyValueStore``; the in-process ``InMemoryStore`` is the default, and a
shared cache can be slotted in for multi-process deployments by
implementing the same four methods.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Generic, Protocol, TypeVar

V = TypeVar("V")

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_email(email: str) -> str:
    return email.strip().lower()


@dataclass(frozen=True)
class StoreStats:
    """Diagnostic snapshot: entries still live vs. past expiry but not yet swept."""

    active: int
    expired: int
    total: int


class KeyValueStore(Protocol[V]):
    def get(self, key: str) -> V | None:
        ...

    def set(self, key: str, value: V) -> None:
        ...

    def delete(self, key: str) -> None:
        ...

    def scan(self) -> list[tuple[str, V]]:
        ...


class InMemoryStore(Generic[V]):
    """
    Dict-backed store guarded by a lock.

    ``scan`` returns a copy, so callers can iterate it while other
    requests keep mutating the store.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, V] = {}

    def get(self, key: str) -> V | None:
        with self._lock:
            return self._entries.get(key)

    def set(self, key: str, value: V) -> None:
        with self._lock:
            self._entries[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def scan(self) -> list[tuple[str, V]]:
        with self._lock:
            return list(self._entries.items())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
