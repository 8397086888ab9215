"""
SQLite database layer using aiosqlite.

Stores user accounts (email + verification flag).
Tables are created automatically on first connect.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from uuid import uuid4

import aiosqlite

from app.config import DB_PATH
from app.models import User

logger = logging.getLogger(__name__)

# ── Module-level connection ───────────────────────────────────────────────

_db: aiosqlite.Connection | None = None


async def init_db() -> None:
    """Open the database and create tables if they don't exist."""
    global _db
    db_path = Path(DB_PATH)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    _db = await aiosqlite.connect(str(db_path))
    _db.row_factory = aiosqlite.Row  # dict-like rows
    await _db.execute("PRAGMA journal_mode=WAL")

    await _db.executescript(_SCHEMA)
    await _db.commit()
    logger.info("Database initialized at %s", db_path)


async def close_db() -> None:
    """Close the database connection."""
    global _db
    if _db is not None:
        await _db.close()
        _db = None
        logger.info("Database connection closed")


def get_db() -> aiosqlite.Connection:
    if _db is None:
        raise RuntimeError("Database not initialized; the app lifespan opens it")
    return _db


# ── Schema ────────────────────────────────────────────────────────────────

_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id                  TEXT PRIMARY KEY,
    email               TEXT NOT NULL UNIQUE,  -- normalized (lowercase, trimmed)
    is_email_verified   INTEGER NOT NULL DEFAULT 0,
    created_at          TEXT NOT NULL,
    updated_at          TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_users_verified ON users(is_email_verified);
"""


# ── Helpers ───────────────────────────────────────────────────────────────


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_user(row: aiosqlite.Row) -> User:
    return User(
        id=row["id"],
        email=row["email"],
        is_email_verified=bool(row["is_email_verified"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


# ── Users ─────────────────────────────────────────────────────────────────


async def get_user_by_email(email: str) -> User | None:
    db = get_db()
    cursor = await db.execute("SELECT * FROM users WHERE email = ?", (email,))
    row = await cursor.fetchone()
    return _row_to_user(row) if row else None


async def save_unverified_user(email: str) -> User:
    """Create the account if missing; an existing account only gets its timestamp bumped."""
    db = get_db()
    now = _now_iso()
    await db.execute(
        """
        INSERT INTO users (id, email, is_email_verified, created_at, updated_at)
        VALUES (?, ?, 0, ?, ?)
        ON CONFLICT(email) DO UPDATE SET updated_at = excluded.updated_at
        """,
        (str(uuid4()), email, now, now),
    )
    await db.commit()
    user = await get_user_by_email(email)
    assert user is not None
    return user


async def mark_email_verified(email: str) -> User:
    """Flag the account as verified, creating it if it does not exist yet."""
    db = get_db()
    now = _now_iso()
    await db.execute(
        """
        INSERT INTO users (id, email, is_email_verified, created_at, updated_at)
        VALUES (?, ?, 1, ?, ?)
        ON CONFLICT(email) DO UPDATE SET
            is_email_verified = 1,
            updated_at = excluded.updated_at
        """,
        (str(uuid4()), email, now, now),
    )
    await db.commit()
    logger.info("Email verified for %s", email)
    user = await get_user_by_email(email)
    assert user is not None
    return user
