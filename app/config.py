"""
Application configuration from environment variables.

All settings have sensible defaults for local development.
A .env file in the project root is loaded automatically (if present).
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env file before reading any env vars
load_dotenv(Path(__file__).resolve().parent.parent / ".env")


def _flag(name: str, default: str = "true") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


# ── Environment ───────────────────────────────────────────────────────────

ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
APP_NAME: str = "SeatFinder"
APP_VERSION: str = "0.1.0"
APP_URL: str = os.getenv("APP_URL", "http://localhost:8000")

# ── Paths ─────────────────────────────────────────────────────────────────

PROJECT_ROOT = Path(__file__).resolve().parent.parent
DATA_DIR = PROJECT_ROOT / "data"

# SQLite database file (user accounts)
DB_PATH: str = os.getenv("DB_PATH", str(DATA_DIR / "seatfinder.db"))

# ── Session (JWT) ─────────────────────────────────────────────────────────

JWT_SECRET: str = os.getenv("JWT_SECRET", "dev-secret-change-me-in-production")
JWT_ALGORITHM: str = "HS256"
SESSION_COOKIE_NAME: str = os.getenv("SESSION_COOKIE_NAME", "seatfinder-session")
SESSION_MAX_AGE: int = int(os.getenv("SESSION_MAX_AGE", "604800"))  # 7 days

# ── One-time passcodes ────────────────────────────────────────────────────

OTP_LENGTH: int = int(os.getenv("OTP_LENGTH", "6"))
OTP_EXPIRY_MINUTES: int = int(os.getenv("OTP_EXPIRY_MINUTES", "10"))
OTP_MAX_ATTEMPTS: int = int(os.getenv("OTP_MAX_ATTEMPTS", "3"))

# How often expired passcodes are swept from memory (seconds).
OTP_SWEEP_INTERVAL: float = float(os.getenv("OTP_SWEEP_INTERVAL", "300"))

# ── Rate limiting ─────────────────────────────────────────────────────────

FEATURE_RATE_LIMITING_ENABLED: bool = _flag("FEATURE_RATE_LIMITING_ENABLED")

# How often stale rate-limit windows are swept from memory (seconds).
RATE_LIMIT_SWEEP_INTERVAL: float = float(os.getenv("RATE_LIMIT_SWEEP_INTERVAL", "60"))

# ── Email ─────────────────────────────────────────────────────────────────

FEATURE_EMAIL_ENABLED: bool = _flag("FEATURE_EMAIL_ENABLED")

MAILGUN_API_KEY: str = os.getenv("MAILGUN_API_KEY", "")
MAILGUN_DOMAIN: str = os.getenv("MAILGUN_DOMAIN", "")
MAILGUN_FROM_EMAIL: str = os.getenv("MAILGUN_FROM_EMAIL", "")
MAILGUN_FROM_NAME: str = os.getenv("MAILGUN_FROM_NAME", APP_NAME)
MAILGUN_API_BASE: str = os.getenv("MAILGUN_API_BASE", "https://api.mailgun.net/v3")

SMTP_HOST: str = os.getenv("SMTP_HOST", "")
SMTP_PORT: int = int(os.getenv("SMTP_PORT", "587"))
SMTP_USERNAME: str = os.getenv("SMTP_USERNAME", "")
SMTP_PASSWORD: str = os.getenv("SMTP_PASSWORD", "")
SMTP_FROM_EMAIL: str = os.getenv("SMTP_FROM_EMAIL", "noreply@seatfinder.local")
SMTP_USE_TLS: bool = _flag("SMTP_USE_TLS")

# "auto" (default), "mailgun", "smtp" or "console".
_EMAIL_BACKEND_OVERRIDE: str = os.getenv("EMAIL_BACKEND", "auto")


def mailgun_configured() -> bool:
    return bool(MAILGUN_API_KEY and MAILGUN_DOMAIN and MAILGUN_FROM_EMAIL)


def smtp_configured() -> bool:
    return bool(SMTP_HOST and SMTP_USERNAME and SMTP_PASSWORD)


def email_backend() -> str:
    """Which transport outgoing email should use.

    Controlled by EMAIL_BACKEND env var:
      • "auto" (default) — Mailgun if configured, then SMTP, else console
      • "mailgun" / "smtp" — always use that transport (fails if unconfigured)
      • "console" — never send, log to console instead

    FEATURE_EMAIL_ENABLED=false forces console mode.
    """
    if not FEATURE_EMAIL_ENABLED:
        return "console"
    override = _EMAIL_BACKEND_OVERRIDE.lower()
    if override in ("mailgun", "smtp", "console"):
        return override
    if mailgun_configured():
        return "mailgun"
    if smtp_configured():
        return "smtp"
    return "console"
