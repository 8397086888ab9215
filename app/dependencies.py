import logging
from datetime import UTC, datetime, timedelta
from typing import Annotated

import jwt
from fastapi import Depends, HTTPException, Request, Response, status

from app.config import ENVIRONMENT, JWT_ALGORITHM, JWT_SECRET, SESSION_COOKIE_NAME, SESSION_MAX_AGE
from app.models import UserInfo
from app.rate_limit import RateLimiter, limiter
from app.services.passcodes import PasscodeManager, passcodes

logger = logging.getLogger(__name__)


# ── Auth stores ────────────────────────────────────────────────────────────


def get_passcode_manager() -> PasscodeManager:
    return passcodes


def get_rate_limiter() -> RateLimiter:
    return limiter


Passcodes = Annotated[PasscodeManager, Depends(get_passcode_manager)]
Limiter = Annotated[RateLimiter, Depends(get_rate_limiter)]


# ── JWT / Session ──────────────────────────────────────────────────────────


def create_jwt(email: str) -> str:
    now = datetime.now(UTC)
    payload = {
        "sub": email,
        "iat": now,
        "exp": now + timedelta(seconds=SESSION_MAX_AGE),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def create_session_cookie(response: Response, email: str) -> None:
    token = create_jwt(email)
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=token,
        httponly=True,
        samesite="lax",
        secure=ENVIRONMENT == "production",
        max_age=SESSION_MAX_AGE,
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(SESSION_COOKIE_NAME)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def decode_session(token: str) -> UserInfo:
    """Turn a session token back into the user it was issued for."""
    try:
        claims = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Session expired. Please log in again.") from None
    except jwt.PyJWTError:
        logger.info("Rejected invalid session token")
        raise _unauthorized("Invalid session. Please log in again.") from None

    subject = claims.get("sub")
    if not subject:
        raise _unauthorized("Invalid token payload.")
    return UserInfo(email=subject, created_at=datetime.fromtimestamp(claims.get("iat", 0), tz=UTC))


async def get_current_user(request: Request) -> UserInfo:
    token = request.cookies.get(SESSION_COOKIE_NAME)
    if token is None:
        raise _unauthorized("Authentication required. Please log in via /api/auth/verify-otp")
    return decode_session(token)


CurrentUser = Annotated[UserInfo, Depends(get_current_user)]
