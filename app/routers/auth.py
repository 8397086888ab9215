"""
Authentication endpoints – email passcode flow with JWT session cookies.

Issuing a passcode runs, in order:

1.  rate limit by client IP
2.  rate limit by email
3.  refuse if a passcode is already pending for the email
4.  refuse if the account is already verified
5.  issue the passcode and email it
6.  record the (unverified) account

A passcode whose email could not be delivered stays pending until it
expires.
"""

import logging
from datetime import datetime

from fastapi import APIRouter, Request, Response, status
from fastapi.responses import JSONResponse

from app import db
from app.dependencies import (
    CurrentUser,
    Limiter,
    Passcodes,
    clear_session_cookie,
    create_session_cookie,
)
from app.models import (
    AuthResponse,
    ErrorResponse,
    MessageResponse,
    OtpRequest,
    OtpRequestResponse,
    OtpVerifyRequest,
    UserInfo,
)
from app.rate_limit import OTP_REQUEST, OTP_VERIFY, RateLimitResult, format_reset_time, get_client_ip
from app.services import email as email_service
from app.services.email import EmailDeliveryError
from app.services.store import normalize_email

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _rate_limit_headers(remaining: int, reset_time: datetime) -> dict[str, str]:
    return {
        "X-RateLimit-Remaining": str(remaining),
        "X-RateLimit-Reset": format_reset_time(reset_time),
    }


def _error(status_code: int, error: str, message: str | None = None, **extra) -> JSONResponse:
    headers = extra.pop("headers", None)
    body = ErrorResponse(error=error, message=message, **extra)
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json", by_alias=True, exclude_none=True),
        headers=headers,
    )


def _rate_limited(error: str, result: RateLimitResult) -> JSONResponse:
    return _error(
        status.HTTP_429_TOO_MANY_REQUESTS,
        error,
        result.message,
        reset_time=format_reset_time(result.reset_time),
        headers=_rate_limit_headers(result.remaining, result.reset_time),
    )


@router.post(
    "/request-otp",
    response_model=OtpRequestResponse,
    operation_id="requestOtp",
    summary="Send a one-time verification code to the given email",
    responses={409: {"model": ErrorResponse}, 429: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def request_otp(
    request: Request,
    body: OtpRequest,
    response: Response,
    passcodes: Passcodes,
    limiter: Limiter,
):
    email = normalize_email(body.email)

    ip_limit = limiter.check_ip(get_client_ip(request), OTP_REQUEST)
    if not ip_limit.allowed:
        return _rate_limited("Rate limit exceeded", ip_limit)

    email_limit = limiter.check_email(email, OTP_REQUEST)
    if not email_limit.allowed:
        return _rate_limited("Rate limit exceeded for this email", email_limit)

    if passcodes.has_pending(email):
        return _error(
            status.HTTP_409_CONFLICT,
            "OTP already sent",
            "Please wait for the current OTP to expire or check your email",
        )

    existing = await db.get_user_by_email(email)
    if existing is not None and existing.is_email_verified:
        return _error(
            status.HTTP_409_CONFLICT,
            "Email already verified",
            "This email address is already verified. Please sign in instead.",
        )

    code = passcodes.issue(email)
    try:
        await email_service.send_otp_email(email, code, passcodes.expiry_minutes)
    except EmailDeliveryError:
        # The issued passcode is kept; the user waits for it to expire.
        return _error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Failed to send verification email",
            "Please try again later or contact support if the problem persists.",
        )

    await db.save_unverified_user(email)

    response.headers.update(
        _rate_limit_headers(
            min(ip_limit.remaining, email_limit.remaining),
            max(ip_limit.reset_time, email_limit.reset_time),
        )
    )
    return OtpRequestResponse(
        success=True,
        message="Verification code sent successfully",
        email=email,
        expires_in=f"{passcodes.expiry_minutes} minutes",
    )


@router.post(
    "/verify-otp",
    response_model=AuthResponse,
    operation_id="verifyOtp",
    summary="Verify a code and receive a JWT session cookie",
    responses={401: {"model": ErrorResponse}, 429: {"model": ErrorResponse}},
)
async def verify_otp(
    request: Request,
    body: OtpVerifyRequest,
    response: Response,
    passcodes: Passcodes,
    limiter: Limiter,
):
    """
    Validate the code. On success, mark the account verified, set the
    session cookie and send a welcome email (best effort).
    """
    email = normalize_email(body.email)

    route_limit = limiter.check_route(request.url.path, get_client_ip(request), OTP_VERIFY)
    if not route_limit.allowed:
        return _rate_limited("Rate limit exceeded", route_limit)

    result = passcodes.validate(email, body.code)
    if not result.valid:
        return _error(status.HTTP_401_UNAUTHORIZED, "Invalid verification code", result.reason)

    user = await db.mark_email_verified(email)
    create_session_cookie(response, email)

    try:
        await email_service.send_welcome_email(email)
    except EmailDeliveryError:
        logger.warning("Welcome email to %s not delivered", email)

    return AuthResponse(
        message="Authenticated successfully",
        user=UserInfo(email=user.email, created_at=user.created_at),
    )


@router.post(
    "/logout",
    response_model=MessageResponse,
    operation_id="logout",
    summary="Clear the session cookie",
)
async def logout(current_user: CurrentUser, response: Response) -> MessageResponse:
    clear_session_cookie(response)
    return MessageResponse(message="Logged out successfully")


@router.get(
    "/me",
    response_model=UserInfo,
    operation_id="getMe",
    summary="Get current authenticated user info",
)
async def get_me(current_user: CurrentUser) -> UserInfo:
    return current_user
