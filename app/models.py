"""Pydantic models for the SeatFinder auth API."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from app.config import OTP_LENGTH


class User(BaseModel):
    """Account record from the user store."""
    id: str = Field(..., description="Unique user identifier")
    email: str = Field(..., description="Normalized email address")
    is_email_verified: bool = Field(default=False, description="Whether the email has been verified")
    created_at: datetime = Field(..., description="Creation timestamp")
    updated_at: datetime = Field(..., description="Last update timestamp")


class UserInfo(BaseModel):
    """Authenticated user as seen by the API."""
    email: str = Field(..., description="User email")
    created_at: datetime = Field(..., description="Session issue time")


# ── Requests ──────────────────────────────────────────────────────────────


class OtpRequest(BaseModel):
    """Request a verification code."""
    email: EmailStr = Field(..., description="Email address to verify")


class OtpVerifyRequest(BaseModel):
    """Submit a verification code."""
    email: EmailStr = Field(..., description="Email address the code was sent to")
    code: str = Field(
        ...,
        min_length=OTP_LENGTH,
        max_length=OTP_LENGTH,
        pattern=r"^\d+$",
        description="Numeric verification code",
    )


# ── Responses ─────────────────────────────────────────────────────────────


class OtpRequestResponse(BaseModel):
    """Verification code was sent."""
    model_config = ConfigDict(populate_by_name=True)

    success: bool = Field(default=True)
    message: str = Field(...)
    email: str = Field(..., description="Normalized email the code was sent to")
    expires_in: str = Field(..., alias="expiresIn", description='e.g. "10 minutes"')


class AuthResponse(BaseModel):
    """Successful verification."""
    message: str
    user: UserInfo


class MessageResponse(BaseModel):
    message: str


class ErrorResponse(BaseModel):
    """Error body returned by the auth endpoints."""
    model_config = ConfigDict(populate_by_name=True)

    error: str = Field(..., description="Short error label")
    message: Optional[str] = Field(None, description="Human readable explanation")
    reset_time: Optional[str] = Field(None, alias="resetTime", description="When the rate limit window resets (UTC, ISO 8601)")
    details: Optional[Any] = Field(None, description="Validation details")


class StoreStatsResponse(BaseModel):
    active: int
    expired: int
    total: int


class HealthResponse(BaseModel):
    status: str
    version: str
    timestamp: datetime
    passcodes: StoreStatsResponse
    rate_limits: StoreStatsResponse
