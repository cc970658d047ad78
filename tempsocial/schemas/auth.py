"""Pydantic schemas for OTP login and session management"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import Field

from tempsocial.schemas.common import CamelModel


class SendOTPRequest(CamelModel):
    phone_number: str | None = None


class SendOTPResponse(CamelModel):
    message: str
    expires_at: datetime
    otp: str | None = None


class VerifyOTPRequest(CamelModel):
    phone_number: str | None = None
    otp: str | None = None
    username: str | None = None


class SocialLinks(CamelModel):
    instagram: str | None = None
    discord: str | None = None
    reddit: str | None = None
    snapchat: str | None = None
    twitter: str | None = None


class IdentitySummary(CamelModel):
    id: UUID
    phone_number: str
    username: str
    session_time_remaining: dict[str, Any]
    upi_id: str | None = None
    social_links: SocialLinks = Field(default_factory=SocialLinks)
    profile_picture: str | None = None
    bio: str = ""
    followers_count: int = 0
    following_count: int = 0
    session_start_time: datetime | None = None
    session_end_time: datetime | None = None
    last_active: datetime | None = None


class AuthResponse(CamelModel):
    message: str
    token: str
    user: IdentitySummary


class CurrentIdentityResponse(CamelModel):
    user: IdentitySummary


class ExtendSessionResponse(CamelModel):
    message: str
    token: str
    session_time_remaining: dict[str, Any]
    session_end_time: datetime
