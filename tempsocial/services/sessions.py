"""Session entity lifecycle: registration, extension, expiry and session tokens"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

import jwt
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tempsocial.config import settings
from tempsocial.db.models import User
from tempsocial.errors import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    RegistrationRequired,
    ValidationError,
)
from tempsocial.services.otp import validate_phone_number
from tempsocial.utils.time import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TimeRemaining:
    hours: int
    minutes: int
    seconds: int
    expired: bool
    expiring_soon: bool
    critical: bool
    total_seconds: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "hours": self.hours,
            "minutes": self.minutes,
            "seconds": self.seconds,
            "expired": self.expired,
            "expiringSoon": self.expiring_soon,
            "critical": self.critical,
            "totalSeconds": self.total_seconds,
        }


def session_duration() -> timedelta:
    return timedelta(hours=settings.session_duration_hours)


def time_remaining(user: User, now: datetime | None = None) -> TimeRemaining:
    """max(0, session_end - now), broken into h/m/s and classified"""
    now = now or utcnow()
    remaining = int((user.session_end - now).total_seconds())
    if remaining <= 0:
        return TimeRemaining(0, 0, 0, True, False, False, 0)

    hours, rest = divmod(remaining, 3600)
    minutes, seconds = divmod(rest, 60)
    return TimeRemaining(
        hours=hours,
        minutes=minutes,
        seconds=seconds,
        expired=False,
        expiring_soon=remaining <= settings.session_warning_minutes * 60,
        critical=remaining <= settings.session_critical_minutes * 60,
        total_seconds=remaining,
    )


def is_expired(user: User, now: datetime | None = None) -> bool:
    now = now or utcnow()
    return now >= user.session_end


def create_session_token(user: User) -> str:
    now = utcnow()
    payload = {
        "sub": str(user.id),
        "phone": user.phone_number,
        "iat": now,
        "exp": now + timedelta(hours=settings.jwt_expiration_hours),
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_session_token(token: str) -> uuid.UUID:
    """Return the identity id carried by a token. Raises AuthenticationError."""
    try:
        payload = jwt.decode(
            token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm]
        )
        return uuid.UUID(payload["sub"])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired")
    except (jwt.InvalidTokenError, KeyError, ValueError):
        raise AuthenticationError("Invalid token")


class SessionService:
    """Owns Identity records and their session windows"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, user_id: uuid.UUID) -> User | None:
        return await self.db.get(User, user_id)

    async def get_by_phone(self, phone_number: str) -> User | None:
        result = await self.db.execute(
            select(User).where(User.phone_number == phone_number)
        )
        return result.scalar_one_or_none()

    async def get_by_username(self, username: str) -> User | None:
        result = await self.db.execute(select(User).where(User.username == username))
        return result.scalar_one_or_none()

    async def register(self, phone_number: str, username: str) -> User:
        """Create an identity; the caller must have verified an OTP for the number"""
        phone_number = validate_phone_number(phone_number)
        username = (username or "").strip()
        if not 3 <= len(username) <= 30:
            raise ValidationError("Username must be between 3 and 30 characters")

        if await self.get_by_username(username):
            raise ConflictError("Username already taken")
        if await self.get_by_phone(phone_number):
            raise ConflictError("Phone number already registered")

        now = utcnow()
        user = User(
            phone_number=phone_number,
            username=username,
            session_start=now,
            session_end=now + session_duration(),
            is_active=True,
            last_active=now,
            otp_verified=True,
        )
        self.db.add(user)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError("Username already taken")

        await self.db.refresh(user)
        logger.info(f"Registered identity {user.id} ({username})")
        return user

    async def resume_or_extend(self, phone_number: str) -> User:
        user = await self.get_by_phone(phone_number)
        if user is None:
            raise RegistrationRequired()
        user.is_active = True
        return await self.extend(user)

    async def extend(self, user: User) -> User:
        """Reset the session window to [now, now + session duration]"""
        now = utcnow()
        user.session_start = now
        user.session_end = now + session_duration()
        user.last_active = now
        await self.db.commit()
        await self.db.refresh(user)
        logger.info(f"Session extended for {user.id} until {user.session_end.isoformat()}")
        return user

    async def logout(self, user: User) -> User:
        user.is_active = False
        user.last_active = utcnow()
        await self.db.commit()
        logger.info(f"Identity {user.id} logged out")
        return user

    async def authenticate(self, token: str) -> User:
        """Resolve a token to a live identity"""
        user_id = decode_session_token(token)
        user = await self.get_by_id(user_id)
        if user is None:
            raise AuthenticationError("Session not found")
        if not user.is_live():
            raise AuthenticationError("Session expired")
        return user

    async def require(self, user_id: uuid.UUID) -> User:
        user = await self.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user
