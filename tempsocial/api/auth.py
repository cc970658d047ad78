"""OTP login and session management endpoints"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from tempsocial.api.deps import get_current_user, get_notifier, get_relay
from tempsocial.config import settings
from tempsocial.db.database import get_db
from tempsocial.db.models import User
from tempsocial.errors import (
    AppError,
    RateExceededError,
    RegistrationRequired,
    ValidationError,
)
from tempsocial.schemas.auth import (
    AuthResponse,
    CurrentIdentityResponse,
    ExtendSessionResponse,
    IdentitySummary,
    SendOTPRequest,
    SendOTPResponse,
    VerifyOTPRequest,
)
from tempsocial.schemas.common import MessageOut
from tempsocial.services.notifier import Notifier
from tempsocial.services.otp import OTPService, VerifyStatus, validate_phone_number
from tempsocial.services.relay import RelayService
from tempsocial.services.sessions import (
    SessionService,
    create_session_token,
    time_remaining,
)
from tempsocial.services.users import UserService

logger = logging.getLogger(__name__)
router = APIRouter()


async def build_identity_summary(db: AsyncSession, user: User) -> IdentitySummary:
    followers, following = await UserService(db).follow_counts(user.id)
    return IdentitySummary(
        id=user.id,
        phone_number=user.phone_number,
        username=user.username,
        session_time_remaining=time_remaining(user).to_dict(),
        upi_id=user.upi_id,
        social_links=user.social_links or {},
        profile_picture=user.profile_picture,
        bio=user.bio,
        followers_count=followers,
        following_count=following,
        session_start_time=user.session_start,
        session_end_time=user.session_end,
        last_active=user.last_active,
    )


@router.post("/send-otp", response_model=SendOTPResponse)
async def send_otp(
    request: SendOTPRequest,
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> SendOTPResponse:
    """Issue a fresh OTP challenge for a phone number"""
    try:
        challenge = await OTPService(db, notifier).issue(request.phone_number)
        return SendOTPResponse(
            message="OTP sent successfully",
            expires_at=challenge.expires_at,
            otp=challenge.code if settings.is_development else None,
        )
    except AppError:
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error sending OTP: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to send OTP",
        )


@router.post("/verify-otp", response_model=AuthResponse)
async def verify_otp(
    request: VerifyOTPRequest,
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> AuthResponse:
    """Verify an OTP, then log in an existing identity or register a new one"""
    try:
        if not request.phone_number or not request.otp:
            raise ValidationError("Phone number and OTP are required")
        phone_number = validate_phone_number(request.phone_number)

        otp_service = OTPService(db, notifier)
        sessions = SessionService(db)
        result = await otp_service.verify(phone_number, request.otp)
        existing = await sessions.get_by_phone(phone_number)

        if not result.success:
            # A verified challenge waiting for a username is claimable by a new number only
            claimed = (
                result.status is VerifyStatus.NOT_FOUND
                and existing is None
                and request.username
                and await otp_service.claim_verified(phone_number, request.otp)
            )
            if not claimed:
                if result.status is VerifyStatus.ATTEMPTS_EXHAUSTED:
                    raise RateExceededError(result.message)
                raise ValidationError(result.message)
        elif existing is None and not request.username:
            raise RegistrationRequired()

        if existing is not None:
            user = await sessions.resume_or_extend(phone_number)
        else:
            user = await sessions.register(phone_number, request.username)
        await otp_service.consume(phone_number)

        return AuthResponse(
            message="Login successful",
            token=create_session_token(user),
            user=await build_identity_summary(db, user),
        )
    except AppError:
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error verifying OTP: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to verify OTP",
        )


@router.get("/me", response_model=CurrentIdentityResponse)
async def current_identity(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> CurrentIdentityResponse:
    """Identity summary including the computed time remaining"""
    return CurrentIdentityResponse(user=await build_identity_summary(db, user))


@router.post("/extend-session", response_model=ExtendSessionResponse)
async def extend_session(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ExtendSessionResponse:
    """Reset the session window to a full duration from now"""
    try:
        user = await SessionService(db).extend(user)
        return ExtendSessionResponse(
            message="Session extended successfully",
            token=create_session_token(user),
            session_time_remaining=time_remaining(user).to_dict(),
            session_end_time=user.session_end,
        )
    except Exception as e:
        await db.rollback()
        logger.error(f"Error extending session for {user.id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to extend session",
        )


@router.post("/logout", response_model=MessageOut)
async def logout(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    relay: RelayService = Depends(get_relay),
) -> MessageOut:
    """Deactivate the identity and drop its relay connection"""
    try:
        await SessionService(db).logout(user)
    except Exception as e:
        await db.rollback()
        logger.error(f"Error logging out {user.id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to logout",
        )

    await relay.expire(user.id, message="You have been logged out")
    return MessageOut(message="Logged out successfully")
