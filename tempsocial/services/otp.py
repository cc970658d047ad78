"""OTP challenge store: issue, persist and verify one-time codes per phone number"""

import enum
import hmac
import logging
import re
import secrets
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tempsocial.config import settings
from tempsocial.db.models import OTPChallenge
from tempsocial.errors import DependencyError, ValidationError
from tempsocial.services.notifier import Notifier, SMSTemplate, send_with_retry
from tempsocial.utils.time import utcnow

logger = logging.getLogger(__name__)

PHONE_PATTERN = re.compile(r"^\+?[1-9]\d{1,14}$")
CODE_PATTERN = re.compile(r"^\d{6}$")


def validate_phone_number(phone_number: str | None) -> str:
    if not phone_number:
        raise ValidationError("Phone number is required")
    phone_number = phone_number.strip()
    if not PHONE_PATTERN.match(phone_number):
        raise ValidationError("Invalid phone number format")
    return phone_number


def generate_code() -> str:
    """Uniformly random 6-digit code (100000-999999)"""
    return str(100000 + secrets.randbelow(900000))


class VerifyStatus(enum.Enum):
    VERIFIED = "verified"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    ATTEMPTS_EXHAUSTED = "attempts_exhausted"
    MISMATCH = "mismatch"
    ALREADY_VERIFIED = "already_verified"


@dataclass
class VerifyResult:
    status: VerifyStatus
    remaining_attempts: int = 0

    @property
    def success(self) -> bool:
        return self.status is VerifyStatus.VERIFIED

    @property
    def message(self) -> str:
        if self.status is VerifyStatus.VERIFIED:
            return "OTP verified successfully"
        if self.status is VerifyStatus.NOT_FOUND:
            return "No OTP found for this phone number"
        if self.status is VerifyStatus.EXPIRED:
            return "OTP has expired"
        if self.status is VerifyStatus.ATTEMPTS_EXHAUSTED:
            return "Maximum attempts exceeded"
        if self.status is VerifyStatus.ALREADY_VERIFIED:
            return "OTP already verified"
        return f"Invalid OTP. {self.remaining_attempts} attempts remaining"


class OTPService:
    """Issues and verifies OTP challenges"""

    def __init__(self, db: AsyncSession, notifier: Notifier):
        self.db = db
        self.notifier = notifier
        self.max_attempts = settings.otp_max_attempts

    async def issue(self, phone_number: str) -> OTPChallenge:
        """Supersede any previous challenge for the number and send a fresh code"""
        phone_number = validate_phone_number(phone_number)

        await self.db.execute(
            delete(OTPChallenge).where(OTPChallenge.phone_number == phone_number)
        )

        now = utcnow()
        challenge = OTPChallenge(
            phone_number=phone_number,
            code=generate_code(),
            attempts=0,
            verified=False,
            created_at=now,
            expires_at=now + timedelta(minutes=settings.otp_ttl_minutes),
        )
        self.db.add(challenge)
        await self.db.commit()

        text = SMSTemplate.OTP_CODE.format(
            code=challenge.code, minutes=settings.otp_ttl_minutes
        )
        try:
            await send_with_retry(self.notifier, phone_number, text)
        except DependencyError:
            if settings.is_production:
                raise
            logger.warning(f"[DEV] OTP for {phone_number}: {challenge.code}")

        return challenge

    async def get_active_challenge(self, phone_number: str) -> OTPChallenge | None:
        """Most recent unverified challenge for the number"""
        result = await self.db.execute(
            select(OTPChallenge)
            .where(
                OTPChallenge.phone_number == phone_number,
                OTPChallenge.verified.is_(False),
            )
            .order_by(OTPChallenge.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def verify(self, phone_number: str, code: str) -> VerifyResult:
        phone_number = validate_phone_number(phone_number)
        if not code or not CODE_PATTERN.match(code.strip()):
            raise ValidationError("OTP must be a 6-digit code")

        challenge = await self.get_active_challenge(phone_number)
        if challenge is None:
            return VerifyResult(VerifyStatus.NOT_FOUND)
        return await self.check(challenge, code.strip())

    async def check(self, challenge: OTPChallenge, code: str) -> VerifyResult:
        """Consume one attempt on the challenge and compare codes"""
        if challenge.verified:
            return VerifyResult(VerifyStatus.ALREADY_VERIFIED)
        if challenge.expires_at <= utcnow():
            return VerifyResult(VerifyStatus.EXPIRED)
        if challenge.attempts >= self.max_attempts:
            return VerifyResult(VerifyStatus.ATTEMPTS_EXHAUSTED)

        # Count the attempt before comparing, whatever the outcome
        result = await self.db.execute(
            update(OTPChallenge)
            .where(
                OTPChallenge.id == challenge.id,
                OTPChallenge.verified.is_(False),
                OTPChallenge.attempts < self.max_attempts,
            )
            .values(attempts=OTPChallenge.attempts + 1)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        await self.db.refresh(challenge)

        if result.rowcount == 0:
            # Lost a race with a concurrent verify
            if challenge.verified:
                return VerifyResult(VerifyStatus.ALREADY_VERIFIED)
            return VerifyResult(VerifyStatus.ATTEMPTS_EXHAUSTED)

        if not hmac.compare_digest(challenge.code, code):
            remaining = max(0, self.max_attempts - challenge.attempts)
            logger.info(
                f"OTP mismatch for {challenge.phone_number}, {remaining} attempts remaining"
            )
            return VerifyResult(VerifyStatus.MISMATCH, remaining_attempts=remaining)

        result = await self.db.execute(
            update(OTPChallenge)
            .where(OTPChallenge.id == challenge.id, OTPChallenge.verified.is_(False))
            .values(verified=True)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        await self.db.refresh(challenge)
        if result.rowcount == 0:
            return VerifyResult(VerifyStatus.ALREADY_VERIFIED)

        logger.info(f"OTP verified for {challenge.phone_number}")
        return VerifyResult(
            VerifyStatus.VERIFIED,
            remaining_attempts=max(0, self.max_attempts - challenge.attempts),
        )

    async def claim_verified(self, phone_number: str, code: str) -> bool:
        """Consume a verified, unexpired challenge left waiting for registration.

        A verification for an unknown number stops at "username required";
        the follow-up call carrying the username claims it here, once.
        """
        result = await self.db.execute(
            select(OTPChallenge)
            .where(
                OTPChallenge.phone_number == phone_number,
                OTPChallenge.verified.is_(True),
                OTPChallenge.expires_at > utcnow(),
            )
            .order_by(OTPChallenge.created_at.desc())
            .limit(1)
        )
        challenge = result.scalar_one_or_none()
        if challenge is None or not hmac.compare_digest(challenge.code, code.strip()):
            return False

        result = await self.db.execute(
            delete(OTPChallenge).where(
                OTPChallenge.id == challenge.id, OTPChallenge.verified.is_(True)
            )
        )
        await self.db.commit()
        return result.rowcount == 1

    async def consume(self, phone_number: str) -> int:
        """Delete verified challenges for the number once they have been used to log in"""
        result = await self.db.execute(
            delete(OTPChallenge).where(
                OTPChallenge.phone_number == phone_number,
                OTPChallenge.verified.is_(True),
            )
        )
        await self.db.commit()
        return result.rowcount
