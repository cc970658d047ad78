"""SMS notifier used to deliver OTP codes"""

import asyncio
import logging
from typing import Protocol

from twilio.base.exceptions import TwilioException
from twilio.rest import Client

from tempsocial.config import settings
from tempsocial.errors import DependencyError

logger = logging.getLogger(__name__)


class SMSTemplate:
    """SMS message templates"""

    OTP_CODE = (
        "Your Temporary Social verification code is: {code}. "
        "Valid for {minutes} minutes."
    )


class Notifier(Protocol):
    async def send(self, phone_number: str, text: str) -> str | None:
        """Deliver text to phone_number, returning a provider id. Raises DependencyError."""
        ...


class LogNotifier:
    """Writes messages to the log instead of sending them"""

    async def send(self, phone_number: str, text: str) -> str | None:
        logger.info(f"[DEV] SMS to {phone_number}: {text}")
        return None


class TwilioNotifier:
    """Twilio client wrapper for SMS delivery"""

    def __init__(self, client: Client | None = None):
        self.client = client
        if self.client is None and settings.twilio_account_sid and settings.twilio_auth_token:
            self.client = Client(
                settings.twilio_account_sid,
                settings.twilio_auth_token
            )

    def _is_configured(self) -> bool:
        """Check if Twilio is properly configured"""
        return (
            self.client is not None
            and settings.twilio_phone_number is not None
            and settings.enable_sms
        )

    async def send(self, phone_number: str, text: str) -> str | None:
        if not self._is_configured():
            raise DependencyError("SMS provider is not configured")

        try:
            # The Twilio SDK is blocking
            message = await asyncio.to_thread(
                self.client.messages.create,
                body=text,
                from_=settings.twilio_phone_number,
                to=phone_number,
            )
        except TwilioException as e:
            logger.error(f"Failed to send SMS to {phone_number}: {e}")
            raise DependencyError("Failed to send SMS") from e

        logger.info(f"SMS sent to {phone_number}, SID: {message.sid}")
        return message.sid


async def send_with_retry(notifier: Notifier, phone_number: str, text: str) -> str | None:
    """Send once, retrying a single time on DependencyError"""
    try:
        return await notifier.send(phone_number, text)
    except DependencyError as e:
        logger.warning(f"SMS delivery to {phone_number} failed, retrying once: {e}")
        return await notifier.send(phone_number, text)


def build_notifier() -> Notifier:
    if settings.is_sms_configured():
        return TwilioNotifier()
    logger.warning("Twilio not configured, OTP codes will be written to the log")
    return LogNotifier()
