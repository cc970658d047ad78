"""Background jobs reconciling session expiry with live connections"""

import logging
import uuid
from datetime import timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tempsocial.config import settings
from tempsocial.db.models import Message, OTPChallenge, Payment, User
from tempsocial.services.presence import PresenceRegistry
from tempsocial.services.relay import RelayService
from tempsocial.services.sessions import time_remaining
from tempsocial.utils.time import utcnow

logger = logging.getLogger(__name__)


class ExpiryScheduler:
    """Warning sweep, hard-expiry sweep and TTL purge on independent interval timers.

    The sweeps only read the presence registry through snapshots and never
    assume exclusive access to it or to the database.
    """

    def __init__(
        self,
        presence: PresenceRegistry,
        relay: RelayService,
        session_factory: async_sessionmaker[AsyncSession],
    ):
        self.presence = presence
        self.relay = relay
        self.session_factory = session_factory
        self.scheduler = AsyncIOScheduler(
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 60,
            },
            timezone="UTC",
        )

    def setup_jobs(self) -> None:
        self.scheduler.add_job(
            self.warning_sweep,
            trigger=IntervalTrigger(minutes=settings.warning_sweep_interval_minutes),
            id="session_warning_sweep",
            name="Warn Expiring Sessions",
            replace_existing=True,
        )
        self.scheduler.add_job(
            self.expiry_sweep,
            trigger=IntervalTrigger(minutes=settings.expiry_sweep_interval_minutes),
            id="session_expiry_sweep",
            name="Disconnect Expired Sessions",
            replace_existing=True,
        )
        self.scheduler.add_job(
            self.purge_expired,
            trigger=IntervalTrigger(minutes=settings.purge_interval_minutes),
            id="ttl_purge",
            name="Purge Expired Records",
            replace_existing=True,
        )

    def start(self) -> None:
        self.setup_jobs()
        self.scheduler.start()
        logger.info("Expiry scheduler started")

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Expiry scheduler stopped")

    async def warning_sweep(self) -> int:
        """Warn present identities whose session ends within the warning window.

        Repeats on every tick until the session is extended or ends.
        """
        present = self.presence.snapshot()
        if not present:
            return 0

        now = utcnow()
        horizon = now + timedelta(minutes=settings.session_warning_minutes)
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(User).where(
                        User.is_active.is_(True),
                        User.session_end >= now,
                        User.session_end <= horizon,
                        User.id.in_(list(present.keys())),
                    )
                )
                users = list(result.scalars().all())
        except Exception as e:
            logger.error(f"Session warning sweep failed: {e}", exc_info=True)
            return 0

        warned = 0
        for user in users:
            try:
                remaining = time_remaining(user, now)
                delivered = await self.relay.push(
                    user.id,
                    "sessionWarning",
                    {
                        "timeRemaining": remaining.to_dict(),
                        "message": (
                            f"Your session expires in {remaining.hours}h {remaining.minutes}m"
                        ),
                    },
                )
                if delivered:
                    warned += 1
            except Exception as e:
                logger.error(f"Failed to warn {user.id} of session expiry: {e}")

        if warned:
            logger.info(f"Session warning sweep notified {warned} users")
        return warned

    async def expiry_sweep(self) -> int:
        """Disconnect present identities whose session has ended.

        Identity records are left for the purge job; a present identity whose
        record is already gone is treated as expired too.
        """
        present = self.presence.snapshot()
        if not present:
            return 0

        now = utcnow()
        present_ids = list(present.keys())
        try:
            async with self.session_factory() as db:
                expired = await db.execute(
                    select(User.id).where(
                        User.session_end <= now,
                        User.id.in_(present_ids),
                    )
                )
                existing = await db.execute(select(User.id).where(User.id.in_(present_ids)))
                expired_ids: set[uuid.UUID] = set(expired.scalars().all())
                orphaned_ids = set(present_ids) - set(existing.scalars().all())
        except Exception as e:
            logger.error(f"Session expiry sweep failed: {e}", exc_info=True)
            return 0

        disconnected = 0
        for user_id in expired_ids | orphaned_ids:
            try:
                if await self.relay.expire(user_id):
                    disconnected += 1
            except Exception as e:
                logger.error(f"Failed to expire session for {user_id}: {e}")

        logger.info(f"Session expiry sweep completed. Disconnected {disconnected} users.")
        return disconnected

    async def purge_expired(self) -> dict[str, int]:
        """Delete records past their lifetime (stand-in for storage TTL indexes)"""
        now = utcnow()
        identity_cutoff = now - timedelta(minutes=settings.purge_grace_minutes)
        counts = {"otp_challenges": 0, "messages": 0, "payments": 0, "users": 0}
        try:
            async with self.session_factory() as db:
                result = await db.execute(delete(OTPChallenge).where(OTPChallenge.expires_at <= now))
                counts["otp_challenges"] = result.rowcount
                result = await db.execute(delete(Message).where(Message.expires_at <= now))
                counts["messages"] = result.rowcount
                result = await db.execute(delete(Payment).where(Payment.expires_at <= now))
                counts["payments"] = result.rowcount
                result = await db.execute(delete(User).where(User.session_end <= identity_cutoff))
                counts["users"] = result.rowcount
                await db.commit()
        except Exception as e:
            logger.error(f"TTL purge failed: {e}", exc_info=True)
            return counts

        if any(counts.values()):
            logger.info(f"TTL purge removed {counts}")
        return counts
