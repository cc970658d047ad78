"""Profile management, search and follow relationships"""

import logging
import uuid
from typing import Any

from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from tempsocial.db.models import Follow, User, default_social_links
from tempsocial.errors import ConflictError, NotFoundError, ValidationError
from tempsocial.utils.time import utcnow

logger = logging.getLogger(__name__)

SOCIAL_NETWORKS = set(default_social_links())


class UserService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user(self, user_id: uuid.UUID) -> User:
        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    async def update_profile(self, user: User, changes: dict[str, Any]) -> User:
        username = changes.get("username")
        if username and username != user.username:
            username = username.strip()
            if not 3 <= len(username) <= 30:
                raise ValidationError("Username must be between 3 and 30 characters")
            existing = await self.db.execute(select(User.id).where(User.username == username))
            if existing.scalar_one_or_none() is not None:
                raise ConflictError("Username already taken")
            user.username = username

        if changes.get("bio") is not None:
            if len(changes["bio"]) > 150:
                raise ValidationError("Bio must be at most 150 characters")
            user.bio = changes["bio"]
        if "upi_id" in changes:
            user.upi_id = changes["upi_id"] or None
        if "profile_picture" in changes:
            user.profile_picture = changes["profile_picture"]

        social_links = changes.get("social_links")
        if social_links:
            unknown = set(social_links) - SOCIAL_NETWORKS
            if unknown:
                raise ValidationError(f"Unknown social links: {', '.join(sorted(unknown))}")
            user.social_links = {**(user.social_links or default_social_links()), **social_links}

        user.last_active = utcnow()
        await self.db.commit()
        await self.db.refresh(user)
        return user

    async def follower_ids(self, user_id: uuid.UUID) -> set[uuid.UUID]:
        result = await self.db.execute(
            select(Follow.follower_id).where(Follow.following_id == user_id)
        )
        return set(result.scalars().all())

    async def following_ids(self, user_id: uuid.UUID) -> set[uuid.UUID]:
        result = await self.db.execute(
            select(Follow.following_id).where(Follow.follower_id == user_id)
        )
        return set(result.scalars().all())

    async def follow_counts(self, user_id: uuid.UUID) -> tuple[int, int]:
        """(followers, following)"""
        followers = await self.db.execute(
            select(func.count()).select_from(Follow).where(Follow.following_id == user_id)
        )
        following = await self.db.execute(
            select(func.count()).select_from(Follow).where(Follow.follower_id == user_id)
        )
        return followers.scalar() or 0, following.scalar() or 0

    async def search(self, current: User, q: str | None, limit: int = 20) -> list[User]:
        if not q or len(q.strip()) < 2:
            raise ValidationError("Search query must be at least 2 characters")
        pattern = f"%{q.strip()}%"
        result = await self.db.execute(
            select(User)
            .where(
                User.id != current.id,
                User.is_active.is_(True),
                User.session_end > utcnow(),
                or_(User.username.ilike(pattern), User.phone_number.ilike(pattern)),
            )
            .limit(limit)
        )
        return list(result.scalars().all())

    async def follow(self, current: User, target_id: uuid.UUID) -> tuple[int, int]:
        """Returns (target followers, current following) after the change"""
        if target_id == current.id:
            raise ValidationError("Cannot follow yourself")
        await self.get_user(target_id)

        existing = await self.db.get(Follow, (current.id, target_id))
        if existing is not None:
            raise ConflictError("Already following this user")

        self.db.add(Follow(follower_id=current.id, following_id=target_id))
        await self.db.commit()
        logger.info(f"{current.id} followed {target_id}")

        target_followers, _ = await self.follow_counts(target_id)
        _, current_following = await self.follow_counts(current.id)
        return target_followers, current_following

    async def unfollow(self, current: User, target_id: uuid.UUID) -> tuple[int, int]:
        if target_id == current.id:
            raise ValidationError("Cannot unfollow yourself")
        await self.get_user(target_id)

        result = await self.db.execute(
            delete(Follow).where(
                and_(Follow.follower_id == current.id, Follow.following_id == target_id)
            )
        )
        await self.db.commit()
        if result.rowcount == 0:
            raise ConflictError("Not following this user")
        logger.info(f"{current.id} unfollowed {target_id}")

        target_followers, _ = await self.follow_counts(target_id)
        _, current_following = await self.follow_counts(current.id)
        return target_followers, current_following

    async def list_followers(self, user_id: uuid.UUID, limit: int = 50) -> list[User]:
        await self.get_user(user_id)
        result = await self.db.execute(
            select(User)
            .join(Follow, Follow.follower_id == User.id)
            .where(Follow.following_id == user_id)
            .order_by(Follow.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_following(self, user_id: uuid.UUID, limit: int = 50) -> list[User]:
        await self.get_user(user_id)
        result = await self.db.execute(
            select(User)
            .join(Follow, Follow.following_id == User.id)
            .where(Follow.follower_id == user_id)
            .order_by(Follow.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def suggestions(self, current: User, limit: int = 10) -> list[dict[str, Any]]:
        """Newest live users the current user does not follow, with mutual follower counts"""
        following = await self.following_ids(current.id)
        query = select(User).where(
            User.id != current.id,
            User.is_active.is_(True),
            User.session_end > utcnow(),
        )
        if following:
            query = query.where(User.id.not_in(following))
        result = await self.db.execute(query.order_by(User.created_at.desc()).limit(limit))

        suggestions = []
        for user in result.scalars().all():
            followers = await self.follower_ids(user.id)
            suggestions.append({
                "user": user,
                "followers_count": len(followers),
                "mutual_followers": len(followers & following),
            })
        return suggestions
