"""Profile, search and follow endpoints"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from tempsocial.api.deps import get_current_user
from tempsocial.db.database import get_db
from tempsocial.db.models import User
from tempsocial.errors import AppError
from tempsocial.schemas.users import (
    FollowersResponse,
    FollowingResponse,
    FollowListEntry,
    FollowResponse,
    ProfileResponse,
    ProfileUpdate,
    ProfileUpdateResponse,
    Suggestion,
    SuggestionsResponse,
    UserCard,
    UserDetailResponse,
    UserSearchResponse,
)
from tempsocial.services.users import UserService

logger = logging.getLogger(__name__)
router = APIRouter()


async def _user_card(user_service: UserService, user: User, current: User) -> UserCard:
    followers = await user_service.follower_ids(user.id)
    following = await user_service.following_ids(user.id)
    return UserCard(
        id=user.id,
        username=user.username,
        phone_number=user.phone_number,
        profile_picture=user.profile_picture,
        bio=user.bio,
        social_links=user.social_links or {},
        followers_count=len(followers),
        following_count=len(following),
        is_following=current.id in followers,
        is_follower=current.id in following,
        joined_at=user.created_at,
    )


async def _follow_entries(
    user_service: UserService, users: list[User], current: User
) -> list[FollowListEntry]:
    current_following = await user_service.following_ids(current.id)
    current_followers = await user_service.follower_ids(current.id)
    return [
        FollowListEntry(
            id=u.id,
            username=u.username,
            profile_picture=u.profile_picture,
            bio=u.bio,
            is_following=u.id in current_following,
            is_follower=u.id in current_followers,
        )
        for u in users
    ]


@router.put("/profile", response_model=ProfileUpdateResponse)
async def update_profile(
    request: ProfileUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ProfileUpdateResponse:
    try:
        user = await UserService(db).update_profile(user, request.model_dump(exclude_unset=True))
        return ProfileUpdateResponse(
            message="Profile updated successfully",
            user=ProfileResponse.model_validate(user),
        )
    except AppError:
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error updating profile for {user.id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update profile",
        )


@router.get("/search", response_model=UserSearchResponse)
async def search_users(
    q: str | None = Query(None),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> UserSearchResponse:
    """Find live users by username or phone number"""
    try:
        user_service = UserService(db)
        matches = await user_service.search(user, q, limit)
        return UserSearchResponse(
            users=[await _user_card(user_service, match, user) for match in matches]
        )
    except AppError:
        raise
    except Exception as e:
        logger.error(f"Error searching users: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to search users",
        )


@router.get("/suggestions/follow", response_model=SuggestionsResponse)
async def follow_suggestions(
    limit: int = Query(10, ge=1, le=50),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> SuggestionsResponse:
    try:
        suggestions = await UserService(db).suggestions(user, limit)
        return SuggestionsResponse(
            suggestions=[
                Suggestion(
                    id=s["user"].id,
                    username=s["user"].username,
                    profile_picture=s["user"].profile_picture,
                    bio=s["user"].bio,
                    social_links=s["user"].social_links or {},
                    followers_count=s["followers_count"],
                    mutual_followers=s["mutual_followers"],
                )
                for s in suggestions
            ]
        )
    except Exception as e:
        logger.error(f"Error getting suggestions for {user.id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get suggestions",
        )


@router.get("/{user_id}", response_model=UserDetailResponse)
async def get_user(
    user_id: UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> UserDetailResponse:
    try:
        user_service = UserService(db)
        target = await user_service.get_user(user_id)
        return UserDetailResponse(user=await _user_card(user_service, target, user))
    except AppError:
        raise
    except Exception as e:
        logger.error(f"Error getting user {user_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get user",
        )


@router.post("/{user_id}/follow", response_model=FollowResponse)
async def follow_user(
    user_id: UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> FollowResponse:
    try:
        followers_count, following_count = await UserService(db).follow(user, user_id)
        return FollowResponse(
            message="User followed successfully",
            is_following=True,
            followers_count=followers_count,
            following_count=following_count,
        )
    except AppError:
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error following {user_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to follow user",
        )


@router.delete("/{user_id}/follow", response_model=FollowResponse)
async def unfollow_user(
    user_id: UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> FollowResponse:
    try:
        followers_count, following_count = await UserService(db).unfollow(user, user_id)
        return FollowResponse(
            message="User unfollowed successfully",
            is_following=False,
            followers_count=followers_count,
            following_count=following_count,
        )
    except AppError:
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error unfollowing {user_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to unfollow user",
        )


@router.get("/{user_id}/followers", response_model=FollowersResponse)
async def list_followers(
    user_id: UUID,
    limit: int = Query(50, ge=1, le=200),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> FollowersResponse:
    try:
        user_service = UserService(db)
        followers = await user_service.list_followers(user_id, limit)
        return FollowersResponse(followers=await _follow_entries(user_service, followers, user))
    except AppError:
        raise
    except Exception as e:
        logger.error(f"Error getting followers of {user_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get followers",
        )


@router.get("/{user_id}/following", response_model=FollowingResponse)
async def list_following(
    user_id: UUID,
    limit: int = Query(50, ge=1, le=200),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> FollowingResponse:
    try:
        user_service = UserService(db)
        following = await user_service.list_following(user_id, limit)
        return FollowingResponse(following=await _follow_entries(user_service, following, user))
    except AppError:
        raise
    except Exception as e:
        logger.error(f"Error getting following of {user_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get following",
        )
