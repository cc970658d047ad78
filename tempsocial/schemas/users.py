"""Pydantic schemas for profiles and follow relationships"""

from datetime import datetime
from uuid import UUID

from tempsocial.schemas.auth import SocialLinks
from tempsocial.schemas.common import CamelModel


class ProfileUpdate(CamelModel):
    username: str | None = None
    bio: str | None = None
    upi_id: str | None = None
    social_links: dict[str, str | None] | None = None
    profile_picture: str | None = None


class ProfileResponse(CamelModel):
    id: UUID
    username: str
    bio: str
    upi_id: str | None = None
    social_links: SocialLinks
    profile_picture: str | None = None


class ProfileUpdateResponse(CamelModel):
    message: str
    user: ProfileResponse


class UserCard(CamelModel):
    id: UUID
    username: str
    phone_number: str
    profile_picture: str | None = None
    bio: str = ""
    social_links: SocialLinks
    followers_count: int
    following_count: int
    is_following: bool
    is_follower: bool
    joined_at: datetime | None = None


class UserSearchResponse(CamelModel):
    users: list[UserCard]


class UserDetailResponse(CamelModel):
    user: UserCard


class FollowResponse(CamelModel):
    message: str
    is_following: bool
    followers_count: int
    following_count: int


class FollowListEntry(CamelModel):
    id: UUID
    username: str
    profile_picture: str | None = None
    bio: str = ""
    is_following: bool
    is_follower: bool


class FollowersResponse(CamelModel):
    followers: list[FollowListEntry]


class FollowingResponse(CamelModel):
    following: list[FollowListEntry]


class Suggestion(CamelModel):
    id: UUID
    username: str
    profile_picture: str | None = None
    bio: str = ""
    social_links: SocialLinks
    followers_count: int
    mutual_followers: int


class SuggestionsResponse(CamelModel):
    suggestions: list[Suggestion]
