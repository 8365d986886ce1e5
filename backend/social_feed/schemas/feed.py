"""Pydantic schemas for the social feed: posts, identities, comments, share requests."""

from enum import Enum
from typing import Annotated, Any, Union

from pydantic import BaseModel, ConfigDict, Field, StringConstraints

MetricValue = Union[int, float, str, None]


class ActivityType(str, Enum):
    RUN = "run"
    WALK = "walk"
    RIDE = "ride"
    STRENGTH = "strength"
    NUTRITION = "nutrition"
    OTHER = "other"


class Visibility(str, Enum):
    PUBLIC = "public"
    FOLLOWERS = "followers"
    PRIVATE = "private"


class SourceType(str, Enum):
    """Originating record of a shared post; value doubles as the share RPC domain."""

    RUN_WALK = "run_walk"
    OUTDOOR = "outdoor"
    STRENGTH = "strength"


class IdentitySummary(BaseModel):
    """Display-ready identity for a user id."""

    user_id: str
    username: str
    display_name: str
    avatar_url: str | None = None


class RawPostRow(BaseModel):
    """Post row as returned by the feed RPC or social.posts; any column may be absent."""

    model_config = ConfigDict(extra="ignore")

    id: Any = None
    user_id: Any = None
    activity_type: Any = None
    source_type: Any = None
    source_id: Any = None
    session_id: Any = None
    title: Any = None
    subtitle: Any = None
    caption: Any = None
    visibility: Any = None
    created_at: Any = None
    metrics: Any = None
    media_urls: Any = None
    like_count: Any = None
    comment_count: Any = None
    is_liked_by_me: Any = None


class FeedPost(BaseModel):
    """Fully hydrated feed entry."""

    id: str
    user_id: str
    username: str
    display_name: str
    profile_image_url: str | None = None
    activity_type: ActivityType = ActivityType.OTHER
    source_type: str | None = None
    source_id: str | None = None
    session_id: str | None = None
    title: str | None = None
    subtitle: str | None = None
    caption: str | None = None
    visibility: Visibility = Visibility.FOLLOWERS
    created_at: str | None = None
    metrics: dict[str, MetricValue] = Field(default_factory=dict)
    media_urls: list[str] = Field(default_factory=list)
    like_count: int = 0
    comment_count: int = 0
    is_liked_by_me: bool = False


class FeedPage(BaseModel):
    """One page of the global or per-user feed. is_last when fewer rows than limit came back."""

    posts: list[FeedPost]
    offset: int
    limit: int
    next_offset: int
    is_last: bool


class ShareSource(BaseModel):
    """The completed session/workout being shared, plus how the post should read."""

    source_type: SourceType
    source_id: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
    activity_type: ActivityType
    title: str | None = None
    subtitle: str | None = None
    session_id: str | None = None


class ShareRequest(BaseModel):
    """Body for POST /posts/share."""

    source: ShareSource
    metrics: dict[str, Any] = Field(default_factory=dict)
    visibility: Visibility = Visibility.FOLLOWERS
    caption: str | None = Field(None, max_length=2000)


class ShareResponse(BaseModel):
    post_id: str


class LikeToggle(BaseModel):
    """Body for POST /posts/{id}/like: the state the client currently shows."""

    currently_liked: bool


class FeedComment(BaseModel):
    id: str
    post_id: str
    user_id: str
    username: str
    display_name: str
    avatar_url: str | None = None
    body: str
    created_at: str | None = None


class CommentCreate(BaseModel):
    body: str = Field(..., min_length=1, max_length=2000)


class SocialCounts(BaseModel):
    posts: int = 0
    followers: int = 0
    following: int = 0
