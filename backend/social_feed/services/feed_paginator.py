"""
Feed paging: global followed-feed and per-user feed.

Global feed goes through get_feed_user, which applies follow-graph visibility
and the activity-type filter server-side. The per-user feed reads social.posts
directly; when that schema is not exposed it drives get_feed_user with a wider
window and filters by owner client-side.

A page shorter than the requested limit is the only end-of-feed signal.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Iterable

from social_feed.config import settings
from social_feed.schemas.feed import ActivityType, FeedPage, FeedPost
from social_feed.schemas.pagination import clamp_page
from social_feed.services.feed_hydrator import hydrate
from social_feed.services.store_client import BaseStore
from social_feed.services.store_errors import StoreError, is_missing_db_object

logger = logging.getLogger(__name__)

POST_COLUMNS = (
    "id, user_id, activity_type, source_type, source_id, session_id, title, subtitle, caption, "
    "visibility, created_at, metrics, media_urls, like_count, comment_count"
)


def _activity_value(activity_type: ActivityType | str | None) -> str | None:
    if activity_type is None:
        return None
    return activity_type.value if isinstance(activity_type, ActivityType) else str(activity_type)


async def fetch_feed_rows(
    store: BaseStore,
    offset: int,
    limit: int,
    activity_type: ActivityType | str | None = None,
) -> list[dict]:
    """Raw rows from get_feed_user; empty when the RPC is not deployed."""
    try:
        data = await store.rpc(
            "get_feed_user",
            {"p_limit": limit, "p_offset": offset, "p_activity_type": _activity_value(activity_type)},
        )
    except StoreError as exc:
        if is_missing_db_object(exc):
            logger.info("get_feed_user unavailable; returning empty feed")
            return []
        raise
    if isinstance(data, dict):
        return [data]
    return [row for row in (data or []) if isinstance(row, dict)]


async def fetch_user_rows(
    store: BaseStore,
    user_id: str,
    offset: int,
    limit: int,
    activity_type: ActivityType | str | None = None,
) -> list[dict]:
    """Raw rows for one owner: social.posts first, get_feed_user filtered client-side as fallback."""
    query = store.table("social", "posts").select(POST_COLUMNS).eq("user_id", user_id)
    activity = _activity_value(activity_type)
    if activity:
        query = query.eq("activity_type", activity)
    try:
        return await query.order("created_at", desc=True).range(offset, limit).execute()
    except StoreError as exc:
        if not is_missing_db_object(exc):
            raise
        logger.info("social.posts not readable (%s); filtering get_feed_user by owner", exc.code)
    window = min(limit * settings.user_feed_window_multiplier, settings.user_feed_max_window)
    window = max(window, limit)
    rows = await fetch_feed_rows(store, offset, window, activity_type)
    return [r for r in rows if str(r.get("user_id")) == str(user_id)][:limit]


async def get_page(
    store: BaseStore,
    offset: int | None = 0,
    limit: int | None = None,
    activity_type: ActivityType | str | None = None,
    user_id: str | None = None,
) -> FeedPage:
    """One hydrated page of the global feed, or of user_id's feed when given."""
    off, lim = clamp_page(offset, limit, settings.feed_default_limit, settings.feed_max_limit)
    if user_id:
        rows = await fetch_user_rows(store, user_id, off, lim, activity_type)
    else:
        rows = await fetch_feed_rows(store, off, lim, activity_type)
    posts = await hydrate(store, rows)
    return FeedPage(
        posts=posts,
        offset=off,
        limit=lim,
        next_offset=off + len(rows),
        is_last=len(rows) < lim,
    )


def _created_ts(value: Any) -> float:
    if not value:
        return float("-inf")
    try:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return float("-inf")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


def accumulate_feed(existing: Iterable[FeedPost], incoming: Iterable[FeedPost]) -> list[FeedPost]:
    """Merge a fetched page into the loaded list: one entry per id (incoming wins), newest first."""
    by_id: dict[str, FeedPost] = {}
    for post in existing:
        by_id[post.id] = post
    for post in incoming:
        by_id[post.id] = post
    return sorted(by_id.values(), key=lambda p: (_created_ts(p.created_at), p.id), reverse=True)
