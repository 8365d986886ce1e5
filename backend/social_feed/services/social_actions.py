"""Likes, comments and profile counters, all through the *_user RPCs."""
import logging
from typing import Any

from social_feed.schemas.feed import FeedComment, IdentitySummary, SocialCounts
from social_feed.schemas.pagination import clamp_page
from social_feed.services.feed_hydrator import as_count, fetch_liked_post_ids
from social_feed.services.identity import build_identity, resolve_identities
from social_feed.services.store_client import BaseStore
from social_feed.services.store_errors import StoreError, is_missing_db_object, is_unique_violation

logger = logging.getLogger(__name__)

DEFAULT_PAGE = 20
MAX_PAGE = 100


def _rows(data: Any) -> list[dict]:
    if isinstance(data, dict):
        return [data]
    return [r for r in (data or []) if isinstance(r, dict)]


async def toggle_post_like(store: BaseStore, post_id: str, currently_liked: bool) -> bool:
    """Flip the viewer's like; returns the new state. Double-likes and undeployed RPCs are absorbed."""
    if not post_id:
        return currently_liked
    if currently_liked:
        try:
            await store.rpc("unlike_post_user", {"p_post_id": post_id})
        except StoreError as exc:
            if not is_missing_db_object(exc):
                raise
            logger.info("unlike_post_user unavailable")
        return False
    try:
        await store.rpc("like_post_user", {"p_post_id": post_id})
    except StoreError as exc:
        if is_unique_violation(exc):
            return True
        if not is_missing_db_object(exc):
            raise
        logger.info("like_post_user unavailable")
    return True


async def get_liked_post_ids(store: BaseStore, post_ids: list[str]) -> set[str]:
    return await fetch_liked_post_ids(store, [str(p) for p in post_ids if p])


async def list_post_likes(
    store: BaseStore, post_id: str, limit: int | None = None, offset: int | None = 0
) -> list[IdentitySummary]:
    """Users who liked post_id, most recent first as the RPC orders them."""
    off, lim = clamp_page(offset, limit, DEFAULT_PAGE, MAX_PAGE)
    try:
        data = await store.rpc("list_post_likes_user", {"p_post_id": post_id, "p_limit": lim, "p_offset": off})
    except StoreError as exc:
        if is_missing_db_object(exc):
            return []
        raise
    user_ids = [str(r["user_id"]) for r in _rows(data) if r.get("user_id")]
    identities = await resolve_identities(store, user_ids)
    return [identities.get(uid) or build_identity(uid) for uid in user_ids]


def _comment_from_row(row: dict, post_id: str, identity: IdentitySummary) -> FeedComment:
    return FeedComment(
        id=str(row.get("id") or row.get("comment_id") or ""),
        post_id=str(row.get("post_id") or post_id),
        user_id=identity.user_id,
        username=identity.username,
        display_name=identity.display_name,
        avatar_url=identity.avatar_url,
        body=str(row.get("body") or row.get("content") or ""),
        created_at=None if row.get("created_at") is None else str(row["created_at"]),
    )


async def list_post_comments(
    store: BaseStore, post_id: str, limit: int | None = None, offset: int | None = 0
) -> list[FeedComment]:
    off, lim = clamp_page(offset, limit, DEFAULT_PAGE, MAX_PAGE)
    try:
        data = await store.rpc("list_post_comments_user", {"p_post_id": post_id, "p_limit": lim, "p_offset": off})
    except StoreError as exc:
        if is_missing_db_object(exc):
            return []
        raise
    rows = [r for r in _rows(data) if r.get("user_id") and (r.get("id") or r.get("comment_id"))]
    identities = await resolve_identities(store, [str(r["user_id"]) for r in rows])
    return [
        _comment_from_row(r, post_id, identities.get(str(r["user_id"])) or build_identity(str(r["user_id"])))
        for r in rows
    ]


async def create_post_comment(store: BaseStore, auth: Any, post_id: str, body: str) -> FeedComment:
    text = (body or "").strip()
    if not text:
        raise ValueError("Comment body must not be empty")
    data = await store.rpc("create_post_comment_user", {"p_post_id": post_id, "p_body": text})
    row = data[0] if isinstance(data, list) and data else data
    if not isinstance(row, dict):
        row = {"id": row}
    user_id = str(row.get("user_id") or await auth.get_current_user_id())
    identities = await resolve_identities(store, [user_id])
    row.setdefault("body", text)
    return _comment_from_row(row, post_id, identities.get(user_id) or build_identity(user_id))


async def delete_post_comment(store: BaseStore, comment_id: str) -> None:
    await store.rpc("delete_post_comment_user", {"p_comment_id": comment_id})


async def get_social_counts(store: BaseStore, user_id: str) -> SocialCounts:
    """Posts / followers / following for a profile header; zeros when the stats RPC is missing."""
    if not user_id:
        return SocialCounts()
    try:
        data = await store.rpc("get_profile_stats_user", {"p_user_id": user_id})
    except StoreError as exc:
        if is_missing_db_object(exc):
            return SocialCounts()
        raise
    row = data[0] if isinstance(data, list) and data else data
    row = row if isinstance(row, dict) else {}
    return SocialCounts(
        posts=as_count(row.get("posts")),
        followers=as_count(row.get("followers")),
        following=as_count(row.get("following")),
    )
