"""
Feed hydration: raw post rows -> FeedPost.

All coercion of backend row shapes happens here. Rows from older schemas may
lack any optional column; such fields come out as None / empty / 0.
"""
import asyncio
import json
import logging
import math
from typing import Any, Iterable

from pydantic import ValidationError

from social_feed.schemas.feed import ActivityType, FeedPost, IdentitySummary, RawPostRow, Visibility
from social_feed.services.identity import build_identity, resolve_identities
from social_feed.services.store_client import BaseStore
from social_feed.services.store_errors import StoreError, is_missing_db_object

logger = logging.getLogger(__name__)


def as_count(value: Any) -> int:
    """Non-negative int; negative, non-finite or unparsable input -> 0."""
    if isinstance(value, bool):
        return int(value)
    try:
        n = float(value if value is not None else 0)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(n):
        return 0
    return max(0, int(n))


def normalize_metrics(value: Any) -> dict[str, int | float | str | None]:
    """Numbers, strings and None pass through; booleans become 1/0; anything else is stringified."""
    if not isinstance(value, dict):
        return {}
    out: dict[str, int | float | str | None] = {}
    for k, v in value.items():
        key = str(k)
        if isinstance(v, bool):
            out[key] = 1 if v else 0
        elif v is None or isinstance(v, (int, float, str)):
            out[key] = v
        elif isinstance(v, (dict, list)):
            out[key] = json.dumps(v, default=str, separators=(",", ":"))
        else:
            out[key] = str(v)
    return out


def normalize_media_urls(value: Any) -> list[str]:
    """Single string or list of strings -> list without blanks."""
    if value is None:
        return []
    items = [value] if isinstance(value, str) else value if isinstance(value, (list, tuple)) else []
    return [str(u).strip() for u in items if u is not None and str(u).strip()]


def coerce_activity_type(value: Any) -> ActivityType:
    v = str(value if value is not None else "").strip().lower()
    if v in ("bike", "cycle", "cycling", "ride"):
        return ActivityType.RIDE
    try:
        return ActivityType(v)
    except ValueError:
        return ActivityType.OTHER


def coerce_visibility(value: Any) -> Visibility:
    v = str(value if value is not None else "").strip().lower()
    if v in (Visibility.PUBLIC.value, Visibility.PRIVATE.value):
        return Visibility(v)
    return Visibility.FOLLOWERS


def _opt_str(value: Any) -> str | None:
    return None if value is None else str(value)


def parse_raw_rows(rows: Iterable[Any]) -> list[RawPostRow]:
    """Validate rows into RawPostRow; rows without id or user_id are dropped."""
    out: list[RawPostRow] = []
    for row in rows or []:
        if not isinstance(row, dict):
            continue
        try:
            raw = RawPostRow.model_validate(row)
        except ValidationError as exc:
            logger.warning("Skipping malformed post row: %s", exc)
            continue
        if _opt_str(raw.id) in (None, "") or _opt_str(raw.user_id) in (None, ""):
            logger.warning("Skipping post row without id/user_id: %s", row.get("id"))
            continue
        out.append(raw)
    return out


async def fetch_liked_post_ids(store: BaseStore, post_ids: list[str]) -> set[str]:
    """Ids among post_ids the signed-in viewer has liked. Missing RPC -> none liked."""
    if not post_ids:
        return set()
    try:
        data = await store.rpc("get_liked_post_ids_user", {"p_post_ids": post_ids})
    except StoreError as exc:
        if is_missing_db_object(exc):
            logger.info("get_liked_post_ids_user unavailable; treating all posts as not liked")
            return set()
        raise
    liked: set[str] = set()
    for row in data or []:
        pid = row.get("post_id") if isinstance(row, dict) else row
        if pid is not None:
            liked.add(str(pid))
    return liked


def to_feed_post(raw: RawPostRow, identity: IdentitySummary, liked: bool) -> FeedPost:
    return FeedPost(
        id=str(raw.id),
        user_id=str(raw.user_id),
        username=identity.username,
        display_name=identity.display_name,
        profile_image_url=identity.avatar_url,
        activity_type=coerce_activity_type(raw.activity_type),
        source_type=_opt_str(raw.source_type),
        source_id=_opt_str(raw.source_id),
        session_id=_opt_str(raw.session_id),
        title=_opt_str(raw.title),
        subtitle=_opt_str(raw.subtitle),
        caption=_opt_str(raw.caption),
        visibility=coerce_visibility(raw.visibility),
        created_at=_opt_str(raw.created_at),
        metrics=normalize_metrics(raw.metrics),
        media_urls=normalize_media_urls(raw.media_urls),
        like_count=as_count(raw.like_count),
        comment_count=as_count(raw.comment_count),
        is_liked_by_me=liked,
    )


async def hydrate(store: BaseStore, raw_rows: Iterable[Any]) -> list[FeedPost]:
    """Raw rows -> FeedPosts, in input order. Identities and like-state are fetched concurrently."""
    rows = parse_raw_rows(raw_rows)
    if not rows:
        return []
    owner_ids = [str(r.user_id) for r in rows]
    unknown_like_ids = [str(r.id) for r in rows if r.is_liked_by_me is None]
    identities, liked_ids = await asyncio.gather(
        resolve_identities(store, owner_ids),
        fetch_liked_post_ids(store, unknown_like_ids),
    )
    posts: list[FeedPost] = []
    for raw in rows:
        uid = str(raw.user_id)
        identity = identities.get(uid) or build_identity(uid)
        liked = bool(raw.is_liked_by_me) if raw.is_liked_by_me is not None else str(raw.id) in liked_ids
        posts.append(to_feed_post(raw, identity, liked))
    return posts
