"""
Share a completed session/workout to the feed, idempotently.

Write strategies, tried in order:

  1. share_<domain>_session_user RPC   falls through on: missing object
  2. upsert into social.posts          falls through on: no matching constraint (42P10)
  3. plain insert into social.posts    unique violation -> return the existing row's id

Anything else propagates. The RPC step refreshes an expired session once and
retries once. At most one post exists per (user_id, source_type, source_id),
and a repeat share never rewrites it: the upsert ignores duplicates and then
looks the existing row up.
"""
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from social_feed.schemas.feed import ActivityType, ShareSource, SourceType, Visibility
from social_feed.services.auth_session import call_with_refresh
from social_feed.services.store_client import BaseStore
from social_feed.services.store_errors import (
    ErrorKind,
    StoreError,
    classify_error,
    is_unique_violation,
)

logger = logging.getLogger(__name__)

POSTS_CONFLICT_KEY = "user_id,source_type,source_id"

UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$", re.IGNORECASE)

_FNV_OFFSET = 0x811C9DC5
_FNV_PRIME = 0x01000193
_KEY_SALTS = ("a", "b", "c", "d")


def is_uuid(value: str) -> bool:
    return bool(UUID_RE.match(str(value or "").strip()))


def _fnv1a_32(text: str) -> int:
    h = _FNV_OFFSET
    for byte in text.encode("utf-8"):
        h ^= byte
        h = (h * _FNV_PRIME) & 0xFFFFFFFF
    return h


def synthesize_source_key(reference: str) -> str:
    """Deterministic UUID-shaped key for a reference that is not itself a UUID.

    Four salted 32-bit FNV-1a hashes are concatenated, then the version nibble
    (4) and RFC variant bits are forced. Not a cryptographic hash: collisions
    are unlikely at app scale but not ruled out.
    """
    digits = "".join(f"{_fnv1a_32(salt + ':' + reference):08x}" for salt in _KEY_SALTS)
    variant = "89ab"[int(digits[16], 16) & 0x3]
    digits = digits[:12] + "4" + digits[13:16] + variant + digits[17:]
    return f"{digits[:8]}-{digits[8:12]}-{digits[12:16]}-{digits[16:20]}-{digits[20:32]}"


def source_key(reference: str) -> str:
    """The source id as stored: UUIDs as-is (lowercased), anything else synthesized."""
    ref = str(reference).strip()
    return ref.lower() if is_uuid(ref) else synthesize_source_key(ref)


def _clean_caption(caption: str | None) -> str | None:
    if caption is None:
        return None
    text = caption.strip()
    return text or None


def _post_id(data: Any) -> str | None:
    """RPC/insert results: scalar id, {'id'|'post_id': ...}, or a one-row list."""
    if isinstance(data, list):
        data = data[0] if data else None
    if isinstance(data, dict):
        data = data.get("id") or data.get("post_id")
    if data is None or data == "":
        return None
    return str(data)


@dataclass
class ShareContext:
    store: BaseStore
    auth: Any
    source: ShareSource
    source_key: str
    metrics: dict
    visibility: Visibility
    caption: str | None

    async def post_row(self) -> dict:
        user_id = await self.auth.get_current_user_id()
        return {
            "user_id": user_id,
            "activity_type": self.source.activity_type.value,
            "source_type": self.source.source_type.value,
            "source_id": self.source_key,
            "session_id": self.source.session_id,
            "title": self.source.title,
            "subtitle": self.source.subtitle,
            "caption": self.caption,
            "visibility": self.visibility.value,
            "metrics": self.metrics,
        }


@dataclass(frozen=True)
class ShareStrategy:
    name: str
    run: Callable[[ShareContext], Awaitable[str]]
    falls_through_on: frozenset


async def _share_via_rpc(ctx: ShareContext) -> str:
    params = {
        "p_session_id": ctx.source_key,
        "p_activity_type": ctx.source.activity_type.value,
        "p_title": ctx.source.title,
        "p_subtitle": ctx.source.subtitle,
        "p_caption": ctx.caption,
        "p_visibility": ctx.visibility.value,
        "p_metrics": ctx.metrics,
    }
    rpc_name = f"share_{ctx.source.source_type.value}_session_user"
    data = await call_with_refresh(ctx.auth, lambda: ctx.store.rpc(rpc_name, params))
    post_id = _post_id(data)
    if not post_id:
        raise StoreError(message=f"{rpc_name} returned no post id")
    return post_id


async def _share_via_upsert(ctx: ShareContext) -> str:
    row = await ctx.post_row()
    rows = await (
        ctx.store.table("social", "posts")
        .upsert(row, on_conflict=POSTS_CONFLICT_KEY, ignore_duplicates=True)
        .select("id")
        .execute()
    )
    post_id = _post_id(rows)
    if post_id:
        return post_id
    # Existing post: the conflicting row is skipped and left as first shared
    post_id = await _find_existing_post(ctx, row["user_id"])
    if not post_id:
        raise StoreError(message="Upsert into social.posts returned no row")
    return post_id


async def _find_existing_post(ctx: ShareContext, user_id: str) -> str | None:
    row = await (
        ctx.store.table("social", "posts")
        .select("id")
        .eq("user_id", user_id)
        .eq("source_type", ctx.source.source_type.value)
        .eq("source_id", ctx.source_key)
        .limit(1)
        .first()
    )
    return _post_id(row)


async def _share_via_insert(ctx: ShareContext) -> str:
    row = await ctx.post_row()
    try:
        rows = await ctx.store.table("social", "posts").insert(row).select("id").execute()
    except StoreError as exc:
        if not is_unique_violation(exc):
            raise
        existing = await _find_existing_post(ctx, row["user_id"])
        if existing is None:
            raise
        logger.info("Post for %s/%s already exists; returning %s", row["source_type"], row["source_id"], existing)
        return existing
    post_id = _post_id(rows)
    if not post_id:
        raise StoreError(message="Insert into social.posts returned no row")
    return post_id


SHARE_STRATEGIES: tuple[ShareStrategy, ...] = (
    ShareStrategy("rpc", _share_via_rpc, frozenset({ErrorKind.MISSING_OBJECT})),
    ShareStrategy("upsert", _share_via_upsert, frozenset({ErrorKind.NO_MATCHING_CONSTRAINT})),
    ShareStrategy("insert", _share_via_insert, frozenset()),
)


async def run_strategies(ctx: ShareContext, strategies: tuple[ShareStrategy, ...] = SHARE_STRATEGIES) -> str:
    """Try each strategy in order; fall through only on the error kinds it lists."""
    last_error: StoreError | None = None
    for strategy in strategies:
        try:
            return await strategy.run(ctx)
        except StoreError as exc:
            kind = classify_error(exc)
            if kind not in strategy.falls_through_on:
                raise
            logger.info("Share strategy %s unavailable (%s, code=%s); trying next", strategy.name, kind.value, exc.code)
            last_error = exc
    if last_error is not None:
        raise last_error
    raise StoreError(message="No share strategy configured")


async def share_session(
    store: BaseStore,
    auth: Any,
    source: ShareSource,
    metrics: dict | None = None,
    visibility: Visibility | str = Visibility.FOLLOWERS,
    caption: str | None = None,
) -> str:
    """Create (or find) the feed post for a completed session/workout; returns its id."""
    ctx = ShareContext(
        store=store,
        auth=auth,
        source=source,
        source_key=source_key(source.source_id),
        metrics=dict(metrics or {}),
        visibility=Visibility(visibility),
        caption=_clean_caption(caption),
    )
    if ctx.source_key != source.source_id.strip():
        logger.debug("Source id %r mapped to key %s", source.source_id, ctx.source_key)
    return await run_strategies(ctx)


def _finite_or(value: Any, default: float | None) -> float | None:
    if value is None or isinstance(value, bool):
        return default
    try:
        n = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(n):
        return default
    return int(n) if n.is_integer() and isinstance(value, int) else n


def run_walk_activity_type(exercise_type: str | None) -> ActivityType:
    v = str(exercise_type or "").lower()
    if "walk" in v:
        return ActivityType.WALK
    if "bike" in v or "cycle" in v or "ride" in v:
        return ActivityType.RIDE
    return ActivityType.RUN


def cardio_metrics(
    distance_m: Any,
    total_time_s: Any,
    avg_pace_s_per_mi: Any = None,
    avg_pace_s_per_km: Any = None,
) -> dict:
    return {
        "distance_m": _finite_or(distance_m, 0),
        "total_time_s": _finite_or(total_time_s, 0),
        "avg_pace_s_per_mi": _finite_or(avg_pace_s_per_mi, None),
        "avg_pace_s_per_km": _finite_or(avg_pace_s_per_km, None),
    }


async def share_run_walk_session(
    store: BaseStore,
    auth: Any,
    session_id: str,
    exercise_type: str,
    total_distance_m: float,
    total_time_s: float,
    avg_pace_s_per_mi: float | None = None,
    avg_pace_s_per_km: float | None = None,
    caption: str | None = None,
    visibility: Visibility | str = Visibility.FOLLOWERS,
) -> str:
    """Indoor run/walk/ride session from the treadmill recorder."""
    activity = run_walk_activity_type(exercise_type)
    source = ShareSource(
        source_type=SourceType.RUN_WALK,
        source_id=session_id,
        activity_type=activity,
        title=f"Indoor {activity.value.capitalize()}",
        subtitle="Run/Walk Session",
        session_id=session_id,
    )
    metrics = cardio_metrics(total_distance_m, total_time_s, avg_pace_s_per_mi, avg_pace_s_per_km)
    return await share_session(store, auth, source, metrics, visibility, caption)


async def share_outdoor_session(
    store: BaseStore,
    auth: Any,
    session_id: str,
    activity_type: str,
    distance_m: float,
    duration_s: float,
    avg_pace_s_per_mi: float | None = None,
    avg_pace_s_per_km: float | None = None,
    caption: str | None = None,
    visibility: Visibility | str = Visibility.FOLLOWERS,
) -> str:
    """GPS-recorded outdoor run or walk."""
    activity = ActivityType.WALK if str(activity_type).lower() == "walk" else ActivityType.RUN
    source = ShareSource(
        source_type=SourceType.OUTDOOR,
        source_id=session_id,
        activity_type=activity,
        title=f"Outdoor {activity.value.capitalize()}",
        subtitle="Outdoor Session",
        session_id=session_id,
    )
    metrics = cardio_metrics(distance_m, duration_s, avg_pace_s_per_mi, avg_pace_s_per_km)
    return await share_session(store, auth, source, metrics, visibility, caption)


async def share_strength_workout(
    store: BaseStore,
    auth: Any,
    workout_id: str,
    total_volume: float | None = None,
    exercise_count: int | None = None,
    set_count: int | None = None,
    total_time_s: float | None = None,
    caption: str | None = None,
    visibility: Visibility | str = Visibility.FOLLOWERS,
) -> str:
    source = ShareSource(
        source_type=SourceType.STRENGTH,
        source_id=workout_id,
        activity_type=ActivityType.STRENGTH,
        title="Strength Workout",
        subtitle="Strength Session",
        session_id=workout_id,
    )
    metrics = {
        "total_volume": _finite_or(total_volume, 0),
        "exercise_count": _finite_or(exercise_count, 0),
        "set_count": _finite_or(set_count, 0),
        "total_time_s": _finite_or(total_time_s, None),
    }
    return await share_session(store, auth, source, metrics, visibility, caption)


def format_share_error(err: Any) -> str:
    """Message shown when sharing fails after the session itself was saved."""
    if err is None:
        return "Unknown share error"
    code = str(getattr(err, "code", "") or "").strip()
    if code == "42P10":
        return "Backend share function is outdated (42P10): its upsert has no matching unique constraint."
    message = str(getattr(err, "message", "") or err or "Share request failed").strip() or "Share request failed"
    return f"{message} ({code})" if code else message
