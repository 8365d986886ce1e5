"""
Profile activity grid: strength workouts, indoor sessions and outdoor sessions
merged into one newest-first stream.

Each source pages independently (own offset, own exhausted flag). A step
fetches one page from every selected, non-exhausted source concurrently, then
merges by (source, id) and re-sorts by start time.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable

from social_feed.config import settings
from social_feed.schemas.activity import ActivityCursor, ActivitySource, SourceCursor, UnifiedActivity
from social_feed.services.store_client import BaseStore
from social_feed.services.store_errors import StoreError, is_missing_db_object

logger = logging.getLogger(__name__)

# Strength workouts have carried their duration under several column names.
# Tried in order; an undefined-column error moves to the next shape.
STRENGTH_DURATION_SHAPES: tuple[tuple[str, str | None], ...] = (
    ("id, started_at, total_time_s", "total_time_s"),
    ("id, started_at, duration_s", "duration_s"),
    ("id, started_at, total_duration_s", "total_duration_s"),
    ("id, started_at, time_s", "time_s"),
    ("id, started_at, ended_at", "ended_at"),
    ("id, started_at", None),
)

INDOOR_COLUMNS = (
    "id, exercise_type, started_at, total_time_s, total_distance_m, avg_pace_s_per_km, avg_pace_s_per_mi"
)
OUTDOOR_COLUMNS = "id, activity_type, started_at, ended_at, duration_s, distance_m, avg_pace_s_per_km, avg_pace_s_per_mi"

KM_PER_MI = 1.609344


def _num(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _parse_ts(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def seconds_between(start: Any, end: Any) -> float | None:
    t0, t1 = _parse_ts(start), _parse_ts(end)
    if t0 is None or t1 is None:
        return None
    s = round((t1 - t0).total_seconds())
    return float(s) if s > 0 else None


def _kind_from(value: Any, default: str = "run") -> str:
    v = str(value or "").lower()
    if "walk" in v:
        return "walk"
    if "cycle" in v or "bike" in v or "ride" in v:
        return "cycle"
    return default


async def _select_strength(store: BaseStore, user_id: str, offset: int, count: int, columns: str) -> list[dict]:
    return await (
        store.table("strength", "strength_workouts")
        .select(columns)
        .eq("user_id", user_id)
        .order("started_at", desc=True)
        .range(offset, count)
        .execute()
    )


async def _strength_workouts(store: BaseStore, user_id: str, offset: int, count: int) -> tuple[list[dict], str | None]:
    *older, (last_columns, last_key) = STRENGTH_DURATION_SHAPES
    for columns, duration_key in older:
        try:
            return await _select_strength(store, user_id, offset, count, columns), duration_key
        except StoreError as exc:
            if exc.code != "42703":
                raise
    # Last shape: an undefined column here propagates
    return await _select_strength(store, user_id, offset, count, last_columns), last_key


async def _strength_volumes(store: BaseStore, user_id: str, workout_ids: list[str]) -> dict[str, float]:
    if not workout_ids:
        return {}
    try:
        rows = await (
            store.table("strength", "exercise_summary")
            .select("strength_workout_id, vol")
            .eq("user_id", user_id)
            .in_("strength_workout_id", workout_ids)
            .execute()
        )
    except StoreError as exc:
        if is_missing_db_object(exc):
            logger.info("strength.exercise_summary unavailable; volumes default to 0")
            return {}
        raise
    volumes: dict[str, float] = {}
    for r in rows:
        key = str(r.get("strength_workout_id"))
        volumes[key] = volumes.get(key, 0.0) + (_num(r.get("vol")) or 0.0)
    return volumes


async def fetch_strength_page(store: BaseStore, user_id: str, offset: int, count: int) -> list[UnifiedActivity]:
    workouts, duration_key = await _strength_workouts(store, user_id, offset, count)
    volumes = await _strength_volumes(store, user_id, [str(w["id"]) for w in workouts if w.get("id") is not None])
    page = []
    for w in workouts:
        if duration_key == "ended_at":
            duration = seconds_between(w.get("started_at"), w.get("ended_at"))
        elif duration_key:
            duration = _num(w.get(duration_key))
        else:
            duration = None
        page.append(
            UnifiedActivity(
                id=str(w["id"]),
                source=ActivitySource.STRENGTH,
                kind="strength",
                started_at=w.get("started_at"),
                duration_s=duration,
                total_volume=volumes.get(str(w["id"]), 0.0),
            )
        )
    return page


async def fetch_indoor_page(store: BaseStore, user_id: str, offset: int, count: int) -> list[UnifiedActivity]:
    rows = await (
        store.table("run_walk", "sessions")
        .select(INDOOR_COLUMNS)
        .eq("user_id", user_id)
        .order("started_at", desc=True)
        .range(offset, count)
        .execute()
    )
    return [
        UnifiedActivity(
            id=str(r["id"]),
            source=ActivitySource.INDOOR,
            kind=_kind_from(r.get("exercise_type")),
            started_at=r.get("started_at"),
            duration_s=_num(r.get("total_time_s")),
            distance_m=_num(r.get("total_distance_m")),
            pace_s_per_km=_num(r.get("avg_pace_s_per_km")),
            pace_s_per_mi=_num(r.get("avg_pace_s_per_mi")),
        )
        for r in rows
    ]


async def fetch_outdoor_page(store: BaseStore, user_id: str, offset: int, count: int) -> list[UnifiedActivity]:
    rows = await (
        store.table("run_walk", "outdoor_sessions")
        .select(OUTDOOR_COLUMNS)
        .eq("user_id", user_id)
        .eq("status", "completed")
        .order("started_at", desc=True)
        .range(offset, count)
        .execute()
    )
    page = []
    for r in rows:
        pace_km = _num(r.get("avg_pace_s_per_km"))
        pace_mi = _num(r.get("avg_pace_s_per_mi"))
        if pace_mi is None and pace_km is not None:
            pace_mi = pace_km * KM_PER_MI
        if pace_km is None and pace_mi is not None:
            pace_km = pace_mi / KM_PER_MI
        duration = _num(r.get("duration_s"))
        if duration is None:
            duration = seconds_between(r.get("started_at"), r.get("ended_at"))
        page.append(
            UnifiedActivity(
                id=str(r["id"]),
                source=ActivitySource.OUTDOOR,
                kind=_kind_from(r.get("activity_type")),
                started_at=r.get("started_at"),
                duration_s=duration,
                distance_m=_num(r.get("distance_m")),
                pace_s_per_km=pace_km,
                pace_s_per_mi=pace_mi,
            )
        )
    return page


PageFetcher = Callable[[BaseStore, str, int, int], Awaitable[list[UnifiedActivity]]]

SOURCE_FETCHERS: dict[ActivitySource, PageFetcher] = {
    ActivitySource.STRENGTH: fetch_strength_page,
    ActivitySource.INDOOR: fetch_indoor_page,
    ActivitySource.OUTDOOR: fetch_outdoor_page,
}


def _started_ts(item: UnifiedActivity) -> float:
    dt = _parse_ts(item.started_at)
    return dt.timestamp() if dt else float("-inf")


def merge_activities(existing: Iterable[UnifiedActivity], incoming: Iterable[UnifiedActivity]) -> list[UnifiedActivity]:
    """Union keyed by (source, id), later wins; newest start first."""
    by_key = {item.key: item for item in existing}
    for item in incoming:
        by_key[item.key] = item
    return sorted(by_key.values(), key=lambda a: (_started_ts(a), a.source.value, a.id), reverse=True)


async def fetch_activity_step(
    store: BaseStore,
    user_id: str,
    cursor: ActivityCursor | None = None,
    sources: list[ActivitySource] | None = None,
    reset: bool = False,
    page_size: int | None = None,
    fetchers: dict[ActivitySource, PageFetcher] | None = None,
) -> tuple[list[UnifiedActivity], ActivityCursor]:
    """One paging step. Returns (new items newest first, updated cursor); the input cursor is not mutated."""
    size = page_size or settings.activity_page_size
    fetchers = fetchers or SOURCE_FETCHERS
    selected = list(dict.fromkeys(sources)) if sources is not None else list(ActivitySource)
    next_cursor = ActivityCursor() if reset or cursor is None else cursor.model_copy(deep=True)
    for source in ActivitySource:
        if source not in selected:
            next_cursor.for_source(source).exhausted = True
    pending = [s for s in selected if not next_cursor.for_source(s).exhausted]
    if not pending:
        return [], next_cursor
    pages = await asyncio.gather(
        *[fetchers[s](store, user_id, next_cursor.for_source(s).offset, size) for s in pending]
    )
    incoming: list[UnifiedActivity] = []
    for source, page in zip(pending, pages):
        sc: SourceCursor = next_cursor.for_source(source)
        sc.offset += len(page)
        if len(page) < size:
            sc.exhausted = True
        incoming.extend(page)
    return merge_activities([], incoming), next_cursor


class ActivityMerger:
    """Holds the merged grid and the per-source cursor across fetch_next calls."""

    def __init__(
        self,
        store: BaseStore,
        user_id: str,
        page_size: int | None = None,
        fetchers: dict[ActivitySource, PageFetcher] | None = None,
    ) -> None:
        self.store = store
        self.user_id = user_id
        self.page_size = page_size or settings.activity_page_size
        self.fetchers = fetchers
        self.cursor = ActivityCursor()
        self.items: list[UnifiedActivity] = []

    def reset(self) -> None:
        self.cursor = ActivityCursor()
        self.items = []

    @property
    def done(self) -> bool:
        return self.cursor.all_exhausted()

    async def fetch_next(self, reset: bool = False, sources: list[ActivitySource] | None = None) -> list[UnifiedActivity]:
        """Load the next page of every selected source; no-op once all selected sources are exhausted."""
        if reset:
            self.reset()
        selected = sources if sources is not None else list(ActivitySource)
        if not reset and self.cursor.all_exhausted(selected):
            return self.items
        incoming, cursor = await fetch_activity_step(
            self.store,
            self.user_id,
            self.cursor,
            sources=selected,
            page_size=self.page_size,
            fetchers=self.fetchers,
        )
        self.cursor = cursor
        self.items = merge_activities(self.items, incoming)
        return self.items
