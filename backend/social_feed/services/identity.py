"""
Identity resolution: user id -> username / display name / avatar.

Sources, queried once per batch:
  public.profiles  (id, username, display_name, profile_image_url)
  user.users       (user_id, username, first_name, last_name, profile_image_url)
  profile card RPC (only for ids the two tables cannot name)

Username preference: card > users > profiles, skipping generic placeholders.
Display name preference: first + last > card/profile display name > username.
"""
import asyncio
import logging
from typing import Any, Iterable

import httpx

from social_feed.schemas.feed import IdentitySummary
from social_feed.services.store_client import BaseStore
from social_feed.services.store_errors import StoreError, is_missing_db_object

logger = logging.getLogger(__name__)

GENERIC_NAMES = frozenset({"", "user", "null", "undefined", "unknown", "none", "anonymous", "n/a", "nil"})

PROFILE_COLUMNS = "id, username, display_name, profile_image_url"
USER_COLUMNS = "user_id, username, first_name, last_name, profile_image_url"


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def is_generic_name(value: Any) -> bool:
    """True for empty values and placeholders such as 'user', 'null', 'unknown'."""
    text = _clean(value)
    return text is None or text.lower() in GENERIC_NAMES


def fallback_username(user_id: str) -> str:
    return f"user_{str(user_id)[:8]}"


def _first_good(*candidates: Any) -> str | None:
    for c in candidates:
        if not is_generic_name(c):
            return _clean(c)
    return None


def _full_name(row: dict | None) -> str | None:
    if not row:
        return None
    parts = [_clean(row.get("first_name")), _clean(row.get("last_name"))]
    name = " ".join(p for p in parts if p)
    return None if is_generic_name(name) else name


def _needs_card(profile: dict | None, user: dict | None) -> bool:
    """Card lookup only when the tables lack a good username or any human-readable name."""
    profile = profile or {}
    user = user or {}
    has_username = _first_good(user.get("username"), profile.get("username")) is not None
    has_name = _full_name(user) is not None or _first_good(profile.get("display_name")) is not None
    return not (has_username and has_name)


def normalize_card(data: Any) -> dict | None:
    """Profile card RPC may return a row, a one-row list, or nothing."""
    row = data[0] if isinstance(data, list) and data else data
    if not isinstance(row, dict):
        return None
    return {
        "username": row.get("username"),
        "display_name": row.get("display_name"),
        "first_name": row.get("first_name"),
        "last_name": row.get("last_name"),
        "profile_image_url": row.get("profile_image_url") or row.get("avatar_url"),
    }


def build_identity(
    user_id: str,
    profile: dict | None = None,
    user: dict | None = None,
    card: dict | None = None,
) -> IdentitySummary:
    profile = profile or {}
    user = user or {}
    card = card or {}
    username = _first_good(card.get("username"), user.get("username"), profile.get("username")) or fallback_username(
        user_id
    )
    display_name = (
        _full_name(card)
        or _full_name(user)
        or _first_good(card.get("display_name"), profile.get("display_name"))
        or username
    )
    avatar = (
        _clean(card.get("profile_image_url"))
        or _clean(profile.get("profile_image_url"))
        or _clean(user.get("profile_image_url"))
    )
    return IdentitySummary(user_id=user_id, username=username, display_name=display_name, avatar_url=avatar)


async def _fetch_rows(store: BaseStore, schema: str, table: str, columns: str, key: str, ids: list[str]) -> dict[str, dict]:
    try:
        rows = await store.table(schema, table).select(columns).in_(key, ids).execute()
    except StoreError as exc:
        if is_missing_db_object(exc):
            logger.info("Identity source %s.%s unavailable (%s); skipping", schema, table, exc.code)
            return {}
        raise
    out: dict[str, dict] = {}
    for row in rows:
        rid = _clean(row.get(key))
        if rid:
            out[rid] = row
    return out


async def fetch_profile_card(store: BaseStore, user_id: str) -> dict | None:
    """get_profile_card_user, or the older get_profile_card when the former is not deployed."""
    try:
        data = await store.rpc("get_profile_card_user", {"p_user_id": user_id})
    except StoreError as exc:
        if not is_missing_db_object(exc):
            raise
        data = await store.rpc("get_profile_card", {"p_id": user_id})
    return normalize_card(data)


async def _card_or_none(store: BaseStore, user_id: str) -> dict | None:
    try:
        return await fetch_profile_card(store, user_id)
    except (StoreError, httpx.HTTPError) as exc:
        logger.warning("Profile card lookup failed for %s: %s", user_id, exc)
        return None


def _unique_ids(user_ids: Iterable[Any]) -> list[str]:
    seen: dict[str, None] = {}
    for uid in user_ids:
        text = _clean(uid)
        if text:
            seen.setdefault(text, None)
    return list(seen)


async def resolve_identities(store: BaseStore, user_ids: Iterable[Any]) -> dict[str, IdentitySummary]:
    """Resolve every id; ids with no data anywhere get a synthesized user_<prefix> identity."""
    ids = _unique_ids(user_ids)
    if not ids:
        return {}
    profiles, users = await asyncio.gather(
        _fetch_rows(store, "public", "profiles", PROFILE_COLUMNS, "id", ids),
        _fetch_rows(store, "user", "users", USER_COLUMNS, "user_id", ids),
    )
    need_card = [uid for uid in ids if _needs_card(profiles.get(uid), users.get(uid))]
    cards: dict[str, dict | None] = {}
    if need_card:
        results = await asyncio.gather(*[_card_or_none(store, uid) for uid in need_card])
        cards = dict(zip(need_card, results))
    return {uid: build_identity(uid, profiles.get(uid), users.get(uid), cards.get(uid)) for uid in ids}


async def resolve_identity(store: BaseStore, user_id: str) -> IdentitySummary:
    resolved = await resolve_identities(store, [user_id])
    return resolved.get(str(user_id).strip()) or build_identity(str(user_id))
