"""Pytest configuration and shared fixtures: in-memory store, fake auth session, API client."""

import inspect
import itertools
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Settings are read at import time; keep tests off any real store
os.environ.setdefault("STORE_URL", "http://store.test")
os.environ.setdefault("STORE_ANON_KEY", "test-anon-key")

from social_feed.services.store_client import BaseStore, TableQuery
from social_feed.services.store_errors import StoreError

pytest_plugins = ["pytest_asyncio"]

VIEWER_ID = "11111111-1111-4111-8111-111111111111"


def store_error(code: str, message: str = "", status: int | None = None) -> StoreError:
    return StoreError(message=message or f"error {code}", code=code, status=status)


def missing_function(name: str) -> StoreError:
    return StoreError(message=f"Could not find the function public.{name}", code="PGRST202", status=404)


def _matches(row: dict, query: TableQuery) -> bool:
    for f in query.filters:
        value = row.get(f.column)
        if f.op == "eq":
            if f.value is None:
                if value is not None:
                    return False
            elif str(value) != str(f.value):
                return False
        elif f.op == "in":
            if str(value) not in {str(v) for v in f.value}:
                return False
    return True


def _project(row: dict, columns: str | None) -> dict:
    if not columns or columns.strip() == "*":
        return dict(row)
    cols = [c.strip() for c in columns.split(",") if c.strip()]
    return {c: row.get(c) for c in cols}


class FakeStore(BaseStore):
    """In-memory store that executes the same TableQuery objects as StoreClient.

    Tables must be created before use; querying an unknown table raises 42P01.
    Unknown RPCs raise PGRST202. Every call is recorded in .calls.
    """

    def __init__(self) -> None:
        self.tables: dict[tuple[str, str], list[dict]] = {}
        self.unique_keys: dict[tuple[str, str], tuple[str, ...]] = {}
        self.missing_columns: dict[tuple[str, str], set[str]] = {}
        self.no_upsert_constraint: set[tuple[str, str]] = set()
        self.table_errors: dict[tuple[str, str], StoreError] = {}
        self.rpc_handlers: dict[str, Any] = {}
        self.calls: list[tuple] = []
        self._ids = itertools.count(1)

    # --- setup helpers ---

    def create_table(self, schema: str, table: str, rows: list[dict] | None = None, unique: tuple[str, ...] | None = None):
        self.tables[(schema, table)] = [dict(r) for r in rows or []]
        if unique:
            self.unique_keys[(schema, table)] = unique
        return self.tables[(schema, table)]

    def rows(self, schema: str, table: str) -> list[dict]:
        return self.tables[(schema, table)]

    def on_rpc(self, name: str, handler: Any) -> None:
        """handler: callable(params) (sync or async), a StoreError to raise, or a constant result."""
        self.rpc_handlers[name] = handler

    def rpc_calls(self, name: str) -> list[dict]:
        return [c[2] for c in self.calls if c[0] == "rpc" and c[1] == name]

    def table_calls(self, schema: str, table: str) -> list[tuple]:
        return [c for c in self.calls if c[0] != "rpc" and c[1] == schema and c[2] == table]

    # --- BaseStore ---

    async def rpc(self, name: str, params: dict | None = None) -> Any:
        self.calls.append(("rpc", name, params or {}))
        if name not in self.rpc_handlers:
            raise missing_function(name)
        handler = self.rpc_handlers[name]
        if isinstance(handler, StoreError):
            raise handler
        if callable(handler):
            result = handler(params or {})
            if inspect.isawaitable(result):
                result = await result
            return result
        return handler

    async def execute_query(self, query: TableQuery) -> list[dict]:
        key = (query.schema, query.table)
        method = query.method or "select"
        self.calls.append((method, query.schema, query.table, query))
        if key in self.table_errors:
            raise self.table_errors[key]
        if key not in self.tables:
            raise store_error("42P01", f'relation "{query.schema}.{query.table}" does not exist')
        missing = self.missing_columns.get(key, set())
        if query.columns:
            for col in (c.strip() for c in query.columns.split(",")):
                if col in missing:
                    raise store_error("42703", f"column {query.table}.{col} does not exist")
        if method == "select":
            return self._select(key, query)
        if method == "insert":
            return self._insert(key, query)
        if method == "upsert":
            return self._upsert(key, query)
        if method == "update":
            out = []
            for row in self.tables[key]:
                if _matches(row, query):
                    row.update(query.body)
                    out.append(_project(row, query.columns))
            return out
        raise ValueError(method)

    def _select(self, key, query: TableQuery) -> list[dict]:
        rows = [r for r in self.tables[key] if _matches(r, query)]
        for col, desc in reversed(query.order_by):
            rows.sort(key=lambda r: (r.get(col) is not None, str(r.get(col) or "")), reverse=desc)
        start = query.offset or 0
        end = None if query.limit_count is None else start + query.limit_count
        return [_project(r, query.columns) for r in rows[start:end]]

    def _unique_match(self, key, row: dict) -> dict | None:
        cols = self.unique_keys.get(key)
        if not cols:
            return None
        for existing in self.tables[key]:
            if all(str(existing.get(c)) == str(row.get(c)) for c in cols):
                return existing
        return None

    def _new_row(self, key, row: dict) -> dict:
        row = dict(row)
        row.setdefault("id", f"post-{next(self._ids)}")
        row.setdefault("created_at", datetime.now(timezone.utc).isoformat())
        self.tables[key].append(row)
        return row

    def _insert(self, key, query: TableQuery) -> list[dict]:
        body = query.body if isinstance(query.body, list) else [query.body]
        out = []
        for row in body:
            if self._unique_match(key, row) is not None:
                raise store_error("23505", "duplicate key value violates unique constraint")
            out.append(_project(self._new_row(key, row), query.columns))
        return out

    def _upsert(self, key, query: TableQuery) -> list[dict]:
        if key in self.no_upsert_constraint:
            raise store_error(
                "42P10", "there is no unique or exclusion constraint matching the ON CONFLICT specification"
            )
        body = query.body if isinstance(query.body, list) else [query.body]
        conflict = tuple(c.strip() for c in (query.on_conflict or "").split(",") if c.strip())
        out = []
        for row in body:
            existing = None
            for r in self.tables[key]:
                if conflict and all(str(r.get(c)) == str(row.get(c)) for c in conflict):
                    existing = r
                    break
            if existing is not None:
                # ignore-duplicates skips the row and returns nothing for it
                if not query.ignore_duplicates:
                    existing.update(row)
                    out.append(_project(existing, query.columns))
            else:
                out.append(_project(self._new_row(key, row), query.columns))
        return out


class FakeAuth:
    """Stands in for AuthSession: fixed user id, counts refreshes."""

    def __init__(self, user_id: str = VIEWER_ID, refresh_error: Exception | None = None) -> None:
        self.user_id = user_id
        self.refresh_error = refresh_error
        self.refresh_calls = 0

    async def get_current_user_id(self) -> str:
        return self.user_id

    async def refresh(self) -> None:
        self.refresh_calls += 1
        if self.refresh_error is not None:
            raise self.refresh_error


def iso(minutes_ago: int, base: datetime | None = None) -> str:
    base = base or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    return (base - timedelta(minutes=minutes_ago)).isoformat()


def install_social_backend(store: FakeStore, auth: FakeAuth) -> None:
    """social.posts plus the feed/share/like RPCs, implemented over the in-memory tables."""
    posts = store.create_table("social", "posts", unique=("user_id", "source_type", "source_id"))
    likes: set[tuple[str, str]] = set()
    clock = itertools.count()

    def get_feed_user(params: dict) -> list[dict]:
        rows = [dict(p) for p in posts]
        if params.get("p_activity_type"):
            rows = [r for r in rows if r.get("activity_type") == params["p_activity_type"]]
        rows.sort(key=lambda r: r["created_at"], reverse=True)
        offset = params.get("p_offset") or 0
        return rows[offset : offset + params["p_limit"]]

    def make_share(source_type: str) -> Callable[[dict], str]:
        def share(params: dict) -> str:
            for p in posts:
                if (p["user_id"], p["source_type"], p["source_id"]) == (auth.user_id, source_type, params["p_session_id"]):
                    return p["id"]
            row = {
                "id": f"post-{len(posts) + 1}",
                "user_id": auth.user_id,
                "activity_type": params["p_activity_type"],
                "source_type": source_type,
                "source_id": params["p_session_id"],
                "title": params["p_title"],
                "subtitle": params["p_subtitle"],
                "caption": params["p_caption"],
                "visibility": params["p_visibility"],
                "metrics": params["p_metrics"],
                "created_at": iso(-next(clock)),
                "like_count": 0,
                "comment_count": 0,
            }
            posts.append(row)
            return row["id"]

        return share

    def like(params: dict) -> None:
        key = (auth.user_id, params["p_post_id"])
        if key in likes:
            raise store_error("23505", "duplicate key value violates unique constraint")
        likes.add(key)

    def unlike(params: dict) -> None:
        likes.discard((auth.user_id, params["p_post_id"]))

    def liked_ids(params: dict) -> list[dict]:
        return [{"post_id": pid} for (uid, pid) in likes if uid == auth.user_id and pid in params["p_post_ids"]]

    store.on_rpc("get_feed_user", get_feed_user)
    for source_type in ("run_walk", "outdoor", "strength"):
        store.on_rpc(f"share_{source_type}_session_user", make_share(source_type))
    store.on_rpc("like_post_user", like)
    store.on_rpc("unlike_post_user", unlike)
    store.on_rpc("get_liked_post_ids_user", liked_ids)


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def auth() -> FakeAuth:
    return FakeAuth()


@pytest.fixture
def identity_tables(store: FakeStore) -> FakeStore:
    """Empty public.profiles and user.users."""
    store.create_table("public", "profiles")
    store.create_table("user", "users")
    return store


@pytest_asyncio.fixture
async def client(store: FakeStore, auth: FakeAuth):
    """AsyncClient against the FastAPI app with the store/auth dependencies swapped for fakes."""
    from social_feed.api.deps import get_auth_session, get_store
    from social_feed.main import app

    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_auth_session] = lambda: auth
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> dict:
    return {"Authorization": "Bearer test-token"}
