"""
Hosted store client: PostgREST-style table queries and RPC calls over httpx.

Queries are built with TableQuery and executed by a store; StoreClient runs
them over HTTP, test doubles run the same TableQuery objects in memory.
Failures raise StoreError carrying the backend's error code.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

import httpx

from social_feed.config import settings
from social_feed.services.auth_session import AuthSession
from social_feed.services.http_client import get_http_client
from social_feed.services.store_errors import StoreError

logger = logging.getLogger(__name__)


@dataclass
class Filter:
    column: str
    op: str  # "eq" | "in"
    value: Any


@dataclass
class TableQuery:
    """One table operation: select / insert / upsert / update, with filters, order and range."""

    store: "BaseStore"
    schema: str
    table: str
    method: str | None = None
    columns: str | None = None
    filters: list[Filter] = field(default_factory=list)
    order_by: list[tuple[str, bool]] = field(default_factory=list)
    offset: int | None = None
    limit_count: int | None = None
    body: Any = None
    on_conflict: str | None = None
    ignore_duplicates: bool = False

    def select(self, columns: str = "*") -> "TableQuery":
        self.columns = columns
        if self.method is None:
            self.method = "select"
        return self

    def insert(self, rows: dict | list[dict]) -> "TableQuery":
        self.method = "insert"
        self.body = rows
        return self

    def upsert(self, rows: dict | list[dict], on_conflict: str, ignore_duplicates: bool = False) -> "TableQuery":
        """Insert, resolving conflicts on on_conflict by merging, or by skipping the row when ignore_duplicates."""
        self.method = "upsert"
        self.body = rows
        self.on_conflict = on_conflict
        self.ignore_duplicates = ignore_duplicates
        return self

    def update(self, patch: dict) -> "TableQuery":
        self.method = "update"
        self.body = patch
        return self

    def eq(self, column: str, value: Any) -> "TableQuery":
        self.filters.append(Filter(column, "eq", value))
        return self

    def in_(self, column: str, values: Iterable[Any]) -> "TableQuery":
        self.filters.append(Filter(column, "in", list(values)))
        return self

    def order(self, column: str, desc: bool = True) -> "TableQuery":
        self.order_by.append((column, desc))
        return self

    def range(self, offset: int, count: int) -> "TableQuery":
        """Rows [offset, offset + count)."""
        self.offset = max(0, int(offset))
        self.limit_count = max(0, int(count))
        return self

    def limit(self, count: int) -> "TableQuery":
        self.limit_count = max(0, int(count))
        return self

    async def execute(self) -> list[dict]:
        return await self.store.execute_query(self)

    async def first(self) -> dict | None:
        rows = await self.execute()
        return rows[0] if rows else None


class BaseStore:
    """Table/RPC interface consumed by the pipeline."""

    def table(self, schema: str, name: str) -> TableQuery:
        return TableQuery(store=self, schema=schema, table=name)

    async def execute_query(self, query: TableQuery) -> list[dict]:
        raise NotImplementedError

    async def rpc(self, name: str, params: dict | None = None) -> Any:
        raise NotImplementedError


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _quote(value: Any) -> str:
    text = _format_value(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{text}"'


def build_query_params(query: TableQuery) -> list[tuple[str, str]]:
    """PostgREST query string for a TableQuery (select, filters, order, offset/limit, on_conflict)."""
    params: list[tuple[str, str]] = []
    if query.columns:
        params.append(("select", query.columns.replace(" ", "")))
    for f in query.filters:
        if f.op == "eq":
            if f.value is None:
                params.append((f.column, "is.null"))
            else:
                params.append((f.column, f"eq.{_format_value(f.value)}"))
        elif f.op == "in":
            params.append((f.column, "in.(" + ",".join(_quote(v) for v in f.value) + ")"))
        else:
            raise ValueError(f"Unsupported filter op: {f.op}")
    if query.order_by:
        params.append(("order", ",".join(f"{col}.{'desc' if desc else 'asc'}" for col, desc in query.order_by)))
    if query.offset:
        params.append(("offset", str(query.offset)))
    if query.limit_count is not None:
        params.append(("limit", str(query.limit_count)))
    if query.method == "upsert" and query.on_conflict:
        params.append(("on_conflict", query.on_conflict.replace(" ", "")))
    return params


class StoreClient(BaseStore):
    """Runs TableQuery / RPC calls against the hosted store with the session's bearer token."""

    def __init__(
        self,
        auth: AuthSession,
        client: httpx.AsyncClient | None = None,
        rest_url: str | None = None,
    ) -> None:
        self.auth = auth
        self._client = client
        self.rest_url = (rest_url or settings.rest_url).rstrip("/")

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client or get_http_client()

    async def _send(
        self,
        method: str,
        path: str,
        params: list[tuple[str, str]] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        url = f"{self.rest_url}/{path}"
        all_headers = self.auth.auth_headers()
        if headers:
            all_headers.update(headers)
        r = await self.client.request(method, url, params=params, json=json, headers=all_headers)
        if r.status_code >= 400:
            try:
                payload = r.json()
            except ValueError:
                payload = r.text
            err = StoreError.from_payload(payload, status=r.status_code)
            logger.debug("Store %s %s -> %s code=%s", method, path, r.status_code, err.code)
            raise err
        if r.status_code == 204 or not r.content:
            return None
        return r.json()

    async def execute_query(self, query: TableQuery) -> list[dict]:
        params = build_query_params(query)
        path = query.table
        if query.method in (None, "select"):
            data = await self._send("GET", path, params=params, headers={"Accept-Profile": query.schema})
        elif query.method == "insert":
            data = await self._send(
                "POST",
                path,
                params=params,
                json=query.body,
                headers={"Content-Profile": query.schema, "Prefer": "return=representation"},
            )
        elif query.method == "upsert":
            resolution = "ignore-duplicates" if query.ignore_duplicates else "merge-duplicates"
            data = await self._send(
                "POST",
                path,
                params=params,
                json=query.body,
                headers={
                    "Content-Profile": query.schema,
                    "Prefer": f"resolution={resolution},return=representation",
                },
            )
        elif query.method == "update":
            data = await self._send(
                "PATCH",
                path,
                params=params,
                json=query.body,
                headers={"Content-Profile": query.schema, "Prefer": "return=representation"},
            )
        else:
            raise ValueError(f"Unsupported query method: {query.method}")
        if data is None:
            return []
        if isinstance(data, dict):
            return [data]
        return [row for row in data if isinstance(row, dict)]

    async def rpc(self, name: str, params: dict | None = None) -> Any:
        """POST /rpc/<name>. Returns a scalar, a row or a list of rows as the function defines."""
        return await self._send("POST", f"rpc/{name}", json=params or {})
