"""
Shared long-lived httpx.AsyncClient for the hosted store (tables, RPC, auth).
Initialized in app lifespan so every request reuses one connection pool.
"""
from __future__ import annotations

import httpx

from social_feed.config import settings

_http_client: httpx.AsyncClient | None = None


def get_http_client() -> httpx.AsyncClient:
    """Return the shared async HTTP client. Must be initialized via init_http_client() first."""
    if _http_client is None:
        raise RuntimeError("HTTP client not initialized; ensure app lifespan has run init_http_client().")
    return _http_client


def init_http_client(
    timeout: float | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Create and store the shared client. Call from app lifespan startup.

    The anon key is sent on every request; the bearer token is per-session and
    added by the store client.
    """
    global _http_client
    if _http_client is not None:
        return _http_client
    headers = {"apikey": settings.store_anon_key} if settings.store_anon_key else {}
    _http_client = httpx.AsyncClient(
        timeout=timeout if timeout is not None else settings.store_timeout_seconds,
        headers=headers,
        transport=transport,
    )
    return _http_client


async def close_http_client() -> None:
    """Close the shared client. Call from app lifespan shutdown."""
    global _http_client
    if _http_client is not None:
        await _http_client.aclose()
        _http_client = None
