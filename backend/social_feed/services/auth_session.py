"""
Auth session bound to the caller's store token.

The pipeline never reaches for a module-level session: an AuthSession (or any
object with the same get_current_user_id()/refresh() pair) is passed in.
"""
from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, TypeVar

import httpx
from jose import JWTError, jwt

from social_feed.config import settings
from social_feed.services.http_client import get_http_client
from social_feed.services.store_errors import AuthSessionError, StoreError, is_auth_expired

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AuthSession:
    """Access/refresh token pair for one signed-in user."""

    def __init__(
        self,
        access_token: str,
        refresh_token: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.access_token = (access_token or "").strip()
        self.refresh_token = (refresh_token or "").strip() or None
        self._client = client
        self._user_id: str | None = None

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client or get_http_client()

    def auth_headers(self) -> dict[str, str]:
        headers = {}
        if settings.store_anon_key:
            headers["apikey"] = settings.store_anon_key
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers

    def _claims(self) -> dict[str, Any]:
        """Unverified token claims; the store verifies the signature on every call."""
        if not self.access_token:
            return {}
        try:
            return jwt.get_unverified_claims(self.access_token)
        except JWTError:
            return {}

    async def get_current_user_id(self) -> str:
        """Id of the signed-in user: from the token's sub claim, else from the auth endpoint."""
        if self._user_id:
            return self._user_id
        if not self.access_token:
            raise AuthSessionError("Not signed in")
        sub = self._claims().get("sub")
        if sub:
            self._user_id = str(sub)
            return self._user_id
        r = await self.client.get(f"{settings.auth_url}/user", headers=self.auth_headers())
        if r.status_code >= 400:
            raise StoreError.from_payload(_json_or_text(r), status=r.status_code)
        data = r.json() if r.content else {}
        user_id = (data or {}).get("id")
        if not user_id:
            raise AuthSessionError("Not signed in")
        self._user_id = str(user_id)
        return self._user_id

    async def refresh(self) -> None:
        """Exchange the refresh token for a new access token."""
        if not self.refresh_token:
            raise AuthSessionError("Session expired and no refresh token is available")
        r = await self.client.post(
            f"{settings.auth_url}/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": self.refresh_token},
            headers={"apikey": settings.store_anon_key} if settings.store_anon_key else None,
        )
        if r.status_code >= 400:
            logger.warning("Session refresh failed -> %s", r.status_code)
            raise AuthSessionError(f"Session refresh failed ({r.status_code})")
        data = r.json() if r.content else {}
        access = (data or {}).get("access_token")
        if not access:
            raise AuthSessionError("Session refresh returned no access token")
        self.access_token = access
        self.refresh_token = data.get("refresh_token") or self.refresh_token
        user = data.get("user") or {}
        self._user_id = str(user["id"]) if user.get("id") else None
        logger.info("Store session refreshed")


async def call_with_refresh(auth: Any, call: Callable[[], Awaitable[T]]) -> T:
    """Run call(); on an expired session refresh once and retry exactly once."""
    try:
        return await call()
    except StoreError as exc:
        if not is_auth_expired(exc):
            raise
        logger.info("Store call rejected as expired (%s); refreshing session and retrying once", exc.code)
    await auth.refresh()
    return await call()


def _json_or_text(r: httpx.Response) -> Any:
    try:
        return r.json()
    except ValueError:
        return r.text
