"""FastAPI dependencies: caller's store session from the bearer token, store client bound to it."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from social_feed.services.auth_session import AuthSession
from social_feed.services.store_client import BaseStore, StoreClient


async def get_auth_session(request: Request) -> AuthSession:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Not authenticated")
    token = auth_header[7:].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return AuthSession(access_token=token, refresh_token=request.headers.get("X-Refresh-Token"))


async def get_store(auth: Annotated[AuthSession, Depends(get_auth_session)]) -> BaseStore:
    return StoreClient(auth)


StoreDep = Annotated[BaseStore, Depends(get_store)]
AuthDep = Annotated[AuthSession, Depends(get_auth_session)]
