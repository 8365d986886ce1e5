"""Feed API: global feed page, share a session, likes and comments."""

from fastapi import APIRouter, HTTPException, Query, Response

from social_feed.api.deps import AuthDep, StoreDep
from social_feed.schemas.feed import (
    ActivityType,
    CommentCreate,
    FeedComment,
    FeedPage,
    IdentitySummary,
    LikeToggle,
    ShareRequest,
    ShareResponse,
)
from social_feed.services import feed_paginator, post_persister, social_actions

router = APIRouter(tags=["feed"])


@router.get("/feed", response_model=FeedPage)
async def get_feed(
    store: StoreDep,
    offset: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=50),
    activity_type: ActivityType | None = None,
):
    return await feed_paginator.get_page(store, offset=offset, limit=limit, activity_type=activity_type)


@router.post("/posts/share", response_model=ShareResponse, status_code=201)
async def share_post(body: ShareRequest, store: StoreDep, auth: AuthDep):
    post_id = await post_persister.share_session(
        store,
        auth,
        body.source,
        metrics=body.metrics,
        visibility=body.visibility,
        caption=body.caption,
    )
    return ShareResponse(post_id=post_id)


@router.post("/posts/{post_id}/like")
async def toggle_like(post_id: str, body: LikeToggle, store: StoreDep):
    liked = await social_actions.toggle_post_like(store, post_id, body.currently_liked)
    return {"post_id": post_id, "is_liked_by_me": liked}


@router.get("/posts/{post_id}/likes", response_model=list[IdentitySummary])
async def list_likes(
    post_id: str,
    store: StoreDep,
    offset: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
):
    return await social_actions.list_post_likes(store, post_id, limit=limit, offset=offset)


@router.get("/posts/{post_id}/comments", response_model=list[FeedComment])
async def list_comments(
    post_id: str,
    store: StoreDep,
    offset: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
):
    return await social_actions.list_post_comments(store, post_id, limit=limit, offset=offset)


@router.post("/posts/{post_id}/comments", response_model=FeedComment, status_code=201)
async def create_comment(post_id: str, body: CommentCreate, store: StoreDep, auth: AuthDep):
    try:
        return await social_actions.create_post_comment(store, auth, post_id, body.body)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.delete("/comments/{comment_id}", status_code=204)
async def delete_comment(comment_id: str, store: StoreDep):
    await social_actions.delete_post_comment(store, comment_id)
    return Response(status_code=204)
