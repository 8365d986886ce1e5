"""Per-user API: identity card, social counts, the user's own feed and activity grid."""

from fastapi import APIRouter, Query

from social_feed.api.deps import StoreDep
from social_feed.schemas.activity import ActivityStepRequest, ActivityStepResponse
from social_feed.schemas.feed import ActivityType, FeedPage, IdentitySummary, SocialCounts
from social_feed.services import feed_paginator, social_actions
from social_feed.services.activity_merger import fetch_activity_step
from social_feed.services.identity import resolve_identity

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/{user_id}/identity", response_model=IdentitySummary)
async def get_identity(user_id: str, store: StoreDep):
    return await resolve_identity(store, user_id)


@router.get("/{user_id}/social-counts", response_model=SocialCounts)
async def get_counts(user_id: str, store: StoreDep):
    return await social_actions.get_social_counts(store, user_id)


@router.get("/{user_id}/feed", response_model=FeedPage)
async def get_user_feed(
    user_id: str,
    store: StoreDep,
    offset: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=50),
    activity_type: ActivityType | None = None,
):
    return await feed_paginator.get_page(
        store, offset=offset, limit=limit, activity_type=activity_type, user_id=user_id
    )


@router.post("/{user_id}/activities", response_model=ActivityStepResponse)
async def next_activities(user_id: str, body: ActivityStepRequest, store: StoreDep):
    """Next slice of the activity grid. The client keeps the returned cursor and sends it back."""
    items, cursor = await fetch_activity_step(
        store, user_id, cursor=body.cursor, sources=body.sources, reset=body.reset
    )
    return ActivityStepResponse(items=items, cursor=cursor, done=cursor.all_exhausted(body.sources))
