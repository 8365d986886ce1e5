"""Tests for likes, comments and profile counters."""

import pytest

from social_feed.services.social_actions import (
    create_post_comment,
    delete_post_comment,
    get_liked_post_ids,
    get_social_counts,
    list_post_comments,
    list_post_likes,
    toggle_post_like,
)
from social_feed.services.store_errors import StoreError

from conftest import VIEWER_ID, install_social_backend, iso, store_error

OWNER = "22222222-2222-4222-8222-222222222222"


@pytest.mark.asyncio
async def test_like_then_unlike(store, auth):
    install_social_backend(store, auth)

    assert await toggle_post_like(store, "post-1", currently_liked=False) is True
    assert await get_liked_post_ids(store, ["post-1", "post-2"]) == {"post-1"}
    assert await toggle_post_like(store, "post-1", currently_liked=True) is False
    assert await get_liked_post_ids(store, ["post-1"]) == set()


@pytest.mark.asyncio
async def test_double_like_is_absorbed(store, auth):
    install_social_backend(store, auth)

    await toggle_post_like(store, "post-1", currently_liked=False)
    assert await toggle_post_like(store, "post-1", currently_liked=False) is True


@pytest.mark.asyncio
async def test_like_without_rpc_keeps_optimistic_state(store):
    assert await toggle_post_like(store, "post-1", currently_liked=False) is True
    assert await toggle_post_like(store, "post-1", currently_liked=True) is False


@pytest.mark.asyncio
async def test_like_failure_propagates(store):
    store.on_rpc("like_post_user", store_error("42501", "permission denied"))
    with pytest.raises(StoreError):
        await toggle_post_like(store, "post-1", currently_liked=False)


@pytest.mark.asyncio
async def test_list_post_likes_resolves_identities(identity_tables):
    store = identity_tables
    store.rows("public", "profiles").append({"id": OWNER, "username": "jane", "display_name": "Jane"})
    store.on_rpc("list_post_likes_user", [{"user_id": OWNER}, {"user_id": VIEWER_ID}])

    likers = await list_post_likes(store, "post-1", limit=500)

    assert [u.username for u in likers] == ["jane", "user_11111111"]
    assert store.rpc_calls("list_post_likes_user") == [{"p_post_id": "post-1", "p_limit": 100, "p_offset": 0}]


@pytest.mark.asyncio
async def test_list_post_comments(identity_tables):
    store = identity_tables
    store.on_rpc("list_post_comments_user", [
        {"id": "c1", "post_id": "post-1", "user_id": OWNER, "body": "Nice pace!", "created_at": iso(2)},
        {"id": "c2", "user_id": None, "body": "orphan"},
    ])

    comments = await list_post_comments(store, "post-1")

    assert len(comments) == 1
    assert comments[0].body == "Nice pace!"
    assert comments[0].username == "user_22222222"


@pytest.mark.asyncio
async def test_missing_comment_rpc_gives_empty_list(identity_tables):
    assert await list_post_comments(identity_tables, "post-1") == []


@pytest.mark.asyncio
async def test_create_comment(identity_tables, auth):
    store = identity_tables
    store.on_rpc("create_post_comment_user", lambda p: {"id": "c9", "created_at": iso(0)})

    comment = await create_post_comment(store, auth, "post-1", "  Great run  ")

    assert comment.id == "c9"
    assert comment.body == "Great run"
    assert comment.user_id == VIEWER_ID
    assert store.rpc_calls("create_post_comment_user") == [{"p_post_id": "post-1", "p_body": "Great run"}]


@pytest.mark.asyncio
async def test_blank_comment_rejected(store, auth):
    with pytest.raises(ValueError):
        await create_post_comment(store, auth, "post-1", "   ")
    assert store.calls == []


@pytest.mark.asyncio
async def test_delete_comment(store):
    store.on_rpc("delete_post_comment_user", None)
    await delete_post_comment(store, "c1")
    assert store.rpc_calls("delete_post_comment_user") == [{"p_comment_id": "c1"}]


@pytest.mark.asyncio
async def test_social_counts(store):
    store.on_rpc("get_profile_stats_user", [{"posts": 4, "followers": "10", "following": None}])

    counts = await get_social_counts(store, OWNER)

    assert (counts.posts, counts.followers, counts.following) == (4, 10, 0)


@pytest.mark.asyncio
async def test_social_counts_missing_rpc(store):
    counts = await get_social_counts(store, OWNER)
    assert (counts.posts, counts.followers, counts.following) == (0, 0, 0)
