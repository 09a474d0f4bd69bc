"""
Direct service-layer tests — exercises UserService and PostService
without HTTP, through a gateway bound to the test database.
"""
import asyncio

import pytest

from blog_api.dependencies import Services
from blog_api.errors import ConflictError, NotFoundError, ValidationError
from blog_api.schemas import UserCreate


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _subset(record: dict, keys) -> dict:
    return {k: record[k] for k in keys}


async def _user(services: Services, suffix: str = "a") -> dict:
    return await services.users.create({"name": f"User {suffix}", "email": f"{suffix}@x.com"})


# ---------------------------------------------------------------------------
# UserService — create / get
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_user_assigns_id(services: Services):
    user = await services.users.create({"name": "A", "email": "a@x.com"})
    assert user["id"] == 1
    assert user["name"] == "A"
    assert user["email"] == "a@x.com"


@pytest.mark.asyncio
async def test_create_then_get_round_trip(services: Services):
    data = {"name": "Round Trip", "email": "round@trip.io"}
    created = await services.users.create(data)
    fetched = await services.users.get(created["id"])
    assert _subset(fetched, ["id", *data]) == {"id": created["id"], **data}


@pytest.mark.asyncio
async def test_create_user_accepts_schema_instance(services: Services):
    user = await services.users.create(UserCreate(name="Typed", email="typed@x.com"))
    assert user["email"] == "typed@x.com"


@pytest.mark.asyncio
async def test_duplicate_email_conflicts(services: Services):
    await services.users.create({"name": "A", "email": "a@x.com"})
    with pytest.raises(ConflictError) as excinfo:
        await services.users.create({"name": "B", "email": "a@x.com"})
    assert excinfo.value.entity == "user"
    assert excinfo.value.constraint == "users.email"

    page = await services.users.list()
    assert page.total == 1


@pytest.mark.asyncio
async def test_duplicate_email_conflicts_in_either_order(services: Services):
    await services.users.create({"name": "B", "email": "b@x.com"})
    with pytest.raises(ConflictError):
        await services.users.create({"name": "A", "email": "b@x.com"})
    remaining = await services.users.list({"email": "b@x.com"})
    assert [u["name"] for u in remaining.items] == ["B"]


@pytest.mark.asyncio
async def test_concurrent_creates_with_same_email_yield_one_user(services: Services):
    results = await asyncio.gather(
        services.users.create({"name": "A", "email": "race@x.com"}),
        services.users.create({"name": "B", "email": "race@x.com"}),
        return_exceptions=True,
    )
    created = [r for r in results if isinstance(r, dict)]
    conflicts = [r for r in results if isinstance(r, ConflictError)]
    assert len(created) == 1
    assert len(conflicts) == 1


@pytest.mark.asyncio
async def test_email_with_trailing_newline_is_not_a_second_address(services: Services):
    await _user(services, "a")
    with pytest.raises(ValidationError):
        await services.users.create({"name": "B", "email": "a@x.com\n"})
    assert (await services.users.list()).total == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"name": "", "email": "a@x.com"},
        {"name": "   ", "email": "a@x.com"},
        {"name": "A", "email": "not-an-email"},
        {"name": "A", "email": "a@x.com\n"},
        {"name": "A"},
        {"email": "a@x.com"},
        {"name": "A", "email": "a@x.com", "role": "admin"},
    ],
)
async def test_create_user_rejects_malformed_input(services: Services, payload):
    with pytest.raises(ValidationError) as excinfo:
        await services.users.create(payload)
    assert excinfo.value.details
    assert (await services.users.list()).total == 0


@pytest.mark.asyncio
async def test_create_user_rejects_non_mapping(services: Services):
    with pytest.raises(ValidationError):
        await services.users.create(["A", "a@x.com"])


@pytest.mark.asyncio
async def test_missing_user_raises_not_found(services: Services):
    with pytest.raises(NotFoundError) as excinfo:
        await services.users.get(404)
    assert excinfo.value.identifier == 404
    with pytest.raises(NotFoundError):
        await services.users.update(404, {"name": "Ghost"})
    with pytest.raises(NotFoundError):
        await services.users.update(404, {})
    with pytest.raises(NotFoundError):
        await services.users.delete(404)


# ---------------------------------------------------------------------------
# UserService — update
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_update_applies_only_provided_fields(services: Services):
    user = await _user(services)
    updated = await services.users.update(user["id"], {"name": "Renamed"})
    assert updated["name"] == "Renamed"
    assert updated["email"] == user["email"]
    assert updated["updated_at"] is not None


@pytest.mark.asyncio
async def test_empty_update_leaves_record_unchanged(services: Services):
    user = await _user(services)
    same = await services.users.update(user["id"], {})
    assert _subset(same, ["id", "name", "email"]) == _subset(user, ["id", "name", "email"])
    assert same["updated_at"] is None


@pytest.mark.asyncio
async def test_update_email_to_taken_address_conflicts(services: Services):
    await _user(services, "a")
    b = await _user(services, "b")
    with pytest.raises(ConflictError):
        await services.users.update(b["id"], {"email": "a@x.com"})
    assert (await services.users.get(b["id"]))["email"] == "b@x.com"


@pytest.mark.asyncio
async def test_update_missing_user_with_taken_email_is_not_found(services: Services):
    await _user(services, "a")
    with pytest.raises(NotFoundError) as excinfo:
        await services.users.update(999, {"email": "a@x.com"})
    assert excinfo.value.entity == "user"
    assert excinfo.value.identifier == 999


@pytest.mark.asyncio
async def test_update_email_to_own_address_succeeds(services: Services):
    user = await _user(services)
    updated = await services.users.update(user["id"], {"email": "a@x.com", "name": "Same"})
    assert updated["name"] == "Same"


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [{"name": None}, {"email": "bad"}, {"name": ""}, {"id": 7}])
async def test_update_rejects_malformed_fields(services: Services, payload):
    user = await _user(services)
    with pytest.raises(ValidationError):
        await services.users.update(user["id"], payload)


# ---------------------------------------------------------------------------
# UserService — list / iterate
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_list_users_paginates(services: Services):
    for i in range(5):
        await _user(services, f"u{i}")
    page = await services.users.list(page=2, page_size=2)
    assert page.total == 5
    assert page.pages == 3
    assert [u["email"] for u in page.items] == ["u2@x.com", "u3@x.com"]

    last = await services.users.list(page=3, page_size=2)
    assert len(last.items) == 1
    beyond = await services.users.list(page=4, page_size=2)
    assert beyond.items == []


@pytest.mark.asyncio
async def test_list_users_sorting_and_fallback(services: Services):
    await services.users.create({"name": "Charlie", "email": "c@x.com"})
    await services.users.create({"name": "Alice", "email": "a@x.com"})
    by_name = await services.users.list(sort_by="name")
    assert [u["name"] for u in by_name.items] == ["Alice", "Charlie"]
    fallback = await services.users.list(sort_by="password", sort_order="desc")
    assert [u["name"] for u in fallback.items] == ["Alice", "Charlie"]


@pytest.mark.asyncio
async def test_list_users_search_filter(services: Services):
    await services.users.create({"name": "Ada Lovelace", "email": "ada@x.com"})
    await services.users.create({"name": "Grace Hopper", "email": "grace@navy.mil"})
    assert (await services.users.list({"search": "love"})).total == 1
    assert (await services.users.list({"search": "NAVY"})).total == 1
    assert (await services.users.list({"search": "x.com"})).total == 1


@pytest.mark.asyncio
async def test_list_users_rejects_bad_arguments(services: Services):
    with pytest.raises(ValidationError):
        await services.users.list({"password": "x"})
    with pytest.raises(ValidationError):
        await services.users.list(page=0)
    with pytest.raises(ValidationError):
        await services.users.list(sort_order="sideways")


@pytest.mark.asyncio
async def test_list_page_size_is_clamped(services: Services):
    page = await services.users.list(page_size=10_000)
    assert page.page_size == 100


@pytest.mark.asyncio
async def test_iterate_walks_every_user_and_restarts(services: Services):
    for i in range(7):
        await _user(services, f"it{i}")
    first = [u["id"] async for u in services.users.iterate(batch_size=3)]
    second = [u["id"] async for u in services.users.iterate(batch_size=3)]
    assert first == second == sorted(first)
    assert len(first) == 7


@pytest.mark.asyncio
async def test_iterate_with_filter(services: Services):
    await services.users.create({"name": "Match", "email": "m@x.com"})
    await services.users.create({"name": "Other", "email": "o@x.com"})
    names = [u["name"] async for u in services.users.iterate({"name": "Match"})]
    assert names == ["Match"]


# ---------------------------------------------------------------------------
# PostService
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_post_round_trip(services: Services):
    owner = await _user(services)
    data = {"title": "Hello", "content": "World", "published": False, "owner_id": owner["id"]}
    created = await services.posts.create(data)
    fetched = await services.posts.get(created["id"])
    assert _subset(fetched, ["id", *data]) == {"id": created["id"], **data}


@pytest.mark.asyncio
async def test_create_post_defaults(services: Services):
    owner = await _user(services)
    post = await services.posts.create({"title": "Bare", "owner_id": owner["id"]})
    assert post["content"] is None
    assert post["published"] is False


@pytest.mark.asyncio
async def test_create_post_requires_existing_owner(services: Services):
    with pytest.raises(NotFoundError) as excinfo:
        await services.posts.create({"title": "Orphan", "owner_id": 99})
    assert excinfo.value.entity == "user"
    assert excinfo.value.identifier == 99
    assert (await services.posts.list()).total == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [{"title": "No owner"}, {"title": "", "owner_id": 1}, {"owner_id": 1}, {"title": "x", "owner_id": "abc"}],
)
async def test_create_post_rejects_malformed_input(services: Services, payload):
    await _user(services)
    with pytest.raises(ValidationError):
        await services.posts.create(payload)


@pytest.mark.asyncio
async def test_posts_have_no_content_uniqueness(services: Services):
    owner = await _user(services)
    for _ in range(2):
        await services.posts.create({"title": "Same", "content": "Same", "owner_id": owner["id"]})
    assert (await services.posts.list()).total == 2


@pytest.mark.asyncio
async def test_missing_post_raises_not_found(services: Services):
    with pytest.raises(NotFoundError):
        await services.posts.get(1)
    with pytest.raises(NotFoundError):
        await services.posts.update(1, {"title": "x"})
    with pytest.raises(NotFoundError):
        await services.posts.delete(1)
    with pytest.raises(NotFoundError):
        await services.posts.publish(1)


@pytest.mark.asyncio
async def test_update_missing_post_reports_the_post_before_the_owner(services: Services):
    with pytest.raises(NotFoundError) as excinfo:
        await services.posts.update(999, {"owner_id": 888})
    assert excinfo.value.entity == "post"
    assert excinfo.value.identifier == 999


@pytest.mark.asyncio
async def test_update_post_partial_and_clear_content(services: Services):
    owner = await _user(services)
    post = await services.posts.create({"title": "T", "content": "C", "owner_id": owner["id"]})
    updated = await services.posts.update(post["id"], {"content": None})
    assert updated["content"] is None
    assert updated["title"] == "T"
    unchanged = await services.posts.update(post["id"], {})
    assert unchanged["title"] == "T"


@pytest.mark.asyncio
async def test_update_post_owner_must_exist(services: Services):
    a = await _user(services, "a")
    b = await _user(services, "b")
    post = await services.posts.create({"title": "T", "owner_id": a["id"]})
    moved = await services.posts.update(post["id"], {"owner_id": b["id"]})
    assert moved["owner_id"] == b["id"]
    with pytest.raises(NotFoundError):
        await services.posts.update(post["id"], {"owner_id": 404})
    assert (await services.posts.get(post["id"]))["owner_id"] == b["id"]


@pytest.mark.asyncio
async def test_delete_post_leaves_owner(services: Services):
    owner = await _user(services)
    post = await services.posts.create({"title": "T", "owner_id": owner["id"]})
    deleted = await services.posts.delete(post["id"])
    assert deleted["id"] == post["id"]
    with pytest.raises(NotFoundError):
        await services.posts.get(post["id"])
    assert (await services.users.get(owner["id"]))["id"] == owner["id"]


@pytest.mark.asyncio
async def test_publish_is_idempotent(services: Services):
    owner = await _user(services)
    post = await services.posts.create({"title": "Draft", "owner_id": owner["id"]})
    assert (await services.posts.publish(post["id"]))["published"] is True
    assert (await services.posts.publish(post["id"]))["published"] is True


@pytest.mark.asyncio
async def test_list_posts_filters(services: Services):
    a = await _user(services, "a")
    b = await _user(services, "b")
    await services.posts.create({"title": "Python tips", "owner_id": a["id"], "published": True})
    await services.posts.create({"title": "Draft", "content": "python soon", "owner_id": a["id"]})
    await services.posts.create({"title": "Rust", "owner_id": b["id"], "published": True})

    assert (await services.posts.list({"owner_id": a["id"]})).total == 2
    assert (await services.posts.list({"published": True})).total == 2
    assert (await services.posts.list({"search": "python"})).total == 2
    assert (await services.posts.list({"search": "python", "published": True})).total == 1
    with pytest.raises(ValidationError):
        await services.posts.list({"author": "a"})


@pytest.mark.asyncio
async def test_feed_only_returns_published(services: Services):
    owner = await _user(services)
    await services.posts.create({"title": "Live", "owner_id": owner["id"], "published": True})
    await services.posts.create({"title": "Hidden", "owner_id": owner["id"]})
    feed = await services.posts.feed()
    assert [p["title"] for p in feed.items] == ["Live"]
    assert (await services.posts.feed(search="hidden")).total == 0


@pytest.mark.asyncio
async def test_by_owner_lists_drafts(services: Services):
    owner = await _user(services)
    await services.posts.create({"title": "Live", "owner_id": owner["id"], "published": True})
    await services.posts.create({"title": "Draft", "owner_id": owner["id"]})
    drafts = await services.posts.by_owner(owner["id"], published=False)
    assert [p["title"] for p in drafts.items] == ["Draft"]
    assert (await services.posts.by_owner(owner["id"])).total == 2
    with pytest.raises(NotFoundError):
        await services.posts.by_owner(404)


@pytest.mark.asyncio
async def test_iterate_posts_of_one_owner(services: Services):
    a = await _user(services, "a")
    b = await _user(services, "b")
    for i in range(5):
        await services.posts.create({"title": f"A{i}", "owner_id": a["id"]})
    await services.posts.create({"title": "B0", "owner_id": b["id"]})

    titles = [p["title"] async for p in services.posts.iterate({"owner_id": a["id"]}, batch_size=2)]
    assert titles == ["A0", "A1", "A2", "A3", "A4"]
