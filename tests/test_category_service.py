import pytest

from conftest import make_category, make_event
from ticketeer.cache import CacheKeyBuilder, CacheTTL
from ticketeer.schemas.category import CategoryCreate, CategoryUpdate
from ticketeer.services.category_service import CategoryService
from ticketeer.utils.exceptions import (
    CategoryExistsError,
    CategoryInUseError,
    CategoryNotFoundError,
    ValidationError,
)


@pytest.fixture
def category_service(session):
    return CategoryService(session)


@pytest.fixture
def cached_category_service(session, cache):
    return CategoryService(session, cache=cache)


async def test_list_is_sorted_by_name(session, category_service):
    await make_category(session, "theatre", "Theatre")
    await make_category(session, "art", "art & design")
    await make_category(session, "music", "Music")

    listing = await category_service.list_categories()

    assert [c.slug for c in listing.categories] == ["art", "music", "theatre"]
    assert listing.count == 3


async def test_create_and_get(category_service):
    created = await category_service.create_category(
        CategoryCreate(slug="live-music", name="Live Music", description="Gigs and concerts")
    )

    fetched = await category_service.get_category_response("live-music")

    assert fetched.id == created.id
    assert fetched.description == "Gigs and concerts"


async def test_duplicate_slug(session, category_service):
    await make_category(session, "music")

    with pytest.raises(CategoryExistsError):
        await category_service.create_category(CategoryCreate(slug="music", name="Music again"))


async def test_unknown_slug(category_service):
    with pytest.raises(CategoryNotFoundError):
        await category_service.get_category("polka")


async def test_update_keeps_unset_fields(session, category_service):
    await make_category(session, "music", "Music")
    await category_service.update_category("music", CategoryUpdate(description="Anything with a beat"))

    updated = await category_service.update_category("music", CategoryUpdate(name="Music & Song"))

    assert (updated.name, updated.description) == ("Music & Song", "Anything with a beat")


async def test_category_in_use_cannot_be_deleted(session, category_service):
    await make_category(session, "jazz")
    await make_event(session, category_ids=["jazz"])

    with pytest.raises(CategoryInUseError) as exc_info:
        await category_service.delete_category("jazz")

    assert exc_info.value.details["event_count"] == 1


async def test_delete_unused(session, category_service):
    await make_category(session, "jazz")

    await category_service.delete_category("jazz")

    with pytest.raises(CategoryNotFoundError):
        await category_service.get_category("jazz")


async def test_require_known(session, category_service):
    await make_category(session, "jazz")
    await make_category(session, "music")

    assert await category_service.require_known(["music", "jazz", "music"]) == ["jazz", "music"]
    assert await category_service.require_known([]) == []

    with pytest.raises(ValidationError) as exc_info:
        await category_service.require_known(["jazz", "polka", "ska"])
    assert exc_info.value.field_errors == {
        "category_ids": ["unknown category: polka", "unknown category: ska"]
    }


async def test_cached_reads_are_invalidated_by_writes(session, cached_category_service, fake_redis):
    await make_category(session, "music", "Music")
    await cached_category_service.list_categories()
    await cached_category_service.get_category_response("music")
    assert fake_redis.ttls[CacheKeyBuilder.category_list()] == CacheTTL.CATEGORY
    assert CacheKeyBuilder.category_detail("music") in fake_redis.store

    await cached_category_service.update_category("music", CategoryUpdate(name="Sound"))

    assert CacheKeyBuilder.category_list() not in fake_redis.store
    assert CacheKeyBuilder.category_detail("music") not in fake_redis.store
    assert (await cached_category_service.get_category_response("music")).name == "Sound"
