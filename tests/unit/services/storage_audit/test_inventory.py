"""Tests for the inventory collector."""
import pytest

from imfolio.core.exceptions import InventoryIncomplete, StorageAccessDenied
from imfolio.models.contracts.storage import AuditScope
from imfolio.models.enums import RecordKind
from imfolio.models.orm import HeroImage, Photo, User
from imfolio.services.storage_audit.inventory import InventoryCollector
from imfolio.services.storage_audit.results import PermissionDenied
from tests.helpers.stores import FaultInjectingStore


@pytest.mark.asyncio
async def test_lists_every_page(store, put, session_factory, settings, retry_policy):
    for name in ["a", "b", "c", "d", "e"]:
        await put(f"photo/u1/{name}.jpg")
    collector = InventoryCollector(store, session_factory, settings, retry_policy)

    objects = await collector.list_objects(AuditScope())

    # settings.storage_list_page_size is 2, so this took three pages
    assert sorted(o.key for o in objects) == [f"photo/u1/{n}.jpg" for n in "abcde"]


@pytest.mark.asyncio
async def test_owner_scope_lists_only_owner_prefixes(store, put, session_factory, settings, retry_policy):
    await put("photo/u1/a.jpg")
    await put("profile/u1/me.jpg")
    await put("photo/u2/b.jpg")
    await put("hero/global/banner.jpg")
    faulty = FaultInjectingStore(store)
    collector = InventoryCollector(faulty, session_factory, settings, retry_policy)

    objects = await collector.list_objects(AuditScope(owner_id="u1"))

    assert sorted(o.key for o in objects) == ["photo/u1/a.jpg", "profile/u1/me.jpg"]
    listed_prefixes = {key for op, key in faulty.calls if op == "list"}
    assert listed_prefixes == {"photo/u1/", "hero/u1/", "profile/u1/"}


@pytest.mark.asyncio
async def test_transient_page_failure_is_retried(store, put, session_factory, settings, retry_policy):
    await put("photo/u1/a.jpg")
    faulty = FaultInjectingStore(store)
    faulty.fail_once("list", "")
    collector = InventoryCollector(faulty, session_factory, settings, retry_policy)

    objects = await collector.list_objects(AuditScope())

    assert [o.key for o in objects] == ["photo/u1/a.jpg"]


@pytest.mark.asyncio
async def test_persistent_failure_raises_incomplete_with_partial(store, put, session_factory, settings, retry_policy):
    await put("photo/u1/a.jpg")
    faulty = FaultInjectingStore(store)
    faulty.fail_always("list", "hero/u1/")
    collector = InventoryCollector(faulty, session_factory, settings, retry_policy)

    with pytest.raises(InventoryIncomplete) as exc_info:
        await collector.list_objects(AuditScope(owner_id="u1"))

    assert exc_info.value.prefix == "hero/u1/"
    assert [o.key for o in exc_info.value.collected] == ["photo/u1/a.jpg"]


@pytest.mark.asyncio
async def test_permission_denied_raises_access_denied(store, session_factory, settings, retry_policy):
    faulty = FaultInjectingStore(store)
    faulty.fail_always("list", "", PermissionDenied("", "AccessDenied"))
    collector = InventoryCollector(faulty, session_factory, settings, retry_policy)

    with pytest.raises(StorageAccessDenied):
        await collector.list_objects(AuditScope())
    # Not retried
    assert faulty.count("list") == 1


@pytest.mark.asyncio
async def test_records_are_paged_and_scoped(session_factory, seed, settings, retry_policy, store):
    await seed(User(id="u1", profile_image_key="profile/u1/me.jpg"), User(id="u2"))
    await seed(
        Photo(owner_id="u1", storage_key="photo/u1/a.jpg", content_hash="h1"),
        Photo(owner_id="u1", storage_key="photo/u1/b.jpg"),
        Photo(owner_id="u1", storage_key="photo/u1/c.jpg"),
        Photo(owner_id="u1", storage_key=None),
        Photo(owner_id="u2", storage_key="photo/u2/x.jpg"),
        HeroImage(id="h-global", owner_id=None, storage_key="hero/global/banner.jpg"),
        HeroImage(id="h-u1", owner_id="u1", storage_key="hero/u1/top.jpg"),
    )
    collector = InventoryCollector(store, session_factory, settings, retry_policy)

    scoped = await collector.list_records(AuditScope(owner_id="u1"))
    everything = await collector.list_records(AuditScope())

    assert sorted(r.storage_key for r in scoped) == [
        "hero/u1/top.jpg",
        "photo/u1/a.jpg",
        "photo/u1/b.jpg",
        "photo/u1/c.jpg",
        "profile/u1/me.jpg",
    ]
    assert {r.kind for r in scoped} == {RecordKind.PHOTO, RecordKind.HERO, RecordKind.PROFILE}
    assert len(everything) == 7
    assert any(r.storage_key == "hero/global/banner.jpg" and r.owner_id is None for r in everything)
    hashed = next(r for r in scoped if r.storage_key == "photo/u1/a.jpg")
    assert hashed.content_hash == "h1"


@pytest.mark.asyncio
async def test_collect_returns_both(store, put, session_factory, seed, settings, retry_policy):
    await seed(User(id="u1"))
    await seed(Photo(owner_id="u1", storage_key="photo/u1/a.jpg"))
    await put("photo/u1/a.jpg")
    collector = InventoryCollector(store, session_factory, settings, retry_policy)

    inventory = await collector.collect(AuditScope(owner_id="u1"))

    assert [o.key for o in inventory.objects] == ["photo/u1/a.jpg"]
    assert [r.storage_key for r in inventory.records] == ["photo/u1/a.jpg"]


def test_prefixes_for_scope():
    assert InventoryCollector.prefixes_for(AuditScope()) == [""]
    assert InventoryCollector.prefixes_for(AuditScope(owner_id="u1")) == ["photo/u1/", "hero/u1/", "profile/u1/"]
