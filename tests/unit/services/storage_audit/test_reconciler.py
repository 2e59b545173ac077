"""Tests for the reconciler."""
import hashlib
from datetime import datetime, timedelta, timezone

import pytest

from imfolio.core.cancellation import CancellationToken
from imfolio.models.contracts.storage import AuditOptions, AuditScope, KnownRecord, StorageObject
from imfolio.models.enums import DuplicateRole, RecordKind
from imfolio.services.storage_audit.reconciler import Reconciler
from imfolio.services.storage_audit.results import TransientError
from tests.helpers.stores import FaultInjectingStore

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def sha(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


def record(key: str, record_id: str = "1", kind: RecordKind = RecordKind.PHOTO, owner: str | None = "u1",
           content_hash: str | None = None) -> KnownRecord:
    return KnownRecord(kind=kind, record_id=record_id, owner_id=owner, storage_key=key, content_hash=content_hash)


@pytest.fixture
def objects(store):
    """Write objects and return their listing entries."""

    async def _objects(*entries: tuple[str, bytes, datetime]) -> list[StorageObject]:
        listed = []
        for key, content, modified in entries:
            await store.upload(key, content)
            listed.append(StorageObject.from_listing(key=key, last_modified=modified, size_bytes=len(content)))
        return listed

    return _objects


def _without_timestamp(report) -> dict:
    return report.model_dump(exclude={"generated_at"})


@pytest.mark.asyncio
async def test_orphan_and_broken_reference(store, objects, retry_policy):
    listed = await objects(
        ("photo/u1/kept.jpg", b"kept", T0),
        ("photo/u1/orphan.jpg", b"orphan", T0),
    )
    records = [record("photo/u1/kept.jpg", "1"), record("photo/u1/missing.jpg", "2")]

    report = await Reconciler(store, retry_policy=retry_policy).reconcile(listed, records)

    assert [o.key for o in report.orphaned_files] == ["photo/u1/orphan.jpg"]
    assert report.orphaned_files[0].content_hash == sha(b"orphan")
    assert report.orphaned_files[0].duplicate_role is None
    assert [r.record_id for r in report.broken_references] == ["2"]
    assert report.duplicate_groups == {}
    assert report.summary.matched == 1
    assert report.summary.orphaned_files == 1
    assert report.summary.orphaned_bytes == len(b"orphan")
    assert report.summary.broken_references == 1
    assert report.complete is True
    assert any("orphaned" in r for r in report.recommendations)


@pytest.mark.asyncio
async def test_duplicate_orphans_earliest_is_canonical(store, objects, retry_policy):
    listed = await objects(
        ("photo/u1/a.jpg", b"same", T0 + timedelta(hours=1)),
        ("photo/u1/b.jpg", b"same", T0),
    )

    report = await Reconciler(store, retry_policy=retry_policy).reconcile(listed, [])

    digest = sha(b"same")
    group = report.duplicate_groups[digest]
    assert group.canonical.key == "photo/u1/b.jpg"
    assert [o.key for o in group.redundant] == ["photo/u1/a.jpg"]
    assert group.reclaimable_bytes == 4
    roles = {o.key: o.duplicate_role for o in report.orphaned_files}
    assert roles == {"photo/u1/a.jpg": DuplicateRole.REDUNDANT, "photo/u1/b.jpg": DuplicateRole.CANONICAL}
    assert report.summary.redundant_files == 1
    assert report.redundant_keys() == {"photo/u1/a.jpg"}
    assert report.canonical_for("photo/u1/a.jpg").key == "photo/u1/b.jpg"


@pytest.mark.asyncio
async def test_duplicate_tie_break_uses_key_order(store, objects, retry_policy):
    listed = await objects(
        ("photo/u1/z.jpg", b"same", T0),
        ("photo/u1/m.jpg", b"same", T0),
        ("photo/u1/a.jpg", b"same", T0),
    )
    reconciler = Reconciler(store, retry_policy=retry_policy)

    forward = await reconciler.reconcile(listed, [])
    backward = await reconciler.reconcile(list(reversed(listed)), [])

    group = forward.duplicate_groups[sha(b"same")]
    assert group.canonical.key == "photo/u1/a.jpg"
    assert [o.key for o in group.redundant] == ["photo/u1/m.jpg", "photo/u1/z.jpg"]
    assert _without_timestamp(forward) == _without_timestamp(backward)


@pytest.mark.asyncio
async def test_report_is_idempotent(store, objects, retry_policy):
    listed = await objects(
        ("photo/u1/a.jpg", b"one", T0),
        ("photo/u1/b.jpg", b"one", T0 + timedelta(minutes=5)),
        ("hero/global/banner.jpg", b"banner", T0),
        ("misc/readme.txt", b"hi", T0),
    )
    records = [record("photo/u2/gone.jpg", "9", owner="u2"), record("hero/global/banner.jpg", "h", RecordKind.HERO, None)]
    reconciler = Reconciler(store, retry_policy=retry_policy)

    first = await reconciler.reconcile(listed, records, AuditOptions(deep_verify=True))
    second = await reconciler.reconcile(listed, records, AuditOptions(deep_verify=True))

    assert _without_timestamp(first) == _without_timestamp(second)


@pytest.mark.asyncio
async def test_excluded_and_unrecognized_keys(store, objects, retry_policy):
    listed = await objects(
        ("assets/logo.png", b"logo", T0),
        ("thumbnails/u1/a.jpg", b"thumb", T0),
        ("photo/u1/a.jpg", b"a", T0),
    )

    report = await Reconciler(store, retry_policy=retry_policy).reconcile(
        listed, [], AuditOptions(exclude_prefixes=["assets/"])
    )

    assert [o.key for o in report.orphaned_files] == ["photo/u1/a.jpg"]
    assert [o.key for o in report.unrecognized_keys] == ["thumbnails/u1/a.jpg"]
    assert report.summary.excluded_keys == 1
    assert report.summary.unrecognized_keys == 1


@pytest.mark.asyncio
async def test_hashing_is_limited_to_orphan_candidates(store, objects, retry_policy):
    listed = await objects(
        ("photo/u1/matched.jpg", b"m", T0),
        ("photo/u1/orphan.jpg", b"o", T0),
    )
    faulty = FaultInjectingStore(store)

    await Reconciler(faulty, retry_policy=retry_policy).reconcile(
        listed, [record("photo/u1/matched.jpg", content_hash=sha(b"m"))]
    )

    assert faulty.count("download", "photo/u1/orphan.jpg") == 1
    assert faulty.count("download", "photo/u1/matched.jpg") == 0


@pytest.mark.asyncio
async def test_deep_verify_reports_drift(store, objects, retry_policy):
    listed = await objects(
        ("photo/u1/ok.jpg", b"ok", T0),
        ("photo/u1/changed.jpg", b"new bytes", T0),
        ("photo/u1/nohash.jpg", b"x", T0),
    )
    records = [
        record("photo/u1/ok.jpg", "1", content_hash=sha(b"ok")),
        record("photo/u1/changed.jpg", "2", content_hash=sha(b"old bytes")),
        record("photo/u1/nohash.jpg", "3"),
    ]
    faulty = FaultInjectingStore(store)

    shallow = await Reconciler(faulty, retry_policy=retry_policy).reconcile(listed, records)
    assert shallow.content_drift == []
    assert faulty.count("download") == 0

    report = await Reconciler(faulty, retry_policy=retry_policy).reconcile(
        listed, records, AuditOptions(deep_verify=True)
    )

    assert len(report.content_drift) == 1
    drift = report.content_drift[0]
    assert drift.record.record_id == "2"
    assert drift.expected_hash == sha(b"old bytes")
    assert drift.actual_hash == sha(b"new bytes")
    assert faulty.count("download", "photo/u1/nohash.jpg") == 0
    assert report.by_owner["u1"].content_drift == 1


@pytest.mark.asyncio
async def test_hash_failures_are_unverifiable(store, objects, retry_policy):
    listed = await objects(
        ("photo/u1/a.jpg", b"same", T0),
        ("photo/u1/b.jpg", b"same", T0),
        ("photo/u1/c.jpg", b"matched", T0),
    )
    faulty = FaultInjectingStore(store)
    faulty.fail_always("download", "photo/u1/b.jpg")
    faulty.fail_always("download", "photo/u1/c.jpg", TransientError("photo/u1/c.jpg", "reset"))

    report = await Reconciler(faulty, retry_policy=retry_policy).reconcile(
        listed,
        [record("photo/u1/c.jpg", content_hash=sha(b"matched"))],
        AuditOptions(deep_verify=True),
    )

    # b could not be hashed, so a has no duplicate to pair with
    assert report.duplicate_groups == {}
    unhashed = next(o for o in report.orphaned_files if o.key == "photo/u1/b.jpg")
    assert unhashed.content_hash is None
    assert [(u.key, u.matched) for u in report.unverifiable] == [("photo/u1/b.jpg", False), ("photo/u1/c.jpg", True)]
    assert report.content_drift == []


@pytest.mark.asyncio
async def test_incomplete_listing_confirms_broken_references(store, objects, retry_policy):
    listed = await objects(("photo/u1/listed.jpg", b"l", T0))
    # Exists in the store but was not part of the partial listing
    await store.upload("photo/u1/unlisted.jpg", b"u")
    records = [
        record("photo/u1/listed.jpg", "1"),
        record("photo/u1/unlisted.jpg", "2"),
        record("photo/u1/gone.jpg", "3"),
    ]

    report = await Reconciler(store, retry_policy=retry_policy).reconcile(listed, records, complete=False)

    assert report.complete is False
    assert [r.record_id for r in report.broken_references] == ["3"]
    assert report.recommendations[0].startswith("The object listing was incomplete")


@pytest.mark.asyncio
async def test_incomplete_listing_unconfirmable_reference_is_an_error(store, objects, retry_policy):
    faulty = FaultInjectingStore(store)
    faulty.fail_always("exists", "photo/u1/maybe.jpg")

    report = await Reconciler(faulty, retry_policy=retry_policy).reconcile(
        [], [record("photo/u1/maybe.jpg")], complete=False
    )

    assert report.broken_references == []
    assert [(e.stage, e.target) for e in report.errors] == [("verification", "photo/u1/maybe.jpg")]


@pytest.mark.asyncio
async def test_partition_by_owner(store, objects, retry_policy):
    listed = await objects(
        ("photo/u1/a.jpg", b"a", T0),
        ("photo/u2/b.jpg", b"bb", T0),
        ("hero/global/banner.jpg", b"ccc", T0),
    )
    records = [record("photo/u1/a.jpg", "1"), record("photo/u2/missing.jpg", "2", owner="u2")]

    report = await Reconciler(store, retry_policy=retry_policy).reconcile(listed, records, scope=AuditScope())

    assert list(report.by_owner) == ["global", "u1", "u2"]
    assert report.by_owner["u1"].objects == 1
    assert report.by_owner["u1"].orphaned_files == 0
    assert report.by_owner["u2"].orphaned_files == 1
    assert report.by_owner["u2"].broken_references == 1
    assert report.by_owner["global"].orphaned_bytes == 3
    assert report.by_owner["global"].owner_id is None


@pytest.mark.asyncio
async def test_cancelled_audit_is_incomplete(store, objects, retry_policy):
    listed = await objects(("photo/u1/a.jpg", b"a", T0))
    cancel = CancellationToken()
    cancel.cancel("shutdown")

    report = await Reconciler(store, retry_policy=retry_policy).reconcile(listed, [], cancel=cancel)

    assert report.complete is False
    assert report.unverifiable[0].reason == "audit cancelled"
    assert report.errors[-1].message == "shutdown"


@pytest.mark.asyncio
async def test_missing_size_is_filled_from_download(store, retry_policy):
    await store.upload("photo/u1/a.jpg", b"12345")
    listed = [StorageObject.from_listing(key="photo/u1/a.jpg", last_modified=T0)]

    report = await Reconciler(store, retry_policy=retry_policy).reconcile(listed, [])

    assert report.orphaned_files[0].size_bytes == 5
