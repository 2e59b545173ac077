"""Tests for storage analytics and recommendations."""
from datetime import datetime, timezone

import pytest

from imfolio.models.contracts.storage import (
    AuditOptions,
    AuditScope,
    ReconciliationReport,
    ReportSummary,
    StorageObject,
)
from imfolio.services.storage_audit.analytics import build_analytics, build_recommendations, format_bytes

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "size,expected",
    [
        (None, "0 B"),
        (0, "0 B"),
        (512, "512 B"),
        (1024, "1.0 KB"),
        (1536, "1.5 KB"),
        (5 * 1024 * 1024, "5.0 MB"),
        (3 * 1024 ** 4, "3.0 TB"),
        (2048 * 1024 ** 4, "2048.0 TB"),
    ],
)
def test_format_bytes(size, expected):
    assert format_bytes(size) == expected


def _obj(key: str, size: int | None) -> StorageObject:
    return StorageObject.from_listing(key=key, last_modified=T0, size_bytes=size)


def test_build_analytics_groups_by_category_and_owner():
    objects = [
        _obj("photo/u1/a.jpg", 100),
        _obj("photo/u1/b.jpg", 300),
        _obj("hero/u1/top.jpg", 50),
        _obj("photo/u2/c.jpg", 1000),
        _obj("hero/global/banner.jpg", 10),
        _obj("misc/readme.txt", 5),
        _obj("profile/u2/me.jpg", None),
    ]

    analytics = build_analytics(objects, AuditScope(), largest_limit=2)

    assert analytics.total_files == 7
    assert analytics.total_bytes == 1465
    assert analytics.total_bytes_formatted == "1.4 KB"
    assert analytics.unknown_size_files == 1
    assert list(analytics.by_category) == ["hero", "photo", "profile", "unrecognized"]
    assert analytics.by_category["photo"].files == 3
    assert analytics.by_category["photo"].bytes == 1400
    assert [(u.owner_id, u.bytes) for u in analytics.by_owner] == [("u2", 1000), ("u1", 450), (None, 10)]
    assert analytics.by_owner[1].by_category["hero"].files == 1
    assert [f.key for f in analytics.largest_files] == ["photo/u2/c.jpg", "photo/u1/b.jpg"]


def test_build_analytics_empty():
    analytics = build_analytics([], AuditScope(owner_id="u1"))
    assert analytics.total_files == 0
    assert analytics.total_bytes_formatted == "0 B"
    assert analytics.by_owner == []
    assert analytics.scope.owner_id == "u1"


def _report(**summary) -> ReconciliationReport:
    return ReconciliationReport(
        scope=AuditScope(),
        options=AuditOptions(),
        generated_at=T0,
        summary=ReportSummary(**summary),
    )


def test_recommendations_for_clean_storage():
    assert build_recommendations(_report()) == ["Storage and database are in sync; no action needed."]


def test_recommendations_cover_each_finding():
    report = _report(
        total_bytes=1000,
        orphaned_files=2,
        orphaned_bytes=500,
        redundant_files=1,
        redundant_bytes=200,
        broken_references=3,
        content_drift=1,
        unverifiable=1,
        unrecognized_keys=4,
    )
    report.complete = False

    recommendations = build_recommendations(report)

    assert recommendations[0].startswith("The object listing was incomplete")
    joined = "\n".join(recommendations)
    assert "2 orphaned file(s) use 500 B" in joined
    assert "exceed 10%" in joined
    assert "1 redundant duplicate(s)" in joined
    assert "3 record(s) point at missing files" in joined
    assert "1 file(s) no longer match" in joined
    assert "could not be downloaded" in joined
    assert "4 key(s) are outside" in joined
