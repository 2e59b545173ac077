"""
Storage analytics and cleanup recommendations.

Usage figures come straight from the object store listing, so they show
what is actually billed, including files the database has lost track of.
"""

from collections import defaultdict
from datetime import datetime, timezone

from imfolio.core.keys import GLOBAL_OWNER
from imfolio.models.contracts.storage import (
    AuditScope,
    CategoryUsage,
    LargestFile,
    OwnerUsage,
    ReconciliationReport,
    StorageAnalytics,
    StorageObject,
)

_UNITS = ["B", "KB", "MB", "GB", "TB"]

UNRECOGNIZED_CATEGORY = "unrecognized"

# Share of audited bytes held by orphans above which cleanup is urged
ORPHAN_BYTES_WARNING_RATIO = 0.10


def format_bytes(size: int | None) -> str:
    """Human-readable size using 1024-based units, e.g. ``1.5 MB``."""
    if not size or size <= 0:
        return "0 B"
    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(_UNITS) - 1:
        value /= 1024
        unit += 1
    if unit == 0:
        return f"{int(value)} B"
    return f"{value:.1f} {_UNITS[unit]}"


def build_analytics(
    objects: list[StorageObject],
    scope: AuditScope,
    largest_limit: int = 10,
) -> StorageAnalytics:
    """Aggregate a listing into per-category and per-owner usage."""
    by_category: dict[str, CategoryUsage] = defaultdict(CategoryUsage)
    owners: dict[str, OwnerUsage] = {}
    total_bytes = 0
    unknown_size = 0

    for obj in objects:
        size = obj.size_bytes or 0
        if obj.size_bytes is None:
            unknown_size += 1
        total_bytes += size

        category = obj.category.value if obj.category else UNRECOGNIZED_CATEGORY
        by_category[category].files += 1
        by_category[category].bytes += size

        if obj.category is None:
            continue
        owner_key = obj.owner_id or GLOBAL_OWNER
        usage = owners.get(owner_key)
        if usage is None:
            usage = owners[owner_key] = OwnerUsage(owner_id=obj.owner_id)
        usage.files += 1
        usage.bytes += size
        category_usage = usage.by_category.setdefault(category, CategoryUsage())
        category_usage.files += 1
        category_usage.bytes += size

    sized = [obj for obj in objects if obj.size_bytes is not None]
    sized.sort(key=lambda obj: (-(obj.size_bytes or 0), obj.key))
    largest = [
        LargestFile(key=obj.key, size_bytes=obj.size_bytes or 0, category=obj.category)
        for obj in sized[:largest_limit]
    ]

    return StorageAnalytics(
        scope=scope,
        generated_at=datetime.now(timezone.utc),
        total_files=len(objects),
        total_bytes=total_bytes,
        total_bytes_formatted=format_bytes(total_bytes),
        unknown_size_files=unknown_size,
        by_category={name: by_category[name] for name in sorted(by_category)},
        by_owner=sorted(owners.values(), key=lambda usage: (-usage.bytes, usage.owner_id or "")),
        largest_files=largest,
    )


def build_recommendations(report: ReconciliationReport) -> list[str]:
    """Operator-facing cleanup suggestions for an audit report."""
    summary = report.summary
    recommendations: list[str] = []

    if not report.complete:
        recommendations.append(
            "The object listing was incomplete; re-run the audit before deleting anything."
        )
    if summary.orphaned_files:
        recommendations.append(
            f"{summary.orphaned_files} orphaned file(s) use {format_bytes(summary.orphaned_bytes)}; "
            "restore them as placeholder records or delete them."
        )
        if summary.total_bytes and summary.orphaned_bytes / summary.total_bytes > ORPHAN_BYTES_WARNING_RATIO:
            recommendations.append(
                "Orphaned files exceed 10% of stored bytes; investigate the upload path for failed database writes."
            )
    if summary.redundant_files:
        recommendations.append(
            f"{summary.redundant_files} redundant duplicate(s) can be deleted to reclaim "
            f"{format_bytes(summary.redundant_bytes)}."
        )
    if summary.broken_references:
        recommendations.append(
            f"{summary.broken_references} record(s) point at missing files; "
            "decide per record whether to null or reassign the reference."
        )
    if summary.content_drift:
        recommendations.append(
            f"{summary.content_drift} file(s) no longer match their recorded hash; review them manually."
        )
    if summary.unverifiable:
        recommendations.append(
            f"{summary.unverifiable} file(s) could not be downloaded for hashing; re-run the audit later."
        )
    if summary.unrecognized_keys:
        recommendations.append(
            f"{summary.unrecognized_keys} key(s) are outside the photo/hero/profile namespace; "
            "add an excluded prefix or remove them by hand."
        )
    if not recommendations:
        recommendations.append("Storage and database are in sync; no action needed.")
    return recommendations
