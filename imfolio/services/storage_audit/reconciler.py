"""
Storage Reconciler

Classifies every object and record of an audit scope:

    matched            object with at least one record pointing at it
    orphaned file      object no record points at
    broken reference   record whose object does not exist
    duplicate content  orphans with identical SHA-256 content
    content drift      matched object whose bytes no longer match the
                       recorded hash (deep verify only)

Hashing is lazy: only orphan candidates are downloaded, plus matched
objects when deep verify is requested. Every list in the report is sorted
so two passes over an unchanged world produce the same report.
"""

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timezone

from imfolio.core.cancellation import CancellationToken
from imfolio.core.keys import GLOBAL_OWNER, matches_prefix
from imfolio.models.contracts.storage import (
    AuditError,
    AuditOptions,
    AuditScope,
    ContentDrift,
    DuplicateGroup,
    KnownRecord,
    OrphanedFile,
    OwnerSummary,
    ReconciliationReport,
    ReportSummary,
    StorageObject,
    UnverifiableObject,
)
from imfolio.models.enums import DuplicateRole
from imfolio.services.storage_audit.analytics import build_recommendations
from imfolio.services.storage_audit.hasher import ContentHasher, HashFailed, HashOk, HashResult
from imfolio.services.storage_audit.object_store import ObjectStore
from imfolio.services.storage_audit.results import Ok, describe
from imfolio.services.storage_audit.retry import RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)


def canonical_sort_key(obj: StorageObject) -> tuple[datetime, str]:
    """Earliest upload wins; key order breaks exact timestamp ties."""
    last_modified = obj.last_modified
    if last_modified.tzinfo is None:
        last_modified = last_modified.replace(tzinfo=timezone.utc)
    return (last_modified, obj.key)


def _record_sort_key(record: KnownRecord) -> tuple[str, str]:
    return (record.kind.value, record.record_id)


def _owner_key(owner_id: str | None) -> str:
    return owner_id or GLOBAL_OWNER


class Reconciler:
    """Turns an inventory into a ReconciliationReport."""

    def __init__(
        self,
        store: ObjectStore,
        hasher: ContentHasher | None = None,
        retry_policy: RetryPolicy | None = None,
        concurrency: int = 6,
    ):
        self._store = store
        self._retry = retry_policy or RetryPolicy()
        self._hasher = hasher or ContentHasher(store, self._retry)
        self._concurrency = concurrency

    async def _hash_all(
        self,
        keys: list[str],
        cancel: CancellationToken | None,
    ) -> dict[str, HashResult]:
        semaphore = asyncio.Semaphore(self._concurrency)

        async def hash_one(key: str) -> HashResult:
            async with semaphore:
                if cancel is not None and cancel.cancelled:
                    return HashFailed(key=key, reason="audit cancelled")
                return await self._hasher.hash(key)

        results = await asyncio.gather(*(hash_one(key) for key in keys))
        return dict(zip(keys, results))

    async def _confirm_missing(
        self,
        candidates: list[KnownRecord],
        errors: list[AuditError],
    ) -> list[KnownRecord]:
        """
        Check candidate broken references one by one.

        Used when the listing was incomplete: a record is only reported as
        broken when the store confirms its object is gone.
        """
        semaphore = asyncio.Semaphore(self._concurrency)
        results: dict[str, object] = {}

        async def check(key: str) -> None:
            async with semaphore:
                results[key] = await call_with_retry(
                    lambda: self._store.exists(key), key, self._retry, description="exists"
                )

        keys = sorted({record.storage_key for record in candidates})
        await asyncio.gather(*(check(key) for key in keys))

        confirmed: list[KnownRecord] = []
        for record in candidates:
            result = results[record.storage_key]
            if isinstance(result, Ok):
                if not result.value:
                    confirmed.append(record)
            else:
                errors.append(
                    AuditError(stage="verification", target=record.storage_key, message=describe(result))
                )
        return confirmed

    async def reconcile(
        self,
        objects: list[StorageObject],
        records: list[KnownRecord],
        options: AuditOptions | None = None,
        scope: AuditScope | None = None,
        complete: bool = True,
        errors: list[AuditError] | None = None,
        cancel: CancellationToken | None = None,
    ) -> ReconciliationReport:
        """
        Classify objects and records.

        Args:
            objects: Listing of the scope (possibly partial)
            records: Database records of the scope
            options: Deep verify flag and excluded prefixes
            scope: Scope the inventory was collected for
            complete: False when the listing stopped early
            errors: Errors already collected (e.g. the failed list page)
            cancel: Stops outstanding downloads; the report is then incomplete
        """
        options = options or AuditOptions()
        scope = scope or AuditScope()
        errors = list(errors or [])

        object_by_key: dict[str, StorageObject] = {}
        for obj in objects:
            object_by_key.setdefault(obj.key, obj)
        records_by_key: dict[str, list[KnownRecord]] = defaultdict(list)
        for record in records:
            records_by_key[record.storage_key].append(record)

        # Records without objects
        missing = [r for r in records if r.storage_key not in object_by_key]
        if complete:
            broken = missing
        else:
            broken = await self._confirm_missing(missing, errors)
        broken.sort(key=_record_sort_key)

        # Objects without records
        candidates: list[StorageObject] = []
        unrecognized: list[StorageObject] = []
        excluded = 0
        for key in sorted(object_by_key):
            if key in records_by_key:
                continue
            obj = object_by_key[key]
            if matches_prefix(key, options.exclude_prefixes):
                excluded += 1
            elif not obj.recognized:
                unrecognized.append(obj)
            else:
                candidates.append(obj)

        # Deep verify covers every matched object whose record carries a hash
        verify_keys: list[str] = []
        if options.deep_verify:
            verify_keys = sorted(
                key for key, recs in records_by_key.items()
                if key in object_by_key and any(r.content_hash for r in recs)
            )

        hashes = await self._hash_all([obj.key for obj in candidates] + verify_keys, cancel)

        unverifiable: list[UnverifiableObject] = []
        orphans: list[OrphanedFile] = []
        by_digest: dict[str, list[StorageObject]] = defaultdict(list)
        for obj in candidates:
            result = hashes[obj.key]
            fields = obj.model_dump()
            if isinstance(result, HashOk):
                if fields["size_bytes"] is None:
                    fields["size_bytes"] = result.size_bytes
                orphan = OrphanedFile(**fields, content_hash=result.digest)
                by_digest[result.digest].append(orphan)
            else:
                orphan = OrphanedFile(**fields)
                unverifiable.append(UnverifiableObject(key=obj.key, reason=result.reason))
            orphans.append(orphan)

        duplicate_groups: dict[str, DuplicateGroup] = {}
        roles: dict[str, DuplicateRole] = {}
        for digest in sorted(by_digest):
            members = sorted(by_digest[digest], key=canonical_sort_key)
            if len(members) < 2:
                continue
            canonical, redundant = members[0], members[1:]
            duplicate_groups[digest] = DuplicateGroup(
                content_hash=digest,
                canonical=StorageObject(**canonical.model_dump(include=set(StorageObject.model_fields))),
                redundant=[
                    StorageObject(**obj.model_dump(include=set(StorageObject.model_fields)))
                    for obj in redundant
                ],
            )
            roles[canonical.key] = DuplicateRole.CANONICAL
            for obj in redundant:
                roles[obj.key] = DuplicateRole.REDUNDANT
        for orphan in orphans:
            orphan.duplicate_role = roles.get(orphan.key)

        drift: list[ContentDrift] = []
        for key in verify_keys:
            result = hashes[key]
            if isinstance(result, HashFailed):
                unverifiable.append(UnverifiableObject(key=key, reason=result.reason, matched=True))
                continue
            for record in sorted(records_by_key[key], key=_record_sort_key):
                if record.content_hash and record.content_hash.lower() != result.digest:
                    drift.append(
                        ContentDrift(record=record, expected_hash=record.content_hash, actual_hash=result.digest)
                    )
        unverifiable.sort(key=lambda item: (item.matched, item.key))

        if cancel is not None and cancel.cancelled:
            complete = False
            errors.append(AuditError(stage="verification", target="*", message=cancel.reason or "cancelled"))

        report = ReconciliationReport(
            scope=scope,
            options=options,
            generated_at=datetime.now(timezone.utc),
            complete=complete,
            orphaned_files=orphans,
            broken_references=broken,
            duplicate_groups=duplicate_groups,
            content_drift=drift,
            unverifiable=unverifiable,
            unrecognized_keys=unrecognized,
            errors=errors,
        )
        report.summary = self._summarize(report, object_by_key, records_by_key, records, excluded)
        report.by_owner = self._partition(report, object_by_key)
        report.recommendations = build_recommendations(report)

        logger.info(
            f"Reconciliation complete: {len(orphans)} orphaned, {len(broken)} broken, "
            f"{len(duplicate_groups)} duplicate group(s), {len(drift)} drifted"
            f"{'' if complete else ' (incomplete)'}"
        )
        return report

    @staticmethod
    def _summarize(
        report: ReconciliationReport,
        object_by_key: dict[str, StorageObject],
        records_by_key: dict[str, list[KnownRecord]],
        records: list[KnownRecord],
        excluded: int,
    ) -> ReportSummary:
        redundant = [obj for group in report.duplicate_groups.values() for obj in group.redundant]
        return ReportSummary(
            total_objects=len(object_by_key),
            total_records=len(records),
            total_bytes=sum(obj.size_bytes or 0 for obj in object_by_key.values()),
            matched=sum(1 for key in object_by_key if key in records_by_key),
            orphaned_files=len(report.orphaned_files),
            orphaned_bytes=sum(obj.size_bytes or 0 for obj in report.orphaned_files),
            broken_references=len(report.broken_references),
            duplicate_groups=len(report.duplicate_groups),
            redundant_files=len(redundant),
            redundant_bytes=sum(obj.size_bytes or 0 for obj in redundant),
            content_drift=len(report.content_drift),
            unverifiable=len(report.unverifiable),
            unrecognized_keys=len(report.unrecognized_keys),
            excluded_keys=excluded,
        )

    @staticmethod
    def _partition(
        report: ReconciliationReport,
        object_by_key: dict[str, StorageObject],
    ) -> dict[str, OwnerSummary]:
        owners: dict[str, OwnerSummary] = {}

        def summary_for(owner_id: str | None) -> OwnerSummary:
            key = _owner_key(owner_id)
            if key not in owners:
                owners[key] = OwnerSummary(owner_id=owner_id)
            return owners[key]

        for obj in object_by_key.values():
            if obj.recognized:
                entry = summary_for(obj.owner_id)
                entry.objects += 1
                entry.bytes += obj.size_bytes or 0
        for orphan in report.orphaned_files:
            entry = summary_for(orphan.owner_id)
            entry.orphaned_files += 1
            entry.orphaned_bytes += orphan.size_bytes or 0
            if orphan.duplicate_role == DuplicateRole.REDUNDANT:
                entry.redundant_files += 1
        for record in report.broken_references:
            summary_for(record.owner_id).broken_references += 1
        for item in report.content_drift:
            summary_for(item.record.owner_id).content_drift += 1

        return {key: owners[key] for key in sorted(owners)}
