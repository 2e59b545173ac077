"""
Repair Executor

Applies an operator policy to a reconciliation report.

Item lifecycle:
    pending -> confirmed | vanished -> terminal action

Before touching anything, each item is re-checked against the object store
and the database. If the world changed since the audit the item is skipped
with a reason; a store failure marks it failed. Neither stops the batch.

Orphan handling:
    restore_orphans only     -> restore every orphan
    delete_orphans only      -> delete every orphan
    both                     -> restore non-redundant orphans, delete redundant
                                duplicates (only while the canonical copy exists)

An orphan named as the replacement key of a reference fix is not restored
or deleted. Profile orphans are not restored when the owner has more than
one of them, or when the owner's profile reference is being fixed.

Broken references are only changed by an explicit operator decision
(ReferenceFix): null the reference, or reassign it to an existing key that
nothing else references.
"""

import asyncio
import logging
from collections import Counter
from contextlib import AsyncExitStack
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from imfolio.core.cancellation import CancellationToken
from imfolio.core.exceptions import PolicyViolation
from imfolio.core.keys import parse_key
from imfolio.core.locks import KeyLockProvider, KeyLockUnavailable, LocalKeyLocks
from imfolio.models import HeroImage, Photo, User
from imfolio.models.contracts.storage import (
    AuditScope,
    KnownRecord,
    OrphanedFile,
    ReconciliationReport,
    ReferenceFix,
    RepairItemOutcome,
    RepairOutcome,
    RepairPolicy,
)
from imfolio.models.enums import (
    ImageCategory,
    RecordKind,
    ReferenceFixMode,
    RepairAction,
    RepairItemState,
)
from imfolio.repositories.hero_images import HeroImageRepository
from imfolio.repositories.photos import PhotoRepository
from imfolio.repositories.records import KnownRecordRepository
from imfolio.repositories.users import UserRepository
from imfolio.services.storage_audit.object_store import ObjectStore
from imfolio.services.storage_audit.results import NotFound, Ok, StoreResult, describe
from imfolio.services.storage_audit.retry import RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)

_CATEGORY_FOR_KIND = {
    RecordKind.PHOTO: ImageCategory.PHOTO,
    RecordKind.HERO: ImageCategory.HERO,
    RecordKind.PROFILE: ImageCategory.PROFILE,
}

REASON_AWAITING_DECISION = "awaiting operator decision"
REASON_CANCELLED = "cancelled"
REASON_VANISHED = "object no longer exists"
REASON_REPLACEMENT_RESERVED = "named as replacement key by a reference fix"
REASON_PROFILE_AMBIGUOUS = "multiple candidate profile images; operator decision required"
REASON_PROFILE_BEING_FIXED = "profile reference is being fixed in the same run"


class PlannedOperation(str, Enum):
    RESTORE = "restore"
    DELETE = "delete"
    FIX_REFERENCE = "fix-reference"
    SKIP = "skip"


@dataclass
class RepairItem:
    """One unit of work planned from a report."""

    operation: PlannedOperation
    key: str | None = None
    orphan: OrphanedFile | None = None
    record: KnownRecord | None = None
    fix: ReferenceFix | None = None
    canonical_key: str | None = None
    skip_reason: str | None = None
    state: RepairItemState = RepairItemState.PENDING

    def lock_keys(self) -> list[str]:
        keys = set()
        if self.key:
            keys.add(self.key)
        if self.fix is not None and self.fix.replacement_key:
            keys.add(self.fix.replacement_key)
        if self.record is not None:
            keys.add(f"record:{self.record.kind.value}:{self.record.record_id}")
        if self.operation == PlannedOperation.RESTORE and self.key:
            parts = parse_key(self.key)
            # A profile restore writes the owner row
            if parts is not None and parts.category == ImageCategory.PROFILE:
                keys.add(f"record:{RecordKind.PROFILE.value}:{parts.owner_id}")
        return sorted(keys)

    def outcome(self, action: RepairAction, **kwargs) -> RepairItemOutcome:
        return RepairItemOutcome(
            target_key=self.key,
            target_id=self.record.record_id if self.record else None,
            record_kind=self.record.kind if self.record else None,
            action=action,
            state=self.state,
            **kwargs,
        )


class _Skip(Exception):
    """Internal: confirmation found the world changed."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class _Fail(Exception):
    """Internal: a store call failed after retries."""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(detail)


def validate_policy(policy: RepairPolicy, scope: AuditScope | None = None) -> None:
    """
    Reject an invalid policy before any I/O.

    Raises:
        PolicyViolation: With a message naming the first problem found
    """
    if not (policy.restore_orphans or policy.delete_orphans or policy.fix_broken_references):
        raise PolicyViolation("Repair policy enables no action")

    if policy.reference_fixes and not policy.fix_broken_references:
        raise PolicyViolation("reference_fixes given but fix_broken_references is not set")

    seen: set[tuple[RecordKind, str]] = set()
    replacements: set[str] = set()
    for fix in policy.reference_fixes:
        ident = (fix.kind, fix.record_id)
        if ident in seen:
            raise PolicyViolation(f"More than one decision for {fix.kind.value} {fix.record_id}")
        seen.add(ident)

        if fix.mode != ReferenceFixMode.REASSIGN:
            continue
        parts = parse_key(fix.replacement_key or "")
        if parts is None:
            raise PolicyViolation(f"Replacement key is not a valid storage key: {fix.replacement_key!r}")
        if parts.category != _CATEGORY_FOR_KIND[fix.kind]:
            raise PolicyViolation(
                f"Replacement key {fix.replacement_key} is a {parts.category.value} key, "
                f"not usable for a {fix.kind.value} record"
            )
        if scope is not None and scope.owner_id is not None and parts.owner_id != scope.owner_id:
            raise PolicyViolation(
                f"Replacement key {fix.replacement_key} belongs to another owner than {scope.owner_id}"
            )
        if fix.replacement_key in replacements:
            raise PolicyViolation(f"Replacement key {fix.replacement_key} is used by more than one decision")
        replacements.add(fix.replacement_key or "")


def _profile_owner(key: str) -> str | None:
    parts = parse_key(key)
    if parts is None or parts.category != ImageCategory.PROFILE:
        return None
    return parts.owner_id


def _plan_orphans(report: ReconciliationReport, policy: RepairPolicy) -> list[RepairItem]:
    redundant = report.redundant_keys()
    both = policy.restore_orphans and policy.delete_orphans
    items: list[RepairItem] = []
    for orphan in sorted(report.orphaned_files, key=lambda o: o.key):
        if both:
            restore = orphan.key not in redundant
        else:
            restore = policy.restore_orphans
        if restore:
            items.append(RepairItem(operation=PlannedOperation.RESTORE, key=orphan.key, orphan=orphan))
        else:
            canonical = report.canonical_for(orphan.key) if both else None
            items.append(
                RepairItem(
                    operation=PlannedOperation.DELETE,
                    key=orphan.key,
                    orphan=orphan,
                    canonical_key=canonical.key if canonical else None,
                )
            )

    replacement_keys: set[str] = set()
    fixed_profiles: set[str] = set()
    if policy.fix_broken_references:
        for fix in policy.reference_fixes:
            if fix.replacement_key:
                replacement_keys.add(fix.replacement_key)
            if fix.kind == RecordKind.PROFILE:
                fixed_profiles.add(fix.record_id)

    restore_owners = [_profile_owner(item.key or "") for item in items if item.operation == PlannedOperation.RESTORE]
    profile_candidates = Counter(owner for owner in restore_owners if owner is not None)

    for item in items:
        reason = None
        if item.key in replacement_keys:
            reason = REASON_REPLACEMENT_RESERVED
        elif item.operation == PlannedOperation.RESTORE:
            owner = _profile_owner(item.key or "")
            if owner is not None and owner in fixed_profiles:
                reason = REASON_PROFILE_BEING_FIXED
            elif owner is not None and profile_candidates[owner] > 1:
                reason = REASON_PROFILE_AMBIGUOUS
        if reason is not None:
            item.operation = PlannedOperation.SKIP
            item.skip_reason = reason
    return items


def plan_repair(report: ReconciliationReport, policy: RepairPolicy) -> list[RepairItem]:
    """
    Turn a report and a policy into an ordered list of items.

    Conflicts between items are settled at planning time, never by lock
    order. An orphan named as a replacement key is left to its reference fix,
    and a profile slot with more than one candidate orphan is left to the
    operator.
    """
    items: list[RepairItem] = []

    if policy.restore_orphans or policy.delete_orphans:
        items.extend(_plan_orphans(report, policy))

    if policy.fix_broken_references:
        fixes = {(fix.kind, fix.record_id): fix for fix in policy.reference_fixes}
        broken_ids = set()
        for record in sorted(report.broken_references, key=lambda r: (r.kind.value, r.record_id)):
            ident = (record.kind, record.record_id)
            broken_ids.add(ident)
            fix = fixes.get(ident)
            if fix is None:
                items.append(
                    RepairItem(
                        operation=PlannedOperation.SKIP,
                        key=record.storage_key,
                        record=record,
                        skip_reason=REASON_AWAITING_DECISION,
                    )
                )
            else:
                items.append(
                    RepairItem(
                        operation=PlannedOperation.FIX_REFERENCE,
                        key=record.storage_key,
                        record=record,
                        fix=fix,
                    )
                )
        for fix in policy.reference_fixes:
            if (fix.kind, fix.record_id) not in broken_ids:
                items.append(
                    RepairItem(
                        operation=PlannedOperation.SKIP,
                        record=KnownRecord(kind=fix.kind, record_id=fix.record_id, storage_key=""),
                        fix=fix,
                        skip_reason="record is not a broken reference in the current audit",
                    )
                )

    return items


class RepairExecutor:
    """Runs planned repair items with bounded concurrency and per-key locks."""

    def __init__(
        self,
        store: ObjectStore,
        session_factory: async_sessionmaker[AsyncSession],
        locks: KeyLockProvider | None = None,
        retry_policy: RetryPolicy | None = None,
        concurrency: int = 6,
    ):
        self._store = store
        self._session_factory = session_factory
        self._locks = locks or LocalKeyLocks()
        self._retry = retry_policy or RetryPolicy()
        self._concurrency = concurrency

    async def repair(
        self,
        report: ReconciliationReport,
        policy: RepairPolicy,
        cancel: CancellationToken | None = None,
    ) -> RepairOutcome:
        """
        Apply `policy` to `report`.

        Raises:
            PolicyViolation: Before any I/O when the policy is invalid
        """
        validate_policy(policy, report.scope)
        cancel = cancel or CancellationToken()
        started_at = datetime.now(timezone.utc)

        items = plan_repair(report, policy)
        semaphore = asyncio.Semaphore(self._concurrency)

        async def run(item: RepairItem) -> RepairItemOutcome:
            if item.operation == PlannedOperation.SKIP:
                return item.outcome(RepairAction.SKIPPED, reason=item.skip_reason)
            async with semaphore:
                if cancel.cancelled:
                    return item.outcome(RepairAction.SKIPPED, reason=REASON_CANCELLED)
                return await self._run_item(item, policy.dry_run)

        outcomes = await asyncio.gather(*(run(item) for item in items))

        outcome = RepairOutcome(
            scope=report.scope,
            dry_run=policy.dry_run,
            cancelled=cancel.cancelled,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
            items=tuple(outcomes),
        )
        logger.info(
            f"Repair {'dry run' if policy.dry_run else 'run'} finished for owner={report.scope.owner_id or '*'}: "
            f"{outcome.summary}"
        )
        if outcome.failures:
            failed = ", ".join(item.target_key or item.target_id or "?" for item in outcome.failures)
            logger.warning(f"Repair left {len(outcome.failures)} failed item(s): {failed}")
        return outcome

    async def _run_item(self, item: RepairItem, dry_run: bool) -> RepairItemOutcome:
        try:
            async with AsyncExitStack() as stack:
                for lock_key in item.lock_keys():
                    await stack.enter_async_context(self._locks.hold(lock_key))
                if item.operation == PlannedOperation.RESTORE:
                    return await self._restore(item, dry_run)
                if item.operation == PlannedOperation.DELETE:
                    return await self._delete(item, dry_run)
                return await self._fix_reference(item, dry_run)
        except _Skip as e:
            logger.info(f"Skipped {item.operation.value} of {item.key or item.record}: {e.reason}")
            return item.outcome(RepairAction.SKIPPED, reason=e.reason)
        except _Fail as e:
            return item.outcome(RepairAction.FAILED, reason="storage error", detail=e.detail)
        except KeyLockUnavailable as e:
            return item.outcome(RepairAction.SKIPPED, reason=str(e))
        except SQLAlchemyError as e:
            logger.error(f"Database error during {item.operation.value} of {item.key}: {e}")
            return item.outcome(RepairAction.FAILED, reason="database error", detail=str(e))
        except Exception as e:
            logger.error(f"Unexpected error during {item.operation.value} of {item.key}: {e}", exc_info=True)
            return item.outcome(RepairAction.FAILED, reason="unexpected error", detail=str(e))

    # =========================================================================
    # Confirmation helpers
    # =========================================================================

    async def _store_call(self, operation, key: str, description: str) -> StoreResult:
        return await call_with_retry(operation, key, self._retry, description=description)

    async def _object_exists(self, key: str) -> bool:
        result = await self._store_call(lambda: self._store.exists(key), key, "exists")
        if isinstance(result, Ok):
            return bool(result.value)
        if isinstance(result, NotFound):
            return False
        raise _Fail(describe(result))

    async def _confirm_object(self, item: RepairItem) -> None:
        if not await self._object_exists(item.key or ""):
            item.state = RepairItemState.VANISHED
            raise _Skip(REASON_VANISHED)

    @staticmethod
    async def _confirm_unreferenced(session: AsyncSession, key: str) -> None:
        references = await KnownRecordRepository(session).references_to(key)
        if references:
            ref = references[0]
            raise _Skip(f"object is now referenced by {ref.kind.value} {ref.record_id}")

    # =========================================================================
    # Restore
    # =========================================================================

    async def _restore(self, item: RepairItem, dry_run: bool) -> RepairItemOutcome:
        key = item.key or ""
        orphan = item.orphan
        parts = parse_key(key)
        if parts is None or orphan is None:
            raise _Skip("key is outside the storage namespace")

        await self._confirm_object(item)

        async with self._session_factory() as session:
            await self._confirm_unreferenced(session, key)

            owner: User | None = None
            if parts.owner_id is not None:
                owner = await UserRepository(session).get_by_id(parts.owner_id)
                if owner is None:
                    raise _Skip(f"owner {parts.owner_id} does not exist")

            if parts.category == ImageCategory.PROFILE and owner is not None and owner.profile_image_key:
                raise _Skip("user already has a profile image")

            item.state = RepairItemState.CONFIRMED
            if dry_run:
                return item.outcome(RepairAction.WOULD_RESTORE, detail=parts.category.value)

            new_id = await self._create_placeholder(session, parts.category, parts.owner_id, owner, orphan)
            await session.commit()

        logger.info(f"Restored {key} as {parts.category.value} {new_id}")
        return item.outcome(RepairAction.RESTORED, detail=parts.category.value, new_record_id=new_id)

    @staticmethod
    async def _create_placeholder(
        session: AsyncSession,
        category: ImageCategory,
        owner_id: str | None,
        owner: User | None,
        orphan: OrphanedFile,
    ) -> str:
        if category == ImageCategory.PHOTO:
            photo = await PhotoRepository(session).create_placeholder(
                owner_id=owner_id or "",
                storage_key=orphan.key,
                content_hash=orphan.content_hash,
                size_bytes=orphan.size_bytes,
                content_type=orphan.content_type,
            )
            return str(photo.id)
        if category == ImageCategory.HERO:
            hero = await HeroImageRepository(session).create_placeholder(
                owner_id=owner_id,
                storage_key=orphan.key,
                content_hash=orphan.content_hash,
                size_bytes=orphan.size_bytes,
                content_type=orphan.content_type,
            )
            return hero.id
        assert owner is not None
        await UserRepository(session).set_profile_image(owner, orphan.key)
        return owner.id

    # =========================================================================
    # Delete
    # =========================================================================

    async def _delete(self, item: RepairItem, dry_run: bool) -> RepairItemOutcome:
        key = item.key or ""
        await self._confirm_object(item)

        async with self._session_factory() as session:
            await self._confirm_unreferenced(session, key)

        if item.canonical_key and not await self._object_exists(item.canonical_key):
            raise _Skip(f"canonical copy {item.canonical_key} no longer exists")

        item.state = RepairItemState.CONFIRMED
        detail = f"duplicate of {item.canonical_key}" if item.canonical_key else None
        if dry_run:
            return item.outcome(RepairAction.WOULD_DELETE, detail=detail)

        result = await self._store_call(lambda: self._store.delete(key), key, "delete")
        if isinstance(result, NotFound):
            item.state = RepairItemState.VANISHED
            raise _Skip(REASON_VANISHED)
        if not isinstance(result, Ok):
            raise _Fail(describe(result))

        logger.info(f"Deleted orphaned object {key}")
        return item.outcome(RepairAction.DELETED, detail=detail)

    # =========================================================================
    # Broken references
    # =========================================================================

    async def _fix_reference(self, item: RepairItem, dry_run: bool) -> RepairItemOutcome:
        record = item.record
        fix = item.fix
        assert record is not None and fix is not None

        async with self._session_factory() as session:
            records = KnownRecordRepository(session)
            row = await records.get_record(record.kind, record.record_id)
            if row is None:
                raise _Skip("record no longer exists")
            current_key = row.profile_image_key if isinstance(row, User) else row.storage_key
            if current_key != record.storage_key:
                raise _Skip("reference changed since the audit")

            if await self._object_exists(record.storage_key):
                raise _Skip("object exists again; reference is no longer broken")

            if fix.mode == ReferenceFixMode.REASSIGN:
                replacement = fix.replacement_key or ""
                parts = parse_key(replacement)
                if parts is None or parts.owner_id != record.owner_id:
                    raise _Skip(f"replacement key {replacement} belongs to a different owner")
                if not await self._object_exists(replacement):
                    raise _Skip(f"replacement key {replacement} does not exist")
                await self._confirm_unreferenced(session, replacement)
                detail = f"reassigned to {replacement}"
            else:
                detail = "reference nulled"

            item.state = RepairItemState.CONFIRMED
            if dry_run:
                return item.outcome(RepairAction.WOULD_FIX_REFERENCE, detail=detail)

            await self._apply_fix(session, row, fix)
            await session.commit()

        logger.info(f"Fixed {record.kind.value} {record.record_id}: {detail}")
        return item.outcome(RepairAction.REFERENCE_FIXED, detail=detail)

    @staticmethod
    async def _apply_fix(session: AsyncSession, row: Photo | HeroImage | User, fix: ReferenceFix) -> None:
        replacement = fix.replacement_key if fix.mode == ReferenceFixMode.REASSIGN else None
        if isinstance(row, Photo):
            repo = PhotoRepository(session)
            if replacement:
                await repo.reassign(row, replacement)
            else:
                await repo.null_reference(row)
        elif isinstance(row, HeroImage):
            hero_repo = HeroImageRepository(session)
            if replacement:
                await hero_repo.reassign(row, replacement)
            else:
                await hero_repo.null_reference(row)
        else:
            await UserRepository(session).set_profile_image(row, replacement)
