"""
Storage Reconciliation Models

Pydantic models for storage audits, repair runs and storage analytics.
Everything here is JSON-serializable and returned as-is by the admin API.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

from imfolio.core.keys import guess_content_type, parse_key
from imfolio.models.enums import (
    DuplicateRole,
    ImageCategory,
    RecordKind,
    ReferenceFixMode,
    RepairAction,
    RepairItemState,
)


# ==================== INVENTORY ====================


class StorageObject(BaseModel):
    """An object as reported by the object store listing."""

    key: str = Field(description="Storage key (<category>/<ownerId>/<filename>)")
    size_bytes: int | None = Field(default=None, ge=0, description="Size in bytes, None when unknown")
    last_modified: datetime = Field(description="Last modification time reported by the store")
    content_type: str = Field(description="MIME type, inferred from the extension when not reported")
    category: ImageCategory | None = Field(default=None, description="Category parsed from the key")
    owner_id: str | None = Field(default=None, description="Owner parsed from the key (None for global)")

    @classmethod
    def from_listing(
        cls,
        key: str,
        last_modified: datetime,
        size_bytes: int | None = None,
        content_type: str | None = None,
    ) -> "StorageObject":
        """Build a StorageObject, deriving category/owner from the key namespace."""
        parts = parse_key(key)
        return cls(
            key=key,
            size_bytes=size_bytes,
            last_modified=last_modified,
            content_type=content_type or guess_content_type(key),
            category=parts.category if parts else None,
            owner_id=parts.owner_id if parts else None,
        )

    @property
    def recognized(self) -> bool:
        return self.category is not None


class KnownRecord(BaseModel):
    """A database row that references a storage key."""

    kind: RecordKind
    record_id: str
    owner_id: str | None = None
    storage_key: str
    content_hash: str | None = None


class AuditScope(BaseModel):
    """Audit scope: one owner, or the whole platform when owner_id is None."""

    owner_id: str | None = Field(default=None, description="User id, None for a platform-wide audit")

    @property
    def is_platform_wide(self) -> bool:
        return self.owner_id is None


class AuditOptions(BaseModel):
    """Caller options for an audit pass."""

    deep_verify: bool = Field(
        default=False,
        description="Re-hash every matched object and compare against the recorded hash",
    )
    exclude_prefixes: list[str] = Field(
        default_factory=list,
        description="Key prefixes never reported as orphaned (non-photo assets)",
    )


# ==================== FINDINGS ====================


class OrphanedFile(StorageObject):
    """An object with no database record."""

    content_hash: str | None = Field(default=None, description="SHA-256 of the content, None if unverifiable")
    duplicate_role: DuplicateRole | None = Field(default=None, description="Role inside a duplicate group")


class DuplicateGroup(BaseModel):
    """Orphaned objects sharing identical content."""

    content_hash: str
    canonical: StorageObject
    redundant: list[StorageObject]

    @computed_field
    @property
    def reclaimable_bytes(self) -> int:
        return sum(obj.size_bytes or 0 for obj in self.redundant)


class ContentDrift(BaseModel):
    """A matched record whose object no longer has the recorded content."""

    record: KnownRecord
    expected_hash: str
    actual_hash: str


class UnverifiableObject(BaseModel):
    """An object whose content could not be downloaded for hashing."""

    key: str
    reason: str
    matched: bool = Field(
        default=False,
        description="True when found during deep verify of a matched object",
    )


class AuditError(BaseModel):
    """A failure that made part of the audit best-effort."""

    stage: str = Field(description="inventory or verification")
    target: str = Field(description="Prefix or key the failure applies to")
    message: str


class ReportSummary(BaseModel):
    """Counts and byte totals for one audit pass."""

    total_objects: int = 0
    total_records: int = 0
    total_bytes: int = 0
    matched: int = 0
    orphaned_files: int = 0
    orphaned_bytes: int = 0
    broken_references: int = 0
    duplicate_groups: int = 0
    redundant_files: int = 0
    redundant_bytes: int = 0
    content_drift: int = 0
    unverifiable: int = 0
    unrecognized_keys: int = 0
    excluded_keys: int = 0


class OwnerSummary(BaseModel):
    """Per-owner partition of the findings."""

    owner_id: str | None
    objects: int = 0
    bytes: int = 0
    orphaned_files: int = 0
    orphaned_bytes: int = 0
    broken_references: int = 0
    redundant_files: int = 0
    content_drift: int = 0


class ReconciliationReport(BaseModel):
    """
    Full classification output of one audit pass.

    Built fresh on every request and never cached: repairs change the very
    state a report describes.
    """

    scope: AuditScope
    options: AuditOptions
    generated_at: datetime
    complete: bool = Field(
        default=True,
        description="False when the object listing failed part way; broken references were then confirmed one by one",
    )
    orphaned_files: list[OrphanedFile] = Field(default_factory=list)
    broken_references: list[KnownRecord] = Field(default_factory=list)
    duplicate_groups: dict[str, DuplicateGroup] = Field(default_factory=dict)
    content_drift: list[ContentDrift] = Field(default_factory=list)
    unverifiable: list[UnverifiableObject] = Field(default_factory=list)
    unrecognized_keys: list[StorageObject] = Field(default_factory=list)
    summary: ReportSummary = Field(default_factory=ReportSummary)
    by_owner: dict[str, OwnerSummary] = Field(default_factory=dict)
    errors: list[AuditError] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)

    def redundant_keys(self) -> set[str]:
        """Keys flagged as redundant duplicates."""
        return {obj.key for group in self.duplicate_groups.values() for obj in group.redundant}

    def canonical_for(self, key: str) -> StorageObject | None:
        """Canonical copy of the duplicate group a redundant key belongs to."""
        for group in self.duplicate_groups.values():
            if any(obj.key == key for obj in group.redundant):
                return group.canonical
        return None


# ==================== REPAIR ====================


class ReferenceFix(BaseModel):
    """Operator decision for one broken reference."""

    kind: RecordKind
    record_id: str
    mode: ReferenceFixMode
    replacement_key: str | None = Field(
        default=None,
        description="Existing key to point the record at (reassign only)",
    )

    @model_validator(mode="after")
    def validate_replacement(self) -> "ReferenceFix":
        if self.mode == ReferenceFixMode.REASSIGN and not self.replacement_key:
            raise ValueError("replacement_key is required when mode is 'reassign'")
        if self.mode == ReferenceFixMode.NULL and self.replacement_key:
            raise ValueError("replacement_key is only allowed when mode is 'reassign'")
        return self


class RepairPolicy(BaseModel):
    """What a repair run is allowed to do."""

    dry_run: bool = Field(default=True, description="Check everything, mutate nothing")
    restore_orphans: bool = Field(default=False, description="Adopt orphaned files as placeholder records")
    delete_orphans: bool = Field(
        default=False,
        description="Delete orphaned files (only redundant duplicates when restore_orphans is also set)",
    )
    fix_broken_references: bool = Field(default=False, description="Apply reference_fixes")
    reference_fixes: list[ReferenceFix] = Field(default_factory=list)


class RepairItemOutcome(BaseModel):
    """Result for one item of a repair run."""

    model_config = ConfigDict(frozen=True)

    target_key: str | None = None
    target_id: str | None = None
    record_kind: RecordKind | None = None
    action: RepairAction
    state: RepairItemState = Field(
        default=RepairItemState.PENDING,
        description="How far the item got: confirmed before acting, or found vanished",
    )
    reason: str | None = None
    detail: str | None = None
    new_record_id: str | None = None


class RepairOutcome(BaseModel):
    """Immutable log of one repair invocation."""

    model_config = ConfigDict(frozen=True)

    scope: AuditScope
    dry_run: bool
    cancelled: bool = False
    started_at: datetime
    finished_at: datetime
    items: tuple[RepairItemOutcome, ...] = ()

    @computed_field
    @property
    def summary(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for item in self.items:
            counts[item.action.value] = counts.get(item.action.value, 0) + 1
        return counts

    @property
    def failures(self) -> list[RepairItemOutcome]:
        return [item for item in self.items if item.action == RepairAction.FAILED]


class RepairRequest(BaseModel):
    """Request body for POST /api/admin/storage/repair."""

    owner_id: str | None = Field(default=None, description="User id, None for platform-wide")
    policy: RepairPolicy
    exclude_prefixes: list[str] = Field(default_factory=list)


# ==================== ANALYTICS ====================


class CategoryUsage(BaseModel):
    """File count and bytes for one category."""

    files: int = 0
    bytes: int = 0


class OwnerUsage(BaseModel):
    """Storage used by one owner."""

    owner_id: str | None
    files: int = 0
    bytes: int = 0
    by_category: dict[str, CategoryUsage] = Field(default_factory=dict)


class LargestFile(BaseModel):
    """One entry of the largest-files list."""

    key: str
    size_bytes: int
    category: ImageCategory | None = None


class StorageAnalytics(BaseModel):
    """Storage usage straight from the object store listing."""

    scope: AuditScope
    generated_at: datetime
    total_files: int = 0
    total_bytes: int = 0
    total_bytes_formatted: str = "0 B"
    unknown_size_files: int = 0
    by_category: dict[str, CategoryUsage] = Field(default_factory=dict)
    by_owner: list[OwnerUsage] = Field(default_factory=list)
    largest_files: list[LargestFile] = Field(default_factory=list)
