"""
Enumeration types used across the application.
"""

from enum import Enum


class ImageCategory(str, Enum):
    """Top-level key segment identifying what an object is"""
    PHOTO = "photo"
    HERO = "hero"
    PROFILE = "profile"


class Visibility(str, Enum):
    """Photo visibility (photos default to private)"""
    PUBLIC = "public"
    PRIVATE = "private"


class RecordKind(str, Enum):
    """Kind of database row that references a storage key"""
    PHOTO = "photo"
    HERO = "hero"
    PROFILE = "profile"


class DuplicateRole(str, Enum):
    """Role of an orphaned file inside a duplicate-content group"""
    CANONICAL = "canonical"
    REDUNDANT = "redundant"


class RepairAction(str, Enum):
    """Terminal action recorded for one item of a repair run"""
    RESTORED = "restored"
    DELETED = "deleted"
    REFERENCE_FIXED = "reference-fixed"
    WOULD_RESTORE = "would-restore"
    WOULD_DELETE = "would-delete"
    WOULD_FIX_REFERENCE = "would-fix-reference"
    SKIPPED = "skipped"
    FAILED = "failed"

    @property
    def live_action(self) -> "RepairAction":
        """Map a dry-run action onto the action a live run would record."""
        return _DRY_RUN_TO_LIVE.get(self, self)

    @property
    def is_dry_run(self) -> bool:
        return self in _DRY_RUN_TO_LIVE


_DRY_RUN_TO_LIVE = {
    RepairAction.WOULD_RESTORE: RepairAction.RESTORED,
    RepairAction.WOULD_DELETE: RepairAction.DELETED,
    RepairAction.WOULD_FIX_REFERENCE: RepairAction.REFERENCE_FIXED,
}


class RepairItemState(str, Enum):
    """Lifecycle of a single item during a repair run"""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    VANISHED = "vanished"


class ReferenceFixMode(str, Enum):
    """Operator decision for a broken reference"""
    NULL = "null"
    REASSIGN = "reassign"
