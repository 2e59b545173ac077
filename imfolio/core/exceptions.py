"""
Core Exceptions

Custom exceptions for the storage reconciliation engine.

Only conditions that stop an operation as a whole are exceptions. Per-item
problems (a download that timed out, a key that vanished before repair)
are reported as data in the audit report or the repair outcome.
"""


class StorageAuditError(Exception):
    """Base class for reconciliation engine errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class InventoryIncomplete(StorageAuditError):
    """
    Raised when a list page still fails after retries.

    Carries whatever was collected before the failure so the caller can
    build a best-effort report that is explicitly marked incomplete.
    Treating a truncated listing as complete would misclassify every
    unlisted file's record as a broken reference.
    """

    def __init__(self, prefix: str, reason: str, collected: list | None = None):
        self.prefix = prefix
        self.reason = reason
        self.collected = collected or []
        super().__init__(f"Listing of '{prefix}' is incomplete: {reason}")


class StorageAccessDenied(StorageAuditError):
    """Raised when the object store rejects the configured credentials."""

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Object store denied access to '{key}': {reason}")


class PolicyViolation(StorageAuditError):
    """
    Raised when a repair policy is invalid.

    Always raised before any I/O happens.
    """


class InvalidStorageKey(StorageAuditError):
    """Raised when a storage key cannot be built from the given parts."""
