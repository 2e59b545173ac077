"""
Pydantic contract models (API request/response).
"""

from imfolio.models.contracts.storage import (
    AuditError,
    AuditOptions,
    AuditScope,
    CategoryUsage,
    ContentDrift,
    DuplicateGroup,
    KnownRecord,
    LargestFile,
    OrphanedFile,
    OwnerSummary,
    OwnerUsage,
    ReconciliationReport,
    ReferenceFix,
    RepairItemOutcome,
    RepairOutcome,
    RepairPolicy,
    RepairRequest,
    ReportSummary,
    StorageAnalytics,
    StorageObject,
    UnverifiableObject,
)

__all__ = [
    "AuditError",
    "AuditOptions",
    "AuditScope",
    "CategoryUsage",
    "ContentDrift",
    "DuplicateGroup",
    "KnownRecord",
    "LargestFile",
    "OrphanedFile",
    "OwnerSummary",
    "OwnerUsage",
    "ReconciliationReport",
    "ReferenceFix",
    "RepairItemOutcome",
    "RepairOutcome",
    "RepairPolicy",
    "RepairRequest",
    "ReportSummary",
    "StorageAnalytics",
    "StorageObject",
    "UnverifiableObject",
]
