"""
Storage reconciliation engine: inventory, reconciliation, hashing and repair.
"""

from imfolio.services.storage_audit.object_store import (
    LocalObjectStore,
    ObjectStore,
    S3ObjectStore,
    get_object_store,
)
from imfolio.services.storage_audit.service import StorageAuditService

__all__ = [
    "LocalObjectStore",
    "ObjectStore",
    "S3ObjectStore",
    "StorageAuditService",
    "get_object_store",
]
