"""
Storage Audit Router

Admin endpoints for storage reconciliation: audit, repair and analytics.
Platform admin resource; access control is enforced in front of the API.
"""

import logging
from typing import Annotated, AsyncGenerator

from fastapi import APIRouter, Depends, HTTPException, Query, status

from imfolio.config import get_settings
from imfolio.core.database import get_session_factory
from imfolio.core.exceptions import InventoryIncomplete, PolicyViolation, StorageAccessDenied
from imfolio.core.locks import get_key_locks
from imfolio.models.contracts.storage import (
    AuditOptions,
    AuditScope,
    ReconciliationReport,
    RepairOutcome,
    RepairRequest,
    StorageAnalytics,
)
from imfolio.services.storage_audit.object_store import get_object_store
from imfolio.services.storage_audit.service import StorageAuditService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/storage", tags=["Storage"])


async def get_storage_audit_service() -> AsyncGenerator[StorageAuditService, None]:
    """Service bound to a store opened for the duration of one request."""
    settings = get_settings()
    store = get_object_store(settings)
    async with store:
        yield StorageAuditService(store, get_session_factory(), settings, locks=get_key_locks())


AuditService = Annotated[StorageAuditService, Depends(get_storage_audit_service)]


def _access_denied(e: StorageAccessDenied) -> HTTPException:
    logger.error(f"Object store refused access: {e}")
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Object store refused access; check the storage credentials",
    )


@router.get(
    "/audit",
    response_model=ReconciliationReport,
    summary="Audit storage",
    description="Compare database records against the object store (Platform admin only)",
)
async def audit_storage(
    service: AuditService,
    owner_id: str | None = Query(default=None, description="Restrict the audit to one user"),
    deep_verify: bool = Query(default=False, description="Re-hash matched objects"),
    exclude_prefix: list[str] = Query(default=[], description="Key prefix never reported as orphaned"),
) -> ReconciliationReport:
    """
    Run a fresh audit pass.

    Returns a best-effort report with complete=False when the listing
    failed part way.
    """
    scope = AuditScope(owner_id=owner_id)
    options = AuditOptions(deep_verify=deep_verify, exclude_prefixes=exclude_prefix)
    try:
        return await service.audit(scope, options)
    except StorageAccessDenied as e:
        raise _access_denied(e)
    except Exception as e:
        logger.error(f"Error auditing storage: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to audit storage",
        )


@router.post(
    "/repair",
    response_model=RepairOutcome,
    summary="Repair storage",
    description="Audit then apply a repair policy; dry run by default (Platform admin only)",
)
async def repair_storage(
    service: AuditService,
    request: RepairRequest,
) -> RepairOutcome:
    """
    Apply a repair policy.

    Each item is re-checked right before it is changed; items whose state
    moved since the audit are skipped with a reason.
    """
    scope = AuditScope(owner_id=request.owner_id)
    try:
        return await service.repair(scope, request.policy, exclude_prefixes=request.exclude_prefixes)
    except PolicyViolation as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except StorageAccessDenied as e:
        raise _access_denied(e)
    except Exception as e:
        logger.error(f"Error repairing storage: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to repair storage",
        )


@router.get(
    "/analytics",
    response_model=StorageAnalytics,
    summary="Storage analytics",
    description="File counts and bytes per category and owner (Platform admin only)",
)
async def storage_analytics(
    service: AuditService,
    owner_id: str | None = Query(default=None, description="Restrict to one user"),
) -> StorageAnalytics:
    try:
        return await service.analytics(AuditScope(owner_id=owner_id))
    except StorageAccessDenied as e:
        raise _access_denied(e)
    except InventoryIncomplete as e:
        logger.warning(f"Analytics listing incomplete: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Object store listing failed; try again later",
        )
