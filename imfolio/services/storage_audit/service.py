"""
Storage Audit Service

Facade wiring the inventory collector, reconciler, repair executor and
analytics together. The HTTP router and the CLI only talk to this class.

The object store, session factory and lock provider are injected; the
caller owns their lifetime.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from imfolio.config import Settings, get_settings
from imfolio.core.cancellation import CancellationToken
from imfolio.core.exceptions import InventoryIncomplete
from imfolio.core.locks import KeyLockProvider, LocalKeyLocks
from imfolio.models.contracts.storage import (
    AuditError,
    AuditOptions,
    AuditScope,
    ReconciliationReport,
    RepairOutcome,
    RepairPolicy,
    StorageAnalytics,
)
from imfolio.services.storage_audit.analytics import build_analytics
from imfolio.services.storage_audit.hasher import ContentHasher
from imfolio.services.storage_audit.inventory import InventoryCollector
from imfolio.services.storage_audit.object_store import ObjectStore
from imfolio.services.storage_audit.reconciler import Reconciler
from imfolio.services.storage_audit.repair import RepairExecutor, validate_policy
from imfolio.services.storage_audit.retry import RetryPolicy

logger = logging.getLogger(__name__)


class StorageAuditService:
    """Audit, repair and analytics over one object store and database."""

    def __init__(
        self,
        store: ObjectStore,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
        locks: KeyLockProvider | None = None,
    ):
        self.settings = settings or get_settings()
        self.store = store
        retry = RetryPolicy.from_settings(self.settings)
        concurrency = self.settings.storage_concurrency

        self.collector = InventoryCollector(store, session_factory, self.settings, retry)
        self.reconciler = Reconciler(
            store,
            hasher=ContentHasher(store, retry),
            retry_policy=retry,
            concurrency=concurrency,
        )
        self.executor = RepairExecutor(
            store,
            session_factory,
            locks=locks or LocalKeyLocks(),
            retry_policy=retry,
            concurrency=concurrency,
        )

    def _effective_options(self, options: AuditOptions | None) -> AuditOptions:
        options = options or AuditOptions()
        prefixes = sorted(set(options.exclude_prefixes) | set(self.settings.audit_exclude_prefixes_list))
        return options.model_copy(update={"exclude_prefixes": prefixes})

    async def audit(
        self,
        scope: AuditScope,
        options: AuditOptions | None = None,
        cancel: CancellationToken | None = None,
    ) -> ReconciliationReport:
        """
        Run one audit pass. Never cached.

        Raises:
            StorageAccessDenied: The store rejected the credentials
        """
        options = self._effective_options(options)
        records = await self.collector.list_records(scope)

        complete = True
        errors: list[AuditError] = []
        try:
            objects = await self.collector.list_objects(scope)
        except InventoryIncomplete as e:
            logger.warning(f"Audit continues on a partial listing: {e}")
            objects = e.collected
            complete = False
            errors.append(AuditError(stage="inventory", target=e.prefix, message=e.reason))

        return await self.reconciler.reconcile(
            objects,
            records,
            options,
            scope=scope,
            complete=complete,
            errors=errors,
            cancel=cancel,
        )

    async def repair(
        self,
        scope: AuditScope,
        policy: RepairPolicy,
        exclude_prefixes: list[str] | None = None,
        cancel: CancellationToken | None = None,
        report: ReconciliationReport | None = None,
    ) -> RepairOutcome:
        """
        Audit the scope (unless a fresh report is passed) and apply `policy`.

        Raises:
            PolicyViolation: Invalid policy, before any I/O
            StorageAccessDenied: The store rejected the credentials
        """
        validate_policy(policy, scope)
        if report is None:
            report = await self.audit(scope, AuditOptions(exclude_prefixes=exclude_prefixes or []), cancel)
        return await self.executor.repair(report, policy, cancel)

    async def analytics(self, scope: AuditScope) -> StorageAnalytics:
        """
        Usage figures straight from the listing.

        Raises:
            StorageAccessDenied: The store rejected the credentials
            InventoryIncomplete: The listing failed part way
        """
        objects = await self.collector.list_objects(scope)
        return build_analytics(objects, scope)
