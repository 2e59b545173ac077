"""
Inventory Collector

Enumerates the objects under an audit scope and the database records of
the same scope. Pagination is consumed here; callers get full lists.
"""

import logging
from dataclasses import dataclass, field
from functools import partial

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from imfolio.config import Settings, get_settings
from imfolio.core.exceptions import InventoryIncomplete, StorageAccessDenied
from imfolio.core.keys import owner_prefixes
from imfolio.models.contracts.storage import AuditScope, KnownRecord, StorageObject
from imfolio.repositories.records import KnownRecordRepository
from imfolio.services.storage_audit.object_store import ListPage, ObjectStore
from imfolio.services.storage_audit.results import Ok, PermissionDenied, describe
from imfolio.services.storage_audit.retry import RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)


@dataclass
class Inventory:
    """Everything known about one scope before classification."""

    objects: list[StorageObject] = field(default_factory=list)
    records: list[KnownRecord] = field(default_factory=list)


class InventoryCollector:
    """Collects the object and record inventory of an audit scope."""

    def __init__(
        self,
        store: ObjectStore,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        self._store = store
        self._session_factory = session_factory
        self._settings = settings or get_settings()
        self._retry = retry_policy or RetryPolicy.from_settings(self._settings)

    @staticmethod
    def prefixes_for(scope: AuditScope) -> list[str]:
        """Listing prefixes covering a scope ("" lists the whole bucket)."""
        if scope.is_platform_wide:
            return [""]
        return owner_prefixes(scope.owner_id)

    async def list_objects(self, scope: AuditScope) -> list[StorageObject]:
        """
        List every object in scope.

        Raises:
            StorageAccessDenied: The store rejected our credentials
            InventoryIncomplete: A page still failed after retries; carries
                the objects collected before the failure
        """
        collected: list[StorageObject] = []
        page_size = self._settings.storage_list_page_size

        for prefix in self.prefixes_for(scope):
            token: str | None = None
            pages = 0
            while True:
                result = await call_with_retry(
                    partial(self._store.list_page, prefix, token, page_size),
                    prefix,
                    self._retry,
                    description="list",
                )
                if isinstance(result, PermissionDenied):
                    raise StorageAccessDenied(prefix, result.message)
                if not isinstance(result, Ok):
                    logger.error(f"Listing of '{prefix}' failed after {pages} page(s): {describe(result)}")
                    raise InventoryIncomplete(prefix, describe(result), collected)

                page: ListPage = result.value
                collected.extend(page.objects)
                pages += 1
                if not page.next_token:
                    break
                token = page.next_token

        logger.info(f"Listed {len(collected)} objects for scope owner={scope.owner_id or '*'}")
        return collected

    async def list_records(self, scope: AuditScope) -> list[KnownRecord]:
        """Every in-scope record referencing a storage key."""
        async with self._session_factory() as session:
            repo = KnownRecordRepository(session, scope.owner_id)
            records = await repo.list_known_records(self._settings.db_page_size)
        logger.info(f"Loaded {len(records)} records for scope owner={scope.owner_id or '*'}")
        return records

    async def collect(self, scope: AuditScope) -> Inventory:
        records = await self.list_records(scope)
        objects = await self.list_objects(scope)
        return Inventory(objects=objects, records=records)
