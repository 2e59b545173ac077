"""
Hero Image Repository

Database operations on hero (banner) images. Maintains the rule that a
scope (one owner, or the global NULL-owner scope) has at most one default.
"""

import logging
from typing import AsyncIterator

from sqlalchemy import select

from imfolio.models import HeroImage
from imfolio.models.contracts.storage import KnownRecord
from imfolio.models.enums import RecordKind
from imfolio.repositories.owner_scoped import OwnerScopedRepository

logger = logging.getLogger(__name__)


def hero_to_record(hero: HeroImage) -> KnownRecord:
    return KnownRecord(
        kind=RecordKind.HERO,
        record_id=hero.id,
        owner_id=hero.owner_id,
        storage_key=hero.storage_key or "",
        content_hash=hero.content_hash,
    )


class HeroImageRepository(OwnerScopedRepository[HeroImage]):
    """Repository for hero image rows."""

    model = HeroImage

    async def iter_known_records(self, page_size: int) -> AsyncIterator[KnownRecord]:
        """Yield every in-scope hero image that references a storage key."""
        query = self.filter_owner(select(HeroImage).where(HeroImage.storage_key.is_not(None)))
        async for page in self.iter_pages(query, page_size):
            for hero in page:
                yield hero_to_record(hero)

    async def find_by_storage_key(self, storage_key: str) -> list[HeroImage]:
        result = await self.session.execute(
            self.filter_owner(select(HeroImage).where(HeroImage.storage_key == storage_key))
        )
        return list(result.scalars().all())

    async def create_placeholder(
        self,
        owner_id: str | None,
        storage_key: str,
        content_hash: str | None,
        size_bytes: int | None,
        content_type: str | None,
    ) -> HeroImage:
        """Adopt an orphaned object as an inactive, non-default hero image."""
        hero = HeroImage(
            owner_id=owner_id,
            storage_key=storage_key,
            content_hash=content_hash,
            size_bytes=size_bytes,
            content_type=content_type,
            is_default=False,
            is_active=False,
            needs_review=True,
        )
        hero = await self.create(hero)
        logger.info(f"Created placeholder hero image {hero.id} for {storage_key}")
        return hero

    async def null_reference(self, hero: HeroImage) -> None:
        """Detach a hero from its missing object; a default must not point at nothing."""
        hero.storage_key = None
        hero.content_hash = None
        hero.is_default = False
        await self.session.flush()

    async def reassign(self, hero: HeroImage, storage_key: str) -> None:
        hero.storage_key = storage_key
        hero.content_hash = None
        await self.session.flush()
