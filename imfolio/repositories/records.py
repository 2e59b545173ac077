"""
Known Record Repository

One view over every table that references a storage key (photos, hero
images, user profile images), as the uniform KnownRecord the reconciler
consumes.
"""

from sqlalchemy.ext.asyncio import AsyncSession

from imfolio.models.contracts.storage import KnownRecord
from imfolio.models.enums import RecordKind
from imfolio.repositories.hero_images import HeroImageRepository, hero_to_record
from imfolio.repositories.photos import PhotoRepository, photo_to_record
from imfolio.repositories.users import UserRepository, profile_to_record


class KnownRecordRepository:
    """Reads KnownRecords across photos, hero images and profiles."""

    def __init__(self, session: AsyncSession, owner_id: str | None = None):
        self.session = session
        self.owner_id = owner_id
        self.photos = PhotoRepository(session, owner_id)
        self.heroes = HeroImageRepository(session, owner_id)
        self.users = UserRepository(session, owner_id)

    async def list_known_records(self, page_size: int) -> list[KnownRecord]:
        """All in-scope records that carry a storage key, paged from the database."""
        records: list[KnownRecord] = []
        async for record in self.photos.iter_known_records(page_size):
            records.append(record)
        async for record in self.heroes.iter_known_records(page_size):
            records.append(record)
        async for record in self.users.iter_known_records(page_size):
            records.append(record)
        return records

    async def references_to(self, storage_key: str) -> list[KnownRecord]:
        """Every record currently pointing at a key, regardless of owner scope."""
        photos = PhotoRepository(self.session)
        heroes = HeroImageRepository(self.session)
        users = UserRepository(self.session)
        records = [photo_to_record(p) for p in await photos.find_by_storage_key(storage_key)]
        records += [hero_to_record(h) for h in await heroes.find_by_storage_key(storage_key)]
        records += [profile_to_record(u) for u in await users.find_by_profile_key(storage_key)]
        return records

    async def get_record(self, kind: RecordKind, record_id: str):
        """Load the ORM row behind a KnownRecord, None if it no longer exists."""
        if kind == RecordKind.PHOTO:
            return await self.photos.get_photo(record_id)
        if kind == RecordKind.HERO:
            return await self.heroes.get_by_id(record_id)
        return await self.users.get_by_id(record_id)
