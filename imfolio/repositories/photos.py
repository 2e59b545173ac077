"""
Photo Repository

Database operations on portfolio photos for the storage engine.
"""

import logging
from typing import AsyncIterator

from sqlalchemy import select

from imfolio.models import Photo
from imfolio.models.contracts.storage import KnownRecord
from imfolio.models.enums import RecordKind, Visibility
from imfolio.repositories.owner_scoped import OwnerScopedRepository

logger = logging.getLogger(__name__)


def photo_to_record(photo: Photo) -> KnownRecord:
    return KnownRecord(
        kind=RecordKind.PHOTO,
        record_id=str(photo.id),
        owner_id=photo.owner_id,
        storage_key=photo.storage_key or "",
        content_hash=photo.content_hash,
    )


class PhotoRepository(OwnerScopedRepository[Photo]):
    """Repository for photo rows."""

    model = Photo

    async def iter_known_records(self, page_size: int) -> AsyncIterator[KnownRecord]:
        """Yield every in-scope photo that references a storage key."""
        query = self.filter_owner(select(Photo).where(Photo.storage_key.is_not(None)))
        async for page in self.iter_pages(query, page_size):
            for photo in page:
                yield photo_to_record(photo)

    async def get_photo(self, record_id: str) -> Photo | None:
        try:
            photo_id = int(record_id)
        except ValueError:
            return None
        return await self.get_by_id(photo_id)

    async def find_by_storage_key(self, storage_key: str) -> list[Photo]:
        result = await self.session.execute(
            self.filter_owner(select(Photo).where(Photo.storage_key == storage_key))
        )
        return list(result.scalars().all())

    async def create_placeholder(
        self,
        owner_id: str,
        storage_key: str,
        content_hash: str | None,
        size_bytes: int | None,
        content_type: str | None,
    ) -> Photo:
        """
        Adopt an orphaned object as a photo.

        Only verified facts are filled in: no title or description is
        invented, the photo is private and flagged for review.
        """
        photo = Photo(
            owner_id=owner_id,
            storage_key=storage_key,
            content_hash=content_hash,
            size_bytes=size_bytes,
            content_type=content_type,
            visibility=Visibility.PRIVATE,
            featured=False,
            needs_review=True,
        )
        photo = await self.create(photo)
        logger.info(f"Created placeholder photo {photo.id} for {storage_key}")
        return photo

    async def null_reference(self, photo: Photo) -> None:
        """Detach a photo from its missing object; it can no longer be shown."""
        photo.storage_key = None
        photo.content_hash = None
        photo.visibility = Visibility.PRIVATE
        photo.featured = False
        await self.session.flush()

    async def reassign(self, photo: Photo, storage_key: str) -> None:
        photo.storage_key = storage_key
        # The recorded hash described the lost object
        photo.content_hash = None
        await self.session.flush()
