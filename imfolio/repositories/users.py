"""
User Repository

Profile image references stored on the users table.
"""

from typing import AsyncIterator

from sqlalchemy import select

from imfolio.models import User
from imfolio.models.contracts.storage import KnownRecord
from imfolio.models.enums import RecordKind
from imfolio.repositories.base import BaseRepository


def profile_to_record(user: User) -> KnownRecord:
    return KnownRecord(
        kind=RecordKind.PROFILE,
        record_id=user.id,
        owner_id=user.id,
        storage_key=user.profile_image_key or "",
    )


class UserRepository(BaseRepository[User]):
    """Repository for users and their profile image key."""

    model = User

    def __init__(self, session, owner_id: str | None = None):
        super().__init__(session)
        self.owner_id = owner_id

    def _scoped(self, query):
        if self.owner_id is None:
            return query
        return query.where(User.id == self.owner_id)

    async def iter_known_records(self, page_size: int) -> AsyncIterator[KnownRecord]:
        """Yield a profile record for every in-scope user with a profile image."""
        query = self._scoped(select(User).where(User.profile_image_key.is_not(None)))
        async for page in self.iter_pages(query, page_size):
            for user in page:
                yield profile_to_record(user)

    async def find_by_profile_key(self, storage_key: str) -> list[User]:
        result = await self.session.execute(
            self._scoped(select(User).where(User.profile_image_key == storage_key))
        )
        return list(result.scalars().all())

    async def set_profile_image(self, user: User, storage_key: str | None) -> None:
        user.profile_image_key = storage_key
        await self.session.flush()
