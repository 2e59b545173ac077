"""
Base Repository

Generic async repository holding a session and a model class.
"""

from typing import Any, AsyncIterator, Generic, TypeVar

from sqlalchemy import Select
from sqlalchemy.ext.asyncio import AsyncSession

from imfolio.models import Base

ModelT = TypeVar("ModelT", bound=Base)


class BaseRepository(Generic[ModelT]):
    """Common CRUD helpers shared by all repositories."""

    model: type[ModelT]

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, entity_id: Any) -> ModelT | None:
        return await self.session.get(self.model, entity_id)

    async def create(self, entity: ModelT) -> ModelT:
        self.session.add(entity)
        await self.session.flush()
        await self.session.refresh(entity)
        return entity

    async def iter_pages(
        self,
        query: Select[tuple[ModelT]],
        page_size: int,
    ) -> AsyncIterator[list[ModelT]]:
        """
        Yield query results in pages, keyset-paginated on the primary key.

        The query must not carry its own ORDER BY or LIMIT.
        """
        pk = self.model.__mapper__.primary_key[0]
        last_id: Any = None
        while True:
            page_query = query.order_by(pk).limit(page_size)
            if last_id is not None:
                page_query = page_query.where(pk > last_id)
            result = await self.session.execute(page_query)
            rows = list(result.scalars().all())
            if not rows:
                return
            yield rows
            if len(rows) < page_size:
                return
            last_id = getattr(rows[-1], pk.key)
