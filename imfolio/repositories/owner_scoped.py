"""
Owner-Scoped Repository

Base repository for tables whose rows belong to one user.

Scoping:
    - owner_id set: only rows owned by that user
    - owner_id None: platform-wide, every row including global (NULL owner) rows
"""

from typing import Any, Generic

from sqlalchemy import Select
from sqlalchemy.ext.asyncio import AsyncSession

from imfolio.repositories.base import BaseRepository, ModelT


def _owner_filter(model: Any, owner_id: str) -> Any:
    """Filter by owner_id - bypasses type checking for generic model."""
    return model.owner_id == owner_id


class OwnerScopedRepository(BaseRepository[ModelT], Generic[ModelT]):
    """Repository with owner scoping applied by filter_owner()."""

    def __init__(self, session: AsyncSession, owner_id: str | None = None):
        """
        Args:
            session: SQLAlchemy async session
            owner_id: User id to scope to (None for a platform-wide view)
        """
        super().__init__(session)
        self.owner_id = owner_id

    def filter_owner(self, query: Select[tuple[ModelT]]) -> Select[tuple[ModelT]]:
        if self.owner_id is None:
            return query
        return query.where(_owner_filter(self.model, self.owner_id))
