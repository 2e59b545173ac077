"""
HeroImage ORM model.

Banner images shown on portfolio pages, either global (owner_id NULL) or
uploaded by a user. At most one hero per scope may be the default.
"""

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from imfolio.models.orm.base import Base

if TYPE_CHECKING:
    from imfolio.models.orm.users import User


class HeroImage(Base):
    """Hero image database table."""

    __tablename__ = "hero_images"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: str(uuid4()))
    owner_id: Mapped[str | None] = mapped_column(ForeignKey("users.id"), default=None)
    title: Mapped[str | None] = mapped_column(Text, default=None)
    storage_key: Mapped[str | None] = mapped_column(String(1024), default=None)
    content_hash: Mapped[str | None] = mapped_column(String(64), default=None)
    size_bytes: Mapped[int | None] = mapped_column(Integer, default=None)
    content_type: Mapped[str | None] = mapped_column(String(100), default=None)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    needs_review: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, server_default=text("CURRENT_TIMESTAMP")
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=datetime.utcnow,
    )

    # Relationships
    owner: Mapped["User | None"] = relationship(back_populates="hero_images")

    __table_args__ = (
        Index("ix_hero_images_owner_id", "owner_id"),
        Index("ix_hero_images_storage_key", "storage_key"),
        # One default per user; the global scope has its own index in the migration
        Index(
            "uq_hero_images_default_per_owner",
            "owner_id",
            unique=True,
            postgresql_where=text("is_default"),
            sqlite_where=text("is_default = 1"),
        ),
    )
