"""
Photo ORM model.

A portfolio photo and the object-storage key holding its bytes.
"""

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, Enum as SQLAlchemyEnum, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from imfolio.models.enums import Visibility
from imfolio.models.orm.base import Base

if TYPE_CHECKING:
    from imfolio.models.orm.users import User


class Photo(Base):
    """
    Photo database table.

    storage_key is nullable: an operator may null a broken reference
    instead of deleting the row. Rows created by orphan restore carry no
    title and have needs_review set until a human fills them in.
    """

    __tablename__ = "photos"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    title: Mapped[str | None] = mapped_column(Text, default=None)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    storage_key: Mapped[str | None] = mapped_column(String(1024), default=None)
    content_hash: Mapped[str | None] = mapped_column(String(64), default=None)
    size_bytes: Mapped[int | None] = mapped_column(Integer, default=None)
    content_type: Mapped[str | None] = mapped_column(String(100), default=None)
    visibility: Mapped[Visibility] = mapped_column(
        SQLAlchemyEnum(
            Visibility,
            name="photo_visibility",
            values_callable=lambda x: [e.value for e in x],
        ),
        default=Visibility.PRIVATE,
    )
    featured: Mapped[bool] = mapped_column(Boolean, default=False)
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
    owner: Mapped["User"] = relationship(back_populates="photos")

    __table_args__ = (
        Index("ix_photos_owner_id", "owner_id"),
        Index("ix_photos_storage_key", "storage_key"),
    )
