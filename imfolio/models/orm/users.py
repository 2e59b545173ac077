"""
User ORM model.

Only the columns the storage engine needs: identity and the profile image
reference. Account management lives elsewhere in the application.
"""

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, String, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from imfolio.models.orm.base import Base

if TYPE_CHECKING:
    from imfolio.models.orm.hero_images import HeroImage
    from imfolio.models.orm.photos import Photo


class User(Base):
    """User database table."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str | None] = mapped_column(String(320), unique=True, default=None)
    profile_image_key: Mapped[str | None] = mapped_column(String(1024), default=None)
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
    photos: Mapped[list["Photo"]] = relationship(back_populates="owner")
    hero_images: Mapped[list["HeroImage"]] = relationship(back_populates="owner")
