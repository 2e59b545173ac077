"""
SQLAlchemy ORM Models for IMFOLIO

Pure database models using SQLAlchemy 2.0 declarative style.
For API schemas, see imfolio.models.contracts.
"""

from imfolio.models.orm.base import Base
from imfolio.models.orm.hero_images import HeroImage
from imfolio.models.orm.photos import Photo
from imfolio.models.orm.users import User

__all__ = [
    "Base",
    "User",
    "Photo",
    "HeroImage",
]
