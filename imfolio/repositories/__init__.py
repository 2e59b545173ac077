# Data access layer - PostgreSQL repositories
from imfolio.repositories.base import BaseRepository
from imfolio.repositories.hero_images import HeroImageRepository
from imfolio.repositories.owner_scoped import OwnerScopedRepository
from imfolio.repositories.photos import PhotoRepository
from imfolio.repositories.records import KnownRecordRepository
from imfolio.repositories.users import UserRepository

__all__ = [
    "BaseRepository",
    "HeroImageRepository",
    "KnownRecordRepository",
    "OwnerScopedRepository",
    "PhotoRepository",
    "UserRepository",
]
