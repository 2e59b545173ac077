"""
IMFOLIO Models

ORM models (database tables):
    from imfolio.models import Photo, HeroImage, User
    from imfolio.models.orm.photos import Photo  # Granular access

Pydantic contracts (API request/response):
    from imfolio.models.contracts import ReconciliationReport, RepairPolicy
    from imfolio.models.contracts.storage import RepairOutcome  # Granular access

Enums:
    from imfolio.models.enums import RepairAction

Contracts are not re-exported here: they depend on imfolio.core.keys,
which itself imports imfolio.models.enums.
"""

from imfolio.models.orm import Base, HeroImage, Photo, User

__all__ = [
    "Base",
    "User",
    "Photo",
    "HeroImage",
]
