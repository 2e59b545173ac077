"""
FastAPI Routers

All API routers for the IMFOLIO storage engine.
"""

from imfolio.routers.storage_audit import router as storage_audit_router

__all__ = [
    "storage_audit_router",
]
