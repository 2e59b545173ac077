"""
IMFOLIO storage reconciliation engine.

Audits the photo, hero-image and profile-image records of the portfolio
platform against the object store and repairs drift on request.
"""

__version__ = "0.1.0"
