"""Members Service models package.

Re-exports every model so that ``from services.members_service.models import
Member`` works and SQLAlchemy's mapper registry sees the class on import.
"""

from services.members_service.models.member import Member  # noqa: F401

__all__ = ["Member"]
