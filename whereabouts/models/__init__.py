"""SQLAlchemy models."""

from whereabouts.models.base import Base
from whereabouts.models.location import LocationRecord

__all__ = [
    "Base",
    "LocationRecord",
]
