"""Relationship schemas — granularity tiers, friends and pending requests."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field

from whereabouts.errors import InvalidArgumentError


class GranularityTier(str, Enum):
    """Precision at which locations are disclosed, most precise first."""

    EXACT = "exact"
    CITY = "city"
    COUNTRY = "country"

    @classmethod
    def parse(cls, value: str | GranularityTier) -> GranularityTier:
        """Parse a tier from its string form.

        Accepts the canonical values plus the legacy friend-type names
        ("best", "close_friend", "acquaintance").
        """
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise InvalidArgumentError(f"tier must be a string, got {type(value).__name__}")
        normalized = value.strip().lower()
        normalized = _TIER_ALIASES.get(normalized, normalized)
        try:
            return cls(normalized)
        except ValueError:
            raise InvalidArgumentError(f"unknown granularity tier '{value}'") from None

    @property
    def rank(self) -> int:
        """0 for the most precise tier."""
        return _TIER_ORDER.index(self)


_TIER_ORDER = [GranularityTier.EXACT, GranularityTier.CITY, GranularityTier.COUNTRY]

_TIER_ALIASES = {
    "best": "exact",
    "city_level": "city",
    "close_friend": "city",
    "country_level": "country",
    "acquaintance": "country",
}

# Tier given to a peer whose request we have not confirmed yet
DEFAULT_INCOMING_TIER = GranularityTier.COUNTRY


class Direction(str, Enum):
    INCOMING = "incoming"
    OUTGOING = "outgoing"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Friend(BaseModel):
    """An accepted relationship."""

    peer_id: str
    tier: GranularityTier
    last_pinged: datetime = Field(default_factory=_now)


class PendingRequest(BaseModel):
    """An unresolved friend request, tagged by which side initiated it."""

    peer_id: str
    tier: GranularityTier
    is_local_origin: bool
    created_at: datetime = Field(default_factory=_now)

    @property
    def direction(self) -> Direction:
        return Direction.OUTGOING if self.is_local_origin else Direction.INCOMING
