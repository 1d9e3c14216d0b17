"""Granularity service — snaps coordinates to known places before sharing.

The reference points are bulk-loaded into an R-tree keyed on
``(longitude, latitude)``. Distances are plain Euclidean in degree space: the
index picks a rounding target, it does not measure travel distance, so no
geodesic correction is applied.
"""

from __future__ import annotations

from typing import Iterable

import structlog
from rtree import index

from whereabouts.catalog import ReferencePoint
from whereabouts.errors import InvalidArgumentError
from whereabouts.schemas.friends import GranularityTier
from whereabouts.schemas.locations import Location

logger = structlog.get_logger()


def _canonical_key(point: ReferencePoint) -> tuple:
    return (point.longitude, point.latitude, point.name, point.country)


def _distance_2(point: ReferencePoint, longitude: float, latitude: float) -> float:
    dx = point.longitude - longitude
    dy = point.latitude - latitude
    return dx * dx + dy * dy


class GranularityIndex:
    """Immutable nearest-neighbour index over reference points.

    Build with :meth:`build`. Safe to share between tasks without locking.
    """

    def __init__(self, points: list[ReferencePoint], tree: index.Index | None):
        self._points = points
        self._tree = tree

    @classmethod
    def build(cls, points: Iterable[ReferencePoint]) -> GranularityIndex:
        """Bulk-load an index.

        Points are sorted into a canonical order first so that neither the
        tree shape nor tie-breaking depends on the order they were supplied in.
        """
        ordered = sorted(points, key=_canonical_key)
        for point in ordered:
            if not point.is_finite:
                raise InvalidArgumentError(f"reference point '{point.name}' has non-finite coordinates")

        tree = None
        if ordered:
            tree = index.Index(
                (i, (p.longitude, p.latitude, p.longitude, p.latitude), None)
                for i, p in enumerate(ordered)
            )
        logger.info("granularity_index_built", points=len(ordered))
        return cls(ordered, tree)

    def __len__(self) -> int:
        return len(self._points)

    @property
    def points(self) -> tuple[ReferencePoint, ...]:
        return tuple(self._points)

    def nearest(self, longitude: float, latitude: float) -> ReferencePoint | None:
        """Return the reference point closest to the query, or None if empty."""
        if self._tree is None:
            return None
        # The tree yields every candidate tied for first place; pick the
        # canonical one among them.
        candidates = self._tree.nearest((longitude, latitude, longitude, latitude), 1)
        best = min(
            candidates,
            key=lambda i: (_distance_2(self._points[i], longitude, latitude), i),
        )
        return self._points[best]

    def fuzz(self, location: Location, tier: GranularityTier) -> Location:
        """Return a copy of ``location`` with coordinates coarsened to ``tier``."""
        if tier is GranularityTier.EXACT:
            return location

        # COUNTRY has no centroid table and shares the nearest-city target.
        city = self.nearest(location.longitude, location.latitude)
        if city is None:
            return location
        return location.with_coordinates(city.longitude, city.latitude)

    def fuzz_batch(self, locations: Iterable[Location], tier: GranularityTier) -> list[Location]:
        """Fuzz every location at the same tier, preserving order."""
        return [self.fuzz(location, tier) for location in locations]
