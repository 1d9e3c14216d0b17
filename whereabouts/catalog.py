"""Reference-point catalog — the fixed set of cities used as fuzzing targets."""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from pathlib import Path

import structlog

from whereabouts.errors import InvalidArgumentError

logger = structlog.get_logger()

BUNDLED_CATALOG = Path(__file__).resolve().parent / "data" / "cities.json"


@dataclass(frozen=True)
class ReferencePoint:
    """A known place that fuzzed coordinates snap to."""

    name: str
    country: str
    latitude: float
    longitude: float

    @property
    def is_finite(self) -> bool:
        return math.isfinite(self.latitude) and math.isfinite(self.longitude)


def parse_reference_points(entries: list) -> list[ReferencePoint]:
    """Turn decoded JSON entries into reference points.

    Entries with missing keys, non-numeric or non-finite coordinates are
    skipped with a warning.
    """
    points: list[ReferencePoint] = []
    for i, entry in enumerate(entries):
        if not isinstance(entry, dict):
            logger.warning("catalog_entry_skipped", index=i, reason="not an object")
            continue
        try:
            point = ReferencePoint(
                name=str(entry["name"]),
                country=str(entry.get("country", "")),
                latitude=float(entry["latitude"]),
                longitude=float(entry["longitude"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("catalog_entry_skipped", index=i, reason=str(e))
            continue
        if not point.is_finite:
            logger.warning("catalog_entry_skipped", index=i, reason="non-finite coordinates")
            continue
        points.append(point)
    return points


def load_reference_points(path: str | Path | None = None) -> list[ReferencePoint]:
    """Load the city catalog from ``path`` or the bundled ``cities.json``."""
    catalog_path = Path(path) if path else BUNDLED_CATALOG
    try:
        raw = json.loads(catalog_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise InvalidArgumentError(f"cannot read catalog '{catalog_path}': {e}") from e

    if not isinstance(raw, list):
        raise InvalidArgumentError(f"catalog '{catalog_path}' must be a JSON array")

    points = parse_reference_points(raw)
    logger.info("catalog_loaded", path=str(catalog_path), points=len(points), skipped=len(raw) - len(points))
    return points
