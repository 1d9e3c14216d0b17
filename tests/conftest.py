"""Shared test fixtures for the whereabouts test suite.

Provides an in-memory location store, a recording transport, mock database
sessions and Redis clients, and factories for locations and drivers so tests
can run without Postgres or Redis.
"""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from whereabouts.catalog import ReferencePoint
from whereabouts.errors import TransportError
from whereabouts.granularity import GranularityIndex
from whereabouts.relationships import RelationshipBook
from whereabouts.schemas.locations import Location
from whereabouts.sync import SyncDriver


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class MemoryLocationStore:
    """Dict-backed stand-in honouring the LocationStore contract."""

    def __init__(self):
        self.records: dict[uuid.UUID, Location] = {}

    async def insert(self, location):
        self.records[location.id] = location

    async def update(self, location):
        self.records[location.id] = location

    async def upsert(self, location):
        created = location.id not in self.records
        self.records[location.id] = location
        return created

    async def get(self, location_id):
        return self.records.get(location_id)

    async def get_all(self):
        return sorted(self.records.values(), key=lambda loc: loc.start_time)

    async def get_in_range(self, start, end):
        return [
            loc for loc in await self.get_all()
            if loc.start_time <= end and loc.end_time >= start
        ]

    async def get_by_owner(self, owner):
        return [loc for loc in await self.get_all() if loc.owner == owner]

    async def delete(self, location_id):
        return self.records.pop(location_id, None) is not None


class RecordingTransport:
    """Records every send; recipients in ``unreachable`` fail."""

    def __init__(self):
        self.sent: list[tuple[str, object]] = []
        self.unreachable: set[str] = set()

    async def send(self, recipient, message):
        if recipient in self.unreachable:
            raise TransportError(f"{recipient} is not listening")
        self.sent.append((recipient, message))

    def messages_to(self, recipient):
        return [m for r, m in self.sent if r == recipient]

    def kinds(self):
        return [(r, m.kind) for r, m in self.sent]


class FixedClock:
    """Deterministic clock; ``advance`` moves it forward."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


# ---------------------------------------------------------------------------
# Catalog / index
# ---------------------------------------------------------------------------


PARIS = ReferencePoint(name="Paris", country="France", latitude=48.8566, longitude=2.3522)
LYON = ReferencePoint(name="Lyon", country="France", latitude=45.764, longitude=4.8357)
LONDON = ReferencePoint(name="London", country="United Kingdom", latitude=51.5072, longitude=-0.1276)
BERLIN = ReferencePoint(name="Berlin", country="Germany", latitude=52.52, longitude=13.405)
TOKYO = ReferencePoint(name="Tokyo", country="Japan", latitude=35.6762, longitude=139.6503)


@pytest.fixture
def reference_points():
    return [PARIS, LYON, LONDON, BERLIN, TOKYO]


@pytest.fixture
def index(reference_points):
    return GranularityIndex.build(reference_points)


@pytest.fixture
def empty_index():
    return GranularityIndex.build([])


# ---------------------------------------------------------------------------
# Driver wiring
# ---------------------------------------------------------------------------


@pytest.fixture
def store():
    return MemoryLocationStore()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def make_location():
    """Factory for Location instances."""

    def _make(
        owner: str = "p1",
        latitude: float = 48.85,
        longitude: float = 2.36,
        start_time: int = 1_700_000_000,
        end_time: int = 1_700_086_400,
        description: str = "Somewhere",
        location_id: uuid.UUID | None = None,
    ) -> Location:
        return Location(
            id=location_id or uuid.uuid4(),
            owner=owner,
            start_time=start_time,
            end_time=end_time,
            description=description,
            latitude=latitude,
            longitude=longitude,
        )

    return _make


@pytest.fixture
def make_driver(store, index, transport, clock):
    """Factory for SyncDriver instances sharing the default fakes."""

    def _make(peer_id: str = "p1", **kwargs) -> SyncDriver:
        kwargs.setdefault("book", RelationshipBook(clock=clock))
        return SyncDriver(
            peer_id,
            kwargs.pop("store", store),
            kwargs.pop("index", index),
            kwargs.pop("transport", transport),
            **kwargs,
        )

    return _make


@pytest.fixture
def driver(make_driver):
    return make_driver()


# ---------------------------------------------------------------------------
# Database / Redis mocks
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_db_session():
    """Mock async SQLAlchemy session.

    Supports the patterns used by the store:
        session.execute(stmt) -> result
        session.add(obj)
        session.commit()
    """
    session = AsyncMock()
    session.add = MagicMock()
    default_result = MagicMock()
    default_result.scalar_one_or_none.return_value = None
    default_result.scalars.return_value.all.return_value = []
    session.execute = AsyncMock(return_value=default_result)
    return session


@pytest.fixture
def mock_session_factory(mock_db_session):
    """Mock async session factory compatible with ``async with factory() as session:``."""

    @asynccontextmanager
    async def _session_ctx():
        yield mock_db_session

    factory = MagicMock(side_effect=lambda: _session_ctx())
    return factory


@pytest.fixture
def mock_redis():
    """Mock async Redis client with common operations."""
    redis = AsyncMock()
    redis.get = AsyncMock(return_value=None)
    redis.set = AsyncMock()
    redis.delete = AsyncMock()
    redis.publish = AsyncMock(return_value=1)
    return redis
