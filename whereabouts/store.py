"""Location store — durable CRUD and range/owner queries over SQLAlchemy."""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Protocol

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from whereabouts.errors import NotFoundError, StorageError
from whereabouts.models.location import LocationRecord
from whereabouts.schemas.locations import Location

logger = structlog.get_logger()


class LocationStore(Protocol):
    """Contract the sync driver relies on."""

    async def insert(self, location: Location) -> None: ...

    async def update(self, location: Location) -> None: ...

    async def upsert(self, location: Location) -> bool: ...

    async def get(self, location_id: uuid.UUID) -> Location | None: ...

    async def get_all(self) -> list[Location]: ...

    async def get_in_range(self, start: int, end: int) -> list[Location]: ...

    async def get_by_owner(self, owner: str) -> list[Location]: ...

    async def delete(self, location_id: uuid.UUID) -> bool: ...


def _to_location(record: LocationRecord) -> Location:
    return Location(
        id=record.id,
        owner=record.owner,
        start_time=record.start_time,
        end_time=record.end_time,
        description=record.description or "",
        latitude=record.latitude,
        longitude=record.longitude,
    )


def _apply(record: LocationRecord, location: Location) -> None:
    record.owner = location.owner
    record.start_time = location.start_time
    record.end_time = location.end_time
    record.description = location.description
    record.latitude = location.latitude
    record.longitude = location.longitude
    record.updated_at = datetime.now(timezone.utc)


class SqlLocationStore:
    """Location store backed by the ``locations`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self.session_factory() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error("location_store_error", operation=operation, error=str(e))
            raise StorageError(f"{operation} failed: {e}") from e

    async def _fetch(self, session: AsyncSession, location_id: uuid.UUID) -> LocationRecord | None:
        result = await session.execute(
            select(LocationRecord).where(LocationRecord.id == location_id)
        )
        return result.scalar_one_or_none()

    async def insert(self, location: Location) -> None:
        async with self._session("insert") as session:
            record = LocationRecord(id=location.id)
            _apply(record, location)
            session.add(record)
            await session.commit()

    async def update(self, location: Location) -> None:
        async with self._session("update") as session:
            record = await self._fetch(session, location.id)
            if record is None:
                raise NotFoundError(f"location {location.id} not found")
            _apply(record, location)
            await session.commit()

    async def upsert(self, location: Location) -> bool:
        """Insert or overwrite by id. Returns True when a new row was created."""
        async with self._session("upsert") as session:
            record = await self._fetch(session, location.id)
            created = record is None
            if created:
                record = LocationRecord(id=location.id)
                session.add(record)
            _apply(record, location)
            await session.commit()
            return created

    async def get(self, location_id: uuid.UUID) -> Location | None:
        async with self._session("get") as session:
            record = await self._fetch(session, location_id)
            return _to_location(record) if record else None

    async def get_all(self) -> list[Location]:
        async with self._session("get_all") as session:
            result = await session.execute(
                select(LocationRecord).order_by(LocationRecord.start_time)
            )
            return [_to_location(r) for r in result.scalars().all()]

    async def get_in_range(self, start: int, end: int) -> list[Location]:
        """Locations whose time range overlaps ``[start, end]``."""
        async with self._session("get_in_range") as session:
            result = await session.execute(
                select(LocationRecord)
                .where(
                    LocationRecord.start_time <= end,
                    LocationRecord.end_time >= start,
                )
                .order_by(LocationRecord.start_time)
            )
            return [_to_location(r) for r in result.scalars().all()]

    async def get_by_owner(self, owner: str) -> list[Location]:
        async with self._session("get_by_owner") as session:
            result = await session.execute(
                select(LocationRecord)
                .where(LocationRecord.owner == owner)
                .order_by(LocationRecord.start_time)
            )
            return [_to_location(r) for r in result.scalars().all()]

    async def delete(self, location_id: uuid.UUID) -> bool:
        async with self._session("delete") as session:
            result = await session.execute(
                delete(LocationRecord).where(LocationRecord.id == location_id)
            )
            await session.commit()
            return bool(result.rowcount)
