"""Sync protocol driver.

The driver owns this peer's relationship book and location store and reacts
to two kinds of events:

* local API calls (publish a location, manage friends, ping, invite),
* inbound peer envelopes (ping, sync, invite, friend request/response).

State changes happen under one ``asyncio.Lock``, and the relationship book is
persisted before the lock is released so snapshots reach Redis in mutation
order. Outbound messages are collected inside the critical section and
delivered after it is released, concurrently and independently per
recipient. A failed persist is raised only after those messages were sent or
handed to the retry hook.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Awaitable, Callable, Iterable

import structlog

from whereabouts.errors import (
    InvalidArgumentError,
    NotFoundError,
    StorageError,
    TransportError,
)
from whereabouts.granularity import GranularityIndex
from whereabouts.relationships import RelationshipBook, validate_peer_id
from whereabouts.schemas.friends import Direction, Friend, GranularityTier, PendingRequest
from whereabouts.schemas.locations import BroadcastReport, Location
from whereabouts.schemas.messages import (
    Envelope,
    FriendRequest,
    FriendResponse,
    Invite,
    Outbound,
    Ping,
    Sync,
)
from whereabouts.store import LocationStore
from whereabouts.transport import Transport

logger = structlog.get_logger()

SendFailedHook = Callable[[Outbound, TransportError], None]
FriendRemovedHook = Callable[[str], object]
PersistHook = Callable[[dict], Awaitable[None]]


def _raise_if(error: Exception | None) -> None:
    if error is not None:
        raise error


class SyncDriver:
    """Stateless dispatcher over (event, relationship state) pairs."""

    def __init__(
        self,
        peer_id: str,
        store: LocationStore,
        index: GranularityIndex,
        transport: Transport,
        book: RelationshipBook | None = None,
        on_send_failed: SendFailedHook | None = None,
        persist: PersistHook | None = None,
        on_friend_removed: FriendRemovedHook | None = None,
    ):
        self.peer_id = validate_peer_id(peer_id)
        self.store = store
        self.index = index
        self.transport = transport
        self.book = book or RelationshipBook()
        self.on_send_failed = on_send_failed
        self.persist = persist
        self.on_friend_removed = on_friend_removed
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def _send_one(self, outbound: Outbound) -> TransportError | None:
        try:
            await self.transport.send(outbound.recipient, outbound.message)
        except TransportError as e:
            logger.warning(
                "peer_send_failed",
                recipient=outbound.recipient,
                kind=outbound.message.kind,
                error=str(e),
            )
            if self.on_send_failed is not None:
                self.on_send_failed(outbound, e)
            return e
        return None

    async def deliver(self, outbounds: Iterable[Outbound]) -> BroadcastReport:
        """Send every message concurrently; one failure never blocks the rest."""
        outbounds = list(outbounds)
        errors = await asyncio.gather(*(self._send_one(o) for o in outbounds))
        report = BroadcastReport(total=len(outbounds))
        for outbound, error in zip(outbounds, errors):
            (report.failed if error else report.sent).append(outbound.recipient)
        return report

    async def _deliver_single(self, outbounds: list[Outbound]) -> None:
        """Deliver messages for a single-recipient operation.

        The state change has already happened; a failed send is handed to the
        retry hook and then surfaced to the caller.
        """
        for outbound in outbounds:
            error = await self._send_one(outbound)
            if error is not None:
                raise error

    async def _save(self) -> StorageError | None:
        """Persist the book. Must be called with the lock held."""
        if self.persist is None:
            return None
        try:
            await self.persist(self.book.snapshot())
        except StorageError as e:
            logger.error("relationships_persist_failed", peer_id=self.peer_id, error=str(e))
            return e
        return None

    async def refresh_outbound(self, outbound: Outbound) -> Outbound | None:
        """Rebuild a queued message against the current state.

        Returns None when the message no longer applies: a sync to a peer that
        is not a friend any more, records that were deleted, a request that
        was cancelled or a response to a friendship that ended. Location
        payloads are re-read from the store and fuzzed at the recipient's
        current tier, so a retry never carries stale records or a finer tier.
        """
        recipient = outbound.recipient
        message = outbound.message
        async with self._lock:
            if isinstance(message, Sync):
                tier = self.book.tier_for(recipient)
                if tier is None:
                    return None
                current = await self._own_records(outbound.location_ids)
                if not current:
                    return None
                return Outbound(recipient, Sync(locations=self.index.fuzz_batch(current, tier)))

            if isinstance(message, Invite):
                current = await self._own_records(outbound.location_ids)
                if not current:
                    return None
                tier = self._invite_tier(recipient, outbound.tier)
                return Outbound(recipient, Invite(location=self.index.fuzz(current[0], tier)), tier=outbound.tier)

            if isinstance(message, FriendRequest):
                if self.book.get_pending(recipient, Direction.OUTGOING) is None:
                    return None
            elif isinstance(message, FriendResponse):
                if not self.book.is_friend(recipient):
                    return None
        return outbound

    async def _own_records(self, location_ids: Iterable[uuid.UUID]) -> list[Location]:
        records = []
        for location_id in location_ids:
            location = await self.store.get(location_id)
            if location is not None and location.owner == self.peer_id:
                records.append(location)
        return records

    def _invite_tier(self, peer_id: str, tier: GranularityTier | None) -> GranularityTier:
        return tier or self.book.tier_for(peer_id) or GranularityTier.EXACT

    # ------------------------------------------------------------------
    # Local location operations
    # ------------------------------------------------------------------

    async def create_or_update_location(self, location: Location) -> BroadcastReport:
        """Persist ``location`` then push it to every friend at their tier.

        The write is never rolled back because of a failed send; failures are
        reported in the returned :class:`BroadcastReport`.
        """
        if location.owner != self.peer_id:
            raise InvalidArgumentError(
                f"location is owned by {location.owner}; only {self.peer_id} can publish it"
            )

        async with self._lock:
            existing = await self.store.get(location.id)
            if existing is None:
                await self.store.insert(location)
            elif existing.owner != self.peer_id:
                raise InvalidArgumentError(
                    f"location {location.id} belongs to {existing.owner} and cannot be edited"
                )
            else:
                await self.store.update(location)

            outbounds = [
                Outbound(friend.peer_id, Sync(locations=[self.index.fuzz(location, friend.tier)]))
                for friend in self.book.friends()
            ]

        report = await self.deliver(outbounds)
        logger.info(
            "location_broadcast",
            location_id=str(location.id),
            created=existing is None,
            sent=len(report.sent),
            total=report.total,
        )
        return report

    async def delete_location(self, location_id: uuid.UUID) -> None:
        async with self._lock:
            if not await self.store.delete(location_id):
                raise NotFoundError(f"location {location_id} not found")
        logger.info("location_deleted", location_id=str(location_id))

    async def get_location(self, location_id: uuid.UUID) -> Location:
        location = await self.store.get(location_id)
        if location is None:
            raise NotFoundError(f"location {location_id} not found")
        return location

    async def list_locations(self, start: int | None = None, end: int | None = None) -> list[Location]:
        """All known locations, or those overlapping ``[start, end]``."""
        if start is None and end is None:
            return await self.store.get_all()
        if start is None or end is None:
            raise InvalidArgumentError("start and end must be given together")
        if end < start:
            raise InvalidArgumentError("end must not be before start")
        return await self.store.get_in_range(start, end)

    async def invite_to_location(
        self,
        location_id: uuid.UUID,
        peer_id: str,
        tier: GranularityTier | None = None,
    ) -> Location:
        """Share one location with one peer.

        Uses ``tier`` when given, else the friend's tier, else exact
        coordinates (the invite is an explicit disclosure).
        """
        validate_peer_id(peer_id)
        async with self._lock:
            location = await self.store.get(location_id)
            if location is None:
                raise NotFoundError(f"location {location_id} not found")
            effective = self._invite_tier(peer_id, tier)
            shared = self.index.fuzz(location, effective)

        await self._deliver_single([Outbound(peer_id, Invite(location=shared), tier=tier)])
        logger.info("location_invite_sent", location_id=str(location_id), peer_id=peer_id, tier=effective.value)
        return shared

    # ------------------------------------------------------------------
    # Local relationship operations
    # ------------------------------------------------------------------

    async def send_friend_request(self, peer_id: str, tier: GranularityTier) -> Friend | PendingRequest:
        validate_peer_id(peer_id)
        if peer_id == self.peer_id:
            raise InvalidArgumentError("cannot befriend yourself")

        async with self._lock:
            outbounds = self.book.send_request(peer_id, tier)
            state = self.book.get_friend(peer_id) or self.book.get_pending(peer_id, Direction.OUTGOING)
            persist_error = await self._save()

        await self._deliver_single(outbounds)
        _raise_if(persist_error)
        return state

    async def accept_friend_request(self, peer_id: str, tier: GranularityTier) -> Friend:
        async with self._lock:
            outbounds = self.book.accept(peer_id, tier)
            friend = self.book.get_friend(peer_id)
            persist_error = await self._save()

        await self._deliver_single(outbounds)
        _raise_if(persist_error)
        return friend

    async def reject_friend_request(self, peer_id: str) -> list[PendingRequest]:
        """Drop a pending request; raises NotFoundError when none exists."""
        async with self._lock:
            removed = self.book.reject(peer_id)
            if not removed:
                raise NotFoundError(f"no pending request for {peer_id}")
            persist_error = await self._save()

        _raise_if(persist_error)
        return removed

    async def cancel_friend_request(self, peer_id: str) -> list[PendingRequest]:
        """Drop a pending request; a no-op when none exists."""
        async with self._lock:
            removed = self.book.cancel(peer_id)
            persist_error = await self._save() if removed else None

        _raise_if(persist_error)
        return removed

    async def remove_friend(self, peer_id: str) -> Friend:
        """Unfriend ``peer_id`` and drop anything still queued for them."""
        async with self._lock:
            friend = self.book.remove(peer_id)
            if self.on_friend_removed is not None:
                self.on_friend_removed(peer_id)
            persist_error = await self._save()

        _raise_if(persist_error)
        return friend

    async def ping_friend(self, peer_id: str) -> bool:
        """Ping ``peer_id``. Returns whether they are a friend."""
        async with self._lock:
            outbounds = self.book.ping(peer_id)
            is_friend = self.book.is_friend(peer_id)
            persist_error = await self._save() if is_friend else None

        await self._deliver_single(outbounds)
        _raise_if(persist_error)
        return is_friend

    async def set_friend_tier(self, peer_id: str, tier: GranularityTier) -> BroadcastReport:
        """Change a friend's tier and resend our locations at the new precision."""
        async with self._lock:
            self.book.set_tier(peer_id, tier)
            persist_error = await self._save()
            mine = await self.store.get_by_owner(self.peer_id)
            outbounds = [Outbound(peer_id, Sync(locations=self.index.fuzz_batch(mine, tier)))]

        report = await self.deliver(outbounds)
        _raise_if(persist_error)
        return report

    def list_friends(self) -> list[Friend]:
        return self.book.friends()

    def list_pending(self, direction: Direction | None = None) -> list[PendingRequest]:
        return self.book.pending(direction)

    async def add_to_custom_list(self, list_name: str, peer_id: str) -> list[str]:
        async with self._lock:
            members = self.book.add_to_list(list_name, peer_id)
            persist_error = await self._save()
        _raise_if(persist_error)
        return members

    async def remove_from_custom_list(self, list_name: str, peer_id: str) -> list[str]:
        async with self._lock:
            members = self.book.remove_from_list(list_name, peer_id)
            persist_error = await self._save()
        _raise_if(persist_error)
        return members

    def list_custom_lists(self) -> dict[str, list[str]]:
        return self.book.custom_lists()

    # ------------------------------------------------------------------
    # Inbound messages
    # ------------------------------------------------------------------

    async def handle_inbound(self, envelope: Envelope) -> None:
        """Dispatch one envelope received from the transport."""
        sender = envelope.sender
        message = envelope.message
        if sender == self.peer_id:
            logger.debug("peer_message_loopback_ignored", kind=message.kind)
            return

        logger.info("peer_message_received", sender=sender, kind=message.kind)
        if isinstance(message, Ping):
            await self._on_ping(sender)
        elif isinstance(message, Sync):
            await self._on_locations(sender, message.locations)
        elif isinstance(message, Invite):
            await self._on_locations(sender, [message.location])
        elif isinstance(message, FriendRequest):
            await self._on_friend_request(sender)
        elif isinstance(message, FriendResponse):
            await self._on_friend_response(sender)

    async def _on_ping(self, sender: str) -> None:
        async with self._lock:
            tier = self.book.tier_for(sender)
            if tier is None:
                logger.info("ping_from_stranger", sender=sender)
                return
            mine = await self.store.get_by_owner(self.peer_id)
            outbounds = [Outbound(sender, Sync(locations=self.index.fuzz_batch(mine, tier)))]

        await self.deliver(outbounds)

    async def _on_locations(self, sender: str, locations: list[Location]) -> None:
        """Upsert records received from ``sender`` without re-fuzzing them."""
        created = updated = skipped = 0
        async with self._lock:
            for location in locations:
                # A peer may only publish records it owns.
                if location.owner != sender:
                    skipped += 1
                    continue
                existing = await self.store.get(location.id)
                if existing is not None and existing.owner != sender:
                    skipped += 1
                    continue
                if await self.store.upsert(location):
                    created += 1
                else:
                    updated += 1

        if skipped:
            logger.warning("peer_locations_skipped", sender=sender, skipped=skipped)
        logger.info("peer_locations_upserted", sender=sender, created=created, updated=updated)

    async def _on_friend_request(self, sender: str) -> None:
        async with self._lock:
            outbounds = self.book.receive_request(sender)
            persist_error = await self._save()

        await self.deliver(outbounds)
        _raise_if(persist_error)

    async def _on_friend_response(self, sender: str) -> None:
        async with self._lock:
            completed = self.book.complete_outgoing(sender)
            persist_error = await self._save() if completed else None

        _raise_if(persist_error)
