"""Friend relationship state machine.

Per peer the book moves through::

    Unrelated -> PendingOutgoing -> Friend
    Unrelated -> PendingIncoming -> Friend
    Friend / Pending* -> Unrelated

There is no direct Unrelated -> Friend edge. Operations never do I/O: they
mutate the book and return the :class:`Outbound` messages the caller must
deliver.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Callable

import structlog

from whereabouts.errors import InvalidArgumentError, InvalidTransitionError, NotFoundError
from whereabouts.schemas.friends import (
    DEFAULT_INCOMING_TIER,
    Direction,
    Friend,
    GranularityTier,
    PendingRequest,
)
from whereabouts.schemas.messages import FriendRequest, FriendResponse, Outbound, Ping

logger = structlog.get_logger()

_PEER_ID_PATTERN = re.compile(r"^[^\s]{1,256}$")


def validate_peer_id(peer_id: object) -> str:
    """Return ``peer_id`` if it is a usable identifier, else raise."""
    if not isinstance(peer_id, str) or not _PEER_ID_PATTERN.match(peer_id):
        raise InvalidArgumentError(f"malformed peer id {peer_id!r}")
    return peer_id


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RelationshipBook:
    """Accepted friends, pending requests and custom peer lists.

    At most one pending entry exists per ``(peer_id, direction)``.
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        self._clock = clock
        self._friends: dict[str, Friend] = {}
        self._pending: dict[tuple[str, Direction], PendingRequest] = {}
        self._lists: dict[str, list[str]] = {}

    # --- Queries ---

    def is_friend(self, peer_id: str) -> bool:
        return peer_id in self._friends

    def get_friend(self, peer_id: str) -> Friend | None:
        return self._friends.get(peer_id)

    def tier_for(self, peer_id: str) -> GranularityTier | None:
        friend = self._friends.get(peer_id)
        return friend.tier if friend else None

    def friends(self) -> list[Friend]:
        return sorted(self._friends.values(), key=lambda f: f.peer_id)

    def pending(self, direction: Direction | None = None) -> list[PendingRequest]:
        entries = [
            entry for (_, d), entry in self._pending.items()
            if direction is None or d is direction
        ]
        return sorted(entries, key=lambda e: (e.created_at, e.peer_id))

    def get_pending(self, peer_id: str, direction: Direction) -> PendingRequest | None:
        return self._pending.get((peer_id, direction))

    def custom_lists(self) -> dict[str, list[str]]:
        return {name: list(members) for name, members in self._lists.items()}

    # --- Transitions ---

    def send_request(self, peer_id: str, tier: GranularityTier) -> list[Outbound]:
        """Ask ``peer_id`` for friendship, declaring the tier we will grant."""
        validate_peer_id(peer_id)
        if peer_id in self._friends:
            raise InvalidTransitionError(f"{peer_id} is already a friend")

        if (peer_id, Direction.INCOMING) in self._pending:
            # They asked first; our request is an acceptance.
            logger.info("friend_request_crossed", peer_id=peer_id, tier=tier.value)
            return self.accept(peer_id, tier)

        replaced = (peer_id, Direction.OUTGOING) in self._pending
        self._pending[(peer_id, Direction.OUTGOING)] = PendingRequest(
            peer_id=peer_id,
            tier=tier,
            is_local_origin=True,
            created_at=self._clock(),
        )
        logger.info("friend_request_sent", peer_id=peer_id, tier=tier.value, replaced=replaced)
        return [Outbound(peer_id, FriendRequest())]

    def receive_request(self, peer_id: str) -> list[Outbound]:
        """Record an inbound friend request from ``peer_id``."""
        validate_peer_id(peer_id)
        if peer_id in self._friends:
            # Their view lags ours (e.g. our response was lost); confirm again.
            return [Outbound(peer_id, FriendResponse())]

        outgoing = self._pending.pop((peer_id, Direction.OUTGOING), None)
        if outgoing is not None:
            self._pending.pop((peer_id, Direction.INCOMING), None)
            self._add_friend(peer_id, outgoing.tier)
            logger.info("friend_request_mutual", peer_id=peer_id, tier=outgoing.tier.value)
            return [Outbound(peer_id, FriendResponse())]

        if (peer_id, Direction.INCOMING) not in self._pending:
            self._pending[(peer_id, Direction.INCOMING)] = PendingRequest(
                peer_id=peer_id,
                tier=DEFAULT_INCOMING_TIER,
                is_local_origin=False,
                created_at=self._clock(),
            )
        logger.info("friend_request_received", peer_id=peer_id)
        return []

    def accept(self, peer_id: str, tier: GranularityTier) -> list[Outbound]:
        """Accept an incoming request, granting ``tier``."""
        if (peer_id, Direction.INCOMING) not in self._pending:
            if (peer_id, Direction.OUTGOING) in self._pending:
                raise InvalidTransitionError(
                    f"request to {peer_id} was sent by us and can only be accepted by them"
                )
            raise NotFoundError(f"no pending request from {peer_id}")

        del self._pending[(peer_id, Direction.INCOMING)]
        self._pending.pop((peer_id, Direction.OUTGOING), None)
        self._add_friend(peer_id, tier)
        logger.info("friend_request_accepted", peer_id=peer_id, tier=tier.value)
        return [Outbound(peer_id, FriendResponse())]

    def discard_pending(self, peer_id: str) -> list[PendingRequest]:
        """Drop every pending entry for ``peer_id``; returns what was removed."""
        removed: list[PendingRequest] = []
        for direction in (Direction.INCOMING, Direction.OUTGOING):
            entry = self._pending.pop((peer_id, direction), None)
            if entry is not None:
                removed.append(entry)
        if removed:
            logger.info("friend_request_discarded", peer_id=peer_id, count=len(removed))
        return removed

    def reject(self, peer_id: str) -> list[PendingRequest]:
        return self.discard_pending(peer_id)

    def cancel(self, peer_id: str) -> list[PendingRequest]:
        return self.discard_pending(peer_id)

    def complete_outgoing(self, peer_id: str) -> bool:
        """Turn our outgoing request into a friendship once they confirm.

        Returns False when there is nothing to complete, which happens when a
        response arrives after we cancelled.
        """
        outgoing = self._pending.pop((peer_id, Direction.OUTGOING), None)
        if outgoing is None:
            logger.info("friend_response_ignored", peer_id=peer_id)
            return False
        self._pending.pop((peer_id, Direction.INCOMING), None)
        self._add_friend(peer_id, outgoing.tier)
        logger.info("friend_request_completed", peer_id=peer_id, tier=outgoing.tier.value)
        return True

    def remove(self, peer_id: str) -> Friend:
        """Unfriend ``peer_id`` and purge it from every custom list."""
        friend = self._friends.pop(peer_id, None)
        if friend is None:
            raise NotFoundError(f"{peer_id} is not a friend")
        for members in self._lists.values():
            if peer_id in members:
                members.remove(peer_id)
        logger.info("friend_removed", peer_id=peer_id)
        return friend

    def ping(self, peer_id: str) -> list[Outbound]:
        """Ping a peer. Only friends get their ``last_pinged`` refreshed."""
        validate_peer_id(peer_id)
        friend = self._friends.get(peer_id)
        if friend is not None:
            self._friends[peer_id] = friend.model_copy(update={"last_pinged": self._clock()})
        return [Outbound(peer_id, Ping())]

    def set_tier(self, peer_id: str, tier: GranularityTier) -> Friend:
        friend = self._friends.get(peer_id)
        if friend is None:
            raise NotFoundError(f"{peer_id} is not a friend")
        updated = friend.model_copy(update={"tier": tier})
        self._friends[peer_id] = updated
        return updated

    # --- Custom lists ---

    def add_to_list(self, list_name: str, peer_id: str) -> list[str]:
        name = list_name.strip() if isinstance(list_name, str) else ""
        if not name:
            raise InvalidArgumentError("list name must not be empty")
        validate_peer_id(peer_id)
        members = self._lists.setdefault(name, [])
        if peer_id not in members:
            members.append(peer_id)
        return list(members)

    def remove_from_list(self, list_name: str, peer_id: str) -> list[str]:
        members = self._lists.get(list_name)
        if members is None or peer_id not in members:
            raise NotFoundError(f"{peer_id} is not in list '{list_name}'")
        members.remove(peer_id)
        return list(members)

    # --- Persistence ---

    def snapshot(self) -> dict:
        """JSON-ready copy of the whole book."""
        return {
            "friends": [f.model_dump(mode="json") for f in self.friends()],
            "pending": [p.model_dump(mode="json") for p in self.pending()],
            "lists": self.custom_lists(),
        }

    @classmethod
    def restore(cls, data: dict, clock: Callable[[], datetime] = _utcnow) -> RelationshipBook:
        book = cls(clock=clock)
        for raw in data.get("friends", []):
            friend = Friend.model_validate(raw)
            book._friends[friend.peer_id] = friend
        for raw in data.get("pending", []):
            entry = PendingRequest.model_validate(raw)
            if entry.peer_id in book._friends:
                continue
            book._pending[(entry.peer_id, entry.direction)] = entry
        for name, members in data.get("lists", {}).items():
            book._lists[name] = list(dict.fromkeys(members))
        return book

    def _add_friend(self, peer_id: str, tier: GranularityTier) -> None:
        self._friends[peer_id] = Friend(peer_id=peer_id, tier=tier, last_pinged=self._clock())
