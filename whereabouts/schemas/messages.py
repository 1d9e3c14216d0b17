"""Peer-to-peer message schemas.

Every message travels inside an :class:`Envelope` whose ``sender`` is filled
in by the transport. Messages are discriminated on ``kind`` so a single JSON
document decodes into the right model.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from whereabouts.schemas.friends import GranularityTier
from whereabouts.schemas.locations import Location


class Ping(BaseModel):
    """Ask a peer for its current situation; friends answer with a Sync."""

    kind: Literal["ping"] = "ping"


class Sync(BaseModel):
    """A batch of already-fuzzed locations to upsert."""

    kind: Literal["sync"] = "sync"
    locations: list[Location] = Field(default_factory=list)


class Invite(BaseModel):
    """A single location shared explicitly with one peer."""

    kind: Literal["invite"] = "invite"
    location: Location


class FriendRequest(BaseModel):
    kind: Literal["friend_request"] = "friend_request"


class FriendResponse(BaseModel):
    kind: Literal["friend_response"] = "friend_response"


PeerMessage = Annotated[
    Union[Ping, Sync, Invite, FriendRequest, FriendResponse],
    Field(discriminator="kind"),
]

peer_message_adapter: TypeAdapter[PeerMessage] = TypeAdapter(PeerMessage)


class Envelope(BaseModel):
    """Transport wrapper carrying the authenticated sender id."""

    sender: str = Field(min_length=1)
    message: PeerMessage


@dataclass(frozen=True)
class Outbound:
    """A message the driver wants delivered to one peer.

    ``tier`` is the tier an invite was explicitly sent at, so a retry can
    rebuild the payload the same way.
    """

    recipient: str
    message: PeerMessage
    tier: GranularityTier | None = None

    @property
    def location_ids(self) -> tuple[uuid.UUID, ...]:
        if isinstance(self.message, Sync):
            return tuple(loc.id for loc in self.message.locations)
        if isinstance(self.message, Invite):
            return (self.message.location.id,)
        return ()
