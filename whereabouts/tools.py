"""Operation implementations exposed through ``/execute``.

Arguments arrive as loosely typed JSON; each operation validates them,
calls the sync driver and returns a JSON-ready dict. Domain errors propagate
to the dispatcher, which turns them into a failed ``ToolResult``.
"""

from __future__ import annotations

import uuid

import structlog
from pydantic import ValidationError

from whereabouts.errors import InvalidArgumentError, NotFoundError
from whereabouts.schemas.friends import (
    DEFAULT_INCOMING_TIER,
    Direction,
    Friend,
    GranularityTier,
    PendingRequest,
)
from whereabouts.schemas.locations import BroadcastReport, Location
from whereabouts.sync import SyncDriver

logger = structlog.get_logger()


def _parse_uuid(value: str, field: str = "location_id") -> uuid.UUID:
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise InvalidArgumentError(f"{field} is not a valid UUID: {value!r}") from None


def _parse_direction(value: str | None) -> Direction | None:
    if value in (None, "", "all"):
        return None
    try:
        return Direction(value)
    except ValueError:
        raise InvalidArgumentError("direction must be 'incoming', 'outgoing' or 'all'") from None


def _friend_dict(friend: Friend) -> dict:
    return friend.model_dump(mode="json")


def _pending_dict(entry: PendingRequest) -> dict:
    data = entry.model_dump(mode="json")
    data["direction"] = entry.direction.value
    return data


def _report_dict(report: BroadcastReport) -> dict:
    return {
        "total": report.total,
        "sent": report.sent,
        "failed": report.failed,
        "summary": report.summary,
    }


class WhereaboutsTools:
    """Local API surface of one peer."""

    def __init__(self, driver: SyncDriver):
        self.driver = driver

    # --- Locations ---

    async def create_or_update_location(
        self,
        start_time: int,
        end_time: int,
        latitude: float,
        longitude: float,
        description: str = "",
        location_id: str | None = None,
    ) -> dict:
        """Publish a location and push it to every friend at their tier."""
        try:
            location = Location(
                id=_parse_uuid(location_id) if location_id else uuid.uuid4(),
                owner=self.driver.peer_id,
                start_time=start_time,
                end_time=end_time,
                description=description,
                latitude=latitude,
                longitude=longitude,
            )
        except ValidationError as e:
            raise InvalidArgumentError(str(e)) from e

        report = await self.driver.create_or_update_location(location)
        return {
            "success": True,
            "location": location.model_dump(mode="json"),
            "broadcast": _report_dict(report),
        }

    async def get_location(self, location_id: str) -> dict:
        location = await self.driver.get_location(_parse_uuid(location_id))
        return {"success": True, "location": location.model_dump(mode="json")}

    async def list_locations(self, start: int | None = None, end: int | None = None) -> dict:
        locations = await self.driver.list_locations(start, end)
        return {
            "locations": [loc.model_dump(mode="json") for loc in locations],
            "count": len(locations),
        }

    async def delete_location(self, location_id: str) -> dict:
        await self.driver.delete_location(_parse_uuid(location_id))
        return {"success": True, "location_id": location_id}

    async def invite_to_location(self, location_id: str, peer_id: str, tier: str | None = None) -> dict:
        shared = await self.driver.invite_to_location(
            _parse_uuid(location_id),
            peer_id,
            GranularityTier.parse(tier) if tier else None,
        )
        return {"success": True, "peer_id": peer_id, "location": shared.model_dump(mode="json")}

    async def nearest_city(self, longitude: float, latitude: float) -> dict:
        city = self.driver.index.nearest(float(longitude), float(latitude))
        if city is None:
            raise NotFoundError("no reference points loaded")
        return {
            "success": True,
            "name": city.name,
            "country": city.country,
            "latitude": city.latitude,
            "longitude": city.longitude,
        }

    # --- Friends ---

    async def send_friend_request(self, peer_id: str, tier: str) -> dict:
        state = await self.driver.send_friend_request(peer_id, GranularityTier.parse(tier))
        if isinstance(state, Friend):
            return {"success": True, "status": "friend", "friend": _friend_dict(state)}
        return {"success": True, "status": "pending", "request": _pending_dict(state)}

    async def accept_friend_request(self, peer_id: str, tier: str | None = None) -> dict:
        granted = GranularityTier.parse(tier) if tier else DEFAULT_INCOMING_TIER
        friend = await self.driver.accept_friend_request(peer_id, granted)
        return {"success": True, "friend": _friend_dict(friend)}

    async def reject_friend_request(self, peer_id: str) -> dict:
        removed = await self.driver.reject_friend_request(peer_id)
        return {"success": True, "removed": [_pending_dict(e) for e in removed]}

    async def cancel_friend_request(self, peer_id: str) -> dict:
        removed = await self.driver.cancel_friend_request(peer_id)
        return {"success": True, "removed": [_pending_dict(e) for e in removed]}

    async def remove_friend(self, peer_id: str) -> dict:
        friend = await self.driver.remove_friend(peer_id)
        return {"success": True, "removed": _friend_dict(friend)}

    async def ping_friend(self, peer_id: str) -> dict:
        is_friend = await self.driver.ping_friend(peer_id)
        return {"success": True, "peer_id": peer_id, "is_friend": is_friend}

    async def set_friend_tier(self, peer_id: str, tier: str) -> dict:
        new_tier = GranularityTier.parse(tier)
        report = await self.driver.set_friend_tier(peer_id, new_tier)
        return {
            "success": True,
            "peer_id": peer_id,
            "tier": new_tier.value,
            "broadcast": _report_dict(report),
        }

    async def list_friends(self) -> dict:
        friends = self.driver.list_friends()
        return {"friends": [_friend_dict(f) for f in friends], "count": len(friends)}

    async def list_pending(self, direction: str | None = None) -> dict:
        entries = self.driver.list_pending(_parse_direction(direction))
        return {"pending": [_pending_dict(e) for e in entries], "count": len(entries)}

    # --- Custom lists ---

    async def add_to_custom_list(self, list_name: str, peer_id: str) -> dict:
        members = await self.driver.add_to_custom_list(list_name, peer_id)
        return {"success": True, "list_name": list_name, "members": members}

    async def remove_from_custom_list(self, list_name: str, peer_id: str) -> dict:
        members = await self.driver.remove_from_custom_list(list_name, peer_id)
        return {"success": True, "list_name": list_name, "members": members}

    async def list_custom_lists(self) -> dict:
        return {"lists": self.driver.list_custom_lists()}
