"""Service manifest — operation definitions for the API layer."""

from whereabouts.schemas.tools import ModuleManifest, ToolDefinition, ToolParameter

TIER_VALUES = ["exact", "city", "country"]

_PEER = ToolParameter(
    name="peer_id",
    type="string",
    description="Identifier of the other peer on the transport",
)
_LOCATION_ID = ToolParameter(
    name="location_id",
    type="string",
    description="UUID of the location",
)


def _tier(description: str, required: bool = True) -> ToolParameter:
    return ToolParameter(
        name="tier",
        type="string",
        description=description,
        required=required,
        enum=TIER_VALUES,
    )


MANIFEST = ModuleManifest(
    module_name="whereabouts",
    description=(
        "Publish personal locations and share them with friends at a per-friend "
        "precision: exact coordinates, nearest city, or country level."
    ),
    tools=[
        ToolDefinition(
            name="whereabouts.create_or_update_location",
            description=(
                "Create a location (or update one when location_id is given) and push it to "
                "every friend, fuzzed to that friend's tier."
            ),
            parameters=[
                ToolParameter(name="start_time", type="integer", description="Start, unix seconds"),
                ToolParameter(name="end_time", type="integer", description="End, unix seconds"),
                ToolParameter(name="latitude", type="number", description="Latitude in degrees"),
                ToolParameter(name="longitude", type="number", description="Longitude in degrees"),
                ToolParameter(
                    name="description",
                    type="string",
                    description="Free text shown to friends",
                    required=False,
                ),
                ToolParameter(
                    name="location_id",
                    type="string",
                    description="UUID of an existing location to update",
                    required=False,
                ),
            ],
        ),
        ToolDefinition(
            name="whereabouts.get_location",
            description="Fetch one location by id.",
            parameters=[_LOCATION_ID],
        ),
        ToolDefinition(
            name="whereabouts.list_locations",
            description="List known locations, optionally only those overlapping [start, end].",
            parameters=[
                ToolParameter(name="start", type="integer", description="Range start, unix seconds", required=False),
                ToolParameter(name="end", type="integer", description="Range end, unix seconds", required=False),
            ],
        ),
        ToolDefinition(
            name="whereabouts.delete_location",
            description="Delete a location from the local store.",
            parameters=[_LOCATION_ID],
        ),
        ToolDefinition(
            name="whereabouts.invite_to_location",
            description=(
                "Share a single location with one peer. Defaults to the friend's tier, "
                "or exact coordinates for non-friends."
            ),
            parameters=[_LOCATION_ID, _PEER, _tier("Override the precision shared", required=False)],
        ),
        ToolDefinition(
            name="whereabouts.nearest_city",
            description="Return the catalog city closest to a coordinate.",
            parameters=[
                ToolParameter(name="longitude", type="number", description="Longitude in degrees"),
                ToolParameter(name="latitude", type="number", description="Latitude in degrees"),
            ],
        ),
        ToolDefinition(
            name="whereabouts.send_friend_request",
            description="Ask a peer to become a friend, declaring the precision they will get.",
            parameters=[_PEER, _tier("Precision granted once the request is accepted")],
        ),
        ToolDefinition(
            name="whereabouts.accept_friend_request",
            description="Accept a request a peer sent us (default tier: country).",
            parameters=[_PEER, _tier("Precision granted to the new friend", required=False)],
        ),
        ToolDefinition(
            name="whereabouts.reject_friend_request",
            description="Reject a pending friend request.",
            parameters=[_PEER],
        ),
        ToolDefinition(
            name="whereabouts.cancel_friend_request",
            description="Withdraw a pending friend request; does nothing if none is pending.",
            parameters=[_PEER],
        ),
        ToolDefinition(
            name="whereabouts.remove_friend",
            description="Unfriend a peer and remove it from every custom list.",
            parameters=[_PEER],
        ),
        ToolDefinition(
            name="whereabouts.ping_friend",
            description="Ping a peer; friends answer with their locations at our tier.",
            parameters=[_PEER],
        ),
        ToolDefinition(
            name="whereabouts.set_friend_tier",
            description="Change a friend's precision and resend our locations to them.",
            parameters=[_PEER, _tier("New precision")],
        ),
        ToolDefinition(
            name="whereabouts.list_friends",
            description="List accepted friends with their tiers.",
            parameters=[],
        ),
        ToolDefinition(
            name="whereabouts.list_pending",
            description="List pending friend requests.",
            parameters=[
                ToolParameter(
                    name="direction",
                    type="string",
                    description='Which requests to list (default "all")',
                    required=False,
                    enum=["incoming", "outgoing", "all"],
                ),
            ],
        ),
        ToolDefinition(
            name="whereabouts.add_to_custom_list",
            description="Add a peer to a named list.",
            parameters=[
                ToolParameter(name="list_name", type="string", description="Name of the list"),
                _PEER,
            ],
        ),
        ToolDefinition(
            name="whereabouts.remove_from_custom_list",
            description="Remove a peer from a named list.",
            parameters=[
                ToolParameter(name="list_name", type="string", description="Name of the list"),
                _PEER,
            ],
        ),
        ToolDefinition(
            name="whereabouts.list_custom_lists",
            description="List custom lists and their members.",
            parameters=[],
        ),
    ],
)
