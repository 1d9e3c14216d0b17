"""Error kinds raised by the sync engine and its collaborators."""

from __future__ import annotations


class WhereaboutsError(Exception):
    """Base class for all domain errors.

    ``kind`` is a stable identifier surfaced to API callers in
    ``ToolResult.error`` so clients can branch without parsing messages.
    """

    kind = "error"

    def __str__(self) -> str:
        message = super().__str__()
        return f"{self.kind}: {message}" if message else self.kind


class NotFoundError(WhereaboutsError):
    """Unknown location id, pending request or friend."""

    kind = "not_found"


class InvalidTransitionError(WhereaboutsError):
    """A relationship operation is not legal from the peer's current state."""

    kind = "invalid_transition"


class InvalidArgumentError(WhereaboutsError):
    """Malformed tier string, peer id, coordinates or payload."""

    kind = "invalid_argument"


class StorageError(WhereaboutsError):
    """The location store failed to read or write."""

    kind = "storage_failure"


class TransportError(WhereaboutsError):
    """A message could not be handed to its recipient."""

    kind = "transport_failure"
