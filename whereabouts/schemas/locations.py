"""Location schemas — the record shared between peers."""

from __future__ import annotations

import uuid

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Location(BaseModel):
    """A place and time range owned by one peer.

    Identity is ``id``. Records received from peers replace the local copy
    wholesale.
    """

    model_config = ConfigDict(frozen=True)

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    owner: str = Field(min_length=1)
    start_time: int  # unix seconds
    end_time: int  # unix seconds
    description: str = ""
    latitude: float = Field(ge=-90.0, le=90.0, allow_inf_nan=False)
    longitude: float = Field(ge=-180.0, le=180.0, allow_inf_nan=False)

    @model_validator(mode="after")
    def _check_time_range(self) -> Location:
        if self.end_time < self.start_time:
            raise ValueError("end_time must not be before start_time")
        return self

    def with_coordinates(self, longitude: float, latitude: float) -> Location:
        """Return a copy carrying other coordinates."""
        return self.model_copy(update={"longitude": longitude, "latitude": latitude})


class BroadcastReport(BaseModel):
    """Outcome of a fan-out to all friends."""

    total: int = 0
    sent: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)

    @property
    def summary(self) -> str:
        return f"sent to {len(self.sent)}/{self.total} friends"
