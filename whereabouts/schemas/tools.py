"""Operation manifest and tool-call schemas for the ``/execute`` surface."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class ToolParameter(BaseModel):
    """Parameter definition for an operation."""

    name: str
    type: str  # string, integer, boolean, number, array, object
    description: str
    required: bool = True
    enum: list[str] | None = None


class ToolDefinition(BaseModel):
    """Definition of a single operation exposed by the service."""

    name: str  # e.g. "whereabouts.send_friend_request"
    description: str
    parameters: list[ToolParameter]


class ModuleManifest(BaseModel):
    """Manifest describing the service and its operations."""

    module_name: str
    description: str
    tools: list[ToolDefinition]


class ToolCall(BaseModel):
    """An operation call from the API layer."""

    tool_name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class ToolResult(BaseModel):
    """Result from an operation call."""

    tool_name: str
    success: bool
    result: Any = None
    error: str | None = None
    error_kind: str | None = None
