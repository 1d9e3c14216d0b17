"""Whereabouts peer service — FastAPI app, peer listener and outbox worker."""

from __future__ import annotations

import asyncio
import inspect
from functools import partial

import structlog
from fastapi import FastAPI

from whereabouts.catalog import load_reference_points
from whereabouts.config import get_settings
from whereabouts.database import create_schema, get_session_factory
from whereabouts.errors import InvalidArgumentError, WhereaboutsError
from whereabouts.granularity import GranularityIndex
from whereabouts.manifest import MANIFEST
from whereabouts.outbox import Outbox, outbox_loop
from whereabouts.redis import close_redis, get_redis
from whereabouts.schemas.common import HealthResponse
from whereabouts.schemas.tools import ModuleManifest, ToolCall, ToolResult
from whereabouts.snapshots import load_relationships, relationship_key, save_relationships
from whereabouts.store import SqlLocationStore
from whereabouts.sync import SyncDriver
from whereabouts.tools import WhereaboutsTools
from whereabouts.transport import RedisTransport

structlog.configure(
    processors=[
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
)

logger = structlog.get_logger()
app = FastAPI(title="Whereabouts", version="1.0.0")

settings = get_settings()
tools: WhereaboutsTools | None = None
_background_tasks: list[asyncio.Task] = []

# Each name maps to the WhereaboutsTools method of the same name
OPERATIONS = {t.name.split(".")[-1] for t in MANIFEST.tools}


@app.on_event("startup")
async def startup():
    global tools
    session_factory = get_session_factory()
    await create_schema()
    redis_client = await get_redis()

    index = GranularityIndex.build(load_reference_points(settings.cities_path or None))

    key = relationship_key(settings.relationship_key_prefix, settings.peer_id)
    book = await load_relationships(redis_client, key)

    transport = RedisTransport(redis_client, settings.peer_id, settings.peer_channel_prefix)
    outbox = Outbox(
        base_backoff_seconds=settings.outbox_base_backoff_seconds,
        max_backoff_seconds=settings.outbox_max_backoff_seconds,
        max_attempts=settings.outbox_max_attempts,
    )
    driver = SyncDriver(
        settings.peer_id,
        SqlLocationStore(session_factory),
        index,
        transport,
        book=book,
        on_send_failed=outbox.enqueue,
        persist=partial(save_relationships, redis_client, key),
        on_friend_removed=outbox.purge,
    )
    tools = WhereaboutsTools(driver)
    logger.info("whereabouts_ready", peer_id=settings.peer_id, reference_points=len(index))

    _background_tasks.append(asyncio.create_task(transport.listen(driver.handle_inbound)))
    _background_tasks.append(
        asyncio.create_task(
            outbox_loop(outbox, transport, settings.outbox_interval_seconds, refresh=driver.refresh_outbound)
        )
    )


@app.on_event("shutdown")
async def shutdown():
    for task in _background_tasks:
        task.cancel()
    await asyncio.gather(*_background_tasks, return_exceptions=True)
    _background_tasks.clear()
    await close_redis()


@app.get("/manifest", response_model=ModuleManifest)
async def manifest():
    """Return the service manifest."""
    return MANIFEST


@app.post("/execute", response_model=ToolResult)
async def execute(call: ToolCall):
    """Execute an operation call."""
    if tools is None:
        return ToolResult(tool_name=call.tool_name, success=False, error="Service not ready")

    op_name = call.tool_name.split(".")[-1]
    if op_name not in OPERATIONS:
        return ToolResult(
            tool_name=call.tool_name,
            success=False,
            error=f"Unknown tool: {call.tool_name}",
        )

    method = getattr(tools, op_name)
    try:
        try:
            inspect.signature(method).bind(**call.arguments)
        except TypeError as e:
            raise InvalidArgumentError(str(e)) from e

        result = await method(**call.arguments)
        return ToolResult(tool_name=call.tool_name, success=True, result=result)
    except WhereaboutsError as e:
        logger.warning("tool_execution_failed", tool=call.tool_name, kind=e.kind, error=str(e))
        return ToolResult(tool_name=call.tool_name, success=False, error=str(e), error_kind=e.kind)
    except Exception as e:
        logger.error("tool_execution_error", tool=call.tool_name, error=str(e))
        return ToolResult(tool_name=call.tool_name, success=False, error=str(e))


@app.get("/health", response_model=HealthResponse)
async def health():
    return HealthResponse(status="ok" if tools is not None else "starting", peer_id=settings.peer_id)
