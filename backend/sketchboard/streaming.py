import asyncio
import logging
from typing import AsyncIterator

from fastapi import Request
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from .broadcaster import BroadcastRegistry, Connection, ConnectionClosed

logger = logging.getLogger(__name__)

KEEPALIVE_FRAME = ": ping\n\n"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


def release(registry: BroadcastRegistry, connection: Connection):
    """Unregister a connection once; later calls do nothing."""
    if registry.unregister(connection):
        logger.info(f"SSE client disconnected: {connection.id} (active={len(registry)})")


async def release_after_response(registry: BroadcastRegistry, connection: Connection):
    release(registry, connection)


async def event_stream(
    request: Request,
    registry: BroadcastRegistry,
    connection: Connection,
    keepalive: float = 15.0,
) -> AsyncIterator[str]:
    """
    Yield framed events for one client until it goes away.

    A comment line is written whenever ``keepalive`` seconds pass without an
    event, which is also when a silent disconnect gets noticed.
    """
    try:
        while True:
            try:
                frame = await connection.receive(timeout=keepalive)
            except ConnectionClosed:
                break

            if frame is not None:
                yield frame
                continue

            # Check for disconnection
            if await request.is_disconnected():
                break
            yield KEEPALIVE_FRAME
    except asyncio.CancelledError:
        logger.debug(f"SSE stream cancelled: {connection.id}")
        raise
    finally:
        release(registry, connection)


def open_stream(request: Request, registry: BroadcastRegistry, keepalive: float = 15.0) -> StreamingResponse:
    """Register a new connection and return the response that serves it."""
    connection = registry.connect()
    logger.info(f"SSE client connected: {connection.id} (active={len(registry)})")

    return StreamingResponse(
        event_stream(request, registry, connection, keepalive=keepalive),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
        background=BackgroundTask(release_after_response, registry, connection),
    )
