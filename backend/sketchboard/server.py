import asyncio
import logging
from typing import Optional

import uvicorn

from .broadcaster import BroadcastRegistry

logger = logging.getLogger(__name__)


class SketchboardServer(uvicorn.Server):
    """Uvicorn server that closes live event streams when shutdown starts, before open responses are awaited."""

    def __init__(self, config: uvicorn.Config, registry: BroadcastRegistry):
        super().__init__(config)
        self.registry = registry
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    async def serve(self, sockets=None):
        self._loop = asyncio.get_running_loop()
        await super().serve(sockets=sockets)

    def handle_exit(self, sig, frame):
        if not self.should_exit:
            logger.info("Shutdown requested, closing SSE connections")
            self.close_streams_soon()
        super().handle_exit(sig, frame)

    def close_streams_soon(self):
        """Schedule ``close_streams`` on the serving loop; safe from signal handlers and other threads."""
        if self._loop is not None:
            self._loop.call_soon_threadsafe(self.close_streams)

    def close_streams(self):
        closed = self.registry.close_all()
        logger.info(f"Closed {closed} SSE connection(s)")
