import asyncio
import logging
import re
import threading
import uuid
from typing import List, Optional, Set

logger = logging.getLogger(__name__)


class ConnectionClosed(Exception):
    """Raised when sending to, or reading from, a closed connection."""


def format_event(message: str) -> str:
    """Frame a message as one server-sent event.

    Each line of the message becomes its own ``data:`` field so that
    clients reassemble it unchanged.
    """
    lines = re.split(r"\r\n|\r|\n", message)
    return "".join(f"data: {line}\n" for line in lines) + "\n"


class Connection:
    """One open push channel to one client.

    Frames are buffered in a bounded queue; when the queue is full new frames
    are dropped for this connection only.
    """

    def __init__(self, maxsize: int = 100):
        self.id = uuid.uuid4().hex
        self.dropped = 0
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = asyncio.Event()

    def __repr__(self):
        state = "CLOSED" if self.closed else "OPEN"
        return f"<Connection {self.id[:8]} {state}>"

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def send(self, frame: str) -> bool:
        """Queue a frame without waiting. Returns False if it was dropped."""
        if self.closed:
            raise ConnectionClosed(self.id)
        try:
            self._queue.put_nowait(frame)
        except asyncio.QueueFull:
            self.dropped += 1
            return False
        return True

    def close(self):
        self._closed.set()

    async def receive(self, timeout: Optional[float] = None) -> Optional[str]:
        """
        Wait for the next frame.

        Returns None if ``timeout`` elapses first and raises ConnectionClosed
        once the connection has been closed.
        """
        if self.closed:
            raise ConnectionClosed(self.id)
        if not self._queue.empty():
            return self._queue.get_nowait()

        get_task = asyncio.ensure_future(self._queue.get())
        closed_task = asyncio.ensure_future(self._closed.wait())
        try:
            done, _ = await asyncio.wait(
                {get_task, closed_task},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            get_task.cancel()
            closed_task.cancel()

        if get_task in done and not get_task.cancelled():
            return get_task.result()
        if closed_task in done:
            raise ConnectionClosed(self.id)
        return None


class BroadcastRegistry:
    def __init__(self, queue_size: int = 100):
        self.queue_size = queue_size
        self._connections: Set[Connection] = set()
        self._accepting = True
        # Guards the set only; never held while awaiting.
        self._lock = threading.Lock()

    def __len__(self):
        with self._lock:
            return len(self._connections)

    def __contains__(self, connection: Connection):
        with self._lock:
            return connection in self._connections

    def connections(self) -> List[Connection]:
        """A snapshot of the live connections."""
        with self._lock:
            return list(self._connections)

    def connect(self) -> Connection:
        connection = Connection(maxsize=self.queue_size)
        self.register(connection)
        return connection

    def register(self, connection: Connection):
        with self._lock:
            if self._accepting and not connection.closed:
                self._connections.add(connection)
                return
        # Already closed, or the registry has shut down
        connection.close()

    def unregister(self, connection: Connection) -> bool:
        with self._lock:
            was_member = connection in self._connections
            self._connections.discard(connection)
        connection.close()
        return was_member

    def broadcast(self, message: str) -> int:
        targets = self.connections()
        if not targets:
            return 0

        frame = format_event(message)
        delivered = 0

        # Broadcast to a snapshot so register/unregister never wait on delivery
        for connection in targets:
            try:
                if connection.send(frame):
                    delivered += 1
                else:
                    logger.warning(
                        f"Dropped event for slow connection {connection.id} "
                        f"(pending={connection.pending}, dropped={connection.dropped})"
                    )
            except ConnectionClosed:
                logger.debug(f"Removing closed connection {connection.id}")
                self.unregister(connection)
        return delivered

    def close_all(self) -> int:
        """Close every connection and refuse new ones from now on."""
        with self._lock:
            self._accepting = False
            targets = list(self._connections)
            self._connections.clear()
        for connection in targets:
            connection.close()
        return len(targets)
