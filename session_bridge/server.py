"""
WebSocket Server

Accepts client connections and hands their frames to the Bridge. Each
connection gets an outbox drained by its own writer task, so the bridge
can fan out synchronously from inside an OSC callback.
"""

import asyncio
import logging
from typing import Optional

from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed
from websockets.frames import CloseCode

from .bridge import Bridge

logger = logging.getLogger(__name__)

# Frames queued for one client before it is considered stalled
MAX_OUTBOX = 1024


class ClientSession:
    """
    Queued outbound side of one WebSocket connection.

    A client that lets max_outbox frames pile up is disconnected rather
    than buffered without bound.
    """

    def __init__(self, websocket: ServerConnection, max_outbox: int = MAX_OUTBOX):
        self.websocket = websocket
        self._outbox: "asyncio.Queue[str]" = asyncio.Queue(maxsize=max_outbox)
        self._closed = False
        self._closing: Optional[asyncio.Task] = None

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, text: str) -> None:
        if self._closed:
            raise ConnectionError("client connection closed")
        try:
            self._outbox.put_nowait(text)
        except asyncio.QueueFull:
            logger.warning(f"Client not keeping up ({self._outbox.qsize()} frames queued), disconnecting")
            self._closed = True
            self._closing = asyncio.get_running_loop().create_task(
                self.websocket.close(CloseCode.TRY_AGAIN_LATER, "client too slow")
            )
            raise ConnectionError("client outbox full") from None

    def close(self) -> None:
        self._closed = True

    async def run_writer(self) -> None:
        try:
            while True:
                text = await self._outbox.get()
                await self.websocket.send(text)
        except ConnectionClosed:
            pass
        finally:
            self._closed = True


class BridgeServer:
    """WebSocket endpoint feeding one Bridge."""

    def __init__(self, bridge: Bridge, host: str = "0.0.0.0", port: int = 8765):
        self.bridge = bridge
        self.host = host
        self.port = port
        self._server: Optional[Server] = None

    async def start(self) -> None:
        self._server = await serve(self._handle_connection, self.host, self.port)
        if self.port == 0:
            self.port = next(iter(self._server.sockets)).getsockname()[1]
        logger.info(f"WebSocket: ws://{self.host}:{self.port}")

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        client = ClientSession(websocket)
        writer = asyncio.create_task(client.run_writer())
        self.bridge.add_client(client)
        try:
            async for frame in websocket:
                if isinstance(frame, bytes):
                    frame = frame.decode("utf-8", errors="replace")
                await self.bridge.handle_client_message(client, frame)
        except ConnectionClosed as e:
            logger.debug(f"Client connection closed: {e}")
        finally:
            client.close()
            self.bridge.remove_client(client)
            writer.cancel()

    async def stop(self) -> None:
        if self._server is None:
            return
        self._server.close()
        await self._server.wait_closed()
        self._server = None
        logger.info("WebSocket server stopped")
