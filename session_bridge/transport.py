"""
OSC Transport

UDP link to the DAW remote script: python-osc client for sending, asyncio
server for receiving. Knows nothing about the session.
"""

import asyncio
import logging
from typing import Any, Callable, List, Optional

from pythonosc import dispatcher, udp_client
from pythonosc.osc_server import AsyncIOOSCUDPServer

from .model import OscCommand

logger = logging.getLogger(__name__)

MessageCallback = Callable[[str, List[Any]], None]


class OscTransport:
    """Async OSC endpoint pair (send to the remote, listen for its replies)."""

    def __init__(self, host: str = "127.0.0.1", send_port: int = 11000, receive_port: int = 11001):
        self.host = host
        self.send_port = send_port
        self.receive_port = receive_port
        self._client: Optional[udp_client.SimpleUDPClient] = None
        self._transport: Optional[asyncio.BaseTransport] = None
        self._callbacks: List[MessageCallback] = []

    @property
    def is_open(self) -> bool:
        return self._client is not None and self._transport is not None

    async def start(self) -> bool:
        """Open both endpoints. Returns False (logged) if the port is unavailable."""
        try:
            self._client = udp_client.SimpleUDPClient(self.host, self.send_port)

            disp = dispatcher.Dispatcher()
            disp.set_default_handler(self._handle_message)

            server = AsyncIOOSCUDPServer(
                (self.host, self.receive_port),
                disp,
                asyncio.get_running_loop(),
            )
            self._transport, _ = await server.create_serve_endpoint()
        except OSError as e:
            logger.error(f"OSC start failed: {e}")
            self._client = None
            return False

        logger.info(f"OSC: send={self.host}:{self.send_port}, recv={self.receive_port}")
        return True

    def add_callback(self, callback: MessageCallback) -> None:
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def _handle_message(self, address: str, *args: Any) -> None:
        for callback in self._callbacks:
            try:
                callback(address, list(args))
            except Exception as e:
                logger.exception(f"OSC callback error for {address}: {e}")

    def send(self, command: OscCommand) -> bool:
        """Send one message. Returns False instead of raising on failure."""
        if self._client is None:
            logger.debug(f"OSC not open, dropped: {command}")
            return False
        try:
            self._client.send_message(command.address, command.args)
        except (OSError, ValueError) as e:
            logger.error(f"OSC send failed: {e}")
            return False
        logger.debug(f"OSC TX: {command}")
        return True

    async def stop(self) -> None:
        if self._transport is not None:
            self._transport.close()
        self._transport = None
        self._client = None
        logger.info("OSC closed")
