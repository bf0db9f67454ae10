"""
Query Correlator

Matches outbound OSC queries with their responses. The remote protocol has
no request id, so a response is recognized by its key: the address plus the
leading arguments that identify the object (track id, scene id...), never
the trailing value.

Queries that get no answer resolve with NO_VALUE after the timeout instead
of raising, so a bulk sync always completes with whatever data arrived.

Two queries with the same key may be in flight at once: waiters are kept in
a FIFO per key and each response resolves the oldest one still waiting.
"""

import asyncio
import logging
from collections import deque
from typing import Any, Callable, Deque, Dict, Sequence

from .model import OscCommand
from .vocabulary import id_arg_count

logger = logging.getLogger(__name__)

DEFAULT_QUERY_TIMEOUT = 5.0


class _NoValue:
    """Sentinel for a query that timed out or was cancelled."""

    def __repr__(self) -> str:
        return "NO_VALUE"

    def __bool__(self) -> bool:
        return False


NO_VALUE = _NoValue()


def correlation_key(address: str, args: Sequence[Any]) -> str:
    """
    Key shared by a query and its response.

    A query carries only the identifying args, a response carries them
    followed by the value; both reduce to the same key.
    """
    ids = args[:id_arg_count(address)]
    if not ids:
        return address
    return f"{address}:" + ":".join(str(a) for a in ids)


def extract_value(address: str, args: Sequence[Any]) -> Any:
    """Strip the identifying args from a response; several values come back as a list."""
    values = list(args[id_arg_count(address):])
    if not values:
        return None
    if len(values) == 1:
        return values[0]
    return values


class QueryCorrelator:
    """
    Pending query table.

    send is called with each query's OscCommand and returns whether the
    transport accepted it; a refused send resolves the query at once.
    """

    def __init__(self, send: Callable[[OscCommand], bool], timeout: float = DEFAULT_QUERY_TIMEOUT):
        self._send = send
        self.timeout = timeout
        self._pending: Dict[str, Deque[asyncio.Future]] = {}

    @property
    def pending_count(self) -> int:
        return sum(len(waiters) for waiters in self._pending.values())

    def is_pending(self, address: str, args: Sequence[Any]) -> bool:
        return correlation_key(address, args) in self._pending

    async def query(self, command: OscCommand, timeout: float = None) -> Any:
        """
        Send a query and wait for its response value.

        Returns:
            The response value (see extract_value), or NO_VALUE on timeout
        """
        loop = asyncio.get_running_loop()
        key = correlation_key(command.address, command.args)
        future = loop.create_future()

        # Registered before sending so an immediate reply cannot be missed
        self._pending.setdefault(key, deque()).append(future)
        handle = loop.call_later(
            self.timeout if timeout is None else timeout,
            self._expire, key, future,
        )

        try:
            if not self._send(command):
                self._expire(key, future)
            return await future
        finally:
            handle.cancel()
            self._discard(key, future)

    def resolve(self, address: str, args: Sequence[Any]) -> bool:
        """
        Offer an inbound message to the pending queries.

        Returns:
            True if it answered a query and must not be treated as a push
        """
        key = correlation_key(address, args)
        waiters = self._pending.get(key)
        if not waiters:
            return False

        while waiters:
            future = waiters.popleft()
            if not future.done():
                future.set_result(extract_value(address, args))
                break
        else:
            future = None

        if not waiters:
            del self._pending[key]
        return future is not None

    def clear(self, keep: Sequence[str] = ()) -> None:
        """
        Release every waiter with NO_VALUE.

        Args:
            keep: Addresses whose waiters stay pending
        """
        released = 0
        for key in list(self._pending):
            if key.split(":", 1)[0] in keep:
                continue
            for future in self._pending.pop(key):
                if not future.done():
                    future.set_result(NO_VALUE)
                    released += 1
        if released:
            logger.debug(f"Released {released} pending queries")

    def _expire(self, key: str, future: asyncio.Future) -> None:
        if not future.done():
            logger.debug(f"Query timed out: {key}")
            future.set_result(NO_VALUE)
        self._discard(key, future)

    def _discard(self, key: str, future: asyncio.Future) -> None:
        waiters = self._pending.get(key)
        if waiters is None:
            return
        try:
            waiters.remove(future)
        except ValueError:
            pass
        if not waiters:
            del self._pending[key]
