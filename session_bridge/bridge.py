"""
Bridge Coordinator

Connects the WebSocket clients to the DAW:

- Routes inbound OSC: pending query first, then push -> store -> patch
- Fans server messages out to every client
- Polls playback position while playing (the remote cannot push it)
- Pings the remote periodically and publishes the connected flag
- Resyncs everything when the remote loads another workspace

Everything runs on one event loop; nothing here blocks or locks.
"""

import asyncio
import logging
import math
from typing import Any, Coroutine, List, Optional, Protocol, Sequence, Set

from . import vocabulary as vocab
from .config import BridgeConfig
from .correlator import NO_VALUE, QueryCorrelator
from .model import DEFAULT_TEMPO, OscCommand, Patch, PatchKind
from .protocol import (
    ClipMove,
    ConnectedMessage,
    ErrorMessage,
    PatchMessage,
    ProtocolError,
    ServerMessage,
    SessionMessage,
    SessionRequest,
    SessionResetMessage,
    SessionResync,
    SyncPhaseMessage,
    parse_client_message,
)
from .store import SessionStore
from .sync import SyncError, SyncOrchestrator, SyncPhase
from .translator import (
    PushKind,
    PushUpdate,
    client_message_to_osc,
    delete_clip,
    duplicate_clip,
    normalize_address,
    translate_push,
)
from .vocabulary import Scope

logger = logging.getLogger(__name__)

MIN_POLL_INTERVAL_MS = 50
MAX_POLL_INTERVAL_MS = 200


class OscLink(Protocol):
    def send(self, command: OscCommand) -> bool: ...


class ClientConnection(Protocol):
    """Outbound side of one client. send() raises ConnectionError once closed."""

    def send(self, text: str) -> None: ...


def beat_time_poll_interval(tempo: float) -> int:
    """
    Playback position poll interval in ms: about twice per sixteenth note,
    clamped to [50, 200].
    """
    if not tempo or tempo <= 0:
        tempo = DEFAULT_TEMPO
    ms_per_sixteenth = 60000 / tempo / 4
    interval = max(MIN_POLL_INTERVAL_MS, min(MAX_POLL_INTERVAL_MS, ms_per_sixteenth / 2))
    return int(math.floor(interval + 0.5))


class Bridge:
    """
    Session bridge between clients and one OSC remote.

    The transport endpoints live outside: call handle_osc_message() for
    every inbound datagram and add_client()/handle_client_message()/
    remove_client() from the WebSocket side.
    """

    def __init__(self, osc: OscLink, config: Optional[BridgeConfig] = None):
        self.config = config or BridgeConfig()
        self.osc = osc
        self.store = SessionStore()
        self.correlator = QueryCorrelator(self.send_osc, timeout=self.config.query_timeout)
        self.sync = SyncOrchestrator(
            self.store,
            self.correlator,
            self.send_osc,
            batch_size=self.config.sync_batch_size,
            on_phase=self._on_sync_phase,
        )

        self.clients: Set[ClientConnection] = set()
        self.ableton_connected = False
        self.synced = False
        self.sync_task: Optional[asyncio.Task] = None
        self._session_waiters: List[ClientConnection] = []

        self._poll_task: Optional[asyncio.Task] = None
        self.poll_interval_ms: Optional[int] = None
        self._liveness_task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()
        # Subset of _tasks that works on the current session tree
        self._tree_tasks: Set[asyncio.Task] = set()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self) -> None:
        """Start the liveness loop; the first ping goes out immediately."""
        if self._liveness_task is None:
            self._liveness_task = asyncio.create_task(self._liveness_loop())
        logger.info("Bridge started")

    async def stop(self) -> None:
        logger.info("Stopping bridge...")
        self._stop_polling()

        tasks = [t for t in (self._liveness_task, self.sync_task) if t] + list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._liveness_task = None
        self.sync_task = None

        # Unsubscribing is pointless when the remote is gone
        self.sync.stop_listeners(silent=not self.ableton_connected)
        self.correlator.clear()
        self.synced = False
        logger.info("Bridge stopped")

    def _spawn(self, coro: Coroutine, tree: bool = False) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        if tree:
            self._tree_tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        self._tree_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Background task failed: {task.exception()!r}")

    # =========================================================================
    # CLIENTS
    # =========================================================================

    def add_client(self, client: ClientConnection) -> None:
        logger.info(f"Client connected ({len(self.clients) + 1} total)")
        self.clients.add(client)
        self.send_to(client, ConnectedMessage(ableton_connected=self.ableton_connected))
        if self.synced:
            self.send_to(client, self._session_message())

    def remove_client(self, client: ClientConnection) -> None:
        self.clients.discard(client)
        if client in self._session_waiters:
            self._session_waiters.remove(client)
        logger.info(f"Client disconnected ({len(self.clients)} left)")

    def send_to(self, client: ClientConnection, message: ServerMessage) -> bool:
        try:
            client.send(message.to_json())
        except ConnectionError:
            self.clients.discard(client)
            return False
        return True

    def broadcast(self, message: ServerMessage) -> int:
        """Send to every client; ones that closed meanwhile are skipped and dropped."""
        if not self.clients:
            return 0
        text = message.to_json()
        sent = 0
        for client in list(self.clients):
            try:
                client.send(text)
                sent += 1
            except ConnectionError:
                self.clients.discard(client)
        return sent

    def broadcast_patch(self, patch: Optional[Patch]) -> None:
        if patch is not None:
            self.broadcast(PatchMessage(payload=patch.to_dict()))

    def _session_message(self) -> SessionMessage:
        return SessionMessage(payload=self.store.state.to_dict())

    async def handle_client_message(self, client: ClientConnection, text: str) -> None:
        """Decode and act on one client frame. Malformed frames are logged and dropped."""
        try:
            message = parse_client_message(text)
        except ProtocolError as e:
            logger.warning(f"Invalid message from client: {e}")
            return

        if message is None:
            logger.warning(f"Unknown message type: {text[:80]}")
            return

        if isinstance(message, SessionRequest):
            self.request_session(client)
        elif isinstance(message, SessionResync):
            self.resync("client request", requester=client, unsubscribe=True)
        elif isinstance(message, ClipMove):
            self._spawn(self.move_clip(
                message.src_track, message.src_scene,
                message.dst_track, message.dst_scene,
                requester=client,
            ))
        else:
            for command in client_message_to_osc(message):
                self.send_osc(command)

    # =========================================================================
    # OSC
    # =========================================================================

    def send_osc(self, command: OscCommand) -> bool:
        return self.osc.send(command)

    def handle_osc_message(self, address: str, args: Sequence[Any]) -> None:
        """Route one inbound OSC message."""
        address = normalize_address(address)
        args = list(args)
        logger.debug(f"OSC RX: {OscCommand(address, args)}")

        # A query response is never also a live update
        if self.correlator.resolve(address, args):
            return

        update = translate_push(address, args)
        if update is None:
            logger.debug(f"Unhandled OSC: {address}")
            return

        if update.kind == PushKind.STATE:
            self._apply_push(update)
        elif update.kind == PushKind.STRUCTURE:
            if self.synced:
                self._spawn(self._structure_changed(), tree=True)
        elif update.kind == PushKind.WORKSPACE_LOADED:
            self.resync("workspace loaded")
        elif update.kind == PushKind.REMOTE_ERROR:
            logger.warning(f"Remote error: {' '.join(str(a) for a in update.args)}")

    def _apply_push(self, update: PushUpdate) -> None:
        if update.setter == "set_has_clip":
            self._apply_has_clip(*update.args)
            return

        patch = update.apply(self.store)

        if update.setter == "set_is_playing":
            if update.args[0]:
                self._start_polling()
            else:
                self._stop_polling()
        elif update.setter == "set_tempo" and self._poll_task is not None:
            self._restart_polling()

        self.broadcast_patch(patch)

    def _apply_has_clip(self, track_index: int, scene_index: int, has_clip: bool) -> None:
        """
        Occupancy change. Empty -> occupied is two patches: hasClip now,
        clip properties once they have been queried.
        """
        slot = self.store.get_clip_slot(track_index, scene_index)
        was_occupied = slot is not None and slot.has_clip

        self.broadcast_patch(self.store.set_has_clip(track_index, scene_index, has_clip))
        if slot is None:
            return

        if has_clip and not was_occupied:
            logger.info(f"New clip at {track_index}:{scene_index}")
            self.sync.start_clip_listener(track_index, scene_index)
            self._spawn(self._enrich_clip(track_index, scene_index), tree=True)
        elif not has_clip and was_occupied:
            self.sync.stop_clip_listener(track_index, scene_index)

    async def _enrich_clip(self, track_index: int, scene_index: int) -> None:
        self.broadcast_patch(await self.sync.sync_new_clip(track_index, scene_index))

    async def _structure_changed(self) -> None:
        try:
            changed = await self.sync.check_structure_changes()
        except Exception as e:
            logger.error(f"Structure resync failed: {e}")
            return
        # A full resync started meanwhile owns the tree now
        if changed and self.synced:
            num_tracks, num_scenes = self.store.structure
            self.broadcast_patch(Patch(PatchKind.STRUCTURE, {"numTracks": num_tracks, "numScenes": num_scenes}))
            self.broadcast(self._session_message())

    # =========================================================================
    # SESSION SYNC
    # =========================================================================

    def _on_sync_phase(self, phase: SyncPhase, progress: Optional[int]) -> None:
        self.broadcast(SyncPhaseMessage(phase=phase.value, progress=progress))

    def request_session(self, client: ClientConnection) -> None:
        """Send the session, syncing first if needed. Requests during a sync wait for it."""
        if self.synced:
            self.send_to(client, self._session_message())
            return
        if client not in self._session_waiters:
            self._session_waiters.append(client)
        if self.sync_task is not None and not self.sync_task.done():
            logger.info("Sync already in progress, waiting...")
            return
        self.sync_task = asyncio.create_task(self._run_sync())

    def resync(
        self,
        reason: str,
        requester: Optional[ClientConnection] = None,
        unsubscribe: bool = False,
    ) -> None:
        """
        Throw the session away and rebuild it from scratch.

        Args:
            reason: For the log
            requester: Client that receives a sync error, if any
            unsubscribe: Send stop_listen for current subscriptions first.
                Only meaningful while the remote still holds them; after a
                workspace load it has already dropped them.
        """
        logger.info(f"Full resync ({reason})")
        if self.sync_task is not None and not self.sync_task.done():
            self.sync_task.cancel()
        # Structure checks and clip enrichment work on the tree being replaced
        for task in list(self._tree_tasks):
            task.cancel()

        self.broadcast(SessionResetMessage())
        self._stop_polling()
        self.synced = False
        if unsubscribe and self.ableton_connected:
            self.sync.stop_listeners()
        self.sync.reset()
        # Keep the liveness ping: a resync says nothing about connectivity
        self.correlator.clear(keep=(vocab.TEST_ADDRESS,))
        self.store.reset()

        if requester is not None and requester not in self._session_waiters:
            self._session_waiters.append(requester)
        self.sync_task = asyncio.create_task(self._run_sync())

    async def _run_sync(self) -> None:
        try:
            await self.sync.perform_initial_sync()
        except SyncError as e:
            error = ErrorMessage(message=str(e))
            if self._session_waiters:
                for client in self._session_waiters:
                    self.send_to(client, error)
            else:
                self.broadcast(error)
            self._session_waiters.clear()
            return

        self.sync.setup_listeners()
        self.synced = True
        self._session_waiters.clear()
        self.broadcast(self._session_message())
        if self.store.state.is_playing:
            self._start_polling()

    # =========================================================================
    # CLIP MOVE
    # =========================================================================

    async def move_clip(
        self,
        src_track: int,
        src_scene: int,
        dst_track: int,
        dst_scene: int,
        requester: Optional[ClientConnection] = None,
    ) -> bool:
        """
        Move = duplicate, confirm the copy landed, then delete the source.

        The settle delay only gives the remote time to work; the
        destination's has_clip is what licenses the delete.

        Returns:
            True if the source was deleted
        """
        if (src_track, src_scene) == (dst_track, dst_scene):
            return False

        logger.info(f"Moving clip {src_track}:{src_scene} -> {dst_track}:{dst_scene}")
        self.send_osc(duplicate_clip(src_track, src_scene, dst_track, dst_scene))

        confirmed = False
        for _ in range(max(1, self.config.clip_move_attempts)):
            await asyncio.sleep(self.config.clip_move_settle)
            reply = await self.correlator.query(
                vocab.get(Scope.CLIP_SLOT, "has_clip", dst_track, dst_scene),
                timeout=self.config.clip_move_confirm_timeout,
            )
            if reply is not NO_VALUE and bool(reply):
                confirmed = True
                break

        if not confirmed:
            message = f"Clip move to {dst_track}:{dst_scene} not confirmed, source kept"
            logger.warning(message)
            if requester is not None:
                self.send_to(requester, ErrorMessage(message=message))
            return False

        # The confirming has_clip was consumed as a query reply, so the
        # listener push that would have announced the copy never arrives
        slot = self.store.get_clip_slot(dst_track, dst_scene)
        if slot is not None and not slot.has_clip:
            self._apply_has_clip(dst_track, dst_scene, True)

        self.send_osc(delete_clip(src_track, src_scene))
        return True

    # =========================================================================
    # BEAT TIME POLLING
    # =========================================================================

    def _start_polling(self) -> None:
        if self._poll_task is not None:
            return
        self.poll_interval_ms = beat_time_poll_interval(self.store.state.tempo)
        self._poll_task = asyncio.create_task(self._poll_loop(self.poll_interval_ms / 1000))
        logger.info(f"Beat time polling started ({self.poll_interval_ms}ms at {self.store.state.tempo} BPM)")

    def _stop_polling(self) -> None:
        if self._poll_task is None:
            return
        self._poll_task.cancel()
        self._poll_task = None
        self.poll_interval_ms = None
        logger.info("Beat time polling stopped")

    def _restart_polling(self) -> None:
        self._stop_polling()
        self._start_polling()

    @property
    def is_polling(self) -> bool:
        return self._poll_task is not None

    async def _poll_loop(self, interval: float) -> None:
        command = vocab.get(Scope.SONG, vocab.BEAT_TIME_PROPERTY)
        while True:
            self.send_osc(command)
            await asyncio.sleep(interval)

    # =========================================================================
    # LIVENESS
    # =========================================================================

    async def _liveness_loop(self) -> None:
        while True:
            await self.check_liveness()
            await asyncio.sleep(self.config.liveness_interval)

    async def check_liveness(self) -> bool:
        """Ping the remote and publish the result if it changed."""
        reply = await self.correlator.query(vocab.ping(), timeout=self.config.liveness_timeout)
        alive = reply is not NO_VALUE
        self._set_connected(alive)
        return alive

    def _set_connected(self, connected: bool) -> None:
        if connected == self.ableton_connected:
            return
        self.ableton_connected = connected
        if connected:
            logger.info("Remote is responding")
        else:
            logger.warning("Remote stopped responding")
            # Next session request resyncs from scratch
            self.synced = False
            self._stop_polling()
            self.sync.stop_listeners(silent=True)
        self.broadcast(ConnectedMessage(ableton_connected=connected))
