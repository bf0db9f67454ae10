"""
Sync Orchestrator

Drives the bulk reconciliation of the DAW session into the store and the
lifecycle of remote listener subscriptions.

Phases:
    idle -> structure -> tracks -> scenes -> clips -> ready

Every query degrades to a default when unanswered, so a sync with a
partly silent remote still completes. Entity syncs fan out in bounded
batches to keep the outbound UDP channel from flooding.
"""

import asyncio
import logging
from enum import Enum
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set, Tuple

from . import vocabulary as vocab
from .correlator import NO_VALUE, QueryCorrelator
from .model import DEFAULT_PAN, DEFAULT_QUANTIZATION, DEFAULT_TEMPO, DEFAULT_VOLUME, NO_SLOT, OscCommand, Patch
from .store import SessionStore
from .vocabulary import Scope

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 32

# (scope, property, identifying ids)
Subscription = Tuple[Scope, str, Tuple[int, ...]]


class SyncPhase(str, Enum):
    IDLE = "idle"
    STRUCTURE = "structure"
    TRACKS = "tracks"
    SCENES = "scenes"
    CLIPS = "clips"
    READY = "ready"


class SyncError(RuntimeError):
    """A sync phase failed; the session is not usable until the next sync."""


# =============================================================================
# VALUE COERCION
# =============================================================================

def _as_bool(value: Any, default: bool = False) -> bool:
    if value is NO_VALUE or value is None:
        return default
    if isinstance(value, str):
        try:
            return float(value) != 0
        except ValueError:
            return default
    return bool(value)


def _as_int(value: Any, default: int) -> int:
    if value is NO_VALUE or value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_float(value: Any, default: float) -> float:
    if value is NO_VALUE or value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _as_str(value: Any, default: str) -> str:
    if value is NO_VALUE or value is None or value == "":
        return default
    return str(value)


class SyncOrchestrator:
    """
    Session sync and listener management.

    Args:
        store: Store the results are written into
        correlator: Used for every query
        send: Fire-and-forget OSC send (listener subscriptions)
        batch_size: Max entities synced concurrently
        on_phase: Called with (phase, progress) on every phase change
    """

    def __init__(
        self,
        store: SessionStore,
        correlator: QueryCorrelator,
        send: Callable[[OscCommand], bool],
        batch_size: int = DEFAULT_BATCH_SIZE,
        on_phase: Optional[Callable[[SyncPhase, Optional[int]], None]] = None,
    ):
        self.store = store
        self.correlator = correlator
        self._send = send
        self.batch_size = max(1, batch_size)
        self.on_phase = on_phase
        self.phase = SyncPhase.IDLE
        self.listeners_active = False
        self._listeners: Set[Subscription] = set()
        self._structure_lock = asyncio.Lock()

    @property
    def listeners(self) -> Set[Subscription]:
        return set(self._listeners)

    def _set_phase(self, phase: SyncPhase, progress: Optional[int] = None) -> None:
        self.phase = phase
        if self.on_phase:
            self.on_phase(phase, progress)

    async def _query(self, scope: Scope, prop: str, *ids: int) -> Any:
        return await self.correlator.query(vocab.get(scope, prop, *ids))

    async def _query_all(self, scope: Scope, props: Sequence[str], *ids: int) -> Dict[str, Any]:
        values = await asyncio.gather(*(self._query(scope, prop, *ids) for prop in props))
        return dict(zip(props, values))

    async def _in_batches(self, calls: List[Callable[[], Awaitable]]) -> None:
        """Run coroutine factories at most batch_size at a time."""
        for start in range(0, len(calls), self.batch_size):
            await asyncio.gather(*(call() for call in calls[start:start + self.batch_size]))

    # =========================================================================
    # INITIAL SYNC
    # =========================================================================

    async def perform_initial_sync(self) -> None:
        """
        Query the whole session and rebuild the store from it.

        Raises:
            SyncError: If anything other than a query timeout goes wrong
        """
        logger.info("Starting initial sync...")
        try:
            await self._sync_structure()

            num_tracks, num_scenes = self.store.structure

            self._set_phase(SyncPhase.TRACKS)
            await self._in_batches([partial(self.sync_track, t) for t in range(num_tracks)])

            self._set_phase(SyncPhase.SCENES)
            await self._in_batches([partial(self.sync_scene, s) for s in range(num_scenes)])

            self._set_phase(SyncPhase.CLIPS)
            for t in range(num_tracks):
                await self._in_batches([partial(self.sync_clip_slot, t, s) for s in range(num_scenes)])
                self._set_phase(SyncPhase.CLIPS, round((t + 1) / num_tracks * 100))

            active = self.store.mark_playing_clips()
            logger.info(f"Initial sync complete: {num_tracks} tracks, {num_scenes} scenes, {active} active clips")
            self._set_phase(SyncPhase.READY)
        except Exception as e:
            failed_in = self.phase
            self.phase = SyncPhase.IDLE
            logger.error(f"Sync failed during {failed_in.value}: {e}")
            raise SyncError(f"Sync failed during {failed_in.value}: {e}") from e

    async def _sync_structure(self) -> None:
        self._set_phase(SyncPhase.STRUCTURE)

        song = await self._query_all(Scope.SONG, vocab.SONG_QUERIES)
        # Transport first: initialize() replaces the whole tree
        self.store.initialize(
            tempo=_as_float(song["tempo"], DEFAULT_TEMPO),
            is_playing=_as_bool(song["is_playing"]),
            is_recording=_as_bool(song["record_mode"]),
            metronome=_as_bool(song["metronome"]),
            clip_trigger_quantization=_as_int(song["clip_trigger_quantization"], DEFAULT_QUANTIZATION),
            punch_in=_as_bool(song["punch_in"]),
            punch_out=_as_bool(song["punch_out"]),
            loop=_as_bool(song["loop"]),
        )
        # Structure next: it allocates what the per-entity queries write into
        num_tracks = max(0, _as_int(song["num_tracks"], 0))
        num_scenes = max(0, _as_int(song["num_scenes"], 0))
        self.store.set_structure(num_tracks, num_scenes)
        logger.info(f"Found {num_tracks} tracks, {num_scenes} scenes")

        view = await self._query_all(Scope.VIEW, vocab.VIEW_QUERIES)
        self.store.set_selected_track(_as_int(view["selected_track"], 0))
        self.store.set_selected_scene(_as_int(view["selected_scene"], 0))

        master = await self._query_all(Scope.MASTER_TRACK, vocab.MASTER_TRACK_QUERIES)
        self.store.update_master_track(
            volume=_as_float(master["volume"], DEFAULT_VOLUME),
            pan=_as_float(master["panning"], DEFAULT_PAN),
            color=_as_int(master["color"], 0),
        )

    # =========================================================================
    # ENTITY SYNC
    # =========================================================================

    async def sync_track(self, track_index: int) -> Optional[Patch]:
        values = await self._query_all(Scope.TRACK, vocab.TRACK_QUERIES, track_index)
        return self.store.update_track(
            track_index,
            name=_as_str(values["name"], f"Track {track_index + 1}"),
            color=_as_int(values["color"], 0),
            volume=_as_float(values["volume"], DEFAULT_VOLUME),
            pan=_as_float(values["panning"], DEFAULT_PAN),
            mute=_as_bool(values["mute"]),
            solo=_as_bool(values["solo"]),
            arm=_as_bool(values["arm"]),
            playing_slot_index=_as_int(values["playing_slot_index"], NO_SLOT),
            fired_slot_index=_as_int(values["fired_slot_index"], NO_SLOT),
            has_midi_input=_as_bool(values["has_midi_input"]),
            has_audio_input=_as_bool(values["has_audio_input"]),
        )

    async def sync_scene(self, scene_index: int) -> Optional[Patch]:
        values = await self._query_all(Scope.SCENE, vocab.SCENE_QUERIES, scene_index)
        return self.store.update_scene(
            scene_index,
            name=_as_str(values["name"], f"Scene {scene_index + 1}"),
            color=_as_int(values["color"], 0),
        )

    async def sync_clip_slot(self, track_index: int, scene_index: int) -> Optional[Patch]:
        """Query occupancy, then clip properties when the slot holds a clip."""
        has_clip = _as_bool(await self._query(Scope.CLIP_SLOT, "has_clip", track_index, scene_index))
        patch = self.store.set_has_clip(track_index, scene_index, has_clip)
        if has_clip:
            return await self.sync_new_clip(track_index, scene_index)
        return patch

    async def sync_new_clip(self, track_index: int, scene_index: int) -> Optional[Patch]:
        """
        Fetch the properties of a clip that just appeared in a slot.

        Playing state is not queryable; it comes from the track's slot
        indices and the playing_status listener.

        Returns:
            Clip patch, or None if the slot no longer exists or is empty
        """
        logger.debug(f"Syncing clip at {track_index}:{scene_index}")
        values = await self._query_all(Scope.CLIP, vocab.CLIP_QUERIES, track_index, scene_index)
        return self.store.update_clip(
            track_index,
            scene_index,
            name=_as_str(values["name"], ""),
            color=_as_int(values["color"], 0),
            length=_as_float(values["length"], 0.0),
            loop_start=_as_float(values["loop_start"], 0.0),
            loop_end=_as_float(values["loop_end"], 0.0),
            is_audio_clip=_as_bool(values["is_audio_clip"]),
            is_midi_clip=_as_bool(values["is_midi_clip"]),
        )

    # =========================================================================
    # STRUCTURAL RESYNC
    # =========================================================================

    async def check_structure_changes(self) -> bool:
        """
        Re-query track and scene counts and sync only what was added.

        Removed tracks and scenes are truncated; their listeners lapse
        without an unsubscribe since the remote objects are gone.

        Returns:
            True if the structure changed
        """
        async with self._structure_lock:
            counts = await self._query_all(Scope.SONG, ("num_tracks", "num_scenes"))
            old_tracks, old_scenes = self.store.structure
            new_tracks = max(0, _as_int(counts["num_tracks"], old_tracks))
            new_scenes = max(0, _as_int(counts["num_scenes"], old_scenes))

            if (new_tracks, new_scenes) == (old_tracks, old_scenes):
                return False

            logger.info(
                f"Structure changed: {old_tracks} -> {new_tracks} tracks, "
                f"{old_scenes} -> {new_scenes} scenes"
            )
            self.store.set_structure(new_tracks, new_scenes)

            added_tracks = range(old_tracks, new_tracks)
            added_scenes = range(old_scenes, new_scenes)
            await self._in_batches([partial(self.sync_track, t) for t in added_tracks])
            await self._in_batches([partial(self.sync_scene, s) for s in added_scenes])

            new_slots = [(t, s) for t in added_tracks for s in range(new_scenes)]
            new_slots += [(t, s) for t in range(min(old_tracks, new_tracks)) for s in added_scenes]
            await self._in_batches([partial(self.sync_clip_slot, t, s) for t, s in new_slots])

            if self.listeners_active:
                self._reconcile_listeners()
            return True

    # =========================================================================
    # LISTENERS
    # =========================================================================

    def _desired_listeners(self) -> Set[Subscription]:
        desired: Set[Subscription] = set()
        desired.update((Scope.SONG, prop, ()) for prop in vocab.SONG_LISTENERS)
        desired.update((Scope.VIEW, prop, ()) for prop in vocab.VIEW_LISTENERS)
        desired.update((Scope.MASTER_TRACK, prop, ()) for prop in vocab.MASTER_TRACK_LISTENERS)

        for track in self.store.state.tracks:
            desired.update((Scope.TRACK, prop, (track.id,)) for prop in vocab.TRACK_LISTENERS)
            for slot in track.clips:
                ids = (track.id, slot.scene_index)
                desired.update((Scope.CLIP_SLOT, prop, ids) for prop in vocab.CLIP_SLOT_LISTENERS)
                if slot.has_clip:
                    desired.update((Scope.CLIP, prop, ids) for prop in vocab.CLIP_LISTENERS)
        return desired

    def _exists(self, subscription: Subscription) -> bool:
        scope, _, ids = subscription
        num_tracks, num_scenes = self.store.structure
        if scope == Scope.TRACK:
            return ids[0] < num_tracks
        if scope in (Scope.CLIP_SLOT, Scope.CLIP):
            return ids[0] < num_tracks and ids[1] < num_scenes
        return True

    @staticmethod
    def _order(subscription: Subscription):
        scope, prop, ids = subscription
        return scope.value, ids, prop

    def _reconcile_listeners(self) -> None:
        """Subscribe what is missing; unsubscribe extras whose object still exists."""
        desired = self._desired_listeners()
        added = desired - self._listeners
        removed = self._listeners - desired

        for scope, prop, ids in sorted(added, key=self._order):
            self._send(vocab.start_listen(scope, prop, *ids))

        stopped = 0
        for sub in sorted(removed, key=self._order):
            if self._exists(sub):
                scope, prop, ids = sub
                self._send(vocab.stop_listen(scope, prop, *ids))
                stopped += 1

        self._listeners = desired
        if added or removed:
            logger.debug(
                f"Listeners: +{len(added)} -{stopped} "
                f"({len(removed) - stopped} lapsed), {len(desired)} active"
            )

    def setup_listeners(self) -> None:
        """Subscribe to every change stream the session needs. Idempotent."""
        if not self.listeners_active:
            logger.info("Setting up listeners...")
        self.listeners_active = True
        self._reconcile_listeners()

    def stop_listeners(self, silent: bool = False) -> None:
        """
        Drop every subscription.

        Args:
            silent: Forget subscriptions without sending anything, for when
                the remote end is already gone
        """
        if not self.listeners_active:
            return
        if not silent:
            for scope, prop, ids in sorted(self._listeners, key=self._order):
                self._send(vocab.stop_listen(scope, prop, *ids))
        logger.info(f"Listeners stopped ({len(self._listeners)}{', silent' if silent else ''})")
        self._listeners.clear()
        self.listeners_active = False

    def start_clip_listener(self, track_index: int, scene_index: int) -> None:
        """Subscribe to clip-only properties once a slot holds a clip."""
        if not self.listeners_active:
            return
        for prop in vocab.CLIP_LISTENERS:
            sub = (Scope.CLIP, prop, (track_index, scene_index))
            if sub not in self._listeners and self._exists(sub):
                self._listeners.add(sub)
                self._send(vocab.start_listen(Scope.CLIP, prop, track_index, scene_index))

    def stop_clip_listener(self, track_index: int, scene_index: int) -> None:
        for prop in vocab.CLIP_LISTENERS:
            sub = (Scope.CLIP, prop, (track_index, scene_index))
            if sub in self._listeners:
                self._listeners.discard(sub)
                self._send(vocab.stop_listen(Scope.CLIP, prop, track_index, scene_index))

    def reset(self) -> None:
        """Back to idle with no listeners, without sending anything."""
        self.stop_listeners(silent=True)
        self.phase = SyncPhase.IDLE
