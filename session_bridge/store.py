"""
Session Store

Owns the SessionState tree. Every mutation goes through a method here and
returns the Patch describing what changed. No I/O.

Setters addressing a track, scene or clip slot that does not exist return
None instead of raising: indices may lag behind structural changes that
arrive over UDP in any order.
"""

import logging
from typing import Any, Optional, Tuple

from .model import (
    Clip,
    ClipSlot,
    NO_SLOT,
    Patch,
    PatchKind,
    Scene,
    SessionState,
    Track,
    TRANSPORT_FIELDS,
    assign_fields,
)

logger = logging.getLogger(__name__)

# The DAW caps return tracks at 12
MAX_SENDS = 12


def _in_range(index: Any, size: int) -> bool:
    return isinstance(index, int) and not isinstance(index, bool) and 0 <= index < size


class SessionStore:
    """
    Authoritative session state with patch generation.

    Setters are not deduplicated: the same call twice yields two equal
    patches. Suppressing redundant patches is up to the caller.
    """

    def __init__(self):
        self._state = SessionState()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def structure(self) -> Tuple[int, int]:
        """(num_tracks, num_scenes) as currently allocated."""
        return len(self._state.tracks), len(self._state.scenes)

    def reset(self) -> None:
        """Replace the tree with an empty one."""
        self._state = SessionState()

    def initialize(self, **transport: Any) -> None:
        """
        Replace the tree wholesale, seeding transport fields.

        Tracks and scenes start empty; call set_structure() afterwards.
        """
        state = SessionState()
        assign_fields(state, transport)
        state.tracks = []
        state.scenes = []
        self._state = state

    # =========================================================================
    # TRANSPORT
    # =========================================================================

    def _set_transport(self, name: str, value: Any) -> Patch:
        setattr(self._state, name, value)
        return Patch(PatchKind.TRANSPORT, {TRANSPORT_FIELDS[name]: value})

    def set_tempo(self, tempo: float) -> Patch:
        return self._set_transport("tempo", tempo)

    def set_is_playing(self, is_playing: bool) -> Patch:
        return self._set_transport("is_playing", is_playing)

    def set_is_recording(self, is_recording: bool) -> Patch:
        return self._set_transport("is_recording", is_recording)

    def set_metronome(self, metronome: bool) -> Patch:
        return self._set_transport("metronome", metronome)

    def set_punch_in(self, punch_in: bool) -> Patch:
        return self._set_transport("punch_in", punch_in)

    def set_punch_out(self, punch_out: bool) -> Patch:
        return self._set_transport("punch_out", punch_out)

    def set_loop(self, loop: bool) -> Patch:
        return self._set_transport("loop", loop)

    def set_clip_trigger_quantization(self, value: int) -> Patch:
        return self._set_transport("clip_trigger_quantization", value)

    def set_beat_time(self, beat_time: float) -> Patch:
        return self._set_transport("beat_time", beat_time)

    # =========================================================================
    # SELECTION
    # =========================================================================

    def set_selected_track(self, track_index: int) -> Patch:
        self._state.selected_track = track_index
        return Patch(PatchKind.SELECTION, {"selectedTrack": track_index})

    def set_selected_scene(self, scene_index: int) -> Patch:
        self._state.selected_scene = scene_index
        return Patch(PatchKind.SELECTION, {"selectedScene": scene_index})

    # =========================================================================
    # STRUCTURE
    # =========================================================================

    def set_structure(self, num_tracks: int, num_scenes: int) -> Patch:
        """
        Grow or shrink tracks and scenes, then re-pad every track's clip
        row to num_scenes so len(track.clips) == len(scenes) for all tracks.
        """
        num_tracks = max(0, int(num_tracks))
        num_scenes = max(0, int(num_scenes))
        tracks = self._state.tracks
        scenes = self._state.scenes

        while len(tracks) < num_tracks:
            tracks.append(self._create_track(len(tracks)))
        del tracks[num_tracks:]

        while len(scenes) < num_scenes:
            scenes.append(Scene(id=len(scenes)))
        del scenes[num_scenes:]

        for track in tracks:
            while len(track.clips) < num_scenes:
                track.clips.append(ClipSlot(track.id, len(track.clips)))
            del track.clips[num_scenes:]
            # A slot index pointing at a removed scene means nothing any more
            if track.playing_slot_index >= num_scenes:
                track.playing_slot_index = NO_SLOT
            if track.fired_slot_index >= num_scenes:
                track.fired_slot_index = NO_SLOT

        logger.debug(f"Structure: {num_tracks} tracks x {num_scenes} scenes")
        return Patch(PatchKind.STRUCTURE, {"numTracks": num_tracks, "numScenes": num_scenes})

    # =========================================================================
    # TRACKS
    # =========================================================================

    def get_track(self, track_index: int) -> Optional[Track]:
        if not _in_range(track_index, len(self._state.tracks)):
            return None
        return self._state.tracks[track_index]

    def _track_patch(self, track: Track) -> Patch:
        return Patch(PatchKind.TRACK, {"trackIndex": track.id, "track": track.to_dict()})

    def update_track(self, track_index: int, **updates: Any) -> Optional[Patch]:
        """Merge field updates into a track."""
        track = self.get_track(track_index)
        if track is None:
            return None
        assign_fields(track, updates)
        if "playing_slot_index" in updates or "fired_slot_index" in updates:
            self._apply_slot_flags(track)
        return self._track_patch(track)

    def set_track_name(self, track_index: int, name: str) -> Optional[Patch]:
        return self.update_track(track_index, name=name)

    def set_track_color(self, track_index: int, color: int) -> Optional[Patch]:
        return self.update_track(track_index, color=color)

    def set_track_volume(self, track_index: int, volume: float) -> Optional[Patch]:
        return self.update_track(track_index, volume=volume)

    def set_track_pan(self, track_index: int, pan: float) -> Optional[Patch]:
        return self.update_track(track_index, pan=pan)

    def set_track_mute(self, track_index: int, mute: bool) -> Optional[Patch]:
        return self.update_track(track_index, mute=mute)

    def set_track_solo(self, track_index: int, solo: bool) -> Optional[Patch]:
        return self.update_track(track_index, solo=solo)

    def set_track_arm(self, track_index: int, arm: bool) -> Optional[Patch]:
        return self.update_track(track_index, arm=arm)

    def set_track_playing_slot(self, track_index: int, slot_index: int) -> Optional[Patch]:
        return self.update_track(track_index, playing_slot_index=slot_index)

    def set_track_fired_slot(self, track_index: int, slot_index: int) -> Optional[Patch]:
        return self.update_track(track_index, fired_slot_index=slot_index)

    def set_track_send(self, track_index: int, send_index: int, value: float) -> Optional[Patch]:
        track = self.get_track(track_index)
        if track is None or not _in_range(send_index, MAX_SENDS):
            return None
        while len(track.sends) <= send_index:
            track.sends.append(0.0)
        track.sends[send_index] = value
        return self._track_patch(track)

    # =========================================================================
    # SCENES
    # =========================================================================

    def get_scene(self, scene_index: int) -> Optional[Scene]:
        if not _in_range(scene_index, len(self._state.scenes)):
            return None
        return self._state.scenes[scene_index]

    def update_scene(self, scene_index: int, **updates: Any) -> Optional[Patch]:
        scene = self.get_scene(scene_index)
        if scene is None:
            return None
        assign_fields(scene, updates)
        return Patch(PatchKind.SCENE, {"sceneIndex": scene.id, "scene": scene.to_dict()})

    def set_scene_name(self, scene_index: int, name: str) -> Optional[Patch]:
        return self.update_scene(scene_index, name=name)

    def set_scene_color(self, scene_index: int, color: int) -> Optional[Patch]:
        return self.update_scene(scene_index, color=color)

    # =========================================================================
    # MASTER TRACK
    # =========================================================================

    def update_master_track(self, **updates: Any) -> Patch:
        master = self._state.master_track
        assign_fields(master, updates)
        return Patch(PatchKind.MASTER_TRACK, {"masterTrack": master.to_dict()})

    def set_master_track_color(self, color: int) -> Patch:
        return self.update_master_track(color=color)

    def set_master_track_volume(self, volume: float) -> Patch:
        return self.update_master_track(volume=volume)

    def set_master_track_pan(self, pan: float) -> Patch:
        return self.update_master_track(pan=pan)

    # =========================================================================
    # CLIP SLOTS
    # =========================================================================

    def get_clip_slot(self, track_index: int, scene_index: int) -> Optional[ClipSlot]:
        track = self.get_track(track_index)
        if track is None or not _in_range(scene_index, len(track.clips)):
            return None
        return track.clips[scene_index]

    def _clip_patch(self, slot: ClipSlot) -> Patch:
        return Patch(PatchKind.CLIP, {
            "trackIndex": slot.track_index,
            "sceneIndex": slot.scene_index,
            "clipSlot": slot.to_dict(),
        })

    def update_clip_slot(self, track_index: int, scene_index: int, **updates: Any) -> Optional[Patch]:
        slot = self.get_clip_slot(track_index, scene_index)
        if slot is None:
            return None
        assign_fields(slot, updates)
        if not slot.has_clip:
            slot.clip = None
        return self._clip_patch(slot)

    def set_has_clip(self, track_index: int, scene_index: int, has_clip: bool) -> Optional[Patch]:
        """Flip slot occupancy. Emptying a slot discards its clip payload."""
        slot = self.get_clip_slot(track_index, scene_index)
        if slot is None:
            return None
        slot.has_clip = has_clip
        if not has_clip:
            slot.clip = None
        return self._clip_patch(slot)

    def update_clip(self, track_index: int, scene_index: int, **updates: Any) -> Optional[Patch]:
        """Merge clip properties; ignored unless the slot holds a clip."""
        slot = self.get_clip_slot(track_index, scene_index)
        if slot is None or not slot.has_clip:
            return None
        if slot.clip is None:
            slot.clip = Clip()
        assign_fields(slot.clip, updates)
        return self._clip_patch(slot)

    def set_clip_playing_status(
        self,
        track_index: int,
        scene_index: int,
        is_playing: bool,
        is_triggered: bool,
        is_recording: bool,
    ) -> Optional[Patch]:
        # triggered means "about to play"; playing wins when both are reported
        return self.update_clip(
            track_index,
            scene_index,
            is_playing=is_playing,
            is_triggered=is_triggered and not is_playing,
            is_recording=is_recording,
        )

    def mark_playing_clips(self) -> int:
        """
        Derive clip playing/triggered flags from every track's slot indices.

        Used once after the bulk sync, since playing status is not queryable.

        Returns:
            Number of clips currently playing or triggered
        """
        count = 0
        for track in self._state.tracks:
            count += self._apply_slot_flags(track)
        return count

    def _apply_slot_flags(self, track: Track) -> int:
        active = 0
        for slot in track.clips:
            if slot.clip is None:
                continue
            index = slot.scene_index
            slot.clip.is_playing = index == track.playing_slot_index
            slot.clip.is_triggered = (
                index == track.fired_slot_index and index != track.playing_slot_index
            )
            if slot.clip.is_playing or slot.clip.is_triggered:
                active += 1
        return active

    # =========================================================================
    # FACTORIES
    # =========================================================================

    def _create_track(self, track_id: int) -> Track:
        num_scenes = len(self._state.scenes)
        return Track(
            id=track_id,
            name=f"Track {track_id + 1}",
            clips=[ClipSlot(track_id, s) for s in range(num_scenes)],
        )

