"""
Session Models

Mutable session tree mirrored from the DAW (tracks x scenes clip matrix,
transport, selection, master track) plus the small immutable values that
flow between components: OscCommand for the remote side and Patch for
the client side.

Every entity serializes to the camelCase shape clients expect via to_dict().
"""

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Dict, List, Optional


# =============================================================================
# DEFAULTS
# =============================================================================

DEFAULT_TEMPO = 120.0
DEFAULT_VOLUME = 0.85  # unity gain on the DAW fader
DEFAULT_PAN = 0.0
DEFAULT_QUANTIZATION = 8  # 1/8
NO_SLOT = -1


# =============================================================================
# OSC COMMAND
# =============================================================================

@dataclass(frozen=True)
class OscCommand:
    """
    OSC message to send to (or received from) the DAW.

    Attributes:
        address: OSC address (e.g., "/live/track/get/volume")
        args: Positional arguments (ints, floats, strings)
    """
    address: str
    args: List[Any] = field(default_factory=list)

    def __str__(self) -> str:
        args_str = " ".join(str(a) for a in self.args) if self.args else ""
        return f"{self.address} {args_str}".strip()


# =============================================================================
# SESSION ENTITIES
# =============================================================================

@dataclass
class Clip:
    """Clip payload; only present on a slot whose has_clip is True."""
    name: str = ""
    color: int = 0
    is_playing: bool = False
    is_triggered: bool = False
    is_recording: bool = False
    playing_position: float = 0.0
    length: float = 0.0
    loop_start: float = 0.0
    loop_end: float = 0.0
    is_audio_clip: bool = False
    is_midi_clip: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "color": self.color,
            "isPlaying": self.is_playing,
            "isTriggered": self.is_triggered,
            "isRecording": self.is_recording,
            "playingPosition": self.playing_position,
            "length": self.length,
            "loopStart": self.loop_start,
            "loopEnd": self.loop_end,
            "isAudioClip": self.is_audio_clip,
            "isMidiClip": self.is_midi_clip,
        }


@dataclass
class ClipSlot:
    """One cell of the clip matrix (track x scene)."""
    track_index: int
    scene_index: int
    has_clip: bool = False
    clip: Optional[Clip] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trackIndex": self.track_index,
            "sceneIndex": self.scene_index,
            "hasClip": self.has_clip,
            "clip": self.clip.to_dict() if self.clip else None,
        }


@dataclass
class Track:
    """
    Session track.

    clips is indexed by scene id and always has one slot per scene.
    """
    id: int
    name: str = ""
    color: int = 0
    volume: float = DEFAULT_VOLUME
    pan: float = DEFAULT_PAN
    mute: bool = False
    solo: bool = False
    arm: bool = False
    playing_slot_index: int = NO_SLOT
    fired_slot_index: int = NO_SLOT
    has_midi_input: bool = False
    has_audio_input: bool = False
    sends: List[float] = field(default_factory=list)
    clips: List[ClipSlot] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "color": self.color,
            "volume": self.volume,
            "pan": self.pan,
            "mute": self.mute,
            "solo": self.solo,
            "arm": self.arm,
            "playingSlotIndex": self.playing_slot_index,
            "firedSlotIndex": self.fired_slot_index,
            "hasMidiInput": self.has_midi_input,
            "hasAudioInput": self.has_audio_input,
            "sends": list(self.sends),
            "clips": [slot.to_dict() for slot in self.clips],
        }


@dataclass
class Scene:
    """Session scene (one row of the clip matrix)."""
    id: int
    name: str = ""
    color: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "color": self.color}


@dataclass
class MasterTrack:
    """Master bus. No mute/solo/arm."""
    color: int = 0
    volume: float = DEFAULT_VOLUME
    pan: float = DEFAULT_PAN

    def to_dict(self) -> Dict[str, Any]:
        return {"color": self.color, "volume": self.volume, "pan": self.pan}


@dataclass
class SessionState:
    """Root aggregate of the mirrored session."""
    tempo: float = DEFAULT_TEMPO
    is_playing: bool = False
    is_recording: bool = False
    metronome: bool = False
    punch_in: bool = False
    punch_out: bool = False
    loop: bool = False
    clip_trigger_quantization: int = DEFAULT_QUANTIZATION
    beat_time: float = 0.0
    selected_track: int = 0
    selected_scene: int = 0
    master_track: MasterTrack = field(default_factory=MasterTrack)
    tracks: List[Track] = field(default_factory=list)
    scenes: List[Scene] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tempo": self.tempo,
            "isPlaying": self.is_playing,
            "isRecording": self.is_recording,
            "metronome": self.metronome,
            "punchIn": self.punch_in,
            "punchOut": self.punch_out,
            "loop": self.loop,
            "clipTriggerQuantization": self.clip_trigger_quantization,
            "beatTime": self.beat_time,
            "selectedTrack": self.selected_track,
            "selectedScene": self.selected_scene,
            "masterTrack": self.master_track.to_dict(),
            "tracks": [t.to_dict() for t in self.tracks],
            "scenes": [s.to_dict() for s in self.scenes],
        }


# Transport fields as they appear on the wire
TRANSPORT_FIELDS: Dict[str, str] = {
    "tempo": "tempo",
    "is_playing": "isPlaying",
    "is_recording": "isRecording",
    "metronome": "metronome",
    "punch_in": "punchIn",
    "punch_out": "punchOut",
    "loop": "loop",
    "clip_trigger_quantization": "clipTriggerQuantization",
    "beat_time": "beatTime",
}


def assign_fields(entity: Any, updates: Dict[str, Any]) -> None:
    """
    Merge updates into a dataclass entity (last write wins).

    Raises:
        AttributeError: If an update names a field the entity does not have
    """
    known = {f.name for f in fields(entity)}
    for name, value in updates.items():
        if name not in known:
            raise AttributeError(f"{type(entity).__name__} has no field {name!r}")
        setattr(entity, name, value)


# =============================================================================
# PATCHES
# =============================================================================

class PatchKind(str, Enum):
    """Patch discriminator."""
    TRANSPORT = "transport"
    TRACK = "track"
    CLIP = "clip"
    SCENE = "scene"
    MASTER_TRACK = "masterTrack"
    SELECTION = "selection"
    STRUCTURE = "structure"


@dataclass(frozen=True)
class Patch:
    """
    Minimal description of one state change, broadcast to clients.

    payload is a snapshot taken when the store applied the change, so a
    Patch never reflects later mutations.
    """
    kind: PatchKind
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, **self.payload}
