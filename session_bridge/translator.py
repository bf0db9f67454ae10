"""
Message Translator

Pure mapping between the two protocols:

- client message -> OSC commands for the DAW
- unsolicited OSC push -> PushUpdate describing the store mutation

No state, no I/O. The coordinator applies what comes out of here.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel

from . import protocol
from . import vocabulary as vocab
from .model import OscCommand
from .vocabulary import Scope


# =============================================================================
# CLIENT -> OSC
# =============================================================================

def _flag(value: bool) -> int:
    return 1 if value else 0


def client_message_to_osc(message: BaseModel) -> List[OscCommand]:
    """
    Translate a client message into the OSC commands that perform it.

    Messages the coordinator handles itself (session/request,
    session/resync, clip/move) and unknown messages yield [].
    """
    m = message

    # Clips and scenes
    if isinstance(m, protocol.ClipFire):
        return [vocab.action(Scope.CLIP_SLOT, "fire", m.track_id, m.scene_id)]
    if isinstance(m, protocol.ClipStop):
        return [vocab.action(Scope.CLIP_SLOT, "stop", m.track_id, m.scene_id)]
    if isinstance(m, protocol.ClipDelete):
        return [delete_clip(m.track_id, m.scene_id)]
    if isinstance(m, protocol.SceneFire):
        return [vocab.action(Scope.SCENE, "fire", m.scene_id)]
    if isinstance(m, protocol.SceneCreate):
        index = -1 if m.index is None else m.index
        return [vocab.action(Scope.SONG, "create_scene", index)]
    if isinstance(m, protocol.TrackStop):
        return [vocab.action(Scope.TRACK, "stop_all_clips", m.track_id)]

    # Transport
    if isinstance(m, protocol.TransportPlay):
        return [vocab.action(Scope.SONG, "start_playing")]
    if isinstance(m, protocol.TransportStop):
        return [vocab.action(Scope.SONG, "stop_playing")]
    if isinstance(m, protocol.TransportRecord):
        return [vocab.set_value(Scope.SONG, "record_mode", _flag(m.enabled))]
    if isinstance(m, protocol.TransportTempo):
        return [vocab.set_value(Scope.SONG, "tempo", m.bpm)]
    if isinstance(m, protocol.TransportMetronome):
        return [vocab.set_value(Scope.SONG, "metronome", _flag(m.enabled))]
    if isinstance(m, protocol.TransportPunchIn):
        return [vocab.set_value(Scope.SONG, "punch_in", _flag(m.enabled))]
    if isinstance(m, protocol.TransportPunchOut):
        return [vocab.set_value(Scope.SONG, "punch_out", _flag(m.enabled))]
    if isinstance(m, protocol.TransportLoop):
        return [vocab.set_value(Scope.SONG, "loop", _flag(m.enabled))]
    if isinstance(m, protocol.TransportQuantization):
        return [vocab.set_value(Scope.SONG, "clip_trigger_quantization", m.value)]
    if isinstance(m, protocol.TransportTapTempo):
        return [vocab.action(Scope.SONG, "tap_tempo")]

    # Mixer
    if isinstance(m, protocol.MixerVolume):
        return [vocab.set_value(Scope.TRACK, "volume", m.track_id, m.value)]
    if isinstance(m, protocol.MixerPan):
        return [vocab.set_value(Scope.TRACK, "panning", m.track_id, m.value)]
    if isinstance(m, protocol.MixerSend):
        return [vocab.set_value(Scope.TRACK, "send", m.track_id, m.send_index, m.value)]
    if isinstance(m, protocol.MixerMute):
        return [vocab.set_value(Scope.TRACK, "mute", m.track_id, _flag(m.muted))]
    if isinstance(m, protocol.MixerSolo):
        return [vocab.set_value(Scope.TRACK, "solo", m.track_id, _flag(m.soloed))]
    if isinstance(m, protocol.MixerArm):
        return [vocab.set_value(Scope.TRACK, "arm", m.track_id, _flag(m.armed))]

    # Devices
    if isinstance(m, protocol.DeviceParameter):
        return [vocab.set_value(
            Scope.DEVICE, "parameter/value",
            m.track_id, m.device_id, m.parameter_id, m.value,
        )]

    if isinstance(m, protocol.RawOsc):
        return [OscCommand(m.address, list(m.args))]

    return []


def duplicate_clip(src_track: int, src_scene: int, dst_track: int, dst_scene: int) -> OscCommand:
    return vocab.action(Scope.CLIP_SLOT, "duplicate_clip_to", src_track, src_scene, dst_track, dst_scene)


def delete_clip(track_id: int, scene_id: int) -> OscCommand:
    return vocab.action(Scope.CLIP_SLOT, "delete_clip", track_id, scene_id)


# =============================================================================
# OSC PUSH -> UPDATE
# =============================================================================

class PushKind(str, Enum):
    """How the coordinator should treat an unsolicited OSC message."""
    STATE = "state"                        # apply to the store, broadcast patch
    STRUCTURE = "structure"                # track/scene count changed
    WORKSPACE_LOADED = "workspace_loaded"  # remote opened another project
    ECHO = "echo"                          # liveness ping reply
    REMOTE_ERROR = "remote_error"          # remote script reported an error


@dataclass(frozen=True)
class PushUpdate:
    """
    Decoded push notification.

    For STATE updates, setter names the SessionStore method to call with
    args and fields; apply() does exactly that.
    """
    kind: PushKind
    setter: str = ""
    args: Tuple[Any, ...] = ()
    fields: Dict[str, Any] = field(default_factory=dict)

    def apply(self, store: Any) -> Any:
        return getattr(store, self.setter)(*self.args, **self.fields)


def _to_bool(value: Any) -> bool:
    # Flags arrive as 0/1; a string flag must parse as a number
    if isinstance(value, str):
        return float(value) != 0
    return bool(value)


def _to_int(value: Any) -> int:
    return int(value)


def _to_float(value: Any) -> float:
    return float(value)


def _to_str(value: Any) -> str:
    return str(value)


# address -> (store setter, clip field or "", value decoder)
_PushRule = Tuple[str, str, Callable[[Any], Any]]

_SONG = {
    "tempo": ("set_tempo", "", _to_float),
    "is_playing": ("set_is_playing", "", _to_bool),
    "record_mode": ("set_is_recording", "", _to_bool),
    "metronome": ("set_metronome", "", _to_bool),
    "punch_in": ("set_punch_in", "", _to_bool),
    "punch_out": ("set_punch_out", "", _to_bool),
    "loop": ("set_loop", "", _to_bool),
    "clip_trigger_quantization": ("set_clip_trigger_quantization", "", _to_int),
    vocab.BEAT_TIME_PROPERTY: ("set_beat_time", "", _to_float),
}

_VIEW = {
    "selected_track": ("set_selected_track", "", _to_int),
    "selected_scene": ("set_selected_scene", "", _to_int),
}

_MASTER_TRACK = {
    "volume": ("set_master_track_volume", "", _to_float),
    "panning": ("set_master_track_pan", "", _to_float),
    "color": ("set_master_track_color", "", _to_int),
}

_TRACK = {
    "name": ("set_track_name", "", _to_str),
    "color": ("set_track_color", "", _to_int),
    "volume": ("set_track_volume", "", _to_float),
    "panning": ("set_track_pan", "", _to_float),
    "send": ("set_track_send", "", _to_float),
    "mute": ("set_track_mute", "", _to_bool),
    "solo": ("set_track_solo", "", _to_bool),
    "arm": ("set_track_arm", "", _to_bool),
    "playing_slot_index": ("set_track_playing_slot", "", _to_int),
    "fired_slot_index": ("set_track_fired_slot", "", _to_int),
}

_SCENE = {
    "name": ("set_scene_name", "", _to_str),
    "color": ("set_scene_color", "", _to_int),
}

_CLIP_SLOT = {
    "has_clip": ("set_has_clip", "", _to_bool),
}

_CLIP = {
    "name": ("update_clip", "name", _to_str),
    "color": ("update_clip", "color", _to_int),
    "length": ("update_clip", "length", _to_float),
    "loop_start": ("update_clip", "loop_start", _to_float),
    "loop_end": ("update_clip", "loop_end", _to_float),
    "playing_position": ("update_clip", "playing_position", _to_float),
    "is_audio_clip": ("update_clip", "is_audio_clip", _to_bool),
    "is_midi_clip": ("update_clip", "is_midi_clip", _to_bool),
}

PUSH_TABLE: Dict[str, _PushRule] = {}
for _scope, _rules in (
    (Scope.SONG, _SONG),
    (Scope.VIEW, _VIEW),
    (Scope.MASTER_TRACK, _MASTER_TRACK),
    (Scope.TRACK, _TRACK),
    (Scope.SCENE, _SCENE),
    (Scope.CLIP_SLOT, _CLIP_SLOT),
    (Scope.CLIP, _CLIP),
):
    for _prop, _rule in _rules.items():
        PUSH_TABLE[vocab.getter_address(_scope, _prop)] = _rule

STRUCTURE_ADDRESSES = frozenset(
    vocab.getter_address(Scope.SONG, prop) for prop in ("num_tracks", "num_scenes")
)
PLAYING_STATUS_ADDRESS = vocab.getter_address(Scope.CLIP, "playing_status")
_KNOWN_GETTERS = frozenset(PUSH_TABLE) | STRUCTURE_ADDRESSES | {PLAYING_STATUS_ADDRESS}

_SCOPES = "|".join(scope.value for scope in Scope)
# "/live/track/volume" -> "/live/track/get/volume"
_LISTENER_FORM = re.compile(
    rf"^/live/({_SCOPES})/(?!(?:get|set|start_listen|stop_listen)/)([a-z_]+(?:/[a-z_]+)?)$"
)


def normalize_address(address: str) -> str:
    """Rewrite a listener-form address (no "get" segment) to its getter form."""
    match = _LISTENER_FORM.match(address)
    if match is None:
        return address
    getter = vocab.getter_address(Scope(match.group(1)), match.group(2))
    return getter if getter in _KNOWN_GETTERS else address


def decode_playing_status(args: Sequence[Any]) -> Optional[Tuple[bool, bool, bool]]:
    """
    Decode (is_playing, is_triggered, is_recording) from playing_status args.

    Two layouts exist:
        [track, scene, status]                     status 0=stopped 1=playing 2=triggered 3=recording
        [track, scene, playing, triggered, recording]
    """
    if len(args) >= 5:
        return _to_bool(args[2]), _to_bool(args[3]), _to_bool(args[4])
    if len(args) == 3:
        status = int(args[2])
        return status == 1, status == 2, status == 3
    return None


def translate_push(address: str, args: Sequence[Any]) -> Optional[PushUpdate]:
    """
    Classify an OSC message that did not answer a pending query.

    Returns:
        PushUpdate, or None for unknown or malformed messages
    """
    address = normalize_address(address)

    if address == vocab.TEST_ADDRESS:
        return PushUpdate(PushKind.ECHO)
    if address == vocab.STARTUP_ADDRESS:
        return PushUpdate(PushKind.WORKSPACE_LOADED)
    if address == vocab.ERROR_ADDRESS:
        return PushUpdate(PushKind.REMOTE_ERROR, args=tuple(args))
    if address in STRUCTURE_ADDRESSES:
        return PushUpdate(PushKind.STRUCTURE, args=tuple(args))

    if address == PLAYING_STATUS_ADDRESS:
        try:
            status = decode_playing_status(args)
        except (TypeError, ValueError):
            return None
        if status is None:
            return None
        return PushUpdate(PushKind.STATE, "set_clip_playing_status", (args[0], args[1]) + status)

    rule = PUSH_TABLE.get(address)
    if rule is None:
        return None
    setter, clip_field, decode = rule

    ids = vocab.id_arg_count(address)
    if len(args) < ids + 1:
        return None
    try:
        value = decode(args[ids])
    except (TypeError, ValueError):
        return None

    if clip_field:
        return PushUpdate(PushKind.STATE, setter, tuple(args[:ids]), {clip_field: value})
    return PushUpdate(PushKind.STATE, setter, tuple(args[:ids]) + (value,))
