"""
Remote OSC Vocabulary

Single source of truth for the DAW remote surface's OSC address space
(AbletonOSC layout, "/live/<scope>/..."):

- Address builders for getters, setters, listener subscriptions and actions
- How many leading arguments identify the target object per scope
- The property sets the synchronizer queries and listens to

Every queryable property lives at one base address with a get / set /
start_listen / stop_listen segment.
"""

from enum import Enum
from typing import Dict, Optional, Tuple

from .model import OscCommand

PREFIX = "/live"


class Scope(str, Enum):
    """Top-level object namespaces of the remote surface."""
    SONG = "song"
    VIEW = "view"
    TRACK = "track"
    CLIP_SLOT = "clip_slot"
    CLIP = "clip"
    SCENE = "scene"
    DEVICE = "device"
    MASTER_TRACK = "master_track"
    APPLICATION = "application"


# Number of leading arguments that identify the object a message is about:
# track-scoped = [track_id, value...], clip-scoped = [track_id, scene_id, value...]
SCOPE_ID_ARGS: Dict[str, int] = {
    Scope.SONG.value: 0,
    Scope.VIEW.value: 0,
    Scope.MASTER_TRACK.value: 0,
    Scope.APPLICATION.value: 0,
    Scope.TRACK.value: 1,
    Scope.SCENE.value: 1,
    Scope.CLIP_SLOT.value: 2,
    Scope.CLIP.value: 2,
    Scope.DEVICE.value: 2,
}

# Properties addressed by more than the scope's ids
PROPERTY_ID_ARGS: Dict[str, int] = {
    "send": 2,             # [track_id, send_index, value]
    "parameter/value": 3,  # [track_id, device_id, parameter_id, value]
}

# Application-level messages
TEST_ADDRESS = f"{PREFIX}/test"
STARTUP_ADDRESS = f"{PREFIX}/startup"
ERROR_ADDRESS = f"{PREFIX}/error"

_VERBS = ("get", "set", "start_listen", "stop_listen")


# =============================================================================
# ADDRESS BUILDERS
# =============================================================================

def address(scope: Scope, verb: str, prop: str) -> str:
    """Build "/live/<scope>/<verb>/<prop>"."""
    return f"{PREFIX}/{scope.value}/{verb}/{prop}"


def getter_address(scope: Scope, prop: str) -> str:
    return address(scope, "get", prop)


def get(scope: Scope, prop: str, *ids: int) -> OscCommand:
    """Query a property; ids identify the object (track, scene...)."""
    return OscCommand(getter_address(scope, prop), list(ids))


def set_value(scope: Scope, prop: str, *args) -> OscCommand:
    return OscCommand(address(scope, "set", prop), list(args))


def start_listen(scope: Scope, prop: str, *ids: int) -> OscCommand:
    return OscCommand(address(scope, "start_listen", prop), list(ids))


def stop_listen(scope: Scope, prop: str, *ids: int) -> OscCommand:
    return OscCommand(address(scope, "stop_listen", prop), list(ids))


def action(scope: Scope, name: str, *args) -> OscCommand:
    """Verb-less command such as /live/song/start_playing."""
    return OscCommand(f"{PREFIX}/{scope.value}/{name}", list(args))


def ping() -> OscCommand:
    """Liveness ping; the remote echoes it back."""
    return OscCommand(TEST_ADDRESS, [])


# =============================================================================
# ADDRESS PARSING
# =============================================================================

def split_address(addr: str) -> Optional[Tuple[str, str, str]]:
    """
    Split "/live/<scope>/<verb>/<prop...>" into (scope, verb, prop).

    Returns None for addresses outside the vocabulary or without a verb.
    """
    parts = addr.split("/")
    # ["", "live", scope, verb, prop...]
    if len(parts) < 5 or parts[0] != "" or f"/{parts[1]}" != PREFIX:
        return None
    scope, verb = parts[2], parts[3]
    if scope not in SCOPE_ID_ARGS or verb not in _VERBS:
        return None
    return scope, verb, "/".join(parts[4:])


def id_arg_count(addr: str) -> int:
    """
    Number of leading identifying arguments for an address.

    Application-level and unrecognized addresses carry none.
    """
    parts = addr.split("/")
    if len(parts) < 3 or f"/{parts[1]}" != PREFIX:
        return 0
    scope = parts[2]
    if scope not in SCOPE_ID_ARGS:
        return 0
    if len(parts) > 3 and parts[3] in _VERBS:
        prop = "/".join(parts[4:])
    else:
        # listener form without the verb segment
        prop = "/".join(parts[3:])
    return PROPERTY_ID_ARGS.get(prop, SCOPE_ID_ARGS[scope])


# =============================================================================
# SYNC PROPERTY SETS
# =============================================================================

SONG_QUERIES: Tuple[str, ...] = (
    "tempo",
    "is_playing",
    "record_mode",
    "metronome",
    "clip_trigger_quantization",
    "punch_in",
    "punch_out",
    "loop",
    "num_tracks",
    "num_scenes",
)

SONG_LISTENERS: Tuple[str, ...] = (
    "tempo",
    "is_playing",
    "record_mode",
    "metronome",
    "clip_trigger_quantization",
    "punch_in",
    "punch_out",
    "loop",
    "num_tracks",
    "num_scenes",
)

VIEW_QUERIES: Tuple[str, ...] = ("selected_track", "selected_scene")
VIEW_LISTENERS: Tuple[str, ...] = ("selected_track", "selected_scene")

MASTER_TRACK_QUERIES: Tuple[str, ...] = ("volume", "panning", "color")
MASTER_TRACK_LISTENERS: Tuple[str, ...] = ("volume", "panning")

TRACK_QUERIES: Tuple[str, ...] = (
    "name",
    "color",
    "volume",
    "panning",
    "mute",
    "solo",
    "arm",
    "playing_slot_index",
    "fired_slot_index",
    "has_midi_input",
    "has_audio_input",
)

TRACK_LISTENERS: Tuple[str, ...] = (
    "name",
    "color",
    "volume",
    "panning",
    "mute",
    "solo",
    "arm",
    "playing_slot_index",
    "fired_slot_index",
)

SCENE_QUERIES: Tuple[str, ...] = ("name", "color")

CLIP_SLOT_LISTENERS: Tuple[str, ...] = ("has_clip",)

# Only meaningful once a clip exists in the slot
CLIP_QUERIES: Tuple[str, ...] = (
    "name",
    "color",
    "length",
    "loop_start",
    "loop_end",
    "is_audio_clip",
    "is_midi_clip",
)
CLIP_LISTENERS: Tuple[str, ...] = ("playing_status",)

# Polled while playing; the remote cannot push it
BEAT_TIME_PROPERTY = "current_song_time"
