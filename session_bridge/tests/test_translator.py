"""Tests for client <-> OSC translation."""

import pytest

from session_bridge.model import OscCommand
from session_bridge.protocol import parse_client_message
from session_bridge.store import SessionStore
from session_bridge.translator import (
    PushKind,
    client_message_to_osc,
    decode_playing_status,
    normalize_address,
    translate_push,
)


def translate(text: str):
    return client_message_to_osc(parse_client_message(text))


# =============================================================================
# CLIENT -> OSC
# =============================================================================


class TestClientToOsc:
    """Each client message maps to the documented OSC command."""

    @pytest.mark.parametrize("text, address, args", [
        ('{"type": "clip/fire", "trackId": 1, "sceneId": 2}', "/live/clip_slot/fire", [1, 2]),
        ('{"type": "clip/stop", "trackId": 1, "sceneId": 2}', "/live/clip_slot/stop", [1, 2]),
        ('{"type": "clip/delete", "trackId": 3, "sceneId": 0}', "/live/clip_slot/delete_clip", [3, 0]),
        ('{"type": "scene/fire", "sceneId": 4}', "/live/scene/fire", [4]),
        ('{"type": "scene/create"}', "/live/song/create_scene", [-1]),
        ('{"type": "scene/create", "index": 2}', "/live/song/create_scene", [2]),
        ('{"type": "track/stop", "trackId": 5}', "/live/track/stop_all_clips", [5]),
        ('{"type": "transport/play"}', "/live/song/start_playing", []),
        ('{"type": "transport/stop"}', "/live/song/stop_playing", []),
        ('{"type": "transport/record", "enabled": true}', "/live/song/set/record_mode", [1]),
        ('{"type": "transport/tempo", "bpm": 124.5}', "/live/song/set/tempo", [124.5]),
        ('{"type": "transport/metronome", "enabled": false}', "/live/song/set/metronome", [0]),
        ('{"type": "transport/punchIn", "enabled": true}', "/live/song/set/punch_in", [1]),
        ('{"type": "transport/punchOut", "enabled": true}', "/live/song/set/punch_out", [1]),
        ('{"type": "transport/loop", "enabled": false}', "/live/song/set/loop", [0]),
        ('{"type": "transport/quantization", "value": 7}', "/live/song/set/clip_trigger_quantization", [7]),
        ('{"type": "transport/tapTempo"}', "/live/song/tap_tempo", []),
        ('{"type": "mixer/volume", "trackId": 0, "value": 0.7}', "/live/track/set/volume", [0, 0.7]),
        ('{"type": "mixer/pan", "trackId": 0, "value": -0.5}', "/live/track/set/panning", [0, -0.5]),
        ('{"type": "mixer/send", "trackId": 2, "sendIndex": 1, "value": 0.3}', "/live/track/set/send", [2, 1, 0.3]),
        ('{"type": "mixer/mute", "trackId": 1, "muted": true}', "/live/track/set/mute", [1, 1]),
        ('{"type": "mixer/solo", "trackId": 1, "soloed": false}', "/live/track/set/solo", [1, 0]),
        ('{"type": "mixer/arm", "trackId": 1, "armed": true}', "/live/track/set/arm", [1, 1]),
        (
            '{"type": "device/parameter", "trackId": 1, "deviceId": 0, "parameterId": 3, "value": 0.25}',
            "/live/device/set/parameter/value", [1, 0, 3, 0.25],
        ),
        ('{"type": "osc", "address": "/live/song/undo"}', "/live/song/undo", []),
        ('{"type": "osc", "address": "/live/x", "args": [1, "a", 0.5]}', "/live/x", [1, "a", 0.5]),
    ])
    def test_mapping(self, text, address, args):
        assert translate(text) == [OscCommand(address, args)]

    @pytest.mark.parametrize("text", [
        '{"type": "session/request"}',
        '{"type": "session/resync"}',
        '{"type": "clip/move", "srcTrack": 0, "srcScene": 0, "dstTrack": 1, "dstScene": 0}',
    ])
    def test_coordinator_messages_translate_to_nothing(self, text):
        """Messages the bridge handles itself produce no direct OSC."""
        assert translate(text) == []

    def test_unknown_object_is_noop(self):
        """Anything that is not a known message maps to no commands."""
        assert client_message_to_osc(object()) == []


# =============================================================================
# OSC PUSH -> UPDATE
# =============================================================================


class TestPlayingStatus:
    """playing_status meaning depends on argument count."""

    def test_three_arg_status_code(self):
        """[track, scene, 1] means playing."""
        update = translate_push("/live/clip/get/playing_status", [2, 1, 1])
        assert update.setter == "set_clip_playing_status"
        assert update.args == (2, 1, True, False, False)

    @pytest.mark.parametrize("code, expected", [
        (0, (False, False, False)),
        (1, (True, False, False)),
        (2, (False, True, False)),
        (3, (False, False, True)),
    ])
    def test_status_codes(self, code, expected):
        assert decode_playing_status([0, 0, code]) == expected

    def test_five_arg_booleans(self):
        """[track, scene, playing, triggered, recording] are separate flags."""
        update = translate_push("/live/clip/get/playing_status", [2, 1, 0, 1, 0])
        assert update.args == (2, 1, False, True, False)

    def test_five_arg_string_flags(self):
        update = translate_push("/live/clip/get/playing_status", [2, 1, "0", "1", "0"])
        assert update.args == (2, 1, False, True, False)

    def test_short_form_is_rejected(self):
        assert translate_push("/live/clip/get/playing_status", [2, 1]) is None

    def test_applies_to_store(self):
        store = SessionStore()
        store.set_structure(3, 2)
        store.set_has_clip(2, 1, True)

        patch = translate_push("/live/clip/get/playing_status", [2, 1, 0, 1, 0]).apply(store)
        clip = patch.payload["clipSlot"]["clip"]
        assert (clip["isPlaying"], clip["isTriggered"], clip["isRecording"]) == (False, True, False)


class TestPushTranslation:
    """Address dispatch and argument decoding."""

    def test_song_value(self):
        update = translate_push("/live/song/get/tempo", [133])
        assert update.kind == PushKind.STATE
        assert update.setter == "set_tempo"
        assert update.args == (133.0,)

    def test_flags_decode_to_bool(self):
        assert translate_push("/live/song/get/is_playing", [1]).args == (True,)
        assert translate_push("/live/track/get/mute", [3, 0]).args == (3, False)

    @pytest.mark.parametrize("text, expected", [
        ("0", False),
        ("1", True),
        ("0.0", False),
    ])
    def test_string_flags_read_as_numbers(self, text, expected):
        assert translate_push("/live/track/get/mute", [0, text]).args == (0, expected)

    def test_non_numeric_string_flag_is_rejected(self):
        assert translate_push("/live/track/get/solo", [0, "yes"]) is None
        assert translate_push("/live/clip/get/playing_status", [0, 0, "0", "1", "no"]) is None

    def test_track_value_keeps_id(self):
        update = translate_push("/live/track/get/volume", [4, 0.6])
        assert (update.setter, update.args) == ("set_track_volume", (4, 0.6))

    def test_track_send_has_two_ids(self):
        update = translate_push("/live/track/get/send", [1, 2, 0.9])
        assert (update.setter, update.args) == ("set_track_send", (1, 2, 0.9))

    def test_clip_property_becomes_field(self):
        update = translate_push("/live/clip/get/name", [0, 3, "Lead"])
        assert update.setter == "update_clip"
        assert update.args == (0, 3)
        assert update.fields == {"name": "Lead"}

    def test_has_clip(self):
        update = translate_push("/live/clip_slot/get/has_clip", [2, 1, 1])
        assert (update.setter, update.args) == ("set_has_clip", (2, 1, True))

    def test_missing_value_is_rejected(self):
        """A track push without its value is malformed, not a zero."""
        assert translate_push("/live/track/get/volume", [4]) is None

    def test_undecodable_value_is_rejected(self):
        assert translate_push("/live/song/get/tempo", ["fast"]) is None

    def test_unknown_address(self):
        assert translate_push("/live/song/get/groove_amount", [0.5]) is None
        assert translate_push("/other/thing", []) is None

    @pytest.mark.parametrize("address, kind", [
        ("/live/song/get/num_tracks", PushKind.STRUCTURE),
        ("/live/song/get/num_scenes", PushKind.STRUCTURE),
        ("/live/startup", PushKind.WORKSPACE_LOADED),
        ("/live/test", PushKind.ECHO),
        ("/live/error", PushKind.REMOTE_ERROR),
    ])
    def test_special_classifications(self, address, kind):
        assert translate_push(address, [1]).kind == kind


class TestListenerAddresses:
    """Listener-form addresses without the get segment."""

    def test_normalized_to_getter(self):
        assert normalize_address("/live/track/volume") == "/live/track/get/volume"
        assert normalize_address("/live/clip/playing_status") == "/live/clip/get/playing_status"

    def test_getter_and_unknown_untouched(self):
        assert normalize_address("/live/track/get/volume") == "/live/track/get/volume"
        assert normalize_address("/live/song/start_playing") == "/live/song/start_playing"
        assert normalize_address("/live/test") == "/live/test"

    def test_listener_form_push_translates(self):
        update = translate_push("/live/track/mute", [1, 1])
        assert (update.setter, update.args) == ("set_track_mute", (1, True))
