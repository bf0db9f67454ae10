"""Tests for client message decoding and server message encoding."""

import json

import pytest

from session_bridge.protocol import (
    CLIENT_MESSAGE_TYPES,
    ClipFire,
    ClipMove,
    ConnectedMessage,
    ErrorMessage,
    MixerSend,
    PatchMessage,
    ProtocolError,
    RawOsc,
    SceneCreate,
    SessionResetMessage,
    SyncPhaseMessage,
    parse_client_message,
)


class TestParseClientMessage:
    """Client frame decoding."""

    def test_camel_case_fields(self):
        message = parse_client_message('{"type": "clip/fire", "trackId": 2, "sceneId": 5}')
        assert isinstance(message, ClipFire)
        assert (message.track_id, message.scene_id) == (2, 5)

    def test_move(self):
        message = parse_client_message(
            '{"type": "clip/move", "srcTrack": 0, "srcScene": 1, "dstTrack": 2, "dstScene": 3}'
        )
        assert isinstance(message, ClipMove)
        assert (message.src_track, message.src_scene, message.dst_track, message.dst_scene) == (0, 1, 2, 3)

    def test_optional_field(self):
        assert parse_client_message('{"type": "scene/create"}') == SceneCreate(type="scene/create")

    def test_send_index(self):
        message = parse_client_message('{"type": "mixer/send", "trackId": 1, "sendIndex": 0, "value": 0.5}')
        assert isinstance(message, MixerSend)
        assert message.send_index == 0

    def test_raw_osc_keeps_arg_types(self):
        message = parse_client_message('{"type": "osc", "address": "/live/x", "args": [1, 2.5, "s", true]}')
        assert isinstance(message, RawOsc)
        assert message.args == [1, 2.5, "s", True]
        assert isinstance(message.args[0], int)
        assert isinstance(message.args[3], bool)

    def test_unknown_type_returns_none(self):
        assert parse_client_message('{"type": "future/feature", "x": 1}') is None
        assert parse_client_message('{"no": "type"}') is None

    @pytest.mark.parametrize("text", [
        "{broken",
        "42",
        '["clip/fire"]',
        '{"type": "clip/fire", "trackId": 1}',
        '{"type": "transport/tempo", "bpm": "fast"}',
        '{"type": "osc", "address": ""}',
    ])
    def test_invalid_raises(self, text):
        with pytest.raises(ProtocolError):
            parse_client_message(text)

    def test_every_type_registered(self):
        assert "session/request" in CLIENT_MESSAGE_TYPES
        assert "device/parameter" in CLIENT_MESSAGE_TYPES
        assert "transport/tapTempo" in CLIENT_MESSAGE_TYPES
        assert len(CLIENT_MESSAGE_TYPES) == 27


class TestServerMessages:
    """Outbound JSON shapes."""

    def test_connected(self):
        assert json.loads(ConnectedMessage(ableton_connected=True).to_json()) == {
            "type": "connected", "abletonConnected": True,
        }

    def test_sync_phase_omits_missing_progress(self):
        assert json.loads(SyncPhaseMessage(phase="tracks").to_json()) == {"type": "sync_phase", "phase": "tracks"}
        assert json.loads(SyncPhaseMessage(phase="clips", progress=40).to_json())["progress"] == 40

    def test_patch_payload_passthrough(self):
        payload = {"kind": "transport", "tempo": 99.0}
        assert json.loads(PatchMessage(payload=payload).to_json()) == {"type": "patch", "payload": payload}

    def test_reset_and_error(self):
        assert json.loads(SessionResetMessage().to_json()) == {"type": "session_reset"}
        assert json.loads(ErrorMessage(message="nope").to_json()) == {"type": "error", "message": "nope"}
