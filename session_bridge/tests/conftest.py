"""
Pytest configuration and fixtures for session_bridge tests.

FakeDaw answers getter queries the way the remote script does (ids echoed
back in front of the value); FakeOsc delivers those answers on the next
loop iteration, like datagrams arriving.
"""

import asyncio
import json
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import pytest

from session_bridge import vocabulary as vocab
from session_bridge.bridge import Bridge
from session_bridge.config import BridgeConfig
from session_bridge.model import OscCommand


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as async"
    )


class FakeDaw:
    """Minimal remote session that replies to /live/.../get/... queries."""

    def __init__(self, num_tracks: int = 2, num_scenes: int = 3, tempo: float = 128.0):
        self.song: Dict[str, Any] = {
            "tempo": tempo,
            "is_playing": 0,
            "record_mode": 0,
            "metronome": 1,
            "clip_trigger_quantization": 4,
            "punch_in": 0,
            "punch_out": 0,
            "loop": 1,
            "num_tracks": num_tracks,
            "num_scenes": num_scenes,
        }
        self.view: Dict[str, Any] = {"selected_track": 1, "selected_scene": 0}
        self.master: Dict[str, Any] = {"volume": 0.7, "panning": 0.0, "color": 42}
        self.playing: Dict[int, int] = {}
        self.fired: Dict[int, int] = {}
        self.clips: Dict[Tuple[int, int], Dict[str, Any]] = {}
        self.silent: Set[str] = set()
        self.echo = True

    @property
    def num_tracks(self) -> int:
        return self.song["num_tracks"]

    @property
    def num_scenes(self) -> int:
        return self.song["num_scenes"]

    def add_clip(self, track: int, scene: int, name: str = "Clip", length: float = 4.0) -> None:
        self.clips[(track, scene)] = {
            "name": name,
            "color": 7,
            "length": length,
            "loop_start": 0.0,
            "loop_end": length,
            "is_audio_clip": 0,
            "is_midi_clip": 1,
        }

    def track_value(self, t: int, prop: str) -> Any:
        return {
            "name": f"Track {t} (remote)",
            "color": 100 + t,
            "volume": 0.5,
            "panning": -0.25,
            "mute": 0,
            "solo": 0,
            "arm": 1 if t == 0 else 0,
            "playing_slot_index": self.playing.get(t, -1),
            "fired_slot_index": self.fired.get(t, -1),
            "has_midi_input": 1,
            "has_audio_input": 0,
        }[prop]

    def answer(self, command: OscCommand) -> Optional[List[Any]]:
        address, args = command.address, list(command.args)
        if address in self.silent:
            return None
        if address == vocab.TEST_ADDRESS:
            return ["ok"] if self.echo else None

        parts = vocab.split_address(address)
        if parts is None or parts[1] != "get":
            return None
        scope, _, prop = parts

        if scope == "song":
            return [self.song[prop]] if prop in self.song else None
        if scope == "view":
            return [self.view[prop]]
        if scope == "master_track":
            return [self.master[prop]]
        if scope == "track":
            t = args[0]
            return [t, self.track_value(t, prop)] if t < self.num_tracks else None
        if scope == "scene":
            s = args[0]
            if s >= self.num_scenes:
                return None
            return [s, f"Scene {s} (remote)" if prop == "name" else 200 + s]
        if scope == "clip_slot":
            t, s = args[0], args[1]
            return [t, s, 1 if (t, s) in self.clips else 0]
        if scope == "clip":
            t, s = args[0], args[1]
            clip = self.clips.get((t, s))
            return [t, s, clip[prop]] if clip else None
        return None


class FakeOsc:
    """
    OSC link stand-in. Records every sent command; when a DAW is attached,
    its replies are handed to the handler on the next loop iteration.
    """

    def __init__(self, daw: Optional[FakeDaw] = None):
        self.daw = daw
        self.sent: List[OscCommand] = []
        self.handler: Optional[Callable[[str, List[Any]], Any]] = None
        self.accept = True

    def send(self, command: OscCommand) -> bool:
        if not self.accept:
            return False
        self.sent.append(command)
        if self.daw is not None and self.handler is not None:
            reply = self.daw.answer(command)
            if reply is not None:
                asyncio.get_running_loop().call_soon(self.handler, command.address, reply)
        return True

    def addresses(self) -> List[str]:
        return [c.address for c in self.sent]

    def matching(self, address: str) -> List[OscCommand]:
        return [c for c in self.sent if c.address == address]

    def clear(self) -> None:
        self.sent.clear()


class FakeClient:
    """Client connection that keeps every message it was sent, decoded."""

    def __init__(self):
        self.messages: List[Dict[str, Any]] = []
        self.closed = False

    def send(self, text: str) -> None:
        if self.closed:
            raise ConnectionError("closed")
        self.messages.append(json.loads(text))

    def of_type(self, message_type: str) -> List[Dict[str, Any]]:
        return [m for m in self.messages if m["type"] == message_type]

    def patches(self, kind: Optional[str] = None) -> List[Dict[str, Any]]:
        return [
            m["payload"] for m in self.of_type("patch")
            if kind is None or m["payload"]["kind"] == kind
        ]


async def _settle(rounds: int = 20) -> None:
    """Let queued callbacks and the tasks they wake run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def daw():
    return FakeDaw()


@pytest.fixture
def osc(daw):
    return FakeOsc(daw)


@pytest.fixture
def fast_config():
    return BridgeConfig(
        query_timeout=0.2,
        liveness_interval=0.05,
        liveness_timeout=0.05,
        clip_move_settle=0.0,
        clip_move_attempts=2,
        clip_move_confirm_timeout=0.05,
    )


@pytest.fixture
def bridge(osc, fast_config):
    bridge = Bridge(osc, fast_config)
    osc.handler = bridge.handle_osc_message
    return bridge


@pytest.fixture
def client():
    return FakeClient()


@pytest.fixture
def make_client():
    return FakeClient


@pytest.fixture
def settle():
    return _settle
