"""
Client Protocol

JSON messages exchanged with touch-control clients over the WebSocket.

Uses Pydantic for validation and serialization. Inbound messages are a
union discriminated on "type"; field names are camelCase on the wire
(trackId, sceneId...) and snake_case in Python.
"""

import json
from typing import Annotated, Any, Dict, List, Literal, Optional, Union, get_args

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel


class ProtocolError(ValueError):
    """Raised for client messages that are not valid JSON or fail validation."""


class WireModel(BaseModel):
    """Base for every message: camelCase aliases, snake_case attributes."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# CLIENT -> BRIDGE
# =============================================================================

class ClipFire(WireModel):
    type: Literal["clip/fire"]
    track_id: int
    scene_id: int


class ClipStop(WireModel):
    type: Literal["clip/stop"]
    track_id: int
    scene_id: int


class ClipDelete(WireModel):
    type: Literal["clip/delete"]
    track_id: int
    scene_id: int


class ClipMove(WireModel):
    type: Literal["clip/move"]
    src_track: int
    src_scene: int
    dst_track: int
    dst_scene: int


class SceneFire(WireModel):
    type: Literal["scene/fire"]
    scene_id: int


class SceneCreate(WireModel):
    """Create a scene at index; None appends at the end."""
    type: Literal["scene/create"]
    index: Optional[int] = None


class TrackStop(WireModel):
    type: Literal["track/stop"]
    track_id: int


class TransportPlay(WireModel):
    type: Literal["transport/play"]


class TransportStop(WireModel):
    type: Literal["transport/stop"]


class TransportRecord(WireModel):
    type: Literal["transport/record"]
    enabled: bool


class TransportTempo(WireModel):
    type: Literal["transport/tempo"]
    bpm: float


class TransportMetronome(WireModel):
    type: Literal["transport/metronome"]
    enabled: bool


class TransportPunchIn(WireModel):
    type: Literal["transport/punchIn"]
    enabled: bool


class TransportPunchOut(WireModel):
    type: Literal["transport/punchOut"]
    enabled: bool


class TransportLoop(WireModel):
    type: Literal["transport/loop"]
    enabled: bool


class TransportQuantization(WireModel):
    type: Literal["transport/quantization"]
    value: int


class TransportTapTempo(WireModel):
    type: Literal["transport/tapTempo"]


class MixerVolume(WireModel):
    type: Literal["mixer/volume"]
    track_id: int
    value: float


class MixerPan(WireModel):
    type: Literal["mixer/pan"]
    track_id: int
    value: float


class MixerSend(WireModel):
    type: Literal["mixer/send"]
    track_id: int
    send_index: int
    value: float


class MixerMute(WireModel):
    type: Literal["mixer/mute"]
    track_id: int
    muted: bool


class MixerSolo(WireModel):
    type: Literal["mixer/solo"]
    track_id: int
    soloed: bool


class MixerArm(WireModel):
    type: Literal["mixer/arm"]
    track_id: int
    armed: bool


class DeviceParameter(WireModel):
    type: Literal["device/parameter"]
    track_id: int
    device_id: int
    parameter_id: int
    value: float


class RawOsc(WireModel):
    """Passthrough for operations without a dedicated message."""
    type: Literal["osc"]
    address: str = Field(min_length=1)
    args: List[Union[bool, int, float, str]] = Field(default_factory=list)


class SessionRequest(WireModel):
    type: Literal["session/request"]


class SessionResync(WireModel):
    type: Literal["session/resync"]


_CLIENT_MODELS = (
    ClipFire,
    ClipStop,
    ClipDelete,
    ClipMove,
    SceneFire,
    SceneCreate,
    TrackStop,
    TransportPlay,
    TransportStop,
    TransportRecord,
    TransportTempo,
    TransportMetronome,
    TransportPunchIn,
    TransportPunchOut,
    TransportLoop,
    TransportQuantization,
    TransportTapTempo,
    MixerVolume,
    MixerPan,
    MixerSend,
    MixerMute,
    MixerSolo,
    MixerArm,
    DeviceParameter,
    RawOsc,
    SessionRequest,
    SessionResync,
)

ClientMessage = Annotated[Union[_CLIENT_MODELS], Field(discriminator="type")]

_client_adapter: TypeAdapter = TypeAdapter(ClientMessage)

CLIENT_MESSAGE_TYPES = frozenset(
    get_args(model.model_fields["type"].annotation)[0] for model in _CLIENT_MODELS
)


def parse_client_message(text: str) -> Optional[BaseModel]:
    """
    Decode one client frame.

    Returns:
        The typed message, or None when "type" names a message this
        bridge does not know (callers log and ignore those)

    Raises:
        ProtocolError: If the frame is not a JSON object or a known
            message fails validation
    """
    try:
        data = json.loads(text)
    except (TypeError, ValueError) as e:
        raise ProtocolError(f"Invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ProtocolError("Message must be a JSON object")
    if data.get("type") not in CLIENT_MESSAGE_TYPES:
        return None

    try:
        return _client_adapter.validate_python(data)
    except ValidationError as e:
        raise ProtocolError(f"Invalid {data['type']} message: {e.error_count()} error(s)") from e


# =============================================================================
# BRIDGE -> CLIENT
# =============================================================================

class ServerMessage(WireModel):
    """Base for outbound messages."""

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class ConnectedMessage(ServerMessage):
    type: Literal["connected"] = "connected"
    ableton_connected: bool


class SessionMessage(ServerMessage):
    type: Literal["session"] = "session"
    payload: Dict[str, Any]


class SessionResetMessage(ServerMessage):
    type: Literal["session_reset"] = "session_reset"


class SyncPhaseMessage(ServerMessage):
    type: Literal["sync_phase"] = "sync_phase"
    phase: str
    progress: Optional[int] = None

    def to_json(self) -> str:
        # progress is optional on the wire, not null
        exclude = {"progress"} if self.progress is None else None
        return self.model_dump_json(by_alias=True, exclude=exclude)


class PatchMessage(ServerMessage):
    type: Literal["patch"] = "patch"
    payload: Dict[str, Any]


class ErrorMessage(ServerMessage):
    type: Literal["error"] = "error"
    message: str
