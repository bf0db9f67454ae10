"""
Session Bridge - DAW session state over WebSocket

Mirrors a DAW's clip-launching session (tracks, scenes, clips, transport,
mixer) from its OSC remote surface and serves it to touch-control clients
as a JSON snapshot followed by incremental patches.

Key Features:
- Phased bulk sync with per-query timeouts and defaults
- Query/response correlation over an id-less protocol
- Incremental structural resync when tracks or scenes change
- Adaptive playback-position polling and remote liveness probing
"""

from .bridge import Bridge, beat_time_poll_interval
from .config import BridgeConfig, load_config
from .correlator import NO_VALUE, QueryCorrelator
from .model import OscCommand, Patch, PatchKind, SessionState
from .store import SessionStore
from .sync import SyncError, SyncOrchestrator, SyncPhase

__version__ = "0.1.0"

__all__ = [
    "Bridge",
    "BridgeConfig",
    "NO_VALUE",
    "OscCommand",
    "Patch",
    "PatchKind",
    "QueryCorrelator",
    "SessionState",
    "SessionStore",
    "SyncError",
    "SyncOrchestrator",
    "SyncPhase",
    "beat_time_poll_interval",
    "load_config",
]
