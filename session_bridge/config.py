"""
Configuration

Bridge settings with defaults, optionally overridden from a YAML file.
"""

import logging
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "session_bridge" / "config.yaml"


@dataclass
class BridgeConfig:
    """
    Runtime settings.

    Ports follow the AbletonOSC defaults: the remote script listens on
    11000 and replies to 11001.
    """
    osc_host: str = "127.0.0.1"
    osc_send_port: int = 11000
    osc_receive_port: int = 11001
    ws_host: str = "0.0.0.0"
    ws_port: int = 8765
    query_timeout: float = 5.0
    liveness_interval: float = 5.0
    liveness_timeout: float = 2.0
    sync_batch_size: int = 32
    clip_move_settle: float = 0.1
    clip_move_attempts: int = 3
    clip_move_confirm_timeout: float = 1.0
    log_level: str = "INFO"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def with_overrides(self, **overrides: Any) -> "BridgeConfig":
        """Copy with the given fields replaced; None values are ignored."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def load_config(path: Optional[Path] = None) -> BridgeConfig:
    """
    Load settings from a YAML mapping of field names to values.

    Missing or unreadable files give the defaults; unknown keys and values
    of the wrong type are skipped with a warning.
    """
    path = Path(path) if path else DEFAULT_CONFIG_PATH

    if not path.exists():
        logger.debug(f"No config file at {path}, using defaults")
        return BridgeConfig()

    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Failed to load config: {e}")
        return BridgeConfig()

    if not data:
        return BridgeConfig()
    if not isinstance(data, dict):
        logger.warning(f"Ignoring {path}: expected a mapping")
        return BridgeConfig()

    defaults = BridgeConfig()
    known = {f.name: type(getattr(defaults, f.name)) for f in fields(BridgeConfig)}
    values: Dict[str, Any] = {}

    for key, value in data.items():
        expected = known.get(key)
        if expected is None:
            logger.warning(f"Unknown config key: {key}")
            continue
        # ints are fine where floats are expected, bools are not numbers here
        if expected is float and isinstance(value, int) and not isinstance(value, bool):
            value = float(value)
        if not isinstance(value, expected) or (expected is not bool and isinstance(value, bool)):
            logger.warning(f"Ignoring {key}: expected {expected.__name__}, got {value!r}")
            continue
        values[key] = value

    logger.info(f"Loaded config from {path}")
    return replace(defaults, **values)
