from __future__ import annotations

import logging
import os
from typing import Optional

# Helper parsers
def _parse_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    v = value.strip().lower()
    if v in ("1", "true", "t", "yes", "y", "on"):
        return True
    if v in ("0", "false", "f", "no", "n", "off"):
        return False
    return default

def _parse_int(value: Optional[str], default: int) -> int:
    if value is None:
        return default
    try:
        return int(float(value)) # accepts "1.0" too
    except (TypeError, ValueError):
        return default

def _parse_float(value: Optional[str], default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default

def _parse_str(value: Optional[str], default: str) -> str:
    if value is None:
        return default
    return str(value)


_DATA_DIR_RAW = os.environ.get("RELAY_DATA_DIR") or os.environ.get("DATA_DIR") or "./data"
DATA_DIR: str = os.path.abspath(os.path.expanduser(_parse_str(_DATA_DIR_RAW, "./data")))

# Durable store-and-forward queue for deferred payloads (created lazily by Outbox)
_OUTBOX_ENV = os.environ.get("OUTBOX_FILE")
OUTBOX_FILE: str = os.path.abspath(
    os.path.expanduser(_parse_str(_OUTBOX_ENV, os.path.join(DATA_DIR, "outbox.json")))
)

# Relay transport (companion listens, wearable dials)
RELAY_HOST: str = _parse_str(os.environ.get("RELAY_HOST"), "127.0.0.1")
RELAY_PORT: int = _parse_int(os.environ.get("RELAY_PORT"), 65090)
FRAME_VERSION: int = _parse_int(os.environ.get("FRAME_VERSION"), 1)
MAX_FRAME_SIZE: int = _parse_int(os.environ.get("MAX_FRAME_SIZE"), 1024 * 1024)

# Sample generation period (seconds)
SAMPLE_INTERVAL_S: float = _parse_float(os.environ.get("SAMPLE_INTERVAL_S"), 5.0)

# Reconnect tuning for the dialing side
RECONNECT_BACKOFF_BASE: float = _parse_float(os.environ.get("RECONNECT_BACKOFF_BASE"), 1.0)
RECONNECT_BACKOFF_FACTOR: float = _parse_float(os.environ.get("RECONNECT_BACKOFF_FACTOR"), 2.0)
RECONNECT_MAX_DELAY_S: float = _parse_float(os.environ.get("RECONNECT_MAX_DELAY_S"), 30.0)

# Observation API (companion side)
API_HOST: str = _parse_str(os.environ.get("API_HOST"), "0.0.0.0")
API_PORT: int = _parse_int(os.environ.get("API_PORT"), 65000)
API_ENABLE: bool = _parse_bool(os.environ.get("API_ENABLE"), True)

# Logging
_LOG_LEVEL_RAW = os.environ.get("RELAY_LOG_LEVEL") or os.environ.get("LOG_LEVEL") or "INFO"
LOG_LEVEL: str = _parse_str(_LOG_LEVEL_RAW, "INFO").upper()

# Small utility to configure logging if not already configured
def configure_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> None:

    chosen = level or LOG_LEVEL
    # Accept numeric levels too
    if isinstance(chosen, (int, float)):
        numeric_level = int(chosen)
    else:
        numeric_level = getattr(logging, str(chosen).upper(), logging.INFO)

    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=numeric_level, format=fmt or "%(asctime)s %(levelname)s [%(name)s] %(message)s")
    else:
        root.setLevel(numeric_level)

__all__ = [
    "DATA_DIR",
    "OUTBOX_FILE",
    "RELAY_HOST",
    "RELAY_PORT",
    "FRAME_VERSION",
    "MAX_FRAME_SIZE",
    "SAMPLE_INTERVAL_S",
    "RECONNECT_BACKOFF_BASE",
    "RECONNECT_BACKOFF_FACTOR",
    "RECONNECT_MAX_DELAY_S",
    "API_HOST",
    "API_PORT",
    "API_ENABLE",
    "LOG_LEVEL",
    "configure_logging",
    "_parse_bool",
    "_parse_int",
    "_parse_float",
    "_parse_str",
]
