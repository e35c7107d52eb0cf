"""
health_proto.py

Wire format helpers for the vitals relay.

Design summary:
- A payload is a flat mapping tagged with type="health"; numeric vitals are
  integers and "time" is Unix epoch seconds as a float.
- Decoding is lenient: heartRate/steps default to 0, optional vitals decode
  to None, a missing or unusable time defaults to the receive instant. Only a missing or
  wrong discriminator rejects the whole message.
- TCP framing: 4-byte BE length prefix, then version (uint8) and delivery
  mode (uint8), then the payload as UTF-8 JSON. The payload mapping carries
  no version of its own; the frame does.
"""
from __future__ import annotations

import json
import math
import struct
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Tuple

from common import config
from common.errors import MalformedPayload

HEALTH_TYPE = "health"

# Delivery modes carried in the frame header
MODE_IMMEDIATE = 1
MODE_DEFERRED = 2
MODES = {MODE_IMMEDIATE: "immediate", MODE_DEFERRED: "deferred"}

FRAME_HEADER = struct.Struct(">BB")
LENGTH_PREFIX = struct.Struct(">I")


@dataclass(frozen=True)
class HealthSample:
    heart_rate: int
    steps: int
    timestamp: float
    spo2: Optional[int] = None
    systolic: Optional[int] = None
    diastolic: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly view used by the observation API."""
        return {
            "heart_rate": self.heart_rate,
            "steps": self.steps,
            "spo2": self.spo2,
            "systolic": self.systolic,
            "diastolic": self.diastolic,
            "timestamp": self.timestamp,
        }


def _is_int(value: Any) -> bool:
    # bool is an int subclass but never a valid vital
    return isinstance(value, int) and not isinstance(value, bool)


def _opt_int(payload: Mapping[str, Any], key: str) -> Optional[int]:
    value = payload.get(key)
    return value if _is_int(value) else None


def _int_or_zero(payload: Mapping[str, Any], key: str) -> int:
    value = _opt_int(payload, key)
    return 0 if value is None else value


def encode_payload(sample: HealthSample) -> Dict[str, Any]:
    """Serialize a sample into the flat wire mapping. Absent optional vitals are omitted."""
    payload: Dict[str, Any] = {
        "type": HEALTH_TYPE,
        "heartRate": int(sample.heart_rate),
        "steps": int(sample.steps),
        "time": float(sample.timestamp),
    }
    for key, value in (("spo2", sample.spo2), ("systolic", sample.systolic), ("diastolic", sample.diastolic)):
        if value is not None:
            payload[key] = int(value)
    return payload


def _valid_epoch(ts: Any) -> bool:
    """True for a finite number that maps to a representable UTC datetime."""
    if isinstance(ts, bool) or not isinstance(ts, (int, float)):
        return False
    try:
        if not math.isfinite(ts):
            return False
        datetime.fromtimestamp(ts, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return False
    return True


def decode_payload(payload: Any, now: Optional[float] = None) -> HealthSample:
    """
    Decode a wire mapping into a HealthSample.

    Raises MalformedPayload when payload is not a mapping or its "type" is not
    "health". Everything else decodes leniently.
    """
    if not isinstance(payload, Mapping):
        raise MalformedPayload(f"payload must be a mapping, got {type(payload).__name__}")
    kind = payload.get("type")
    if kind != HEALTH_TYPE:
        raise MalformedPayload(f"unexpected payload type: {kind!r}")

    ts = payload.get("time")
    if not _valid_epoch(ts):
        ts = time.time() if now is None else now

    return HealthSample(
        heart_rate=_int_or_zero(payload, "heartRate"),
        steps=_int_or_zero(payload, "steps"),
        timestamp=float(ts),
        spo2=_opt_int(payload, "spo2"),
        systolic=_opt_int(payload, "systolic"),
        diastolic=_opt_int(payload, "diastolic"),
    )


# -------------------------
# TCP framing
# -------------------------
def pack_frame(payload: Mapping[str, Any], mode: int = MODE_IMMEDIATE, version: Optional[int] = None) -> bytes:
    if mode not in MODES:
        raise ValueError(f"Unknown delivery mode: {mode}")
    ver = config.FRAME_VERSION if version is None else version
    body = FRAME_HEADER.pack(ver & 0xFF, mode) + json.dumps(dict(payload), ensure_ascii=False).encode("utf-8")
    if len(body) > config.MAX_FRAME_SIZE:
        raise ValueError(f"Frame too large: {len(body)} bytes")
    return LENGTH_PREFIX.pack(len(body)) + body


def parse_frame_body(body: bytes) -> Tuple[Dict[str, Any], Any]:
    """
    Parse a frame body (everything after the length prefix).
    Returns (header, payload). Raises ValueError on truncation, unknown
    version or mode, or undecodable JSON.
    """
    if len(body) < FRAME_HEADER.size:
        raise ValueError("Frame truncated")
    version, mode = FRAME_HEADER.unpack_from(body, 0)
    if version != config.FRAME_VERSION:
        raise ValueError(f"Unsupported frame version: {version}")
    if mode not in MODES:
        raise ValueError(f"Unknown delivery mode: {mode}")
    try:
        payload = json.loads(body[FRAME_HEADER.size:].decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValueError(f"Invalid frame payload: {e}") from e
    return {"version": version, "mode": mode}, payload
