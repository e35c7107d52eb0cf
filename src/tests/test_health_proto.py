#!/usr/bin/env python3
"""
tests/test_health_proto.py

Payload encode/decode (lenient policy) and TCP frame helpers.
"""
import json

import pytest

from common import config, health_proto
from common.errors import MalformedPayload
from common.health_proto import HealthSample


def _full_sample() -> HealthSample:
    return HealthSample(heart_rate=88, steps=12, spo2=97, systolic=121, diastolic=79, timestamp=1700000000.25)


def test_encode_produces_flat_tagged_mapping():
    payload = health_proto.encode_payload(_full_sample())
    assert payload == {
        "type": "health",
        "heartRate": 88,
        "steps": 12,
        "spo2": 97,
        "systolic": 121,
        "diastolic": 79,
        "time": 1700000000.25,
    }
    assert isinstance(payload["time"], float)


def test_full_sample_survives_encode_and_decode():
    sample = _full_sample()
    assert health_proto.decode_payload(health_proto.encode_payload(sample)) == sample


def test_missing_optional_vitals_decode_as_absent():
    payload = {"type": "health", "heartRate": 101, "steps": 7, "time": 1700000001.0}
    sample = health_proto.decode_payload(payload)

    assert sample.spo2 is None
    assert sample.systolic is None
    assert sample.diastolic is None
    assert sample.heart_rate == 101
    assert sample.steps == 7
    assert sample.timestamp == 1700000001.0


def test_missing_mandatory_fields_default_to_zero_and_receive_time():
    sample = health_proto.decode_payload({"type": "health"}, now=42.5)
    assert sample.heart_rate == 0
    assert sample.steps == 0
    assert sample.timestamp == 42.5


@pytest.mark.parametrize("bad", ["97", 97.5, True, None, [97]])
def test_wrongly_typed_optional_vital_decodes_as_absent(bad):
    payload = health_proto.encode_payload(_full_sample())
    payload["spo2"] = bad
    sample = health_proto.decode_payload(payload)
    assert sample.spo2 is None
    assert sample.systolic == 121


def test_integer_time_is_accepted():
    sample = health_proto.decode_payload({"type": "health", "heartRate": 70, "steps": 1, "time": 1700000000})
    assert sample.timestamp == 1700000000.0


@pytest.mark.parametrize("bad_time", [float("inf"), float("-inf"), float("nan"), 1e20, -1e20, 10 ** 400])
def test_unrepresentable_time_falls_back_to_receive_time(bad_time):
    payload = {"type": "health", "heartRate": 70, "steps": 1, "time": bad_time}
    sample = health_proto.decode_payload(payload, now=42.5)
    assert sample.timestamp == 42.5
    assert sample.heart_rate == 70


@pytest.mark.parametrize("payload", [
    {"type": "weather", "heartRate": 80},
    {"heartRate": 80, "steps": 3},
    {"type": "HEALTH", "heartRate": 80},
    ["type", "health"],
    "health",
    None,
])
def test_wrong_or_missing_discriminator_is_rejected(payload):
    with pytest.raises(MalformedPayload):
        health_proto.decode_payload(payload)


def test_frame_carries_mode_and_json_payload():
    payload = health_proto.encode_payload(_full_sample())
    frame = health_proto.pack_frame(payload, mode=health_proto.MODE_DEFERRED)

    length = int.from_bytes(frame[:4], "big")
    assert length == len(frame) - 4

    header, decoded = health_proto.parse_frame_body(frame[4:])
    assert header == {"version": config.FRAME_VERSION, "mode": health_proto.MODE_DEFERRED}
    assert decoded == payload


def test_frame_with_unknown_version_is_rejected():
    frame = health_proto.pack_frame({"type": "health"}, version=config.FRAME_VERSION + 1)
    with pytest.raises(ValueError, match="Unsupported frame version"):
        health_proto.parse_frame_body(frame[4:])


def test_frame_with_bad_json_is_rejected():
    body = health_proto.FRAME_HEADER.pack(config.FRAME_VERSION, health_proto.MODE_IMMEDIATE) + b"{not json"
    with pytest.raises(ValueError, match="Invalid frame payload"):
        health_proto.parse_frame_body(body)


def test_truncated_frame_and_unknown_mode_are_rejected():
    with pytest.raises(ValueError, match="truncated"):
        health_proto.parse_frame_body(b"\x01")
    body = health_proto.FRAME_HEADER.pack(config.FRAME_VERSION, 9) + json.dumps({}).encode()
    with pytest.raises(ValueError, match="Unknown delivery mode"):
        health_proto.parse_frame_body(body)
    with pytest.raises(ValueError):
        health_proto.pack_frame({"type": "health"}, mode=9)
