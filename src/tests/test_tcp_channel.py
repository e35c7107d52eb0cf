#!/usr/bin/env python3
"""
tests/test_tcp_channel.py

Integration: companion TcpServerChannel on an ephemeral port, wearable
TcpClientChannel dialing it. Covers immediate delivery, deferred flush on
connect, and frames the companion must skip.
"""
import asyncio
import socket
import time

import pytest

from common import health_proto
from common.tcp_channel import StreamChannel, TcpClientChannel, TcpServerChannel
from companion.receiver import HealthReceiver
from wearable.sample_generator import SampleGenerator
from wearable.sender import HealthSender, DELIVERY_DEFERRED


def _get_free_port() -> int:
    """Reserve an ephemeral port and return it (close socket so nothing listens there)."""
    s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    s.bind(("127.0.0.1", 0))
    port = s.getsockname()[1]
    s.close()
    return port


async def _wait_for(predicate, timeout: float = 3.0) -> bool:
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(0.02)
    return predicate()


async def _start_server():
    server = TcpServerChannel(host="127.0.0.1", port=0)
    receiver = HealthReceiver(server)
    server.activate()
    port = await server.wait_listening(timeout=3.0)
    return server, receiver, port


@pytest.mark.asyncio
async def test_immediate_sample_reaches_companion():
    server, receiver, port = await _start_server()
    client = TcpClientChannel(host="127.0.0.1", port=port, backoff_base=0.1)
    sender = HealthSender(client, interval_s=60.0)
    try:
        client.activate()
        assert await client.wait_reachable(timeout=3.0)
        assert await server.wait_reachable(timeout=3.0)

        await sender.start()
        assert await _wait_for(lambda: receiver.latest_sample is not None)
        assert receiver.latest_sample == sender.latest_sample
        assert client.metrics.get_counter("sent_immediate") == 1
    finally:
        await sender.stop()
        await client.close()
        await server.close()


@pytest.mark.asyncio
async def test_deferred_payloads_flush_after_connect():
    server, receiver, port = await _start_server()
    got = []
    receiver.register_hook(got.append)
    client = TcpClientChannel(host="127.0.0.1", port=port, backoff_base=0.1)
    sender = HealthSender(client)
    try:
        # not activated yet, so not reachable: everything is deferred
        gen = SampleGenerator()
        samples = [gen.generate() for _ in range(3)]
        assert [sender.dispatch(s) for s in samples] == [DELIVERY_DEFERRED] * 3
        assert len(client.outbox) == 3

        client.activate()
        assert await _wait_for(lambda: len(got) == 3)
        assert got == samples
        assert len(client.outbox) == 0
        assert server.metrics.get_counter("received") == 3
    finally:
        await client.close()
        await server.close()


@pytest.mark.asyncio
async def test_unparseable_frames_are_skipped():
    server, receiver, port = await _start_server()
    reader, writer = await asyncio.open_connection("127.0.0.1", port)
    try:
        bad_body = health_proto.FRAME_HEADER.pack(99, health_proto.MODE_IMMEDIATE) + b"{}"
        writer.write(len(bad_body).to_bytes(4, "big") + bad_body)
        writer.write(health_proto.pack_frame({"type": "weather", "heartRate": 1}))
        writer.write(health_proto.pack_frame({"type": "health", "heartRate": 91, "steps": 2, "time": 10.0}))
        await writer.drain()

        assert await _wait_for(lambda: receiver.latest_sample is not None)
        assert receiver.latest_sample.heart_rate == 91
        assert server.metrics.get_counter("discarded") == 1
    finally:
        writer.close()
        await server.close()


@pytest.mark.asyncio
async def test_client_without_companion_is_unreachable():
    port = _get_free_port()
    client = TcpClientChannel(host="127.0.0.1", port=port, reconnect=False)
    sender = HealthSender(client)
    try:
        client.activate()
        assert not await client.wait_reachable(timeout=0.3)
        assert sender.send_current_sample() is False
        assert sender.dispatch(sender.generator.generate()) == DELIVERY_DEFERRED
        assert len(client.outbox) == 1
    finally:
        await client.close()


def test_send_without_connected_writer_is_counted_as_dropped():
    channel = StreamChannel()
    channel.activate()

    channel.send_immediate({"type": "health", "heartRate": 70})

    assert not channel.is_reachable
    assert channel.metrics.get_counter("delivery_dropped") == 1
    assert channel.metrics.get_counter("sent_immediate") == 0
