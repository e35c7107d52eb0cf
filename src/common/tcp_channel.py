#!/usr/bin/env python3
"""
TCP transport for the telemetry relay.

Provides:
- StreamChannel: shared framing/reader logic over an asyncio stream pair.
- TcpClientChannel: dialing end (wearable) with automatic reconnect/backoff.
  Reachable while connected; flushes the deferred outbox after every
  (re)connect.
- TcpServerChannel: listening end (companion). The most recent peer
  connection is the active one; reachable while a peer is connected.

Frames are built by common.health_proto.pack_frame. Writes are buffered
hand-offs (no drain is awaited), so sends never block the event loop.
"""
from __future__ import annotations

import asyncio
import random
from typing import Any, Dict, Optional, Set

from common import config, health_proto, utils
from common.channel import Channel
from common.errors import DeliveryDropped

logger = utils.get_logger("common.tcp_channel")


class StreamChannel(Channel):
    name = "tcp"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._writer: Optional[asyncio.StreamWriter] = None
        self._connected = asyncio.Event()
        self._tasks: Set[asyncio.Task] = set()

    @property
    def is_reachable(self) -> bool:
        w = self._writer
        return self._active and w is not None and not w.is_closing()

    async def wait_reachable(self, timeout: Optional[float] = None) -> bool:
        try:
            await asyncio.wait_for(self._connected.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return self.is_reachable

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # --- Outbound ------------------------------------------------------------
    def _write_frame(self, payload: Dict[str, Any], mode: int) -> None:
        if not self.is_reachable:
            raise DeliveryDropped("peer not connected")
        try:
            frame = health_proto.pack_frame(payload, mode=mode)
        except (TypeError, ValueError) as e:
            raise DeliveryDropped(str(e)) from e
        writer = self._writer
        if writer is None:
            raise DeliveryDropped("peer not connected")
        writer.write(frame)
        logger.debug("%s wrote %s frame (%d bytes)", self.name, health_proto.MODES[mode], len(frame))

    def _send_immediate(self, payload: Dict[str, Any]) -> None:
        self._write_frame(payload, health_proto.MODE_IMMEDIATE)

    def _send_deferred_now(self, payload: Dict[str, Any]) -> None:
        self._write_frame(payload, health_proto.MODE_DEFERRED)

    def _deferred_queued(self) -> None:
        if self.is_reachable:
            self.flush_deferred()

    # --- Connection ----------------------------------------------------------
    def _attach(self, writer: asyncio.StreamWriter) -> None:
        self._writer = writer
        self._connected.set()
        pending = len(self.outbox)
        if pending:
            logger.info("%s peer reachable; flushing %d deferred payload(s)", self.name, pending)
            self.flush_deferred()

    def _detach(self, writer: asyncio.StreamWriter) -> None:
        if self._writer is writer:
            self._writer = None
            self._connected.clear()
        try:
            writer.close()
        except (OSError, RuntimeError):
            pass

    async def _reader_loop(self, reader: asyncio.StreamReader, peer: Any = None) -> None:
        """
        Read frames until the connection closes, delivering each payload to
        the registered handler. Resets and truncated frames end the loop as
        a normal disconnect.
        """
        try:
            while True:
                try:
                    hdr = await reader.readexactly(health_proto.LENGTH_PREFIX.size)
                except asyncio.IncompleteReadError:
                    logger.info("%s: connection closed by %s", self.name, peer)
                    break
                except (ConnectionResetError, OSError) as e:
                    logger.info("%s: connection reset or network error from %s: %s", self.name, peer, e)
                    break

                (length,) = health_proto.LENGTH_PREFIX.unpack(hdr)
                if length <= 0 or length > config.MAX_FRAME_SIZE:
                    logger.warning("%s: invalid frame length %s from %s", self.name, length, peer)
                    break
                try:
                    body = await reader.readexactly(length)
                except asyncio.IncompleteReadError:
                    logger.info("%s: incomplete frame from %s (connection closed)", self.name, peer)
                    break
                except (ConnectionResetError, OSError) as e:
                    logger.info("%s: connection reset while reading frame from %s: %s", self.name, peer, e)
                    break

                try:
                    header, payload = health_proto.parse_frame_body(body)
                except ValueError as e:
                    logger.warning("%s: dropping unparseable frame from %s: %s", self.name, peer, e)
                    continue

                logger.debug("%s received %s frame from %s", self.name, health_proto.MODES[header["mode"]], peer)
                self._deliver(payload)
        finally:
            logger.debug("%s: reader loop exiting for %s", self.name, peer)

    async def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        if self._writer is not None:
            writer = self._writer
            self._detach(writer)
            try:
                await asyncio.wait_for(writer.wait_closed(), timeout=1.0)
            except (asyncio.TimeoutError, OSError):
                pass
        self._active = False
        logger.info("%s closed", self.name)


class TcpClientChannel(StreamChannel):
    """Dialing end. activate() must be called from a running event loop."""

    name = "tcp-client"

    def __init__(
        self,
        host: str = config.RELAY_HOST,
        port: int = config.RELAY_PORT,
        reconnect: bool = True,
        backoff_base: float = config.RECONNECT_BACKOFF_BASE,
        backoff_factor: float = config.RECONNECT_BACKOFF_FACTOR,
        max_delay: float = config.RECONNECT_MAX_DELAY_S,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.host = host
        self.port = port
        self.reconnect = bool(reconnect)
        self.backoff_base = float(backoff_base)
        self.backoff_factor = float(backoff_factor)
        self.max_delay = float(max_delay)

    def _on_activate(self) -> None:
        self._spawn(self._run_background())

    def _new_backoff(self):
        return utils.exponential_backoff(base=self.backoff_base, factor=self.backoff_factor, max_delay=self.max_delay)

    async def _run_background(self) -> None:
        """Keep a connection open, reconnecting with exponential backoff."""
        backoff_gen = self._new_backoff()
        while True:
            try:
                logger.info("%s connecting to %s:%d", self.name, self.host, self.port)
                reader, writer = await asyncio.open_connection(self.host, self.port)
            except OSError as e:
                logger.info("%s connect failed: %s", self.name, e)
            else:
                logger.info("%s connected to %s:%d", self.name, self.host, self.port)
                backoff_gen = self._new_backoff()
                self._attach(writer)
                try:
                    await self._reader_loop(reader, peer=(self.host, self.port))
                finally:
                    self._detach(writer)

            if not self.reconnect:
                break
            delay = next(backoff_gen)
            sleep_for = max(0.0, delay + random.uniform(0.0, 0.5 * self.backoff_base))
            logger.info("%s reconnecting after %.2f s", self.name, sleep_for)
            await asyncio.sleep(sleep_for)


class TcpServerChannel(StreamChannel):
    """Listening end. activate() must be called from a running event loop."""

    name = "tcp-server"

    def __init__(self, host: str = config.RELAY_HOST, port: int = config.RELAY_PORT, **kwargs):
        super().__init__(**kwargs)
        self.host = host
        self.port = port
        self._server: Optional[asyncio.AbstractServer] = None
        self._listening = asyncio.Event()

    @property
    def bound_port(self) -> Optional[int]:
        if self._server is None or not self._server.sockets:
            return None
        return self._server.sockets[0].getsockname()[1]

    async def wait_listening(self, timeout: Optional[float] = None) -> Optional[int]:
        await asyncio.wait_for(self._listening.wait(), timeout=timeout)
        return self.bound_port

    def _on_activate(self) -> None:
        self._spawn(self._serve())

    async def _serve(self) -> None:
        self._server = await asyncio.start_server(self._handle_peer, host=self.host, port=self.port)
        logger.info("%s listening on %s:%d", self.name, self.host, self.bound_port or self.port)
        self._listening.set()
        try:
            await asyncio.Event().wait()
        finally:
            server, self._server = self._server, None
            self._listening.clear()
            server.close()
            try:
                await asyncio.wait_for(server.wait_closed(), timeout=1.0)
            except asyncio.TimeoutError:
                logger.debug("%s: server close timed out waiting for connections", self.name)

    async def _handle_peer(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        peer = writer.get_extra_info("peername")
        task = asyncio.current_task()
        if task is not None:
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        previous = self._writer
        if previous is not None and previous is not writer:
            logger.info("%s replacing previous peer connection with %s", self.name, peer)
            self._detach(previous)
        logger.info("%s peer connected from %s", self.name, peer)
        self._attach(writer)
        try:
            await self._reader_loop(reader, peer=peer)
        finally:
            self._detach(writer)
