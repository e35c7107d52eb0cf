"""
channel.py

Transport abstraction for the telemetry relay.

A Channel is constructed explicitly and handed to the Sender/Receiver that
use it. It exposes:
- activate(): idempotent, registers the session exactly once.
- is_reachable: sampled at dispatch time, never subscribed to.
- send_immediate(payload): best-effort, fire-and-forget; failures are
  counted and dropped, never raised to the caller.
- send_deferred(payload): appended to a durable FIFO outbox; the channel
  flushes it when (and how) its transport allows.
- on_receive(handler): handler called once per inbound payload, whatever the
  delivery mode.

LoopbackChannel.pair() wires two in-process peers together on one event loop.
"""
from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, Optional, Tuple

from common import utils
from common.errors import DeliveryDropped, TransportUnavailable
from common.outbox import Outbox

logger = utils.get_logger("common.channel")

ReceiveHandler = Callable[[Dict[str, Any]], None]


class Channel:
    name = "channel"

    def __init__(self, outbox: Optional[Outbox] = None, metrics: Optional[utils.SimpleMetrics] = None):
        self.outbox = outbox if outbox is not None else Outbox()
        self.metrics = metrics if metrics is not None else utils.SimpleMetrics()
        self._handler: Optional[ReceiveHandler] = None
        self._active = False

    # --- Session -------------------------------------------------------------
    def is_supported(self) -> bool:
        return True

    def activate(self) -> None:
        """Set the session up once. Repeated calls are no-ops."""
        if self._active:
            return
        if not self.is_supported():
            raise TransportUnavailable(f"{self.name} is not supported on this peer")
        self._on_activate()
        self._active = True
        logger.info("%s activated", self.name)

    def _on_activate(self) -> None:
        pass

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def is_reachable(self) -> bool:
        raise NotImplementedError

    def on_receive(self, handler: ReceiveHandler) -> None:
        self._handler = handler

    # --- Outbound ------------------------------------------------------------
    def send_immediate(self, payload: Dict[str, Any]) -> None:
        try:
            self._send_immediate(payload)
        except (DeliveryDropped, OSError):
            # best effort: not retried, not surfaced
            self.metrics.incr("delivery_dropped")
            return
        self.metrics.incr("sent_immediate")

    def send_deferred(self, payload: Dict[str, Any]) -> None:
        self.outbox.append(payload)
        self.metrics.incr("sent_deferred")
        self._deferred_queued()

    def flush_deferred(self) -> int:
        """Hand queued deferred payloads to the peer in FIFO order while reachable. Returns how many went out."""
        flushed = 0
        while self.is_reachable:
            item = self.outbox.peek()
            if item is None:
                break
            try:
                self._send_deferred_now(item)
            except (DeliveryDropped, OSError):
                logger.info("%s deferred flush interrupted; %d payload(s) still queued", self.name, len(self.outbox))
                break
            self.outbox.pop()
            flushed += 1
        if flushed:
            self.metrics.incr("deferred_flushed", flushed)
            logger.debug("%s flushed %d deferred payload(s)", self.name, flushed)
        return flushed

    def _send_immediate(self, payload: Dict[str, Any]) -> None:
        raise NotImplementedError

    def _send_deferred_now(self, payload: Dict[str, Any]) -> None:
        raise NotImplementedError

    def _deferred_queued(self) -> None:
        pass

    # --- Inbound -------------------------------------------------------------
    def _deliver(self, payload: Dict[str, Any]) -> None:
        self.metrics.incr("received")
        handler = self._handler
        if handler is None:
            logger.debug("%s received payload with no handler registered", self.name)
            return
        try:
            handler(payload)
        except Exception:
            logger.exception("%s receive handler raised", self.name)


class _Link:
    def __init__(self, reachable: bool):
        self.reachable = reachable


class LoopbackChannel(Channel):
    """
    In-process channel end. Immediate payloads are scheduled onto the running
    event loop for the peer end; deferred payloads wait in the outbox until
    flush_deferred() is called while the link is reachable.
    """

    name = "loopback"

    def __init__(self, link: Optional[_Link] = None, supported: bool = True, **kwargs):
        super().__init__(**kwargs)
        self._link = link or _Link(reachable=True)
        self._supported = supported
        self.peer: Optional[LoopbackChannel] = None

    @classmethod
    def pair(cls, reachable: bool = True, **kwargs) -> Tuple["LoopbackChannel", "LoopbackChannel"]:
        link = _Link(reachable)
        a = cls(link=link, **kwargs)
        b = cls(link=link, **kwargs)
        a.peer, b.peer = b, a
        return a, b

    def is_supported(self) -> bool:
        return self._supported

    def set_reachable(self, reachable: bool) -> None:
        self._link.reachable = bool(reachable)
        logger.debug("loopback link reachable=%s", self._link.reachable)

    @property
    def is_reachable(self) -> bool:
        return self._active and self._link.reachable and self.peer is not None and self.peer.is_active

    def _schedule(self, payload: Dict[str, Any]) -> None:
        if not self.is_reachable:
            raise DeliveryDropped("peer not reachable")
        peer = self.peer
        if peer is None:
            raise DeliveryDropped("no peer attached")
        asyncio.get_running_loop().call_soon(peer._deliver, dict(payload))

    def _send_immediate(self, payload: Dict[str, Any]) -> None:
        self._schedule(payload)

    def _send_deferred_now(self, payload: Dict[str, Any]) -> None:
        self._schedule(payload)
