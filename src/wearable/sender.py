#!/usr/bin/env python3
"""
Wearable-side sender.

HealthSender owns a SampleGenerator and a Channel reference. While running it
generates one sample immediately and then one per tick of a repeating task,
holding each as latest_sample and dispatching it through the channel:
immediate delivery when the peer is reachable, deferred (store-and-forward)
otherwise. Dispatch outcome never touches local state.

All work happens on the event loop that called start(), so a tick and stop()
never run concurrently.
"""
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

from common import config, health_proto, utils
from common.channel import Channel
from common.errors import TransportUnavailable
from common.health_proto import HealthSample
from wearable.sample_generator import SampleGenerator

logger = utils.get_logger("wearable.sender")

DELIVERY_IMMEDIATE = "immediate"
DELIVERY_DEFERRED = "deferred"


class HealthSender:
    def __init__(
        self,
        channel: Channel,
        generator: Optional[SampleGenerator] = None,
        interval_s: float = config.SAMPLE_INTERVAL_S,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.channel = channel
        self.generator = generator or SampleGenerator()
        self.interval_s = float(interval_s)
        self._sleep = sleep
        self.latest_sample: Optional[HealthSample] = None
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def has_sample(self) -> bool:
        """True once a sample exists locally; manual sends are meaningless before that."""
        return self.latest_sample is not None

    def activate_session(self) -> bool:
        try:
            self.channel.activate()
        except TransportUnavailable as e:
            logger.info("Channel activation skipped: %s", e)
            return False
        return True

    async def start(self) -> None:
        """Generate and dispatch one sample now, then one per interval until stop()."""
        if self._running:
            return
        self._running = True
        try:
            self.generate_and_dispatch()
        except Exception:
            self._running = False
            raise
        self._task = asyncio.get_running_loop().create_task(self._tick_loop())
        logger.info("HealthSender started (interval %.2f s)", self.interval_s)

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        task, self._task = self._task, None
        if task:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("HealthSender stopped")

    def send_current_sample(self) -> bool:
        """Re-dispatch the last generated sample. Returns False when nothing has been generated yet."""
        sample = self.latest_sample
        if sample is None:
            return False
        self.dispatch(sample)
        return True

    def dispatch(self, sample: HealthSample) -> str:
        payload = health_proto.encode_payload(sample)
        if self.channel.is_reachable:
            self.channel.send_immediate(payload)
            mode = DELIVERY_IMMEDIATE
        else:
            self.channel.send_deferred(payload)
            mode = DELIVERY_DEFERRED
        logger.debug("Dispatched sample hr=%d steps=%d via %s", sample.heart_rate, sample.steps, mode)
        return mode

    def generate_and_dispatch(self) -> HealthSample:
        sample = self.generator.generate()
        self.latest_sample = sample
        self.dispatch(sample)
        return sample

    async def _tick_loop(self) -> None:
        while True:
            await self._sleep(self.interval_s)
            if not self._running:
                break
            try:
                self.generate_and_dispatch()
            except Exception:
                logger.exception("HealthSender: error on tick (continuing)")
