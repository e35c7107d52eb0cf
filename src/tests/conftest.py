import os
import sys
import asyncio
import random
from typing import Any, Dict, List, Tuple

import pytest

# Ensure project src is on sys.path so tests can import modules without
# requiring PYTHONPATH to be set externally. conftest.py lives in src/tests,
# so one parent up is the project src directory.
SRC = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from common import config, utils
from common.channel import Channel
from common.errors import DeliveryDropped
from wearable.sample_generator import SampleGenerator

config.configure_logging(level="INFO")
logger = utils.get_logger("test.conftest")


class RecordingChannel(Channel):
    """Channel double: records what the sender hands over instead of moving bytes."""

    name = "recording"

    def __init__(self, reachable: bool = True, fail_immediate: bool = False, **kwargs):
        super().__init__(**kwargs)
        self.reachable = reachable
        self.fail_immediate = fail_immediate
        self.immediate: List[Dict[str, Any]] = []
        self.flushed: List[Dict[str, Any]] = []

    @property
    def is_reachable(self) -> bool:
        return self.reachable

    @property
    def deferred(self) -> List[Dict[str, Any]]:
        return self.outbox.snapshot()

    def _send_immediate(self, payload):
        if self.fail_immediate:
            raise DeliveryDropped("simulated failure")
        self.immediate.append(dict(payload))

    def _send_deferred_now(self, payload):
        self.flushed.append(dict(payload))

    def dispatch_count(self) -> int:
        return len(self.immediate) + self.metrics.get_counter("sent_deferred") + self.metrics.get_counter("delivery_dropped")


class ManualTicker:
    """
    Stand-in for asyncio.sleep: sleepers park until tick() releases them, and
    `now` advances by the requested delay so generated timestamps are exact.
    """

    def __init__(self):
        self.now = 0.0
        self.delays: List[float] = []
        self._waiters: List[Tuple[float, asyncio.Future]] = []

    async def sleep(self, delay: float) -> None:
        fut = asyncio.get_running_loop().create_future()
        self._waiters.append((delay, fut))
        await fut

    @property
    def sleepers(self) -> int:
        return sum(1 for _, f in self._waiters if not f.done())

    async def tick(self) -> None:
        # let freshly started tasks park in sleep() first
        for _ in range(3):
            await asyncio.sleep(0)
        waiters, self._waiters = self._waiters, []
        if waiters:
            self.now += waiters[0][0]
        for delay, fut in waiters:
            if not fut.done():
                self.delays.append(delay)
                fut.set_result(None)
        for _ in range(5):
            await asyncio.sleep(0)


@pytest.fixture
def recording_channel():
    ch = RecordingChannel()
    ch.activate()
    return ch


@pytest.fixture
def ticker():
    return ManualTicker()


@pytest.fixture
def seeded_generator(ticker):
    return SampleGenerator(rng=random.Random(1234), clock=lambda: ticker.now)
