from typing import Any, Callable, List, Optional
import time

from common import utils
from common.channel import Channel
from common.errors import MalformedPayload, TransportUnavailable
from common.health_proto import HealthSample, decode_payload

logger = utils.get_logger("companion.receiver")


class HealthReceiver:
    """
    Companion-side holder of the latest decoded sample.

    Each valid payload replaces latest_sample in full; anything that is not a
    "health" payload is dropped without touching it. None means no data yet.
    """

    def __init__(self, channel: Channel, clock: Callable[[], float] = time.time):
        self.channel = channel
        self.clock = clock
        self.latest_sample: Optional[HealthSample] = None
        self._hooks: List[Callable[[HealthSample], None]] = []
        self.channel.on_receive(self.handle_payload)

    def register_hook(self, fn: Callable[[HealthSample], None]) -> None:
        self._hooks.append(fn)

    def _emit(self, sample: HealthSample) -> None:
        for fn in list(self._hooks):
            try:
                fn(sample)
            except Exception:
                logger.exception("Receiver hook error")

    def activate_session(self) -> bool:
        try:
            self.channel.activate()
        except TransportUnavailable as e:
            logger.info("Channel activation skipped: %s", e)
            return False
        return True

    @property
    def has_sample(self) -> bool:
        return self.latest_sample is not None

    def handle_payload(self, payload: Any) -> Optional[HealthSample]:
        try:
            sample = decode_payload(payload, now=self.clock())
        except MalformedPayload:
            self.channel.metrics.incr("discarded")
            return None
        self.latest_sample = sample
        logger.debug("Latest sample updated: hr=%d steps=%d", sample.heart_rate, sample.steps)
        self._emit(sample)
        return sample
