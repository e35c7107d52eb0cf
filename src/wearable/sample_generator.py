import random
import time
from typing import Callable, Optional

from common.health_proto import HealthSample


class SampleGenerator:

    HEART_RATE_RANGE = (60, 140)
    STEPS_RANGE = (0, 50)
    SPO2_RANGE = (95, 100)
    SYSTOLIC_RANGE = (100, 135)
    DIASTOLIC_RANGE = (60, 85)

    def __init__(self, rng: Optional[random.Random] = None, clock: Callable[[], float] = time.time):
        self.rng = rng or random.Random()
        self.clock = clock

    def generate(self) -> HealthSample:
        """Draw one reading; every field is independent and uniform over its inclusive range."""
        return HealthSample(
            heart_rate=self.rng.randint(*self.HEART_RATE_RANGE),
            steps=self.rng.randint(*self.STEPS_RANGE),
            spo2=self.rng.randint(*self.SPO2_RANGE),
            systolic=self.rng.randint(*self.SYSTOLIC_RANGE),
            diastolic=self.rng.randint(*self.DIASTOLIC_RANGE),
            timestamp=self.clock(),
        )
