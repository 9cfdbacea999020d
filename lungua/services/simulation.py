"""
Synthetic telemetry for demos and model testing.

Generates synchronized heart rate and airflow waveforms: a 0.25 Hz breathing
cycle drives airflow and modulates heart rate (respiratory sinus arrhythmia),
plus uniform noise. The ``attack`` condition models an asthma attack with a
high heart rate, flattened RSA and collapsed airflow.
"""

import asyncio
import math
import random
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Literal

import structlog

logger = structlog.get_logger(__name__)

Condition = Literal["normal", "attack"]

RESPIRATION_HZ = 0.25


@dataclass(frozen=True)
class WaveformProfile:
    heart_rate_base: float
    airflow_base: float
    airflow_variability: float
    rsa_magnitude: float


PROFILES: dict[str, WaveformProfile] = {
    "normal": WaveformProfile(
        heart_rate_base=75.0, airflow_base=20.0, airflow_variability=15.0, rsa_magnitude=5.0
    ),
    "attack": WaveformProfile(
        heart_rate_base=135.0, airflow_base=8.0, airflow_variability=2.0, rsa_magnitude=2.0
    ),
}


class SimulatedTelemetrySource:
    """Produces (heart_rate, airflow) pairs at a fixed rate."""

    def __init__(
        self,
        interval_seconds: float = 0.05,
        condition: Condition = "normal",
        rng: random.Random | None = None,
    ) -> None:
        self.interval_seconds = interval_seconds
        self.condition: Condition = condition
        self.rng = rng or random.Random()
        self.elapsed_seconds = 0.0
        self._is_running = False

    @property
    def is_running(self) -> bool:
        return self._is_running

    def toggle_condition(self) -> Condition:
        self.condition = "attack" if self.condition == "normal" else "normal"
        logger.info("simulation_condition_changed", condition=self.condition)
        return self.condition

    def next_sample(self) -> tuple[float, float]:
        """Advance simulated time by one interval and return the reading."""
        self.elapsed_seconds += self.interval_seconds
        profile = PROFILES[self.condition]
        phase = self.elapsed_seconds * 2 * math.pi * RESPIRATION_HZ

        airflow_noise = (self.rng.random() - 0.5) * 2
        airflow = profile.airflow_base + math.sin(phase) * profile.airflow_variability
        airflow = max(0.0, airflow + airflow_noise)

        heart_rate_noise = (self.rng.random() - 0.5) * 3
        heart_rate = profile.heart_rate_base + math.sin(phase) * profile.rsa_magnitude
        return heart_rate + heart_rate_noise, airflow

    async def stream(self) -> AsyncIterator[tuple[float, float]]:
        """Yield readings every interval until ``stop()`` is called."""
        self._is_running = True
        self.elapsed_seconds = 0.0
        logger.info("simulation_started", interval_seconds=self.interval_seconds)
        try:
            while self._is_running:
                yield self.next_sample()
                await asyncio.sleep(self.interval_seconds)
        finally:
            self._is_running = False
            logger.info("simulation_stopped", elapsed_seconds=round(self.elapsed_seconds, 2))

    def stop(self) -> None:
        self._is_running = False
