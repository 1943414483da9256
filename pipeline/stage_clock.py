"""
pipeline/stage_clock.py — Simulated per-stage processing latency.

Each stage waits ``base_ms + uniform[0, jitter_ms)``; with the defaults that is
700–1200 ms, so a full five-stage run is bounded by 6 s. Both the random source
and the sleep function are injectable so tests can run with zero or gated
delays without touching the orchestrator.
"""

from __future__ import annotations

import random
import time
from typing import Callable, Optional

from core.config import PipelineConfig
from core.constants import C, Stage


class StageClock:
    """
    Produce and apply a randomised delay for each pipeline stage.

    Args:
        base_ms: Fixed part of every delay.
        jitter_ms: Upper bound of the uniform random extra.
        rng: Random source; defaults to a fresh :class:`random.Random`.
        sleep: Blocking sleep taking seconds; defaults to :func:`time.sleep`.
    """

    def __init__(
        self,
        base_ms: float = C.STAGE_BASE_MS,
        jitter_ms: float = C.STAGE_JITTER_MS,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if base_ms < 0 or jitter_ms < 0:
            raise ValueError(f"delays must be non-negative, got base={base_ms} jitter={jitter_ms}")
        self._base_ms = float(base_ms)
        self._jitter_ms = float(jitter_ms)
        self._rng = rng if rng is not None else random.Random()
        self._sleep = sleep

    @classmethod
    def from_config(
        cls,
        config: PipelineConfig,
        rng: Optional[random.Random] = None,
    ) -> "StageClock":
        return cls(
            base_ms=config.stage_base_ms,
            jitter_ms=config.stage_jitter_ms,
            rng=rng,
        )

    @property
    def max_delay_ms(self) -> float:
        return self._base_ms + self._jitter_ms

    def draw_ms(self) -> float:
        """Draw one stage delay in milliseconds, in ``[base, base + jitter)``."""
        return self._base_ms + self._rng.random() * self._jitter_ms

    def wait(self, stage: Stage) -> float:
        """
        Block for one freshly drawn stage delay.

        Args:
            stage: The stage being simulated (subclasses may vary by stage).

        Returns:
            The delay applied, in milliseconds.
        """
        delay_ms = self.draw_ms()
        self._sleep(delay_ms / 1000.0)
        return delay_ms
