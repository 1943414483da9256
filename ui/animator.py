"""
ui/animator.py — Confidence display animation as a finite generator.

Purely a presentation affordance: the values it yields never feed back into
stored answers.
"""

from __future__ import annotations

import time
from typing import Callable, Iterator

from core.config import AnimationConfig
from core.constants import C


class ConfidenceAnimator:
    """
    Count a displayed confidence up from 0 to a target percentage.

    :meth:`animate` yields ``0, step, 2·step, …`` clamped so the final value is
    exactly the target, sleeping one tick between values. With animation
    disabled it yields the target alone. Each call returns a fresh,
    single-use generator.

    Args:
        enabled: ``False`` → yield only the target.
        step: Increment per tick.
        tick_ms: Delay between successive values.
        sleep: Blocking sleep taking seconds; injectable for tests.

    Example::

        list(ConfidenceAnimator(sleep=lambda s: None).animate(5))  # [0, 2, 4, 5]
    """

    def __init__(
        self,
        enabled: bool = True,
        step: int = C.ANIMATION_STEP,
        tick_ms: float = C.ANIMATION_TICK_MS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if step < 1:
            raise ValueError(f"step must be ≥1, got {step}")
        self._enabled = enabled
        self._step = step
        self._tick_s = tick_ms / 1000.0
        self._sleep = sleep

    @classmethod
    def from_config(
        cls,
        config: AnimationConfig,
        sleep: Callable[[float], None] = time.sleep,
    ) -> "ConfidenceAnimator":
        return cls(
            enabled=config.enabled,
            step=config.step,
            tick_ms=config.tick_ms,
            sleep=sleep,
        )

    def animate(self, target: int) -> Iterator[int]:
        """
        Return the display sequence for *target*.

        Raises:
            ValueError: If *target* is outside ``0..100`` (raised on call, not
                on first iteration).
        """
        if not 0 <= target <= 100:
            raise ValueError(f"target must be in [0, 100], got {target}")
        return self._sequence(int(target))

    def _sequence(self, target: int) -> Iterator[int]:
        if not self._enabled:
            yield target
            return
        value = 0
        yield value
        while value < target:
            self._sleep(self._tick_s)
            value = min(value + self._step, target)
            yield value
