"""
tests/conftest.py — Shared fixtures for the OmniCore test suite.

Structured logs are redirected to a throwaway directory before any project
module creates the logger singleton.
"""

from __future__ import annotations

import os
import random
import tempfile
import threading

import pytest

os.environ.setdefault("OMNICORE_LOG_DIR", tempfile.mkdtemp(prefix="omnicore-logs-"))

from answer.resolver import AnswerResolver  # noqa: E402
from core.constants import Stage  # noqa: E402
from pipeline.controller import PipelineOrchestrator  # noqa: E402
from pipeline.stage_clock import StageClock  # noqa: E402


class GatedStageClock(StageClock):
    """
    Stage clock whose waits block until the test releases them.

    ``started`` is set each time a stage wait begins; ``release()`` lets
    every pending and future wait return immediately.
    """

    def __init__(self) -> None:
        super().__init__(base_ms=0, jitter_ms=0, sleep=lambda _s: None)
        self.started = threading.Event()
        self._gate = threading.Event()

    def wait(self, stage: Stage) -> float:
        self.started.set()
        self._gate.wait(timeout=5.0)
        return 0.0

    def release(self) -> None:
        self._gate.set()


def instant_clock() -> StageClock:
    """Zero-delay stage clock."""
    return StageClock(base_ms=0, jitter_ms=0, sleep=lambda _s: None)


@pytest.fixture()
def orchestrator() -> PipelineOrchestrator:
    """Orchestrator with zero stage delay and a seeded resolver."""
    orch = PipelineOrchestrator(
        stage_clock=instant_clock(),
        resolver=AnswerResolver(rng=random.Random(1234)),
    )
    yield orch
    orch.shutdown(timeout=2.0)
