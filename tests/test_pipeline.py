"""
tests/test_pipeline.py — Integration tests for the OmniCore pipeline orchestrator.

Uses a zero-delay StageClock (or a gated one that blocks until released) and
a seeded AnswerResolver so every run completes deterministically in a few
milliseconds.
"""

from __future__ import annotations

import random
import threading
import unittest
from unittest.mock import MagicMock

from conftest import GatedStageClock, instant_clock

from answer.resolver import AnswerResolver
from core.config import HistoryConfig, OmniCoreConfig
from core.constants import AUTO_DETECT, RunStatus
from pipeline.controller import (
    ON_RESULT,
    ON_RUN_CANCELLED,
    ON_RUN_STARTED,
    ON_STAGE_COMPLETED,
    ON_STAGE_STARTED,
    ON_STATUS_CHANGED,
    ON_SUBMIT_REJECTED,
    PipelineOrchestrator,
)

FINANCE_Q = "What is the compound interest on $10,000 at 5% for 3 years?"
CODE_Q = "Explain the time complexity of quicksort in the worst case"
MEDICAL_Q = "What are the first-line treatments for Type 2 Diabetes?"


def _make(clock=None, resolver=None, **kwargs) -> PipelineOrchestrator:
    return PipelineOrchestrator(
        stage_clock=clock or instant_clock(),
        resolver=resolver or AnswerResolver(rng=random.Random(7)),
        **kwargs,
    )


class TestOrchestratorInit(unittest.TestCase):
    """Tests for PipelineOrchestrator construction."""

    def test_initial_snapshot_is_idle(self) -> None:
        orch = _make()
        snap = orch.snapshot()
        self.assertEqual(snap["status"], "IDLE")
        self.assertIsNone(snap["run_id"])
        self.assertIsNone(snap["last_result"])
        self.assertEqual(snap["completed_stage_indices"], [])
        self.assertEqual([s["state"] for s in snap["stages"]], ["pending"] * 5)

    def test_factory_from_config_file(self) -> None:
        """from_config_file() should pick up config/omnicore.yaml."""
        orch = PipelineOrchestrator.from_config_file(stage_clock=instant_clock())
        self.assertEqual(orch.status, RunStatus.IDLE)
        self.assertEqual(orch.history.capacity, 10)

    def test_subscribe_unknown_event_raises(self) -> None:
        with self.assertRaises(ValueError):
            _make().subscribe("ON_NOTHING", lambda d: None)


class TestPipelineRun(unittest.TestCase):
    """A single submit runs all five stages in order and publishes the answer."""

    def setUp(self) -> None:
        self.orch = _make()
        self.events: list[tuple[str, dict]] = []
        for name in (ON_RUN_STARTED, ON_STAGE_STARTED, ON_STAGE_COMPLETED, ON_RESULT):
            self.orch.subscribe(name, self._capture(name))

    def tearDown(self) -> None:
        self.orch.shutdown(timeout=2.0)

    def _capture(self, name: str):
        def _cb(data: dict) -> None:
            self.events.append((name, data))
        return _cb

    def test_stages_run_in_order(self) -> None:
        self.assertTrue(self.orch.submit(FINANCE_Q, AUTO_DETECT))
        self.assertTrue(self.orch.wait(timeout=5.0))

        started = [d["index"] for n, d in self.events if n == ON_STAGE_STARTED]
        completed = [d["index"] for n, d in self.events if n == ON_STAGE_COMPLETED]
        self.assertEqual(started, [0, 1, 2, 3, 4])
        self.assertEqual(completed, [0, 1, 2, 3, 4])
        self.assertEqual(self.orch.snapshot()["completed_stage_indices"], [0, 1, 2, 3, 4])

    def test_event_sequence(self) -> None:
        self.orch.submit(FINANCE_Q)
        self.orch.wait(timeout=5.0)
        names = [n for n, _ in self.events]
        self.assertEqual(names[0], ON_RUN_STARTED)
        self.assertEqual(names[-1], ON_RESULT)
        self.assertEqual(len(names), 1 + 5 + 5 + 1)

    def test_completed_run_publishes_catalog_answer(self) -> None:
        self.orch.submit(FINANCE_Q, AUTO_DETECT)
        self.orch.wait(timeout=5.0)

        self.assertEqual(self.orch.status, RunStatus.COMPLETED)
        result = self.orch.last_result
        self.assertIsNotNone(result)
        self.assertEqual(result.domain, "Finance")
        self.assertEqual(result.confidence, 98)

        snap = self.orch.snapshot()
        self.assertEqual(snap["current_stage_index"], -1)
        self.assertEqual(snap["assessment"]["band"], "HIGH")
        self.assertEqual([s["state"] for s in snap["stages"]], ["done"] * 5)

        payload = [d for n, d in self.events if n == ON_RESULT][0]
        self.assertEqual(payload["answer"]["domain"], "Finance")
        self.assertFalse(payload["assessment"]["needs_review"])

    def test_fallback_answer_is_flagged(self) -> None:
        self.orch.submit("Why is the sky blue?", "Mathematics")
        self.orch.wait(timeout=5.0)
        snap = self.orch.snapshot()
        self.assertEqual(snap["last_result"]["domain"], "Mathematics")
        self.assertFalse(snap["last_result"]["matched"])
        self.assertIn(
            "synthesized: no catalog entry matched the query",
            snap["assessment"]["reasons"],
        )

    def test_domain_is_canonicalised(self) -> None:
        self.orch.submit("Why is the sky blue?", "auto")
        self.orch.wait(timeout=5.0)
        self.assertEqual(self.orch.snapshot()["requested_domain"], AUTO_DETECT)
        self.assertEqual(self.orch.last_result.domain, "General")

    def test_resubmit_after_completion_passes_through_idle(self) -> None:
        transitions: list[tuple[str, str]] = []
        self.orch.subscribe(ON_STATUS_CHANGED, lambda d: transitions.append((d["from"], d["to"])))

        self.orch.submit(FINANCE_Q)
        self.orch.wait(timeout=5.0)
        self.assertTrue(self.orch.submit(CODE_Q))
        self.orch.wait(timeout=5.0)

        self.assertEqual(transitions, [
            ("IDLE", "RUNNING"),
            ("RUNNING", "COMPLETED"),
            ("COMPLETED", "IDLE"),
            ("IDLE", "RUNNING"),
            ("RUNNING", "COMPLETED"),
        ])
        self.assertEqual(self.orch.snapshot()["run_id"], 2)
        self.assertEqual(self.orch.last_result.domain, "Code")

    def test_unsubscribed_callback_is_not_called(self) -> None:
        results: list[dict] = []
        self.orch.subscribe(ON_RESULT, results.append)
        self.orch.unsubscribe(ON_RESULT, results.append)
        # Unknown callbacks are ignored
        self.orch.unsubscribe(ON_RESULT, results.append)

        self.orch.submit(FINANCE_Q)
        self.orch.wait(timeout=5.0)
        self.assertEqual(results, [])
        self.assertEqual(len([n for n, _ in self.events if n == ON_RESULT]), 1)

    def test_fsm_history_records_run(self) -> None:
        self.orch.submit(FINANCE_Q)
        self.orch.wait(timeout=5.0)
        reasons = [r["reason"] for r in self.orch.fsm.get_history()]
        self.assertEqual(reasons, ["submit", "resolved"])

    def test_failing_subscriber_does_not_break_run(self) -> None:
        def _boom(_data: dict) -> None:
            raise RuntimeError("subscriber failure")

        self.orch.subscribe(ON_STAGE_STARTED, _boom)
        self.orch.submit(CODE_Q)
        self.orch.wait(timeout=5.0)
        self.assertEqual(self.orch.status, RunStatus.COMPLETED)


class TestSubmitRejection(unittest.TestCase):
    """Rejected submits leave state untouched and publish ON_SUBMIT_REJECTED."""

    def setUp(self) -> None:
        self.clock = GatedStageClock()
        self.orch = _make(self.clock)
        self.rejections: list[dict] = []
        self.orch.subscribe(ON_SUBMIT_REJECTED, self.rejections.append)

    def tearDown(self) -> None:
        self.clock.release()
        self.orch.shutdown(timeout=2.0)

    def test_empty_query_rejected(self) -> None:
        for q in ("", "   ", "\n\t"):
            self.assertFalse(self.orch.submit(q, AUTO_DETECT))
        self.assertEqual(self.orch.status, RunStatus.IDLE)
        self.assertIsNone(self.orch.snapshot()["run_id"])
        self.assertEqual([r["reason"] for r in self.rejections], ["invalid_input"] * 3)

    def test_unknown_domain_rejected(self) -> None:
        self.assertFalse(self.orch.submit(FINANCE_Q, "Astrology"))
        self.assertEqual(self.orch.status, RunStatus.IDLE)
        self.assertEqual(self.rejections[0]["detail"], "unknown_domain")

    def test_busy_submit_leaves_active_run_untouched(self) -> None:
        self.assertTrue(self.orch.submit(FINANCE_Q))
        self.assertTrue(self.clock.started.wait(timeout=5.0))
        before = self.orch.snapshot()

        self.assertFalse(self.orch.submit(CODE_Q, "Code"))

        after = self.orch.snapshot()
        self.assertEqual(before, after)
        self.assertEqual(after["status"], "RUNNING")
        self.assertEqual(after["query"], FINANCE_Q)
        self.assertEqual(self.rejections[-1]["reason"], "busy")

        self.clock.release()
        self.orch.wait(timeout=5.0)
        self.assertEqual(self.orch.last_result.domain, "Finance")
        self.assertEqual(len(self.orch.history), 1)

    def test_active_stage_visible_in_snapshot(self) -> None:
        self.orch.submit(MEDICAL_Q)
        self.clock.started.wait(timeout=5.0)
        snap = self.orch.snapshot()
        self.assertEqual(snap["current_stage_index"], 0)
        self.assertEqual(
            [s["state"] for s in snap["stages"]],
            ["active", "pending", "pending", "pending", "pending"],
        )
        self.assertTrue(self.orch.is_busy)


class TestHistoryRecording(unittest.TestCase):

    def test_each_completed_run_is_pushed_newest_first(self) -> None:
        orch = _make()
        for q in (FINANCE_Q, CODE_Q, MEDICAL_Q):
            orch.submit(q)
            orch.wait(timeout=5.0)
        self.assertEqual(
            [a.domain for a in orch.history.list()],
            ["Medical", "Code", "Finance"],
        )

    def test_history_capacity_from_config(self) -> None:
        config = OmniCoreConfig(history=HistoryConfig(capacity=2))
        orch = _make(config=config)
        for q in (FINANCE_Q, CODE_Q, MEDICAL_Q):
            orch.submit(q)
            orch.wait(timeout=5.0)
        self.assertEqual([a.domain for a in orch.history.list()], ["Medical", "Code"])


class TestCancellation(unittest.TestCase):

    def test_shutdown_cancels_at_next_stage_boundary(self) -> None:
        clock = GatedStageClock()
        orch = _make(clock)
        cancelled: list[dict] = []
        orch.subscribe(ON_RUN_CANCELLED, cancelled.append)

        orch.submit(FINANCE_Q)
        clock.started.wait(timeout=5.0)
        # The in-progress stage wait is not interrupted, so this times out
        orch.shutdown(timeout=0.05)
        clock.release()
        self.assertTrue(orch.wait(timeout=5.0))

        self.assertEqual(orch.status, RunStatus.CANCELLED)
        self.assertIsNone(orch.last_result)
        self.assertEqual(len(orch.history), 0)
        self.assertEqual(cancelled[0]["reason"], "shutdown")
        self.assertEqual(cancelled[0]["completed_stage_indices"], [0])

    def test_submit_after_shutdown_is_rejected(self) -> None:
        orch = _make()
        rejections: list[dict] = []
        orch.subscribe(ON_SUBMIT_REJECTED, rejections.append)

        orch.shutdown(timeout=1.0)
        self.assertTrue(orch.is_closed)
        self.assertFalse(orch.submit("Why is the sky blue?"))

        self.assertEqual(orch.status, RunStatus.IDLE)
        self.assertIsNone(orch.snapshot()["run_id"])
        self.assertEqual(rejections[0]["reason"], "shutdown")

    def test_shutdown_after_completion_keeps_result(self) -> None:
        orch = _make()
        orch.submit(FINANCE_Q)
        orch.wait(timeout=5.0)
        orch.shutdown(timeout=1.0)

        self.assertFalse(orch.submit(CODE_Q))
        self.assertEqual(orch.status, RunStatus.COMPLETED)
        self.assertEqual(orch.last_result.domain, "Finance")

    def test_resolver_error_cancels_run(self) -> None:
        resolver = MagicMock()
        resolver.resolve.side_effect = RuntimeError("catalog unavailable")
        orch = _make(resolver=resolver)
        cancelled: list[dict] = []
        orch.subscribe(ON_RUN_CANCELLED, cancelled.append)

        orch.submit(FINANCE_Q)
        orch.wait(timeout=5.0)

        self.assertEqual(orch.status, RunStatus.CANCELLED)
        self.assertIsNone(orch.last_result)
        self.assertEqual(cancelled[0]["reason"], "resolver_error")
        self.assertEqual(cancelled[0]["completed_stage_indices"], [0, 1, 2, 3, 4])

        # The orchestrator accepts new work afterwards
        resolver.resolve.side_effect = None
        resolver.resolve.return_value = AnswerResolver().resolve(CODE_Q, AUTO_DETECT)
        self.assertTrue(orch.submit(CODE_Q))
        orch.wait(timeout=5.0)
        self.assertEqual(orch.status, RunStatus.COMPLETED)


class TestSnapshotConsistency(unittest.TestCase):

    def test_completed_status_always_has_result(self) -> None:
        """Observers never see COMPLETED without the matching result."""
        orch = _make()
        violations: list[dict] = []
        stop = threading.Event()

        def _on_status(data: dict) -> None:
            snap = orch.snapshot()
            if snap["status"] == "COMPLETED" and snap["last_result"] is None:
                violations.append(snap)

        def _poll() -> None:
            while not stop.is_set():
                snap = orch.snapshot()
                if snap["status"] == "COMPLETED" and snap["last_result"] is None:
                    violations.append(snap)

        orch.subscribe(ON_STATUS_CHANGED, _on_status)
        poller = threading.Thread(target=_poll, daemon=True)
        poller.start()
        try:
            for q in (FINANCE_Q, CODE_Q, MEDICAL_Q, "Why is the sky blue?") * 5:
                orch.submit(q)
                orch.wait(timeout=5.0)
        finally:
            stop.set()
            poller.join(timeout=2.0)

        self.assertEqual(violations, [])
        self.assertEqual(len(orch.history), 10)


if __name__ == "__main__":
    unittest.main()
