"""
pipeline/controller.py — PipelineOrchestrator: the OmniCore query state machine.

Drives one query at a time through the fixed five-stage pipeline::

    route ─► retrieve ─► generate ─► verify ─► score ─► AnswerResolver ─► history

Each stage waits for a :class:`~pipeline.stage_clock.StageClock` delay on a
background daemon thread, so :meth:`PipelineOrchestrator.submit` returns
immediately. An internal EventBus lets presentation code (console view, web
API) follow stage transitions and results without holding references to the
internals; :meth:`PipelineOrchestrator.snapshot` gives a consistent read of the
same state.

Only one run may be in flight per orchestrator. A submit while running is
rejected (first-submit-wins); it never interrupts the active run.
"""

from __future__ import annotations

import random
import threading
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from answer.confidence import ConfidenceAssessment, ConfidenceAssessor
from answer.models import ResolvedAnswer
from answer.resolver import AnswerResolver
from core.config import OmniCoreConfig, load_config
from core.constants import AUTO_DETECT, PIPELINE_STAGES, RunStatus, normalize_domain
from core.fsm import InvalidTransitionError, RunFSM
from core.logger import get_logger
from pipeline.history import HistoryStore
from pipeline.stage_clock import StageClock

_log = get_logger()

# ── EventBus event-name constants ─────────────────────────────────────────────

ON_RUN_STARTED = "ON_RUN_STARTED"
"""Fired once a submit is accepted and the run enters RUNNING."""

ON_STAGE_STARTED = "ON_STAGE_STARTED"
"""Fired when a stage becomes the active stage."""

ON_STAGE_COMPLETED = "ON_STAGE_COMPLETED"
"""Fired when a stage's simulated work has elapsed."""

ON_RESULT = "ON_RESULT"
"""Fired after the answer is published and pushed to history."""

ON_RUN_CANCELLED = "ON_RUN_CANCELLED"
"""Fired when a run stops before resolution (shutdown or resolver error)."""

ON_SUBMIT_REJECTED = "ON_SUBMIT_REJECTED"
"""Fired when a submit is refused: ``reason`` is ``'invalid_input'``, ``'busy'`` or ``'shutdown'``."""

ON_STATUS_CHANGED = "ON_STATUS_CHANGED"
"""Fired on every run-state transition."""

ALL_EVENTS = (
    ON_RUN_STARTED,
    ON_STAGE_STARTED,
    ON_STAGE_COMPLETED,
    ON_RESULT,
    ON_RUN_CANCELLED,
    ON_SUBMIT_REJECTED,
    ON_STATUS_CHANGED,
)

REJECT_INVALID_INPUT = "invalid_input"
REJECT_BUSY = "busy"
REJECT_SHUTDOWN = "shutdown"

EventCallback = Callable[[Dict[str, Any]], None]


# ── PipelineRun ───────────────────────────────────────────────────────────────

@dataclass
class PipelineRun:
    """
    One in-flight or finished execution. Mutated only by the orchestrator.

    Attributes:
        run_id: Monotonic per-orchestrator counter.
        query: Query text as submitted.
        requested_domain: Canonical requested domain (may be auto-detect).
        current_stage_index: Active stage ordinal, -1 once finished.
        completed_stage_indices: Stage ordinals in completion order.
        started_at: ``time.monotonic()`` at submit.
    """

    run_id: int
    query: str
    requested_domain: str
    current_stage_index: int = 0
    completed_stage_indices: List[int] = field(default_factory=list)
    started_at: float = field(default_factory=time.monotonic)


# ── PipelineOrchestrator ──────────────────────────────────────────────────────

class PipelineOrchestrator:
    """
    Sequences the five stages, resolves the answer, and records history.

    Subsystem initialisation order:

    1. :func:`~core.logger.get_logger` (singleton)
    2. :class:`~core.fsm.RunFSM`
    3. :class:`~pipeline.stage_clock.StageClock`
    4. :class:`~answer.resolver.AnswerResolver`
    5. :class:`~answer.confidence.ConfidenceAssessor`
    6. :class:`~pipeline.history.HistoryStore`

    Any collaborator may be injected; tests pass a zero-delay clock and a
    seeded resolver.

    Args:
        config: Loaded configuration; built-in defaults when ``None``.
        stage_clock: Delay source for stages.
        resolver: Answer resolver invoked after the last stage.
        history: Store receiving each resolved answer.
        assessor: Confidence band assessor applied to each answer.

    Example::

        orch = PipelineOrchestrator.from_config_file()
        orch.subscribe(ON_RESULT, lambda d: print(d["answer"]["domain"]))
        orch.submit("What is the worst case of quicksort?", "Auto-Detect")
        orch.wait(timeout=10.0)
    """

    def __init__(
        self,
        config: Optional[OmniCoreConfig] = None,
        stage_clock: Optional[StageClock] = None,
        resolver: Optional[AnswerResolver] = None,
        history: Optional[HistoryStore] = None,
        assessor: Optional[ConfidenceAssessor] = None,
    ) -> None:
        self._config = config or OmniCoreConfig()
        seed = self._config.pipeline.seed

        # ── 1. Core logger ────────────────────────────────────────────────
        self._log = get_logger()

        # ── 2. FSM ────────────────────────────────────────────────────────
        _t = time.perf_counter()
        self._fsm = RunFSM(on_transition=self._on_fsm_transition)
        self._log.perf("pipeline", "init_fsm",
                       (time.perf_counter() - _t) * 1_000.0, {})

        # ── 3. Stage clock ────────────────────────────────────────────────
        self._clock = stage_clock or StageClock.from_config(
            self._config.pipeline,
            rng=random.Random(seed) if seed is not None else None,
        )

        # ── 4. Resolver ───────────────────────────────────────────────────
        self._resolver = resolver or AnswerResolver(
            rng=random.Random(seed) if seed is not None else None,
        )

        # ── 5. Confidence assessor ────────────────────────────────────────
        self._assessor = assessor or ConfidenceAssessor(self._config.confidence)

        # ── 6. History ────────────────────────────────────────────────────
        self._history = history or HistoryStore(self._config.history.capacity)

        # ── EventBus ──────────────────────────────────────────────────────
        self._subscribers: Dict[str, List[EventCallback]] = defaultdict(list)

        # ── Runtime state ─────────────────────────────────────────────────
        # Re-entrant: FSM callbacks fire while the lock is held and
        # subscribers may call snapshot() from inside them.
        self._lock = threading.RLock()
        self._run: Optional[PipelineRun] = None
        self._last_result: Optional[ResolvedAnswer] = None
        self._last_assessment: Optional[ConfidenceAssessment] = None
        self._thread: Optional[threading.Thread] = None
        self._closed = False
        self._run_counter = 0

        self._log.info("pipeline", "orchestrator_ready", {
            "stages": [s.id for s in PIPELINE_STAGES],
            "max_stage_ms": self._clock.max_delay_ms,
            "history_capacity": self._history.capacity,
            "seed": seed,
        })

    @classmethod
    def from_config_file(
        cls,
        config_path: str | None = None,
        **kwargs: Any,
    ) -> "PipelineOrchestrator":
        """Load config from file (auto-discovered if ``None``) and build an orchestrator."""
        return cls(config=load_config(config_path), **kwargs)

    # ── EventBus ──────────────────────────────────────────────────────────────

    def subscribe(self, event: str, callback: EventCallback) -> None:
        """
        Register *callback* to receive payloads whenever *event* is published.

        Callbacks run synchronously on the publishing thread (usually the run
        thread) in registration order and must not block. Exceptions are
        caught and logged so a failing callback never disrupts the run.

        Args:
            event:    One of the ``ON_*`` module-level constants.
            callback: Callable ``(data: dict) → None``.
        """
        if event not in ALL_EVENTS:
            raise ValueError(f"Unknown event: {event!r}")
        self._subscribers[event].append(callback)
        _log.info("pipeline", "event_subscribed", {"event": event})

    def unsubscribe(self, event: str, callback: EventCallback) -> None:
        try:
            self._subscribers[event].remove(callback)
        except ValueError:
            _log.warn("pipeline", "unsubscribe_unknown_callback", {"event": event})

    def publish(self, event: str, data: Dict[str, Any]) -> None:
        """
        Dispatch *event* to all registered callbacks with payload *data*.

        Args:
            event: Event name string (one of the ``ON_*`` constants).
            data:  JSON-safe dict payload passed verbatim to each callback.
        """
        for cb in list(self._subscribers.get(event, [])):
            try:
                cb(data)
            except Exception as exc:  # noqa: BLE001
                _log.error("pipeline", "event_callback_error", {
                    "event": event,
                    "error": str(exc),
                })

    # ── Observable state ──────────────────────────────────────────────────────

    @property
    def status(self) -> RunStatus:
        return self._fsm.current_state

    @property
    def is_busy(self) -> bool:
        return self._fsm.current_state is RunStatus.RUNNING

    @property
    def is_closed(self) -> bool:
        """True once :meth:`shutdown` has been called; later submits are rejected."""
        with self._lock:
            return self._closed

    @property
    def history(self) -> HistoryStore:
        return self._history

    @property
    def last_result(self) -> Optional[ResolvedAnswer]:
        with self._lock:
            return self._last_result

    @property
    def fsm(self) -> RunFSM:
        return self._fsm

    def snapshot(self) -> Dict[str, Any]:
        """
        Return a consistent, JSON-safe view of the orchestrator state.

        Keys: ``status``, ``run_id``, ``query``, ``requested_domain``,
        ``current_stage_index``, ``completed_stage_indices``, ``stages``
        (per-stage ``pending``/``active``/``done``), ``last_result`` and
        ``assessment`` (both ``None`` until a run completes).

        Taken under the same lock that guards completion, so a ``COMPLETED``
        status always comes with its result.
        """
        with self._lock:
            run = self._run
            current = run.current_stage_index if run else -1
            completed = list(run.completed_stage_indices) if run else []
            return {
                "status": self._fsm.current_state.value,
                "run_id": run.run_id if run else None,
                "query": run.query if run else None,
                "requested_domain": run.requested_domain if run else None,
                "current_stage_index": current,
                "completed_stage_indices": completed,
                "stages": _stage_view(current, completed),
                "last_result": self._last_result.to_dict() if self._last_result else None,
                "assessment": (
                    self._last_assessment.to_dict() if self._last_assessment else None
                ),
            }

    # ── Commands ──────────────────────────────────────────────────────────────

    def submit(self, query: str, requested_domain: str = AUTO_DETECT) -> bool:
        """
        Start a run for *query* unless the input is invalid, a run is active,
        or the orchestrator has been shut down.

        Rejections leave all state untouched, publish :data:`ON_SUBMIT_REJECTED`
        and return ``False``; they are not exceptions. Callers should not retry
        an ``invalid_input`` rejection automatically.

        Args:
            query: Query text; must be non-empty after stripping whitespace.
            requested_domain: One of :data:`~core.constants.DOMAINS`
                (case-insensitive, ``'auto'`` accepted).

        Returns:
            ``True`` if the run was started.
        """
        if query is None or not query.strip():
            return self._reject(REJECT_INVALID_INPUT, query, requested_domain, "empty_query")
        domain = normalize_domain(requested_domain)
        if domain is None:
            return self._reject(REJECT_INVALID_INPUT, query, requested_domain, "unknown_domain")

        rejection: Optional[tuple] = None
        with self._lock:
            if self._closed:
                rejection = (REJECT_SHUTDOWN, "orchestrator shut down")
            elif self._fsm.current_state is RunStatus.RUNNING:
                busy_run = self._run.run_id if self._run else None
                rejection = (REJECT_BUSY, f"run {busy_run} active")
            else:
                if self._fsm.current_state is not RunStatus.IDLE:
                    self._fsm.transition(RunStatus.IDLE, reason="new_submit")
                self._run_counter += 1
                run = PipelineRun(
                    run_id=self._run_counter,
                    query=query,
                    requested_domain=domain,
                )
                self._run = run
                self._last_result = None
                self._last_assessment = None
                self._fsm.transition(RunStatus.RUNNING, reason="submit")
                self._thread = threading.Thread(
                    target=self._run_pipeline,
                    args=(run,),
                    daemon=True,
                    name=f"omnicore-run-{run.run_id}",
                )

        if rejection is not None:
            reason, detail = rejection
            return self._reject(reason, query, requested_domain, detail)

        _log.info("pipeline", "run_started", {
            "run_id": run.run_id,
            "query": query,
            "requested_domain": domain,
        })
        self.publish(ON_RUN_STARTED, {
            "run_id": run.run_id,
            "query": query,
            "requested_domain": domain,
        })
        self._thread.start()
        return True

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the current run thread finishes.

        Returns:
            ``True`` if no run is in flight on return.
        """
        thread = self._thread
        if thread is None:
            return True
        if thread.ident is None:
            # Accepted but not yet started by submit()
            return False
        if thread is not threading.current_thread():
            thread.join(timeout)
        return not thread.is_alive()

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """
        Stop accepting work and let any in-flight run end as CANCELLED.

        Shutdown is final: every later :meth:`submit` is rejected with
        reason ``'shutdown'``.

        A stage wait that has already begun is never interrupted: the run
        observes the stop request at the next stage boundary, so this may
        block for up to one stage delay (bounded by *timeout*).
        """
        _log.info("pipeline", "shutdown_requested", {})
        with self._lock:
            self._closed = True
        if timeout is None:
            timeout = self._clock.max_delay_ms / 1000.0 + 1.0
        if not self.wait(timeout):
            _log.warn("pipeline", "shutdown_wait_timeout", {"timeout_s": timeout})
        _log.info("pipeline", "orchestrator_shutdown", {})
        _log.flush()

    # ── Run thread ────────────────────────────────────────────────────────────

    def _run_pipeline(self, run: PipelineRun) -> None:
        """
        Execute every stage in order, then resolve and publish.  Runs on a
        background thread started by :meth:`submit`.
        """
        _t_run = time.perf_counter()

        for stage in PIPELINE_STAGES:
            if self._closed:
                self._cancel(run, reason="shutdown")
                return

            with self._lock:
                run.current_stage_index = stage.ordinal
            self.publish(ON_STAGE_STARTED, {
                "run_id": run.run_id,
                "index": stage.ordinal,
                "stage": stage.to_dict(),
            })

            delay_ms = self._clock.wait(stage)

            with self._lock:
                run.completed_stage_indices.append(stage.ordinal)
            _log.perf("pipeline", "stage_completed", delay_ms, {
                "run_id": run.run_id,
                "stage": stage.id,
                "index": stage.ordinal,
            })
            self.publish(ON_STAGE_COMPLETED, {
                "run_id": run.run_id,
                "index": stage.ordinal,
                "stage": stage.to_dict(),
                "delay_ms": round(delay_ms, 2),
            })

        if self._closed:
            self._cancel(run, reason="shutdown")
            return

        try:
            answer = self._resolver.resolve(run.query, run.requested_domain)
        except Exception as exc:  # noqa: BLE001
            _log.error("pipeline", "resolver_exception", {
                "run_id": run.run_id,
                "error": str(exc),
            })
            self._cancel(run, reason="resolver_error")
            return

        assessment = self._assessor.assess(answer)

        # Result, history and status change as one step for observers
        with self._lock:
            self._last_result = answer
            self._last_assessment = assessment
            self._history.push(answer)
            run.current_stage_index = -1
            self._fsm.transition(RunStatus.COMPLETED, reason="resolved")

        _run_ms = (time.perf_counter() - _t_run) * 1_000.0
        _log.perf("pipeline", "run_completed", _run_ms, {
            "run_id": run.run_id,
            "domain": answer.domain,
            "confidence": answer.confidence,
            "matched": answer.matched,
        })
        self.publish(ON_RESULT, {
            "run_id": run.run_id,
            "answer": answer.to_dict(),
            "assessment": assessment.to_dict(),
            "latency_ms": round(_run_ms, 2),
        })

    # ── Helpers ───────────────────────────────────────────────────────────────

    def _cancel(self, run: PipelineRun, reason: str) -> None:
        with self._lock:
            run.current_stage_index = -1
            try:
                self._fsm.transition(RunStatus.CANCELLED, reason=reason)
            except InvalidTransitionError as exc:
                _log.error("pipeline", "fsm_cancel_error", {
                    "error": str(exc), "state": self._fsm.current_state.value,
                })
                self._fsm.reset()
        _log.warn("pipeline", "run_cancelled", {
            "run_id": run.run_id,
            "reason": reason,
            "completed": list(run.completed_stage_indices),
        })
        self.publish(ON_RUN_CANCELLED, {
            "run_id": run.run_id,
            "reason": reason,
            "completed_stage_indices": list(run.completed_stage_indices),
        })

    def _reject(self, reason: str, query: Any, domain: Any, detail: str) -> bool:
        _log.warn("pipeline", "submit_rejected", {
            "reason": reason,
            "detail": detail,
            "query": query,
            "requested_domain": domain,
        })
        self.publish(ON_SUBMIT_REJECTED, {
            "reason": reason,
            "detail": detail,
            "query": query,
            "requested_domain": domain,
        })
        return False

    def _on_fsm_transition(
        self,
        from_state: RunStatus,
        to_state: RunStatus,
        reason: str,
    ) -> None:
        """Wired to :class:`~core.fsm.RunFSM` as its ``on_transition`` callback."""
        _log.info("pipeline", "fsm_transition", {
            "from": from_state.value,
            "to": to_state.value,
            "reason": reason,
        })
        self.publish(ON_STATUS_CHANGED, {
            "from": from_state.value,
            "to": to_state.value,
            "reason": reason,
        })


def _stage_view(current: int, completed: List[int]) -> List[Dict[str, Any]]:
    """Per-stage display state; ``done`` takes precedence over ``active``."""
    done = set(completed)
    view = []
    for stage in PIPELINE_STAGES:
        if stage.ordinal in done:
            state = "done"
        elif stage.ordinal == current:
            state = "active"
        else:
            state = "pending"
        view.append({"id": stage.id, "label": stage.label, "state": state})
    return view
