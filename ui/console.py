"""
ui/console.py — Headless text view of a PipelineOrchestrator.

Subscribes to the orchestrator EventBus and prints stage progress, the final
answer (emphasis rendered with ANSI bold when the stream is a TTY), the
animated confidence counter, and any low-confidence advisory.
"""

from __future__ import annotations

import sys
from typing import Any, Dict, Optional, TextIO

from answer.models import ResolvedAnswer
from core.constants import PIPELINE_STAGES
from pipeline.controller import (
    ON_RESULT,
    ON_RUN_CANCELLED,
    ON_RUN_STARTED,
    ON_STAGE_COMPLETED,
    ON_STAGE_STARTED,
    ON_SUBMIT_REJECTED,
    PipelineOrchestrator,
)
from ui.animator import ConfidenceAnimator

_BOLD = "\033[1m"
_RESET = "\033[0m"


class ConsoleView:
    """
    Render orchestrator events as plain text lines.

    Args:
        orchestrator: The orchestrator to observe.
        animator: Drives the confidence counter; pass a disabled animator
            for non-interactive output.
        stream: Output stream (default ``sys.stdout``).
        color: Use ANSI bold for emphasis; defaults to ``stream.isatty()``.
    """

    def __init__(
        self,
        orchestrator: PipelineOrchestrator,
        animator: Optional[ConfidenceAnimator] = None,
        stream: Optional[TextIO] = None,
        color: Optional[bool] = None,
    ) -> None:
        self._orch = orchestrator
        self._animator = animator or ConfidenceAnimator(enabled=False)
        self._out = stream or sys.stdout
        if color is None:
            color = bool(getattr(self._out, "isatty", lambda: False)())
        self._color = color

        self._handlers = {
            ON_RUN_STARTED: self._on_run_started,
            ON_STAGE_STARTED: self._on_stage_started,
            ON_STAGE_COMPLETED: self._on_stage_completed,
            ON_RESULT: self._on_result,
            ON_RUN_CANCELLED: self._on_cancelled,
            ON_SUBMIT_REJECTED: self._on_rejected,
        }
        for event, handler in self._handlers.items():
            orchestrator.subscribe(event, handler)

    def close(self) -> None:
        """Stop rendering events from the orchestrator."""
        for event, handler in self._handlers.items():
            self._orch.unsubscribe(event, handler)

    # ── Event handlers ────────────────────────────────────────────────────────

    def _on_run_started(self, data: Dict[str, Any]) -> None:
        self._line(f"▶ {data['query']}  [{data['requested_domain']}]")

    def _on_stage_started(self, data: Dict[str, Any]) -> None:
        stage = data["stage"]
        self._line(
            f"  [{data['index'] + 1}/{len(PIPELINE_STAGES)}] "
            f"{stage['label'].upper():<14} {stage['description']}…"
        )

    def _on_stage_completed(self, data: Dict[str, Any]) -> None:
        self._line(f"      ✓ {data['stage']['label']} ({data['delay_ms']:.0f} ms)")

    def _on_result(self, data: Dict[str, Any]) -> None:
        answer = ResolvedAnswer(**data["answer"])
        assessment = data["assessment"]
        self._line("")
        self._line(
            f"DOMAIN {answer.domain} · SOURCES {answer.source_count} · "
            f"AGREE {answer.agreement_percent}%"
        )
        self._line(self.render_answer(answer))
        self._render_confidence(answer.confidence, assessment["band"])
        for reason in assessment["reasons"]:
            self._line(f"⚠ {reason}")

    def _on_cancelled(self, data: Dict[str, Any]) -> None:
        self._line(f"✗ run {data['run_id']} cancelled ({data['reason']})")

    def _on_rejected(self, data: Dict[str, Any]) -> None:
        self._line(f"✗ query rejected: {data['reason']} ({data['detail']})")

    # ── Rendering ─────────────────────────────────────────────────────────────

    def render_answer(self, answer: ResolvedAnswer) -> str:
        """Answer text with emphasis markers rendered for this stream."""
        if not self._color:
            return answer.plain_text
        return "".join(
            f"{_BOLD}{text}{_RESET}" if emphasised else text
            for text, emphasised in answer.segments()
        )

    def render_history(self) -> str:
        """One line per history entry, newest first."""
        entries = self._orch.history.list()
        if not entries:
            return "No queries yet."
        return "\n".join(
            f"{i + 1:>2}. {e.confidence:>3}%  {e.domain:<12} {e.query}"
            for i, e in enumerate(entries)
        )

    def _render_confidence(self, confidence: int, band: str) -> None:
        shown = 0
        for shown in self._animator.animate(confidence):
            if self._color:
                self._out.write(f"\rCONF {shown:>3}%")
                self._out.flush()
        if self._color:
            self._out.write(f"  {band}\n")
        else:
            self._line(f"CONF {shown}%  {band}")

    def _line(self, text: str) -> None:
        self._out.write(text + "\n")
        self._out.flush()
