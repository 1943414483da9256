"""
core/fsm.py — Strict finite state machine for an OmniCore pipeline run.

Thread-safe FSM with explicit validated transition map, per-state enter/exit
callbacks, transition history (last 50), and structured logging.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from core.constants import RunStatus

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────────────────────
# Custom exception
# ──────────────────────────────────────────────────────────────

class InvalidTransitionError(RuntimeError):
    """
    Raised when a requested run transition is not in the valid transition map.

    Args:
        from_state: Current state at the time of the illegal attempt.
        to_state: Requested (invalid) target state.
        reason: Caller-supplied reason string.
    """

    def __init__(
        self,
        from_state: RunStatus,
        to_state: RunStatus,
        reason: str = "",
    ) -> None:
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason
        super().__init__(
            f"Invalid transition {from_state.value} → {to_state.value}"
            + (f" (reason: {reason})" if reason else "")
        )


# ──────────────────────────────────────────────────────────────
# Valid transition map — single source of truth
# ──────────────────────────────────────────────────────────────

_VALID_TRANSITIONS: dict[RunStatus, list[RunStatus]] = {
    RunStatus.IDLE: [
        RunStatus.RUNNING,
    ],
    RunStatus.RUNNING: [
        RunStatus.COMPLETED,
        RunStatus.CANCELLED,
    ],
    RunStatus.COMPLETED: [
        RunStatus.IDLE,
    ],
    RunStatus.CANCELLED: [
        RunStatus.IDLE,
    ],
}

# Maximum number of transition records kept in history
_MAX_HISTORY = 50


# ──────────────────────────────────────────────────────────────
# FSM class
# ──────────────────────────────────────────────────────────────

class RunFSM:
    """
    Thread-safe finite state machine for a pipeline run.

    Enforces the explicit transition map defined in :data:`_VALID_TRANSITIONS`.
    Illegal transitions raise :class:`InvalidTransitionError` immediately.
    Each transition fires per-state ``on_exit`` and ``on_enter`` callbacks.
    The last 50 transitions are retained in :meth:`get_history`.

    Args:
        on_transition: Optional callback invoked after every successful
            transition with signature ``(from_state, to_state, reason)``.
    """

    def __init__(
        self,
        on_transition: Callable[[RunStatus, RunStatus, str], None] | None = None,
    ) -> None:
        self._state: RunStatus = RunStatus.IDLE
        self._lock = threading.Lock()
        self._history: list[dict] = []
        self._external_callback = on_transition
        self._last_transition: dict | None = None

        logger.info("RunFSM initialised in state: %s", RunStatus.IDLE.value)

    # ──────────────────────────────────────────
    # Public API
    # ──────────────────────────────────────────

    @property
    def current_state(self) -> RunStatus:
        """Return the current run state (thread-safe read)."""
        with self._lock:
            return self._state

    def transition(self, new_state: RunStatus, reason: str = "") -> None:
        """
        Attempt a validated state transition.

        Fires ``_on_exit_<from>`` then ``_on_enter_<to>`` callbacks.
        Records the transition in history. Notifies the external callback.

        Args:
            new_state: Target state to transition to.
            reason: Human-readable reason for the transition (for logs/history).

        Raises:
            InvalidTransitionError: If the transition is not in the valid map.
        """
        with self._lock:
            from_state = self._state
            allowed = _VALID_TRANSITIONS.get(from_state, [])

            if new_state not in allowed:
                raise InvalidTransitionError(from_state, new_state, reason)

            self._fire_on_exit(from_state)
            self._state = new_state
            self._record(from_state, new_state, reason)

        logger.info(
            "FSM: %s → %s%s",
            from_state.value,
            new_state.value,
            f" [{reason}]" if reason else "",
        )

        # Enter + external callbacks run outside the lock
        self._fire_on_enter(new_state)

        if self._external_callback is not None:
            try:
                self._external_callback(from_state, new_state, reason)
            except Exception as exc:  # noqa: BLE001
                logger.warning("FSM external callback raised: %s", exc)

    def reset(self) -> None:
        """
        Force the FSM back to IDLE unconditionally.

        Bypasses the transition map (does NOT raise InvalidTransitionError)
        and logs a warning to distinguish it from normal transitions.
        """
        with self._lock:
            from_state = self._state
            self._fire_on_exit(from_state)
            self._state = RunStatus.IDLE
            self._record(from_state, RunStatus.IDLE, "RESET")

        logger.warning("FSM: RESET from %s → IDLE", from_state.value)
        self._fire_on_enter(RunStatus.IDLE)

    def get_history(self) -> list[dict]:
        """
        Return a copy of the last (up to 50) transition records.

        Each record is a dict with keys ``from``, ``to``, ``reason`` and
        ``timestamp`` (Unix epoch float), oldest first.
        """
        with self._lock:
            return list(self._history)

    def can_transition(self, target: RunStatus) -> bool:
        """
        Check whether a transition to ``target`` is currently valid.

        Approximate read (no lock). Use :meth:`transition` for authoritative
        validation.
        """
        return target in _VALID_TRANSITIONS.get(self._state, [])

    # ──────────────────────────────────────────
    # on_enter / on_exit callbacks — override in subclass
    # ──────────────────────────────────────────

    def _on_enter_idle(self) -> None:
        logger.debug("FSM enter: IDLE — ready for a query")

    def _on_enter_running(self) -> None:
        logger.debug("FSM enter: RUNNING — stages in progress")

    def _on_enter_completed(self) -> None:
        logger.debug("FSM enter: COMPLETED — result published")

    def _on_enter_cancelled(self) -> None:
        logger.warning("FSM enter: CANCELLED — run stopped before resolution")

    def _on_exit_running(self) -> None:
        logger.debug("FSM exit: RUNNING")

    # ──────────────────────────────────────────
    # Internal helpers
    # ──────────────────────────────────────────

    def _record(self, from_state: RunStatus, to_state: RunStatus, reason: str) -> None:
        """Append a transition record. Called with ``self._lock`` held."""
        record = {
            "from": from_state.value,
            "to": to_state.value,
            "reason": reason,
            "timestamp": time.time(),
        }
        self._history.append(record)
        if len(self._history) > _MAX_HISTORY:
            self._history.pop(0)
        self._last_transition = record

    def _fire_on_enter(self, state: RunStatus) -> None:
        """Dispatch to ``_on_enter_<state>`` if defined."""
        method_name = f"_on_enter_{state.value.lower()}"
        method = getattr(self, method_name, None)
        if callable(method):
            try:
                method()
            except Exception as exc:  # noqa: BLE001
                logger.warning("on_enter callback %r raised: %s", method_name, exc)

    def _fire_on_exit(self, state: RunStatus) -> None:
        """
        Dispatch to ``_on_exit_<state>`` if defined.

        NOTE: Called while ``self._lock`` is held — callbacks must not
        call :meth:`transition` or :meth:`current_state`.
        """
        method_name = f"_on_exit_{state.value.lower()}"
        method = getattr(self, method_name, None)
        if callable(method):
            try:
                method()
            except Exception as exc:  # noqa: BLE001
                logger.warning("on_exit callback %r raised: %s", method_name, exc)

    def __repr__(self) -> str:
        with self._lock:
            state_str = self._state.value
            if self._last_transition:
                last = (
                    f"{self._last_transition['from']}"
                    f"→{self._last_transition['to']}"
                    + (
                        f"[{self._last_transition['reason']}]"
                        if self._last_transition["reason"]
                        else ""
                    )
                )
            else:
                last = "none"
        return f"RunFSM(state={state_str}, last={last})"
