"""
core/constants.py — All system constants for OmniCore.

Run states (Enum), the fixed five-stage pipeline table, the domain
enumeration, timing budgets, and scoring ranges used by the resolver.
Call ``OmniCoreConstants.validate()`` on startup to check the stage table.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import ClassVar

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────────────────────
# Run states
# ──────────────────────────────────────────────────────────────

class RunStatus(Enum):
    """All valid states of a pipeline run."""

    IDLE = "IDLE"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


# ──────────────────────────────────────────────────────────────
# Stage table
# ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Stage:
    """
    One fixed phase of the simulated evaluation pipeline.

    Attributes:
        id: Unique stage token (``'route'``, ``'retrieve'``, ...).
        label: Human-readable stage name.
        description: One-line description shown while the stage is active.
        ordinal: Position in the fixed total order, 0..4.
    """

    id: str
    label: str
    description: str
    ordinal: int

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "label": self.label,
            "description": self.description,
            "ordinal": self.ordinal,
        }


PIPELINE_STAGES: tuple[Stage, ...] = (
    Stage("route", "Routing", "Classifying query to expert module", 0),
    Stage("retrieve", "RAG Retrieval", "Querying knowledge base & embeddings", 1),
    Stage("generate", "Generation", "Model A generating primary answer", 2),
    Stage("verify", "Verification", "Model B & C cross-checking logic", 3),
    Stage("score", "Scoring", "Computing confidence & source strength", 4),
)
"""The ordered stage table. Defined once at import; never mutated."""


# ──────────────────────────────────────────────────────────────
# Domains
# ──────────────────────────────────────────────────────────────

AUTO_DETECT: str = "Auto-Detect"
"""Sentinel domain meaning 'let the resolver pick'; never an output domain."""

GENERAL_DOMAIN: str = "General"
"""Domain assigned to synthesized answers when the request was auto-detect."""

DOMAINS: tuple[str, ...] = (
    AUTO_DETECT,
    "Mathematics",
    "Code",
    "Medical",
    "Finance",
    GENERAL_DOMAIN,
)

_AUTO_ALIASES = frozenset({"auto", AUTO_DETECT.lower()})


def normalize_domain(domain: str | None) -> str | None:
    """
    Map a caller-supplied domain onto its canonical spelling in :data:`DOMAINS`.

    Matching is case-insensitive and ``'auto'`` is accepted as an alias for
    :data:`AUTO_DETECT`. ``None`` and blank strings resolve to auto-detect.

    Returns:
        The canonical domain name, or ``None`` if the domain is unknown.
    """
    if domain is None or not domain.strip():
        return AUTO_DETECT
    key = domain.strip().lower()
    if key in _AUTO_ALIASES:
        return AUTO_DETECT
    for name in DOMAINS:
        if name.lower() == key:
            return name
    return None


# ──────────────────────────────────────────────────────────────
# Frozen constants dataclass
# ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class OmniCoreConstants:
    """
    Frozen dataclass holding all OmniCore system constants.

    Use the class attributes directly; do not instantiate. Values here are
    the built-in defaults; :mod:`core.config` may override the tunable ones.

    Example::

        from core.constants import C, RunStatus

        print(C.STAGE_BASE_MS)      # 700.0
        print(RunStatus.RUNNING)    # RunStatus.RUNNING
        C.validate()
    """

    # ── Timing (milliseconds) ─────────────────────────────────
    STAGE_BASE_MS: ClassVar[float] = 700.0
    """Fixed part of every stage's simulated processing delay."""

    STAGE_JITTER_MS: ClassVar[float] = 500.0
    """Upper bound of the uniform random delay added to each stage."""

    ANIMATION_TICK_MS: ClassVar[float] = 20.0
    """Interval between successive confidence display values."""

    ANIMATION_STEP: ClassVar[int] = 2
    """Increment applied to the displayed confidence on every tick."""

    # ── History ───────────────────────────────────────────────
    HISTORY_CAPACITY: ClassVar[int] = 10
    """Maximum number of resolved answers retained, newest first."""

    # ── Confidence ladder ─────────────────────────────────────
    CONFIDENCE_HIGH: ClassVar[int] = 90
    """Confidence at or above this is displayed as HIGH."""

    CONFIDENCE_MEDIUM: ClassVar[int] = 70
    """Confidence at or above this (and below HIGH) is MEDIUM."""

    CONFIDENCE_REVIEW: ClassVar[int] = 90
    """Answers below this confidence carry a cross-reference advisory."""

    # ── Synthesized-answer ranges (inclusive) ─────────────────
    FALLBACK_CONFIDENCE: ClassVar[tuple[int, int]] = (82, 96)
    FALLBACK_SOURCES: ClassVar[tuple[int, int]] = (3, 9)
    FALLBACK_AGREEMENT: ClassVar[tuple[int, int]] = (80, 99)
    FALLBACK_CITED_SOURCES: ClassVar[tuple[int, int]] = (3, 10)
    """Source count quoted inside the synthesized answer text."""

    MATCH_TOKEN_MIN_LEN: ClassVar[int] = 5
    """Catalog question tokens shorter than this never trigger a match."""

    # ── References ────────────────────────────────────────────
    States: ClassVar[type[RunStatus]] = RunStatus
    Stages: ClassVar[tuple[Stage, ...]] = PIPELINE_STAGES

    # ─────────────────────────────────────────────────────────
    @classmethod
    def max_pipeline_ms(cls) -> float:
        """Worst-case end-to-end pipeline latency in milliseconds."""
        return len(PIPELINE_STAGES) * (cls.STAGE_BASE_MS + cls.STAGE_JITTER_MS)

    @classmethod
    def validate(cls) -> None:
        """
        Check the stage table and domain list for internal consistency.

        Call once on application startup.

        Raises:
            ValueError: If stage ordinals are not 0..N-1 in order, stage ids
                repeat, or the auto sentinel is missing from :data:`DOMAINS`.
        """
        ordinals = [s.ordinal for s in PIPELINE_STAGES]
        if ordinals != list(range(len(PIPELINE_STAGES))):
            raise ValueError(f"Stage ordinals must be contiguous from 0, got {ordinals}")
        ids = [s.id for s in PIPELINE_STAGES]
        if len(set(ids)) != len(ids):
            raise ValueError(f"Stage ids must be unique, got {ids}")
        if AUTO_DETECT not in DOMAINS:
            raise ValueError("DOMAINS must contain the auto-detect sentinel")
        logger.info(
            "Constants OK: %d stages, %d domains, worst-case latency %.0f ms",
            len(PIPELINE_STAGES), len(DOMAINS), cls.max_pipeline_ms(),
        )


# ──────────────────────────────────────────────────────────────
# Module-level convenience alias
# ──────────────────────────────────────────────────────────────

#: Convenience alias — ``from core.constants import C``
C = OmniCoreConstants
