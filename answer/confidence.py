"""
answer/confidence.py — Confidence band assessment for resolved answers.

Maps an answer's integer confidence onto a display band and flags answers
that should be cross-referenced before being relied upon.

Band ladder (defaults, configurable)::

    confidence ≥ 90         → HIGH
    70 ≤ confidence < 90    → MEDIUM
    confidence < 70         → LOW

Review flag: ``confidence < 90`` → needs_review with a cross-reference advisory.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from answer.models import ResolvedAnswer
from core.config import ConfidenceConfig
from core.logger import get_logger

log = get_logger()

REVIEW_ADVISORY = (
    "Confidence below {threshold}% — consider cross-referencing with domain expert"
)


class ConfidenceBand(Enum):
    """
    Display band for a confidence value.

    Values:
        HIGH:   At or above the high threshold.
        MEDIUM: At or above the medium threshold, below high.
        LOW:    Below the medium threshold.
    """

    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


@dataclass
class ConfidenceAssessment:
    """
    Result of :meth:`ConfidenceAssessor.assess`.

    Attributes:
        confidence: The assessed integer confidence.
        band: Display band.
        needs_review: True when below the review threshold.
        reasons: Human-readable advisories (empty for confident answers).
    """

    confidence: int
    band: ConfidenceBand
    needs_review: bool
    reasons: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "confidence": self.confidence,
            "band": self.band.value,
            "needs_review": self.needs_review,
            "reasons": list(self.reasons),
        }


class ConfidenceAssessor:
    """
    Apply the band ladder and review threshold to resolved answers.

    Args:
        config: Thresholds; defaults to :class:`~core.config.ConfidenceConfig`.
    """

    def __init__(self, config: Optional[ConfidenceConfig] = None) -> None:
        self._config = config or ConfidenceConfig()

    def band_for(self, confidence: int) -> ConfidenceBand:
        if confidence >= self._config.high_threshold:
            return ConfidenceBand.HIGH
        if confidence >= self._config.medium_threshold:
            return ConfidenceBand.MEDIUM
        return ConfidenceBand.LOW

    def assess(self, answer: ResolvedAnswer) -> ConfidenceAssessment:
        """Classify *answer* and log the assessment."""
        band = self.band_for(answer.confidence)
        needs_review = answer.confidence < self._config.review_threshold
        reasons: List[str] = []
        if needs_review:
            reasons.append(REVIEW_ADVISORY.format(threshold=self._config.review_threshold))
        if not answer.matched:
            reasons.append("synthesized: no catalog entry matched the query")

        assessment = ConfidenceAssessment(
            confidence=answer.confidence,
            band=band,
            needs_review=needs_review,
            reasons=reasons,
        )
        log.info("confidence", "assess", {
            "domain": answer.domain,
            **assessment.to_dict(),
        })
        return assessment
