"""
answer/models.py — Immutable result records for OmniCore.

:class:`ResolvedAnswer` is the output of one completed pipeline run; it is
created once by the resolver and never mutated afterwards.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import List, Tuple

EMPHASIS_MARKER = "**"


@dataclass(frozen=True)
class ResolvedAnswer:
    """
    Final output record for a completed run.

    Attributes:
        query: The query text exactly as submitted.
        answer_text: Answer body; may embed ``**emphasis**`` markers.
        domain: Resolved domain (never the auto-detect sentinel).
        confidence: Simulated model certainty, integer percent 0–100.
        source_count: Number of supporting sources, ≥0.
        agreement_percent: Simulated cross-model consensus, integer percent 0–100.
        matched: True if the answer came from the knowledge catalog,
            False if it was synthesized.
    """

    query: str
    answer_text: str
    domain: str
    confidence: int
    source_count: int
    agreement_percent: int
    matched: bool = False

    def __post_init__(self) -> None:
        if not 0 <= self.confidence <= 100:
            raise ValueError(f"confidence must be in [0, 100], got {self.confidence}")
        if not 0 <= self.agreement_percent <= 100:
            raise ValueError(
                f"agreement_percent must be in [0, 100], got {self.agreement_percent}"
            )
        if self.source_count < 0:
            raise ValueError(f"source_count must be ≥0, got {self.source_count}")

    def segments(self) -> List[Tuple[str, bool]]:
        """
        Split :attr:`answer_text` on the emphasis marker.

        Odd-indexed parts are the emphasised ones, so an unbalanced trailing
        marker leaves the remainder emphasised. Empty parts are dropped.

        Returns:
            ``[(text, emphasised), ...]`` in reading order.
        """
        parts = self.answer_text.split(EMPHASIS_MARKER)
        return [(part, i % 2 == 1) for i, part in enumerate(parts) if part]

    @property
    def plain_text(self) -> str:
        """Answer text with emphasis markers removed."""
        return self.answer_text.replace(EMPHASIS_MARKER, "")

    def to_dict(self) -> dict:
        return asdict(self)
