"""
answer/catalog.py — Built-in knowledge catalog.

A small, fixed, ordered set of sample question/answer records used by
:class:`~answer.resolver.AnswerResolver` for keyword matching. Catalog order
is significant: matching is first-match-wins.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List

from core.constants import C


@dataclass(frozen=True)
class KnowledgeEntry:
    """Static reference record. Read-only; loaded once at import."""

    question_text: str
    answer_text: str
    domain: str
    confidence: int
    source_count: int
    agreement_percent: int

    def match_tokens(self) -> List[str]:
        """
        Lower-cased whitespace-delimited question tokens long enough to match.

        Punctuation stays attached (``"years?"``, ``"$10,000"``) and counts
        towards the length.
        """
        return [
            token
            for token in self.question_text.lower().split()
            if len(token) >= C.MATCH_TOKEN_MIN_LEN
        ]


CATALOG: tuple[KnowledgeEntry, ...] = (
    KnowledgeEntry(
        question_text="What is the compound interest on $10,000 at 5% for 3 years?",
        answer_text=(
            "The compound interest is **$1,576.25**. Using A = P(1 + r/n)^(nt) "
            "where P=$10,000, r=0.05, n=1, t=3: A = 10,000 × (1.05)³ = $11,576.25. "
            "Therefore CI = $1,576.25."
        ),
        domain="Finance",
        confidence=98,
        source_count=4,
        agreement_percent=100,
    ),
    KnowledgeEntry(
        question_text="What is the time complexity of quicksort in the worst case?",
        answer_text=(
            "Quicksort's worst-case time complexity is **O(n²)**, occurring when "
            "the pivot consistently partitions the array into subarrays of sizes "
            "1 and n-1 (e.g., already sorted array with last-element pivot). "
            "Average case is O(n log n). Space complexity is O(log n) for the call stack."
        ),
        domain="Code",
        confidence=97,
        source_count=6,
        agreement_percent=100,
    ),
    KnowledgeEntry(
        question_text="What are the first-line treatments for Type 2 Diabetes?",
        answer_text=(
            "First-line treatment for Type 2 Diabetes is **Metformin** (unless "
            "contraindicated), combined with lifestyle modifications including diet "
            "and exercise. Per ADA 2024 guidelines, GLP-1 receptor agonists or "
            "SGLT-2 inhibitors may be added based on cardiovascular/renal risk profile."
        ),
        domain="Medical",
        confidence=91,
        source_count=8,
        agreement_percent=89,
    ),
)


def sample_queries() -> List[dict]:
    """Catalog questions offered to the user as ready-made sample queries."""
    return [{"query": e.question_text, "domain": e.domain} for e in CATALOG]
