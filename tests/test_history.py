"""
tests/test_history.py — HistoryStore ordering and eviction.
"""

from __future__ import annotations

import threading

import pytest

from answer.models import ResolvedAnswer
from pipeline.history import HistoryStore


def _answer(i: int) -> ResolvedAnswer:
    return ResolvedAnswer(
        query=f"q{i}",
        answer_text=f"answer {i}",
        domain="General",
        confidence=90,
        source_count=3,
        agreement_percent=90,
    )


def test_newest_first() -> None:
    store = HistoryStore()
    for i in range(3):
        store.push(_answer(i))
    assert [a.query for a in store.list()] == ["q2", "q1", "q0"]


def test_eleven_pushes_keep_ten_newest() -> None:
    store = HistoryStore(capacity=10)
    for i in range(1, 12):
        store.push(_answer(i))
    entries = store.list()
    assert len(entries) == 10
    assert entries[0].query == "q11"
    assert entries[-1].query == "q2"
    assert "q1" not in {a.query for a in entries}


def test_list_is_a_copy() -> None:
    store = HistoryStore()
    store.push(_answer(0))
    snapshot = store.list()
    snapshot.clear()
    assert len(store) == 1


def test_clear_and_iter() -> None:
    store = HistoryStore(capacity=3)
    for i in range(3):
        store.push(_answer(i))
    assert [a.query for a in store] == ["q2", "q1", "q0"]
    store.clear()
    assert store.list() == []


@pytest.mark.parametrize("capacity", [0, -1])
def test_invalid_capacity(capacity: int) -> None:
    with pytest.raises(ValueError):
        HistoryStore(capacity=capacity)


def test_concurrent_pushes_respect_capacity() -> None:
    store = HistoryStore(capacity=10)

    def _worker(base: int) -> None:
        for i in range(50):
            store.push(_answer(base + i))

    threads = [threading.Thread(target=_worker, args=(n * 100,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5.0)
    assert len(store) == 10
