"""Lightweight in-memory metrics collector."""

from __future__ import annotations

import threading
from collections import Counter
from dataclasses import dataclass
from typing import Dict


@dataclass
class MetricSnapshot:
    total_turns: int
    turn_outcomes: Dict[str, int]
    dispatches: Dict[str, int]
    resume_outcomes: Dict[str, int]
    ledger_hits: int
    retries: int = 0


class MetricsCollector:
    """Thread-safe counter storage shared by every conversation thread."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._total_turns = 0
        self._outcomes: Counter[str] = Counter()
        self._dispatches: Counter[str] = Counter()
        self._resumes: Counter[str] = Counter()
        self._ledger_hits = 0
        self._retries = 0

    def record_turn(self, outcome: str) -> None:
        with self._lock:
            self._total_turns += 1
            self._outcomes[outcome] += 1

    def record_dispatch(self, capability: str) -> None:
        with self._lock:
            self._dispatches[capability] += 1

    def record_resume(self, outcome: str) -> None:
        with self._lock:
            self._resumes[outcome] += 1

    def record_ledger_hit(self) -> None:
        with self._lock:
            self._ledger_hits += 1

    def record_retry(self) -> None:
        with self._lock:
            self._retries += 1

    def snapshot(self) -> MetricSnapshot:
        with self._lock:
            return MetricSnapshot(
                total_turns=self._total_turns,
                turn_outcomes=dict(self._outcomes),
                dispatches=dict(self._dispatches),
                resume_outcomes=dict(self._resumes),
                ledger_hits=self._ledger_hits,
                retries=self._retries,
            )
