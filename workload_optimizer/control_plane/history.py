"""
workload_optimizer/control_plane/history.py
────────────────────────────────────────────
SchedulingHistory: append-only log of placement decisions, plus running
per-algorithm statistics.

Two stores, updated together under one lock:

  events  → raw SchedulingEvent list, insertion order. Optionally bounded
            (max_events); the oldest events fall off first.
  stats   → per-algorithm running count / sum / min / max / last time.
            Never trimmed, so statistics stay cumulative over every event
            ever recorded even when the raw log is bounded.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from datetime import datetime
from typing import Deque, Dict, List, Optional

from workload_optimizer.shared.models import AlgorithmStatistics, SchedulingEvent

logger = logging.getLogger(__name__)


class _RunningStats:
    __slots__ = ("count", "total", "min_score", "max_score", "last_at")

    def __init__(self) -> None:
        self.count = 0
        self.total = 0.0
        self.min_score = float("inf")
        self.max_score = float("-inf")
        self.last_at: Optional[datetime] = None

    def add(self, event: SchedulingEvent) -> None:
        self.count += 1
        self.total += event.score
        self.min_score = min(self.min_score, event.score)
        self.max_score = max(self.max_score, event.score)
        if self.last_at is None or event.timestamp >= self.last_at:
            self.last_at = event.timestamp


class SchedulingHistory:
    """
    Thread-safe decision log.

    Args:
        max_events: Cap on retained raw events. None = unbounded.
    """

    def __init__(self, max_events: Optional[int] = None) -> None:
        self._lock = threading.Lock()
        self._events: Deque[SchedulingEvent] = deque(maxlen=max_events)
        self._stats: Dict[str, _RunningStats] = {}

    @property
    def max_events(self) -> Optional[int]:
        return self._events.maxlen

    def record_scheduling_event(self, event: SchedulingEvent) -> None:
        with self._lock:
            self._events.append(event)
            self._stats.setdefault(event.algorithm, _RunningStats()).add(event)
        logger.debug(
            "history: %s/%s → %s via %s (score=%.3f)",
            event.namespace, event.workload_id, event.selected_node,
            event.algorithm, event.score,
        )

    def get_scheduling_history(
        self, workload_id: str, namespace: str = "default"
    ) -> List[SchedulingEvent]:
        """Events for one workload, oldest first."""
        with self._lock:
            return [
                e for e in self._events
                if e.workload_id == workload_id and e.namespace == namespace
            ]

    def get_algorithm_statistics(self) -> Dict[str, AlgorithmStatistics]:
        """
        One entry per algorithm that has ever produced a decision.

        Algorithms with no events are absent rather than reported as zero.
        """
        with self._lock:
            return {
                name: AlgorithmStatistics(
                    algorithm=name,
                    count=s.count,
                    average_score=s.total / s.count,
                    min_score=s.min_score,
                    max_score=s.max_score,
                    last_scheduled_at=s.last_at,
                )
                for name, s in self._stats.items()
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
