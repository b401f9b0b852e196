"""
workload_optimizer/control_plane/scheduler.py
──────────────────────────────────────────────
AdvancedScheduler: decides WHICH node a workload goes to.

One instance owns the three pieces of state that outlive a single call:

  round-robin cursor  → int, advanced once per successful round-robin call
  ReservationStore    → provisional holds counted against node capacity
  SchedulingHistory   → append-only decision log + per-algorithm stats

Each has its own threading.Lock, so the scheduler can be shared by many
reconciliation threads. Build one per process and pass it around; there
is no module-level instance.

How schedule_with_algorithm works
──────────────────────────────────
1. Validate, before touching any state:
     workload None      → InvalidInputError
     admission fails    → InvalidInputError (admit_workload)
     nodes empty        → NoFeasibleNodesError
     algorithm unknown  → UnknownAlgorithmError

2. Take one snapshot of the ReservationStore and filter via NodeFilter
   against it (and the optional pod list). Scoring reuses the same snapshot. Nothing left → InsufficientResourcesError.

3. Select:
     round-robin  → feasible[cursor % len(feasible)], cursor += 1
     otherwise    → score every feasible node, np.argmax picks the first
                    maximum, so ties go to the earliest node in input order.

4. Record a SchedulingEvent and return a frozen SchedulingDecision.

Reservations are NOT created here. The caller reserves explicitly once it
decides to act on the decision.

Cancellation
─────────────
Pass a threading.Event as `cancel`. It is checked before filtering and
before each node is scored; if set, CanceledError is raised and neither
the cursor nor the history has changed.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from workload_optimizer.control_plane.admission_controller import admit_workload
from workload_optimizer.control_plane.cost_calculator import CostCalculator, PowerCalculator
from workload_optimizer.control_plane.history import SchedulingHistory
from workload_optimizer.control_plane.node_filter import NodeFilter, committed_on_node
from workload_optimizer.control_plane.node_scorer import NodeScorer
from workload_optimizer.control_plane.reservations import ReservationStore
from workload_optimizer.shared.config import OptimizerSettings, SchedulerConfig
from workload_optimizer.shared.errors import (
    CanceledError,
    InsufficientResourcesError,
    NoFeasibleNodesError,
)
from workload_optimizer.shared.models import (
    AlgorithmStatistics,
    NodeSnapshot,
    PodSnapshot,
    ResourceQuantity,
    ResourceReservation,
    SchedulingAlgorithm,
    SchedulingDecision,
    SchedulingEvent,
    WorkloadRequest,
)

logger = logging.getLogger(__name__)

Algorithm = Union[str, SchedulingAlgorithm]


def _check_cancel(cancel: Optional[threading.Event], workload: WorkloadRequest) -> None:
    if cancel is not None and cancel.is_set():
        raise CanceledError(
            f"Scheduling of {workload.namespace}/{workload.workload_id} was canceled"
        )


class AdvancedScheduler:
    """
    Multi-algorithm scheduler with reservation bookkeeping and history.

    Public API:
        schedule_with_algorithm(workload, nodes, algorithm)  → SchedulingDecision
        schedule_workload(workload, nodes)                   → SchedulingDecision
        rank_nodes(workload, nodes, algorithm)               → [(node, score)]

        create_reservation / delete_reservation / has_reservation /
        get_reservation / get_reservations_for_node / list_reservations

        record_scheduling_event / get_scheduling_history /
        get_algorithm_statistics

    Args:
        config:       Scheduler tunables. Default: SchedulerConfig().
        scorer:       NodeScorer; built from config when omitted.
        node_filter:  NodeFilter; stateless, default instance.
        reservations: Shared ReservationStore; fresh one when omitted.
        history:      Shared SchedulingHistory; fresh one (bounded by
                      config.history_max_events) when omitted.
    """

    def __init__(
        self,
        config: Optional[SchedulerConfig] = None,
        *,
        scorer: Optional[NodeScorer] = None,
        node_filter: Optional[NodeFilter] = None,
        reservations: Optional[ReservationStore] = None,
        history: Optional[SchedulingHistory] = None,
    ) -> None:
        self.config = config or SchedulerConfig()
        self.scorer = scorer or NodeScorer(config=self.config)
        self.node_filter = node_filter or NodeFilter()
        self.reservations = reservations if reservations is not None else ReservationStore()
        self.history = (
            history if history is not None
            else SchedulingHistory(max_events=self.config.history_max_events)
        )

        self._cursor_lock = threading.Lock()
        self._cursor = 0

    @classmethod
    def from_settings(cls, settings: OptimizerSettings) -> "AdvancedScheduler":
        """Build a scheduler whose scorer prices with the settings' rate tables."""
        scorer = NodeScorer(
            config=settings.scheduler,
            cost_calculator=CostCalculator(settings.pricing),
            power_calculator=PowerCalculator(settings.power),
        )
        return cls(settings.scheduler, scorer=scorer)

    @property
    def available_algorithms(self) -> List[str]:
        return self.scorer.algorithms

    @property
    def cursor(self) -> int:
        with self._cursor_lock:
            return self._cursor

    # ── Scheduling ────────────────────────────────────────────────────────────

    def schedule_workload(
        self,
        workload: WorkloadRequest,
        nodes: Sequence[NodeSnapshot],
        *,
        pods: Sequence[PodSnapshot] = (),
        cancel: Optional[threading.Event] = None,
    ) -> SchedulingDecision:
        """schedule_with_algorithm() with config.default_algorithm."""
        return self.schedule_with_algorithm(
            workload, nodes, self.config.default_algorithm, pods=pods, cancel=cancel,
        )

    def schedule_with_algorithm(
        self,
        workload: WorkloadRequest,
        nodes: Sequence[NodeSnapshot],
        algorithm: Algorithm,
        *,
        pods: Sequence[PodSnapshot] = (),
        cancel: Optional[threading.Event] = None,
    ) -> SchedulingDecision:
        """
        Place one workload with the named algorithm.

        Args:
            workload:  The workload to place.
            nodes:     Candidate nodes, in the order ties should resolve.
            algorithm: One of the registered algorithm names.
            pods:      Pods already in the cluster. They hold capacity and
                       take part in anti-affinity.
            cancel:    Optional cancellation event.

        Returns:
            SchedulingDecision for the selected node.

        Raises:
            InvalidInputError, NoFeasibleNodesError, UnknownAlgorithmError,
            InsufficientResourcesError, CanceledError.
        """
        name = self._validate(workload, nodes, algorithm)
        reservations = self.reservations.list_reservations()
        feasible = self._feasible_nodes(workload, nodes, reservations, pods, cancel)

        if name == SchedulingAlgorithm.ROUND_ROBIN.value:
            _check_cancel(cancel, workload)
            with self._cursor_lock:
                index = self._cursor % len(feasible)
                self._cursor += 1
            selected = feasible[index]
            score = self.scorer.score(workload, selected, name)
        else:
            scores = self._score_feasible(workload, feasible, name, reservations, pods, cancel)
            index = int(np.argmax(scores))
            selected = feasible[index]
            score = float(scores[index])

        decision = SchedulingDecision(
            workload_id=workload.workload_id,
            namespace=workload.namespace,
            selected_node=selected.name,
            score=float(np.clip(score, 0.0, 1.0)),
            algorithm=name,
        )
        self.history.record_scheduling_event(SchedulingEvent.from_decision(decision))

        logger.info(
            "schedule: %s/%s → node %s via %s (score=%.3f, %d/%d feasible)",
            workload.namespace, workload.workload_id, selected.name, name,
            decision.score, len(feasible), len(nodes),
        )
        return decision

    def rank_nodes(
        self,
        workload: WorkloadRequest,
        nodes: Sequence[NodeSnapshot],
        algorithm: Algorithm,
        *,
        pods: Sequence[PodSnapshot] = (),
        cancel: Optional[threading.Event] = None,
    ) -> List[Tuple[NodeSnapshot, float]]:
        """
        Score every feasible node without selecting anything.

        Read-only: the cursor does not move and nothing is recorded. An
        empty node list, or one where nothing is feasible, yields [].
        """
        admit_workload(workload)
        name = self.scorer.resolve(algorithm)
        _check_cancel(cancel, workload)
        reservations = self.reservations.list_reservations()
        feasible = self.node_filter.filter_nodes(workload, nodes, reservations, pods=pods)
        if not feasible:
            return []
        scores = self._score_feasible(workload, feasible, name, reservations, pods, cancel)
        return list(zip(feasible, scores.tolist()))

    # ── Reservations (delegated) ──────────────────────────────────────────────

    def create_reservation(self, reservation: ResourceReservation) -> ResourceReservation:
        return self.reservations.create_reservation(reservation)

    def delete_reservation(self, workload_id: str, namespace: str = "default") -> ResourceReservation:
        return self.reservations.delete_reservation(workload_id, namespace)

    def has_reservation(self, workload_id: str, namespace: str = "default") -> bool:
        return self.reservations.has_reservation(workload_id, namespace)

    def get_reservation(
        self, workload_id: str, namespace: str = "default"
    ) -> Optional[ResourceReservation]:
        return self.reservations.get_reservation(workload_id, namespace)

    def get_reservations_for_node(self, node_name: str) -> List[ResourceReservation]:
        return self.reservations.get_reservations_for_node(node_name)

    def list_reservations(self) -> List[ResourceReservation]:
        return self.reservations.list_reservations()

    def reserve_decision(
        self, workload: WorkloadRequest, decision: SchedulingDecision
    ) -> ResourceReservation:
        """Hold the workload's request on the node a decision selected."""
        return self.reservations.create_reservation(
            ResourceReservation(
                workload_id=workload.workload_id,
                namespace=workload.namespace,
                node_name=decision.selected_node,
                reserved=workload.resources,
                priority=workload.priority,
                labels=dict(workload.labels),
            )
        )

    # ── History (delegated) ───────────────────────────────────────────────────

    def record_scheduling_event(self, event: SchedulingEvent) -> None:
        self.history.record_scheduling_event(event)

    def get_scheduling_history(
        self, workload_id: str, namespace: str = "default"
    ) -> List[SchedulingEvent]:
        return self.history.get_scheduling_history(workload_id, namespace)

    def get_algorithm_statistics(self) -> Dict[str, AlgorithmStatistics]:
        return self.history.get_algorithm_statistics()

    # ── Private helpers ───────────────────────────────────────────────────────

    def _validate(
        self,
        workload: Optional[WorkloadRequest],
        nodes: Sequence[NodeSnapshot],
        algorithm: Algorithm,
    ) -> str:
        admit_workload(workload)
        if not nodes:
            raise NoFeasibleNodesError(
                f"No nodes supplied for {workload.namespace}/{workload.workload_id}"
            )
        return self.scorer.resolve(algorithm)

    def _feasible_nodes(
        self,
        workload: WorkloadRequest,
        nodes: Sequence[NodeSnapshot],
        reservations: Sequence[ResourceReservation],
        pods: Sequence[PodSnapshot],
        cancel: Optional[threading.Event],
    ) -> List[NodeSnapshot]:
        _check_cancel(cancel, workload)
        feasible = self.node_filter.filter_nodes(workload, nodes, reservations, pods=pods)
        if not feasible:
            logger.warning(
                "schedule: no feasible node for %s/%s among %d nodes",
                workload.namespace, workload.workload_id, len(nodes),
            )
            r = workload.resources
            raise InsufficientResourcesError(
                f"Workload {workload.namespace}/{workload.workload_id} could not be placed. "
                f"No node met its constraints (CPU={r.cpu_cores}, MEM={r.memory_gib}Gi, "
                f"GPU={r.gpu_count}, NPU={r.npu_count})."
            )
        return feasible

    def _score_feasible(
        self,
        workload: WorkloadRequest,
        feasible: Sequence[NodeSnapshot],
        name: str,
        reservations: Sequence[ResourceReservation],
        pods: Sequence[PodSnapshot],
        cancel: Optional[threading.Event],
    ) -> np.ndarray:
        scores = np.zeros(len(feasible), dtype=np.float64)
        for idx, node in enumerate(feasible):
            _check_cancel(cancel, workload)
            committed: ResourceQuantity = committed_on_node(
                node.name, reservations, pods, exclude=workload.key,
            )
            scores[idx] = self.scorer.score(workload, node, name, committed=committed)
            logger.debug(
                "schedule: %s/%s on %s scored %.4f (%s)",
                workload.namespace, workload.workload_id, node.name, scores[idx], name,
            )
        return scores
