"""
tests/test_scheduler.py
────────────────────────
Test suite for AdvancedScheduler, ReservationStore and SchedulingHistory.

Test groups:
    Group 1 — Algorithm selection, disk-pressure exclusion
    Group 2 — Round-robin cursor
    Group 3 — Validation and error kinds
    Group 4 — Reservations
    Group 5 — History and statistics
    Group 6 — Concurrency and cancellation
"""

from __future__ import annotations

import threading
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional

import pytest

from workload_optimizer.control_plane.history import SchedulingHistory
from workload_optimizer.control_plane.reservations import ReservationStore
from workload_optimizer.control_plane.scheduler import AdvancedScheduler
from workload_optimizer.shared.config import OptimizerSettings, SchedulerConfig
from workload_optimizer.shared.errors import (
    CanceledError,
    InsufficientResourcesError,
    InvalidInputError,
    NoFeasibleNodesError,
    ReservationAlreadyExistsError,
    ReservationNotFoundError,
    UnknownAlgorithmError,
)
from workload_optimizer.shared.models import (
    NodeCondition,
    NodeSelector,
    NodeSelectorTerm,
    NodeSnapshot,
    PlacementPolicy,
    ResourceQuantity,
    ResourceReservation,
    SchedulingAlgorithm,
    SchedulingEvent,
    SelectorOperator,
    SelectorRequirement,
    WorkloadRequest,
)


# ─────────────────────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def scheduler() -> AdvancedScheduler:
    return AdvancedScheduler()


@pytest.fixture
def nodes() -> List[NodeSnapshot]:
    return [
        NodeSnapshot(
            name="node-1",
            labels={"cost-tier": "low", "power-tier": "medium", "node-type": "cpu-optimized"},
            allocatable=ResourceQuantity(cpu_cores=4, memory_gib=8),
        ),
        NodeSnapshot(
            name="node-2",
            labels={"cost-tier": "high", "power-tier": "high", "node-type": "gpu-optimized"},
            allocatable=ResourceQuantity(cpu_cores=8, memory_gib=16, gpu_count=2),
        ),
        NodeSnapshot(
            name="node-3",
            labels={"cost-tier": "medium", "power-tier": "low", "node-type": "npu-optimized"},
            allocatable=ResourceQuantity(cpu_cores=6, memory_gib=12, npu_count=1),
        ),
    ]


def _make_workload(
    workload_id: str = "w-test",
    namespace: str = "default",
    cpu: float = 2.0,
    memory: float = 4.0,
    gpu: int = 0,
    priority: int = 5,
) -> WorkloadRequest:
    return WorkloadRequest(
        workload_id=workload_id,
        namespace=namespace,
        priority=priority,
        resources=ResourceQuantity(cpu_cores=cpu, memory_gib=memory, gpu_count=gpu),
    )


def _reservation(
    workload_id: str = "w-test",
    node_name: str = "node-2",
    namespace: str = "default",
    gpu: int = 0,
) -> ResourceReservation:
    return ResourceReservation(
        workload_id=workload_id,
        namespace=namespace,
        node_name=node_name,
        reserved=ResourceQuantity(cpu_cores=1.0, memory_gib=1.0, gpu_count=gpu),
    )


# ─────────────────────────────────────────────────────────────────────────────
# Group 1: algorithm selection
# ─────────────────────────────────────────────────────────────────────────────

class TestAlgorithmSelection:

    def test_cost_optimized_picks_low_tier(self, scheduler, nodes) -> None:
        d = scheduler.schedule_with_algorithm(_make_workload(), nodes, "cost-optimized")
        assert d.selected_node == "node-1"

    def test_power_optimized_picks_low_power_tier(self, scheduler, nodes) -> None:
        d = scheduler.schedule_with_algorithm(_make_workload(), nodes, "power-optimized")
        assert d.selected_node == "node-3"

    def test_least_loaded_picks_most_headroom(self, scheduler, nodes) -> None:
        d = scheduler.schedule_with_algorithm(_make_workload(), nodes, "least-loaded")
        assert d.selected_node == "node-2"
        assert d.score == pytest.approx(0.75)

    def test_gpu_workload_lands_on_gpu_node(self, scheduler, nodes) -> None:
        for algorithm in SchedulingAlgorithm:
            d = scheduler.schedule_with_algorithm(_make_workload(gpu=1), nodes, algorithm)
            assert d.selected_node == "node-2", algorithm

    def test_priority_based_higher_priority_scores_higher(self, scheduler, nodes) -> None:
        low = scheduler.schedule_with_algorithm(_make_workload(priority=1), nodes, "priority-based")
        high = scheduler.schedule_with_algorithm(_make_workload(priority=10), nodes, "priority-based")
        assert high.score >= low.score

    def test_default_algorithm_is_balanced(self, scheduler, nodes) -> None:
        d = scheduler.schedule_workload(_make_workload(), nodes)
        assert d.algorithm == "balanced"
        assert d.selected_node == "node-3"

    def test_configured_default_algorithm(self, nodes) -> None:
        s = AdvancedScheduler(SchedulerConfig(default_algorithm=SchedulingAlgorithm.COST_OPTIMIZED))
        assert s.schedule_workload(_make_workload(), nodes).selected_node == "node-1"

    def test_ties_go_to_first_node(self, scheduler) -> None:
        twins = [
            NodeSnapshot(name=f"twin-{i}", allocatable=ResourceQuantity(cpu_cores=8, memory_gib=16))
            for i in range(3)
        ]
        d = scheduler.schedule_with_algorithm(_make_workload(), twins, "least-loaded")
        assert d.selected_node == "twin-0"

    def test_decision_fields(self, scheduler, nodes) -> None:
        d = scheduler.schedule_with_algorithm(
            _make_workload(workload_id="job-7", namespace="ml"), nodes, "balanced",
        )
        assert (d.workload_id, d.namespace, d.algorithm) == ("job-7", "ml", "balanced")
        assert 0.0 <= d.score <= 1.0
        assert d.timestamp is not None

    def test_settings_pricing_reaches_scorer(self, nodes) -> None:
        settings = OptimizerSettings.from_mapping({"scheduler": {"default_algorithm": "power-optimized"}})
        s = AdvancedScheduler.from_settings(settings)
        assert s.schedule_workload(_make_workload(), nodes).selected_node == "node-3"


def _pressure_pair(pressured: bool) -> List[NodeSnapshot]:
    """A roomy low-tier node first, a small high-tier node second."""
    conditions = {NodeCondition.READY}
    if pressured:
        conditions.add(NodeCondition.DISK_PRESSURE)
    return [
        NodeSnapshot(
            name="roomy",
            labels={"cost-tier": "low", "power-tier": "low"},
            allocatable=ResourceQuantity(cpu_cores=16, memory_gib=32),
            conditions=conditions,
        ),
        NodeSnapshot(
            name="small",
            labels={"cost-tier": "high", "power-tier": "high"},
            allocatable=ResourceQuantity(cpu_cores=4, memory_gib=8),
        ),
    ]


class TestDiskPressure:

    @pytest.mark.parametrize("algorithm", list(SchedulingAlgorithm))
    def test_roomy_node_wins_when_healthy(self, algorithm: SchedulingAlgorithm) -> None:
        d = AdvancedScheduler().schedule_with_algorithm(_make_workload(), _pressure_pair(False), algorithm)
        assert d.selected_node == "roomy"

    @pytest.mark.parametrize("algorithm", list(SchedulingAlgorithm))
    def test_disk_pressure_node_never_selected(self, algorithm: SchedulingAlgorithm) -> None:
        scheduler = AdvancedScheduler()
        for _ in range(3):
            d = scheduler.schedule_with_algorithm(_make_workload(), _pressure_pair(True), algorithm)
            assert d.selected_node == "small"


# ─────────────────────────────────────────────────────────────────────────────
# Group 2: round-robin
# ─────────────────────────────────────────────────────────────────────────────

class TestRoundRobin:

    def test_three_calls_touch_more_than_one_node(self, scheduler, nodes) -> None:
        picked = {
            scheduler.schedule_with_algorithm(_make_workload(), nodes, "round-robin").selected_node
            for _ in range(3)
        }
        assert len(picked) > 1

    def test_cycles_in_input_order(self, scheduler, nodes) -> None:
        picked = [
            scheduler.schedule_with_algorithm(_make_workload(), nodes, "round-robin").selected_node
            for _ in range(4)
        ]
        assert picked == ["node-1", "node-2", "node-3", "node-1"]

    def test_uniform_score(self, scheduler, nodes) -> None:
        d = scheduler.schedule_with_algorithm(_make_workload(), nodes, "round-robin")
        assert d.score == 1.0

    def test_cursor_only_advances_on_success(self, scheduler, nodes) -> None:
        with pytest.raises(InsufficientResourcesError):
            scheduler.schedule_with_algorithm(_make_workload(cpu=100), nodes, "round-robin")
        assert scheduler.cursor == 0
        scheduler.schedule_with_algorithm(_make_workload(), nodes, "round-robin")
        assert scheduler.cursor == 1

    def test_other_algorithms_leave_cursor_alone(self, scheduler, nodes) -> None:
        scheduler.schedule_with_algorithm(_make_workload(), nodes, "balanced")
        assert scheduler.cursor == 0

    def test_wraps_over_feasible_subset(self, scheduler, nodes) -> None:
        """GPU workload: one feasible node, so every pick is node-2."""
        picked = {
            scheduler.schedule_with_algorithm(_make_workload(gpu=1), nodes, "round-robin").selected_node
            for _ in range(3)
        }
        assert picked == {"node-2"}


# ─────────────────────────────────────────────────────────────────────────────
# Group 3: validation
# ─────────────────────────────────────────────────────────────────────────────

class TestValidation:

    def test_none_workload(self, scheduler, nodes) -> None:
        with pytest.raises(InvalidInputError):
            scheduler.schedule_with_algorithm(None, nodes, "balanced")

    def test_empty_node_list(self, scheduler) -> None:
        with pytest.raises(NoFeasibleNodesError):
            scheduler.schedule_with_algorithm(_make_workload(), [], "balanced")

    def test_empty_nodes_checked_before_algorithm(self, scheduler) -> None:
        with pytest.raises(NoFeasibleNodesError):
            scheduler.schedule_with_algorithm(_make_workload(), [], "random")

    def test_unknown_algorithm(self, scheduler, nodes) -> None:
        with pytest.raises(UnknownAlgorithmError):
            scheduler.schedule_with_algorithm(_make_workload(), nodes, "random")

    def test_all_nodes_filtered(self, scheduler, nodes) -> None:
        with pytest.raises(InsufficientResourcesError) as exc_info:
            scheduler.schedule_with_algorithm(_make_workload(gpu=4), nodes, "balanced")
        assert "w-test" in exc_info.value.reason

    def test_failures_record_nothing(self, scheduler, nodes) -> None:
        for algorithm in ("random", "balanced"):
            with pytest.raises((UnknownAlgorithmError, InsufficientResourcesError)):
                scheduler.schedule_with_algorithm(_make_workload(gpu=4), nodes, algorithm)
        assert len(scheduler.history) == 0
        assert scheduler.get_algorithm_statistics() == {}

    def test_admission_runs_before_scheduling(self, scheduler, nodes) -> None:
        """Blank id and a NotIn clause without values never reach a node."""
        w = WorkloadRequest(
            workload_id="",
            placement_policy=PlacementPolicy(required_node_affinity=NodeSelector(terms=[
                NodeSelectorTerm(match_expressions=[
                    SelectorRequirement(key="zone", operator=SelectorOperator.NOT_IN),
                ]),
            ])),
        )
        with pytest.raises(InvalidInputError):
            scheduler.schedule_with_algorithm(w, nodes, "balanced")
        with pytest.raises(InvalidInputError):
            scheduler.rank_nodes(w, nodes, "balanced")
        assert len(scheduler.history) == 0
        assert scheduler.cursor == 0


# ─────────────────────────────────────────────────────────────────────────────
# Group 4: reservations
# ─────────────────────────────────────────────────────────────────────────────

class TestReservations:

    def test_create_then_delete(self, scheduler) -> None:
        scheduler.create_reservation(_reservation())
        assert scheduler.has_reservation("w-test", "default")
        scheduler.delete_reservation("w-test", "default")
        assert not scheduler.has_reservation("w-test", "default")

    def test_key_includes_namespace(self, scheduler) -> None:
        scheduler.create_reservation(_reservation(namespace="team-a"))
        assert scheduler.has_reservation("w-test", "team-a")
        assert not scheduler.has_reservation("w-test", "default")

    def test_duplicate_create_rejected(self, scheduler) -> None:
        scheduler.create_reservation(_reservation(node_name="node-2"))
        with pytest.raises(ReservationAlreadyExistsError):
            scheduler.create_reservation(_reservation(node_name="node-3"))
        assert scheduler.get_reservation("w-test").node_name == "node-2"

    def test_delete_absent_rejected(self, scheduler) -> None:
        with pytest.raises(ReservationNotFoundError):
            scheduler.delete_reservation("ghost", "default")

    def test_recreate_after_delete(self, scheduler) -> None:
        scheduler.create_reservation(_reservation(node_name="node-2"))
        scheduler.delete_reservation("w-test")
        scheduler.create_reservation(_reservation(node_name="node-3"))
        assert scheduler.get_reservation("w-test").node_name == "node-3"

    def test_reservations_for_node(self, scheduler) -> None:
        scheduler.create_reservation(_reservation("a", "node-1"))
        scheduler.create_reservation(_reservation("b", "node-2"))
        scheduler.create_reservation(_reservation("c", "node-1"))
        assert [r.workload_id for r in scheduler.get_reservations_for_node("node-1")] == ["a", "c"]
        assert scheduler.get_reservations_for_node("node-9") == []
        assert len(scheduler.list_reservations()) == 3

    def test_committed_for_node(self) -> None:
        store = ReservationStore()
        store.create_reservation(_reservation("a", "node-1"))
        store.create_reservation(_reservation("b", "node-1"))
        assert store.committed_for_node("node-1").cpu_cores == pytest.approx(2.0)
        assert store.committed_for_node("node-2").is_zero

    def test_scheduling_does_not_reserve(self, scheduler, nodes) -> None:
        scheduler.schedule_workload(_make_workload(), nodes)
        assert not scheduler.has_reservation("w-test")

    def test_reservation_blocks_capacity(self, scheduler, nodes) -> None:
        first = _make_workload(workload_id="a", gpu=2)
        decision = scheduler.schedule_workload(first, nodes)
        scheduler.reserve_decision(first, decision)
        assert decision.selected_node == "node-2"

        with pytest.raises(InsufficientResourcesError):
            scheduler.schedule_workload(_make_workload(workload_id="b", gpu=1), nodes)

        scheduler.delete_reservation("a")
        d = scheduler.schedule_workload(_make_workload(workload_id="b", gpu=1), nodes)
        assert d.selected_node == "node-2"

    def test_reservation_requires_node_name(self) -> None:
        from pydantic import ValidationError

        with pytest.raises(ValidationError):
            ResourceReservation(workload_id="w", node_name="")

    def test_injected_empty_store_is_shared(self, nodes) -> None:
        store = ReservationStore()
        scheduler = AdvancedScheduler(reservations=store)
        assert scheduler.reservations is store

        scheduler.create_reservation(_reservation(workload_id="a", gpu=2))
        assert store.has_reservation("a")
        with pytest.raises(InsufficientResourcesError):
            scheduler.schedule_workload(_make_workload(workload_id="b", gpu=1), nodes)

    def test_injected_store_seen_by_second_scheduler(self, nodes) -> None:
        store = ReservationStore()
        first = AdvancedScheduler(reservations=store)
        second = AdvancedScheduler(reservations=store)
        first.create_reservation(_reservation(workload_id="a", gpu=2))
        assert second.has_reservation("a")
        with pytest.raises(InsufficientResourcesError):
            second.schedule_workload(_make_workload(workload_id="b", gpu=1), nodes)


# ─────────────────────────────────────────────────────────────────────────────
# Group 5: history
# ─────────────────────────────────────────────────────────────────────────────

class TestHistory:

    def test_insertion_order(self, scheduler, nodes) -> None:
        w = _make_workload()
        algorithms = ["cost-optimized", "power-optimized", "least-loaded"]
        for a in algorithms:
            scheduler.schedule_with_algorithm(w, nodes, a)
        history = scheduler.get_scheduling_history("w-test", "default")
        assert [e.algorithm for e in history] == algorithms
        assert [e.selected_node for e in history] == ["node-1", "node-3", "node-2"]

    def test_history_filtered_by_key(self, scheduler, nodes) -> None:
        scheduler.schedule_workload(_make_workload(workload_id="a"), nodes)
        scheduler.schedule_workload(_make_workload(workload_id="b"), nodes)
        scheduler.schedule_workload(_make_workload(workload_id="a", namespace="other"), nodes)
        assert len(scheduler.get_scheduling_history("a", "default")) == 1
        assert scheduler.get_scheduling_history("missing") == []

    def test_statistics_one_entry_per_algorithm(self, scheduler, nodes) -> None:
        for a in ("cost-optimized", "power-optimized", "least-loaded"):
            scheduler.schedule_with_algorithm(_make_workload(), nodes, a)
        stats = scheduler.get_algorithm_statistics()
        assert len(stats) == 3
        assert all(s.count == 1 for s in stats.values())

    def test_statistics_average(self) -> None:
        history = SchedulingHistory()
        for score in (0.2, 0.4, 0.9):
            history.record_scheduling_event(SchedulingEvent(
                workload_id="w", namespace="default", algorithm="balanced",
                selected_node="n", score=score,
            ))
        s = history.get_algorithm_statistics()["balanced"]
        assert s.count == 3
        assert s.average_score == pytest.approx(0.5)
        assert (s.min_score, s.max_score) == (pytest.approx(0.2), pytest.approx(0.9))
        assert s.last_scheduled_at is not None

    def test_bounded_history_keeps_cumulative_stats(self, nodes) -> None:
        s = AdvancedScheduler(SchedulerConfig(history_max_events=2))
        for _ in range(5):
            s.schedule_with_algorithm(_make_workload(), nodes, "least-loaded")
        assert len(s.get_scheduling_history("w-test")) == 2
        assert s.get_algorithm_statistics()["least-loaded"].count == 5

    def test_shared_history_instance(self, nodes) -> None:
        history = SchedulingHistory()
        a = AdvancedScheduler(history=history)
        b = AdvancedScheduler(history=history)
        a.schedule_workload(_make_workload(), nodes)
        b.schedule_workload(_make_workload(), nodes)
        assert len(history) == 2

    def test_injected_empty_history_is_kept(self) -> None:
        history = SchedulingHistory()
        assert AdvancedScheduler(history=history).history is history


# ─────────────────────────────────────────────────────────────────────────────
# Group 6: concurrency and cancellation
# ─────────────────────────────────────────────────────────────────────────────

class TestConcurrency:

    def test_one_reservation_snapshot_per_call(self, nodes) -> None:
        """A hold created after the snapshot is invisible to the whole call."""

        class _LateWriterStore(ReservationStore):
            def __init__(self) -> None:
                super().__init__()
                self.reads = 0

            def list_reservations(self):
                snapshot = super().list_reservations()
                self.reads += 1
                if self.reads == 1:
                    self.create_reservation(_reservation(workload_id="late", node_name="node-2"))
                return snapshot

        store = _LateWriterStore()
        scheduler = AdvancedScheduler(reservations=store)
        plain = AdvancedScheduler()

        d = scheduler.schedule_with_algorithm(_make_workload(), nodes, "least-loaded")
        assert store.reads == 1
        expected = plain.schedule_with_algorithm(_make_workload(), nodes, "least-loaded")
        assert (d.selected_node, d.score) == (expected.selected_node, pytest.approx(expected.score))

        scheduler.rank_nodes(_make_workload(), nodes, "balanced")
        assert store.reads == 2

    def test_round_robin_fair_under_threads(self, scheduler, nodes) -> None:
        def place(i: int) -> str:
            w = _make_workload(workload_id=f"w-{i}")
            return scheduler.schedule_with_algorithm(w, nodes, "round-robin").selected_node

        with ThreadPoolExecutor(max_workers=8) as pool:
            picked = list(pool.map(place, range(30)))

        assert Counter(picked) == {"node-1": 10, "node-2": 10, "node-3": 10}
        assert scheduler.cursor == 30
        assert len(scheduler.history) == 30

    def test_concurrent_reservations_unique_keys(self, scheduler) -> None:
        def reserve(i: int) -> None:
            scheduler.create_reservation(_reservation(workload_id=f"w-{i}", node_name="node-1"))

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(reserve, range(50)))
        assert len(scheduler.get_reservations_for_node("node-1")) == 50

    def test_concurrent_duplicate_create_single_winner(self, scheduler) -> None:
        errors: List[Exception] = []
        barrier = threading.Barrier(8)

        def reserve() -> None:
            barrier.wait()
            try:
                scheduler.create_reservation(_reservation())
            except ReservationAlreadyExistsError as exc:
                errors.append(exc)

        threads = [threading.Thread(target=reserve) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(errors) == 7
        assert scheduler.has_reservation("w-test")


class TestCancellation:

    def test_canceled_before_scan(self, scheduler, nodes) -> None:
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(CanceledError):
            scheduler.schedule_with_algorithm(_make_workload(), nodes, "balanced", cancel=cancel)
        assert len(scheduler.history) == 0

    def test_canceled_round_robin_keeps_cursor(self, scheduler, nodes) -> None:
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(CanceledError):
            scheduler.schedule_with_algorithm(_make_workload(), nodes, "round-robin", cancel=cancel)
        assert scheduler.cursor == 0

    def test_unset_event_is_harmless(self, scheduler, nodes) -> None:
        d = scheduler.schedule_workload(_make_workload(), nodes, cancel=threading.Event())
        assert d.selected_node == "node-3"

    def test_rank_nodes_is_read_only(self, scheduler, nodes) -> None:
        ranked = scheduler.rank_nodes(_make_workload(), nodes, "round-robin")
        assert [n.name for n, _ in ranked] == ["node-1", "node-2", "node-3"]
        assert scheduler.cursor == 0
        assert len(scheduler.history) == 0
