"""
workload_optimizer/control_plane — the placement and optimization core.

Public API:

    Estimation:
        CostCalculator       — USD/hour (+ daily/monthly/yearly projections)
        PowerCalculator      — watts (+ energy projections)

    Placement:
        NodeFilter           — hard constraints: capacity, health, affinity, taints
        NodeScorer           — six named scoring algorithms, extensible registry
        AdvancedScheduler    — filter → score → select, owns reservations + history
        ReservationStore     — provisional capacity holds
        SchedulingHistory    — decision log + per-algorithm statistics

    Optimization:
        OptimizationEngine   — score, estimates and replica recommendation
        admit_workload()     — semantic validation, raises InvalidInputError
"""

from workload_optimizer.control_plane.admission_controller import admit_workload
from workload_optimizer.control_plane.cost_calculator import CostCalculator, PowerCalculator
from workload_optimizer.control_plane.history import SchedulingHistory
from workload_optimizer.control_plane.node_filter import NodeFilter
from workload_optimizer.control_plane.node_scorer import NodeScorer
from workload_optimizer.control_plane.optimization_engine import OptimizationEngine
from workload_optimizer.control_plane.reservations import ReservationStore
from workload_optimizer.control_plane.scheduler import AdvancedScheduler

__all__ = [
    "admit_workload",
    "CostCalculator",
    "PowerCalculator",
    "NodeFilter",
    "NodeScorer",
    "AdvancedScheduler",
    "ReservationStore",
    "SchedulingHistory",
    "OptimizationEngine",
]
