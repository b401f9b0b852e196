"""
workload_optimizer/control_plane/node_scorer.py
────────────────────────────────────────────────
NodeScorer: how good is an already-feasible node, under a named algorithm?

Every algorithm returns a float in [0.0, 1.0]; higher is better. The
scheduler picks the first node with the maximum score.

The algorithms
───────────────
  round-robin      1.0 for every candidate. Selection is done by the
                   scheduler's cursor, not by score.

  least-loaded     Free fraction left after placement, worst dimension:
                     min_d (allocatable_d − committed_d − request_d) / allocatable_d
                   over dimensions the node actually has (allocatable > 0).

  cost-optimized   1 − normalize(node_cost), normalize(x) = x / (x + list_price)
                   node_cost = list_price(request) × tier factor, where the
                   factor comes from the node's `cost-tier` label
                   (low 0.5 / medium 1.0 / high 2.0, untiered = list price).
                   Net effect: score = 1 / (1 + factor).
                   prefer_spot workloads see spot nodes at 30% of the price.

  power-optimized  Same shape with PowerCalculator and `power-tier`.
                   prefer_green workloads see renewable nodes at half draw.

  balanced         Weighted mean of least-loaded, cost and power (equal by
                   default), plus preferred node affinity when the workload
                   declares any.

  priority-based   least-loaded × (0.5 + 0.5 × priority / max_priority).
                   For a fixed node, a higher priority never scores lower.

Extending
──────────
Algorithms live in a name → function registry. A custom strategy is a
function (scorer, workload, node, committed) → float:

    scorer.register_algorithm("gpu-packing", my_fn)
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional, Sequence, Union

import numpy as np

from workload_optimizer.control_plane.cost_calculator import CostCalculator, PowerCalculator
from workload_optimizer.shared.config import (
    COST_TIER_LABEL,
    ENERGY_SOURCE_LABEL,
    LIFECYCLE_LABEL,
    POWER_TIER_LABEL,
    SchedulerConfig,
)
from workload_optimizer.shared.errors import UnknownAlgorithmError
from workload_optimizer.shared.models import (
    NodeSnapshot,
    ResourceQuantity,
    SchedulingAlgorithm,
    WorkloadRequest,
    ZERO_RESOURCES,
)

logger = logging.getLogger(__name__)

ScoreFn = Callable[["NodeScorer", WorkloadRequest, NodeSnapshot, ResourceQuantity], float]

_DEFAULT_ALGORITHMS: Dict[str, ScoreFn] = {}


def _register(algorithm: SchedulingAlgorithm):
    def decorator(fn: ScoreFn) -> ScoreFn:
        _DEFAULT_ALGORITHMS[algorithm.value] = fn
        return fn
    return decorator


def _clip(value: float) -> float:
    return float(np.clip(value, 0.0, 1.0))


class NodeScorer:
    """
    Scores feasible nodes. Stateless apart from its (copied) registry, so one
    instance can be shared across scheduling threads.

    Args:
        config:           Tier factors, balanced weights, max priority.
        cost_calculator:  Prices requests for cost-optimized scoring.
        power_calculator: Prices requests for power-optimized scoring.
    """

    def __init__(
        self,
        config: Optional[SchedulerConfig] = None,
        cost_calculator: Optional[CostCalculator] = None,
        power_calculator: Optional[PowerCalculator] = None,
    ) -> None:
        self.config = config or SchedulerConfig()
        self.cost_calculator = cost_calculator or CostCalculator()
        self.power_calculator = power_calculator or PowerCalculator()
        self._algorithms: Dict[str, ScoreFn] = dict(_DEFAULT_ALGORITHMS)

    # ── Registry ──────────────────────────────────────────────────────────────

    @property
    def algorithms(self) -> List[str]:
        return list(self._algorithms)

    def register_algorithm(self, name: str, fn: ScoreFn) -> None:
        """Add or replace a scoring strategy on this scorer only."""
        self._algorithms[name] = fn

    def resolve(self, algorithm: Union[str, SchedulingAlgorithm]) -> str:
        """Canonical registry name, or UnknownAlgorithmError."""
        name = algorithm.value if isinstance(algorithm, SchedulingAlgorithm) else algorithm
        if name not in self._algorithms:
            raise UnknownAlgorithmError(str(name), self.algorithms)
        return name

    # ── Main scoring entrypoints ──────────────────────────────────────────────

    def score(
        self,
        workload: WorkloadRequest,
        node: NodeSnapshot,
        algorithm: Union[str, SchedulingAlgorithm],
        *,
        committed: Optional[ResourceQuantity] = None,
    ) -> float:
        """
        Score one feasible node.

        Args:
            workload:  The workload being placed.
            node:      A node that already passed NodeFilter.
            algorithm: Registry name.
            committed: Capacity already held on the node (reservations +
                       pods). None = nothing held.

        Returns:
            float in [0.0, 1.0].

        Raises:
            UnknownAlgorithmError: name not registered.
        """
        fn = self._algorithms[self.resolve(algorithm)]
        return _clip(fn(self, workload, node, committed or ZERO_RESOURCES))

    def score_nodes(
        self,
        workload: WorkloadRequest,
        nodes: Sequence[NodeSnapshot],
        algorithm: Union[str, SchedulingAlgorithm],
        committed: Optional[Dict[str, ResourceQuantity]] = None,
    ) -> np.ndarray:
        """Vector of scores aligned with nodes."""
        committed = committed or {}
        return np.array(
            [
                self.score(workload, node, algorithm, committed=committed.get(node.name))
                for node in nodes
            ],
            dtype=np.float64,
        )

    # ── Sub-scores (public for direct testing) ────────────────────────────────

    def free_fraction(
        self,
        workload: WorkloadRequest,
        node: NodeSnapshot,
        committed: ResourceQuantity = ZERO_RESOURCES,
    ) -> float:
        """Worst-dimension headroom left after placing the request."""
        allocatable = node.allocatable.as_array()
        used = committed.as_array() + workload.resources.as_array()
        present = allocatable > 0
        if not present.any():
            return 0.0
        fractions = (allocatable[present] - used[present]) / allocatable[present]
        return _clip(fractions.min())

    def tier_factor(self, node: NodeSnapshot, label: str) -> float:
        tier = node.labels.get(label)
        if tier is None:
            return 1.0
        factor = self.config.tier_factors.get(tier)
        if factor is None:
            logger.debug("node_scorer: unknown %s=%r on %s, using list price", label, tier, node.name)
            return 1.0
        return factor

    def cost_factor(self, workload: WorkloadRequest, node: NodeSnapshot) -> float:
        """Cost tier factor, with the spot discount when the workload prefers spot."""
        factor = self.tier_factor(node, COST_TIER_LABEL)
        if workload.cost_constraints.prefer_spot and node.labels.get(LIFECYCLE_LABEL) == "spot":
            factor *= self.config.spot_price_factor
        return factor

    def power_factor(self, workload: WorkloadRequest, node: NodeSnapshot) -> float:
        factor = self.tier_factor(node, POWER_TIER_LABEL)
        if workload.power_constraints.prefer_green and node.labels.get(ENERGY_SOURCE_LABEL) == "renewable":
            factor *= self.config.green_power_factor
        return factor

    def estimate_node_cost(self, workload: WorkloadRequest, node: NodeSnapshot) -> float:
        """USD/hour the request would cost on this node."""
        return self.cost_calculator.calculate_cost(workload.resources) * self.cost_factor(workload, node)

    def estimate_node_power(self, workload: WorkloadRequest, node: NodeSnapshot) -> float:
        """Watts the request would draw on this node."""
        return self.power_calculator.calculate_power(workload.resources) * self.power_factor(workload, node)

    def cost_efficiency(self, workload: WorkloadRequest, node: NodeSnapshot) -> float:
        list_price = self.cost_calculator.calculate_cost(workload.resources)
        return self._inverse_normalized(self.estimate_node_cost(workload, node), list_price,
                                        self.cost_factor(workload, node))

    def power_efficiency(self, workload: WorkloadRequest, node: NodeSnapshot) -> float:
        list_draw = self.power_calculator.calculate_power(workload.resources)
        return self._inverse_normalized(self.estimate_node_power(workload, node), list_draw,
                                        self.power_factor(workload, node))

    @staticmethod
    def affinity_preference(workload: WorkloadRequest, node: NodeSnapshot) -> float:
        """Share of preferred-affinity weight this node satisfies (0 when none declared)."""
        terms = workload.placement_policy.preferred_node_affinity
        total = sum(t.weight for t in terms)
        if total == 0:
            return 0.0
        matched = sum(t.weight for t in terms if t.preference.matches(node.labels))
        return matched / total

    def priority_multiplier(self, priority: int) -> float:
        max_priority = self.config.max_priority
        p = min(max(priority, 1), max_priority)
        return 0.5 + 0.5 * p / max_priority

    @staticmethod
    def _inverse_normalized(node_value: float, reference: float, factor: float) -> float:
        """
        1 − x/(x + reference).

        A zero-priced request has no reference to normalise against; the
        node factor alone then orders the nodes.
        """
        if reference <= 0:
            return 1.0 / (1.0 + factor)
        return 1.0 - node_value / (node_value + reference)

    def __repr__(self) -> str:
        return f"NodeScorer(algorithms={self.algorithms})"


# ─────────────────────────────────────────────────────────────────────────────
# Built-in algorithms
# ─────────────────────────────────────────────────────────────────────────────

@_register(SchedulingAlgorithm.ROUND_ROBIN)
def _round_robin(scorer, workload, node, committed) -> float:
    return 1.0


@_register(SchedulingAlgorithm.LEAST_LOADED)
def _least_loaded(scorer, workload, node, committed) -> float:
    return scorer.free_fraction(workload, node, committed)


@_register(SchedulingAlgorithm.COST_OPTIMIZED)
def _cost_optimized(scorer, workload, node, committed) -> float:
    return scorer.cost_efficiency(workload, node)


@_register(SchedulingAlgorithm.POWER_OPTIMIZED)
def _power_optimized(scorer, workload, node, committed) -> float:
    return scorer.power_efficiency(workload, node)


@_register(SchedulingAlgorithm.BALANCED)
def _balanced(scorer, workload, node, committed) -> float:
    weights = scorer.config.balanced_weights
    parts = [
        (weights.load, scorer.free_fraction(workload, node, committed)),
        (weights.cost, scorer.cost_efficiency(workload, node)),
        (weights.power, scorer.power_efficiency(workload, node)),
    ]
    if workload.placement_policy.preferred_node_affinity:
        parts.append((weights.affinity, scorer.affinity_preference(workload, node)))

    w = np.array([p[0] for p in parts], dtype=np.float64)
    s = np.array([p[1] for p in parts], dtype=np.float64)
    if w.sum() == 0.0:
        return float(s.mean())
    return float(np.dot(w, s) / w.sum())


@_register(SchedulingAlgorithm.PRIORITY_BASED)
def _priority_based(scorer, workload, node, committed) -> float:
    base = scorer.free_fraction(workload, node, committed)
    return base * scorer.priority_multiplier(workload.priority)
