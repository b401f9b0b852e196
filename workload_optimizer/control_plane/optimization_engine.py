"""
workload_optimizer/control_plane/optimization_engine.py
────────────────────────────────────────────────────────
OptimizationEngine: one pass from (workload, cluster snapshot) to a fitness
score, cost/power estimates and a replica recommendation.

What this is
─────────────
The reconciler calls optimize() on every resync of a workload. The result
is written back as status (OptimizationResult.to_status()) and drives
autoscaling. Unlike AdvancedScheduler.schedule_*, a pass here is read-only:
no history entry, no reservation, no cursor movement.

The score
──────────
  score = clip( base × penalty , 0, 1 )

  base:
    nodes supplied     → best feasible-node score under the engine's
                         scoring algorithm (balanced by default);
                         0.0 if no node is feasible.
    no nodes supplied  → workload-type default
                         (training 0.80, inference 0.90, batch 0.85,
                          streaming 0.85, serving 0.90).
    pods report usage  → base = 0.7 × base + 0.3 × cpu_efficiency
                         cpu_efficiency = min(Σ usage.cpu / Σ requests.cpu, 1)

  penalty: product over exceeded ceilings of
                 VIOLATION_BASE_FACTOR / (1 + overage)
           overage = (estimate − limit) / limit.
           Ceilings: cost (USD/h), power (W), budget (USD per 720h month).
           Zero limits are unset. No violation → penalty 1.0.

Replicas
─────────
  autoscaling absent or disabled → 1
  no usage data yet              → min_replicas
  otherwise, HPA-style:
      ratio   = max(cpu_util / target_cpu, mem_util / target_mem)
      desired = current                 if |ratio − 1| ≤ tolerance
              = ceil(current × ratio)   otherwise
      clamped to [min_replicas, max_replicas]
  where current is the number of the workload's pods (at least 1) and
  utilisation is usage as a percentage of requests.
"""

from __future__ import annotations

import logging
import math
import threading
from typing import List, Optional, Sequence, Tuple

import numpy as np

from workload_optimizer.control_plane.admission_controller import admit_workload
from workload_optimizer.control_plane.cost_calculator import CostCalculator, PowerCalculator
from workload_optimizer.control_plane.scheduler import AdvancedScheduler
from workload_optimizer.shared.config import HOURS_PER_MONTH, OptimizerSettings
from workload_optimizer.shared.errors import InvalidInputError
from workload_optimizer.shared.models import (
    NodeSnapshot,
    OptimizationResult,
    PodSnapshot,
    WorkloadRequest,
    WorkloadState,
)

logger = logging.getLogger(__name__)


class OptimizationEngine:
    """
    Top-level optimization pass.

    Args:
        settings:  Rates and tunables. Default: OptimizerSettings().
        scheduler: Shared AdvancedScheduler, so the engine sees the same
                   reservations as scheduling calls. Built from settings
                   when omitted.
    """

    def __init__(
        self,
        settings: Optional[OptimizerSettings] = None,
        *,
        scheduler: Optional[AdvancedScheduler] = None,
    ) -> None:
        self.settings = settings or OptimizerSettings()
        self.cost_calculator = CostCalculator(self.settings.pricing)
        self.power_calculator = PowerCalculator(self.settings.power)
        self.scheduler = scheduler or AdvancedScheduler.from_settings(self.settings)

    def optimize(
        self,
        state: Optional[WorkloadState],
        *,
        cancel: Optional[threading.Event] = None,
    ) -> OptimizationResult:
        """
        Run one optimization pass.

        Args:
            state:  Workload + pods + nodes snapshot.
            cancel: Optional cancellation event, checked during node scoring.

        Returns:
            OptimizationResult with score in [0, 1].

        Raises:
            InvalidInputError:  state or workload missing, or workload fails
                                admission checks.
            MalformedQuantityError, CanceledError.
        """
        if state is None or state.workload is None:
            raise InvalidInputError("optimize() requires a workload")
        workload = state.workload
        admit_workload(workload)

        cost_breakdown = self.cost_calculator.get_cost_breakdown(workload.resources)
        power_breakdown = self.power_calculator.get_power_breakdown(workload.resources)
        cost = cost_breakdown.total
        power = power_breakdown.total

        own_pods, other_pods = self._split_pods(workload, state.pods)

        base, selected = self.base_score(workload, state.nodes, other_pods, cancel=cancel)
        efficiency = self.cpu_efficiency(own_pods)
        if efficiency is not None:
            w = self.settings.engine.utilization_weight
            base = (1.0 - w) * base + w * efficiency

        penalty, violations = self.constraint_penalty(workload, cost, power)
        score = float(np.clip(base * penalty, 0.0, 1.0))
        replicas = self.recommend_replicas(workload, own_pods)

        if violations:
            logger.warning(
                "optimize: %s/%s exceeds %s (cost=%.3f USD/h, power=%.1f W, penalty=%.3f)",
                workload.namespace, workload.workload_id, ", ".join(violations),
                cost, power, penalty,
            )
        logger.info(
            "optimize: %s/%s score=%.3f node=%s replicas=%d",
            workload.namespace, workload.workload_id, score, selected, replicas,
        )

        return OptimizationResult(
            score=score,
            estimated_cost=cost,
            estimated_power=power,
            recommended_replicas=replicas,
            selected_node=selected,
            algorithm=self.settings.engine.scoring_algorithm.value if state.nodes else None,
            cost_breakdown=cost_breakdown,
            power_breakdown=power_breakdown,
            violations=violations,
        )

    # ── Score components (public for direct testing) ──────────────────────────

    def base_score(
        self,
        workload: WorkloadRequest,
        nodes: Sequence[NodeSnapshot],
        pods: Sequence[PodSnapshot] = (),
        *,
        cancel: Optional[threading.Event] = None,
    ) -> Tuple[float, Optional[str]]:
        """(base fitness, best node name or None)."""
        if not nodes:
            return self.settings.engine.workload_scores.get(workload.workload_type, 0.0), None

        ranked = self.scheduler.rank_nodes(
            workload, nodes, self.settings.engine.scoring_algorithm,
            pods=pods, cancel=cancel,
        )
        if not ranked:
            logger.warning(
                "optimize: no feasible node for %s/%s among %d nodes",
                workload.namespace, workload.workload_id, len(nodes),
            )
            return 0.0, None

        scores = np.array([s for _, s in ranked], dtype=np.float64)
        best = int(np.argmax(scores))
        return float(scores[best]), ranked[best][0].name

    @staticmethod
    def cpu_efficiency(pods: Sequence[PodSnapshot]) -> Optional[float]:
        """Σ usage / Σ requests over CPU, capped at 1. None without usage data."""
        measured = [p for p in pods if p.usage is not None and p.requests.cpu_cores > 0]
        if not measured:
            return None
        used = sum(p.usage.cpu_cores for p in measured)
        requested = sum(p.requests.cpu_cores for p in measured)
        return min(used / requested, 1.0)

    def constraint_penalty(
        self,
        workload: WorkloadRequest,
        cost: float,
        power: float,
    ) -> Tuple[float, List[str]]:
        """(multiplicative penalty in (0, 1], names of exceeded ceilings)."""
        ceilings = [
            ("cost", cost, workload.cost_constraints.max_cost_per_hour),
            ("power", power, workload.power_constraints.max_power_usage),
            ("budget", cost * HOURS_PER_MONTH, workload.cost_constraints.budget_limit),
        ]
        base_factor = self.settings.engine.violation_base_factor
        penalty = 1.0
        violations: List[str] = []
        for name, estimate, limit in ceilings:
            if limit <= 0 or estimate <= limit:
                continue
            overage = (estimate - limit) / limit
            penalty *= base_factor / (1.0 + overage)
            violations.append(name)
        return penalty, violations

    def recommend_replicas(
        self,
        workload: WorkloadRequest,
        pods: Sequence[PodSnapshot] = (),
    ) -> int:
        spec = workload.autoscaling
        if spec is None or not spec.enabled:
            return 1

        measured = [p for p in pods if p.usage is not None]
        if not measured:
            return spec.min_replicas

        ratios = []
        cpu_requested = sum(p.requests.cpu_cores for p in measured)
        if cpu_requested > 0:
            cpu_util = 100.0 * sum(p.usage.cpu_cores for p in measured) / cpu_requested
            ratios.append(cpu_util / spec.target_cpu_pct)
        mem_requested = sum(p.requests.memory_gib for p in measured)
        if mem_requested > 0:
            mem_util = 100.0 * sum(p.usage.memory_gib for p in measured) / mem_requested
            ratios.append(mem_util / spec.target_memory_pct)
        if not ratios:
            return spec.min_replicas

        current = max(len(pods), 1)
        ratio = max(ratios)
        if abs(ratio - 1.0) <= self.settings.engine.autoscale_tolerance:
            desired = current
        else:
            desired = math.ceil(current * ratio)
        return int(min(max(desired, spec.min_replicas), spec.max_replicas))

    # ── Private helpers ───────────────────────────────────────────────────────

    @staticmethod
    def _split_pods(
        workload: WorkloadRequest,
        pods: Sequence[PodSnapshot],
    ) -> Tuple[List[PodSnapshot], List[PodSnapshot]]:
        """(the workload's own pods, everyone else's)."""
        own, other = [], []
        for pod in pods:
            if pod.workload_id == workload.workload_id and pod.namespace == workload.namespace:
                own.append(pod)
            else:
                other.append(pod)
        return own, other
