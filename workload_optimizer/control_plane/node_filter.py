"""
workload_optimizer/control_plane/node_filter.py
────────────────────────────────────────────────
NodeFilter: hard-constraint feasibility check, run before any scoring.

A node is feasible for a workload iff every check below passes:

  1. capacity     allocatable − committed ≥ request, per dimension.
                  committed = reservations held on the node (other than the
                  workload's own) + requests of pods bound to it.
  2. health       Ready, and no pressure/fault condition.
  3. selector     every node_selector label matches exactly.
  4. affinity     required node affinity (terms ORed, clauses ANDed).
  5. anti         no other reservation/pod in the node's topology domain
                  matches any required anti-affinity term.
  6. taints       every NoSchedule / NoExecute taint is tolerated.

The checks are the same for every algorithm: a pressured or non-matching
node is never a candidate, no matter how cheap or idle it is.

The filter is stateless. The caller (AdvancedScheduler) passes in the
reservation list it read under its store lock.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Sequence, Set

from workload_optimizer.shared.models import (
    AntiAffinityTerm,
    NodeSnapshot,
    PodSnapshot,
    ResourceQuantity,
    ResourceReservation,
    TaintEffect,
    WorkloadRequest,
    ZERO_RESOURCES,
)

logger = logging.getLogger(__name__)

_BLOCKING_TAINT_EFFECTS = {TaintEffect.NO_SCHEDULE, TaintEffect.NO_EXECUTE}


def committed_on_node(
    node_name: str,
    reservations: Iterable[ResourceReservation],
    pods: Iterable[PodSnapshot] = (),
    exclude: Optional[tuple] = None,
) -> ResourceQuantity:
    """
    Capacity already promised on a node.

    Args:
        node_name:    The node to total up.
        reservations: Reservations to consider (any node; filtered here).
        pods:         Pod snapshots (any node; filtered here).
        exclude:      Reservation key to skip, normally the workload's own,
                      so re-scheduling a reserved workload does not count
                      its hold twice.
    """
    total = ZERO_RESOURCES
    for res in reservations:
        if res.node_name == node_name and res.key != exclude:
            total = total + res.reserved
    for pod in pods:
        if pod.node_name == node_name:
            total = total + pod.requests
    return total


class NodeFilter:
    """
    Feasibility checks for (workload, node) pairs.

    Usage:
        nf = NodeFilter()
        nf.is_feasible(workload, node, reservations)
        nf.filter_nodes(workload, nodes, reservations, pods=pods)  # stable order
    """

    # ── Public API ────────────────────────────────────────────────────────────

    def is_feasible(
        self,
        workload: WorkloadRequest,
        node: NodeSnapshot,
        reservations: Sequence[ResourceReservation] = (),
        *,
        pods: Sequence[PodSnapshot] = (),
        nodes: Sequence[NodeSnapshot] = (),
    ) -> bool:
        """
        True if node passes every hard constraint.

        Args:
            workload:     The workload to place.
            node:         Candidate node.
            reservations: Outstanding reservations across the cluster.
            pods:         Pods across the cluster (capacity + anti-affinity).
            nodes:        The full node list, needed to resolve topology
                          domains for anti-affinity. Defaults to [node].
        """
        return not self.explain(workload, node, reservations, pods=pods, nodes=nodes)

    def explain(
        self,
        workload: WorkloadRequest,
        node: NodeSnapshot,
        reservations: Sequence[ResourceReservation] = (),
        *,
        pods: Sequence[PodSnapshot] = (),
        nodes: Sequence[NodeSnapshot] = (),
    ) -> List[str]:
        """
        Names of the checks the node fails; empty list = feasible.

        Health runs first because it is the cheapest check. Capacity runs
        before the label checks.
        """
        failures: List[str] = []
        if not self.meets_health(node):
            failures.append("health")
        if not self.meets_capacity(workload, node, reservations, pods):
            failures.append("capacity")
        if not self.meets_node_selector(workload, node):
            failures.append("node-selector")
        if not self.meets_affinity(workload, node):
            failures.append("affinity")
        if not self.meets_anti_affinity(workload, node, reservations, pods, nodes or [node]):
            failures.append("anti-affinity")
        if not self.meets_taints(workload, node):
            failures.append("taints")
        return failures

    def filter_nodes(
        self,
        workload: WorkloadRequest,
        nodes: Sequence[NodeSnapshot],
        reservations: Sequence[ResourceReservation] = (),
        *,
        pods: Sequence[PodSnapshot] = (),
    ) -> List[NodeSnapshot]:
        """Feasible subset of nodes, in input order."""
        feasible = []
        for node in nodes:
            failures = self.explain(workload, node, reservations, pods=pods, nodes=nodes)
            if failures:
                logger.debug(
                    "node_filter: %s excluded for %s/%s (%s)",
                    node.name, workload.namespace, workload.workload_id,
                    ", ".join(failures),
                )
                continue
            feasible.append(node)
        return feasible

    # ── Individual checks (public for direct testing) ─────────────────────────

    @staticmethod
    def meets_health(node: NodeSnapshot) -> bool:
        """Ready and free of every pressure/fault condition."""
        return node.is_ready and not node.pressure_conditions

    @staticmethod
    def meets_capacity(
        workload: WorkloadRequest,
        node: NodeSnapshot,
        reservations: Sequence[ResourceReservation] = (),
        pods: Sequence[PodSnapshot] = (),
    ) -> bool:
        committed = committed_on_node(node.name, reservations, pods, exclude=workload.key)
        return (committed + workload.resources).fits_within(node.allocatable)

    @staticmethod
    def meets_node_selector(workload: WorkloadRequest, node: NodeSnapshot) -> bool:
        selector = workload.placement_policy.node_selector
        return all(node.labels.get(k) == v for k, v in selector.items())

    @staticmethod
    def meets_affinity(workload: WorkloadRequest, node: NodeSnapshot) -> bool:
        required = workload.placement_policy.required_node_affinity
        if required is None:
            return True
        return required.matches(node.labels)

    def meets_anti_affinity(
        self,
        workload: WorkloadRequest,
        node: NodeSnapshot,
        reservations: Sequence[ResourceReservation] = (),
        pods: Sequence[PodSnapshot] = (),
        nodes: Sequence[NodeSnapshot] = (),
    ) -> bool:
        terms = workload.placement_policy.required_anti_affinity
        if not terms:
            return True
        for term in terms:
            if self._count_conflicts(workload, node, term, reservations, pods, nodes) > 0:
                return False
        return True

    @staticmethod
    def meets_taints(workload: WorkloadRequest, node: NodeSnapshot) -> bool:
        tolerations = workload.placement_policy.tolerations
        for taint in node.taints:
            if taint.effect not in _BLOCKING_TAINT_EFFECTS:
                continue
            if not any(t.tolerates(taint) for t in tolerations):
                return False
        return True

    # ── Anti-affinity helpers ─────────────────────────────────────────────────

    @staticmethod
    def _topology_domain(
        node: NodeSnapshot,
        topology_key: str,
        nodes: Sequence[NodeSnapshot],
    ) -> Set[str]:
        """
        Names of nodes sharing node's value for topology_key.

        A node without the key belongs to no domain: the term cannot be
        violated there, so the result is empty.
        """
        if topology_key not in node.labels:
            return set()
        value = node.labels[topology_key]
        domain = {n.name for n in nodes if n.labels.get(topology_key) == value}
        domain.add(node.name)
        return domain

    def _count_conflicts(
        self,
        workload: WorkloadRequest,
        node: NodeSnapshot,
        term: AntiAffinityTerm,
        reservations: Sequence[ResourceReservation],
        pods: Sequence[PodSnapshot],
        nodes: Sequence[NodeSnapshot],
    ) -> int:
        domain = self._topology_domain(node, term.topology_key, nodes)
        if not domain:
            return 0

        conflicts = 0
        for res in reservations:
            if res.key == workload.key:
                continue
            if res.node_name in domain and term.label_selector.matches(res.labels):
                conflicts += 1
        for pod in pods:
            if pod.workload_id == workload.workload_id and pod.namespace == workload.namespace:
                continue
            if pod.node_name in domain and term.label_selector.matches(pod.labels):
                conflicts += 1
        return conflicts
