"""
workload_optimizer/control_plane/admission_controller.py
─────────────────────────────────────────────────────────
Admission control: semantic validation before scheduling or optimization.

Runs AFTER pydantic validation (which handles field types and ranges) and
BEFORE any node is looked at.

What it checks
───────────────
  1. Identity: workload_id and namespace are non-empty. They key every
     reservation and history entry; an empty one would collide silently.

  2. Autoscaling coherence: min_replicas ≤ max_replicas.

  3. Selector well-formedness, for node affinity (required and preferred)
     and anti-affinity expressions:
       In / NotIn             → need at least one value.
       Exists / DoesNotExist  → must carry no values.

  4. Anti-affinity terms name a topology key.

What it does NOT check
───────────────────────
  • Whether any node can host the workload. That is NodeFilter's job.
  • Whether the cost/power ceilings are realistic. The engine penalises
    violations instead of rejecting them.
"""

from __future__ import annotations

from typing import Iterable

from workload_optimizer.shared.errors import InvalidInputError
from workload_optimizer.shared.models import (
    SelectorOperator,
    SelectorRequirement,
    WorkloadRequest,
)

_VALUED_OPERATORS = {SelectorOperator.IN, SelectorOperator.NOT_IN}


def admit_workload(workload: WorkloadRequest) -> None:
    """
    Run all admission checks on a WorkloadRequest.

    Returns None on success.

    Raises:
        InvalidInputError: workload is None or fails a check; reason says which.
    """
    if workload is None:
        raise InvalidInputError("workload is required")
    _check_identity(workload)
    _check_autoscaling(workload)
    _check_selectors(workload)


# ── Individual checks ─────────────────────────────────────────────────────────

def _check_identity(workload: WorkloadRequest) -> None:
    if not workload.workload_id.strip():
        raise InvalidInputError("workload_id must be non-empty")
    if not workload.namespace.strip():
        raise InvalidInputError(
            f"Workload {workload.workload_id!r} has an empty namespace"
        )


def _check_autoscaling(workload: WorkloadRequest) -> None:
    spec = workload.autoscaling
    if spec is None:
        return
    if spec.min_replicas > spec.max_replicas:
        raise InvalidInputError(
            f"Workload {workload.workload_id!r} has min_replicas={spec.min_replicas} "
            f"> max_replicas={spec.max_replicas}."
        )


def _check_selectors(workload: WorkloadRequest) -> None:
    policy = workload.placement_policy

    if policy.required_node_affinity is not None:
        for term in policy.required_node_affinity.terms:
            _check_expressions(workload, "required node affinity", term.match_expressions)
    for preferred in policy.preferred_node_affinity:
        _check_expressions(workload, "preferred node affinity", preferred.preference.match_expressions)
    for term in policy.required_anti_affinity:
        if not term.topology_key:
            raise InvalidInputError(
                f"Workload {workload.workload_id!r} has an anti-affinity term "
                f"without a topology_key"
            )
        _check_expressions(workload, "anti-affinity", term.label_selector.match_expressions)


def _check_expressions(
    workload: WorkloadRequest,
    where: str,
    expressions: Iterable[SelectorRequirement],
) -> None:
    for req in expressions:
        if req.operator in _VALUED_OPERATORS and not req.values:
            raise InvalidInputError(
                f"Workload {workload.workload_id!r}: {where} clause on {req.key!r} "
                f"uses {req.operator.value} with no values"
            )
        if req.operator not in _VALUED_OPERATORS and req.values:
            raise InvalidInputError(
                f"Workload {workload.workload_id!r}: {where} clause on {req.key!r} "
                f"uses {req.operator.value} but lists values {req.values}"
            )
