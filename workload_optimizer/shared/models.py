"""
workload_optimizer/shared/models.py
────────────────────────────────────
Every value structure the optimization core consumes or produces.

Design philosophy
-----------------
The core never sees a live cluster object. The reconciler translates node,
pod and custom-resource objects into the plain snapshots below, and the
core answers with decisions built from the same vocabulary. Nothing here
is mutated by the core once constructed: snapshots belong to the caller,
decisions and events are frozen.

Reading guide
-------------
Read top-to-bottom. Each model builds on the ones above it.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple, Union

import numpy as np
from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ─────────────────────────────────────────────────────────────────────────────
# SECTION 1: ENUMERATIONS
# ─────────────────────────────────────────────────────────────────────────────

class WorkloadType(str, Enum):
    """
    The classes of accelerator work the optimizer recognises.

    TRAINING   → long-running, GPU/NPU-heavy, throughput over latency.
    INFERENCE  → request/response model execution. Latency-sensitive.
    BATCH      → finite jobs (ETL, offline scoring). Tolerates busy nodes.
    STREAMING  → continuous consumers with bounded throughput.
    SERVING    → long-lived model servers behind a load balancer.
    """
    TRAINING = "training"
    INFERENCE = "inference"
    BATCH = "batch"
    STREAMING = "streaming"
    SERVING = "serving"


class SchedulingAlgorithm(str, Enum):
    """The six placement strategies selectable by name."""
    ROUND_ROBIN = "round-robin"
    LEAST_LOADED = "least-loaded"
    COST_OPTIMIZED = "cost-optimized"
    POWER_OPTIMIZED = "power-optimized"
    BALANCED = "balanced"
    PRIORITY_BASED = "priority-based"


class NodeCondition(str, Enum):
    """
    Node health signals. A condition present in NodeSnapshot.conditions is true.

    READY is the only condition a node must HAVE; every other member is a
    pressure/fault signal a node must NOT have to be schedulable.
    """
    READY = "Ready"
    DISK_PRESSURE = "DiskPressure"
    MEMORY_PRESSURE = "MemoryPressure"
    PID_PRESSURE = "PIDPressure"
    NETWORK_UNAVAILABLE = "NetworkUnavailable"


class SelectorOperator(str, Enum):
    IN = "In"
    NOT_IN = "NotIn"
    EXISTS = "Exists"
    DOES_NOT_EXIST = "DoesNotExist"


class TaintEffect(str, Enum):
    NO_SCHEDULE = "NoSchedule"
    PREFER_NO_SCHEDULE = "PreferNoSchedule"
    NO_EXECUTE = "NoExecute"


class TolerationOperator(str, Enum):
    EQUAL = "Equal"
    EXISTS = "Exists"


# ─────────────────────────────────────────────────────────────────────────────
# SECTION 2: RESOURCE MODELS
# What a workload asks for and what a node provides, in one unit system.
# ─────────────────────────────────────────────────────────────────────────────

class ResourceQuantity(BaseModel):
    """
    Normalised resource vector used everywhere inside the core.

    Units:
        cpu_cores  → fractional cores (0.5 = 500m)
        memory_gib → GiB (binary)
        gpu_count  → whole GPUs
        npu_count  → whole NPUs

    Raw strings ("500m", "4Gi") never reach this model directly; they go
    through shared/resource_model.py once, at the boundary.
    """
    model_config = ConfigDict(frozen=True)

    cpu_cores: float = Field(0.0, ge=0.0, description="CPU cores")
    memory_gib: float = Field(0.0, ge=0.0, description="Memory in GiB")
    gpu_count: int = Field(0, ge=0, description="GPU units")
    npu_count: int = Field(0, ge=0, description="NPU units")

    def __add__(self, other: "ResourceQuantity") -> "ResourceQuantity":
        return ResourceQuantity(
            cpu_cores=self.cpu_cores + other.cpu_cores,
            memory_gib=self.memory_gib + other.memory_gib,
            gpu_count=self.gpu_count + other.gpu_count,
            npu_count=self.npu_count + other.npu_count,
        )

    def fits_within(self, capacity: "ResourceQuantity") -> bool:
        """True if every dimension of self is ≤ the same dimension of capacity."""
        return bool(np.all(self.as_array() <= capacity.as_array() + 1e-9))

    def as_array(self) -> np.ndarray:
        """[cpu, memory, gpu, npu] as float64, the order used by every vector op."""
        return np.array(
            [self.cpu_cores, self.memory_gib, self.gpu_count, self.npu_count],
            dtype=np.float64,
        )

    @property
    def has_accelerators(self) -> bool:
        return self.gpu_count > 0 or self.npu_count > 0

    @property
    def is_zero(self) -> bool:
        return not np.any(self.as_array())


ZERO_RESOURCES = ResourceQuantity()


class ResourceRequirements(BaseModel):
    """
    Raw requirement block as written in the declarative workload spec.

    cpu    → "2", "0.5", "500m" or a number of cores.
    memory → "4Gi", "512Mi", "1G" or a number of BYTES.
    gpu    → whole GPUs.
    npu    → whole NPUs.

    Convert with ResourceModel.normalize() before use.
    """
    cpu: Union[str, float, int] = "0"
    memory: Union[str, float, int] = "0"
    gpu: Union[int, str] = 0
    npu: Union[int, str] = 0


# ─────────────────────────────────────────────────────────────────────────────
# SECTION 3: PLACEMENT VOCABULARY
# Selectors, affinity terms, taints and tolerations.
# ─────────────────────────────────────────────────────────────────────────────

class SelectorRequirement(BaseModel):
    """
    One (key, operator, values) clause of a selector expression.

    In           → label present and its value is in values.
    NotIn        → label absent, or present with a value not in values.
    Exists       → label present (values ignored).
    DoesNotExist → label absent (values ignored).
    """
    key: str
    operator: SelectorOperator
    values: List[str] = Field(default_factory=list)

    def matches(self, labels: Dict[str, str]) -> bool:
        present = self.key in labels
        if self.operator == SelectorOperator.IN:
            return present and labels[self.key] in self.values
        if self.operator == SelectorOperator.NOT_IN:
            return not present or labels[self.key] not in self.values
        if self.operator == SelectorOperator.EXISTS:
            return present
        return not present


class NodeSelectorTerm(BaseModel):
    """Clauses ANDed together. An empty term matches no node."""
    match_expressions: List[SelectorRequirement] = Field(default_factory=list)

    def matches(self, labels: Dict[str, str]) -> bool:
        if not self.match_expressions:
            return False
        return all(req.matches(labels) for req in self.match_expressions)


class NodeSelector(BaseModel):
    """Alternative terms ORed together."""
    terms: List[NodeSelectorTerm] = Field(default_factory=list)

    def matches(self, labels: Dict[str, str]) -> bool:
        return any(term.matches(labels) for term in self.terms)


class PreferredSchedulingTerm(BaseModel):
    """Soft node affinity: a matching node earns `weight` preference points."""
    weight: int = Field(1, ge=1, le=100)
    preference: NodeSelectorTerm


class LabelSelector(BaseModel):
    """
    Selector over workload/pod labels (used by anti-affinity).

    match_labels and match_expressions are ANDed. An empty selector
    matches every label set.
    """
    match_labels: Dict[str, str] = Field(default_factory=dict)
    match_expressions: List[SelectorRequirement] = Field(default_factory=list)

    def matches(self, labels: Dict[str, str]) -> bool:
        for key, value in self.match_labels.items():
            if labels.get(key) != value:
                return False
        return all(req.matches(labels) for req in self.match_expressions)


class AntiAffinityTerm(BaseModel):
    """
    Required anti-affinity: do not land in a topology domain already
    hosting something that matches label_selector.

    topology_key → node label grouping nodes into domains
                   ("kubernetes.io/hostname", "zone", "node-type", ...).
    """
    label_selector: LabelSelector = Field(default_factory=LabelSelector)
    topology_key: str


class Taint(BaseModel):
    key: str
    value: str = ""
    effect: TaintEffect = TaintEffect.NO_SCHEDULE


class Toleration(BaseModel):
    """
    Equal  → key and value must match the taint.
    Exists → key must match (empty key tolerates every taint).
    effect None matches every effect.
    """
    key: str = ""
    operator: TolerationOperator = TolerationOperator.EQUAL
    value: str = ""
    effect: Optional[TaintEffect] = None

    def tolerates(self, taint: Taint) -> bool:
        if self.effect is not None and self.effect != taint.effect:
            return False
        if self.operator == TolerationOperator.EXISTS:
            return self.key == "" or self.key == taint.key
        return self.key == taint.key and self.value == taint.value


class PlacementPolicy(BaseModel):
    """
    Where a workload may (hard) and would like to (soft) run.

    node_selector            → exact label matches, all required.
    required_node_affinity   → NodeSelector that must match.
    preferred_node_affinity  → weighted soft terms (balanced scoring only).
    required_anti_affinity   → terms that must not match within the domain.
    tolerations              → taints this workload accepts.
    """
    node_selector: Dict[str, str] = Field(default_factory=dict)
    required_node_affinity: Optional[NodeSelector] = None
    preferred_node_affinity: List[PreferredSchedulingTerm] = Field(default_factory=list)
    required_anti_affinity: List[AntiAffinityTerm] = Field(default_factory=list)
    tolerations: List[Toleration] = Field(default_factory=list)


# ─────────────────────────────────────────────────────────────────────────────
# SECTION 4: WORKLOAD
# ─────────────────────────────────────────────────────────────────────────────

class CostConstraints(BaseModel):
    """Zero means "no limit" for both ceilings."""
    max_cost_per_hour: float = Field(0.0, ge=0.0, description="USD/hour ceiling")
    budget_limit: float = Field(0.0, ge=0.0, description="USD per 720h month")
    prefer_spot: bool = Field(False, description="Accept spot pricing on spot nodes")


class PowerConstraints(BaseModel):
    """Zero means "no limit"."""
    max_power_usage: float = Field(0.0, ge=0.0, description="Watts ceiling")
    prefer_green: bool = Field(False, description="Prefer renewable-powered nodes")


class AutoscalingSpec(BaseModel):
    """
    Horizontal scaling envelope for the workload.

    target_cpu_pct / target_memory_pct are the utilisation levels (of the
    requested amount) each replica should sit at. Coherence (min ≤ max) is
    checked by the admission controller, not here.
    """
    enabled: bool = True
    min_replicas: int = Field(1, ge=1)
    max_replicas: int = Field(1, ge=1)
    target_cpu_pct: float = Field(80.0, gt=0.0, le=100.0)
    target_memory_pct: float = Field(80.0, gt=0.0, le=100.0)


MAX_PRIORITY: int = 10
"""Top of the workload priority scale (1 = lowest)."""


class WorkloadRequest(BaseModel):
    """
    The complete placement question for one workload.

    Identity is (workload_id, namespace), the same key reservations and
    history entries use.
    """
    workload_id: str = Field(..., description="Workload name")
    namespace: str = Field("default")
    workload_type: WorkloadType = WorkloadType.TRAINING
    priority: int = Field(5, ge=1, le=MAX_PRIORITY)
    resources: ResourceQuantity = Field(default_factory=ResourceQuantity)
    cost_constraints: CostConstraints = Field(default_factory=CostConstraints)
    power_constraints: PowerConstraints = Field(default_factory=PowerConstraints)
    placement_policy: PlacementPolicy = Field(default_factory=PlacementPolicy)
    autoscaling: Optional[AutoscalingSpec] = None
    labels: Dict[str, str] = Field(
        default_factory=dict,
        description="Labels carried by the workload's pods/reservations",
    )

    @property
    def key(self) -> Tuple[str, str]:
        return (self.workload_id, self.namespace)

    @classmethod
    def from_requirements(
        cls,
        workload_id: str,
        requirements: ResourceRequirements,
        **fields,
    ) -> "WorkloadRequest":
        """Build a request from the raw spec block, normalising quantities once."""
        from workload_optimizer.shared.resource_model import ResourceModel

        return cls(
            workload_id=workload_id,
            resources=ResourceModel.normalize(requirements),
            **fields,
        )


# ─────────────────────────────────────────────────────────────────────────────
# SECTION 5: CLUSTER SNAPSHOTS
# ─────────────────────────────────────────────────────────────────────────────

class NodeSnapshot(BaseModel):
    """
    A node as the reconciler saw it at snapshot time.

    conditions defaults to {READY}: a freshly described node with no
    pressure signals. Pass an explicit set to model anything else.
    """
    name: str
    labels: Dict[str, str] = Field(default_factory=dict)
    allocatable: ResourceQuantity = Field(default_factory=ResourceQuantity)
    conditions: Set[NodeCondition] = Field(
        default_factory=lambda: {NodeCondition.READY}
    )
    taints: List[Taint] = Field(default_factory=list)

    @property
    def is_ready(self) -> bool:
        return NodeCondition.READY in self.conditions

    @property
    def pressure_conditions(self) -> Set[NodeCondition]:
        return self.conditions - {NodeCondition.READY}


class PodSnapshot(BaseModel):
    """
    A pod already placed (or pending) in the cluster.

    requests → what the pod holds against its node.
    usage    → observed consumption; None until metrics exist.
    """
    name: str
    namespace: str = "default"
    node_name: Optional[str] = None
    workload_id: Optional[str] = Field(
        None, description="Owning workload, if the pod belongs to one"
    )
    labels: Dict[str, str] = Field(default_factory=dict)
    requests: ResourceQuantity = Field(default_factory=ResourceQuantity)
    usage: Optional[ResourceQuantity] = None


class WorkloadState(BaseModel):
    """Input bundle for OptimizationEngine.optimize()."""
    workload: Optional[WorkloadRequest] = None
    pods: List[PodSnapshot] = Field(default_factory=list)
    nodes: List[NodeSnapshot] = Field(default_factory=list)


# ─────────────────────────────────────────────────────────────────────────────
# SECTION 6: RESERVATIONS & HISTORY
# ─────────────────────────────────────────────────────────────────────────────

class ResourceReservation(BaseModel):
    """
    A provisional hold on node capacity between decision and admission.

    Keyed by (workload_id, namespace). Only created and destroyed through
    the ReservationStore's explicit operations.
    """
    model_config = ConfigDict(frozen=True)

    workload_id: str = Field(..., min_length=1)
    namespace: str = Field("default", min_length=1)
    node_name: str = Field(..., min_length=1)
    reserved: ResourceQuantity = Field(default_factory=ResourceQuantity)
    priority: int = Field(5, ge=1, le=MAX_PRIORITY)
    labels: Dict[str, str] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def key(self) -> Tuple[str, str]:
        return (self.workload_id, self.namespace)


class SchedulingDecision(BaseModel):
    """The placement answer. Immutable once produced."""
    model_config = ConfigDict(frozen=True)

    workload_id: str
    namespace: str
    selected_node: str
    score: float = Field(..., ge=0.0, le=1.0)
    algorithm: str
    timestamp: datetime = Field(default_factory=_utcnow)


class SchedulingEvent(BaseModel):
    """One append-only history entry."""
    model_config = ConfigDict(frozen=True)

    workload_id: str
    namespace: str
    algorithm: str
    selected_node: str
    score: float = Field(..., ge=0.0, le=1.0)
    timestamp: datetime = Field(default_factory=_utcnow)

    @classmethod
    def from_decision(cls, decision: SchedulingDecision) -> "SchedulingEvent":
        return cls(
            workload_id=decision.workload_id,
            namespace=decision.namespace,
            algorithm=decision.algorithm,
            selected_node=decision.selected_node,
            score=decision.score,
            timestamp=decision.timestamp,
        )


class AlgorithmStatistics(BaseModel):
    """Cumulative per-algorithm aggregate over every recorded event."""
    algorithm: str
    count: int = 0
    average_score: float = 0.0
    min_score: float = 0.0
    max_score: float = 0.0
    last_scheduled_at: Optional[datetime] = None


# ─────────────────────────────────────────────────────────────────────────────
# SECTION 7: OUTPUTS
# ─────────────────────────────────────────────────────────────────────────────

class ResourceBreakdown(BaseModel):
    """Per-dimension terms of a linear cost or power estimate."""
    cpu: float = 0.0
    memory: float = 0.0
    gpu: float = 0.0
    npu: float = 0.0
    total: float = 0.0


# Same shape, different units (USD/hour vs watts).
CostBreakdown = ResourceBreakdown
PowerBreakdown = ResourceBreakdown


class OptimizationResult(BaseModel):
    """
    Output of one optimization pass.

    score               → fitness in [0, 1] after constraint penalties.
    estimated_cost      → USD/hour for the workload's request.
    estimated_power     → watts for the workload's request.
    recommended_replicas→ ≥ 1; 1 whenever autoscaling is off.
    selected_node       → best feasible node, None if none was evaluated.
    violations          → names of exceeded ceilings ("cost", "power", "budget").
    """
    score: float = Field(..., ge=0.0, le=1.0)
    estimated_cost: float = Field(..., ge=0.0)
    estimated_power: float = Field(..., ge=0.0)
    recommended_replicas: int = Field(1, ge=1)
    selected_node: Optional[str] = None
    algorithm: Optional[str] = None
    cost_breakdown: CostBreakdown = Field(default_factory=ResourceBreakdown)
    power_breakdown: PowerBreakdown = Field(default_factory=ResourceBreakdown)
    violations: List[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=_utcnow)

    def to_status(self) -> Dict[str, object]:
        """
        Status fields for the external status writer.

        phase is "Optimized" with a node, "Pending" without one, and
        "ConstraintViolated" whenever a ceiling was exceeded.
        """
        if self.violations:
            phase = "ConstraintViolated"
        elif self.selected_node:
            phase = "Optimized"
        else:
            phase = "Pending"
        return {
            "phase": phase,
            "currentCost": self.estimated_cost,
            "currentPower": self.estimated_power,
            "assignedNode": self.selected_node or "",
            "optimizationScore": self.score,
            "lastOptimized": self.timestamp.isoformat(),
        }
