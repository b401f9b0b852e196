"""
workload_optimizer/shared/config.py
────────────────────────────────────
Tunables for pricing, power, scoring and optimization.

Every default is a module-level constant so tests can import and assert
against it directly. The pydantic models below bundle those defaults into
objects a caller can override per instance:

    settings = OptimizerSettings.from_mapping({
        "pricing": {"gpu": 3.10},
        "scheduler": {"default_algorithm": "cost-optimized"},
    })
    engine = OptimizationEngine(settings=settings)

No environment variables or files are read here. Where the values come
from is the reconciler's business.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, Field, field_validator

from workload_optimizer.shared.models import MAX_PRIORITY, SchedulingAlgorithm, WorkloadType

# ── Pricing (USD per unit-hour) ───────────────────────────────────────────────

PRICE_CPU_CORE_HOUR: float = 0.04
PRICE_MEMORY_GIB_HOUR: float = 0.005
PRICE_GPU_HOUR: float = 2.50
"""One GPU-hour. Deliberately far above CPU/memory: accelerators dominate spend."""
PRICE_NPU_HOUR: float = 1.80

# ── Power draw (watts per unit) ──────────────────────────────────────────────

POWER_CPU_CORE_W: float = 8.0
POWER_MEMORY_GIB_W: float = 0.375
POWER_GPU_W: float = 200.0
POWER_NPU_W: float = 150.0

# ── Time projections (fixed multipliers, not calendar-exact) ─────────────────

HOURS_PER_DAY: float = 24.0
HOURS_PER_MONTH: float = 720.0
HOURS_PER_YEAR: float = 8760.0

# ── Node tier labels ─────────────────────────────────────────────────────────

COST_TIER_LABEL: str = "cost-tier"
POWER_TIER_LABEL: str = "power-tier"
LIFECYCLE_LABEL: str = "node-lifecycle"
ENERGY_SOURCE_LABEL: str = "energy-source"

DEFAULT_TIER_FACTORS: Dict[str, float] = {"low": 0.5, "medium": 1.0, "high": 2.0}
"""
Price/power multiplier applied to the workload's list estimate per tier.

Scores come out as 1/(1+factor): low → 0.67, medium → 0.5, high → 0.33.
Untiered nodes are priced at list (factor 1.0).
"""

SPOT_PRICE_FACTOR: float = 0.3
"""Spot nodes cost 30% of list for workloads that set prefer_spot."""

GREEN_POWER_FACTOR: float = 0.5
"""Renewable-powered nodes count half their draw for prefer_green workloads."""

# ── Optimization engine ──────────────────────────────────────────────────────

DEFAULT_WORKLOAD_SCORES: Dict[WorkloadType, float] = {
    WorkloadType.TRAINING: 0.80,
    WorkloadType.INFERENCE: 0.90,
    WorkloadType.BATCH: 0.85,
    WorkloadType.STREAMING: 0.85,
    WorkloadType.SERVING: 0.90,
}
"""Base fitness when the snapshot carries no nodes to score against."""

UTILIZATION_WEIGHT: float = 0.3
"""Share of the base score taken from observed pod CPU efficiency, when known."""

VIOLATION_BASE_FACTOR: float = 0.9
"""
Penalty per exceeded ceiling: factor = VIOLATION_BASE_FACTOR / (1 + overage).

overage = (estimate − limit) / limit. Any violation costs at least 10%;
doubling the limit costs 55%. Factors multiply across ceilings.
"""

AUTOSCALE_TOLERANCE: float = 0.1
"""
Dead band around the target utilisation: while observed/target stays within
1 ± tolerance the current replica count is recommended unchanged.
"""


class ResourceRates(BaseModel):
    """Per-unit rates for one linear model (USD/hour or watts)."""
    cpu: float = Field(..., ge=0.0)
    memory: float = Field(..., ge=0.0)
    gpu: float = Field(..., ge=0.0)
    npu: float = Field(..., ge=0.0)


def default_pricing() -> ResourceRates:
    return ResourceRates(
        cpu=PRICE_CPU_CORE_HOUR,
        memory=PRICE_MEMORY_GIB_HOUR,
        gpu=PRICE_GPU_HOUR,
        npu=PRICE_NPU_HOUR,
    )


def default_power() -> ResourceRates:
    return ResourceRates(
        cpu=POWER_CPU_CORE_W,
        memory=POWER_MEMORY_GIB_W,
        gpu=POWER_GPU_W,
        npu=POWER_NPU_W,
    )


class BalancedWeights(BaseModel):
    """
    Weights of the balanced algorithm. Normalised at use, so only ratios
    matter. `affinity` only participates when the workload declares
    preferred node affinity.
    """
    load: float = Field(1.0, ge=0.0)
    cost: float = Field(1.0, ge=0.0)
    power: float = Field(1.0, ge=0.0)
    affinity: float = Field(1.0, ge=0.0)


class SchedulerConfig(BaseModel):
    default_algorithm: SchedulingAlgorithm = SchedulingAlgorithm.BALANCED
    max_priority: int = Field(MAX_PRIORITY, ge=1)
    tier_factors: Dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_TIER_FACTORS))
    spot_price_factor: float = Field(SPOT_PRICE_FACTOR, gt=0.0)
    green_power_factor: float = Field(GREEN_POWER_FACTOR, gt=0.0)
    balanced_weights: BalancedWeights = Field(default_factory=BalancedWeights)
    history_max_events: Optional[int] = Field(
        None, ge=1,
        description="Cap on retained raw history events. None = unbounded.",
    )

    @field_validator("tier_factors")
    @classmethod
    def _tiers_positive(cls, value: Dict[str, float]) -> Dict[str, float]:
        for tier, factor in value.items():
            if factor <= 0:
                raise ValueError(f"tier factor for {tier!r} must be > 0, got {factor}")
        return value


class EngineConfig(BaseModel):
    scoring_algorithm: SchedulingAlgorithm = SchedulingAlgorithm.BALANCED
    utilization_weight: float = Field(UTILIZATION_WEIGHT, ge=0.0, le=1.0)
    violation_base_factor: float = Field(VIOLATION_BASE_FACTOR, gt=0.0, lt=1.0)
    autoscale_tolerance: float = Field(AUTOSCALE_TOLERANCE, ge=0.0, lt=1.0)
    workload_scores: Dict[WorkloadType, float] = Field(
        default_factory=lambda: dict(DEFAULT_WORKLOAD_SCORES)
    )


class OptimizerSettings(BaseModel):
    """Everything an OptimizationEngine (and its scheduler) is built from."""
    pricing: ResourceRates = Field(default_factory=default_pricing)
    power: ResourceRates = Field(default_factory=default_power)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]] = None) -> "OptimizerSettings":
        """
        Build settings from a (possibly partial) nested mapping.

        Rate tables may be given partially: missing rates keep their
        defaults instead of failing validation.
        """
        data = dict(data or {})
        pricing = {**default_pricing().model_dump(), **dict(data.pop("pricing", {}) or {})}
        power = {**default_power().model_dump(), **dict(data.pop("power", {}) or {})}
        return cls.model_validate({"pricing": pricing, "power": power, **data})
