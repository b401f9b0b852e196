"""
workload_optimizer/control_plane/cost_calculator.py
────────────────────────────────────────────────────
CostCalculator and PowerCalculator: linear models over a resource vector.

What this is
─────────────
Both calculators answer "what does running this much hardware for an hour
amount to?" The cost side answers in USD and the power side in watts.
The arithmetic is identical:

    value = cpu_cores  × rate.cpu
          + memory_gib × rate.memory
          + gpu_count  × rate.gpu
          + npu_count  × rate.npu

so the shared LinearResourceModel does the work and the two subclasses
only name things.

Properties the rest of the core relies on
──────────────────────────────────────────
  • Zero resources → exactly 0.0 (no base fee, no rounding).
  • breakdown().total is the literal sum of its four terms.
  • Projections are fixed multipliers of the hourly figure:
        daily   = hourly × 24
        monthly = hourly × 720
        yearly  = hourly × 8760
    Calendar-exact accounting (28–31 day months, leap years) is not
    attempted.
  • Inputs may be a ResourceQuantity or a raw ResourceRequirements block;
    the latter goes through ResourceModel first, so a malformed string
    raises MalformedQuantityError.

Standalone use:
    calc = CostCalculator()
    calc.calculate_cost(ResourceQuantity(cpu_cores=2, memory_gib=4, gpu_count=1))
    # → 2.60 (USD/hour with default prices)
"""

from __future__ import annotations

from typing import Optional, Union

from workload_optimizer.shared.config import (
    HOURS_PER_DAY,
    HOURS_PER_MONTH,
    HOURS_PER_YEAR,
    ResourceRates,
    default_power,
    default_pricing,
)
from workload_optimizer.shared.models import (
    CostBreakdown,
    PowerBreakdown,
    ResourceBreakdown,
    ResourceQuantity,
    ResourceRequirements,
)
from workload_optimizer.shared.resource_model import ResourceModel

Resources = Union[ResourceQuantity, ResourceRequirements]


class LinearResourceModel:
    """
    Stateless linear estimator. One instance can be shared across threads.

    Args:
        rates: Per-unit rates. Subclasses supply their own defaults.
    """

    def __init__(self, rates: ResourceRates) -> None:
        self.rates = rates

    # ── Core arithmetic ───────────────────────────────────────────────────────

    def breakdown(self, resources: Resources) -> ResourceBreakdown:
        """Per-dimension terms plus their sum."""
        q = ResourceModel.coerce(resources)
        cpu = q.cpu_cores * self.rates.cpu
        memory = q.memory_gib * self.rates.memory
        gpu = q.gpu_count * self.rates.gpu
        npu = q.npu_count * self.rates.npu
        return ResourceBreakdown(
            cpu=cpu,
            memory=memory,
            gpu=gpu,
            npu=npu,
            total=cpu + memory + gpu + npu,
        )

    def hourly(self, resources: Resources) -> float:
        return self.breakdown(resources).total

    # ── Projections ───────────────────────────────────────────────────────────

    def daily(self, resources: Resources) -> float:
        return self.hourly(resources) * HOURS_PER_DAY

    def monthly(self, resources: Resources) -> float:
        return self.hourly(resources) * HOURS_PER_MONTH

    def yearly(self, resources: Resources) -> float:
        return self.hourly(resources) * HOURS_PER_YEAR

    def __repr__(self) -> str:
        r = self.rates
        return (
            f"{type(self).__name__}(cpu={r.cpu}, memory={r.memory}, "
            f"gpu={r.gpu}, npu={r.npu})"
        )


class CostCalculator(LinearResourceModel):
    """USD/hour estimator. Default rates from shared/config.py."""

    def __init__(self, rates: Optional[ResourceRates] = None) -> None:
        super().__init__(rates or default_pricing())

    def calculate_cost(self, resources: Resources) -> float:
        """Hourly cost in USD."""
        return self.hourly(resources)

    def calculate_daily_cost(self, resources: Resources) -> float:
        return self.daily(resources)

    def calculate_monthly_cost(self, resources: Resources) -> float:
        return self.monthly(resources)

    def calculate_yearly_cost(self, resources: Resources) -> float:
        return self.yearly(resources)

    def get_cost_breakdown(self, resources: Resources) -> CostBreakdown:
        return self.breakdown(resources)

    @staticmethod
    def calculate_savings(original_cost: float, optimized_cost: float) -> float:
        """Savings from an optimization. Negative when the new placement costs more."""
        return original_cost - optimized_cost


class PowerCalculator(LinearResourceModel):
    """Watt estimator. Projections are energy in watt-hours."""

    def __init__(self, rates: Optional[ResourceRates] = None) -> None:
        super().__init__(rates or default_power())

    def calculate_power(self, resources: Resources) -> float:
        """Steady-state draw in watts."""
        return self.hourly(resources)

    def calculate_daily_energy(self, resources: Resources) -> float:
        return self.daily(resources)

    def calculate_monthly_energy(self, resources: Resources) -> float:
        return self.monthly(resources)

    def calculate_yearly_energy(self, resources: Resources) -> float:
        return self.yearly(resources)

    def get_power_breakdown(self, resources: Resources) -> PowerBreakdown:
        return self.breakdown(resources)
