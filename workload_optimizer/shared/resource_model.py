"""
workload_optimizer/shared/resource_model.py
────────────────────────────────────────────
ResourceModel: turns heterogeneous quantity notations into ResourceQuantity.

The declarative spec and node objects speak Kubernetes quantity strings:

    CPU     "2"  "0.5"  "500m"  "1.5e1"
    Memory  "4Gi"  "512Mi"  "1G"  "1000000"  (bare number = bytes)
    GPU/NPU 1  "2"

Everything downstream works in cores / GiB / whole units, so conversion
happens exactly once, here. Any string we cannot read raises
MalformedQuantityError instead of silently becoming zero.
"""

from __future__ import annotations

import math
import re
from typing import Union

from workload_optimizer.shared.errors import MalformedQuantityError
from workload_optimizer.shared.models import ResourceQuantity, ResourceRequirements

_QUANTITY_RE = re.compile(r"^\s*([0-9]+(?:\.[0-9]*)?|\.[0-9]+)(?:[eE]([+-]?[0-9]+))?\s*([A-Za-z]*)\s*$")

GIB: float = 1024.0 ** 3

# Suffix → bytes multiplier.
_MEMORY_MULTIPLIERS = {
    "": 1.0,
    "Ki": 1024.0,
    "Mi": 1024.0 ** 2,
    "Gi": 1024.0 ** 3,
    "Ti": 1024.0 ** 4,
    "Pi": 1024.0 ** 5,
    "Ei": 1024.0 ** 6,
    "k": 1e3,
    "K": 1e3,
    "M": 1e6,
    "G": 1e9,
    "T": 1e12,
    "P": 1e15,
    "E": 1e18,
}

# Suffix → cores multiplier.
_CPU_MULTIPLIERS = {
    "": 1.0,
    "m": 1e-3,
}

Number = Union[str, int, float]


def _split(kind: str, value: Number):
    """Return (magnitude, suffix) for a quantity, rejecting negatives and junk."""
    if isinstance(value, bool):
        raise MalformedQuantityError(kind, value)
    if isinstance(value, (int, float)):
        try:
            magnitude = float(value)
        except OverflowError:
            raise MalformedQuantityError(kind, value) from None
        if not math.isfinite(magnitude) or magnitude < 0:
            raise MalformedQuantityError(kind, value)
        return magnitude, ""
    if not isinstance(value, str):
        raise MalformedQuantityError(kind, value)

    match = _QUANTITY_RE.match(value)
    if match is None:
        raise MalformedQuantityError(kind, value)
    mantissa, exponent, suffix = match.groups()
    try:
        magnitude = float(mantissa)
        if exponent is not None:
            magnitude *= 10.0 ** int(exponent)
    except (OverflowError, ValueError):
        raise MalformedQuantityError(kind, value) from None
    if not math.isfinite(magnitude):
        raise MalformedQuantityError(kind, value)
    return magnitude, suffix


def _finite(kind: str, value: Number, result: float) -> float:
    if not math.isfinite(result):
        raise MalformedQuantityError(kind, value)
    return result


class ResourceModel:
    """
    Stateless quantity parser.

    All methods are static; the class exists to give the conversion a
    single, importable home.
    """

    @staticmethod
    def parse_cpu(value: Number) -> float:
        """CPU quantity → cores. "500m" → 0.5, "2" → 2.0."""
        magnitude, suffix = _split("cpu", value)
        if suffix not in _CPU_MULTIPLIERS:
            raise MalformedQuantityError("cpu", value)
        return _finite("cpu", value, magnitude * _CPU_MULTIPLIERS[suffix])

    @staticmethod
    def parse_memory(value: Number) -> float:
        """Memory quantity → GiB. "4Gi" → 4.0, "512Mi" → 0.5, 1073741824 → 1.0."""
        magnitude, suffix = _split("memory", value)
        if suffix not in _MEMORY_MULTIPLIERS:
            raise MalformedQuantityError("memory", value)
        return _finite("memory", value, magnitude * _MEMORY_MULTIPLIERS[suffix] / GIB)

    @staticmethod
    def parse_accelerator(value: Number, kind: str = "accelerator") -> int:
        """Accelerator count → int. Fractions and suffixes are rejected."""
        magnitude, suffix = _split(kind, value)
        if suffix or magnitude != int(magnitude):
            raise MalformedQuantityError(kind, value)
        return int(magnitude)

    @classmethod
    def normalize(cls, requirements: ResourceRequirements) -> ResourceQuantity:
        """Convert a raw requirement block into the internal unit system."""
        return ResourceQuantity(
            cpu_cores=cls.parse_cpu(requirements.cpu),
            memory_gib=cls.parse_memory(requirements.memory),
            gpu_count=cls.parse_accelerator(requirements.gpu, "gpu"),
            npu_count=cls.parse_accelerator(requirements.npu, "npu"),
        )

    @classmethod
    def coerce(cls, resources: Union[ResourceQuantity, ResourceRequirements]) -> ResourceQuantity:
        """Accept either form; raw requirements are normalised, quantities pass through."""
        if isinstance(resources, ResourceQuantity):
            return resources
        if isinstance(resources, ResourceRequirements):
            return cls.normalize(resources)
        raise MalformedQuantityError("resources", resources)
