"""
workload_optimizer/shared/errors.py
────────────────────────────────────
Typed failures raised by the optimization core.

Every public operation either returns a complete result or raises one of
these. There is no partial decision: if an exception escapes, nothing was
selected, reserved, or recorded.

Taxonomy
─────────
  InvalidInputError             → missing workload, malformed fields,
                                  incoherent autoscaling/affinity settings.
  NoFeasibleNodesError          → caller supplied an empty node list.
  InsufficientResourcesError    → nodes were supplied but every one of them
                                  failed a hard constraint.
  UnknownAlgorithmError         → algorithm name not in the registry.
  MalformedQuantityError        → unparseable resource string ("4Gx", "-1").
  ReservationNotFoundError      → delete of a key that holds no reservation.
  ReservationAlreadyExistsError → create over a live key.
  CanceledError                 → caller's cancel event was set mid-scan.

Caller contract (the reconciler):
  Map the exception kind onto a status condition or log line. The core
  never retries; backoff belongs to the control loop.
"""

from __future__ import annotations


class OptimizerError(Exception):
    """
    Base class for all core failures.

    Attributes:
        reason: Human-readable explanation, suitable for a status condition.
    """

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class InvalidInputError(OptimizerError):
    """Raised when the workload is None or semantically malformed."""


class NoFeasibleNodesError(OptimizerError):
    """Raised when the node list handed to the scheduler is empty."""


class InsufficientResourcesError(OptimizerError):
    """
    Raised when every supplied node was filtered out.

    Distinct from NoFeasibleNodesError: here the cluster exists but cannot
    host the workload right now (capacity, health, affinity or taints).
    """


class UnknownAlgorithmError(OptimizerError):
    """Raised for an algorithm name with no registered scoring strategy."""

    def __init__(self, algorithm: str, known: list) -> None:
        self.algorithm = algorithm
        super().__init__(
            f"Unknown scheduling algorithm {algorithm!r}. "
            f"Expected one of: {', '.join(known)}."
        )


class MalformedQuantityError(OptimizerError):
    """Raised when a CPU/memory/accelerator quantity cannot be parsed."""

    def __init__(self, kind: str, value: object) -> None:
        self.kind = kind
        self.value = value
        super().__init__(f"Malformed {kind} quantity: {value!r}")


class ReservationNotFoundError(OptimizerError):
    """Raised when deleting a reservation key that is not held."""


class ReservationAlreadyExistsError(OptimizerError):
    """Raised when creating a reservation over a live key."""


class CanceledError(OptimizerError):
    """Raised when the caller's cancellation event fires during a node scan."""
