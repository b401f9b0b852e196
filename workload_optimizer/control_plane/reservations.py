"""
workload_optimizer/control_plane/reservations.py
─────────────────────────────────────────────────
ReservationStore: provisional capacity holds, keyed by (workload_id, namespace).

A reservation sits between a placement decision and the cluster actually
admitting the workload. While it exists, NodeFilter counts its `reserved`
quantity against the node's allocatable, so two workloads scheduled back to
back cannot both be promised the same GPU.

Policy
───────
Explicit errors in both directions:
  create over a live key  → ReservationAlreadyExistsError
  delete of an absent key → ReservationNotFoundError
To move a reservation, delete it and create the new one.

Thread safety
──────────────
One threading.Lock guards the map. Every read copies out under the lock,
so callers never see a half-applied create or delete. Reservations are
frozen pydantic models; handing out the objects themselves is safe.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional, Tuple

from workload_optimizer.control_plane.node_filter import committed_on_node
from workload_optimizer.shared.errors import (
    ReservationAlreadyExistsError,
    ReservationNotFoundError,
)
from workload_optimizer.shared.models import ResourceQuantity, ResourceReservation

logger = logging.getLogger(__name__)

ReservationKey = Tuple[str, str]


class ReservationStore:
    """
    In-memory reservation map. Not persisted: a restarted process starts empty.

    Usage:
        store = ReservationStore()
        store.create_reservation(ResourceReservation(workload_id="w1", node_name="node-2", ...))
        store.has_reservation("w1", "default")      # True
        store.delete_reservation("w1", "default")
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._reservations: Dict[ReservationKey, ResourceReservation] = {}

    # ── Mutations ─────────────────────────────────────────────────────────────

    def create_reservation(self, reservation: ResourceReservation) -> ResourceReservation:
        """
        Record a hold.

        Raises:
            ReservationAlreadyExistsError: the key already holds a reservation.
        """
        with self._lock:
            existing = self._reservations.get(reservation.key)
            if existing is not None:
                raise ReservationAlreadyExistsError(
                    f"Reservation for {reservation.namespace}/{reservation.workload_id} "
                    f"already exists on node {existing.node_name}"
                )
            self._reservations[reservation.key] = reservation

        logger.info(
            "reservation created: %s/%s on %s (cpu=%.2f mem=%.2fGi gpu=%d npu=%d)",
            reservation.namespace, reservation.workload_id, reservation.node_name,
            reservation.reserved.cpu_cores, reservation.reserved.memory_gib,
            reservation.reserved.gpu_count, reservation.reserved.npu_count,
        )
        return reservation

    def delete_reservation(self, workload_id: str, namespace: str = "default") -> ResourceReservation:
        """
        Release a hold and return what was released.

        Raises:
            ReservationNotFoundError: nothing is held under the key.
        """
        with self._lock:
            removed = self._reservations.pop((workload_id, namespace), None)
        if removed is None:
            raise ReservationNotFoundError(
                f"No reservation for {namespace}/{workload_id}"
            )
        logger.info(
            "reservation deleted: %s/%s on %s",
            namespace, workload_id, removed.node_name,
        )
        return removed

    # ── Queries ───────────────────────────────────────────────────────────────

    def has_reservation(self, workload_id: str, namespace: str = "default") -> bool:
        with self._lock:
            return (workload_id, namespace) in self._reservations

    def get_reservation(
        self, workload_id: str, namespace: str = "default"
    ) -> Optional[ResourceReservation]:
        with self._lock:
            return self._reservations.get((workload_id, namespace))

    def get_reservations_for_node(self, node_name: str) -> List[ResourceReservation]:
        """Every reservation on node_name, in creation order."""
        with self._lock:
            return [r for r in self._reservations.values() if r.node_name == node_name]

    def list_reservations(self) -> List[ResourceReservation]:
        """Snapshot of all reservations, in creation order."""
        with self._lock:
            return list(self._reservations.values())

    def committed_for_node(self, node_name: str) -> ResourceQuantity:
        """Sum of reserved quantities on node_name."""
        return committed_on_node(node_name, self.list_reservations())

    def __len__(self) -> int:
        with self._lock:
            return len(self._reservations)
