# =============================================================================
# lib/delivery_store.py - Delivery Persistence Interface
# =============================================================================
# Defines the storage operations the delivery subsystem needs and an
# in-process implementation of them.
#
# Two operations must be atomic with respect to concurrent callers:
# - assign_delivery: pick an eligible partner, reserve a slot on it and
#   insert the delivery row, all-or-nothing
# - transition_delivery: compare-and-set the status and, at most once per
#   delivery, release the partner's slot
#
# Implementations:
# - InMemoryDeliveryStore (this module): local development and tests
# - SupabaseDeliveryStore (lib/supabase_client.py): Postgres via Supabase RPC
#
# Rows are plain dicts with snake_case keys and ISO-8601 timestamps, the same
# shape Supabase returns.
# =============================================================================

from __future__ import annotations

import copy
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

from core.models.delivery import ACTIVE_STATUSES

logger = logging.getLogger(__name__)


class DeliveryStoreError(Exception):
    """
    Error during a storage operation.

    Raised when the backing store cannot be reached or rejects a query.
    """

    def __init__(
        self,
        message: str,
        code: str = "STORE_ERROR",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class DuplicateOrderError(DeliveryStoreError):
    """Raised when an order already has a delivery."""

    def __init__(self, order_id: str):
        super().__init__(
            message=f"Order already has a delivery: {order_id}",
            code="DUPLICATE_ORDER",
            details={"order_id": order_id},
        )


class DeliveryStore(ABC):
    """Storage operations used by the assignment service."""

    @abstractmethod
    def assign_delivery(
        self,
        delivery: dict[str, Any],
        max_concurrent: int,
    ) -> dict[str, Any] | None:
        """
        Atomically reserve a partner and create a delivery.

        The first partner that is active, available and below
        `max_concurrent` current orders gets `current_orders` incremented,
        and the delivery row is inserted with that partner's id.

        Args:
            delivery: Delivery columns (everything except id/partner_id)
            max_concurrent: Concurrent-order cap per partner

        Returns:
            The inserted delivery row with the chosen partner row under
            "partner", or None if no partner is eligible (nothing written)

        Raises:
            DuplicateOrderError: If the order already has a delivery
            DeliveryStoreError: If the store is unavailable
        """

    @abstractmethod
    def get_delivery(self, delivery_id: str) -> dict[str, Any] | None:
        """Fetch a delivery row with its partner row under "partner"."""

    @abstractmethod
    def list_active_deliveries(self, partner_id: str) -> list[dict[str, Any]]:
        """Non-terminal deliveries of one partner, newest assignment first."""

    @abstractmethod
    def transition_delivery(
        self,
        delivery_id: str,
        from_status: str,
        changes: dict[str, Any],
        release_capacity: bool = False,
        count_completion: bool = False,
    ) -> dict[str, Any] | None:
        """
        Apply `changes` if the delivery is still in `from_status`.

        When `release_capacity` is set and the delivery has not released its
        slot yet, the partner's `current_orders` is decremented (never below
        zero) and, with `count_completion`, `total_deliveries` incremented.

        Returns:
            The updated delivery row, or None if the delivery does not exist
            or is no longer in `from_status`
        """

    @abstractmethod
    def get_partner(self, partner_id: str) -> dict[str, Any] | None:
        """Fetch a delivery partner row."""

    @abstractmethod
    def set_partner_availability(
        self,
        partner_id: str,
        is_available: bool,
    ) -> dict[str, Any] | None:
        """Toggle whether a partner accepts new deliveries."""

    @abstractmethod
    def update_partner_location(
        self,
        partner_id: str,
        lat: float,
        lng: float,
        at: str,
    ) -> None:
        """Record a partner's last known position."""

    @abstractmethod
    def ping(self) -> None:
        """Raise DeliveryStoreError if the store cannot be reached."""


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class InMemoryDeliveryStore(DeliveryStore):
    """
    Thread-safe in-process store.

    A single lock guards both tables, so every operation is atomic with
    respect to every other. Returned rows are copies.

    Example:
        store = InMemoryDeliveryStore()
        store.add_partner(full_name="Ravi", phone="+91 90000 00001")
        delivery = store.assign_delivery({...}, max_concurrent=3)
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._partners: dict[str, dict[str, Any]] = {}
        self._deliveries: dict[str, dict[str, Any]] = {}

    # -------------------------------------------------------------------------
    # Seeding
    # -------------------------------------------------------------------------

    def add_partner(self, **fields: Any) -> dict[str, Any]:
        """
        Insert a delivery partner (registration lives outside this service).

        Unspecified columns get the same defaults as the database table.
        """
        partner = {
            "id": fields.pop("id", None) or str(uuid.uuid4()),
            "full_name": "",
            "phone": "",
            "vehicle_type": "BIKE",
            "vehicle_number": "",
            "rating": 5.0,
            "is_active": True,
            "is_available": True,
            "current_orders": 0,
            "total_deliveries": 0,
            "current_lat": None,
            "current_lng": None,
            "last_location_update": None,
            "created_at": _now_iso(),
        }
        partner.update(fields)

        with self._lock:
            self._partners[partner["id"]] = partner
            return copy.deepcopy(partner)

    # -------------------------------------------------------------------------
    # Deliveries
    # -------------------------------------------------------------------------

    def assign_delivery(
        self,
        delivery: dict[str, Any],
        max_concurrent: int,
    ) -> dict[str, Any] | None:
        with self._lock:
            if any(d["order_id"] == delivery["order_id"] for d in self._deliveries.values()):
                raise DuplicateOrderError(delivery["order_id"])

            # Insertion order stands in for created_at ordering
            partner = next(
                (
                    p for p in self._partners.values()
                    if p["is_active"]
                    and p["is_available"]
                    and p["current_orders"] < max_concurrent
                ),
                None,
            )
            if partner is None:
                return None

            partner["current_orders"] += 1

            row = {
                **copy.deepcopy(delivery),
                "id": str(uuid.uuid4()),
                "partner_id": partner["id"],
                "capacity_released": False,
            }
            self._deliveries[row["id"]] = row

            return {**copy.deepcopy(row), "partner": copy.deepcopy(partner)}

    def get_delivery(self, delivery_id: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._deliveries.get(delivery_id)
            if row is None:
                return None
            partner = self._partners.get(row["partner_id"])
            return {**copy.deepcopy(row), "partner": copy.deepcopy(partner)}

    def list_active_deliveries(self, partner_id: str) -> list[dict[str, Any]]:
        active = {status.value for status in ACTIVE_STATUSES}
        with self._lock:
            rows = [
                copy.deepcopy(d) for d in self._deliveries.values()
                if d["partner_id"] == partner_id and d["status"] in active
            ]
        rows.sort(key=lambda d: d.get("assigned_at") or "", reverse=True)
        return rows

    def transition_delivery(
        self,
        delivery_id: str,
        from_status: str,
        changes: dict[str, Any],
        release_capacity: bool = False,
        count_completion: bool = False,
    ) -> dict[str, Any] | None:
        with self._lock:
            row = self._deliveries.get(delivery_id)
            if row is None or row["status"] != from_status:
                return None

            row.update(copy.deepcopy(changes))

            if release_capacity and not row["capacity_released"]:
                partner = self._partners.get(row["partner_id"])
                if partner is not None:
                    if partner["current_orders"] > 0:
                        partner["current_orders"] -= 1
                    else:
                        logger.warning(
                            f"Partner {partner['id']} had no active orders to release "
                            f"for delivery {delivery_id}; keeping count at 0"
                        )
                    if count_completion:
                        partner["total_deliveries"] += 1
                row["capacity_released"] = True

            return copy.deepcopy(row)

    # -------------------------------------------------------------------------
    # Partners
    # -------------------------------------------------------------------------

    def get_partner(self, partner_id: str) -> dict[str, Any] | None:
        with self._lock:
            partner = self._partners.get(partner_id)
            return copy.deepcopy(partner) if partner else None

    def set_partner_availability(
        self,
        partner_id: str,
        is_available: bool,
    ) -> dict[str, Any] | None:
        with self._lock:
            partner = self._partners.get(partner_id)
            if partner is None:
                return None
            partner["is_available"] = is_available
            return copy.deepcopy(partner)

    def update_partner_location(
        self,
        partner_id: str,
        lat: float,
        lng: float,
        at: str,
    ) -> None:
        with self._lock:
            partner = self._partners.get(partner_id)
            if partner is not None:
                partner["current_lat"] = lat
                partner["current_lng"] = lng
                partner["last_location_update"] = at

    def ping(self) -> None:
        return None
