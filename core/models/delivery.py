# =============================================================================
# core/models/delivery.py - Delivery Schemas and Lifecycle
# =============================================================================
# These models define the API contract for delivery operations:
# - DeliveryStatus: Lifecycle enum and its transition rules
# - DeliveryCreate: Input for assigning a partner to a confirmed order
# - DeliveryStatusUpdate: Input for a partner-reported status change
# - PartnerAvailabilityUpdate: Input for toggling partner availability
#
# A delivery is one order's assignment to one delivery partner.
# Rows themselves travel as plain dicts (the shape the store returns).
# =============================================================================

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class DeliveryStatus(str, Enum):
    """
    Lifecycle states of a delivery.

    Flow:
        ASSIGNED -> ON_THE_WAY_TO_STORE -> ARRIVED_AT_STORE -> PICKED_UP
                 -> ON_THE_WAY -> ARRIVED -> DELIVERED

    FAILED and CANCELLED can be reached from any non-terminal state.
    DELIVERED, FAILED and CANCELLED are terminal.
    """
    ASSIGNED = "ASSIGNED"
    ON_THE_WAY_TO_STORE = "ON_THE_WAY_TO_STORE"
    ARRIVED_AT_STORE = "ARRIVED_AT_STORE"
    PICKED_UP = "PICKED_UP"
    ON_THE_WAY = "ON_THE_WAY"
    ARRIVED = "ARRIVED"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @classmethod
    def parse(cls, value: "str | DeliveryStatus") -> "DeliveryStatus":
        """
        Convert a raw status string into a DeliveryStatus.

        Raises:
            ValueError: If the value is not a known status
        """
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise ValueError(f"Status must be a string, got {type(value).__name__}")
        return cls(value.strip().upper())

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    DeliveryStatus.DELIVERED,
    DeliveryStatus.FAILED,
    DeliveryStatus.CANCELLED,
})

ACTIVE_STATUSES = frozenset(set(DeliveryStatus) - TERMINAL_STATUSES)

# Forward edges of the happy path. Inside each leg the partner may skip a
# step (e.g. report ARRIVED_AT_STORE without ON_THE_WAY_TO_STORE), but
# PICKED_UP can never be skipped.
_FORWARD = {
    DeliveryStatus.ASSIGNED: frozenset({
        DeliveryStatus.ON_THE_WAY_TO_STORE,
        DeliveryStatus.ARRIVED_AT_STORE,
        DeliveryStatus.PICKED_UP,
    }),
    DeliveryStatus.ON_THE_WAY_TO_STORE: frozenset({
        DeliveryStatus.ARRIVED_AT_STORE,
        DeliveryStatus.PICKED_UP,
    }),
    DeliveryStatus.ARRIVED_AT_STORE: frozenset({
        DeliveryStatus.PICKED_UP,
    }),
    DeliveryStatus.PICKED_UP: frozenset({
        DeliveryStatus.ON_THE_WAY,
        DeliveryStatus.ARRIVED,
        DeliveryStatus.DELIVERED,
    }),
    DeliveryStatus.ON_THE_WAY: frozenset({
        DeliveryStatus.ARRIVED,
        DeliveryStatus.DELIVERED,
    }),
    DeliveryStatus.ARRIVED: frozenset({
        DeliveryStatus.DELIVERED,
    }),
}


def can_transition(current: DeliveryStatus, new: DeliveryStatus) -> bool:
    """
    Check whether a delivery may move from `current` to `new`.

    Rules:
    - Repeating the current status is allowed (it is a no-op)
    - Nothing leaves a terminal status
    - FAILED/CANCELLED are reachable from any non-terminal status
    - Otherwise the move must be a forward edge of the happy path:
      ASSIGNED -> {ON_THE_WAY_TO_STORE, ARRIVED_AT_STORE} -> PICKED_UP
               -> {ON_THE_WAY, ARRIVED} -> DELIVERED

    Example:
        can_transition(DeliveryStatus.ASSIGNED, DeliveryStatus.PICKED_UP)  # True
        can_transition(DeliveryStatus.ASSIGNED, DeliveryStatus.DELIVERED)  # False
        can_transition(DeliveryStatus.PICKED_UP, DeliveryStatus.ASSIGNED)  # False
    """
    if new == current:
        return True
    if current.is_terminal:
        return False
    if new in (DeliveryStatus.FAILED, DeliveryStatus.CANCELLED):
        return True
    return new in _FORWARD[current]


# =============================================================================
# Request Models
# =============================================================================

class DeliveryCreate(BaseModel):
    """
    Schema for assigning a delivery partner to a confirmed order.

    Example:
        {
            "order_id": "ord_123",
            "store_id": "shop_9",
            "store_name": "Fresh Cuts",
            "customer_name": "Asha",
            "customer_phone": "+91 90000 00000",
            "customer_address": "12 Hill Road",
            "items": [{"name": "Chicken curry cut", "qty": 1}],
            "total_amount": 420.0,
            "estimated_pickup_time": "2026-10-18T10:15:00Z"
        }
    """

    order_id: str = Field(..., min_length=1, description="Order being delivered")

    # Store the partner picks up from
    store_id: str = Field(..., min_length=1)
    store_name: str = Field(..., min_length=1)
    store_address: str | None = Field(default=None)

    # Customer the partner delivers to
    customer_name: str = Field(..., min_length=1)
    customer_phone: str = Field(..., min_length=1)
    customer_address: str | None = Field(default=None)

    # Opaque line items, stored as-is
    items: list[Any] = Field(default_factory=list)

    total_amount: float = Field(..., ge=0, description="Order total")

    estimated_pickup_time: datetime = Field(
        ...,
        description="When the order is expected to be ready for pickup"
    )


class DeliveryStatusUpdate(BaseModel):
    """
    Schema for a partner-reported status change.

    The status is kept as a plain string so unknown values surface as
    INVALID_STATUS_VALUE rather than a generic validation error.
    """

    status: str = Field(..., description="New delivery status")

    lat: float | None = Field(default=None, ge=-90, le=90)
    lng: float | None = Field(default=None, ge=-180, le=180)
    timestamp: datetime | None = Field(
        default=None,
        description="When the position was read on the device"
    )

    estimated_delivery_time: datetime | None = Field(
        default=None,
        description="Revised ETA, if the partner has one"
    )

    @property
    def location(self) -> tuple[float, float] | None:
        if self.lat is None or self.lng is None:
            return None
        return (self.lat, self.lng)


class PartnerAvailabilityUpdate(BaseModel):
    """Schema for toggling whether a partner accepts new deliveries."""

    is_available: bool


# =============================================================================
# Response Helpers
# =============================================================================

def public_partner_info(partner: dict[str, Any] | None) -> dict[str, Any] | None:
    """Fields of a partner row that customers are allowed to see."""
    if not partner:
        return None
    return {
        "id": partner.get("id"),
        "name": partner.get("full_name"),
        "phone": partner.get("phone"),
        "vehicle_type": partner.get("vehicle_type"),
        "vehicle_number": partner.get("vehicle_number"),
        "rating": partner.get("rating"),
    }
