# =============================================================================
# core/models/ - Pydantic Data Models
# =============================================================================
# This package contains the schemas and records of the delivery subsystem:
# - delivery.py: Delivery lifecycle enum, transition rules, REST inputs
# - tracking.py: In-memory tracking records and WebSocket event payloads
#
# These models define the "contract" between API and clients.
# =============================================================================

# -----------------------------------------------------------------------------
# Delivery Models - Assignment and lifecycle
# -----------------------------------------------------------------------------
from .delivery import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    DeliveryCreate,
    DeliveryStatus,
    DeliveryStatusUpdate,
    PartnerAvailabilityUpdate,
    can_transition,
    public_partner_info,
)

# -----------------------------------------------------------------------------
# Tracking Models - Live location/status fan-out
# -----------------------------------------------------------------------------
from .tracking import (
    DeliveryTracking,
    LocationUpdateEvent,
    PartnerLocation,
    StatusUpdateEvent,
    TrackDeliveryEvent,
    delivery_topic,
    ensure_utc,
)

__all__ = [
    # Delivery
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
    "DeliveryCreate",
    "DeliveryStatus",
    "DeliveryStatusUpdate",
    "PartnerAvailabilityUpdate",
    "can_transition",
    "public_partner_info",
    # Tracking
    "DeliveryTracking",
    "LocationUpdateEvent",
    "PartnerLocation",
    "StatusUpdateEvent",
    "TrackDeliveryEvent",
    "delivery_topic",
    "ensure_utc",
]
