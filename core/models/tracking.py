# =============================================================================
# core/models/tracking.py - Live Tracking Records and Events
# =============================================================================
# In-memory tracking state for in-flight deliveries, plus the schemas of the
# WebSocket events that mutate it:
# - PartnerLocation / DeliveryTracking: per-delivery cache held by the hub
# - LocationUpdateEvent / StatusUpdateEvent: sent by delivery partners
# - TrackDeliveryEvent: sent by customers to start/stop watching a delivery
#
# Event payloads use camelCase on the wire (deliveryId, estimatedDeliveryTime)
# because that is what the mobile clients send.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .delivery import DeliveryStatus


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so readings can be compared."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def delivery_topic(delivery_id: str) -> str:
    """Broadcast group name for everyone watching one delivery."""
    return f"delivery-{delivery_id}"


# =============================================================================
# Tracking Records
# =============================================================================

@dataclass
class PartnerLocation:
    """Last reported position of the partner carrying a delivery."""
    lat: float
    lng: float
    timestamp: datetime

    def to_payload(self) -> dict[str, Any]:
        return {
            "lat": self.lat,
            "lng": self.lng,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class DeliveryTracking:
    """
    Live state of one delivery, as seen by the tracking hub.

    This is a cache and broadcast surface only. The persisted delivery row
    stays authoritative for status.
    """
    delivery_id: str
    status: DeliveryStatus = DeliveryStatus.ASSIGNED
    partner_location: PartnerLocation | None = None
    estimated_delivery_time: str | None = None
    subscribers: set[str] = field(default_factory=set)

    def status_payload(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "estimatedDeliveryTime": self.estimated_delivery_time,
        }

    def snapshot(self) -> DeliveryTracking:
        """Detached copy that callers may read without holding the hub lock."""
        return replace(
            self,
            partner_location=replace(self.partner_location) if self.partner_location else None,
            subscribers=set(self.subscribers),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "deliveryId": self.delivery_id,
            "status": self.status.value,
            "estimatedDeliveryTime": self.estimated_delivery_time,
            "partnerLocation": self.partner_location.to_payload() if self.partner_location else None,
            "subscriberCount": len(self.subscribers),
        }


# =============================================================================
# WebSocket Event Payloads
# =============================================================================

class TrackingEvent(BaseModel):
    """Base for inbound event payloads (camelCase on the wire)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )

    delivery_id: str = Field(..., min_length=1)

    @field_validator("delivery_id", mode="before")
    @classmethod
    def _coerce_delivery_id(cls, value: Any) -> Any:
        # Some clients send numeric ids
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class LocationUpdateEvent(TrackingEvent):
    """`location-update` sent by a delivery partner."""

    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    timestamp: datetime | None = None

    @field_validator("timestamp")
    @classmethod
    def _normalize_timestamp(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value) if value is not None else None


class StatusUpdateEvent(TrackingEvent):
    """`delivery-status` sent by a delivery partner."""

    status: str = Field(..., min_length=1)
    estimated_delivery_time: datetime | None = None

    @field_validator("estimated_delivery_time", mode="before")
    @classmethod
    def _blank_eta_is_none(cls, value: Any) -> Any:
        if value == "":
            return None
        return value


class TrackDeliveryEvent(TrackingEvent):
    """
    `track-delivery` / `stop-tracking` sent by a customer.

    Accepts either {"deliveryId": "..."} or the bare id.
    """

    @model_validator(mode="before")
    @classmethod
    def _accept_bare_id(cls, data: Any) -> Any:
        if isinstance(data, (str, int)) and not isinstance(data, bool):
            return {"deliveryId": data}
        return data
