# =============================================================================
# core/services/assignment_service.py - Delivery Assignment Business Logic
# =============================================================================
# Matches confirmed orders to delivery partners and drives the delivery
# lifecycle. Separates HTTP/WebSocket concerns from storage and tracking.
#
# - assign_delivery: first eligible partner, capacity reserved atomically
# - update_delivery_status: validated transition, capacity released once
# - get_delivery / list_active_deliveries: persisted rows + live snapshot
# =============================================================================

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable

from app.exceptions import (
    DeliveryAlreadyAssignedError,
    DeliveryNotFoundError,
    InvalidStatusTransitionError,
    InvalidStatusValueError,
    NoPartnerAvailableError,
    PartnerNotFoundError,
    StorageFailureError,
)
from core.models.delivery import (
    DeliveryCreate,
    DeliveryStatus,
    can_transition,
    public_partner_info,
)
from core.models.tracking import ensure_utc
from core.services.tracking_hub import TrackingHub
from lib.delivery_store import DeliveryStore, DeliveryStoreError, DuplicateOrderError

logger = logging.getLogger(__name__)

Announcer = Callable[[str, dict[str, Any]], Awaitable[Any]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AssignmentService:
    """
    Service for delivery assignment and status changes.

    Storage is authoritative: every change is persisted first and only then
    mirrored into the tracking hub, so a failed write leaves the live cache
    untouched.
    """

    def __init__(
        self,
        store: DeliveryStore,
        hub: TrackingHub,
        announcer: Announcer | None = None,
        max_concurrent_orders: int = 3,
        delivery_buffer: timedelta = timedelta(minutes=30),
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._store = store
        self._hub = hub
        self._announce = announcer or hub.announce
        self._max_concurrent_orders = max_concurrent_orders
        self._delivery_buffer = delivery_buffer
        self._clock = clock

    # -------------------------------------------------------------------------
    # Assignment
    # -------------------------------------------------------------------------

    async def assign_delivery(self, request: DeliveryCreate) -> dict[str, Any]:
        """
        Assign a delivery partner to a confirmed order.

        Picks the first partner that is active, available and under the
        concurrent-order cap. The delivery row and the partner's slot are
        written together or not at all.

        Args:
            request: Order, store and customer details

        Returns:
            The created delivery dict, with the partner row under "partner"

        Raises:
            NoPartnerAvailableError: If no partner is eligible (nothing created)
            DeliveryAlreadyAssignedError: If the order already has a delivery
            StorageFailureError: If the store is unavailable
        """
        pickup = ensure_utc(request.estimated_pickup_time)

        row = {
            "order_id": request.order_id,
            "customer_name": request.customer_name,
            "customer_phone": request.customer_phone,
            "customer_address": request.customer_address,
            "store_id": request.store_id,
            "store_name": request.store_name,
            "store_address": request.store_address,
            "status": DeliveryStatus.ASSIGNED.value,
            "assigned_at": self._clock().isoformat(),
            "estimated_pickup_time": pickup.isoformat(),
            "estimated_delivery_time": (pickup + self._delivery_buffer).isoformat(),
            "items": request.items,
            "total_amount": request.total_amount,
        }

        try:
            delivery = self._store.assign_delivery(row, self._max_concurrent_orders)
        except DuplicateOrderError:
            raise DeliveryAlreadyAssignedError(request.order_id)
        except DeliveryStoreError as e:
            logger.error(f"Failed to assign delivery for order {request.order_id}: {e}")
            raise StorageFailureError("assign_delivery", str(e))

        if delivery is None:
            logger.warning(f"No delivery partner available for order {request.order_id}")
            raise NoPartnerAvailableError(request.order_id)

        partner = delivery.get("partner") or {}
        logger.info(
            f"Assigned delivery {delivery['id']} (order {request.order_id}) "
            f"to partner {delivery['partner_id']}"
        )

        try:
            await self._announce("delivery-created", {
                "deliveryId": delivery["id"],
                "status": delivery["status"],
                "partner": {
                    "name": partner.get("full_name"),
                    "phone": partner.get("phone"),
                },
            })
        except Exception as e:
            # The delivery is committed; a missed announcement is not fatal
            logger.warning(f"Failed to announce delivery {delivery['id']}: {e}")

        return delivery

    # -------------------------------------------------------------------------
    # Status Changes
    # -------------------------------------------------------------------------

    async def update_delivery_status(
        self,
        delivery_id: str,
        status: str | DeliveryStatus,
        location: tuple[float, float] | None = None,
        estimated_delivery_time: datetime | None = None,
        location_timestamp: datetime | None = None,
    ) -> dict[str, Any]:
        """
        Move a delivery to a new status.

        Side effects:
        - PICKED_UP sets picked_up_at
        - DELIVERED sets delivered_at, frees the partner's slot and counts
          the delivery towards the partner's total
        - FAILED/CANCELLED free the partner's slot
        - a location updates the delivery and partner position; it is
          stamped with location_timestamp when given, else the server clock

        Repeating the current status is allowed; the slot is never freed twice.

        Raises:
            InvalidStatusValueError: Unknown status (nothing is changed)
            DeliveryNotFoundError: Unknown delivery
            InvalidStatusTransitionError: The status would move backwards or
                leave a terminal status
            StorageFailureError: If the store is unavailable
        """
        try:
            new_status = DeliveryStatus.parse(status)
        except ValueError:
            raise InvalidStatusValueError(status, [s.value for s in DeliveryStatus])

        delivery = self._fetch_delivery(delivery_id)
        current = DeliveryStatus(delivery["status"])

        if not can_transition(current, new_status):
            raise InvalidStatusTransitionError(delivery_id, current.value, new_status.value)

        received_at = self._clock()
        now = received_at.isoformat()
        located_at = ensure_utc(location_timestamp) if location_timestamp else received_at
        changes: dict[str, Any] = {"status": new_status.value}

        if new_status != current:
            if new_status == DeliveryStatus.PICKED_UP:
                changes["picked_up_at"] = now
            elif new_status == DeliveryStatus.DELIVERED:
                changes["delivered_at"] = now

        if estimated_delivery_time is not None:
            changes["estimated_delivery_time"] = ensure_utc(estimated_delivery_time).isoformat()

        if location is not None:
            lat, lng = location
            changes["current_lat"] = lat
            changes["current_lng"] = lng
            changes["last_location_update"] = located_at.isoformat()

        try:
            updated = self._store.transition_delivery(
                delivery_id,
                from_status=current.value,
                changes=changes,
                release_capacity=new_status.is_terminal,
                count_completion=new_status == DeliveryStatus.DELIVERED,
            )
        except DeliveryStoreError as e:
            logger.error(f"Failed to update delivery {delivery_id} to {new_status.value}: {e}")
            raise StorageFailureError("update_delivery_status", str(e))

        if updated is None:
            # Someone else changed (or removed) the delivery since we read it
            latest = self._fetch_delivery(delivery_id)
            raise InvalidStatusTransitionError(delivery_id, latest["status"], new_status.value)

        logger.info(f"Delivery {delivery_id}: {current.value} -> {new_status.value}")

        # Location goes to the hub first: a terminal status may drop the record
        if location is not None:
            self._record_partner_location(updated["partner_id"], location, located_at.isoformat())
            await self._hub.on_location_update(None, delivery_id, location[0], location[1], located_at)

        await self._hub.on_status_update(
            None,
            delivery_id,
            new_status,
            updated.get("estimated_delivery_time"),
        )

        return updated

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_delivery(self, delivery_id: str) -> dict[str, Any]:
        """
        Get a delivery with its partner's public info and live tracking state.

        Returns:
            {"delivery": ..., "partner": ..., "realtime": ... or None}

        Raises:
            DeliveryNotFoundError: If the delivery doesn't exist
        """
        delivery = self._fetch_delivery(delivery_id)
        partner = delivery.pop("partner", None)

        realtime = self._hub.get_delivery_status(delivery_id)

        return {
            "delivery": delivery,
            "partner": public_partner_info(partner),
            "realtime": realtime.to_dict() if realtime else None,
        }

    def list_active_deliveries(self, partner_id: str) -> list[dict[str, Any]]:
        """Deliveries of one partner that are not finished, newest first."""
        try:
            return self._store.list_active_deliveries(partner_id)
        except DeliveryStoreError as e:
            logger.error(f"Failed to list deliveries for partner {partner_id}: {e}")
            raise StorageFailureError("list_active_deliveries", str(e))

    # -------------------------------------------------------------------------
    # Partners
    # -------------------------------------------------------------------------

    def get_partner(self, partner_id: str) -> dict[str, Any]:
        """
        Get a partner's public info and current load.

        Raises:
            PartnerNotFoundError: If the partner doesn't exist
        """
        try:
            partner = self._store.get_partner(partner_id)
        except DeliveryStoreError as e:
            raise StorageFailureError("get_partner", str(e))

        if not partner:
            raise PartnerNotFoundError(partner_id)

        return {
            **public_partner_info(partner),
            "is_active": partner.get("is_active"),
            "is_available": partner.get("is_available"),
            "current_orders": partner.get("current_orders"),
            "total_deliveries": partner.get("total_deliveries"),
            "max_concurrent_orders": self._max_concurrent_orders,
        }

    def set_partner_availability(self, partner_id: str, is_available: bool) -> dict[str, Any]:
        """
        Toggle whether a partner is offered new deliveries.

        Deliveries already assigned are unaffected.
        """
        try:
            partner = self._store.set_partner_availability(partner_id, is_available)
        except DeliveryStoreError as e:
            logger.error(f"Failed to update availability of partner {partner_id}: {e}")
            raise StorageFailureError("set_partner_availability", str(e))

        if not partner:
            raise PartnerNotFoundError(partner_id)

        logger.info(f"Partner {partner_id} availability set to {is_available}")
        return partner

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _fetch_delivery(self, delivery_id: str) -> dict[str, Any]:
        try:
            delivery = self._store.get_delivery(delivery_id)
        except DeliveryStoreError as e:
            logger.error(f"Failed to fetch delivery {delivery_id}: {e}")
            raise StorageFailureError("get_delivery", str(e))

        if not delivery:
            raise DeliveryNotFoundError(delivery_id)
        return delivery

    def _record_partner_location(
        self,
        partner_id: str,
        location: tuple[float, float],
        at: str,
    ) -> None:
        # Best effort: the delivery row already holds the position
        try:
            self._store.update_partner_location(partner_id, location[0], location[1], at)
        except DeliveryStoreError as e:
            logger.error(f"Failed to record location of partner {partner_id}: {e}")
