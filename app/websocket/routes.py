# =============================================================================
# app/websocket/routes.py - WebSocket Routes
# =============================================================================
# WebSocket endpoint for real-time delivery tracking.
#
# Connect: ws://host/ws/tracking
#
# Every message (both directions) is a JSON envelope:
#   {"event": "<name>", "data": <payload>}
#
# Client -> server:
#   - location-update  {"deliveryId", "lat", "lng", "timestamp"?}   (partner)
#   - delivery-status  {"deliveryId", "status", "estimatedDeliveryTime"?} (partner)
#   - track-delivery   "<deliveryId>" or {"deliveryId"}             (customer)
#   - stop-tracking    "<deliveryId>" or {"deliveryId"}             (customer)
#   - ping
#
# Server -> client:
#   - connected, partner-location, delivery-status, delivery-created,
#     error, pong
# =============================================================================

import json
import logging
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from app.dependencies import (
    AssignmentServiceDep,
    ConnectionManagerDep,
    TrackingHubDep,
)
from app.exceptions import MarketplaceException
from core.models.tracking import (
    LocationUpdateEvent,
    StatusUpdateEvent,
    TrackDeliveryEvent,
)
from core.services.assignment_service import AssignmentService
from core.services.tracking_hub import TrackingHub

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws/tracking")
async def tracking_websocket(
    websocket: WebSocket,
    manager: ConnectionManagerDep,
    hub: TrackingHubDep,
    service: AssignmentServiceDep,
):
    """
    WebSocket endpoint for delivery tracking.

    Partners push location and status; customers subscribe to a delivery
    and immediately receive its current status and last known location.

    Connection URL:
        ws://localhost:8080/ws/tracking

    Example (customer):
        -> {"event": "track-delivery", "data": "550e8400-..."}
        <- {"event": "delivery-status", "data": {"status": "PICKED_UP",
                                                 "estimatedDeliveryTime": "..."}}
        <- {"event": "partner-location", "data": {"lat": 17.45, "lng": 78.39,
                                                  "timestamp": "..."}}
    """
    connection_id = await manager.connect(websocket)
    hub.on_connect(connection_id)

    try:
        await manager.send_to(connection_id, "connected", {"connectionId": connection_id})

        while True:
            raw = await websocket.receive_text()

            try:
                message = json.loads(raw)
                event = message["event"]
                data = message.get("data")
            except (json.JSONDecodeError, KeyError, TypeError, AttributeError) as e:
                logger.warning(f"Dropping malformed message from {connection_id}: {e}")
                continue

            try:
                await _dispatch(connection_id, event, data, manager, hub, service)
            except ValidationError as e:
                logger.warning(
                    f"Dropping invalid {event!r} payload from {connection_id}: "
                    f"{e.error_count()} validation error(s)"
                )

    except WebSocketDisconnect:
        logger.info(f"WebSocket client {connection_id} disconnected")
    finally:
        manager.disconnect(connection_id)
        await hub.on_disconnect(connection_id)


async def _dispatch(
    connection_id: str,
    event: str,
    data: Any,
    manager,
    hub: TrackingHub,
    service: AssignmentService,
) -> None:
    """Route one inbound event to the hub or the assignment service."""
    if event == "location-update":
        payload = LocationUpdateEvent.model_validate(data)
        await hub.on_location_update(
            connection_id,
            payload.delivery_id,
            payload.lat,
            payload.lng,
            payload.timestamp,
        )

    elif event == "delivery-status":
        payload = StatusUpdateEvent.model_validate(data)
        try:
            await service.update_delivery_status(
                payload.delivery_id,
                payload.status,
                estimated_delivery_time=payload.estimated_delivery_time,
            )
        except MarketplaceException as e:
            logger.warning(f"Rejected status update from {connection_id}: {e.message}")
            await manager.send_to(connection_id, "error", {
                "event": event,
                "deliveryId": payload.delivery_id,
                **e.to_dict(),
            })

    elif event == "track-delivery":
        payload = TrackDeliveryEvent.model_validate(data)
        status, eta = _persisted_state(service, payload.delivery_id)
        await hub.subscribe(
            connection_id,
            payload.delivery_id,
            status=status,
            estimated_delivery_time=eta,
        )

    elif event == "stop-tracking":
        payload = TrackDeliveryEvent.model_validate(data)
        await hub.unsubscribe(connection_id, payload.delivery_id)

    elif event == "ping":
        await manager.send_to(connection_id, "pong", {})

    else:
        logger.debug(f"Ignoring unknown event {event!r} from {connection_id}")


def _persisted_state(service: AssignmentService, delivery_id: str) -> tuple[str | None, str | None]:
    """Stored status and ETA of a delivery, or (None, None) if unavailable."""
    try:
        delivery = service.get_delivery(delivery_id)["delivery"]
    except MarketplaceException as e:
        logger.debug(f"No stored state for delivery {delivery_id}: {e.code}")
        return None, None

    return delivery.get("status"), delivery.get("estimated_delivery_time")


@router.get("/ws/status")
async def websocket_status(manager: ConnectionManagerDep, hub: TrackingHubDep):
    """
    Get WebSocket connection statistics.

    Returns:
        dict: Connection counts and tracked deliveries
    """
    topics = manager.get_active_topics()
    return {
        "total_connections": manager.get_connection_count(),
        "active_topics": topics,
        "topic_count": len(topics),
        "tracked_deliveries": hub.active_delivery_count,
    }
