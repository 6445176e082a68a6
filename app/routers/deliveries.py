# =============================================================================
# app/routers/deliveries.py - Delivery Management Endpoints
# =============================================================================
# Handles assignment of partners to confirmed orders, partner-reported status
# changes, and delivery lookups for customer tracking screens.
# =============================================================================

from typing import Annotated

from fastapi import APIRouter, Path

from app.dependencies import AssignmentServiceDep
from core.models.delivery import DeliveryCreate, DeliveryStatusUpdate

router = APIRouter()


# =============================================================================
# Endpoints
# =============================================================================

@router.post("")
async def create_delivery(
    request: DeliveryCreate,
    service: AssignmentServiceDep,
):
    """
    Assign a delivery partner to a confirmed order.

    Picks the first active, available partner under the concurrent-order cap.
    Returns 503 with code NO_PARTNER_AVAILABLE when nobody can take it;
    retry later or queue the order.
    """
    delivery = await service.assign_delivery(request)

    return {"delivery": delivery}


@router.put("/{delivery_id}/status")
async def update_delivery_status(
    delivery_id: Annotated[str, Path(description="Delivery ID")],
    request: DeliveryStatusUpdate,
    service: AssignmentServiceDep,
):
    """
    Update delivery status (called by the delivery partner app).

    Optionally carries the partner's current position, which is stored on
    the delivery and broadcast to customers tracking it. The position is
    stamped with its own timestamp when given, else the receive time.
    """
    delivery = await service.update_delivery_status(
        delivery_id,
        request.status,
        location=request.location,
        estimated_delivery_time=request.estimated_delivery_time,
        location_timestamp=request.timestamp,
    )

    return {"delivery": delivery}


@router.get("/partner/{partner_id}")
async def list_partner_deliveries(
    partner_id: Annotated[str, Path(description="Delivery partner ID")],
    service: AssignmentServiceDep,
):
    """
    Get active deliveries for a partner.

    Finished deliveries (DELIVERED, FAILED, CANCELLED) are excluded.
    Newest assignment first.
    """
    deliveries = service.list_active_deliveries(partner_id)

    return {"deliveries": deliveries}


@router.get("/{delivery_id}")
async def get_delivery(
    delivery_id: Annotated[str, Path(description="Delivery ID")],
    service: AssignmentServiceDep,
):
    """
    Get delivery details (for customer tracking).

    Returns the persisted delivery, the partner's public contact info, and
    the live tracking state if anyone has reported or watched it recently.
    """
    return service.get_delivery(delivery_id)
