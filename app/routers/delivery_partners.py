# =============================================================================
# app/routers/delivery_partners.py - Delivery Partner Endpoints
# =============================================================================
# Partner load and availability. Registration and login live in the partner
# onboarding service.
# =============================================================================

from typing import Annotated

from fastapi import APIRouter, Path

from app.dependencies import AssignmentServiceDep
from core.models.delivery import PartnerAvailabilityUpdate

router = APIRouter()


@router.get("/{partner_id}")
async def get_partner(
    partner_id: Annotated[str, Path(description="Delivery partner ID")],
    service: AssignmentServiceDep,
):
    """Get a partner's public profile and current load."""
    return {"partner": service.get_partner(partner_id)}


@router.put("/{partner_id}/availability")
async def update_availability(
    partner_id: Annotated[str, Path(description="Delivery partner ID")],
    request: PartnerAvailabilityUpdate,
    service: AssignmentServiceDep,
):
    """
    Update partner availability.

    Unavailable partners keep their current deliveries but are skipped
    for new assignments.
    """
    partner = service.set_partner_availability(partner_id, request.is_available)

    return {
        "partner_id": partner["id"],
        "is_available": partner["is_available"],
        "current_orders": partner["current_orders"],
    }
