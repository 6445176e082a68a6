# =============================================================================
# app/dependencies.py - Shared Dependencies
# =============================================================================
# FastAPI dependency injection for shared resources.
# The services are built once in the app lifespan (see main.py) and kept on
# app.state; these helpers hand them to route handlers using Depends().
# =============================================================================

from typing import Annotated

from fastapi import Depends
from starlette.requests import HTTPConnection

from app.websocket.manager import ConnectionManager
from core.services.assignment_service import AssignmentService
from core.services.tracking_hub import TrackingHub
from lib.delivery_store import DeliveryStore


def get_assignment_service(connection: HTTPConnection) -> AssignmentService:
    """Get the assignment service (works for HTTP and WebSocket routes)."""
    return connection.app.state.assignment_service


def get_tracking_hub(connection: HTTPConnection) -> TrackingHub:
    """Get the process-wide tracking hub."""
    return connection.app.state.tracking_hub


def get_connection_manager(connection: HTTPConnection) -> ConnectionManager:
    """Get the WebSocket connection manager."""
    return connection.app.state.connection_manager


def get_delivery_store(connection: HTTPConnection) -> DeliveryStore:
    """Get the delivery store."""
    return connection.app.state.delivery_store


# Type aliases for dependency injection
AssignmentServiceDep = Annotated[AssignmentService, Depends(get_assignment_service)]
TrackingHubDep = Annotated[TrackingHub, Depends(get_tracking_hub)]
ConnectionManagerDep = Annotated[ConnectionManager, Depends(get_connection_manager)]
DeliveryStoreDep = Annotated[DeliveryStore, Depends(get_delivery_store)]
