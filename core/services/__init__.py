# =============================================================================
# core/services/__init__.py - Service Layer Exports
# =============================================================================

from .tracking_hub import TrackingHub, TrackingTransport
from .assignment_service import AssignmentService

__all__ = [
    "TrackingHub",
    "TrackingTransport",
    "AssignmentService",
]
