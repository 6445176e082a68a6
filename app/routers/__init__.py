# =============================================================================
# app/routers/ - API Route Definitions
# =============================================================================
# This package contains FastAPI routers organized by feature:
# - health.py: Health check endpoints
# - deliveries.py: Assignment, status updates and delivery lookups
# - delivery_partners.py: Partner load and availability
#
# Each router is mounted in main.py with a URL prefix.
# =============================================================================

from . import health
from . import deliveries
from . import delivery_partners

__all__ = [
    "health",
    "deliveries",
    "delivery_partners",
]
