# =============================================================================
# core/ - Business Logic Package
# =============================================================================
# This package contains the delivery subsystem's business logic:
# - models/: Pydantic schemas, lifecycle rules and tracking records
# - services/: Assignment service and the live tracking hub
#
# Services receive their store and transport through their constructors,
# which keeps the logic testable without a database or sockets.
# =============================================================================
