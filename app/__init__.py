# =============================================================================
# app/ - FastAPI Application Package
# =============================================================================
# This package contains the FastAPI web application:
# - main.py: App entry point, lifespan wiring, middleware, error handlers
# - config.py: Environment variable loading and settings
# - routers/: REST endpoint definitions organized by feature
# - websocket/: Tracking socket, connection manager, Redis relay
#
# The app layer is thin - it handles HTTP/WebSocket concerns and delegates
# business logic to the core/ package.
# =============================================================================
