# =============================================================================
# app/main.py - FastAPI Application Entry Point
# =============================================================================
# This is the main entry point for the Delivery Tracking API.
# It configures the FastAPI application with middleware, routers, and handlers.
#
# Usage:
#   uvicorn app.main:app --reload --port 8080
# =============================================================================

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.exceptions import (
    MarketplaceException,
    marketplace_exception_handler,
    validation_exception_handler,
)
from app.routers import deliveries, delivery_partners, health
from app.websocket import ConnectionManager, RedisEventRelay
from app.websocket import routes as websocket_routes
from core.services import AssignmentService, TrackingHub
from lib.delivery_store import DeliveryStore, InMemoryDeliveryStore
from lib.supabase_client import SupabaseDeliveryStore

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def build_store() -> DeliveryStore:
    """Create the configured delivery store."""
    if settings.STORAGE_BACKEND == "memory":
        logger.warning("Using in-memory delivery store; data is lost on restart")
        return InMemoryDeliveryStore()

    return SupabaseDeliveryStore.from_settings(settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Runs on startup and shutdown:
    - Startup: Build store, connection manager, tracking hub and services,
      start the Redis relay listener if enabled
    - Shutdown: Stop the listener, cancel pending tracking cleanups
    """
    # Startup
    logger.info(f"Starting Delivery Tracking API in {settings.ENVIRONMENT} mode")
    logger.info(f"CORS origins: {settings.cors_origins_list}")

    store = build_store()
    manager = ConnectionManager(send_timeout=settings.WS_SEND_TIMEOUT_SECONDS)
    hub = TrackingHub(manager, retention_seconds=settings.TRACKING_RETENTION_SECONDS)

    relay = None
    relay_task = None
    announcer = hub.announce

    if settings.EVENT_RELAY == "redis":
        # Every process rebroadcasts what any process publishes
        relay = RedisEventRelay(settings.REDIS_URL)
        relay_task = asyncio.create_task(relay.listen(hub.announce))
        announcer = relay.publish

    app.state.delivery_store = store
    app.state.connection_manager = manager
    app.state.tracking_hub = hub
    app.state.assignment_service = AssignmentService(
        store,
        hub,
        announcer=announcer,
        max_concurrent_orders=settings.MAX_CONCURRENT_ORDERS,
        delivery_buffer=timedelta(minutes=settings.DELIVERY_BUFFER_MINUTES),
    )

    yield

    # Shutdown
    logger.info("Shutting down Delivery Tracking API")

    if relay_task:
        relay_task.cancel()
        try:
            await relay_task
        except asyncio.CancelledError:
            pass
    if relay:
        await relay.close()

    await hub.close()


# Create FastAPI application
app = FastAPI(
    title="Delivery Tracking API",
    description="""
## Delivery Partner Assignment & Live Tracking

Assigns delivery partners to confirmed orders and streams their progress
to customers in real time.

### How It Works

1. **Assign** - `POST /api/v1/deliveries` picks the first available partner
   under the concurrent-order cap
2. **Progress** - the partner app reports status via REST or WebSocket
3. **Track** - customers connect to `/ws/tracking` and send `track-delivery`

### Delivery Lifecycle

| Status | Meaning |
|--------|---------|
| **ASSIGNED** | Partner accepted the order |
| **PICKED_UP** | Order collected from the store |
| **DELIVERED** | Handed to the customer (frees the partner's slot) |
| **FAILED / CANCELLED** | Ended early (frees the partner's slot) |
""",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    openapi_tags=[
        {
            "name": "Deliveries",
            "description": "Assign partners and update delivery status",
        },
        {
            "name": "Delivery Partners",
            "description": "Partner load and availability",
        },
        {
            "name": "WebSocket",
            "description": "Real-time delivery tracking",
        },
        {
            "name": "Health",
            "description": "Service health checks",
        },
    ],
)


# =============================================================================
# Middleware
# =============================================================================

# CORS middleware - allows cross-origin requests from the customer and
# partner apps
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list if settings.is_production else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Exception Handlers
# =============================================================================

@app.exception_handler(MarketplaceException)
async def handle_marketplace_exception(request: Request, exc: MarketplaceException):
    """Handle custom delivery API exceptions."""
    return await marketplace_exception_handler(request, exc)


@app.exception_handler(RequestValidationError)
async def handle_validation_exception(request: Request, exc: RequestValidationError):
    """Handle request body/path validation errors."""
    return await validation_exception_handler(request, exc)


@app.exception_handler(Exception)
async def handle_general_exception(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    logger.exception(f"Unexpected error: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "detail": "An unexpected error occurred",
            "code": "INTERNAL_ERROR",
        }
    )


# =============================================================================
# Routers
# =============================================================================

# Health check endpoints
app.include_router(
    health.router,
    prefix="/api/v1",
    tags=["Health"]
)

# Delivery endpoints
app.include_router(
    deliveries.router,
    prefix="/api/v1/deliveries",
    tags=["Deliveries"]
)

# Delivery partner endpoints
app.include_router(
    delivery_partners.router,
    prefix="/api/v1/delivery-partners",
    tags=["Delivery Partners"]
)

# WebSocket endpoints (Real-time tracking)
app.include_router(
    websocket_routes.router,
    tags=["WebSocket"]
)


# =============================================================================
# Root Endpoint
# =============================================================================

@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint - returns API info.
    """
    return {
        "name": "Delivery Tracking API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/v1/health",
        "tracking": "/ws/tracking",
    }
