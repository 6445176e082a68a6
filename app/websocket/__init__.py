# =============================================================================
# app/websocket/__init__.py - WebSocket Module
# =============================================================================
# Provides real-time delivery tracking over WebSockets.
#
# Usage:
#   # Built once in the app lifespan and shared through app.state
#   from app.websocket import ConnectionManager
#
#   manager = ConnectionManager(send_timeout=5.0)
#   await manager.broadcast("delivery-D1", "delivery-status", {"status": "PICKED_UP"})
#
#   # Relay announcements between API processes (EVENT_RELAY=redis)
#   from app.websocket import RedisEventRelay
#
#   relay = RedisEventRelay(settings.REDIS_URL)
#   await relay.publish("delivery-created", {"deliveryId": "D1"})
# =============================================================================

from app.websocket.manager import ConnectionManager
from app.websocket.broadcast import DELIVERY_EVENTS_CHANNEL, RedisEventRelay

__all__ = [
    "ConnectionManager",
    "RedisEventRelay",
    "DELIVERY_EVENTS_CHANNEL",
]
