# =============================================================================
# tests/conftest.py - Pytest Configuration
# =============================================================================
# This module provides pytest fixtures and configuration for all tests.
#
# Key features:
# - Sets up test environment variables before any imports
# - Provides a recording transport so hub broadcasts can be asserted on
# - Provides in-memory store and service fixtures
# =============================================================================

import os

# =============================================================================
# Set up test environment BEFORE any imports
# =============================================================================
# This must happen before importing app.config which loads settings immediately

os.environ.setdefault("STORAGE_BACKEND", "memory")
os.environ.setdefault("EVENT_RELAY", "local")
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("DEBUG", "false")

from datetime import datetime, timezone
from typing import Any

import pytest

from lib.delivery_store import InMemoryDeliveryStore


# =============================================================================
# Fakes
# =============================================================================

class RecordingTransport:
    """
    In-memory stand-in for the WebSocket connection manager.

    Records every message instead of sending it:
    - sent: (connection_id, event, data) for direct sends
    - broadcasts: (topic, event, data) for topic broadcasts
    - announcements: (event, data) for broadcast_all
    """

    def __init__(self):
        self.topics: dict[str, set[str]] = {}
        self.sent: list[tuple[str, str, dict[str, Any]]] = []
        self.broadcasts: list[tuple[str, str, dict[str, Any]]] = []
        self.announcements: list[tuple[str, dict[str, Any]]] = []

    def join(self, connection_id: str, topic: str) -> None:
        self.topics.setdefault(topic, set()).add(connection_id)

    def leave(self, connection_id: str, topic: str) -> None:
        members = self.topics.get(topic)
        if members is not None:
            members.discard(connection_id)
            if not members:
                del self.topics[topic]

    async def send_to(self, connection_id: str, event: str, data: dict[str, Any]) -> bool:
        self.sent.append((connection_id, event, data))
        return True

    async def broadcast(self, topic: str, event: str, data: dict[str, Any]) -> int:
        self.broadcasts.append((topic, event, data))
        return len(self.topics.get(topic, ()))

    async def broadcast_all(self, event: str, data: dict[str, Any]) -> int:
        self.announcements.append((event, data))
        return 0

    def events_for(self, connection_id: str) -> list[str]:
        return [event for cid, event, _ in self.sent if cid == connection_id]


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def transport():
    """Recording transport for TrackingHub."""
    return RecordingTransport()


@pytest.fixture
def store():
    """Empty in-memory delivery store."""
    return InMemoryDeliveryStore()


@pytest.fixture
def fixed_now():
    """A fixed 'now' for deterministic timestamps."""
    return datetime(2026, 10, 18, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def delivery_request_data():
    """Valid body for POST /api/v1/deliveries."""
    return {
        "order_id": "ord_1001",
        "store_id": "shop_9",
        "store_name": "Fresh Cuts",
        "store_address": "4 Market Street",
        "customer_name": "Asha",
        "customer_phone": "+91 90000 00000",
        "customer_address": "12 Hill Road",
        "items": [{"name": "Chicken curry cut", "qty": 1}],
        "total_amount": 420.0,
        "estimated_pickup_time": "2026-10-18T10:15:00Z",
    }
