# =============================================================================
# tests/ - Test Suite
# =============================================================================
# This package contains all tests for the Delivery Tracking API:
# - test_models.py: Status rules, request schemas, WebSocket payloads
# - test_tracking_hub.py: Live tracking fan-out, replay, retention
# - test_assignment_service.py: Assignment and lifecycle business logic
# - test_delivery_store.py: In-memory store atomicity
# - test_supabase_store.py: Supabase store with a mocked client
# - test_config.py: Settings parsing
# - test_api.py: REST and WebSocket endpoints through TestClient
#
# Run tests with: pytest
# =============================================================================
