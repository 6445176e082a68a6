# =============================================================================
# tests/test_supabase_store.py - Supabase Store Tests
# =============================================================================
# This module contains tests for:
# - RPC parameters of the two transactional functions
# - PostgREST query building for reads
# - Mapping of Supabase errors to store errors
# - Row locking in the migration functions
#
# Tests use a mocked Supabase client to avoid database calls.
# =============================================================================

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from app.config import Settings
from lib.delivery_store import DeliveryStoreError, DuplicateOrderError
from lib.supabase_client import SupabaseDeliveryStore


@pytest.fixture
def client():
    """Mocked Supabase client."""
    return MagicMock()


@pytest.fixture
def supabase_store(client):
    return SupabaseDeliveryStore(client)


# =============================================================================
# Client Creation Tests
# =============================================================================

class TestFromSettings:
    """Test store construction from settings."""

    def test_requires_configuration(self):
        settings = Settings(SUPABASE_URL=None, SUPABASE_SERVICE_KEY=None)

        with pytest.raises(DeliveryStoreError) as exc_info:
            SupabaseDeliveryStore.from_settings(settings)

        assert exc_info.value.code == "CLIENT_NOT_CONFIGURED"

    def test_creates_client(self):
        settings = Settings(
            SUPABASE_URL="https://test-project.supabase.co",
            SUPABASE_SERVICE_KEY="test-service-key",
        )

        with patch("lib.supabase_client.create_client") as mock_create:
            store = SupabaseDeliveryStore.from_settings(settings)

        mock_create.assert_called_once_with("https://test-project.supabase.co", "test-service-key")
        assert isinstance(store, SupabaseDeliveryStore)

    def test_client_init_failure(self):
        settings = Settings(
            SUPABASE_URL="https://test-project.supabase.co",
            SUPABASE_SERVICE_KEY="bad",
        )

        with patch("lib.supabase_client.create_client", side_effect=Exception("Invalid API key")):
            with pytest.raises(DeliveryStoreError) as exc_info:
                SupabaseDeliveryStore.from_settings(settings)

        assert exc_info.value.code == "CLIENT_INIT_FAILED"


# =============================================================================
# RPC Tests
# =============================================================================

class TestAssignDelivery:
    """Test the assign_delivery_partner RPC call."""

    def test_rpc_parameters(self, supabase_store, client):
        row = {"id": "D1", "partner_id": "p1", "partner": {"id": "p1"}}
        client.rpc.return_value.execute.return_value = MagicMock(data=row)

        result = supabase_store.assign_delivery({"order_id": "ord_1"}, max_concurrent=3)

        client.rpc.assert_called_once_with(
            "assign_delivery_partner",
            {"p_delivery": {"order_id": "ord_1"}, "p_max_concurrent": 3},
        )
        assert result == row

    def test_no_partner_returns_none(self, supabase_store, client):
        client.rpc.return_value.execute.return_value = MagicMock(data=None)

        assert supabase_store.assign_delivery({"order_id": "ord_1"}, 3) is None

    def test_unique_violation_is_duplicate(self, supabase_store, client):
        client.rpc.return_value.execute.side_effect = Exception(
            "duplicate key value violates unique constraint (23505)"
        )

        with pytest.raises(DuplicateOrderError):
            supabase_store.assign_delivery({"order_id": "ord_1"}, 3)

    def test_other_errors_are_store_errors(self, supabase_store, client):
        client.rpc.return_value.execute.side_effect = Exception("connection refused")

        with pytest.raises(DeliveryStoreError) as exc_info:
            supabase_store.assign_delivery({"order_id": "ord_1"}, 3)

        assert exc_info.value.code == "ASSIGN_DELIVERY_FAILED"


class TestTransitionDelivery:
    """Test the transition_delivery_status RPC call."""

    def test_rpc_parameters(self, supabase_store, client):
        client.rpc.return_value.execute.return_value = MagicMock(data={"id": "D1", "status": "DELIVERED"})

        result = supabase_store.transition_delivery(
            "D1",
            "ARRIVED",
            {"status": "DELIVERED"},
            release_capacity=True,
            count_completion=True,
        )

        client.rpc.assert_called_once_with(
            "transition_delivery_status",
            {
                "p_delivery_id": "D1",
                "p_from_status": "ARRIVED",
                "p_changes": {"status": "DELIVERED"},
                "p_release": True,
                "p_completed": True,
            },
        )
        assert result["status"] == "DELIVERED"

    def test_stale_status_returns_none(self, supabase_store, client):
        client.rpc.return_value.execute.return_value = MagicMock(data=None)

        assert supabase_store.transition_delivery("D1", "ARRIVED", {"status": "DELIVERED"}) is None


# =============================================================================
# Read Tests
# =============================================================================

class TestReads:
    """Test PostgREST reads."""

    def test_get_delivery_embeds_partner(self, supabase_store, client):
        query = client.table.return_value.select.return_value.eq.return_value.single.return_value
        query.execute.return_value = MagicMock(data={"id": "D1", "partner": {"id": "p1"}})

        result = supabase_store.get_delivery("D1")

        client.table.assert_called_with("deliveries")
        client.table.return_value.select.assert_called_with("*, partner:delivery_partners(*)")
        assert result["partner"]["id"] == "p1"

    def test_get_delivery_not_found(self, supabase_store, client):
        query = client.table.return_value.select.return_value.eq.return_value.single.return_value
        query.execute.side_effect = Exception("PGRST116: JSON object requested, multiple (or no) rows returned")

        assert supabase_store.get_delivery("missing") is None

    def test_get_partner_error(self, supabase_store, client):
        query = client.table.return_value.select.return_value.eq.return_value.single.return_value
        query.execute.side_effect = Exception("timeout")

        with pytest.raises(DeliveryStoreError) as exc_info:
            supabase_store.get_partner("p1")

        assert exc_info.value.code == "FETCH_PARTNER_FAILED"

    def test_list_active_filters_terminal(self, supabase_store, client):
        in_query = client.table.return_value.select.return_value.eq.return_value.in_
        in_query.return_value.order.return_value.execute.return_value = MagicMock(data=[{"id": "D1"}])

        result = supabase_store.list_active_deliveries("p1")

        statuses = in_query.call_args[0][1]
        assert in_query.call_args[0][0] == "status"
        assert "DELIVERED" not in statuses
        assert "ASSIGNED" in statuses
        in_query.return_value.order.assert_called_once_with("assigned_at", desc=True)
        assert result == [{"id": "D1"}]

    def test_set_availability_unknown_partner(self, supabase_store, client):
        update = client.table.return_value.update.return_value.eq.return_value
        update.execute.return_value = MagicMock(data=[])

        assert supabase_store.set_partner_availability("missing", True) is None
        client.table.return_value.update.assert_called_once_with({"is_available": True})

    def test_ping_failure(self, supabase_store, client):
        client.table.return_value.select.return_value.limit.return_value.execute.side_effect = Exception("down")

        with pytest.raises(DeliveryStoreError) as exc_info:
            supabase_store.ping()

        assert exc_info.value.code == "PING_FAILED"


# =============================================================================
# Migration Tests
# =============================================================================

MIGRATION = Path(__file__).parent.parent / "supabase" / "migrations" / "20260301090000_delivery_assignment.sql"


def function_body(sql, name):
    start = sql.index(f"FUNCTION {name}")
    return sql[start:sql.index("$$;", start)]


class TestMigration:
    """Test the locking used by the transactional functions."""

    def test_assignment_waits_for_locked_partner(self):
        body = function_body(MIGRATION.read_text(), "assign_delivery_partner")

        assert "FOR UPDATE" in body
        assert "SKIP LOCKED" not in body
