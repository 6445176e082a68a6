# =============================================================================
# tests/test_delivery_store.py - In-Memory Store Tests
# =============================================================================
# This module contains tests for:
# - Atomic partner selection under concurrent assignment
# - Compare-and-set status transitions
# - Capacity release happening at most once, never below zero
# =============================================================================

import threading
import uuid

import pytest

from lib.delivery_store import DuplicateOrderError, InMemoryDeliveryStore


def delivery_row(order_id=None, status="ASSIGNED", assigned_at="2026-10-18T10:00:00+00:00"):
    return {
        "order_id": order_id or f"ord_{uuid.uuid4().hex[:8]}",
        "status": status,
        "assigned_at": assigned_at,
    }


# =============================================================================
# Assignment Tests
# =============================================================================

class TestAssign:
    """Test atomic assignment."""

    def test_partner_embedded_in_result(self, store):
        partner = store.add_partner(full_name="Ravi")

        delivery = store.assign_delivery(delivery_row("ord_1"), max_concurrent=3)

        assert delivery["partner"]["id"] == partner["id"]
        assert delivery["partner"]["current_orders"] == 1
        assert delivery["capacity_released"] is False

    def test_returns_none_without_writing(self, store):
        store.add_partner(full_name="Full", current_orders=3)

        assert store.assign_delivery(delivery_row("ord_1"), max_concurrent=3) is None
        assert store.list_active_deliveries("anyone") == []

    def test_duplicate_order(self, store):
        store.add_partner(full_name="Ravi")
        store.assign_delivery(delivery_row("ord_1"), max_concurrent=3)

        with pytest.raises(DuplicateOrderError):
            store.assign_delivery(delivery_row("ord_1"), max_concurrent=3)

    def test_concurrent_assignments_respect_cap(self):
        store = InMemoryDeliveryStore()
        partners = [store.add_partner(full_name=f"P{i}") for i in range(3)]
        results = []
        results_lock = threading.Lock()

        def worker(n):
            delivery = store.assign_delivery(delivery_row(f"ord_{n}"), max_concurrent=3)
            with results_lock:
                results.append(delivery)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(20)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assigned = [d for d in results if d is not None]
        assert len(assigned) == 9
        for partner in partners:
            row = store.get_partner(partner["id"])
            assert row["current_orders"] == 3
            assert len(store.list_active_deliveries(partner["id"])) == 3

    def test_assignment_racing_release_finds_free_partner(self):
        store = InMemoryDeliveryStore()
        partner = store.add_partner(full_name="Only")
        first = store.assign_delivery(delivery_row("ord_0"), max_concurrent=3)
        start = threading.Barrier(3)
        results = []
        results_lock = threading.Lock()

        def release():
            start.wait()
            store.transition_delivery(
                first["id"], "ASSIGNED", {"status": "CANCELLED"}, release_capacity=True
            )

        def assign(n):
            start.wait()
            delivery = store.assign_delivery(delivery_row(f"ord_{n}"), max_concurrent=3)
            with results_lock:
                results.append(delivery)

        threads = [threading.Thread(target=release)]
        threads += [threading.Thread(target=assign, args=(n,)) for n in (1, 2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        # Two slots were free throughout, so neither assignment may miss
        assert all(d is not None and d["partner_id"] == partner["id"] for d in results)
        assert store.get_partner(partner["id"])["current_orders"] == 2

    def test_returned_rows_are_copies(self, store):
        partner = store.add_partner(full_name="Ravi")

        store.get_partner(partner["id"])["current_orders"] = 99

        assert store.get_partner(partner["id"])["current_orders"] == 0


# =============================================================================
# Transition Tests
# =============================================================================

class TestTransition:
    """Test compare-and-set transitions."""

    def test_wrong_from_status_is_rejected(self, store):
        store.add_partner(full_name="Ravi")
        delivery = store.assign_delivery(delivery_row(), max_concurrent=3)

        result = store.transition_delivery(delivery["id"], "PICKED_UP", {"status": "ON_THE_WAY"})

        assert result is None
        assert store.get_delivery(delivery["id"])["status"] == "ASSIGNED"

    def test_unknown_delivery(self, store):
        assert store.transition_delivery("missing", "ASSIGNED", {"status": "PICKED_UP"}) is None

    def test_release_happens_once(self, store):
        partner = store.add_partner(full_name="Ravi")
        delivery = store.assign_delivery(delivery_row(), max_concurrent=3)

        for from_status in ("ASSIGNED", "DELIVERED"):
            store.transition_delivery(
                delivery["id"],
                from_status,
                {"status": "DELIVERED"},
                release_capacity=True,
                count_completion=True,
            )

        row = store.get_partner(partner["id"])
        assert row["current_orders"] == 0
        assert row["total_deliveries"] == 1

    def test_release_never_goes_negative(self, store):
        partner = store.add_partner(full_name="Ravi")
        delivery = store.assign_delivery(delivery_row(), max_concurrent=3)
        store._partners[partner["id"]]["current_orders"] = 0

        updated = store.transition_delivery(
            delivery["id"], "ASSIGNED", {"status": "FAILED"}, release_capacity=True
        )

        assert updated["capacity_released"] is True
        assert store.get_partner(partner["id"])["current_orders"] == 0

    def test_active_list_newest_first(self, store):
        partner = store.add_partner(full_name="Ravi")
        store.assign_delivery(delivery_row("ord_old", assigned_at="2026-10-18T09:00:00+00:00"), 3)
        store.assign_delivery(delivery_row("ord_new", assigned_at="2026-10-18T11:00:00+00:00"), 3)

        active = store.list_active_deliveries(partner["id"])

        assert [d["order_id"] for d in active] == ["ord_new", "ord_old"]


class TestPartners:
    """Test partner updates."""

    def test_set_availability(self, store):
        partner = store.add_partner(full_name="Ravi")

        updated = store.set_partner_availability(partner["id"], False)

        assert updated["is_available"] is False
        assert store.set_partner_availability("missing", True) is None

    def test_update_location(self, store):
        partner = store.add_partner(full_name="Ravi")

        store.update_partner_location(partner["id"], 17.4, 78.3, "2026-10-18T10:00:00+00:00")

        row = store.get_partner(partner["id"])
        assert (row["current_lat"], row["current_lng"]) == (17.4, 78.3)
