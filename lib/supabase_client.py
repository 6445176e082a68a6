# =============================================================================
# lib/supabase_client.py - Supabase Delivery Store
# =============================================================================
# DeliveryStore backed by Postgres through Supabase.
#
# Plain reads and single-row updates go through the PostgREST query builder.
# The two operations that touch a partner's capacity counter are Postgres
# functions (see supabase/migrations/), called via RPC so the row locking and
# the counter change happen inside one database transaction:
# - assign_delivery_partner: SELECT ... FOR UPDATE, increment,
#   insert delivery
# - transition_delivery_status: compare-and-set status, release the slot once
#
# Usage:
#   from lib.supabase_client import SupabaseDeliveryStore
#   store = SupabaseDeliveryStore.from_settings(settings)
#   delivery = store.get_delivery(delivery_id)
# =============================================================================

from __future__ import annotations

import logging
from typing import Any

from supabase import create_client, Client

from core.models.delivery import ACTIVE_STATUSES
from lib.delivery_store import DeliveryStore, DeliveryStoreError, DuplicateOrderError

# Set up logging for this module
logger = logging.getLogger(__name__)

DELIVERIES_TABLE = "deliveries"
PARTNERS_TABLE = "delivery_partners"

# Delivery row with its partner embedded under "partner"
DELIVERY_WITH_PARTNER = f"*, partner:{PARTNERS_TABLE}(*)"


def _is_not_found(error: Exception) -> bool:
    # PostgREST code for .single() matching no rows
    return "PGRST116" in str(error)


def _is_unique_violation(error: Exception) -> bool:
    return "23505" in str(error)


class SupabaseDeliveryStore(DeliveryStore):
    """
    Typed wrapper for Supabase delivery operations.

    Uses the service_role key, which bypasses Row Level Security (RLS).
    This is appropriate for server-side operations.

    Example:
        store = SupabaseDeliveryStore(create_client(url, key))
        deliveries = store.list_active_deliveries(partner_id)
    """

    def __init__(self, client: Client):
        self._client = client

    @classmethod
    def from_settings(cls, settings) -> "SupabaseDeliveryStore":
        """
        Create the store from application settings.

        Raises:
            DeliveryStoreError: If Supabase is not configured or the client
                cannot be created
        """
        if not settings.supabase_configured:
            raise DeliveryStoreError(
                message="SUPABASE_URL and SUPABASE_SERVICE_KEY must be set when STORAGE_BACKEND=supabase",
                code="CLIENT_NOT_CONFIGURED",
            )
        try:
            client = create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_KEY)
        except Exception as e:
            raise DeliveryStoreError(
                message=f"Failed to create Supabase client: {e}",
                code="CLIENT_INIT_FAILED",
            )
        logger.info("Supabase client initialized successfully")
        return cls(client)

    # -------------------------------------------------------------------------
    # Deliveries
    # -------------------------------------------------------------------------

    def assign_delivery(
        self,
        delivery: dict[str, Any],
        max_concurrent: int,
    ) -> dict[str, Any] | None:
        try:
            response = self._client.rpc(
                "assign_delivery_partner",
                {"p_delivery": delivery, "p_max_concurrent": max_concurrent},
            ).execute()
        except Exception as e:
            if _is_unique_violation(e):
                raise DuplicateOrderError(delivery["order_id"])
            raise DeliveryStoreError(
                message=f"Failed to assign delivery: {e}",
                code="ASSIGN_DELIVERY_FAILED",
                details={"order_id": delivery.get("order_id")},
            )

        # The function returns NULL when no partner is eligible
        return response.data or None

    def get_delivery(self, delivery_id: str) -> dict[str, Any] | None:
        try:
            response = (
                self._client.table(DELIVERIES_TABLE)
                .select(DELIVERY_WITH_PARTNER)
                .eq("id", delivery_id)
                .single()
                .execute()
            )
            return response.data

        except Exception as e:
            if _is_not_found(e):
                return None
            raise DeliveryStoreError(
                message=f"Failed to fetch delivery: {e}",
                code="FETCH_DELIVERY_FAILED",
                details={"delivery_id": delivery_id},
            )

    def list_active_deliveries(self, partner_id: str) -> list[dict[str, Any]]:
        try:
            response = (
                self._client.table(DELIVERIES_TABLE)
                .select("*")
                .eq("partner_id", partner_id)
                .in_("status", sorted(status.value for status in ACTIVE_STATUSES))
                .order("assigned_at", desc=True)
                .execute()
            )
            deliveries = response.data or []
            logger.debug(f"Fetched {len(deliveries)} active deliveries for partner {partner_id}")
            return deliveries

        except Exception as e:
            raise DeliveryStoreError(
                message=f"Failed to list deliveries: {e}",
                code="LIST_DELIVERIES_FAILED",
                details={"partner_id": partner_id},
            )

    def transition_delivery(
        self,
        delivery_id: str,
        from_status: str,
        changes: dict[str, Any],
        release_capacity: bool = False,
        count_completion: bool = False,
    ) -> dict[str, Any] | None:
        try:
            response = self._client.rpc(
                "transition_delivery_status",
                {
                    "p_delivery_id": delivery_id,
                    "p_from_status": from_status,
                    "p_changes": changes,
                    "p_release": release_capacity,
                    "p_completed": count_completion,
                },
            ).execute()
        except Exception as e:
            raise DeliveryStoreError(
                message=f"Failed to update delivery status: {e}",
                code="TRANSITION_DELIVERY_FAILED",
                details={"delivery_id": delivery_id, "from_status": from_status},
            )

        return response.data or None

    # -------------------------------------------------------------------------
    # Partners
    # -------------------------------------------------------------------------

    def get_partner(self, partner_id: str) -> dict[str, Any] | None:
        try:
            response = (
                self._client.table(PARTNERS_TABLE)
                .select("*")
                .eq("id", partner_id)
                .single()
                .execute()
            )
            return response.data

        except Exception as e:
            if _is_not_found(e):
                return None
            raise DeliveryStoreError(
                message=f"Failed to fetch delivery partner: {e}",
                code="FETCH_PARTNER_FAILED",
                details={"partner_id": partner_id},
            )

    def set_partner_availability(
        self,
        partner_id: str,
        is_available: bool,
    ) -> dict[str, Any] | None:
        try:
            response = (
                self._client.table(PARTNERS_TABLE)
                .update({"is_available": is_available})
                .eq("id", partner_id)
                .execute()
            )
        except Exception as e:
            raise DeliveryStoreError(
                message=f"Failed to update partner availability: {e}",
                code="UPDATE_PARTNER_FAILED",
                details={"partner_id": partner_id},
            )

        rows = response.data or []
        return rows[0] if rows else None

    def update_partner_location(
        self,
        partner_id: str,
        lat: float,
        lng: float,
        at: str,
    ) -> None:
        try:
            (
                self._client.table(PARTNERS_TABLE)
                .update({
                    "current_lat": lat,
                    "current_lng": lng,
                    "last_location_update": at,
                })
                .eq("id", partner_id)
                .execute()
            )
        except Exception as e:
            raise DeliveryStoreError(
                message=f"Failed to update partner location: {e}",
                code="UPDATE_PARTNER_FAILED",
                details={"partner_id": partner_id},
            )

    def ping(self) -> None:
        try:
            self._client.table(PARTNERS_TABLE).select("id").limit(1).execute()
        except Exception as e:
            raise DeliveryStoreError(
                message=f"Supabase unreachable: {e}",
                code="PING_FAILED",
            )
