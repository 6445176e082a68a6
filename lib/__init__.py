# =============================================================================
# lib/ - Standalone Utility Modules
# =============================================================================
# This package contains the persistence layer:
# - delivery_store.py: DeliveryStore interface + in-memory implementation
# - supabase_client.py: DeliveryStore backed by Supabase/Postgres
#
# These modules are self-contained and can be tested in isolation.
# =============================================================================

from lib.delivery_store import (
    DeliveryStore,
    DeliveryStoreError,
    DuplicateOrderError,
    InMemoryDeliveryStore,
)
from lib.supabase_client import SupabaseDeliveryStore

__all__ = [
    "DeliveryStore",
    "DeliveryStoreError",
    "DuplicateOrderError",
    "InMemoryDeliveryStore",
    "SupabaseDeliveryStore",
]
