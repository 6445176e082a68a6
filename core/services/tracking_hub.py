# =============================================================================
# core/services/tracking_hub.py - Live Delivery Tracking Hub
# =============================================================================
# Process-wide registry of in-flight deliveries.
#
# - Delivery partners push location/status events; the hub updates the
#   delivery's tracking record and broadcasts to its topic
# - Customers subscribe to a delivery's topic and immediately get the last
#   known status and location replayed to them
# - Records nobody watches are dropped after a retention window
#
# Concurrency:
#   Every read-modify-write on one delivery's record runs under that
#   delivery's lock (a fixed pool of asyncio locks, sharded by delivery id),
#   so events for one delivery are applied one at a time. Payloads are built
#   under the lock and sent after it is released, so a slow client never
#   holds up other deliveries that share the shard.
#
# The hub is constructed once in the app lifespan and injected into handlers.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Protocol

from core.models.delivery import DeliveryStatus
from core.models.tracking import (
    DeliveryTracking,
    PartnerLocation,
    delivery_topic,
    ensure_utc,
)

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_SECONDS = 60 * 60
DEFAULT_LOCK_SHARDS = 64


class TrackingTransport(Protocol):
    """What the hub needs from the connection layer."""

    def join(self, connection_id: str, topic: str) -> None: ...

    def leave(self, connection_id: str, topic: str) -> None: ...

    async def send_to(self, connection_id: str, event: str, data: dict[str, Any]) -> bool: ...

    async def broadcast(self, topic: str, event: str, data: dict[str, Any]) -> int: ...

    async def broadcast_all(self, event: str, data: dict[str, Any]) -> int: ...


class TrackingHub:
    """
    Registry of live tracking records with topic fan-out.

    Example:
        hub = TrackingHub(websocket_manager, retention_seconds=3600)
        await hub.on_location_update(conn_id, "D1", 17.45, 78.39, timestamp)
        await hub.subscribe(customer_conn_id, "D1")   # replays status + location
        snapshot = hub.get_delivery_status("D1")
    """

    def __init__(
        self,
        transport: TrackingTransport,
        retention_seconds: float = DEFAULT_RETENTION_SECONDS,
        lock_shards: int = DEFAULT_LOCK_SHARDS,
    ):
        self._transport = transport
        self._retention_seconds = retention_seconds

        # delivery_id -> tracking record
        self._records: dict[str, DeliveryTracking] = {}
        self._locks = [asyncio.Lock() for _ in range(lock_shards)]

        # delivery_id -> pending retention-window cleanup
        self._cleanup_tasks: dict[str, asyncio.Task] = {}

        self._connections: set[str] = set()

    # -------------------------------------------------------------------------
    # Connection Lifecycle
    # -------------------------------------------------------------------------

    def on_connect(self, connection_id: str) -> None:
        """Register a transport-level connection."""
        self._connections.add(connection_id)
        logger.info(f"Client connected: {connection_id}")

    async def on_disconnect(self, connection_id: str) -> None:
        """
        Drop a connection from every delivery it was watching.

        Behaves like unsubscribe() for each of those deliveries, so their
        retention-window cleanup is scheduled the same way.
        """
        self._connections.discard(connection_id)

        watched = [
            delivery_id
            for delivery_id, record in list(self._records.items())
            if connection_id in record.subscribers
        ]
        for delivery_id in watched:
            await self.unsubscribe(connection_id, delivery_id)

        logger.info(f"Client disconnected: {connection_id} (was tracking {len(watched)} deliveries)")

    # -------------------------------------------------------------------------
    # Partner Events
    # -------------------------------------------------------------------------

    async def on_location_update(
        self,
        connection_id: str | None,
        delivery_id: str,
        lat: float,
        lng: float,
        timestamp: datetime | None = None,
    ) -> bool:
        """
        Store a partner position and broadcast it to the delivery's topic.

        Readings older than the stored one are ignored, so a late packet
        cannot move the partner backwards on the customer's map.

        Returns:
            True if the reading was applied and broadcast
        """
        reading = PartnerLocation(
            lat=lat,
            lng=lng,
            timestamp=ensure_utc(timestamp) if timestamp else datetime.now(timezone.utc),
        )

        async with self._lock_for(delivery_id):
            record = self._get_or_create(delivery_id)

            current = record.partner_location
            if current is not None and reading.timestamp < current.timestamp:
                logger.debug(
                    f"Ignoring stale location for delivery {delivery_id}: "
                    f"{reading.timestamp.isoformat()} < {current.timestamp.isoformat()}"
                )
                return False

            record.partner_location = reading
            logger.debug(f"Location update for delivery {delivery_id}: ({lat}, {lng}) from {connection_id}")

        await self._broadcast(delivery_id, "partner-location", reading.to_payload())
        return True

    async def on_status_update(
        self,
        connection_id: str | None,
        delivery_id: str,
        status: str | DeliveryStatus,
        estimated_delivery_time: str | datetime | None = None,
    ) -> DeliveryTracking | None:
        """
        Mirror a delivery status and broadcast it to the delivery's topic.

        The ETA is only replaced when a non-empty value is given.
        A terminal status with nobody watching drops the record right away.

        Returns:
            Snapshot of the updated record, or None if the status was
            not recognised (the event is dropped)
        """
        try:
            new_status = DeliveryStatus.parse(status)
        except ValueError:
            logger.warning(f"Dropping status update for delivery {delivery_id}: unknown status {status!r}")
            return None

        if isinstance(estimated_delivery_time, datetime):
            estimated_delivery_time = ensure_utc(estimated_delivery_time).isoformat()

        async with self._lock_for(delivery_id):
            record = self._get_or_create(delivery_id)
            record.status = new_status
            if estimated_delivery_time:
                record.estimated_delivery_time = estimated_delivery_time

            logger.info(f"Status update for delivery {delivery_id}: {new_status.value}")

            payload = record.status_payload()
            snapshot = record.snapshot()
            if new_status.is_terminal and not record.subscribers:
                self._remove(delivery_id)

        await self._broadcast(delivery_id, "delivery-status", payload)
        return snapshot

    # -------------------------------------------------------------------------
    # Customer Subscriptions
    # -------------------------------------------------------------------------

    async def subscribe(
        self,
        connection_id: str,
        delivery_id: str,
        status: str | DeliveryStatus | None = None,
        estimated_delivery_time: str | None = None,
    ) -> DeliveryTracking:
        """
        Start sending a delivery's updates to a connection.

        The current status/ETA, and the partner location if known, are sent
        to this connection only, so a late joiner sees the current state
        without waiting for the next event.

        `status` and `estimated_delivery_time` seed a record that does not
        exist yet (e.g. from the persisted delivery after a restart); they
        are ignored when the hub already tracks the delivery.
        """
        async with self._lock_for(delivery_id):
            record = self._records.get(delivery_id)
            if record is None:
                record = self._get_or_create(delivery_id, schedule_cleanup=False)
                if status is not None:
                    record.status = DeliveryStatus.parse(status)
                if estimated_delivery_time:
                    record.estimated_delivery_time = estimated_delivery_time

            self._transport.join(connection_id, delivery_topic(delivery_id))
            record.subscribers.add(connection_id)
            self._cancel_cleanup(delivery_id)

            logger.info(f"Customer {connection_id} tracking delivery {delivery_id}")

            replay = [("delivery-status", record.status_payload())]
            if record.partner_location is not None:
                replay.append(("partner-location", record.partner_location.to_payload()))
            snapshot = record.snapshot()

        for event, data in replay:
            await self._send_to(connection_id, event, data)

        return snapshot

    async def unsubscribe(self, connection_id: str, delivery_id: str) -> None:
        """
        Stop sending a delivery's updates to a connection.

        When the last subscriber leaves, the record is kept for the
        retention window (or dropped at once if the delivery is finished).
        """
        async with self._lock_for(delivery_id):
            self._transport.leave(connection_id, delivery_topic(delivery_id))

            record = self._records.get(delivery_id)
            if record is None:
                return

            record.subscribers.discard(connection_id)
            logger.info(f"Customer {connection_id} stopped tracking delivery {delivery_id}")

            if not record.subscribers:
                if record.status.is_terminal:
                    self._remove(delivery_id)
                    logger.info(f"Removed finished delivery with no watchers: {delivery_id}")
                else:
                    self._schedule_cleanup(delivery_id)

    # -------------------------------------------------------------------------
    # Read Access
    # -------------------------------------------------------------------------

    def get_delivery_status(self, delivery_id: str) -> DeliveryTracking | None:
        """Snapshot of a delivery's tracking record, or None if not tracked."""
        record = self._records.get(delivery_id)
        return record.snapshot() if record else None

    @property
    def active_delivery_count(self) -> int:
        return len(self._records)

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    # -------------------------------------------------------------------------
    # Broad Announcements
    # -------------------------------------------------------------------------

    async def announce(self, event: str, data: dict[str, Any]) -> int:
        """Send an event to every connected client (e.g. delivery-created)."""
        try:
            return await self._transport.broadcast_all(event, data)
        except Exception as e:
            logger.warning(f"Failed to announce {event}: {e}")
            return 0

    async def close(self) -> None:
        """Cancel pending cleanups (app shutdown)."""
        tasks = list(self._cleanup_tasks.values())
        self._cleanup_tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _lock_for(self, delivery_id: str) -> asyncio.Lock:
        return self._locks[hash(delivery_id) % len(self._locks)]

    def _get_or_create(self, delivery_id: str, schedule_cleanup: bool = True) -> DeliveryTracking:
        # Caller holds the delivery's lock
        record = self._records.get(delivery_id)
        if record is None:
            record = DeliveryTracking(delivery_id=delivery_id)
            self._records[delivery_id] = record
            # Nobody is watching yet; the retention window starts now
            if schedule_cleanup:
                self._schedule_cleanup(delivery_id)
        return record

    async def _broadcast(self, delivery_id: str, event: str, data: dict[str, Any]) -> None:
        try:
            await self._transport.broadcast(delivery_topic(delivery_id), event, data)
        except Exception as e:
            logger.warning(f"Broadcast of {event} for delivery {delivery_id} failed: {e}")

    async def _send_to(self, connection_id: str, event: str, data: dict[str, Any]) -> None:
        try:
            await self._transport.send_to(connection_id, event, data)
        except Exception as e:
            logger.warning(f"Sending {event} to {connection_id} failed: {e}")

    def _remove(self, delivery_id: str) -> None:
        self._records.pop(delivery_id, None)
        task = self._cleanup_tasks.pop(delivery_id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    def _schedule_cleanup(self, delivery_id: str) -> None:
        self._cancel_cleanup(delivery_id)
        self._cleanup_tasks[delivery_id] = asyncio.create_task(
            self._expire_after(delivery_id, self._retention_seconds)
        )

    def _cancel_cleanup(self, delivery_id: str) -> None:
        task = self._cleanup_tasks.pop(delivery_id, None)
        if task is not None:
            task.cancel()

    async def _expire_after(self, delivery_id: str, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
            async with self._lock_for(delivery_id):
                record = self._records.get(delivery_id)
                # A subscriber may have arrived while we slept
                if record is not None and not record.subscribers:
                    self._remove(delivery_id)
                    logger.info(f"Cleaned up inactive delivery: {delivery_id}")
        finally:
            if self._cleanup_tasks.get(delivery_id) is asyncio.current_task():
                del self._cleanup_tasks[delivery_id]
