# =============================================================================
# app/websocket/manager.py - WebSocket Connection Manager
# =============================================================================
# Manages WebSocket connections and their topic memberships, and delivers
# events to them. This is the transport the tracking hub talks through.
#
# Usage:
#   manager = ConnectionManager(send_timeout=5.0)
#
#   connection_id = await manager.connect(websocket)
#   manager.join(connection_id, "delivery-123")
#   await manager.broadcast("delivery-123", "partner-location", {...})
#   manager.disconnect(connection_id)
#
# Every outgoing message is an envelope: {"event": <name>, "data": {...}}
# =============================================================================

import asyncio
import logging
import uuid
from typing import Any, Dict, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ConnectionManager:
    """
    Manages WebSocket connections organized by topic.

    A connection can watch several topics (e.g. a customer tracking two
    orders). Sends are best-effort: a slow or broken socket is given up on
    after `send_timeout` seconds and dropped, and never holds up the others.
    """

    def __init__(self, send_timeout: float = 5.0):
        self.send_timeout = send_timeout
        # connection_id -> WebSocket
        self.connections: Dict[str, WebSocket] = {}
        # topic -> connection ids
        self.topics: Dict[str, Set[str]] = {}
        # connection_id -> topics it joined
        self._memberships: Dict[str, Set[str]] = {}

    async def connect(self, websocket: WebSocket) -> str:
        """
        Accept a new WebSocket connection and track it.

        Returns:
            str: The id assigned to this connection
        """
        await websocket.accept()

        connection_id = uuid.uuid4().hex
        self.connections[connection_id] = websocket
        self._memberships[connection_id] = set()

        logger.info(
            f"WebSocket connected: {connection_id}. "
            f"Total connections: {len(self.connections)}"
        )
        return connection_id

    def disconnect(self, connection_id: str) -> None:
        """Remove a connection and all of its topic memberships."""
        self.connections.pop(connection_id, None)

        for topic in self._memberships.pop(connection_id, set()):
            members = self.topics.get(topic)
            if members is not None:
                members.discard(connection_id)
                # Clean up empty topic entries
                if not members:
                    del self.topics[topic]

        logger.info(
            f"WebSocket disconnected: {connection_id}. "
            f"Total connections: {len(self.connections)}"
        )

    # -------------------------------------------------------------------------
    # Topics
    # -------------------------------------------------------------------------

    def join(self, connection_id: str, topic: str) -> None:
        if connection_id not in self.connections:
            return
        self.topics.setdefault(topic, set()).add(connection_id)
        self._memberships[connection_id].add(topic)

    def leave(self, connection_id: str, topic: str) -> None:
        members = self.topics.get(topic)
        if members is not None:
            members.discard(connection_id)
            if not members:
                del self.topics[topic]
        if connection_id in self._memberships:
            self._memberships[connection_id].discard(topic)

    # -------------------------------------------------------------------------
    # Sending
    # -------------------------------------------------------------------------

    async def send_to(self, connection_id: str, event: str, data: dict[str, Any]) -> bool:
        """
        Send an event to a single connection.

        Returns:
            bool: True if the message was handed to the socket
        """
        websocket = self.connections.get(connection_id)
        if websocket is None:
            return False

        ok = await self._send(websocket, {"event": event, "data": data})
        if not ok:
            self.disconnect(connection_id)
        return ok

    async def broadcast(self, topic: str, event: str, data: dict[str, Any]) -> int:
        """
        Broadcast an event to all connections in a topic.

        Returns:
            int: Number of clients the message was sent to
        """
        members = self.topics.get(topic)
        if not members:
            logger.debug(f"No connections for topic {topic}, skipping broadcast")
            return 0

        sent_count = await self._send_many(list(members), {"event": event, "data": data})

        logger.debug(f"Broadcast to {topic}: event={event}, sent to {sent_count} clients")
        return sent_count

    async def broadcast_all(self, event: str, data: dict[str, Any]) -> int:
        """Broadcast an event to every open connection."""
        return await self._send_many(list(self.connections), {"event": event, "data": data})

    async def _send_many(self, connection_ids: list[str], message: dict[str, Any]) -> int:
        targets = [
            (connection_id, self.connections[connection_id])
            for connection_id in connection_ids
            if connection_id in self.connections
        ]
        results = await asyncio.gather(
            *(self._send(websocket, message) for _, websocket in targets)
        )

        # Clean up any dead connections
        dead_connections = [connection_id for (connection_id, _), ok in zip(targets, results) if not ok]
        for connection_id in dead_connections:
            self.disconnect(connection_id)

        if dead_connections:
            logger.info(f"Cleaned up {len(dead_connections)} dead connections")

        return len(targets) - len(dead_connections)

    async def _send(self, websocket: WebSocket, message: dict[str, Any]) -> bool:
        try:
            await asyncio.wait_for(websocket.send_json(message), timeout=self.send_timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning(f"WebSocket send timed out after {self.send_timeout}s")
            return False
        except Exception as e:
            logger.warning(f"Failed to send to WebSocket: {e}")
            return False

    # -------------------------------------------------------------------------
    # Stats
    # -------------------------------------------------------------------------

    def get_connection_count(self, topic: str | None = None) -> int:
        """
        Get the number of active connections.

        Args:
            topic: If provided, count for specific topic. Otherwise total.
        """
        if topic:
            return len(self.topics.get(topic, set()))
        return len(self.connections)

    def get_active_topics(self) -> list[str]:
        """Topics with at least one connection."""
        return list(self.topics.keys())
