# =============================================================================
# app/websocket/broadcast.py - Cross-Process Broadcasting
# =============================================================================
# Relays broad announcements (delivery-created) between API processes.
#
# Uses Redis pub/sub for cross-process communication:
# - The assignment service calls publish() instead of broadcasting locally
# - Every API process runs listen() and re-broadcasts what it receives to
#   its own WebSocket clients
#
# Only used when EVENT_RELAY=redis. With a single process the tracking hub
# announces directly.
# =============================================================================

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

# Redis channel for delivery announcements
DELIVERY_EVENTS_CHANNEL = "marketplace:delivery:events"

Deliver = Callable[[str, dict[str, Any]], Awaitable[Any]]


class RedisEventRelay:
    """
    Publishes and receives announcements over a Redis channel.

    Example:
        relay = RedisEventRelay(settings.REDIS_URL)
        await relay.publish("delivery-created", {"deliveryId": "..."})

        # In the app lifespan
        task = asyncio.create_task(relay.listen(hub.announce))
    """

    def __init__(self, redis_url: str, channel: str = DELIVERY_EVENTS_CHANNEL):
        self.channel = channel
        self._client = aioredis.from_url(redis_url)

    async def publish(self, event: str, data: dict[str, Any]) -> bool:
        """
        Publish an event for every API process to broadcast.

        Returns:
            bool: True if published successfully
        """
        try:
            message = json.dumps({"event": event, "data": data}, default=str)
            await self._client.publish(self.channel, message)
            logger.debug(f"Published {event} event to {self.channel}")
            return True

        except Exception as e:
            logger.error(f"Failed to publish event: {e}")
            return False

    async def listen(self, deliver: Deliver) -> None:
        """
        Forward every message on the channel to `deliver(event, data)`.

        Runs until cancelled. Malformed messages are logged and skipped.
        """
        logger.info(f"Starting Redis pub/sub listener on {self.channel}")
        pubsub = self._client.pubsub()

        try:
            await pubsub.subscribe(self.channel)

            async for message in pubsub.listen():
                if message["type"] != "message":
                    continue

                try:
                    payload = json.loads(message["data"])
                    await deliver(payload["event"], payload.get("data") or {})
                except (json.JSONDecodeError, KeyError, TypeError) as e:
                    logger.warning(f"Invalid message on {self.channel}: {e}")
                except Exception as e:
                    logger.error(f"Error relaying Redis message: {e}")

        except asyncio.CancelledError:
            logger.info("Redis pub/sub listener cancelled")
            raise
        finally:
            try:
                await pubsub.unsubscribe(self.channel)
                await pubsub.aclose()
            except Exception as e:
                logger.debug(f"Error closing Redis pub/sub: {e}")

    async def close(self) -> None:
        await self._client.aclose()
