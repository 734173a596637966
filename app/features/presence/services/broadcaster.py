"""
Status-change fan-out for presence.

LocalBroadcaster delivers straight to this process's sockets.
RedisBroadcaster publishes on a Redis channel and every instance (this one
included) delivers what it receives to its own sockets.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.services.redis_client import FastRedisClient, fast_redis

logger = get_logger(__name__)

Deliver = Callable[[dict[str, Any]], Awaitable[None]]


class PresenceBroadcaster(ABC):
    """Publishes status_change messages to every connected socket."""

    name = "base"

    def __init__(self):
        self._deliver: Deliver | None = None

    async def start(self, deliver: Deliver) -> None:
        self._deliver = deliver

    async def stop(self) -> None:
        self._deliver = None

    @abstractmethod
    async def publish(self, message: dict[str, Any]) -> None: ...

    async def _deliver_locally(self, message: dict[str, Any]) -> None:
        if self._deliver is None:
            logger.warning("Broadcaster not started, dropping message", message_type=message.get("type"))
            return
        await self._deliver(message)


class LocalBroadcaster(PresenceBroadcaster):
    """Single-process fan-out."""

    name = "memory"

    async def publish(self, message: dict[str, Any]) -> None:
        await self._deliver_locally(message)


class RedisBroadcaster(PresenceBroadcaster):
    """
    Fan-out across instances through Redis pub/sub.

    The listener resubscribes with exponential backoff when the
    subscription drops. While it is down, published messages are also
    delivered to this instance's sockets directly.
    """

    name = "redis"

    def __init__(
        self,
        redis_client: FastRedisClient | None = None,
        channel: str | None = None,
        reconnect_delay: float = 1.0,
        max_reconnect_delay: float = 30.0,
    ):
        super().__init__()
        self.redis_client = redis_client or fast_redis
        self.channel = channel or settings.PRESENCE_REDIS_CHANNEL
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay
        self._pubsub = None
        self._listener: asyncio.Task | None = None

    @property
    def is_listening(self) -> bool:
        return self._pubsub is not None

    async def start(self, deliver: Deliver) -> None:
        await super().start(deliver)
        self._pubsub = await self.redis_client.subscribe(self.channel)
        self._listener = asyncio.create_task(self._listen(), name="presence-redis-listener")
        logger.info("Redis presence broadcaster started", channel=self.channel)

    async def stop(self) -> None:
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None

        await self._close_pubsub()
        await super().stop()

    async def publish(self, message: dict[str, Any]) -> None:
        try:
            await self.redis_client.publish(self.channel, json.dumps(message))
        except Exception as e:
            # Local sockets still get the update when Redis is down
            logger.error("Redis publish failed, delivering locally", error=str(e))
            await self._deliver_locally(message)
            return

        if not self.is_listening:
            logger.warning("Redis subscription down, delivering locally", channel=self.channel)
            await self._deliver_locally(message)

    async def _listen(self) -> None:
        delay = self.reconnect_delay
        while True:
            try:
                if self._pubsub is None:
                    self._pubsub = await self.redis_client.subscribe(self.channel)
                    logger.info("Redis presence subscription restored", channel=self.channel)
                    delay = self.reconnect_delay
                async for raw in self._pubsub.listen():
                    await self._handle_raw(raw)
                logger.warning("Redis presence subscription ended", channel=self.channel)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    "Redis presence listener failed, resubscribing",
                    channel=self.channel,
                    error=str(e),
                    retry_in_seconds=delay,
                )

            await self._close_pubsub()
            await asyncio.sleep(delay)
            delay = min(delay * 2, self.max_reconnect_delay)

    async def _handle_raw(self, raw: dict[str, Any]) -> None:
        if raw.get("type") != "message":
            return
        try:
            message = json.loads(raw["data"])
        except (TypeError, ValueError) as e:
            logger.warning("Ignoring malformed presence message", error=str(e))
            return
        try:
            await self._deliver_locally(message)
        except Exception as e:
            logger.error("Failed to deliver presence message", error=str(e))

    async def _close_pubsub(self) -> None:
        pubsub, self._pubsub = self._pubsub, None
        if pubsub is None:
            return
        try:
            await pubsub.unsubscribe(self.channel)
            await pubsub.aclose()
        except Exception as e:
            logger.warning("Error closing presence pubsub", error=str(e))


def build_broadcaster(backend: str | None = None) -> PresenceBroadcaster:
    """Broadcaster for the configured backend."""
    backend = (backend or settings.PRESENCE_BROADCAST_BACKEND).strip().lower()
    if backend == "redis":
        return RedisBroadcaster()
    if backend != "memory":
        logger.warning("Unknown presence broadcast backend, using memory", backend=backend)
    return LocalBroadcaster()
