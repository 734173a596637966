"""
Applier presence service.

Tracks one canonical WebSocket per applier, moves the applier between
active, idle and offline, persists every transition and fans it out to all
connected sockets. Presence is best-effort: storage and socket failures
are logged and never raised into the socket handler.
"""

import asyncio
import json
from collections.abc import Coroutine
from datetime import UTC, datetime
from typing import Any

from fastapi import WebSocket
from starlette.websockets import WebSocketDisconnect

from app.config import settings
from app.features.presence.domain import (
    ACTIVITY_MESSAGE_TYPES,
    CLOSE_MISSING_APPLIER_ID,
    CLOSE_SUPERSEDED,
    STATUS_ACTIVE,
    STATUS_IDLE,
    STATUS_INACTIVE,
    STATUS_OFFLINE,
    PresenceConnection,
    ack_message,
    now_ms,
    status_change_message,
)
from app.features.presence.repository import ApplierRepository
from app.features.presence.services.broadcaster import PresenceBroadcaster, build_broadcaster
from app.features.presence.services.peer import PresencePeer, WebSocketPeer
from app.features.presence.services.registry import ConnectionRegistry
from app.infrastructure.observability.logging import get_logger, log_status_transition

logger = get_logger(__name__)

PRESENCE_PATH = "/ws/presence"


class PresenceService:
    """
    WebSocket presence tracker.

    Idle timers are event-loop TimerHandles owned by each connection. They
    are cancelled on new activity, on close and when a newer connection
    for the same applier arrives, and are always re-armed before any
    awaited storage call.
    """

    def __init__(
        self,
        repository=ApplierRepository,
        registry: ConnectionRegistry | None = None,
        broadcaster: PresenceBroadcaster | None = None,
        idle_timeout: float | None = None,
        heartbeat_interval: float | None = None,
    ):
        self.repository = repository
        self.registry = registry or ConnectionRegistry()
        self.broadcaster = broadcaster or build_broadcaster()
        self.idle_timeout = (
            idle_timeout if idle_timeout is not None else settings.PRESENCE_IDLE_TIMEOUT_SECONDS
        )
        self.heartbeat_interval = (
            heartbeat_interval
            if heartbeat_interval is not None
            else settings.PRESENCE_HEARTBEAT_INTERVAL_SECONDS
        )
        self._heartbeat_task: asyncio.Task | None = None
        self._background_tasks: set[asyncio.Task] = set()
        self._started = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the broadcaster and the heartbeat sweep."""
        if self._started:
            return

        await self.broadcaster.start(self._deliver_to_connections)
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(), name="presence-heartbeat")
        self._started = True

        logger.info(
            "Presence service initialized",
            path=PRESENCE_PATH,
            broadcaster=self.broadcaster.name,
            idle_timeout_seconds=self.idle_timeout,
            heartbeat_interval_seconds=self.heartbeat_interval,
        )

    async def stop(self) -> None:
        """Stop the sweep, cancel every idle timer and pending task."""
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            try:
                await self._heartbeat_task
            except asyncio.CancelledError:
                pass
            self._heartbeat_task = None

        for connection in self.registry.clear():
            connection.cancel_idle_timer()

        for task in list(self._background_tasks):
            task.cancel()
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)

        await self.broadcaster.stop()
        self._started = False
        logger.info("Presence service stopped")

    # ------------------------------------------------------------------
    # Socket entry point
    # ------------------------------------------------------------------

    async def serve(self, websocket: WebSocket, applier_id: str | None) -> None:
        """Run one presence socket from accept to close."""
        await websocket.accept()
        peer = WebSocketPeer(websocket)

        if not applier_id or not applier_id.strip():
            logger.warning("Presence connection without applierId rejected")
            await self._close_quietly(peer, CLOSE_MISSING_APPLIER_ID, "Missing applierId")
            return

        applier_id = applier_id.strip()
        logger.info("Applier connected", applier_id=applier_id)
        connection = await self.handle_connect(applier_id, peer)

        try:
            while True:
                raw = await peer.receive_text()
                if raw is None:
                    break
                await self.handle_message(connection, raw)
        except WebSocketDisconnect:
            pass
        except RuntimeError as e:
            # Starlette raises once the socket was closed underneath us
            logger.debug("Presence socket receive stopped", applier_id=applier_id, error=str(e))
        finally:
            logger.info("Applier disconnected", applier_id=applier_id)
            await self.handle_disconnect(connection)

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    async def handle_connect(self, applier_id: str, peer: PresencePeer) -> PresenceConnection:
        """
        Register ``peer`` as the applier's canonical connection.

        The new connection is registered before the old socket is closed,
        so the old socket's close handler sees itself superseded and does
        not mark the applier offline.
        """
        connection = PresenceConnection(applier_id=applier_id, peer=peer)
        previous = self.registry.register(connection)

        if previous is not None:
            previous.cancel_idle_timer()
            logger.info("Superseding existing presence connection", applier_id=applier_id)
            await self._close_quietly(previous.peer, CLOSE_SUPERSEDED, "New connection opened")

        self._reset_idle_timer(connection)
        await self.update_status(applier_id, STATUS_ACTIVE)
        return connection

    async def handle_message(self, connection: PresenceConnection, raw: str) -> None:
        try:
            message = json.loads(raw)
        except ValueError as e:
            logger.warning(
                "Error processing presence message",
                applier_id=connection.applier_id,
                error=str(e),
            )
            return

        if not isinstance(message, dict):
            logger.warning(
                "Ignoring non-object presence message",
                applier_id=connection.applier_id,
                payload_type=type(message).__name__,
            )
            return

        if message.get("type") not in ACTIVITY_MESSAGE_TYPES:
            return

        connection.last_activity = now_ms()
        connection.activity_count += 1
        self._reset_idle_timer(connection)

        try:
            applier = await self.repository.get_applier(connection.applier_id)
            if (
                applier is not None
                and applier.status == STATUS_IDLE
                and self.registry.is_canonical(connection)
            ):
                await self.update_status(connection.applier_id, STATUS_ACTIVE)
        except Exception as e:
            logger.error(
                "Failed to refresh applier presence",
                applier_id=connection.applier_id,
                error=str(e),
            )

        await self._send_quietly(connection, ack_message())

    async def handle_disconnect(self, connection: PresenceConnection) -> None:
        connection.cancel_idle_timer()
        applier_id = connection.applier_id

        if not self.registry.remove(connection) and applier_id in self.registry:
            logger.debug("Superseded presence connection closed", applier_id=applier_id)
            return

        try:
            applier = await self.repository.get_applier(applier_id)
        except Exception as e:
            logger.error("Failed to load applier on disconnect", applier_id=applier_id, error=str(e))
            return

        if applier is None:
            logger.warning("Disconnected applier not found", applier_id=applier_id)
            return

        if applier.status == STATUS_INACTIVE:
            return

        await self.update_status(applier_id, STATUS_OFFLINE)

    # ------------------------------------------------------------------
    # Idle timer
    # ------------------------------------------------------------------

    def _reset_idle_timer(self, connection: PresenceConnection) -> None:
        connection.cancel_idle_timer()
        if not self.registry.is_canonical(connection):
            return
        loop = asyncio.get_running_loop()
        connection.idle_timer = loop.call_later(
            self.idle_timeout, self._on_idle_timeout, connection
        )

    def _on_idle_timeout(self, connection: PresenceConnection) -> None:
        connection.idle_timer = None
        self._spawn(self._mark_idle(connection))

    async def _mark_idle(self, connection: PresenceConnection) -> None:
        if not self.registry.is_canonical(connection):
            return
        armed_at = connection.activity_count

        try:
            applier = await self.repository.get_applier(connection.applier_id)
        except Exception as e:
            logger.error("Failed to load applier for idle check", applier_id=connection.applier_id, error=str(e))
            return

        # A close, supersession or new activity during the read wins over the stale timer
        if not self._idle_still_due(connection, armed_at):
            logger.debug("Idle transition abandoned", applier_id=connection.applier_id)
            return

        if applier is not None and applier.status == STATUS_ACTIVE:
            logger.info(
                "Applier idle",
                applier_id=connection.applier_id,
                idle_seconds=self.idle_timeout,
            )
            await self.update_status(connection.applier_id, STATUS_IDLE)

    def _idle_still_due(self, connection: PresenceConnection, armed_at: int) -> bool:
        return (
            self.registry.is_canonical(connection)
            and connection.idle_timer is None
            and connection.activity_count == armed_at
        )

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    # ------------------------------------------------------------------
    # Transitions and fan-out
    # ------------------------------------------------------------------

    async def update_status(self, applier_id: str, status: str) -> bool:
        """Persist ``status`` and broadcast it. Returns False if persisting failed."""
        try:
            await self.repository.update_applier(
                applier_id,
                {"status": status, "last_activity_at": datetime.now(UTC)},
            )
        except Exception as e:
            logger.error(
                "Failed to update applier status",
                applier_id=applier_id,
                status=status,
                error=str(e),
            )
            return False

        log_status_transition(applier_id, status, len(self.registry))

        try:
            await self.broadcaster.publish(status_change_message(applier_id, status))
        except Exception as e:
            logger.error("Failed to broadcast status change", applier_id=applier_id, error=str(e))
        return True

    async def _deliver_to_connections(self, message: dict[str, Any]) -> None:
        targets = self.registry.open_connections()
        if targets:
            await asyncio.gather(*(self._send_quietly(conn, message) for conn in targets))

    async def _send_quietly(self, connection: PresenceConnection, message: dict[str, Any]) -> None:
        if not connection.peer.is_open:
            return
        try:
            await connection.peer.send_json(message)
        except Exception as e:
            logger.warning(
                "Failed to send presence message",
                applier_id=connection.applier_id,
                message_type=message.get("type"),
                error=str(e),
            )

    async def _close_quietly(self, peer: PresencePeer, code: int, reason: str) -> None:
        try:
            await peer.close(code, reason)
        except Exception as e:
            logger.warning("Failed to close presence socket", code=code, error=str(e))

    # ------------------------------------------------------------------
    # Heartbeat sweep
    # ------------------------------------------------------------------

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            try:
                await self.sweep()
            except Exception as e:
                logger.error("Presence heartbeat sweep failed", error=str(e))

    async def sweep(self) -> list[str]:
        """Ping open sockets and drop entries whose socket is gone."""
        pruned: list[str] = []
        for connection in self.registry.snapshot():
            if connection.peer.is_open:
                try:
                    await connection.peer.ping()
                    continue
                except Exception as e:
                    logger.warning("Presence ping failed", applier_id=connection.applier_id, error=str(e))

            connection.cancel_idle_timer()
            if self.registry.remove(connection):
                pruned.append(connection.applier_id)

        if pruned:
            logger.info("Pruned stale presence connections", applier_ids=pruned)
        return pruned

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_connected_appliers(self) -> list[str]:
        return self.registry.applier_ids()

    def is_applier_connected(self, applier_id: str) -> bool:
        return applier_id in self.registry

    def health_check(self) -> dict[str, Any]:
        return {
            "healthy": self._started,
            "service": "presence",
            "connections": len(self.registry),
            "broadcaster": self.broadcaster.name,
        }


# Singleton instance for application use
presence_service = PresenceService()
