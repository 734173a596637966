"""
Domain models for applier presence.

Applier rows are persisted; PresenceConnection lives only in the process
that owns the socket.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

ApplierStatus = Literal["active", "idle", "inactive", "offline"]

STATUS_ACTIVE: ApplierStatus = "active"
STATUS_IDLE: ApplierStatus = "idle"
STATUS_INACTIVE: ApplierStatus = "inactive"  # admin-set, survives disconnects
STATUS_OFFLINE: ApplierStatus = "offline"

# Client -> server message types that count as activity
ACTIVITY_MESSAGE_TYPES = frozenset({"activity", "heartbeat"})

# Server -> client message types
ACK_MESSAGE = "ack"
STATUS_CHANGE_MESSAGE = "status_change"

# WebSocket close codes
CLOSE_MISSING_APPLIER_ID = 4001
CLOSE_SUPERSEDED = 4002


def now_ms() -> int:
    """Epoch milliseconds, the timestamp format used on the wire."""
    return int(time.time() * 1000)


@dataclass(slots=True)
class Applier:
    """Presence-relevant fields of an appliers row."""

    id: str
    status: str
    last_activity_at: datetime | None = None
    name: str | None = None


@dataclass(slots=True, eq=False)
class PresenceConnection:
    """One live socket for an applier. Compared by identity."""

    applier_id: str
    peer: Any
    last_activity: int = field(default_factory=now_ms)
    activity_count: int = 0
    connected_at: int = field(default_factory=now_ms)
    idle_timer: asyncio.TimerHandle | None = None

    def cancel_idle_timer(self) -> None:
        if self.idle_timer is not None:
            self.idle_timer.cancel()
            self.idle_timer = None


def ack_message() -> dict[str, Any]:
    return {"type": ACK_MESSAGE, "timestamp": now_ms()}


def status_change_message(applier_id: str, status: str) -> dict[str, Any]:
    return {
        "type": STATUS_CHANGE_MESSAGE,
        "applierId": applier_id,
        "status": status,
        "timestamp": now_ms(),
    }
