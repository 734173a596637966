"""
Connection registry for presence.

Maps applier id to its single canonical PresenceConnection. Mutated only
from socket callbacks on the event loop, so no locking is used.
"""

from collections.abc import Iterator

from app.features.presence.domain import PresenceConnection


class ConnectionRegistry:
    """In-process map of applier id to the live connection."""

    def __init__(self):
        self._connections: dict[str, PresenceConnection] = {}

    def get(self, applier_id: str) -> PresenceConnection | None:
        return self._connections.get(applier_id)

    def register(self, connection: PresenceConnection) -> PresenceConnection | None:
        """Make ``connection`` canonical; returns the connection it replaced."""
        previous = self._connections.get(connection.applier_id)
        self._connections[connection.applier_id] = connection
        return previous

    def remove(self, connection: PresenceConnection) -> bool:
        """Drop ``connection`` only if it is still the canonical one."""
        if self._connections.get(connection.applier_id) is not connection:
            return False
        del self._connections[connection.applier_id]
        return True

    def is_canonical(self, connection: PresenceConnection) -> bool:
        return self._connections.get(connection.applier_id) is connection

    def snapshot(self) -> list[PresenceConnection]:
        """Stable copy for iteration across awaits."""
        return list(self._connections.values())

    def open_connections(self) -> list[PresenceConnection]:
        return [conn for conn in self._connections.values() if conn.peer.is_open]

    def applier_ids(self) -> list[str]:
        return list(self._connections)

    def clear(self) -> list[PresenceConnection]:
        connections = list(self._connections.values())
        self._connections.clear()
        return connections

    def __contains__(self, applier_id: object) -> bool:
        return applier_id in self._connections

    def __len__(self) -> int:
        return len(self._connections)

    def __iter__(self) -> Iterator[PresenceConnection]:
        return iter(self.snapshot())
