from app.features.presence.domain import PresenceConnection
from app.features.presence.services.registry import ConnectionRegistry
from tests.conftest import FakePeer


def _connection(applier_id: str) -> PresenceConnection:
    return PresenceConnection(applier_id=applier_id, peer=FakePeer())


def test_register_returns_replaced_connection():
    registry = ConnectionRegistry()
    first = _connection("applier-a")
    second = _connection("applier-a")

    assert registry.register(first) is None
    assert registry.register(second) is first
    assert registry.get("applier-a") is second
    assert len(registry) == 1


def test_remove_only_drops_canonical_connection():
    registry = ConnectionRegistry()
    first = _connection("applier-a")
    second = _connection("applier-a")
    registry.register(first)
    registry.register(second)

    assert registry.remove(first) is False
    assert registry.is_canonical(second)
    assert registry.remove(second) is True
    assert "applier-a" not in registry


def test_open_connections_skips_closed_peers():
    registry = ConnectionRegistry()
    alive = _connection("applier-a")
    dead = _connection("applier-b")
    dead.peer.open = False
    registry.register(alive)
    registry.register(dead)

    assert registry.open_connections() == [alive]
    assert registry.applier_ids() == ["applier-a", "applier-b"]


def test_iteration_is_safe_while_mutating():
    registry = ConnectionRegistry()
    for applier_id in ("applier-a", "applier-b"):
        registry.register(_connection(applier_id))

    for connection in registry:
        registry.remove(connection)

    assert len(registry) == 0


def test_clear_returns_everything():
    registry = ConnectionRegistry()
    connection = _connection("applier-a")
    registry.register(connection)

    assert registry.clear() == [connection]
    assert registry.snapshot() == []
