import asyncio

import pytest
import pytest_asyncio

from app.features.presence.domain import CLOSE_SUPERSEDED
from app.features.presence.services.broadcaster import LocalBroadcaster
from app.features.presence.services.presence_service import PresenceService
from app.features.presence.services.registry import ConnectionRegistry
from tests.conftest import FakePeer, HeldReadApplierStore

IDLE_TIMEOUT = 0.05


@pytest_asyncio.fixture
async def presence(applier_store):
    service = PresenceService(
        repository=applier_store,
        registry=ConnectionRegistry(),
        broadcaster=LocalBroadcaster(),
        idle_timeout=IDLE_TIMEOUT,
        heartbeat_interval=3600,
    )
    await service.start()
    yield service
    await service.stop()


def _status_changes(peer: FakePeer, applier_id: str) -> list[str]:
    return [m["status"] for m in peer.messages("status_change") if m["applierId"] == applier_id]


@pytest.mark.asyncio
async def test_connect_marks_active_and_broadcasts(presence, applier_store):
    peer_a = FakePeer()
    await presence.handle_connect("applier-a", peer_a)
    peer_b = FakePeer()
    await presence.handle_connect("applier-b", peer_b)

    assert applier_store.appliers["applier-a"].status == "active"
    assert applier_store.appliers["applier-a"].last_activity_at is not None
    assert _status_changes(peer_a, "applier-a") == ["active"]
    assert _status_changes(peer_a, "applier-b") == ["active"]
    assert presence.get_connected_appliers() == ["applier-a", "applier-b"]
    assert presence.is_applier_connected("applier-a")

    message = peer_a.messages("status_change")[0]
    assert set(message) == {"type", "applierId", "status", "timestamp"}
    assert isinstance(message["timestamp"], int)


@pytest.mark.asyncio
async def test_new_connection_supersedes_previous(presence, applier_store):
    first = FakePeer()
    first_conn = await presence.handle_connect("applier-a", first)
    second = FakePeer()
    await presence.handle_connect("applier-a", second)

    assert first.closed is not None
    assert first.closed[0] == CLOSE_SUPERSEDED
    assert first_conn.idle_timer is None
    assert presence.registry.get("applier-a").peer is second
    assert len(presence.registry) == 1


@pytest.mark.asyncio
async def test_superseded_close_keeps_applier_online(presence, applier_store):
    first_conn = await presence.handle_connect("applier-a", FakePeer())
    await presence.handle_connect("applier-a", FakePeer())

    await presence.handle_disconnect(first_conn)

    assert presence.is_applier_connected("applier-a")
    assert applier_store.appliers["applier-a"].status == "active"
    assert ("applier-a", "offline") not in applier_store.updates


@pytest.mark.asyncio
async def test_disconnect_marks_offline(presence, applier_store):
    watcher = FakePeer()
    await presence.handle_connect("applier-b", watcher)
    connection = await presence.handle_connect("applier-a", FakePeer())

    await presence.handle_disconnect(connection)

    assert applier_store.appliers["applier-a"].status == "offline"
    assert not presence.is_applier_connected("applier-a")
    assert _status_changes(watcher, "applier-a") == ["active", "offline"]


@pytest.mark.asyncio
async def test_disconnect_preserves_inactive(presence, applier_store):
    connection = await presence.handle_connect("applier-a", FakePeer())
    applier_store.appliers["applier-a"].status = "inactive"

    await presence.handle_disconnect(connection)

    assert applier_store.appliers["applier-a"].status == "inactive"
    assert applier_store.updates == [("applier-a", "active")]


@pytest.mark.asyncio
async def test_disconnect_of_unknown_applier_writes_nothing(presence, applier_store):
    connection = await presence.handle_connect("ghost", FakePeer())

    await presence.handle_disconnect(connection)

    assert applier_store.updates == []
    assert not presence.is_applier_connected("ghost")


@pytest.mark.asyncio
async def test_idle_fires_once_after_silence(presence, applier_store):
    peer = FakePeer()
    await presence.handle_connect("applier-a", peer)

    await asyncio.sleep(IDLE_TIMEOUT * 3)
    await asyncio.sleep(IDLE_TIMEOUT * 3)

    assert applier_store.appliers["applier-a"].status == "idle"
    assert applier_store.updates == [("applier-a", "active"), ("applier-a", "idle")]
    assert _status_changes(peer, "applier-a") == ["active", "idle"]


@pytest.mark.asyncio
async def test_heartbeat_after_idle_returns_to_active(presence, applier_store):
    peer = FakePeer()
    connection = await presence.handle_connect("applier-a", peer)
    await asyncio.sleep(IDLE_TIMEOUT * 3)
    assert applier_store.appliers["applier-a"].status == "idle"

    await presence.handle_message(connection, '{"type": "heartbeat"}')

    assert applier_store.appliers["applier-a"].status == "active"
    assert _status_changes(peer, "applier-a") == ["active", "idle", "active"]
    assert len(peer.messages("ack")) == 1


@pytest.mark.asyncio
async def test_activity_while_active_only_acks(presence, applier_store):
    peer = FakePeer()
    connection = await presence.handle_connect("applier-a", peer)
    before = connection.last_activity

    await asyncio.sleep(0.005)
    await presence.handle_message(connection, '{"type": "activity"}')

    assert applier_store.updates == [("applier-a", "active")]
    assert len(peer.messages("ack")) == 1
    assert connection.last_activity >= before
    assert connection.idle_timer is not None


@pytest.mark.asyncio
async def test_activity_keeps_applier_from_going_idle(applier_store):
    service = PresenceService(
        repository=applier_store,
        registry=ConnectionRegistry(),
        broadcaster=LocalBroadcaster(),
        idle_timeout=0.2,
        heartbeat_interval=3600,
    )
    await service.start()
    try:
        connection = await service.handle_connect("applier-a", FakePeer())
        for _ in range(3):
            await asyncio.sleep(0.1)
            await service.handle_message(connection, '{"type": "activity"}')

        assert applier_store.appliers["applier-a"].status == "active"
    finally:
        await service.stop()


@pytest.mark.asyncio
@pytest.mark.parametrize("raw", ["not json", "[1, 2]", '"heartbeat"', '{"type": "typing"}'])
async def test_unusable_messages_are_ignored(presence, applier_store, raw):
    peer = FakePeer()
    connection = await presence.handle_connect("applier-a", peer)

    await presence.handle_message(connection, raw)

    assert peer.messages("ack") == []
    assert applier_store.updates == [("applier-a", "active")]


@pytest.mark.asyncio
async def test_persistence_failure_does_not_raise_or_broadcast(presence, applier_store):
    applier_store.fail_updates = True
    peer = FakePeer()

    connection = await presence.handle_connect("applier-a", peer)

    assert presence.is_applier_connected("applier-a")
    assert peer.messages("status_change") == []
    assert await presence.update_status("applier-a", "idle") is False

    applier_store.fail_reads = True
    await presence.handle_message(connection, '{"type": "heartbeat"}')
    assert len(peer.messages("ack")) == 1

    await presence.handle_disconnect(connection)
    assert not presence.is_applier_connected("applier-a")


@pytest.mark.asyncio
async def test_each_transition_broadcasts_once_to_open_sockets(presence):
    peers = {applier_id: FakePeer() for applier_id in ("applier-a", "applier-b", "applier-c")}
    for applier_id, peer in peers.items():
        await presence.handle_connect(applier_id, peer)
    for peer in peers.values():
        peer.sent.clear()
    peers["applier-c"].open = False
    peers["applier-b"].fail_send = True

    assert await presence.update_status("applier-a", "idle") is True

    assert _status_changes(peers["applier-a"], "applier-a") == ["idle"]
    assert peers["applier-c"].sent == []


@pytest.mark.asyncio
async def test_close_cancels_idle_timer(presence, applier_store):
    connection = await presence.handle_connect("applier-a", FakePeer())

    await presence.handle_disconnect(connection)
    await asyncio.sleep(IDLE_TIMEOUT * 3)

    assert connection.idle_timer is None
    assert applier_store.updates == [("applier-a", "active"), ("applier-a", "offline")]


@pytest.mark.asyncio
async def test_sweep_pings_open_and_prunes_dead_sockets(presence, applier_store):
    healthy = FakePeer()
    closed = FakePeer()
    broken = FakePeer()
    await presence.handle_connect("applier-a", healthy)
    closed_conn = await presence.handle_connect("applier-b", closed)
    await presence.handle_connect("applier-c", broken)
    closed.open = False
    broken.fail_ping = True

    pruned = await presence.sweep()

    assert sorted(pruned) == ["applier-b", "applier-c"]
    assert healthy.pings == 1
    assert presence.get_connected_appliers() == ["applier-a"]
    assert closed_conn.idle_timer is None

    # A close arriving after the sweep still takes the applier offline
    await presence.handle_disconnect(closed_conn)
    assert applier_store.appliers["applier-b"].status == "offline"


@pytest.mark.asyncio
async def test_stop_cancels_timers_and_clears_registry(applier_store):
    service = PresenceService(
        repository=applier_store,
        registry=ConnectionRegistry(),
        broadcaster=LocalBroadcaster(),
        idle_timeout=IDLE_TIMEOUT,
        heartbeat_interval=3600,
    )
    await service.start()
    connection = await service.handle_connect("applier-a", FakePeer())
    assert service.health_check()["healthy"] is True

    await service.stop()
    await asyncio.sleep(IDLE_TIMEOUT * 3)

    assert connection.idle_timer is None
    assert len(service.registry) == 0
    assert applier_store.updates == [("applier-a", "active")]
    assert service.health_check() == {
        "healthy": False,
        "service": "presence",
        "connections": 0,
        "broadcaster": "memory",
    }


@pytest_asyncio.fixture
async def held_store():
    store = HeldReadApplierStore({"applier-a": "offline"})
    yield store
    store.release.set()


@pytest_asyncio.fixture
async def held_presence(held_store):
    service = PresenceService(
        repository=held_store,
        registry=ConnectionRegistry(),
        broadcaster=LocalBroadcaster(),
        idle_timeout=IDLE_TIMEOUT,
        heartbeat_interval=3600,
    )
    await service.start()
    yield service
    await service.stop()


async def _pause_idle_read(store: HeldReadApplierStore) -> None:
    store.hold_reads = True
    await asyncio.wait_for(store.read_started.wait(), timeout=1)


@pytest.mark.asyncio
async def test_close_during_idle_check_stays_offline(held_presence, held_store):
    connection = await held_presence.handle_connect("applier-a", FakePeer())
    await _pause_idle_read(held_store)

    await held_presence.handle_disconnect(connection)
    held_store.release.set()
    await asyncio.sleep(0.01)

    assert held_store.appliers["applier-a"].status == "offline"
    assert held_store.updates == [("applier-a", "active"), ("applier-a", "offline")]


@pytest.mark.asyncio
async def test_heartbeat_during_idle_check_stays_active(held_presence, held_store):
    peer = FakePeer()
    connection = await held_presence.handle_connect("applier-a", peer)
    await _pause_idle_read(held_store)

    await held_presence.handle_message(connection, '{"type": "heartbeat"}')
    held_store.release.set()
    await asyncio.sleep(0.01)

    assert held_store.appliers["applier-a"].status == "active"
    assert held_store.updates == [("applier-a", "active")]
    assert len(peer.messages("ack")) == 1
    assert connection.idle_timer is not None


@pytest.mark.asyncio
async def test_new_connection_during_idle_check_stays_active(held_presence, held_store):
    await held_presence.handle_connect("applier-a", FakePeer())
    await _pause_idle_read(held_store)

    await held_presence.handle_connect("applier-a", FakePeer())
    held_store.release.set()
    await asyncio.sleep(0.01)

    assert held_store.appliers["applier-a"].status == "active"
    assert held_store.updates == [("applier-a", "active"), ("applier-a", "active")]
