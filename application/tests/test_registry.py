from conftest import FakeStore, make_candidate, make_doc

from vending_registry.errors import SubscriptionError
from vending_registry.gateway import WriteGateway
from vending_registry.memory_store import InMemoryStore
from vending_registry.registry import RegistrySync, SyncState


def test_opens_one_subscription_on_construction() -> None:
    store = FakeStore()
    registry = RegistrySync(store)
    assert store.subscribe_calls == 1
    assert registry.state is SyncState.SUBSCRIBING
    assert registry.snapshot == ()


def test_push_replaces_snapshot_and_notifies_each_observer_once() -> None:
    store = FakeStore()
    registry = RegistrySync(store)
    seen_a, seen_b = [], []
    registry.add_observer(seen_a.append)
    registry.add_observer(seen_b.append)

    store.subscriptions[0].push([make_doc("m2"), make_doc("m1")])

    assert registry.state is SyncState.LIVE
    assert [r.id for r in registry.snapshot] == ["m2", "m1"]
    assert len(seen_a) == 1 and len(seen_b) == 1
    assert seen_a[0] is registry.snapshot

    store.subscriptions[0].push([make_doc("m3")])
    assert [r.id for r in registry.snapshot] == ["m3"]
    assert len(seen_a) == 2


def test_no_notifications_after_close() -> None:
    store = FakeStore()
    registry = RegistrySync(store)
    seen = []
    registry.add_observer(seen.append)
    store.subscriptions[0].push([make_doc("m1")])

    registry.close()
    store.subscriptions[0].push([make_doc("m1"), make_doc("m2")])

    assert len(seen) == 1
    assert registry.state is SyncState.CLOSED
    assert store.subscriptions[0].close_calls == 1


def test_close_is_idempotent() -> None:
    store = FakeStore()
    registry = RegistrySync(store)
    registry.close()
    registry.close()
    assert store.subscriptions[0].close_calls == 1


def test_close_before_first_push() -> None:
    store = FakeStore()
    registry = RegistrySync(store)
    registry.close()
    assert registry.wait_ready(timeout=0)
    store.subscriptions[0].push([make_doc("m1")])
    assert registry.snapshot == ()


def test_failed_open_is_terminal_and_reported_once() -> None:
    store = FakeStore(fail_subscribe=True)
    errors = []
    registry = RegistrySync(store, observers=[(lambda s: None, errors.append)])

    assert registry.state is SyncState.ERROR
    assert len(errors) == 1
    assert isinstance(errors[0], SubscriptionError)
    assert isinstance(errors[0].__cause__, ConnectionError)
    assert store.subscribe_calls == 1

    late = []
    registry.add_observer(lambda s: None, late.append)
    assert late == [registry.error]
    registry.close()


def test_error_channel_moves_live_registry_to_error() -> None:
    store = FakeStore()
    registry = RegistrySync(store)
    errors, snapshots = [], []
    registry.add_observer(snapshots.append, errors.append)
    sub = store.subscriptions[0]
    sub.push([make_doc("m1")])

    sub.fail(RuntimeError("stream dropped"))
    sub.fail(RuntimeError("again"))
    sub.push([make_doc("m2")])

    assert registry.state is SyncState.ERROR
    assert len(errors) == 1
    assert len(snapshots) == 1
    assert [r.id for r in registry.snapshot] == ["m1"]


def test_removed_observer_stops_receiving() -> None:
    store = FakeStore()
    registry = RegistrySync(store)
    seen = []
    remove = registry.add_observer(seen.append)
    remove()
    store.subscriptions[0].push([make_doc("m1")])
    assert seen == []


def test_observes_writes_through_in_memory_store() -> None:
    store = InMemoryStore()
    registry = RegistrySync(store)
    gateway = WriteGateway(store)
    assert registry.state is SyncState.LIVE

    first = gateway.create(make_candidate())
    second = gateway.create(make_candidate(description="second"))
    assert [r.id for r in registry.snapshot] == [second, first]

    gateway.update(first, {"description": "touched"})
    assert [r.id for r in registry.snapshot] == [first, second]

    gateway.delete(second)
    assert [r.id for r in registry.snapshot] == [first]
    registry.close()


def test_failing_observer_does_not_starve_the_others_or_the_write() -> None:
    store = InMemoryStore()
    seen = []

    def broken(snapshot):
        if snapshot:
            raise RuntimeError("observer bug")

    registry = RegistrySync(store, observers=[(broken, None), (lambda s: seen.append(len(s)), None)])
    gateway = WriteGateway(store)

    record_id = gateway.create(make_candidate())

    assert seen == [0, 1]
    assert registry.state is SyncState.LIVE
    assert registry.find(record_id) is not None
    registry.close()


def test_close_from_inside_an_observer_stops_the_fan_out() -> None:
    store = FakeStore()
    late = []
    registry = None

    def closer(snapshot):
        if snapshot:
            registry.close()

    registry = RegistrySync(store, observers=[(closer, None), (lambda s: late.append(len(s)), None)])
    sub = store.subscriptions[0]
    sub.push([])
    sub.push([make_doc("m1")])
    sub.push([make_doc("m1"), make_doc("m2")])

    assert registry.state is SyncState.CLOSED
    assert late == [0]
    assert sub.close_calls == 1
