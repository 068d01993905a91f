from __future__ import annotations

from sqlalchemy.exc import OperationalError

from editguard.services.concurrent_edit import ConcurrentEditCoordinator
from editguard.services.notifications import CollectingNotificationSink
from editguard.services.optimistic_lock import OptimisticLock
from editguard.services.presence_tracker import PresenceTracker
from editguard.services.resource_store import ResourceStoreFailure


class _DictResourceStore:
    def __init__(self, records: dict[str, dict]):
        self.records = records
        self.fail_with: Exception | None = None

    def fetch_by_id(self, resource_type, resource_id):
        if self.fail_with is not None:
            raise self.fail_with
        return dict(self.records[resource_id])


def _coordinator(store, resource_id="po-1", **kwargs):
    lock = OptimisticLock("Purchase Order", notifier=CollectingNotificationSink())
    return ConcurrentEditCoordinator(
        store,
        lock,
        resource_type="purchase_orders",
        resource_id=resource_id,
        **kwargs,
    )


def test_new_record_can_always_save():
    store = _DictResourceStore({})
    store.fail_with = RuntimeError("should not be called")
    coordinator = _coordinator(store, resource_id=None)

    check = coordinator.check_before_save()

    assert check.can_save is True
    assert check.latest_data is None


def test_concurrent_update_blocks_save_until_server_version_accepted():
    store = _DictResourceStore({"po-1": {"id": "po-1", "updated_at": "2024-01-01T10:00:00Z", "notes": "A"}})
    refreshed = []
    coordinator = _coordinator(store, on_refresh=refreshed.append)
    coordinator.lock.initialize(store.fetch_by_id("purchase_orders", "po-1"))

    store.records["po-1"] = {"id": "po-1", "updated_at": "2024-01-01T10:05:00Z", "notes": "B"}
    check = coordinator.check_before_save()

    assert check.can_save is False
    assert check.latest_data["updated_at"] == "2024-01-01T10:05:00Z"
    assert coordinator.show_conflict_dialog is True

    accepted = coordinator.handle_accept_server()

    assert accepted == store.records["po-1"]
    assert refreshed == [accepted]
    assert coordinator.show_conflict_dialog is False
    assert coordinator.lock.original_updated_at.isoformat() == "2024-01-01T10:05:00+00:00"
    assert coordinator.check_before_save().can_save is True


def test_keep_local_allows_the_next_save():
    store = _DictResourceStore({"po-1": {"id": "po-1", "updated_at": "2024-01-01T10:00:00Z"}})
    coordinator = _coordinator(store)
    coordinator.lock.initialize(store.fetch_by_id("purchase_orders", "po-1"))
    store.records["po-1"] = {"id": "po-1", "updated_at": "2024-01-01T10:05:00Z"}
    assert coordinator.check_before_save().can_save is False

    coordinator.handle_keep_local()

    assert coordinator.show_conflict_dialog is False
    check = coordinator.check_before_save()
    assert check.can_save is True
    assert check.latest_data["updated_at"] == "2024-01-01T10:05:00Z"


def test_fetch_failure_fails_open_by_default():
    store = _DictResourceStore({})
    store.fail_with = OperationalError("SELECT", {}, Exception("connection reset"))
    coordinator = _coordinator(store, fail_open=True)
    coordinator.lock.initialize({"id": "po-1", "updated_at": "2024-01-01T10:00:00Z"})

    check = coordinator.check_before_save()

    assert check.can_save is True
    assert coordinator.has_conflict is False


def test_fetch_failure_can_be_configured_to_fail_closed():
    store = _DictResourceStore({})
    store.fail_with = ResourceStoreFailure(code="RESOURCE_NOT_FOUND", message="gone", status_code=404)
    coordinator = _coordinator(store, fail_open=False)

    assert coordinator.check_before_save().can_save is False


def test_presence_follows_edit_mode(presence_store, clock):
    store = _DictResourceStore({"po-1": {"id": "po-1", "updated_at": "2024-01-01T10:00:00Z"}})
    tracker = PresenceTracker(presence_store, "alice", clock=clock, enabled=True, heartbeat_seconds=3600)
    observer = PresenceTracker(presence_store, "bob", clock=clock, enabled=True)
    coordinator = _coordinator(store, tracker=tracker)

    assert observer.list_active("purchase_orders", "po-1") == []

    coordinator.set_editing(True)
    assert coordinator.presence_active is True
    assert [s.user_id for s in observer.list_active("purchase_orders", "po-1")] == ["alice"]
    assert tracker.heartbeats_running is True

    coordinator.set_editing(False)
    assert observer.list_active("purchase_orders", "po-1") == []
    assert tracker.heartbeats_running is False


def test_presence_disabled_coordinator_never_registers(presence_store, clock):
    store = _DictResourceStore({})
    tracker = PresenceTracker(presence_store, "alice", clock=clock, enabled=True, heartbeat_seconds=3600)
    observer = PresenceTracker(presence_store, "bob", clock=clock, enabled=True)
    coordinator = _coordinator(store, tracker=tracker, enabled=False)

    coordinator.set_editing(True)

    assert observer.list_active("purchase_orders", "po-1") == []


def test_anonymous_or_disabled_tracker_starts_no_heartbeat_thread(presence_store, clock):
    store = _DictResourceStore({})
    anonymous = PresenceTracker(presence_store, None, clock=clock, enabled=True, heartbeat_seconds=3600)
    disabled = PresenceTracker(presence_store, "carol", clock=clock, enabled=False, heartbeat_seconds=3600)

    for tracker in (anonymous, disabled):
        coordinator = _coordinator(store, tracker=tracker)
        coordinator.set_editing(True)

        assert coordinator.presence_active is True
        assert tracker.heartbeats_running is False
        coordinator.close()


def test_other_editors_and_close(presence_store, clock):
    store = _DictResourceStore({})
    alice = PresenceTracker(presence_store, "alice", clock=clock, enabled=True, heartbeat_seconds=3600)
    bob = PresenceTracker(presence_store, "bob", clock=clock, enabled=True)
    bob.register("purchase_orders", "po-1")

    with _coordinator(store, tracker=alice) as coordinator:
        coordinator.set_editing(True)
        coordinator.lock.initialize({"id": "po-1", "updated_at": "2024-01-01T10:00:00Z"})
        assert [s.user_id for s in coordinator.other_editors()] == ["bob"]

    assert coordinator.lock.original_data is None
    assert [s.user_id for s in bob.list_active("purchase_orders", "po-1")] == []
    coordinator.close()
