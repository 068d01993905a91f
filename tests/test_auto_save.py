from __future__ import annotations

from editguard.services.auto_save import AutoSaveQueue
from editguard.services.resource_store import ResourceStoreFailure


class _FakeTimer:
    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.callback()


class _TimerFactory:
    def __init__(self):
        self.timers: list[_FakeTimer] = []

    def __call__(self, delay, callback):
        timer = _FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer

    def live(self):
        return [t for t in self.timers if not t.cancelled]


class _FlakyStore:
    def __init__(self, inner, failures):
        self.inner = inner
        self.failures = failures
        self.calls = []

    def update(self, resource_type, resource_id, patch, **kwargs):
        self.calls.append(dict(patch))
        if self.failures > 0:
            self.failures -= 1
            raise ResourceStoreFailure(code="DB_DOWN", message="temporarily unavailable", status_code=503)
        return self.inner.update(resource_type, resource_id, patch, **kwargs)


def test_queued_changes_are_batched_after_debounce(resource_store, purchase_order):
    timers = _TimerFactory()
    saved = []
    queue = AutoSaveQueue(
        resource_store,
        "purchase_orders",
        purchase_order["id"],
        debounce_ms=500,
        timer_factory=timers,
        on_success=saved.append,
    )

    queue.queue_save("notes", "first")
    queue.queue_save("status", "sent")

    assert len(timers.live()) == 1
    assert timers.live()[0].delay == 0.5
    assert queue.pending_changes == {"notes": "first", "status": "sent"}

    timers.live()[0].fire()

    stored = resource_store.fetch_by_id("purchase_orders", purchase_order["id"])
    assert stored["notes"] == "first"
    assert stored["status"] == "sent"
    assert sorted(saved) == ["notes", "status"]
    assert queue.saved_fields == {"notes", "status"}
    assert queue.pending_changes == {}
    assert queue.last_saved is not None
    assert queue.is_saving is False


def test_save_now_flushes_immediately(resource_store, purchase_order):
    timers = _TimerFactory()
    queue = AutoSaveQueue(resource_store, "purchase_orders", purchase_order["id"], timer_factory=timers)

    queue.queue_save("notes", "now")
    queue.save_now()

    assert timers.timers[0].cancelled
    assert [t.delay for t in timers.live()] == [1.5]
    assert resource_store.fetch_by_id("purchase_orders", purchase_order["id"])["notes"] == "now"


def test_failed_batch_records_errors_and_retries_once(resource_store, purchase_order):
    timers = _TimerFactory()
    store = _FlakyStore(resource_store, failures=1)
    errors = []
    queue = AutoSaveQueue(
        store,
        "purchase_orders",
        purchase_order["id"],
        retry_delay_ms=2000,
        timer_factory=timers,
        on_error=lambda field, exc: errors.append(field),
    )

    queue.queue_save("notes", "retry me")
    timers.live()[0].fire()

    assert queue.errors == {"notes": "temporarily unavailable"}
    assert errors == ["notes"]
    retry = timers.timers[-1]
    assert retry.delay == 2.0

    retry.fire()

    assert queue.errors == {}
    assert len(store.calls) == 2
    assert resource_store.fetch_by_id("purchase_orders", purchase_order["id"])["notes"] == "retry me"


def test_retry_failure_keeps_error_without_further_retries(resource_store, purchase_order):
    timers = _TimerFactory()
    store = _FlakyStore(resource_store, failures=5)
    queue = AutoSaveQueue(store, "purchase_orders", purchase_order["id"], timer_factory=timers)

    queue.queue_save("notes", "never lands")
    timers.live()[0].fire()
    timers.timers[-1].fire()

    assert queue.errors == {"notes": "temporarily unavailable"}
    assert len(store.calls) == 2
    assert len(timers.timers) == 2


def test_save_field_and_clear_error(resource_store, purchase_order):
    store = _FlakyStore(resource_store, failures=1)
    queue = AutoSaveQueue(store, "purchase_orders", purchase_order["id"], timer_factory=_TimerFactory())

    assert queue.save_field("status", "sent") is False
    assert "status" in queue.errors
    queue.clear_error("status")
    assert queue.errors == {}

    assert queue.save_field("status", "sent") is True
    assert resource_store.fetch_by_id("purchase_orders", purchase_order["id"])["status"] == "sent"


def test_without_resource_id_everything_is_a_no_op(resource_store):
    timers = _TimerFactory()
    queue = AutoSaveQueue(resource_store, "purchase_orders", None, timer_factory=timers)

    queue.queue_save("notes", "ignored")
    assert queue.save_field("notes", "ignored") is False
    assert timers.timers == []
    assert queue.pending_changes == {}


def test_close_cancels_pending_timer(resource_store, purchase_order):
    timers = _TimerFactory()
    with AutoSaveQueue(resource_store, "purchase_orders", purchase_order["id"], timer_factory=timers) as queue:
        queue.queue_save("notes", "dropped")

    assert timers.live() == []


def test_close_cancels_retries_of_every_failed_batch(resource_store, purchase_order):
    timers = _TimerFactory()
    store = _FlakyStore(resource_store, failures=2)
    queue = AutoSaveQueue(store, "purchase_orders", purchase_order["id"], timer_factory=timers)

    queue.queue_save("notes", "first batch")
    queue.save_now()
    queue.queue_save("status", "second batch")
    queue.save_now()
    assert len(timers.live()) == 2

    queue.close()

    assert timers.live() == []
    for timer in timers.timers:
        timer.callback()
    assert len(store.calls) == 2
    assert resource_store.fetch_by_id("purchase_orders", purchase_order["id"])["notes"] is None


def test_saved_indicator_clears_after_delay(resource_store, purchase_order):
    timers = _TimerFactory()
    queue = AutoSaveQueue(
        resource_store,
        "purchase_orders",
        purchase_order["id"],
        saved_indicator_ms=1500,
        timer_factory=timers,
    )

    assert queue.save_field("notes", "done") is True
    assert queue.saved_fields == {"notes"}
    [indicator] = timers.live()
    assert indicator.delay == 1.5

    indicator.fire()

    assert queue.saved_fields == set()
    assert queue.last_saved is not None
