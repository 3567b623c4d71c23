from __future__ import annotations

import threading

import pytest

from briefdesk.models import ResultEntry
from briefdesk.store.results import ResultStore


def test_add_result_inserts_newest_first_and_evicts_oldest() -> None:
    store = ResultStore(max_entries=3)
    entries = [store.add_result({"n": i}, source_ip="10.0.0.1") for i in range(5)]

    results = store.get_results()
    assert len(results) == 3
    assert [e.id for e in results] == [entries[4].id, entries[3].id, entries[2].id]
    assert [e.payload["n"] for e in results] == [4, 3, 2]
    assert results[0].source_ip == "10.0.0.1"
    # Non-decreasing timestamps in insertion order (ISO-8601 UTC sorts lexicographically).
    assert results[2].received_at <= results[1].received_at <= results[0].received_at


def test_entries_have_unique_ids_and_wire_format() -> None:
    store = ResultStore()
    a = store.add_result({"x": 1})
    b = store.add_result({"x": 1})
    assert a.id != b.id
    wire = a.to_wire()
    assert set(wire) == {"id", "receivedAt", "sourceIp", "payload"}
    assert wire["sourceIp"] is None
    assert wire["receivedAt"].endswith("Z")


def test_get_results_returns_a_copy() -> None:
    store = ResultStore()
    store.add_result({"x": 1})
    snap = store.get_results()
    snap.clear()
    assert len(store.get_results()) == 1


def test_max_entries_must_be_positive() -> None:
    with pytest.raises(ValueError):
        ResultStore(max_entries=0)


def test_subscriber_receives_each_entry_in_order() -> None:
    store = ResultStore(max_entries=2)
    seen: list[ResultEntry] = []
    store.subscribe(seen.append)

    added = [store.add_result({"n": i}) for i in range(5)]

    assert [e.id for e in seen] == [e.id for e in added]


def test_unsubscribe_stops_notifications_and_is_idempotent() -> None:
    store = ResultStore()
    seen: list[ResultEntry] = []
    unsubscribe = store.subscribe(seen.append)
    first = store.add_result({"n": 1})
    unsubscribe()
    unsubscribe()
    store.add_result({"n": 2})

    assert [e.id for e in seen] == [first.id]
    assert store.subscriber_count == 0


def test_same_callback_subscribed_twice_is_independent() -> None:
    store = ResultStore()
    seen: list[ResultEntry] = []
    unsub_a = store.subscribe(seen.append)
    store.subscribe(seen.append)
    store.add_result({"n": 1})
    unsub_a()
    store.add_result({"n": 2})

    assert [e.payload["n"] for e in seen] == [1, 1, 2]


def test_failing_subscriber_is_isolated() -> None:
    store = ResultStore()
    seen: list[ResultEntry] = []

    def boom(_entry: ResultEntry) -> None:
        raise RuntimeError("broken client")

    store.subscribe(boom)
    store.subscribe(seen.append)
    entry = store.add_result({"n": 1})

    assert [e.id for e in seen] == [entry.id]
    assert store.get_results()[0].id == entry.id
    assert store.notify_failures == 1


def test_subscriber_added_during_dispatch_only_sees_later_entries() -> None:
    store = ResultStore()
    late: list[ResultEntry] = []

    def register_late(_entry: ResultEntry) -> None:
        if store.subscriber_count == 1:
            store.subscribe(late.append)

    store.subscribe(register_late)
    store.add_result({"n": 1})
    second = store.add_result({"n": 2})

    assert [e.id for e in late] == [second.id]


def test_subscriber_removed_during_dispatch_is_skipped_in_same_round() -> None:
    store = ResultStore()
    seen: list[ResultEntry] = []
    holder: dict = {}

    def remove_other(_entry: ResultEntry) -> None:
        holder["unsub"]()

    store.subscribe(remove_other)
    holder["unsub"] = store.subscribe(seen.append)
    store.add_result({"n": 1})

    assert seen == []


def test_snapshot_and_subscribe_has_no_gap_or_duplicate() -> None:
    store = ResultStore(max_entries=100)
    before = [store.add_result({"n": i}) for i in range(3)]
    live: list[ResultEntry] = []
    snapshot, unsubscribe = store.snapshot_and_subscribe(live.append)
    after = [store.add_result({"n": i}) for i in range(3, 5)]
    unsubscribe()

    assert [e.id for e in snapshot] == [e.id for e in reversed(before)]
    assert [e.id for e in live] == [e.id for e in after]


def test_concurrent_adds_keep_order_consistent_with_notifications() -> None:
    store = ResultStore(max_entries=1000)
    seen: list[ResultEntry] = []
    store.subscribe(seen.append)

    def worker(k: int) -> None:
        for i in range(50):
            store.add_result({"worker": k, "i": i})

    threads = [threading.Thread(target=worker, args=(k,)) for k in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    results = store.get_results()
    assert len(results) == 200
    # Notification order is exactly the reverse of the newest-first buffer.
    assert [e.id for e in seen] == [e.id for e in reversed(results)]
    assert len({e.id for e in results}) == 200


def test_get_result_by_id() -> None:
    store = ResultStore(max_entries=1)
    first = store.add_result({"n": 1})
    assert store.get_result(first.id) is first
    store.add_result({"n": 2})
    assert store.get_result(first.id) is None
