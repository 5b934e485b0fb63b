from datetime import datetime, timedelta, timezone

from placetrack.history import HistoryStore
from placetrack.storage import MemoryStorage


def _view(user_id, place_id, **extra):
    return {
        "userId": user_id,
        "userType": "user",
        "actionType": "place_view",
        "entityId": place_id,
        "entityName": f"Place {place_id}",
        "entityType": "place",
        **extra,
    }


def test_append_builds_full_entry(storage, clock) -> None:
    store = HistoryStore(storage, clock=clock)
    entry = store.append(_view(7, "p1", metadata={"source": "map"}, custom="yes"))

    assert entry["timestamp"] == clock().isoformat()
    assert entry["userId"] == 7
    assert entry["entityType"] == "place"
    assert entry["metadata"] == {"source": "map"}
    assert entry["custom"] == "yes"
    assert store.export_all() == [entry]


def test_append_defaults_missing_fields(storage) -> None:
    entry = HistoryStore(storage).append(actionType="category_view")

    assert entry["userId"] is None
    assert entry["entityId"] is None
    assert entry["metadata"] == {}
    assert entry["actionType"] == "category_view"


def test_caller_cannot_override_id_or_timestamp(storage, clock) -> None:
    store = HistoryStore(storage, clock=clock)
    entry = store.append(_view(1, "p1", id="forged", timestamp="1999-01-01T00:00:00Z"))

    assert entry["id"] != "forged"
    assert entry["timestamp"] == clock().isoformat()


def test_ids_are_unique(storage) -> None:
    store = HistoryStore(storage)
    ids = {store.append(_view(1, i))["id"] for i in range(50)}
    assert len(ids) == 50


def test_recent_returns_newest_first(storage) -> None:
    store = HistoryStore(storage)
    for i in range(5):
        store.append(_view(1, i))

    assert [e["entityId"] for e in store.recent(3)] == [4, 3, 2]
    assert [e["entityId"] for e in store.recent()] == [4, 3, 2, 1, 0]
    assert store.recent(0) == []


def test_cap_evicts_oldest_first(storage) -> None:
    store = HistoryStore(storage, limit=3)
    for i in range(4):
        store.append(_view(1, i))

    assert len(store) == 3
    assert [e["entityId"] for e in store.export_all()] == [1, 2, 3]


def test_default_cap_is_ten_thousand(storage) -> None:
    store = HistoryStore(storage)
    store.import_all([_view(1, i) for i in range(10000)])
    store.append(_view(1, "newest"))

    entries = store.export_all()
    assert len(entries) == 10000
    assert entries[0]["entityId"] == 1
    assert entries[-1]["entityId"] == "newest"


def test_queries_filter_in_insertion_order(storage) -> None:
    store = HistoryStore(storage)
    store.append(_view(1, "p1"))
    store.append(_view(2, "p1"))
    store.append({"userId": 1, "actionType": "route_view", "entityId": "r1", "entityType": "route"})
    store.append(_view(1, "p2"))

    assert [e["entityId"] for e in store.query_by_user(1)] == ["p1", "r1", "p2"]
    assert [e["userId"] for e in store.query_by_type("place_view")] == [1, 2, 1]
    assert [e["userId"] for e in store.query_by_entity("place", "p1")] == [1, 2]
    assert store.query_by_entity("route", "p1") == []
    assert store.query_by_user(99) == []


def test_query_by_period_is_inclusive(storage, clock) -> None:
    store = HistoryStore(storage, clock=clock)
    start = clock()
    store.append(_view(1, "a"))
    clock.advance(hours=1)
    store.append(_view(1, "b"))
    clock.advance(hours=1)
    store.append(_view(1, "c"))

    found = store.query_by_period(start, start + timedelta(hours=1))
    assert [e["entityId"] for e in found] == ["a", "b"]

    found = store.query_by_period("2024-03-10T13:00:00Z", "2024-03-10T14:00:00.000Z")
    assert [e["entityId"] for e in found] == ["b", "c"]


def test_query_by_period_skips_bad_timestamps(storage) -> None:
    store = HistoryStore(storage)
    store.import_all(
        [
            {"entityId": "ok", "timestamp": "2024-01-02T00:00:00.000Z"},
            {"entityId": "bad", "timestamp": "yesterday"},
            {"entityId": "none"},
        ]
    )
    found = store.query_by_period(datetime(2024, 1, 1, tzinfo=timezone.utc), datetime(2024, 1, 3, tzinfo=timezone.utc))
    assert [e["entityId"] for e in found] == ["ok"]
    assert store.query_by_period("garbage", "2024-01-03") == []


def test_prune_keeps_recent_entries(storage, clock) -> None:
    store = HistoryStore(storage, clock=clock)
    store.append(_view(1, "old"))
    clock.advance(days=40)
    store.append(_view(1, "new"))

    assert store.prune_older_than(30) == 1
    assert [e["entityId"] for e in store.export_all()] == ["new"]


def test_import_rejects_non_sequences(storage) -> None:
    store = HistoryStore(storage)
    store.append(_view(1, "p1"))
    before = store.export_all()

    assert store.import_all("not an array") is False
    assert store.import_all({"a": 1}) is False
    assert store.import_all(None) is False
    assert store.export_all() == before


def test_export_then_import_is_unchanged(storage) -> None:
    store = HistoryStore(storage)
    for i in range(3):
        store.append(_view(i, f"p{i}"))
    recent = store.recent(10)

    assert store.import_all(store.export_all()) is True
    assert store.recent(10) == recent
    assert store.query_by_user(1) == [e for e in recent if e["userId"] == 1]


def test_corrupt_slot_reads_as_empty() -> None:
    store = HistoryStore(MemoryStorage({"historyData": b"[{broken"}))
    assert store.recent() == []
    assert store.query_by_type("place_view") == []


def test_append_survives_write_failure(failing_storage) -> None:
    store = HistoryStore(failing_storage)
    entry = store.append(_view(1, "p1"))

    assert entry["entityId"] == "p1"
    assert store.export_all() == []


def test_clear(storage) -> None:
    store = HistoryStore(storage)
    store.append(_view(1, "p1"))
    assert store.clear() is True
    assert len(store) == 0


def test_import_respects_zero_cap(storage) -> None:
    store = HistoryStore(storage, limit=0)

    assert store.import_all([_view(1, "a"), _view(1, "b")]) is True
    assert len(store) == 0
    store.append(_view(1, "c"))
    assert len(store) == 0


def test_import_over_cap_keeps_newest(storage) -> None:
    store = HistoryStore(storage, limit=2)

    assert store.import_all([_view(1, i) for i in range(5)]) is True
    assert [e["entityId"] for e in store.export_all()] == [3, 4]
