"""Availability overrides: round-trips, toggling, batched reads and the change feed."""
from datetime import date

import pytest
from sqlmodel import Session, select

from slot_booking.models.availability import DateUnavailability, DayWindow, SlotPreference
from slot_booking.services.availability_store import (
    DateKey,
    GlobalKey,
    OverrideKind,
    SlotKey,
    SqlAvailabilityStore,
    WindowKey,
    default_for,
    make_key,
)
from slot_booking.services.change_feed import AvailabilityProjection, ChangeFeed
from slot_booking.services.errors import ValidationError

D1 = date(2030, 6, 1)
D2 = date(2030, 6, 2)

OVERRIDE_CASES = [
    (OverrideKind.GLOBAL, GlobalKey(1), False),
    (OverrideKind.DATE, DateKey(1, D1), True),
    (OverrideKind.SLOT, SlotKey(1, "s1"), True),
    (OverrideKind.WINDOW, WindowKey(1, D1, DayWindow.MORNING), False),
]


@pytest.fixture
def store(session: Session) -> SqlAvailabilityStore:
    return SqlAvailabilityStore(session, feed=ChangeFeed())


def test_defaults():
    assert default_for(OverrideKind.GLOBAL) is True
    assert default_for(OverrideKind.DATE) is False
    assert default_for(OverrideKind.SLOT) is False
    assert default_for(OverrideKind.WINDOW) is True


@pytest.mark.parametrize("kind,key,value", OVERRIDE_CASES)
def test_set_then_remove_returns_to_default(store, kind, key, value):
    assert store.get_override(kind, key) == default_for(kind)

    store.set_override(kind, key, value)
    assert store.get_override(kind, key) == value

    assert store.remove_override(kind, key) is True
    assert store.get_override(kind, key) == default_for(kind)
    assert store.remove_override(kind, key) is False


def test_set_is_an_upsert(store, session):
    store.set_override(OverrideKind.SLOT, SlotKey(1, "s1"), True)
    first = store.get_record(OverrideKind.SLOT, SlotKey(1, "s1"))
    store.set_override(OverrideKind.SLOT, SlotKey(1, "s1"), False)
    store.set_override(OverrideKind.SLOT, SlotKey(1, "s1"), True)

    rows = session.exec(select(SlotPreference).where(SlotPreference.player_id == 1)).all()
    assert len(rows) == 1
    record = store.get_record(OverrideKind.SLOT, SlotKey(1, "s1"))
    assert record.value is True
    assert record.created_at == first.created_at
    assert record.updated_at >= first.updated_at


def test_toggle_twice_restores_state_without_duplicates(store, session):
    key = DateKey(4, D1)
    for _ in range(2):
        if store.get_override(OverrideKind.DATE, key):
            store.remove_override(OverrideKind.DATE, key)
        else:
            store.set_override(OverrideKind.DATE, key, True)
        rows = session.exec(select(DateUnavailability).where(DateUnavailability.player_id == 4)).all()
        assert len(rows) <= 1

    assert store.get_override(OverrideKind.DATE, key) is False


def test_keys_accept_plain_parts():
    assert make_key(OverrideKind.DATE, 3, "2030-06-01") == DateKey(3, D1)
    assert make_key(OverrideKind.WINDOW, 3, D1, "EVENING") == WindowKey(3, D1, DayWindow.EVENING)
    with pytest.raises(ValidationError):
        make_key(OverrideKind.SLOT, 3)


def test_window_key_round_trips_as_enum(store):
    store.set_override(OverrideKind.WINDOW, (2, "2030-06-01", "AFTERNOON"), False)
    [record] = store.get_overrides_for_players(OverrideKind.WINDOW, [2])
    assert record.key == WindowKey(2, D1, DayWindow.AFTERNOON)
    assert record.key.window is DayWindow.AFTERNOON


def test_batched_read_chunks_ids_and_merges_in_order(store, monkeypatch):
    player_ids = list(range(1, 24))
    store.set_override(OverrideKind.DATE, DateKey(23, D1), True)
    store.set_override(OverrideKind.DATE, DateKey(1, D2), True)
    store.set_override(OverrideKind.DATE, DateKey(5, D1), True)
    store.set_override(OverrideKind.DATE, DateKey(30, D1), True)  # not requested

    chunks = []
    original = store._query_chunk

    def spy(kind, chunk, range_start, range_end):
        chunks.append(list(chunk))
        return original(kind, chunk, range_start, range_end)

    monkeypatch.setattr(store, "_query_chunk", spy)

    records = store.get_overrides_for_players(OverrideKind.DATE, player_ids)

    assert [len(c) for c in chunks] == [10, 10, 3]
    assert sorted(sum(chunks, [])) == player_ids
    assert [r.key for r in records] == [DateKey(5, D1), DateKey(23, D1), DateKey(1, D2)]


def test_batched_read_dedupes_ids_and_applies_date_range(store):
    store.set_override(OverrideKind.DATE, DateKey(1, D1), True)
    store.set_override(OverrideKind.DATE, DateKey(1, D2), True)

    records = store.get_overrides_for_players(OverrideKind.DATE, [1, 1, 1], range_start=D2)
    assert [r.key for r in records] == [DateKey(1, D2)]
    assert store.get_overrides_for_players(OverrideKind.DATE, []) == []


def test_slot_records_sort_by_slot_then_player(store):
    store.set_override(OverrideKind.SLOT, SlotKey(2, "b"), True)
    store.set_override(OverrideKind.SLOT, SlotKey(1, "b"), True)
    store.set_override(OverrideKind.SLOT, SlotKey(3, "a"), True)

    records = store.get_overrides_for_players(OverrideKind.SLOT, [1, 2, 3])
    assert [r.key for r in records] == [SlotKey(3, "a"), SlotKey(1, "b"), SlotKey(2, "b")]


def test_subscribe_delivers_partitioned_full_snapshots(store):
    store.set_override(OverrideKind.DATE, DateKey(12, D1), True)
    snapshots = []

    group = store.subscribe(OverrideKind.DATE, range(1, 24), snapshots.append)

    assert group.partitions == [
        "date_unavailabilities:0",
        "date_unavailabilities:1",
        "date_unavailabilities:2",
    ]
    assert len(snapshots) == 3
    assert [r.key for r in snapshots[1].records] == [DateKey(12, D1)]

    store.set_override(OverrideKind.DATE, DateKey(13, D2), True)
    assert len(snapshots) == 4
    latest = snapshots[-1]
    assert latest.partition == "date_unavailabilities:1"
    assert [r.key for r in latest.records] == [DateKey(12, D1), DateKey(13, D2)]

    # Other kinds and players outside the subscription do not notify
    store.set_override(OverrideKind.SLOT, SlotKey(13, "s1"), True)
    store.set_override(OverrideKind.DATE, DateKey(99, D1), True)
    assert len(snapshots) == 4


def test_closing_a_subscription_releases_every_partition(store):
    snapshots = []
    with store.subscribe(OverrideKind.DATE, range(1, 24), snapshots.append) as group:
        assert store.feed.active_count == 3
        assert group.active
    assert store.feed.active_count == 0
    assert not group.active

    store.set_override(OverrideKind.DATE, DateKey(1, D1), True)
    assert len(snapshots) == 3


def test_projection_replaces_partition_state(store):
    projection = AvailabilityProjection()
    store.set_override(OverrideKind.DATE, DateKey(1, D1), True)
    store.set_override(OverrideKind.DATE, DateKey(2, D2), True)

    group = store.subscribe(OverrideKind.DATE, [1, 2], projection.apply)
    assert projection.get(DateKey(1, D1)) is True
    assert projection.keys_for_player(2) == [DateKey(2, D2)]

    store.remove_override(OverrideKind.DATE, DateKey(1, D1))

    # The removed flag does not linger
    assert projection.get(DateKey(1, D1)) is None
    assert projection.items() == [(DateKey(2, D2), True)]
    assert projection.partitions == ["date_unavailabilities:0"]
    group.close()


def test_failing_subscriber_does_not_fail_the_write(store):
    def broken(snapshot):
        raise RuntimeError("subscriber bug")

    feed = store.feed
    feed.subscribe(OverrideKind.SLOT, [1], broken)

    store.set_override(OverrideKind.SLOT, SlotKey(1, "s1"), True)

    assert store.get_override(OverrideKind.SLOT, SlotKey(1, "s1")) is True
