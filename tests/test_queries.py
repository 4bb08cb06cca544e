from datetime import datetime, timedelta, timezone

import pytest

from src.pickup_api.errors import PickupNotFound, RiderNotFound
from src.pickup_api.lifecycle import PickupLifecycle
from src.pickup_api.queries import PickupQuery
from src.pickup_api.schemas import PickupStatus

from .conftest import make_rider, pickup_request

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class StepClock:
    """Returns the queued instants in order."""

    def __init__(self, *instants):
        self.instants = list(instants)

    def __call__(self):
        return self.instants.pop(0)


@pytest.fixture
def lifecycle(store):
    return PickupLifecycle(store)


@pytest.fixture
def queries(store):
    return PickupQuery(store)


def deliver(lifecycle, rider_id, pickup_id):
    lifecycle.accept(rider_id, pickup_id)
    lifecycle.transition(rider_id, pickup_id, PickupStatus.PickedUp)
    return lifecycle.transition(rider_id, pickup_id, PickupStatus.Delivered)


def test_track_includes_rider_contact(store, lifecycle, queries):
    make_rider(store, 1, name="Tunde", phone_number="+2348011112222")
    created = lifecycle.create(pickup_request(1))

    view = queries.track(created.pickup_id)

    assert view.tracking_id == created.tracking_id
    assert view.rider_id == 1
    assert view.rider_name == "Tunde"
    assert view.rider_phone_number == "+2348011112222"
    assert view.pick_up_status == PickupStatus.Pending


def test_track_by_tracking_code(store, lifecycle, queries):
    make_rider(store, 1)
    created = lifecycle.create(pickup_request(1))

    assert queries.track_by_code(created.tracking_id).pickup_id == created.pickup_id
    with pytest.raises(PickupNotFound):
        queries.track_by_code("REC000000")


def test_track_unknown_or_malformed_id(queries):
    with pytest.raises(PickupNotFound):
        queries.track("64b7f0c2a1b2c3d4e5f60718")
    with pytest.raises(PickupNotFound):
        queries.track("not-an-id")


def test_user_active_and_history_split(store, lifecycle, queries):
    make_rider(store, 1)
    make_rider(store, 2)
    make_rider(store, 3)
    open_pickup = lifecycle.create(pickup_request(1, item_id=1))
    done = lifecycle.create(pickup_request(2, item_id=2))
    deliver(lifecycle, 2, done.pickup_id)
    dropped = lifecycle.create(pickup_request(3, item_id=3))
    lifecycle.cancel(3, dropped.pickup_id)
    lifecycle.create(pickup_request(3, item_id=4, user_id=99))

    active = queries.user_active(1)
    history = queries.user_history(1)

    assert active.count == 1
    assert active.pickups[0].pickup_id == open_pickup.pickup_id
    assert history.count == 2
    assert {p.pickup_id for p in history.pickups} == {done.pickup_id, dropped.pickup_id}
    # most recently finished first
    assert history.pickups[0].pickup_id == dropped.pickup_id


def test_rider_active_only_lists_own_open_pickups(store, lifecycle, queries):
    make_rider(store, 1, name="Bola")
    make_rider(store, 2)
    mine = lifecycle.create(pickup_request(1, item_id=1))
    lifecycle.accept(1, mine.pickup_id)
    lifecycle.create(pickup_request(2, item_id=2))

    view = queries.rider_active(1)

    assert view.rider_id == 1
    assert view.rider_name == "Bola"
    assert [p.pickup_id for p in view.pickups] == [mine.pickup_id]
    assert view.pickups[0].pick_up_status == PickupStatus.InTransit


def test_rider_available_jobs_are_pending_only(store, lifecycle, queries):
    make_rider(store, 1)
    first = lifecycle.create(pickup_request(1, item_id=1))

    assert [p.pickup_id for p in queries.rider_available_jobs(1).pickups] == [first.pickup_id]

    lifecycle.accept(1, first.pickup_id)
    assert queries.rider_available_jobs(1).pickups == []


def test_rider_queries_unknown_rider(queries):
    with pytest.raises(RiderNotFound):
        queries.rider_active(7)
    with pytest.raises(RiderNotFound):
        queries.rider_stats(7)


def test_rider_stats_without_history(store, queries):
    make_rider(store, 1)
    stats = queries.rider_stats(1, now=NOW)
    assert stats.total_pickups == 0
    assert stats.total_earnings == 0.0
    assert stats.completion_rate == 0.0


def test_rider_stats_counts_delivered_work(store, queries):
    make_rider(store, 1)
    old = NOW - timedelta(days=10)
    recent = NOW - timedelta(days=2)

    # Each delivery consumes four instants: requested, accepted, collected, delivered
    clock = StepClock(
        old, old, old, old,
        recent, recent, recent, recent,
        recent,
    )
    lifecycle = PickupLifecycle(store, clock=clock)

    a = lifecycle.create(pickup_request(1, item_id=1, estimated_earnings=300))
    deliver(lifecycle, 1, a.pickup_id)
    b = lifecycle.create(pickup_request(1, item_id=2, estimated_earnings=500))
    deliver(lifecycle, 1, b.pickup_id)
    c = lifecycle.create(pickup_request(1, item_id=3, estimated_earnings=900))
    lifecycle.cancel(1, c.pickup_id)

    stats = queries.rider_stats(1, now=NOW)

    assert stats.total_pickups == 2
    assert stats.total_earnings == 800.0
    assert stats.weekly_pickups == 1
    assert stats.completion_rate == pytest.approx(66.7)
