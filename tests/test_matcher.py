from unittest.mock import MagicMock

import pytest

from src.pickup_api.directory import RiderDirectory
from src.pickup_api.errors import GeocodeError, RouteRankerError, ValidationError
from src.pickup_api.matcher import RiderMatcher
from src.pickup_api.routing import HaversineRouteRanker
from src.pickup_api.schemas import ApprovalStatus, Coordinates, RiderStatus, VehicleType

from .conftest import make_rider

PICKUP = Coordinates(lat=6.5244, lng=3.3792)


@pytest.fixture
def geolocator():
    geo = MagicMock()
    geo.geocode.return_value = PICKUP
    return geo


def build_matcher(store, locations, geolocator, ranker, **kwargs):
    return RiderMatcher(geolocator, RiderDirectory(store), locations, ranker, **kwargs)


def test_end_to_end_orders_by_duration(store, locations, geolocator):
    for rider_id, offset in [(1, 0.01), (2, 0.005), (3, 0.02)]:
        make_rider(store, rider_id)
        locations.set(rider_id, PICKUP.lat + offset, PICKUP.lng)

    ranker = MagicMock()
    ranker.matrix.return_value = [(1500.0, 300.0), (800.0, 120.0), (4000.0, 600.0)]
    matcher = build_matcher(store, locations, geolocator, ranker)

    candidates = matcher.find_candidates("123 Main St", VehicleType.Car, "Nigeria", 10)

    geolocator.geocode.assert_called_once_with("123 Main St")
    assert [c.rider_id for c in candidates] == [2, 1, 3]
    assert [c.duration for c in candidates] == [120.0, 300.0, 600.0]
    assert [c.eta for c in candidates] == ["2 mins", "5 mins", "10 mins"]
    assert candidates[0].distance == 800.0
    assert candidates[0].lat == pytest.approx(PICKUP.lat + 0.005)


def test_routing_is_one_batched_call(store, locations, geolocator):
    for rider_id in range(1, 5):
        make_rider(store, rider_id)
        locations.set(rider_id, PICKUP.lat + rider_id / 100, PICKUP.lng)

    ranker = MagicMock()
    ranker.matrix.return_value = [(100.0, 10.0)] * 4
    matcher = build_matcher(store, locations, geolocator, ranker)

    matcher.find_candidates("addr", VehicleType.Car, "Nigeria", 10)

    assert ranker.matrix.call_count == 1
    origin, destinations = ranker.matrix.call_args.args
    assert origin == PICKUP
    assert len(destinations) == 4


def test_riders_without_live_position_are_dropped(store, locations, geolocator):
    make_rider(store, 1)
    make_rider(store, 2)
    locations.set(2, 6.53, 3.38)

    ranker = MagicMock()
    ranker.matrix.return_value = [(100.0, 60.0)]
    matcher = build_matcher(store, locations, geolocator, ranker)

    candidates = matcher.find_candidates("addr", VehicleType.Car, "Nigeria", 10)

    assert [c.rider_id for c in candidates] == [2]
    _, destinations = ranker.matrix.call_args.args
    assert len(destinations) == 1


def test_no_positions_returns_empty_without_routing(store, locations, geolocator):
    make_rider(store, 1)
    ranker = MagicMock()
    matcher = build_matcher(store, locations, geolocator, ranker)

    assert matcher.find_candidates("addr", VehicleType.Car, "Nigeria", 10) == []
    ranker.matrix.assert_not_called()


def test_capacity_and_eligibility_filters(store, locations, geolocator):
    make_rider(store, 1, capacity=8)                                      # too small
    make_rider(store, 2, rider_status=RiderStatus.OnTrip)                 # busy
    make_rider(store, 3, approval_status=ApprovalStatus.Pending)          # not approved
    make_rider(store, 4, vehicle_type=VehicleType.Van)                    # wrong vehicle
    make_rider(store, 5, country="Ghana")                                 # wrong country
    make_rider(store, 6, country="nigeria", capacity=10)                  # eligible, case-insensitive
    for rider_id in range(1, 7):
        locations.set(rider_id, 6.53, 3.38)

    ranker = MagicMock()
    ranker.matrix.side_effect = lambda origin, dests: [(100.0, 60.0)] * len(dests)
    matcher = build_matcher(store, locations, geolocator, ranker)

    candidates = matcher.find_candidates("addr", VehicleType.Car, "NIGERIA", 10)

    assert [c.rider_id for c in candidates] == [6]
    assert all(c.capacity >= 10 for c in candidates)


def test_at_most_five_sorted_and_pool_capped(store, locations, geolocator):
    for rider_id in range(1, 31):
        make_rider(store, rider_id)
        locations.set(rider_id, 6.5 + rider_id / 1000, 3.38)

    ranker = MagicMock()
    ranker.matrix.side_effect = lambda origin, dests: [
        (float(i * 100), float((i * 37) % 23 * 10 + 5)) for i in range(len(dests))
    ]
    matcher = build_matcher(store, locations, geolocator, ranker)

    candidates = matcher.find_candidates("addr", VehicleType.Car, "Nigeria", 10)

    _, destinations = ranker.matrix.call_args.args
    assert len(destinations) == 20
    assert len(candidates) == 5
    durations = [c.duration for c in candidates]
    assert durations == sorted(durations)


def test_unroutable_riders_are_not_offered(store, locations, geolocator):
    make_rider(store, 1)
    make_rider(store, 2)
    locations.set(1, 6.53, 3.38)
    locations.set(2, 6.54, 3.38)

    ranker = MagicMock()
    ranker.matrix.return_value = [(float("inf"), float("inf")), (900.0, 90.0)]
    matcher = build_matcher(store, locations, geolocator, ranker)

    assert [c.rider_id for c in matcher.find_candidates("addr", VehicleType.Car, "Nigeria", 10)] == [2]


def test_geocode_failure_propagates(store, locations):
    geo = MagicMock()
    geo.geocode.side_effect = GeocodeError("No geocoding results found for address")
    matcher = build_matcher(store, locations, geo, MagicMock())

    with pytest.raises(GeocodeError):
        matcher.find_candidates("nowhere", VehicleType.Car, "Nigeria", 10)


def test_misaligned_ranker_result_is_an_error(store, locations, geolocator):
    make_rider(store, 1)
    locations.set(1, 6.53, 3.38)
    ranker = MagicMock()
    ranker.matrix.return_value = []
    matcher = build_matcher(store, locations, geolocator, ranker)

    with pytest.raises(RouteRankerError):
        matcher.find_candidates("addr", VehicleType.Car, "Nigeria", 10)


def test_non_positive_weight_rejected(store, locations, geolocator):
    matcher = build_matcher(store, locations, geolocator, MagicMock())
    with pytest.raises(ValidationError):
        matcher.find_candidates("addr", VehicleType.Bike, "Nigeria", 0)


def test_haversine_ranker_orders_nearest_first(store, locations, geolocator):
    make_rider(store, 1)
    make_rider(store, 2)
    locations.set(1, PICKUP.lat + 0.05, PICKUP.lng)
    locations.set(2, PICKUP.lat + 0.01, PICKUP.lng)
    matcher = build_matcher(store, locations, geolocator, HaversineRouteRanker(speed_kmh=30))

    candidates = matcher.find_candidates("addr", VehicleType.Car, "Nigeria", 10)

    assert [c.rider_id for c in candidates] == [2, 1]
    # ~1.1km at 30km/h is a bit over two minutes
    assert candidates[0].distance == pytest.approx(1112, rel=0.01)
    assert candidates[0].eta == "2 mins"
