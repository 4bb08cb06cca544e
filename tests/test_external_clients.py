from unittest.mock import MagicMock

import pytest
import requests

from src.pickup_api.errors import GeocodeError, RouteRankerError
from src.pickup_api.geocoding import MapboxGeoLocator
from src.pickup_api.routing import HaversineRouteRanker, MapboxRouteRanker, build_route_ranker
from src.pickup_api.schemas import Coordinates

ORIGIN = Coordinates(lat=6.5, lng=3.4)


def session_returning(payload):
    session = MagicMock()
    response = MagicMock()
    response.json.return_value = payload
    session.get.return_value = response
    return session


# --- Geocoding ---
def test_geocode_reads_center_as_lng_lat():
    session = session_returning({"features": [{"center": [3.3792, 6.5244]}]})
    geo = MapboxGeoLocator("token", base_url="https://api.test", session=session)

    coords = geo.geocode("123 Main St, Lagos")

    assert (coords.lat, coords.lng) == (6.5244, 3.3792)
    url = session.get.call_args.args[0]
    assert url.startswith("https://api.test/geocoding/v5/mapbox.places/123%20Main%20St%2C%20Lagos.json")
    assert session.get.call_args.kwargs["params"] == {"access_token": "token", "limit": 1}


def test_geocode_no_results():
    geo = MapboxGeoLocator("token", session=session_returning({"features": []}))
    with pytest.raises(GeocodeError, match="No geocoding results"):
        geo.geocode("Atlantis")


@pytest.mark.parametrize("payload", [
    {"features": [{"place_name": "Lagos"}]},
    {"features": [{"center": [3.4]}]},
    {"features": [{"center": [3.4, 95.0]}]},
    {"features": [{"center": None}]},
])
def test_geocode_malformed_response(payload):
    geo = MapboxGeoLocator("token", session=session_returning(payload))
    with pytest.raises(GeocodeError, match="Malformed geocoding response"):
        geo.geocode("Lagos")


def test_geocode_transport_failure():
    session = MagicMock()
    session.get.side_effect = requests.Timeout("slow")
    geo = MapboxGeoLocator("token", session=session)
    with pytest.raises(GeocodeError):
        geo.geocode("Lagos")


def test_geocode_empty_address_skips_network():
    session = MagicMock()
    with pytest.raises(GeocodeError):
        MapboxGeoLocator("token", session=session).geocode("   ")
    session.get.assert_not_called()


# --- Mapbox matrix ---
def test_matrix_single_call_aligned_with_destinations():
    session = session_returning({
        "distances": [[0, 1200.5, None, 300]],
        "durations": [[0, 180.0, None, 60.0]],
    })
    ranker = MapboxRouteRanker("token", base_url="https://api.test", session=session)
    destinations = [Coordinates(lat=6.51, lng=3.41), Coordinates(lat=7.0, lng=3.0), Coordinates(lat=6.5, lng=3.41)]

    legs = ranker.matrix(ORIGIN, destinations)

    assert session.get.call_count == 1
    url = session.get.call_args.args[0]
    assert url == "https://api.test/directions-matrix/v1/mapbox/driving/3.4,6.5;3.41,6.51;3.0,7.0;3.41,6.5"
    assert session.get.call_args.kwargs["params"]["sources"] == "0"
    assert legs[0] == (1200.5, 180.0)
    assert legs[1] == (float("inf"), float("inf"))
    assert legs[2] == (300.0, 60.0)


def test_matrix_length_mismatch_is_an_error():
    session = session_returning({"distances": [[0, 1.0]], "durations": [[0, 1.0]]})
    ranker = MapboxRouteRanker("token", session=session)
    with pytest.raises(RouteRankerError):
        ranker.matrix(ORIGIN, [ORIGIN, ORIGIN])


def test_matrix_malformed_or_failed_response():
    ranker = MapboxRouteRanker("token", session=session_returning({"code": "InvalidInput"}))
    with pytest.raises(RouteRankerError):
        ranker.matrix(ORIGIN, [ORIGIN])

    session = MagicMock()
    session.get.return_value.raise_for_status.side_effect = requests.HTTPError("500")
    with pytest.raises(RouteRankerError):
        MapboxRouteRanker("token", session=session).matrix(ORIGIN, [ORIGIN])


def test_matrix_rejects_oversized_batch():
    session = MagicMock()
    with pytest.raises(RouteRankerError):
        MapboxRouteRanker("token", session=session).matrix(ORIGIN, [ORIGIN] * 25)
    session.get.assert_not_called()


def test_matrix_no_destinations():
    session = MagicMock()
    assert MapboxRouteRanker("token", session=session).matrix(ORIGIN, []) == []
    session.get.assert_not_called()


# --- Fallback ranker ---
def test_haversine_ranker_speed():
    legs = HaversineRouteRanker(speed_kmh=60).matrix(
        Coordinates(lat=0, lng=0), [Coordinates(lat=1, lng=0)]
    )
    distance_m, duration_s = legs[0]
    assert distance_m == pytest.approx(111195, rel=1e-3)
    # 111km at 60km/h
    assert duration_s == pytest.approx(6672, rel=1e-3)


def test_build_route_ranker_rejects_unknown_backend():
    assert isinstance(build_route_ranker("haversine"), HaversineRouteRanker)
    with pytest.raises(RuntimeError):
        build_route_ranker("osrm")
