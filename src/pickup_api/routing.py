"""
Route ranking: travel distance (meters) and duration (seconds) from one origin
to many destinations, positionally aligned with the destinations passed in.
"""
import logging
from typing import List, Tuple

import numpy as np
import requests

from . import config
from .errors import RouteRankerError
from .schemas import Coordinates
from .utils import build_http_session, haversine_distance

logger = logging.getLogger(__name__)

RouteLeg = Tuple[float, float]  # (distance_m, duration_s)

# Mapbox Matrix API accepts at most 25 coordinates per request, origin included.
MAPBOX_MAX_COORDINATES = 25


class MapboxRouteRanker:
    """Single batched Mapbox Directions Matrix call, origin at index 0."""

    def __init__(self, api_key: str, base_url: str = config.MAPBOX_BASE_URL,
                 timeout: float = config.HTTP_TIMEOUT_SECONDS, profile: str = "driving",
                 session: requests.Session = None):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.profile = profile
        self.session = session or build_http_session(config.HTTP_RETRIES)

    def matrix(self, origin: Coordinates, destinations: List[Coordinates]) -> List[RouteLeg]:
        if not destinations:
            return []
        if len(destinations) + 1 > MAPBOX_MAX_COORDINATES:
            raise RouteRankerError(
                "Too many destinations for one matrix request",
                {"destinations": len(destinations)},
            )

        coordinates = ";".join(
            f"{c.lng},{c.lat}" for c in [origin, *destinations]
        )
        url = f"{self.base_url}/directions-matrix/v1/mapbox/{self.profile}/{coordinates}"
        try:
            response = self.session.get(
                url,
                params={
                    "sources": "0",
                    "annotations": "distance,duration",
                    "access_token": self.api_key,
                },
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning("Matrix API call failed: %s", e)
            raise RouteRankerError("Routing service failed") from e

        try:
            # +1 because the origin occupies index 0 of the destination row too
            distances = data["distances"][0][1:]
            durations = data["durations"][0][1:]
        except (KeyError, IndexError, TypeError) as e:
            raise RouteRankerError("Malformed matrix response") from e

        if len(distances) != len(destinations) or len(durations) != len(destinations):
            raise RouteRankerError(
                "Matrix response does not match destinations",
                {"expected": len(destinations), "received": len(durations)},
            )

        legs = []
        for distance, duration in zip(distances, durations):
            # Mapbox reports unroutable pairs as null
            legs.append((
                float(distance) if distance is not None else float("inf"),
                float(duration) if duration is not None else float("inf"),
            ))
        return legs


class HaversineRouteRanker:
    """
    Straight-line fallback used when no routing API is configured: distance is
    the great circle distance, duration assumes a constant average speed.
    """

    def __init__(self, speed_kmh: float = config.HAVERSINE_SPEED_KMH):
        if speed_kmh <= 0:
            raise ValueError("speed_kmh must be positive")
        self.speed_kmh = speed_kmh

    def matrix(self, origin: Coordinates, destinations: List[Coordinates]) -> List[RouteLeg]:
        if not destinations:
            return []
        lats = np.array([d.lat for d in destinations])
        lngs = np.array([d.lng for d in destinations])
        distance_km = haversine_distance(origin.lat, origin.lng, lats, lngs)
        duration_s = distance_km / self.speed_kmh * 3600.0
        return [(float(km * 1000.0), float(s)) for km, s in zip(distance_km, duration_s)]


def build_route_ranker(backend: str = config.ROUTING_BACKEND):
    if backend == "mapbox":
        if not config.MAPBOX_API_KEY:
            raise RuntimeError("ROUTING_BACKEND=mapbox requires MAPBOX_API_KEY")
        return MapboxRouteRanker(config.MAPBOX_API_KEY)
    if backend == "haversine":
        return HaversineRouteRanker()
    raise RuntimeError(f"Unknown ROUTING_BACKEND: {backend}")
