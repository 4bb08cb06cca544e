import logging
from typing import List

import numpy as np
import pandas as pd

from . import config
from .errors import RouteRankerError, ValidationError
from .metrics import CANDIDATES_RETURNED, RIDERS_WITHOUT_LOCATION
from .schemas import Candidate, Coordinates, VehicleType
from .utils import format_eta

logger = logging.getLogger(__name__)


class RiderMatcher:
    """
    Ranks nearby riders for a pickup address.

    Composes a geolocator (address -> coordinates), the rider directory
    (eligibility), the live location store (current positions) and a route
    ranker (travel distance/duration), and returns the fastest riders first.
    """

    def __init__(self, geolocator, directory, locations, ranker,
                 pool_limit: int = config.MATCH_POOL_LIMIT, top_k: int = config.MATCH_TOP_K):
        self.geolocator = geolocator
        self.directory = directory
        self.locations = locations
        self.ranker = ranker
        self.pool_limit = pool_limit
        self.top_k = top_k

    def find_candidates(self, pickup_address: str, vehicle_type: VehicleType, country: str,
                        item_weight: float) -> List[Candidate]:
        if item_weight is None or item_weight <= 0:
            raise ValidationError("Invalid weight. Must be a positive number", {"itemWeight": item_weight})

        # 1. Geocode the pickup address (GeocodeError propagates to the caller)
        pickup = self.geolocator.geocode(pickup_address)
        logger.info("Geocoded %r to (%.5f, %.5f)", pickup_address, pickup.lat, pickup.lng)

        # 2. Eligible riders, capped before any routing work
        riders = self.directory.find_eligible(vehicle_type, country, item_weight, self.pool_limit)
        if not riders:
            logger.info("No eligible %s riders in %s for %skg", vehicle_type.value, country, item_weight)
            CANDIDATES_RETURNED.observe(0)
            return []

        # 3. Live positions; riders without one are silently dropped
        positions = self.locations.get_many([r.id for r in riders])
        located = [r for r in riders if r.id in positions]
        dropped = len(riders) - len(located)
        if dropped:
            RIDERS_WITHOUT_LOCATION.inc(dropped)
            logger.info("Dropped %d eligible riders with no live position", dropped)

        # 4. Nobody to route to
        if not located:
            CANDIDATES_RETURNED.observe(0)
            return []

        # 5. One batched matrix call for all remaining riders
        destinations = [Coordinates(lat=positions[r.id].lat, lng=positions[r.id].lng) for r in located]
        legs = self.ranker.matrix(pickup, destinations)
        if len(legs) != len(located):
            raise RouteRankerError(
                "Route ranker returned a misaligned result",
                {"expected": len(located), "received": len(legs)},
            )

        # 6. Merge rider metadata with travel estimates, fastest first
        df_riders = pd.DataFrame([
            {
                "rider_id": r.id,
                "name": r.name,
                "phone_number": r.phone_number,
                "vehicle_number": r.vehicle_number,
                "vehicle_type": r.vehicle_type,
                "capacity": r.capacity,
                "profile_image": r.profile_image,
                "lat": positions[r.id].lat,
                "lng": positions[r.id].lng,
            }
            for r in located
        ])
        df_legs = pd.DataFrame(
            {
                "rider_id": [r.id for r in located],
                "distance": [leg[0] for leg in legs],
                "duration": [leg[1] for leg in legs],
            }
        )
        df_candidates = df_riders.merge(df_legs, on="rider_id", how="inner")

        # Unroutable riders (no road connection) cannot be offered
        df_candidates = df_candidates[np.isfinite(df_candidates["duration"])]

        df_ranked = (
            df_candidates
            .sort_values(by=["duration", "distance"], kind="mergesort")
            .head(self.top_k)
        )

        # 7. Human readable ETA
        candidates = []
        for row in df_ranked.to_dict("records"):
            profile_image = row["profile_image"]
            candidates.append(Candidate(
                rider_id=int(row["rider_id"]),
                name=row["name"],
                phone_number=row["phone_number"],
                vehicle_number=row["vehicle_number"],
                vehicle_type=row["vehicle_type"],
                capacity=float(row["capacity"]),
                profile_image=profile_image if isinstance(profile_image, str) else None,
                lat=float(row["lat"]),
                lng=float(row["lng"]),
                distance=float(row["distance"]),
                duration=float(row["duration"]),
                eta=format_eta(float(row["duration"])),
            ))

        CANDIDATES_RETURNED.observe(len(candidates))
        return candidates
