import math
import random
from enum import Enum
from typing import Any

import numpy as np
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import TRACKING_CODE_PREFIX
from .schemas import VehicleType

EARTH_RADIUS_KM = 6371.0


def haversine_distance(lat1, lon1, lat2, lon2):
    """
    Great circle distance between two points on Earth (in km).

    Accepts scalars or numpy arrays, so one origin can be measured against
    many destinations in a single vectorised call.
    """
    lat1_rad = np.radians(lat1)
    lon1_rad = np.radians(lon1)
    lat2_rad = np.radians(lat2)
    lon2_rad = np.radians(lon2)

    dlat = lat2_rad - lat1_rad
    dlon = lon2_rad - lon1_rad

    a = (
        np.sin(dlat / 2) ** 2
        + np.cos(lat1_rad) * np.cos(lat2_rad) * np.sin(dlon / 2) ** 2
    )
    c = 2 * np.arcsin(np.sqrt(a))

    return EARTH_RADIUS_KM * c


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def format_eta(seconds: float) -> str:
    """Human readable ETA: "45 secs", "2 mins", "1h 30m", "1h", "2 days"."""
    if seconds < 60:
        return f"{_round_half_up(seconds)} secs"
    if seconds < 3600:
        return f"{_round_half_up(seconds / 60)} mins"
    if seconds < 86400:
        hours = int(seconds // 3600)
        mins = _round_half_up((seconds % 3600) / 60)
        if mins == 60:
            hours, mins = hours + 1, 0
        return f"{hours}h {mins}m" if mins > 0 else f"{hours}h"
    days = int(seconds // 86400)
    return f"{days} day{'s' if days > 1 else ''}"


def calculate_vehicle_type(weight_kg: float) -> VehicleType:
    """
    Smallest vehicle class for an item weight:
    < 5kg Bike, < 50kg Car, < 200kg Van, otherwise Truck.
    """
    if weight_kg < 5:
        return VehicleType.Bike
    if weight_kg < 50:
        return VehicleType.Car
    if weight_kg < 200:
        return VehicleType.Van
    return VehicleType.Truck


def generate_tracking_code(rng: random.Random = None) -> str:
    rng = rng or random
    return f"{TRACKING_CODE_PREFIX}{rng.randint(100000, 999999)}"


def to_document(value: Any) -> Any:
    """Convert a dumped model into plain BSON-friendly values (enums to their values)."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: to_document(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_document(v) for v in value]
    return value


def build_http_session(retries: int) -> requests.Session:
    """
    requests Session that retries idempotent GETs on connection errors and
    gateway failures. Never used for anything that mutates state.
    """
    retry = Retry(
        total=retries,
        connect=retries,
        read=retries,
        backoff_factor=0.2,
        status_forcelist=(502, 503, 504),
        allowed_methods=frozenset(["GET"]),
        raise_on_status=False,
    )
    session = requests.Session()
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session
