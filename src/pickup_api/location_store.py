"""
Live rider positions: rider id -> {lat, lng, heading, timestamp}.

Ephemeral, not a system of record. A missing entry means the rider has no
known position.
"""
import logging
import threading
import time
from typing import Dict, Iterable, Optional

import redis

from . import config
from .errors import LocationStoreError
from .schemas import LiveLocation

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class RedisLocationStore:
    """Each rider is a hash at ``{prefix}:{rider_id}`` with string fields."""

    def __init__(self, client: redis.Redis, key_prefix: str = config.LOCATION_KEY_PREFIX,
                 ttl_seconds: int = config.LOCATION_TTL_SECONDS):
        self.client = client
        self.key_prefix = key_prefix
        self.ttl_seconds = ttl_seconds

    @classmethod
    def from_url(cls, url: str = config.REDIS_URL) -> "RedisLocationStore":
        return cls(redis.Redis.from_url(url, decode_responses=True))

    def _key(self, rider_id: int) -> str:
        return f"{self.key_prefix}:{rider_id}"

    def set(self, rider_id: int, lat: float, lng: float, heading: Optional[float] = None) -> LiveLocation:
        location = LiveLocation(lat=lat, lng=lng, heading=heading or 0, timestamp=_now_ms())
        key = self._key(rider_id)
        try:
            pipe = self.client.pipeline()
            pipe.delete(key)
            pipe.hset(key, mapping={
                "lat": str(location.lat),
                "lng": str(location.lng),
                "heading": str(location.heading),
                "timestamp": str(location.timestamp),
            })
            if self.ttl_seconds > 0:
                pipe.expire(key, self.ttl_seconds)
            pipe.execute()
        except redis.RedisError as e:
            raise LocationStoreError("Failed to update location", {"riderId": rider_id}) from e
        return location

    def get(self, rider_id: int) -> Optional[LiveLocation]:
        try:
            raw = self.client.hgetall(self._key(rider_id))
        except redis.RedisError as e:
            raise LocationStoreError("Failed to read location", {"riderId": rider_id}) from e
        return self._parse(rider_id, raw)

    def get_many(self, rider_ids: Iterable[int]) -> Dict[int, LiveLocation]:
        """One round trip for a batch of riders; riders without a position are left out."""
        rider_ids = list(rider_ids)
        if not rider_ids:
            return {}
        try:
            pipe = self.client.pipeline()
            for rider_id in rider_ids:
                pipe.hgetall(self._key(rider_id))
            results = pipe.execute()
        except redis.RedisError as e:
            raise LocationStoreError("Failed to read locations") from e

        locations = {}
        for rider_id, raw in zip(rider_ids, results):
            location = self._parse(rider_id, raw)
            if location is not None:
                locations[rider_id] = location
        return locations

    def remove(self, rider_id: int) -> bool:
        try:
            return bool(self.client.delete(self._key(rider_id)))
        except redis.RedisError as e:
            raise LocationStoreError("Failed to remove location", {"riderId": rider_id}) from e

    @staticmethod
    def _parse(rider_id: int, raw: dict) -> Optional[LiveLocation]:
        if not raw or "lat" not in raw or "lng" not in raw:
            return None
        try:
            return LiveLocation(
                lat=float(raw["lat"]),
                lng=float(raw["lng"]),
                heading=float(raw.get("heading") or 0),
                timestamp=int(float(raw.get("timestamp") or 0)),
            )
        except ValueError:
            logger.warning("Ignoring malformed location for rider %s: %r", rider_id, raw)
            return None


class InMemoryLocationStore:
    """Process-local store for development and tests (LOCATION_BACKEND=memory)."""

    def __init__(self):
        self._locations: Dict[int, LiveLocation] = {}
        self._lock = threading.Lock()

    def set(self, rider_id: int, lat: float, lng: float, heading: Optional[float] = None) -> LiveLocation:
        location = LiveLocation(lat=lat, lng=lng, heading=heading or 0, timestamp=_now_ms())
        with self._lock:
            self._locations[rider_id] = location
        return location

    def get(self, rider_id: int) -> Optional[LiveLocation]:
        with self._lock:
            return self._locations.get(rider_id)

    def get_many(self, rider_ids: Iterable[int]) -> Dict[int, LiveLocation]:
        with self._lock:
            return {r: self._locations[r] for r in rider_ids if r in self._locations}

    def remove(self, rider_id: int) -> bool:
        with self._lock:
            return self._locations.pop(rider_id, None) is not None


def build_location_store(backend: str = config.LOCATION_BACKEND):
    if backend == "redis":
        return RedisLocationStore.from_url(config.REDIS_URL)
    if backend == "memory":
        return InMemoryLocationStore()
    raise RuntimeError(f"Unknown LOCATION_BACKEND: {backend}")
