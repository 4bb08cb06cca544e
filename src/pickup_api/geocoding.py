import logging
from urllib.parse import quote

import requests

from . import config
from .errors import GeocodeError
from .schemas import Coordinates
from .utils import build_http_session

logger = logging.getLogger(__name__)


class MapboxGeoLocator:
    """Free-text address -> coordinates via the Mapbox Geocoding API."""

    def __init__(self, api_key: str, base_url: str = config.MAPBOX_BASE_URL,
                 timeout: float = config.HTTP_TIMEOUT_SECONDS, session: requests.Session = None):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or build_http_session(config.HTTP_RETRIES)

    def geocode(self, address: str) -> Coordinates:
        if not address or not address.strip():
            raise GeocodeError("Pickup address is empty", {"address": address})

        url = f"{self.base_url}/geocoding/v5/mapbox.places/{quote(address.strip(), safe='')}.json"
        try:
            response = self.session.get(
                url,
                params={"access_token": self.api_key, "limit": 1},
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            # Timeouts land here too; slow and unreachable look the same to callers.
            logger.warning("Geocoding failed for %r: %s", address, e)
            raise GeocodeError("Geocoding service failed", {"address": address}) from e

        features = (data.get("features") if isinstance(data, dict) else None) or []
        if not features:
            raise GeocodeError("No geocoding results found for address", {"address": address})

        try:
            lng, lat = features[0]["center"][:2]
            return Coordinates(lat=lat, lng=lng)
        except (KeyError, IndexError, TypeError, ValueError) as e:
            # pydantic's ValidationError is a ValueError
            logger.warning("Malformed geocoding response for %r: %s", address, e)
            raise GeocodeError("Malformed geocoding response", {"address": address}) from e
