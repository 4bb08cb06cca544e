import os


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# --- Persistence ---
MONGODB_URI = os.getenv("MONGODB_URI", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "pickngget")
STORE_BACKEND = os.getenv("STORE_BACKEND", "mongo").lower()
# Multi-document transactions require a replica set. On a standalone mongod the
# conditional rider claim still keeps assignment exclusive.
MONGO_USE_TRANSACTIONS = _env_flag("MONGO_USE_TRANSACTIONS", True)

# --- Live locations ---
LOCATION_BACKEND = os.getenv("LOCATION_BACKEND", "redis").lower()
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
LOCATION_KEY_PREFIX = os.getenv("LOCATION_KEY_PREFIX", "riders")
LOCATION_TTL_SECONDS = int(os.getenv("LOCATION_TTL_SECONDS", "0"))

# --- Geocoding / routing ---
MAPBOX_API_KEY = os.getenv("MAPBOX_API_KEY", "")
MAPBOX_BASE_URL = os.getenv("MAPBOX_BASE_URL", "https://api.mapbox.com")
ROUTING_BACKEND = os.getenv("ROUTING_BACKEND", "mapbox" if MAPBOX_API_KEY else "haversine").lower()
HAVERSINE_SPEED_KMH = float(os.getenv("HAVERSINE_SPEED_KMH", "30"))
HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "5"))
HTTP_RETRIES = int(os.getenv("HTTP_RETRIES", "2"))

# --- Matching ---
MATCH_POOL_LIMIT = int(os.getenv("MATCH_POOL_LIMIT", "20"))
MATCH_TOP_K = int(os.getenv("MATCH_TOP_K", "5"))

# --- Pickups ---
TRACKING_CODE_PREFIX = "REC"
AVAILABLE_JOBS_LIMIT = 10
HISTORY_LIMIT = 20
