import logging
import os
import sys
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from . import config
from .database import create_client, ensure_indexes
from .directory import RiderDirectory
from .errors import ExternalServiceError, GeocodeError, PickupServiceError
from .geocoding import MapboxGeoLocator
from .lifecycle import PickupLifecycle
from .location_store import build_location_store
from .matcher import RiderMatcher
from .metrics import MATCH_ERRORS, MATCH_REQUEST_LATENCY
from .queries import PickupQuery
from .routing import build_route_ranker
from .schemas import (
    AgentPickups,
    AgentStats,
    ApprovalRequest,
    CancelRequest,
    CreatePickupRequest,
    FindRidersRequest,
    FindRidersResponse,
    LiveLocation,
    LocationUpdate,
    MessageResponse,
    PickupCreated,
    PickupList,
    PickupProjection,
    Rider,
    RiderRegistration,
    StatusUpdateRequest,
)
from .store import build_store
from .utils import calculate_vehicle_type

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("pickup_api")

# Global variables for resources
resources = {}


def init_resources(store, locations, geolocator, ranker) -> dict:
    """Compose the core services from their backends and publish them in ``resources``."""
    directory = RiderDirectory(store)
    resources.update({
        "store": store,
        "locations": locations,
        "directory": directory,
        "matcher": RiderMatcher(geolocator, directory, locations, ranker),
        "lifecycle": PickupLifecycle(store),
        "queries": PickupQuery(store),
    })
    return resources


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Connect backends on startup (MongoDB, live location store, geocoding and
    routing clients) and release them on shutdown.
    """
    print("🚀 Starting PicknGet Pickup API...")

    if os.getenv("SKIP_RESOURCES_INIT"):
        print("⚠️  SKIP_RESOURCES_INIT set. Skipping backend connections. API will be in degraded mode (for CI/Smoke tests).")
        yield
        print("🛑 Shutting down PicknGet Pickup API...")
        resources.clear()
        return

    client = None

    # 1. Rider/pickup store
    try:
        if config.STORE_BACKEND == "mongo":
            client = create_client(config.MONGODB_URI)
            db = client[config.DATABASE_NAME]
            ensure_indexes(db)
            store = build_store("mongo", client, db, use_transactions=config.MONGO_USE_TRANSACTIONS)
            print(f"✅ MongoDB connected (database: {config.DATABASE_NAME}, transactions: {config.MONGO_USE_TRANSACTIONS})")
        else:
            store = build_store(config.STORE_BACKEND)
            print(f"✅ Store backend: {config.STORE_BACKEND}")
    except Exception as e:
        print(f"❌ Failed to initialize store: {e}")
        sys.exit(1)

    # 2. Live location store
    try:
        locations = build_location_store(config.LOCATION_BACKEND)
        print(f"✅ Location backend: {config.LOCATION_BACKEND}")
    except Exception as e:
        print(f"❌ Failed to initialize location store: {e}")
        sys.exit(1)

    # 3. Geocoding and routing
    if not config.MAPBOX_API_KEY:
        print("⚠️  MAPBOX_API_KEY not set. Geocoding will fail and find-riders will return no riders.")
    geolocator = MapboxGeoLocator(config.MAPBOX_API_KEY)
    try:
        ranker = build_route_ranker(config.ROUTING_BACKEND)
        print(f"✅ Routing backend: {config.ROUTING_BACKEND}")
    except RuntimeError as e:
        print(f"❌ Failed to initialize route ranker: {e}")
        sys.exit(1)

    init_resources(store, locations, geolocator, ranker)

    yield
    print("🛑 Shutting down PicknGet Pickup API...")
    resources.clear()
    if client is not None:
        client.close()


app = FastAPI(title="PicknGet Pickup Dispatch API", lifespan=lifespan)


@app.exception_handler(PickupServiceError)
async def pickup_service_error_handler(request: Request, exc: PickupServiceError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "context": exc.context},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(p) for p in err["loc"][1:]), "message": err["msg"]}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": "Invalid request", "context": {"errors": errors}},
    )


def _resource(name: str):
    resource = resources.get(name)
    if resource is None:
        raise HTTPException(status_code=503, detail="Service not initialized properly")
    return resource


# --- Health ---
@app.get("/")
def read_root():
    return {"message": "PicknGet Pickup API running"}


@app.get("/health")
def health():
    return {
        "backend": "✅ Running",
        "initialized": bool(resources),
        "store": config.STORE_BACKEND,
        "locations": config.LOCATION_BACKEND,
        "routing": config.ROUTING_BACKEND,
    }


@app.get("/metrics")
def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# --- Matching and pickups ---
@app.post("/pickups/find-riders", response_model=FindRidersResponse)
@MATCH_REQUEST_LATENCY.time()
def find_riders(request: FindRidersRequest):
    """
    Rank nearby riders able to carry the item. External failures degrade to an
    empty list so the client can retry with a corrected address.
    """
    matcher = _resource("matcher")
    vehicle_type = calculate_vehicle_type(request.item_weight)

    try:
        riders = matcher.find_candidates(
            request.pickup_address, vehicle_type, request.country, request.item_weight
        )
    except GeocodeError as e:
        MATCH_ERRORS.labels(error_type="geocode_error").inc()
        logger.warning("find-riders degraded: %s", e.message)
        return FindRidersResponse(
            riders=[], vehicle_type=vehicle_type, item_weight=request.item_weight,
            message="Could not locate the pickup address. Please check it and try again",
        )
    except ExternalServiceError as e:
        MATCH_ERRORS.labels(error_type=type(e).__name__).inc()
        logger.warning("find-riders degraded: %s", e.message)
        riders = []

    if not riders:
        message = "No available riders found in your area"
    else:
        message = f"Found {len(riders)} available rider{'s' if len(riders) > 1 else ''}"
    return FindRidersResponse(
        riders=riders, vehicle_type=vehicle_type, item_weight=request.item_weight, message=message
    )


@app.post("/pickups/create", response_model=PickupCreated, status_code=201)
def create_pickup(request: CreatePickupRequest):
    return _resource("lifecycle").create(request)


@app.get("/pickups/track/{pickup_id}", response_model=PickupProjection)
def track_pickup(pickup_id: str):
    return _resource("queries").track(pickup_id)


@app.get("/pickups/tracking/{tracking_id}", response_model=PickupProjection)
def track_pickup_by_code(tracking_id: str):
    return _resource("queries").track_by_code(tracking_id)


@app.get("/pickups/user/{user_id}/active", response_model=PickupList)
def user_active_pickups(user_id: int):
    return _resource("queries").user_active(user_id)


@app.get("/pickups/user/{user_id}/history", response_model=PickupList)
def user_pickup_history(user_id: int):
    return _resource("queries").user_history(user_id)


# --- Agents (riders working their pickups) ---
@app.get("/agents/{rider_id}/pickups/active", response_model=AgentPickups)
def agent_active_pickups(rider_id: int):
    return _resource("queries").rider_active(rider_id)


@app.get("/agents/{rider_id}/pickups/available", response_model=AgentPickups)
def agent_available_jobs(rider_id: int):
    return _resource("queries").rider_available_jobs(rider_id)


@app.post("/agents/{rider_id}/pickups/{pickup_id}/accept", response_model=PickupProjection)
def accept_pickup(rider_id: int, pickup_id: str):
    pickup = _resource("lifecycle").accept(rider_id, pickup_id)
    return _resource("queries").track(pickup.ref)


@app.patch("/agents/{rider_id}/pickups/{pickup_id}/status", response_model=PickupProjection)
def update_pickup_status(rider_id: int, pickup_id: str, update: StatusUpdateRequest):
    pickup = _resource("lifecycle").transition(rider_id, pickup_id, update.status, reason=update.reason)
    return _resource("queries").track(pickup.ref)


@app.post("/agents/{rider_id}/pickups/{pickup_id}/cancel", response_model=PickupProjection)
def cancel_pickup(rider_id: int, pickup_id: str, body: Optional[CancelRequest] = None):
    reason = body.reason if body else None
    pickup = _resource("lifecycle").cancel(rider_id, pickup_id, reason=reason)
    return _resource("queries").track(pickup.ref)


@app.get("/agents/{rider_id}/stats", response_model=AgentStats)
def agent_stats(rider_id: int):
    return _resource("queries").rider_stats(rider_id)


# --- Riders ---
@app.post("/riders", response_model=Rider, status_code=201)
def register_rider(registration: RiderRegistration):
    return _resource("directory").register(registration)


@app.get("/riders/{rider_id}", response_model=Rider)
def get_rider(rider_id: int):
    return _resource("directory").get(rider_id)


@app.patch("/riders/{rider_id}/approval", response_model=Rider)
def update_rider_approval(rider_id: int, request: ApprovalRequest):
    return _resource("directory").update_approval(rider_id, request.action)


# --- Live locations ---
@app.post("/location/update", response_model=LiveLocation)
def update_location(update: LocationUpdate):
    return _resource("locations").set(update.rider_id, update.lat, update.lng, update.heading)


@app.get("/location/{rider_id}", response_model=LiveLocation)
def get_location(rider_id: int):
    location = _resource("locations").get(rider_id)
    if location is None:
        raise HTTPException(status_code=404, detail="Location not found for this rider")
    return location


@app.delete("/location/{rider_id}", response_model=MessageResponse)
def remove_location(rider_id: int):
    _resource("locations").remove(rider_id)
    return MessageResponse(message="Location removed successfully")
