import itertools

import pytest

from src.pickup_api.location_store import InMemoryLocationStore
from src.pickup_api.schemas import (
    ApprovalStatus,
    CreatePickupRequest,
    Rider,
    RiderStatus,
    VehicleType,
)
from src.pickup_api.store import InMemoryStore

_phone_seq = itertools.count(1000)


def make_rider(store, rider_id, **overrides):
    """Insert an approved, available rider (unless overridden) and return it."""
    n = next(_phone_seq)
    fields = {
        "id": rider_id,
        "name": f"Rider {rider_id}",
        "phone_number": f"+234800000{n}",
        "vehicle_number": f"LAG-{n}",
        "home_address": "12 Allen Avenue, Ikeja, Lagos",
        "vehicle_type": VehicleType.Car,
        "country": "Nigeria",
        "capacity": 100,
        "rider_status": RiderStatus.Available,
        "approval_status": ApprovalStatus.Approved,
        "vehicle_registration": "QmRegistrationCid",
        "vehicle_photos": "QmPhotosCid",
    }
    fields.update(overrides)
    return store.insert_rider(Rider(**fields))


def pickup_request(rider_id, **overrides):
    fields = {
        "user_id": 1,
        "item_id": 10,
        "customer_name": "Kemsguy",
        "customer_phone_number": "+2347032739465",
        "pickup_address": "123 Main St, Lagos",
        "item_category": "plastic",
        "item_weight": 12.5,
        "estimated_earnings": 450.0,
        "rider_id": rider_id,
    }
    fields.update(overrides)
    return CreatePickupRequest(**fields)


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def locations():
    return InMemoryLocationStore()
