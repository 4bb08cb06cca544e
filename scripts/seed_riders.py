#!/usr/bin/env python3
"""
Seed Riders and Live Locations
==============================

Inserts a batch of approved, available sample riders into the configured
store and writes a live position for each of them, so that
POST /pickups/find-riders has someone to return in a local setup.

Usage:
    python scripts/seed_riders.py [count]
"""

import random
import sys
from pathlib import Path

# Make `src` importable when run from anywhere
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from pymongo.errors import DuplicateKeyError

from src.pickup_api import config
from src.pickup_api.database import create_client, ensure_indexes
from src.pickup_api.location_store import build_location_store
from src.pickup_api.schemas import ApprovalStatus, Rider, RiderStatus, VehicleType
from src.pickup_api.store import build_store

LAGOS = (6.5244, 3.3792)
CAPACITY_BY_VEHICLE = {
    VehicleType.Bike: 20,
    VehicleType.Car: 100,
    VehicleType.Van: 400,
    VehicleType.Truck: 2000,
}


def sample_rider(rider_id: int) -> Rider:
    vehicle_type = random.choice(list(VehicleType))
    return Rider(
        id=rider_id,
        name=f"Sample Rider {rider_id}",
        phone_number=f"+23480{rider_id:08d}",
        vehicle_number=f"LAG-{rider_id:04d}-SR",
        home_address=f"{rider_id} Herbert Macaulay Way, Yaba, Lagos",
        vehicle_type=vehicle_type,
        country="Nigeria",
        capacity=CAPACITY_BY_VEHICLE[vehicle_type],
        rider_status=RiderStatus.Available,
        approval_status=ApprovalStatus.Approved,
        vehicle_registration="QmSampleRegistration",
        vehicle_photos="QmSamplePhotos",
    )


def seed_riders(count: int = 20):
    print("=" * 60)
    print("📦 Seeding riders and live locations")
    print("=" * 60)
    print(f"🔗 Store: {config.STORE_BACKEND} | Locations: {config.LOCATION_BACKEND}")
    print()

    if config.STORE_BACKEND == "memory":
        print("⚠️  STORE_BACKEND=memory keeps data inside one process; seeding it from a script has no lasting effect.")

    try:
        client = None
        if config.STORE_BACKEND == "mongo":
            client = create_client(config.MONGODB_URI)
            db = client[config.DATABASE_NAME]
            ensure_indexes(db)
            store = build_store("mongo", client, db, use_transactions=False)
        else:
            store = build_store(config.STORE_BACKEND)
        locations = build_location_store(config.LOCATION_BACKEND)
        print("✅ Connected to backends")
    except Exception as e:
        print(f"❌ Failed to connect: {e}")
        print("   Make sure MongoDB and Redis are running: docker ps")
        sys.exit(1)

    inserted = skipped = 0
    for rider_id in range(1, count + 1):
        try:
            store.insert_rider(sample_rider(rider_id))
            inserted += 1
        except DuplicateKeyError:
            skipped += 1

        lat = LAGOS[0] + random.uniform(-0.05, 0.05)
        lng = LAGOS[1] + random.uniform(-0.05, 0.05)
        locations.set(rider_id, lat, lng, heading=random.uniform(0, 360))

    print(f"✅ Inserted {inserted} riders ({skipped} already present)")
    print(f"✅ Wrote {count} live locations")
    print()
    print("📋 Next steps:")
    print("   1. Run: uvicorn src.pickup_api.main:app --port 8000")
    print("   2. Run: python test_pickup_api.py")

    if client is not None:
        client.close()


if __name__ == "__main__":
    seed_riders(int(sys.argv[1]) if len(sys.argv) > 1 else 20)
