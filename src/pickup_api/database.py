import pymongo
from pymongo import MongoClient

from . import config

RIDERS = "riders"
PICKUPS = "pickups"

# "{user_id}:{item_id}" while a pickup still blocks new requests for that item, null afterwards
ACTIVE_ITEM_FIELD = "active_item_key"


def create_client(uri: str = config.MONGODB_URI) -> MongoClient:
    # MongoClient is itself a connection pool; one per process, sessions per operation.
    return MongoClient(uri, serverSelectionTimeoutMS=5000, tz_aware=True)


def ensure_indexes(db) -> None:
    riders = db[RIDERS]
    riders.create_index("id", unique=True)
    riders.create_index("phone_number", unique=True)
    riders.create_index("vehicle_number", unique=True)
    riders.create_index(
        "wallet_address",
        unique=True,
        partialFilterExpression={"wallet_address": {"$type": "string"}},
    )
    riders.create_index([
        ("rider_status", pymongo.ASCENDING),
        ("approval_status", pymongo.ASCENDING),
        ("vehicle_type", pymongo.ASCENDING),
    ])

    pickups = db[PICKUPS]
    pickups.create_index("tracking_id", unique=True)
    pickups.create_index([("rider_ref", pymongo.ASCENDING), ("pick_up_status", pymongo.ASCENDING)])
    pickups.create_index([("user_id", pymongo.ASCENDING), ("requested_at", pymongo.DESCENDING)])
    pickups.create_index([("user_id", pymongo.ASCENDING), ("item_id", pymongo.ASCENDING), ("pick_up_status", pymongo.ASCENDING)])
    pickups.create_index(
        ACTIVE_ITEM_FIELD,
        unique=True,
        partialFilterExpression={ACTIVE_ITEM_FIELD: {"$type": "string"}},
    )
