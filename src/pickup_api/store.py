"""
Rider and pickup persistence.

Both implementations expose the same methods. Every method takes an optional
``session`` obtained from ``transaction()``; writes made under one session are
committed or discarded together.
"""
import copy
import logging
import re
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, OperationFailure
from pymongo.read_concern import ReadConcern
from pymongo.write_concern import WriteConcern

from .database import ACTIVE_ITEM_FIELD, PICKUPS, RIDERS
from .schemas import ApprovalStatus, Pickup, PickupStatus, Rider, RiderStatus, VehicleType
from .utils import to_document

logger = logging.getLogger(__name__)

WRITE_CONFLICT = 112


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _rider_from_doc(doc: Optional[dict]) -> Optional[Rider]:
    if doc is None:
        return None
    doc = dict(doc)
    doc["ref"] = str(doc.pop("_id"))
    return Rider.model_validate(doc)


def _pickup_from_doc(doc: Optional[dict]) -> Optional[Pickup]:
    if doc is None:
        return None
    doc = dict(doc)
    doc["ref"] = str(doc.pop("_id"))
    return Pickup.model_validate(doc)


def _model_to_doc(model) -> dict:
    return to_document(model.model_dump(exclude={"ref"}))


def _values(statuses: Iterable[Any]) -> List[str]:
    return [s.value for s in statuses]


class MongoStore:
    def __init__(self, client, db, use_transactions: bool = True):
        self.client = client
        self.db = db
        self.riders = db[RIDERS]
        self.pickups = db[PICKUPS]
        self.use_transactions = use_transactions

    @property
    def supports_transactions(self) -> bool:
        return self.use_transactions

    @contextmanager
    def transaction(self):
        if not self.use_transactions:
            yield None
            return
        with self.client.start_session() as session:
            with session.start_transaction(
                read_concern=ReadConcern("snapshot"),
                write_concern=WriteConcern("majority"),
            ):
                yield session

    # --- Riders ---
    def get_rider(self, rider_id: int, session=None) -> Optional[Rider]:
        return _rider_from_doc(self.riders.find_one({"id": rider_id}, session=session))

    def get_rider_by_ref(self, ref: str, session=None) -> Optional[Rider]:
        try:
            oid = ObjectId(ref)
        except (InvalidId, TypeError):
            return None
        return _rider_from_doc(self.riders.find_one({"_id": oid}, session=session))

    def find_rider_by(self, field: str, value: Any) -> Optional[Rider]:
        return _rider_from_doc(self.riders.find_one({field: value}))

    def insert_rider(self, rider: Rider) -> Rider:
        now = utcnow()
        doc = _model_to_doc(rider.model_copy(update={"created_at": now, "updated_at": now}))
        result = self.riders.insert_one(doc)
        doc["_id"] = result.inserted_id
        return _rider_from_doc(doc)

    def find_eligible_riders(self, vehicle_type: VehicleType, country: str,
                             min_capacity: float, limit: int) -> List[Rider]:
        query = {
            "vehicle_type": {"$regex": f"^{re.escape(vehicle_type.value)}$", "$options": "i"},
            "rider_status": RiderStatus.Available.value,
            "approval_status": ApprovalStatus.Approved.value,
            "country": {"$regex": f"^{re.escape(country.strip())}$", "$options": "i"},
            "capacity": {"$gte": min_capacity},
        }
        cursor = self.riders.find(query).sort("id", ASCENDING).limit(limit)
        return [_rider_from_doc(doc) for doc in cursor]

    def claim_rider(self, rider_id: int, session=None) -> bool:
        """Flip Available -> OnTrip only if the rider is still assignable. False if the race was lost."""
        try:
            result = self.riders.update_one(
                {
                    "id": rider_id,
                    "rider_status": RiderStatus.Available.value,
                    "approval_status": ApprovalStatus.Approved.value,
                },
                {"$set": {"rider_status": RiderStatus.OnTrip.value, "updated_at": utcnow()}},
                session=session,
            )
        except OperationFailure as e:
            # A concurrent transaction holds the rider document.
            if e.code == WRITE_CONFLICT or e.has_error_label("TransientTransactionError"):
                logger.info("Write conflict while claiming rider %s", rider_id)
                return False
            raise
        return result.matched_count == 1

    def set_rider_status(self, rider_id: int, status: RiderStatus, session=None) -> bool:
        result = self.riders.update_one(
            {"id": rider_id},
            {"$set": {"rider_status": status.value, "updated_at": utcnow()}},
            session=session,
        )
        return result.matched_count == 1

    def set_approval_status(self, rider_id: int, status: ApprovalStatus) -> Optional[Rider]:
        doc = self.riders.find_one_and_update(
            {"id": rider_id},
            {"$set": {"approval_status": status.value, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        return _rider_from_doc(doc)

    # --- Pickups ---
    def get_pickup(self, pickup_ref: str, session=None) -> Optional[Pickup]:
        try:
            oid = ObjectId(pickup_ref)
        except (InvalidId, TypeError):
            return None
        return _pickup_from_doc(self.pickups.find_one({"_id": oid}, session=session))

    def get_pickup_by_tracking_id(self, tracking_id: str, session=None) -> Optional[Pickup]:
        return _pickup_from_doc(self.pickups.find_one({"tracking_id": tracking_id}, session=session))

    def tracking_id_exists(self, tracking_id: str, session=None) -> bool:
        return self.pickups.count_documents({"tracking_id": tracking_id}, limit=1, session=session) > 0

    def find_pickup_for_item(self, user_id: int, item_id: int, statuses: Iterable[PickupStatus],
                             session=None) -> Optional[Pickup]:
        doc = self.pickups.find_one(
            {"user_id": user_id, "item_id": item_id, "pick_up_status": {"$in": _values(statuses)}},
            session=session,
        )
        return _pickup_from_doc(doc)

    def insert_pickup(self, pickup: Pickup, session=None) -> Pickup:
        now = utcnow()
        doc = _model_to_doc(pickup.model_copy(update={"created_at": now, "updated_at": now}))
        result = self.pickups.insert_one(doc, session=session)
        doc["_id"] = result.inserted_id
        return _pickup_from_doc(doc)

    def update_pickup_status(self, pickup_ref: str, expected: PickupStatus, changes: Dict[str, Any],
                             session=None) -> Optional[Pickup]:
        """Apply ``changes`` only if the pickup is still in ``expected``. None if it moved on."""
        changes = dict(changes, updated_at=utcnow())
        doc = self.pickups.find_one_and_update(
            {"_id": ObjectId(pickup_ref), "pick_up_status": expected.value},
            {"$set": to_document(changes)},
            return_document=ReturnDocument.AFTER,
            session=session,
        )
        return _pickup_from_doc(doc)

    def list_pickups(self, user_id: Optional[int] = None, rider_ref: Optional[str] = None,
                     statuses: Optional[Iterable[PickupStatus]] = None, sort_by: str = "requested_at",
                     descending: bool = True, limit: Optional[int] = None) -> List[Pickup]:
        query: Dict[str, Any] = {}
        if user_id is not None:
            query["user_id"] = user_id
        if rider_ref is not None:
            query["rider_ref"] = rider_ref
        if statuses is not None:
            query["pick_up_status"] = {"$in": _values(statuses)}
        cursor = self.pickups.find(query).sort(sort_by, DESCENDING if descending else ASCENDING)
        if limit:
            cursor = cursor.limit(limit)
        return [_pickup_from_doc(doc) for doc in cursor]


class InMemoryStore:
    """
    Process-local store (STORE_BACKEND=memory). One re-entrant lock serialises
    every operation; a transaction holds it for its whole scope and restores a
    snapshot if the scope raises.
    """

    def __init__(self):
        self._riders: Dict[str, dict] = {}
        self._pickups: Dict[str, dict] = {}
        self._lock = threading.RLock()

    @property
    def supports_transactions(self) -> bool:
        return True

    @contextmanager
    def transaction(self):
        with self._lock:
            snapshot = (copy.deepcopy(self._riders), copy.deepcopy(self._pickups))
            try:
                yield None
            except BaseException:
                self._riders, self._pickups = snapshot
                raise

    @staticmethod
    def _rider(ref: str, doc: dict) -> Rider:
        return Rider.model_validate(dict(copy.deepcopy(doc), ref=ref))

    @staticmethod
    def _pickup(ref: str, doc: dict) -> Pickup:
        return Pickup.model_validate(dict(copy.deepcopy(doc), ref=ref))

    # --- Riders ---
    def _find_rider_ref(self, rider_id: int) -> Optional[str]:
        for ref, doc in self._riders.items():
            if doc["id"] == rider_id:
                return ref
        return None

    def get_rider(self, rider_id: int, session=None) -> Optional[Rider]:
        with self._lock:
            ref = self._find_rider_ref(rider_id)
            return self._rider(ref, self._riders[ref]) if ref else None

    def get_rider_by_ref(self, ref: str, session=None) -> Optional[Rider]:
        with self._lock:
            doc = self._riders.get(ref)
            return self._rider(ref, doc) if doc else None

    def find_rider_by(self, field: str, value: Any) -> Optional[Rider]:
        with self._lock:
            for ref, doc in self._riders.items():
                if doc.get(field) == value:
                    return self._rider(ref, doc)
        return None

    def insert_rider(self, rider: Rider) -> Rider:
        now = utcnow()
        doc = _model_to_doc(rider.model_copy(update={"created_at": now, "updated_at": now}))
        with self._lock:
            for field in ("id", "phone_number", "vehicle_number", "wallet_address"):
                value = doc.get(field)
                if value is not None and any(d.get(field) == value for d in self._riders.values()):
                    raise DuplicateKeyError(f"duplicate key: {field}")
            ref = str(ObjectId())
            self._riders[ref] = doc
            return self._rider(ref, doc)

    def find_eligible_riders(self, vehicle_type: VehicleType, country: str,
                             min_capacity: float, limit: int) -> List[Rider]:
        wanted_country = country.strip().casefold()
        with self._lock:
            matches = [
                self._rider(ref, doc)
                for ref, doc in self._riders.items()
                if doc["vehicle_type"].casefold() == vehicle_type.value.casefold()
                and doc["rider_status"] == RiderStatus.Available.value
                and doc["approval_status"] == ApprovalStatus.Approved.value
                and doc["country"].casefold() == wanted_country
                and doc["capacity"] >= min_capacity
            ]
        matches.sort(key=lambda r: r.id)
        return matches[:limit]

    def claim_rider(self, rider_id: int, session=None) -> bool:
        with self._lock:
            ref = self._find_rider_ref(rider_id)
            if ref is None:
                return False
            doc = self._riders[ref]
            if (doc["rider_status"] != RiderStatus.Available.value
                    or doc["approval_status"] != ApprovalStatus.Approved.value):
                return False
            doc["rider_status"] = RiderStatus.OnTrip.value
            doc["updated_at"] = utcnow()
            return True

    def set_rider_status(self, rider_id: int, status: RiderStatus, session=None) -> bool:
        with self._lock:
            ref = self._find_rider_ref(rider_id)
            if ref is None:
                return False
            self._riders[ref].update(rider_status=status.value, updated_at=utcnow())
            return True

    def set_approval_status(self, rider_id: int, status: ApprovalStatus) -> Optional[Rider]:
        with self._lock:
            ref = self._find_rider_ref(rider_id)
            if ref is None:
                return None
            self._riders[ref].update(approval_status=status.value, updated_at=utcnow())
            return self._rider(ref, self._riders[ref])

    # --- Pickups ---
    def _check_unique_pickup_field(self, field: str, value: Any, skip: Optional[str] = None):
        """Mirror of the unique pickup indexes; null values never conflict."""
        if value is None:
            return
        for ref, doc in self._pickups.items():
            if ref != skip and doc.get(field) == value:
                raise DuplicateKeyError(f"duplicate key: {field}", 11000, {"keyPattern": {field: 1}})

    def get_pickup(self, pickup_ref: str, session=None) -> Optional[Pickup]:
        with self._lock:
            doc = self._pickups.get(pickup_ref)
            return self._pickup(pickup_ref, doc) if doc else None

    def get_pickup_by_tracking_id(self, tracking_id: str, session=None) -> Optional[Pickup]:
        with self._lock:
            for ref, doc in self._pickups.items():
                if doc["tracking_id"] == tracking_id:
                    return self._pickup(ref, doc)
        return None

    def tracking_id_exists(self, tracking_id: str, session=None) -> bool:
        return self.get_pickup_by_tracking_id(tracking_id) is not None

    def find_pickup_for_item(self, user_id: int, item_id: int, statuses: Iterable[PickupStatus],
                             session=None) -> Optional[Pickup]:
        wanted = set(_values(statuses))
        with self._lock:
            for ref, doc in self._pickups.items():
                if doc["user_id"] == user_id and doc["item_id"] == item_id and doc["pick_up_status"] in wanted:
                    return self._pickup(ref, doc)
        return None

    def insert_pickup(self, pickup: Pickup, session=None) -> Pickup:
        now = utcnow()
        doc = _model_to_doc(pickup.model_copy(update={"created_at": now, "updated_at": now}))
        with self._lock:
            for field in ("tracking_id", ACTIVE_ITEM_FIELD):
                self._check_unique_pickup_field(field, doc.get(field))
            ref = str(ObjectId())
            self._pickups[ref] = doc
            return self._pickup(ref, doc)

    def update_pickup_status(self, pickup_ref: str, expected: PickupStatus, changes: Dict[str, Any],
                             session=None) -> Optional[Pickup]:
        with self._lock:
            doc = self._pickups.get(pickup_ref)
            if doc is None or doc["pick_up_status"] != expected.value:
                return None
            if changes.get(ACTIVE_ITEM_FIELD) is not None:
                self._check_unique_pickup_field(ACTIVE_ITEM_FIELD, changes[ACTIVE_ITEM_FIELD], skip=pickup_ref)
            doc.update(to_document(dict(changes, updated_at=utcnow())))
            return self._pickup(pickup_ref, doc)

    def list_pickups(self, user_id: Optional[int] = None, rider_ref: Optional[str] = None,
                     statuses: Optional[Iterable[PickupStatus]] = None, sort_by: str = "requested_at",
                     descending: bool = True, limit: Optional[int] = None) -> List[Pickup]:
        wanted = set(_values(statuses)) if statuses is not None else None
        with self._lock:
            rows = [
                (ref, doc) for ref, doc in self._pickups.items()
                if (user_id is None or doc["user_id"] == user_id)
                and (rider_ref is None or doc["rider_ref"] == rider_ref)
                and (wanted is None or doc["pick_up_status"] in wanted)
            ]
            # None sorts last regardless of direction, as in MongoDB descending order
            present = [r for r in rows if r[1].get(sort_by) is not None]
            missing = [r for r in rows if r[1].get(sort_by) is None]
            present.sort(key=lambda r: r[1][sort_by], reverse=descending)
            rows = present + missing if descending else missing + present
            if limit:
                rows = rows[:limit]
            return [self._pickup(ref, doc) for ref, doc in rows]


def build_store(backend: str, client=None, db=None, use_transactions: bool = True):
    if backend == "mongo":
        return MongoStore(client, db, use_transactions=use_transactions)
    if backend == "memory":
        return InMemoryStore()
    raise RuntimeError(f"Unknown STORE_BACKEND: {backend}")
