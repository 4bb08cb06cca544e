"""
Pickup lifecycle: exclusive creation + rider assignment, and the status state
machine with its rider availability side effects.

    Pending   -> InTransit, Cancelled
    InTransit -> PickedUp, Cancelled
    PickedUp  -> Delivered
    Delivered, Cancelled are terminal

A pickup status change and the rider flip it implies are written in one
transaction scope. For stores without multi-document transactions the writes
made so far are undone in reverse order when a later step fails.
"""
import logging
from contextlib import contextmanager
from typing import Callable, Dict, Optional, Tuple

from pymongo.errors import DuplicateKeyError

from .database import ACTIVE_ITEM_FIELD
from .errors import (
    CapacityExceeded,
    DuplicatePickup,
    InvalidTransition,
    NotAssignedToRider,
    PickupNotFound,
    PickupServiceError,
    RiderNotFound,
    RiderUnavailable,
    TrackingCodeCollision,
)
from .metrics import PICKUP_CREATE_FAILURES, PICKUP_TRANSITIONS
from .schemas import (
    ACTIVE_FOR_ITEM,
    CreatePickupRequest,
    Pickup,
    PickupCreated,
    PickupStatus,
    Rider,
    RiderStatus,
)
from .store import utcnow
from .utils import generate_tracking_code

logger = logging.getLogger(__name__)

TRANSITIONS: Dict[PickupStatus, Tuple[PickupStatus, ...]] = {
    PickupStatus.Pending: (PickupStatus.InTransit, PickupStatus.Cancelled),
    PickupStatus.InTransit: (PickupStatus.PickedUp, PickupStatus.Cancelled),
    PickupStatus.PickedUp: (PickupStatus.Delivered,),
    PickupStatus.Delivered: (),
    PickupStatus.Cancelled: (),
}

# Timestamp recorded when a status is entered
ENTRY_TIMESTAMPS = {
    PickupStatus.InTransit: "accepted_at",
    PickupStatus.PickedUp: "collected_at",
    PickupStatus.Delivered: "delivered_at",
}

# Entering one of these hands the rider back to the matching pool
RELEASES_RIDER = (PickupStatus.Delivered, PickupStatus.Cancelled)


def can_transition(current: PickupStatus, requested: PickupStatus) -> bool:
    # Requesting the current status is an error, not a no-op.
    return requested in TRANSITIONS[current]


def active_item_key(user_id: int, item_id: int) -> str:
    return f"{user_id}:{item_id}"


def is_active_item_conflict(error: DuplicateKeyError) -> bool:
    key_pattern = (error.details or {}).get("keyPattern") or {}
    return ACTIVE_ITEM_FIELD in key_pattern or ACTIVE_ITEM_FIELD in str(error)


class PickupLifecycle:
    def __init__(self, store, clock: Callable = utcnow,
                 code_generator: Callable[[], str] = generate_tracking_code):
        self.store = store
        self.clock = clock
        self.code_generator = code_generator

    @contextmanager
    def _unit_of_work(self):
        undo = []
        try:
            with self.store.transaction() as session:
                yield session, undo
        except Exception:
            if not self.store.supports_transactions:
                for action in reversed(undo):
                    try:
                        action()
                    except Exception:
                        logger.exception("Compensating write failed; manual repair may be needed")
            raise

    def _allocate_tracking_id(self, session) -> str:
        """Draw a code; on collision draw once more, and give up on a second collision."""
        tracking_id = self.code_generator()
        if not self.store.tracking_id_exists(tracking_id, session=session):
            return tracking_id
        logger.warning("Tracking code %s already in use, regenerating", tracking_id)
        tracking_id = self.code_generator()
        if self.store.tracking_id_exists(tracking_id, session=session):
            raise TrackingCodeCollision(tracking_id)
        return tracking_id

    def create(self, request: CreatePickupRequest) -> PickupCreated:
        """Create a Pending pickup and move its rider to OnTrip, all or nothing."""
        try:
            try:
                rider, created = self._create(request)
            except DuplicateKeyError as e:
                # Only the open-item index lets a conflict escape _create
                raise self._duplicate_for_item(request) from e
        except PickupServiceError as e:
            PICKUP_CREATE_FAILURES.labels(reason=type(e).__name__).inc()
            raise

        PICKUP_TRANSITIONS.labels(status=PickupStatus.Pending.value).inc()
        logger.info("Pickup %s created and assigned to rider %s", created.tracking_id, rider.id)
        return PickupCreated(
            tracking_id=created.tracking_id,
            pickup_id=created.ref,
            rider_id=rider.id,
            rider_name=rider.name,
            rider_phone_number=rider.phone_number,
            estimated_earnings=created.estimated_earnings,
            pick_up_status=created.pick_up_status,
        )

    def _create(self, request: CreatePickupRequest) -> Tuple[Rider, Pickup]:
        with self._unit_of_work() as (session, undo):
            rider = self.store.get_rider(request.rider_id, session=session)
            if rider is None:
                raise RiderNotFound(request.rider_id)
            if not rider.is_assignable:
                raise RiderUnavailable(rider.id, rider.rider_status.value, rider.approval_status.value)
            if rider.capacity < request.item_weight:
                raise CapacityExceeded(rider.capacity, request.item_weight)

            existing = self.store.find_pickup_for_item(
                request.user_id, request.item_id, ACTIVE_FOR_ITEM, session=session
            )
            if existing is not None:
                raise DuplicatePickup(existing.tracking_id, existing.pick_up_status.value)

            tracking_id = self._allocate_tracking_id(session)

            # Conditional flip: only one concurrent creation can win the rider
            if not self.store.claim_rider(rider.id, session=session):
                raise RiderUnavailable(rider.id)
            undo.append(lambda: self.store.set_rider_status(rider.id, RiderStatus.Available))

            pickup = Pickup(
                tracking_id=tracking_id,
                rider_ref=rider.ref,
                user_id=request.user_id,
                item_id=request.item_id,
                customer_name=request.customer_name,
                customer_phone_number=request.customer_phone_number,
                pickup_address=request.pickup_address,
                pickup_coordinates=request.pickup_coordinates,
                item_category=request.item_category,
                item_weight=request.item_weight,
                item_description=request.item_description,
                item_images=request.item_images,
                estimated_earnings=request.estimated_earnings,
                pick_up_status=PickupStatus.Pending,
                active_item_key=active_item_key(request.user_id, request.item_id),
                requested_at=self.clock(),
            )
            try:
                created = self.store.insert_pickup(pickup, session=session)
            except DuplicateKeyError as e:
                if is_active_item_conflict(e):
                    raise
                raise TrackingCodeCollision(tracking_id) from e
        return rider, created

    def _duplicate_for_item(self, request: CreatePickupRequest) -> DuplicatePickup:
        # Read outside the failed scope; an aborted transaction cannot serve reads
        existing = self.store.find_pickup_for_item(request.user_id, request.item_id, ACTIVE_FOR_ITEM)
        if existing is None:
            return DuplicatePickup(None, None)
        return DuplicatePickup(existing.tracking_id, existing.pick_up_status.value)

    def _load_owned(self, rider_id: int, pickup_id: str, session) -> Tuple[Rider, Pickup]:
        rider = self.store.get_rider(rider_id, session=session)
        if rider is None:
            raise RiderNotFound(rider_id)
        pickup = self.store.get_pickup(pickup_id, session=session)
        if pickup is None:
            raise PickupNotFound(pickup_id)
        if pickup.rider_ref != rider.ref:
            raise NotAssignedToRider(rider_id, pickup_id)
        return rider, pickup

    def transition(self, rider_id: int, pickup_id: str, new_status: PickupStatus,
                   reason: Optional[str] = None) -> Pickup:
        with self._unit_of_work() as (session, undo):
            rider, pickup = self._load_owned(rider_id, pickup_id, session)
            current = pickup.pick_up_status
            if not can_transition(current, new_status):
                raise InvalidTransition(current.value, new_status.value)

            changes = {"pick_up_status": new_status}
            stamp = ENTRY_TIMESTAMPS.get(new_status)
            if stamp:
                changes[stamp] = self.clock()
            if new_status == PickupStatus.Cancelled and reason:
                changes["notes"] = reason
            if new_status not in ACTIVE_FOR_ITEM:
                # The item is free for a new request from here on
                changes[ACTIVE_ITEM_FIELD] = None

            updated = self.store.update_pickup_status(pickup.ref, current, changes, session=session)
            if updated is None:
                # Someone else moved the pickup between our read and write
                latest = self.store.get_pickup(pickup.ref, session=session)
                latest_status = latest.pick_up_status.value if latest else current.value
                raise InvalidTransition(latest_status, new_status.value)

            revert = {"pick_up_status": current}
            if stamp:
                revert[stamp] = None
            if new_status == PickupStatus.Cancelled and reason:
                revert["notes"] = pickup.notes
            if ACTIVE_ITEM_FIELD in changes:
                revert[ACTIVE_ITEM_FIELD] = pickup.active_item_key
            undo.append(lambda: self.store.update_pickup_status(pickup.ref, new_status, revert))

            if new_status in RELEASES_RIDER:
                self.store.set_rider_status(rider.id, RiderStatus.Available, session=session)
            elif new_status == PickupStatus.InTransit:
                self.store.set_rider_status(rider.id, RiderStatus.OnTrip, session=session)

        PICKUP_TRANSITIONS.labels(status=new_status.value).inc()
        logger.info("Pickup %s moved %s -> %s by rider %s",
                    updated.tracking_id, current.value, new_status.value, rider.id)
        return updated

    def accept(self, rider_id: int, pickup_id: str) -> Pickup:
        return self.transition(rider_id, pickup_id, PickupStatus.InTransit)

    def cancel(self, rider_id: int, pickup_id: str, reason: Optional[str] = None) -> Pickup:
        return self.transition(rider_id, pickup_id, PickupStatus.Cancelled, reason=reason)
