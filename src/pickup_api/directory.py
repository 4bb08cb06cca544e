import logging
from typing import List

from pymongo.errors import DuplicateKeyError

from .errors import DuplicateRiderField, RiderAlreadyExists, RiderNotFound, ValidationError
from .schemas import ApprovalStatus, Rider, RiderRegistration, RiderStatus, VehicleType

logger = logging.getLogger(__name__)

# (stored field, label used in conflict messages)
UNIQUE_RIDER_FIELDS = (
    ("phone_number", "Phone number"),
    ("vehicle_number", "Vehicle number"),
    ("wallet_address", "Wallet address"),
)


class RiderDirectory:
    """Query layer over persisted riders plus the registration and approval writes."""

    def __init__(self, store):
        self.store = store

    def register(self, registration: RiderRegistration) -> Rider:
        if self.store.get_rider(registration.id) is not None:
            raise RiderAlreadyExists(registration.id)

        for field, label in UNIQUE_RIDER_FIELDS:
            value = getattr(registration, field)
            if value is not None and self.store.find_rider_by(field, value) is not None:
                raise DuplicateRiderField(field, label)

        rider = Rider(
            **registration.model_dump(),
            rider_status=RiderStatus.Available,
            approval_status=ApprovalStatus.Pending,
        )
        try:
            created = self.store.insert_rider(rider)
        except DuplicateKeyError as e:
            # Lost a race against a concurrent registration with the same details
            raise DuplicateRiderField("rider", "Rider details") from e

        logger.info("Registered rider %s (%s, %s)", created.id, created.vehicle_type.value, created.country)
        return created

    def get(self, rider_id: int) -> Rider:
        rider = self.store.get_rider(rider_id)
        if rider is None:
            raise RiderNotFound(rider_id)
        return rider

    def find_eligible(self, vehicle_type: VehicleType, country: str, min_capacity: float,
                      limit: int) -> List[Rider]:
        """Available, approved riders of the vehicle type in the country who can carry the weight."""
        return self.store.find_eligible_riders(vehicle_type, country, min_capacity, limit)

    def update_approval(self, rider_id: int, action: str) -> Rider:
        if action == "approve":
            status = ApprovalStatus.Approved
        elif action == "reject":
            status = ApprovalStatus.Reject
        else:
            raise ValidationError("Invalid approval action", {"action": action})

        rider = self.store.set_approval_status(rider_id, status)
        if rider is None:
            raise RiderNotFound(rider_id)
        logger.info("Rider %s approval set to %s", rider_id, status.value)
        return rider
