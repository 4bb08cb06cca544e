"""
Error taxonomy for the pickup dispatch core.

Every error carries a human readable message plus a ``context`` dict that the
API layer returns alongside it, so callers can act on e.g. the existing
tracking code of a duplicate pickup.
"""
from typing import Any, Dict, Optional


class PickupServiceError(Exception):
    status_code = 500

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


# --- Validation ---
class ValidationError(PickupServiceError):
    status_code = 400


# --- Not found ---
class NotFoundError(PickupServiceError):
    status_code = 404


class RiderNotFound(NotFoundError):
    def __init__(self, rider_id: int):
        super().__init__("Rider not found", {"riderId": rider_id})


class PickupNotFound(NotFoundError):
    def __init__(self, pickup_id: str):
        super().__init__("Pickup not found", {"pickupId": pickup_id})


# --- Business rules ---
class BusinessRuleError(PickupServiceError):
    status_code = 400


class RiderUnavailable(BusinessRuleError):
    def __init__(self, rider_id: int, rider_status: Optional[str] = None,
                 approval_status: Optional[str] = None):
        context = {"riderId": rider_id}
        if rider_status is not None:
            context["riderStatus"] = rider_status
        if approval_status is not None:
            context["approvalStatus"] = approval_status
        super().__init__("Rider is not available", context)


class CapacityExceeded(BusinessRuleError):
    def __init__(self, capacity: float, item_weight: float):
        super().__init__(
            f"Rider vehicle capacity ({capacity:g}kg) is insufficient for item weight ({item_weight:g}kg)",
            {"capacity": capacity, "itemWeight": item_weight},
        )


class DuplicatePickup(BusinessRuleError):
    def __init__(self, tracking_id: Optional[str], pickup_status: Optional[str]):
        if tracking_id is None:
            # The conflicting pickup finished before it could be read back
            message = "You already have an active pickup for this item"
        else:
            message = f"You already have a {pickup_status.lower()} pickup for this item ({tracking_id})"
        super().__init__(message, {"trackingId": tracking_id, "pickUpStatus": pickup_status})
        self.tracking_id = tracking_id


class InvalidTransition(BusinessRuleError):
    def __init__(self, current: str, requested: str):
        super().__init__(
            f"Cannot transition from {current} to {requested}",
            {"currentStatus": current, "requestedStatus": requested},
        )
        self.current = current
        self.requested = requested


class NotAssignedToRider(BusinessRuleError):
    # Reported as a not-found to the rider, who must not learn about other riders' pickups.
    status_code = 404

    def __init__(self, rider_id: int, pickup_id: str):
        super().__init__("This pickup is not assigned to you", {"riderId": rider_id, "pickupId": pickup_id})


class TrackingCodeCollision(BusinessRuleError):
    status_code = 500

    def __init__(self, tracking_id: str):
        super().__init__("Could not allocate a unique tracking code", {"trackingId": tracking_id})


# --- Registration conflicts ---
class RiderAlreadyExists(PickupServiceError):
    status_code = 409

    def __init__(self, rider_id: int):
        super().__init__(f"A rider with ID {rider_id} already exists", {"riderId": rider_id})


class DuplicateRiderField(PickupServiceError):
    status_code = 409

    def __init__(self, field: str, label: str):
        super().__init__(f"{label} already registered", {"field": field})


# --- External dependencies ---
class ExternalServiceError(PickupServiceError):
    status_code = 502


class GeocodeError(ExternalServiceError):
    pass


class RouteRankerError(ExternalServiceError):
    pass


class LocationStoreError(ExternalServiceError):
    pass
