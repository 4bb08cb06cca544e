"""
Schemas for the PicknGet pickup dispatch service.

Rider and Pickup are persisted documents (collections "riders" and "pickups").
Field names are snake_case in Python and in storage; the HTTP surface speaks
camelCase through the alias generator.
"""
from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Status enums ---
class RiderStatus(str, Enum):
    Available = "Available"
    OnTrip = "On-Trip"
    OffLine = "Off-line"


class ApprovalStatus(str, Enum):
    Pending = "Pending"
    Approved = "Approved"
    Reject = "Reject"


class VehicleType(str, Enum):
    Bike = "Bike"
    Car = "Car"
    Van = "Van"
    Truck = "Truck"


class PickupStatus(str, Enum):
    Pending = "Pending"
    InTransit = "InTransit"
    PickedUp = "PickedUp"
    Delivered = "Delivered"
    Cancelled = "Cancelled"


ACTIVE_FOR_ITEM = (PickupStatus.Pending, PickupStatus.InTransit)
OPEN_STATUSES = (PickupStatus.Pending, PickupStatus.InTransit, PickupStatus.PickedUp)
FINISHED_STATUSES = (PickupStatus.Delivered, PickupStatus.Cancelled)


# --- Locations ---
class Coordinates(CamelModel):
    lat: float = Field(..., ge=-90, le=90, description="Latitude")
    lng: float = Field(..., ge=-180, le=180, description="Longitude")


class LiveLocation(Coordinates):
    heading: float = Field(0, description="Heading in degrees")
    timestamp: int = Field(..., description="Epoch milliseconds of the report")


class LocationUpdate(CamelModel):
    rider_id: int = Field(..., gt=0)
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    heading: Optional[float] = None


# --- Riders ---
class Rider(CamelModel):
    """
    Courier registered on the platform
    Collection: "riders"
    """
    ref: Optional[str] = Field(None, exclude=True, description="Internal storage identity")
    id: int = Field(..., gt=0, description="Externally assigned rider id")
    name: str
    phone_number: str
    vehicle_number: str
    home_address: str
    wallet_address: Optional[str] = None
    vehicle_type: VehicleType
    country: str
    capacity: float = Field(..., gt=0, description="Vehicle capacity in kg")
    rider_status: RiderStatus = RiderStatus.Available
    approval_status: ApprovalStatus = ApprovalStatus.Pending
    vehicle_make_model: Optional[str] = None
    vehicle_plate_number: Optional[str] = None
    vehicle_color: Optional[str] = None
    profile_image: Optional[str] = None
    drivers_license: Optional[str] = None
    vehicle_registration: Optional[str] = None
    insurance_certificate: Optional[str] = None
    vehicle_photos: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_assignable(self) -> bool:
        return (
            self.rider_status == RiderStatus.Available
            and self.approval_status == ApprovalStatus.Approved
        )


class RiderRegistration(CamelModel):
    id: int = Field(..., gt=0)
    name: str = Field(..., min_length=2)
    phone_number: str = Field(..., min_length=1)
    vehicle_number: str = Field(..., min_length=1)
    home_address: str = Field(..., min_length=10)
    wallet_address: Optional[str] = None
    vehicle_type: VehicleType
    country: str = Field(..., min_length=1)
    capacity: float = Field(..., gt=0)
    vehicle_make_model: Optional[str] = None
    vehicle_plate_number: Optional[str] = None
    vehicle_color: Optional[str] = None
    profile_image: Optional[str] = None
    drivers_license: Optional[str] = None
    vehicle_registration: str = Field(..., min_length=1)
    insurance_certificate: Optional[str] = None
    vehicle_photos: str = Field(..., min_length=1)

    @field_validator(
        "name", "phone_number", "vehicle_number", "home_address", "country",
        "vehicle_registration", "vehicle_photos", mode="before",
    )
    @classmethod
    def _strip(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("vehicle_number", "vehicle_plate_number")
    @classmethod
    def _upper(cls, value):
        return value.upper() if value else value

    @field_validator("wallet_address", "vehicle_make_model", "vehicle_color", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value


class ApprovalRequest(CamelModel):
    action: Literal["approve", "reject"]


# --- Pickups ---
class Pickup(CamelModel):
    """
    Single collection request from a recycler
    Collection: "pickups"
    """
    ref: Optional[str] = Field(None, exclude=True, description="Internal storage identity")
    tracking_id: str
    rider_ref: str = Field(..., description="Internal identity of the assigned rider")
    user_id: int
    item_id: int
    customer_name: str
    customer_phone_number: str
    pickup_address: str
    pickup_coordinates: Optional[Coordinates] = None
    item_category: str
    item_weight: float = Field(..., gt=0)
    item_description: Optional[str] = None
    item_images: List[str] = Field(default_factory=list)
    estimated_earnings: float = Field(..., ge=0)
    pick_up_status: PickupStatus = PickupStatus.Pending
    active_item_key: Optional[str] = Field(
        None, description="Unique while Pending or InTransit; one open request per user item"
    )
    requested_at: datetime
    accepted_at: Optional[datetime] = None
    collected_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    confirmed_on_chain: bool = False
    confirmation_tx_hash: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CreatePickupRequest(CamelModel):
    user_id: int = Field(..., gt=0)
    item_id: int = Field(..., gt=0)
    customer_name: str = Field(..., min_length=1)
    customer_phone_number: str = Field(..., min_length=1)
    pickup_address: str = Field(..., min_length=1)
    pickup_coordinates: Optional[Coordinates] = None
    item_category: str = Field(..., min_length=1)
    item_weight: float = Field(..., gt=0)
    item_description: Optional[str] = None
    item_images: List[str] = Field(default_factory=list)
    estimated_earnings: float = Field(..., gt=0)
    rider_id: int = Field(..., gt=0)


class PickupCreated(CamelModel):
    tracking_id: str
    pickup_id: str
    rider_id: int
    rider_name: str
    rider_phone_number: str
    estimated_earnings: float
    pick_up_status: PickupStatus


class StatusUpdateRequest(CamelModel):
    status: PickupStatus
    reason: Optional[str] = None


class CancelRequest(CamelModel):
    reason: Optional[str] = None


class PickupProjection(CamelModel):
    tracking_id: str
    pickup_id: str
    customer_name: str
    customer_phone_number: str
    pickup_address: str
    pickup_coordinates: Optional[Coordinates] = None
    item_category: str
    item_weight: float
    item_description: Optional[str] = None
    estimated_earnings: float
    pick_up_status: PickupStatus
    rider_id: Optional[int] = None
    rider_name: Optional[str] = None
    rider_phone_number: Optional[str] = None
    requested_at: datetime
    accepted_at: Optional[datetime] = None
    collected_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    notes: Optional[str] = None


class PickupList(CamelModel):
    count: int
    pickups: List[PickupProjection]


class AgentPickups(CamelModel):
    rider_id: int
    rider_name: str
    pickups: List[PickupProjection]


class AgentStats(CamelModel):
    total_pickups: int
    total_earnings: float
    weekly_pickups: int
    completion_rate: float


# --- Matching ---
class FindRidersRequest(CamelModel):
    pickup_address: str = Field(..., min_length=1)
    item_weight: float = Field(..., gt=0, description="Item weight in kg")
    country: str = Field(..., min_length=1)


class Candidate(CamelModel):
    rider_id: int
    name: str
    phone_number: str
    vehicle_number: str
    vehicle_type: VehicleType
    capacity: float
    profile_image: Optional[str] = None
    lat: float
    lng: float
    distance: float = Field(..., description="Travel distance in meters")
    duration: float = Field(..., description="Travel duration in seconds")
    eta: str


class FindRidersResponse(CamelModel):
    riders: List[Candidate]
    vehicle_type: VehicleType
    item_weight: float
    message: str


class MessageResponse(CamelModel):
    message: str
