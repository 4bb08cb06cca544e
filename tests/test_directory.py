import pytest

from src.pickup_api.directory import RiderDirectory
from src.pickup_api.errors import (
    DuplicateRiderField,
    RiderAlreadyExists,
    RiderNotFound,
    ValidationError,
)
from src.pickup_api.schemas import ApprovalStatus, RiderRegistration, RiderStatus, VehicleType


def registration(rider_id=1, **overrides):
    fields = {
        "id": rider_id,
        "name": "  Chidi Okafor ",
        "phone_number": "+2348030000001",
        "vehicle_number": "lag-123-xy",
        "home_address": "14 Adeola Odeku Street, Victoria Island",
        "vehicle_type": VehicleType.Van,
        "country": "Nigeria",
        "capacity": 150,
        "vehicle_registration": "QmRegCid",
        "vehicle_photos": "QmPhotoCid",
    }
    fields.update(overrides)
    return RiderRegistration(**fields)


@pytest.fixture
def directory(store):
    return RiderDirectory(store)


def test_register_defaults_to_available_pending(directory):
    rider = directory.register(registration())

    assert rider.name == "Chidi Okafor"
    assert rider.vehicle_number == "LAG-123-XY"
    assert rider.rider_status == RiderStatus.Available
    assert rider.approval_status == ApprovalStatus.Pending
    assert rider.created_at is not None
    assert not rider.is_assignable


def test_register_same_id_twice(directory):
    directory.register(registration())
    with pytest.raises(RiderAlreadyExists):
        directory.register(registration(phone_number="+2348030000002", vehicle_number="LAG-999"))


@pytest.mark.parametrize("field,value", [
    ("phone_number", "+2348030000001"),
    ("vehicle_number", "LAG-123-XY"),
    ("wallet_address", "0xabc"),
])
def test_register_rejects_duplicate_unique_fields(directory, field, value):
    directory.register(registration(wallet_address="0xabc"))
    other = {
        "phone_number": "+2348030000002",
        "vehicle_number": "ABJ-555",
        "wallet_address": "0xdef",
    }
    other[field] = value

    with pytest.raises(DuplicateRiderField) as exc:
        directory.register(registration(2, **other))
    assert exc.value.context["field"] == field


def test_blank_wallet_is_not_a_conflict(directory):
    directory.register(registration(wallet_address="  "))
    rider = directory.register(registration(2, phone_number="+2348030000002",
                                            vehicle_number="ABJ-555", wallet_address=""))
    assert rider.wallet_address is None


def test_approval_makes_rider_assignable(directory):
    directory.register(registration())

    rider = directory.update_approval(1, "approve")
    assert rider.approval_status == ApprovalStatus.Approved
    assert rider.is_assignable

    rider = directory.update_approval(1, "reject")
    assert rider.approval_status == ApprovalStatus.Reject


def test_approval_errors(directory):
    with pytest.raises(RiderNotFound):
        directory.update_approval(5, "approve")
    directory.register(registration())
    with pytest.raises(ValidationError):
        directory.update_approval(1, "suspend")


def test_get_unknown_rider(directory):
    with pytest.raises(RiderNotFound):
        directory.get(404)


def test_find_eligible_needs_approval(directory):
    directory.register(registration())
    assert directory.find_eligible(VehicleType.Van, "nigeria", 100, 20) == []

    directory.update_approval(1, "approve")
    assert [r.id for r in directory.find_eligible(VehicleType.Van, "nigeria", 100, 20)] == [1]
    assert directory.find_eligible(VehicleType.Van, "nigeria", 200, 20) == []
