from datetime import timedelta
from typing import Dict, List, Optional

import pandas as pd

from . import config
from .errors import PickupNotFound, RiderNotFound
from .schemas import (
    FINISHED_STATUSES,
    OPEN_STATUSES,
    AgentPickups,
    AgentStats,
    Pickup,
    PickupList,
    PickupProjection,
    PickupStatus,
    Rider,
)
from .store import utcnow


def project(pickup: Pickup, rider: Optional[Rider] = None) -> PickupProjection:
    """Client-facing view of a pickup, with the assigned rider's contact when known."""
    return PickupProjection(
        tracking_id=pickup.tracking_id,
        pickup_id=pickup.ref,
        customer_name=pickup.customer_name,
        customer_phone_number=pickup.customer_phone_number,
        pickup_address=pickup.pickup_address,
        pickup_coordinates=pickup.pickup_coordinates,
        item_category=pickup.item_category,
        item_weight=pickup.item_weight,
        item_description=pickup.item_description,
        estimated_earnings=pickup.estimated_earnings,
        pick_up_status=pickup.pick_up_status,
        rider_id=rider.id if rider else None,
        rider_name=rider.name if rider else None,
        rider_phone_number=rider.phone_number if rider else None,
        requested_at=pickup.requested_at,
        accepted_at=pickup.accepted_at,
        collected_at=pickup.collected_at,
        delivered_at=pickup.delivered_at,
        notes=pickup.notes,
    )


class PickupQuery:
    """Read side over persisted pickups: tracking for customers, job lists for riders."""

    def __init__(self, store):
        self.store = store

    def _project_all(self, pickups: List[Pickup]) -> List[PickupProjection]:
        riders: Dict[str, Optional[Rider]] = {}
        projections = []
        for pickup in pickups:
            if pickup.rider_ref not in riders:
                riders[pickup.rider_ref] = self.store.get_rider_by_ref(pickup.rider_ref)
            projections.append(project(pickup, riders[pickup.rider_ref]))
        return projections

    def _rider(self, rider_id: int) -> Rider:
        rider = self.store.get_rider(rider_id)
        if rider is None:
            raise RiderNotFound(rider_id)
        return rider

    def track(self, pickup_id: str) -> PickupProjection:
        pickup = self.store.get_pickup(pickup_id)
        if pickup is None:
            raise PickupNotFound(pickup_id)
        return project(pickup, self.store.get_rider_by_ref(pickup.rider_ref))

    def track_by_code(self, tracking_id: str) -> PickupProjection:
        pickup = self.store.get_pickup_by_tracking_id(tracking_id)
        if pickup is None:
            raise PickupNotFound(tracking_id)
        return project(pickup, self.store.get_rider_by_ref(pickup.rider_ref))

    def user_active(self, user_id: int) -> PickupList:
        pickups = self.store.list_pickups(user_id=user_id, statuses=OPEN_STATUSES)
        projections = self._project_all(pickups)
        return PickupList(count=len(projections), pickups=projections)

    def user_history(self, user_id: int, limit: int = config.HISTORY_LIMIT) -> PickupList:
        pickups = self.store.list_pickups(
            user_id=user_id, statuses=FINISHED_STATUSES, sort_by="updated_at", limit=limit
        )
        projections = self._project_all(pickups)
        return PickupList(count=len(projections), pickups=projections)

    def rider_active(self, rider_id: int) -> AgentPickups:
        rider = self._rider(rider_id)
        pickups = self.store.list_pickups(rider_ref=rider.ref, statuses=OPEN_STATUSES)
        return AgentPickups(
            rider_id=rider.id,
            rider_name=rider.name,
            pickups=[project(p, rider) for p in pickups],
        )

    def rider_available_jobs(self, rider_id: int, limit: int = config.AVAILABLE_JOBS_LIMIT) -> AgentPickups:
        rider = self._rider(rider_id)
        pickups = self.store.list_pickups(
            rider_ref=rider.ref, statuses=(PickupStatus.Pending,), limit=limit
        )
        return AgentPickups(
            rider_id=rider.id,
            rider_name=rider.name,
            pickups=[project(p, rider) for p in pickups],
        )

    def rider_stats(self, rider_id: int, now=None) -> AgentStats:
        rider = self._rider(rider_id)
        now = now or utcnow()
        finished = self.store.list_pickups(rider_ref=rider.ref, statuses=FINISHED_STATUSES)
        if not finished:
            return AgentStats(total_pickups=0, total_earnings=0.0, weekly_pickups=0, completion_rate=0.0)

        df = pd.DataFrame([
            {
                "status": p.pick_up_status.value,
                "earnings": p.estimated_earnings,
                "delivered_at": p.delivered_at,
            }
            for p in finished
        ])
        delivered = df[df["status"] == PickupStatus.Delivered.value]
        delivered_at = pd.to_datetime(delivered["delivered_at"], utc=True)
        week_start = pd.Timestamp(now - timedelta(days=7))
        if week_start.tz is None:
            week_start = week_start.tz_localize("UTC")

        return AgentStats(
            total_pickups=int(len(delivered)),
            total_earnings=float(delivered["earnings"].sum()),
            weekly_pickups=int((delivered_at >= week_start).sum()),
            completion_rate=round(100.0 * len(delivered) / len(df), 1),
        )
