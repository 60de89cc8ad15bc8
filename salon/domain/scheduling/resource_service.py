"""Resource capacity tracker - shared physical resources with a finite quantity"""

import logging
from collections import defaultdict
from datetime import datetime
from typing import Iterable

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...models import Resource
from .repository import SchedulingRepository
from .time_calculator import max_simultaneous, overlaps, slot_end

logger = logging.getLogger(__name__)

Interval = tuple[datetime, datetime]


def compute_conflicts(
    new_by_resource: dict[int, list[Interval]],
    existing_by_resource: dict[int, list[Interval]],
    resources: dict[int, Resource],
) -> list[dict]:
    """
    Compare peak concurrency per resource against its available quantity.

    Existing intervals only count when they overlap at least one of the
    new intervals for the same resource.
    """
    conflicts = []
    for resource_id in sorted(new_by_resource):
        resource = resources.get(resource_id)
        if resource is None:
            continue
        new_intervals = new_by_resource[resource_id]
        relevant = [
            existing
            for existing in existing_by_resource.get(resource_id, [])
            if any(overlaps(existing[0], existing[1], n[0], n[1]) for n in new_intervals)
        ]
        required = max_simultaneous(new_intervals + relevant)
        if required > resource.quantity:
            conflicts.append(
                {
                    "resource_id": resource.id,
                    "resource_name": resource.name,
                    "available_quantity": resource.quantity,
                    "required_quantity": required,
                }
            )
    return conflicts


class ResourceCapacityService:
    """Checks candidate bookings against persisted resource usage"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = SchedulingRepository()

    def check(self, candidates: list[dict], exclude_ids: Iterable[int] = ()) -> list[dict]:
        """
        Conflicts for candidates admitted together.

        Each candidate is a dict with service_id, start and duration_minutes.
        Appointments in exclude_ids (the ones being edited) are ignored.
        """
        services = self.repo.get_services_by_ids(self.db, [c["service_id"] for c in candidates])
        missing = {c["service_id"] for c in candidates} - set(services)
        if missing:
            raise HTTPException(status_code=404, detail=f"Service not found: {sorted(missing)[0]}")

        new_by_resource = defaultdict(list)
        for candidate in candidates:
            service = services[candidate["service_id"]]
            if not service.resource_id:
                continue
            start = candidate["start"]
            new_by_resource[service.resource_id].append((start, slot_end(start, candidate["duration_minutes"])))

        if not new_by_resource:
            return []

        window_start = min(i[0] for intervals in new_by_resource.values() for i in intervals)
        window_end = max(i[1] for intervals in new_by_resource.values() for i in intervals)
        existing = self.repo.get_active_appointments_near(self.db, window_start, window_end, exclude_ids)

        existing_services = self.repo.get_services_by_ids(self.db, [a.effective_service_id for a in existing])
        existing_by_resource = defaultdict(list)
        for appointment in existing:
            service = existing_services.get(appointment.effective_service_id)
            if service is None or service.resource_id not in new_by_resource:
                continue
            existing_by_resource[service.resource_id].append(
                (appointment.start_at, slot_end(appointment.start_at, appointment.duration_minutes))
            )

        resources = self.repo.get_resources_by_ids(self.db, new_by_resource)
        conflicts = compute_conflicts(new_by_resource, existing_by_resource, resources)
        if conflicts:
            logger.info(f"⚠️ Resource conflicts detected: {conflicts}")
        return conflicts
