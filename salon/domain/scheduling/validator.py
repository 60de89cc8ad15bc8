"""Scheduling validator - single admission decision for one or more simultaneous candidates"""

import logging
from collections import Counter
from typing import Iterable

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...shared.errors import ResourceConflictError, SchedulingRejection
from .availability_service import AvailabilityService, business_windows
from .repository import SchedulingRepository
from .resource_service import ResourceCapacityService
from .time_calculator import contains, overlaps, slot_end

logger = logging.getLogger(__name__)


class SchedulingValidator:
    """
    Validates a whole booking request before anything is written.

    Candidates are dicts with service_id, staff_id, start and
    duration_minutes. Rules run in a fixed order and the first violation
    wins: inactive staff, eligibility, duplicate staff, business hours,
    staff window and absences, staff overlap, then resource capacity.
    Only the resource check can be skipped.
    """

    def __init__(self, db: Session):
        self.db = db
        self.repo = SchedulingRepository()
        self.availability = AvailabilityService(db)
        self.resources = ResourceCapacityService(db)

    def validate(
        self,
        candidates: list[dict],
        exclude_ids: Iterable[int] = (),
        skip_resource_check: bool = False,
    ) -> list[dict]:
        """Raise on the first violation; return forced resource conflicts, if any"""
        exclude_ids = [i for i in exclude_ids if i is not None]
        services = self.repo.get_services_by_ids(self.db, [c["service_id"] for c in candidates])
        staff = self.repo.get_staff_by_ids(self.db, [c["staff_id"] for c in candidates])

        for candidate in candidates:
            if candidate["service_id"] not in services:
                raise HTTPException(status_code=404, detail=f"Service {candidate['service_id']} not found")
            if candidate["staff_id"] not in staff:
                raise HTTPException(status_code=404, detail=f"Staff member {candidate['staff_id']} not found")

        self._check_active_staff(candidates, staff)
        self._check_eligibility(candidates, services, staff)
        self._check_duplicate_staff(candidates, staff)
        self._check_business_hours(candidates)
        for candidate in candidates:
            self._check_staff_window(candidate, staff[candidate["staff_id"]])
        self._check_staff_overlap(candidates, staff, exclude_ids)

        conflicts = self.resources.check(candidates, exclude_ids)
        if conflicts and not skip_resource_check:
            raise ResourceConflictError(conflicts)
        if conflicts:
            logger.warning(f"⚠️ Resource check forced past {len(conflicts)} conflict(s)")
        return conflicts

    def _check_active_staff(self, candidates, staff):
        for candidate in candidates:
            member = staff[candidate["staff_id"]]
            if not member.active:
                raise SchedulingRejection(
                    f"{member.name} is inactive",
                    kind="inactive-staff",
                    staff_id=member.id,
                )

    def _check_eligibility(self, candidates, services, staff):
        for candidate in candidates:
            service = services[candidate["service_id"]]
            eligible = [int(i) for i in (service.eligible_staff_ids or [])]
            if eligible and candidate["staff_id"] not in eligible:
                member = staff[candidate["staff_id"]]
                raise SchedulingRejection(
                    f"{member.name} is not enabled to perform {service.name}",
                    kind="ineligible-staff",
                    staff_id=member.id,
                    service_id=service.id,
                )

    def _check_duplicate_staff(self, candidates, staff):
        counts = Counter(c["staff_id"] for c in candidates)
        duplicated = sorted(staff_id for staff_id, count in counts.items() if count > 1)
        if duplicated:
            names = ", ".join(staff[i].name for i in duplicated)
            raise SchedulingRejection(
                f"The same staff member cannot take two services of one booking: {names}",
                kind="duplicate-staff",
                staff_ids=duplicated,
            )

    def _check_business_hours(self, candidates):
        config = self.repo.get_business_config(self.db)
        hours = config.business_hours if config else None
        for candidate in candidates:
            start = candidate["start"]
            end = slot_end(start, candidate["duration_minutes"])
            windows = business_windows(hours, start.date())
            if windows is None:
                continue
            if not any(contains(w_start, w_end, start, end) for w_start, w_end in windows):
                raise SchedulingRejection(
                    "Outside local business hours",
                    kind="outside-hours",
                    scope="business",
                    start=start.isoformat(),
                    end=end.isoformat(),
                )

    def _check_staff_window(self, candidate, member):
        start = candidate["start"]
        end = slot_end(start, candidate["duration_minutes"])
        resolved = self.availability.resolve(member, start.date())

        if resolved["reason"] == "absence":
            absence = resolved["absence"]
            raise SchedulingRejection(
                f"{member.name} is absent ({absence['reason']}) "
                f"from {absence['date_from']} to {absence['date_to']}",
                kind="absence-conflict",
                staff_id=member.id,
                absence=absence,
            )

        if not any(contains(w_start, w_end, start, end) for w_start, w_end in resolved["windows"]):
            raise SchedulingRejection(
                f"{member.name} does not work at the requested time",
                kind="outside-hours",
                scope="staff",
                staff_id=member.id,
                start=start.isoformat(),
                end=end.isoformat(),
            )

        for blocked in resolved["blocked"]:
            if overlaps(blocked["start"], blocked["end"], start, end):
                raise SchedulingRejection(
                    f"{member.name} is absent ({blocked['reason']}) "
                    f"from {blocked['time_from']} to {blocked['time_to']}",
                    kind="absence-conflict",
                    staff_id=member.id,
                    absence={k: v for k, v in blocked.items() if k not in ("start", "end")},
                )

    def _check_staff_overlap(self, candidates, staff, exclude_ids):
        for candidate in candidates:
            start = candidate["start"]
            end = slot_end(start, candidate["duration_minutes"])
            busy = self.repo.get_active_appointments_near(
                self.db, start, end, exclude_ids, staff_id=candidate["staff_id"]
            )
            for appointment in busy:
                if appointment.effective_staff_id != candidate["staff_id"]:
                    continue
                if overlaps(appointment.start_at, appointment.end_at, start, end):
                    member = staff[candidate["staff_id"]]
                    raise SchedulingRejection(
                        f"{member.name} already has an appointment at "
                        f"{appointment.start_at.strftime('%Y-%m-%d %H:%M')}",
                        kind="staff-busy",
                        staff_id=member.id,
                        appointment_id=appointment.id,
                    )
