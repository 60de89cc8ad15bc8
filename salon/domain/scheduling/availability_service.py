"""Availability resolver - working windows and blocked intervals per staff and date"""

import logging
from datetime import date, datetime
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...models import StaffAbsence
from .repository import SchedulingRepository
from .time_calculator import at, day_bounds, weekday_index

logger = logging.getLogger(__name__)


def schedule_windows(schedule: Optional[list[dict]], day: date) -> list[tuple[datetime, datetime]]:
    """
    Working windows of a weekly schedule for one date.

    An empty schedule places no restriction: the whole day is returned.
    A non-empty schedule without an entry for the weekday returns [].
    """
    if not schedule:
        return [day_bounds(day)]

    weekday = weekday_index(day)
    windows = []
    for entry in schedule:
        if int(entry.get("day", -1)) != weekday or entry.get("active") is False:
            continue
        start = at(day, entry["start"])
        end = at(day, entry["end"])
        if end > start:
            windows.append((start, end))
    return sorted(windows)


def business_windows(business_hours: Optional[list[dict]], day: date) -> Optional[list[tuple[datetime, datetime]]]:
    """
    Opening windows for a date, or None when business hours are not configured.

    A configured list without an active entry for the weekday means closed ([]).
    """
    if not business_hours:
        return None
    active = [h for h in business_hours if h.get("active", True)]
    if not active:
        return []
    return schedule_windows(active, day)


def absence_interval(absence: StaffAbsence, day: date) -> tuple[datetime, datetime]:
    if absence.is_full_day:
        return day_bounds(day)
    return at(day, absence.time_from), at(day, absence.time_to)


def describe_absence(absence: StaffAbsence) -> dict:
    detail = {
        "absence_id": absence.id,
        "reason": absence.reason,
        "date_from": absence.date_from.isoformat(),
        "date_to": absence.date_to.isoformat(),
    }
    if not absence.is_full_day:
        detail["time_from"] = absence.time_from
        detail["time_to"] = absence.time_to
    return detail


def resolve_day(staff_id: int, schedule: Optional[list[dict]], absences: list[StaffAbsence], day: date) -> dict:
    """
    Resolve the effective working windows of a staff member for a date.

    Full-day absences make the whole date unavailable. Partial-day
    absences leave the windows untouched and are reported as blocked
    intervals for the slot check.
    """
    covering = [a for a in absences if a.date_from <= day <= a.date_to]
    full_day = next((a for a in covering if a.is_full_day), None)

    blocked = []
    for absence in covering:
        if absence.is_full_day:
            continue
        start, end = absence_interval(absence, day)
        blocked.append({"start": start, "end": end, **describe_absence(absence)})

    result = {
        "staff_id": staff_id,
        "day": day,
        "available": True,
        "reason": None,
        "windows": [],
        "blocked": blocked,
        "absence": None,
    }

    if full_day:
        result.update(available=False, reason="absence", absence=describe_absence(full_day))
        return result

    windows = schedule_windows(schedule, day)
    if not windows:
        result.update(available=False, reason="no-schedule")
        return result

    result["windows"] = windows
    return result


class AvailabilityService:
    """Reads staff schedules and absences to answer availability questions"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = SchedulingRepository()

    def resolve(self, staff, day: date) -> dict:
        absences = self.repo.get_absences(self.db, staff.id, day)
        return resolve_day(staff.id, staff.schedule, absences, day)

    def get_staff_availability(self, staff_id: int, day: date) -> dict:
        """Working windows for a staff member on a date"""
        staff = self.repo.get_staff(self.db, staff_id)
        if not staff:
            raise HTTPException(status_code=404, detail="Staff member not found")

        result = self.resolve(staff, day)
        if not staff.active:
            result.update(available=False, reason="inactive", windows=[])
        return result
