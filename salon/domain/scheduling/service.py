"""Appointment service - Business logic for booking, editing and cancelling appointments"""

import logging
from datetime import date, datetime, timedelta
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...config import MAX_PAST_SCHEDULE_HOURS
from ...models import Appointment
from ...shared.errors import CommitConflictError, DomainError
from . import lifecycle
from .availability_service import AvailabilityService
from .repository import SchedulingRepository
from .resource_service import ResourceCapacityService
from .schemas import AppointmentCreate, AppointmentUpdate, ResourceAvailabilityRequest
from .time_calculator import overlaps
from .validator import SchedulingValidator

logger = logging.getLogger(__name__)


class AppointmentService:
    """Service layer for appointment business logic"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = SchedulingRepository()
        self.validator = SchedulingValidator(db)
        self.resources = ResourceCapacityService(db)
        self.availability = AvailabilityService(db)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_appointments(
        self,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        staff_id: Optional[int] = None,
        client_id: Optional[int] = None,
        status: Optional[str] = None,
    ) -> list[Appointment]:
        return self.repo.list_appointments(self.db, date_from, date_to, staff_id, client_id, status)

    def get_appointment(self, appointment_id: int) -> Appointment:
        appointment = self.repo.get_appointment(self.db, appointment_id)
        if not appointment:
            raise HTTPException(status_code=404, detail="Appointment not found")
        return appointment

    def check_resources(self, data: ResourceAvailabilityRequest) -> list[dict]:
        candidates = [
            {"service_id": item.service_id, "start": data.start, "duration_minutes": item.duration_minutes}
            for item in data.items
        ]
        return self.resources.check(candidates, data.exclude_ids)

    def get_staff_availability(self, staff_id: int, day: date) -> dict:
        return self.availability.get_staff_availability(staff_id, day)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_appointments(self, data: AppointmentCreate, now: Optional[datetime] = None) -> dict:
        """Validate and book one appointment, or a group when several items share a start"""
        now = now or datetime.now()
        logger.info(f"📥 Booking {len(data.items)} item(s) for client_id: {data.client_id}")

        if not self.repo.get_client(self.db, data.client_id):
            raise HTTPException(status_code=404, detail="Client not found")

        candidates = []
        for item in data.items:
            service = self.repo.get_service(self.db, item.service_id)
            if not service:
                raise HTTPException(status_code=404, detail=f"Service {item.service_id} not found")
            candidates.append(
                {
                    "service_id": item.service_id,
                    "staff_id": item.staff_id,
                    "start": item.start,
                    "duration_minutes": item.duration_minutes or service.duration_minutes,
                    "observations": item.observations,
                }
            )

        start = candidates[0]["start"]
        self._check_past_limit(start, now)

        forced = self.validator.validate(candidates, skip_resource_check=data.skip_resource_check)

        group = None
        appointments = []
        try:
            if len(candidates) > 1:
                group = self.repo.create_group(self.db, data.client_id, start)
            for candidate in candidates:
                appointments.append(
                    self.repo.create_appointment(
                        self.db,
                        client_id=data.client_id,
                        service_id=candidate["service_id"],
                        staff_id=candidate["staff_id"],
                        start_at=candidate["start"],
                        duration_minutes=candidate["duration_minutes"],
                        observations=candidate["observations"],
                        group_id=group.id if group else None,
                        status=lifecycle.PENDING,
                        confirmation_status=lifecycle.NOT_SENT,
                        added_services=[],
                        added_products=[],
                    )
                )
            self._flush_and_recheck(appointments, data.skip_resource_check)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            logger.warning(f"⚠️ Booking rejected at commit for client {data.client_id}: {e.orig}")
            raise CommitConflictError(
                "The slot was taken by a concurrent booking, please retry"
            ) from e
        except DomainError:
            self.db.rollback()
            raise

        for appointment in appointments:
            self.db.refresh(appointment)

        if group:
            logger.info(f"✅ Created group {group.id} with {len(appointments)} appointments")
        else:
            logger.info(f"✅ Created appointment {appointments[0].id}")

        return {
            "group_id": group.id if group else None,
            "appointments": appointments,
            "forced_conflicts": forced,
        }

    def update_appointment(
        self, appointment_id: int, data: AppointmentUpdate, now: Optional[datetime] = None
    ) -> Appointment:
        """Apply a status transition, a confirmation change or field edits"""
        now = now or datetime.now()
        appointment = self.get_appointment(appointment_id)

        try:
            if data.status is not None:
                lifecycle.transition(appointment, data.status, now)

            if data.confirmation_status is not None:
                lifecycle.apply_confirmation(appointment, data.confirmation_status, now)

            if data.has_slot_edits:
                self._apply_slot_edits(appointment, data, now)
                self._flush_and_recheck([appointment], data.skip_resource_check)

            if data.observations is not None:
                appointment.observations = data.observations

            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            logger.warning(f"⚠️ Update of appointment {appointment_id} rejected at commit: {e.orig}")
            raise CommitConflictError(
                "The slot was taken by a concurrent booking, please retry"
            ) from e
        except (DomainError, HTTPException):
            self.db.rollback()
            raise

        self.db.refresh(appointment)
        return appointment

    def cancel_appointment(self, appointment_id: int, now: Optional[datetime] = None) -> Appointment:
        now = now or datetime.now()
        appointment = self.get_appointment(appointment_id)
        lifecycle.cancel(appointment, now)
        self.db.commit()
        self.db.refresh(appointment)
        return appointment

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check_past_limit(self, start: datetime, now: datetime) -> None:
        if start < now - timedelta(hours=MAX_PAST_SCHEDULE_HOURS):
            raise HTTPException(
                status_code=400,
                detail=f"Appointments cannot start more than {MAX_PAST_SCHEDULE_HOURS} hours in the past",
            )

    def _apply_slot_edits(self, appointment: Appointment, data: AppointmentUpdate, now: datetime) -> None:
        lifecycle.ensure_editable(appointment, now)

        new_start = data.start if data.start is not None else appointment.start_at
        if appointment.group_id and new_start != appointment.start_at:
            raise HTTPException(
                status_code=400,
                detail="Group members share their start time and cannot be rescheduled individually",
            )
        if new_start != appointment.start_at:
            self._check_past_limit(new_start, now)

        service_id = data.service_id if data.service_id is not None else appointment.service_id
        if data.duration_minutes is not None:
            duration = data.duration_minutes
        elif data.service_id is not None and data.service_id != appointment.service_id:
            service = self.repo.get_service(self.db, data.service_id)
            if not service:
                raise HTTPException(status_code=404, detail=f"Service {data.service_id} not found")
            duration = service.duration_minutes
        else:
            duration = appointment.duration_minutes

        edited = {
            "service_id": service_id,
            "staff_id": data.staff_id if data.staff_id is not None else appointment.staff_id,
            "start": new_start,
            "duration_minutes": duration,
        }

        # Group members are validated together so duplicate staff and shared resources still hold
        candidates = [edited]
        exclude_ids = [appointment.id]
        if appointment.group_id:
            for member in appointment.group.appointments:
                if member.id == appointment.id or member.status == lifecycle.CANCELLED:
                    continue
                candidates.append(
                    {
                        "service_id": member.service_id,
                        "staff_id": member.staff_id,
                        "start": member.start_at,
                        "duration_minutes": member.duration_minutes,
                    }
                )
                exclude_ids.append(member.id)

        self.validator.validate(candidates, exclude_ids, skip_resource_check=data.skip_resource_check)

        appointment.service_id = edited["service_id"]
        appointment.staff_id = edited["staff_id"]
        appointment.start_at = edited["start"]
        appointment.duration_minutes = edited["duration_minutes"]
        logger.info(f"✏️ Appointment {appointment.id} edited")

    def _flush_and_recheck(self, appointments: list[Appointment], skip_resource_check: bool = False) -> None:
        """
        Flush pending writes and look for collisions committed concurrently.

        The partial unique index catches identical starts; this catches
        overlapping staff bookings and resource overruns before the
        transaction commits.
        """
        self.db.flush()
        own_ids = [a.id for a in appointments]
        active = [a for a in appointments if a.status != lifecycle.CANCELLED]
        for appointment in active:
            staff_id = appointment.effective_staff_id
            others = self.repo.get_active_appointments_near(
                self.db, appointment.start_at, appointment.end_at, own_ids, staff_id=staff_id
            )
            for other in others:
                if other.effective_staff_id == staff_id and overlaps(
                    other.start_at, other.end_at, appointment.start_at, appointment.end_at
                ):
                    logger.warning(
                        f"⚠️ Commit-time collision: appointment {appointment.id} overlaps {other.id}"
                    )
                    raise CommitConflictError(
                        "The slot was taken by a concurrent booking, please retry",
                        appointment_id=other.id,
                    )

        if skip_resource_check or not active:
            return
        conflicts = self.resources.check(
            [
                {
                    "service_id": a.effective_service_id,
                    "start": a.start_at,
                    "duration_minutes": a.duration_minutes,
                }
                for a in active
            ],
            own_ids,
        )
        if conflicts:
            logger.warning(f"⚠️ Commit-time resource overrun for appointments {own_ids}: {conflicts}")
            raise CommitConflictError(
                "The resources were taken by a concurrent booking, please retry",
                conflicts=conflicts,
            )
