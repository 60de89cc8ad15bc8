"""Scheduling repository - Database operations for appointments and availability"""

from datetime import date, datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from ...models import (
    Appointment,
    AppointmentGroup,
    BusinessConfig,
    Client,
    Resource,
    Service,
    Staff,
    StaffAbsence,
)

# Longest appointment considered when searching backwards for overlaps
MAX_APPOINTMENT_SPAN = timedelta(hours=24)


class SchedulingRepository:
    """Repository for scheduling database operations"""

    @staticmethod
    def get_client(db: Session, client_id: int) -> Optional[Client]:
        return db.query(Client).filter(Client.id == client_id).first()

    @staticmethod
    def get_staff(db: Session, staff_id: int) -> Optional[Staff]:
        return db.query(Staff).filter(Staff.id == staff_id).first()

    @staticmethod
    def get_staff_by_ids(db: Session, staff_ids: Iterable[int]) -> dict[int, Staff]:
        ids = set(staff_ids)
        if not ids:
            return {}
        return {s.id: s for s in db.query(Staff).filter(Staff.id.in_(ids)).all()}

    @staticmethod
    def get_service(db: Session, service_id: int) -> Optional[Service]:
        return db.query(Service).filter(Service.id == service_id).first()

    @staticmethod
    def get_services_by_ids(db: Session, service_ids: Iterable[int]) -> dict[int, Service]:
        ids = set(service_ids)
        if not ids:
            return {}
        return {s.id: s for s in db.query(Service).filter(Service.id.in_(ids)).all()}

    @staticmethod
    def get_resources_by_ids(db: Session, resource_ids: Iterable[int]) -> dict[int, Resource]:
        ids = set(resource_ids)
        if not ids:
            return {}
        return {r.id: r for r in db.query(Resource).filter(Resource.id.in_(ids)).all()}

    @staticmethod
    def get_absences(db: Session, staff_id: int, day: date) -> list[StaffAbsence]:
        """Absences of a staff member covering a date"""
        return (
            db.query(StaffAbsence)
            .filter(
                StaffAbsence.staff_id == staff_id,
                StaffAbsence.date_from <= day,
                StaffAbsence.date_to >= day,
            )
            .order_by(StaffAbsence.date_from, StaffAbsence.time_from)
            .all()
        )

    @staticmethod
    def get_business_config(db: Session) -> Optional[BusinessConfig]:
        return db.query(BusinessConfig).order_by(BusinessConfig.id).first()

    @staticmethod
    def get_appointment(db: Session, appointment_id: int) -> Optional[Appointment]:
        return db.query(Appointment).filter(Appointment.id == appointment_id).first()

    @staticmethod
    def get_group(db: Session, group_id: int) -> Optional[AppointmentGroup]:
        return db.query(AppointmentGroup).filter(AppointmentGroup.id == group_id).first()

    @staticmethod
    def list_appointments(
        db: Session,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        staff_id: Optional[int] = None,
        client_id: Optional[int] = None,
        status: Optional[str] = None,
    ) -> list[Appointment]:
        query = db.query(Appointment)
        if date_from:
            query = query.filter(Appointment.start_at >= datetime.combine(date_from, datetime.min.time()))
        if date_to:
            query = query.filter(
                Appointment.start_at < datetime.combine(date_to + timedelta(days=1), datetime.min.time())
            )
        if staff_id:
            query = query.filter(Appointment.staff_id == staff_id)
        if client_id:
            query = query.filter(Appointment.client_id == client_id)
        if status:
            query = query.filter(Appointment.status == status)
        return query.order_by(Appointment.start_at, Appointment.id).all()

    @staticmethod
    def get_active_appointments_near(
        db: Session,
        window_start: datetime,
        window_end: datetime,
        exclude_ids: Iterable[int] = (),
        staff_id: Optional[int] = None,
    ) -> list[Appointment]:
        """
        Non-cancelled appointments that could overlap [window_start, window_end).

        Callers still apply the exact overlap test, since the end of an
        appointment is derived from its duration.
        """
        query = db.query(Appointment).filter(
            Appointment.status != "cancelado",
            Appointment.confirmation_status != "cancelado",
            Appointment.start_at < window_end,
            Appointment.start_at > window_start - MAX_APPOINTMENT_SPAN,
        )
        excluded = [i for i in exclude_ids if i is not None]
        if excluded:
            query = query.filter(Appointment.id.notin_(excluded))
        if staff_id is not None:
            query = query.filter(
                (Appointment.staff_id == staff_id) | (Appointment.final_staff_id == staff_id)
            )
        return query.all()

    @staticmethod
    def create_group(db: Session, client_id: int, start_at: datetime) -> AppointmentGroup:
        group = AppointmentGroup(client_id=client_id, start_at=start_at)
        db.add(group)
        db.flush()
        return group

    @staticmethod
    def create_appointment(db: Session, **appointment_data) -> Appointment:
        appointment = Appointment(**appointment_data)
        db.add(appointment)
        return appointment
