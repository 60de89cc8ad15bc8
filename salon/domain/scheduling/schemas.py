"""Scheduling domain schemas - Pydantic models for validation"""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, field_validator, model_validator

from ...shared.validators import to_local_naive
from .lifecycle import CONFIRMATION_STATUSES, STATUSES


class AppointmentItem(BaseModel):
    """One service of a booking; several items booked together form a group"""

    service_id: int
    staff_id: int
    start: datetime
    duration_minutes: Optional[int] = None  # Defaults to the service duration
    observations: Optional[str] = None

    @field_validator("start")
    @classmethod
    def normalize_start(cls, v):
        return to_local_naive(v)

    @field_validator("duration_minutes")
    @classmethod
    def validate_duration(cls, v):
        if v is not None and v <= 0:
            raise ValueError("Duration must be a positive number of minutes")
        return v


class AppointmentCreate(BaseModel):
    """Schema for booking one or more simultaneous appointments"""

    client_id: int
    items: list[AppointmentItem]
    skip_resource_check: bool = False

    @field_validator("items")
    @classmethod
    def validate_items(cls, v):
        if not v:
            raise ValueError("At least one item is required")
        if len({item.start for item in v}) > 1:
            raise ValueError("All items of a booking must share the same start")
        return v


class AppointmentUpdate(BaseModel):
    """Partial update: a status change, a confirmation change or field edits"""

    status: Optional[str] = None
    confirmation_status: Optional[str] = None
    staff_id: Optional[int] = None
    service_id: Optional[int] = None
    start: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    observations: Optional[str] = None
    skip_resource_check: bool = False

    @field_validator("status")
    @classmethod
    def validate_status(cls, v):
        if v is not None and v not in STATUSES:
            raise ValueError(f"Status must be one of: {', '.join(STATUSES)}")
        return v

    @field_validator("confirmation_status")
    @classmethod
    def validate_confirmation_status(cls, v):
        if v is not None and v not in CONFIRMATION_STATUSES:
            raise ValueError(f"Confirmation status must be one of: {', '.join(CONFIRMATION_STATUSES)}")
        return v

    @field_validator("start")
    @classmethod
    def normalize_start(cls, v):
        return to_local_naive(v) if v else v

    @field_validator("duration_minutes")
    @classmethod
    def validate_duration(cls, v):
        if v is not None and v <= 0:
            raise ValueError("Duration must be a positive number of minutes")
        return v

    @model_validator(mode="after")
    def validate_single_intent(self):
        edits = [self.staff_id, self.service_id, self.start, self.duration_minutes]
        if self.status is not None and any(e is not None for e in edits):
            raise ValueError("A status change cannot be combined with field edits")
        return self

    @property
    def has_slot_edits(self) -> bool:
        return any(v is not None for v in (self.staff_id, self.service_id, self.start, self.duration_minutes))


class AppointmentResponse(BaseModel):
    id: int
    client_id: int
    service_id: int
    final_service_id: Optional[int] = None
    staff_id: int
    final_staff_id: Optional[int] = None
    group_id: Optional[int] = None
    start_at: datetime
    end_at: datetime
    duration_minutes: int
    status: str
    confirmation_status: str
    added_services: list = []
    added_products: list = []
    lateness_minutes: int = 0
    penalty_amount: float = 0
    penalty_reason: Optional[str] = None
    observations: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ResourceConflict(BaseModel):
    resource_id: int
    resource_name: str
    available_quantity: int
    required_quantity: int


class AppointmentsCreatedResponse(BaseModel):
    group_id: Optional[int] = None
    appointments: list[AppointmentResponse]
    # Conflicts accepted because the booking skipped the resource check
    forced_conflicts: list[ResourceConflict] = []


class AvailabilityItem(BaseModel):
    service_id: int
    duration_minutes: int

    @field_validator("duration_minutes")
    @classmethod
    def validate_duration(cls, v):
        if v <= 0:
            raise ValueError("Duration must be a positive number of minutes")
        return v


class ResourceAvailabilityRequest(BaseModel):
    start: datetime
    items: list[AvailabilityItem]
    exclude_ids: list[int] = []

    @field_validator("start")
    @classmethod
    def normalize_start(cls, v):
        return to_local_naive(v)

    @field_validator("items")
    @classmethod
    def validate_items(cls, v):
        if not v:
            raise ValueError("At least one item is required")
        return v


class ResourceAvailabilityResponse(BaseModel):
    conflicts: list[ResourceConflict]


class TimeWindow(BaseModel):
    start: datetime
    end: datetime


class BlockedInterval(TimeWindow):
    absence_id: int
    reason: str
    time_from: Optional[str] = None
    time_to: Optional[str] = None


class StaffAvailabilityResponse(BaseModel):
    staff_id: int
    day: date
    available: bool
    reason: Optional[str] = None
    windows: list[TimeWindow]
    blocked: list[BlockedInterval]
    absence: Optional[dict] = None
