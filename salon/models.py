from datetime import timedelta

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


class Client(Base):
    __tablename__ = "clients"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    phone = Column(String(50), nullable=True)
    email = Column(String(255), nullable=True)
    created_at = Column(DateTime, server_default=func.now())


class Staff(Base):
    __tablename__ = "staff"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    active = Column(Boolean, default=True, nullable=False)
    # Weekly schedule: [{"day": 0-6 (0 = Sunday), "start": "HH:MM", "end": "HH:MM"}]
    # An empty list means the staff member has no weekly restriction
    schedule = Column(JSON, default=list)
    created_at = Column(DateTime, server_default=func.now())

    absences = relationship("StaffAbsence", back_populates="staff", cascade="all, delete-orphan")


class StaffAbsence(Base):
    __tablename__ = "staff_absences"

    id = Column(Integer, primary_key=True, index=True)
    staff_id = Column(Integer, ForeignKey("staff.id"), nullable=False, index=True)
    date_from = Column(Date, nullable=False)
    date_to = Column(Date, nullable=False)
    # Both null = full-day block; both set = partial-day block
    time_from = Column(String(5), nullable=True)
    time_to = Column(String(5), nullable=True)
    reason = Column(String(20), default="otro", nullable=False)  # vacaciones, licencia, enfermedad, otro
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    staff = relationship("Staff", back_populates="absences")

    @property
    def is_full_day(self) -> bool:
        return not (self.time_from and self.time_to)


class Resource(Base):
    __tablename__ = "resources"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    quantity = Column(Integer, default=1, nullable=False)  # Units usable at the same time
    created_at = Column(DateTime, server_default=func.now())


class Service(Base):
    __tablename__ = "services"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    list_price = Column(Float, nullable=False)
    discount_price = Column(Float, nullable=True)
    resource_id = Column(Integer, ForeignKey("resources.id"), nullable=True)
    # Staff ids allowed to perform the service; empty = any staff
    eligible_staff_ids = Column(JSON, default=list)
    commission_kind = Column(String(20), default="percentage", nullable=False)  # percentage, fixed
    commission_value = Column(Float, default=0, nullable=False)
    active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    resource = relationship("Resource")
    staff_commissions = relationship(
        "ServiceStaffCommission", back_populates="service", cascade="all, delete-orphan"
    )


class ServiceStaffCommission(Base):
    """Per-staff commission override for a service"""

    __tablename__ = "service_staff_commissions"
    __table_args__ = (UniqueConstraint("service_id", "staff_id", name="uq_service_staff_commission"),)

    id = Column(Integer, primary_key=True, index=True)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=False)
    staff_id = Column(Integer, ForeignKey("staff.id"), nullable=False)
    kind = Column(String(20), nullable=False)  # percentage, fixed
    value = Column(Float, nullable=False)

    service = relationship("Service", back_populates="staff_commissions")


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    price = Column(Float, nullable=False)
    commission_kind = Column(String(20), default="percentage", nullable=False)
    commission_value = Column(Float, default=0, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    staff_commissions = relationship(
        "ProductStaffCommission", back_populates="product", cascade="all, delete-orphan"
    )


class ProductStaffCommission(Base):
    """Per-staff commission override for a product"""

    __tablename__ = "product_staff_commissions"
    __table_args__ = (UniqueConstraint("product_id", "staff_id", name="uq_product_staff_commission"),)

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    staff_id = Column(Integer, ForeignKey("staff.id"), nullable=False)
    kind = Column(String(20), nullable=False)
    value = Column(Float, nullable=False)

    product = relationship("Product", back_populates="staff_commissions")


class BusinessConfig(Base):
    __tablename__ = "business_configs"

    id = Column(Integer, primary_key=True, index=True)
    business_name = Column(String(255), nullable=True)
    # [{"day": 0-6 (0 = Sunday), "start": "HH:MM", "end": "HH:MM", "active": true}]
    # An empty list means business hours are not enforced
    business_hours = Column(JSON, default=list)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class AppointmentGroup(Base):
    """Two or more simultaneous appointments booked and closed together"""

    __tablename__ = "appointment_groups"

    id = Column(Integer, primary_key=True, index=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False)
    start_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    appointments = relationship("Appointment", back_populates="group", order_by="Appointment.id")


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        # Authoritative guard against double booking a staff member at the same start
        Index(
            "uq_appointments_staff_start_active",
            "staff_id",
            "start_at",
            unique=True,
            sqlite_where=text("status != 'cancelado'"),
            postgresql_where=text("status != 'cancelado'"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False, index=True)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=False)
    final_service_id = Column(Integer, ForeignKey("services.id"), nullable=True)
    staff_id = Column(Integer, ForeignKey("staff.id"), nullable=False, index=True)
    final_staff_id = Column(Integer, ForeignKey("staff.id"), nullable=True)
    group_id = Column(Integer, ForeignKey("appointment_groups.id"), nullable=True, index=True)

    start_at = Column(DateTime, nullable=False, index=True)
    duration_minutes = Column(Integer, nullable=False)

    status = Column(String(20), default="pendiente", nullable=False)  # pendiente, en_curso, completado, cancelado
    confirmation_status = Column(
        String(20), default="no_enviada", nullable=False
    )  # no_enviada, enviada, confirmado, cancelado

    # Close-out lines: [{"id": .., "quantity": .., "unit_price": .., "staff_id": ..}]
    added_services = Column(JSON, default=list)
    added_products = Column(JSON, default=list)
    lateness_minutes = Column(Integer, default=0, nullable=False)
    penalty_amount = Column(Float, default=0, nullable=False)
    penalty_reason = Column(String(255), nullable=True)
    observations = Column(Text, nullable=True)

    started_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    client = relationship("Client")
    service = relationship("Service", foreign_keys=[service_id])
    final_service = relationship("Service", foreign_keys=[final_service_id])
    staff = relationship("Staff", foreign_keys=[staff_id])
    final_staff = relationship("Staff", foreign_keys=[final_staff_id])
    group = relationship("AppointmentGroup", back_populates="appointments")

    @property
    def end_at(self):
        return self.start_at + timedelta(minutes=self.duration_minutes)

    @property
    def effective_service_id(self) -> int:
        return self.final_service_id or self.service_id

    @property
    def effective_staff_id(self) -> int:
        return self.final_staff_id or self.staff_id


class Deposit(Base):
    """Deposit (seña) paid ahead of an appointment"""

    __tablename__ = "deposits"

    id = Column(Integer, primary_key=True, index=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False, index=True)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=True)
    amount = Column(Float, nullable=False)
    status = Column(String(20), default="pendiente", nullable=False)  # pendiente, aplicada
    payment_method = Column(String(50), nullable=True)
    applied_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())


class GiftCard(Base):
    __tablename__ = "gift_cards"

    id = Column(Integer, primary_key=True, index=True)
    number = Column(String(50), unique=True, nullable=False, index=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False)
    # Covered service ids; repeated ids cover repeated units
    service_ids = Column(JSON, default=list)
    total = Column(Float, nullable=False)
    valid_from = Column(DateTime, nullable=True)
    valid_until = Column(DateTime, nullable=True)
    status = Column(String(20), default="vigente", nullable=False)  # vigente, usada, anulada
    used_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())


class Payment(Base):
    """Settlement record for an appointment or an appointment group"""

    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False)
    # Exactly one of appointment_id / group_id is set; unique so each is settled once
    appointment_id = Column(Integer, ForeignKey("appointments.id"), unique=True, nullable=True)
    group_id = Column(Integer, ForeignKey("appointment_groups.id"), unique=True, nullable=True)
    method = Column(String(50), nullable=False)

    subtotal = Column(Float, nullable=False)
    penalty_amount = Column(Float, default=0, nullable=False)
    deposit_id = Column(Integer, ForeignKey("deposits.id"), unique=True, nullable=True)
    deposit_amount = Column(Float, default=0, nullable=False)
    giftcard_id = Column(Integer, ForeignKey("gift_cards.id"), unique=True, nullable=True)
    giftcard_amount = Column(Float, default=0, nullable=False)
    total_due = Column(Float, nullable=False)

    # Itemized lines with their commissions, and per-member shares for groups
    items = Column(JSON, default=list)
    member_shares = Column(JSON, default=list)

    invoice_status = Column(String(20), default="none", nullable=False)  # none, pending, succeeded, failed
    created_at = Column(DateTime, server_default=func.now())

    invoices = relationship("Invoice", back_populates="payment", order_by="Invoice.id")
