"""Settlement domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, field_validator, model_validator

from ...shared.validators import validate_positive_amount
from ..scheduling.schemas import AppointmentResponse
from .calculator import PRICE_TIERS


class LineInput(BaseModel):
    """Added service or product line; unit_price defaults to the catalog price"""

    id: int
    quantity: int = 1
    unit_price: Optional[float] = None
    staff_id: Optional[int] = None

    @field_validator("quantity")
    @classmethod
    def validate_quantity(cls, v):
        if v <= 0:
            raise ValueError("Quantity must be positive")
        return v

    @field_validator("unit_price")
    @classmethod
    def validate_unit_price(cls, v):
        return validate_positive_amount(v)


class MemberPricing(BaseModel):
    """Final service, staff and price tier of one appointment"""

    price_tier: str = "list"
    manual_price: Optional[float] = None
    final_service_id: Optional[int] = None
    final_staff_id: Optional[int] = None
    added_services: list[LineInput] = []

    @field_validator("price_tier")
    @classmethod
    def validate_price_tier(cls, v):
        if v not in PRICE_TIERS:
            raise ValueError(f"Price tier must be one of: {', '.join(PRICE_TIERS)}")
        return v

    @field_validator("manual_price")
    @classmethod
    def validate_manual_price(cls, v):
        return validate_positive_amount(v)

    @model_validator(mode="after")
    def validate_manual_tier(self):
        if self.price_tier == "manual" and self.manual_price is None:
            raise ValueError("manual_price is required for the manual price tier")
        return self


class SettlementOptions(BaseModel):
    method: str
    added_products: list[LineInput] = []
    penalty_amount: float = 0
    penalty_reason: Optional[str] = None
    deposit_id: Optional[int] = None
    giftcard_id: Optional[int] = None
    generate_invoice: bool = False

    @field_validator("method")
    @classmethod
    def validate_method(cls, v):
        if not v or not v.strip():
            raise ValueError("Payment method is required")
        return v.strip()

    @field_validator("penalty_amount")
    @classmethod
    def validate_penalty(cls, v):
        return validate_positive_amount(v)


class SettlementCreate(MemberPricing, SettlementOptions):
    """Close-out of a single appointment"""

    appointment_id: int


class GroupMemberPricing(MemberPricing):
    appointment_id: int


class GroupSettlementCreate(SettlementOptions):
    """Close-out of every member of a group at once; members not listed use the list price"""

    group_id: int
    members: list[GroupMemberPricing] = []

    @field_validator("members")
    @classmethod
    def validate_unique_members(cls, v):
        ids = [m.appointment_id for m in v]
        if len(ids) != len(set(ids)):
            raise ValueError("Each group member can only be priced once")
        return v


class PaymentResponse(BaseModel):
    id: int
    client_id: int
    appointment_id: Optional[int] = None
    group_id: Optional[int] = None
    method: str
    subtotal: float
    penalty_amount: float
    deposit_id: Optional[int] = None
    deposit_amount: float
    giftcard_id: Optional[int] = None
    giftcard_amount: float
    total_due: float
    items: list[dict]
    member_shares: list[dict] = []
    invoice_status: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SettlementResponse(BaseModel):
    payment: PaymentResponse
    appointment: Optional[AppointmentResponse] = None
    appointments: list[AppointmentResponse] = []
    invoice_id: Optional[str] = None
    invoice_pending: bool = False
    invoice_error: Optional[str] = None
