"""
Invoice records for settled payments
"""

from sqlalchemy import JSON, Column, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


class Invoice(Base):
    """Invoice issued (or pending issue) with the external provider"""

    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, index=True)
    payment_id = Column(Integer, ForeignKey("payments.id"), nullable=False, index=True)

    status = Column(String(20), default="pendiente", nullable=False)  # emitida, pendiente, fallida
    provider_invoice_id = Column(String(255), nullable=True)
    total = Column(Float, nullable=False)

    # Request body re-sent by the retry worker
    retry_payload = Column(JSON, nullable=True)
    attempts = Column(Integer, default=0, nullable=False)
    last_error = Column(Text, nullable=True)
    next_retry_at = Column(DateTime, nullable=True, index=True)
    issued_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    payment = relationship("Payment", back_populates="invoices")
