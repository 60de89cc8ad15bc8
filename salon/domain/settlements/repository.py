"""Settlement repository - Database operations for payments, deposits and gift cards"""

from typing import Iterable, Optional

from sqlalchemy.orm import Session

from ...models import (
    Deposit,
    GiftCard,
    Payment,
    Product,
    ProductStaffCommission,
    ServiceStaffCommission,
)
from ...models_invoice import Invoice


class SettlementRepository:
    """Repository for settlement database operations"""

    @staticmethod
    def get_payment(db: Session, payment_id: int) -> Optional[Payment]:
        return db.query(Payment).filter(Payment.id == payment_id).first()

    @staticmethod
    def get_deposit(db: Session, deposit_id: int) -> Optional[Deposit]:
        return db.query(Deposit).filter(Deposit.id == deposit_id).first()

    @staticmethod
    def get_giftcard(db: Session, giftcard_id: int) -> Optional[GiftCard]:
        return db.query(GiftCard).filter(GiftCard.id == giftcard_id).first()

    @staticmethod
    def is_deposit_applied(db: Session, deposit_id: int) -> bool:
        return db.query(Payment.id).filter(Payment.deposit_id == deposit_id).first() is not None

    @staticmethod
    def is_giftcard_applied(db: Session, giftcard_id: int) -> bool:
        return db.query(Payment.id).filter(Payment.giftcard_id == giftcard_id).first() is not None

    @staticmethod
    def get_products_by_ids(db: Session, product_ids: Iterable[int]) -> dict[int, Product]:
        ids = set(product_ids)
        if not ids:
            return {}
        return {p.id: p for p in db.query(Product).filter(Product.id.in_(ids)).all()}

    @staticmethod
    def get_service_overrides(db: Session, service_ids: Iterable[int]) -> dict[tuple[int, int], tuple[str, float]]:
        """Per-staff commission overrides keyed by (service_id, staff_id)"""
        ids = set(service_ids)
        if not ids:
            return {}
        rows = db.query(ServiceStaffCommission).filter(ServiceStaffCommission.service_id.in_(ids)).all()
        return {(r.service_id, r.staff_id): (r.kind, r.value) for r in rows}

    @staticmethod
    def get_product_overrides(db: Session, product_ids: Iterable[int]) -> dict[tuple[int, int], tuple[str, float]]:
        ids = set(product_ids)
        if not ids:
            return {}
        rows = db.query(ProductStaffCommission).filter(ProductStaffCommission.product_id.in_(ids)).all()
        return {(r.product_id, r.staff_id): (r.kind, r.value) for r in rows}

    @staticmethod
    def get_open_invoice(db: Session, payment_id: int) -> Optional[Invoice]:
        """Issued or pending invoice of a payment, if one exists"""
        return (
            db.query(Invoice)
            .filter(Invoice.payment_id == payment_id, Invoice.status.in_(["emitida", "pendiente"]))
            .first()
        )

    @staticmethod
    def get_due_invoices(db: Session, now) -> list[Invoice]:
        return (
            db.query(Invoice)
            .filter(Invoice.status == "pendiente", Invoice.next_retry_at <= now)
            .order_by(Invoice.next_retry_at, Invoice.id)
            .all()
        )
