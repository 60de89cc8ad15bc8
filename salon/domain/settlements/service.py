"""Settlement service - Close-out of appointments and groups with non-blocking invoicing"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...config import INVOICE_MAX_ATTEMPTS, INVOICE_RETRY_MINUTES
from ...models import Appointment, Deposit, GiftCard, Payment
from ...models_invoice import Invoice
from ...services.invoice_service import InvoiceProvider, build_invoice_payload
from ...shared.errors import CommitConflictError, InvoicingError, SchedulingRejection
from ..scheduling import lifecycle
from ..scheduling.repository import SchedulingRepository
from ..scheduling.time_calculator import minutes_late
from .calculator import (
    ADDED_SERVICE_LINE,
    PRODUCT_LINE,
    SERVICE_LINE,
    commission_amount,
    compute_subtotal,
    compute_totals,
    distribute_group,
    giftcard_line_matches,
    line_total,
    match_giftcard,
    resolve_commission_rule,
    resolve_service_price,
    round_money,
    validate_penalty,
)
from .repository import SettlementRepository
from .schemas import GroupSettlementCreate, LineInput, MemberPricing, SettlementCreate

logger = logging.getLogger(__name__)


def record_invoice_success(invoice: Invoice, payment: Payment, provider_invoice_id: str, now: datetime) -> None:
    invoice.status = "emitida"
    invoice.provider_invoice_id = provider_invoice_id
    invoice.issued_at = now
    invoice.last_error = None
    invoice.next_retry_at = None
    payment.invoice_status = "succeeded"


def record_invoice_failure(invoice: Invoice, payment: Payment, error: str, now: datetime) -> None:
    """Keep the invoice pending for a later retry, or give up after the last attempt"""
    invoice.last_error = error
    if invoice.attempts >= INVOICE_MAX_ATTEMPTS:
        invoice.status = "fallida"
        invoice.next_retry_at = None
        payment.invoice_status = "failed"
    else:
        invoice.status = "pendiente"
        invoice.next_retry_at = now + timedelta(minutes=INVOICE_RETRY_MINUTES)
        payment.invoice_status = "pending"


class SettlementService:
    """Service layer for settlement business logic"""

    def __init__(self, db: Session, invoice_provider: InvoiceProvider):
        self.db = db
        self.repo = SettlementRepository()
        self.scheduling = SchedulingRepository()
        self.invoice_provider = invoice_provider

    def get_payment(self, payment_id: int) -> Payment:
        payment = self.repo.get_payment(self.db, payment_id)
        if not payment:
            raise HTTPException(status_code=404, detail="Payment not found")
        return payment

    async def settle_appointment(self, data: SettlementCreate, now: Optional[datetime] = None) -> dict:
        """Close a single appointment and request its invoice"""
        now = now or datetime.now()
        appointment = self.scheduling.get_appointment(self.db, data.appointment_id)
        if not appointment:
            raise HTTPException(status_code=404, detail="Appointment not found")
        if appointment.group_id:
            raise HTTPException(
                status_code=400,
                detail=f"Appointment {appointment.id} belongs to group {appointment.group_id}; settle the group instead",
            )
        lifecycle.ensure_in_progress(appointment)

        member = self._price_member(appointment, data)
        products = self._product_lines(data.added_products)
        lateness = minutes_late(appointment.start_at, appointment.started_at or now)
        penalty = self._validated_penalty(lateness, data.penalty_amount)

        lines = member["lines"] + products
        totals, deposit, giftcard = self._apply_credits(appointment.client_id, lines, penalty, data, now)

        payment = Payment(
            client_id=appointment.client_id,
            appointment_id=appointment.id,
            method=data.method,
            subtotal=totals["subtotal"],
            penalty_amount=penalty,
            deposit_id=deposit.id if deposit else None,
            deposit_amount=totals["deposit_credit"],
            giftcard_id=giftcard.id if giftcard else None,
            giftcard_amount=totals["giftcard_credit"],
            total_due=totals["total_due"],
            items=self._itemize(lines, penalty, data.penalty_reason),
            member_shares=[],
            invoice_status="none",
        )
        self._close_member(member, lateness, penalty, data.penalty_reason, products, now)
        self._mark_credits_used(deposit, giftcard, now)
        self._commit_settlement(payment)
        logger.info(
            f"✅ Appointment {appointment.id} settled: payment {payment.id}, total due {payment.total_due}"
        )

        invoice = await self._request_invoice(payment, data.generate_invoice, now)
        self.db.refresh(appointment)
        return {"payment": payment, "appointment": appointment, **invoice}

    async def settle_group(self, data: GroupSettlementCreate, now: Optional[datetime] = None) -> dict:
        """Close every member of a group together in one payment"""
        now = now or datetime.now()
        group = self.scheduling.get_group(self.db, data.group_id)
        if not group:
            raise HTTPException(status_code=404, detail="Appointment group not found")

        members = [a for a in group.appointments if a.status != lifecycle.CANCELLED]
        if not members:
            raise HTTPException(status_code=400, detail="The group has no appointments to settle")
        for member in members:
            lifecycle.ensure_in_progress(member)

        pricing = {p.appointment_id: p for p in data.members}
        unknown = set(pricing) - {m.id for m in members}
        if unknown:
            raise HTTPException(
                status_code=400,
                detail=f"Appointments {sorted(unknown)} are not active members of group {group.id}",
            )

        priced = [self._price_member(m, pricing.get(m.id) or MemberPricing()) for m in members]
        staff_ids = [p["staff"].id for p in priced]
        if len(staff_ids) != len(set(staff_ids)):
            raise SchedulingRejection(
                "The same staff member cannot take two services of one group",
                kind="duplicate-staff",
                staff_ids=sorted({i for i in staff_ids if staff_ids.count(i) > 1}),
            )

        products = self._product_lines(data.added_products)
        arrival = min(m.started_at or now for m in members)
        lateness = minutes_late(group.start_at, arrival)
        penalty = self._validated_penalty(lateness, data.penalty_amount)

        lines = [line for p in priced for line in p["lines"]] + products
        totals, deposit, giftcard = self._apply_credits(group.client_id, lines, penalty, data, now)

        products_total = round_money(sum(line_total(line) for line in products))
        credit = round_money(totals["subtotal"] - totals["total_due"])
        credit_by_member = None
        if giftcard:
            matched_by_appointment = defaultdict(float)
            for line, matched in zip(lines, giftcard_line_matches(giftcard.service_ids or [], lines)):
                if line.get("appointment_id") is not None:
                    matched_by_appointment[line["appointment_id"]] += matched
            credit_by_member = [matched_by_appointment[p["appointment"].id] for p in priced]
        shares = distribute_group(
            [(p["appointment"].id, p["services_total"]) for p in priced],
            penalty,
            products_total,
            credit,
            credit_by_member,
        )

        payment = Payment(
            client_id=group.client_id,
            group_id=group.id,
            method=data.method,
            subtotal=totals["subtotal"],
            penalty_amount=penalty,
            deposit_id=deposit.id if deposit else None,
            deposit_amount=totals["deposit_credit"],
            giftcard_id=giftcard.id if giftcard else None,
            giftcard_amount=totals["giftcard_credit"],
            total_due=totals["total_due"],
            items=self._itemize(lines, penalty, data.penalty_reason),
            member_shares=shares,
            invoice_status="none",
        )
        for index, (member, share) in enumerate(zip(priced, shares)):
            # Products are recorded once, on the first member
            self._close_member(
                member, lateness, share["penalty_share"], data.penalty_reason, products if index == 0 else [], now
            )
        self._mark_credits_used(deposit, giftcard, now)
        self._commit_settlement(payment)
        logger.info(
            f"✅ Group {group.id} settled ({len(members)} appointments): payment {payment.id}, "
            f"total due {payment.total_due}"
        )

        invoice = await self._request_invoice(payment, data.generate_invoice, now)
        for member in members:
            self.db.refresh(member)
        return {"payment": payment, "appointments": members, **invoice}

    # ------------------------------------------------------------------
    # Lines
    # ------------------------------------------------------------------

    def _price_member(self, appointment: Appointment, pricing: MemberPricing) -> dict:
        service_id = pricing.final_service_id or appointment.effective_service_id
        service = self.scheduling.get_service(self.db, service_id)
        if not service:
            raise HTTPException(status_code=404, detail=f"Service {service_id} not found")

        staff_id = pricing.final_staff_id or appointment.effective_staff_id
        staff = self.scheduling.get_staff(self.db, staff_id)
        if not staff:
            raise HTTPException(status_code=404, detail=f"Staff member {staff_id} not found")

        eligible = [int(i) for i in (service.eligible_staff_ids or [])]
        if eligible and staff.id not in eligible:
            raise SchedulingRejection(
                f"{staff.name} is not enabled to perform {service.name}",
                kind="ineligible-staff",
                staff_id=staff.id,
                service_id=service.id,
            )

        try:
            price = resolve_service_price(
                service.list_price, service.discount_price, pricing.price_tier, pricing.manual_price
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=f"{service.name}: {e}") from None

        lines = [
            {
                "kind": SERVICE_LINE,
                "ref_id": service.id,
                "name": service.name,
                "appointment_id": appointment.id,
                "staff_id": staff.id,
                "quantity": 1,
                "unit_price": price,
                "price_tier": pricing.price_tier,
            }
        ]

        added = self.scheduling.get_services_by_ids(self.db, [line.id for line in pricing.added_services])
        for line in pricing.added_services:
            added_service = added.get(line.id)
            if not added_service:
                raise HTTPException(status_code=404, detail=f"Service {line.id} not found")
            lines.append(
                {
                    "kind": ADDED_SERVICE_LINE,
                    "ref_id": added_service.id,
                    "name": added_service.name,
                    "appointment_id": appointment.id,
                    "staff_id": line.staff_id or staff.id,
                    "quantity": line.quantity,
                    "unit_price": line.unit_price if line.unit_price is not None else added_service.list_price,
                }
            )

        return {
            "appointment": appointment,
            "service": service,
            "staff": staff,
            "lines": lines,
            "services_total": round_money(sum(line_total(line) for line in lines)),
        }

    def _product_lines(self, inputs: list[LineInput]) -> list[dict]:
        products = self.repo.get_products_by_ids(self.db, [line.id for line in inputs])
        lines = []
        for line in inputs:
            product = products.get(line.id)
            if not product:
                raise HTTPException(status_code=404, detail=f"Product {line.id} not found")
            lines.append(
                {
                    "kind": PRODUCT_LINE,
                    "ref_id": product.id,
                    "name": product.name,
                    # Only products sold by a staff member earn commission
                    "staff_id": line.staff_id,
                    "quantity": line.quantity,
                    "unit_price": line.unit_price if line.unit_price is not None else product.price,
                }
            )
        return lines

    def _validated_penalty(self, lateness: int, penalty: float) -> float:
        try:
            return validate_penalty(lateness, penalty)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from None

    def _itemize(self, lines: list[dict], penalty: float, penalty_reason: Optional[str]) -> list[dict]:
        """Attach totals and commissions to every line"""
        service_ids = [line["ref_id"] for line in lines if line["kind"] in (SERVICE_LINE, ADDED_SERVICE_LINE)]
        product_ids = [line["ref_id"] for line in lines if line["kind"] == PRODUCT_LINE]
        services = self.scheduling.get_services_by_ids(self.db, service_ids)
        products = self.repo.get_products_by_ids(self.db, product_ids)
        service_overrides = self.repo.get_service_overrides(self.db, service_ids)
        product_overrides = self.repo.get_product_overrides(self.db, product_ids)

        items = []
        for line in lines:
            total = line_total(line)
            if line["kind"] == PRODUCT_LINE:
                catalog, overrides = products[line["ref_id"]], product_overrides
            else:
                catalog, overrides = services[line["ref_id"]], service_overrides

            kind, value, commission = None, 0.0, 0.0
            if line["staff_id"] is not None:
                kind, value = resolve_commission_rule(
                    catalog.commission_kind,
                    catalog.commission_value,
                    overrides.get((line["ref_id"], line["staff_id"])),
                )
                commission = commission_amount(kind, value, total, line["quantity"])

            items.append(
                {
                    **line,
                    "total": total,
                    "commission_kind": kind,
                    "commission_value": value,
                    "commission": commission,
                }
            )

        if penalty > 0:
            items.append(
                {
                    "kind": "penalty",
                    "ref_id": None,
                    "name": penalty_reason or "Lateness penalty",
                    "staff_id": None,
                    "quantity": 1,
                    "unit_price": penalty,
                    "total": penalty,
                    "commission_kind": None,
                    "commission_value": 0.0,
                    "commission": 0.0,
                }
            )
        return items

    # ------------------------------------------------------------------
    # Credits
    # ------------------------------------------------------------------

    def _apply_credits(self, client_id: int, lines: list[dict], penalty: float, options, now: datetime):
        subtotal = compute_subtotal(lines, penalty)
        deposit = None
        giftcard = None
        matched = None
        deposit_amount = None

        if options.giftcard_id:
            giftcard = self._load_giftcard(options.giftcard_id, client_id, now)
            matched = match_giftcard(giftcard.service_ids or [], lines)
            if matched <= 0:
                raise HTTPException(
                    status_code=400, detail="The gift card does not cover any of the settled services"
                )
            if options.deposit_id:
                logger.info(f"Gift card {giftcard.id} selected; deposit {options.deposit_id} not applied")
        elif options.deposit_id:
            deposit = self._load_deposit(options.deposit_id, client_id)
            deposit_amount = deposit.amount

        return compute_totals(subtotal, matched, deposit_amount), deposit, giftcard

    def _load_giftcard(self, giftcard_id: int, client_id: int, now: datetime) -> GiftCard:
        giftcard = self.repo.get_giftcard(self.db, giftcard_id)
        if not giftcard:
            raise HTTPException(status_code=404, detail="Gift card not found")
        if giftcard.client_id != client_id:
            raise HTTPException(status_code=400, detail="The gift card belongs to another client")
        if giftcard.status != "vigente":
            raise HTTPException(status_code=400, detail=f"The gift card is {giftcard.status}")
        if (giftcard.valid_from and giftcard.valid_from > now) or (
            giftcard.valid_until and giftcard.valid_until < now
        ):
            raise HTTPException(status_code=400, detail="The gift card is outside its validity window")
        if self.repo.is_giftcard_applied(self.db, giftcard.id):
            raise HTTPException(status_code=400, detail="The gift card was already applied to a payment")
        return giftcard

    def _load_deposit(self, deposit_id: int, client_id: int) -> Deposit:
        deposit = self.repo.get_deposit(self.db, deposit_id)
        if not deposit:
            raise HTTPException(status_code=404, detail="Deposit not found")
        if deposit.client_id != client_id:
            raise HTTPException(status_code=400, detail="The deposit belongs to another client")
        if deposit.status != "pendiente" or self.repo.is_deposit_applied(self.db, deposit.id):
            raise HTTPException(status_code=400, detail="The deposit was already applied")
        return deposit

    def _mark_credits_used(self, deposit: Optional[Deposit], giftcard: Optional[GiftCard], now: datetime) -> None:
        if deposit:
            deposit.status = "aplicada"
            deposit.applied_at = now
        if giftcard:
            giftcard.status = "usada"
            giftcard.used_at = now

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _close_member(
        self,
        member: dict,
        lateness: int,
        penalty: float,
        penalty_reason: Optional[str],
        products: list[dict],
        now: datetime,
    ) -> None:
        appointment = member["appointment"]
        if member["service"].id != appointment.service_id:
            appointment.final_service_id = member["service"].id
        if member["staff"].id != appointment.staff_id:
            appointment.final_staff_id = member["staff"].id

        appointment.added_services = [
            {
                "id": line["ref_id"],
                "quantity": line["quantity"],
                "unit_price": line["unit_price"],
                "staff_id": line["staff_id"],
            }
            for line in member["lines"]
            if line["kind"] == ADDED_SERVICE_LINE
        ]
        appointment.added_products = [
            {
                "id": line["ref_id"],
                "quantity": line["quantity"],
                "unit_price": line["unit_price"],
                "staff_id": line["staff_id"],
            }
            for line in products
        ]
        appointment.lateness_minutes = lateness
        appointment.penalty_amount = penalty
        appointment.penalty_reason = penalty_reason if penalty > 0 else None
        lifecycle.complete(appointment, now)

    def _commit_settlement(self, payment: Payment) -> None:
        self.db.add(payment)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            logger.warning(f"⚠️ Settlement rejected at commit: {e.orig}")
            raise CommitConflictError(
                "The appointment was settled or its credit applied by a concurrent request"
            ) from e
        self.db.refresh(payment)

    async def _request_invoice(self, payment: Payment, requested: bool, now: datetime) -> dict:
        """
        Ask the provider for an invoice after the settlement is committed.

        Provider failures never undo the settlement: the invoice stays
        pending and the retry worker finishes it.
        """
        outcome = {"invoice_id": None, "invoice_pending": False, "invoice_error": None}
        if not requested or payment.total_due <= 0:
            return outcome

        existing = self.repo.get_open_invoice(self.db, payment.id)
        if existing:
            outcome["invoice_id"] = existing.provider_invoice_id
            outcome["invoice_pending"] = existing.status == "pendiente"
            outcome["invoice_error"] = existing.last_error
            return outcome

        payload = build_invoice_payload(payment)
        invoice = Invoice(
            payment_id=payment.id,
            status="pendiente",
            total=payment.total_due,
            retry_payload=payload,
            attempts=1,
        )
        self.db.add(invoice)

        try:
            result = await self.invoice_provider.create_invoice(payload)
            provider_invoice_id = result["invoice_id"]
        except InvoicingError as e:
            logger.warning(f"⚠️ Invoice for payment {payment.id} deferred: {e}")
            return self._defer_invoice(invoice, payment, str(e), now, outcome)
        except Exception as e:
            logger.error(f"❌ Unexpected invoicing failure for payment {payment.id}: {e}", exc_info=True)
            return self._defer_invoice(invoice, payment, f"Unexpected invoicing failure: {e}", now, outcome)

        record_invoice_success(invoice, payment, provider_invoice_id, now)
        self.db.commit()
        outcome["invoice_id"] = provider_invoice_id
        return outcome

    def _defer_invoice(self, invoice: Invoice, payment: Payment, error: str, now: datetime, outcome: dict) -> dict:
        record_invoice_failure(invoice, payment, error, now)
        self.db.commit()
        outcome.update(invoice_pending=invoice.status == "pendiente", invoice_error=error)
        return outcome
