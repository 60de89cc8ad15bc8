"""Settlement arithmetic: prices, credits, penalties, commissions and group shares.

Pure functions over plain values; persistence lives in the service layer.
Lines are dicts with kind, ref_id, staff_id, quantity and unit_price.
"""

from collections import Counter
from typing import Optional

from ...config import LATENESS_PENALTY_THRESHOLD_MINUTES
from ...shared.errors import SettlementInvariantError

PRICE_TIERS = ("list", "discount", "manual")
COMMISSION_KINDS = ("percentage", "fixed")

SERVICE_LINE = "service"
ADDED_SERVICE_LINE = "added_service"
PRODUCT_LINE = "product"


def round_money(value: float) -> float:
    return round(float(value), 2)


def resolve_service_price(list_price: float, discount_price: Optional[float], tier: str, manual_price: Optional[float] = None) -> float:
    """Final price of a service line for the selected tier"""
    if tier == "manual":
        if manual_price is None or manual_price < 0:
            raise ValueError("A manual price must be given and cannot be negative")
        return round_money(manual_price)
    if tier == "discount":
        if discount_price is None:
            raise ValueError("The service has no discount price")
        return round_money(discount_price)
    if tier == "list":
        return round_money(list_price)
    raise ValueError(f"Unknown price tier '{tier}'")


def line_total(line: dict) -> float:
    return round_money(line["unit_price"] * line["quantity"])


def validate_penalty(lateness_minutes: int, penalty: float) -> float:
    """A penalty is allowed, never required, once lateness reaches the threshold"""
    if penalty < 0:
        raise ValueError("Penalty cannot be negative")
    if penalty > 0 and lateness_minutes < LATENESS_PENALTY_THRESHOLD_MINUTES:
        raise ValueError(
            f"A penalty requires at least {LATENESS_PENALTY_THRESHOLD_MINUTES} minutes of lateness "
            f"({lateness_minutes} recorded)"
        )
    return round_money(penalty)


def compute_subtotal(lines: list[dict], penalty: float = 0) -> float:
    return round_money(sum(line_total(line) for line in lines) + penalty)


def giftcard_line_matches(covered_service_ids: list[int], lines: list[dict]) -> list[float]:
    """
    Value a gift card covers on each line, in line order.

    Each covered id is consumed by one matched unit, so a card listing a
    service once covers a single unit even when more are settled.
    Product lines never match.
    """
    remaining = Counter(int(i) for i in covered_service_ids)
    matches = []
    for line in lines:
        matched = 0.0
        if line["kind"] in (SERVICE_LINE, ADDED_SERVICE_LINE):
            for _ in range(line["quantity"]):
                if remaining[line["ref_id"]] <= 0:
                    break
                remaining[line["ref_id"]] -= 1
                matched += line["unit_price"]
        matches.append(round_money(matched))
    return matches


def match_giftcard(covered_service_ids: list[int], lines: list[dict]) -> float:
    """Value of the service units a gift card covers"""
    return round_money(sum(giftcard_line_matches(covered_service_ids, lines)))


def compute_totals(
    subtotal: float,
    giftcard_matched: Optional[float] = None,
    deposit_amount: Optional[float] = None,
) -> dict:
    """
    Apply credits to a subtotal.

    A gift card and a deposit are mutually exclusive: when a gift card
    applies the deposit is ignored.
    """
    giftcard_credit = 0.0
    deposit_credit = 0.0
    if giftcard_matched is not None:
        giftcard_credit = round_money(min(subtotal, giftcard_matched))
    elif deposit_amount is not None:
        deposit_credit = round_money(deposit_amount)

    total_due = round_money(max(0.0, subtotal - giftcard_credit - deposit_credit))

    if total_due < 0 or giftcard_credit < 0 or deposit_credit < 0 or total_due > subtotal:
        raise SettlementInvariantError(
            f"Inconsistent settlement: subtotal={subtotal}, giftcard={giftcard_credit}, "
            f"deposit={deposit_credit}, total_due={total_due}"
        )

    return {
        "subtotal": subtotal,
        "giftcard_credit": giftcard_credit,
        "deposit_credit": deposit_credit,
        "total_due": total_due,
    }


# ============================================================================
# COMMISSIONS
# ============================================================================


def resolve_commission_rule(base_kind: str, base_value: float, override: Optional[tuple[str, float]] = None) -> tuple[str, float]:
    """A per-staff override takes precedence over the base rule"""
    if override is not None:
        return override
    return base_kind, base_value


def commission_amount(kind: str, value: float, total: float, quantity: int) -> float:
    if kind == "percentage":
        return round_money(total * value / 100)
    if kind == "fixed":
        return round_money(value * quantity)
    raise ValueError(f"Unknown commission kind '{kind}'")


# ============================================================================
# GROUP SHARES
# ============================================================================


def split_proportionally(amount: float, weights: list[float]) -> list[float]:
    """Split an amount by weights; rounding drift lands on the last share"""
    if not weights:
        return []
    total_weight = sum(weights)
    if total_weight <= 0:
        weights = [1.0] * len(weights)
        total_weight = float(len(weights))

    shares = [round_money(amount * w / total_weight) for w in weights[:-1]]
    shares.append(round_money(amount - sum(shares)))
    return shares


def distribute_group(
    member_totals: list[tuple[int, float]],
    penalty: float,
    products_total: float,
    credit: float,
    credit_by_member: Optional[list[float]] = None,
) -> list[dict]:
    """
    Net amount owed per group member.

    Penalty and products are shared in proportion to each member's own
    service total. Credit is shared the same way unless credit_by_member
    assigns it explicitly (a gift card credits the members whose lines
    it matched). The sum of net shares equals the group's total due.
    """
    weights = [total for _, total in member_totals]
    penalty_shares = split_proportionally(penalty, weights)
    product_shares = split_proportionally(products_total, weights)
    if credit_by_member is not None:
        credit_shares = [round_money(c) for c in credit_by_member]
    else:
        credit_shares = split_proportionally(credit, weights)

    group_net = round_money(sum(weights) + penalty + products_total - credit)

    shares = []
    for index, (appointment_id, services_total) in enumerate(member_totals):
        if index == len(member_totals) - 1:
            net = group_net - sum(s["net"] for s in shares)
        else:
            net = services_total + penalty_shares[index] + product_shares[index] - credit_shares[index]
        shares.append(
            {
                "appointment_id": appointment_id,
                "services_total": round_money(services_total),
                "penalty_share": penalty_shares[index],
                "products_share": product_shares[index],
                "credit_share": credit_shares[index],
                "net": round_money(net),
            }
        )
    return shares
