import pytest

from salon.domain.settlements.calculator import (
    ADDED_SERVICE_LINE,
    PRODUCT_LINE,
    SERVICE_LINE,
    commission_amount,
    compute_subtotal,
    compute_totals,
    distribute_group,
    giftcard_line_matches,
    match_giftcard,
    resolve_commission_rule,
    resolve_service_price,
    split_proportionally,
    validate_penalty,
)


def line(kind, ref_id, unit_price, quantity=1, staff_id=1):
    return {"kind": kind, "ref_id": ref_id, "unit_price": unit_price, "quantity": quantity, "staff_id": staff_id}


@pytest.mark.settlement
class TestPrices:
    """Test price tiers and subtotals."""

    def test_list_and_discount_tiers(self):
        assert resolve_service_price(50.0, 40.0, "list") == 50.0
        assert resolve_service_price(50.0, 40.0, "discount") == 40.0

    def test_manual_override(self):
        assert resolve_service_price(50.0, None, "manual", 42.5) == 42.5

    def test_discount_without_discount_price(self):
        with pytest.raises(ValueError):
            resolve_service_price(50.0, None, "discount")

    def test_subtotal_includes_lines_and_penalty(self):
        lines = [line(SERVICE_LINE, 1, 50.0), line(ADDED_SERVICE_LINE, 2, 30.0), line(PRODUCT_LINE, 9, 20.0, quantity=2)]

        assert compute_subtotal(lines, penalty=10.0) == 130.0


@pytest.mark.settlement
class TestCredits:
    """Test gift card and deposit offsets."""

    def test_giftcard_partial_coverage(self):
        lines = [line(SERVICE_LINE, 1, 50.0), line(SERVICE_LINE, 2, 30.0)]
        matched = match_giftcard([1], lines)
        totals = compute_totals(compute_subtotal(lines), giftcard_matched=matched)

        assert matched == 50.0
        assert totals["giftcard_credit"] == 50.0
        assert totals["total_due"] == 30.0

    def test_giftcard_matches_per_line(self):
        lines = [line(SERVICE_LINE, 1, 50.0), line(SERVICE_LINE, 2, 30.0), line(PRODUCT_LINE, 2, 20.0)]

        assert giftcard_line_matches([2, 2], lines) == [0.0, 30.0, 0.0]

    def test_giftcard_consumes_one_id_per_unit(self):
        lines = [line(SERVICE_LINE, 1, 50.0), line(ADDED_SERVICE_LINE, 1, 50.0)]

        assert match_giftcard([1], lines) == 50.0
        assert match_giftcard([1, 1], lines) == 100.0

    def test_giftcard_counts_added_service_quantity(self):
        lines = [line(ADDED_SERVICE_LINE, 3, 15.0, quantity=3)]

        assert match_giftcard([3, 3], lines) == 30.0

    def test_giftcard_never_matches_products(self):
        assert match_giftcard([9], [line(PRODUCT_LINE, 9, 20.0)]) == 0

    def test_giftcard_credit_capped_at_subtotal(self):
        totals = compute_totals(40.0, giftcard_matched=50.0)

        assert totals["giftcard_credit"] == 40.0
        assert totals["total_due"] == 0

    def test_giftcard_excludes_deposit(self):
        totals = compute_totals(80.0, giftcard_matched=50.0, deposit_amount=20.0)

        assert totals["deposit_credit"] == 0
        assert totals["total_due"] == 30.0

    def test_deposit_credit(self):
        totals = compute_totals(80.0, deposit_amount=20.0)

        assert totals["deposit_credit"] == 20.0
        assert totals["total_due"] == 60.0

    def test_deposit_larger_than_subtotal(self):
        assert compute_totals(15.0, deposit_amount=20.0)["total_due"] == 0


@pytest.mark.settlement
class TestPenalty:
    """Test lateness penalty gating."""

    def test_penalty_below_threshold_rejected(self):
        with pytest.raises(ValueError):
            validate_penalty(14, 10.0)

    def test_zero_penalty_always_allowed(self):
        assert validate_penalty(0, 0) == 0
        assert validate_penalty(30, 0) == 0

    def test_penalty_allowed_from_threshold(self):
        assert validate_penalty(15, 10.0) == 10.0

    def test_negative_penalty_rejected(self):
        with pytest.raises(ValueError):
            validate_penalty(20, -1)


@pytest.mark.settlement
class TestCommissions:
    """Test commission rule resolution."""

    def test_override_takes_precedence(self):
        assert resolve_commission_rule("percentage", 10, ("fixed", 7)) == ("fixed", 7)

    def test_base_rule_without_override(self):
        assert resolve_commission_rule("percentage", 10) == ("percentage", 10)

    def test_percentage_commission(self):
        assert commission_amount("percentage", 10, 50.0, 1) == 5.0

    def test_fixed_commission_per_unit(self):
        assert commission_amount("fixed", 5, 90.0, 3) == 15.0


@pytest.mark.settlement
class TestGroupShares:
    """Test proportional distribution across group members."""

    def test_split_remainder_on_last(self):
        shares = split_proportionally(10.0, [1, 1, 1])

        assert shares == [3.33, 3.33, 3.34]
        assert round(sum(shares), 2) == 10.0

    def test_split_with_zero_weights(self):
        assert split_proportionally(9.0, [0, 0, 0]) == [3.0, 3.0, 3.0]

    def test_member_nets_add_up_to_total(self):
        shares = distribute_group([(1, 50.0), (2, 30.0)], penalty=10.0, products_total=20.0, credit=24.0)

        assert [s["appointment_id"] for s in shares] == [1, 2]
        assert shares[0]["penalty_share"] == 6.25
        assert shares[0]["products_share"] == 12.5
        assert shares[0]["credit_share"] == 15.0
        assert round(sum(s["net"] for s in shares), 2) == 86.0

    def test_explicit_credit_by_member(self):
        shares = distribute_group(
            [(1, 50.0), (2, 30.0)], penalty=0.0, products_total=20.0, credit=30.0, credit_by_member=[0.0, 30.0]
        )

        assert shares[0]["credit_share"] == 0.0
        assert shares[0]["net"] == 62.5
        assert shares[1]["credit_share"] == 30.0
        assert shares[1]["net"] == 7.5
