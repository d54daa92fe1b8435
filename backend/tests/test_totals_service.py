# Overview: Pytest coverage for the pure totals calculation and money formatting.

"""
Totals Calculator Tests

Covers line math (gross, discount, net, tax), document discounts, half-up
rounding at the reporting boundary only, and order independence.
"""

import itertools
from decimal import Decimal

import pytest

from docflow.money import format_bps, format_cents, format_quantity, round_cents
from docflow.services.totals_service import LineInput, ZERO_TOTALS, compute_line, compute_totals


class TestComputeLine:
    def test_plain_line(self):
        amounts = compute_line(LineInput(quantity=3, unit_price_cents=250))
        assert amounts.gross == 750
        assert amounts.discount == 0
        assert amounts.net == 750
        assert amounts.tax == 0

    def test_flat_discount_wins_over_percentage(self):
        """discount_cents is used when set (validation keeps them exclusive)."""
        amounts = compute_line(LineInput(quantity=1, unit_price_cents=1000, discount_bps=5000, discount_cents=100))
        assert amounts.discount == 100
        assert amounts.net == 900

    def test_tax_applies_to_net(self):
        amounts = compute_line(LineInput(quantity=1, unit_price_cents=10000, discount_bps=1000, tax_bps=1600))
        assert amounts.net == 9000
        assert amounts.tax == 1440

    def test_fractional_quantity(self):
        """1.5 labour hours at 100.00."""
        amounts = compute_line(LineInput(quantity=Decimal("1.5"), unit_price_cents=10000))
        assert amounts.gross == 15000
        assert compute_totals([LineInput(quantity=Decimal("1.5"), unit_price_cents=10000)]).total_cents == 15000

    def test_fractional_quantity_rounds_only_when_reported(self):
        lines = [LineInput(quantity=Decimal("0.333"), unit_price_cents=100)] * 3
        # 3 x 33.3 = 99.9 -> 100, not 3 x 33
        assert compute_totals(lines).total_cents == 100


class TestComputeTotals:
    def test_scenario_a(self):
        """2 x 100.00 at 16% tax -> 200.00 / 0.00 / 32.00 / 232.00."""
        totals = compute_totals([LineInput(quantity=2, unit_price_cents=10000, tax_bps=1600)])

        assert totals.subtotal_cents == 20000
        assert totals.discount_cents == 0
        assert totals.tax_cents == 3200
        assert totals.total_cents == 23200
        assert format_cents(totals.total_cents) == "232.00"

    def test_empty_document_is_zero(self):
        assert compute_totals([]) == ZERO_TOTALS

    def test_subtotal_is_gross_before_discounts(self):
        totals = compute_totals([
            LineInput(quantity=2, unit_price_cents=5000, discount_cents=1000),
            LineInput(quantity=1, unit_price_cents=3000, discount_bps=5000),
        ])
        assert totals.subtotal_cents == 13000
        assert totals.discount_cents == 2500
        assert totals.total_cents == 10500

    def test_document_percentage_discount_applies_after_tax(self):
        totals = compute_totals(
            [LineInput(quantity=2, unit_price_cents=10000, tax_bps=1600)],
            discount_bps=1000,
        )
        # 232.00 - 10% = 208.80
        assert totals.total_cents == 20880
        assert totals.discount_cents == 2320
        assert totals.tax_cents == 3200

    def test_document_flat_discount_is_capped_at_total(self):
        totals = compute_totals(
            [LineInput(quantity=1, unit_price_cents=1000)],
            discount_flat_cents=5000,
        )
        assert totals.total_cents == 0
        assert totals.discount_cents == 1000

    def test_no_intermediate_rounding(self):
        """Three lines of 0.5 cent tax each sum to 1.5 -> 2, not 3 x round(0.5)."""
        line = LineInput(quantity=1, unit_price_cents=5, tax_bps=1000)
        totals = compute_totals([line, line, line])
        assert totals.tax_cents == 2
        assert totals.total_cents == 17

    def test_half_up_rounding(self):
        # 1 x 0.05 at 10% tax = 0.005 -> 0.01
        totals = compute_totals([LineInput(quantity=1, unit_price_cents=5, tax_bps=1000)])
        assert totals.tax_cents == 1
        assert totals.total_cents == 6

    def test_order_independent(self):
        lines = [
            LineInput(quantity=3, unit_price_cents=333, tax_bps=1600),
            LineInput(quantity=1, unit_price_cents=999, discount_bps=1250, tax_bps=800),
            LineInput(quantity=7, unit_price_cents=101, discount_cents=3),
        ]
        results = {compute_totals(perm, discount_bps=333) for perm in itertools.permutations(lines)}
        assert len(results) == 1

    def test_reported_figures_can_drift_by_one_cent(self):
        """0.01 at 50% off: every figure rounds up on its own."""
        totals = compute_totals([LineInput(quantity=1, unit_price_cents=1, discount_bps=5000)])
        assert (totals.subtotal_cents, totals.discount_cents, totals.tax_cents, totals.total_cents) == (1, 1, 0, 1)

    def test_reported_figures_never_drift_more_than_one_cent(self):
        quantities = [1, 3, Decimal("0.333"), Decimal("1.5")]
        prices = [1, 3, 999]
        discounts = [None, 3333, 5000]
        taxes = [0, 825, 1600]
        for quantity, price, discount_bps, tax_bps in itertools.product(quantities, prices, discounts, taxes):
            line = LineInput(quantity=quantity, unit_price_cents=price, discount_bps=discount_bps, tax_bps=tax_bps)
            for document_bps in (None, 1250):
                totals = compute_totals([line, line], discount_bps=document_bps)
                drift = totals.subtotal_cents - totals.discount_cents + totals.tax_cents - totals.total_cents
                assert abs(drift) <= 1

    def test_idempotent(self):
        lines = [LineInput(quantity=2, unit_price_cents=10000, tax_bps=1600)]
        assert compute_totals(lines) == compute_totals(lines)


class TestMoneyFormatting:
    @pytest.mark.parametrize("cents,expected", [
        (23200, "232.00"),
        (5, "0.05"),
        (0, "0.00"),
        (None, None),
    ])
    def test_format_cents(self, cents, expected):
        assert format_cents(cents) == expected

    def test_format_bps(self):
        assert format_bps(1600) == "16.00"
        assert format_bps(None) is None

    def test_round_cents_half_up(self):
        assert round_cents(Decimal("0.5")) == 1
        assert round_cents(Decimal("1.49")) == 1
        assert round_cents(Decimal("2.5")) == 3

    def test_format_quantity(self):
        assert format_quantity(Decimal("1.500")) == "1.5"
        assert format_quantity(Decimal("2.000")) == "2"
        assert format_quantity(Decimal("100")) == "100"
        assert format_quantity(None) is None
