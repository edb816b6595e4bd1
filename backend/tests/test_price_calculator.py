"""
test_price_calculator.py: Unit tests for the markup-divisor price calculator.

Tests cover:
  - The worked example: cost 10, tax 11 %, commission 4 %, margin 28 % -> 17.54
  - Minimum price from the minimum margin rate
  - Rounding only at total boundaries (no per-unit rounding before quantity scaling)
  - Cash (up-front payment) discount and percentage reporting
  - InvalidRateError when tax + commission + margin >= 1
  - ValidationError for non-positive cost / quantity and negative revenue

All tests are pure unit tests; no database or external services required.
"""

from decimal import Decimal

import pytest

from margindesk.services.errors import ConfigurationError, InvalidRateError, ValidationError
from margindesk.services.price_calculator import calculate_price, markup_divisor, price_from_cost
from margindesk.services.pricing_models import MarginTier, RateConfiguration


def D(value) -> Decimal:
    return Decimal(str(value))


# ===========================================================================
# Class 1: Markup divisor formula
# ===========================================================================

class TestMarkupDivisor:
    """price = cost / (1 - tax - commission - margin)"""

    def test_worked_example(self):
        """10 / (1 - 0.11 - 0.04 - 0.28) = 10 / 0.57 = 17.5438... -> 17.54"""
        price = price_from_cost(D("10"), D("0.11"), D("0.04"), D("0.28"))
        assert price.quantize(D("0.01")) == D("17.54")

    def test_divisor_value(self):
        assert markup_divisor(D("0.11"), D("0.04"), D("0.28")) == D("0.57")

    def test_rates_are_fractions_of_sale_price_not_cost(self):
        """A cost-plus markup would give 10 * 1.43 = 14.30; the divisor method gives more."""
        price = price_from_cost(D("10"), D("0.11"), D("0.04"), D("0.28"))
        assert price > D("14.30")

    def test_zero_divisor_raises(self):
        with pytest.raises(InvalidRateError) as exc:
            price_from_cost(D("10"), D("0.5"), D("0.3"), D("0.2"))
        assert exc.value.field == "margin_rate"

    def test_negative_divisor_raises_with_given_field(self):
        with pytest.raises(InvalidRateError) as exc:
            price_from_cost(D("10"), D("0.6"), D("0.3"), D("0.2"), field="minimum_margin_rate")
        assert exc.value.field == "minimum_margin_rate"


# ===========================================================================
# Class 2: calculate_price
# ===========================================================================

class TestCalculatePrice:
    """End-to-end: resolve tier, then price at ideal and minimum margin."""

    def test_ideal_and_minimum_unit_prices(self, reference_rates, gapless_tiers):
        """
        Revenue 0 -> tier 1 (28 % / 20 %).
          ideal   = 10 / 0.57 = 17.54
          minimum = 10 / 0.65 = 15.38
        """
        result = calculate_price(10, 1, 0, reference_rates, gapless_tiers)
        assert result.ideal_unit_price == D("17.54")
        assert result.minimum_unit_price == D("15.38")
        assert result.margin_rate == D("0.28")
        assert result.minimum_margin_rate == D("0.20")
        assert result.resolved.tier_id == 1

    def test_totals_round_after_quantity_scaling(self, reference_rates, gapless_tiers):
        """
        17.543859... * 3 = 52.6315... -> 52.63.
        Rounding the unit price first would give 17.54 * 3 = 52.62.
        """
        result = calculate_price(10, 3, 0, reference_rates, gapless_tiers)
        assert result.total_ideal_price == D("52.63")
        assert result.total_minimum_price == D("46.15")    # 15.3846... * 3 = 46.1538...
        assert result.total_cost == D("30.00")

    def test_tier_follows_revenue(self, reference_rates, gapless_tiers):
        """Revenue 25000 -> tier 3 (20 %): 10 / (1 - 0.11 - 0.04 - 0.20) = 10 / 0.65 = 15.38"""
        result = calculate_price(10, 1, 25000, reference_rates, gapless_tiers)
        assert result.resolved.tier_id == 3
        assert result.ideal_unit_price == D("15.38")

    def test_cash_discount_price(self, default_rates):
        """
        Empty table -> fallback 20 % for both prices.
          ideal = 10 / (1 - 0.09 - 0.15 - 0.20) = 10 / 0.56 = 17.857... -> 17.86
          cash  = 17.857... * 0.95 = 16.964... -> 16.96
        """
        result = calculate_price(10, 2, 0, default_rates, [])
        assert result.resolved.source == "fallback"
        assert result.ideal_unit_price == D("17.86")
        assert result.cash_unit_price == D("16.96")
        assert result.total_cash_price == D("33.93")      # 16.9642... * 2 = 33.9285...

    def test_to_dict_reports_rates_and_tier(self, reference_rates, gapless_tiers):
        body = calculate_price(10, 1, 0, reference_rates, gapless_tiers).to_dict()
        assert body["margin_applied_pct"] == D("28.00")
        assert body["minimum_margin_applied_pct"] == D("20.00")
        assert body["tax_rate"] == D("0.11")
        assert body["commission_rate"] == D("0.04")
        assert body["tier_id"] == 1
        assert body["tier_source"] == "tier"
        assert body["ideal_unit_price"] == D("17.54")

    def test_ideal_never_below_minimum(self, reference_rates, gapless_tiers):
        """margin_rate >= minimum_margin_rate in every tier, so ideal >= minimum for any cost."""
        for cost in ["0.01", "1", "9.99", "10", "1234.56", "99999"]:
            for revenue in ["0", "5000", "20000"]:
                result = calculate_price(cost, 1, revenue, reference_rates, gapless_tiers)
                assert result.ideal_unit_price_exact >= result.minimum_unit_price_exact

    def test_string_inputs_with_comma_decimal(self, reference_rates, gapless_tiers):
        result = calculate_price("10,00", "1", "0", reference_rates, gapless_tiers)
        assert result.ideal_unit_price == D("17.54")


# ===========================================================================
# Class 3: Errors
# ===========================================================================

class TestCalculationErrors:
    """Bad inputs and bad configuration block the calculation."""

    @pytest.mark.parametrize("cost,quantity,revenue,field", [
        (0, 1, 0, "cost"),
        (-5, 1, 0, "cost"),
        (10, 0, 0, "quantity"),
        (10, -1, 0, "quantity"),
        (10, 1, -1, "revenue"),
        (None, 1, 0, "cost"),
        ("abc", 1, 0, "cost"),
    ])
    def test_invalid_inputs(self, reference_rates, gapless_tiers, cost, quantity, revenue, field):
        with pytest.raises(ValidationError) as exc:
            calculate_price(cost, quantity, revenue, reference_rates, gapless_tiers)
        assert exc.value.field == field

    def test_rate_sum_at_one_is_invalid(self):
        rates = RateConfiguration(tax_rate=D("0.5"), commission_rate=D("0.3"))
        tiers = [MarginTier(D("0"), None, D("0.2"), D("0.1"), id=1)]
        with pytest.raises(InvalidRateError):
            calculate_price(10, 1, 0, rates, tiers)

    def test_no_tiers_and_no_fallback(self):
        rates = RateConfiguration(tax_rate=D("0.1"), commission_rate=D("0.1"))
        with pytest.raises(ConfigurationError):
            calculate_price(10, 1, 0, rates, [])
