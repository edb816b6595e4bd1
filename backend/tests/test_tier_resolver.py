"""
test_tier_resolver.py: Unit tests for resolve_tier.

Tests cover:
  - Half-open [min, max) bracket matching, including both boundaries
  - Exactly one tier for every revenue on a gapless table
  - Overlapping brackets (lowest display_order wins)
  - Open-ended catch-all for revenues below every bracket
  - Configuration gaps with no open-ended tier
  - Empty tier table falling back to the fallback minimum margin rate

All tests are pure unit tests; no database or external services required.
"""

from decimal import Decimal

import pytest

from margindesk.services.errors import ConfigurationError, ValidationError
from margindesk.services.pricing_models import MarginTier, RateConfiguration
from margindesk.services.tier_resolver import resolve_tier


def D(value) -> Decimal:
    return Decimal(str(value))


# ===========================================================================
# Class 1: Bracket matching
# ===========================================================================

class TestBracketMatching:
    """Tiers are [min_revenue, max_revenue) brackets; max None means unbounded."""

    @pytest.mark.parametrize("revenue,expected_id", [
        ("0", 1),
        ("4999.99", 1),
        ("5000", 2),       # lower bound is inclusive
        ("19999.99", 2),
        ("20000", 3),      # upper bound of tier 2 is exclusive
        ("1000000", 3),
    ])
    def test_revenue_selects_containing_bracket(self, gapless_tiers, reference_rates, revenue, expected_id):
        resolved = resolve_tier(D(revenue), gapless_tiers, reference_rates)
        assert resolved.tier_id == expected_id
        assert resolved.source == "tier"

    def test_exactly_one_tier_matches_on_gapless_table(self, gapless_tiers):
        """Every sampled revenue lies inside exactly one bracket of a gapless table."""
        for revenue in ["0", "1", "4999", "5000", "12345.67", "20000", "99999"]:
            matching = [t for t in gapless_tiers if t.matches(D(revenue))]
            assert len(matching) == 1
            tier = matching[0]
            assert tier.min_revenue <= D(revenue)
            assert tier.max_revenue is None or D(revenue) < tier.max_revenue

    def test_resolved_rates_come_from_tier(self, gapless_tiers, reference_rates):
        resolved = resolve_tier(D("7500"), gapless_tiers, reference_rates)
        assert resolved.margin_rate == D("0.24")
        assert resolved.minimum_margin_rate == D("0.18")

    def test_negative_revenue_rejected(self, gapless_tiers, reference_rates):
        with pytest.raises(ValidationError) as exc:
            resolve_tier(D("-1"), gapless_tiers, reference_rates)
        assert exc.value.field == "revenue"


# ===========================================================================
# Class 2: Overlaps, catch-all, gaps
# ===========================================================================

class TestIrregularTables:
    """Overlapping and gapped tier tables."""

    def test_overlap_prefers_lowest_display_order(self, reference_rates):
        tiers = [
            MarginTier(D("0"), D("10000"), D("0.30"), D("0.22"), display_order=5, id=10),
            MarginTier(D("5000"), D("15000"), D("0.25"), D("0.19"), display_order=2, id=11),
        ]
        resolved = resolve_tier(D("7000"), tiers, reference_rates)
        assert resolved.tier_id == 11
        assert resolved.margin_rate == D("0.25")

    def test_overlap_resolution_ignores_input_order(self, reference_rates):
        a = MarginTier(D("0"), D("10000"), D("0.30"), D("0.22"), display_order=1, id=20)
        b = MarginTier(D("0"), D("10000"), D("0.26"), D("0.20"), display_order=3, id=21)
        assert resolve_tier(D("100"), [a, b], reference_rates).tier_id == 20
        assert resolve_tier(D("100"), [b, a], reference_rates).tier_id == 20

    def test_no_match_uses_highest_open_ended_tier(self, reference_rates):
        """
        Revenue 50 sits below every bracket.  Of the two open-ended tiers, the one
        with the highest min_revenue (2000) is the catch-all.
        """
        tiers = [
            MarginTier(D("100"), D("500"), D("0.30"), D("0.22"), display_order=1, id=30),
            MarginTier(D("1000"), None, D("0.26"), D("0.20"), display_order=2, id=31),
            MarginTier(D("2000"), None, D("0.22"), D("0.16"), display_order=3, id=32),
        ]
        resolved = resolve_tier(D("50"), tiers, reference_rates)
        assert resolved.tier_id == 32
        assert resolved.source == "catch_all"

    def test_gap_without_open_ended_tier_is_configuration_error(self, reference_rates):
        tiers = [
            MarginTier(D("0"), D("1000"), D("0.30"), D("0.22"), id=40),
            MarginTier(D("2000"), D("5000"), D("0.26"), D("0.20"), id=41),
        ]
        with pytest.raises(ConfigurationError):
            resolve_tier(D("1500"), tiers, reference_rates)


# ===========================================================================
# Class 3: Fallback rate
# ===========================================================================

class TestFallback:
    """Empty tier table behaviour."""

    def test_empty_table_uses_fallback_for_both_rates(self, reference_rates):
        resolved = resolve_tier(D("123"), [], reference_rates)
        assert resolved.source == "fallback"
        assert resolved.tier is None
        assert resolved.margin_rate == D("0.20")
        assert resolved.minimum_margin_rate == D("0.20")

    def test_empty_table_without_fallback_is_configuration_error(self):
        rates = RateConfiguration(tax_rate=D("0.1"), commission_rate=D("0.05"))
        with pytest.raises(ConfigurationError) as exc:
            resolve_tier(D("123"), [], rates)
        assert exc.value.field == "fallback_minimum_margin_rate"
