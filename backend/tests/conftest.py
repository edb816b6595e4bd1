"""
conftest.py: Shared pytest fixtures for the MarginDesk backend test suite.

No database or external service fixtures are defined here.  All tests in this
suite are pure unit tests that exercise the pricing engine in isolation; ORM
mapping helpers are checked on transient (session-less) instances.

Import-path bootstrapping:
    The ``backend/`` directory is inserted into sys.path so that all
    ``margindesk.*`` imports resolve correctly regardless of where pytest is invoked.
"""

import sys
import os
from decimal import Decimal

import pytest

# ---------------------------------------------------------------------------
# Ensure ``backend/`` is on the import path before any margindesk imports occur.
# ---------------------------------------------------------------------------
_BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _BACKEND_DIR not in sys.path:
    sys.path.insert(0, _BACKEND_DIR)


def D(value) -> Decimal:
    return Decimal(str(value))


# ---------------------------------------------------------------------------
# Rate configuration fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session")
def reference_rates():
    """
    Rates from the worked pricing example:
      tax = 11 %, commission = 4 %, no cash discount, fallback minimum = 20 %.
    cost 10 at a 28 % margin -> 10 / 0.57 = 17.54
    """
    from margindesk.services.pricing_models import RateConfiguration
    return RateConfiguration(
        tax_rate=D("0.11"),
        commission_rate=D("0.04"),
        cash_discount_rate=D("0"),
        fallback_minimum_margin_rate=D("0.20"),
        id=1,
    )


@pytest.fixture(scope="session")
def default_rates():
    """Admin defaults: tax 9 %, commission 15 %, cash discount 5 %, minimum margin 20 %."""
    from margindesk.services.pricing_models import RateConfiguration
    return RateConfiguration(
        tax_rate=D("0.09"),
        commission_rate=D("0.15"),
        cash_discount_rate=D("0.05"),
        fallback_minimum_margin_rate=D("0.20"),
        id=1,
    )


# ---------------------------------------------------------------------------
# Tier table fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session")
def gapless_tiers():
    """
    Three non-overlapping brackets covering [0, inf):
      [0, 5000)      margin 28 %  minimum 20 %
      [5000, 20000)  margin 24 %  minimum 18 %
      [20000, inf)   margin 20 %  minimum 15 %
    """
    from margindesk.services.pricing_models import MarginTier
    return [
        MarginTier(D("0"), D("5000"), D("0.28"), D("0.20"), display_order=1, id=1, configuration_id=1),
        MarginTier(D("5000"), D("20000"), D("0.24"), D("0.18"), display_order=2, id=2, configuration_id=1),
        MarginTier(D("20000"), None, D("0.20"), D("0.15"), display_order=3, id=3, configuration_id=1),
    ]


# ---------------------------------------------------------------------------
# Quote fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def compliant_line():
    """unit_price 20 against a frozen floor of 15: not below minimum."""
    from margindesk.services.pricing_models import QuoteLineItem
    return QuoteLineItem(
        cost_price=D("10"),
        quantity=D("3"),
        unit_price=D("20"),
        minimum_unit_price=D("15"),
        ideal_unit_price=D("17.54"),
        margin_rate=D("0.28"),
        minimum_margin_rate=D("0.20"),
        id="line-ok",
        position=0,
    )


@pytest.fixture
def below_floor_line():
    """unit_price 8 against a frozen floor of 10: below minimum."""
    from margindesk.services.pricing_models import QuoteLineItem
    return QuoteLineItem(
        cost_price=D("6"),
        quantity=D("2"),
        unit_price=D("8"),
        minimum_unit_price=D("10"),
        ideal_unit_price=D("11.50"),
        margin_rate=D("0.28"),
        minimum_margin_rate=D("0.20"),
        id="line-low",
        position=1,
    )


@pytest.fixture
def compliant_quote(compliant_line):
    from margindesk.services.pricing_models import Quote
    return Quote(lines=(compliant_line,), id="q-ok", vendor_id="vendor-1")


@pytest.fixture
def below_floor_quote(compliant_line, below_floor_line):
    from margindesk.services.pricing_models import Quote
    return Quote(lines=(compliant_line, below_floor_line), id="q-low", vendor_id="vendor-1")
