import pytest
from conftest import make_row

from vledger.domain.models import ISLA, RIVAS, SAN_JORGE, CatalogEntry
from vledger.services import pricing_service as pricing


def _entry(created_at="2024-01-01 00:00:00", **overrides) -> CatalogEntry:
    values = dict(
        product_id="P",
        product_name="Gummies",
        created_at=created_at,
        provider_price=20.0,
        unit_price_rivas=30.0,
        unit_price_san_jorge=32.0,
        unit_price_isla=35.0,
    )
    values.update(overrides)
    return CatalogEntry(**values)


def test_latest_catalog_keeps_newest_entry_per_product():
    old = _entry("2024-01-01 00:00:00", unit_price_isla=10.0)
    new = _entry("2024-03-01 00:00:00", unit_price_isla=12.0)
    other = _entry("2024-02-01 00:00:00", product_id="Q")

    latest = pricing.latest_catalog([new, old, other])

    assert latest["P"] is new
    assert latest["Q"] is other


def test_latest_catalog_tie_goes_to_later_entry():
    first = _entry(unit_price_isla=10.0)
    second = _entry(unit_price_isla=11.0)

    assert pricing.latest_catalog([first, second])["P"] is second


def test_price_prefers_catalog_then_row():
    row = make_row("A", unit_price_rivas=29.0, unit_price_isla=33.0)

    assert pricing.price_per_package(row, _entry(), RIVAS) == 30.0
    assert pricing.price_per_package(row, None, RIVAS) == 29.0


def test_empty_branch_uses_isla_prices():
    row = make_row("A", unit_price_isla=33.0)

    assert pricing.price_per_package(row, _entry(), "") == 35.0
    assert pricing.price_per_package(row, None, "") == 33.0


def test_gross_profit_explicit_catalog_value_wins():
    entry = _entry(gross_profit_per_pack_san_jorge=9.0)
    row = make_row("A", gross_profit=100.0)

    assert pricing.gross_profit_per_package(row, entry, SAN_JORGE) == 9.0
    # Explicit gross set for another branch only: missing branches count as zero.
    assert pricing.gross_profit_per_package(row, entry, ISLA) == 0.0


def test_gross_profit_from_price_minus_provider():
    row = make_row("A", provider_price=18.0)

    assert pricing.gross_profit_per_package(row, _entry(), ISLA) == 15.0
    assert pricing.gross_profit_per_package(row, _entry(provider_price=0.0), ISLA) == 17.0


def test_gross_profit_without_catalog_prorates_row_value():
    row = make_row("A", packages=4, gross_profit=60.0)

    assert pricing.gross_profit_per_package(row, None, RIVAS) == 15.0
    assert pricing.gross_profit_per_package(make_row("Z", packages=0, gross_profit=7.0), None, RIVAS) == 7.0


def test_logistic_per_package():
    row = make_row("A", packages=5, logistic_allocated=10.0)

    assert pricing.logistic_per_package(row, None) == 2.0
    assert pricing.logistic_per_package(row, _entry(logistic_allocated_per_pack=1.25)) == 1.25


@pytest.mark.parametrize(
    "pct, expected",
    [
        (25, (25.0, 25.0, 75.0)),
        (0, (0.0, 0.0, 100.0)),
        (-10, (0.0, 0.0, 100.0)),
        ("abc", (0.0, 0.0, 100.0)),
    ],
)
def test_commission_split_clamps_negative_percent(pct, expected):
    assert pricing.commission_split(100.0, pct) == pytest.approx(expected)


def test_branch_factor_pricing():
    assert pricing.factor_for_branch(RIVAS) == 0.75
    assert pricing.factor_for_branch(ISLA) == 0.70
    assert pricing.factor_for_branch("") == 1.0
    assert pricing.price_by_branch(15.0, RIVAS) == 20.0
    assert pricing.price_by_branch(7.0, ISLA) == 10.0
    assert pricing.price_from_cost_and_factor(10.0, 0.3) == 33.33
    assert pricing.price_from_cost_and_factor(0.0, 0.75) == 0.0
    assert pricing.price_from_cost_and_factor(10.0, 0.0) == 0.0


def test_margin_and_markup_helpers():
    assert pricing.margin_percent_from_factor(0.75) == pytest.approx(25.0)
    assert pricing.margin_percent_from_factor(1.2) == 0.0
    assert pricing.vendor_price_from_markup(80.0, 20.0) == pytest.approx(100.0)
    assert pricing.vendor_price_from_markup(80.0, 100.0) == 0.0
    assert pricing.vendor_price_from_markup(80.0, -5.0) == pytest.approx(80.0)
