"""Branch pricing, catalog resolution and the vendor/investor profit split.

Every helper here is total: bad or missing numbers are treated as zero so the
reporting paths never fail on partially migrated data.
"""
from __future__ import annotations

from typing import Iterable, Optional

from vledger.domain.models import ISLA, RIVAS, SAN_JORGE, CatalogEntry, VendorOrderRow
from vledger.domain.numbers import clamp_percent, round_money, to_count, to_number

# Sale price = cost / factor. RIVAS and SAN_JORGE carry a 25% margin, ISLA 30%.
BRANCH_FACTORS: dict[str, float] = {
    RIVAS: 0.75,
    SAN_JORGE: 0.75,
    ISLA: 0.70,
}


def latest_catalog(entries: Iterable[CatalogEntry]) -> dict[str, CatalogEntry]:
    """One entry per product; the most recently created one wins, later input wins ties."""
    out: dict[str, CatalogEntry] = {}
    for entry in entries:
        current = out.get(entry.product_id)
        if current is None or entry.created_at >= current.created_at:
            out[entry.product_id] = entry
    return out


def price_per_package(row: VendorOrderRow, entry: Optional[CatalogEntry], branch: str) -> float:
    if entry is not None:
        return to_number(entry.price_for_branch(branch))
    return to_number(row.price_for_branch(branch))


def gross_profit_per_package(row: VendorOrderRow, entry: Optional[CatalogEntry], branch: str) -> float:
    """Explicit catalog gross wins, then price minus provider cost, then the row's own prorated gross."""
    if entry is not None:
        if entry.has_explicit_gross():
            return to_number(entry.gross_for_branch(branch))
        provider = to_number(entry.provider_price) or to_number(row.provider_price)
        return price_per_package(row, entry, branch) - provider
    return to_number(row.gross_profit) / max(1, to_count(row.packages))


def logistic_per_package(row: VendorOrderRow, entry: Optional[CatalogEntry]) -> float:
    if entry is not None:
        return to_number(entry.logistic_allocated_per_pack)
    return to_number(row.logistic_allocated) / max(1, to_count(row.packages))


def commission_split(gross_profit: float, commission_percent: float) -> tuple[float, float, float]:
    """Return (percent, vendor_share, investor_share). Negative percents count as zero."""
    pct = clamp_percent(commission_percent)
    gross = to_number(gross_profit)
    vendor = gross * (pct / 100)
    return pct, vendor, gross - vendor


def margin_percent_from_factor(factor: float) -> float:
    f = to_number(factor)
    if f <= 0 or f >= 1:
        return 0.0
    return (1 - f) * 100


def factor_for_branch(branch: str) -> float:
    return BRANCH_FACTORS.get(branch, 1.0)


def price_from_cost_and_factor(cost: float, factor: float) -> float:
    c = to_number(cost)
    f = to_number(factor)
    if c <= 0 or f <= 0:
        return 0.0
    return round_money(c / f)


def price_by_branch(cost: float, branch: str) -> float:
    return price_from_cost_and_factor(cost, factor_for_branch(branch))


def vendor_price_from_markup(subtotal: float, markup_percent: float) -> float:
    """Vendor price so that the markup is a share of the sale price: subtotal / (1 - markup%)."""
    pct = clamp_percent(markup_percent)
    if pct >= 100:
        return 0.0
    return to_number(subtotal) / (1 - pct / 100)
