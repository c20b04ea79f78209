"""Derived money figures per vendor row and per order.

Nothing here writes to the store and nothing here raises on bad data: missing
or invalid numbers count as zero so summaries stay renderable over partially
migrated rows.
"""
from __future__ import annotations

from collections import defaultdict
from typing import Callable, Iterable, Mapping, Optional

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.table import Table, TableStyleInfo

from vledger.domain.models import (
    CatalogEntry,
    OrderSummary,
    RowFinancials,
    Seller,
    TransferAggregate,
    VendorOrderRow,
    normalize_branch,
)
from vledger.domain.numbers import to_count, to_number
from vledger.services import pricing_service
from vledger.services.transfer_service import transfer_aggregates


def ordered_units(row: VendorOrderRow) -> int:
    total = to_count(row.total_units)
    if total > 0:
        return total
    return to_count(row.packages) * to_count(row.units_per_package)


def _line_total(row: VendorOrderRow, price: float, units: int) -> float:
    candidates: list[Callable[[], float]] = [
        lambda: price * to_count(row.packages),
        lambda: to_number(row.total_expected),
        lambda: to_number(row.unit_price_vendor) * units,
    ]
    for candidate in candidates:
        value = to_number(candidate())
        if value != 0:
            return value
    return 0.0


def row_financials(
    row: VendorOrderRow,
    catalog: Mapping[str, CatalogEntry],
    branch: str,
    commission_percent: float,
) -> RowFinancials:
    entry = catalog.get(row.product_id)
    price = to_number(pricing_service.price_per_package(row, entry, branch))
    units = ordered_units(row)
    sold_units = max(0, units - row.stock_units())
    line_total = _line_total(row, price, units)

    upp = to_count(row.units_per_package)
    unit_price = price / upp if price > 0 and upp > 0 else 0.0
    if unit_price > 0:
        sold_value = unit_price * sold_units
    elif units > 0:
        sold_value = line_total * sold_units / units
    else:
        sold_value = 0.0

    gross_pp = to_number(pricing_service.gross_profit_per_package(row, entry, branch))
    gross = gross_pp * to_count(row.packages)
    pct, vendor, investor = pricing_service.commission_split(gross, commission_percent)
    logistic = to_number(pricing_service.logistic_per_package(row, entry)) * to_count(row.packages)

    return RowFinancials(
        row_id=row.id,
        order_key=row.order_key,
        branch=branch,
        price_per_package=price,
        ordered_units=units,
        sold_units=sold_units,
        line_total_expected=line_total,
        unit_price=unit_price,
        line_sold_value=sold_value,
        line_remaining_value=line_total - sold_value,
        gross_profit_per_package=gross_pp,
        gross_profit=gross,
        commission_percent=pct,
        vendor_share=vendor,
        investor_share=investor,
        logistic_allocated=logistic,
        net_profit=gross - logistic - vendor,
    )


def _branch_and_commission(row: VendorOrderRow, seller: Optional[Seller]) -> tuple[str, float]:
    branch = normalize_branch(seller.branch) if seller is not None else ""
    if not branch:
        branch = normalize_branch(row.branch)
    if seller is not None and to_number(seller.commission_percent) != 0:
        return branch, to_number(seller.commission_percent)
    return branch, to_number(row.vendor_margin_percent)


def order_summaries(
    rows: Iterable[VendorOrderRow],
    catalog: Mapping[str, CatalogEntry],
    sellers: Mapping[str, Seller],
    transfer_aggregates: Optional[Mapping[str, TransferAggregate]] = None,
) -> list[OrderSummary]:
    """Plain sums of the row figures per order key, newest order first."""
    grouped: dict[str, list[VendorOrderRow]] = defaultdict(list)
    for row in rows:
        grouped[row.order_key].append(row)

    aggregates = transfer_aggregates or {}
    out: list[OrderSummary] = []
    for key, order_rows in grouped.items():
        head = order_rows[0]
        seller = sellers.get(head.seller_id)
        total_packages = remaining_packages = 0
        total = sold = remaining = gross = commission = investor = 0.0
        for row in order_rows:
            branch, pct = _branch_and_commission(row, sellers.get(row.seller_id))
            fin = row_financials(row, catalog, branch, pct)
            total_packages += to_count(row.packages)
            remaining_packages += row.stock_packages()
            total += fin.line_total_expected
            sold += fin.line_sold_value
            remaining += fin.line_remaining_value
            gross += fin.gross_profit
            commission += fin.vendor_share
            investor += fin.investor_share
        agg = aggregates.get(key, TransferAggregate())
        out.append(
            OrderSummary(
                order_key=key,
                seller_id=head.seller_id,
                seller_name=(seller.name if seller is not None else "") or head.seller_name,
                date=head.date,
                total_packages=total_packages,
                remaining_packages=remaining_packages,
                total_expected=total,
                sold=sold,
                remaining=remaining,
                gross_profit=gross,
                commission=commission,
                investor_share=investor,
                net_expected=total - commission,
                transferred_out=agg.out,
                transferred_in=agg.incoming,
            )
        )
    out.sort(key=lambda s: s.date, reverse=True)
    return out


class ReportingService:
    def __init__(self, repo):
        self.repo = repo

    def _inputs(self, seller_id: Optional[str] = None):
        rows = self.repo.list_vendor_rows(seller_id)
        catalog = pricing_service.latest_catalog(self.repo.list_catalog_entries())
        sellers = {s.id: s for s in self.repo.list_sellers()}
        return rows, catalog, sellers

    def summaries(self, seller_id: Optional[str] = None) -> list[OrderSummary]:
        rows, catalog, sellers = self._inputs(seller_id)
        return order_summaries(rows, catalog, sellers, transfer_aggregates(self.repo.list_transfers()))

    def row_report(self, seller_id: Optional[str] = None) -> list[tuple[VendorOrderRow, RowFinancials]]:
        rows, catalog, sellers = self._inputs(seller_id)
        out = []
        for row in rows:
            branch, pct = _branch_and_commission(row, sellers.get(row.seller_id))
            out.append((row, row_financials(row, catalog, branch, pct)))
        return out

    def export_summaries_excel(self, path: str, seller_id: Optional[str] = None) -> None:
        wb = Workbook()

        def money(cell):
            cell.number_format = "#,##0.00"

        def bold_row(ws, r):
            for c in ws[r]:
                c.font = Font(bold=True)

        def set_widths(ws, widths: dict[str, int]):
            for col, w in widths.items():
                ws.column_dimensions[col].width = w

        def add_table(ws, name: str, end_row: int, end_col: int):
            ref = f"A1:{get_column_letter(end_col)}{end_row}"
            tab = Table(displayName=name, ref=ref)
            tab.tableStyleInfo = TableStyleInfo(
                name="TableStyleMedium9",
                showRowStripes=True,
                showColumnStripes=False,
            )
            ws.add_table(tab)

        # -------- 1) Orders --------
        ws = wb.active
        ws.title = "Orders"
        ws.append([
            "Order", "Seller", "Date", "Packages", "Remaining Pkgs",
            "Total Expected", "Sold", "Remaining", "Gross Profit",
            "Commission", "Investor", "Net Expected", "Transferred In", "Transferred Out",
        ])
        bold_row(ws, 1)
        for s in self.summaries(seller_id):
            ws.append([
                s.order_key, s.seller_name, s.date, s.total_packages, s.remaining_packages,
                s.total_expected, s.sold, s.remaining, s.gross_profit,
                s.commission, s.investor_share, s.net_expected, s.transferred_in, s.transferred_out,
            ])
            for col in "FGHIJKL":
                money(ws[f"{col}{ws.max_row}"])
        ws.freeze_panes = "A2"
        set_widths(ws, {"A": 30, "B": 24, "C": 12})
        if ws.max_row >= 2:
            add_table(ws, "OrderSummary", ws.max_row, 14)

        # -------- 2) Rows --------
        ws2 = wb.create_sheet("Rows")
        ws2.append([
            "Row ID", "Order", "Product", "Branch", "Packages", "Ordered Units", "Sold Units",
            "Price/Pkg", "Line Total", "Sold Value", "Remaining Value", "Gross Profit", "Vendor", "Investor",
        ])
        bold_row(ws2, 1)
        for row, fin in self.row_report(seller_id):
            ws2.append([
                row.id, fin.order_key, row.product_name or row.product_id, fin.branch, row.packages,
                fin.ordered_units, fin.sold_units, fin.price_per_package, fin.line_total_expected,
                fin.line_sold_value, fin.line_remaining_value, fin.gross_profit, fin.vendor_share,
                fin.investor_share,
            ])
            for col in "HIJKLMN":
                money(ws2[f"{col}{ws2.max_row}"])
        ws2.freeze_panes = "A2"
        set_widths(ws2, {"A": 34, "B": 30, "C": 28})
        if ws2.max_row >= 2:
            add_table(ws2, "RowDetail", ws2.max_row, 14)

        wb.save(path)
