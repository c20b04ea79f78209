from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

RIVAS = "RIVAS"
SAN_JORGE = "SAN_JORGE"
ISLA = "ISLA"
BRANCHES = (RIVAS, SAN_JORGE, ISLA)


def normalize_branch(raw: Optional[str]) -> str:
    v = str(raw or "").strip().upper()
    if "ISLA" in v:
        return ISLA
    if "JORGE" in v:
        return SAN_JORGE
    if "RIVAS" in v:
        return RIVAS
    return ""


def build_order_key(seller_id: str, date: str) -> str:
    return f"{seller_id}__{date}"


@dataclass(frozen=True)
class VendorOrderRow:
    id: str
    seller_id: str
    product_id: str
    units_per_package: int
    packages: int
    remaining_packages: Optional[int] = None
    remaining_units: Optional[int] = None
    order_id: str = ""
    seller_name: str = ""
    product_name: str = ""
    category: str = ""
    branch: str = ""
    date: str = ""
    created_at: str = ""
    total_units: int = 0
    provider_price: float = 0.0
    unit_price_rivas: float = 0.0
    unit_price_san_jorge: float = 0.0
    unit_price_isla: float = 0.0
    unit_price_vendor: float = 0.0
    total_expected: float = 0.0
    gross_profit: float = 0.0
    logistic_allocated: float = 0.0
    vendor_margin_percent: float = 0.0
    u_vendor: float = 0.0
    u_investor: float = 0.0
    u_neta: float = 0.0
    transfer_delta: int = 0
    version: int = 0

    @property
    def order_key(self) -> str:
        if self.seller_id and self.date:
            return build_order_key(self.seller_id, self.date)
        return self.order_id or self.id

    @property
    def upp(self) -> int:
        return max(1, int(self.units_per_package or 0))

    def stock_units(self) -> int:
        """Remaining units, derived from packages on rows that only carry packages."""
        if self.remaining_units is not None:
            return max(0, int(self.remaining_units))
        if self.remaining_packages is not None:
            return max(0, int(self.remaining_packages)) * self.upp
        return 0

    def stock_packages(self) -> int:
        if self.remaining_packages is not None:
            return max(0, int(self.remaining_packages))
        if self.remaining_units is not None:
            return max(0, int(self.remaining_units)) // self.upp
        return 0

    def price_for_branch(self, branch: str) -> float:
        if branch == RIVAS:
            return self.unit_price_rivas
        if branch == SAN_JORGE:
            return self.unit_price_san_jorge
        return self.unit_price_isla


@dataclass(frozen=True)
class TransferRecord:
    id: str
    created_at: str
    date: str
    created_by_email: str
    created_by_name: str
    product_id: str
    product_name: str
    provider_price: float
    unit_price_rivas: float
    unit_price_san_jorge: float
    unit_price_isla: float
    packages_moved: int
    units_moved: int
    from_seller_id: str
    from_seller_name: str
    from_order_key: str
    from_vendor_row_id: str
    to_seller_id: str
    to_seller_name: str
    to_order_key: str
    to_vendor_row_id: str
    comment: str
    dest_row_was_new: bool


@dataclass(frozen=True)
class AllocationEntry:
    vendor_row_id: str
    product_id: str
    units: int


@dataclass(frozen=True)
class Seller:
    id: str
    name: str
    branch: str = ""
    commission_percent: float = 0.0
    email: str = ""


@dataclass(frozen=True)
class CatalogEntry:
    product_id: str
    product_name: str
    created_at: str
    category: str = ""
    units_per_package: int = 0
    provider_price: float = 0.0
    unit_price_rivas: float = 0.0
    unit_price_san_jorge: float = 0.0
    unit_price_isla: float = 0.0
    gross_profit_per_pack_rivas: Optional[float] = None
    gross_profit_per_pack_san_jorge: Optional[float] = None
    gross_profit_per_pack_isla: Optional[float] = None
    logistic_allocated_per_pack: float = 0.0

    def price_for_branch(self, branch: str) -> float:
        if branch == RIVAS:
            return self.unit_price_rivas
        if branch == SAN_JORGE:
            return self.unit_price_san_jorge
        return self.unit_price_isla

    def has_explicit_gross(self) -> bool:
        return any(
            v is not None
            for v in (
                self.gross_profit_per_pack_rivas,
                self.gross_profit_per_pack_san_jorge,
                self.gross_profit_per_pack_isla,
            )
        )

    def gross_for_branch(self, branch: str) -> float:
        if branch == RIVAS:
            v = self.gross_profit_per_pack_rivas
        elif branch == SAN_JORGE:
            v = self.gross_profit_per_pack_san_jorge
        else:
            v = self.gross_profit_per_pack_isla
        return float(v or 0.0)


@dataclass(frozen=True)
class Actor:
    email: str
    name: str
    role: str


@dataclass(frozen=True)
class RowFinancials:
    row_id: str
    order_key: str
    branch: str
    price_per_package: float
    ordered_units: int
    sold_units: int
    line_total_expected: float
    unit_price: float
    line_sold_value: float
    line_remaining_value: float
    gross_profit_per_package: float
    gross_profit: float
    commission_percent: float
    vendor_share: float
    investor_share: float
    logistic_allocated: float
    net_profit: float


@dataclass(frozen=True)
class TransferAggregate:
    out: int = 0
    incoming: int = 0


@dataclass(frozen=True)
class OrderSummary:
    order_key: str
    seller_id: str
    seller_name: str
    date: str
    total_packages: int
    remaining_packages: int
    total_expected: float
    sold: float
    remaining: float
    gross_profit: float
    commission: float
    investor_share: float
    net_expected: float
    transferred_out: int = 0
    transferred_in: int = 0
