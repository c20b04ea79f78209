from __future__ import annotations

import logging
from collections import Counter
from dataclasses import replace
from typing import Iterable, Optional

from vledger.domain.errors import ValidationError
from vledger.domain.models import Actor, AllocationEntry, VendorOrderRow
from vledger.repositories.contracts import LedgerRepository, UnitOfWork
from vledger.services.auth_service import AuthService

log = logging.getLogger("vledger.sales")


def _whole_quantity(value: object, label: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{label} must be a whole number.")
    try:
        qty = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError, OverflowError) as exc:
        raise ValidationError(f"{label} must be a whole number.") from exc
    if qty != value:
        raise ValidationError(f"{label} must be a whole number.")
    if qty < 0:
        raise ValidationError(f"{label} must be >= 0.")
    return qty


def fifo_candidates(rows: Iterable[VendorOrderRow]) -> list[VendorOrderRow]:
    """Rows with stock, oldest batch first."""
    return sorted((r for r in rows if r.stock_units() > 0), key=lambda r: (r.date, r.created_at, r.id))


class AllocationService:
    """Draws sale quantities down from a seller's vendor rows, oldest batch first.

    A shortfall never blocks the sale: whatever stock exists is allocated and the
    gap is logged. The draw-down runs in a version-checked unit of work, so two
    sales racing for the same row cannot both consume it.
    Calling allocate twice for one sale allocates twice.
    """

    def __init__(self, repo: LedgerRepository, auth: AuthService | None = None):
        self.repo = repo
        self.auth = auth or AuthService()

    def allocate_sale(
        self,
        seller_id: str,
        product_id: str,
        quantity_units: int,
        actor: Optional[Actor] = None,
        sale_id: Optional[str] = None,
    ) -> list[AllocationEntry]:
        qty = _whole_quantity(quantity_units, "Quantity")
        if qty == 0:
            return []
        self.auth.require_action(actor, "allocate_sale")

        def _tx(uow: UnitOfWork) -> tuple[list[AllocationEntry], int]:
            return self._draw_down(uow, fifo_candidates(uow.rows_for_seller_product(seller_id, product_id)), qty)

        allocations, shortfall = self.repo.run_in_transaction(_tx)
        self._log_result(seller_id, product_id, qty, allocations, shortfall, sale_id)
        return allocations

    def allocate_sale_packages(
        self,
        seller_id: str,
        product_id: str,
        quantity_packages: int,
        actor: Optional[Actor] = None,
        sale_id: Optional[str] = None,
    ) -> list[AllocationEntry]:
        """Package-denominated sale; converted with the oldest row's units per package."""
        packs = _whole_quantity(quantity_packages, "Packages")
        if packs == 0:
            return []
        self.auth.require_action(actor, "allocate_sale")

        def _tx(uow: UnitOfWork) -> tuple[list[AllocationEntry], int, int]:
            candidates = fifo_candidates(uow.rows_for_seller_product(seller_id, product_id))
            upp = next((r.units_per_package for r in candidates if r.units_per_package > 0), 1)
            need = packs * upp
            allocations, shortfall = self._draw_down(uow, candidates, need)
            return allocations, shortfall, need

        allocations, shortfall, need = self.repo.run_in_transaction(_tx)
        self._log_result(seller_id, product_id, need, allocations, shortfall, sale_id)
        return allocations

    def _draw_down(
        self, uow: UnitOfWork, candidates: list[VendorOrderRow], need: int
    ) -> tuple[list[AllocationEntry], int]:
        allocations: list[AllocationEntry] = []
        for row in candidates:
            if need <= 0:
                break
            available = row.stock_units()
            take = min(available, need)
            left = available - take
            uow.update_row(replace(row, remaining_units=left, remaining_packages=left // row.upp))
            allocations.append(AllocationEntry(vendor_row_id=row.id, product_id=row.product_id, units=take))
            need -= take
        return allocations, need

    def _log_result(
        self,
        seller_id: str,
        product_id: str,
        requested: int,
        allocations: list[AllocationEntry],
        shortfall: int,
        sale_id: Optional[str],
    ) -> None:
        if shortfall > 0:
            log.warning(
                "sale_allocation_short seller=%s product=%s requested=%s missing=%s sale=%s",
                seller_id,
                product_id,
                requested,
                shortfall,
                sale_id,
            )
        log.info(
            "sale_allocated seller=%s product=%s units=%s rows=%s sale=%s",
            seller_id,
            product_id,
            requested - shortfall,
            len(allocations),
            sale_id,
        )

    def restore_sale(self, allocations: Iterable[AllocationEntry], actor: Optional[Actor] = None) -> int:
        """Give allocated units back to their rows. Returns the units restored."""
        allocations = list(allocations)
        if not allocations:
            return 0
        self.auth.require_action(actor, "restore_sale")

        units_by_row: Counter[str] = Counter()
        for a in allocations:
            if not a.vendor_row_id:
                raise ValidationError("Allocation without vendor row.")
            units_by_row[a.vendor_row_id] += _whole_quantity(a.units, "Units")

        def _tx(uow: UnitOfWork) -> tuple[int, list[str]]:
            restored = 0
            missing: list[str] = []
            for row_id, units in units_by_row.items():
                if units <= 0:
                    continue
                row = uow.get_row(row_id)
                if row is None:
                    missing.append(row_id)
                    continue
                total = row.stock_units() + units
                uow.update_row(replace(row, remaining_units=total, remaining_packages=total // row.upp))
                restored += units
            return restored, missing

        restored, missing = self.repo.run_in_transaction(_tx)
        if missing:
            log.warning("sale_restore_rows_missing rows=%s", ",".join(missing))
        log.info("sale_restored units=%s rows=%s", restored, len(units_by_row) - len(missing))
        return restored
