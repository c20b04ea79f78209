"""Package transfers between vendor rows.

A transfer moves whole packages of one product out of an origin row and into
either an existing row, a new row on an existing order, or a new row on a
brand-new order. Both legs and the audit record are written by one unit of
work; a stale read aborts the whole thing and the store retries it.
"""
from __future__ import annotations

import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Iterable, Optional

from vledger.config import LedgerSettings
from vledger.domain.errors import (
    InsufficientStockError,
    NotFoundError,
    ProductMismatchError,
    ValidationError,
)
from vledger.domain.models import (
    Actor,
    CatalogEntry,
    Seller,
    TransferAggregate,
    TransferRecord,
    VendorOrderRow,
    build_order_key,
    normalize_branch,
)
from vledger.repositories.contracts import LedgerRepository, UnitOfWork
from vledger.services import pricing_service
from vledger.services.auth_service import AuthService

log = logging.getLogger("vledger.transfers")


@dataclass(frozen=True)
class NewOrderTarget:
    seller_id: str
    date: str


@dataclass(frozen=True)
class TransferRequest:
    from_row_id: str
    packages: int
    comment: str
    to_row_id: Optional[str] = None
    to_order_key: Optional[str] = None
    new_order: Optional[NewOrderTarget] = None


@dataclass(frozen=True)
class TransferResult:
    record: TransferRecord
    origin: VendorOrderRow
    destination: VendorOrderRow


def _check_date(value: str) -> str:
    try:
        datetime.strptime(value, "%Y-%m-%d")
    except ValueError as exc:
        raise ValidationError("Destination date must be YYYY-MM-DD.") from exc
    return value


def _packages(value: object) -> int:
    if isinstance(value, bool):
        raise ValidationError("Packages must be a whole number.")
    try:
        n = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError, OverflowError) as exc:
        raise ValidationError("Packages must be a whole number.") from exc
    if n != value:
        raise ValidationError("Packages must be a whole number.")
    if n <= 0:
        raise ValidationError("Packages must be > 0.")
    return n


def _with_units(row: VendorOrderRow, delta_packages: int) -> VendorOrderRow:
    """Shift a row's package counters by ``delta_packages``, units follow with the row's own upp."""
    changes: dict = {
        "packages": max(0, int(row.packages or 0) + delta_packages),
        "remaining_packages": row.stock_packages() + delta_packages,
        "transfer_delta": int(row.transfer_delta or 0) + delta_packages,
    }
    if row.units_per_package > 0:
        changes["remaining_units"] = max(0, row.stock_units() + delta_packages * row.units_per_package)
    return replace(row, **changes)


def transfer_aggregates(records: Iterable[TransferRecord]) -> dict[str, TransferAggregate]:
    """Packages moved out of and into each order key."""
    out: Counter[str] = Counter()
    incoming: Counter[str] = Counter()
    for t in records:
        moved = int(t.packages_moved or 0)
        out[t.from_order_key] += moved
        incoming[t.to_order_key] += moved
    return {key: TransferAggregate(out=out[key], incoming=incoming[key]) for key in set(out) | set(incoming)}


def audit_transfer_deltas(
    rows: Iterable[VendorOrderRow], records: Iterable[TransferRecord]
) -> list[VendorOrderRow]:
    """Rows whose stored transfer_delta disagrees with the transfer log.

    A leg that created its destination row does not count toward that row.
    """
    expected: defaultdict[str, int] = defaultdict(int)
    for t in records:
        moved = int(t.packages_moved or 0)
        expected[t.from_vendor_row_id] -= moved
        if not t.dest_row_was_new:
            expected[t.to_vendor_row_id] += moved
    mismatched = [r for r in rows if int(r.transfer_delta or 0) != expected.get(r.id, 0)]
    for r in mismatched:
        log.warning(
            "transfer_delta_mismatch row=%s stored=%s expected=%s", r.id, r.transfer_delta, expected.get(r.id, 0)
        )
    return mismatched


class TransferService:
    def __init__(
        self,
        repo: LedgerRepository,
        auth: AuthService | None = None,
        settings: LedgerSettings | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.repo = repo
        self.auth = auth or AuthService()
        self.settings = settings or LedgerSettings()
        self.clock = clock

    def transfer(self, request: TransferRequest, actor: Optional[Actor]) -> TransferResult:
        self.auth.require_action(actor, "transfer_packages")
        n = _packages(request.packages)
        comment = (request.comment or "").strip()
        if not comment:
            raise ValidationError("A comment explaining the transfer is required.")

        targets = [t for t in (request.to_row_id, request.to_order_key, request.new_order) if t]
        if not targets:
            raise ValidationError("Select a destination row, order, or a new order.")
        if len(targets) > 1:
            raise ValidationError("Select only one destination.")
        if request.new_order is not None:
            if not (request.new_order.seller_id or "").strip() or not (request.new_order.date or "").strip():
                raise ValidationError("A new order needs a seller and a date.")
            _check_date(request.new_order.date.strip())

        catalog = pricing_service.latest_catalog(self.repo.list_catalog_entries())
        now = self.clock()

        def _tx(uow: UnitOfWork) -> TransferResult:
            origin = uow.get_row(request.from_row_id)
            if origin is None:
                raise NotFoundError(f"Origin row {request.from_row_id} not found.")
            if origin.stock_packages() < n:
                raise InsufficientStockError(
                    f"Origin row has {origin.stock_packages()} packages left, cannot move {n}."
                )

            dest_row, dest_seller, dest_order_key, dest_date = self._resolve_destination(uow, request, origin)
            dest_seller_id = dest_row.seller_id if dest_row is not None else dest_seller.id
            self._check_same_seller(request, origin, dest_seller_id, dest_date)

            new_origin = _with_units(origin, -n)
            uow.update_row(new_origin)

            if dest_row is not None:
                destination = _with_units(dest_row, n)
                uow.update_row(destination)
                dest_was_new = False
            else:
                entry = catalog.get(origin.product_id)
                destination = uow.add_row(
                    self._new_destination_row(origin, entry, dest_seller, dest_order_key, dest_date, n)
                )
                dest_was_new = True

            record = uow.add_transfer(
                TransferRecord(
                    id="",
                    created_at=now.isoformat(sep=" ", timespec="microseconds"),
                    date=now.date().isoformat(),
                    created_by_email=actor.email if actor else "",
                    created_by_name=actor.name if actor else "",
                    product_id=origin.product_id,
                    product_name=origin.product_name,
                    provider_price=origin.provider_price,
                    unit_price_rivas=origin.unit_price_rivas,
                    unit_price_san_jorge=origin.unit_price_san_jorge,
                    unit_price_isla=origin.unit_price_isla,
                    packages_moved=n,
                    units_moved=n * origin.units_per_package if origin.units_per_package > 0 else 0,
                    from_seller_id=origin.seller_id,
                    from_seller_name=origin.seller_name,
                    from_order_key=origin.order_key,
                    from_vendor_row_id=origin.id,
                    to_seller_id=destination.seller_id,
                    to_seller_name=destination.seller_name,
                    to_order_key=destination.order_key,
                    to_vendor_row_id=destination.id,
                    comment=comment,
                    dest_row_was_new=dest_was_new,
                )
            )
            return TransferResult(record=record, origin=new_origin, destination=destination)

        result = self.repo.run_in_transaction(_tx)
        log.info(
            "packages_transferred id=%s product=%s packages=%s from=%s to=%s new_row=%s by=%s",
            result.record.id,
            result.record.product_id,
            n,
            result.record.from_vendor_row_id,
            result.record.to_vendor_row_id,
            result.record.dest_row_was_new,
            result.record.created_by_email,
        )
        return result

    def _resolve_destination(
        self, uow: UnitOfWork, request: TransferRequest, origin: VendorOrderRow
    ) -> tuple[Optional[VendorOrderRow], Optional[Seller], str, str]:
        """Return (existing row or None, seller for a new row, order key, date)."""
        if request.to_row_id:
            if request.to_row_id == origin.id:
                raise ValidationError("Origin and destination rows must differ.")
            dest = uow.get_row(request.to_row_id)
            if dest is None:
                raise NotFoundError(f"Destination row {request.to_row_id} not found.")
            if dest.product_id != origin.product_id:
                raise ProductMismatchError(
                    f"Destination row holds {dest.product_id}, origin holds {origin.product_id}."
                )
            return dest, None, dest.order_key, dest.date

        if request.to_order_key:
            if request.to_order_key == origin.order_key:
                raise ValidationError("Destination order is the origin order.")
            order_rows = uow.rows_in_order(request.to_order_key)
            if not order_rows:
                raise NotFoundError(f"Destination order {request.to_order_key} not found.")
            match = next((r for r in order_rows if r.product_id == origin.product_id), None)
            if match is not None:
                return match, None, match.order_key, match.date
            head = order_rows[0]
            seller = self.repo.get_seller(head.seller_id) or Seller(
                id=head.seller_id,
                name=head.seller_name,
                branch=head.branch,
                commission_percent=head.vendor_margin_percent,
            )
            return None, seller, request.to_order_key, head.date

        target = request.new_order
        assert target is not None
        seller_id = target.seller_id.strip()
        date = target.date.strip()
        seller = self.repo.get_seller(seller_id)
        if seller is None:
            raise NotFoundError(f"Seller {seller_id} not found.")
        order_key = build_order_key(seller_id, date)
        if order_key == origin.order_key:
            raise ValidationError("Destination order is the origin order.")
        if uow.rows_in_order(order_key):
            raise ValidationError(f"Order {order_key} already exists; transfer into it by order key.")
        return None, seller, order_key, date

    def _check_same_seller(
        self, request: TransferRequest, origin: VendorOrderRow, dest_seller_id: str, dest_date: str
    ) -> None:
        if not self.settings.forbid_same_seller or dest_seller_id != origin.seller_id:
            return
        if request.new_order is not None and dest_date != origin.date:
            return
        raise ValidationError("Moving packages within the same seller needs a new order on another date.")

    def _new_destination_row(
        self,
        origin: VendorOrderRow,
        entry: Optional[CatalogEntry],
        seller: Seller,
        order_key: str,
        date: str,
        n: int,
    ) -> VendorOrderRow:
        branch = normalize_branch(seller.branch)
        upp = max(0, origin.units_per_package)
        if entry is not None and entry.units_per_package > 0:
            upp = entry.units_per_package
        price = pricing_service.price_per_package(origin, entry, branch)
        gross = pricing_service.gross_profit_per_package(origin, entry, branch) * n
        logistic = pricing_service.logistic_per_package(origin, entry) * n
        pct, vendor, investor = pricing_service.commission_split(gross, seller.commission_percent)
        source = entry if entry is not None else origin
        return VendorOrderRow(
            id="",
            seller_id=seller.id,
            product_id=origin.product_id,
            units_per_package=upp,
            packages=n,
            remaining_packages=n,
            remaining_units=n * upp,
            order_id=order_key,
            seller_name=seller.name,
            product_name=origin.product_name or (entry.product_name if entry else ""),
            category=origin.category or (entry.category if entry else ""),
            branch=branch,
            date=date,
            total_units=n * upp,
            provider_price=source.provider_price,
            unit_price_rivas=source.unit_price_rivas,
            unit_price_san_jorge=source.unit_price_san_jorge,
            unit_price_isla=source.unit_price_isla,
            unit_price_vendor=origin.unit_price_vendor,
            total_expected=price * n,
            gross_profit=gross,
            logistic_allocated=logistic,
            vendor_margin_percent=pct,
            u_vendor=vendor,
            u_investor=investor,
            u_neta=gross - logistic - vendor,
            transfer_delta=0,
        )

    # ---------- queries ----------
    def list_transfers(
        self,
        from_seller_id: Optional[str] = None,
        to_seller_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[TransferRecord]:
        """Newest first. ``start`` is inclusive, ``end`` exclusive."""
        return self.repo.list_transfers(
            from_seller_id=from_seller_id,
            to_seller_id=to_seller_id,
            start_iso=start.isoformat(sep=" ") if start else None,
            end_iso=end.isoformat(sep=" ") if end else None,
        )

    def transfer_aggregates(self, records: Optional[Iterable[TransferRecord]] = None) -> dict[str, TransferAggregate]:
        return transfer_aggregates(self.repo.list_transfers() if records is None else records)

    def audit_transfer_deltas(self) -> list[VendorOrderRow]:
        return audit_transfer_deltas(self.repo.list_vendor_rows(), self.repo.list_transfers())
