from __future__ import annotations

import threading
from dataclasses import replace
from typing import Callable, Optional, TypeVar

from vledger.domain.errors import ConcurrencyConflictError
from vledger.domain.models import CatalogEntry, Seller, TransferRecord, VendorOrderRow
from vledger.repositories.concurrency import run_with_retry
from vledger.repositories.unit_of_work import StagedUnitOfWork, new_id, now_iso

T = TypeVar("T")


class MemoryUnitOfWork(StagedUnitOfWork):
    def __init__(self, repo: "InMemoryRepository"):
        super().__init__()
        self.repo = repo

    def _load_row(self, row_id: str) -> Optional[VendorOrderRow]:
        with self.repo._lock:
            return self.repo._rows.get(row_id)

    def _query_seller_product(self, seller_id: str, product_id: str) -> list[VendorOrderRow]:
        with self.repo._lock:
            return [r for r in self.repo._rows.values() if r.seller_id == seller_id and r.product_id == product_id]

    def _query_order(self, order_key: str) -> list[VendorOrderRow]:
        with self.repo._lock:
            return [r for r in self.repo._rows.values() if r.order_key == order_key]

    def _commit(self, read_versions, updates, inserts, transfers) -> None:
        if self.repo.before_commit is not None:
            self.repo.before_commit(self)
        with self.repo._lock:
            for row_id, version in read_versions.items():
                current = self.repo._rows.get(row_id)
                if current is None or current.version != version:
                    raise ConcurrencyConflictError(f"Row {row_id} changed while the operation was running.")
            for row in inserts:
                if row.id in self.repo._rows:
                    raise ConcurrencyConflictError(f"Row {row.id} already exists.")

            staged = dict(self.repo._rows)
            for row in updates:
                staged[row.id] = replace(row, version=read_versions[row.id] + 1)
            for row in inserts:
                staged[row.id] = row
            self.repo._rows = staged
            self.repo._transfers.extend(transfers)


class InMemoryRepository:
    """Dict-backed store with the same transactional contract as SqliteRepository.

    ``before_commit`` runs right before a unit of work validates its reads,
    which lets callers simulate a concurrent writer or a failing store.
    """

    def __init__(self, transaction_attempts: int = 3, retry_backoff_seconds: float = 0.0):
        self.transaction_attempts = int(transaction_attempts)
        self.retry_backoff_seconds = float(retry_backoff_seconds)
        self.before_commit: Callable[[MemoryUnitOfWork], None] | None = None
        self._lock = threading.RLock()
        self._rows: dict[str, VendorOrderRow] = {}
        self._transfers: list[TransferRecord] = []
        self._sellers: dict[str, Seller] = {}
        self._catalog: list[CatalogEntry] = []

    def unit_of_work(self) -> MemoryUnitOfWork:
        return MemoryUnitOfWork(self)

    def run_in_transaction(self, fn: Callable[[MemoryUnitOfWork], T]) -> T:
        def _op() -> T:
            with self.unit_of_work() as uow:
                return fn(uow)

        return run_with_retry(_op, attempts=self.transaction_attempts, backoff_base=self.retry_backoff_seconds)

    # ---------- Vendor rows ----------
    def add_vendor_row(self, row: VendorOrderRow) -> VendorOrderRow:
        created = replace(row, id=row.id or new_id(), created_at=row.created_at or now_iso(), version=0)
        with self._lock:
            if created.id in self._rows:
                raise ValueError(f"Row {created.id} already exists.")
            self._rows[created.id] = created
        return created

    def get_vendor_row(self, row_id: str) -> Optional[VendorOrderRow]:
        with self._lock:
            return self._rows.get(row_id)

    def list_vendor_rows(self, seller_id: Optional[str] = None) -> list[VendorOrderRow]:
        with self._lock:
            return [r for r in self._rows.values() if seller_id is None or r.seller_id == seller_id]

    def force_update_row(self, row: VendorOrderRow) -> VendorOrderRow:
        """Write outside any unit of work, bumping the version like a concurrent client would."""
        with self._lock:
            current = self._rows[row.id]
            updated = replace(row, version=current.version + 1)
            self._rows[row.id] = updated
            return updated

    # ---------- Transfers ----------
    def list_transfers(
        self,
        from_seller_id: Optional[str] = None,
        to_seller_id: Optional[str] = None,
        start_iso: Optional[str] = None,
        end_iso: Optional[str] = None,
    ) -> list[TransferRecord]:
        with self._lock:
            records = list(self._transfers)
        out = [
            (t.created_at, i, t)
            for i, t in enumerate(records)
            if (from_seller_id is None or t.from_seller_id == from_seller_id)
            and (to_seller_id is None or t.to_seller_id == to_seller_id)
            and (start_iso is None or t.created_at >= start_iso)
            and (end_iso is None or t.created_at < end_iso)
        ]
        out.sort(key=lambda item: item[:2], reverse=True)
        return [t for _, _, t in out]

    # ---------- Sellers ----------
    def upsert_seller(self, seller: Seller) -> None:
        with self._lock:
            self._sellers[seller.id] = seller

    def get_seller(self, seller_id: str) -> Optional[Seller]:
        with self._lock:
            return self._sellers.get(seller_id)

    def list_sellers(self) -> list[Seller]:
        with self._lock:
            return sorted(self._sellers.values(), key=lambda s: s.name)

    # ---------- Catalog ----------
    def add_catalog_entry(self, entry: CatalogEntry) -> None:
        with self._lock:
            self._catalog.append(entry)

    def list_catalog_entries(self) -> list[CatalogEntry]:
        with self._lock:
            return list(self._catalog)
