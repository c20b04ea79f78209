from __future__ import annotations

from typing import Callable, Optional, Protocol, TypeVar

from vledger.domain.models import CatalogEntry, Seller, TransferRecord, VendorOrderRow

T = TypeVar("T")


class UnitOfWork(Protocol):
    def __enter__(self) -> "UnitOfWork": ...
    def __exit__(self, exc_type, exc, tb) -> None: ...
    def get_row(self, row_id: str) -> Optional[VendorOrderRow]: ...
    def rows_for_seller_product(self, seller_id: str, product_id: str) -> list[VendorOrderRow]: ...
    def rows_in_order(self, order_key: str) -> list[VendorOrderRow]: ...
    def update_row(self, row: VendorOrderRow) -> None: ...
    def add_row(self, row: VendorOrderRow) -> VendorOrderRow: ...
    def add_transfer(self, record: TransferRecord) -> TransferRecord: ...


class VendorRowStore(Protocol):
    def get_vendor_row(self, row_id: str) -> Optional[VendorOrderRow]: ...
    def list_vendor_rows(self, seller_id: Optional[str] = None) -> list[VendorOrderRow]: ...
    def add_vendor_row(self, row: VendorOrderRow) -> VendorOrderRow: ...


class TransferStore(Protocol):
    def list_transfers(
        self,
        from_seller_id: Optional[str] = None,
        to_seller_id: Optional[str] = None,
        start_iso: Optional[str] = None,
        end_iso: Optional[str] = None,
    ) -> list[TransferRecord]: ...


class SellerDirectory(Protocol):
    def get_seller(self, seller_id: str) -> Optional[Seller]: ...
    def list_sellers(self) -> list[Seller]: ...
    def upsert_seller(self, seller: Seller) -> None: ...


class PriceCatalog(Protocol):
    def add_catalog_entry(self, entry: CatalogEntry) -> None: ...
    def list_catalog_entries(self) -> list[CatalogEntry]: ...


class LedgerRepository(VendorRowStore, TransferStore, SellerDirectory, PriceCatalog, Protocol):
    def run_in_transaction(self, fn: Callable[[UnitOfWork], T]) -> T: ...
