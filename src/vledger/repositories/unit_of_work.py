from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import datetime
from typing import Optional

from vledger.domain.models import TransferRecord, VendorOrderRow


def new_id() -> str:
    return uuid.uuid4().hex


def now_iso() -> str:
    return datetime.now().isoformat(sep=" ", timespec="microseconds")


class StagedUnitOfWork:
    """Read-verify-write unit of work shared by the store adapters.

    Reads go to the store and remember each row's version. Writes are staged
    and only reach the store in ``_commit``, which must apply everything or
    nothing and raise ConcurrencyConflictError when a read version is stale.
    Leaving the ``with`` block with an exception discards the staged writes.
    """

    def __init__(self) -> None:
        self._read_versions: dict[str, int] = {}
        self._updates: dict[str, VendorOrderRow] = {}
        self._inserts: dict[str, VendorOrderRow] = {}
        self._transfers: list[TransferRecord] = []

    # ---------- store hooks ----------
    def _begin(self) -> None:
        return None

    def _load_row(self, row_id: str) -> Optional[VendorOrderRow]:
        raise NotImplementedError

    def _query_seller_product(self, seller_id: str, product_id: str) -> list[VendorOrderRow]:
        raise NotImplementedError

    def _query_order(self, order_key: str) -> list[VendorOrderRow]:
        raise NotImplementedError

    def _commit(
        self,
        read_versions: dict[str, int],
        updates: list[VendorOrderRow],
        inserts: list[VendorOrderRow],
        transfers: list[TransferRecord],
    ) -> None:
        raise NotImplementedError

    def _rollback(self) -> None:
        return None

    # ---------- context ----------
    def __enter__(self) -> "StagedUnitOfWork":
        self._begin()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            self._discard()
            self._rollback()
            return None
        try:
            self._commit(
                dict(self._read_versions),
                list(self._updates.values()),
                list(self._inserts.values()),
                list(self._transfers),
            )
        except BaseException:
            self._rollback()
            raise
        finally:
            self._discard()
        return None

    def _discard(self) -> None:
        self._read_versions.clear()
        self._updates.clear()
        self._inserts.clear()
        self._transfers.clear()

    # ---------- reads ----------
    def _track(self, row: VendorOrderRow) -> VendorOrderRow:
        if row.id in self._inserts:
            return self._inserts[row.id]
        self._read_versions.setdefault(row.id, row.version)
        return self._updates.get(row.id, row)

    def get_row(self, row_id: str) -> Optional[VendorOrderRow]:
        if row_id in self._inserts:
            return self._inserts[row_id]
        row = self._load_row(row_id)
        if row is None:
            return None
        return self._track(row)

    def rows_for_seller_product(self, seller_id: str, product_id: str) -> list[VendorOrderRow]:
        rows = [self._track(r) for r in self._query_seller_product(seller_id, product_id)]
        rows.extend(
            r for r in self._inserts.values() if r.seller_id == seller_id and r.product_id == product_id
        )
        return rows

    def rows_in_order(self, order_key: str) -> list[VendorOrderRow]:
        rows = [self._track(r) for r in self._query_order(order_key)]
        rows.extend(r for r in self._inserts.values() if r.order_key == order_key)
        return rows

    # ---------- writes ----------
    def update_row(self, row: VendorOrderRow) -> None:
        if row.id in self._inserts:
            self._inserts[row.id] = row
            return
        if row.id not in self._read_versions:
            raise ValueError(f"Row {row.id} must be read inside the transaction before it is updated.")
        self._updates[row.id] = row

    def add_row(self, row: VendorOrderRow) -> VendorOrderRow:
        created = replace(
            row,
            id=row.id or new_id(),
            created_at=row.created_at or now_iso(),
            version=0,
        )
        self._inserts[created.id] = created
        return created

    def add_transfer(self, record: TransferRecord) -> TransferRecord:
        created = replace(record, id=record.id or new_id(), created_at=record.created_at or now_iso())
        self._transfers.append(created)
        return created
