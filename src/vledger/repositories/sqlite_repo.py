from __future__ import annotations

import logging
import shutil
import sqlite3
from dataclasses import fields, replace
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, TypeVar

from vledger.domain.documents import TRANSFER_RECORDS, VENDOR_ORDER_ROWS
from vledger.domain.errors import ConcurrencyConflictError
from vledger.domain.models import CatalogEntry, Seller, TransferRecord, VendorOrderRow
from vledger.repositories.concurrency import run_with_retry
from vledger.repositories.unit_of_work import StagedUnitOfWork, new_id, now_iso

log = logging.getLogger(__name__)

T = TypeVar("T")

ROW_COLUMNS = tuple(f.name for f in fields(VendorOrderRow))
TRANSFER_COLUMNS = tuple(f.name for f in fields(TransferRecord))
CATALOG_COLUMNS = tuple(f.name for f in fields(CatalogEntry))

ORDER_KEY_SQL = (
    "CASE WHEN seller_id <> '' AND date <> '' THEN seller_id || '__' || date "
    "WHEN order_id <> '' THEN order_id ELSE id END"
)


def _is_lock_error(exc: sqlite3.OperationalError) -> bool:
    msg = str(exc).lower()
    return "locked" in msg or "busy" in msg


class SqliteUnitOfWork(StagedUnitOfWork):
    def __init__(self, repo: "SqliteRepository"):
        super().__init__()
        self.repo = repo
        self._conn: sqlite3.Connection | None = None

    def _begin(self) -> None:
        conn = self.repo._conn()
        conn.isolation_level = None
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.OperationalError as exc:
            conn.close()
            if _is_lock_error(exc):
                raise ConcurrencyConflictError("Ledger is busy with another write.") from exc
            raise
        self._conn = conn

    def _cursor(self) -> sqlite3.Cursor:
        if self._conn is None:
            raise RuntimeError("Unit of work used outside of its 'with' block.")
        return self._conn.cursor()

    def _load_row(self, row_id: str) -> Optional[VendorOrderRow]:
        cur = self._cursor()
        cur.execute(f"SELECT {', '.join(ROW_COLUMNS)} FROM {VENDOR_ORDER_ROWS} WHERE id=?", (row_id,))
        r = cur.fetchone()
        return self.repo._row_from_db(r) if r else None

    def _query_seller_product(self, seller_id: str, product_id: str) -> list[VendorOrderRow]:
        cur = self._cursor()
        cur.execute(
            f"""
            SELECT {', '.join(ROW_COLUMNS)}
            FROM {VENDOR_ORDER_ROWS}
            WHERE seller_id=? AND product_id=?
            ORDER BY rowid
            """,
            (seller_id, product_id),
        )
        return [self.repo._row_from_db(r) for r in cur.fetchall()]

    def _query_order(self, order_key: str) -> list[VendorOrderRow]:
        cur = self._cursor()
        cur.execute(
            f"""
            SELECT {', '.join(ROW_COLUMNS)}
            FROM {VENDOR_ORDER_ROWS}
            WHERE ({ORDER_KEY_SQL}) = ?
            ORDER BY rowid
            """,
            (order_key,),
        )
        return [self.repo._row_from_db(r) for r in cur.fetchall()]

    def _commit(self, read_versions, updates, inserts, transfers) -> None:
        cur = self._cursor()
        try:
            for row in updates:
                if not self.repo._write_row_update(cur, row, read_versions[row.id]):
                    raise ConcurrencyConflictError(f"Row {row.id} changed while the operation was running.")
            for row in inserts:
                self.repo._insert_row(cur, row)
            for record in transfers:
                self.repo._insert_transfer(cur, record)
            cur.execute("COMMIT")
        except sqlite3.OperationalError as exc:
            if _is_lock_error(exc):
                raise ConcurrencyConflictError("Ledger is busy with another write.") from exc
            raise
        assert self._conn is not None
        self._conn.close()
        self._conn = None

    def _rollback(self) -> None:
        if self._conn is None:
            return
        try:
            if self._conn.in_transaction:
                self._conn.execute("ROLLBACK")
        finally:
            self._conn.close()
            self._conn = None


class SqliteRepository:
    def __init__(
        self,
        db_path: Path | str,
        timeout_seconds: float = 5.0,
        transaction_attempts: int = 3,
        retry_backoff_seconds: float = 0.05,
    ):
        self.db_path = str(db_path)
        self.timeout_seconds = float(timeout_seconds)
        self.transaction_attempts = int(transaction_attempts)
        self.retry_backoff_seconds = float(retry_backoff_seconds)

    def _conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=self.timeout_seconds)
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    def init_db(self) -> None:
        self.run_migrations()

    def run_migrations(self) -> None:
        conn = self._conn()
        backup_path = self._create_pre_migration_backup()
        try:
            cur = conn.cursor()
            cur.execute("BEGIN")
            cur.execute("CREATE TABLE IF NOT EXISTS schema_migrations (version INTEGER PRIMARY KEY, applied_at TEXT NOT NULL)")
            cur.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations")
            current_version = int(cur.fetchone()[0])

            migrations = [
                (1, self._migration_v1_ledger),
                (2, self._migration_v2_directory_and_catalog),
            ]

            for version, migration in migrations:
                if version <= current_version:
                    continue
                migration(cur)
                cur.execute(
                    "INSERT INTO schema_migrations (version, applied_at) VALUES (?, datetime('now'))",
                    (version,),
                )
            conn.commit()
        except Exception as exc:
            conn.rollback()
            self._restore_pre_migration_backup(backup_path)
            raise RuntimeError(
                "Database migration failed. Original database restored from automatic backup."
            ) from exc
        finally:
            conn.close()

    def _create_pre_migration_backup(self) -> Path | None:
        db_file = Path(self.db_path)
        if not db_file.exists() or db_file.stat().st_size == 0:
            return None
        backup_file = db_file.with_name(f"{db_file.stem}.pre_migration_{datetime.now().strftime('%Y%m%d%H%M%S')}.bak")
        shutil.copy2(db_file, backup_file)
        return backup_file

    def _restore_pre_migration_backup(self, backup_path: Path | None) -> None:
        if backup_path is None or not backup_path.exists():
            return
        shutil.copy2(backup_path, self.db_path)

    def _migration_v1_ledger(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS vendor_order_rows (
                id TEXT PRIMARY KEY,
                seller_id TEXT NOT NULL,
                product_id TEXT NOT NULL,
                units_per_package INTEGER NOT NULL DEFAULT 1 CHECK(units_per_package >= 0),
                packages INTEGER NOT NULL DEFAULT 0 CHECK(packages >= 0),
                remaining_packages INTEGER CHECK(remaining_packages IS NULL OR remaining_packages >= 0),
                remaining_units INTEGER CHECK(remaining_units IS NULL OR remaining_units >= 0),
                order_id TEXT NOT NULL DEFAULT '',
                seller_name TEXT NOT NULL DEFAULT '',
                product_name TEXT NOT NULL DEFAULT '',
                category TEXT NOT NULL DEFAULT '',
                branch TEXT NOT NULL DEFAULT '' CHECK(branch IN ('', 'RIVAS', 'SAN_JORGE', 'ISLA')),
                date TEXT NOT NULL DEFAULT '',
                created_at TEXT NOT NULL,
                total_units INTEGER NOT NULL DEFAULT 0,
                provider_price REAL NOT NULL DEFAULT 0,
                unit_price_rivas REAL NOT NULL DEFAULT 0,
                unit_price_san_jorge REAL NOT NULL DEFAULT 0,
                unit_price_isla REAL NOT NULL DEFAULT 0,
                unit_price_vendor REAL NOT NULL DEFAULT 0,
                total_expected REAL NOT NULL DEFAULT 0,
                gross_profit REAL NOT NULL DEFAULT 0,
                logistic_allocated REAL NOT NULL DEFAULT 0,
                vendor_margin_percent REAL NOT NULL DEFAULT 0,
                u_vendor REAL NOT NULL DEFAULT 0,
                u_investor REAL NOT NULL DEFAULT 0,
                u_neta REAL NOT NULL DEFAULT 0,
                transfer_delta INTEGER NOT NULL DEFAULT 0,
                version INTEGER NOT NULL DEFAULT 0
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS ix_vendor_rows_seller_product ON vendor_order_rows (seller_id, product_id)"
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS transfer_records (
                id TEXT PRIMARY KEY,
                created_at TEXT NOT NULL,
                date TEXT NOT NULL,
                created_by_email TEXT NOT NULL DEFAULT '',
                created_by_name TEXT NOT NULL DEFAULT '',
                product_id TEXT NOT NULL,
                product_name TEXT NOT NULL DEFAULT '',
                provider_price REAL NOT NULL DEFAULT 0,
                unit_price_rivas REAL NOT NULL DEFAULT 0,
                unit_price_san_jorge REAL NOT NULL DEFAULT 0,
                unit_price_isla REAL NOT NULL DEFAULT 0,
                packages_moved INTEGER NOT NULL CHECK(packages_moved > 0),
                units_moved INTEGER NOT NULL DEFAULT 0,
                from_seller_id TEXT NOT NULL,
                from_seller_name TEXT NOT NULL DEFAULT '',
                from_order_key TEXT NOT NULL,
                from_vendor_row_id TEXT NOT NULL REFERENCES vendor_order_rows(id),
                to_seller_id TEXT NOT NULL,
                to_seller_name TEXT NOT NULL DEFAULT '',
                to_order_key TEXT NOT NULL,
                to_vendor_row_id TEXT NOT NULL REFERENCES vendor_order_rows(id),
                comment TEXT NOT NULL CHECK(length(trim(comment)) > 0),
                dest_row_was_new INTEGER NOT NULL CHECK(dest_row_was_new IN (0,1))
            )
            """
        )
        cur.execute("CREATE INDEX IF NOT EXISTS ix_transfers_from_seller ON transfer_records (from_seller_id)")
        cur.execute("CREATE INDEX IF NOT EXISTS ix_transfers_to_seller ON transfer_records (to_seller_id)")
        cur.execute("CREATE INDEX IF NOT EXISTS ix_transfers_created_at ON transfer_records (created_at)")

    def _migration_v2_directory_and_catalog(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS sellers (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                branch TEXT NOT NULL DEFAULT '',
                commission_percent REAL NOT NULL DEFAULT 0,
                email TEXT NOT NULL DEFAULT ''
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS catalog_entries (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                product_id TEXT NOT NULL,
                product_name TEXT NOT NULL DEFAULT '',
                created_at TEXT NOT NULL,
                category TEXT NOT NULL DEFAULT '',
                units_per_package INTEGER NOT NULL DEFAULT 0,
                provider_price REAL NOT NULL DEFAULT 0,
                unit_price_rivas REAL NOT NULL DEFAULT 0,
                unit_price_san_jorge REAL NOT NULL DEFAULT 0,
                unit_price_isla REAL NOT NULL DEFAULT 0,
                gross_profit_per_pack_rivas REAL,
                gross_profit_per_pack_san_jorge REAL,
                gross_profit_per_pack_isla REAL,
                logistic_allocated_per_pack REAL NOT NULL DEFAULT 0
            )
            """
        )
        cur.execute("CREATE INDEX IF NOT EXISTS ix_catalog_product ON catalog_entries (product_id, created_at)")

    # ---------- Mapping ----------
    @staticmethod
    def _row_from_db(r: tuple) -> VendorOrderRow:
        return VendorOrderRow(**dict(zip(ROW_COLUMNS, r)))

    @staticmethod
    def _transfer_from_db(r: tuple) -> TransferRecord:
        data = dict(zip(TRANSFER_COLUMNS, r))
        data["dest_row_was_new"] = bool(data["dest_row_was_new"])
        return TransferRecord(**data)

    def _insert_row(self, cur: sqlite3.Cursor, row: VendorOrderRow) -> None:
        placeholders = ", ".join("?" for _ in ROW_COLUMNS)
        cur.execute(
            f"INSERT INTO {VENDOR_ORDER_ROWS} ({', '.join(ROW_COLUMNS)}) VALUES ({placeholders})",
            tuple(getattr(row, c) for c in ROW_COLUMNS),
        )

    def _write_row_update(self, cur: sqlite3.Cursor, row: VendorOrderRow, expected_version: int) -> bool:
        cols = [c for c in ROW_COLUMNS if c not in ("id", "version")]
        assignments = ", ".join(f"{c}=?" for c in cols)
        cur.execute(
            f"UPDATE {VENDOR_ORDER_ROWS} SET {assignments}, version=version+1 WHERE id=? AND version=?",
            (*[getattr(row, c) for c in cols], row.id, int(expected_version)),
        )
        return cur.rowcount > 0

    def _insert_transfer(self, cur: sqlite3.Cursor, record: TransferRecord) -> None:
        placeholders = ", ".join("?" for _ in TRANSFER_COLUMNS)
        values = tuple(
            int(getattr(record, c)) if c == "dest_row_was_new" else getattr(record, c) for c in TRANSFER_COLUMNS
        )
        cur.execute(f"INSERT INTO {TRANSFER_RECORDS} ({', '.join(TRANSFER_COLUMNS)}) VALUES ({placeholders})", values)

    # ---------- Transactions ----------
    def unit_of_work(self) -> SqliteUnitOfWork:
        return SqliteUnitOfWork(self)

    def run_in_transaction(self, fn: Callable[[SqliteUnitOfWork], T]) -> T:
        def _op() -> T:
            with self.unit_of_work() as uow:
                return fn(uow)

        return run_with_retry(_op, attempts=self.transaction_attempts, backoff_base=self.retry_backoff_seconds)

    # ---------- Vendor rows ----------
    def add_vendor_row(self, row: VendorOrderRow) -> VendorOrderRow:
        created = replace(row, id=row.id or new_id(), created_at=row.created_at or now_iso(), version=0)
        conn = self._conn()
        cur = conn.cursor()
        try:
            self._insert_row(cur, created)
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        return created

    def get_vendor_row(self, row_id: str) -> Optional[VendorOrderRow]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(f"SELECT {', '.join(ROW_COLUMNS)} FROM {VENDOR_ORDER_ROWS} WHERE id=?", (row_id,))
        r = cur.fetchone()
        conn.close()
        return self._row_from_db(r) if r else None

    def list_vendor_rows(self, seller_id: Optional[str] = None) -> list[VendorOrderRow]:
        conn = self._conn()
        cur = conn.cursor()
        if seller_id is None:
            cur.execute(f"SELECT {', '.join(ROW_COLUMNS)} FROM {VENDOR_ORDER_ROWS} ORDER BY rowid")
        else:
            cur.execute(
                f"SELECT {', '.join(ROW_COLUMNS)} FROM {VENDOR_ORDER_ROWS} WHERE seller_id=? ORDER BY rowid",
                (seller_id,),
            )
        rows = cur.fetchall()
        conn.close()
        return [self._row_from_db(r) for r in rows]

    # ---------- Transfers ----------
    def list_transfers(
        self,
        from_seller_id: Optional[str] = None,
        to_seller_id: Optional[str] = None,
        start_iso: Optional[str] = None,
        end_iso: Optional[str] = None,
    ) -> list[TransferRecord]:
        clauses: list[str] = []
        params: list[str] = []
        if from_seller_id is not None:
            clauses.append("from_seller_id = ?")
            params.append(from_seller_id)
        if to_seller_id is not None:
            clauses.append("to_seller_id = ?")
            params.append(to_seller_id)
        if start_iso is not None:
            clauses.append("created_at >= ?")
            params.append(start_iso)
        if end_iso is not None:
            clauses.append("created_at < ?")
            params.append(end_iso)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            f"SELECT {', '.join(TRANSFER_COLUMNS)} FROM {TRANSFER_RECORDS} {where} ORDER BY created_at DESC, rowid DESC",
            params,
        )
        rows = cur.fetchall()
        conn.close()
        return [self._transfer_from_db(r) for r in rows]

    # ---------- Sellers ----------
    def upsert_seller(self, seller: Seller) -> None:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO sellers (id, name, branch, commission_percent, email) VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name=excluded.name, branch=excluded.branch,
                commission_percent=excluded.commission_percent, email=excluded.email
            """,
            (seller.id, seller.name, seller.branch, float(seller.commission_percent), seller.email),
        )
        conn.commit()
        conn.close()

    def get_seller(self, seller_id: str) -> Optional[Seller]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT id, name, branch, commission_percent, email FROM sellers WHERE id=?", (seller_id,))
        r = cur.fetchone()
        conn.close()
        if not r:
            return None
        return Seller(id=str(r[0]), name=str(r[1]), branch=str(r[2]), commission_percent=float(r[3]), email=str(r[4]))

    def list_sellers(self) -> list[Seller]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT id, name, branch, commission_percent, email FROM sellers ORDER BY name")
        rows = cur.fetchall()
        conn.close()
        return [
            Seller(id=str(r[0]), name=str(r[1]), branch=str(r[2]), commission_percent=float(r[3]), email=str(r[4]))
            for r in rows
        ]

    # ---------- Catalog ----------
    def add_catalog_entry(self, entry: CatalogEntry) -> None:
        conn = self._conn()
        cur = conn.cursor()
        placeholders = ", ".join("?" for _ in CATALOG_COLUMNS)
        cur.execute(
            f"INSERT INTO catalog_entries ({', '.join(CATALOG_COLUMNS)}) VALUES ({placeholders})",
            tuple(getattr(entry, c) for c in CATALOG_COLUMNS),
        )
        conn.commit()
        conn.close()

    def list_catalog_entries(self) -> list[CatalogEntry]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(f"SELECT {', '.join(CATALOG_COLUMNS)} FROM catalog_entries ORDER BY id")
        rows = cur.fetchall()
        conn.close()
        return [CatalogEntry(**dict(zip(CATALOG_COLUMNS, r))) for r in rows]

    def integrity_check(self) -> str:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("PRAGMA integrity_check")
        row = cur.fetchone()
        conn.close()
        return str(row[0]) if row else "unknown"
