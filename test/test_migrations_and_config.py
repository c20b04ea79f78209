import json
import logging
import sqlite3
from pathlib import Path

import pytest
from conftest import ADMIN, SELLER, VIEWER, make_row

from vledger.application.container import build_container
from vledger.config import LedgerSettings, get_app_paths, load_settings
from vledger.domain.errors import AuthorizationError
from vledger.logging_config import JsonFormatter
from vledger.repositories.sqlite_repo import SqliteRepository
from vledger.services.auth_service import AuthService


def _tables(repo: SqliteRepository) -> set[str]:
    conn = repo._conn()
    cur = conn.cursor()
    cur.execute("SELECT name FROM sqlite_master WHERE type='table'")
    names = {r[0] for r in cur.fetchall()}
    conn.close()
    return names


def test_migrations_create_ledger_tables(tmp_path: Path):
    repo = SqliteRepository(tmp_path / "m.db")
    repo.init_db()
    repo.init_db()

    assert {"vendor_order_rows", "transfer_records", "sellers", "catalog_entries"} <= _tables(repo)
    assert repo.integrity_check() == "ok"


def test_constraints_reject_negative_stock(tmp_path: Path):
    repo = SqliteRepository(tmp_path / "c.db")
    repo.init_db()

    with pytest.raises(sqlite3.IntegrityError):
        repo.add_vendor_row(make_row("A", remaining_packages=-1))
    with pytest.raises(sqlite3.IntegrityError):
        repo.add_vendor_row(make_row("B", branch="GRANADA"))
    assert repo.list_vendor_rows() == []


def test_migration_failure_restores_db(tmp_path: Path):
    class BrokenMigrationRepo(SqliteRepository):
        def _migration_v2_directory_and_catalog(self, cur):
            raise RuntimeError("forced migration failure")

    db = tmp_path / "broken.db"
    repo = SqliteRepository(db)
    repo.init_db()
    repo.add_vendor_row(make_row("A"))

    conn = repo._conn()
    cur = conn.cursor()
    cur.execute("DELETE FROM schema_migrations WHERE version = 2")
    conn.commit()
    cur.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations")
    before = int(cur.fetchone()[0])
    conn.close()

    broken = BrokenMigrationRepo(db)

    with pytest.raises(RuntimeError, match="Original database restored"):
        broken.run_migrations()

    conn = repo._conn()
    cur = conn.cursor()
    cur.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations")
    after = int(cur.fetchone()[0])
    conn.close()

    assert after == before
    assert repo.get_vendor_row("A") is not None


def test_app_paths_honor_home_override(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("VLEDGER_HOME", str(tmp_path / "home"))

    paths = get_app_paths()

    assert paths.base_dir == tmp_path / "home"
    assert paths.db_path == tmp_path / "home" / "ledger.db"
    assert paths.logs_dir.is_dir()


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("VLEDGER_DB_TIMEOUT", "2.5")
    monkeypatch.setenv("VLEDGER_TX_ATTEMPTS", "0")
    monkeypatch.setenv("VLEDGER_FORBID_SAME_SELLER", "yes")

    settings = load_settings()

    assert settings.db_timeout_seconds == 2.5
    assert settings.transaction_attempts == 1
    assert settings.forbid_same_seller is True


def test_settings_defaults(monkeypatch):
    for name in ("VLEDGER_DB_TIMEOUT", "VLEDGER_TX_ATTEMPTS", "VLEDGER_FORBID_SAME_SELLER"):
        monkeypatch.delenv(name, raising=False)

    assert load_settings() == LedgerSettings()


def test_invalid_setting_is_reported(monkeypatch):
    monkeypatch.setenv("VLEDGER_TX_ATTEMPTS", "many")

    with pytest.raises(ValueError, match="Invalid ledger setting"):
        load_settings()


def test_container_wires_services(tmp_path: Path):
    settings = LedgerSettings(forbid_same_seller=True, transaction_attempts=5)

    container = build_container(tmp_path / "app.db", settings=settings)

    assert container.repo.transaction_attempts == 5
    assert container.transfers.settings.forbid_same_seller is True
    assert container.allocation.repo is container.repo
    assert container.reporting.summaries() == []


def test_json_formatter_emits_one_object_per_record():
    record = logging.LogRecord("vledger.transfers", logging.INFO, __file__, 1, "moved %s", (4,), None)

    payload = json.loads(JsonFormatter().format(record))

    assert payload["logger"] == "vledger.transfers"
    assert payload["level"] == "INFO"
    assert payload["message"] == "moved 4"


def test_permission_matrix():
    auth = AuthService()

    assert auth.can(ADMIN, "transfer_packages")
    assert not auth.can(SELLER, "transfer_packages")
    assert auth.can(SELLER, "allocate_sale")
    assert not auth.can(VIEWER, "allocate_sale")
    assert auth.can(VIEWER, "view_reports")
    assert auth.can(None, "allocate_sale")
    assert not auth.can(None, "transfer_packages")
    assert not auth.can(ADMIN, "drop_everything")

    with pytest.raises(AuthorizationError, match="viewer"):
        auth.require_action(VIEWER, "restore_sale")
