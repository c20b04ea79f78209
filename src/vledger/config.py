from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import os
import sys


@dataclass(frozen=True)
class AppPaths:
    base_dir: Path
    db_path: Path
    logs_dir: Path


@dataclass(frozen=True)
class LedgerSettings:
    db_timeout_seconds: float = 5.0
    transaction_attempts: int = 3
    retry_backoff_seconds: float = 0.05
    forbid_same_seller: bool = False


def _windows_appdata() -> Path:
    return Path(os.environ.get("APPDATA", str(Path.home() / "AppData" / "Roaming")))


def _mac_app_support() -> Path:
    return Path.home() / "Library" / "Application Support"


def get_app_paths(app_name: str = "VendorLedger") -> AppPaths:
    override = os.environ.get("VLEDGER_HOME", "").strip()
    if override:
        base = Path(override)
    elif sys.platform.startswith("win"):
        base = _windows_appdata() / app_name
    elif sys.platform == "darwin":
        base = _mac_app_support() / app_name
    else:
        base = Path.home() / f".{app_name.lower()}"

    logs = base / "logs"
    db = base / "ledger.db"

    base.mkdir(parents=True, exist_ok=True)
    logs.mkdir(parents=True, exist_ok=True)

    return AppPaths(base_dir=base, db_path=db, logs_dir=logs)


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name, "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


def load_settings() -> LedgerSettings:
    defaults = LedgerSettings()
    try:
        timeout = float(os.environ.get("VLEDGER_DB_TIMEOUT", defaults.db_timeout_seconds))
        attempts = int(os.environ.get("VLEDGER_TX_ATTEMPTS", defaults.transaction_attempts))
    except ValueError as exc:
        raise ValueError(f"Invalid ledger setting: {exc}") from exc
    return LedgerSettings(
        db_timeout_seconds=max(0.1, timeout),
        transaction_attempts=max(1, attempts),
        retry_backoff_seconds=defaults.retry_backoff_seconds,
        forbid_same_seller=_env_flag("VLEDGER_FORBID_SAME_SELLER", defaults.forbid_same_seller),
    )
