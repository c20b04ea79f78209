from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from vledger.config import LedgerSettings, load_settings
from vledger.logging_config import setup_logging
from vledger.repositories.sqlite_repo import SqliteRepository
from vledger.services.allocation_service import AllocationService
from vledger.services.auth_service import AuthService
from vledger.services.excel_service import ExcelService
from vledger.services.reporting_service import ReportingService
from vledger.services.transfer_service import TransferService


@dataclass(frozen=True)
class AppContainer:
    repo: SqliteRepository
    auth: AuthService
    allocation: AllocationService
    transfers: TransferService
    reporting: ReportingService
    excel: ExcelService
    settings: LedgerSettings


def build_container(
    db_path: Path | str,
    settings: LedgerSettings | None = None,
    logs_dir: Path | str | None = None,
) -> AppContainer:
    settings = settings or load_settings()
    if logs_dir is not None:
        setup_logging(Path(logs_dir), level=logging.INFO)

    repo = SqliteRepository(
        db_path,
        timeout_seconds=settings.db_timeout_seconds,
        transaction_attempts=settings.transaction_attempts,
        retry_backoff_seconds=settings.retry_backoff_seconds,
    )
    repo.init_db()

    auth = AuthService()
    allocation = AllocationService(repo, auth)
    transfers = TransferService(repo, auth, settings)
    reporting = ReportingService(repo)
    excel = ExcelService(repo, auth)

    return AppContainer(
        repo=repo,
        auth=auth,
        allocation=allocation,
        transfers=transfers,
        reporting=reporting,
        excel=excel,
        settings=settings,
    )
