from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Optional

from openpyxl import load_workbook

from vledger.domain.documents import row_from_document
from vledger.domain.errors import ValidationError
from vledger.domain.models import Actor
from vledger.services.auth_service import AuthService

log = logging.getLogger(__name__)

REQUIRED_HEADERS = ("id", "sellerId", "productId", "unitsPerPackage", "packages")


def _cell_value(v):
    if isinstance(v, datetime):
        return v.date().isoformat()
    if isinstance(v, date):
        return v.isoformat()
    return v


class ExcelService:
    def __init__(self, repo, auth: AuthService | None = None):
        self.repo = repo
        self.auth = auth or AuthService()

    def import_vendor_rows(self, path: str, actor: Optional[Actor] = None) -> tuple[int, int]:
        """
        Load legacy vendor rows exported from the document store.
        Headers are the document field names (camelCase), e.g.
          id | sellerId | productId | unitsPerPackage | packages | remainingPackages | ...
        Rows already in the ledger, or missing an id, seller or product, are skipped.
        """
        self.auth.require_action(actor, "import_rows")
        wb = load_workbook(path, data_only=True)
        ws = wb.active

        headers: dict[str, int] = {}
        for col in range(1, ws.max_column + 1):
            v = ws.cell(row=1, column=col).value
            if isinstance(v, str) and v.strip():
                headers[v.strip()] = col

        for r in REQUIRED_HEADERS:
            if r not in headers:
                raise ValidationError(f"Missing column header: {r}")

        ok = 0
        skipped = 0

        for row in range(2, ws.max_row + 1):
            data = {key: _cell_value(ws.cell(row=row, column=col).value) for key, col in headers.items()}
            if all(v is None for v in data.values()):
                continue
            doc_id = str(data.pop("id") or "").strip()
            if not doc_id or not data.get("sellerId") or not data.get("productId"):
                skipped += 1
                continue
            try:
                vendor_row = row_from_document(doc_id, data)
                if self.repo.get_vendor_row(vendor_row.id) is not None:
                    log.info("Excel import row %s: %s already imported", row, vendor_row.id)
                    skipped += 1
                    continue
                self.repo.add_vendor_row(vendor_row)
                ok += 1
            except Exception as e:
                log.warning("Excel import skipped row %s: %s", row, e)
                skipped += 1

        log.info("Excel import finished path=%s ok=%s skipped=%s", path, ok, skipped)
        return ok, skipped
