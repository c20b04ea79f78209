from __future__ import annotations

from typing import Any, Mapping

from vledger.domain.models import TransferRecord, VendorOrderRow, normalize_branch
from vledger.domain.numbers import to_count, to_number, to_optional_count

VENDOR_ORDER_ROWS = "vendor_order_rows"
TRANSFER_RECORDS = "transfer_records"

# camelCase document field -> VendorOrderRow attribute
_ROW_TEXT_FIELDS = {
    "orderId": "order_id",
    "sellerId": "seller_id",
    "sellerName": "seller_name",
    "productId": "product_id",
    "productName": "product_name",
    "category": "category",
    "date": "date",
    "createdAt": "created_at",
}
_ROW_COUNT_FIELDS = {
    "unitsPerPackage": "units_per_package",
    "packages": "packages",
    "totalUnits": "total_units",
}
_ROW_MONEY_FIELDS = {
    "providerPrice": "provider_price",
    "unitPriceRivas": "unit_price_rivas",
    "unitPriceSanJorge": "unit_price_san_jorge",
    "unitPriceIsla": "unit_price_isla",
    "unitPriceVendor": "unit_price_vendor",
    "totalExpected": "total_expected",
    "grossProfit": "gross_profit",
    "logisticAllocated": "logistic_allocated",
    "vendorMarginPercent": "vendor_margin_percent",
    "uVendor": "u_vendor",
    "uInvestor": "u_investor",
    "uNeta": "u_neta",
}


def row_from_document(doc_id: str, data: Mapping[str, Any]) -> VendorOrderRow:
    """Build a row from a stored document. Bad numbers become zero; absent stock fields stay None."""
    kwargs: dict[str, Any] = {"id": str(doc_id)}
    for key, attr in _ROW_TEXT_FIELDS.items():
        v = data.get(key)
        kwargs[attr] = "" if v is None else str(v).strip()
    for key, attr in _ROW_COUNT_FIELDS.items():
        kwargs[attr] = to_count(data.get(key))
    for key, attr in _ROW_MONEY_FIELDS.items():
        kwargs[attr] = to_number(data.get(key))
    kwargs["branch"] = normalize_branch(data.get("branch"))
    kwargs["remaining_packages"] = to_optional_count(data.get("remainingPackages"))
    kwargs["remaining_units"] = to_optional_count(data.get("remainingUnits"))
    kwargs["transfer_delta"] = int(to_number(data.get("transferDelta")))
    return VendorOrderRow(**kwargs)


def row_to_document(row: VendorOrderRow) -> dict[str, Any]:
    doc: dict[str, Any] = {}
    for key, attr in {**_ROW_TEXT_FIELDS, **_ROW_COUNT_FIELDS, **_ROW_MONEY_FIELDS}.items():
        doc[key] = getattr(row, attr)
    doc["branch"] = row.branch
    doc["orderKey"] = row.order_key
    doc["remainingPackages"] = row.remaining_packages
    doc["remainingUnits"] = row.remaining_units
    doc["transferDelta"] = row.transfer_delta
    return doc


def transfer_to_document(record: TransferRecord) -> dict[str, Any]:
    return {
        "createdAt": record.created_at,
        "date": record.date,
        "createdByEmail": record.created_by_email,
        "createdByName": record.created_by_name,
        "productId": record.product_id,
        "productName": record.product_name,
        "providerPrice": record.provider_price,
        "unitPriceRivas": record.unit_price_rivas,
        "unitPriceSanJorge": record.unit_price_san_jorge,
        "unitPriceIsla": record.unit_price_isla,
        "packagesMoved": record.packages_moved,
        "unitsMoved": record.units_moved,
        "fromSellerId": record.from_seller_id,
        "fromSellerName": record.from_seller_name,
        "fromOrderKey": record.from_order_key,
        "fromVendorRowId": record.from_vendor_row_id,
        "toSellerId": record.to_seller_id,
        "toSellerName": record.to_seller_name,
        "toOrderKey": record.to_order_key,
        "toVendorRowId": record.to_vendor_row_id,
        "comment": record.comment,
        "destRowWasNew": record.dest_row_was_new,
    }
