from conftest import make_row

from vledger.domain.documents import row_from_document, row_to_document, transfer_to_document
from vledger.domain.models import TransferRecord, build_order_key, normalize_branch


def test_row_from_document_coerces_legacy_values():
    row = row_from_document(
        "doc-1",
        {
            "sellerId": "S",
            "productId": "P",
            "unitsPerPackage": "12",
            "packages": 3.7,
            "remainingPackages": "2",
            "unitPriceSanJorge": "n/a",
            "totalExpected": None,
            "branch": "San Jorge",
            "date": "2024-01-01",
            "transferDelta": -2,
        },
    )

    assert row.id == "doc-1"
    assert row.units_per_package == 12
    assert row.packages == 3
    assert row.remaining_packages == 2
    assert row.remaining_units is None
    assert row.unit_price_san_jorge == 0.0
    assert row.total_expected == 0.0
    assert row.branch == "SAN_JORGE"
    assert row.transfer_delta == -2
    assert row.order_key == "S__2024-01-01"
    # Missing remainingUnits is derived from packages.
    assert row.stock_units() == 24


def test_row_document_shape_is_camel_case():
    doc = row_to_document(make_row("A", unit_price_isla=35.0, transfer_delta=-1))

    assert doc["sellerId"] == "S"
    assert doc["unitPriceIsla"] == 35.0
    assert doc["remainingUnits"] == 50
    assert doc["orderKey"] == "S__2024-01-01"
    assert doc["transferDelta"] == -1
    assert row_from_document("A", doc).remaining_packages == 5


def test_transfer_document_shape():
    record = TransferRecord(
        id="t1",
        created_at="2024-02-01 10:00:00",
        date="2024-02-01",
        created_by_email="admin@example.com",
        created_by_name="Admin",
        product_id="P",
        product_name="Gummies",
        provider_price=20.0,
        unit_price_rivas=30.0,
        unit_price_san_jorge=32.0,
        unit_price_isla=35.0,
        packages_moved=4,
        units_moved=40,
        from_seller_id="S",
        from_seller_name="Sofia",
        from_order_key="S__2024-01-01",
        from_vendor_row_id="A",
        to_seller_id="T",
        to_seller_name="Tomas",
        to_order_key="T__2024-02-01",
        to_vendor_row_id="N",
        comment="Rebalance",
        dest_row_was_new=True,
    )

    doc = transfer_to_document(record)

    assert doc["packagesMoved"] == 4
    assert doc["destRowWasNew"] is True
    assert doc["fromOrderKey"] == "S__2024-01-01"
    assert "id" not in doc


def test_order_key_falls_back_to_order_id_then_row_id():
    assert make_row("A", date="").order_key == "A"
    assert make_row("A", date="", order_id="legacy-7").order_key == "legacy-7"
    assert build_order_key("S", "2024-01-01") == "S__2024-01-01"


def test_normalize_branch_variants():
    assert normalize_branch("isla") == "ISLA"
    assert normalize_branch(" sucursal san jorge ") == "SAN_JORGE"
    assert normalize_branch("Rivas") == "RIVAS"
    assert normalize_branch(None) == ""
    assert normalize_branch("Granada") == ""
