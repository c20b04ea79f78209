import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from vledger.domain.models import Actor, CatalogEntry, Seller, VendorOrderRow  # noqa: E402

ADMIN = Actor(email="admin@example.com", name="Admin", role="admin")
SELLER = Actor(email="seller@example.com", name="Seller", role="seller")
VIEWER = Actor(email="viewer@example.com", name="Viewer", role="viewer")


def make_row(
    row_id: str,
    seller_id: str = "S",
    product_id: str = "P",
    date: str = "2024-01-01",
    units_per_package: int = 10,
    packages: int = 5,
    **extra,
) -> VendorOrderRow:
    extra.setdefault("remaining_packages", packages)
    extra.setdefault("remaining_units", packages * units_per_package)
    extra.setdefault("created_at", f"{date} 08:00:00.000000")
    return VendorOrderRow(
        id=row_id,
        seller_id=seller_id,
        product_id=product_id,
        units_per_package=units_per_package,
        packages=packages,
        date=date,
        **extra,
    )


def seed_directory(repo) -> None:
    repo.upsert_seller(Seller(id="S", name="Sofia", branch="RIVAS", commission_percent=20.0))
    repo.upsert_seller(Seller(id="T", name="Tomas", branch="SAN_JORGE", commission_percent=10.0))
    repo.upsert_seller(Seller(id="U", name="Ursula", branch="ISLA", commission_percent=0.0))


def seed_catalog(repo) -> CatalogEntry:
    entry = CatalogEntry(
        product_id="P",
        product_name="Gummies",
        created_at="2024-01-01 00:00:00",
        units_per_package=10,
        provider_price=20.0,
        unit_price_rivas=30.0,
        unit_price_san_jorge=32.0,
        unit_price_isla=35.0,
        logistic_allocated_per_pack=1.5,
    )
    repo.add_catalog_entry(entry)
    return entry
