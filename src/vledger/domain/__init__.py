from .models import (
    Actor,
    AllocationEntry,
    CatalogEntry,
    OrderSummary,
    RowFinancials,
    Seller,
    TransferAggregate,
    TransferRecord,
    VendorOrderRow,
)
from .errors import (
    AuthorizationError,
    ConcurrencyConflictError,
    InsufficientStockError,
    NotFoundError,
    ProductMismatchError,
    ValidationError,
)

__all__ = [
    "Actor",
    "AllocationEntry",
    "CatalogEntry",
    "OrderSummary",
    "RowFinancials",
    "Seller",
    "TransferAggregate",
    "TransferRecord",
    "VendorOrderRow",
    "AuthorizationError",
    "ConcurrencyConflictError",
    "InsufficientStockError",
    "NotFoundError",
    "ProductMismatchError",
    "ValidationError",
]
