from .auth_service import AuthService
from .allocation_service import AllocationService
from .transfer_service import NewOrderTarget, TransferRequest, TransferResult, TransferService
from .reporting_service import ReportingService
from .excel_service import ExcelService

__all__ = [
    "AuthService",
    "AllocationService",
    "NewOrderTarget",
    "TransferRequest",
    "TransferResult",
    "TransferService",
    "ReportingService",
    "ExcelService",
]
