class AppError(Exception):
    """Base app error."""


class ValidationError(AppError):
    pass


class NotFoundError(AppError):
    pass


class InsufficientStockError(AppError):
    pass


class ProductMismatchError(AppError):
    pass


class ConcurrencyConflictError(AppError):
    """A row changed between read and commit. Safe to retry."""


class AuthorizationError(AppError):
    pass
