"""Translation of engine errors into HTTP errors."""

from fastapi import HTTPException, status

from wallet.errors import (
    ConcurrencyConflictError,
    InsufficientQuantityError,
    InvalidOperationError,
    InvalidQuantityError,
    NotFoundError,
    PriceUnavailableError,
    WalletError,
)

_STATUS_CODES = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    InsufficientQuantityError: status.HTTP_400_BAD_REQUEST,
    InvalidQuantityError: status.HTTP_400_BAD_REQUEST,
    InvalidOperationError: status.HTTP_400_BAD_REQUEST,
    ConcurrencyConflictError: status.HTTP_409_CONFLICT,
    PriceUnavailableError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def http_error(exc: WalletError) -> HTTPException:
    """HTTPException for an engine error (500 for anything unmapped)."""
    for error_type, status_code in _STATUS_CODES.items():
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))
