"""Error types raised by the accounting engine."""


class WalletError(Exception):
    """Base class for all engine errors."""


class NotFoundError(WalletError, LookupError):
    """A referenced portfolio, position or transaction does not exist."""


class InsufficientQuantityError(WalletError, ValueError):
    """A sell asks for more units than the position holds."""


class InvalidQuantityError(WalletError, ValueError):
    """A quantity that must be positive is zero or negative."""


class InvalidOperationError(WalletError, ValueError):
    """The requested change would break a position invariant."""


class ConcurrencyConflictError(WalletError):
    """Another writer changed the same row first."""


class PriceUnavailableError(WalletError):
    """The price feed has no usable price for a symbol."""

    def __init__(self, symbol: str, category: str):
        self.symbol = symbol
        self.category = category
        super().__init__(f"No price available for {symbol} ({category})")
