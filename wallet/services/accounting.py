"""Position accounting rules.

Pure functions that apply a transaction's effect to a position's cost basis,
or take it back out again. They work on an immutable PositionState and never
touch the database, so a rule violation is always raised before anything is
written.

Cost basis is a single weighted average per position:

    buy:   invested += quantity * price, average = invested / quantity
    sell:  invested -= average * quantity, average recomputed
    zero:  a position with no units has no cost (clears rounding dust)

All arithmetic is Decimal. Stored figures are quantized to 8 dp; display
rounding (2 dp) happens only at the edges via round_currency.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from wallet.errors import (
    InsufficientQuantityError,
    InvalidOperationError,
    InvalidQuantityError,
)

ZERO = Decimal("0")
HUNDRED = Decimal("100")

# 8 dp storage precision, matches the Numeric(18, 8) columns
STORAGE_QUANT = Decimal("0.00000001")

# 2 dp for money and percentages shown to users
CURRENCY_QUANT = Decimal("0.01")


def quantize_storage(value: Decimal) -> Decimal:
    """Round to storage precision."""
    return value.quantize(STORAGE_QUANT, rounding=ROUND_HALF_UP)


def round_currency(value: Decimal) -> Decimal:
    """Round for display (also used for percentages)."""
    return value.quantize(CURRENCY_QUANT, rounding=ROUND_HALF_UP)


def percent_of(part: Decimal, whole: Decimal) -> Decimal:
    """part / whole * 100 rounded to 2 dp, or 0 when whole is 0."""
    if whole == 0:
        return round_currency(ZERO)
    return round_currency(part / whole * HUNDRED)


@dataclass(frozen=True)
class PositionState:
    """The numbers accounting cares about on a position."""

    quantity: Decimal = ZERO
    average_cost: Decimal = ZERO
    invested_amount: Decimal = ZERO

    @classmethod
    def of(cls, position) -> "PositionState":
        """Snapshot anything with quantity/average_cost/invested_amount."""
        return cls(
            quantity=position.quantity,
            average_cost=position.average_cost,
            invested_amount=position.invested_amount,
        )

    def apply_to(self, position) -> None:
        """Copy this state onto a position."""
        position.quantity = self.quantity
        position.average_cost = self.average_cost
        position.invested_amount = self.invested_amount


@dataclass(frozen=True)
class SaleResult:
    """Outcome of a sell: the new state plus the realized figures."""

    state: PositionState
    proceeds: Decimal
    cost_removed: Decimal
    average_cost: Decimal  # average cost in effect at the time of sale

    @property
    def realized_pnl(self) -> Decimal:
        """Proceeds minus the cost basis given up."""
        return self.proceeds - self.cost_removed


def _require_positive(quantity: Decimal) -> None:
    if quantity <= 0:
        raise InvalidQuantityError(f"Quantity must be positive, got {quantity}")


def _settle(quantity: Decimal, invested: Decimal) -> PositionState:
    """Build a state with the average recomputed from quantity and cost."""
    if quantity == 0:
        return PositionState()
    invested = quantize_storage(max(invested, ZERO))
    return PositionState(
        quantity=quantity,
        average_cost=quantize_storage(invested / quantity),
        invested_amount=invested,
    )


def buy_cost(quantity: Decimal, unit_price: Decimal) -> Decimal:
    """Cost basis added by buying quantity units at unit_price."""
    return quantize_storage(quantity * unit_price)


def apply_buy(state: PositionState, quantity: Decimal, unit_price: Decimal) -> PositionState:
    """Add quantity units bought at unit_price."""
    _require_positive(quantity)
    return _settle(
        state.quantity + quantity,
        state.invested_amount + buy_cost(quantity, unit_price),
    )


def apply_sell(state: PositionState, quantity: Decimal, unit_price: Decimal) -> SaleResult:
    """Remove quantity units sold at unit_price.

    Raises:
        InvalidQuantityError: quantity is not positive
        InsufficientQuantityError: quantity exceeds the units held
    """
    _require_positive(quantity)
    if quantity > state.quantity:
        raise InsufficientQuantityError(
            f"Insufficient quantity: have {state.quantity}, need {quantity}"
        )

    removed = quantize_storage(state.average_cost * quantity)
    new_state = _settle(state.quantity - quantity, state.invested_amount - removed)

    return SaleResult(
        state=new_state,
        proceeds=quantize_storage(quantity * unit_price),
        # What actually left the cost basis; on full liquidation this is all of it
        cost_removed=state.invested_amount - new_state.invested_amount,
        average_cost=state.average_cost,
    )


def reverse_buy(state: PositionState, quantity: Decimal, cost: Decimal) -> PositionState:
    """Undo a buy of quantity units that originally cost `cost`.

    The original cost is removed, not the current average times quantity,
    so later buys at other prices keep their own contribution.

    Raises:
        InvalidOperationError: fewer units are held than the buy added
    """
    _require_positive(quantity)
    if quantity > state.quantity:
        raise InvalidOperationError(
            f"Cannot reverse buy of {quantity}: only {state.quantity} held"
        )
    return _settle(state.quantity - quantity, state.invested_amount - cost)


def reverse_sell(
    state: PositionState,
    quantity: Decimal,
    average_cost_at_sale: Decimal,
    cost_removed: Decimal | None = None,
) -> PositionState:
    """Undo a sell of quantity units.

    Puts back the cost basis the sale removed: cost_removed when it was
    recorded, otherwise average_cost_at_sale * quantity.
    """
    _require_positive(quantity)
    if cost_removed is None:
        cost_removed = quantize_storage(average_cost_at_sale * quantity)
    return _settle(state.quantity + quantity, state.invested_amount + cost_removed)
