"""Transaction service - the ledger and its effect on positions.

A BUY or SELL linked to a position moves that position's quantity and cost
basis through services.accounting. Editing such an entry first reverses
its original effect (from the figures stored on the entry) and then applies
the new one; deleting it only reverses. DEPOSIT, WITHDRAWAL and DIVIDEND
never touch a position.

Each mutation holds the locks of every position it touches across the
whole read-check-write-commit, commits once, and then records a portfolio
history snapshot.
"""

import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wallet import telemetry
from wallet.database import to_storage, unit_of_work, utcnow
from wallet.errors import (
    ConcurrencyConflictError,
    InvalidOperationError,
    InvalidQuantityError,
    NotFoundError,
)
from wallet.models import Position, Transaction, TransactionType
from wallet.schemas.transaction import TransactionCreate, TransactionUpdate
from wallet.services.accounting import (
    ZERO,
    PositionState,
    apply_buy,
    apply_sell,
    buy_cost,
    quantize_storage,
    reverse_buy,
    reverse_sell,
)
from wallet.services.locks import position_key, position_locks
from wallet.services.portfolio import record_history, require_portfolio

logger = logging.getLogger(__name__)


# --- Effects on a position ---

def apply_effect(state: PositionState, tx: Transaction) -> PositionState:
    """Apply a BUY or SELL to a position state.

    Stores on the entry what it needs for an exact reversal later: the cost
    basis it added or removed, and for a SELL the average cost at the time.
    """
    if tx.type == TransactionType.BUY:
        new_state = apply_buy(state, tx.quantity, tx.price)
        tx.cost_basis = buy_cost(tx.quantity, tx.price)
        tx.average_cost_at_execution = None
        return new_state

    sale = apply_sell(state, tx.quantity, tx.price)
    tx.cost_basis = sale.cost_removed
    tx.average_cost_at_execution = sale.average_cost
    return sale.state


def reverse_effect(state: PositionState, tx: Transaction) -> PositionState:
    """Take a previously applied BUY or SELL back out of a position state."""
    if tx.type == TransactionType.BUY:
        cost = tx.cost_basis if tx.cost_basis is not None else buy_cost(tx.quantity, tx.price)
        return reverse_buy(state, tx.quantity, cost)

    average_cost = tx.average_cost_at_execution
    if average_cost is None:
        average_cost = state.average_cost
    return reverse_sell(state, tx.quantity, average_cost, tx.cost_basis)


def _clear_effect(tx: Transaction) -> None:
    tx.cost_basis = None
    tx.average_cost_at_execution = None


def write_state(position: Position, state: PositionState) -> None:
    """Store a computed state on a position."""
    state.apply_to(position)
    position.last_updated = utcnow()


# --- Row loading ---

async def lock_position(session: AsyncSession, position_id: int) -> Position | None:
    """Load a position fresh from the database for writing.

    Must be called while holding the position's lock.
    """
    result = await session.execute(
        select(Position)
        .where(Position.id == position_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _lock_transaction(session: AsyncSession, transaction_id: int) -> Transaction | None:
    result = await session.execute(
        select(Transaction)
        .where(Transaction.id == transaction_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _lock_linked_position(
    session: AsyncSession, position_id: int, portfolio_id: int
) -> Position:
    position = await lock_position(session, position_id)
    if position is None:
        raise NotFoundError(f"Position {position_id} not found")
    if position.portfolio_id != portfolio_id:
        raise InvalidOperationError(
            f"Position {position_id} does not belong to portfolio {portfolio_id}"
        )
    return position


def _linked_asset(tx_type: TransactionType, asset_id: int | None) -> int | None:
    """The position an entry of this type and asset moves, if any."""
    return asset_id if tx_type.moves_position else None


async def _require_positions(session: AsyncSession, *position_ids: int | None) -> None:
    """Raise NotFoundError for the first referenced position that is gone."""
    for position_id in position_ids:
        if position_id is None:
            continue
        result = await session.execute(select(Position.id).where(Position.id == position_id))
        if result.scalar_one_or_none() is None:
            raise NotFoundError(f"Position {position_id} not found")


# --- Validation ---

def _validate(tx_type: TransactionType, quantity: Decimal, price: Decimal, asset_id: int | None) -> None:
    if quantity < 0:
        raise InvalidQuantityError(f"Quantity must not be negative, got {quantity}")
    if price < 0:
        raise InvalidOperationError(f"Price must not be negative, got {price}")
    if tx_type.moves_position and quantity <= 0:
        raise InvalidQuantityError(f"{tx_type.value} quantity must be positive, got {quantity}")
    if tx_type in (TransactionType.DEPOSIT, TransactionType.WITHDRAWAL) and asset_id is not None:
        raise InvalidOperationError(f"{tx_type.value} cannot be linked to a position")


# --- Queries ---

async def get_transaction(session: AsyncSession, transaction_id: int) -> Transaction | None:
    """Get a transaction by ID, or None."""
    result = await session.execute(select(Transaction).where(Transaction.id == transaction_id))
    return result.scalar_one_or_none()


async def get_portfolio_transactions(
    session: AsyncSession, portfolio_id: int
) -> list[Transaction]:
    """All transactions of a portfolio, newest first."""
    await require_portfolio(session, portfolio_id)
    result = await session.execute(
        select(Transaction)
        .where(Transaction.portfolio_id == portfolio_id)
        .order_by(Transaction.executed_at.desc(), Transaction.id.desc())
    )
    return list(result.scalars().all())


async def get_transactions_by_position(
    session: AsyncSession, position_id: int
) -> list[Transaction]:
    """Transactions linked to a position, newest first."""
    result = await session.execute(
        select(Transaction)
        .where(Transaction.asset_id == position_id)
        .order_by(Transaction.executed_at.desc(), Transaction.id.desc())
    )
    return list(result.scalars().all())


async def get_transactions_by_date_range(
    session: AsyncSession,
    portfolio_id: int,
    start: datetime,
    end: datetime,
) -> list[Transaction]:
    """Transactions executed in [start, end], newest first."""
    await require_portfolio(session, portfolio_id)
    result = await session.execute(
        select(Transaction)
        .where(
            Transaction.portfolio_id == portfolio_id,
            Transaction.executed_at >= to_storage(start),
            Transaction.executed_at <= to_storage(end),
        )
        .order_by(Transaction.executed_at.desc(), Transaction.id.desc())
    )
    return list(result.scalars().all())


async def _sum_totals(
    session: AsyncSession, portfolio_id: int, types: list[TransactionType]
) -> Decimal:
    await require_portfolio(session, portfolio_id)
    result = await session.execute(
        select(Transaction.total_amount).where(
            Transaction.portfolio_id == portfolio_id,
            Transaction.type.in_(types),
        )
    )
    return sum(result.scalars().all(), ZERO)


async def get_total_invested_amount(session: AsyncSession, portfolio_id: int) -> Decimal:
    """Gross money put to work: DEPOSIT and BUY totals."""
    return await _sum_totals(session, portfolio_id, [TransactionType.DEPOSIT, TransactionType.BUY])


async def get_total_withdrawn_amount(session: AsyncSession, portfolio_id: int) -> Decimal:
    """Gross money taken out: WITHDRAWAL and SELL totals."""
    return await _sum_totals(
        session, portfolio_id, [TransactionType.WITHDRAWAL, TransactionType.SELL]
    )


# --- Mutations ---

async def create_transaction(session: AsyncSession, data: TransactionCreate) -> Transaction:
    """Record a transaction and apply it to its position.

    A zero total_amount is derived from price * quantity.

    Raises:
        NotFoundError: unknown portfolio or position
        InvalidQuantityError: BUY/SELL without a positive quantity
        InsufficientQuantityError: SELL of more than the position holds
        InvalidOperationError: position belongs to another portfolio, or a
            cash flow is linked to a position
    """
    tx_type = TransactionType(data.type.value)
    _validate(tx_type, data.quantity, data.price, data.asset_id)
    await require_portfolio(session, data.portfolio_id)

    total = data.total_amount or quantize_storage(data.price * data.quantity)
    tx = Transaction(
        type=tx_type,
        portfolio_id=data.portfolio_id,
        asset_id=data.asset_id,
        asset_symbol=data.asset_symbol,
        price=data.price,
        quantity=data.quantity,
        total_amount=total,
        executed_at=to_storage(data.executed_at) if data.executed_at else utcnow(),
        notes=data.notes,
    )

    try:
        await _insert_transaction(session, tx, data.asset_id)
    except ConcurrencyConflictError:
        await _require_positions(session, data.asset_id)
        raise

    telemetry.record_transaction("created", tx_type.value)
    logger.info(
        "Transaction created",
        extra={
            "transaction_id": tx.id,
            "portfolio_id": tx.portfolio_id,
            "type": tx_type.value,
            "asset_id": tx.asset_id,
            "quantity": float(tx.quantity),
            "price": float(tx.price),
        },
    )

    await record_history(session, tx.portfolio_id)
    return tx


async def _insert_transaction(
    session: AsyncSession, tx: Transaction, asset_id: int | None
) -> None:
    linked = _linked_asset(tx.type, asset_id)
    async with position_locks.hold(position_key(linked) if linked else None):
        async with unit_of_work(session):
            if linked is not None:
                position = await _lock_linked_position(session, linked, tx.portfolio_id)
                write_state(position, apply_effect(PositionState.of(position), tx))
                tx.asset_symbol = tx.asset_symbol or position.symbol
            elif asset_id is not None:
                # DIVIDEND may name a position but must still point at a real one
                position = await _lock_linked_position(session, asset_id, tx.portfolio_id)
                tx.asset_symbol = tx.asset_symbol or position.symbol
            session.add(tx)


async def update_transaction(
    session: AsyncSession, transaction_id: int, data: TransactionUpdate
) -> bool:
    """Edit a transaction, moving its effect on positions accordingly.

    The old effect is reversed from the stored figures, then the new one is
    applied. Either both happen or neither does.

    Returns:
        False if the transaction does not exist

    Raises:
        InvalidOperationError: the reversal would drive a quantity negative
        InsufficientQuantityError: the edited SELL exceeds the units held
    """
    try:
        portfolio_id = await _update_transaction(session, transaction_id, data)
    except ConcurrencyConflictError:
        current = await get_transaction(session, transaction_id)
        if current is None:
            return False
        await _require_positions(session, current.asset_id, data.asset_id)
        raise

    if portfolio_id is None:
        return False

    telemetry.record_transaction("updated", data.type.value)
    logger.info(
        "Transaction updated",
        extra={"transaction_id": transaction_id, "portfolio_id": portfolio_id},
    )

    await record_history(session, portfolio_id)
    return True


async def _update_transaction(
    session: AsyncSession, transaction_id: int, data: TransactionUpdate
) -> int | None:
    new_type = TransactionType(data.type.value)
    _validate(new_type, data.quantity, data.price, data.asset_id)
    new_asset = _linked_asset(new_type, data.asset_id)

    while True:
        current = await get_transaction(session, transaction_id)
        if current is None:
            return None
        old_asset = current.asset_id if current.affects_position else None

        async with position_locks.hold(
            position_key(old_asset) if old_asset else None,
            position_key(new_asset) if new_asset else None,
        ):
            async with unit_of_work(session):
                tx = await _lock_transaction(session, transaction_id)
                if tx is None:
                    return None
                if (tx.asset_id if tx.affects_position else None) != old_asset:
                    # Relinked (or its position deleted) before we got the lock
                    continue

                positions = {}
                for position_id in sorted({old_asset, new_asset} - {None}):
                    positions[position_id] = await _lock_linked_position(
                        session, position_id, tx.portfolio_id
                    )
                if data.asset_id is not None and data.asset_id not in positions:
                    # A DIVIDEND only needs the position to exist
                    positions[data.asset_id] = await _lock_linked_position(
                        session, data.asset_id, tx.portfolio_id
                    )

                states = {pid: PositionState.of(p) for pid, p in positions.items()}
                if old_asset is not None:
                    states[old_asset] = reverse_effect(states[old_asset], tx)

                tx.type = new_type
                tx.asset_id = data.asset_id
                tx.price = data.price
                tx.quantity = data.quantity
                tx.total_amount = quantize_storage(data.price * data.quantity) or data.total_amount
                tx.notes = data.notes
                if data.executed_at is not None:
                    tx.executed_at = to_storage(data.executed_at)
                if data.asset_id is not None:
                    tx.asset_symbol = data.asset_symbol or positions[data.asset_id].symbol
                else:
                    tx.asset_symbol = data.asset_symbol or tx.asset_symbol

                if new_asset is not None:
                    states[new_asset] = apply_effect(states[new_asset], tx)
                else:
                    _clear_effect(tx)

                for position_id in {old_asset, new_asset} - {None}:
                    write_state(positions[position_id], states[position_id])

                return tx.portfolio_id


async def delete_transaction(session: AsyncSession, transaction_id: int) -> bool:
    """Delete a transaction, reversing its effect on its position.

    Returns:
        False if the transaction does not exist

    Raises:
        InvalidOperationError: the reversal would drive the quantity negative
    """
    try:
        deleted = await _delete_transaction(session, transaction_id)
    except ConcurrencyConflictError:
        current = await get_transaction(session, transaction_id)
        if current is None:
            return False
        await _require_positions(session, current.asset_id)
        raise

    if deleted is None:
        return False

    portfolio_id, tx_type = deleted
    telemetry.record_transaction("deleted", tx_type.value)
    logger.info(
        "Transaction deleted",
        extra={"transaction_id": transaction_id, "portfolio_id": portfolio_id},
    )

    await record_history(session, portfolio_id)
    return True


async def _delete_transaction(
    session: AsyncSession, transaction_id: int
) -> tuple[int, TransactionType] | None:
    while True:
        current = await get_transaction(session, transaction_id)
        if current is None:
            return None
        asset = current.asset_id if current.affects_position else None

        async with position_locks.hold(position_key(asset) if asset else None):
            async with unit_of_work(session):
                tx = await _lock_transaction(session, transaction_id)
                if tx is None:
                    return None
                if (tx.asset_id if tx.affects_position else None) != asset:
                    continue

                if asset is not None:
                    position = await _lock_linked_position(session, asset, tx.portfolio_id)
                    write_state(position, reverse_effect(PositionState.of(position), tx))

                await session.delete(tx)
                return tx.portfolio_id, tx.type
