"""Position service - buying into, selling out of and pricing positions.

Every buy or sell made here is also written to the ledger as a linked
transaction, so editing or deleting that transaction later reverses it
like any other.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from wallet import telemetry
from wallet.database import to_storage, to_utc, unit_of_work, utcnow
from wallet.errors import (
    ConcurrencyConflictError,
    InvalidOperationError,
    InvalidQuantityError,
    NotFoundError,
    PriceUnavailableError,
)
from wallet.models import Position, PriceHistory, Transaction, TransactionType
from wallet.services.accounting import PositionState, quantize_storage
from wallet.services.locks import new_position_key, position_key, position_locks
from wallet.services.portfolio import record_history, require_portfolio
from wallet.services.price_feed import PriceFeed, require_price
from wallet.services.transactions import apply_effect, lock_position, write_state

logger = logging.getLogger(__name__)


@dataclass
class SaleOutcome:
    """A completed sell and what it realized."""

    position: Position
    transaction: Transaction
    proceeds: Decimal
    cost_removed: Decimal

    @property
    def realized_profit_loss(self) -> Decimal:
        return self.proceeds - self.cost_removed


@dataclass
class PriceRefreshResult:
    """How many positions got a new price and which were left alone."""

    updated: int = 0
    skipped: int = 0
    skipped_symbols: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class PricePoint:
    price: Decimal
    recorded_at: datetime


def normalize(value: str) -> str:
    """Symbols and categories are stored trimmed and lowercase."""
    return value.strip().lower()


# --- Queries ---

async def get_position(session: AsyncSession, position_id: int) -> Position | None:
    """Get a position by ID, or None."""
    result = await session.execute(select(Position).where(Position.id == position_id))
    return result.scalar_one_or_none()


async def require_position(session: AsyncSession, position_id: int) -> Position:
    position = await get_position(session, position_id)
    if position is None:
        raise NotFoundError(f"Position {position_id} not found")
    return position


async def get_portfolio_positions(session: AsyncSession, portfolio_id: int) -> list[Position]:
    """All positions of a portfolio, in creation order."""
    await require_portfolio(session, portfolio_id)
    result = await session.execute(
        select(Position).where(Position.portfolio_id == portfolio_id).order_by(Position.id)
    )
    return list(result.scalars().all())


async def get_position_value(session: AsyncSession, position_id: int) -> Decimal:
    """current_price * quantity."""
    position = await require_position(session, position_id)
    return quantize_storage(position.current_value)


async def get_position_profit_loss(session: AsyncSession, position_id: int) -> Decimal:
    """Unrealized profit/loss: current value minus cost basis."""
    position = await require_position(session, position_id)
    return quantize_storage(position.current_value) - position.invested_amount


async def get_price_history(
    session: AsyncSession,
    position_id: int,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[PricePoint]:
    """Prices a position was marked at, oldest first, optionally bounded."""
    await require_position(session, position_id)

    query = select(PriceHistory).where(PriceHistory.position_id == position_id)
    if start is not None:
        query = query.where(PriceHistory.recorded_at >= to_storage(start))
    if end is not None:
        query = query.where(PriceHistory.recorded_at <= to_storage(end))
    query = query.order_by(PriceHistory.recorded_at.asc(), PriceHistory.id.asc())

    result = await session.execute(query)
    return [
        PricePoint(price=row.price, recorded_at=to_utc(row.recorded_at))
        for row in result.scalars().all()
    ]


# --- Buy ---

async def create_or_add_position(
    session: AsyncSession,
    price_feed: PriceFeed,
    portfolio_id: int,
    symbol: str,
    category: str,
    quantity: Decimal,
    unit_price: Decimal | None = None,
    name: str | None = None,
) -> Position:
    """Buy quantity units of (symbol, category) into a portfolio.

    Opens the position on the first buy, otherwise adds to it. The buy is
    made at unit_price when given, else at the feed's current price. A feed
    price, when there is one, also becomes the position's current price.

    Raises:
        NotFoundError: unknown portfolio
        InvalidQuantityError: quantity is not positive
        PriceUnavailableError: no unit_price and the feed has no price
    """
    symbol, category = normalize(symbol), normalize(category)
    if quantity <= 0:
        raise InvalidQuantityError(f"Quantity must be positive, got {quantity}")
    if unit_price is not None and unit_price <= 0:
        raise InvalidOperationError(f"Unit price must be positive, got {unit_price}")
    await require_portfolio(session, portfolio_id)

    # Outside any lock; a slow feed must not block other writers
    market_price = await price_feed.get_current_price(symbol, category)
    if market_price is None or market_price <= 0:
        market_price = None

    buy_price = unit_price if unit_price is not None else market_price
    if buy_price is None:
        raise PriceUnavailableError(symbol, category)

    try:
        position = await _buy(
            session, portfolio_id, symbol, category, quantity, buy_price, market_price, name
        )
    except (IntegrityError, ConcurrencyConflictError) as exc:
        # Lost a race with another writer on this position; retry once
        logger.info(
            "Position changed concurrently, retrying buy",
            extra={
                "portfolio_id": portfolio_id,
                "symbol": symbol,
                "category": category,
                "reason": type(exc).__name__,
            },
        )
        position = await _buy(
            session, portfolio_id, symbol, category, quantity, buy_price, market_price, name
        )

    telemetry.record_position_trade("buy", category, quantity, buy_price)
    await record_history(session, portfolio_id)
    return position


async def _buy(
    session: AsyncSession,
    portfolio_id: int,
    symbol: str,
    category: str,
    quantity: Decimal,
    buy_price: Decimal,
    market_price: Decimal | None,
    name: str | None,
) -> Position:
    async with position_locks.hold(new_position_key(portfolio_id, symbol, category)):
        result = await session.execute(
            select(Position.id).where(
                Position.portfolio_id == portfolio_id,
                Position.symbol == symbol,
                Position.category == category,
            )
        )
        existing_id = result.scalar_one_or_none()

        async with position_locks.hold(position_key(existing_id) if existing_id else None):
            async with unit_of_work(session):
                position = await lock_position(session, existing_id) if existing_id else None

                tx = Transaction(
                    type=TransactionType.BUY,
                    portfolio_id=portfolio_id,
                    asset_symbol=symbol,
                    price=buy_price,
                    quantity=quantity,
                    total_amount=quantize_storage(buy_price * quantity),
                    executed_at=utcnow(),
                    notes="",
                )

                if position is None:
                    opening_price = market_price or buy_price
                    position = Position(
                        portfolio_id=portfolio_id,
                        symbol=symbol,
                        name=name or symbol.upper(),
                        category=category,
                        initial_price=opening_price,
                        current_price=opening_price,
                    )
                    apply_effect(PositionState(), tx).apply_to(position)
                    session.add(position)
                    await session.flush()
                    session.add(PriceHistory(position_id=position.id, price=opening_price))
                    created = True
                else:
                    write_state(position, apply_effect(PositionState.of(position), tx))
                    if market_price is not None:
                        position.current_price = market_price
                    created = False

                tx.asset_id = position.id
                session.add(tx)

    logger.info(
        "Position opened" if created else "Position increased",
        extra={
            "position_id": position.id,
            "portfolio_id": portfolio_id,
            "symbol": symbol,
            "quantity": float(quantity),
            "price": float(buy_price),
        },
    )
    return position


# --- Sell ---

async def sell_position(
    session: AsyncSession, position_id: int, quantity: Decimal, price: Decimal
) -> SaleOutcome:
    """Sell quantity units of a position at price.

    Raises:
        NotFoundError: unknown position
        InvalidQuantityError: quantity is not positive
        InsufficientQuantityError: quantity exceeds the units held
    """
    if price < 0:
        raise InvalidOperationError(f"Price must not be negative, got {price}")

    try:
        outcome = await _sell(session, position_id, quantity, price)
    except ConcurrencyConflictError:
        if await get_position(session, position_id) is None:
            raise NotFoundError(f"Position {position_id} not found")
        raise

    position = outcome.position
    telemetry.record_position_trade("sell", position.category, quantity, price)
    logger.info(
        "Position sold",
        extra={
            "position_id": position_id,
            "portfolio_id": position.portfolio_id,
            "symbol": position.symbol,
            "quantity": float(quantity),
            "price": float(price),
            "realized_pnl": float(outcome.realized_profit_loss),
        },
    )

    await record_history(session, position.portfolio_id)
    return outcome


async def _sell(
    session: AsyncSession, position_id: int, quantity: Decimal, price: Decimal
) -> SaleOutcome:
    async with position_locks.hold(position_key(position_id)):
        async with unit_of_work(session):
            position = await lock_position(session, position_id)
            if position is None:
                raise NotFoundError(f"Position {position_id} not found")

            tx = Transaction(
                type=TransactionType.SELL,
                portfolio_id=position.portfolio_id,
                asset_id=position.id,
                asset_symbol=position.symbol,
                price=price,
                quantity=quantity,
                total_amount=quantize_storage(price * quantity),
                executed_at=utcnow(),
                notes=f"Sold {quantity} {position.symbol.upper()} at {price}",
            )
            write_state(position, apply_effect(PositionState.of(position), tx))
            session.add(tx)

    return SaleOutcome(
        position=position,
        transaction=tx,
        proceeds=tx.total_amount,
        cost_removed=tx.cost_basis,
    )


# --- Delete ---

async def delete_position(session: AsyncSession, position_id: int) -> bool:
    """Delete a position and its price history.

    Its transactions stay in the ledger, unlinked, keeping their symbol.

    Returns:
        False if the position does not exist
    """
    async with position_locks.hold(position_key(position_id)):
        async with unit_of_work(session):
            position = await lock_position(session, position_id)
            if position is None:
                return False
            portfolio_id = position.portfolio_id

            await session.execute(
                update(Transaction)
                .where(Transaction.asset_id == position_id)
                .values(asset_id=None, version=Transaction.version + 1)
            )
            await session.execute(
                delete(PriceHistory).where(PriceHistory.position_id == position_id)
            )
            await session.delete(position)

    logger.info(
        "Position deleted",
        extra={"position_id": position_id, "portfolio_id": portfolio_id},
    )
    await record_history(session, portfolio_id)
    return True


# --- Prices ---

async def refresh_prices(
    session: AsyncSession, price_feed: PriceFeed, portfolio_id: int
) -> PriceRefreshResult:
    """Mark every position of a portfolio to the feed's current price.

    A position the feed has no price for keeps its previous price.
    """
    positions = await get_portfolio_positions(session, portfolio_id)
    outcome = PriceRefreshResult()

    quotes: dict[int, Decimal] = {}
    for position in positions:
        try:
            quotes[position.id] = await require_price(
                price_feed, position.symbol, position.category
            )
        except PriceUnavailableError:
            logger.warning(
                "Price unavailable, keeping previous price",
                extra={
                    "position_id": position.id,
                    "symbol": position.symbol,
                    "category": position.category,
                },
            )
            outcome.skipped += 1
            outcome.skipped_symbols.append(position.symbol)

    if quotes:
        async with position_locks.hold(*(position_key(pid) for pid in quotes)):
            async with unit_of_work(session):
                for position_id, price in quotes.items():
                    position = await lock_position(session, position_id)
                    if position is None:
                        continue  # deleted since we asked for its price
                    position.current_price = price
                    position.last_updated = utcnow()
                    session.add(PriceHistory(position_id=position_id, price=price))
                    outcome.updated += 1

    telemetry.record_price_refresh(outcome.updated, outcome.skipped)
    logger.info(
        "Prices refreshed",
        extra={
            "portfolio_id": portfolio_id,
            "updated": outcome.updated,
            "skipped": outcome.skipped,
        },
    )

    if outcome.updated:
        await record_history(session, portfolio_id)
    return outcome
