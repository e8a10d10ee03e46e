"""Portfolio service - valuation, profit/loss and history.

Two "invested" figures exist and are kept apart:

- cash invested: DEPOSIT totals minus WITHDRAWAL totals (what the owner put in)
- cost basis: sum of the positions' invested_amount (what the held units cost)

Profit/loss is measured against the cost basis unless the caller asks for
the cash view. History snapshots record the cash view.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_DOWN, Decimal

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from wallet import telemetry
from wallet.database import to_storage, to_utc, unit_of_work
from wallet.errors import InvalidOperationError, NotFoundError
from wallet.models import (
    Portfolio,
    PortfolioHistory,
    Position,
    PriceHistory,
    Transaction,
    TransactionType,
)
from wallet.services.accounting import (
    CURRENCY_QUANT,
    HUNDRED,
    ZERO,
    percent_of,
    quantize_storage,
)
from wallet.services.locks import position_key, position_locks

logger = logging.getLogger(__name__)

COST_BASIS = "cost"
CASH_BASIS = "cash"


@dataclass
class ProfitLoss:
    """Profit/loss of a portfolio against an invested amount."""

    total_invested: Decimal
    current_value: Decimal
    profit_loss: Decimal
    profit_loss_percent: Decimal
    is_profit: bool


@dataclass
class PositionBreakdown:
    """One row of the profit/loss breakdown report."""

    position_id: int
    symbol: str
    category: str
    quantity: Decimal
    average_cost: Decimal
    current_price: Decimal
    current_value: Decimal
    profit_loss: Decimal
    profit_loss_percent: Decimal
    is_profit: bool


@dataclass
class BreakdownSummary:
    """Totals over all rows of the breakdown report."""

    total_assets: int
    profitable_assets: int
    losing_assets: int
    total_invested: Decimal
    current_value: Decimal
    profit_loss: Decimal
    profit_loss_percent: Decimal


@dataclass
class ProfitLossBreakdown:
    positions: list[PositionBreakdown] = field(default_factory=list)
    summary: BreakdownSummary | None = None


@dataclass(frozen=True)
class HistoryPoint:
    """A history snapshot with its timestamp in aware UTC."""

    id: int
    portfolio_id: int
    total_value: Decimal
    invested_amount: Decimal
    recorded_at: datetime

    @classmethod
    def from_row(cls, row: PortfolioHistory) -> "HistoryPoint":
        return cls(
            id=row.id,
            portfolio_id=row.portfolio_id,
            total_value=row.total_value,
            invested_amount=row.invested_amount,
            recorded_at=to_utc(row.recorded_at),
        )


# --- Portfolio CRUD ---

async def get_portfolio(session: AsyncSession, portfolio_id: int) -> Portfolio | None:
    """Get a portfolio by ID, or None."""
    result = await session.execute(select(Portfolio).where(Portfolio.id == portfolio_id))
    return result.scalar_one_or_none()


async def require_portfolio(session: AsyncSession, portfolio_id: int) -> Portfolio:
    """Get a portfolio by ID.

    Raises:
        NotFoundError: no such portfolio
    """
    portfolio = await get_portfolio(session, portfolio_id)
    if portfolio is None:
        raise NotFoundError(f"Portfolio {portfolio_id} not found")
    return portfolio


async def portfolio_exists(session: AsyncSession, portfolio_id: int) -> bool:
    result = await session.execute(select(Portfolio.id).where(Portfolio.id == portfolio_id))
    return result.scalar_one_or_none() is not None


async def list_portfolios(session: AsyncSession) -> list[Portfolio]:
    """All portfolios, oldest first."""
    result = await session.execute(select(Portfolio).order_by(Portfolio.id))
    return list(result.scalars().all())


async def create_portfolio(
    session: AsyncSession, name: str, description: str = ""
) -> Portfolio:
    """Create an empty portfolio."""
    portfolio = Portfolio(name=name, description=description or "")
    async with unit_of_work(session):
        session.add(portfolio)

    logger.info("Portfolio created", extra={"portfolio_id": portfolio.id, "portfolio_name": name})
    return portfolio


async def update_portfolio(
    session: AsyncSession,
    portfolio_id: int,
    name: str | None = None,
    description: str | None = None,
) -> Portfolio:
    """Rename or re-describe a portfolio. None leaves a field unchanged."""
    async with unit_of_work(session):
        portfolio = await require_portfolio(session, portfolio_id)
        if name is not None:
            portfolio.name = name
        if description is not None:
            portfolio.description = description

    return portfolio


async def delete_portfolio(session: AsyncSession, portfolio_id: int) -> bool:
    """Delete a portfolio with its positions, transactions and history.

    Returns:
        False if the portfolio does not exist
    """
    result = await session.execute(
        select(Position.id).where(Position.portfolio_id == portfolio_id)
    )
    position_ids = list(result.scalars().all())

    async with position_locks.hold(*(position_key(pid) for pid in position_ids)):
        async with unit_of_work(session):
            if not await portfolio_exists(session, portfolio_id):
                return False

            position_ids_query = select(Position.id).where(Position.portfolio_id == portfolio_id)
            await session.execute(
                delete(PriceHistory).where(PriceHistory.position_id.in_(position_ids_query))
            )
            await session.execute(
                delete(Transaction).where(Transaction.portfolio_id == portfolio_id)
            )
            await session.execute(delete(Position).where(Position.portfolio_id == portfolio_id))
            await session.execute(
                delete(PortfolioHistory).where(PortfolioHistory.portfolio_id == portfolio_id)
            )
            await session.execute(delete(Portfolio).where(Portfolio.id == portfolio_id))

    telemetry.forget_portfolio(portfolio_id)
    logger.info(
        "Portfolio deleted",
        extra={"portfolio_id": portfolio_id, "positions": len(position_ids)},
    )
    return True


# --- Valuation ---

async def _positions(session: AsyncSession, portfolio_id: int) -> list[Position]:
    result = await session.execute(
        select(Position).where(Position.portfolio_id == portfolio_id).order_by(Position.id)
    )
    return list(result.scalars().all())


async def get_portfolio_value(session: AsyncSession, portfolio_id: int) -> Decimal:
    """Market value of every position: sum of current_price * quantity."""
    await require_portfolio(session, portfolio_id)
    positions = await _positions(session, portfolio_id)
    return quantize_storage(sum((p.current_value for p in positions), ZERO))


async def get_cash_invested(session: AsyncSession, portfolio_id: int) -> Decimal:
    """Net cash put in: DEPOSIT totals minus WITHDRAWAL totals."""
    await require_portfolio(session, portfolio_id)
    result = await session.execute(
        select(Transaction.type, Transaction.total_amount).where(
            Transaction.portfolio_id == portfolio_id,
            Transaction.type.in_([TransactionType.DEPOSIT, TransactionType.WITHDRAWAL]),
        )
    )

    invested = ZERO
    for tx_type, amount in result.all():
        if tx_type == TransactionType.DEPOSIT:
            invested += amount
        else:
            invested -= amount
    return invested


async def get_positions_cost_basis(session: AsyncSession, portfolio_id: int) -> Decimal:
    """Cost basis of everything held: sum of the positions' invested_amount."""
    await require_portfolio(session, portfolio_id)
    positions = await _positions(session, portfolio_id)
    return sum((p.invested_amount for p in positions), ZERO)


def _profit_loss(invested: Decimal, value: Decimal) -> ProfitLoss:
    profit_loss = value - invested
    return ProfitLoss(
        total_invested=invested,
        current_value=value,
        profit_loss=profit_loss,
        profit_loss_percent=percent_of(profit_loss, invested),
        # Nothing invested means nothing gained
        is_profit=invested != 0 and profit_loss >= 0,
    )


async def get_profit_loss(
    session: AsyncSession, portfolio_id: int, basis: str = COST_BASIS
) -> ProfitLoss:
    """Profit/loss of current value against the cost basis (or cash invested).

    Args:
        session: Database session
        portfolio_id: Portfolio ID
        basis: "cost" (default) or "cash"
    """
    if basis == COST_BASIS:
        invested = await get_positions_cost_basis(session, portfolio_id)
    elif basis == CASH_BASIS:
        invested = await get_cash_invested(session, portfolio_id)
    else:
        raise InvalidOperationError(f"Unknown profit/loss basis: {basis!r}")

    value = await get_portfolio_value(session, portfolio_id)
    return _profit_loss(invested, value)


async def get_category_distribution(
    session: AsyncSession, portfolio_id: int
) -> dict[str, Decimal]:
    """Share of total value per category, in percent (2 dp).

    Shares are apportioned by largest remainder so they add up to exactly
    100.00. Empty when the portfolio has no value.
    """
    await require_portfolio(session, portfolio_id)
    positions = await _positions(session, portfolio_id)

    buckets: dict[str, Decimal] = {}
    for position in positions:
        buckets[position.category] = buckets.get(position.category, ZERO) + position.current_value

    total = sum(buckets.values(), ZERO)
    if total == 0:
        return {}
    return _apportion(buckets, total)


def _apportion(buckets: dict[str, Decimal], total: Decimal) -> dict[str, Decimal]:
    shares = {category: value / total * HUNDRED for category, value in buckets.items()}
    floors = {
        category: share.quantize(CURRENCY_QUANT, rounding=ROUND_DOWN)
        for category, share in shares.items()
    }
    leftover = int((HUNDRED - sum(floors.values(), ZERO)) / CURRENCY_QUANT)

    # Largest remainder first; ties by category name
    order = sorted(shares, key=lambda c: (floors[c] - shares[c], c))
    for category in order[:leftover]:
        floors[category] += CURRENCY_QUANT
    return floors


async def get_profit_loss_breakdown(
    session: AsyncSession, portfolio_id: int
) -> ProfitLossBreakdown:
    """Per-position profit/loss plus portfolio totals.

    Positions with profit_loss >= 0 count as profitable.
    """
    await require_portfolio(session, portfolio_id)
    positions = await _positions(session, portfolio_id)

    rows = []
    for position in positions:
        value = quantize_storage(position.current_value)
        profit_loss = value - position.invested_amount
        rows.append(
            PositionBreakdown(
                position_id=position.id,
                symbol=position.symbol,
                category=position.category,
                quantity=position.quantity,
                average_cost=position.average_cost,
                current_price=position.current_price,
                current_value=value,
                profit_loss=profit_loss,
                profit_loss_percent=percent_of(profit_loss, position.invested_amount),
                is_profit=profit_loss >= 0,
            )
        )

    total_invested = sum((p.invested_amount for p in positions), ZERO)
    total_value = sum((row.current_value for row in rows), ZERO)
    total_pnl = total_value - total_invested
    profitable = sum(1 for row in rows if row.is_profit)

    summary = BreakdownSummary(
        total_assets=len(rows),
        profitable_assets=profitable,
        losing_assets=len(rows) - profitable,
        total_invested=total_invested,
        current_value=total_value,
        profit_loss=total_pnl,
        profit_loss_percent=percent_of(total_pnl, total_invested),
    )
    return ProfitLossBreakdown(positions=rows, summary=summary)


# --- History ---

async def record_history(session: AsyncSession, portfolio_id: int) -> HistoryPoint:
    """Append a snapshot of current value and cash invested.

    Called after every committed ledger mutation, and on request.
    """
    value = await get_portfolio_value(session, portfolio_id)
    invested = await get_cash_invested(session, portfolio_id)

    row = PortfolioHistory(
        portfolio_id=portfolio_id,
        total_value=value,
        invested_amount=invested,
    )
    async with unit_of_work(session):
        session.add(row)

    cost_basis = await get_positions_cost_basis(session, portfolio_id)
    telemetry.record_portfolio_value(portfolio_id, value, value - cost_basis)

    logger.debug(
        "History recorded",
        extra={"portfolio_id": portfolio_id, "total_value": float(value)},
    )
    return HistoryPoint.from_row(row)


async def get_history(
    session: AsyncSession,
    portfolio_id: int,
    start: datetime,
    end: datetime,
) -> list[HistoryPoint]:
    """Snapshots with start <= recorded_at <= end, oldest first.

    start and end may be naive (taken as UTC) or aware in any zone.
    An inverted range yields nothing.
    """
    await require_portfolio(session, portfolio_id)

    start, end = to_storage(start), to_storage(end)
    if start > end:
        return []

    result = await session.execute(
        select(PortfolioHistory)
        .where(
            PortfolioHistory.portfolio_id == portfolio_id,
            PortfolioHistory.recorded_at >= start,
            PortfolioHistory.recorded_at <= end,
        )
        .order_by(PortfolioHistory.recorded_at.asc(), PortfolioHistory.id.asc())
    )
    return [HistoryPoint.from_row(row) for row in result.scalars().all()]
