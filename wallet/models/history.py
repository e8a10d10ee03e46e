"""
History models - append-only time series.

PortfolioHistory snapshots a portfolio's value after every ledger mutation
(and on request). PriceHistory records each price a position was marked at.
Rows are never updated.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Integer, Numeric
from sqlalchemy.orm import Mapped, mapped_column

from wallet.database import Base, utcnow


class PortfolioHistory(Base):
    """Point-in-time value of a portfolio."""

    __tablename__ = "portfolio_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    portfolio_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("portfolios.id"), nullable=False, index=True
    )

    # Market value of all positions
    total_value: Mapped[Decimal] = mapped_column(Numeric(18, 8), nullable=False)

    # Net cash put in (deposits minus withdrawals)
    invested_amount: Mapped[Decimal] = mapped_column(Numeric(18, 8), nullable=False)

    recorded_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, index=True
    )

    def __repr__(self) -> str:
        return (
            f"PortfolioHistory(portfolio={self.portfolio_id!r}, value={self.total_value}, "
            f"invested={self.invested_amount}, at={self.recorded_at})"
        )


class PriceHistory(Base):
    """A market price observed for a position."""

    __tablename__ = "price_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    position_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("positions.id"), nullable=False, index=True
    )

    price: Mapped[Decimal] = mapped_column(Numeric(18, 8), nullable=False)

    recorded_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"PriceHistory(position={self.position_id!r}, price={self.price}, at={self.recorded_at})"
