"""
Position model - one holding of an asset within a portfolio.

There is exactly one position per (portfolio, symbol, category). Its cost
basis is tracked as a single weighted average:

    invested_amount == quantity * average_cost   (within 8 dp rounding)

and a position with zero quantity carries zero cost. The numbers are only
ever changed through services.accounting.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from wallet.database import Base, utcnow


class Position(Base):
    """A holding of one asset (symbol + category) in a portfolio."""

    __tablename__ = "positions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    portfolio_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("portfolios.id"), nullable=False, index=True
    )

    # Lowercased on the way in, e.g. "btc", "aapl"
    symbol: Mapped[str] = mapped_column(String(20), nullable=False)

    name: Mapped[str] = mapped_column(String(100), nullable=False, default="")

    # Lowercased asset class, e.g. "cryptocurrency", "stock", "etf"
    category: Mapped[str] = mapped_column(String(50), nullable=False)

    # Numeric(18, 8) keeps 8 dp, enough for fractional crypto units
    quantity: Mapped[Decimal] = mapped_column(
        Numeric(18, 8), nullable=False, default=Decimal("0")
    )

    # Weighted-average cost per unit
    average_cost: Mapped[Decimal] = mapped_column(
        Numeric(18, 8), nullable=False, default=Decimal("0")
    )

    # Cost basis of the units currently held
    invested_amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 8), nullable=False, default=Decimal("0")
    )

    # Market price when the position was opened
    initial_price: Mapped[Decimal] = mapped_column(
        Numeric(18, 8), nullable=False, default=Decimal("0")
    )

    # Last known market price from the price feed
    current_price: Mapped[Decimal] = mapped_column(
        Numeric(18, 8), nullable=False, default=Decimal("0")
    )

    acquired_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    last_updated: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    # Optimistic lock: every UPDATE checks and bumps this counter
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint(
            "portfolio_id", "symbol", "category", name="uq_position_symbol_per_portfolio"
        ),
        CheckConstraint("quantity >= 0", name="check_position_quantity_non_negative"),
        CheckConstraint("average_cost >= 0", name="check_position_average_cost_non_negative"),
        CheckConstraint("invested_amount >= 0", name="check_position_invested_non_negative"),
    )

    @property
    def current_value(self) -> Decimal:
        """Market value of the units held."""
        return self.current_price * self.quantity

    def __repr__(self) -> str:
        return (
            f"Position(id={self.id!r}, {self.quantity} {self.symbol}/{self.category} "
            f"@ avg {self.average_cost}, invested={self.invested_amount})"
        )
