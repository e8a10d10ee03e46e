"""
Transaction model - the ledger of portfolio events.

BUY and SELL entries may point at a position and move its quantity and cost
basis. DEPOSIT and WITHDRAWAL are pure cash flows. DIVIDEND may name a
position but never changes it.

asset_id is a plain reference: the position can be deleted independently,
after which the entry keeps asset_symbol for display and asset_id is cleared.
"""

import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from wallet.database import Base, utcnow


class TransactionType(str, enum.Enum):
    """Kind of ledger event."""

    BUY = "BUY"
    SELL = "SELL"
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    DIVIDEND = "DIVIDEND"

    @property
    def moves_position(self) -> bool:
        """Whether this kind of event changes a linked position."""
        return self in (TransactionType.BUY, TransactionType.SELL)


class Transaction(Base):
    """A single ledger entry."""

    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    type: Mapped[TransactionType] = mapped_column(Enum(TransactionType), nullable=False)

    portfolio_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("portfolios.id"), nullable=False, index=True
    )

    asset_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("positions.id"), nullable=True, index=True
    )

    # Denormalized so the entry still reads well once the position is gone
    asset_symbol: Mapped[str] = mapped_column(String(20), nullable=False, default="")

    price: Mapped[Decimal] = mapped_column(Numeric(18, 8), nullable=False, default=Decimal("0"))

    quantity: Mapped[Decimal] = mapped_column(
        Numeric(18, 8), nullable=False, default=Decimal("0")
    )

    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 8), nullable=False, default=Decimal("0")
    )

    # Cost basis this entry added (BUY) or removed (SELL) on its position.
    # Reversal puts back exactly this amount.
    cost_basis: Mapped[Decimal | None] = mapped_column(Numeric(18, 8), nullable=True)

    # Position's average cost at the moment of a SELL
    average_cost_at_execution: Mapped[Decimal | None] = mapped_column(
        Numeric(18, 8), nullable=True
    )

    executed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    notes: Mapped[str] = mapped_column(String(500), nullable=False, default="")

    # Optimistic lock, same scheme as Position
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="check_transaction_quantity_non_negative"),
        CheckConstraint("price >= 0", name="check_transaction_price_non_negative"),
    )

    @property
    def affects_position(self) -> bool:
        """Whether this entry currently moves a position's numbers."""
        return self.asset_id is not None and self.type.moves_position

    def __repr__(self) -> str:
        return (
            f"Transaction(id={self.id!r}, {self.type.value} {self.quantity} "
            f"{self.asset_symbol or '-'} @ {self.price}, total={self.total_amount})"
        )
