"""
Portfolio model - a named collection of positions and transactions.

Positions, transactions and history rows point back at their portfolio by
id. Deleting a portfolio removes all of them (see services.portfolio).
"""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from wallet.database import Base, utcnow


class Portfolio(Base):
    """An investment portfolio owned by a single user."""

    __tablename__ = "portfolios"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"Portfolio(id={self.id!r}, name={self.name!r})"
