"""
SQLAlchemy models for the wallet service.

This module exports all models and the Base class for easy imports:
    from wallet.models import Base, Portfolio, Position, Transaction
"""

from wallet.database import Base
from wallet.models.portfolio import Portfolio
from wallet.models.position import Position
from wallet.models.transaction import Transaction, TransactionType
from wallet.models.history import PortfolioHistory, PriceHistory

__all__ = [
    "Base",
    "Portfolio",
    "Position",
    "Transaction",
    "TransactionType",
    "PortfolioHistory",
    "PriceHistory",
]
