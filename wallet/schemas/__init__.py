"""Pydantic schemas for request/response validation."""

from wallet.schemas.portfolio import (
    BreakdownSummaryResponse,
    CategoryDistributionResponse,
    HistoryPointResponse,
    HistoryResponse,
    PortfolioCreate,
    PortfolioListResponse,
    PortfolioResponse,
    PortfolioUpdate,
    PortfolioValueResponse,
    PositionBreakdownResponse,
    ProfitLossBreakdownResponse,
    ProfitLossResponse,
)
from wallet.schemas.position import (
    PositionBuy,
    PositionListResponse,
    PositionResponse,
    PositionSell,
    PositionValueResponse,
    PriceHistoryResponse,
    PricePointResponse,
    PriceRefreshResponse,
    SaleResponse,
)
from wallet.schemas.transaction import (
    TransactionCreate,
    TransactionListResponse,
    TransactionResponse,
    TransactionTotalsResponse,
    TransactionType,
    TransactionUpdate,
)

__all__ = [
    # Portfolio schemas
    "PortfolioCreate",
    "PortfolioUpdate",
    "PortfolioResponse",
    "PortfolioListResponse",
    "PortfolioValueResponse",
    "ProfitLossResponse",
    "CategoryDistributionResponse",
    "PositionBreakdownResponse",
    "BreakdownSummaryResponse",
    "ProfitLossBreakdownResponse",
    "HistoryPointResponse",
    "HistoryResponse",
    # Position schemas
    "PositionBuy",
    "PositionSell",
    "PositionResponse",
    "PositionListResponse",
    "SaleResponse",
    "PositionValueResponse",
    "PricePointResponse",
    "PriceHistoryResponse",
    "PriceRefreshResponse",
    # Transaction schemas
    "TransactionType",
    "TransactionCreate",
    "TransactionUpdate",
    "TransactionResponse",
    "TransactionListResponse",
    "TransactionTotalsResponse",
]
