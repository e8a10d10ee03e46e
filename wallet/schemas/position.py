"""Pydantic schemas for position endpoints."""

from decimal import Decimal

from pydantic import BaseModel, Field

from wallet.schemas.common import UtcDatetime
from wallet.schemas.transaction import TransactionResponse


class PositionBuy(BaseModel):
    """Request schema for buying into a position (opens it if needed)."""

    portfolio_id: int = Field(..., gt=0)
    symbol: str = Field(..., min_length=1, max_length=20, description="e.g. btc, aapl")
    category: str = Field(..., min_length=1, max_length=50, description="e.g. cryptocurrency, stock, etf")
    quantity: Decimal = Field(..., gt=0)
    unit_price: Decimal | None = Field(
        default=None, gt=0, description="Buy price; defaults to the current market price"
    )
    name: str | None = Field(default=None, max_length=100)


class PositionSell(BaseModel):
    """Request schema for selling part or all of a position."""

    quantity: Decimal = Field(..., gt=0)
    price: Decimal = Field(..., ge=0, description="Unit sale price")


class PositionResponse(BaseModel):
    """Response schema for a position."""

    id: int
    portfolio_id: int
    symbol: str
    name: str
    category: str
    quantity: Decimal
    average_cost: Decimal = Field(..., description="Weighted-average cost per unit")
    invested_amount: Decimal = Field(..., description="Cost basis of the units held")
    initial_price: Decimal
    current_price: Decimal
    current_value: Decimal
    acquired_at: UtcDatetime
    last_updated: UtcDatetime

    model_config = {"from_attributes": True}


class PositionListResponse(BaseModel):
    positions: list[PositionResponse] = Field(default_factory=list)


class SaleResponse(BaseModel):
    """Response schema for a completed sell."""

    position: PositionResponse
    transaction: TransactionResponse
    proceeds: Decimal
    cost_removed: Decimal = Field(..., description="Cost basis given up by the sale")
    realized_profit_loss: Decimal

    model_config = {"from_attributes": True}


class PositionValueResponse(BaseModel):
    position_id: int
    current_value: Decimal
    profit_loss: Decimal = Field(..., description="current_value - invested_amount")


class PricePointResponse(BaseModel):
    price: Decimal
    recorded_at: UtcDatetime

    model_config = {"from_attributes": True}


class PriceHistoryResponse(BaseModel):
    position_id: int
    prices: list[PricePointResponse] = Field(default_factory=list)


class PriceRefreshResponse(BaseModel):
    portfolio_id: int
    updated: int
    skipped: int
    skipped_symbols: list[str] = Field(default_factory=list)
