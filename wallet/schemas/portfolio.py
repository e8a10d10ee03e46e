"""Pydantic schemas for portfolio endpoints."""

from decimal import Decimal

from pydantic import BaseModel, Field

from wallet.schemas.common import UtcDatetime


class PortfolioCreate(BaseModel):
    """Request schema for creating a portfolio."""

    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field(default="", max_length=500)


class PortfolioUpdate(BaseModel):
    """Request schema for renaming a portfolio. Omitted fields stay as they are."""

    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)


class PortfolioResponse(BaseModel):
    id: int
    name: str
    description: str
    created_at: UtcDatetime

    model_config = {"from_attributes": True}


class PortfolioListResponse(BaseModel):
    portfolios: list[PortfolioResponse] = Field(default_factory=list)


class PortfolioValueResponse(BaseModel):
    """Current value and both views of the invested amount."""

    portfolio_id: int
    current_value: Decimal = Field(..., description="Sum of current_price * quantity")
    cash_invested: Decimal = Field(..., description="Deposits minus withdrawals")
    cost_basis: Decimal = Field(..., description="Sum of the positions' invested amounts")


class ProfitLossResponse(BaseModel):
    """Response schema for portfolio profit/loss."""

    total_invested: Decimal = Field(..., description="Basis the P/L is measured against")
    current_value: Decimal
    profit_loss: Decimal = Field(..., description="current_value - total_invested")
    profit_loss_percent: Decimal = Field(..., description="P/L as percentage (2 dp), 0 if nothing invested")
    is_profit: bool

    model_config = {"from_attributes": True}


class CategoryDistributionResponse(BaseModel):
    portfolio_id: int
    distribution: dict[str, Decimal] = Field(
        default_factory=dict, description="Percent of total value per category"
    )


class PositionBreakdownResponse(BaseModel):
    """One position in the profit/loss breakdown."""

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

    model_config = {"from_attributes": True}


class BreakdownSummaryResponse(BaseModel):
    total_assets: int
    profitable_assets: int
    losing_assets: int
    total_invested: Decimal
    current_value: Decimal
    profit_loss: Decimal
    profit_loss_percent: Decimal

    model_config = {"from_attributes": True}


class ProfitLossBreakdownResponse(BaseModel):
    positions: list[PositionBreakdownResponse] = Field(default_factory=list)
    summary: BreakdownSummaryResponse

    model_config = {"from_attributes": True}


class HistoryPointResponse(BaseModel):
    """A recorded snapshot of portfolio value."""

    total_value: Decimal
    invested_amount: Decimal = Field(..., description="Cash invested at the time")
    recorded_at: UtcDatetime

    model_config = {"from_attributes": True}


class HistoryResponse(BaseModel):
    portfolio_id: int
    history: list[HistoryPointResponse] = Field(default_factory=list)
