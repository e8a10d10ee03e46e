"""Pydantic schemas for transaction endpoints."""

from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field

from wallet.schemas.common import UtcDatetime


class TransactionType(str, Enum):
    """Kind of ledger event (matches the model enum)."""

    BUY = "BUY"
    SELL = "SELL"
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    DIVIDEND = "DIVIDEND"


class TransactionFields(BaseModel):
    """Fields a caller sets on a transaction."""

    type: TransactionType = Field(..., description="BUY, SELL, DEPOSIT, WITHDRAWAL or DIVIDEND")
    asset_id: int | None = Field(
        default=None, description="Position this entry applies to (BUY/SELL/DIVIDEND)"
    )
    asset_symbol: str = Field(default="", max_length=20, description="Display symbol")
    price: Decimal = Field(default=Decimal("0"), ge=0, description="Unit price")
    quantity: Decimal = Field(default=Decimal("0"), ge=0, description="Units")
    total_amount: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        description="Cash amount; derived from price * quantity when 0",
    )
    executed_at: UtcDatetime | None = Field(default=None, description="Defaults to now")
    notes: str = Field(default="", max_length=500)


class TransactionCreate(TransactionFields):
    """Request schema for recording a transaction."""

    portfolio_id: int = Field(..., gt=0)


class TransactionUpdate(TransactionFields):
    """Request schema for editing a transaction.

    Replaces every field. The total is recomputed from price * quantity.
    """


class TransactionResponse(BaseModel):
    """Response schema for a ledger entry."""

    id: int
    portfolio_id: int
    type: TransactionType
    asset_id: int | None
    asset_symbol: str
    price: Decimal
    quantity: Decimal
    total_amount: Decimal
    cost_basis: Decimal | None
    average_cost_at_execution: Decimal | None
    executed_at: UtcDatetime
    notes: str

    model_config = {"from_attributes": True}


class TransactionListResponse(BaseModel):
    transactions: list[TransactionResponse] = Field(default_factory=list)


class TransactionTotalsResponse(BaseModel):
    """Gross money in and out of a portfolio."""

    portfolio_id: int
    total_invested: Decimal = Field(..., description="DEPOSIT + BUY totals")
    total_withdrawn: Decimal = Field(..., description="WITHDRAWAL + SELL totals")
