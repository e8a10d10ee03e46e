"""Position API endpoints - buy, sell and inspect positions."""

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from wallet.database import get_session
from wallet.dependencies import get_price_feed
from wallet.errors import WalletError
from wallet.routers.errors import http_error
from wallet.schemas.position import (
    PositionBuy,
    PositionResponse,
    PositionSell,
    PositionValueResponse,
    PriceHistoryResponse,
    PricePointResponse,
    SaleResponse,
)
from wallet.schemas.transaction import TransactionListResponse, TransactionResponse
from wallet.services import positions as position_service
from wallet.services import transactions as transaction_service
from wallet.services.price_feed import PriceFeed

router = APIRouter()


@router.post(
    "/positions/buy",
    response_model=PositionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Buy into a position",
)
async def buy_position(
    data: PositionBuy,
    session: AsyncSession = Depends(get_session),
    price_feed: PriceFeed = Depends(get_price_feed),
) -> PositionResponse:
    """Buy units of an asset, opening the position if it does not exist yet.

    - **unit_price**: optional; without it the current market price is used
    - Responds 503 when no price is given and the market price is unavailable
    """
    try:
        position = await position_service.create_or_add_position(
            session,
            price_feed,
            data.portfolio_id,
            data.symbol,
            data.category,
            data.quantity,
            unit_price=data.unit_price,
            name=data.name,
        )
    except WalletError as e:
        raise http_error(e)
    return PositionResponse.model_validate(position)


@router.get(
    "/positions/{position_id}",
    response_model=PositionResponse,
    summary="Get a position",
)
async def get_position(
    position_id: int,
    session: AsyncSession = Depends(get_session),
) -> PositionResponse:
    position = await position_service.get_position(session, position_id)
    if position is None:
        raise HTTPException(status_code=404, detail=f"Position {position_id} not found")
    return PositionResponse.model_validate(position)


@router.post(
    "/positions/{position_id}/sell",
    response_model=SaleResponse,
    summary="Sell units of a position",
)
async def sell_position(
    position_id: int,
    data: PositionSell,
    session: AsyncSession = Depends(get_session),
) -> SaleResponse:
    """Sell part or all of a position.

    Selling everything leaves the position in place with zero quantity and
    zero cost basis.
    """
    try:
        outcome = await position_service.sell_position(
            session, position_id, data.quantity, data.price
        )
    except WalletError as e:
        raise http_error(e)
    return SaleResponse(
        position=PositionResponse.model_validate(outcome.position),
        transaction=TransactionResponse.model_validate(outcome.transaction),
        proceeds=outcome.proceeds,
        cost_removed=outcome.cost_removed,
        realized_profit_loss=outcome.realized_profit_loss,
    )


@router.delete(
    "/positions/{position_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a position",
)
async def delete_position(
    position_id: int,
    session: AsyncSession = Depends(get_session),
) -> Response:
    """Delete a position and its price history. Its transactions are kept, unlinked."""
    deleted = await position_service.delete_position(session, position_id)
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Position {position_id} not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/positions/{position_id}/value",
    response_model=PositionValueResponse,
    summary="Get value and unrealized profit/loss",
)
async def get_position_value(
    position_id: int,
    session: AsyncSession = Depends(get_session),
) -> PositionValueResponse:
    try:
        return PositionValueResponse(
            position_id=position_id,
            current_value=await position_service.get_position_value(session, position_id),
            profit_loss=await position_service.get_position_profit_loss(session, position_id),
        )
    except WalletError as e:
        raise http_error(e)


@router.get(
    "/positions/{position_id}/price-history",
    response_model=PriceHistoryResponse,
    summary="Get recorded prices",
)
async def get_price_history(
    position_id: int,
    start: datetime | None = Query(default=None, description="Inclusive lower bound"),
    end: datetime | None = Query(default=None, description="Inclusive upper bound"),
    session: AsyncSession = Depends(get_session),
) -> PriceHistoryResponse:
    try:
        points = await position_service.get_price_history(session, position_id, start, end)
    except WalletError as e:
        raise http_error(e)
    return PriceHistoryResponse(
        position_id=position_id,
        prices=[PricePointResponse.model_validate(p) for p in points],
    )


@router.get(
    "/positions/{position_id}/transactions",
    response_model=TransactionListResponse,
    summary="List transactions linked to a position",
)
async def list_position_transactions(
    position_id: int,
    session: AsyncSession = Depends(get_session),
) -> TransactionListResponse:
    if await position_service.get_position(session, position_id) is None:
        raise HTTPException(status_code=404, detail=f"Position {position_id} not found")
    transactions = await transaction_service.get_transactions_by_position(session, position_id)
    return TransactionListResponse(
        transactions=[TransactionResponse.model_validate(t) for t in transactions]
    )
