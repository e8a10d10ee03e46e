"""Portfolio API endpoints - CRUD, valuation and history."""

from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from wallet.database import get_session, to_storage, utcnow
from wallet.dependencies import get_price_feed
from wallet.errors import WalletError
from wallet.routers.errors import http_error
from wallet.schemas.portfolio import (
    CategoryDistributionResponse,
    HistoryPointResponse,
    HistoryResponse,
    PortfolioCreate,
    PortfolioListResponse,
    PortfolioResponse,
    PortfolioUpdate,
    PortfolioValueResponse,
    ProfitLossBreakdownResponse,
    ProfitLossResponse,
)
from wallet.schemas.position import (
    PositionListResponse,
    PositionResponse,
    PriceRefreshResponse,
)
from wallet.services import portfolio as portfolio_service
from wallet.services import positions as position_service
from wallet.services.price_feed import PriceFeed

router = APIRouter()

EPOCH = datetime(1970, 1, 1)


# ============================================================================
# CRUD
# ============================================================================


@router.post(
    "/portfolios",
    response_model=PortfolioResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a portfolio",
)
async def create_portfolio(
    data: PortfolioCreate,
    session: AsyncSession = Depends(get_session),
) -> PortfolioResponse:
    portfolio = await portfolio_service.create_portfolio(session, data.name, data.description)
    return PortfolioResponse.model_validate(portfolio)


@router.get(
    "/portfolios",
    response_model=PortfolioListResponse,
    summary="List portfolios",
)
async def list_portfolios(
    session: AsyncSession = Depends(get_session),
) -> PortfolioListResponse:
    portfolios = await portfolio_service.list_portfolios(session)
    return PortfolioListResponse(
        portfolios=[PortfolioResponse.model_validate(p) for p in portfolios]
    )


@router.get(
    "/portfolios/{portfolio_id}",
    response_model=PortfolioResponse,
    summary="Get a portfolio",
)
async def get_portfolio(
    portfolio_id: int,
    session: AsyncSession = Depends(get_session),
) -> PortfolioResponse:
    portfolio = await portfolio_service.get_portfolio(session, portfolio_id)
    if portfolio is None:
        raise HTTPException(status_code=404, detail=f"Portfolio {portfolio_id} not found")
    return PortfolioResponse.model_validate(portfolio)


@router.patch(
    "/portfolios/{portfolio_id}",
    response_model=PortfolioResponse,
    summary="Rename a portfolio",
)
async def update_portfolio(
    portfolio_id: int,
    data: PortfolioUpdate,
    session: AsyncSession = Depends(get_session),
) -> PortfolioResponse:
    try:
        portfolio = await portfolio_service.update_portfolio(
            session, portfolio_id, name=data.name, description=data.description
        )
    except WalletError as e:
        raise http_error(e)
    return PortfolioResponse.model_validate(portfolio)


@router.delete(
    "/portfolios/{portfolio_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a portfolio and everything in it",
)
async def delete_portfolio(
    portfolio_id: int,
    session: AsyncSession = Depends(get_session),
) -> Response:
    deleted = await portfolio_service.delete_portfolio(session, portfolio_id)
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Portfolio {portfolio_id} not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ============================================================================
# Valuation
# ============================================================================


@router.get(
    "/portfolios/{portfolio_id}/value",
    response_model=PortfolioValueResponse,
    summary="Get current value and invested amounts",
)
async def get_portfolio_value(
    portfolio_id: int,
    session: AsyncSession = Depends(get_session),
) -> PortfolioValueResponse:
    """Current market value alongside both views of what was invested.

    - **cash_invested**: deposits minus withdrawals
    - **cost_basis**: what the units currently held cost
    """
    try:
        return PortfolioValueResponse(
            portfolio_id=portfolio_id,
            current_value=await portfolio_service.get_portfolio_value(session, portfolio_id),
            cash_invested=await portfolio_service.get_cash_invested(session, portfolio_id),
            cost_basis=await portfolio_service.get_positions_cost_basis(session, portfolio_id),
        )
    except WalletError as e:
        raise http_error(e)


@router.get(
    "/portfolios/{portfolio_id}/profit-loss",
    response_model=ProfitLossResponse,
    summary="Get profit/loss",
)
async def get_profit_loss(
    portfolio_id: int,
    basis: Literal["cost", "cash"] = Query(
        default="cost", description="Measure against cost basis or cash invested"
    ),
    session: AsyncSession = Depends(get_session),
) -> ProfitLossResponse:
    try:
        result = await portfolio_service.get_profit_loss(session, portfolio_id, basis=basis)
    except WalletError as e:
        raise http_error(e)
    return ProfitLossResponse.model_validate(result)


@router.get(
    "/portfolios/{portfolio_id}/distribution",
    response_model=CategoryDistributionResponse,
    summary="Get value share per category",
)
async def get_category_distribution(
    portfolio_id: int,
    session: AsyncSession = Depends(get_session),
) -> CategoryDistributionResponse:
    try:
        distribution = await portfolio_service.get_category_distribution(session, portfolio_id)
    except WalletError as e:
        raise http_error(e)
    return CategoryDistributionResponse(portfolio_id=portfolio_id, distribution=distribution)


@router.get(
    "/portfolios/{portfolio_id}/breakdown",
    response_model=ProfitLossBreakdownResponse,
    summary="Get profit/loss per position",
)
async def get_profit_loss_breakdown(
    portfolio_id: int,
    session: AsyncSession = Depends(get_session),
) -> ProfitLossBreakdownResponse:
    try:
        breakdown = await portfolio_service.get_profit_loss_breakdown(session, portfolio_id)
    except WalletError as e:
        raise http_error(e)
    return ProfitLossBreakdownResponse.model_validate(breakdown)


# ============================================================================
# History
# ============================================================================


@router.post(
    "/portfolios/{portfolio_id}/history",
    response_model=HistoryPointResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record a history snapshot now",
)
async def record_history(
    portfolio_id: int,
    session: AsyncSession = Depends(get_session),
) -> HistoryPointResponse:
    try:
        point = await portfolio_service.record_history(session, portfolio_id)
    except WalletError as e:
        raise http_error(e)
    return HistoryPointResponse.model_validate(point)


@router.get(
    "/portfolios/{portfolio_id}/history",
    response_model=HistoryResponse,
    summary="Get history snapshots in a time range",
)
async def get_history(
    portfolio_id: int,
    start: datetime | None = Query(default=None, description="Inclusive, defaults to the beginning"),
    end: datetime | None = Query(default=None, description="Inclusive, defaults to now"),
    session: AsyncSession = Depends(get_session),
) -> HistoryResponse:
    start = to_storage(start or EPOCH)
    end = to_storage(end or utcnow())
    if start > end:
        raise HTTPException(status_code=400, detail="start must not be after end")

    try:
        points = await portfolio_service.get_history(session, portfolio_id, start, end)
    except WalletError as e:
        raise http_error(e)

    return HistoryResponse(
        portfolio_id=portfolio_id,
        history=[HistoryPointResponse.model_validate(p) for p in points],
    )


# ============================================================================
# Positions
# ============================================================================


@router.get(
    "/portfolios/{portfolio_id}/positions",
    response_model=PositionListResponse,
    summary="List positions",
)
async def list_positions(
    portfolio_id: int,
    session: AsyncSession = Depends(get_session),
) -> PositionListResponse:
    try:
        positions = await position_service.get_portfolio_positions(session, portfolio_id)
    except WalletError as e:
        raise http_error(e)
    return PositionListResponse(
        positions=[PositionResponse.model_validate(p) for p in positions]
    )


@router.post(
    "/portfolios/{portfolio_id}/refresh-prices",
    response_model=PriceRefreshResponse,
    summary="Mark all positions to market",
)
async def refresh_prices(
    portfolio_id: int,
    session: AsyncSession = Depends(get_session),
    price_feed: PriceFeed = Depends(get_price_feed),
) -> PriceRefreshResponse:
    """Fetch a current price for every position.

    Positions without an available price keep their previous price and are
    listed in **skipped_symbols**.
    """
    try:
        result = await position_service.refresh_prices(session, price_feed, portfolio_id)
    except WalletError as e:
        raise http_error(e)
    return PriceRefreshResponse(
        portfolio_id=portfolio_id,
        updated=result.updated,
        skipped=result.skipped,
        skipped_symbols=result.skipped_symbols,
    )
