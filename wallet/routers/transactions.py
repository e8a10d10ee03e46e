"""Transaction API endpoints - the portfolio ledger."""

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from wallet.database import get_session
from wallet.errors import WalletError
from wallet.routers.errors import http_error
from wallet.schemas.transaction import (
    TransactionCreate,
    TransactionListResponse,
    TransactionResponse,
    TransactionTotalsResponse,
    TransactionUpdate,
)
from wallet.services import transactions as transaction_service

router = APIRouter()


@router.post(
    "/transactions",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record a transaction",
)
async def create_transaction(
    data: TransactionCreate,
    session: AsyncSession = Depends(get_session),
) -> TransactionResponse:
    """Record a ledger entry.

    - **BUY/SELL** with an **asset_id** move that position
    - **DEPOSIT/WITHDRAWAL** are cash flows and cannot name a position
    - **total_amount** is derived from price * quantity when left at 0
    """
    try:
        tx = await transaction_service.create_transaction(session, data)
    except WalletError as e:
        raise http_error(e)
    return TransactionResponse.model_validate(tx)


@router.get(
    "/transactions/{transaction_id}",
    response_model=TransactionResponse,
    summary="Get a transaction",
)
async def get_transaction(
    transaction_id: int,
    session: AsyncSession = Depends(get_session),
) -> TransactionResponse:
    tx = await transaction_service.get_transaction(session, transaction_id)
    if tx is None:
        raise HTTPException(status_code=404, detail=f"Transaction {transaction_id} not found")
    return TransactionResponse.model_validate(tx)


@router.put(
    "/transactions/{transaction_id}",
    response_model=TransactionResponse,
    summary="Edit a transaction",
)
async def update_transaction(
    transaction_id: int,
    data: TransactionUpdate,
    session: AsyncSession = Depends(get_session),
) -> TransactionResponse:
    """Replace a transaction. Its old effect on a position is reversed first."""
    try:
        updated = await transaction_service.update_transaction(session, transaction_id, data)
    except WalletError as e:
        raise http_error(e)
    if not updated:
        raise HTTPException(status_code=404, detail=f"Transaction {transaction_id} not found")

    tx = await transaction_service.get_transaction(session, transaction_id)
    return TransactionResponse.model_validate(tx)


@router.delete(
    "/transactions/{transaction_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a transaction",
)
async def delete_transaction(
    transaction_id: int,
    session: AsyncSession = Depends(get_session),
) -> Response:
    """Delete a transaction, reversing its effect on its position."""
    try:
        deleted = await transaction_service.delete_transaction(session, transaction_id)
    except WalletError as e:
        raise http_error(e)
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Transaction {transaction_id} not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/portfolios/{portfolio_id}/transactions",
    response_model=TransactionListResponse,
    summary="List a portfolio's transactions",
)
async def list_portfolio_transactions(
    portfolio_id: int,
    start: datetime | None = Query(default=None, description="Only entries executed at or after"),
    end: datetime | None = Query(default=None, description="Only entries executed at or before"),
    session: AsyncSession = Depends(get_session),
) -> TransactionListResponse:
    """Newest first. Give both **start** and **end** to filter by date."""
    try:
        if start is not None and end is not None:
            transactions = await transaction_service.get_transactions_by_date_range(
                session, portfolio_id, start, end
            )
        else:
            transactions = await transaction_service.get_portfolio_transactions(
                session, portfolio_id
            )
    except WalletError as e:
        raise http_error(e)
    return TransactionListResponse(
        transactions=[TransactionResponse.model_validate(t) for t in transactions]
    )


@router.get(
    "/portfolios/{portfolio_id}/transactions/totals",
    response_model=TransactionTotalsResponse,
    summary="Get gross money in and out",
)
async def get_transaction_totals(
    portfolio_id: int,
    session: AsyncSession = Depends(get_session),
) -> TransactionTotalsResponse:
    try:
        return TransactionTotalsResponse(
            portfolio_id=portfolio_id,
            total_invested=await transaction_service.get_total_invested_amount(
                session, portfolio_id
            ),
            total_withdrawn=await transaction_service.get_total_withdrawn_amount(
                session, portfolio_id
            ),
        )
    except WalletError as e:
        raise http_error(e)
