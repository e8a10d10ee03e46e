"""Concurrent writers on one position, each with its own session.

Runs against a SQLite file so every session gets its own connection.
"""

import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import delete, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from wallet.errors import ConcurrencyConflictError, InsufficientQuantityError, NotFoundError
from wallet.models import Position, Transaction
from wallet.schemas.transaction import TransactionCreate, TransactionType, TransactionUpdate
from wallet.services import portfolio as portfolio_service
from wallet.services import positions as position_service
from wallet.services import transactions as transaction_service


@pytest.fixture
def session_factory(file_engine):
    return async_sessionmaker(bind=file_engine, class_=AsyncSession, expire_on_commit=False)


async def _setup(session_factory, price_feed, quantity="1"):
    async with session_factory() as session:
        portfolio = await portfolio_service.create_portfolio(session, "Main")
        position = await position_service.create_or_add_position(
            session, price_feed, portfolio.id, "btc", "cryptocurrency", Decimal(quantity)
        )
        return portfolio.id, position.id


async def _load(session_factory, position_id) -> Position:
    async with session_factory() as session:
        return await session.get(Position, position_id)


def _interfere_after_read(monkeypatch, module, session_factory, statement):
    """Run statement from another connection right after the next position read."""
    original = module.lock_position

    async def read_then_interfere(session, position_id):
        monkeypatch.setattr(module, "lock_position", original)
        position = await original(session, position_id)
        async with session_factory() as other:
            await other.execute(statement)
            await other.commit()
        return position

    monkeypatch.setattr(module, "lock_position", read_then_interfere)


def _delete_position(position_id):
    return delete(Position).where(Position.id == position_id)


def _bump_position(position_id):
    return (
        update(Position)
        .where(Position.id == position_id)
        .values(version=Position.version + 1)
    )


async def _linked_buy(session_factory, portfolio_id, position_id):
    async with session_factory() as session:
        tx = await transaction_service.create_transaction(
            session,
            TransactionCreate(
                portfolio_id=portfolio_id,
                type=TransactionType.BUY,
                asset_id=position_id,
                price=Decimal("30000"),
                quantity=Decimal("1"),
            ),
        )
        return tx.id


def _sell_one(portfolio_id, position_id):
    return TransactionCreate(
        portfolio_id=portfolio_id,
        type=TransactionType.SELL,
        asset_id=position_id,
        price=Decimal("31000"),
        quantity=Decimal("1"),
    )


@pytest.mark.asyncio
async def test_two_sells_of_the_last_unit(session_factory, price_feed):
    _, position_id = await _setup(session_factory, price_feed)

    async def sell():
        async with session_factory() as session:
            return await position_service.sell_position(
                session, position_id, Decimal("1"), Decimal("31000")
            )

    results = await asyncio.gather(sell(), sell(), return_exceptions=True)

    failures = [r for r in results if isinstance(r, Exception)]
    assert len(failures) == 1
    assert isinstance(failures[0], InsufficientQuantityError)

    position = await _load(session_factory, position_id)
    assert position.quantity == 0
    assert position.invested_amount == 0


@pytest.mark.asyncio
async def test_concurrent_buys_open_one_position(session_factory, price_feed):
    async with session_factory() as session:
        portfolio = await portfolio_service.create_portfolio(session, "Main")
        portfolio_id = portfolio.id

    async def buy(quantity):
        async with session_factory() as session:
            return await position_service.create_or_add_position(
                session, price_feed, portfolio_id, "eth", "cryptocurrency",
                Decimal(quantity), unit_price=Decimal("1000"),
            )

    await asyncio.gather(buy("1"), buy("2"), buy("3"))

    async with session_factory() as session:
        positions = await position_service.get_portfolio_positions(session, portfolio_id)
    assert len(positions) == 1
    assert positions[0].quantity == Decimal("6")
    assert positions[0].invested_amount == Decimal("6000")


@pytest.mark.asyncio
async def test_interleaved_buys_and_sells_stay_consistent(session_factory, price_feed):
    portfolio_id, position_id = await _setup(session_factory, price_feed, quantity="10")

    async def buy():
        async with session_factory() as session:
            await transaction_service.create_transaction(
                session,
                TransactionCreate(
                    portfolio_id=portfolio_id,
                    type=TransactionType.BUY,
                    asset_id=position_id,
                    price=Decimal("30000"),
                    quantity=Decimal("1"),
                ),
            )

    async def sell():
        async with session_factory() as session:
            await position_service.sell_position(
                session, position_id, Decimal("1"), Decimal("30000")
            )

    await asyncio.gather(*([buy() for _ in range(5)] + [sell() for _ in range(5)]))

    position = await _load(session_factory, position_id)
    assert position.quantity == Decimal("10")
    assert position.invested_amount == Decimal("300000")
    assert position.average_cost == Decimal("30000")


class TestPositionGoneMidWrite:
    """Another connection deletes or changes a row after it was read."""

    @pytest.mark.asyncio
    async def test_create_transaction_position_deleted(self, session_factory, price_feed, monkeypatch):
        portfolio_id, position_id = await _setup(session_factory, price_feed)
        _interfere_after_read(
            monkeypatch, transaction_service, session_factory, _delete_position(position_id)
        )

        async with session_factory() as session:
            with pytest.raises(NotFoundError):
                await transaction_service.create_transaction(
                    session, _sell_one(portfolio_id, position_id)
                )
            ledger = await transaction_service.get_portfolio_transactions(session, portfolio_id)
            assert len(ledger) == 1

    @pytest.mark.asyncio
    async def test_create_transaction_position_changed(self, session_factory, price_feed, monkeypatch):
        portfolio_id, position_id = await _setup(session_factory, price_feed)
        _interfere_after_read(
            monkeypatch, transaction_service, session_factory, _bump_position(position_id)
        )

        async with session_factory() as session:
            with pytest.raises(ConcurrencyConflictError):
                await transaction_service.create_transaction(
                    session, _sell_one(portfolio_id, position_id)
                )

        position = await _load(session_factory, position_id)
        assert position.quantity == Decimal("1")

    @pytest.mark.asyncio
    async def test_sell_position_deleted(self, session_factory, price_feed, monkeypatch):
        _, position_id = await _setup(session_factory, price_feed)
        _interfere_after_read(
            monkeypatch, position_service, session_factory, _delete_position(position_id)
        )

        async with session_factory() as session:
            with pytest.raises(NotFoundError):
                await position_service.sell_position(
                    session, position_id, Decimal("1"), Decimal("31000")
                )

    @pytest.mark.asyncio
    async def test_sell_position_changed(self, session_factory, price_feed, monkeypatch):
        _, position_id = await _setup(session_factory, price_feed)
        _interfere_after_read(
            monkeypatch, position_service, session_factory, _bump_position(position_id)
        )

        async with session_factory() as session:
            with pytest.raises(ConcurrencyConflictError):
                await position_service.sell_position(
                    session, position_id, Decimal("1"), Decimal("31000")
                )

    @pytest.mark.asyncio
    async def test_buy_into_deleted_position_reopens_it(self, session_factory, price_feed, monkeypatch):
        portfolio_id, position_id = await _setup(session_factory, price_feed)
        _interfere_after_read(
            monkeypatch, position_service, session_factory, _delete_position(position_id)
        )

        async with session_factory() as session:
            position = await position_service.create_or_add_position(
                session, price_feed, portfolio_id, "btc", "cryptocurrency",
                Decimal("2"), unit_price=Decimal("1000"),
            )
            new_id = position.id

        reopened = await _load(session_factory, new_id)
        assert reopened.quantity == Decimal("2")
        assert reopened.invested_amount == Decimal("2000")

    @pytest.mark.asyncio
    async def test_update_transaction_deleted(self, session_factory, price_feed, monkeypatch):
        portfolio_id, position_id = await _setup(session_factory, price_feed)
        tx_id = await _linked_buy(session_factory, portfolio_id, position_id)
        _interfere_after_read(
            monkeypatch, transaction_service, session_factory,
            delete(Transaction).where(Transaction.id == tx_id),
        )

        async with session_factory() as session:
            updated = await transaction_service.update_transaction(
                session, tx_id, TransactionUpdate(
                    type=TransactionType.BUY,
                    asset_id=position_id,
                    price=Decimal("30000"),
                    quantity=Decimal("3"),
                ),
            )

        assert updated is False
        position = await _load(session_factory, position_id)
        assert position.quantity == Decimal("2")

    @pytest.mark.asyncio
    async def test_update_transaction_position_deleted(self, session_factory, price_feed, monkeypatch):
        portfolio_id, position_id = await _setup(session_factory, price_feed)
        tx_id = await _linked_buy(session_factory, portfolio_id, position_id)
        _interfere_after_read(
            monkeypatch, transaction_service, session_factory, _delete_position(position_id)
        )

        async with session_factory() as session:
            with pytest.raises(NotFoundError):
                await transaction_service.update_transaction(
                    session, tx_id, TransactionUpdate(
                        type=TransactionType.BUY,
                        asset_id=position_id,
                        price=Decimal("30000"),
                        quantity=Decimal("3"),
                    ),
                )

    @pytest.mark.asyncio
    async def test_update_transaction_position_changed(self, session_factory, price_feed, monkeypatch):
        portfolio_id, position_id = await _setup(session_factory, price_feed)
        tx_id = await _linked_buy(session_factory, portfolio_id, position_id)
        _interfere_after_read(
            monkeypatch, transaction_service, session_factory, _bump_position(position_id)
        )

        async with session_factory() as session:
            with pytest.raises(ConcurrencyConflictError):
                await transaction_service.update_transaction(
                    session, tx_id, TransactionUpdate(
                        type=TransactionType.BUY,
                        asset_id=position_id,
                        price=Decimal("30000"),
                        quantity=Decimal("3"),
                    ),
                )

    @pytest.mark.asyncio
    async def test_delete_transaction_deleted(self, session_factory, price_feed, monkeypatch):
        portfolio_id, position_id = await _setup(session_factory, price_feed)
        tx_id = await _linked_buy(session_factory, portfolio_id, position_id)
        _interfere_after_read(
            monkeypatch, transaction_service, session_factory,
            delete(Transaction).where(Transaction.id == tx_id),
        )

        async with session_factory() as session:
            assert await transaction_service.delete_transaction(session, tx_id) is False

        position = await _load(session_factory, position_id)
        assert position.quantity == Decimal("2")

    @pytest.mark.asyncio
    async def test_delete_transaction_position_deleted(self, session_factory, price_feed, monkeypatch):
        portfolio_id, position_id = await _setup(session_factory, price_feed)
        tx_id = await _linked_buy(session_factory, portfolio_id, position_id)
        _interfere_after_read(
            monkeypatch, transaction_service, session_factory, _delete_position(position_id)
        )

        async with session_factory() as session:
            with pytest.raises(NotFoundError):
                await transaction_service.delete_transaction(session, tx_id)

    @pytest.mark.asyncio
    async def test_delete_transaction_position_changed(self, session_factory, price_feed, monkeypatch):
        portfolio_id, position_id = await _setup(session_factory, price_feed)
        tx_id = await _linked_buy(session_factory, portfolio_id, position_id)
        _interfere_after_read(
            monkeypatch, transaction_service, session_factory, _bump_position(position_id)
        )

        async with session_factory() as session:
            with pytest.raises(ConcurrencyConflictError):
                await transaction_service.delete_transaction(session, tx_id)

        async with session_factory() as session:
            assert await transaction_service.get_transaction(session, tx_id) is not None
